"""HTTP server for the storefront with hot reloading support."""

import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from . import __version__
from .config import load_settings
from .errors import ConfigUnavailable, StorefrontError
from .models import CheckoutStep, ClearOutcome, PaymentInfo
from .notices import answer
from .storefront import Storefront

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("storefront-http-server")


# Request/Response Models
class AddToCartRequest(BaseModel):
    product_id: str
    quantity: int = 1


class RemoveFromCartRequest(BaseModel):
    product_id: str


class UpdateCartRequest(BaseModel):
    product_id: str
    quantity: int


class ClearCartRequest(BaseModel):
    confirm: bool = False


class ShippingRequest(BaseModel):
    name: str = ""
    email: str = ""
    address: str = ""
    city: str = ""


def _result(storefront: Storefront, success: bool, message: str, **extra) -> dict:
    notices = [n.model_dump(mode="json") for n in storefront.notify.drain()]
    return {"success": success, "message": message, "notices": notices, **extra}


def checkout_view(storefront: Storefront) -> dict:
    checkout = storefront.require_ready().checkout
    return {
        "step": checkout.step.value,
        "next": [step.value for step in checkout.available_transitions()],
        "errors": checkout.errors,
        "shipping": checkout.shipping.model_dump() if checkout.shipping else None,
        "outcome": checkout.outcome.model_dump() if checkout.outcome else None,
    }


def create_app(storefront_factory: Optional[Callable[[], Storefront]] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        storefront_factory: Builds the storefront at startup (default: from environment)
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager for startup and shutdown."""
        logger.info("Starting Storefront HTTP Server...")
        storefront = storefront_factory() if storefront_factory else Storefront(load_settings())
        if not await storefront.start():
            logger.warning(f"Starting in display-only mode: {storefront.state.status}")
        app.state.storefront = storefront

        yield

        logger.info("Shutting down Storefront HTTP Server...")
        await storefront.stop()

    app = FastAPI(
        title="Storefront MCP Server",
        description="HTTP API for the storefront catalog, cart and checkout",
        version=__version__,
        lifespan=lifespan,
    )

    @app.exception_handler(StorefrontError)
    async def storefront_error_handler(request: Request, exc: StorefrontError):
        status_code = 503 if isinstance(exc, ConfigUnavailable) else 409
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    def get_storefront(request: Request) -> Storefront:
        return request.app.state.storefront

    @app.get("/")
    async def root(request: Request):
        """Root endpoint with API information."""
        storefront = get_storefront(request)
        return {
            "name": "Storefront MCP Server",
            "version": __version__,
            "mcp_compatible": True,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "products": {"list": "GET /products", "details": "GET /products/{product_id}"},
                "cart": {
                    "get": "GET /cart",
                    "add": "POST /cart/add",
                    "update": "POST /cart/update",
                    "remove": "POST /cart/remove",
                    "clear": "POST /cart/clear",
                },
                "checkout": {
                    "status": "GET /checkout",
                    "start": "POST /checkout/start",
                    "shipping": "POST /checkout/shipping",
                    "back": "POST /checkout/back",
                    "payment": "POST /checkout/payment",
                    "retry_clear": "POST /checkout/retry-clear",
                    "close": "POST /checkout/close",
                },
                "counter": {"get": "GET /counter", "increment": "POST /counter/increment"},
            },
            "ready": storefront.state.ready,
        }

    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint."""
        state = get_storefront(request).state
        return {
            "status": "healthy" if state.ready else "degraded",
            "ready": state.ready,
            "message": state.status,
            "session_id": state.auth.session_id if state.auth else None,
        }

    # Product endpoints
    @app.get("/products")
    async def list_products(request: Request, category: Optional[str] = None):
        """List catalog products."""
        state = get_storefront(request).require_ready()
        products = state.catalog.list()
        if category:
            products = [p for p in products if p.category.lower() == category.lower()]
        return {
            "count": len(products),
            "stale": state.catalog.stale,
            "products": [p.model_dump() for p in products],
        }

    @app.get("/products/{product_id}")
    async def get_product(request: Request, product_id: str):
        """Get one product."""
        product = get_storefront(request).find_product(product_id)
        if product is None:
            raise HTTPException(status_code=404, detail=f"Product {product_id} not found")
        return product.model_dump()

    # Cart endpoints
    @app.get("/cart")
    async def get_cart(request: Request):
        """Get current shopping cart."""
        state = get_storefront(request).require_ready()
        return state.cart.cart.summary()

    @app.post("/cart/add")
    async def add_to_cart(request: Request, body: AddToCartRequest):
        """Add a product to the cart."""
        storefront = get_storefront(request)
        product = storefront.find_product(body.product_id)
        if product is None:
            raise HTTPException(status_code=404, detail=f"Product {body.product_id} not found")
        success = await storefront.state.cart.add_item(product, body.quantity)
        message = (
            f"Added {product.name} to cart (quantity: {body.quantity})"
            if success
            else f"Failed to add product {body.product_id} to cart"
        )
        return _result(storefront, success, message)

    @app.post("/cart/update")
    async def update_cart(request: Request, body: UpdateCartRequest):
        """Update product quantity in cart."""
        storefront = get_storefront(request)
        state = storefront.require_ready()
        success = await state.cart.set_quantity(body.product_id, body.quantity)
        message = (
            f"Updated product {body.product_id} to quantity {body.quantity}"
            if success
            else f"Failed to update product {body.product_id} quantity"
        )
        return _result(storefront, success, message)

    @app.post("/cart/remove")
    async def remove_from_cart(request: Request, body: RemoveFromCartRequest):
        """Remove a product from the cart."""
        storefront = get_storefront(request)
        state = storefront.require_ready()
        success = await state.cart.remove_item(body.product_id)
        message = (
            f"Removed product {body.product_id} from cart"
            if success
            else f"Failed to remove product {body.product_id}"
        )
        return _result(storefront, success, message)

    @app.post("/cart/clear")
    async def clear_cart(request: Request, body: ClearCartRequest):
        """Empty the cart. Without confirm=true nothing is changed."""
        storefront = get_storefront(request)
        state = storefront.require_ready()
        outcome = await state.cart.clear(confirm=answer(body.confirm))
        messages = {
            ClearOutcome.CLEARED: "Your cart is now empty",
            ClearOutcome.CANCELLED: "Remove every item from your cart? Send confirm=true to proceed.",
            ClearOutcome.FAILED: "Failed to empty the cart",
        }
        return _result(
            storefront, outcome == ClearOutcome.CLEARED, messages[outcome], outcome=outcome.value
        )

    # Checkout endpoints
    @app.get("/checkout")
    async def checkout_status(request: Request):
        """Current checkout step."""
        return checkout_view(get_storefront(request))

    @app.post("/checkout/start")
    async def checkout_start(request: Request):
        """Start (or restart) checkout."""
        storefront = get_storefront(request)
        checkout = storefront.require_ready().checkout
        if checkout.step in (CheckoutStep.CLOSED, CheckoutStep.CONFIRMED):
            checkout.reopen()
        success = checkout.proceed_to_shipping()
        return _result(storefront, success, checkout.step.value, checkout=checkout_view(storefront))

    @app.post("/checkout/shipping")
    async def checkout_shipping(request: Request, body: ShippingRequest):
        """Submit shipping details."""
        storefront = get_storefront(request)
        checkout = storefront.require_ready().checkout
        success = checkout.submit_shipping(body.model_dump())
        return _result(storefront, success, checkout.step.value, checkout=checkout_view(storefront))

    @app.post("/checkout/back")
    async def checkout_back(request: Request):
        """Go back one step."""
        storefront = get_storefront(request)
        step = storefront.require_ready().checkout.back()
        return _result(storefront, True, step.value, checkout=checkout_view(storefront))

    @app.post("/checkout/payment")
    async def checkout_payment(request: Request, body: PaymentInfo):
        """Submit payment and confirm the order."""
        storefront = get_storefront(request)
        outcome = await storefront.require_ready().checkout.confirm_payment(body)
        return _result(
            storefront,
            outcome.cart_cleared,
            outcome.error or "Order confirmed",
            checkout=checkout_view(storefront),
        )

    @app.post("/checkout/retry-clear")
    async def checkout_retry_clear(request: Request):
        """Retry emptying the cart after a confirmed order."""
        storefront = get_storefront(request)
        outcome = await storefront.require_ready().checkout.retry_clear()
        return _result(
            storefront,
            outcome.cart_cleared,
            outcome.error or "Cart emptied",
            checkout=checkout_view(storefront),
        )

    @app.post("/checkout/close")
    async def checkout_close(request: Request):
        """Close checkout."""
        storefront = get_storefront(request)
        storefront.require_ready().checkout.close()
        return _result(storefront, True, "closed", checkout=checkout_view(storefront))

    # Counter endpoints
    @app.get("/counter")
    async def get_counter(request: Request):
        """Shared click counter value."""
        return {"count": get_storefront(request).require_ready().counter.count}

    @app.post("/counter/increment")
    async def increment_counter(request: Request):
        """Increment the shared click counter."""
        storefront = get_storefront(request)
        counter = storefront.require_ready().counter
        value = await counter.increment()
        if value is None:
            return _result(storefront, False, "failed", count=counter.count)
        return _result(storefront, True, "incremented", count=value)

    return app


app = create_app()


def run_http_server(host: str = "0.0.0.0", port: int = 8000, reload: bool = False):
    """
    Run the HTTP server.

    Args:
        host: Host to bind to (default: 0.0.0.0)
        port: Port to bind to (default: 8000)
        reload: Enable hot reloading (default: False)
    """
    import uvicorn

    logger.info(f"Starting server on {host}:{port} (reload={'enabled' if reload else 'disabled'})")

    if reload:
        # Hot reloading - watches for file changes
        uvicorn.run(
            "storefront_server.http_server:app",
            host=host,
            port=port,
            reload=True,
            reload_dirs=["storefront_server"],
            log_level="info",
        )
    else:
        uvicorn.run(app, host=host, port=port, log_level="info")


if __name__ == "__main__":
    run_http_server(reload=True)
