"""MCP Server for the storefront."""

import asyncio
import json
import logging
from typing import Any

from mcp.server import Server
from mcp.types import Resource, TextContent, Tool
from pydantic import AnyUrl

from .config import load_settings
from .errors import StorefrontError
from .models import CheckoutStep, ClearOutcome, PaymentInfo, format_price
from .notices import answer
from .storefront import Storefront

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("storefront-mcp-server")

EMPTY = {"type": "object", "properties": {}}
PRODUCT_ID = {"type": "string", "description": "Product ID (from storefront_list_products)"}

TOOLS = [
    Tool(
        name="storefront_status",
        description="Show connection status and the current session",
        inputSchema=EMPTY,
    ),
    Tool(
        name="storefront_list_products",
        description="List the products in the catalog",
        inputSchema={
            "type": "object",
            "properties": {
                "category": {
                    "type": "string",
                    "description": "Only list products of this category (optional)",
                },
            },
        },
    ),
    Tool(
        name="storefront_get_product",
        description="Get full details for one product",
        inputSchema={
            "type": "object",
            "properties": {"product_id": PRODUCT_ID},
            "required": ["product_id"],
        },
    ),
    Tool(
        name="storefront_get_cart",
        description="Get current shopping cart contents with all items and total",
        inputSchema=EMPTY,
    ),
    Tool(
        name="storefront_add_to_cart",
        description="Add a product to the shopping cart. Adding a product already in the cart increases its quantity",
        inputSchema={
            "type": "object",
            "properties": {
                "product_id": PRODUCT_ID,
                "quantity": {
                    "type": "integer",
                    "description": "Quantity to add (default: 1)",
                    "default": 1,
                },
            },
            "required": ["product_id"],
        },
    ),
    Tool(
        name="storefront_update_cart_quantity",
        description="Set the quantity of a product in the cart. 0 removes it",
        inputSchema={
            "type": "object",
            "properties": {
                "product_id": PRODUCT_ID,
                "quantity": {"type": "integer", "description": "New quantity to set"},
            },
            "required": ["product_id", "quantity"],
        },
    ),
    Tool(
        name="storefront_remove_from_cart",
        description="Remove a product from the shopping cart",
        inputSchema={
            "type": "object",
            "properties": {"product_id": PRODUCT_ID},
            "required": ["product_id"],
        },
    ),
    Tool(
        name="storefront_clear_cart",
        description="Empty the shopping cart. Call once to see the prompt, then again with confirm=true",
        inputSchema={
            "type": "object",
            "properties": {
                "confirm": {
                    "type": "boolean",
                    "description": "Set to true to confirm emptying the cart",
                    "default": False,
                },
            },
        },
    ),
    Tool(
        name="storefront_checkout_status",
        description="Show the current checkout step and the next possible steps",
        inputSchema=EMPTY,
    ),
    Tool(
        name="storefront_checkout_start",
        description="Start checkout (cart -> shipping). Requires a non-empty cart; reopens a closed checkout",
        inputSchema=EMPTY,
    ),
    Tool(
        name="storefront_checkout_shipping",
        description="Submit shipping details (shipping -> payment). All fields are required",
        inputSchema={
            "type": "object",
            "properties": {
                "name": {"type": "string", "description": "Full name"},
                "email": {"type": "string", "description": "Email address"},
                "address": {"type": "string", "description": "Street address"},
                "city": {"type": "string", "description": "City"},
            },
            "required": ["name", "email", "address", "city"],
        },
    ),
    Tool(
        name="storefront_checkout_back",
        description="Go back one checkout step (payment -> shipping -> cart)",
        inputSchema=EMPTY,
    ),
    Tool(
        name="storefront_checkout_pay",
        description="Submit payment and confirm the order (payment -> confirmed). Empties the cart",
        inputSchema={
            "type": "object",
            "properties": {
                "card_number": {"type": "string", "description": "Card number"},
                "expiry": {"type": "string", "description": "Expiry date (MM/YY)"},
                "cvc": {"type": "string", "description": "Security code"},
            },
        },
    ),
    Tool(
        name="storefront_checkout_retry_clear",
        description="Retry emptying the cart after a confirmed order whose cart could not be emptied",
        inputSchema=EMPTY,
    ),
    Tool(
        name="storefront_checkout_close",
        description="Close checkout without side effects",
        inputSchema=EMPTY,
    ),
    Tool(
        name="counter_get",
        description="Get the shared click counter value",
        inputSchema=EMPTY,
    ),
    Tool(
        name="counter_increment",
        description="Increment the shared click counter",
        inputSchema=EMPTY,
    ),
]


def render_cart(storefront: Storefront) -> str:
    state = storefront.require_ready()
    cart = state.cart.cart
    if not cart.lines:
        return "Your cart is empty"

    result_lines = [f"Shopping Cart ({cart.item_count} items):\n"]
    for i, line in enumerate(cart.lines, 1):
        result_lines.append(f"\n{i}. {line.name}")
        result_lines.append(f"   Product ID: {line.product_id}")
        result_lines.append(f"   Price: {format_price(line.price)}")
        result_lines.append(f"   Quantity: {line.quantity}")
        result_lines.append(f"   Subtotal: {format_price(line.line_total)}")

    result_lines.append(f"\n{'='*50}")
    result_lines.append(f"Total: {format_price(cart.total)}")
    return "\n".join(result_lines)


def render_checkout(storefront: Storefront) -> str:
    state = storefront.require_ready()
    checkout = state.checkout
    result_lines = [f"Checkout step: {checkout.step.value}"]
    if checkout.errors:
        result_lines.append(f"Missing fields: {', '.join(checkout.errors)}")
    if checkout.shipping and checkout.step in (CheckoutStep.PAYMENT, CheckoutStep.CONFIRMED):
        s = checkout.shipping
        result_lines.append(f"Ship to: {s.name} <{s.email}>, {s.address}, {s.city}")
    if checkout.outcome:
        outcome = checkout.outcome
        result_lines.append(f"Order total: {format_price(outcome.total)}")
        result_lines.append(f"Payment acknowledged: {'Yes' if outcome.payment_acknowledged else 'No'}")
        result_lines.append(f"Cart emptied: {'Yes' if outcome.cart_cleared else 'No'}")
    next_steps = ", ".join(step.value for step in checkout.available_transitions())
    result_lines.append(f"Next: {next_steps or 'none'}")
    return "\n".join(result_lines)


async def handle_tool(storefront: Storefront, name: str, arguments: dict[str, Any]) -> str:
    """
    Run one tool call and return its text result.

    Raises:
        StorefrontError: For not-ready or invalid-step conditions
        ValueError: For unknown tools
    """
    if name == "storefront_status":
        state = storefront.state
        session = state.auth.session_id if state.auth else None
        return "\n".join(
            [
                f"Ready: {'Yes' if state.ready else 'No'}",
                f"Status: {state.status or 'OK'}",
                f"App: {state.settings.app_id}",
                f"Session: {session or 'none'}",
            ]
        )

    state = storefront.require_ready()

    if name == "storefront_list_products":
        category = arguments.get("category")
        products = state.catalog.list()
        if category:
            products = [p for p in products if p.category.lower() == category.lower()]
        if not products:
            return "No products found" + (f" in category: {category}" if category else "")

        result_lines = [f"Found {len(products)} product(s):\n"]
        for i, product in enumerate(products, 1):
            result_lines.append(f"\n{i}. {product.name}")
            result_lines.append(f"   ID: {product.id}")
            if product.category:
                result_lines.append(f"   Category: {product.category}")
            if product.discount_price is not None:
                result_lines.append(
                    f"   Price: {format_price(product.discount_price)} (was {format_price(product.price)})"
                )
            else:
                result_lines.append(f"   Price: {format_price(product.price)}")
            result_lines.append(f"   Rating: {product.rating:.1f} ({product.review_count} reviews)")
        if state.catalog.stale:
            result_lines.append("\n(Showing the last known catalog)")
        return "\n".join(result_lines)

    if name == "storefront_get_product":
        product = state.catalog.find_by_id(arguments["product_id"])
        if product is None:
            return f"Product {arguments['product_id']} not found"
        return product.model_dump_json(indent=2)

    if name == "storefront_get_cart":
        return render_cart(storefront)

    if name == "storefront_add_to_cart":
        product_id = arguments["product_id"]
        quantity = int(arguments.get("quantity", 1))
        product = state.catalog.find_by_id(product_id)
        if product is None:
            return f"Product {product_id} not found"
        logger.info(f"Adding to cart: {product_id}")
        if await state.cart.add_item(product, quantity):
            return f"Successfully added {product.name} (quantity: {quantity}) to cart"
        return f"Failed to add product {product_id} to cart"

    if name == "storefront_update_cart_quantity":
        product_id = arguments["product_id"]
        quantity = int(arguments["quantity"])
        if await state.cart.set_quantity(product_id, quantity):
            if quantity <= 0:
                return f"Removed product {product_id} from cart"
            return f"Successfully updated product {product_id} to quantity {quantity}"
        return f"Failed to update product {product_id} quantity"

    if name == "storefront_remove_from_cart":
        product_id = arguments["product_id"]
        if await state.cart.remove_item(product_id):
            return f"Successfully removed product {product_id} from cart"
        return f"Failed to remove product {product_id} from cart"

    if name == "storefront_clear_cart":
        outcome = await state.cart.clear(confirm=answer(bool(arguments.get("confirm", False))))
        if outcome == ClearOutcome.CANCELLED:
            return "Remove every item from your cart? Call again with confirm=true to proceed. Nothing was changed."
        if outcome == ClearOutcome.CLEARED:
            return "Your cart is now empty"
        return "Failed to empty the cart"

    if name == "storefront_checkout_status":
        return render_checkout(storefront)

    if name == "storefront_checkout_start":
        checkout = state.checkout
        if checkout.step in (CheckoutStep.CLOSED, CheckoutStep.CONFIRMED):
            checkout.reopen()
        checkout.proceed_to_shipping()
        return render_checkout(storefront)

    if name == "storefront_checkout_shipping":
        state.checkout.submit_shipping(arguments)
        return render_checkout(storefront)

    if name == "storefront_checkout_back":
        state.checkout.back()
        return render_checkout(storefront)

    if name == "storefront_checkout_pay":
        payment = PaymentInfo(
            card_number=str(arguments.get("card_number", "")),
            expiry=str(arguments.get("expiry", "")),
            cvc=str(arguments.get("cvc", "")),
        )
        await state.checkout.confirm_payment(payment)
        return render_checkout(storefront)

    if name == "storefront_checkout_retry_clear":
        await state.checkout.retry_clear()
        return render_checkout(storefront)

    if name == "storefront_checkout_close":
        state.checkout.close()
        return render_checkout(storefront)

    if name == "counter_get":
        return f"Counter: {state.counter.count}"

    if name == "counter_increment":
        value = await state.counter.increment()
        if value is not None:
            return f"Counter set to {value} (counter_get shows it once the update arrives)"
        return "Failed to update the counter"

    raise ValueError(f"Unknown tool: {name}")


def create_server(storefront: Storefront) -> Server:
    """Build an MCP server bound to one storefront."""
    app = Server("storefront-mcp-server")

    @app.list_resources()
    async def list_resources() -> list[Resource]:
        """List available resources."""
        resources = []

        if storefront.state.ready:
            resources.extend(
                [
                    Resource(
                        uri=AnyUrl("storefront://cart"),
                        name="Shopping Cart",
                        mimeType="application/json",
                        description="Current shopping cart contents",
                    ),
                    Resource(
                        uri=AnyUrl("storefront://products"),
                        name="Products",
                        mimeType="application/json",
                        description="Product catalog",
                    ),
                ]
            )

        return resources

    @app.read_resource()
    async def read_resource(uri: AnyUrl) -> str:
        """Read a resource by URI."""
        uri_str = str(uri)
        if not storefront.state.ready:
            return f"Error: {storefront.state.status or 'Not ready'}"

        if uri_str == "storefront://cart":
            return json.dumps(storefront.state.cart.cart.summary(), indent=2)

        elif uri_str == "storefront://products":
            products = [p.model_dump() for p in storefront.state.catalog.list()]
            return json.dumps(products, indent=2)

        raise ValueError(f"Unknown resource: {uri}")

    @app.list_tools()
    async def list_tools() -> list[Tool]:
        """List available tools."""
        return TOOLS

    @app.call_tool()
    async def call_tool(name: str, arguments: Any) -> list[TextContent]:
        """Handle tool calls."""
        try:
            text = await handle_tool(storefront, name, arguments or {})
        except StorefrontError as e:
            text = f"Error: {e}"
        except Exception as e:
            logger.error(f"Error executing tool {name}: {e}", exc_info=True)
            text = f"Error: {str(e)}"

        notices = storefront.notify.drain()
        if notices:
            text += "\n\n" + "\n".join(f"[{n.kind.value}] {n.message}" for n in notices)
        return [TextContent(type="text", text=text)]

    return app


async def main() -> None:
    """Main entry point for the MCP server."""
    settings = load_settings()
    storefront = Storefront(settings)

    if not await storefront.start():
        logger.warning(f"Starting in display-only mode: {storefront.state.status}")

    logger.info("Starting Storefront MCP Server...")
    app = create_server(storefront)

    # Import and run the server
    from mcp.server.stdio import stdio_server

    try:
        async with stdio_server() as (read_stream, write_stream):
            await app.run(
                read_stream,
                write_stream,
                app.create_initialization_options(),
            )
    finally:
        await storefront.stop()


if __name__ == "__main__":
    asyncio.run(main())
