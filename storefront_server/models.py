"""Data models for storefront entities."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .errors import ValidationFailure


def format_price(cents: int, currency: str = "€") -> str:
    """Render an amount in the smallest currency unit, e.g. 1999 -> '€19.99'."""
    sign = "-" if cents < 0 else ""
    return f"{sign}{currency}{abs(cents) // 100}.{abs(cents) % 100:02d}"


class Document(BaseModel):
    """A document as delivered by the store: its id and field map."""

    id: str
    data: dict[str, Any] = Field(default_factory=dict)


class Product(BaseModel):
    """Represents a catalog product."""

    id: str = Field(description="Store-assigned product ID")
    name: str = Field(description="Product name")
    price: int = Field(ge=0, description="Base price in the smallest currency unit")
    discount_price: Optional[int] = Field(None, ge=0, description="Discounted price if on sale")
    image_url: Optional[str] = Field(None, description="Product image URL")
    description: str = Field("", description="Product description")
    category: str = Field("", description="Product category")
    rating: float = Field(0, ge=0, le=5, description="Average rating (0-5)")
    review_count: int = Field(0, ge=0, description="Number of reviews")

    @model_validator(mode="after")
    def _discount_below_price(self) -> "Product":
        if self.discount_price is not None and self.discount_price >= self.price:
            raise ValueError("discount_price must be lower than price")
        return self

    @property
    def effective_price(self) -> int:
        """Price a customer pays right now."""
        if self.discount_price is not None:
            return self.discount_price
        return self.price

    @classmethod
    def from_document(cls, doc: Document) -> "Product":
        return cls(id=doc.id, **{k: v for k, v in doc.data.items() if k != "id"})


class CartLine(BaseModel):
    """One cart entry, keyed by product ID within a session's cart."""

    product_id: str
    name: str
    price: int = Field(ge=0, description="Unit price captured when the line was added")
    image_url: Optional[str] = None
    quantity: int = Field(gt=0)

    @property
    def line_total(self) -> int:
        return self.price * self.quantity

    @classmethod
    def from_product(cls, product: Product, quantity: int) -> "CartLine":
        """Build a new line, copying the product fields as they are now."""
        return cls(
            product_id=product.id,
            name=product.name,
            price=product.effective_price,
            image_url=product.image_url,
            quantity=quantity,
        )

    @classmethod
    def from_document(cls, doc: Document) -> "CartLine":
        data = dict(doc.data)
        data.setdefault("product_id", doc.id)
        return cls(**data)

    def to_fields(self) -> dict[str, Any]:
        return self.model_dump()


class Cart(BaseModel):
    """The visible cart: the lines of the last cart snapshot."""

    lines: list[CartLine] = Field(default_factory=list)

    @property
    def line_count(self) -> int:
        return len(self.lines)

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.lines)

    @property
    def total(self) -> int:
        return sum(line.line_total for line in self.lines)

    def get(self, product_id: str) -> Optional[CartLine]:
        for line in self.lines:
            if line.product_id == product_id:
                return line
        return None

    def summary(self) -> dict[str, Any]:
        """JSON-friendly view including the derived totals."""
        return {
            "lines": [
                {**line.model_dump(), "line_total": line.line_total} for line in self.lines
            ],
            "line_count": self.line_count,
            "item_count": self.item_count,
            "total": self.total,
        }


SHIPPING_FIELDS = ("name", "email", "address", "city")


class ShippingInfo(BaseModel):
    """Shipping details collected during checkout. Never persisted."""

    name: str
    email: str
    address: str
    city: str

    @field_validator("name", "email", "address", "city", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> str:
        return str(value).strip() if value is not None else ""

    @classmethod
    def from_form(cls, form: dict[str, Any]) -> "ShippingInfo":
        """
        Build shipping info from raw form input.

        Raises:
            ValidationFailure: If any field is missing or blank after trimming
        """
        missing = [
            name for name in SHIPPING_FIELDS if not str(form.get(name) or "").strip()
        ]
        if missing:
            raise ValidationFailure(
                f"Please fill in: {', '.join(missing)}", missing=missing
            )
        return cls(**{name: form[name] for name in SHIPPING_FIELDS})


class PaymentInfo(BaseModel):
    """Payment details. Collected but not validated, never persisted or logged."""

    card_number: str = ""
    expiry: str = ""
    cvc: str = ""

    def __repr__(self) -> str:
        return "PaymentInfo(<redacted>)"

    __str__ = __repr__


class CheckoutStep(str, Enum):
    """Checkout states."""

    CART = "cart"
    SHIPPING = "shipping"
    PAYMENT = "payment"
    CONFIRMED = "confirmed"
    CLOSED = "closed"


class ClearOutcome(str, Enum):
    """Result of a cart clear request."""

    CLEARED = "cleared"
    CANCELLED = "cancelled"
    FAILED = "failed"


class ConfirmationOutcome(BaseModel):
    """What happened when the payment step was submitted."""

    payment_acknowledged: bool
    cart_cleared: bool
    lines: list[CartLine] = Field(default_factory=list)
    total: int = 0
    error: Optional[str] = None


class NoticeKind(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class Notice(BaseModel):
    """A user-visible message produced by the core."""

    kind: NoticeKind
    message: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SessionData(BaseModel):
    """Session data for the signed-in identity."""

    session_id: Optional[str] = Field(None, description="Opaque session identity")
    id_token: Optional[str] = Field(None, description="Bearer token for the store")
    refresh_token: Optional[str] = Field(None, description="Token used to renew id_token")
    expires_at: Optional[datetime] = Field(None, description="id_token expiry")
    anonymous: bool = Field(default=True, description="Signed in without a token")
    provider: Optional[str] = Field(None, description="Identity provider that issued the session")

    @property
    def is_authenticated(self) -> bool:
        return bool(self.session_id)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        return now >= self.expires_at
