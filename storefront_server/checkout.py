"""Checkout state machine: cart -> shipping -> payment -> confirmed."""

import logging
from typing import Any, Optional

from .cart import CartStoreAdapter
from .errors import InvalidTransition, ValidationFailure
from .models import (
    CheckoutStep,
    ClearOutcome,
    ConfirmationOutcome,
    NoticeKind,
    PaymentInfo,
    ShippingInfo,
)
from .notices import Notify

logger = logging.getLogger(__name__)


class CheckoutSession:
    """
    Walks one user through checkout.

    Transitions that are not allowed from the current step raise
    InvalidTransition. Guards that fail on user input (empty cart,
    incomplete shipping form) emit a notice and leave the step unchanged.

    Confirming payment and emptying the cart are separate outcomes: a cart
    that could not be emptied is reported on its own and can be retried
    with retry_clear() while in CONFIRMED.
    """

    def __init__(self, cart: CartStoreAdapter, notify: Notify) -> None:
        self.cart = cart
        self.notify = notify
        self.step = CheckoutStep.CART
        self.shipping: Optional[ShippingInfo] = None
        self.payment: Optional[PaymentInfo] = None
        self.outcome: Optional[ConfirmationOutcome] = None
        self.errors: list[str] = []

    def _require(self, *steps: CheckoutStep) -> None:
        if self.step not in steps:
            allowed = ", ".join(step.value for step in steps)
            raise InvalidTransition(
                f"Cannot do that during the '{self.step.value}' step (allowed in: {allowed})"
            )

    def _move(self, step: CheckoutStep) -> CheckoutStep:
        logger.info(f"Checkout {self.step.value} -> {step.value}")
        self.step = step
        self.errors = []
        return step

    @property
    def can_proceed_to_shipping(self) -> bool:
        return self.step == CheckoutStep.CART and self.cart.line_count > 0

    def available_transitions(self) -> list[CheckoutStep]:
        """Steps reachable from here, in the order a UI would offer them."""
        if self.step == CheckoutStep.CART:
            targets = [CheckoutStep.SHIPPING] if self.can_proceed_to_shipping else []
        elif self.step == CheckoutStep.SHIPPING:
            targets = [CheckoutStep.PAYMENT, CheckoutStep.CART]
        elif self.step == CheckoutStep.PAYMENT:
            targets = [CheckoutStep.CONFIRMED, CheckoutStep.SHIPPING]
        elif self.step == CheckoutStep.CLOSED:
            return [CheckoutStep.CART]
        else:
            targets = []
        return targets + [CheckoutStep.CLOSED]

    def proceed_to_shipping(self) -> bool:
        """Leave the cart for the shipping form. Not offered with an empty cart."""
        self._require(CheckoutStep.CART)
        if not self.can_proceed_to_shipping:
            self.notify("Your cart is empty.", NoticeKind.WARNING)
            return False
        self._move(CheckoutStep.SHIPPING)
        return True

    def submit_shipping(self, form: dict[str, Any]) -> bool:
        """
        Validate the shipping form and advance to payment.

        Returns:
            True if the step advanced; False keeps SHIPPING and sets errors
        """
        self._require(CheckoutStep.SHIPPING)
        try:
            info = ShippingInfo.from_form(form)
        except ValidationFailure as e:
            self.errors = e.missing
            self.notify(str(e), NoticeKind.WARNING)
            return False
        if self.cart.line_count == 0:
            self.notify("Your cart is empty.", NoticeKind.WARNING)
            return False
        self.shipping = info
        self._move(CheckoutStep.PAYMENT)
        return True

    def back(self) -> CheckoutStep:
        """Shipping -> cart or payment -> shipping. Keeps cart and form data."""
        self._require(CheckoutStep.SHIPPING, CheckoutStep.PAYMENT)
        if self.step == CheckoutStep.SHIPPING:
            return self._move(CheckoutStep.CART)
        return self._move(CheckoutStep.SHIPPING)

    async def confirm_payment(self, payment: Optional[PaymentInfo] = None) -> ConfirmationOutcome:
        """Acknowledge the payment, enter CONFIRMED and empty the cart."""
        self._require(CheckoutStep.PAYMENT)
        cart = self.cart.cart
        if cart.line_count == 0:
            raise InvalidTransition("Your cart is empty.")
        self.payment = payment or PaymentInfo()
        self._move(CheckoutStep.CONFIRMED)
        self.outcome = ConfirmationOutcome(
            payment_acknowledged=True,
            cart_cleared=False,
            lines=list(cart.lines),
            total=cart.total,
        )
        self.notify("Payment received. Thank you for your order!", NoticeKind.SUCCESS)
        return await self._clear_after_confirmation()

    async def retry_clear(self) -> ConfirmationOutcome:
        """Try again to empty the cart of a confirmed order."""
        self._require(CheckoutStep.CONFIRMED)
        assert self.outcome is not None
        if self.outcome.cart_cleared:
            return self.outcome
        return await self._clear_after_confirmation()

    async def _clear_after_confirmation(self) -> ConfirmationOutcome:
        assert self.outcome is not None
        result = await self.cart.empty()
        if result == ClearOutcome.CLEARED:
            self.outcome = self.outcome.model_copy(update={"cart_cleared": True, "error": None})
        else:
            message = "Your order is confirmed, but the cart could not be emptied."
            self.outcome = self.outcome.model_copy(update={"cart_cleared": False, "error": message})
            self.notify(message, NoticeKind.ERROR)
        return self.outcome

    def close(self) -> None:
        """Dismiss checkout from any step. No side effects."""
        self._move(CheckoutStep.CLOSED)

    def reopen(self) -> None:
        """Start over at the cart with the form data discarded."""
        self.shipping = None
        self.payment = None
        self.outcome = None
        self._move(CheckoutStep.CART)
