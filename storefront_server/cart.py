"""Cart store adapter: per-session cart mutations and the mirrored cart view."""

import asyncio
import logging
from typing import Optional

from pydantic import ValidationError

from .errors import NotReady, RemoteOpFailure
from .mirror import SnapshotMirror
from .models import Cart, CartLine, ClearOutcome, Document, NoticeKind, Product
from .notices import Confirm, Notify
from .policy import RetryPolicy
from .store import DocumentStore, cart_path

logger = logging.getLogger(__name__)

CLEAR_PROMPT = "Remove every item from your cart?"


class CartStoreAdapter(SnapshotMirror):
    """
    Maps cart operations onto documents under artifacts/{app}/users/{session}/cart.

    The visible cart is only ever the last subscription snapshot; mutations
    do not patch it locally. Mutations are serialized through one lock so
    overlapping calls from this process never interleave their
    read-modify-write steps.
    """

    label = "your cart"

    def __init__(
        self,
        store: DocumentStore,
        app_id: str,
        notify: Notify,
        confirm: Confirm,
        retry: RetryPolicy = RetryPolicy(),
    ) -> None:
        super().__init__(store, notify, retry)
        self.app_id = app_id
        self.confirm = confirm
        self.session_id: Optional[str] = None
        self._cart = Cart()
        self._lock = asyncio.Lock()

    # Session binding

    def attach(self, session_id: Optional[str]) -> None:
        """Follow the cart of session_id; None detaches."""
        if session_id == self.session_id and self.active:
            return
        self.detach()
        if session_id is None:
            return
        self.session_id = session_id
        self.activate(cart_path(self.app_id, session_id))

    def detach(self) -> None:
        self.teardown()
        self.session_id = None
        self._cart = Cart()

    def apply(self, docs: list[Document]) -> None:
        lines = []
        for doc in docs:
            try:
                lines.append(CartLine.from_document(doc))
            except ValidationError:
                logger.warning(f"Skipping malformed cart line {doc.id}")
        self._cart = Cart(lines=lines)

    # Views

    @property
    def cart(self) -> Cart:
        return self._cart

    @property
    def line_count(self) -> int:
        return self._cart.line_count

    def _line_path(self, product_id: str) -> str:
        return f"{cart_path(self.app_id, self._require_session())}/{product_id}"

    def _report(self, action: str, error: RemoteOpFailure) -> None:
        logger.error(f"Error {action}: {error}")
        self.notify(f"Error {action}. Please try again.", NoticeKind.ERROR)

    # Mutations

    async def add_item(self, product: Product, quantity: int = 1) -> bool:
        """
        Add quantity units of product, merging into an existing line.

        Returns:
            True if the store accepted the change

        Raises:
            NotReady: If no session is attached
        """
        path = self._line_path(product.id)
        if quantity <= 0:
            self.notify("Quantity must be at least 1.", NoticeKind.WARNING)
            return False

        async with self._lock:
            try:
                existing = await self.store.get(path)
                if existing is not None:
                    current = int(existing.data.get("quantity", 0))
                    await self.store.update(path, {"quantity": current + quantity})
                else:
                    line = CartLine.from_product(product, quantity)
                    await self.store.set(path, line.to_fields())
            except RemoteOpFailure as e:
                self._report("adding to cart", e)
                return False

        logger.info(f"Added {quantity} x {product.id} to cart")
        self.notify(f"Added {product.name} to your cart.", NoticeKind.SUCCESS)
        return True

    async def set_quantity(self, product_id: str, quantity: int) -> bool:
        """Overwrite the quantity of a line; zero or less removes it."""
        path = self._line_path(product_id)
        async with self._lock:
            try:
                if quantity <= 0:
                    await self.store.delete(path)
                else:
                    await self.store.update(path, {"quantity": quantity})
            except RemoteOpFailure as e:
                self._report("updating the quantity", e)
                return False
        return True

    async def remove_item(self, product_id: str) -> bool:
        """Delete a line. Removing an absent line succeeds."""
        path = self._line_path(product_id)
        async with self._lock:
            try:
                await self.store.delete(path)
            except RemoteOpFailure as e:
                self._report("removing the item", e)
                return False
        return True

    async def clear(self, confirm: Optional[Confirm] = None) -> ClearOutcome:
        """
        Ask for confirmation, then empty the cart.

        A declined prompt makes no remote call at all.

        Args:
            confirm: Overrides the adapter's confirmation capability for this call
        """
        self._require_session()
        if not await (confirm or self.confirm)(CLEAR_PROMPT):
            logger.info("Cart clear cancelled")
            return ClearOutcome.CANCELLED
        return await self.empty()

    async def empty(self) -> ClearOutcome:
        """
        Delete every line and wait for all deletes to finish. No prompt.

        Succeeds only if every delete succeeded.
        """
        collection = cart_path(self.app_id, self._require_session())
        async with self._lock:
            try:
                docs = await self.store.list_collection(collection)
            except RemoteOpFailure as e:
                self._report("emptying the cart", e)
                return ClearOutcome.FAILED

            results = await asyncio.gather(
                *(self.store.delete(f"{collection}/{doc.id}") for doc in docs),
                return_exceptions=True,
            )
            failures = [r for r in results if isinstance(r, BaseException)]
            for failure in failures:
                if not isinstance(failure, RemoteOpFailure):
                    raise failure
            if failures:
                logger.error(f"{len(failures)} of {len(docs)} cart deletes failed")
                self._report("emptying the cart", failures[0])
                return ClearOutcome.FAILED

        logger.info(f"Cart emptied ({len(docs)} line(s))")
        return ClearOutcome.CLEARED

    def _require_session(self) -> str:
        if self.session_id is None:
            raise NotReady("The cart is not ready yet. Please wait for sign-in to finish.")
        return self.session_id
