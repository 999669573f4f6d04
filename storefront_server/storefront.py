"""Application state: wires store, identity, catalog, cart, checkout and counter."""

import logging
from dataclasses import dataclass, field
from typing import Optional

from .auth import AuthManager
from .cart import CartStoreAdapter
from .catalog import CatalogCache
from .checkout import CheckoutSession
from .config import Settings
from .counter import ClickCounter
from .errors import AuthFailure, ConfigUnavailable, NotReady
from .firestore import FirestoreDocumentStore
from .identity import FirebaseIdentityClient, IdentityProvider, LocalIdentityProvider
from .models import NoticeKind, Product
from .notices import Confirm, NoticeBoard, answer
from .policy import GuardedStore, RetryPolicy
from .store import DocumentStore, MemoryDocumentStore, products_path

logger = logging.getLogger(__name__)


@dataclass
class AppState:
    """Everything the surfaces need, passed explicitly instead of module globals."""

    settings: Settings
    notices: NoticeBoard = field(default_factory=NoticeBoard)
    status: str = "Loading..."
    ready: bool = False
    store: Optional[DocumentStore] = None
    auth: Optional[AuthManager] = None
    catalog: Optional[CatalogCache] = None
    cart: Optional[CartStoreAdapter] = None
    checkout: Optional[CheckoutSession] = None
    counter: Optional[ClickCounter] = None


class Storefront:
    """
    Owns the application state for one session.

    start() never raises for configuration or sign-in problems: it records
    them in state.status and leaves the storefront in display-only mode.
    """

    def __init__(
        self,
        settings: Settings,
        store: Optional[DocumentStore] = None,
        identity: Optional[IdentityProvider] = None,
        confirm: Optional[Confirm] = None,
    ) -> None:
        """
        Initialize the storefront.

        Args:
            settings: Process settings
            store: Store to use instead of the one selected by settings
            identity: Identity provider to use instead of the one selected by settings
            confirm: Confirmation capability; defaults to declining every prompt
        """
        self.state = AppState(settings=settings)
        self._store = store
        self._identity = identity
        self._confirm = confirm or answer(False)
        self._remove_auth_listener = None

    @property
    def notify(self) -> NoticeBoard:
        return self.state.notices

    def _build_identity(self) -> IdentityProvider:
        settings = self.state.settings
        if self._identity is not None:
            return self._identity
        if settings.backend == "memory":
            return LocalIdentityProvider()
        assert settings.backend_config is not None
        return FirebaseIdentityClient(settings.backend_config, timeout=settings.request_timeout)

    def _build_store(self, auth: AuthManager) -> DocumentStore:
        settings = self.state.settings
        if self._store is not None:
            inner = self._store
        elif settings.backend == "memory":
            inner = MemoryDocumentStore()
        else:
            assert settings.backend_config is not None
            inner = FirestoreDocumentStore(
                settings.backend_config,
                token_provider=auth.id_token,
                poll_interval=settings.poll_interval,
            )
        return GuardedStore(inner, timeout=settings.request_timeout, retry=self.retry_policy)

    @property
    def retry_policy(self) -> RetryPolicy:
        settings = self.state.settings
        return RetryPolicy(attempts=settings.retry_attempts, backoff_initial=settings.retry_backoff)

    async def start(self) -> bool:
        """
        Configure, sign in and start every subscription.

        Returns:
            True when remote features are available
        """
        state = self.state
        settings = state.settings
        if state.ready:
            return True

        if not settings.remote_enabled:
            logger.error(f"Storefront disabled: {settings.config_error}")
            state.status = f"Error: {settings.config_error or 'Backend configuration is not available.'}"
            self.notify(state.status, NoticeKind.ERROR)
            return False

        if state.auth is None:
            state.auth = AuthManager(self._build_identity(), session_file=settings.session_file)
        if state.store is None:
            state.store = self._build_store(state.auth)

        try:
            await state.auth.sign_in(settings.initial_auth_token)
        except AuthFailure as e:
            logger.error(f"Sign-in failed: {e}")
            state.status = "Could not sign in. Please try again."
            self.notify(state.status, NoticeKind.ERROR)
            return False

        retry = self.retry_policy
        state.catalog = CatalogCache(state.store, self.notify, retry)
        state.cart = CartStoreAdapter(state.store, settings.app_id, self.notify, self._confirm, retry)
        state.checkout = CheckoutSession(state.cart, self.notify)
        state.counter = ClickCounter(state.store, settings.app_id, self.notify, retry)

        state.catalog.activate(products_path(settings.app_id))
        self._remove_auth_listener = state.auth.on_auth_state_change(state.cart.attach)
        state.cart.attach(state.auth.session_id)
        state.counter.start()

        state.ready = True
        state.status = ""
        logger.info(f"Storefront ready for app {settings.app_id}")
        return True

    async def stop(self) -> None:
        """Tear down subscriptions and close remote clients."""
        state = self.state
        if self._remove_auth_listener is not None:
            self._remove_auth_listener()
            self._remove_auth_listener = None
        for mirror in (state.catalog, state.cart, state.counter):
            if mirror is not None and mirror.active:
                mirror.teardown()
        if state.store is not None:
            await state.store.close()
            state.store = None
        if state.auth is not None:
            await state.auth.provider.close()
            state.auth = None
        state.ready = False
        logger.info("Storefront stopped")

    def require_ready(self) -> AppState:
        """
        Raises:
            ConfigUnavailable: If the backend configuration is missing or invalid
            NotReady: If start() has not completed successfully
        """
        settings = self.state.settings
        if not settings.remote_enabled:
            raise ConfigUnavailable(settings.config_error or "Backend configuration is not available.")
        if not self.state.ready:
            raise NotReady(self.state.status or "The storefront is not ready yet.")
        return self.state

    def find_product(self, product_id: str) -> Optional[Product]:
        state = self.require_ready()
        assert state.catalog is not None
        return state.catalog.find_by_id(product_id)
