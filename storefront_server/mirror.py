"""Local mirrors of remote collections kept current by a subscription."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

from .errors import RemoteOpFailure
from .models import Document, NoticeKind
from .notices import Notify
from .policy import RetryPolicy
from .store import DocumentStore, Subscription

logger = logging.getLogger(__name__)


class SnapshotMirror(ABC):
    """
    Holds the last snapshot of one store path.

    Every notification replaces the whole local state (see apply()). A
    failed subscription keeps the last snapshot, marks the mirror stale and
    is re-established with the retry policy's backoff until the attempt
    budget runs out. After teardown() late notifications are dropped.
    """

    label = "data"

    def __init__(self, store: DocumentStore, notify: Notify, retry: RetryPolicy = RetryPolicy()) -> None:
        self.store = store
        self.notify = notify
        self.retry = retry
        self.path: Optional[str] = None
        self.stale = False
        self.loaded = False
        self._subscription: Optional[Subscription] = None
        self._resubscribe_task: Optional[asyncio.Task] = None
        self._failures = 0
        self._generation = 0

    @property
    def active(self) -> bool:
        return self.path is not None

    def activate(self, path: str) -> None:
        """Subscribe to path, replacing any previous subscription."""
        if self.active:
            self.teardown()
        self.path = path
        self._failures = 0
        self._subscribe()

    def _subscribe(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        self._generation += 1
        generation = self._generation
        path = self.path
        assert path is not None

        def on_snapshot(docs: list[Document]) -> None:
            if generation != self._generation or self.path is None:
                logger.debug(f"Dropping late snapshot for {path}")
                return
            self._failures = 0
            self.stale = False
            self.loaded = True
            self.apply(docs)

        def on_error(err: Exception) -> None:
            if generation != self._generation or self.path is None:
                return
            self._handle_error(err)

        try:
            self._subscription = self.store.subscribe(path, on_snapshot, on_error)
        except RemoteOpFailure as e:
            self._subscription = None
            self._handle_error(e)

    def _handle_error(self, err: Exception) -> None:
        logger.error(f"Error listening to {self.path}: {err}")
        self.stale = True
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        self._failures += 1
        if self._failures >= self.retry.attempts:
            self.notify(
                f"Error loading {self.label}. Showing the last known data.", NoticeKind.ERROR
            )
            return
        delay = self.retry.delay(self._failures)
        self.notify(
            f"Error loading {self.label}. Retrying in {delay:g}s.", NoticeKind.WARNING
        )
        self._resubscribe_task = asyncio.get_running_loop().create_task(
            self._resubscribe_later(delay, self._generation)
        )

    async def _resubscribe_later(self, delay: float, generation: int) -> None:
        await asyncio.sleep(delay)
        if generation == self._generation and self.path is not None:
            logger.info(f"Resubscribing to {self.path}")
            self._subscribe()

    def teardown(self) -> None:
        """Unsubscribe exactly once; later notifications are ignored."""
        self._generation += 1
        self.path = None
        if self._resubscribe_task is not None:
            self._resubscribe_task.cancel()
            self._resubscribe_task = None
        if self._subscription is not None:
            subscription, self._subscription = self._subscription, None
            subscription.unsubscribe()

    @abstractmethod
    def apply(self, docs: list[Document]) -> None:
        """Replace the local state with a fresh snapshot."""
