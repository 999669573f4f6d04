"""Shared click counter kept in a single document."""

import asyncio
import logging
from typing import Optional

from .errors import NotReady, RemoteOpFailure
from .mirror import SnapshotMirror
from .models import Document, NoticeKind
from .notices import Notify
from .policy import RetryPolicy
from .store import DocumentStore, counter_path

logger = logging.getLogger(__name__)


class ClickCounter(SnapshotMirror):
    """Mirrors the counter document, creating it at zero when it is missing."""

    label = "the counter"

    def __init__(
        self, store: DocumentStore, app_id: str, notify: Notify, retry: RetryPolicy = RetryPolicy()
    ) -> None:
        super().__init__(store, notify, retry)
        self.app_id = app_id
        self.count = 0
        self._lock = asyncio.Lock()
        self._init_task: Optional[asyncio.Task] = None

    def start(self) -> None:
        self.activate(counter_path(self.app_id))

    def apply(self, docs: list[Document]) -> None:
        if docs:
            raw = docs[0].data.get("count", 0)
            try:
                self.count = int(raw)
            except (TypeError, ValueError):
                logger.warning(f"Ignoring counter value {raw!r}")
            return
        # Document does not exist yet
        if self._init_task is None or self._init_task.done():
            self._init_task = asyncio.get_running_loop().create_task(self._create())

    async def _create(self) -> None:
        path = counter_path(self.app_id)
        try:
            await self.store.set(path, {"count": 0})
        except RemoteOpFailure as e:
            logger.error(f"Error creating counter document: {e}")
            self.notify("Error loading the counter.", NoticeKind.ERROR)

    def teardown(self) -> None:
        super().teardown()
        if self._init_task is not None and not self._init_task.done():
            self._init_task.cancel()
        self._init_task = None

    async def increment(self) -> Optional[int]:
        """
        Write count + 1 based on the last observed value.

        Returns:
            The value written, or None if the write failed. count itself
            only changes once the store delivers the new snapshot.
        """
        if not self.active:
            raise NotReady("The database is not ready yet.")
        async with self._lock:
            value = self.count + 1
            try:
                await self.store.update(counter_path(self.app_id), {"count": value})
            except RemoteOpFailure as e:
                logger.error(f"Error updating counter: {e}")
                self.notify("Error updating the counter.", NoticeKind.ERROR)
                return None
        return value
