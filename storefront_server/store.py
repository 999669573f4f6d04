"""Document store protocol, subscriptions and the in-memory store."""

import logging
import uuid
from typing import Any, Callable, Optional, Protocol

from .models import Document

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[list[Document]], None]
ErrorCallback = Callable[[Exception], None]


def products_path(app_id: str) -> str:
    return f"artifacts/{app_id}/public/data/products"


def cart_path(app_id: str, session_id: str) -> str:
    return f"artifacts/{app_id}/users/{session_id}/cart"


def counter_path(app_id: str) -> str:
    return f"artifacts/{app_id}/public/data/counter_data/counter_doc"


def split_path(path: str) -> list[str]:
    segments = [s for s in path.strip("/").split("/") if s]
    if not segments:
        raise ValueError("Empty document path")
    return segments


def is_document_path(path: str) -> bool:
    """Documents live at an even number of segments, collections at an odd one."""
    return len(split_path(path)) % 2 == 0


def parent_and_id(path: str) -> tuple[str, str]:
    """Split a document path into its collection path and document ID."""
    segments = split_path(path)
    if len(segments) % 2:
        raise ValueError(f"Not a document path: {path}")
    return "/".join(segments[:-1]), segments[-1]


class Subscription:
    """Handle returned by subscribe(); unsubscribe() runs its cancel hook once."""

    def __init__(self, path: str, cancel: Callable[[], None]) -> None:
        self.path = path
        self._cancel: Optional[Callable[[], None]] = cancel

    @property
    def active(self) -> bool:
        return self._cancel is not None

    def unsubscribe(self) -> None:
        if self._cancel is None:
            logger.warning(f"Ignoring repeated unsubscribe for {self.path}")
            return
        cancel, self._cancel = self._cancel, None
        cancel()


class DocumentStore(Protocol):
    """
    Remote document store protocol.

    Paths with an even number of segments address documents, odd ones
    address collections. subscribe() works on both: a document subscription
    delivers a snapshot of zero or one documents.
    """

    def subscribe(
        self, path: str, on_snapshot: SnapshotCallback, on_error: ErrorCallback
    ) -> Subscription:
        """Start delivering full snapshots of path until unsubscribed."""
        ...

    async def get(self, path: str) -> Optional[Document]:
        """Read one document. Returns None when absent."""
        ...

    async def set(self, path: str, fields: dict[str, Any]) -> None:
        """Create or replace a document."""
        ...

    async def update(self, path: str, fields: dict[str, Any]) -> None:
        """Merge fields into an existing document. Fails if it does not exist."""
        ...

    async def delete(self, path: str) -> None:
        """Delete a document. Deleting an absent document is not an error."""
        ...

    async def add_to_collection(self, path: str, fields: dict[str, Any]) -> str:
        """Create a document with a store-assigned ID and return that ID."""
        ...

    async def list_collection(self, path: str) -> list[Document]:
        """Read every document of a collection."""
        ...

    async def close(self) -> None:
        """Release resources held by the store."""
        ...


class DocumentNotFound(LookupError):
    """update() targeted a document that does not exist."""


class MemoryDocumentStore:
    """
    In-process document store.

    Listeners are called synchronously, in write order, once the write has
    been applied. Used for the "memory" backend and as a test double.
    """

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._listeners: dict[str, dict[int, SnapshotCallback]] = {}
        self._next_listener = 0

    def _snapshot(self, path: str) -> list[Document]:
        if is_document_path(path):
            parent, doc_id = parent_and_id(path)
            data = self._collections.get(parent, {}).get(doc_id)
            return [] if data is None else [Document(id=doc_id, data=dict(data))]
        collection = self._collections.get("/".join(split_path(path)), {})
        return [Document(id=doc_id, data=dict(data)) for doc_id, data in collection.items()]

    def _notify(self, doc_path: str) -> None:
        parent, _ = parent_and_id(doc_path)
        for path in (parent, "/".join(split_path(doc_path))):
            for callback in list(self._listeners.get(path, {}).values()):
                callback(self._snapshot(path))

    def subscribe(
        self, path: str, on_snapshot: SnapshotCallback, on_error: ErrorCallback
    ) -> Subscription:
        key = "/".join(split_path(path))
        listener_id = self._next_listener
        self._next_listener += 1
        self._listeners.setdefault(key, {})[listener_id] = on_snapshot

        def cancel() -> None:
            self._listeners.get(key, {}).pop(listener_id, None)

        on_snapshot(self._snapshot(key))
        return Subscription(key, cancel)

    def listener_count(self, path: str) -> int:
        return len(self._listeners.get("/".join(split_path(path)), {}))

    async def get(self, path: str) -> Optional[Document]:
        docs = self._snapshot(path) if is_document_path(path) else None
        if docs is None:
            raise ValueError(f"Not a document path: {path}")
        return docs[0] if docs else None

    async def set(self, path: str, fields: dict[str, Any]) -> None:
        parent, doc_id = parent_and_id(path)
        self._collections.setdefault(parent, {})[doc_id] = dict(fields)
        self._notify(path)

    async def update(self, path: str, fields: dict[str, Any]) -> None:
        parent, doc_id = parent_and_id(path)
        existing = self._collections.get(parent, {}).get(doc_id)
        if existing is None:
            raise DocumentNotFound(f"No document to update at {path}")
        existing.update(fields)
        self._notify(path)

    async def delete(self, path: str) -> None:
        parent, doc_id = parent_and_id(path)
        if self._collections.get(parent, {}).pop(doc_id, None) is not None:
            self._notify(path)

    async def add_to_collection(self, path: str, fields: dict[str, Any]) -> str:
        if is_document_path(path):
            raise ValueError(f"Not a collection path: {path}")
        doc_id = uuid.uuid4().hex[:20]
        await self.set(f"{'/'.join(split_path(path))}/{doc_id}", fields)
        return doc_id

    async def list_collection(self, path: str) -> list[Document]:
        if is_document_path(path):
            raise ValueError(f"Not a collection path: {path}")
        return self._snapshot(path)

    async def close(self) -> None:
        self._listeners.clear()
