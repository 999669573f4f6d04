"""Timeout and retry policy for remote store calls."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx

from .errors import RemoteOpFailure, StoreTimeout
from .models import Document
from .store import DocumentStore, ErrorCallback, SnapshotCallback, Subscription

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with exponential backoff."""

    attempts: int = 3
    backoff_initial: float = 0.5
    backoff_factor: float = 2.0
    backoff_max: float = 8.0

    def delay(self, attempt: int) -> float:
        """Delay before retry number `attempt` (1-based)."""
        return min(self.backoff_initial * self.backoff_factor ** (attempt - 1), self.backoff_max)


NO_RETRY = RetryPolicy(attempts=1)


def is_transient(error: BaseException) -> bool:
    """Whether a failed call may succeed when sent again."""
    if isinstance(error, RemoteOpFailure):
        return isinstance(error, StoreTimeout) or (
            error.cause is not None and is_transient(error.cause)
        )
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return status == 429 or status >= 500
    return isinstance(error, (asyncio.TimeoutError, httpx.TransportError, ConnectionError))


async def call_remote(
    operation: str,
    path: str,
    call: Callable[[], Awaitable[T]],
    timeout: Optional[float],
    retry: RetryPolicy = NO_RETRY,
) -> T:
    """
    Run a remote call under the request timeout and retry policy.

    Only transient failures are retried: timeouts, connection errors and
    429 or 5xx responses. Anything else fails on the first attempt.

    Raises:
        StoreTimeout: If the last attempt timed out
        RemoteOpFailure: If the last attempt failed for any other reason
    """
    attempt = 1
    while True:
        try:
            if timeout is None:
                return await call()
            return await asyncio.wait_for(call(), timeout)
        except asyncio.TimeoutError:
            error: RemoteOpFailure = StoreTimeout(operation, path, timeout or 0)
        except RemoteOpFailure as e:
            error = e
        except Exception as e:
            error = RemoteOpFailure(operation, path, e)

        if attempt >= retry.attempts or not is_transient(error):
            raise error
        delay = retry.delay(attempt)
        logger.warning(f"{error}; retrying in {delay:g}s (attempt {attempt + 1}/{retry.attempts})")
        await asyncio.sleep(delay)
        attempt += 1


class GuardedStore:
    """
    DocumentStore decorator applying the request timeout, the retry policy
    and the error taxonomy to another store.

    add_to_collection() is never retried since it is not idempotent.
    """

    def __init__(
        self,
        inner: DocumentStore,
        timeout: Optional[float] = 10.0,
        retry: RetryPolicy = RetryPolicy(),
    ) -> None:
        self.inner = inner
        self.timeout = timeout
        self.retry = retry

    def subscribe(
        self, path: str, on_snapshot: SnapshotCallback, on_error: ErrorCallback
    ) -> Subscription:
        def guarded_error(err: Exception) -> None:
            if not isinstance(err, RemoteOpFailure):
                err = RemoteOpFailure("subscribe", path, err)
            on_error(err)

        try:
            return self.inner.subscribe(path, on_snapshot, guarded_error)
        except Exception as e:
            raise RemoteOpFailure("subscribe", path, e) from e

    async def get(self, path: str) -> Optional[Document]:
        return await call_remote("get", path, lambda: self.inner.get(path), self.timeout, self.retry)

    async def set(self, path: str, fields: dict[str, Any]) -> None:
        await call_remote(
            "set", path, lambda: self.inner.set(path, fields), self.timeout, self.retry
        )

    async def update(self, path: str, fields: dict[str, Any]) -> None:
        await call_remote(
            "update", path, lambda: self.inner.update(path, fields), self.timeout, self.retry
        )

    async def delete(self, path: str) -> None:
        await call_remote(
            "delete", path, lambda: self.inner.delete(path), self.timeout, self.retry
        )

    async def add_to_collection(self, path: str, fields: dict[str, Any]) -> str:
        return await call_remote(
            "add", path, lambda: self.inner.add_to_collection(path, fields), self.timeout
        )

    async def list_collection(self, path: str) -> list[Document]:
        return await call_remote(
            "list", path, lambda: self.inner.list_collection(path), self.timeout, self.retry
        )

    async def close(self) -> None:
        await self.inner.close()
