"""User interaction capabilities: notices and confirmation prompts."""

import logging
from collections import deque
from typing import Awaitable, Callable, Optional, Protocol

from .models import Notice, NoticeKind

logger = logging.getLogger(__name__)

Confirm = Callable[[str], Awaitable[bool]]


class Notify(Protocol):
    def __call__(self, message: str, kind: NoticeKind = NoticeKind.INFO) -> None: ...


_LOG_LEVELS = {
    NoticeKind.INFO: logging.INFO,
    NoticeKind.SUCCESS: logging.INFO,
    NoticeKind.WARNING: logging.WARNING,
    NoticeKind.ERROR: logging.ERROR,
}


class NoticeBoard:
    """Collects notices for the surface to render; callable as a Notify."""

    def __init__(self, maxlen: int = 50) -> None:
        self._pending: deque[Notice] = deque(maxlen=maxlen)
        self.last: Optional[Notice] = None

    def __call__(self, message: str, kind: NoticeKind = NoticeKind.INFO) -> None:
        notice = Notice(kind=kind, message=message)
        logger.log(_LOG_LEVELS[kind], f"[{kind.value}] {message}")
        self._pending.append(notice)
        self.last = notice

    def drain(self) -> list[Notice]:
        """Return and forget every notice not yet rendered."""
        notices = list(self._pending)
        self._pending.clear()
        return notices


def answer(value: bool) -> Confirm:
    """A Confirm that gives a fixed answer, e.g. one taken from a request argument."""

    async def confirm(prompt: str) -> bool:
        logger.info(f"Confirm {prompt!r}: {'yes' if value else 'no'}")
        return value

    return confirm
