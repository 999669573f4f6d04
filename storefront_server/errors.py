"""Error taxonomy for the storefront core."""

from typing import Optional


class StorefrontError(Exception):
    """Base class for every error raised by the storefront core."""


class ConfigUnavailable(StorefrontError):
    """Backend configuration is missing or could not be parsed."""


class AuthFailure(StorefrontError):
    """The identity provider rejected the sign-in."""


class NotReady(StorefrontError):
    """A mutation was attempted before the session and store were established."""


class RemoteOpFailure(StorefrontError):
    """A read, write, delete or subscribe call was rejected by the store."""

    def __init__(self, operation: str, path: str, cause: Optional[BaseException] = None) -> None:
        self.operation = operation
        self.path = path
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"{operation} {path} failed{detail}")


class StoreTimeout(RemoteOpFailure):
    """A remote call did not complete within the request timeout."""

    def __init__(self, operation: str, path: str, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(operation, path)
        self.args = (f"{operation} {path} timed out after {timeout:g}s",)


class ValidationFailure(StorefrontError):
    """User input is incomplete; nothing was sent to the store."""

    def __init__(self, message: str, missing: Optional[list[str]] = None) -> None:
        self.missing = missing or []
        super().__init__(message)


class InvalidTransition(StorefrontError):
    """The checkout step does not allow the requested transition."""
