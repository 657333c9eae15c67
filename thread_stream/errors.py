"""Exception hierarchy for thread-stream.

Hierarchy::

    ThreadStreamError
    ├── TransportError         (status, url)
    ├── MalformedResponse      (payload)
    ├── ExhaustedListing
    └── NotSupported           (operation)
"""

from typing import Any, Optional


class ThreadStreamError(Exception):
    """Base class for all thread-stream exceptions."""


class TransportError(ThreadStreamError):
    """Raised when a request to the forum API fails.

    Args:
        message: Human-readable description of the failure.
        status: HTTP status code, or None for network-level failures.
        url: The URL that was requested.
    """

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        url: Optional[str] = None,
    ):
        super().__init__(message)
        self.status = status
        self.url = url

    @property
    def unauthorized(self) -> bool:
        return self.status == 401


class MalformedResponse(ThreadStreamError):
    """Raised when a response cannot be decoded into posts, replies or stubs."""

    def __init__(self, message: str, payload: Any = None):
        super().__init__(message)
        self.payload = payload


class ExhaustedListing(ThreadStreamError):
    """Raised by direct page lookups when the listing has no continuation.

    Never raised while iterating; an exhausted listing simply ends.
    """


class NotSupported(ThreadStreamError):
    """Raised for operations the remote API cannot serve for an entity."""

    def __init__(self, operation: str, reason: str = ""):
        message = f"{operation} is not supported"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.operation = operation
