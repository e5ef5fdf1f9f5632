from __future__ import annotations

from typing import Any


class RetryExhausted(Exception):
    """Raised by the rate governor once a retry loop has used all its attempts."""

    def __init__(self, attempt: int, max_attempts: int) -> None:
        super().__init__(f"Retry exhausted after {attempt} of {max_attempts} attempts")
        self.attempt = attempt
        self.max_attempts = max_attempts


class SourceError(Exception):
    """A remote source answered with an error, or could not be reached.

    `status` is the HTTP status when one was received, else None
    (transport failures such as timeouts and refused connections).
    """

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.retry_after = retry_after


class CollectorAborted(Exception):
    """A collector stopped early; `partial` holds what was collected before."""

    def __init__(self, message: str, partial: list[Any] | None = None) -> None:
        super().__init__(message)
        self.partial = partial or []


class CollectionCancelled(CollectorAborted):
    """The caller's deadline passed or its cancel event was set."""
