"""Retry decisions and severity-tagged error bookkeeping for collectors.

The classifier never retries anything itself; collectors own the retry loop
and ask `should_retry` between attempts.
"""
from __future__ import annotations

import asyncio
import logging
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import httpx

from trendscout.collectors.errors import SourceError

logger = logging.getLogger(__name__)

MAX_LOGS = 1000

_RETRYABLE_STATUS = {408, 429}
_RETRYABLE_MESSAGES = (
    "econnreset",
    "etimedout",
    "enotfound",
    "econnrefused",
    "socket hang up",
    "network timeout",
    "timed out",
    "connection reset",
    "connection refused",
)


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


_LOG_LEVELS = {
    Severity.LOW: logging.DEBUG,
    Severity.MEDIUM: logging.WARNING,
    Severity.HIGH: logging.ERROR,
    Severity.CRITICAL: logging.CRITICAL,
}


@dataclass
class ErrorLog:
    source: str
    message: str
    severity: Severity
    status: int | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "message": self.message,
            "severity": self.severity.value,
            "status": self.status,
            "timestamp": self.timestamp.isoformat(),
        }


def status_of(error: BaseException) -> int | None:
    if isinstance(error, SourceError):
        return error.status
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    return None


def is_transport_error(error: BaseException) -> bool:
    if isinstance(error, (httpx.TransportError, asyncio.TimeoutError, ConnectionError)):
        return True
    message = str(error).lower()
    return any(m in message for m in _RETRYABLE_MESSAGES)


class FailureClassifier:
    """Classifies collector failures and keeps the most recent error logs."""

    def __init__(self, max_logs: int = MAX_LOGS) -> None:
        self._logs: deque[ErrorLog] = deque(maxlen=max_logs)

    def should_retry(self, source: str, error: BaseException, attempt: int = 0) -> bool:
        status = status_of(error)

        if status == 429:
            self.log_error(source, f"Rate limit exceeded: {error}", Severity.HIGH, status)
            return True
        if status in (401, 403):
            self.log_error(
                source, f"Authentication/authorization error: {error}", Severity.CRITICAL, status
            )
            return False
        if status is not None and 400 <= status < 500 and status not in _RETRYABLE_STATUS:
            self.log_error(source, f"Client error: {error}", Severity.MEDIUM, status)
            return False
        if (status is not None and (status >= 500 or status in _RETRYABLE_STATUS)) or (
            status is None and is_transport_error(error)
        ):
            self.log_error(
                source, f"Retryable error (attempt {attempt}): {error}", Severity.MEDIUM, status
            )
            return True

        self.log_error(source, f"Non-retryable error: {error}", Severity.HIGH, status)
        return False

    def is_auth_failure(self, error: BaseException) -> bool:
        return status_of(error) in (401, 403)

    def log_error(
        self,
        source: str,
        error: BaseException | str,
        severity: Severity | str = Severity.MEDIUM,
        status: int | None = None,
    ) -> ErrorLog:
        severity = Severity(severity)
        entry = ErrorLog(source=source, message=str(error), severity=severity, status=status)
        self._logs.append(entry)
        logger.log(_LOG_LEVELS[severity], "[%s] %s error: %s", source, severity.value, entry.message)
        return entry

    def error_summary(self) -> dict[str, Any]:
        return {
            "total": len(self._logs),
            "by_severity": dict(Counter(log.severity.value for log in self._logs)),
            "by_source": dict(Counter(log.source for log in self._logs)),
        }

    def recent_errors(self, count: int = 10) -> list[ErrorLog]:
        return list(self._logs)[-count:]

    def clear(self) -> None:
        self._logs.clear()
