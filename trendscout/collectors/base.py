from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections import Counter
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta
from typing import Any

import httpx

from trendscout.collectors.errors import (
    CollectionCancelled,
    CollectorAborted,
    SourceError,
)
from trendscout.collectors.failure_classifier import FailureClassifier, Severity
from trendscout.collectors.rate_governor import RateGovernor
from trendscout.config import settings
from trendscout.models import Observation
from trendscout.models.entities import utcnow

logger = logging.getLogger(__name__)


class CancelToken:
    """Caller-supplied cancellation: an event, a monotonic deadline, or both.

    Checked between attempts and between themes, never mid-request.
    """

    def __init__(
        self,
        *,
        deadline: float | None = None,
        event: asyncio.Event | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.deadline = deadline
        self.event = event
        self._clock = clock

    @classmethod
    def with_timeout(cls, seconds: float) -> CancelToken:
        return cls(deadline=time.monotonic() + seconds)

    @property
    def cancelled(self) -> bool:
        if self.event is not None and self.event.is_set():
            return True
        return self.deadline is not None and self._clock() >= self.deadline

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise CollectionCancelled("collection cancelled by caller")


def growth_rate(recent: float, older: float) -> float:
    """Percentage change from the older window to the recent one.

    An empty older window yields 100 when the recent window has data, else 0.
    """
    if older == 0:
        return 100.0 if recent > 0 else 0.0
    return round((recent - older) / older * 100, 2)


def split_windows(
    timestamps: Iterable[datetime], now: datetime, window: timedelta
) -> tuple[int, int]:
    """Count timestamps in (now-window, now] and in (now-2*window, now-window]."""
    recent = older = 0
    recent_start = now - window
    older_start = now - 2 * window
    for ts in timestamps:
        if recent_start < ts <= now:
            recent += 1
        elif older_start < ts <= recent_start:
            older += 1
    return recent, older


def weights(counts: Counter | dict[str, float], top: int = 10) -> dict[str, float]:
    """Normalize raw counts into a key->weight map summing to ~1 (top N keys)."""
    total = sum(v for v in counts.values() if v > 0)
    if total <= 0:
        return {}
    ranked = sorted(((k, v) for k, v in counts.items() if v > 0), key=lambda kv: -kv[1])
    return {str(k): round(v / total, 4) for k, v in ranked[:top]}


def bucket_start(moment: datetime, minutes: int) -> datetime:
    """Floor a timestamp to the start of its N-minute bucket."""
    if minutes <= 0:
        return moment
    floored = moment.replace(second=0, microsecond=0)
    minute_of_day = floored.hour * 60 + floored.minute
    offset = minute_of_day % minutes
    return floored - timedelta(minutes=offset)


def parse_retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("retry-after")
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class BaseCollector(ABC):
    """Abstract base for all source collectors.

    Subclasses implement `fetch_theme` for one theme. The base class owns the
    shared mechanics: rate governance before every remote call, the bounded
    retry loop, per-theme isolation and cancellation checks.
    """

    source_id: str = ""
    max_attempts: int = 3

    def __init__(
        self,
        source_config: dict[str, Any],
        governor: RateGovernor,
        classifier: FailureClassifier,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.config = source_config
        self.governor = governor
        self.classifier = classifier
        self._transport = transport
        self._clock = clock
        self._client: httpx.AsyncClient | None = None
        self.page_size: int = int(source_config.get("page_size", 50))
        self.max_pages: int = int(source_config.get("max_pages", 2))
        self.bucket_minutes: int = int(
            source_config.get("bucket_minutes", settings.OBSERVATION_BUCKET_MINUTES)
        )

    @property
    def is_configured(self) -> bool:
        return True

    def now(self) -> datetime:
        return self._clock()

    def observed_at(self) -> datetime:
        return bucket_start(self.now(), self.bucket_minutes)

    # -- HTTP -----------------------------------------------------------------

    def _make_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=settings.HTTP_TIMEOUT,
            follow_redirects=True,
            headers={"User-Agent": settings.USER_AGENT},
            transport=self._transport,
        )

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Governed HTTP call. Non-2xx answers raise SourceError."""
        if self._client is None:
            raise RuntimeError(f"{self.source_id}: request() used outside collect()")
        await self.governor.acquire(self.source_id)
        response = await self._client.request(method, url, **kwargs)
        if response.status_code >= 400:
            raise SourceError(
                f"{method} {url} returned {response.status_code}",
                status=response.status_code,
                retry_after=parse_retry_after(response),
            )
        return response

    async def get_json(self, url: str, **kwargs: Any) -> Any:
        response = await self.request("GET", url, **kwargs)
        return response.json()

    async def post_json(self, url: str, **kwargs: Any) -> Any:
        response = await self.request("POST", url, **kwargs)
        return response.json()

    # -- collection -----------------------------------------------------------

    async def collect(
        self,
        themes: list[str],
        region: str = "US",
        force_refresh: bool = False,
        *,
        cancel: CancelToken | None = None,
    ) -> list[Observation]:
        """Collect one observation per theme. Best-effort: failed themes are skipped.

        Without credentials the source is logged as critical and nothing is collected.
        """
        if not self.is_configured:
            self.classifier.log_error(
                self.source_id, "credentials not configured", Severity.CRITICAL
            )
            return []

        results: list[Observation] = []
        async with self._make_client() as client:
            self._client = client
            try:
                for theme in themes:
                    if cancel is not None:
                        cancel.raise_if_cancelled()
                    try:
                        observation = await self._fetch_with_retry(theme, region, cancel)
                    except CollectorAborted:
                        raise
                    except Exception as e:
                        self.classifier.log_error(
                            self.source_id,
                            f"Failed to collect data for theme {theme!r}: {e}",
                            Severity.MEDIUM,
                        )
                        continue
                    if observation is not None:
                        observation.theme_title = theme
                        results.append(observation)
            except CollectorAborted as e:
                # CollectionCancelled included: hand back what was collected
                e.partial = results
                raise
            finally:
                self._client = None

        logger.info(
            "Collector %s: %d/%d themes collected (region=%s, force=%s)",
            self.source_id, len(results), len(themes), region, force_refresh,
        )
        return results

    async def _fetch_with_retry(
        self, theme: str, region: str, cancel: CancelToken | None
    ) -> Observation | None:
        last_exc: BaseException | None = None
        attempts = 0
        for attempt in range(self.max_attempts):
            attempts += 1
            try:
                return await self.fetch_theme(theme, region)
            except CollectorAborted:
                raise
            except Exception as e:
                last_exc = e
                if not self.classifier.should_retry(self.source_id, e, attempt):
                    break
                if attempt == self.max_attempts - 1:
                    break
                if cancel is not None:
                    cancel.raise_if_cancelled()
                retry_after = e.retry_after if isinstance(e, SourceError) else None
                await self.governor.backoff(attempt, self.max_attempts, floor=retry_after)

        self.classifier.log_error(
            self.source_id,
            f"Failed to fetch {theme!r} after {attempts} attempt(s): {last_exc}",
            Severity.HIGH,
        )
        if last_exc is not None and self.classifier.is_auth_failure(last_exc):
            raise CollectorAborted(f"{self.source_id} rejected credentials: {last_exc}")
        return None

    @abstractmethod
    async def fetch_theme(self, theme: str, region: str) -> Observation | None:
        """Fetch and normalize one theme. Raise on failure; return None for no data."""
        ...
