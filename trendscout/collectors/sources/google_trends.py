"""Search-interest collector (Google Trends) with pluggable backends.

Google Trends has no official API. The `serpapi` backend reads interest
series through SerpAPI; the `fixture` backend produces a deterministic
series per (theme, region) for local runs and tests. The backend is chosen
by the TRENDS_BACKEND setting, or passed in explicitly.
"""
from __future__ import annotations

import hashlib
import logging
import random
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from trendscout.collectors.base import BaseCollector, growth_rate, weights
from trendscout.config import settings
from trendscout.models import Observation

logger = logging.getLogger(__name__)

_SERPAPI_URL = "https://serpapi.com/search.json"
_WINDOW = timedelta(days=30)

GetJson = Callable[..., Awaitable[Any]]


@dataclass
class InterestSeries:
    """Relative interest points (0-100) plus interest by sub-region."""

    points: list[tuple[datetime, int]] = field(default_factory=list)
    regions: dict[str, int] = field(default_factory=dict)


class InterestBackend(ABC):
    name: str = ""

    @property
    def is_configured(self) -> bool:
        return True

    @abstractmethod
    async def fetch(
        self, theme: str, region: str, now: datetime, get_json: GetJson
    ) -> InterestSeries:
        ...


class SerpApiBackend(InterestBackend):
    name = "serpapi"

    @property
    def is_configured(self) -> bool:
        return bool(settings.SERPAPI_KEY)

    async def fetch(
        self, theme: str, region: str, now: datetime, get_json: GetJson
    ) -> InterestSeries:
        base = {
            "engine": "google_trends",
            "q": theme,
            "geo": region,
            "date": "today 3-m",
            "api_key": settings.SERPAPI_KEY,
        }
        timeline = await get_json(_SERPAPI_URL, params={**base, "data_type": "TIMESERIES"})
        series = InterestSeries()
        for row in (timeline.get("interest_over_time") or {}).get("timeline_data", []):
            values = row.get("values") or [{}]
            try:
                ts = datetime.fromtimestamp(int(row["timestamp"]), tz=timezone.utc)
            except (KeyError, ValueError):
                continue
            series.points.append((ts, int(values[0].get("extracted_value") or 0)))

        geo = await get_json(_SERPAPI_URL, params={**base, "data_type": "GEO_MAP_0"})
        for row in geo.get("interest_by_region") or []:
            if location := row.get("location"):
                series.regions[location] = int(row.get("extracted_value") or 0)
        return series


class FixtureBackend(InterestBackend):
    """Deterministic weekly series seeded by theme and region."""

    name = "fixture"

    async def fetch(
        self, theme: str, region: str, now: datetime, get_json: GetJson
    ) -> InterestSeries:
        seed = int(hashlib.sha256(f"{theme.lower()}|{region}".encode()).hexdigest()[:12], 16)
        rng = random.Random(seed)
        level = rng.randint(20, 80)
        drift = rng.uniform(-3.0, 5.0)
        anchor = now.replace(hour=0, minute=0, second=0, microsecond=0)
        points = []
        for week in range(12, -1, -1):
            value = level + drift * (12 - week) + rng.uniform(-5, 5)
            points.append((anchor - timedelta(weeks=week), max(0, min(100, int(value)))))
        regions = {
            f"{region}-{code}": rng.randint(10, 100) for code in ("A", "B", "C", "D", "E")
        }
        return InterestSeries(points=points, regions=regions)


BACKENDS: dict[str, type[InterestBackend]] = {
    SerpApiBackend.name: SerpApiBackend,
    FixtureBackend.name: FixtureBackend,
}


def make_backend(name: str | None = None) -> InterestBackend:
    key = (name or settings.TRENDS_BACKEND).lower()
    cls = BACKENDS.get(key)
    if cls is None:
        raise ValueError(f"Unknown trends backend: {key}")
    return cls()


class GoogleTrendsCollector(BaseCollector):
    source_id = "google-trends"

    def __init__(self, *args: Any, backend: InterestBackend | None = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.backend = backend or make_backend(self.config.get("backend"))

    @property
    def is_configured(self) -> bool:
        return self.backend.is_configured

    async def fetch_theme(self, theme: str, region: str) -> Observation | None:
        now = self.now()
        series = await self.backend.fetch(theme, region, now, self.get_json)

        recent_start = now - _WINDOW
        older_start = now - 2 * _WINDOW
        recent = sum(v for ts, v in series.points if recent_start < ts <= now)
        older = sum(v for ts, v in series.points if older_start < ts <= recent_start)

        return Observation(
            source=self.source_id,
            search_volume=sum(v for _, v in series.points),
            growth_rate=growth_rate(recent, older),
            geographic_data=weights(series.regions),
            # no demographic breakdown is exposed
            demographic_data={},
            timestamp=self.observed_at(),
        )
