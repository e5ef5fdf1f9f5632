"""Validation and storage of raw observation records pushed in from outside.

Also home of `resolve_theme`, the find-or-create step every observation
goes through before it can be written against a theme id.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from trendscout.models import ALL_SOURCES, Observation, Theme
from trendscout.models.entities import parse_ts, utcnow
from trendscout.processing.scoring import infer_category
from trendscout.services.store import StoreError, TrendStore

logger = logging.getLogger(__name__)

MAX_RECORD_AGE = timedelta(days=30)
REQUIRED_FIELDS = ("source", "search_volume", "growth_rate", "timestamp")


async def resolve_theme(
    store: TrendStore, title: str, source: str, *, now: datetime | None = None
) -> Theme:
    """Find a theme by case-insensitive title, creating it on first sight."""
    title = title.strip()
    theme = await store.find_theme_by_title(title)
    if theme is not None:
        return theme
    now = now or utcnow()
    theme = await store.create_theme(
        Theme(
            title=title,
            description=f"Auto-generated theme from {source} data",
            category=infer_category(title),
            data_sources=[source],
            created_at=now,
            updated_at=now,
        )
    )
    logger.info("Created theme %s (%s) from %s", theme.id, title, source)
    return theme


def validate_record(record: dict[str, Any], now: datetime) -> str | None:
    """Return a reason the raw record is unusable, or None when it is valid."""
    for name in REQUIRED_FIELDS:
        if record.get(name) is None:
            return f"missing required field: {name}"
    if record["source"] not in ALL_SOURCES:
        return f"unknown source: {record['source']}"
    volume = record["search_volume"]
    if isinstance(volume, bool) or not isinstance(volume, (int, float)) or volume < 0:
        return f"invalid search_volume: {volume!r}"
    growth = record["growth_rate"]
    if isinstance(growth, bool) or not isinstance(growth, (int, float)):
        return f"invalid growth_rate: {growth!r}"
    try:
        ts = parse_ts(record["timestamp"])
    except (TypeError, ValueError):
        return f"invalid timestamp: {record['timestamp']!r}"
    if ts < now - MAX_RECORD_AGE:
        return f"timestamp too old: {record['timestamp']}"
    if not (record.get("theme_id") or record.get("theme") or record.get("title")):
        return "missing theme reference"
    return None


@dataclass
class NormalizeResult:
    total: int = 0
    processed: int = 0
    skipped: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "processed": self.processed,
            "skipped": self.skipped,
            "errors": len(self.errors),
            "error_details": self.errors[:20],
            "success_rate": round(self.processed / self.total * 100, 2) if self.total else 0.0,
        }


class ObservationNormalizer:
    def __init__(self, store: TrendStore, *, clock: Callable[[], datetime] = utcnow) -> None:
        self.store = store
        self._clock = clock

    async def normalize(
        self,
        records: list[dict[str, Any]],
        *,
        validate: bool = True,
        deduplicate: bool = True,
    ) -> NormalizeResult:
        result = NormalizeResult(total=len(records))
        now = self._clock()
        pending: dict[tuple[str, str, str], Observation] = {}

        for record in records:
            if validate and (reason := validate_record(record, now)):
                result.skipped += 1
                result.errors.append({"record": record, "error": reason})
                continue
            try:
                obs = await self._to_observation(record, now)
                key = (obs.theme_id, obs.source, obs.timestamp.isoformat())
                if deduplicate and (
                    key in pending or obs.theme_id in await self.store.observed_theme_ids(obs.source, obs.timestamp)
                ):
                    result.skipped += 1
                    continue
            except (StoreError, ValueError, TypeError) as e:
                result.skipped += 1
                result.errors.append({"record": record, "error": str(e)})
                continue
            pending[key] = obs

        if pending:
            try:
                await self.store.upsert_observations(list(pending.values()))
                result.processed = len(pending)
            except StoreError as e:
                result.skipped += len(pending)
                result.errors.append({"record": None, "error": str(e)})

        logger.info(
            "Normalized %d/%d records (%d skipped)", result.processed, result.total, result.skipped
        )
        return result

    async def _to_observation(self, record: dict[str, Any], now: datetime) -> Observation:
        theme_id = record.get("theme_id")
        if not theme_id:
            title = record.get("theme") or record.get("title")
            theme_id = (await resolve_theme(self.store, str(title), record["source"], now=now)).id
        return Observation(
            theme_id=theme_id,
            source=record["source"],
            search_volume=int(record["search_volume"]),
            growth_rate=float(record["growth_rate"]),
            geographic_data=record.get("geographic_data") or {},
            demographic_data=record.get("demographic_data") or {},
            timestamp=parse_ts(record["timestamp"]),
            created_at=now,
        )
