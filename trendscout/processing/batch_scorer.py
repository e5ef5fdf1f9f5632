"""Periodic recomputation of theme aggregates from accumulated observations.

Themes are taken least-recently-updated first and processed in fixed-size
batches; within a batch at most `max_concurrency` themes are in flight, and
each batch is joined before the next starts. A theme is written only when
its score or market size moved past the update thresholds, so re-running
over unchanged inputs leaves stored values alone. Retention cleanup runs
after scoring.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from trendscout.config import settings
from trendscout.models import Theme
from trendscout.models.entities import utcnow
from trendscout.processing.scoring import evaluate_theme
from trendscout.services.store import StoreError, TrendStore

logger = logging.getLogger(__name__)

SCORE_THRESHOLD = 5
MARKET_THRESHOLD = 500
LIGHT_MARKET_THRESHOLD = 1000
STALE_AFTER = timedelta(hours=1)


@dataclass
class BatchResult:
    started_at: datetime = field(default_factory=utcnow)
    finished_at: datetime | None = None
    processed: int = 0
    updated: int = 0
    unchanged: int = 0
    errors: int = 0
    batches: int = 0
    purged: int = 0
    details: list[dict[str, Any]] = field(default_factory=list)

    @property
    def duration_seconds(self) -> float:
        if self.finished_at:
            return (self.finished_at - self.started_at).total_seconds()
        return 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "errors": self.errors,
            "batches": self.batches,
            "purged": self.purged,
            "duration_seconds": round(self.duration_seconds, 2),
            "details": self.details,
        }


class BatchScorer:
    def __init__(
        self,
        store: TrendStore,
        *,
        batch_size: int | None = None,
        max_concurrency: int | None = None,
        retention_days: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.batch_size = batch_size or settings.BATCH_SIZE
        self.max_concurrency = max_concurrency or settings.MAX_CONCURRENCY
        self.retention = timedelta(days=retention_days or settings.RETENTION_DAYS)
        self._clock = clock

    async def _candidates(self, now: datetime, force_update: bool, limit: int | None) -> list[Theme]:
        """Snapshot the themes to score, stalest first."""
        cutoff = None if force_update else now - STALE_AFTER
        themes: list[Theme] = []
        offset = 0
        while True:
            page = await self.store.list_stale_themes(
                limit=self.batch_size, offset=offset, updated_before=cutoff
            )
            themes.extend(page)
            if len(page) < self.batch_size or (limit is not None and len(themes) >= limit):
                break
            offset += self.batch_size
        return themes[:limit] if limit is not None else themes

    async def run(
        self,
        *,
        force_update: bool = False,
        market_threshold: int = MARKET_THRESHOLD,
        score_threshold: int = SCORE_THRESHOLD,
        max_themes: int | None = None,
    ) -> BatchResult:
        result = BatchResult()
        now = self._clock()
        themes = await self._candidates(now, force_update, max_themes)
        logger.info(
            "Batch scoring %d themes (batch_size=%d, concurrency=%d, force=%s)",
            len(themes), self.batch_size, self.max_concurrency, force_update,
        )

        for start in range(0, len(themes), self.batch_size):
            batch = themes[start : start + self.batch_size]
            await self._run_batch(batch, now, result, market_threshold, score_threshold)
            result.batches += 1

        try:
            result.purged = await self.store.delete_observations_before(now - self.retention)
        except StoreError as e:
            result.errors += 1
            logger.error("Retention cleanup failed: %s", e)

        result.finished_at = utcnow()
        logger.info(
            "Batch scoring done: processed=%d updated=%d errors=%d purged=%d",
            result.processed, result.updated, result.errors, result.purged,
        )
        return result

    async def _run_batch(
        self,
        batch: list[Theme],
        now: datetime,
        result: BatchResult,
        market_threshold: int,
        score_threshold: int,
    ) -> None:
        sem = asyncio.Semaphore(self.max_concurrency)

        async def _score(theme: Theme) -> None:
            async with sem:
                try:
                    updated = await self.score_theme(
                        theme, now, market_threshold=market_threshold, score_threshold=score_threshold
                    )
                except StoreError as e:
                    result.errors += 1
                    result.details.append({"theme_id": theme.id, "error": str(e)})
                    logger.error("Scoring theme %s failed: %s", theme.id, e)
                    return
                result.processed += 1
                if updated:
                    result.updated += 1
                else:
                    result.unchanged += 1

        await asyncio.gather(*[_score(t) for t in batch])

    async def score_theme(
        self,
        theme: Theme,
        now: datetime,
        *,
        market_threshold: int = MARKET_THRESHOLD,
        score_threshold: int = SCORE_THRESHOLD,
    ) -> bool:
        """Recompute one theme; returns True when the stored row was updated."""
        observations = await self.store.list_observations(theme.id, since=now - self.retention)
        metrics = evaluate_theme(theme, observations, now)
        score_diff, market_diff = metrics.changes_from(theme)
        sources_changed = set(metrics.data_sources) - set(theme.data_sources)

        if score_diff < score_threshold and market_diff < market_threshold and not sources_changed:
            return False

        await self.store.update_theme(
            theme.id,
            {
                "market_size": metrics.market_size,
                "monetization_score": metrics.monetization_score,
                "data_sources": sorted(set(theme.data_sources) | set(metrics.data_sources)),
                "updated_at": now,
            },
        )
        logger.debug(
            "Theme %s rescored: score %d->%d, market %d->%d",
            theme.id, theme.monetization_score, metrics.monetization_score,
            theme.market_size, metrics.market_size,
        )
        return True
