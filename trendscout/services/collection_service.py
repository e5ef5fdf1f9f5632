"""Collection orchestration: run source collectors, persist, summarize.

Collectors run concurrently across sources (each one walks its themes
serially). Persistence happens afterwards, one source at a time, so theme
find-or-create never races with itself. Every requested source ends up in
the run summary as `success` or `error`; one source failing never stops the
others.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from trendscout.collectors.base import BaseCollector, CancelToken
from trendscout.collectors.errors import CollectionCancelled, CollectorAborted
from trendscout.collectors.failure_classifier import FailureClassifier, Severity
from trendscout.collectors.rate_governor import RateGovernor
from trendscout.collectors.registry import CollectorRegistry
from trendscout.models import ALL_SOURCES, CollectionRun, Observation, SourceOutcome
from trendscout.models.entities import utcnow
from trendscout.processing.normalizer import resolve_theme
from trendscout.services.store import StoreError, TrendStore

logger = logging.getLogger(__name__)

CollectorFactory = Callable[[str], BaseCollector]


class UnknownSourceError(ValueError):
    """A requested source id has no collector."""


def resolve_sources(sources: list[str] | str | None) -> list[str]:
    """Expand "all" and validate source ids, keeping request order."""
    if sources is None or sources == "all" or sources == ["all"]:
        return list(ALL_SOURCES)
    if isinstance(sources, str):
        sources = [s.strip() for s in sources.split(",") if s.strip()]
    unknown = [s for s in sources if s not in ALL_SOURCES]
    if unknown:
        raise UnknownSourceError(f"Unknown source(s): {', '.join(unknown)}")
    return list(dict.fromkeys(sources))


class CollectionOrchestrator:
    def __init__(
        self,
        store: TrendStore,
        governor: RateGovernor,
        classifier: FailureClassifier,
        *,
        collector_configs: dict[str, dict[str, Any]] | None = None,
        collector_factory: CollectorFactory | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.governor = governor
        self.classifier = classifier
        self.collector_configs = collector_configs or {}
        self._factory = collector_factory or self._default_factory
        self._clock = clock

    def _default_factory(self, source_id: str) -> BaseCollector:
        return CollectorRegistry.create_collector(
            source_id,
            self.governor,
            self.classifier,
            config=self.collector_configs.get(source_id),
            clock=self._clock,
        )

    async def _themes_to_collect(
        self, collector: BaseCollector, themes: list[str], force_refresh: bool
    ) -> list[str]:
        """Drop themes already observed from this source in the current bucket."""
        if force_refresh:
            return themes
        try:
            seen = await self.store.observed_theme_ids(collector.source_id, collector.observed_at())
        except StoreError as e:
            logger.warning("Could not check existing observations: %s", e)
            return themes
        if not seen:
            return themes
        remaining = []
        for name in themes:
            theme = await self.store.find_theme_by_title(name)
            if theme is None or theme.id not in seen:
                remaining.append(name)
        if len(remaining) < len(themes):
            logger.info(
                "%s: skipping %d theme(s) already observed this bucket",
                collector.source_id, len(themes) - len(remaining),
            )
        return remaining

    async def _run_source(
        self,
        source_id: str,
        themes: list[str],
        region: str,
        force_refresh: bool,
        cancel: CancelToken | None,
    ) -> tuple[list[Observation], str | None]:
        """Run one collector; returns (observations, error message or None)."""
        try:
            collector = self._factory(source_id)
            if not collector.is_configured:
                self.classifier.log_error(source_id, "credentials not configured", Severity.CRITICAL)
                return [], f"{source_id} is not configured"
            pending = await self._themes_to_collect(collector, themes, force_refresh)
            if not pending:
                return [], None
            return await collector.collect(pending, region, force_refresh, cancel=cancel), None
        except CollectionCancelled as e:
            return e.partial, f"cancelled: {e}"
        except CollectorAborted as e:
            return e.partial, str(e)
        except Exception as e:
            logger.exception("Collector %s failed", source_id)
            self.classifier.log_error(source_id, e, Severity.HIGH)
            return [], str(e)

    async def _persist(self, source_id: str, observations: list[Observation]) -> tuple[int, int]:
        """Resolve themes and upsert; returns (written, failed).

        A theme that cannot be resolved only drops its own observation.
        """
        written_at = self._clock()
        ready: list[Observation] = []
        failed = 0
        for obs in observations:
            try:
                theme = await resolve_theme(
                    self.store, obs.theme_title or "", source_id, now=written_at
                )
                if source_id not in theme.data_sources:
                    await self.store.update_theme(
                        theme.id, {"data_sources": sorted({*theme.data_sources, source_id})}
                    )
            except StoreError as e:
                failed += 1
                logger.error(
                    "Storing %s observation for %r failed: %s", source_id, obs.theme_title, e
                )
                continue
            obs.theme_id = theme.id
            obs.created_at = written_at
            ready.append(obs)
        if not ready:
            return 0, failed
        return await self.store.upsert_observations(ready), failed

    async def collect(
        self,
        themes: list[str],
        sources: list[str] | str | None = "all",
        region: str = "US",
        force_refresh: bool = False,
        *,
        actor: str,
        cancel: CancelToken | None = None,
    ) -> CollectionRun:
        source_ids = resolve_sources(sources)
        themes = list(dict.fromkeys(t.strip() for t in themes if t and t.strip()))
        run = CollectionRun(user_id=actor, sources=source_ids)
        logger.info(
            "Collection run by %s: %d themes x %s (region=%s, force=%s)",
            actor, len(themes), source_ids, region, force_refresh,
        )

        outcomes = await asyncio.gather(
            *[self._run_source(s, themes, region, force_refresh, cancel) for s in source_ids]
        )

        for source_id, (observations, error) in zip(source_ids, outcomes):
            written = failed = 0
            if observations:
                try:
                    written, failed = await self._persist(source_id, observations)
                except StoreError as e:
                    logger.error("Storing %s observations failed: %s", source_id, e)
                    error = f"storage failure: {e}"
            outcome = SourceOutcome(
                source=source_id,
                status="error" if error else "success",
                record_count=written,
                error=error,
                storage_errors=failed,
                timestamp=self._clock(),
            )
            run.results.append(outcome)

        run.completed_at = self._clock()
        try:
            await self.store.insert_collection_run(run.to_row())
        except StoreError as e:
            logger.error("Recording collection run failed: %s", e)

        logger.info("Collection run complete: %s", run.summary())
        return run
