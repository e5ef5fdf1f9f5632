"""Dispatch of processing operations to their processors."""
from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from trendscout.models.entities import utcnow
from trendscout.processing.batch_scorer import LIGHT_MARKET_THRESHOLD, MARKET_THRESHOLD, BatchScorer
from trendscout.processing.change_broadcaster import ChangeBroadcaster
from trendscout.processing.normalizer import ObservationNormalizer
from trendscout.processing.theme_analyzer import ThemeAnalyzer
from trendscout.schemas.process import (
    AnalyzeOptions,
    BatchUpdateOptions,
    NormalizeOptions,
    RealtimeOptions,
)
from trendscout.services.broadcast import Broadcaster
from trendscout.services.store import TrendStore

logger = logging.getLogger(__name__)

OPERATIONS = ("normalize", "batch_update", "analyze_themes", "realtime_sync")


class UnknownOperation(ValueError):
    pass


class ProcessingService:
    def __init__(
        self,
        store: TrendStore,
        broadcaster: Broadcaster,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self._clock = clock
        self.analyzer = ThemeAnalyzer(store, clock=clock)
        self.normalizer = ObservationNormalizer(store, clock=clock)
        # one instance for the process lifetime: it remembers delivered changes
        self.change_broadcaster = ChangeBroadcaster(store, broadcaster, clock=clock)

    async def process(
        self,
        operation: str,
        options: dict[str, Any] | None = None,
        data: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        """Run one operation; raises UnknownOperation or pydantic.ValidationError on bad input."""
        options = options or {}
        logger.info("Processing operation %s with options %s", operation, options)

        if operation == "batch_update":
            opts = BatchUpdateOptions.model_validate(options)
            scorer = BatchScorer(
                self.store,
                batch_size=opts.batch_size,
                max_concurrency=opts.max_concurrency,
                clock=self._clock,
            )
            result = await scorer.run(
                force_update=opts.force_update,
                market_threshold=LIGHT_MARKET_THRESHOLD if opts.light else MARKET_THRESHOLD,
                max_themes=opts.max_themes,
            )
        elif operation == "analyze_themes":
            opts = AnalyzeOptions.model_validate(options)
            result = await self.analyzer.run(force_update=opts.force_update)
        elif operation == "realtime_sync":
            opts = RealtimeOptions.model_validate(options)
            result = await self.change_broadcaster.sync(
                notify_users=opts.notify_users,
                broadcast_changes=opts.broadcast_changes,
                trigger_alerts=opts.trigger_alerts,
            )
        elif operation == "normalize":
            opts = NormalizeOptions.model_validate(options)
            result = await self.normalizer.normalize(
                data or [], validate=opts.validate_data, deduplicate=opts.deduplicate_data
            )
        else:
            raise UnknownOperation(f"Unknown operation: {operation}")

        return result.to_dict()
