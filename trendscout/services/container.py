"""Per-process wiring of the shared service objects.

The rate governor and failure classifier hold in-memory state, so exactly one
of each is built here and handed to every collector through the orchestrator.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from trendscout.collectors.failure_classifier import FailureClassifier
from trendscout.collectors.rate_governor import RateGovernor
from trendscout.collectors.registry import load_collector_configs, rate_limits_from_configs
from trendscout.services.broadcast import (
    Broadcaster,
    CompositeBroadcaster,
    LocalBroadcastHub,
    SupabaseRealtimeBroadcaster,
)
from trendscout.services.collection_service import CollectionOrchestrator
from trendscout.services.processing_service import ProcessingService
from trendscout.services.store import MemoryStore, SupabaseStore, TrendStore
from trendscout.services.supabase_client import get_supabase, is_supabase_configured

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    store: TrendStore
    governor: RateGovernor
    classifier: FailureClassifier
    hub: LocalBroadcastHub
    broadcaster: Broadcaster
    orchestrator: CollectionOrchestrator
    processing: ProcessingService

    @property
    def store_backend(self) -> str:
        return "supabase" if isinstance(self.store, SupabaseStore) else "memory"

    async def close(self) -> None:
        await self.broadcaster.close()


def build_container(store: TrendStore | None = None) -> ServiceContainer:
    if store is None:
        if is_supabase_configured():
            store = SupabaseStore(get_supabase())
        else:
            logger.warning(
                "Supabase not configured; using in-memory store (data is lost on restart)"
            )
            store = MemoryStore()

    configs = load_collector_configs()
    governor = RateGovernor(rate_limits_from_configs(configs))
    classifier = FailureClassifier()
    hub = LocalBroadcastHub()
    broadcaster: Broadcaster = hub
    if isinstance(store, SupabaseStore):
        broadcaster = CompositeBroadcaster(SupabaseRealtimeBroadcaster(), hub)

    return ServiceContainer(
        store=store,
        governor=governor,
        classifier=classifier,
        hub=hub,
        broadcaster=broadcaster,
        orchestrator=CollectionOrchestrator(
            store, governor, classifier, collector_configs=configs
        ),
        processing=ProcessingService(store, broadcaster),
    )


# Module-level reference for access from API routes, jobs and scripts
_container: ServiceContainer | None = None


def get_container() -> ServiceContainer:
    """Return the process-wide container (lazy-init)."""
    global _container
    if _container is None:
        _container = build_container()
    return _container


def set_container(container: ServiceContainer | None) -> None:
    global _container
    _container = container
