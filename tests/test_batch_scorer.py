import copy
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from trendscout.models import Observation, Theme
from trendscout.processing.batch_scorer import LIGHT_MARKET_THRESHOLD, BatchScorer
from trendscout.processing.scoring import evaluate_theme
from trendscout.services.store import StoreError

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


async def add_theme(store, title, *, updated_ago=timedelta(hours=2), **fields):
    return await store.create_theme(
        Theme(
            title=title,
            created_at=NOW - timedelta(days=20),
            updated_at=NOW - updated_ago,
            **fields,
        )
    )


async def add_observations(store, theme_id, *specs):
    await store.upsert_observations(
        [
            Observation(
                theme_id=theme_id,
                source=source,
                search_volume=volume,
                growth_rate=growth,
                timestamp=NOW - timedelta(days=days_ago),
            )
            for source, volume, growth, days_ago in specs
        ]
    )


def scorer(store, **kwargs):
    return BatchScorer(store, clock=lambda: NOW, **kwargs)


@pytest.mark.asyncio
async def test_scores_stale_themes_and_is_idempotent(store):
    theme = await add_theme(store, "Habit tracker")
    await add_observations(store, theme.id, ("reddit", 5000, 40.0, 0), ("github", 3000, 10.0, 2))

    first = await scorer(store).run()
    assert first.processed == 1
    assert first.updated == 1

    stored = await store.get_theme(theme.id)
    assert stored.market_size > 0
    assert 0 < stored.monetization_score <= 100
    assert stored.data_sources == ["github", "reddit"]
    snapshot = copy.deepcopy(store.themes)

    second = await scorer(store).run(force_update=True)
    assert second.processed == 1
    assert second.updated == 0
    assert second.unchanged == 1
    assert store.themes == snapshot


@pytest.mark.asyncio
async def test_recently_updated_themes_are_skipped_unless_forced(store):
    theme = await add_theme(store, "Fresh", updated_ago=timedelta(minutes=10))
    await add_observations(store, theme.id, ("reddit", 5000, 0.0, 0))

    assert (await scorer(store).run()).processed == 0
    assert (await scorer(store).run(force_update=True)).updated == 1


@pytest.mark.asyncio
async def test_update_threshold_depends_on_pass(store):
    probe = Theme(title="Habit tracker", id="probe", category="productivity")
    observations = [Observation(source="reddit", search_volume=1700, growth_rate=0.0, timestamp=NOW)]
    metrics = evaluate_theme(probe, observations, NOW)

    theme = await add_theme(
        store,
        "Habit tracker",
        market_size=metrics.market_size - 700,
        monetization_score=metrics.monetization_score,
        data_sources=["reddit"],
    )
    await add_observations(store, theme.id, ("reddit", 1700, 0.0, 0))

    light = await scorer(store).run(market_threshold=LIGHT_MARKET_THRESHOLD)
    assert light.updated == 0
    full = await scorer(store).run()
    assert full.updated == 1
    assert (await store.get_theme(theme.id)).market_size == metrics.market_size


@pytest.mark.asyncio
async def test_batches_are_bounded(store):
    for i in range(5):
        theme = await add_theme(store, f"Theme {i}", updated_ago=timedelta(hours=10 - i))
        await add_observations(store, theme.id, ("reddit", 2000 + i, 0.0, 0))

    result = await scorer(store, batch_size=2, max_concurrency=1).run()
    assert result.batches == 3
    assert result.processed == 5


@pytest.mark.asyncio
async def test_max_themes_caps_the_run(store):
    for i in range(4):
        await add_theme(store, f"Theme {i}")
    result = await scorer(store, batch_size=2).run(max_themes=3)
    assert result.processed == 3


@pytest.mark.asyncio
async def test_storage_failure_does_not_abort_batch(store):
    for i in range(3):
        theme = await add_theme(store, f"Theme {i}")
        await add_observations(store, theme.id, ("reddit", 9000, 0.0, 0))
    store.update_theme = AsyncMock(side_effect=[None, StoreError("timeout"), None])

    result = await scorer(store).run()
    assert result.errors == 1
    assert result.updated == 2
    assert result.details[0]["error"] == "timeout"


@pytest.mark.asyncio
async def test_retention_purges_old_observations(store):
    theme = await add_theme(store, "Old news")
    await add_observations(store, theme.id, ("reddit", 100, 0.0, 100), ("reddit", 100, 0.0, 10))

    result = await scorer(store).run()
    assert result.purged == 1
    assert [o.timestamp for o in await store.list_observations(theme.id)] == [NOW - timedelta(days=10)]
