from datetime import datetime, timedelta, timezone

import pytest

from trendscout.models import Observation, Theme
from trendscout.processing.scoring import evaluate_theme, monetization_score
from trendscout.processing.theme_analyzer import ThemeAnalyzer, generate_insights, should_update

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


def obs(source, volume, growth, *, theme_id="t1", ago=timedelta(hours=1)):
    return Observation(
        theme_id=theme_id,
        source=source,
        search_volume=volume,
        growth_rate=growth,
        timestamp=NOW - ago,
        created_at=NOW - ago,
    )


def insight_types(insights):
    return sorted(i.type for i in insights)


def test_blue_ocean_example():
    observations = [obs("reddit", 120_000, 60), obs("github", 120_000, 62), obs("twitter", 120_000, 64)]
    insights = generate_insights("t1", observations, 120_000, "low", NOW)

    assert insight_types(insights) == ["blue_ocean", "high_growth", "multi_source_validation"]
    assert monetization_score(120_000, 62, "productivity", "low") >= 70
    high_growth = next(i for i in insights if i.type == "high_growth")
    assert "62.0%" in high_growth.description
    assert high_growth.impact == "positive"


def test_declining_and_niche_insights():
    insights = generate_insights("t1", [obs("reddit", 5000, -35)], 5000, "low", NOW)
    assert insight_types(insights) == ["declining_trend", "niche_market"]
    assert all(i.theme_id == "t1" for i in insights)


def test_no_insights_without_signal():
    assert generate_insights("t1", [obs("reddit", 200, 5)], 200, "low", NOW) == []
    # growth only counts from the last week
    stale = [obs("reddit", 200, 90, ago=timedelta(days=9))]
    assert generate_insights("t1", stale, 200, "low", NOW) == []


def test_should_update_thresholds():
    theme = Theme(title="x", monetization_score=50, market_size=10_000, competition_level="low")
    base = evaluate_theme(theme, [], NOW)
    base.monetization_score, base.market_size, base.competition_level = 54, 10_400, "low"
    assert not should_update(theme, base, is_new=False)
    base.monetization_score = 55
    assert should_update(theme, base, is_new=False)
    assert not should_update(theme, base, is_new=True)
    base.competition_level = "medium"
    assert should_update(theme, base, is_new=True)


async def seed(store, *, growth, created_ago=timedelta(hours=2), updated_ago=timedelta(hours=2)):
    theme = await store.create_theme(
        Theme(title="Focus timer", created_at=NOW - created_ago, updated_at=NOW - updated_ago)
    )
    await store.upsert_observations(
        [obs(s, 3000, growth, theme_id=theme.id, ago=timedelta(minutes=30)) for s in ("reddit", "github", "twitter")]
    )
    return theme


async def regrow(store, theme, growth):
    await store.upsert_observations(
        [obs(s, 3000, growth, theme_id=theme.id, ago=timedelta(minutes=30)) for s in ("reddit", "github", "twitter")]
    )


@pytest.mark.asyncio
async def test_analyze_new_theme_updates_metrics_and_insights(store):
    theme = await seed(store, growth=80)
    result = await ThemeAnalyzer(store, clock=lambda: NOW).run()

    assert result.new_themes == 1
    assert result.analyzed == 1
    assert result.updated == 1
    stored = await store.get_theme(theme.id)
    assert stored.market_size == 3000
    assert stored.technical_difficulty == "beginner"
    assert stored.estimated_revenue_max > stored.estimated_revenue_min > 0
    assert stored.data_sources == ["github", "reddit", "twitter"]
    assert insight_types(await store.list_insights(theme.id)) == [
        "high_growth", "multi_source_validation", "niche_market",
    ]


@pytest.mark.asyncio
async def test_keep_policy_leaves_stale_insights(store):
    theme = await seed(store, growth=80)
    analyzer = ThemeAnalyzer(store, retraction_policy="keep", clock=lambda: NOW)
    await analyzer.run()

    await regrow(store, theme, 0)
    result = await analyzer.run(force_update=True)
    assert result.insights_retracted == 0
    assert "high_growth" in insight_types(await store.list_insights(theme.id))


@pytest.mark.asyncio
async def test_retract_policy_removes_stale_insights(store):
    theme = await seed(store, growth=80)
    analyzer = ThemeAnalyzer(store, retraction_policy="retract", clock=lambda: NOW)
    await analyzer.run()

    await regrow(store, theme, 0)
    result = await analyzer.run(force_update=True)
    assert result.insights_retracted == 1
    assert insight_types(await store.list_insights(theme.id)) == ["multi_source_validation", "niche_market"]


@pytest.mark.asyncio
async def test_existing_themes_need_recent_activity(store):
    active = await seed(store, growth=10, created_ago=timedelta(days=5), updated_ago=timedelta(hours=7))
    idle = await store.create_theme(
        Theme(title="Idle", created_at=NOW - timedelta(days=5), updated_at=NOW - timedelta(hours=7))
    )
    fresh = await store.create_theme(
        Theme(title="Just analyzed", created_at=NOW - timedelta(days=5), updated_at=NOW - timedelta(hours=1))
    )
    await store.upsert_observations([obs("reddit", 10, 0, theme_id=fresh.id, ago=timedelta(minutes=5))])

    result = await ThemeAnalyzer(store, clock=lambda: NOW).run()
    analyzed = {t["theme_id"] for t in result.themes}
    assert analyzed == {active.id}
    assert idle.id not in analyzed
    assert result.existing_themes == 1


def test_unknown_retraction_policy(store):
    with pytest.raises(ValueError):
        ThemeAnalyzer(store, retraction_policy="archive")


@pytest.mark.asyncio
async def test_analyzer_flags_blue_ocean_for_new_large_theme(store):
    theme = await store.create_theme(
        Theme(title="Habit tracker", created_at=NOW - timedelta(hours=1), updated_at=NOW - timedelta(hours=1))
    )
    await store.upsert_observations(
        [
            obs(source, 120_000, growth, theme_id=theme.id)
            for source, growth in (("reddit", 60), ("github", 62), ("twitter", 64))
        ]
    )
    analyzer = ThemeAnalyzer(store, clock=lambda: NOW)

    summary = await analyzer.analyze_theme(theme, NOW, is_new=True)

    assert summary["updated"] is True
    assert summary["market_size"] == 120_000
    assert summary["monetization_score"] >= 70
    assert insight_types(await store.list_insights(theme.id)) == [
        "blue_ocean", "high_growth", "multi_source_validation",
    ]
    stored = await store.get_theme(theme.id)
    assert stored.competition_level == "low"
    assert stored.market_size == 120_000

    # the next pass classifies competition from the stored market size
    again = await analyzer.analyze_theme(stored, NOW, is_new=False)
    assert again["updated"] is True
    assert (await store.get_theme(theme.id)).competition_level == "high"


@pytest.mark.asyncio
async def test_recent_writes_count_as_activity(store):
    theme = await store.create_theme(
        Theme(title="Focus timer", created_at=NOW - timedelta(days=5), updated_at=NOW - timedelta(hours=7))
    )
    # bucketed two hours back, written ten minutes ago
    written = obs("reddit", 500, 5, theme_id=theme.id, ago=timedelta(hours=2))
    written.created_at = NOW - timedelta(minutes=10)
    old = await store.create_theme(
        Theme(title="Idle", created_at=NOW - timedelta(days=5), updated_at=NOW - timedelta(hours=7))
    )
    stale = obs("reddit", 500, 5, theme_id=old.id, ago=timedelta(hours=2))
    stale.created_at = NOW - timedelta(hours=2)
    await store.upsert_observations([written, stale])

    result = await ThemeAnalyzer(store, clock=lambda: NOW).run()
    assert {t["theme_id"] for t in result.themes} == {theme.id}
