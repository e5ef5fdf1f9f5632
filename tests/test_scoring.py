from datetime import datetime, timedelta, timezone

import pytest

from trendscout.models import Observation, Theme
from trendscout.processing.scoring import (
    category_component,
    classify_competition,
    classify_difficulty,
    estimate_revenue,
    evaluate_theme,
    growth_component,
    infer_category,
    market_component,
    monetization_score,
    recency_weight,
    recent_growth,
    weighted_market_size,
)

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


def obs(volume, days_ago=0, growth=0.0, source="reddit"):
    return Observation(
        source=source,
        search_volume=volume,
        growth_rate=growth,
        timestamp=NOW - timedelta(days=days_ago),
    )


def test_recency_weight_decays_to_floor():
    assert recency_weight(timedelta(0)) == 1.0
    assert recency_weight(timedelta(days=15)) == pytest.approx(0.5)
    assert recency_weight(timedelta(days=40)) == 0.1


def test_weighted_market_size():
    assert weighted_market_size([], NOW) == 0
    # weights 1.0 and 0.5
    assert weighted_market_size([obs(1000), obs(2000, days_ago=15)], NOW) == 1333


def test_recent_growth_uses_last_week_only():
    observations = [obs(1, growth=40), obs(1, days_ago=3, growth=20), obs(1, days_ago=10, growth=-90)]
    assert recent_growth(observations, NOW) == 30
    assert recent_growth([obs(1, days_ago=10, growth=50)], NOW) == 0.0


def test_components_are_capped_independently():
    assert market_component(10**12) == 40
    assert market_component(0) == 0
    assert growth_component(500) == 30
    assert growth_component(-50) == 0
    assert category_component("productivity", "low") == 30
    assert category_component("entertainment", "high") == 14
    assert category_component("unknown", "high") == 15


@pytest.mark.parametrize("market", [0, 1, 999, 50_000, 10**9])
@pytest.mark.parametrize("growth", [-1000.0, 0.0, 12.5, 10_000.0])
@pytest.mark.parametrize("category", ["productivity", "social", "other"])
@pytest.mark.parametrize("competition", ["low", "medium", "high", "unknown"])
def test_monetization_score_is_bounded(market, growth, category, competition):
    score = monetization_score(market, growth, category, competition)
    assert 0 <= score <= 100


def test_monetization_score_extremes():
    assert monetization_score(10**9, 1000, "productivity", "low") == 100
    assert monetization_score(0, -10, "other", "high") == 15


def test_classify_competition_boundaries():
    assert classify_competition(10_000) == "low"
    assert classify_competition(10_001) == "medium"
    assert classify_competition(100_000) == "medium"
    assert classify_competition(100_001) == "high"


def test_classify_difficulty_matches_whole_words():
    assert classify_difficulty("AI meeting notes") == "advanced"
    assert classify_difficulty("Habit tracker") == "beginner"
    assert classify_difficulty("Garden maintenance planner") == "intermediate"
    assert classify_difficulty("Recipe box", "syncs through a public API") == "advanced"


def test_estimate_revenue_range():
    # log10(10000) * 1000 * 0.5 * 1.5 = 3000
    assert estimate_revenue(9_999, 50, "low") == (900, 6000)
    assert estimate_revenue(0, 80, "high") == (0, 0)


def test_infer_category():
    assert infer_category("Fitness Tracker") == "health"
    assert infer_category("Budget planner") == "finance"
    assert infer_category("Music discovery") == "entertainment"
    assert infer_category("Parking finder") == "productivity"


def test_evaluate_theme_collects_sources():
    theme = Theme(title="Habit tracker", id="t1")
    metrics = evaluate_theme(
        theme,
        [obs(500, source="reddit", growth=10), obs(700, days_ago=1, source="github", growth=20)],
        NOW,
    )
    assert metrics.data_sources == ["github", "reddit"]
    assert metrics.observation_count == 2
    assert metrics.avg_growth == 15
    assert metrics.competition_level == "low"
    assert metrics.technical_difficulty == "beginner"
    assert 0 <= metrics.monetization_score <= 100
    assert metrics.estimated_revenue_min <= metrics.estimated_revenue_max
