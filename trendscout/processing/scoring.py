"""Shared theme metrics: market size, monetization score, classifications.

Both the batch scorer and the theme analyzer compute theme aggregates through
`evaluate_theme`. The batch scorer classifies competition from the fresh
market size; the analyzer classifies it from the market size stored before
its pass, so a newly discovered large market reads as low competition until
the next analysis. Once the stored market settles the two passes agree.

Monetization score = market component (<=40) + growth component (<=30)
+ category/competition component (<=30), clamped to [0, 100].
"""
from __future__ import annotations

import math
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from trendscout.models import Observation, Theme

RECENCY_HORIZON_DAYS = 30
RECENCY_FLOOR = 0.1
GROWTH_WINDOW = timedelta(days=7)

MARKET_CAP = 40
GROWTH_CAP = 30
CATEGORY_CAP = 30

CATEGORY_BONUS: dict[str, int] = {
    "productivity": 15,
    "finance": 12,
    "health": 10,
    "education": 8,
    "social": 6,
    "entertainment": 4,
}
DEFAULT_CATEGORY_BONUS = 5

COMPETITION_POINTS: dict[str, int] = {"low": 30, "medium": 20, "high": 10}
COMPETITION_MULTIPLIER: dict[str, float] = {"low": 1.5, "medium": 1.0, "high": 0.6}

HIGH_COMPETITION_MARKET = 100_000
MEDIUM_COMPETITION_MARKET = 10_000

COMPLEX_KEYWORDS = (
    "ai",
    "machine learning",
    "blockchain",
    "crypto",
    "api",
    "integration",
    "real-time",
)
SIMPLE_KEYWORDS = ("todo", "note", "tracker", "calculator", "timer", "reminder")

CATEGORY_KEYWORDS: dict[str, tuple[str, ...]] = {
    "productivity": ("productivity", "task", "todo", "calendar", "schedule", "organize", "workflow"),
    "entertainment": ("game", "music", "video", "movie", "entertainment", "fun", "streaming"),
    "education": ("learn", "education", "course", "tutorial", "study", "training", "skill"),
    "health": ("health", "fitness", "medical", "wellness", "exercise", "diet", "mental"),
    "finance": ("finance", "money", "budget", "investment", "crypto", "trading", "banking"),
    "social": ("social", "chat", "community", "network", "dating", "messaging", "forum"),
}
DEFAULT_CATEGORY = "productivity"


def _contains_word(text: str, keyword: str) -> bool:
    return re.search(rf"(?<![a-z0-9]){re.escape(keyword)}(?![a-z0-9])", text) is not None


def recency_weight(age: timedelta) -> float:
    """Linear decay from 1.0 to a 0.1 floor over the 30-day horizon."""
    age_days = max(0.0, age.total_seconds() / 86400)
    return max(RECENCY_FLOOR, 1 - age_days / RECENCY_HORIZON_DAYS)


def weighted_market_size(observations: Iterable[Observation], now: datetime) -> int:
    total = weight_sum = 0.0
    for obs in observations:
        w = recency_weight(now - obs.timestamp)
        total += w * obs.search_volume
        weight_sum += w
    if weight_sum == 0:
        return 0
    return round(total / weight_sum)


def recent_growth(observations: Iterable[Observation], now: datetime) -> float:
    """Average growth rate over the observations of the last 7 days (0 when none)."""
    rates = [o.growth_rate for o in observations if now - o.timestamp <= GROWTH_WINDOW]
    if not rates:
        return 0.0
    return sum(rates) / len(rates)


def market_component(market_size: int) -> float:
    return min(MARKET_CAP, math.log10(max(0, market_size) + 1) * 8)


def growth_component(avg_growth: float) -> float:
    return min(GROWTH_CAP, max(0.0, avg_growth))


def category_component(category: str, competition_level: str) -> float:
    bonus = CATEGORY_BONUS.get(category, DEFAULT_CATEGORY_BONUS)
    return min(CATEGORY_CAP, bonus + COMPETITION_POINTS.get(competition_level, 20))


def monetization_score(
    market_size: int, avg_growth: float, category: str, competition_level: str
) -> int:
    total = (
        market_component(market_size)
        + growth_component(avg_growth)
        + category_component(category, competition_level)
    )
    return max(0, min(100, round(total)))


def classify_competition(market_size: int) -> str:
    if market_size > HIGH_COMPETITION_MARKET:
        return "high"
    if market_size > MEDIUM_COMPETITION_MARKET:
        return "medium"
    return "low"


def classify_difficulty(title: str, description: str = "") -> str:
    text = f"{title} {description}".lower()
    if any(_contains_word(text, k) for k in COMPLEX_KEYWORDS):
        return "advanced"
    if any(_contains_word(text, k) for k in SIMPLE_KEYWORDS):
        return "beginner"
    return "intermediate"


def estimate_revenue(market_size: int, score: int, competition_level: str) -> tuple[int, int]:
    base = (
        math.log10(max(0, market_size) + 1)
        * 1000
        * (score / 100)
        * COMPETITION_MULTIPLIER.get(competition_level, 1.0)
    )
    return round(base * 0.3), round(base * 2.0)


def infer_category(title: str) -> str:
    text = title.lower()
    for category, keywords in CATEGORY_KEYWORDS.items():
        if any(_contains_word(text, k) for k in keywords):
            return category
    return DEFAULT_CATEGORY


@dataclass
class ThemeMetrics:
    market_size: int
    avg_growth: float
    competition_level: str
    monetization_score: int
    technical_difficulty: str
    estimated_revenue_min: int
    estimated_revenue_max: int
    data_sources: list[str] = field(default_factory=list)
    observation_count: int = 0

    def changes_from(self, theme: Theme) -> tuple[int, int]:
        """(score diff, market size diff) against the stored theme."""
        return (
            abs(self.monetization_score - theme.monetization_score),
            abs(self.market_size - theme.market_size),
        )


def evaluate_theme(
    theme: Theme,
    observations: list[Observation],
    now: datetime,
    *,
    competition_market: int | None = None,
) -> ThemeMetrics:
    """Aggregate a theme's observations into its metrics.

    Competition is classified from `competition_market` when given (the theme
    analyzer passes the stored market size), else from the fresh market size.
    """
    market_size = weighted_market_size(observations, now)
    avg_growth = recent_growth(observations, now)
    competition = classify_competition(
        market_size if competition_market is None else competition_market
    )
    score = monetization_score(market_size, avg_growth, theme.category, competition)
    revenue_min, revenue_max = estimate_revenue(market_size, score, competition)
    return ThemeMetrics(
        market_size=market_size,
        avg_growth=avg_growth,
        competition_level=competition,
        monetization_score=score,
        technical_difficulty=classify_difficulty(theme.title, theme.description),
        estimated_revenue_min=revenue_min,
        estimated_revenue_max=revenue_max,
        data_sources=sorted({o.source for o in observations}),
        observation_count=len(observations),
    )
