"""Theme analysis: classifications, revenue range and derived insights.

Picks up themes created in the last 24 hours plus existing themes that have
not been analyzed for 6 hours but received observations in the last hour.
Each theme goes through the same metrics as the batch scorer, then gets its
insights upserted by (theme_id, type).

Insights whose condition no longer holds are handled by the retraction
policy: "keep" leaves them in place, "retract" deletes them.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from trendscout.config import settings
from trendscout.models import Insight, InsightType, Observation, Theme
from trendscout.models.entities import utcnow
from trendscout.processing.scoring import GROWTH_WINDOW, ThemeMetrics, evaluate_theme
from trendscout.services.store import StoreError, TrendStore

logger = logging.getLogger(__name__)

NEW_THEME_WINDOW = timedelta(hours=24)
REANALYZE_AFTER = timedelta(hours=6)
ACTIVITY_WINDOW = timedelta(hours=1)
EXISTING_LIMIT = 50

RETRACTION_POLICIES = ("keep", "retract")
MANAGED_INSIGHT_TYPES = [t.value for t in InsightType]


def generate_insights(
    theme_id: str,
    observations: list[Observation],
    market_size: int,
    competition_level: str,
    now: datetime,
) -> list[Insight]:
    insights: list[Insight] = []
    recent = [o for o in observations if now - o.timestamp <= GROWTH_WINDOW]

    if recent:
        avg_growth = sum(o.growth_rate for o in recent) / len(recent)
        if avg_growth > 50:
            insights.append(
                Insight(
                    theme_id=theme_id,
                    type=InsightType.HIGH_GROWTH.value,
                    title="High Growth Trend",
                    description=(
                        "This theme is experiencing rapid growth with an average growth "
                        f"rate of {avg_growth:.1f}% in the past week."
                    ),
                    confidence=0.8,
                    impact="positive",
                    created_at=now,
                )
            )
        elif avg_growth < -20:
            insights.append(
                Insight(
                    theme_id=theme_id,
                    type=InsightType.DECLINING_TREND.value,
                    title="Declining Interest",
                    description=(
                        f"Interest in this theme is declining with a {abs(avg_growth):.1f}% "
                        "decrease in the past week."
                    ),
                    confidence=0.7,
                    impact="negative",
                    created_at=now,
                )
            )

    sources = sorted({o.source for o in observations})
    if len(sources) >= 3:
        insights.append(
            Insight(
                theme_id=theme_id,
                type=InsightType.MULTI_SOURCE_VALIDATION.value,
                title="Multi-Source Validation",
                description=(
                    f"This theme is trending across {len(sources)} different platforms: "
                    f"{', '.join(sources)}."
                ),
                confidence=0.9,
                impact="positive",
                created_at=now,
            )
        )

    if market_size > 50_000 and competition_level == "low":
        insights.append(
            Insight(
                theme_id=theme_id,
                type=InsightType.BLUE_OCEAN.value,
                title="Blue Ocean Opportunity",
                description=(
                    f"Large market size ({market_size:,}) with low competition presents "
                    "a significant opportunity."
                ),
                confidence=0.8,
                impact="positive",
                created_at=now,
            )
        )
    elif 1_000 < market_size < 10_000:
        insights.append(
            Insight(
                theme_id=theme_id,
                type=InsightType.NICHE_MARKET.value,
                title="Niche Market Opportunity",
                description=(
                    "This represents a focused niche market that could be ideal for "
                    "specialized solutions."
                ),
                confidence=0.7,
                impact="neutral",
                created_at=now,
            )
        )
    return insights


def should_update(theme: Theme, metrics: ThemeMetrics, *, is_new: bool) -> bool:
    score_diff, market_diff = metrics.changes_from(theme)
    if is_new:
        return (
            score_diff >= 10
            or market_diff >= 1000
            or metrics.competition_level != theme.competition_level
        )
    return score_diff >= 5 or market_diff >= 500


@dataclass
class AnalysisResult:
    analyzed: int = 0
    updated: int = 0
    insights_generated: int = 0
    insights_retracted: int = 0
    errors: int = 0
    new_themes: int = 0
    existing_themes: int = 0
    themes: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "analyzed": self.analyzed,
            "updated": self.updated,
            "insights_generated": self.insights_generated,
            "insights_retracted": self.insights_retracted,
            "errors": self.errors,
            "new_themes": self.new_themes,
            "existing_themes": self.existing_themes,
            "themes": self.themes,
        }


class ThemeAnalyzer:
    def __init__(
        self,
        store: TrendStore,
        *,
        retraction_policy: str | None = None,
        retention_days: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        policy = retraction_policy or settings.INSIGHT_RETRACTION_POLICY
        if policy not in RETRACTION_POLICIES:
            raise ValueError(f"Unknown insight retraction policy: {policy}")
        self.store = store
        self.retraction_policy = policy
        self.retention = timedelta(days=retention_days or settings.RETENTION_DAYS)
        self._clock = clock

    async def _select_themes(self, now: datetime, force_update: bool) -> list[tuple[Theme, bool]]:
        new = await self.store.list_themes_created_since(now - NEW_THEME_WINDOW)
        new_ids = {t.id for t in new}
        selected = [(t, True) for t in new]

        if force_update:
            offset = 0
            while True:
                page = await self.store.list_stale_themes(limit=EXISTING_LIMIT, offset=offset)
                selected.extend((t, False) for t in page if t.id not in new_ids)
                if len(page) < EXISTING_LIMIT:
                    break
                offset += EXISTING_LIMIT
            return selected

        stale = await self.store.list_stale_themes(
            limit=EXISTING_LIMIT, updated_before=now - REANALYZE_AFTER
        )
        active = {
            o.theme_id
            for o in await self.store.list_observations_since(
                now - ACTIVITY_WINDOW, limit=EXISTING_LIMIT * 20
            )
        }
        selected.extend((t, False) for t in stale if t.id in active and t.id not in new_ids)
        return selected

    async def run(self, *, force_update: bool = False) -> AnalysisResult:
        now = self._clock()
        result = AnalysisResult()
        selected = await self._select_themes(now, force_update)
        logger.info("Analyzing %d themes (force=%s)", len(selected), force_update)

        for theme, is_new in selected:
            if is_new:
                result.new_themes += 1
            else:
                result.existing_themes += 1
            try:
                summary = await self.analyze_theme(theme, now, is_new=is_new)
            except StoreError as e:
                result.errors += 1
                logger.error("Analysis of theme %s failed: %s", theme.id, e)
                continue
            result.analyzed += 1
            result.updated += int(summary["updated"])
            result.insights_generated += summary["insights"]
            result.insights_retracted += summary["retracted"]
            result.themes.append(summary)

        logger.info(
            "Theme analysis done: analyzed=%d updated=%d insights=%d errors=%d",
            result.analyzed, result.updated, result.insights_generated, result.errors,
        )
        return result

    async def analyze_theme(self, theme: Theme, now: datetime, *, is_new: bool) -> dict[str, Any]:
        observations = await self.store.list_observations(theme.id, since=now - self.retention)
        metrics = evaluate_theme(theme, observations, now, competition_market=theme.market_size)

        updated = should_update(theme, metrics, is_new=is_new)
        if updated:
            await self.store.update_theme(
                theme.id,
                {
                    "monetization_score": metrics.monetization_score,
                    "market_size": metrics.market_size,
                    "competition_level": metrics.competition_level,
                    "technical_difficulty": metrics.technical_difficulty,
                    "estimated_revenue_min": metrics.estimated_revenue_min,
                    "estimated_revenue_max": metrics.estimated_revenue_max,
                    "data_sources": sorted(set(theme.data_sources) | set(metrics.data_sources)),
                    "updated_at": now,
                },
            )

        insights = generate_insights(
            theme.id, observations, metrics.market_size, metrics.competition_level, now
        )
        await self.store.upsert_insights(insights)

        retracted = 0
        if self.retraction_policy == "retract":
            current = {i.type for i in insights}
            existing = {i.type for i in await self.store.list_insights(theme.id)}
            stale = sorted((existing - current) & set(MANAGED_INSIGHT_TYPES))
            retracted = await self.store.delete_insights(theme.id, stale)

        return {
            "theme_id": theme.id,
            "updated": updated,
            "monetization_score": metrics.monetization_score,
            "market_size": metrics.market_size,
            "insights": len(insights),
            "retracted": retracted,
        }
