"""Domain entities mirrored from the relational store.

Each entity converts to and from the plain dict rows the store speaks
(`to_row` / `from_row`). Timestamps are timezone-aware UTC datetimes in
memory and ISO-8601 strings on the wire.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class SourceId(str, Enum):
    GOOGLE_TRENDS = "google-trends"
    REDDIT = "reddit"
    TWITTER = "twitter"
    PRODUCT_HUNT = "product-hunt"
    GITHUB = "github"


ALL_SOURCES: list[str] = [s.value for s in SourceId]


class CompetitionLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TechnicalDifficulty(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class InsightType(str, Enum):
    HIGH_GROWTH = "high_growth"
    DECLINING_TREND = "declining_trend"
    MULTI_SOURCE_VALIDATION = "multi_source_validation"
    BLUE_OCEAN = "blue_ocean"
    NICHE_MARKET = "niche_market"


class Impact(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_ts(value: Any) -> datetime | None:
    """Parse an ISO timestamp (or pass through a datetime) into aware UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_ts(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class Theme:
    """A candidate product/business idea tracked across sources."""

    title: str
    id: str | None = None
    description: str = ""
    category: str = "productivity"
    monetization_score: int = 0
    market_size: int = 0
    competition_level: str = CompetitionLevel.LOW.value
    technical_difficulty: str = TechnicalDifficulty.INTERMEDIATE.value
    estimated_revenue_min: int = 0
    estimated_revenue_max: int = 0
    data_sources: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_row(self) -> dict[str, Any]:
        row: dict[str, Any] = {
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "monetization_score": self.monetization_score,
            "market_size": self.market_size,
            "competition_level": self.competition_level,
            "technical_difficulty": self.technical_difficulty,
            "estimated_revenue_min": self.estimated_revenue_min,
            "estimated_revenue_max": self.estimated_revenue_max,
            "data_sources": sorted(set(self.data_sources)),
            "created_at": format_ts(self.created_at),
            "updated_at": format_ts(self.updated_at),
        }
        if self.id is not None:
            row["id"] = self.id
        return row

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Theme:
        created = parse_ts(row.get("created_at")) or utcnow()
        return cls(
            id=row.get("id"),
            title=row.get("title", ""),
            description=row.get("description") or "",
            category=row.get("category") or "productivity",
            monetization_score=int(row.get("monetization_score") or 0),
            market_size=int(row.get("market_size") or 0),
            competition_level=row.get("competition_level") or CompetitionLevel.LOW.value,
            technical_difficulty=(
                row.get("technical_difficulty") or TechnicalDifficulty.INTERMEDIATE.value
            ),
            estimated_revenue_min=int(row.get("estimated_revenue_min") or 0),
            estimated_revenue_max=int(row.get("estimated_revenue_max") or 0),
            data_sources=list(row.get("data_sources") or []),
            created_at=created,
            updated_at=parse_ts(row.get("updated_at")) or created,
        )


@dataclass
class Observation:
    """One normalized data point from one source about one theme."""

    source: str
    search_volume: int
    growth_rate: float
    timestamp: datetime
    theme_id: str | None = None
    theme_title: str | None = None
    geographic_data: dict[str, float] = field(default_factory=dict)
    demographic_data: dict[str, float] = field(default_factory=dict)
    id: str | None = None
    # write time, refreshed on every upsert; `timestamp` is the bucketed upsert key
    created_at: datetime = field(default_factory=utcnow)

    def to_row(self) -> dict[str, Any]:
        return {
            "theme_id": self.theme_id,
            "source": self.source,
            "search_volume": max(0, int(self.search_volume)),
            "growth_rate": round(float(self.growth_rate), 2),
            "geographic_data": self.geographic_data,
            "demographic_data": self.demographic_data,
            "timestamp": format_ts(self.timestamp),
            "created_at": format_ts(self.created_at),
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Observation:
        timestamp = parse_ts(row.get("timestamp")) or utcnow()
        return cls(
            id=row.get("id"),
            theme_id=row.get("theme_id"),
            source=row.get("source", ""),
            search_volume=int(row.get("search_volume") or 0),
            growth_rate=float(row.get("growth_rate") or 0.0),
            geographic_data=row.get("geographic_data") or {},
            demographic_data=row.get("demographic_data") or {},
            timestamp=timestamp,
            created_at=parse_ts(row.get("created_at")) or timestamp,
        )


@dataclass
class Insight:
    theme_id: str
    type: str
    title: str
    description: str
    confidence: float
    impact: str
    created_at: datetime = field(default_factory=utcnow)

    def to_row(self) -> dict[str, Any]:
        return {
            "theme_id": self.theme_id,
            "type": self.type,
            "title": self.title,
            "description": self.description,
            "confidence": self.confidence,
            "impact": self.impact,
            "created_at": format_ts(self.created_at),
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Insight:
        return cls(
            theme_id=row["theme_id"],
            type=row["type"],
            title=row.get("title", ""),
            description=row.get("description", ""),
            confidence=float(row.get("confidence") or 0.0),
            impact=row.get("impact") or Impact.NEUTRAL.value,
            created_at=parse_ts(row.get("created_at")) or utcnow(),
        )


@dataclass
class AlertRule:
    """User-defined alert condition. theme_id None means any theme."""

    id: str
    user_id: str
    alert_type: str
    threshold_value: float | None = None
    theme_id: str | None = None
    is_active: bool = True

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> AlertRule:
        threshold = row.get("threshold_value")
        return cls(
            id=str(row.get("id")),
            user_id=str(row.get("user_id")),
            alert_type=row.get("alert_type", ""),
            threshold_value=float(threshold) if threshold is not None else None,
            theme_id=row.get("theme_id"),
            is_active=bool(row.get("is_active", True)),
        )


@dataclass
class Notification:
    user_id: str
    type: str
    title: str
    message: str
    data: dict[str, Any] = field(default_factory=dict)
    is_read: bool = False
    created_at: datetime = field(default_factory=utcnow)

    def to_row(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "data": self.data,
            "is_read": self.is_read,
            "created_at": format_ts(self.created_at),
        }


@dataclass
class SourceOutcome:
    """Per-source entry of a collection run summary."""

    source: str
    status: str  # success | error
    record_count: int = 0
    error: str | None = None
    storage_errors: int = 0
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "source": self.source,
            "status": self.status,
            "record_count": self.record_count,
            "timestamp": format_ts(self.timestamp),
        }
        if self.status != "success":
            d["error"] = self.error
        if self.storage_errors:
            d["storage_errors"] = self.storage_errors
        return d


@dataclass
class CollectionRun:
    """Write-once audit record of one orchestration invocation."""

    user_id: str
    sources: list[str]
    results: list[SourceOutcome] = field(default_factory=list)
    completed_at: datetime | None = None

    @property
    def total_records(self) -> int:
        return sum(r.record_count for r in self.results)

    @property
    def successful_sources(self) -> int:
        return sum(1 for r in self.results if r.status == "success")

    def summary(self) -> dict[str, int]:
        return {
            "total_sources": len(self.results),
            "successful_sources": self.successful_sources,
            "total_records": self.total_records,
        }

    def to_row(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "sources": self.sources,
            "results": [r.to_dict() for r in self.results],
            "completed_at": format_ts(self.completed_at),
        }
