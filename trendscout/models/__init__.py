from trendscout.models.entities import (
    ALL_SOURCES,
    AlertRule,
    CollectionRun,
    CompetitionLevel,
    Impact,
    Insight,
    InsightType,
    Notification,
    Observation,
    SourceId,
    SourceOutcome,
    TechnicalDifficulty,
    Theme,
)

__all__ = [
    "ALL_SOURCES",
    "AlertRule",
    "CollectionRun",
    "CompetitionLevel",
    "Impact",
    "Insight",
    "InsightType",
    "Notification",
    "Observation",
    "SourceId",
    "SourceOutcome",
    "TechnicalDifficulty",
    "Theme",
]
