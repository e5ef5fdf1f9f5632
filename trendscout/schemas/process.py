from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


class BatchUpdateOptions(BaseModel):
    batch_size: int | None = Field(default=None, ge=1, le=1000, description="Themes per batch")
    max_concurrency: int | None = Field(
        default=None, ge=1, le=50, description="Themes in flight per batch"
    )
    force_update: bool = Field(default=False, description="Ignore the 1h staleness filter")
    light: bool = Field(
        default=False, description="Periodic light pass (market size threshold 1000)"
    )
    max_themes: int | None = Field(default=None, ge=1, description="Cap on themes scored")


class AnalyzeOptions(BaseModel):
    force_update: bool = Field(default=False, description="Analyze every theme")


class RealtimeOptions(BaseModel):
    notify_users: bool = Field(default=True, description="Write per-user notifications")
    broadcast_changes: bool = Field(default=True, description="Publish on the theme topic")
    trigger_alerts: bool = Field(default=True, description="Evaluate alert rules")


class NormalizeOptions(BaseModel):
    validate_data: bool = Field(default=True, description="Reject malformed records")
    deduplicate_data: bool = Field(default=True, description="Skip already-stored keys")


class ProcessRequest(BaseModel):
    """Processing trigger request body."""

    operation: Literal["normalize", "batch_update", "analyze_themes", "realtime_sync"] = Field(
        description="Operation to run", examples=["batch_update"]
    )
    options: dict[str, Any] = Field(default_factory=dict, description="Operation options")
    data: list[dict[str, Any]] | None = Field(
        default=None, description="Raw observation records (normalize only)"
    )


class ProcessResponse(BaseModel):
    success: bool = Field(default=True)
    operation: str = Field(examples=["batch_update"])
    result: dict[str, Any] = Field(description="Operation-specific result summary")
    timestamp: datetime
