from datetime import datetime

from pydantic import BaseModel, Field, field_validator


class CollectRequest(BaseModel):
    """Collection trigger request body."""

    themes: list[str] = Field(
        min_length=1,
        description="Theme names to collect signals for",
        examples=[["habit tracker", "ai meeting notes"]],
    )
    sources: list[str] | str = Field(
        default="all",
        description='Source ids to run, or "all"',
        examples=[["reddit", "github"]],
    )
    region: str = Field(default="US", description="Region / geo code", examples=["US"])
    force_refresh: bool = Field(
        default=False,
        description="Collect even when the theme was already observed in the current bucket",
    )
    timeout_seconds: float | None = Field(
        default=None,
        gt=0,
        description="Deadline after which collectors stop between attempts",
        examples=[120],
    )

    @field_validator("themes")
    @classmethod
    def _non_blank(cls, v: list[str]) -> list[str]:
        cleaned = [t.strip() for t in v if t and t.strip()]
        if not cleaned:
            raise ValueError("themes must contain at least one non-blank name")
        return cleaned


class SourceResult(BaseModel):
    source: str = Field(description="Source id", examples=["reddit"])
    status: str = Field(description="success / error", examples=["success"])
    record_count: int = Field(default=0, description="Observations written", examples=[2])
    error: str | None = Field(default=None, description="Failure message for error entries")
    storage_errors: int = Field(
        default=0, description="Observations that could not be stored", examples=[0]
    )
    timestamp: datetime | None = Field(default=None, description="When the source finished")


class CollectSummary(BaseModel):
    total_sources: int = Field(description="Sources requested", examples=[5])
    successful_sources: int = Field(description="Sources that succeeded", examples=[4])
    total_records: int = Field(description="Observations written", examples=[8])


class CollectResponse(BaseModel):
    success: bool = Field(description="True when no source reported an error")
    results: list[SourceResult] = Field(description="One entry per requested source")
    summary: CollectSummary
