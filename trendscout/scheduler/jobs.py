"""APScheduler job bodies.

Each job runs one operation through the shared service container, records a
JobResult (queryable via the health API) and never lets an exception escape
into the scheduler.
"""
from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from trendscout.config import settings
from trendscout.services.container import get_container

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "scheduler"


@dataclass
class JobResult:
    name: str
    status: str = "running"  # running | success | failed
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None
    summary: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    @property
    def duration_seconds(self) -> float:
        if self.finished_at:
            return (self.finished_at - self.started_at).total_seconds()
        return 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_seconds": round(self.duration_seconds, 1),
            "summary": self.summary,
            "error": self.error,
        }


# Last result per job name
_last_results: dict[str, JobResult] = {}


def get_last_job_results() -> dict[str, JobResult]:
    return dict(_last_results)


async def _run_job(name: str, func: Callable[[], Awaitable[dict[str, Any]]]) -> JobResult:
    """Run a job with timing and error isolation."""
    job = JobResult(name=name)
    logger.info("Job [%s] starting", name)
    try:
        job.summary = await func() or {}
        job.status = "success"
        logger.info("Job [%s] completed", name)
    except Exception as e:
        job.status = "failed"
        job.error = str(e)
        logger.exception("Job [%s] failed: %s", name, e)
    finally:
        job.finished_at = datetime.now(timezone.utc)
        _last_results[name] = job
    return job


def _trim(summary: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in summary.items() if k not in ("details", "themes")}


async def execute_batch_update() -> JobResult:
    async def _body() -> dict[str, Any]:
        result = await get_container().processing.process("batch_update", {"light": True})
        return _trim(result)

    return await _run_job("batch_update", _body)


async def execute_analyze_themes() -> JobResult:
    async def _body() -> dict[str, Any]:
        return _trim(await get_container().processing.process("analyze_themes"))

    return await _run_job("analyze_themes", _body)


async def execute_realtime_sync() -> JobResult:
    async def _body() -> dict[str, Any]:
        return _trim(await get_container().processing.process("realtime_sync"))

    return await _run_job("realtime_sync", _body)


async def execute_watchlist_collection(themes: list[str] | None = None) -> JobResult:
    async def _body() -> dict[str, Any]:
        names = themes or settings.watchlist_themes
        if not names:
            return {"skipped": "empty watchlist"}
        run = await get_container().orchestrator.collect(names, "all", actor=SYSTEM_ACTOR)
        return run.summary()

    return await _run_job("watchlist_collection", _body)
