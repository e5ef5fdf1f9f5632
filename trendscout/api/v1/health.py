from fastapi import APIRouter, Depends, HTTPException

from trendscout.api.deps import get_services, require_api_key
from trendscout.services.container import ServiceContainer

router = APIRouter()


@router.get(
    "/",
    summary="Health check",
    description="Store backend and scheduler status, for monitoring and deploy probes.",
)
async def health_check(services: ServiceContainer = Depends(get_services)):
    from trendscout.scheduler.manager import get_scheduler_manager

    scheduler = get_scheduler_manager()
    return {
        "status": "ok",
        "store": services.store_backend,
        "scheduler": "running" if scheduler else "not_started",
        "jobs": scheduler.job_ids() if scheduler else [],
    }


@router.get(
    "/collectors",
    summary="Collector health",
    description=(
        "Error counts by severity and source, the most recent errors, and the "
        "remaining request budget per source."
    ),
)
async def collector_status(services: ServiceContainer = Depends(get_services)):
    return {
        "errors": services.classifier.error_summary(),
        "recent_errors": [log.to_dict() for log in services.classifier.recent_errors()],
        "rate_limits": services.governor.status(),
    }


@router.get(
    "/jobs",
    summary="Scheduled job status",
    description="Result of the last run of each scheduled job.",
)
async def job_status():
    from trendscout.scheduler.jobs import get_last_job_results

    return {name: job.to_dict() for name, job in get_last_job_results().items()}


@router.post(
    "/jobs/{job_id}/trigger",
    summary="Trigger a scheduled job",
    description="Run a registered scheduled job now, outside its normal schedule.",
    dependencies=[Depends(require_api_key)],
)
async def trigger_job(job_id: str):
    from trendscout.scheduler.manager import get_scheduler_manager

    mgr = get_scheduler_manager()
    if mgr is None:
        raise HTTPException(503, "Scheduler not running")
    try:
        await mgr.trigger_job(job_id)
    except ValueError as e:
        raise HTTPException(404, str(e))
    return {"status": "triggered", "job": job_id}
