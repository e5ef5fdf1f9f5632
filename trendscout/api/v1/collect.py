import logging

from fastapi import APIRouter, Depends, HTTPException

from trendscout.api.deps import get_actor, get_services, require_api_key
from trendscout.collectors.base import CancelToken
from trendscout.schemas.collect import CollectRequest, CollectResponse
from trendscout.services.collection_service import UnknownSourceError
from trendscout.services.container import ServiceContainer

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_api_key)])


@router.post(
    "/",
    response_model=CollectResponse,
    summary="Collect trend signals",
    description=(
        "Run the requested source collectors for the given themes and store the "
        "resulting observations. Every requested source appears in `results` with "
        "an explicit `success` or `error` status; one failing source never blocks "
        "the others."
    ),
    responses={422: {"description": "Unknown source id or malformed body"}},
)
async def collect(
    body: CollectRequest,
    actor: str = Depends(get_actor),
    services: ServiceContainer = Depends(get_services),
):
    cancel = CancelToken.with_timeout(body.timeout_seconds) if body.timeout_seconds else None
    try:
        run = await services.orchestrator.collect(
            body.themes,
            body.sources,
            body.region,
            body.force_refresh,
            actor=actor,
            cancel=cancel,
        )
    except UnknownSourceError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except Exception as e:
        logger.exception("Collection request failed")
        raise HTTPException(status_code=500, detail=f"Collection failed: {e}")

    return CollectResponse(
        success=all(r.status == "success" for r in run.results),
        results=[r.to_dict() for r in run.results],
        summary=run.summary(),
    )
