import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import ValidationError

from trendscout.api.deps import get_services, require_api_key
from trendscout.models.entities import utcnow
from trendscout.schemas.process import ProcessRequest, ProcessResponse
from trendscout.services.container import ServiceContainer
from trendscout.services.processing_service import UnknownOperation

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_api_key)])


@router.post(
    "/",
    response_model=ProcessResponse,
    summary="Run a processing operation",
    description=(
        "Operations: `normalize` (validate and store raw observation records from `data`), "
        "`batch_update` (rescore stale themes and purge expired observations), "
        "`analyze_themes` (recompute theme metrics and insights), "
        "`realtime_sync` (broadcast recent changes, notify users, fire alerts)."
    ),
    responses={422: {"description": "Unknown operation or invalid options"}},
)
async def process(
    body: ProcessRequest,
    services: ServiceContainer = Depends(get_services),
):
    try:
        result = await services.processing.process(body.operation, body.options, body.data)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False, include_context=False))
    except UnknownOperation as e:
        raise HTTPException(status_code=422, detail=str(e))
    except Exception as e:
        logger.exception("Processing %s failed", body.operation)
        raise HTTPException(status_code=500, detail=f"Processing failed: {e}")

    return ProcessResponse(operation=body.operation, result=result, timestamp=utcnow())
