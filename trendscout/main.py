import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from trendscout.api.v1.router import v1_router
from trendscout.config import settings
from trendscout.scheduler.manager import SchedulerManager
from trendscout.services.container import get_container

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

TAG_METADATA = [
    {
        "name": "collect",
        "description": "Trigger signal collection from the search-interest, Reddit, Twitter, "
        "Product Hunt and GitHub collectors for a set of themes.",
    },
    {
        "name": "process",
        "description": "Processing operations: normalize raw records, batch rescoring, "
        "theme analysis and realtime change propagation.",
    },
    {
        "name": "health",
        "description": "Store and scheduler status, collector error summary, rate-limit budgets, "
        "last scheduled job results.",
    },
    {
        "name": "realtime",
        "description": "Websocket subscription to broadcast topics.",
    },
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build shared services and manage the scheduler."""
    logger.info("Trendscout starting")
    container = get_container()
    logger.info("Store backend: %s", container.store_backend)

    scheduler: SchedulerManager | None = None
    if settings.SCHEDULER_ENABLED:
        scheduler = SchedulerManager()
        try:
            await scheduler.start()
        except Exception as e:
            logger.error("Scheduler failed to start: %s", e)
            scheduler = None
    else:
        logger.info("Scheduler disabled (SCHEDULER_ENABLED=false)")

    yield

    if scheduler:
        try:
            await scheduler.stop()
        except Exception as e:
            logger.error("Scheduler failed to stop cleanly: %s", e)

    try:
        await container.close()
    except Exception as e:
        logger.warning("Failed to close services: %s", e)

    logger.info("Application shutdown complete")


app = FastAPI(
    title="Trendscout API",
    summary="Market-trend signal collection and opportunity scoring",
    description=(
        "Collects search-interest and community signals for product themes, "
        "scores themes for monetization potential, derives insights and pushes "
        "changes to subscribers in near real time."
    ),
    version="0.1.0",
    openapi_tags=TAG_METADATA,
    lifespan=lifespan,
)

# CORS for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(v1_router)


@app.get("/", tags=["default"], summary="API entry", include_in_schema=False)
async def root():
    return {
        "message": "Trendscout API",
        "version": "0.1.0",
        "docs": "/docs",
        "openapi": "/openapi.json",
    }
