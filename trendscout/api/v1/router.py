from fastapi import APIRouter

from trendscout.api.v1 import collect, health, process, realtime

v1_router = APIRouter(prefix="/api/v1")

v1_router.include_router(collect.router, prefix="/collect", tags=["collect"])
v1_router.include_router(process.router, prefix="/process", tags=["process"])
v1_router.include_router(health.router, prefix="/health", tags=["health"])
v1_router.include_router(realtime.router, prefix="/realtime", tags=["realtime"])
