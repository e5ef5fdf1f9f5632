"""Websocket fan-out of broadcast events to UI clients."""
import logging

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from trendscout.processing.change_broadcaster import THEME_TOPIC
from trendscout.services.container import get_container

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws")
async def subscribe(
    websocket: WebSocket,
    topic: str = Query(THEME_TOPIC, description="Topic to follow, e.g. theme-updates or user-<id>"),
):
    hub = get_container().hub
    await websocket.accept()
    queue = hub.subscribe(topic)
    logger.info("Websocket subscribed to %s (%d subscribers)", topic, hub.subscriber_count(topic))
    try:
        while True:
            message = await queue.get()
            await websocket.send_json(message)
    except WebSocketDisconnect:
        logger.info("Websocket on %s disconnected", topic)
    finally:
        hub.unsubscribe(topic, queue)
