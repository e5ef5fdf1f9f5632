import secrets

from fastapi import Header, HTTPException

from trendscout.config import settings
from trendscout.services.container import ServiceContainer, get_container


def get_services() -> ServiceContainer:
    return get_container()


def require_api_key(
    x_api_key: str | None = Header(None, description="Shared secret, required when API_KEY is set"),
) -> None:
    if not settings.API_KEY:
        return
    if not x_api_key or not secrets.compare_digest(x_api_key, settings.API_KEY):
        raise HTTPException(status_code=401, detail="Invalid or missing API key")


def get_actor(
    x_actor_id: str | None = Header(None, description="Authenticated caller id, for audit"),
) -> str:
    """Caller identity recorded on collection runs; authorization happens upstream."""
    return x_actor_id or "anonymous"
