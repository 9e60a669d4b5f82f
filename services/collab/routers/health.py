"""Health check endpoint."""

import logging
import time

from fastapi import APIRouter, Request

logger = logging.getLogger(__name__)

router = APIRouter()


async def redis_status(redis) -> dict:
    """Ping Redis; reports latency in ms, or why it is unavailable."""
    if redis is None:
        return {"status": "unconfigured"}

    started = time.perf_counter()
    try:
        await redis.ping()
    except Exception as exc:
        logger.warning("health: redis ping failed: %s", exc)
        return {"status": "unavailable"}
    return {"status": "ok", "latencyMs": round((time.perf_counter() - started) * 1000, 2)}


@router.get("/health")
async def health_check(request: Request) -> dict:
    settings = request.app.state.settings
    return {
        "success": True,
        "data": {
            "status": "healthy",
            "version": settings.app_version,
            "instanceId": settings.instance_id,
            "redis": await redis_status(getattr(request.app.state, "redis", None)),
        },
        "requestId": request.state.request_id,
    }
