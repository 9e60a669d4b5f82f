"""
Wayra collaboration service — WebSocket trip rooms, presence and activity.

Entrypoint: uvicorn services.collab.main:app --host 0.0.0.0 --port 8001
"""

import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any

import redis.asyncio as aioredis
from fastapi import FastAPI, Request, Response
from sqlalchemy.ext.asyncio import async_sessionmaker
from starlette.responses import JSONResponse

from services.collab.config import Settings, settings
from services.collab.middleware.cors import setup_cors
from services.collab.middleware.sentry import setup_sentry
from services.collab.realtime import (
    ActivityLog,
    PresenceStore,
    PubSubBridge,
    RoomRegistry,
    TripReadCache,
)
from services.collab.realtime.service import CollaborationService
from services.collab.routers import collaboration, health
from services.collab.trips import TripAccess, TripWriter

logger = logging.getLogger(__name__)


def build_collaboration(
    redis: Any,
    session_factory: Any,
    config: Settings = settings,
) -> tuple[CollaborationService, PubSubBridge | None]:
    """Wire stores, rooms, bridge and trip collaborators into one service."""
    rooms = RoomRegistry()
    bridge = None
    if config.bridge_enabled and redis is not None:
        bridge = PubSubBridge(redis, config.instance_id, deliver=rooms.emit_local)
        rooms.attach_bridge(bridge)

    read_cache = TripReadCache(redis, ttl_seconds=config.trip_cache_ttl_seconds)
    service = CollaborationService(
        presence=PresenceStore(redis, ttl_seconds=config.presence_ttl_seconds),
        activity=ActivityLog(
            redis,
            max_entries=config.activity_log_max_entries,
            ttl_seconds=config.activity_log_ttl_seconds,
        ),
        rooms=rooms,
        authorizer=TripAccess(session_factory, cache=read_cache),
        persister=TripWriter(session_factory),
        read_cache=read_cache,
        external_call_timeout_s=config.external_call_timeout_s,
        default_activity_limit=config.activity_default_limit,
    )
    return service, bridge


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle."""
    setup_sentry()

    # Redis for presence, activity, read cache and pub/sub
    redis_client = None
    if settings.redis_url:
        try:
            redis_client = aioredis.from_url(
                settings.redis_url,
                decode_responses=True,
                socket_connect_timeout=5,
            )
            await redis_client.ping()
        except Exception as e:
            # Stores degrade to no-ops; rooms still work inside this process
            logger.warning("Redis unavailable, collaboration runs single-instance: %s", e)
            redis_client = None

    app.state.redis = redis_client
    app.state.settings = settings

    from services.collab.db.engine import create_engine as create_sa_engine

    sa_engine = None
    session_factory = None
    if settings.database_url:
        try:
            sa_engine = create_sa_engine()
            # expire_on_commit=False: NullPool returns connection after commit.
            session_factory = async_sessionmaker(sa_engine, expire_on_commit=False)
        except Exception as e:
            logger.warning("SA engine failed to init: %s", e)

    app.state.db_engine = sa_engine
    app.state.db_session_factory = session_factory

    collab, bridge = build_collaboration(redis_client, session_factory)
    app.state.collab = collab
    if bridge is not None:
        try:
            await bridge.start()
        except Exception as e:
            logger.warning("pub/sub bridge failed to start: %s", e)

    logger.info(
        "collaboration service started: instance=%s redis=%s db=%s",
        settings.instance_id,
        redis_client is not None,
        session_factory is not None,
    )

    yield

    if bridge is not None:
        await bridge.stop()
    if sa_engine:
        await sa_engine.dispose()
    if redis_client:
        await redis_client.aclose()


app = FastAPI(
    title="Wayra Collaboration API",
    version=settings.app_version,
    docs_url="/docs" if settings.environment == "development" else None,
    redoc_url=None,
    lifespan=lifespan,
)

# -- Middleware (order matters: last added = outermost in Starlette) --

app.include_router(health.router)
app.include_router(collaboration.router)

# CORS (needs to be outermost to handle preflight)
setup_cors(app)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next) -> Response:
    request_id = request.headers.get("x-request-id", str(uuid.uuid4()))
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# -- Exception Handlers --

def _error(request: Request, status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": {"code": code, "message": message},
            "requestId": getattr(request.state, "request_id", str(uuid.uuid4())),
        },
    )


@app.exception_handler(404)
async def not_found_handler(request: Request, exc) -> JSONResponse:
    return _error(request, 404, "NOT_FOUND", "Resource not found.")


@app.exception_handler(422)
async def validation_error_handler(request: Request, exc) -> JSONResponse:
    message = str(exc.detail) if hasattr(exc, "detail") else "Validation error."
    return _error(request, 422, "VALIDATION_ERROR", message)


@app.exception_handler(500)
async def internal_error_handler(request: Request, exc) -> JSONResponse:
    return _error(request, 500, "INTERNAL_ERROR", "An unexpected error occurred.")
