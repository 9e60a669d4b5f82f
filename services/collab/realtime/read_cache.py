"""
Trip read cache — short-lived JSON snapshot of a trip's access data.

Key format:  trip:{trip_id}
TTL:         settings.trip_cache_ttl_seconds (30 minutes by default)

TripAccess reads through this cache so a burst of edits in a busy room does
not hit Postgres for every authorization check. Every successful persisted
update calls invalidate(), and the trips REST service is expected to do the
same when it changes collaborators.

Graceful degradation: get() returns None and set()/invalidate() are no-ops
when redis is None or Redis fails.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from services.collab.realtime.schemas import TripSnapshot

logger = logging.getLogger(__name__)


def _redis_key(trip_id: str) -> str:
    return f"trip:{trip_id}"


class TripReadCache:
    def __init__(self, redis: Any, ttl_seconds: int = 1800) -> None:
        self._redis = redis
        self._ttl = ttl_seconds

    async def get(self, trip_id: str) -> TripSnapshot | None:
        if self._redis is None:
            return None

        key = _redis_key(trip_id)
        try:
            raw = await self._redis.get(key)
        except Exception:
            logger.warning("trip cache get failed: key=%s", key, exc_info=True)
            return None
        if raw is None:
            logger.debug("trip cache miss: key=%s", key)
            return None
        try:
            return TripSnapshot.model_validate_json(raw.decode() if isinstance(raw, bytes) else raw)
        except ValidationError:
            logger.warning("trip cache entry unreadable, ignoring: key=%s", key)
            return None

    async def set(self, snapshot: TripSnapshot) -> None:
        if self._redis is None:
            return

        key = _redis_key(snapshot.id)
        try:
            await self._redis.set(key, snapshot.model_dump_json(), ex=self._ttl)
        except Exception:
            logger.warning("trip cache set failed: key=%s", key, exc_info=True)

    async def invalidate(self, trip_id: str) -> None:
        if self._redis is None:
            return

        key = _redis_key(trip_id)
        try:
            await self._redis.delete(key)
            logger.info("trip cache invalidated: key=%s", key)
        except Exception:
            logger.warning("trip cache invalidate failed: key=%s", key, exc_info=True)
