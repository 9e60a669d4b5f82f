"""
Activity log — bounded, newest-first list of what happened in a trip.

Key format:  activity:{trip_id}     (Redis list, newest at the head)
Cap:         settings.activity_log_max_entries, enforced on every append
TTL:         settings.activity_log_ttl_seconds, refreshed on every append

append() is LPUSH + LTRIM + EXPIRE in one MULTI pipeline, so the list never
holds more than max_entries items even between the push and the trim.
Order is append order, not clock order; nothing is re-sorted.

Graceful degradation: append is a no-op and get_recent returns [] when
redis is None or Redis fails. Activity logging never blocks the action it
describes.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from services.collab.realtime.schemas import ActivityEntry

logger = logging.getLogger(__name__)


def _redis_key(trip_id: str) -> str:
    return f"activity:{trip_id}"


class ActivityLog:
    def __init__(self, redis: Any, max_entries: int = 50, ttl_seconds: int = 86_400) -> None:
        self._redis = redis
        self._max_entries = max_entries
        self._ttl = ttl_seconds

    @property
    def max_entries(self) -> int:
        return self._max_entries

    async def append(self, trip_id: str, user_id: str, activity: str) -> ActivityEntry | None:
        """Record one action. Returns the stored entry, or None if not stored."""
        if self._redis is None:
            return None

        key = _redis_key(trip_id)
        entry = ActivityEntry(tripId=trip_id, userId=user_id, activity=activity)
        try:
            pipe = self._redis.pipeline(transaction=True)
            pipe.lpush(key, entry.model_dump_json())
            pipe.ltrim(key, 0, self._max_entries - 1)
            if self._ttl > 0:
                pipe.expire(key, self._ttl)
            await pipe.execute()
        except Exception:
            logger.warning("activity append failed: key=%s user=%s", key, user_id, exc_info=True)
            return None

        logger.debug("activity appended: key=%s user=%s activity=%r", key, user_id, activity)
        return entry

    async def get_recent(self, trip_id: str, limit: int = 20) -> list[ActivityEntry]:
        """Up to ``limit`` most recently appended entries, newest first."""
        if self._redis is None or limit <= 0:
            return []

        key = _redis_key(trip_id)
        try:
            raw = await self._redis.lrange(key, 0, limit - 1)
        except Exception:
            logger.warning("activity read failed: key=%s", key, exc_info=True)
            return []

        entries: list[ActivityEntry] = []
        for item in raw or []:
            text = item.decode() if isinstance(item, bytes) else item
            try:
                entries.append(ActivityEntry.model_validate_json(text))
            except ValidationError:
                logger.warning("activity entry unreadable: key=%s", key)
        return entries
