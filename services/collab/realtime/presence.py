"""
Presence store — who is currently looking at which trip.

Key format:  presence:{trip_id}          (Redis hash)
Field:       {user_id}
Value:       PresenceEntry JSON
TTL:         settings.presence_ttl_seconds, sliding on each write (0 = none)

One hash per trip keeps get_all() a single HGETALL instead of a KEYS scan.
The TTL lives on the whole hash: as long as anyone in the trip keeps
touching presence the hash survives; if every process that wrote to it dies
without cleaning up, the stale entries age out together.

Writes are wholesale overwrites. Two sessions for the same user in the same
trip collide on the field and the last writer wins. There is no merge.

Graceful degradation: all operations are no-ops / return empty results when
redis is None or a Redis call fails. Presence is never allowed to break a
join or an edit.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from services.collab.realtime.schemas import PresenceEntry

logger = logging.getLogger(__name__)


def _redis_key(trip_id: str) -> str:
    return f"presence:{trip_id}"


def _decode(value: Any) -> str:
    return value.decode() if isinstance(value, bytes) else value


class PresenceStore:
    """
    Usage:
        presence = PresenceStore(app.state.redis, ttl_seconds=300)
        await presence.set(trip_id, user_id, entry)
        entries = await presence.get_all(trip_id)
        await presence.remove(trip_id, user_id)
    """

    def __init__(self, redis: Any, ttl_seconds: int = 300) -> None:
        """
        Args:
            redis:       An async Redis client (redis.asyncio compatible).
                         May be None, in which case every operation is a no-op.
            ttl_seconds: Sliding expiry for the trip hash; 0 disables it.
        """
        self._redis = redis
        self._ttl = ttl_seconds

    async def set(self, trip_id: str, user_id: str, entry: PresenceEntry) -> None:
        """Upsert the entry for (trip, user). Overwrites, never merges."""
        if self._redis is None:
            return

        key = _redis_key(trip_id)
        try:
            await self._redis.hset(key, mapping={user_id: entry.model_dump_json()})
            if self._ttl > 0:
                await self._redis.expire(key, self._ttl)
            logger.debug(
                "presence set: key=%s user=%s action=%s", key, user_id, entry.lastAction
            )
        except Exception:
            logger.warning("presence set failed: key=%s user=%s", key, user_id, exc_info=True)

    async def get(self, trip_id: str, user_id: str) -> PresenceEntry | None:
        if self._redis is None:
            return None

        key = _redis_key(trip_id)
        try:
            raw = await self._redis.hget(key, user_id)
        except Exception:
            logger.warning("presence get failed: key=%s user=%s", key, user_id, exc_info=True)
            return None
        if raw is None:
            return None
        try:
            return PresenceEntry.model_validate_json(_decode(raw))
        except ValidationError:
            logger.warning("presence entry unreadable: key=%s user=%s", key, user_id)
            return None

    async def get_all(self, trip_id: str) -> list[PresenceEntry]:
        """Every current entry for the trip. Order is unspecified."""
        if self._redis is None:
            return []

        key = _redis_key(trip_id)
        try:
            raw = await self._redis.hgetall(key)
        except Exception:
            logger.warning("presence get_all failed: key=%s", key, exc_info=True)
            return []

        entries: list[PresenceEntry] = []
        for field, value in (raw or {}).items():
            try:
                entries.append(PresenceEntry.model_validate_json(_decode(value)))
            except ValidationError:
                logger.warning(
                    "presence entry unreadable: key=%s user=%s", key, _decode(field)
                )
        return entries

    async def remove(self, trip_id: str, user_id: str) -> None:
        """Delete the entry. Removing a missing entry is not an error."""
        if self._redis is None:
            return

        key = _redis_key(trip_id)
        try:
            await self._redis.hdel(key, user_id)
            logger.debug("presence removed: key=%s user=%s", key, user_id)
        except Exception:
            logger.warning("presence remove failed: key=%s user=%s", key, user_id, exc_info=True)
