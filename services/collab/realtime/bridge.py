"""
Cross-instance pub/sub bridge over Redis.

Channel format:  trip:{trip_id}:updates
Subscription:    PSUBSCRIBE trip:*:updates (one listener per process)

Message body (JSON):
    {
        "origin":    "<instance id of the publisher>",
        "tripId":    "...",
        "event":     "trip-updated",
        "payload":   {...},
        "exclude":   "<connection id or null>",
        "timestamp": "<ISO 8601>"
    }

The publishing instance has already delivered the event to its own room
members, so a listener drops messages whose origin is its own instance id.
Everything else is handed to the local room fanout.

No ordering and no delivery guarantee: Redis pub/sub is fire-and-forget and
an instance that is not subscribed at publish time simply misses the event.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import Any, Awaitable, Callable, Optional

from services.collab.realtime.schemas import utc_now_iso

logger = logging.getLogger(__name__)

CHANNEL_PATTERN = "trip:*:updates"

# Delay before re-polling after a Redis read error
_RETRY_DELAY_SECONDS = 1.0

Deliver = Callable[[str, str, dict[str, Any], Optional[str]], Awaitable[int]]


def channel_for(trip_id: str) -> str:
    return f"trip:{trip_id}:updates"


class PubSubBridge:
    """
    Usage:
        rooms = RoomRegistry()
        bridge = PubSubBridge(redis, settings.instance_id, deliver=rooms.emit_local)
        rooms.attach_bridge(bridge)
        await bridge.start()
        ...
        await bridge.stop()
    """

    def __init__(self, redis: Any, instance_id: str, deliver: Deliver) -> None:
        """
        Args:
            redis:       An async Redis client (redis.asyncio compatible).
                         May be None, in which case publish and start are no-ops.
            instance_id: Identifies this process in published messages.
            deliver:     Local fanout, called as deliver(trip_id, event, payload, exclude).
        """
        self._redis = redis
        self._instance_id = instance_id
        self._deliver = deliver
        self._pubsub: Any = None
        self._task: asyncio.Task | None = None

    @property
    def instance_id(self) -> str:
        return self._instance_id

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    async def publish(
        self,
        trip_id: str,
        event: str,
        payload: dict[str, Any],
        exclude: str | None = None,
    ) -> None:
        if self._redis is None:
            return

        channel = channel_for(trip_id)
        body = json.dumps(
            {
                "origin": self._instance_id,
                "tripId": trip_id,
                "event": event,
                "payload": payload,
                "exclude": exclude,
                "timestamp": utc_now_iso(),
            },
            default=str,
        )
        try:
            receivers = await self._redis.publish(channel, body)
            logger.debug(
                "bridge publish: channel=%s event=%s receivers=%s", channel, event, receivers
            )
        except Exception:
            logger.warning("bridge publish failed: channel=%s event=%s", channel, event, exc_info=True)

    # ------------------------------------------------------------------
    # Subscribing
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._redis is None or self.running:
            return

        self._pubsub = self._redis.pubsub()
        await self._pubsub.psubscribe(CHANNEL_PATTERN)
        self._task = asyncio.create_task(self._listen(), name="collab-pubsub-bridge")
        logger.info("bridge started: instance=%s pattern=%s", self._instance_id, CHANNEL_PATTERN)

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

        if self._pubsub is not None:
            try:
                await self._pubsub.punsubscribe(CHANNEL_PATTERN)
                await self._pubsub.aclose()
            except Exception:
                logger.warning("bridge shutdown failed", exc_info=True)
            self._pubsub = None
        logger.info("bridge stopped: instance=%s", self._instance_id)

    async def _listen(self) -> None:
        while True:
            try:
                message = await self._pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=1.0
                )
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.warning("bridge read failed, retrying", exc_info=True)
                await asyncio.sleep(_RETRY_DELAY_SECONDS)
                continue

            if message is None:
                continue
            await self.handle_message(message)

    async def handle_message(self, message: dict[str, Any]) -> bool:
        """Re-emit one pub/sub message locally. Returns True if it was delivered."""
        raw = message.get("data")
        if isinstance(raw, bytes):
            raw = raw.decode()
        if not isinstance(raw, str):
            return False

        try:
            body = json.loads(raw)
            origin = body["origin"]
            trip_id = body["tripId"]
            event = body["event"]
            payload = body.get("payload") or {}
        except (json.JSONDecodeError, KeyError, TypeError):
            logger.warning("bridge message unreadable: channel=%s", message.get("channel"))
            return False

        if origin == self._instance_id:
            return False

        try:
            delivered = await self._deliver(trip_id, event, payload, body.get("exclude"))
        except Exception:
            logger.exception("bridge delivery failed: trip=%s event=%s", trip_id, event)
            return False

        logger.debug(
            "bridge delivered: trip=%s event=%s origin=%s recipients=%d",
            trip_id,
            event,
            origin,
            delivered,
        )
        return True
