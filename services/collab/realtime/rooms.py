"""
Local-process trip rooms and broadcast fanout.

A room is the set of live connections in this process that have joined a
trip. broadcast() delivers to those connections and then hands the same
envelope to the pub/sub bridge so every other instance delivers it to its
own members of the room.

Delivery is at-most-once and best-effort: a recipient whose send fails is
logged and skipped without retry.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class Connection(Protocol):
    """The transport side of a session: something we can push events to."""

    id: str

    async def send(self, event: str, data: dict[str, Any]) -> None: ...


class Publisher(Protocol):
    async def publish(
        self, trip_id: str, event: str, payload: dict[str, Any], exclude: str | None = None
    ) -> None: ...


class RoomRegistry:
    def __init__(self, bridge: Publisher | None = None) -> None:
        # trip_id -> {connection_id: Connection}
        self._rooms: dict[str, dict[str, Connection]] = {}
        self._bridge = bridge

    def attach_bridge(self, bridge: Publisher | None) -> None:
        self._bridge = bridge

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    def join(self, trip_id: str, connection: Connection) -> None:
        self._rooms.setdefault(trip_id, {})[connection.id] = connection

    def leave(self, trip_id: str, connection_id: str) -> None:
        room = self._rooms.get(trip_id)
        if room is None:
            return
        room.pop(connection_id, None)
        if not room:
            del self._rooms[trip_id]

    def members(self, trip_id: str) -> list[Connection]:
        return list(self._rooms.get(trip_id, {}).values())

    def is_member(self, trip_id: str, connection_id: str) -> bool:
        return connection_id in self._rooms.get(trip_id, {})

    def room_count(self) -> int:
        return len(self._rooms)

    def connection_count(self) -> int:
        return sum(len(room) for room in self._rooms.values())

    # ------------------------------------------------------------------
    # Fanout
    # ------------------------------------------------------------------

    async def emit_local(
        self,
        trip_id: str,
        event: str,
        payload: dict[str, Any],
        exclude: str | None = None,
    ) -> int:
        """Send to this process's members of the room. Returns the number reached."""
        recipients = [c for c in self.members(trip_id) if c.id != exclude]
        if not recipients:
            return 0

        results = await asyncio.gather(
            *(c.send(event, payload) for c in recipients), return_exceptions=True
        )
        delivered = 0
        for connection, result in zip(recipients, results):
            if isinstance(result, BaseException):
                logger.warning(
                    "room send failed: trip=%s event=%s connection=%s error=%r",
                    trip_id,
                    event,
                    connection.id,
                    result,
                )
            else:
                delivered += 1
        return delivered

    async def broadcast(
        self,
        trip_id: str,
        event: str,
        payload: dict[str, Any],
        exclude: str | None = None,
    ) -> int:
        """Deliver locally, then publish for the other instances."""
        delivered = await self.emit_local(trip_id, event, payload, exclude=exclude)
        if self._bridge is not None:
            await self._bridge.publish(trip_id, event, payload, exclude=exclude)
        logger.debug(
            "broadcast: trip=%s event=%s local_recipients=%d", trip_id, event, delivered
        )
        return delivered
