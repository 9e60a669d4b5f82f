"""
CollaborationService — process-wide owner of the collaboration layer.

Holds the injected stores and collaborators, opens one SessionHandler per
live connection, and exposes the query surface used by the HTTP routes:

    get_trip_activity(trip_id, limit)
    get_trip_presence(trip_id)
    broadcast_system_message(trip_id, message)

Nothing in here is a module-level singleton; main.py builds one instance in
the lifespan and tests build as many as they like.
"""

from __future__ import annotations

import logging

from services.collab.realtime.activity import ActivityLog
from services.collab.realtime.handler import SessionHandler
from services.collab.realtime.presence import PresenceStore
from services.collab.realtime.rooms import Connection, RoomRegistry
from services.collab.realtime.schemas import ActivityEntry, PresenceEntry, utc_now_iso
from services.collab.trips.base import CacheInvalidator, TripAuthorizer, TripPersister

logger = logging.getLogger(__name__)


class CollaborationService:
    def __init__(
        self,
        *,
        presence: PresenceStore,
        activity: ActivityLog,
        rooms: RoomRegistry,
        authorizer: TripAuthorizer,
        persister: TripPersister,
        read_cache: CacheInvalidator,
        external_call_timeout_s: float = 10.0,
        default_activity_limit: int = 20,
    ) -> None:
        self.presence = presence
        self.activity = activity
        self.rooms = rooms
        self.authorizer = authorizer
        self.persister = persister
        self.read_cache = read_cache
        self.external_call_timeout_s = external_call_timeout_s
        self.default_activity_limit = default_activity_limit
        self._sessions: dict[str, SessionHandler] = {}

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def open_session(self, connection: Connection) -> SessionHandler:
        handler = SessionHandler(self, connection)
        self._sessions[connection.id] = handler
        logger.info("session opened: connection=%s", connection.id)
        return handler

    def forget_session(self, connection_id: str) -> None:
        self._sessions.pop(connection_id, None)

    def session_count(self) -> int:
        return len(self._sessions)

    # ------------------------------------------------------------------
    # Query surface
    # ------------------------------------------------------------------

    async def get_trip_activity(self, trip_id: str, limit: int | None = None) -> list[ActivityEntry]:
        if limit is None:
            limit = self.default_activity_limit
        return await self.activity.get_recent(trip_id, limit)

    async def get_trip_presence(self, trip_id: str) -> list[PresenceEntry]:
        return await self.presence.get_all(trip_id)

    async def broadcast_system_message(self, trip_id: str, message: str) -> int:
        """Push a system-message with no originating user to everyone in the trip."""
        delivered = await self.rooms.broadcast(
            trip_id,
            "system-message",
            {"message": message, "timestamp": utc_now_iso()},
        )
        logger.info("system message: trip=%s local_recipients=%d", trip_id, delivered)
        return delivered

    def stats(self) -> dict[str, int]:
        return {
            "sessions": self.session_count(),
            "connections": self.rooms.connection_count(),
            "rooms": self.rooms.room_count(),
        }
