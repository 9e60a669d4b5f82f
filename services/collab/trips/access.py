"""
Trip authorization collaborator.

View access:  the trip owner or anyone listed in trip_collaborators
              (any role).
Edit access:  the owner, or a collaborator whose role is "editor".

Trip snapshots are read through TripReadCache; a miss loads the trip row
and its collaborator rows and warms the cache.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select

from services.collab.db.models import Trip, TripCollaborator
from services.collab.realtime.read_cache import TripReadCache
from services.collab.realtime.schemas import CollaboratorSnapshot, TripSnapshot
from services.collab.trips.base import AccessResult, TripRole, role_for

logger = logging.getLogger(__name__)


class TripAccess:
    def __init__(self, session_factory: Any, cache: TripReadCache | None = None) -> None:
        """
        Args:
            session_factory: async_sessionmaker for the trips database. May be
                             None when the database is not configured, in
                             which case every check is denied.
            cache:           Optional read-through snapshot cache.
        """
        self._session_factory = session_factory
        self._cache = cache

    async def load_trip(self, trip_id: str) -> TripSnapshot | None:
        if self._cache is not None:
            cached = await self._cache.get(trip_id)
            if cached is not None:
                return cached

        if self._session_factory is None:
            logger.warning("trip access: no database configured, trip=%s", trip_id)
            return None

        async with self._session_factory() as session:
            result = await session.execute(select(Trip).where(Trip.id == trip_id))
            trip = result.scalars().first()
            if trip is None:
                return None

            result = await session.execute(
                select(TripCollaborator).where(TripCollaborator.tripId == trip_id)
            )
            collaborators = result.scalars().all()

        snapshot = TripSnapshot(
            id=trip.id,
            ownerId=trip.ownerId,
            name=trip.name,
            collaborators=[
                CollaboratorSnapshot(userId=c.userId, role=c.role) for c in collaborators
            ],
        )
        if self._cache is not None:
            await self._cache.set(snapshot)
        return snapshot

    async def can_view(self, trip_id: str, user_id: str) -> AccessResult:
        trip = await self.load_trip(trip_id)
        if trip is None:
            return AccessResult(allowed=False)

        role = role_for(trip, user_id)
        is_member = role.is_owner or any(c.userId == user_id for c in trip.collaborators)
        if not is_member:
            logger.info("trip access denied: trip=%s user=%s", trip_id, user_id)
            return AccessResult(allowed=False)
        return AccessResult(allowed=True, trip=trip)

    def get_role(self, trip: TripSnapshot, user_id: str) -> TripRole:
        return role_for(trip, user_id)
