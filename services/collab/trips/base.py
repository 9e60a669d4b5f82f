"""
Contracts for the collaborators the session handler depends on.

The handler only ever sees these protocols; production wires in the
SQLAlchemy-backed TripAccess / TripWriter and the Redis TripReadCache,
tests wire in fakes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from services.collab.realtime.schemas import TripSnapshot


@dataclass(frozen=True)
class AccessResult:
    allowed: bool
    trip: TripSnapshot | None = None


@dataclass(frozen=True)
class TripRole:
    is_owner: bool
    is_editor: bool

    @property
    def can_edit(self) -> bool:
        return self.is_owner or self.is_editor


@dataclass(frozen=True)
class UpdateResult:
    success: bool
    error: str | None = None


def role_for(trip: TripSnapshot, user_id: str) -> TripRole:
    """Owner / editor flags for a user on an already-loaded trip."""
    is_owner = trip.ownerId == user_id
    is_editor = any(
        c.userId == user_id and c.role == "editor" for c in trip.collaborators
    )
    return TripRole(is_owner=is_owner, is_editor=is_editor)


class TripAuthorizer(Protocol):
    async def can_view(self, trip_id: str, user_id: str) -> AccessResult: ...

    def get_role(self, trip: TripSnapshot, user_id: str) -> TripRole: ...


class TripPersister(Protocol):
    async def apply_update(
        self, trip_id: str, user_id: str, update_data: dict[str, Any]
    ) -> UpdateResult: ...


class CacheInvalidator(Protocol):
    async def invalidate(self, trip_id: str) -> None: ...
