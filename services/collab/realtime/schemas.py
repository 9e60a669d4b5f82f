"""
Wire and storage shapes for the collaboration layer.

Field names are camelCase because they travel verbatim to the Next.js
client (and are what the Redis JSON blobs hold).

Inbound payload models ignore extra keys (clients send whatever the UI has
to hand) but require the ids every operation needs.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Stored records
# ---------------------------------------------------------------------------


class UserInfo(BaseModel):
    """Lightweight display info a client attaches to its session."""

    model_config = ConfigDict(extra="allow")

    displayName: Optional[str] = None
    photoURL: Optional[str] = None


class PresenceEntry(BaseModel):
    userId: str
    connectionId: str
    displayName: str = "Anonymous"
    photoURL: Optional[str] = None
    lastAction: str = ""
    cursor: Optional[Any] = None
    joinedAt: Optional[str] = None
    lastSeen: str = Field(default_factory=utc_now_iso)
    isOnline: bool = True


class ActivityEntry(BaseModel):
    tripId: str
    userId: str
    activity: str
    timestamp: str = Field(default_factory=utc_now_iso)


class CollaboratorSnapshot(BaseModel):
    userId: str
    role: str = "viewer"


class TripSnapshot(BaseModel):
    """What the authorization collaborator knows about a trip."""

    id: str
    ownerId: str
    name: Optional[str] = None
    collaborators: list[CollaboratorSnapshot] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Inbound payloads (one per transport event)
# ---------------------------------------------------------------------------


class _Inbound(BaseModel):
    model_config = ConfigDict(extra="ignore")

    tripId: str = Field(min_length=1)
    userId: Optional[str] = None


class JoinTripPayload(_Inbound):
    userId: str = Field(min_length=1)
    userInfo: UserInfo = Field(default_factory=UserInfo)


class LeaveTripPayload(_Inbound):
    pass


class TripUpdatePayload(_Inbound):
    updateType: str = Field(min_length=1)
    updateData: dict[str, Any] = Field(default_factory=dict)


class ItineraryUpdatePayload(_Inbound):
    day: int
    activityIndex: Optional[int] = None
    activityData: Optional[Any] = None
    action: str = Field(min_length=1)


class CursorUpdatePayload(_Inbound):
    cursorData: Optional[Any] = None


class TypingPayload(_Inbound):
    field: Optional[str] = None


class CommentAddPayload(_Inbound):
    comment: Any
    targetType: Optional[str] = None
    targetId: Optional[str] = None


class BudgetUpdatePayload(_Inbound):
    budgetData: Optional[Any] = None
    category: Optional[str] = None


class SystemMessageRequest(BaseModel):
    message: str = Field(min_length=1, max_length=2000)
