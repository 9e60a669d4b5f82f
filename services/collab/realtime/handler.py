"""
SessionHandler — the per-connection collaboration state machine.

States:
    connected (no trip)  --join-trip-->   in trip T
    in trip T            --join-trip U--> in trip U   (implicit leave of T)
    in trip T            --leave-trip-->  connected (no trip)
    any                  --close------->  disconnected

Each inbound event runs as a short pipeline of steps with early exit:

    authorize -> mutate / persist -> invalidate -> log activity -> broadcast

A step that must stop the pipeline raises CollaborationError; dispatch()
turns it into exactly one `error` event for the sender. Presence, activity
and bridge steps swallow their own Redis failures (see the stores), so they
never abort an operation. Authorization and persistence failures always do,
and nothing is broadcast unless persistence succeeded.

Outbound events:
    error, user-joined, user-left, presence-update, trip-updated,
    itinerary-updated, cursor-updated, user-typing, comment-added,
    budget-updated, system-message, pong
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Optional, TypeVar

from pydantic import BaseModel, ValidationError

from services.collab.realtime.errors import (
    AccessDenied,
    CollaborationError,
    InvalidMessage,
    OperationTimeout,
    PersistenceFailed,
)
from services.collab.realtime.rooms import Connection
from services.collab.realtime.schemas import (
    BudgetUpdatePayload,
    CommentAddPayload,
    CursorUpdatePayload,
    ItineraryUpdatePayload,
    JoinTripPayload,
    LeaveTripPayload,
    PresenceEntry,
    TripSnapshot,
    TripUpdatePayload,
    TypingPayload,
    UserInfo,
    utc_now_iso,
)

if TYPE_CHECKING:
    from services.collab.realtime.service import CollaborationService

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CollaborationSession:
    """Connection-scoped state. Only the owning SessionHandler mutates it."""

    connection_id: str
    trip_id: Optional[str] = None
    user_id: Optional[str] = None
    user_info: UserInfo = field(default_factory=UserInfo)
    cursor: Any = None
    joined_at: Optional[str] = None
    closed: bool = False

    @property
    def in_trip(self) -> bool:
        return self.trip_id is not None


# event name -> (payload model, handler method, error message for unexpected failures)
# A None message means the event is fire-and-forget: failures are only logged.
_ROUTES: dict[str, tuple[Optional[type[BaseModel]], str, Optional[str]]] = {
    "join-trip": (JoinTripPayload, "join", "Failed to join trip"),
    "leave-trip": (LeaveTripPayload, "leave", None),
    "trip-update": (TripUpdatePayload, "update_trip", "Failed to update trip"),
    "itinerary-update": (ItineraryUpdatePayload, "update_itinerary", "Failed to update itinerary"),
    "cursor-update": (CursorUpdatePayload, "update_cursor", None),
    "typing-start": (TypingPayload, "typing_start", None),
    "typing-stop": (TypingPayload, "typing_stop", None),
    "comment-add": (CommentAddPayload, "add_comment", "Failed to add comment"),
    "budget-update": (BudgetUpdatePayload, "update_budget", "Failed to update budget"),
    "disconnect": (None, "disconnect", None),
    "ping": (None, "ping", None),
}

INBOUND_EVENTS = frozenset(_ROUTES)


class SessionHandler:
    def __init__(self, service: CollaborationService, connection: Connection) -> None:
        self._service = service
        self._connection = connection
        self.session = CollaborationSession(connection_id=connection.id)

    @property
    def closed(self) -> bool:
        return self.session.closed

    # ------------------------------------------------------------------
    # Dispatch boundary
    # ------------------------------------------------------------------

    async def handle_text(self, raw: str) -> None:
        """Parse one `{"event": ..., "data": {...}}` envelope and dispatch it."""
        try:
            message = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("malformed message: connection=%s", self._connection.id)
            await self._emit("error", {"message": "Malformed message"})
            return

        if not isinstance(message, dict) or not isinstance(message.get("event"), str):
            await self._emit("error", {"message": "Malformed message"})
            return

        data = message.get("data")
        await self.dispatch(message["event"], data if isinstance(data, dict) else {})

    async def dispatch(self, event: str, data: dict[str, Any]) -> None:
        if self.session.closed:
            return

        route = _ROUTES.get(event)
        if route is None:
            logger.warning("unsupported event: connection=%s event=%s", self._connection.id, event)
            await self._emit("error", {"message": f"Unsupported event: {event}"})
            return

        model, method_name, failure_message = route
        method = getattr(self, method_name)
        try:
            if model is None:
                await method()
            else:
                try:
                    payload = model.model_validate(data)
                except ValidationError:
                    raise InvalidMessage(f"Invalid payload for {event}") from None
                await method(payload)
        except CollaborationError as exc:
            logger.info(
                "operation rejected: connection=%s event=%s reason=%s",
                self._connection.id,
                event,
                exc.message,
            )
            await self._emit("error", {"message": exc.message})
        except Exception:
            logger.exception(
                "operation failed: connection=%s event=%s", self._connection.id, event
            )
            if failure_message is not None:
                await self._emit("error", {"message": failure_message})

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def join(self, payload: JoinTripPayload) -> None:
        trip_id, user_id = payload.tripId, payload.userId
        await self._require_view(trip_id, user_id, "Access denied to trip")

        session = self.session
        if session.in_trip and (session.trip_id != trip_id or session.user_id != user_id):
            await self._leave_current("left trip collaboration")

        now = utc_now_iso()
        session.trip_id = trip_id
        session.user_id = user_id
        session.user_info = payload.userInfo
        session.joined_at = now
        self._service.rooms.join(trip_id, self._connection)

        await self._service.presence.set(
            trip_id,
            user_id,
            self._presence_entry(user_id, "joined trip", joined_at=now, last_seen=now),
        )
        presence = await self._presence_snapshot(trip_id)

        await self._service.rooms.broadcast(
            trip_id,
            "user-joined",
            {"userId": user_id, "userInfo": self._user_info(), "presence": presence},
            exclude=self._connection.id,
        )
        await self._emit("presence-update", {"presence": presence})
        await self._service.activity.append(trip_id, user_id, "joined trip collaboration")

        logger.info("user joined: trip=%s user=%s connection=%s", trip_id, user_id, self._connection.id)

    async def leave(self, payload: LeaveTripPayload) -> None:
        if self.session.trip_id != payload.tripId:
            logger.debug(
                "leave ignored, not in trip: connection=%s trip=%s",
                self._connection.id,
                payload.tripId,
            )
            return
        await self._leave_current("left trip collaboration")

    async def update_trip(self, payload: TripUpdatePayload) -> None:
        trip_id = payload.tripId
        user_id = self._acting_user(payload.userId)
        await self._require_edit(trip_id, user_id)

        result = await self._external(
            self._service.persister.apply_update(trip_id, user_id, payload.updateData)
        )
        if not result.success:
            logger.warning(
                "trip update not persisted: trip=%s user=%s error=%s", trip_id, user_id, result.error
            )
            raise PersistenceFailed("Failed to update trip")

        await self._invalidate(trip_id)
        await self._service.activity.append(trip_id, user_id, f"updated {payload.updateType}")

        # Everyone in the room, sender included.
        # broadcast() also publishes on the bridge for the other instances.
        await self._service.rooms.broadcast(
            trip_id,
            "trip-updated",
            {
                "tripId": trip_id,
                "userId": user_id,
                "updateType": payload.updateType,
                "updateData": payload.updateData,
                "timestamp": utc_now_iso(),
                "updatedBy": self._user_info(),
            },
        )
        logger.info("trip updated: trip=%s user=%s type=%s", trip_id, user_id, payload.updateType)

    async def update_itinerary(self, payload: ItineraryUpdatePayload) -> None:
        trip_id = payload.tripId
        user_id = self._acting_user(payload.userId)
        await self._require_edit(trip_id, user_id)

        # Itinerary persistence belongs to the trips REST service.
        await self._service.activity.append(
            trip_id, user_id, f"{payload.action} itinerary item on day {payload.day}"
        )
        await self._service.rooms.broadcast(
            trip_id,
            "itinerary-updated",
            {
                "tripId": trip_id,
                "userId": user_id,
                "day": payload.day,
                "activityIndex": payload.activityIndex,
                "activityData": payload.activityData,
                "action": payload.action,
                "timestamp": utc_now_iso(),
                "updatedBy": self._user_info(),
            },
        )

    async def update_cursor(self, payload: CursorUpdatePayload) -> None:
        trip_id = payload.tripId
        user_id = self._acting_user(payload.userId)

        # Presence is written only for the trip this session is in.
        if self.session.trip_id == trip_id:
            self.session.cursor = payload.cursorData
            await self._service.presence.set(
                trip_id,
                user_id,
                self._presence_entry(user_id, "editing", cursor=payload.cursorData),
            )
        await self._service.rooms.broadcast(
            trip_id,
            "cursor-updated",
            {"userId": user_id, "cursorData": payload.cursorData, "userInfo": self._user_info()},
            exclude=self._connection.id,
        )

    async def typing_start(self, payload: TypingPayload) -> None:
        await self._typing(payload, True)

    async def typing_stop(self, payload: TypingPayload) -> None:
        await self._typing(payload, False)

    async def add_comment(self, payload: CommentAddPayload) -> None:
        trip_id = payload.tripId
        user_id = self._acting_user(payload.userId)

        await self._service.activity.append(
            trip_id, user_id, f"added comment on {payload.targetType}"
        )
        await self._service.rooms.broadcast(
            trip_id,
            "comment-added",
            {
                "tripId": trip_id,
                "userId": user_id,
                "comment": payload.comment,
                "targetType": payload.targetType,
                "targetId": payload.targetId,
                "timestamp": utc_now_iso(),
                "userInfo": self._user_info(),
            },
        )

    async def update_budget(self, payload: BudgetUpdatePayload) -> None:
        trip_id = payload.tripId
        user_id = self._acting_user(payload.userId)
        # View access only, unlike trip/itinerary edits.
        await self._require_view(trip_id, user_id, "Access denied")

        await self._service.activity.append(
            trip_id, user_id, f"updated budget for {payload.category}"
        )
        await self._service.rooms.broadcast(
            trip_id,
            "budget-updated",
            {
                "tripId": trip_id,
                "userId": user_id,
                "budgetData": payload.budgetData,
                "category": payload.category,
                "timestamp": utc_now_iso(),
                "updatedBy": self._user_info(),
            },
        )

    async def ping(self) -> None:
        await self._emit("pong", {"timestamp": utc_now_iso()})

    async def disconnect(self) -> None:
        """Transport is gone: implicit leave using the session's own ids. Idempotent."""
        if self.session.closed:
            return
        self.session.closed = True
        try:
            if self.session.in_trip and self.session.user_id:
                await self._leave_current("disconnected", notify_self=False)
        except Exception:
            logger.exception("disconnect cleanup failed: connection=%s", self._connection.id)
        finally:
            self._service.forget_session(self._connection.id)
            logger.info("session closed: connection=%s", self._connection.id)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _external(self, awaitable: Awaitable[T]) -> T:
        """Await an authorization/persistence call with the configured timeout."""
        try:
            return await asyncio.wait_for(awaitable, self._service.external_call_timeout_s)
        except asyncio.TimeoutError:
            logger.warning("external call timed out: connection=%s", self._connection.id)
            raise OperationTimeout() from None

    async def _require_view(self, trip_id: str, user_id: str, denied_message: str) -> TripSnapshot:
        result = await self._external(self._service.authorizer.can_view(trip_id, user_id))
        if not result.allowed or result.trip is None:
            raise AccessDenied(denied_message)
        return result.trip

    async def _require_edit(self, trip_id: str, user_id: str) -> TripSnapshot:
        trip = await self._require_view(trip_id, user_id, "Access denied")
        if not self._service.authorizer.get_role(trip, user_id).can_edit:
            raise AccessDenied("Insufficient permissions to edit")
        return trip

    async def _invalidate(self, trip_id: str) -> None:
        try:
            await self._service.read_cache.invalidate(trip_id)
        except Exception:
            logger.warning("read cache invalidation failed: trip=%s", trip_id, exc_info=True)

    async def _leave_current(self, activity: str, notify_self: bool = True) -> None:
        session = self.session
        trip_id, user_id = session.trip_id, session.user_id
        if trip_id is None or user_id is None:
            return

        self._service.rooms.leave(trip_id, self._connection.id)
        session.trip_id = None
        session.cursor = None
        session.joined_at = None

        await self._service.presence.remove(trip_id, user_id)
        presence = await self._presence_snapshot(trip_id)
        await self._service.rooms.broadcast(
            trip_id,
            "user-left",
            {"userId": user_id, "presence": presence},
            exclude=self._connection.id,
        )
        await self._service.activity.append(trip_id, user_id, activity)
        logger.info(
            "user left: trip=%s user=%s connection=%s reason=%s",
            trip_id,
            user_id,
            self._connection.id,
            activity,
        )

    async def _typing(self, payload: TypingPayload, is_typing: bool) -> None:
        await self._service.rooms.broadcast(
            payload.tripId,
            "user-typing",
            {
                "userId": self._acting_user(payload.userId),
                "field": payload.field,
                "userInfo": self._user_info(),
                "isTyping": is_typing,
            },
            exclude=self._connection.id,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _acting_user(self, user_id: str | None) -> str:
        acting = user_id or self.session.user_id
        if not acting:
            raise InvalidMessage("userId is required")
        return acting

    def _user_info(self) -> dict[str, Any] | None:
        if self.session.user_id is None:
            return None
        return self.session.user_info.model_dump()

    def _presence_entry(
        self,
        user_id: str,
        last_action: str,
        *,
        cursor: Any = None,
        joined_at: str | None = None,
        last_seen: str | None = None,
    ) -> PresenceEntry:
        info = self.session.user_info
        return PresenceEntry(
            userId=user_id,
            connectionId=self._connection.id,
            displayName=info.displayName or "Anonymous",
            photoURL=info.photoURL,
            lastAction=last_action,
            cursor=cursor,
            joinedAt=joined_at or self.session.joined_at,
            lastSeen=last_seen or utc_now_iso(),
        )

    async def _presence_snapshot(self, trip_id: str) -> list[dict[str, Any]]:
        entries = await self._service.presence.get_all(trip_id)
        return [entry.model_dump() for entry in entries]

    async def _emit(self, event: str, data: dict[str, Any]) -> None:
        """Send to this session's own connection. Best-effort."""
        if self.session.closed:
            return
        try:
            await self._connection.send(event, data)
        except Exception:
            logger.warning(
                "send failed: connection=%s event=%s", self._connection.id, event, exc_info=True
            )
