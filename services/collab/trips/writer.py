"""
Trip persistence collaborator — applies a collaborative edit to the trips row.

Only the columns in UPDATABLE_FIELDS are written from a trip-update event;
any other key (ownership, ids, UI-only fields such as "day") is dropped, not
rejected. Every successful write stamps the lastActivity* columns, even when
nothing editable remains.

Failures are reported as UpdateResult(success=False, error=...) rather than
raised, so the handler can turn them into a single error event and skip the
broadcast.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from services.collab.db.models import Trip
from services.collab.trips.base import UpdateResult

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset({
    "name",
    "description",
    "destination",
    "startDate",
    "endDate",
    "status",
    "budget",
    "itinerary",
    "preferences",
    "notes",
})

_DATE_FIELDS = frozenset({"startDate", "endDate"})


def _parse_iso(value: str) -> datetime:
    # JS Date.toISOString() ends in "Z", which fromisoformat only accepts from 3.11
    if value.endswith(("Z", "z")):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


def _coerce_values(update_data: dict[str, Any]) -> dict[str, Any]:
    """Keep editable keys and parse ISO date strings. Raises ValueError on a bad date."""
    ignored = sorted(set(update_data) - UPDATABLE_FIELDS)
    if ignored:
        logger.debug("trip update: ignoring non-editable fields %s", ignored)

    values: dict[str, Any] = {}
    for key, value in update_data.items():
        if key not in UPDATABLE_FIELDS:
            continue
        if key in _DATE_FIELDS and isinstance(value, str):
            try:
                value = _parse_iso(value)
            except ValueError:
                raise ValueError(f"Invalid date for {key}") from None
        values[key] = value
    return values


class TripWriter:
    def __init__(self, session_factory: Any) -> None:
        self._session_factory = session_factory

    async def apply_update(
        self, trip_id: str, user_id: str, update_data: dict[str, Any]
    ) -> UpdateResult:
        if self._session_factory is None:
            return UpdateResult(success=False, error="Database not configured")
        try:
            values = _coerce_values(update_data)
        except ValueError as exc:
            return UpdateResult(success=False, error=str(exc))

        now = datetime.now(timezone.utc)
        stmt = (
            update(Trip)
            .where(Trip.id == trip_id)
            .values(
                **values,
                lastActivityUserId=user_id,
                lastActivityAction="updated",
                lastActivityAt=now,
                updatedAt=now,
            )
        )

        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                if result.rowcount == 0:
                    await session.rollback()
                    return UpdateResult(success=False, error="Trip not found")
                await session.commit()
        except SQLAlchemyError:
            logger.exception("trip update failed: trip=%s user=%s", trip_id, user_id)
            return UpdateResult(success=False, error="Database error")

        logger.info(
            "trip updated: trip=%s user=%s fields=%s", trip_id, user_id, sorted(values)
        )
        return UpdateResult(success=True)
