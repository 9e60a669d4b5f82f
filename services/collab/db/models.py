"""
SQLAlchemy DeclarativeBase models -- mirrors of the trip tables the
collaboration service reads and writes.

Column names use camelCase to match the actual PostgreSQL column names.

IMPORTANT: These models are NOT used for migrations. The trips service owns
the DDL; this service only reads trips/collaborators and updates trip rows.
"""

import uuid as _uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Enum, JSON, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# create_type=False: the owning service creates the enum types.
CollaboratorRoleEnum = Enum("editor", "viewer", name="CollaboratorRole", create_type=False)
TripStatusEnum = Enum("planning", "booked", "active", "completed", "cancelled", name="TripStatus", create_type=False)


class Base(DeclarativeBase):
    pass


class Trip(Base):
    __tablename__ = "trips"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(_uuid.uuid4()))
    ownerId: Mapped[str] = mapped_column(String)
    name: Mapped[str] = mapped_column(String)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    destination: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    startDate: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    endDate: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(TripStatusEnum, default="planning")
    budget: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    itinerary: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    preferences: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # Stamped on every collaborative write
    lastActivityUserId: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    lastActivityAction: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    lastActivityAt: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    createdAt: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updatedAt: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class TripCollaborator(Base):
    __tablename__ = "trip_collaborators"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(_uuid.uuid4()))
    tripId: Mapped[str] = mapped_column(String)
    userId: Mapped[str] = mapped_column(String)
    role: Mapped[str] = mapped_column(CollaboratorRoleEnum, default="viewer")
    invitedBy: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    invitedAt: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
