"""
Trip collaborators for the real-time layer.

TripAccess  — who may view / edit a trip.
TripWriter  — applies a collaborative edit to the trips table.
"""

from __future__ import annotations

from services.collab.trips.access import TripAccess
from services.collab.trips.base import AccessResult, TripRole, UpdateResult
from services.collab.trips.writer import TripWriter

__all__ = ["TripAccess", "TripWriter", "AccessResult", "TripRole", "UpdateResult"]
