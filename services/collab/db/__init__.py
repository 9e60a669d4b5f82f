"""
SQLAlchemy async database module.

Re-exports the engine factory and the trip models used by the
authorization and persistence collaborators.
"""

from services.collab.db.engine import create_engine
from services.collab.db.models import Base, Trip, TripCollaborator

__all__ = [
    "create_engine",
    "Base",
    "Trip",
    "TripCollaborator",
]
