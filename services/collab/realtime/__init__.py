"""
Real-time collaboration layer: Redis-backed stores, local rooms and the
cross-instance pub/sub bridge.

The session handler and CollaborationService live in
services.collab.realtime.handler / .service and are imported from there.
"""

from services.collab.realtime.activity import ActivityLog
from services.collab.realtime.bridge import PubSubBridge
from services.collab.realtime.presence import PresenceStore
from services.collab.realtime.read_cache import TripReadCache
from services.collab.realtime.rooms import RoomRegistry

__all__ = ["ActivityLog", "PubSubBridge", "PresenceStore", "TripReadCache", "RoomRegistry"]
