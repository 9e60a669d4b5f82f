"""
Tests for PubSubBridge: publish format, origin dedupe, and two instances
sharing one FakeBroker.
"""

from __future__ import annotations

import asyncio
import json

import pytest

from services.collab.realtime.bridge import CHANNEL_PATTERN, PubSubBridge, channel_for
from services.collab.realtime.rooms import RoomRegistry
from services.collab.tests.helpers.fake_redis import FakeRedis
from services.collab.tests.helpers.fakes import FakeConnection

pytestmark = pytest.mark.asyncio


def _instance(broker, instance_id: str) -> tuple[RoomRegistry, PubSubBridge]:
    rooms = RoomRegistry()
    bridge = PubSubBridge(FakeRedis(broker), instance_id, deliver=rooms.emit_local)
    rooms.attach_bridge(bridge)
    return rooms, bridge


async def _drain(timeout: float = 1.0, condition=lambda: True) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not condition() and asyncio.get_running_loop().time() < deadline:
        await asyncio.sleep(0.01)


def test_channel_format():
    assert channel_for("trip-1") == "trip:trip-1:updates"
    assert CHANNEL_PATTERN == "trip:*:updates"


async def test_publish_body(broker):
    _, bridge = _instance(broker, "inst-a")
    await bridge.publish("trip-1", "trip-updated", {"updateType": "budget"}, exclude="c1")

    channel, raw = broker.published[0]
    body = json.loads(raw)
    assert channel == "trip:trip-1:updates"
    assert body["origin"] == "inst-a"
    assert body["tripId"] == "trip-1"
    assert body["event"] == "trip-updated"
    assert body["payload"] == {"updateType": "budget"}
    assert body["exclude"] == "c1"


async def test_handle_message_ignores_own_origin(broker):
    rooms, bridge = _instance(broker, "inst-a")
    conn = FakeConnection("c1")
    rooms.join("trip-1", conn)

    msg = {
        "channel": "trip:trip-1:updates",
        "data": json.dumps({"origin": "inst-a", "tripId": "trip-1", "event": "x", "payload": {}}),
    }
    assert await bridge.handle_message(msg) is False
    assert conn.sent == []


async def test_handle_message_delivers_foreign_origin(broker):
    rooms, bridge = _instance(broker, "inst-a")
    keep, skip = FakeConnection("keep"), FakeConnection("skip")
    rooms.join("trip-1", keep)
    rooms.join("trip-1", skip)

    msg = {
        "data": json.dumps(
            {
                "origin": "inst-b",
                "tripId": "trip-1",
                "event": "cursor-updated",
                "payload": {"userId": "u"},
                "exclude": "skip",
            }
        )
    }
    assert await bridge.handle_message(msg) is True
    assert keep.sent == [("cursor-updated", {"userId": "u"})]
    assert skip.sent == []


async def test_handle_message_rejects_garbage(broker):
    _, bridge = _instance(broker, "inst-a")
    assert await bridge.handle_message({"data": "not json"}) is False
    assert await bridge.handle_message({"data": json.dumps({"tripId": "t"})}) is False
    assert await bridge.handle_message({"data": 1}) is False


async def test_two_instances_fan_out_once(broker):
    rooms_a, bridge_a = _instance(broker, "inst-a")
    rooms_b, bridge_b = _instance(broker, "inst-b")
    on_a, on_b = FakeConnection("on-a"), FakeConnection("on-b")
    rooms_a.join("trip-1", on_a)
    rooms_b.join("trip-1", on_b)

    await bridge_a.start()
    await bridge_b.start()
    try:
        await rooms_a.broadcast("trip-1", "trip-updated", {"n": 1})
        await _drain(condition=lambda: bool(on_b.sent))
        # let instance A's listener see (and drop) its own message too
        await asyncio.sleep(0.05)
    finally:
        await bridge_a.stop()
        await bridge_b.stop()

    assert on_a.sent == [("trip-updated", {"n": 1})]
    assert on_b.sent == [("trip-updated", {"n": 1})]


async def test_room_isolation_across_instances(broker):
    rooms_a, bridge_a = _instance(broker, "inst-a")
    rooms_b, bridge_b = _instance(broker, "inst-b")
    in_trip_2 = FakeConnection("t2")
    rooms_b.join("trip-2", in_trip_2)

    await bridge_b.start()
    try:
        await rooms_a.broadcast("trip-1", "trip-updated", {})
        await asyncio.sleep(0.05)
    finally:
        await bridge_b.stop()

    assert in_trip_2.sent == []


async def test_start_stop_lifecycle(broker):
    _, bridge = _instance(broker, "inst-a")
    await bridge.start()
    assert bridge.running
    assert len(broker.subscribers) == 1

    await bridge.stop()
    assert not bridge.running
    assert broker.subscribers == []


async def test_without_redis_is_inert():
    rooms = RoomRegistry()
    bridge = PubSubBridge(None, "inst-a", deliver=rooms.emit_local)
    await bridge.start()
    assert not bridge.running
    await bridge.publish("trip-1", "x", {})
    await bridge.stop()


async def test_publish_failure_is_swallowed(broker):
    redis = FakeRedis(broker)
    redis.fail = True
    bridge = PubSubBridge(redis, "inst-a", deliver=RoomRegistry().emit_local)
    await bridge.publish("trip-1", "x", {})
    assert broker.published == []
