"""
HTTP surface tests.

Tests:
- Health endpoints (Redis latency, envelope, X-Request-ID)
- Activity / presence query routes
- System message broadcast
- Error envelopes
"""

import pytest

from services.collab.realtime.schemas import PresenceEntry
from services.collab.tests.helpers.fakes import FakeConnection


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

class TestHealthEndpoint:
    """GET /health returns envelope with status, version and Redis state."""

    @pytest.mark.asyncio
    async def test_health_envelope_shape(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["status"] == "healthy"
        assert "version" in body["data"]
        assert body["data"]["redis"]["status"] == "ok"
        assert body["data"]["redis"]["latencyMs"] >= 0

    @pytest.mark.asyncio
    async def test_health_reports_redis_down(self, client, fake_redis):
        fake_redis.fail = True
        body = (await client.get("/health")).json()
        assert body["success"] is True
        assert body["data"]["redis"] == {"status": "unavailable"}

    @pytest.mark.asyncio
    async def test_health_without_redis(self, client, app):
        app.state.redis = None
        body = (await client.get("/health")).json()
        assert body["data"]["redis"] == {"status": "unconfigured"}

    @pytest.mark.asyncio
    async def test_request_id_echoed(self, client):
        response = await client.get("/health", headers={"X-Request-ID": "req-123"})
        assert response.headers["x-request-id"] == "req-123"
        assert response.json()["requestId"] == "req-123"


class TestCollaborationStatus:
    @pytest.mark.asyncio
    async def test_status_lists_features_and_counts(self, client, collab):
        collab.open_session(FakeConnection())

        body = (await client.get("/collaboration/status")).json()
        assert body["success"] is True
        assert body["data"]["message"] == "Collaboration service is active"
        assert set(body["data"]["features"]) >= {"realtime", "presence", "cursors", "comments"}
        assert body["data"]["stats"]["sessions"] == 1

    @pytest.mark.asyncio
    async def test_collaboration_health(self, client):
        body = (await client.get("/collaboration/health")).json()
        assert body["data"]["healthy"] is True
        assert body["data"]["redis"]["status"] == "ok"


# ---------------------------------------------------------------------------
# Query surface
# ---------------------------------------------------------------------------

class TestTripActivity:
    @pytest.mark.asyncio
    async def test_default_limit_newest_first(self, client, collab):
        for i in range(25):
            await collab.activity.append("trip-1", "user-a", f"action {i}")

        body = (await client.get("/trips/trip-1/activity")).json()
        activity = body["data"]["activity"]
        assert body["data"]["count"] == 20
        assert activity[0]["activity"] == "action 24"
        assert activity[-1]["activity"] == "action 5"

    @pytest.mark.asyncio
    async def test_explicit_limit(self, client, collab):
        for i in range(3):
            await collab.activity.append("trip-1", "user-a", f"action {i}")

        body = (await client.get("/trips/trip-1/activity", params={"limit": 2})).json()
        assert [a["activity"] for a in body["data"]["activity"]] == ["action 2", "action 1"]

    @pytest.mark.asyncio
    async def test_limit_out_of_range(self, client):
        response = await client.get("/trips/trip-1/activity", params={"limit": 500})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_empty_trip(self, client):
        body = (await client.get("/trips/nowhere/activity")).json()
        assert body["data"] == {"tripId": "nowhere", "activity": [], "count": 0}


class TestTripPresence:
    @pytest.mark.asyncio
    async def test_lists_entries(self, client, collab):
        await collab.presence.set(
            "trip-1", "user-a", PresenceEntry(userId="user-a", connectionId="c1", displayName="Ana")
        )

        body = (await client.get("/trips/trip-1/presence")).json()
        assert body["data"]["count"] == 1
        assert body["data"]["presence"][0]["displayName"] == "Ana"


class TestSystemMessage:
    @pytest.mark.asyncio
    async def test_broadcasts_to_room(self, client, collab):
        conn = FakeConnection()
        collab.rooms.join("trip-1", conn)

        response = await client.post("/trips/trip-1/system-message", json={"message": "Flight moved"})

        assert response.status_code == 200
        assert response.json()["data"]["localRecipients"] == 1
        (event,) = conn.events("system-message")
        assert event["message"] == "Flight moved"

    @pytest.mark.asyncio
    async def test_empty_message_rejected(self, client):
        response = await client.post("/trips/trip-1/system-message", json={"message": ""})
        assert response.status_code == 422


# ---------------------------------------------------------------------------
# Envelope shape
# ---------------------------------------------------------------------------

class TestAPIEnvelope:
    @pytest.mark.asyncio
    async def test_404_error_envelope(self, client):
        response = await client.get("/nonexistent-route")
        assert response.status_code == 404
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "NOT_FOUND"
        assert "requestId" in body

    @pytest.mark.asyncio
    async def test_routes_unavailable_before_startup(self, client, app):
        del app.state.collab
        response = await client.get("/trips/trip-1/presence")
        assert response.status_code == 503
        app.state.collab = None


# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------

class TestCors:
    @pytest.mark.asyncio
    async def test_preflight_from_web_client(self, client):
        response = await client.options(
            "/trips/trip-1/presence",
            headers={
                "Origin": "http://localhost:3000",
                "Access-Control-Request-Method": "GET",
            },
        )
        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "http://localhost:3000"

    @pytest.mark.asyncio
    async def test_request_id_exposed(self, client):
        response = await client.get("/health", headers={"Origin": "http://localhost:3000"})
        assert "X-Request-ID" in response.headers["access-control-expose-headers"]

    @pytest.mark.asyncio
    async def test_unknown_origin_not_allowed(self, client):
        response = await client.get("/health", headers={"Origin": "https://evil.example"})
        assert "access-control-allow-origin" not in response.headers
