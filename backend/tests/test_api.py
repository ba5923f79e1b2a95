"""
Prayer API Backend: API Integration Tests
===========================================

What:  HTTP-level tests through the full middleware stack, against the
       in-memory database and the fake push provider.

What we test:
    ✅ Health, topics and the prayer request lifecycle over HTTP
    ✅ Error statuses and the JSON error body
    ✅ Device registration and diagnostics
    ✅ Notification endpoints, including the disabled-provider 503
    ✅ Request IDs, security headers and the rate limiter
"""

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

from prayer_api.database import get_db_session
from prayer_api.dependencies import get_dispatcher
from prayer_api.main import create_app

from prayer_api.middleware.rate_limit import RateLimitMiddleware
from prayer_api.services.participation_store import ParticipationStore


async def _create(client, topic_id=16, device_id="creator", description="Please pray"):
    response = await client.post(
        "/api/prayer-requests",
        json={"topicId": topic_id, "description": description, "device_id": device_id},
    )
    assert response.status_code == 201
    return response.json()


class TestHealthAndTopics:

    @pytest.mark.asyncio
    async def test_health(self, test_client):
        response = await test_client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["database"] == "connected"
        assert body["push"] == "available"

    @pytest.mark.asyncio
    async def test_health_degraded_without_push(self, test_client, push_provider):
        push_provider.is_available = False

        body = (await test_client.get("/health")).json()

        assert body["status"] == "degraded"
        assert body["push"] == "disabled"

    @pytest.mark.asyncio
    async def test_topics_grouped(self, test_client):
        response = await test_client.get("/api/prayer-topics")

        assert response.status_code == 200
        groups = response.json()
        assert [g["id"] for g in groups] == [1, 2, 3, 7, 10, 15]
        job = groups[0]
        assert job["title"] == "Job"
        assert [s["id"] for s in job["subcategories"]] == [16, 17]


class TestPrayerRequestLifecycle:

    @pytest.mark.asyncio
    async def test_create_and_list(self, test_client):
        created = await _create(test_client)

        assert created["topic_id"] == 16
        assert created["prayer_count"] == 0
        assert created["active_prayers"] == 0

        listed = (await test_client.get("/api/prayer-requests")).json()
        assert len(listed) == 1
        assert listed[0]["id"] == created["id"]
        assert listed[0]["main_category"] == "Job"
        assert listed[0]["topic_title"] == "I just lost my job"

    @pytest.mark.asyncio
    async def test_long_description_accepted(self, test_client):
        created = await _create(test_client, description="p" * 6000)

        assert len(created["description"]) == 6000

    @pytest.mark.asyncio
    async def test_create_requires_known_topic(self, test_client):
        missing = await test_client.post("/api/prayer-requests", json={"description": "x"})
        unknown = await test_client.post("/api/prayer-requests", json={"topic_id": 999})

        assert missing.status_code == 400
        assert missing.json()["error"] == "validation_error"
        assert missing.json()["details"] == {"field": "topic_id"}
        assert unknown.status_code == 400

    @pytest.mark.asyncio
    async def test_join_pray_complete(self, test_client, push_provider):
        await test_client.post(
            "/api/register-device",
            json={"device_id": "creator", "push_token": "creator-token", "platform": "ios"},
        )
        created = await _create(test_client)
        rid = created["id"]

        joined = await test_client.post(
            f"/api/prayer-requests/{rid}/join", json={"device_id": "joiner"}
        )
        assert joined.status_code == 200
        assert joined.json()["prayer_count"] == 1
        assert joined.json()["active_prayers"] == 1

        # The creator hears about the join once the response is out.
        assert [s["token"] for s in push_provider.sent] == ["creator-token"]
        assert push_provider.sent[0]["body"] == "1 person is now praying with you!"

        again = await test_client.post(
            f"/api/prayer-requests/{rid}/join", json={"device_id": "joiner"}
        )
        assert again.json()["prayer_count"] == 1
        assert len(push_provider.sent) == 1

        started = await test_client.post(f"/api/prayer-requests/{rid}/start-praying")
        assert started.json()["active_prayers"] == 2

        stopped = await test_client.post(f"/api/prayer-requests/{rid}/stop-praying")
        assert stopped.json()["active_prayers"] == 1

        completed = await test_client.post(
            f"/api/prayer-requests/{rid}/complete", json={"device_id": "joiner"}
        )
        assert completed.status_code == 200
        assert completed.json() == {"message": "Prayer completed successfully"}

        twice = await test_client.post(
            f"/api/prayer-requests/{rid}/complete", json={"device_id": "joiner"}
        )
        assert twice.status_code == 404
        assert twice.json()["error"] == "not_found"

        stats = (await test_client.get("/api/stats")).json()
        assert stats == {"total_prayers": 1, "active_prayers": 0, "completed_prayers": 1}

        joined_by_device = (await test_client.get("/api/device/joiner/prayers")).json()
        assert [p["id"] for p in joined_by_device] == [rid]
        assert joined_by_device[0]["completed_at"] is not None

    @pytest.mark.asyncio
    async def test_self_join_sends_nothing(self, test_client, push_provider):
        await test_client.post(
            "/api/register-device",
            json={"device_id": "creator", "push_token": "creator-token", "platform": "ios"},
        )
        created = await _create(test_client)

        await test_client.post(
            f"/api/prayer-requests/{created['id']}/join", json={"device_id": "creator"}
        )

        assert push_provider.sent == []

    @pytest.mark.asyncio
    async def test_join_requires_device(self, test_client):
        created = await _create(test_client)

        no_body = await test_client.post(f"/api/prayer-requests/{created['id']}/join")
        blank = await test_client.post(
            f"/api/prayer-requests/{created['id']}/join", json={"device_id": "  "}
        )

        assert no_body.status_code == 400
        assert no_body.json()["message"] == "Device ID is required"
        assert blank.status_code == 400

    @pytest.mark.asyncio
    async def test_unknown_request_is_404(self, test_client):
        join = await test_client.post("/api/prayer-requests/4242/join", json={"device_id": "d"})
        start = await test_client.post("/api/prayer-requests/4242/start-praying")

        assert join.status_code == 404
        assert join.json()["message"] == "Prayer request not found or expired"
        assert start.status_code == 404

    @pytest.mark.asyncio
    async def test_stop_praying_floors_at_zero(self, test_client):
        created = await _create(test_client)

        stopped = await test_client.post(f"/api/prayer-requests/{created['id']}/stop-praying")

        assert stopped.status_code == 200
        assert stopped.json()["active_prayers"] == 0

    @pytest.mark.asyncio
    async def test_legacy_endpoints(self, test_client):
        created = await _create(test_client)
        rid = created["id"]

        prayed = await test_client.post(f"/api/prayer-requests/{rid}/pray")
        assert prayed.json()["prayer_count"] == 1
        assert prayed.json()["active_prayers"] == 1

        legacy = await test_client.delete(f"/api/prayer-requests/{rid}/complete")
        assert legacy.status_code == 200

        listed = (await test_client.get("/api/prayer-requests")).json()
        assert listed[0]["active_prayers"] == 0


class TestMaintenance:

    @pytest.mark.asyncio
    async def test_cleanup_removes_expired(self, test_client, seeded_db, clock):
        # The fixture clock is in the past, so this request is already expired.
        await ParticipationStore(clock=clock).create_request(seeded_db, topic_id=1)
        live = await _create(test_client)

        response = await test_client.delete("/api/cleanup-expired")

        assert response.status_code == 200
        assert response.json() == {"message": "Cleaned up 1 expired requests", "deleted_count": 1}
        listed = (await test_client.get("/api/prayer-requests")).json()
        assert [r["id"] for r in listed] == [live["id"]]

        again = await test_client.delete("/api/cleanup-expired")
        assert again.json()["deleted_count"] == 0

    @pytest.mark.asyncio
    async def test_reset_active_prayers(self, test_client):
        created = await _create(test_client)
        await test_client.post(f"/api/prayer-requests/{created['id']}/start-praying")

        response = await test_client.post("/api/reset-active-prayers")

        assert response.status_code == 200
        assert response.json()["success"] is True
        stats = (await test_client.get("/api/stats")).json()
        assert stats["active_prayers"] == 0


class TestDevices:

    @pytest.mark.asyncio
    async def test_register_is_upsert(self, test_client):
        first = await test_client.post(
            "/api/register-device",
            json={"device_id": "dev-a", "push_token": "t1", "platform": "ios"},
        )
        second = await test_client.post(
            "/api/register-device",
            json={"device_id": "dev-a", "push_token": "t2", "platform": "android"},
        )

        assert first.status_code == 200
        assert second.json()["device"]["push_token"] == "t2"
        assert second.json()["device"]["platform"] == "android"

        devices = (await test_client.get("/api/devices")).json()
        assert len(devices) == 1
        assert devices[0]["has_push_token"] == "yes"
        assert "push_token" not in devices[0]

    @pytest.mark.asyncio
    async def test_register_requires_fields(self, test_client):
        response = await test_client.post("/api/register-device", json={"device_id": "dev-a"})

        assert response.status_code == 400
        assert response.json()["message"] == "Device ID and platform are required"

    @pytest.mark.asyncio
    async def test_device_info(self, test_client):
        await test_client.post(
            "/api/register-device",
            json={"device_id": "dev-a", "push_token": "t1", "platform": "ios"},
        )
        created = await _create(test_client, device_id=None)
        await test_client.post(
            f"/api/prayer-requests/{created['id']}/join", json={"device_id": "dev-a"}
        )

        info = (await test_client.get("/api/device/dev-a/info")).json()

        assert info["registered"] is True
        assert info["push_notification_ready"] is True
        assert info["push_available"] is True
        assert info["prayer_stats"]["total_joined_prayers"] == 1
        assert info["prayer_stats"]["currently_active_prayers"] == 1
        assert info["recent_activity"][0]["prayer_id"] == created["id"]

    @pytest.mark.asyncio
    async def test_unregistered_device_info(self, test_client):
        info = (await test_client.get("/api/device/ghost/info")).json()

        assert info["registered"] is False
        assert info["registration_info"] is None
        assert info["recent_activity"] == []


class TestNotificationEndpoints:

    @pytest.mark.asyncio
    async def test_send_prayer_request_camel_case(self, test_client, push_provider):
        await test_client.post(
            "/api/register-device",
            json={"device_id": "dev-a", "push_token": "t1", "platform": "ios"},
        )
        await test_client.post(
            "/api/register-device",
            json={"device_id": "dev-b", "push_token": "t2", "platform": "ios"},
        )

        response = await test_client.post(
            "/api/send-prayer-request",
            json={"requesterName": "Ann", "prayerText": "Healing", "requesterDeviceId": "dev-a"},
        )

        assert response.status_code == 200
        assert response.json()["devices_notified"] == 1
        assert [s["token"] for s in push_provider.sent] == ["t2"]

    @pytest.mark.asyncio
    async def test_send_prayer_request_validation(self, test_client):
        response = await test_client.post("/api/send-prayer-request", json={"requesterName": "Ann"})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_send_prayer_joined_unknown_request(self, test_client):
        response = await test_client.post(
            "/api/send-prayer-joined", json={"prayer_request_id": 4242}
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_daily_reminder_with_no_devices(self, test_client):
        response = await test_client.post("/api/send-daily-reminder")

        assert response.status_code == 200
        assert response.json()["devices_notified"] == 0

    @pytest.mark.asyncio
    async def test_test_notification(self, test_client, push_provider):
        await test_client.post(
            "/api/register-device",
            json={"device_id": "dev-a", "push_token": "t1", "platform": "android"},
        )

        response = await test_client.post(
            "/api/send-test-notification", json={"device_id": "dev-a", "title": "Hi"}
        )

        assert response.status_code == 200
        assert response.json()["notification"]["title"] == "Hi"
        assert response.json()["notification"]["data"] == {"type": "test"}

    @pytest.mark.asyncio
    async def test_test_notification_without_provider(self, test_client, push_provider):
        await test_client.post(
            "/api/register-device",
            json={"device_id": "dev-a", "push_token": "t1", "platform": "android"},
        )
        push_provider.is_available = False

        response = await test_client.post(
            "/api/send-test-notification", json={"device_id": "dev-a"}
        )

        assert response.status_code == 503
        assert response.json()["error"] == "push_unavailable"

    @pytest.mark.asyncio
    async def test_test_notification_unknown_device(self, test_client):
        response = await test_client.post(
            "/api/send-test-notification", json={"device_id": "ghost"}
        )
        assert response.status_code == 404


class TestMiddleware:

    @pytest.mark.asyncio
    async def test_request_id_generated(self, test_client):
        response = await test_client.get("/api/prayer-topics")

        assert len(response.headers["X-Request-ID"]) == 8

    @pytest.mark.asyncio
    async def test_request_id_echoed(self, test_client):
        response = await test_client.get("/health", headers={"X-Request-ID": "trace-123"})

        assert response.headers["X-Request-ID"] == "trace-123"

    @pytest.mark.asyncio
    async def test_error_body_carries_request_id(self, test_client):
        response = await test_client.post(
            "/api/prayer-requests/4242/start-praying", headers={"X-Request-ID": "trace-404"}
        )

        assert response.json()["request_id"] == "trace-404"

    @pytest.mark.asyncio
    async def test_security_headers(self, test_client):
        response = await test_client.get("/health")

        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["Referrer-Policy"] == "no-referrer"


class TestRateLimit:

    def _app(self) -> FastAPI:
        app = FastAPI()

        @app.get("/ping")
        async def ping():
            return {"ok": True}

        @app.get("/health")
        async def health():
            return {"ok": True}

        app.add_middleware(RateLimitMiddleware, max_requests=2, window_seconds=60, trust_proxy=True)
        return app

    @pytest.mark.asyncio
    async def test_limit_exceeded(self):
        transport = ASGITransport(app=self._app())
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            assert (await client.get("/ping")).status_code == 200
            assert (await client.get("/ping")).status_code == 200
            blocked = await client.get("/ping")

        assert blocked.status_code == 429
        assert blocked.json()["message"] == "Too many requests from this IP, please try again later."
        assert int(blocked.headers["Retry-After"]) > 0

    @pytest.mark.asyncio
    async def test_forwarded_clients_counted_separately(self):
        transport = ASGITransport(app=self._app())
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            for _ in range(2):
                await client.get("/ping", headers={"X-Forwarded-For": "10.0.0.1"})
            other = await client.get("/ping", headers={"X-Forwarded-For": "10.0.0.2, 172.16.0.1"})
            same = await client.get("/ping", headers={"X-Forwarded-For": "10.0.0.1"})

        assert other.status_code == 200
        assert same.status_code == 429

    @pytest.mark.asyncio
    async def test_health_not_limited(self):
        transport = ASGITransport(app=self._app())
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            statuses = [(await client.get("/health")).status_code for _ in range(4)]

        assert statuses == [200, 200, 200, 200]


@pytest_asyncio.fixture
async def unreachable_db_client(dispatcher):
    """App client whose database sessions point at a closed port."""
    dead_engine = create_async_engine("postgresql+asyncpg://u:p@127.0.0.1:1/none")
    app = create_app()

    async def override_db_session():
        async with AsyncSession(dead_engine) as session:
            yield session

    app.dependency_overrides[get_db_session] = override_db_session
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    await dead_engine.dispose()


class TestDatabaseUnreachable:

    @pytest.mark.asyncio
    async def test_stats_report_zeros(self, unreachable_db_client):
        response = await unreachable_db_client.get("/api/stats")

        assert response.status_code == 200
        assert response.json() == {"total_prayers": 0, "active_prayers": 0, "completed_prayers": 0}

    @pytest.mark.asyncio
    async def test_mutation_returns_opaque_server_error(self, unreachable_db_client):
        response = await unreachable_db_client.post("/api/prayer-requests/1/start-praying")

        assert response.status_code == 500
        assert response.json()["error"] == "server_error"
        assert response.json()["message"] == "Internal server error"
