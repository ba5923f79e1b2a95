"""
Prayer API Backend: Firebase Push Provider Tests
==================================================

What:  Circuit breaker state machine, FCM message construction and the
       provider's error handling, with `messaging.send` patched out.

What we test:
    ✅ Breaker opens at the threshold and half-opens after recovery
    ✅ Transient FCM errors are retried and count toward the breaker
    ✅ Token errors fail the send without touching the breaker
    ✅ An open circuit skips the network call entirely
    ✅ Missing or broken credentials fall back to NullPushProvider
"""

from unittest.mock import MagicMock, patch

import pytest
from firebase_admin import exceptions as firebase_exceptions, messaging

from prayer_api.config import Settings
from prayer_api.exceptions import CircuitBreakerOpenError
from prayer_api.services.firebase_push import (
    CircuitBreaker,
    FirebasePushProvider,
    NullPushProvider,
    build_message,
    create_push_provider,
)

SEND_PATH = "prayer_api.services.firebase_push.messaging.send"


class MonotonicStub:
    def __init__(self):
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value


@pytest.fixture
def ticks():
    return MonotonicStub()


@pytest.fixture
def breaker(ticks):
    return CircuitBreaker(failure_threshold=3, recovery_timeout=60, clock=ticks)


@pytest.fixture
def provider(breaker):
    return FirebasePushProvider(MagicMock(), channel_id="test-channel", circuit_breaker=breaker)


class TestCircuitBreaker:

    def test_starts_closed(self, breaker):
        assert breaker.state == CircuitBreaker.CLOSED
        assert breaker.can_execute() is True

    def test_opens_at_threshold(self, breaker):
        for _ in range(3):
            breaker.record_failure()

        assert breaker.state == CircuitBreaker.OPEN
        with pytest.raises(CircuitBreakerOpenError):
            breaker.can_execute()

    def test_success_resets_count(self, breaker):
        breaker.record_failure()
        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()

        assert breaker.state == CircuitBreaker.CLOSED
        assert breaker.failure_count == 1

    def test_half_open_after_recovery(self, breaker, ticks):
        for _ in range(3):
            breaker.record_failure()
        ticks.value += 60

        assert breaker.can_execute() is True
        assert breaker.state == CircuitBreaker.HALF_OPEN

    def test_half_open_failure_reopens(self, breaker, ticks):
        for _ in range(3):
            breaker.record_failure()
        ticks.value += 61
        breaker.can_execute()

        breaker.record_failure()

        assert breaker.state == CircuitBreaker.OPEN

    def test_half_open_success_closes(self, breaker, ticks):
        for _ in range(3):
            breaker.record_failure()
        ticks.value += 61
        breaker.can_execute()

        breaker.record_success()

        assert breaker.state == CircuitBreaker.CLOSED
        assert breaker.failure_count == 0


class TestBuildMessage:

    def test_platform_options(self):
        message = build_message("tok", "Title", "Body", {"count": 3}, "chan")

        assert message.token == "tok"
        assert message.notification.title == "Title"
        assert message.notification.body == "Body"
        assert message.android.priority == "high"
        assert message.android.notification.channel_id == "chan"
        assert message.apns.payload.aps.sound == "default"
        assert message.apns.payload.aps.badge == 1

    def test_data_stringified_with_timestamp(self):
        message = build_message("tok", "T", "B", {"count": 3}, "chan")

        assert message.data["count"] == "3"
        assert "timestamp" in message.data

    def test_no_data(self):
        message = build_message("tok", "T", "B", None, "chan")
        assert list(message.data) == ["timestamp"]


class TestFirebasePushProvider:

    @pytest.mark.asyncio
    async def test_success(self, provider, breaker):
        with patch(SEND_PATH, return_value="projects/x/messages/1") as send:
            assert await provider.send("token-123456789", "T", "B", {"type": "test"}) is True

        send.assert_called_once()
        assert breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_token_error_leaves_breaker_alone(self, provider, breaker):
        error = messaging.UnregisteredError("Requested entity was not found.")
        with patch(SEND_PATH, side_effect=error) as send:
            assert await provider.send("token-123456789", "T", "B") is False

        assert send.call_count == 1
        assert breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_transient_error_retried_then_counted(self, provider, breaker):
        error = firebase_exceptions.UnavailableError("Service unavailable")
        with patch(SEND_PATH, side_effect=error) as send:
            assert await provider.send("token-123456789", "T", "B") is False

        assert send.call_count == 2
        assert breaker.failure_count == 1

    @pytest.mark.asyncio
    async def test_transient_error_recovers_on_retry(self, provider, breaker):
        error = firebase_exceptions.InternalError("Internal error")
        with patch(SEND_PATH, side_effect=[error, "projects/x/messages/2"]) as send:
            assert await provider.send("token-123456789", "T", "B") is True

        assert send.call_count == 2
        assert breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_open_circuit_skips_network(self, provider, breaker):
        for _ in range(3):
            breaker.record_failure()

        with patch(SEND_PATH) as send:
            assert await provider.send("token-123456789", "T", "B") is False

        send.assert_not_called()
        assert provider.status() == "circuit_open"

    def test_status_available(self, provider):
        assert provider.available is True
        assert provider.status() == "available"


class TestNullProviderAndFactory:

    @pytest.mark.asyncio
    async def test_null_provider_delivers_nothing(self):
        provider = NullPushProvider()

        assert provider.available is False
        assert provider.status() == "disabled"
        assert await provider.send("tok", "T", "B") is False

    def test_unconfigured_falls_back(self):
        config = Settings(firebase_service_account=None, firebase_credentials_path=None)
        assert isinstance(create_push_provider(config), NullPushProvider)

    def test_malformed_service_account_falls_back(self):
        config = Settings(firebase_service_account="not json")
        assert isinstance(create_push_provider(config), NullPushProvider)

    def test_missing_credentials_file_falls_back(self, tmp_path):
        config = Settings(firebase_credentials_path=str(tmp_path / "missing.json"))
        assert isinstance(create_push_provider(config), NullPushProvider)
