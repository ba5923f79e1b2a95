"""
Prayer API Backend: Firebase Cloud Messaging Provider
=======================================================

What:  Concrete PushProvider that delivers through Firebase Cloud Messaging.
How:   Builds an FCM message with Android/APNs options, sends it from a worker
       thread (firebase-admin is synchronous), retries transient errors with
       tenacity and guards the upstream with a circuit breaker.
Who:   Created once in the lifespan by create_push_provider(); shared by every
       notification flow through the dispatcher.

Resilience Strategy:
    1. Tenacity retry with exponential backoff + jitter, only for FCM's
       transient errors (UNAVAILABLE, INTERNAL)
    2. Circuit breaker: after N consecutive failed sends, further sends are
       reported undelivered without touching the network until the recovery
       period passes
    3. Token errors (unregistered, invalid argument) are the device's problem,
       not FCM's: they fail the send but do not count toward the breaker

Fallback:
    Without credentials, or when the SDK refuses them, the app runs with
    NullPushProvider: every send returns False and the test-notification
    endpoint answers 503.
"""

import asyncio
import json
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

import firebase_admin
from firebase_admin import credentials, exceptions as firebase_exceptions, messaging
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from prayer_api.config import Settings, settings
from prayer_api.exceptions import CircuitBreakerOpenError
from prayer_api.services.push_base import PushProvider

logger = logging.getLogger(__name__)

FIREBASE_APP_NAME = "prayer-api"

# FCM errors worth another attempt; everything else fails the send at once.
TRANSIENT_FCM_ERRORS = (
    firebase_exceptions.UnavailableError,
    firebase_exceptions.InternalError,
)

# The token is stale or malformed; retrying or tripping the breaker is useless.
TOKEN_FCM_ERRORS = (
    messaging.UnregisteredError,
    messaging.SenderIdMismatchError,
    firebase_exceptions.InvalidArgumentError,
)


# ══════════════════════════════════════════════════════════════════════════
# Circuit Breaker Implementation
# ══════════════════════════════════════════════════════════════════════════

class CircuitBreaker:
    """
    Circuit breaker in front of FCM.

    State Machine:
        CLOSED (normal operation)
            → On failure: increment failure_count
            → When failure_count >= threshold: transition to OPEN

        OPEN (rejecting all sends)
            → can_execute() raises CircuitBreakerOpenError
            → After recovery_timeout seconds: transition to HALF_OPEN

        HALF_OPEN (testing recovery)
            → Let sends through
            → On success: CLOSED (reset failure_count)
            → On failure: back to OPEN (reset timer)

    Single event loop only: the counters are plain attributes, mutated from
    coroutines between awaits.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(
        self,
        failure_threshold: int = 10,
        recovery_timeout: int = 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time: Optional[float] = None
        self._clock = clock

    def can_execute(self) -> bool:
        """
        Returns:
            True if a send may proceed (CLOSED, or OPEN past its timeout).

        Raises:
            CircuitBreakerOpenError while OPEN and still recovering.
        """
        if self.state == self.CLOSED:
            return True

        if self.state == self.OPEN:
            elapsed = self._clock() - (self.last_failure_time or 0)
            if elapsed >= self.recovery_timeout:
                logger.info("Push circuit breaker HALF_OPEN after %.1fs", elapsed)
                self.state = self.HALF_OPEN
                return True
            remaining = int(self.recovery_timeout - elapsed)
            raise CircuitBreakerOpenError(recovery_time=remaining)

        return True

    def record_success(self) -> None:
        if self.state == self.HALF_OPEN:
            logger.info("Push circuit breaker CLOSED (FCM recovered)")
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time = None

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = self._clock()

        if self.state == self.HALF_OPEN:
            logger.warning("Push circuit breaker back to OPEN (test send failed)")
            self.state = self.OPEN
        elif self.failure_count >= self.failure_threshold:
            logger.warning(
                "Push circuit breaker OPENING after %d consecutive failures",
                self.failure_count,
            )
            self.state = self.OPEN


# ══════════════════════════════════════════════════════════════════════════
# Message Construction
# ══════════════════════════════════════════════════════════════════════════

def build_message(
    token: str,
    title: str,
    body: str,
    data: Optional[Dict[str, str]],
    channel_id: str,
) -> messaging.Message:
    """
    FCM message with the options the mobile apps expect.

    FCM only accepts string data values, so every value is stringified and
    an ISO-8601 `timestamp` is added.
    """
    payload = {key: str(value) for key, value in (data or {}).items()}
    payload["timestamp"] = datetime.now(timezone.utc).isoformat()

    return messaging.Message(
        token=token,
        notification=messaging.Notification(title=title, body=body),
        data=payload,
        android=messaging.AndroidConfig(
            priority="high",
            notification=messaging.AndroidNotification(
                channel_id=channel_id,
                default_sound=True,
                default_vibrate_timings=True,
            ),
        ),
        apns=messaging.APNSConfig(
            payload=messaging.APNSPayload(aps=messaging.Aps(sound="default", badge=1)),
        ),
    )


# ══════════════════════════════════════════════════════════════════════════
# Providers
# ══════════════════════════════════════════════════════════════════════════

class FirebasePushProvider(PushProvider):
    """
    Error Handling Chain:
        can_execute() → open circuit → False (no network call)
        send → transient FCM error → tenacity retries
        → retries exhausted → record breaker failure → False
        send → token error → False (breaker untouched)
        send → anything else → record breaker failure → False
    """

    def __init__(
        self,
        app: firebase_admin.App,
        channel_id: str = "prayer-warriors-default",
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        self._app = app
        self.channel_id = channel_id
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=settings.push_cb_failure_threshold,
            recovery_timeout=settings.push_cb_recovery_timeout,
        )

    @property
    def available(self) -> bool:
        return True

    def status(self) -> str:
        if self.circuit_breaker.state == CircuitBreaker.OPEN:
            return "circuit_open"
        return "available"

    async def send(
        self,
        token: str,
        title: str,
        body: str,
        data: Optional[Dict[str, str]] = None,
    ) -> bool:
        send_id = str(uuid.uuid4())[:8]

        try:
            self.circuit_breaker.can_execute()
        except CircuitBreakerOpenError as e:
            logger.debug("[%s] Push skipped, circuit open (%ds left)", send_id, e.recovery_time)
            return False

        message = build_message(token, title, body, data, self.channel_id)
        try:
            message_id = await self._send_with_retry(message, send_id)
        except TOKEN_FCM_ERRORS as e:
            logger.warning("[%s] Push rejected for token ...%s: %s", send_id, token[-8:], str(e))
            return False
        except TRANSIENT_FCM_ERRORS as e:
            self.circuit_breaker.record_failure()
            logger.error("[%s] Push failed after retries: %s", send_id, str(e))
            return False
        except Exception as e:
            self.circuit_breaker.record_failure()
            logger.error("[%s] Unexpected push error: %s", send_id, str(e), exc_info=True)
            return False

        self.circuit_breaker.record_success()
        logger.info("[%s] Push delivered: %s", send_id, message_id)
        return True

    @retry(
        retry=retry_if_exception_type(TRANSIENT_FCM_ERRORS),
        stop=stop_after_attempt(settings.push_retry_max_attempts),
        wait=wait_exponential_jitter(
            initial=settings.push_retry_min_wait,
            max=settings.push_retry_max_wait,
            jitter=0.5,
        ),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _send_with_retry(self, message: messaging.Message, send_id: str) -> str:
        """
        One FCM call, retried by tenacity.

        Kept apart from send() so the breaker check is not retried along
        with the network call.
        """
        start_time = time.monotonic()
        try:
            return await asyncio.to_thread(messaging.send, message, app=self._app)
        except Exception as e:
            logger.warning(
                "[%s] FCM call failed after %.0fms: %s",
                send_id,
                (time.monotonic() - start_time) * 1000,
                str(e),
            )
            raise


class NullPushProvider(PushProvider):
    """Used when Firebase is not configured. Delivers nothing."""

    @property
    def available(self) -> bool:
        return False

    async def send(
        self,
        token: str,
        title: str,
        body: str,
        data: Optional[Dict[str, str]] = None,
    ) -> bool:
        logger.debug("Push disabled; dropping notification '%s'", title)
        return False


# ── Factory ───────────────────────────────────────────────────────────────
def _load_credentials(config: Settings) -> credentials.Certificate:
    if config.firebase_service_account:
        return credentials.Certificate(json.loads(config.firebase_service_account))
    return credentials.Certificate(config.firebase_credentials_path)


def create_push_provider(config: Settings = settings) -> PushProvider:
    """
    Build the push provider for this process.

    Returns FirebasePushProvider when credentials are present and accepted;
    otherwise logs the reason and returns NullPushProvider. Never raises,
    so a bad service account cannot keep the API from starting.
    """
    if not config.push_configured:
        logger.warning("Firebase credentials not configured; push notifications disabled")
        return NullPushProvider()

    try:
        try:
            app = firebase_admin.get_app(FIREBASE_APP_NAME)
        except ValueError:
            app = firebase_admin.initialize_app(_load_credentials(config), name=FIREBASE_APP_NAME)
    except (ValueError, OSError) as e:
        logger.error("Firebase initialization failed; push notifications disabled: %s", str(e))
        return NullPushProvider()

    logger.info(
        "FirebasePushProvider initialized (channel=%s, circuit_breaker(threshold=%d, recovery=%ds))",
        config.push_android_channel_id,
        config.push_cb_failure_threshold,
        config.push_cb_recovery_timeout,
    )
    return FirebasePushProvider(
        app,
        channel_id=config.push_android_channel_id,
        circuit_breaker=CircuitBreaker(
            failure_threshold=config.push_cb_failure_threshold,
            recovery_timeout=config.push_cb_recovery_timeout,
        ),
    )
