"""
Prayer API Backend: Custom Exception Hierarchy
================================================

What:  Application-specific exceptions for the caller-facing error kinds.
How:   Each exception carries a message (safe to return) and a context dict
       (logged server-side only). Global handlers registered in main.py turn
       them into JSON error responses.
Who:   Raised by services; caught by the global handlers.

Exception Hierarchy:
    PrayerWallError (base)
    ├── ValidationError          → 400 Bad Request (missing device_id, topic_id, ...)
    ├── NotFoundError            → 404 Not Found (missing, expired or already completed)
    ├── StorageFailure           → 500 Internal Server Error (opaque to the client)
    ├── PushUnavailableError     → 503 Service Unavailable (Firebase not configured)
    └── CircuitBreakerOpenError  → internal to the push provider, never reaches HTTP

A duplicate join is not an error at all: the store reports it through
`JoinResult.already_joined` and returns the unchanged request.
"""

from typing import Any, Dict, Optional


class PrayerWallError(Exception):
    """
    Base exception for all application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned to client)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(PrayerWallError):
    """
    Raised when a required identifier or field is missing or unusable.

    HTTP: 400 Bad Request

    Example response:
        {
            "error": "validation_error",
            "message": "Device ID is required",
            "details": {"field": "device_id"}
        }
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class NotFoundError(PrayerWallError):
    """
    Raised when a referenced request, link or device does not exist.

    HTTP: 404 Not Found

    Covers expired prayer requests and links already in their terminal
    (completed) state: callers see the same outcome for all of them.
    The message can be overridden when the generic wording is too vague.
    """

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        message: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        if message is None:
            message = f"The requested {resource} was not found"
            if resource_id:
                message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class StorageFailure(PrayerWallError):
    """
    Raised when a database operation fails unexpectedly.

    HTTP: 500 Internal Server Error

    The message returned to the client is always generic. The driver error,
    operation name and identifiers go into `context` and are logged only.
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class PushUnavailableError(PrayerWallError):
    """
    Raised when an operation needs a live push provider and none is configured.

    HTTP: 503 Service Unavailable

    Only the explicit test-notification endpoint raises this; every other
    notification path degrades to "not delivered" instead.
    """

    def __init__(
        self,
        message: str = "Push notifications are not available on this server",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class CircuitBreakerOpenError(PrayerWallError):
    """
    Raised by the push circuit breaker while it is OPEN.

    How circuit breaker works:
        CLOSED (normal) → failures increment counter
        → After N failures → OPEN (reject sends for the recovery period)
        → After recovery period → HALF-OPEN (allow one test send)
        → If test succeeds → CLOSED
        → If test fails → OPEN again

    The Firebase provider catches it and reports the send as undelivered.
    """

    def __init__(
        self,
        recovery_time: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            "Push delivery is paused after repeated failures. "
            f"It will be retried in approximately {recovery_time} seconds."
        )
        ctx = context or {}
        ctx["recovery_time"] = recovery_time
        super().__init__(message=message, context=ctx)
        self.recovery_time = recovery_time
