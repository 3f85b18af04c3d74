"""
Affirmly Backend — Custom Exception Hierarchy
==============================================

What:  Application-specific exceptions for every error scenario.
Why:   Custom exceptions let the global handlers pick the HTTP status and the
       response body without any try/except in route handlers.
How:   Each exception carries a user-safe message and an optional context dict
       (logged server-side, never returned for 5xx errors).
Who:   Raised by services, gateways and the auth dependency; caught by the
       handlers registered in main.py.

Exception Hierarchy:
    AffirmlyError (base)
    ├── ValidationError                 → 400 Bad Request
    │   ├── InvalidPlanTypeError        → 400
    │   └── PaymentVerificationError    → 400
    ├── AuthenticationError             → 401 Unauthorized
    ├── AuthorizationError              → 403 (configurable: 400 or 403)
    ├── NotFoundError                   → 404 Not Found
    │   ├── UserNotFoundError           → 404
    │   └── NoSubscriptionFoundError    → 404
    ├── SignatureVerificationError      → 400 (webhook signature invalid)
    ├── UpstreamServiceError            → 500 (Stripe / Firebase call failed)
    │   └── PushDeliveryError           → 500
    │       └── DeviceTokenNotRegisteredError
    ├── DatabaseError                   → 500
    └── RateLimitExceededError          → 429 Too Many Requests
"""

from typing import Any, Dict, Iterable, Optional


class AffirmlyError(Exception):
    """
    Base exception for all application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged, not returned for server errors)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(AffirmlyError):
    """
    Raised when client input fails a business rule.

    HTTP: 400 Bad Request. Schema-level problems (wrong JSON types) are still
    reported by FastAPI as 422.
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


class InvalidPlanTypeError(ValidationError):
    """Checkout requested for a plan other than the configured ones."""

    def __init__(self, plan_type: Optional[str], allowed: Iterable[str] = ("monthly", "yearly")):
        allowed = list(allowed)
        quoted = " or ".join(f'"{p}"' for p in allowed)
        super().__init__(
            message=f"Invalid plan type. Must be {quoted}",
            field="planType",
            context={"plan_type": plan_type, "allowed": allowed},
        )
        self.plan_type = plan_type


class PaymentVerificationError(ValidationError):
    """Checkout session is unpaid or belongs to a different account."""

    def __init__(self, context: Optional[Dict[str, Any]] = None):
        super().__init__(message="Payment verification failed", context=context)


class AuthenticationError(AffirmlyError):
    """Missing, malformed or expired bearer token. HTTP 401."""

    def __init__(
        self,
        message: str = "Authentication required",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class AuthorizationError(AffirmlyError):
    """
    The authenticated user is not the owner of a resource or not an admin.

    HTTP status comes from `settings.authorization_error_status` so every
    endpoint answers the same way.
    """

    def __init__(
        self,
        message: str = "Access denied",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class NotFoundError(AffirmlyError):
    """
    Raised when a requested resource does not exist.

    SQLAlchemy returns None for missing rows; services convert that into
    this exception so the handler can answer 404.
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


class UserNotFoundError(NotFoundError):
    def __init__(self, user_id: Optional[str] = None):
        super().__init__(resource="user", resource_id=user_id, message="User not found")


class NoSubscriptionFoundError(NotFoundError):
    def __init__(self, user_id: Optional[str] = None):
        super().__init__(
            resource="subscription",
            message="No subscription found",
            context={"user_id": user_id} if user_id else None,
        )


class SignatureVerificationError(AffirmlyError):
    """
    Webhook payload failed signature verification.

    HTTP: 400. Nothing is retried locally; Stripe redelivers webhooks on its own
    schedule, and an invalid signature will not become valid on retry.
    """

    def __init__(
        self,
        message: str = "Webhook signature verification failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class UpstreamServiceError(AffirmlyError):
    """
    A call to the payment gateway or the push provider failed.

    HTTP: 500 when it reaches the request boundary. Cancellation catches it
    and still updates local state.
    """

    def __init__(
        self,
        message: str = "An upstream service call failed",
        service: str = "upstream",
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["service"] = service
        super().__init__(message=message, context=ctx)
        self.service = service


class PushDeliveryError(UpstreamServiceError):
    def __init__(
        self,
        message: str = "Push notification delivery failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, service="firebase", context=context)


class DeviceTokenNotRegisteredError(PushDeliveryError):
    """The push provider no longer recognises the device token."""

    def __init__(self, context: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=(
                "Notification token expired. "
                "Please refresh the page to get new notifications."
            ),
            context=context,
        )


class DatabaseError(AffirmlyError):
    """
    Raised when database operations fail unexpectedly.

    The message returned to the client is always generic; details are
    logged server-side only.
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class RateLimitExceededError(AffirmlyError):
    """Client exceeded the per-IP request rate limit. HTTP 429."""

    def __init__(
        self,
        retry_after: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Rate limit exceeded. Please wait {retry_after} seconds before making more requests."
        )
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after
