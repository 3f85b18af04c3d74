"""
Affirmly Backend — Subscription Request/Response Schemas
=========================================================

What:  API contract for checkout, status, cancellation, payment verification,
       plans and the admin subscription reports.
"""

import uuid
from datetime import date, datetime
from typing import List, Optional

from pydantic import Field

from app.schemas.common import ApiModel, Pagination


# ══════════════════════════════════════════════════════════════════════════
# Requests
# ══════════════════════════════════════════════════════════════════════════


class CheckoutSessionRequest(ApiModel):
    # Plain string: unknown plans are rejected by the service with a 400,
    # not by schema validation with a 422
    plan_type: Optional[str] = Field(default=None, description='"monthly" or "yearly"')


# ══════════════════════════════════════════════════════════════════════════
# Responses
# ══════════════════════════════════════════════════════════════════════════


class CheckoutSessionResponse(ApiModel):
    success: bool = True
    session_id: str = Field(description="Stripe checkout session id")
    url: Optional[str] = Field(default=None, description="Hosted checkout page to redirect to")


class SubscriptionOut(ApiModel):
    """
    A subscription row as returned to clients.

    `is_active` is always the computed value (`stored flag and end_date > now`),
    never the raw column.
    """
    id: uuid.UUID
    user_id: uuid.UUID
    plan: str
    start_date: datetime
    end_date: datetime
    is_active: bool
    stripe_subscription_id: Optional[str] = None
    stripe_customer_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class SubscriptionStatus(ApiModel):
    """Service-level result of a status lookup."""
    has_subscription: bool
    subscription: Optional[SubscriptionOut] = None


class SubscriptionStatusResponse(SubscriptionStatus):
    success: bool = True


class VerifyPaymentResponse(ApiModel):
    success: bool = True
    message: str = "Payment verified successfully"
    # May be null right after payment if the webhook has not landed yet
    subscription: Optional[SubscriptionOut] = None


class WebhookAck(ApiModel):
    received: bool = True


class PlanOut(ApiModel):
    id: str
    name: str
    price: float
    interval: str
    features: List[str]
    savings: Optional[str] = None


class PlansResponse(ApiModel):
    success: bool = True
    plans: List[PlanOut]


# ══════════════════════════════════════════════════════════════════════════
# Admin
# ══════════════════════════════════════════════════════════════════════════


class SubscriptionOwner(ApiModel):
    id: uuid.UUID
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    username: Optional[str] = None


class AdminSubscriptionItem(SubscriptionOut):
    user: SubscriptionOwner


class AdminSubscriptionListResponse(ApiModel):
    success: bool = True
    subscriptions: List[AdminSubscriptionItem]
    pagination: Pagination


class SubscriptionStats(ApiModel):
    total_subscriptions: int
    active_subscriptions: int
    monthly_subscriptions: int
    yearly_subscriptions: int
    expired_subscriptions: int


class SubscriptionStatsResponse(ApiModel):
    success: bool = True
    stats: SubscriptionStats


class AdminSubscriptionResponse(ApiModel):
    success: bool = True
    message: Optional[str] = None
    subscription: AdminSubscriptionItem


class AdminCancelRequest(ApiModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class AdminExtendRequest(ApiModel):
    # Checked by the service so a missing or non-positive value is a 400
    days: Optional[int] = Field(default=None, description="Days to add to the current end date")
    reason: Optional[str] = Field(default=None, max_length=500)


class PlanCount(ApiModel):
    plan: str
    count: int


class DailyPlanCount(ApiModel):
    day: date
    plan: str
    count: int


class SubscriptionAnalytics(ApiModel):
    period_days: int
    new_subscriptions: int
    cancelled_subscriptions: int
    subscriptions_by_plan: List[PlanCount]
    daily_stats: List[DailyPlanCount]


class SubscriptionAnalyticsResponse(ApiModel):
    success: bool = True
    analytics: SubscriptionAnalytics
