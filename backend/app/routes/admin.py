"""
Affirmly Backend — Admin Route Handlers
========================================

What:  /api/admin/* — subscription reports and management, and manual
       notification sends.
Who:   Admin dashboard only. Every handler requires `is_admin` on the caller.
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db_session
from app.dependencies import (
    get_admin_identity,
    get_broadcaster,
    get_current_identity,
    get_notification_service,
    get_payment_gateway,
)
from app.models.notification import NotificationType
from app.schemas.common import ErrorResponse
from app.schemas.notification import (
    BroadcastResponse,
    NotificationOut,
    SendNotificationRequest,
    SendToAllResponse,
)
from app.schemas.subscription import (
    AdminCancelRequest,
    AdminExtendRequest,
    AdminSubscriptionListResponse,
    AdminSubscriptionResponse,
    SubscriptionAnalyticsResponse,
    SubscriptionStatsResponse,
)
from app.security import AuthenticatedUser
from app.services.admin_service import admin_service
from app.services.affirmation_scheduler import AffirmationBroadcaster
from app.services.notification_service import NotificationService
from app.services.payment_gateway import PaymentGateway

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/admin",
    tags=["Admin"],
    responses={
        401: {"description": "Missing or invalid token", "model": ErrorResponse},
        403: {"description": "Caller is not an admin", "model": ErrorResponse},
    },
)


# ══════════════════════════════════════════════════════════════════════════
# Subscriptions
# ══════════════════════════════════════════════════════════════════════════


@router.get("/subscriptions", response_model=AdminSubscriptionListResponse)
async def list_subscriptions(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    plan: Optional[str] = Query(default=None, description='"monthly" or "yearly"'),
    status: Optional[str] = Query(default=None, description="active, expired or cancelled"),
    search: Optional[str] = Query(default=None, description="Matches email, first or last name"),
    identity: AuthenticatedUser = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> AdminSubscriptionListResponse:
    return await admin_service.list_subscriptions(
        db, identity, page=page, limit=limit, plan=plan, status=status, search=search
    )


@router.get("/subscriptions/stats", response_model=SubscriptionStatsResponse)
async def subscription_stats(
    identity: AuthenticatedUser = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> SubscriptionStatsResponse:
    stats = await admin_service.get_stats(db, identity)
    return SubscriptionStatsResponse(stats=stats)


@router.get("/subscriptions/analytics", response_model=SubscriptionAnalyticsResponse)
async def subscription_analytics(
    period: int = Query(default=30, ge=1, le=3650, description="Window in days"),
    identity: AuthenticatedUser = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> SubscriptionAnalyticsResponse:
    analytics = await admin_service.get_analytics(db, identity, period_days=period)
    return SubscriptionAnalyticsResponse(analytics=analytics)


@router.get(
    "/subscriptions/{subscription_id}",
    response_model=AdminSubscriptionResponse,
    responses={404: {"description": "Subscription not found", "model": ErrorResponse}},
)
async def get_subscription(
    subscription_id: UUID,
    identity: AuthenticatedUser = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> AdminSubscriptionResponse:
    return await admin_service.get_subscription(db, identity, subscription_id)


@router.post(
    "/subscriptions/{subscription_id}/cancel",
    response_model=AdminSubscriptionResponse,
    responses={
        400: {"description": "Subscription already inactive", "model": ErrorResponse},
        404: {"description": "Subscription not found", "model": ErrorResponse},
    },
)
async def cancel_subscription(
    subscription_id: UUID,
    body: Optional[AdminCancelRequest] = None,
    identity: AuthenticatedUser = Depends(get_current_identity),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    db: AsyncSession = Depends(get_db_session),
) -> AdminSubscriptionResponse:
    return await admin_service.cancel_user_subscription(
        db, identity, subscription_id, gateway, reason=body.reason if body else None
    )


@router.post(
    "/subscriptions/{subscription_id}/extend",
    response_model=AdminSubscriptionResponse,
    responses={
        400: {"description": "Missing or non-positive days", "model": ErrorResponse},
        404: {"description": "Subscription not found", "model": ErrorResponse},
    },
)
async def extend_subscription(
    subscription_id: UUID,
    body: AdminExtendRequest,
    identity: AuthenticatedUser = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> AdminSubscriptionResponse:
    return await admin_service.extend_user_subscription(
        db, identity, subscription_id, body.days, reason=body.reason
    )


# ══════════════════════════════════════════════════════════════════════════
# Notifications
# ══════════════════════════════════════════════════════════════════════════


@router.post(
    "/notifications/broadcast",
    response_model=BroadcastResponse,
    summary="Run one affirmation broadcast now",
)
async def broadcast_now(
    identity: AuthenticatedUser = Depends(get_admin_identity),
    broadcaster: AffirmationBroadcaster = Depends(get_broadcaster),
) -> BroadcastResponse:
    logger.info("Manual affirmation broadcast requested by %s", identity.user_id)
    result = await broadcaster.run_once()
    return BroadcastResponse(started=result is not None, result=result)


@router.post(
    "/notifications/send-to-all",
    response_model=SendToAllResponse,
    summary="Send an announcement to every registered device",
)
async def send_to_all(
    body: SendNotificationRequest,
    identity: AuthenticatedUser = Depends(get_admin_identity),
    service: NotificationService = Depends(get_notification_service),
    db: AsyncSession = Depends(get_db_session),
) -> SendToAllResponse:
    logger.info("Announcement to all users requested by %s", identity.user_id)
    result = await service.send_to_all(db, body.title, body.body)
    return SendToAllResponse(message=f"Notification sent to {result.sent} users.", result=result)


@router.post(
    "/notifications/send-to-user/{user_id}",
    response_model=NotificationOut,
    responses={404: {"description": "User not found", "model": ErrorResponse}},
)
async def send_to_user(
    user_id: UUID,
    body: SendNotificationRequest,
    identity: AuthenticatedUser = Depends(get_admin_identity),
    service: NotificationService = Depends(get_notification_service),
    db: AsyncSession = Depends(get_db_session),
) -> NotificationOut:
    return await service.send_to_user(
        db, user_id, body.title, body.body, notification_type=NotificationType.ANNOUNCEMENT
    )
