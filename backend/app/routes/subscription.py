"""
Affirmly Backend — Subscription Route Handlers
===============================================

What:  /api/subscription/* — checkout, Stripe webhook, status, cancel,
       payment verification and the plan catalogue.
Who:   Called by the web/mobile clients; the webhook is called by Stripe.

The webhook is the only unauthenticated write endpoint. It is protected by
the Stripe signature instead, and must read the raw request body: any
re-serialization would break verification.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db_session
from app.dependencies import get_current_identity, get_subscription_service
from app.schemas.common import ErrorResponse, MessageResponse
from app.schemas.subscription import (
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    PlansResponse,
    SubscriptionStatusResponse,
    VerifyPaymentResponse,
    WebhookAck,
)
from app.security import AuthenticatedUser
from app.services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/subscription", tags=["Subscription"])


@router.post(
    "/create-checkout-session",
    response_model=CheckoutSessionResponse,
    responses={
        400: {"description": "Invalid plan type", "model": ErrorResponse},
        401: {"description": "Missing or invalid token", "model": ErrorResponse},
        404: {"description": "User not found", "model": ErrorResponse},
        500: {"description": "Stripe error", "model": ErrorResponse},
    },
    summary="Start a Stripe checkout for a plan",
)
async def create_checkout_session(
    body: CheckoutSessionRequest,
    identity: AuthenticatedUser = Depends(get_current_identity),
    service: SubscriptionService = Depends(get_subscription_service),
    db: AsyncSession = Depends(get_db_session),
) -> CheckoutSessionResponse:
    return await service.create_checkout_session(db, identity, body.plan_type)


@router.post(
    "/webhook",
    response_model=WebhookAck,
    responses={400: {"description": "Signature verification failed", "model": ErrorResponse}},
    summary="Stripe webhook receiver",
)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None, alias="Stripe-Signature"),
    service: SubscriptionService = Depends(get_subscription_service),
    db: AsyncSession = Depends(get_db_session),
) -> WebhookAck:
    payload = await request.body()
    return await service.handle_webhook_event(db, payload, stripe_signature)


@router.get(
    "/status",
    response_model=SubscriptionStatusResponse,
    summary="Current user's subscription",
)
async def get_subscription_status(
    identity: AuthenticatedUser = Depends(get_current_identity),
    service: SubscriptionService = Depends(get_subscription_service),
    db: AsyncSession = Depends(get_db_session),
) -> SubscriptionStatusResponse:
    status = await service.get_user_subscription(db, identity.user_id)
    return SubscriptionStatusResponse(**status.model_dump())


@router.post(
    "/cancel",
    response_model=MessageResponse,
    responses={404: {"description": "No subscription found", "model": ErrorResponse}},
    summary="Cancel the current user's subscription",
)
async def cancel_subscription(
    identity: AuthenticatedUser = Depends(get_current_identity),
    service: SubscriptionService = Depends(get_subscription_service),
    db: AsyncSession = Depends(get_db_session),
) -> MessageResponse:
    return await service.cancel_subscription(db, identity)


@router.get(
    "/verify-payment",
    response_model=VerifyPaymentResponse,
    responses={400: {"description": "Missing session or payment not verified", "model": ErrorResponse}},
    summary="Confirm a checkout after the success redirect",
)
async def verify_payment(
    session_id: Optional[str] = Query(default=None),
    identity: AuthenticatedUser = Depends(get_current_identity),
    service: SubscriptionService = Depends(get_subscription_service),
    db: AsyncSession = Depends(get_db_session),
) -> VerifyPaymentResponse:
    return await service.verify_payment_success(db, identity, session_id)


@router.get("/plans", response_model=PlansResponse, summary="Available subscription plans")
async def get_plans() -> PlansResponse:
    return PlansResponse(plans=SubscriptionService.get_available_plans())
