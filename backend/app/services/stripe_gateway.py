"""
Affirmly Backend — Stripe Payment Gateway Implementation
=========================================================

What:  PaymentGateway backed by the official `stripe` SDK.
Why:   Stripe hosts the checkout page, owns the subscription state and
       signs the webhooks this backend reconciles from.
How:   The SDK is synchronous, so each call runs in a worker thread via
       asyncio.to_thread; a slow Stripe call only blocks its own request.

Resilience Strategy:
    - Read-only retrievals (session, subscription) retry transient connection
      errors with tenacity: exponential backoff with jitter, bounded attempts.
    - Writes (checkout creation, cancellation) are attempted once; the caller
      decides what a failure means (checkout surfaces it, cancellation logs it).
    - Webhook signatures are verified locally with the endpoint secret and the
      body is parsed only after verification succeeds.
"""

import asyncio
import json
import logging
from typing import Dict, Optional

import stripe
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from app.config import settings
from app.exceptions import (
    SignatureVerificationError,
    UpstreamServiceError,
    ValidationError,
)
from app.services.payment_gateway import (
    CheckoutSession,
    GatewaySubscription,
    PaymentGateway,
    WebhookEvent,
)

logger = logging.getLogger(__name__)


_read_retry = retry(
    retry=retry_if_exception_type(stripe.APIConnectionError),
    stop=stop_after_attempt(settings.retry_max_attempts),
    wait=wait_exponential_jitter(
        initial=settings.retry_min_wait,
        max=settings.retry_max_wait,
        jitter=1,
    ),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)


def _stripe_message(exc: Exception) -> str:
    return getattr(exc, "user_message", None) or str(exc) or type(exc).__name__


class StripePaymentGateway(PaymentGateway):
    """
    Stripe-backed gateway.

    The API key is passed per call instead of assigned to `stripe.api_key`
    so several gateways (e.g. test and live mode) can coexist in one process.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        webhook_tolerance: Optional[int] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.stripe_secret_key
        self.webhook_secret = (
            webhook_secret if webhook_secret is not None else settings.stripe_webhook_secret
        )
        self.webhook_tolerance = webhook_tolerance or settings.stripe_webhook_tolerance

    # ── Checkout ──────────────────────────────────────────────────────────

    async def create_checkout_session(
        self,
        price_id: str,
        customer_email: str,
        metadata: Dict[str, str],
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSession:
        try:
            session = await asyncio.to_thread(
                stripe.checkout.Session.create,
                api_key=self.api_key,
                mode="subscription",
                payment_method_types=["card"],
                line_items=[{"price": price_id, "quantity": 1}],
                success_url=success_url,
                cancel_url=cancel_url,
                customer_email=customer_email,
                metadata=metadata,
            )
        except stripe.StripeError as e:
            logger.error("Stripe checkout session creation failed: %s", _stripe_message(e))
            raise UpstreamServiceError(
                message=f"Failed to create checkout session: {_stripe_message(e)}",
                service="stripe",
                context={"error_type": type(e).__name__},
            )

        result = CheckoutSession.from_mapping(session)
        logger.info("Created Stripe checkout session %s", result.id)
        return result

    async def retrieve_session(self, session_id: str) -> CheckoutSession:
        try:
            session = await self._retrieve_session_with_retry(session_id)
        except stripe.InvalidRequestError as e:
            # Unknown session id
            raise ValidationError(
                message="Checkout session not found",
                field="session_id",
                context={"stripe_error": _stripe_message(e)},
            )
        except stripe.StripeError as e:
            raise UpstreamServiceError(
                message=f"Failed to retrieve checkout session: {_stripe_message(e)}",
                service="stripe",
                context={"session_id": session_id},
            )
        return CheckoutSession.from_mapping(session)

    @_read_retry
    async def _retrieve_session_with_retry(self, session_id: str):
        return await asyncio.to_thread(
            stripe.checkout.Session.retrieve, session_id, api_key=self.api_key
        )

    # ── Subscriptions ─────────────────────────────────────────────────────

    async def retrieve_subscription(self, subscription_id: str) -> GatewaySubscription:
        try:
            subscription = await self._retrieve_subscription_with_retry(subscription_id)
        except stripe.StripeError as e:
            raise UpstreamServiceError(
                message=f"Failed to retrieve subscription: {_stripe_message(e)}",
                service="stripe",
                context={"subscription_id": subscription_id},
            )
        return GatewaySubscription.from_mapping(subscription)

    @_read_retry
    async def _retrieve_subscription_with_retry(self, subscription_id: str):
        return await asyncio.to_thread(
            stripe.Subscription.retrieve, subscription_id, api_key=self.api_key
        )

    async def cancel_at_period_end(self, subscription_id: str) -> None:
        try:
            await asyncio.to_thread(
                stripe.Subscription.modify,
                subscription_id,
                api_key=self.api_key,
                cancel_at_period_end=True,
            )
        except stripe.StripeError as e:
            raise UpstreamServiceError(
                message=f"Failed to cancel subscription at Stripe: {_stripe_message(e)}",
                service="stripe",
                context={"subscription_id": subscription_id},
            )
        logger.info("Stripe subscription %s set to cancel at period end", subscription_id)

    # ── Webhooks ──────────────────────────────────────────────────────────

    def construct_event(self, payload: bytes, signature_header: Optional[str]) -> WebhookEvent:
        if not self.webhook_secret:
            raise SignatureVerificationError(message="Webhook secret is not configured")
        if not signature_header:
            raise SignatureVerificationError(message="Missing Stripe-Signature header")

        try:
            body = payload.decode("utf-8")
        except UnicodeDecodeError:
            raise SignatureVerificationError(message="Webhook payload is not valid UTF-8")

        try:
            stripe.WebhookSignature.verify_header(
                body,
                signature_header,
                self.webhook_secret,
                self.webhook_tolerance,
            )
        except stripe.SignatureVerificationError as e:
            raise SignatureVerificationError(
                message=f"Webhook Error: {_stripe_message(e)}",
            )

        try:
            event = json.loads(body)
        except ValueError:
            raise ValidationError(message="Webhook payload is not valid JSON")

        data = event.get("data") or {}
        return WebhookEvent(
            id=event.get("id"),
            type=event.get("type", ""),
            data_object=data.get("object") or {},
        )
