"""
Affirmly Backend — Stripe Gateway Unit Tests
=============================================

What:  StripePaymentGateway with the stripe SDK patched out.

What we test:
    ✅ Checkout parameters and response mapping
    ✅ SDK errors become UpstreamServiceError / ValidationError
    ✅ Transient connection errors are retried on reads
    ✅ Billing period read from subscription items on newer API versions
"""

from datetime import datetime, timezone
from unittest.mock import patch

import pytest
import stripe

from app.exceptions import SignatureVerificationError, UpstreamServiceError, ValidationError
from app.services.payment_gateway import GatewaySubscription
from app.services.stripe_gateway import StripePaymentGateway

PERIOD_START = 1893456000  # 2030-01-01T00:00:00Z
PERIOD_END = 1896134400  # 2030-02-01T00:00:00Z


class TestCheckout:

    def setup_method(self):
        self.gateway = StripePaymentGateway(api_key="sk_test_x", webhook_secret="whsec_x")

    @pytest.mark.asyncio
    async def test_create_checkout_session(self):
        with patch("stripe.checkout.Session.create") as mock_create:
            mock_create.return_value = {
                "id": "cs_1",
                "url": "https://checkout.stripe.com/c/pay/cs_1",
                "mode": "subscription",
                "metadata": {"userId": "u1", "planType": "monthly"},
            }

            session = await self.gateway.create_checkout_session(
                price_id="price_1",
                customer_email="a@example.com",
                metadata={"userId": "u1", "planType": "monthly"},
                success_url="http://app/success?session_id={CHECKOUT_SESSION_ID}",
                cancel_url="http://app/cancel",
            )

        assert session.id == "cs_1"
        assert session.url == "https://checkout.stripe.com/c/pay/cs_1"
        kwargs = mock_create.call_args.kwargs
        assert kwargs["api_key"] == "sk_test_x"
        assert kwargs["mode"] == "subscription"
        assert kwargs["payment_method_types"] == ["card"]
        assert kwargs["line_items"] == [{"price": "price_1", "quantity": 1}]
        assert kwargs["customer_email"] == "a@example.com"

    @pytest.mark.asyncio
    async def test_create_failure_is_upstream_error(self):
        with patch("stripe.checkout.Session.create", side_effect=stripe.APIError("stripe is down")):
            with pytest.raises(UpstreamServiceError) as exc_info:
                await self.gateway.create_checkout_session("price_1", "a@example.com", {}, "s", "c")

        assert exc_info.value.service == "stripe"

    @pytest.mark.asyncio
    async def test_unknown_session_is_validation_error(self):
        error = stripe.InvalidRequestError("No such checkout.session: cs_missing", "id")
        with patch("stripe.checkout.Session.retrieve", side_effect=error):
            with pytest.raises(ValidationError) as exc_info:
                await self.gateway.retrieve_session("cs_missing")

        assert exc_info.value.message == "Checkout session not found"


class TestSubscriptions:

    def setup_method(self):
        self.gateway = StripePaymentGateway(api_key="sk_test_x", webhook_secret="whsec_x")

    @pytest.mark.asyncio
    async def test_retrieve_retries_connection_errors(self):
        payload = {
            "id": "sub_1",
            "status": "active",
            "customer": "cus_1",
            "current_period_start": PERIOD_START,
            "current_period_end": PERIOD_END,
        }
        with patch(
            "stripe.Subscription.retrieve",
            side_effect=[stripe.APIConnectionError("connection reset"), payload],
        ) as mock_retrieve:
            subscription = await self.gateway.retrieve_subscription("sub_1")

        assert mock_retrieve.call_count == 2
        assert subscription.status == "active"
        assert subscription.current_period_end == datetime(2030, 2, 1, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_retrieve_gives_up_after_max_attempts(self):
        with patch(
            "stripe.Subscription.retrieve",
            side_effect=stripe.APIConnectionError("connection reset"),
        ) as mock_retrieve:
            with pytest.raises(UpstreamServiceError):
                await self.gateway.retrieve_subscription("sub_1")

        assert mock_retrieve.call_count == 3

    @pytest.mark.asyncio
    async def test_cancel_at_period_end(self):
        with patch("stripe.Subscription.modify") as mock_modify:
            await self.gateway.cancel_at_period_end("sub_1")

        mock_modify.assert_called_once_with("sub_1", api_key="sk_test_x", cancel_at_period_end=True)

    @pytest.mark.asyncio
    async def test_cancel_failure_is_upstream_error(self):
        with patch("stripe.Subscription.modify", side_effect=stripe.APIError("boom")):
            with pytest.raises(UpstreamServiceError):
                await self.gateway.cancel_at_period_end("sub_1")


class TestResponseMapping:

    def test_period_from_subscription_items(self):
        subscription = GatewaySubscription.from_mapping(
            {
                "id": "sub_1",
                "status": "active",
                "customer": {"id": "cus_1", "object": "customer"},
                "items": {
                    "data": [
                        {"current_period_start": PERIOD_START, "current_period_end": PERIOD_END}
                    ]
                },
            }
        )

        assert subscription.customer_id == "cus_1"
        assert subscription.current_period_start == datetime(2030, 1, 1, tzinfo=timezone.utc)
        assert subscription.current_period_end == datetime(2030, 2, 1, tzinfo=timezone.utc)

    def test_missing_period(self):
        subscription = GatewaySubscription.from_mapping({"id": "sub_1", "status": "incomplete"})

        assert subscription.current_period_start is None
        assert subscription.current_period_end is None


class TestConstructEvent:

    def test_unconfigured_secret_rejects_everything(self):
        gateway = StripePaymentGateway(api_key="sk_test_x", webhook_secret="")

        with pytest.raises(SignatureVerificationError):
            gateway.construct_event(b"{}", "t=1,v1=abc")

    def test_malformed_header_rejected(self):
        gateway = StripePaymentGateway(api_key="sk_test_x", webhook_secret="whsec_x")

        with pytest.raises(SignatureVerificationError):
            gateway.construct_event(b"{}", "garbage")
