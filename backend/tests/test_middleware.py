"""
Affirmly Backend — Middleware Tests
====================================

What:  Request ID propagation and the rate limiter, through the full app.
"""

import pytest

from app.config import settings
from app.services.payment_gateway import WebhookEvent


class TestRequestID:

    @pytest.mark.asyncio
    async def test_client_request_id_echoed(self, test_client):
        response = await test_client.get("/api/subscription/plans", headers={"X-Request-ID": "req-1"})

        assert response.headers["X-Request-ID"] == "req-1"

    @pytest.mark.asyncio
    async def test_request_id_generated(self, test_client):
        response = await test_client.get("/api/subscription/plans")

        assert len(response.headers["X-Request-ID"]) == 8


class TestRateLimit:

    @pytest.mark.asyncio
    async def test_rejected_request_carries_request_id(self, test_client, monkeypatch):
        monkeypatch.setattr(settings, "rate_limit_requests", 2)

        for _ in range(2):
            assert (await test_client.get("/api/subscription/plans")).status_code == 200
        response = await test_client.get(
            "/api/subscription/plans", headers={"X-Request-ID": "limited-1"}
        )

        assert response.status_code == 429
        body = response.json()
        assert body["error"] == "rate_limit_exceeded"
        assert body["request_id"] == "limited-1"
        assert response.headers["X-Request-ID"] == "limited-1"
        assert int(response.headers["Retry-After"]) >= 1

    @pytest.mark.asyncio
    async def test_webhook_never_limited(self, test_client, monkeypatch, fake_gateway):
        monkeypatch.setattr(settings, "rate_limit_requests", 1)
        fake_gateway.construct_event.return_value = WebhookEvent(id="evt_1", type="invoice.paid")

        await test_client.get("/api/subscription/plans")
        response = await test_client.post(
            "/api/subscription/webhook", content=b"{}", headers={"Stripe-Signature": "t=1,v1=x"}
        )

        assert response.status_code == 200
        assert response.json() == {"received": True}
