"""
Affirmly Backend — Admin Subscription & Notification Tests
===========================================================

What we test:
    ✅ Stats, analytics and list filters (plan, status, search)
    ✅ Admin-only access
    ✅ Manual cancel and extend of a user's subscription
    ✅ Manual broadcast, announcements to everyone and to one user
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy import select

from app.exceptions import AuthorizationError, NotFoundError, UpstreamServiceError, ValidationError
from app.models.notification import Notification
from app.models.subscription import Subscription
from app.security import AuthenticatedUser
from app.services.admin_service import admin_service

NOW = datetime.now(timezone.utc)


def identity_for(user) -> AuthenticatedUser:
    return AuthenticatedUser(user_id=user.id, email=user.email, is_admin=user.is_admin)


async def add_subscription(db, user, **fields):
    subscription = Subscription(
        user_id=user.id,
        plan=fields.pop("plan", "monthly"),
        start_date=fields.pop("start_date", NOW - timedelta(days=20)),
        end_date=fields.pop("end_date", NOW + timedelta(days=10)),
        is_active=fields.pop("is_active", True),
        stripe_subscription_id=fields.pop("stripe_subscription_id", "sub_admin"),
        **fields,
    )
    db.add(subscription)
    await db.commit()
    return subscription


@pytest.fixture
def seed_subscriptions(db_session, make_user):
    """
    Four subscribers:
        monthly active, yearly active, monthly cancelled (future end), yearly lapsed
    """
    async def _seed():
        specs = [
            ("monthly", True, NOW + timedelta(days=10)),
            ("yearly", True, NOW + timedelta(days=200)),
            ("monthly", False, NOW + timedelta(days=10)),
            ("yearly", True, NOW - timedelta(days=1)),
        ]
        for plan, is_active, end_date in specs:
            user = await make_user()
            db_session.add(
                Subscription(
                    user_id=user.id,
                    plan=plan,
                    start_date=NOW - timedelta(days=30),
                    end_date=end_date,
                    is_active=is_active,
                )
            )
        await db_session.commit()

    return _seed


class TestAdminService:

    @pytest.mark.asyncio
    async def test_non_admin_denied(self, db_session, make_user):
        user = await make_user(is_admin=False)

        with pytest.raises(AuthorizationError):
            await admin_service.get_stats(db_session, identity_for(user))

    @pytest.mark.asyncio
    async def test_stats(self, db_session, make_user, seed_subscriptions):
        admin = await make_user(is_admin=True)
        await seed_subscriptions()

        stats = await admin_service.get_stats(db_session, identity_for(admin), now=NOW)

        assert stats.total_subscriptions == 4
        assert stats.active_subscriptions == 2
        assert stats.monthly_subscriptions == 1
        assert stats.yearly_subscriptions == 1
        assert stats.expired_subscriptions == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,plan,expected",
        [
            ("active", None, 2),
            ("expired", None, 2),
            ("cancelled", None, 1),
            (None, "yearly", 2),
            ("active", "monthly", 1),
        ],
    )
    async def test_list_filters(
        self, db_session, make_user, seed_subscriptions, status, plan, expected
    ):
        admin = await make_user(is_admin=True)
        await seed_subscriptions()

        page = await admin_service.list_subscriptions(
            db_session, identity_for(admin), status=status, plan=plan, now=NOW
        )

        assert page.pagination.total == expected
        assert len(page.subscriptions) == expected
        for item in page.subscriptions:
            assert item.user.email.endswith("@example.com")

    @pytest.mark.asyncio
    async def test_unknown_status_filter(self, db_session, make_user):
        admin = await make_user(is_admin=True)

        with pytest.raises(ValidationError):
            await admin_service.list_subscriptions(db_session, identity_for(admin), status="paused")

    @pytest.mark.asyncio
    async def test_search_matches_name_or_email(self, db_session, make_user, seed_subscriptions):
        admin = await make_user(is_admin=True)
        await seed_subscriptions()
        ada = await make_user(email="ada@analytical.engine", first_name="Ada", last_name="Lovelace")
        await add_subscription(db_session, ada)

        by_last_name = await admin_service.list_subscriptions(
            db_session, identity_for(admin), search="LOVE"
        )
        by_email = await admin_service.list_subscriptions(
            db_session, identity_for(admin), search="analytical"
        )
        everyone = await admin_service.list_subscriptions(
            db_session, identity_for(admin), search="test"
        )

        assert [item.user.id for item in by_last_name.subscriptions] == [ada.id]
        assert by_email.pagination.total == 1
        # seeded users are all "Test User"
        assert everyone.pagination.total == 4

    @pytest.mark.asyncio
    async def test_analytics(self, db_session, make_user, seed_subscriptions):
        admin = await make_user(is_admin=True)
        await seed_subscriptions()
        veteran = await make_user()
        await add_subscription(
            db_session,
            veteran,
            is_active=False,
            created_at=NOW - timedelta(days=90),
            updated_at=NOW - timedelta(days=60),
        )

        analytics = await admin_service.get_analytics(
            db_session, identity_for(admin), period_days=30, now=NOW - timedelta(seconds=5)
        )

        assert analytics.period_days == 30
        assert analytics.new_subscriptions == 4
        assert analytics.cancelled_subscriptions == 1
        assert {(p.plan, p.count) for p in analytics.subscriptions_by_plan} == {
            ("monthly", 2),
            ("yearly", 2),
        }
        assert sum(day.count for day in analytics.daily_stats) == 4


class TestAdminSubscriptionManagement:

    @pytest.mark.asyncio
    async def test_get_subscription_with_owner(self, db_session, make_user):
        admin = await make_user(is_admin=True)
        owner = await make_user(first_name="Grace")
        subscription = await add_subscription(db_session, owner)

        result = await admin_service.get_subscription(db_session, identity_for(admin), subscription.id)

        assert result.subscription.id == subscription.id
        assert result.subscription.user.first_name == "Grace"

    @pytest.mark.asyncio
    async def test_get_missing_subscription(self, db_session, make_user):
        admin = await make_user(is_admin=True)

        with pytest.raises(NotFoundError) as exc_info:
            await admin_service.get_subscription(db_session, identity_for(admin), uuid4())
        assert exc_info.value.message == "Subscription not found"

    @pytest.mark.asyncio
    async def test_cancel_deactivates_and_cancels_at_stripe(
        self, db_session, make_user, fake_gateway
    ):
        admin = await make_user(is_admin=True)
        subscription = await add_subscription(db_session, await make_user())

        result = await admin_service.cancel_user_subscription(
            db_session, identity_for(admin), subscription.id, fake_gateway, reason="chargeback"
        )

        fake_gateway.cancel_at_period_end.assert_awaited_once_with("sub_admin")
        assert result.message == "Subscription cancelled successfully"
        assert result.subscription.is_active is False
        assert subscription.is_active is False

    @pytest.mark.asyncio
    async def test_cancel_survives_stripe_failure(self, db_session, make_user, fake_gateway):
        admin = await make_user(is_admin=True)
        subscription = await add_subscription(db_session, await make_user())
        fake_gateway.cancel_at_period_end.side_effect = UpstreamServiceError(
            message="stripe is down", service="stripe"
        )

        result = await admin_service.cancel_user_subscription(
            db_session, identity_for(admin), subscription.id, fake_gateway
        )

        assert result.subscription.is_active is False

    @pytest.mark.asyncio
    async def test_cancel_already_inactive(self, db_session, make_user, fake_gateway):
        admin = await make_user(is_admin=True)
        subscription = await add_subscription(db_session, await make_user(), is_active=False)

        with pytest.raises(ValidationError) as exc_info:
            await admin_service.cancel_user_subscription(
                db_session, identity_for(admin), subscription.id, fake_gateway
            )

        assert exc_info.value.message == "Subscription is already inactive"
        fake_gateway.cancel_at_period_end.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_extend_moves_end_date(self, db_session, make_user):
        admin = await make_user(is_admin=True)
        end_date = NOW + timedelta(days=10)
        subscription = await add_subscription(db_session, await make_user(), end_date=end_date)

        result = await admin_service.extend_user_subscription(
            db_session, identity_for(admin), subscription.id, 5
        )

        assert result.message == "Subscription extended by 5 days"
        assert result.subscription.end_date == end_date + timedelta(days=5)

    @pytest.mark.asyncio
    async def test_extend_reactivates_lapsed_subscription(self, db_session, make_user):
        admin = await make_user(is_admin=True)
        subscription = await add_subscription(
            db_session, await make_user(), is_active=False, end_date=NOW - timedelta(days=1)
        )

        result = await admin_service.extend_user_subscription(
            db_session, identity_for(admin), subscription.id, 30
        )

        assert result.subscription.is_active is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("days", [None, 0, -3])
    async def test_extend_requires_positive_days(self, db_session, make_user, days):
        admin = await make_user(is_admin=True)
        subscription = await add_subscription(db_session, await make_user())

        with pytest.raises(ValidationError) as exc_info:
            await admin_service.extend_user_subscription(
                db_session, identity_for(admin), subscription.id, days
            )
        assert exc_info.value.message == "Valid number of days is required"

    @pytest.mark.asyncio
    async def test_management_requires_admin(self, db_session, make_user, fake_gateway):
        member = await make_user()
        subscription = await add_subscription(db_session, member)

        with pytest.raises(AuthorizationError):
            await admin_service.cancel_user_subscription(
                db_session, identity_for(member), subscription.id, fake_gateway
            )
        with pytest.raises(AuthorizationError):
            await admin_service.extend_user_subscription(
                db_session, identity_for(member), subscription.id, 30
            )


class TestAdminEndpoints:

    @pytest.mark.asyncio
    async def test_non_admin_gets_configured_status(self, test_client, make_user, auth_headers):
        user = await make_user(is_admin=False)

        response = await test_client.get("/api/admin/subscriptions/stats", headers=auth_headers(user))

        assert response.status_code == 403
        assert response.json()["message"] == "Access denied"

    @pytest.mark.asyncio
    async def test_stats_endpoint(self, test_client, make_user, auth_headers, seed_subscriptions):
        admin = await make_user(is_admin=True)
        await seed_subscriptions()

        response = await test_client.get("/api/admin/subscriptions/stats", headers=auth_headers(admin))

        assert response.status_code == 200
        assert response.json()["stats"]["totalSubscriptions"] == 4

    @pytest.mark.asyncio
    async def test_manual_broadcast(self, test_client, make_user, auth_headers, db_session, fake_push):
        from app.models.affirmation import Affirmation

        admin = await make_user(is_admin=True, fcm_token="admin-token")
        db_session.add(Affirmation(content="You are enough."))
        await db_session.commit()

        response = await test_client.post(
            "/api/admin/notifications/broadcast", headers=auth_headers(admin)
        )

        assert response.status_code == 200
        body = response.json()
        assert body["started"] is True
        assert body["result"]["sent"] == 1
        fake_push.send.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_send_to_user_records_announcement(
        self, test_client, make_user, auth_headers, fake_push, db_session
    ):
        admin = await make_user(is_admin=True)
        target = await make_user(fcm_token="target-token")

        response = await test_client.post(
            f"/api/admin/notifications/send-to-user/{target.id}",
            json={"title": "Hello", "body": "Thanks for subscribing"},
            headers=auth_headers(admin),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["title"] == "Hello"
        assert body["type"] == "ANNOUNCEMENT"
        token, _, _, payload = fake_push.send.await_args.args
        assert token == "target-token"
        assert payload["type"] == "ANNOUNCEMENT"

        stored = (await db_session.execute(select(Notification))).scalar_one()
        assert stored.type == "ANNOUNCEMENT"
        assert stored.user_id == target.id

    @pytest.mark.asyncio
    async def test_analytics_endpoint(self, test_client, make_user, auth_headers, seed_subscriptions):
        admin = await make_user(is_admin=True)
        await seed_subscriptions()

        response = await test_client.get(
            "/api/admin/subscriptions/analytics?period=7", headers=auth_headers(admin)
        )

        assert response.status_code == 200
        analytics = response.json()["analytics"]
        assert analytics["periodDays"] == 7
        assert analytics["newSubscriptions"] == 4

    @pytest.mark.asyncio
    async def test_subscription_detail_endpoint(self, test_client, make_user, auth_headers, db_session):
        admin = await make_user(is_admin=True)
        owner = await make_user()
        subscription = await add_subscription(db_session, owner)

        found = await test_client.get(
            f"/api/admin/subscriptions/{subscription.id}", headers=auth_headers(admin)
        )
        missing = await test_client.get(
            f"/api/admin/subscriptions/{uuid4()}", headers=auth_headers(admin)
        )

        assert found.status_code == 200
        assert found.json()["subscription"]["user"]["email"] == owner.email
        assert missing.status_code == 404

    @pytest.mark.asyncio
    async def test_cancel_endpoint(self, test_client, make_user, auth_headers, db_session, fake_gateway):
        admin = await make_user(is_admin=True)
        subscription = await add_subscription(db_session, await make_user())
        url = f"/api/admin/subscriptions/{subscription.id}/cancel"

        first = await test_client.post(url, json={"reason": "refund"}, headers=auth_headers(admin))
        second = await test_client.post(url, headers=auth_headers(admin))

        assert first.status_code == 200
        assert first.json()["subscription"]["isActive"] is False
        assert second.status_code == 400
        assert second.json()["message"] == "Subscription is already inactive"
        fake_gateway.cancel_at_period_end.assert_awaited_once_with("sub_admin")

    @pytest.mark.asyncio
    async def test_extend_endpoint(self, test_client, make_user, auth_headers, db_session):
        admin = await make_user(is_admin=True)
        subscription = await add_subscription(db_session, await make_user())
        url = f"/api/admin/subscriptions/{subscription.id}/extend"

        rejected = await test_client.post(url, json={"days": 0}, headers=auth_headers(admin))
        extended = await test_client.post(url, json={"days": 7}, headers=auth_headers(admin))

        assert rejected.status_code == 400
        assert extended.status_code == 200
        assert extended.json()["message"] == "Subscription extended by 7 days"

    @pytest.mark.asyncio
    async def test_cancel_endpoint_requires_admin(self, test_client, make_user, auth_headers, db_session):
        member = await make_user()
        subscription = await add_subscription(db_session, member)

        response = await test_client.post(
            f"/api/admin/subscriptions/{subscription.id}/cancel", headers=auth_headers(member)
        )

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_send_to_all(self, test_client, make_user, auth_headers, fake_push, db_session):
        admin = await make_user(is_admin=True)
        first = await make_user(fcm_token="tok-1")
        second = await make_user(fcm_token="tok-2")
        await make_user(fcm_token=None)

        response = await test_client.post(
            "/api/admin/notifications/send-to-all",
            json={"title": "New feature", "body": "Journaling is here"},
            headers=auth_headers(admin),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Notification sent to 2 users."
        assert body["result"]["sent"] == 2
        rows = (await db_session.execute(select(Notification))).scalars().all()
        assert {row.user_id for row in rows} == {first.id, second.id}
        assert {row.type for row in rows} == {"ANNOUNCEMENT"}
