"""
Affirmly Backend — Admin Subscription Service
==============================================

What:  Subscription listing, detail, manual cancel/extend and the aggregate
       reports behind the admin dashboard.
How:   "Active" uses the same rule as the user-facing status endpoint
       (stored flag and end_date in the future), evaluated in SQL so the
       counts stay correct over large tables.
"""

import logging
import math
import uuid
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import and_, case, func, not_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import NotFoundError, ValidationError
from app.models.subscription import PlanType, Subscription
from app.models.user import User
from app.schemas.common import Pagination
from app.schemas.subscription import (
    AdminSubscriptionItem,
    AdminSubscriptionListResponse,
    AdminSubscriptionResponse,
    DailyPlanCount,
    PlanCount,
    SubscriptionAnalytics,
    SubscriptionOwner,
    SubscriptionStats,
)
from app.security import AuthenticatedUser
from app.services.payment_gateway import PaymentGateway
from app.services.subscription_service import as_utc, to_subscription_out, utcnow

logger = logging.getLogger(__name__)

STATUS_FILTERS = ("active", "expired", "cancelled")


def _active_clause(now: datetime):
    return and_(Subscription.is_active.is_(True), Subscription.end_date > now)


def _to_item(subscription: Subscription, user: User, now: Optional[datetime] = None) -> AdminSubscriptionItem:
    return AdminSubscriptionItem(
        **to_subscription_out(subscription, now).model_dump(),
        user=SubscriptionOwner.model_validate(user),
    )


class AdminService:

    async def _get_with_owner(self, db: AsyncSession, subscription_id: uuid.UUID):
        row = (
            await db.execute(
                select(Subscription, User)
                .join(User, User.id == Subscription.user_id)
                .where(Subscription.id == subscription_id)
            )
        ).one_or_none()
        if row is None:
            raise NotFoundError(
                resource="subscription",
                resource_id=str(subscription_id),
                message="Subscription not found",
            )
        return row

    async def list_subscriptions(
        self,
        db: AsyncSession,
        identity: AuthenticatedUser,
        page: int = 1,
        limit: int = 20,
        plan: Optional[str] = None,
        status: Optional[str] = None,
        search: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> AdminSubscriptionListResponse:
        identity.require_admin()
        now = now or utcnow()

        filters = []
        if plan:
            if plan not in PlanType.values():
                raise ValidationError(message=f"Unknown plan filter '{plan}'", field="plan")
            filters.append(Subscription.plan == plan)
        if status:
            if status == "active":
                filters.append(_active_clause(now))
            elif status == "expired":
                filters.append(not_(_active_clause(now)))
            elif status == "cancelled":
                filters.append(Subscription.is_active.is_(False))
            else:
                raise ValidationError(
                    message=f"Status filter must be one of: {', '.join(STATUS_FILTERS)}",
                    field="status",
                )
        if search:
            pattern = f"%{search.strip()}%"
            filters.append(
                or_(
                    User.email.ilike(pattern),
                    User.first_name.ilike(pattern),
                    User.last_name.ilike(pattern),
                )
            )

        total = (
            await db.execute(
                select(func.count())
                .select_from(Subscription)
                .join(User, User.id == Subscription.user_id)
                .where(*filters)
            )
        ).scalar_one()

        result = await db.execute(
            select(Subscription, User)
            .join(User, User.id == Subscription.user_id)
            .where(*filters)
            .order_by(Subscription.created_at.desc(), Subscription.id)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        items = [_to_item(subscription, user, now) for subscription, user in result.all()]

        return AdminSubscriptionListResponse(
            subscriptions=items,
            pagination=Pagination(
                total=total,
                page=page,
                pages=math.ceil(total / limit) if total else 0,
                limit=limit,
            ),
        )

    async def get_stats(
        self,
        db: AsyncSession,
        identity: AuthenticatedUser,
        now: Optional[datetime] = None,
    ) -> SubscriptionStats:
        identity.require_admin()
        now = now or utcnow()
        active = _active_clause(now)

        row = (
            await db.execute(
                select(
                    func.count(Subscription.id),
                    func.count(case((active, 1))),
                    func.count(case((and_(active, Subscription.plan == PlanType.MONTHLY.value), 1))),
                    func.count(case((and_(active, Subscription.plan == PlanType.YEARLY.value), 1))),
                    func.count(
                        case((or_(Subscription.is_active.is_(False), Subscription.end_date <= now), 1))
                    ),
                )
            )
        ).one()

        return SubscriptionStats(
            total_subscriptions=row[0],
            active_subscriptions=row[1],
            monthly_subscriptions=row[2],
            yearly_subscriptions=row[3],
            expired_subscriptions=row[4],
        )

    async def get_subscription(
        self,
        db: AsyncSession,
        identity: AuthenticatedUser,
        subscription_id: uuid.UUID,
    ) -> AdminSubscriptionResponse:
        identity.require_admin()
        subscription, user = await self._get_with_owner(db, subscription_id)
        return AdminSubscriptionResponse(subscription=_to_item(subscription, user))

    async def cancel_user_subscription(
        self,
        db: AsyncSession,
        identity: AuthenticatedUser,
        subscription_id: uuid.UUID,
        gateway: PaymentGateway,
        reason: Optional[str] = None,
    ) -> AdminSubscriptionResponse:
        """
        Admin-triggered cancellation.

        Same Stripe handling as a self-service cancel: cancel at period end,
        best effort, and deactivate locally regardless.

        Raises:
            NotFoundError: unknown subscription id
            ValidationError: the subscription is already inactive
        """
        identity.require_admin()
        subscription, user = await self._get_with_owner(db, subscription_id)
        if not subscription.is_active:
            raise ValidationError(message="Subscription is already inactive")

        if subscription.stripe_subscription_id:
            try:
                await gateway.cancel_at_period_end(subscription.stripe_subscription_id)
            except Exception as e:
                logger.error(
                    "Stripe cancellation failed for subscription %s; "
                    "deactivating locally anyway: %s",
                    subscription.stripe_subscription_id,
                    str(e),
                    exc_info=True,
                )

        subscription.is_active = False
        await db.flush()
        await db.refresh(subscription)
        logger.info(
            "Admin %s cancelled subscription for %s. Reason: %s",
            identity.user_id,
            user.email,
            reason or "No reason provided",
        )
        return AdminSubscriptionResponse(
            message="Subscription cancelled successfully",
            subscription=_to_item(subscription, user),
        )

    async def extend_user_subscription(
        self,
        db: AsyncSession,
        identity: AuthenticatedUser,
        subscription_id: uuid.UUID,
        days: Optional[int],
        reason: Optional[str] = None,
    ) -> AdminSubscriptionResponse:
        """Push `end_date` back by `days` and reactivate the subscription."""
        identity.require_admin()
        if not days or days <= 0:
            raise ValidationError(message="Valid number of days is required", field="days")

        subscription, user = await self._get_with_owner(db, subscription_id)
        subscription.end_date = as_utc(subscription.end_date) + timedelta(days=days)
        subscription.is_active = True
        await db.flush()
        await db.refresh(subscription)
        logger.info(
            "Admin %s extended subscription for %s by %d days. Reason: %s",
            identity.user_id,
            user.email,
            days,
            reason or "No reason provided",
        )
        return AdminSubscriptionResponse(
            message=f"Subscription extended by {days} days",
            subscription=_to_item(subscription, user),
        )

    async def get_analytics(
        self,
        db: AsyncSession,
        identity: AuthenticatedUser,
        period_days: int = 30,
        now: Optional[datetime] = None,
    ) -> SubscriptionAnalytics:
        """
        New and cancelled subscriptions over the last `period_days`.

        "Cancelled" means deactivated rows touched inside the window, so a
        cancel, an admin cancel and a lapse reconciled by the webhook all count.
        """
        identity.require_admin()
        now = now or utcnow()
        since = now - timedelta(days=period_days)
        created_in_period = Subscription.created_at >= since

        new_count = (
            await db.execute(select(func.count(Subscription.id)).where(created_in_period))
        ).scalar_one()
        cancelled_count = (
            await db.execute(
                select(func.count(Subscription.id)).where(
                    Subscription.updated_at >= since,
                    Subscription.is_active.is_(False),
                )
            )
        ).scalar_one()

        by_plan = await db.execute(
            select(Subscription.plan, func.count(Subscription.id))
            .where(created_in_period)
            .group_by(Subscription.plan)
            .order_by(Subscription.plan)
        )

        day = func.date(Subscription.created_at)
        daily = await db.execute(
            select(day, Subscription.plan, func.count(Subscription.id))
            .where(created_in_period)
            .group_by(day, Subscription.plan)
            .order_by(day.desc(), Subscription.plan)
        )

        return SubscriptionAnalytics(
            period_days=period_days,
            new_subscriptions=new_count,
            cancelled_subscriptions=cancelled_count,
            subscriptions_by_plan=[PlanCount(plan=plan, count=count) for plan, count in by_plan.all()],
            daily_stats=[
                DailyPlanCount(day=d, plan=plan, count=count) for d, plan, count in daily.all()
            ],
        )


admin_service = AdminService()
