"""
Affirmly Backend — Subscription Lifecycle Service
==================================================

What:  Keeps the local `subscriptions` row consistent with Stripe's view of
       a user's paid plan.
Why:   Stripe is the source of truth; the local row lags behind it and is
       reconciled from three entry points: checkout, webhook, and the
       user-initiated cancel/status/verify calls.
Who:   Called by routes/subscription.py with an injected session, the
       authenticated identity and a PaymentGateway.

Lifecycle (derived, never stored as an enum):

    NONE ──create_checkout_session──▶ PENDING ──webhook: checkout completed──▶ ACTIVE
                                                                              │
                       LAPSED ◀──────────── end_date passes ──────────────────┤
                                                                              │
                       CANCEL_SCHEDULED ◀── cancel_subscription ──────────────┘
                       (is_active=false immediately, end_date may be ahead)

    A row is effectively active only when `is_active and end_date > now`.

Webhook handling:
    - `checkout.session.completed` (subscription mode): retrieve the full
      subscription from Stripe, then upsert keyed on user_id. Replaying the
      same event rewrites the same row with the same values.
    - `customer.subscription.updated` / `customer.subscription.deleted`:
      acknowledged without local changes. Cancellation is reconciled only
      through the explicit user-initiated path.
"""

import enum
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.exceptions import (
    DatabaseError,
    InvalidPlanTypeError,
    NoSubscriptionFoundError,
    PaymentVerificationError,
    UpstreamServiceError,
    UserNotFoundError,
    ValidationError,
)
from app.models.subscription import PlanType, Subscription
from app.models.user import User
from app.schemas.common import MessageResponse
from app.schemas.subscription import (
    CheckoutSessionResponse,
    PlanOut,
    SubscriptionOut,
    SubscriptionStatus,
    VerifyPaymentResponse,
    WebhookAck,
)
from app.security import AuthenticatedUser
from app.services.payment_gateway import CheckoutSession, PaymentGateway

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"

# Used when Stripe omits the billing period on a freshly created subscription
DEFAULT_PERIOD = timedelta(days=30)

PLAN_CATALOG: List[Dict[str, Any]] = [
    {
        "id": PlanType.MONTHLY.value,
        "name": "Premium Monthly",
        "price": 9.99,
        "interval": "month",
        "features": [
            "Unlimited affirmations",
            "Premium categories",
            "Advanced analytics",
            "Priority support",
        ],
    },
    {
        "id": PlanType.YEARLY.value,
        "name": "Premium Yearly",
        "price": 99.99,
        "interval": "year",
        "features": [
            "All monthly features",
            "2 months free",
            "Exclusive content",
            "Early access to new features",
        ],
        "savings": "Save 17%",
    },
]


class SubscriptionState(str, enum.Enum):
    NONE = "none"
    PENDING = "pending"
    ACTIVE = "active"
    LAPSED = "lapsed"
    CANCEL_SCHEDULED = "cancel_scheduled"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; every stored value is UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_effectively_active(subscription: Subscription, now: Optional[datetime] = None) -> bool:
    now = now or utcnow()
    return bool(subscription.is_active) and as_utc(subscription.end_date) > now


def derive_subscription_state(
    subscription: Optional[Subscription],
    now: Optional[datetime] = None,
    checkout_started: bool = False,
) -> SubscriptionState:
    """
    Reconstruct the lifecycle state of a user's subscription.

    `checkout_started` marks a caller that knows a checkout session exists
    (e.g. payment verification); without a reconciled active row that
    user is PENDING rather than NONE/LAPSED.
    """
    now = now or utcnow()
    if subscription is None:
        return SubscriptionState.PENDING if checkout_started else SubscriptionState.NONE
    if as_utc(subscription.end_date) <= now:
        return SubscriptionState.PENDING if checkout_started else SubscriptionState.LAPSED
    if subscription.is_active:
        return SubscriptionState.ACTIVE
    return SubscriptionState.CANCEL_SCHEDULED


def to_subscription_out(subscription: Subscription, now: Optional[datetime] = None) -> SubscriptionOut:
    return SubscriptionOut(
        id=subscription.id,
        user_id=subscription.user_id,
        plan=subscription.plan,
        start_date=as_utc(subscription.start_date),
        end_date=as_utc(subscription.end_date),
        is_active=is_effectively_active(subscription, now),
        stripe_subscription_id=subscription.stripe_subscription_id,
        stripe_customer_id=subscription.stripe_customer_id,
        created_at=as_utc(subscription.created_at) if subscription.created_at else None,
        updated_at=as_utc(subscription.updated_at) if subscription.updated_at else None,
    )


def _parse_user_id(value: Optional[str]) -> Optional[uuid.UUID]:
    if not value:
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


class SubscriptionService:
    """
    Business logic for the subscription lifecycle.

    Stateless apart from the gateway it is constructed with. The database
    session and the caller's identity are passed to every method.
    """

    def __init__(self, gateway: PaymentGateway):
        self.gateway = gateway

    # ── Checkout ──────────────────────────────────────────────────────────

    async def create_checkout_session(
        self,
        db: AsyncSession,
        identity: AuthenticatedUser,
        plan_type: Optional[str],
    ) -> CheckoutSessionResponse:
        """
        Start a hosted Stripe checkout for `plan_type`.

        Nothing is written locally: the user stays NONE/PENDING until the
        checkout-completed webhook is reconciled.

        Raises:
            InvalidPlanTypeError: plan is not monthly/yearly (checked before any I/O)
            UserNotFoundError: the identity no longer maps to a user
            UpstreamServiceError: Stripe rejected or failed the request
        """
        if plan_type not in PlanType.values():
            raise InvalidPlanTypeError(plan_type, PlanType.values())

        user = await db.get(User, identity.user_id)
        if user is None:
            raise UserNotFoundError(str(identity.user_id))

        price_id = settings.plan_price_ids.get(plan_type)
        if not price_id:
            raise UpstreamServiceError(
                message=f"The {plan_type} plan is not configured",
                service="stripe",
            )

        session = await self.gateway.create_checkout_session(
            price_id=price_id,
            customer_email=user.email,
            metadata={"userId": str(user.id), "planType": plan_type},
            success_url=(
                f"{settings.frontend_url}/subscription/success"
                "?session_id={CHECKOUT_SESSION_ID}"
            ),
            cancel_url=f"{settings.frontend_url}/subscription/cancel",
        )
        logger.info(
            "Checkout session %s created for user %s (%s)", session.id, user.id, plan_type
        )
        return CheckoutSessionResponse(session_id=session.id, url=session.url)

    # ── Webhook Reconciliation ────────────────────────────────────────────

    async def handle_webhook_event(
        self,
        db: AsyncSession,
        payload: bytes,
        signature_header: Optional[str],
    ) -> WebhookAck:
        """
        Verify and apply one Stripe webhook delivery.

        Raises:
            SignatureVerificationError: bad/missing signature (answered with 400)
            UpstreamServiceError: subscription lookup failed; the non-2xx
                answer makes Stripe redeliver later
        """
        event = self.gateway.construct_event(payload, signature_header)
        logger.info("Webhook event received: %s (%s)", event.type, event.id)

        if event.type == CHECKOUT_COMPLETED:
            session = CheckoutSession.from_mapping(event.data_object)
            if session.mode == "subscription":
                await self.reconcile_checkout_session(db, session)
            else:
                logger.info("Checkout session %s is not in subscription mode; ignored", session.id)
        elif event.type in (SUBSCRIPTION_UPDATED, SUBSCRIPTION_DELETED):
            logger.info(
                "Webhook %s for subscription %s acknowledged without local changes",
                event.type,
                event.data_object.get("id"),
            )
        else:
            logger.info("Unhandled webhook event type %s", event.type)

        return WebhookAck(received=True)

    async def reconcile_checkout_session(
        self,
        db: AsyncSession,
        session: CheckoutSession,
    ) -> Optional[Subscription]:
        """
        Upsert the local subscription for a completed checkout.

        Sessions whose metadata cannot be correlated to a local user are
        logged and skipped: redelivering them would never succeed.
        """
        user_id = _parse_user_id(session.metadata.get("userId"))
        plan_type = session.metadata.get("planType")
        if user_id is None or plan_type not in PlanType.values() or not session.subscription_id:
            logger.error(
                "Checkout session %s cannot be reconciled: metadata=%s subscription=%s",
                session.id,
                session.metadata,
                session.subscription_id,
            )
            return None

        if await db.get(User, user_id) is None:
            logger.error("Checkout session %s references unknown user %s", session.id, user_id)
            return None

        # checkout.session.completed does not carry the billing period
        remote = await self.gateway.retrieve_subscription(session.subscription_id)

        now = utcnow()
        values = {
            "plan": plan_type,
            "start_date": remote.current_period_start or now,
            "end_date": remote.current_period_end or now + DEFAULT_PERIOD,
            "is_active": remote.status == "active",
            "stripe_subscription_id": remote.id,
            "stripe_customer_id": remote.customer_id or session.customer_id,
        }
        subscription = await self._upsert_subscription(db, user_id, values)
        logger.info(
            "Subscription for user %s reconciled: plan=%s status=%s end=%s",
            user_id,
            plan_type,
            remote.status,
            values["end_date"].isoformat(),
        )
        return subscription

    async def _upsert_subscription(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        values: Dict[str, Any],
    ) -> Subscription:
        """
        INSERT ... ON CONFLICT (user_id) DO UPDATE in a single statement.

        Two near-simultaneous deliveries for the same user resolve as
        last-write-wins at the database, never as a duplicate row.
        """
        dialect = db.get_bind().dialect.name
        if dialect == "postgresql":
            insert = postgresql.insert
        elif dialect == "sqlite":
            insert = sqlite.insert
        else:
            raise DatabaseError(
                message="Subscription storage is unavailable",
                context={"dialect": dialect},
            )

        now = utcnow()
        stmt = insert(Subscription).values(
            id=uuid.uuid4(),
            user_id=user_id,
            created_at=now,
            updated_at=now,
            **values,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id"],
            set_={**values, "updated_at": now},
        )
        await db.execute(stmt)

        result = await db.execute(
            select(Subscription)
            .where(Subscription.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    # ── Status / Cancel / Verify ──────────────────────────────────────────

    async def _get_row(self, db: AsyncSession, user_id: uuid.UUID) -> Optional[Subscription]:
        result = await db.execute(select(Subscription).where(Subscription.user_id == user_id))
        return result.scalar_one_or_none()

    async def get_user_subscription(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
    ) -> SubscriptionStatus:
        subscription = await self._get_row(db, user_id)
        if subscription is None:
            return SubscriptionStatus(has_subscription=False, subscription=None)
        return SubscriptionStatus(
            has_subscription=True,
            subscription=to_subscription_out(subscription),
        )

    async def cancel_subscription(
        self,
        db: AsyncSession,
        identity: AuthenticatedUser,
    ) -> MessageResponse:
        """
        Cancel the caller's subscription.

        Stripe is asked to cancel at period end, best effort. The local row
        is deactivated even when that call fails, so a user who asked to
        cancel is never left marked as paying.

        Raises:
            NoSubscriptionFoundError: the caller has no subscription row
        """
        subscription = await self._get_row(db, identity.user_id)
        if subscription is None:
            raise NoSubscriptionFoundError(str(identity.user_id))

        if subscription.stripe_subscription_id:
            try:
                await self.gateway.cancel_at_period_end(subscription.stripe_subscription_id)
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
        logger.info("Subscription cancelled for user %s", identity.user_id)
        return MessageResponse(message="Subscription cancelled successfully")

    async def verify_payment_success(
        self,
        db: AsyncSession,
        identity: AuthenticatedUser,
        session_id: Optional[str],
    ) -> VerifyPaymentResponse:
        """
        Client-side fallback after the checkout redirect.

        Succeeds only for a paid session whose metadata names the caller.
        The returned subscription may still be null when the webhook has
        not been processed yet; clients poll again in that case.

        Raises:
            ValidationError: session_id missing or unknown
            PaymentVerificationError: unpaid, or owned by another account
        """
        if not session_id:
            raise ValidationError(message="Session ID is required", field="session_id")

        session = await self.gateway.retrieve_session(session_id)
        owner = _parse_user_id(session.metadata.get("userId"))
        paid = session.payment_status == "paid"

        if not paid or owner != identity.user_id:
            logger.warning(
                "Payment verification failed for session %s: paid=%s owner_match=%s",
                session_id,
                paid,
                owner == identity.user_id,
            )
            raise PaymentVerificationError(
                context={"session_id": session_id, "payment_status": session.payment_status}
            )

        subscription = await self._get_row(db, identity.user_id)
        state = derive_subscription_state(subscription, checkout_started=True)
        if state is not SubscriptionState.ACTIVE:
            logger.info(
                "Session %s is paid but the subscription is not active (state=%s)",
                session_id,
                state.value,
            )
        return VerifyPaymentResponse(
            subscription=to_subscription_out(subscription) if subscription else None
        )

    @staticmethod
    def get_available_plans() -> List[PlanOut]:
        return [PlanOut(**plan) for plan in PLAN_CATALOG]
