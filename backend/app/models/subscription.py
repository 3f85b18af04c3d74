"""
Affirmly Backend — Subscription SQLAlchemy Model
=================================================

What:  ORM model for the `subscriptions` table (one row per paying user).
Why:   Local mirror of the Stripe subscription, reconciled by the webhook.
How:   `user_id` is UNIQUE; the webhook writes through
       INSERT ... ON CONFLICT (user_id) DO UPDATE, so a user can never have
       two rows and replaying the same event rewrites the same row.

Activity rule:
    `is_active` alone is not trusted. A row is effectively active only when
    `is_active` is true AND `end_date` is in the future. Cancellation flips
    `is_active` to false immediately even though `end_date` (the end of the
    paid period at Stripe) may still be ahead.
"""

import enum
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, String, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base

if TYPE_CHECKING:
    from app.models.user import User


class PlanType(str, enum.Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"

    @classmethod
    def values(cls):
        return [member.value for member in cls]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Subscription(Base):
    __tablename__ = "subscriptions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id"),
        nullable=False,
        unique=True,
        comment="Owner; unique so the webhook upsert has a conflict target",
    )

    plan: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="monthly | yearly",
    )

    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
        comment="Stored flag; read paths combine it with end_date",
    )

    stripe_subscription_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    stripe_customer_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    user: Mapped["User"] = relationship(back_populates="subscription", lazy="raise")

    def __repr__(self) -> str:
        return (
            f"<Subscription(user_id={self.user_id}, plan='{self.plan}', "
            f"is_active={self.is_active}, end_date='{self.end_date}')>"
        )
