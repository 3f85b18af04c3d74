"""
Affirmly Backend — User SQLAlchemy Model
=========================================

What:  ORM model for the `users` table.
Why:   Identity and profile data; holds the push-delivery device token.
Who:   Read by the auth dependency, the subscription service (checkout email)
       and the broadcast scheduler (device token).

Table Design Rationale:
    - UUID primary key: non-sequential, safe to expose in metadata sent to Stripe
    - fcm_token: at most one device per user; NULL means "do not push"
    - Users are created at registration and only deleted by an explicit admin
      action, so child rows do not cascade automatically
"""

import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Boolean, DateTime, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base

if TYPE_CHECKING:
    from app.models.subscription import Subscription


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        index=True,
    )

    username: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, unique=True)
    first_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    is_admin: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )

    # ── Push Delivery ─────────────────────────────────────────────────────
    # Cleared when Firebase reports the token as unregistered
    fcm_token: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        default=None,
        comment="Firebase Cloud Messaging device token",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    subscription: Mapped[Optional["Subscription"]] = relationship(
        back_populates="user",
        uselist=False,
        lazy="raise",
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email='{self.email}')>"
