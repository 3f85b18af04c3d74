"""
Affirmly Backend — Notification SQLAlchemy Model
=================================================

What:  Append-only record of a push delivery.
Why:   Gives users an in-app inbox that mirrors what was pushed to their device.
How:   Rows are inserted after Firebase accepts a message. Only `is_read`
       changes afterwards.
"""

import enum
import uuid
from datetime import datetime, timezone
from typing import Any, Dict

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class NotificationType(str, enum.Enum):
    AFFIRMATION = "AFFIRMATION"
    GENERAL = "GENERAL"
    ANNOUNCEMENT = "ANNOUNCEMENT"


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id"),
        nullable=False,
    )

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)

    type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default=NotificationType.GENERAL.value,
        server_default=text("'GENERAL'"),
    )

    # Free-form payload forwarded to the device alongside the message
    data: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    is_read: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    # Inbox query: WHERE user_id = ? ORDER BY created_at DESC
    __table_args__ = (
        Index("idx_notifications_user_created", "user_id", text("created_at DESC")),
    )

    def __repr__(self) -> str:
        return f"<Notification(id={self.id}, user_id={self.user_id}, type='{self.type}')>"
