"""
Affirmly Backend — Notification Service
========================================

What:  Device-token registration, one-off pushes and the in-app inbox.
Why:   Push delivery and the inbox row must stay in step: a notification is
       recorded only after the provider accepted it.
How:   `deliver()` is the single push+record path, shared with the affirmation
       broadcaster. It stages the inbox row on the caller's session and leaves
       flushing/committing to the caller.
"""

import logging
import math
import uuid
from typing import Any, Dict, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.exceptions import (
    DeviceTokenNotRegisteredError,
    NotFoundError,
    PushDeliveryError,
    UserNotFoundError,
    ValidationError,
)
from app.models.notification import Notification, NotificationType
from app.models.user import User
from app.schemas.common import MessageResponse, Pagination
from app.schemas.notification import BroadcastResult, NotificationListResponse, NotificationOut
from app.security import AuthenticatedUser
from app.services.push_service import PushService

logger = logging.getLogger(__name__)


class NotificationService:

    def __init__(self, push_service: PushService):
        self.push_service = push_service

    async def _get_user(self, db: AsyncSession, user_id: uuid.UUID) -> User:
        user = await db.get(User, user_id)
        if user is None:
            raise UserNotFoundError(str(user_id))
        return user

    # ── Device Tokens ─────────────────────────────────────────────────────

    async def register_token(
        self,
        db: AsyncSession,
        identity: AuthenticatedUser,
        token: str,
    ) -> MessageResponse:
        """
        Validate `token` with a dry-run push and store it on the caller.

        Raises:
            ValidationError: the provider rejected the token
        """
        if not await self.push_service.validate_token(token):
            raise ValidationError(message="Invalid FCM token provided", field="token")

        user = await self._get_user(db, identity.user_id)
        user.fcm_token = token
        await db.flush()
        logger.info("FCM token registered for user %s", user.id)
        return MessageResponse(message="FCM token saved successfully")

    async def remove_token(self, db: AsyncSession, identity: AuthenticatedUser) -> MessageResponse:
        user = await self._get_user(db, identity.user_id)
        user.fcm_token = None
        await db.flush()
        logger.info("FCM token removed for user %s", user.id)
        return MessageResponse(message="FCM token removed successfully")

    # ── Delivery ──────────────────────────────────────────────────────────

    async def deliver(
        self,
        db: AsyncSession,
        user: User,
        title: str,
        body: str,
        notification_type: NotificationType = NotificationType.GENERAL,
        data: Optional[Dict[str, Any]] = None,
    ) -> Notification:
        """
        Push to the user's device, then stage the inbox row.

        Raises:
            DeviceTokenNotRegisteredError: token cleared on `user` before re-raising
            PushDeliveryError: any other provider failure; nothing is staged
        """
        if not user.fcm_token:
            raise ValidationError(message="User has no FCM token registered", field="fcmToken")

        payload = {"type": notification_type.value, **(data or {})}
        try:
            await self.push_service.send(user.fcm_token, title, body, payload)
        except DeviceTokenNotRegisteredError:
            logger.warning("FCM token for user %s is no longer registered; clearing it", user.id)
            user.fcm_token = None
            raise

        notification = Notification(
            user_id=user.id,
            title=title,
            body=body,
            type=notification_type.value,
            data=data or {},
            is_read=False,
        )
        db.add(notification)
        return notification

    async def send_to_user(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        title: str,
        body: str,
        notification_type: NotificationType = NotificationType.GENERAL,
        data: Optional[Dict[str, Any]] = None,
    ) -> NotificationOut:
        user = await self._get_user(db, user_id)
        try:
            notification = await self.deliver(db, user, title, body, notification_type, data)
        except DeviceTokenNotRegisteredError:
            # The cleared token must survive the error response's rollback
            await db.commit()
            raise
        await db.flush()
        return NotificationOut.model_validate(notification)

    async def send_to_all(
        self,
        db: AsyncSession,
        title: str,
        body: str,
        notification_type: NotificationType = NotificationType.ANNOUNCEMENT,
        batch_size: Optional[int] = None,
    ) -> BroadcastResult:
        """
        Push the same message to every user with a registered device.

        Users are walked in id order, one batch per commit. A failure for one
        user is counted and the rest still receive the message.
        """
        batch_size = batch_size or settings.broadcast_batch_size
        result = BroadcastResult()

        last_id = None
        while True:
            query = (
                select(User)
                .where(User.fcm_token.is_not(None))
                .order_by(User.id)
                .limit(batch_size)
            )
            if last_id is not None:
                query = query.where(User.id > last_id)
            users = list((await db.execute(query)).scalars().all())
            if not users:
                break

            for user in users:
                result.users_considered += 1
                try:
                    await self.deliver(db, user, title, body, notification_type)
                    result.sent += 1
                except DeviceTokenNotRegisteredError:
                    result.tokens_cleared += 1
                except PushDeliveryError as e:
                    result.failed += 1
                    logger.error("Announcement push to user %s failed: %s", user.id, e.message)

            await db.commit()
            last_id = users[-1].id
            if len(users) < batch_size:
                break

        logger.info(
            "Announcement '%s' sent=%d cleared=%d failed=%d",
            title,
            result.sent,
            result.tokens_cleared,
            result.failed,
        )
        return result

    # ── Inbox ─────────────────────────────────────────────────────────────

    async def list_notifications(
        self,
        db: AsyncSession,
        identity: AuthenticatedUser,
        page: int = 1,
        limit: int = 20,
    ) -> NotificationListResponse:
        owner = Notification.user_id == identity.user_id

        total = (
            await db.execute(select(func.count()).select_from(Notification).where(owner))
        ).scalar_one()
        result = await db.execute(
            select(Notification)
            .where(owner)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        notifications = [NotificationOut.model_validate(n) for n in result.scalars().all()]

        return NotificationListResponse(
            notifications=notifications,
            pagination=Pagination(
                total=total,
                page=page,
                pages=math.ceil(total / limit) if total else 0,
                limit=limit,
            ),
        )

    async def mark_as_read(
        self,
        db: AsyncSession,
        identity: AuthenticatedUser,
        notification_id: uuid.UUID,
    ) -> MessageResponse:
        # Another user's notification is reported exactly like a missing one
        result = await db.execute(
            select(Notification).where(
                Notification.id == notification_id,
                Notification.user_id == identity.user_id,
            )
        )
        notification = result.scalar_one_or_none()
        if notification is None:
            raise NotFoundError(resource="notification", message="Notification not found")

        notification.is_read = True
        await db.flush()
        return MessageResponse(message="Notification marked as read")

    async def mark_all_as_read(self, db: AsyncSession, identity: AuthenticatedUser) -> MessageResponse:
        result = await db.execute(
            update(Notification)
            .where(Notification.user_id == identity.user_id, Notification.is_read.is_(False))
            .values(is_read=True)
        )
        logger.info("Marked %d notifications read for user %s", result.rowcount, identity.user_id)
        return MessageResponse(message="All notifications marked as read")

    async def delete_notification(
        self,
        db: AsyncSession,
        identity: AuthenticatedUser,
        notification_id: uuid.UUID,
    ) -> None:
        result = await db.execute(
            delete(Notification).where(
                Notification.id == notification_id,
                Notification.user_id == identity.user_id,
            )
        )
        if result.rowcount == 0:
            raise NotFoundError(resource="notification", message="Notification not found")
        logger.info("Notification %s deleted by user %s", notification_id, identity.user_id)
