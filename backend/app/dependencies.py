"""
Affirmly Backend — FastAPI Dependencies
========================================

What:  Dependency providers for the authenticated identity and the
       external collaborators (payment gateway, push service, broadcaster).
Why:   Route handlers declare what they need; tests swap any of these via
       `app.dependency_overrides` without patching module globals.
"""

import logging

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db_session
from app.exceptions import AuthenticationError
from app.models.user import User
from app.security import AuthenticatedUser, decode_access_token
from app.services.affirmation_scheduler import AffirmationBroadcaster
from app.services.notification_service import NotificationService
from app.services.payment_gateway import PaymentGateway
from app.services.push_service import PushService
from app.services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)

bearer = HTTPBearer(auto_error=False)


async def get_current_identity(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer),
    db: AsyncSession = Depends(get_db_session),
) -> AuthenticatedUser:
    if not creds:
        raise AuthenticationError(message="No token provided")

    user_id = decode_access_token(creds.credentials)
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise AuthenticationError(message="User not found")

    return AuthenticatedUser(user_id=user.id, email=user.email, is_admin=user.is_admin)


async def get_admin_identity(
    identity: AuthenticatedUser = Depends(get_current_identity),
) -> AuthenticatedUser:
    return identity.require_admin()


# Collaborators live on app.state; create_app() builds them once per app
def get_payment_gateway(request: Request) -> PaymentGateway:
    return request.app.state.payment_gateway


def get_push_service(request: Request) -> PushService:
    return request.app.state.push_service


def get_broadcaster(request: Request) -> AffirmationBroadcaster:
    return request.app.state.broadcaster


def get_subscription_service(
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> SubscriptionService:
    return SubscriptionService(gateway)


def get_notification_service(
    push_service: PushService = Depends(get_push_service),
) -> NotificationService:
    return NotificationService(push_service)
