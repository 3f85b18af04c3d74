"""
Affirmly Backend — Notification Route Handlers
===============================================

What:  /api/notifications/* — device token registration and the in-app inbox.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db_session
from app.dependencies import get_current_identity, get_notification_service
from app.schemas.common import ErrorResponse, MessageResponse
from app.schemas.notification import NotificationListResponse, RegisterTokenRequest
from app.security import AuthenticatedUser
from app.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/notifications", tags=["Notifications"])


@router.post(
    "/token",
    response_model=MessageResponse,
    responses={400: {"description": "Token rejected by Firebase", "model": ErrorResponse}},
    summary="Register this device for push notifications",
)
async def register_token(
    body: RegisterTokenRequest,
    identity: AuthenticatedUser = Depends(get_current_identity),
    service: NotificationService = Depends(get_notification_service),
    db: AsyncSession = Depends(get_db_session),
) -> MessageResponse:
    return await service.register_token(db, identity, body.token)


@router.post("/token/remove", response_model=MessageResponse, summary="Stop push notifications")
async def remove_token(
    identity: AuthenticatedUser = Depends(get_current_identity),
    service: NotificationService = Depends(get_notification_service),
    db: AsyncSession = Depends(get_db_session),
) -> MessageResponse:
    return await service.remove_token(db, identity)


@router.get("", response_model=NotificationListResponse, summary="Inbox, newest first")
async def list_notifications(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    identity: AuthenticatedUser = Depends(get_current_identity),
    service: NotificationService = Depends(get_notification_service),
    db: AsyncSession = Depends(get_db_session),
) -> NotificationListResponse:
    return await service.list_notifications(db, identity, page=page, limit=limit)


@router.put("/read-all", response_model=MessageResponse, summary="Mark every notification read")
async def mark_all_read(
    identity: AuthenticatedUser = Depends(get_current_identity),
    service: NotificationService = Depends(get_notification_service),
    db: AsyncSession = Depends(get_db_session),
) -> MessageResponse:
    return await service.mark_all_as_read(db, identity)


@router.put(
    "/{notification_id}/read",
    response_model=MessageResponse,
    responses={404: {"description": "Notification not found", "model": ErrorResponse}},
    summary="Mark one notification read",
)
async def mark_read(
    notification_id: UUID,
    identity: AuthenticatedUser = Depends(get_current_identity),
    service: NotificationService = Depends(get_notification_service),
    db: AsyncSession = Depends(get_db_session),
) -> MessageResponse:
    return await service.mark_as_read(db, identity, notification_id)


@router.delete(
    "/{notification_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"description": "Notification not found", "model": ErrorResponse}},
    summary="Delete one notification",
)
async def delete_notification(
    notification_id: UUID,
    identity: AuthenticatedUser = Depends(get_current_identity),
    service: NotificationService = Depends(get_notification_service),
    db: AsyncSession = Depends(get_db_session),
) -> Response:
    await service.delete_notification(db, identity, notification_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
