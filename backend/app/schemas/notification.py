"""
Affirmly Backend — Notification Request/Response Schemas
=========================================================
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List

from pydantic import Field

from app.schemas.common import ApiModel, Pagination


class RegisterTokenRequest(ApiModel):
    token: str = Field(min_length=1, description="Firebase Cloud Messaging device token")


class SendNotificationRequest(ApiModel):
    title: str = Field(min_length=1, max_length=255)
    body: str = Field(min_length=1)


class NotificationOut(ApiModel):
    id: uuid.UUID
    title: str
    body: str
    type: str
    data: Dict[str, Any] = Field(default_factory=dict)
    is_read: bool
    created_at: datetime


class NotificationListResponse(ApiModel):
    success: bool = True
    notifications: List[NotificationOut]
    pagination: Pagination


class BroadcastResult(ApiModel):
    """Counters for one pass of the affirmation broadcast."""
    users_considered: int = 0
    sent: int = 0
    skipped_no_token: int = 0
    tokens_cleared: int = 0
    failed: int = 0


class BroadcastResponse(ApiModel):
    success: bool = True
    # False when another broadcast pass was already running
    started: bool
    result: BroadcastResult | None = None


class SendToAllResponse(ApiModel):
    success: bool = True
    message: str
    result: BroadcastResult
