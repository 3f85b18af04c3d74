"""
Affirmly Backend — Firebase Cloud Messaging Implementation
===========================================================

What:  PushService backed by the `firebase-admin` SDK.
How:   The Firebase app is initialised lazily on first use under its own
       name, from a service-account file when one is configured and from
       Application Default Credentials otherwise. `messaging.send` blocks,
       so it runs in a worker thread.

Delivery is attempted exactly once. There is no retry or batching: a tick
that fails for one user simply moves on to the next.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import firebase_admin
from firebase_admin import credentials, exceptions as firebase_exceptions, messaging

from app.config import settings
from app.exceptions import DeviceTokenNotRegisteredError, PushDeliveryError
from app.services.push_service import PushService

logger = logging.getLogger(__name__)


class FirebasePushService(PushService):
    APP_NAME = "affirmly"

    def __init__(
        self,
        credentials_path: Optional[str] = None,
        project_id: Optional[str] = None,
    ):
        self.credentials_path = (
            credentials_path if credentials_path is not None else settings.firebase_credentials_path
        )
        self.project_id = project_id if project_id is not None else settings.firebase_project_id
        self._app: Optional[firebase_admin.App] = None

    def _get_app(self) -> firebase_admin.App:
        if self._app is not None:
            return self._app
        try:
            self._app = firebase_admin.get_app(self.APP_NAME)
        except ValueError:
            try:
                if self.credentials_path:
                    cred = credentials.Certificate(self.credentials_path)
                else:
                    cred = credentials.ApplicationDefault()
                options = {"projectId": self.project_id} if self.project_id else None
                self._app = firebase_admin.initialize_app(cred, options, name=self.APP_NAME)
            except (ValueError, OSError) as e:
                logger.error("Firebase initialisation failed: %s", str(e))
                raise PushDeliveryError(
                    message="Push notifications are not configured",
                    context={"error_type": type(e).__name__},
                )
            logger.info("Firebase app '%s' initialised", self.APP_NAME)
        return self._app

    async def _dispatch(self, message: messaging.Message, dry_run: bool = False) -> str:
        app = self._get_app()
        try:
            return await asyncio.to_thread(messaging.send, message, dry_run, app)
        except messaging.UnregisteredError as e:
            raise DeviceTokenNotRegisteredError(context={"code": e.code})
        except firebase_exceptions.FirebaseError as e:
            raise PushDeliveryError(
                message=f"Push notification delivery failed: {e}",
                context={"code": e.code},
            )

    async def send(
        self,
        token: str,
        title: str,
        body: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> str:
        # FCM data payloads only carry string values
        payload = {str(k): str(v) for k, v in (data or {}).items()}
        message = messaging.Message(
            token=token,
            notification=messaging.Notification(title=title, body=body),
            data=payload,
        )
        message_id = await self._dispatch(message)
        logger.debug("Push delivered: %s", message_id)
        return message_id

    async def validate_token(self, token: str) -> bool:
        message = messaging.Message(
            token=token,
            data={"test": "true"},
            android=messaging.AndroidConfig(priority="normal"),
            apns=messaging.APNSConfig(headers={"apns-priority": "5"}),
        )
        try:
            await self._dispatch(message, dry_run=True)
        except DeviceTokenNotRegisteredError:
            return False
        except PushDeliveryError as e:
            if e.context.get("code") == firebase_exceptions.INVALID_ARGUMENT:
                return False
            # Provider trouble is not evidence that the token is bad
            logger.warning("FCM token validation inconclusive, accepting token: %s", e.message)
        return True
