"""
Affirmly Backend — Abstract Push Notification Interface
========================================================

What:  Contract for device-token-addressed push delivery.
Why:   The broadcast scheduler and the notification service only need
       "send to token" and "is this token valid"; the transport is swappable
       and trivially faked in tests.

Contract:
    - send() returns the provider's message id
    - an unknown/expired token raises DeviceTokenNotRegisteredError, which
      callers answer by clearing the stored token
    - any other failure raises PushDeliveryError
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class PushService(ABC):

    @abstractmethod
    async def send(
        self,
        token: str,
        title: str,
        body: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> str:
        ...

    @abstractmethod
    async def validate_token(self, token: str) -> bool:
        """Dry-run delivery. False only when the provider rejects the token itself."""
        ...
