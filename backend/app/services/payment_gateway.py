"""
Affirmly Backend — Abstract Payment Gateway Interface
======================================================

What:  Contract the subscription service expects from a payment provider,
       plus the plain value objects that cross that boundary.
Why:   The lifecycle manager treats the gateway as "plan → hosted checkout"
       and "signed payload → verified event". Keeping that behind an
       interface lets tests substitute a fake and keeps Stripe SDK objects
       out of the service layer.
How:   StripePaymentGateway (stripe_gateway.py) implements this interface;
       tests use AsyncMock/MagicMock instances with the same methods.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional


def _as_mapping(obj: Any) -> Mapping[str, Any]:
    """Normalize SDK objects (or plain dicts from a webhook body) into a mapping."""
    if obj is None:
        return {}
    if isinstance(obj, Mapping):
        return obj
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return dict(obj)


def _expandable_id(value: Any) -> Optional[str]:
    """Stripe fields like `subscription` are either an id string or an expanded object."""
    if value is None or isinstance(value, str):
        return value
    return _as_mapping(value).get("id")


def _timestamp(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


@dataclass(frozen=True)
class CheckoutSession:
    id: str
    url: Optional[str] = None
    payment_status: Optional[str] = None
    mode: Optional[str] = None
    subscription_id: Optional[str] = None
    customer_id: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, obj: Any) -> "CheckoutSession":
        data = _as_mapping(obj)
        metadata = {k: str(v) for k, v in _as_mapping(data.get("metadata")).items()}
        return cls(
            id=data.get("id"),
            url=data.get("url"),
            payment_status=data.get("payment_status"),
            mode=data.get("mode"),
            subscription_id=_expandable_id(data.get("subscription")),
            customer_id=_expandable_id(data.get("customer")),
            metadata=metadata,
        )


@dataclass(frozen=True)
class GatewaySubscription:
    id: str
    status: Optional[str] = None
    customer_id: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None

    @classmethod
    def from_mapping(cls, obj: Any) -> "GatewaySubscription":
        data = _as_mapping(obj)
        start = data.get("current_period_start")
        end = data.get("current_period_end")

        # Newer Stripe API versions report the billing period per item
        if start is None or end is None:
            items = _as_mapping(data.get("items")).get("data") or []
            if items:
                first = _as_mapping(items[0])
                start = start if start is not None else first.get("current_period_start")
                end = end if end is not None else first.get("current_period_end")

        return cls(
            id=data.get("id"),
            status=data.get("status"),
            customer_id=_expandable_id(data.get("customer")),
            current_period_start=_timestamp(start),
            current_period_end=_timestamp(end),
        )


@dataclass(frozen=True)
class WebhookEvent:
    id: Optional[str]
    type: str
    data_object: Dict[str, Any] = field(default_factory=dict)


class PaymentGateway(ABC):
    """
    Abstract interface for the hosted-checkout payment provider.

    Contract:
        - All network failures surface as UpstreamServiceError
        - construct_event raises SignatureVerificationError for bad signatures
        - No method touches the local database
    """

    @abstractmethod
    async def create_checkout_session(
        self,
        price_id: str,
        customer_email: str,
        metadata: Dict[str, str],
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSession:
        ...

    @abstractmethod
    async def retrieve_session(self, session_id: str) -> CheckoutSession:
        ...

    @abstractmethod
    async def retrieve_subscription(self, subscription_id: str) -> GatewaySubscription:
        ...

    @abstractmethod
    async def cancel_at_period_end(self, subscription_id: str) -> None:
        ...

    @abstractmethod
    def construct_event(self, payload: bytes, signature_header: Optional[str]) -> WebhookEvent:
        """Verify the signature of a raw webhook body and parse it."""
        ...
