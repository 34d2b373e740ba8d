"""
Typed billing-provider events.

Verified webhook bodies are parsed into one of these models before dispatch.
Event types this service does not act on become UnhandledBillingEvent, which
the receiver acknowledges without doing anything.
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, Optional, Union

CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"


class CheckoutSessionMetadata(BaseModel):
    model_config = ConfigDict(extra="allow")

    enrollment_id: Optional[str] = None


class CheckoutSession(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    metadata: CheckoutSessionMetadata = Field(default_factory=CheckoutSessionMetadata)
    payment_status: Optional[str] = None


class BillingEventBase(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None  # evt_..., used for dedup
    type: str
    api_version: Optional[str] = None
    created: Optional[int] = None


class CheckoutSessionCompletedEvent(BillingEventBase):
    session: CheckoutSession

    @property
    def enrollment_id(self) -> Optional[str]:
        return self.session.metadata.enrollment_id or None

    @property
    def checkout_reference(self) -> str:
        return self.session.id


class UnhandledBillingEvent(BillingEventBase):
    pass


BillingEvent = Union[CheckoutSessionCompletedEvent, UnhandledBillingEvent]


def parse_billing_event(payload: Dict[str, Any]) -> BillingEvent:
    """
    Parse a verified event envelope.

    Raises pydantic.ValidationError when a known event type is malformed or the
    envelope has no type at all.
    """
    event_type = payload.get("type")
    data = payload.get("data")
    # A non-object data envelope leaves session unset so validation fails
    data_object = data.get("object") if isinstance(data, dict) else None

    if event_type == CHECKOUT_SESSION_COMPLETED:
        return CheckoutSessionCompletedEvent(
            id=payload.get("id"),
            type=event_type,
            api_version=payload.get("api_version"),
            created=payload.get("created"),
            session=data_object,
        )

    return UnhandledBillingEvent.model_validate(
        {k: v for k, v in payload.items() if k in ("id", "type", "api_version", "created")}
    )
