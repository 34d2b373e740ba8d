from app.schemas.enrollment import (
    Enrollment,
    StatusChangeRequest,
    StatusChangeResponse,
    FixDuplicateRequest,
    FixDuplicateResponse,
    SweepResponse,
)
from app.schemas.billing_event import BillingEvent, parse_billing_event

__all__ = [
    "Enrollment", "StatusChangeRequest", "StatusChangeResponse",
    "FixDuplicateRequest", "FixDuplicateResponse",
    "SweepResponse",
    "BillingEvent", "parse_billing_event",
]
