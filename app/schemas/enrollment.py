from pydantic import BaseModel
from typing import Any, Dict, List, Optional
from datetime import datetime
import uuid

from app.models.enrollment import EnrollmentStatus
from app.models.webhook_event import WebhookProcessingStatus


class Enrollment(BaseModel):
    id: uuid.UUID
    guardian_email: str
    child_first_name: str
    child_last_name: str
    location_id: Optional[uuid.UUID] = None
    student_id: Optional[uuid.UUID] = None
    status: EnrollmentStatus
    stripe_checkout_session_id: Optional[str] = None
    paid: bool
    submitted_at: datetime
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    version: int
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class StatusChangeRequest(BaseModel):
    # Plain string so unknown values answer 400 rather than a 422 schema error
    status: Optional[str] = None
    reason: Optional[str] = None  # Stored as the cancellation or rejection reason


class StatusChangeResponse(BaseModel):
    success: bool
    message: str
    changed: bool
    previous_status: EnrollmentStatus
    enrollment: Enrollment


class RejectRequest(BaseModel):
    reason: Optional[str] = None


class FixDuplicateRequest(BaseModel):
    guardianEmail: Optional[str] = None
    childFirstName: Optional[str] = None
    childLastName: Optional[str] = None
    locationId: Optional[str] = None


class FixDuplicateResponse(BaseModel):
    message: str
    keepEnrollment: Optional[Enrollment] = None
    cancelledEnrollments: int = 0
    enrollments: List[Enrollment] = []
    errors: List[str] = []


class SweepFixes(BaseModel):
    paymentStatusSync: int = 0
    stalePending: int = 0
    webhookRetries: int = 0
    errors: List[str] = []


class SweepResponse(BaseModel):
    success: bool
    fixes: SweepFixes
    timestamp: datetime


class ActivityLogEntry(BaseModel):
    id: uuid.UUID
    actor: str
    action: str
    entity_type: str
    entity_id: str
    details: Optional[Dict[str, Any]] = None
    created_at: datetime

    class Config:
        from_attributes = True


class WebhookEventResponse(BaseModel):
    id: uuid.UUID
    provider_event_id: Optional[str] = None
    event_type: str
    processing_status: WebhookProcessingStatus
    enrollment_id: Optional[uuid.UUID] = None
    error_message: Optional[str] = None
    attempts: int
    received_at: datetime
    processed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class WebhookAck(BaseModel):
    received: bool = True
