from sqlalchemy import Column, String, DateTime, JSON, Text, Integer, Enum as SQLEnum
from sqlalchemy.dialects.postgresql import UUID
import uuid
from datetime import datetime
import enum
from app.db.session import Base


class WebhookProcessingStatus(str, enum.Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class WebhookEvent(Base):
    __tablename__ = "webhook_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    provider_event_id = Column(String, nullable=True, unique=True, index=True)  # evt_... from Stripe, dedup key
    event_type = Column(String, nullable=False, index=True)  # checkout.session.completed, etc.
    payload = Column(JSON, nullable=False)  # Full verified event payload
    processing_status = Column(
        SQLEnum(WebhookProcessingStatus, name="webhookprocessingstatus", values_callable=lambda e: [m.value for m in e]),
        default=WebhookProcessingStatus.PENDING,
        nullable=False,
        index=True,
    )
    # No foreign key: a failed event may name an enrollment that does not exist
    enrollment_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    error_message = Column(Text, nullable=True)
    attempts = Column(Integer, default=1, nullable=False)
    received_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    processed_at = Column(DateTime, nullable=True)
