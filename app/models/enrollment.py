from sqlalchemy import Column, String, DateTime, Boolean, Integer, Text, Enum as SQLEnum, Index
from sqlalchemy.dialects.postgresql import UUID
import uuid
from datetime import datetime
import enum
from app.db.session import Base


class EnrollmentStatus(str, enum.Enum):
    PENDING = "pending"
    PENDING_PAYMENT = "pending_payment"
    APPROVED = "approved"
    ACTIVE = "active"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({EnrollmentStatus.REJECTED, EnrollmentStatus.CANCELLED})


class Enrollment(Base):
    """
    One child's membership application/subscription at one location.
    Status is only ever changed through app.services.enrollment_transitions.
    """
    __tablename__ = "enrollments"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    guardian_email = Column(String, nullable=False, index=True)
    child_first_name = Column(String, nullable=False)
    child_last_name = Column(String, nullable=False)
    location_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    student_id = Column(UUID(as_uuid=True), nullable=True, index=True)  # Set once an admin approves and a student exists
    status = Column(
        SQLEnum(EnrollmentStatus, name="enrollmentstatus", values_callable=lambda e: [m.value for m in e]),
        default=EnrollmentStatus.PENDING,
        nullable=False,
        index=True,
    )
    stripe_checkout_session_id = Column(String, nullable=True, index=True)  # Set once payment is confirmed
    paid = Column(Boolean, default=False, nullable=False)
    submitted_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    reviewed_at = Column(DateTime, nullable=True)
    reviewed_by = Column(String, nullable=True)  # Admin email
    rejection_reason = Column(Text, nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    version = Column(Integer, default=1, nullable=False)  # Bumped by every conditional status write
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index(
            "ix_enrollments_natural_key",
            "guardian_email", "child_first_name", "child_last_name", "location_id",
        ),
    )

    @property
    def child_name(self) -> str:
        return f"{self.child_first_name} {self.child_last_name}"
