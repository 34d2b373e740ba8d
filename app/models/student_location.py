from sqlalchemy import Column, DateTime, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
import uuid
from datetime import datetime
from app.db.session import Base


class StudentLocation(Base):
    """
    Access-control fact derived from an active enrollment.
    One record per student-location pair; written with ON CONFLICT DO NOTHING.
    """
    __tablename__ = "student_locations"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    location_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("student_id", "location_id", name="uq_student_locations_student_id_location_id"),
    )
