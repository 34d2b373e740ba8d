from sqlalchemy import Column, String, DateTime, JSON
from sqlalchemy.dialects.postgresql import UUID
import uuid
from datetime import datetime
from app.db.session import Base


SYSTEM_ACTOR = "system"


class ActivityLog(Base):
    """Append-only audit fact. Rows are never updated or deleted."""
    __tablename__ = "activity_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    actor = Column(String, nullable=False, index=True)  # Admin email or "system"
    action = Column(String, nullable=False, index=True)  # e.g., "enrollment.status_changed"
    entity_type = Column(String, nullable=False)  # e.g., "enrollment", "system"
    entity_id = Column(String, nullable=False, index=True)
    details = Column(JSON, nullable=True)  # before/after status plus caller-supplied detail
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
