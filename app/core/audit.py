"""
Activity log writes for enrollment state mutations.
"""
from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session
from app.models.activity_log import ActivityLog
from typing import Optional
import logging

logger = logging.getLogger(__name__)


def log_activity(
    db: Session,
    actor: str,
    action: str,
    entity_type: str,
    entity_id: str,
    details: Optional[dict] = None
) -> ActivityLog:
    """
    Append an activity log entry to the current unit of work.

    The entry is only added to the session; the caller commits it together
    with the mutation it describes, so a failed mutation leaves no entry behind
    and a failed audit write fails the mutation.

    Args:
        db: Database session
        actor: Admin email or "system"
        action: Action name (e.g., "enrollment.status_changed")
        entity_type: Type of entity (e.g., "enrollment", "system")
        entity_id: ID of the entity
        details: Additional details (before/after, caller detail); made JSON-safe
    """
    entry = ActivityLog(
        actor=actor,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        details=jsonable_encoder(details) if details else None
    )
    db.add(entry)
    logger.debug(f"[AUDIT] {actor} {action} {entity_type}:{entity_id}")
    return entry
