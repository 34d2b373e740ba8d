"""
Collapse duplicate enrollments for one guardian/child/location into a single canonical record.
"""
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from dataclasses import dataclass, field
from typing import List, Optional
import logging
import uuid

from app.core.errors import EnrollmentError, PersistenceError
from app.models.enrollment import Enrollment, EnrollmentStatus, TERMINAL_STATUSES
from app.services.enrollment_transitions import transition

logger = logging.getLogger(__name__)

DUPLICATE_CANCELLATION_REASON = "duplicate enrollment — merged with newer record"


@dataclass
class DuplicateResolution:
    enrollments: List[Enrollment]
    kept_enrollment: Optional[Enrollment] = None
    cancelled_count: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def has_duplicates(self) -> bool:
        return len(self.enrollments) > 1


def find_matching_enrollments(
    db: Session,
    guardian_email: str,
    child_first_name: str,
    child_last_name: str,
    location_id: uuid.UUID,
) -> List[Enrollment]:
    """All enrollments sharing the natural key, most recently submitted first."""
    return db.query(Enrollment).filter(
        Enrollment.guardian_email == guardian_email,
        Enrollment.child_first_name == child_first_name,
        Enrollment.child_last_name == child_last_name,
        Enrollment.location_id == location_id,
    ).order_by(
        Enrollment.submitted_at.desc(),
        Enrollment.created_at.desc(),
    ).all()


def resolve_duplicate_enrollments(
    db: Session,
    guardian_email: str,
    child_first_name: str,
    child_last_name: str,
    location_id: uuid.UUID,
    actor: str,
) -> DuplicateResolution:
    """
    Keep the most recently submitted enrollment and cancel the rest.

    Not atomic across rows: each cancellation is its own transition, and rows
    that fail are reported in errors while the others stay cancelled. Rows that
    are already terminal are left alone. If the kept enrollment carries a
    checkout reference but is not active, it is activated.
    """
    try:
        enrollments = find_matching_enrollments(
            db, guardian_email, child_first_name, child_last_name, location_id
        )
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"[MERGE] Failed to look up enrollments for {guardian_email}: {e}")
        raise PersistenceError(f"Failed to look up matching enrollments: {e}") from e
    resolution = DuplicateResolution(enrollments=enrollments)
    if not resolution.has_duplicates:
        return resolution

    keep, duplicates = enrollments[0], enrollments[1:]
    keep_id = keep.id
    duplicate_rows = [(d.id, d.status) for d in duplicates]

    for duplicate_id, duplicate_status in duplicate_rows:
        if duplicate_status in TERMINAL_STATUSES:
            logger.info(f"[MERGE] Enrollment {duplicate_id} already {duplicate_status.value}, leaving as is")
            continue
        try:
            transition(
                db,
                duplicate_id,
                EnrollmentStatus.CANCELLED,
                actor,
                {"mergedInto": str(keep_id)},
                reason=DUPLICATE_CANCELLATION_REASON,
            )
            resolution.cancelled_count += 1
            logger.info(f"[MERGE] Cancelled duplicate enrollment {duplicate_id} (kept {keep_id})")
        except EnrollmentError as e:
            resolution.errors.append(f"Failed to cancel enrollment {duplicate_id}: {e.message}")

    try:
        keep = db.query(Enrollment).filter(Enrollment.id == keep_id).first()
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning(f"[MERGE] Failed to reload kept enrollment {keep_id}: {e}")
        resolution.errors.append(f"Failed to reload kept enrollment {keep_id}: {e}")
        return resolution

    if keep.stripe_checkout_session_id and keep.status != EnrollmentStatus.ACTIVE:
        try:
            result = transition(
                db,
                keep_id,
                EnrollmentStatus.ACTIVE,
                actor,
                {"reason": "duplicate merge", "checkoutReference": keep.stripe_checkout_session_id},
                checkout_reference=keep.stripe_checkout_session_id,
            )
            keep = result.enrollment
        except EnrollmentError as e:
            resolution.errors.append(f"Failed to update kept enrollment status: {e.message}")

    if resolution.errors:
        logger.warning(f"[MERGE] Encountered {len(resolution.errors)} errors: {resolution.errors}")

    resolution.kept_enrollment = keep
    return resolution
