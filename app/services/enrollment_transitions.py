"""
Status transition authority for enrollments.

This is the only code path that changes Enrollment.status. The webhook
processor, the reconciliation sweep, the duplicate resolver and the admin
endpoints all call transition() so that every status change goes through one
transition table, one conditional write and one audit trail.
"""
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Union
import logging
import uuid

from app.core.audit import log_activity
from app.core.errors import ConflictError, NotFoundError, PersistenceError, ValidationError
from app.models.activity_log import SYSTEM_ACTOR
from app.models.enrollment import Enrollment, EnrollmentStatus
from app.models.student_location import StudentLocation

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    EnrollmentStatus.PENDING: frozenset({
        EnrollmentStatus.APPROVED,
        EnrollmentStatus.REJECTED,
        EnrollmentStatus.ACTIVE,
        EnrollmentStatus.CANCELLED,
    }),
    EnrollmentStatus.PENDING_PAYMENT: frozenset({EnrollmentStatus.ACTIVE, EnrollmentStatus.CANCELLED}),
    EnrollmentStatus.APPROVED: frozenset({EnrollmentStatus.ACTIVE, EnrollmentStatus.CANCELLED}),
    EnrollmentStatus.ACTIVE: frozenset({EnrollmentStatus.CANCELLED}),
    EnrollmentStatus.REJECTED: frozenset(),
    EnrollmentStatus.CANCELLED: frozenset(),
}

STATUS_CHANGED_ACTION = "enrollment.status_changed"


@dataclass
class TransitionResult:
    enrollment: Enrollment
    previous_status: EnrollmentStatus
    changed: bool


def can_transition(current: EnrollmentStatus, target: EnrollmentStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def parse_status(value: Union[str, EnrollmentStatus]) -> EnrollmentStatus:
    try:
        return EnrollmentStatus(value)
    except ValueError:
        allowed = ", ".join(s.value for s in EnrollmentStatus)
        raise ValidationError(f"Invalid status '{value}'. Expected one of: {allowed}")


def _is_replay(enrollment: Enrollment, target: EnrollmentStatus, checkout_reference: Optional[str]) -> bool:
    """An activation repeated with the checkout reference already stored changes nothing."""
    return (
        target == EnrollmentStatus.ACTIVE
        and enrollment.status == EnrollmentStatus.ACTIVE
        and checkout_reference is not None
        and enrollment.stripe_checkout_session_id == checkout_reference
    )


def _upsert_student_location(db: Session, student_id: uuid.UUID, location_id: uuid.UUID):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise PersistenceError(f"Membership upsert not supported on dialect '{dialect}'")

    stmt = insert(StudentLocation).values(
        id=uuid.uuid4(),
        student_id=student_id,
        location_id=location_id,
    ).on_conflict_do_nothing(index_elements=["student_id", "location_id"])
    db.execute(stmt)


def transition(
    db: Session,
    enrollment_id: uuid.UUID,
    target_status: Union[str, EnrollmentStatus],
    actor: str,
    detail: Optional[Dict[str, Any]] = None,
    *,
    checkout_reference: Optional[str] = None,
    reason: Optional[str] = None,
) -> TransitionResult:
    """
    Move an enrollment to target_status.

    The status write is conditional on the status and version read here, so a
    concurrent writer that got there first makes this call fail with
    ConflictError instead of being overwritten. The membership upsert, the
    activity log entry and the status write commit together or not at all.

    Args:
        db: Database session
        enrollment_id: Enrollment to change
        target_status: Desired status
        actor: Admin email or "system"
        detail: Caller context stored in the activity log entry
        checkout_reference: Stripe checkout session id to attach on activation
        reason: Cancellation or rejection reason

    Raises:
        ValidationError: target_status is not a known status
        NotFoundError: no enrollment with this id
        ConflictError: transition not allowed, or lost a concurrent write
        PersistenceError: the database rejected the unit of work
    """
    target = parse_status(target_status)

    try:
        enrollment = db.query(Enrollment).filter(Enrollment.id == enrollment_id).first()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"[TRANSITION] Failed to load enrollment {enrollment_id}: {e}")
        raise PersistenceError(f"Failed to load enrollment {enrollment_id}: {e}") from e
    if not enrollment:
        raise NotFoundError(f"Enrollment {enrollment_id} not found")

    previous = enrollment.status
    expected_version = enrollment.version
    if _is_replay(enrollment, target, checkout_reference):
        logger.info(f"[TRANSITION] Enrollment {enrollment_id} already active with {checkout_reference}, nothing to do")
        return TransitionResult(enrollment=enrollment, previous_status=previous, changed=False)

    if not can_transition(previous, target):
        raise ConflictError(
            f"Cannot change enrollment {enrollment_id} from {previous.value} to {target.value}"
        )

    now = datetime.utcnow()
    values = {
        Enrollment.status: target,
        Enrollment.version: Enrollment.version + 1,
        Enrollment.updated_at: now,
    }
    if target == EnrollmentStatus.ACTIVE:
        if checkout_reference:
            values[Enrollment.stripe_checkout_session_id] = checkout_reference
        if checkout_reference or enrollment.stripe_checkout_session_id:
            values[Enrollment.paid] = True
    elif target == EnrollmentStatus.CANCELLED:
        values[Enrollment.cancellation_reason] = reason
        values[Enrollment.cancelled_at] = now
    elif target == EnrollmentStatus.REJECTED:
        values[Enrollment.rejection_reason] = reason
    if actor != SYSTEM_ACTOR:
        values[Enrollment.reviewed_at] = now
        values[Enrollment.reviewed_by] = actor

    audit_details = {
        "child_name": enrollment.child_name,
        "old_status": previous.value,
        "new_status": target.value,
    }
    if reason:
        audit_details["reason"] = reason
    if detail:
        audit_details["detail"] = detail

    try:
        updated = db.query(Enrollment).filter(
            Enrollment.id == enrollment_id,
            Enrollment.status == previous,
            Enrollment.version == expected_version,
        ).update(values, synchronize_session=False)

        if updated != 1:
            db.rollback()
            raise ConflictError(
                f"Enrollment {enrollment_id} changed while moving from {previous.value} to {target.value}"
            )

        if target == EnrollmentStatus.ACTIVE and enrollment.student_id and enrollment.location_id:
            _upsert_student_location(db, enrollment.student_id, enrollment.location_id)

        log_activity(
            db,
            actor=actor,
            action=STATUS_CHANGED_ACTION,
            entity_type="enrollment",
            entity_id=str(enrollment_id),
            details=audit_details,
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"[TRANSITION] Failed to persist {previous.value} -> {target.value} for {enrollment_id}: {e}")
        raise PersistenceError(f"Failed to update enrollment {enrollment_id}: {e}") from e

    try:
        db.refresh(enrollment)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"[TRANSITION] Enrollment {enrollment_id} committed as {target.value} but could not be reloaded: {e}")
        raise PersistenceError(f"Enrollment {enrollment_id} updated but could not be reloaded: {e}") from e
    logger.info(f"[TRANSITION] Enrollment {enrollment_id}: {previous.value} -> {target.value} by {actor}")
    return TransitionResult(enrollment=enrollment, previous_status=previous, changed=True)
