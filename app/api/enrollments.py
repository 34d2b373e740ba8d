"""
Admin endpoints that change enrollment status.
All status changes go through app.services.enrollment_transitions.
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import List
import logging

from app.db.session import get_db
from app.api.deps import AdminIdentity, get_current_admin, parse_uuid
from app.core.errors import NotFoundError, ValidationError
from app.core.rate_limit import rate_limit
from app.models.activity_log import ActivityLog
from app.models.enrollment import Enrollment, EnrollmentStatus
from app.schemas.enrollment import (
    ActivityLogEntry,
    Enrollment as EnrollmentSchema,
    FixDuplicateRequest,
    FixDuplicateResponse,
    RejectRequest,
    StatusChangeRequest,
    StatusChangeResponse,
)
from app.services.duplicate_enrollments import resolve_duplicate_enrollments
from app.services.enrollment_transitions import parse_status, transition

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/fix-duplicate", response_model=FixDuplicateResponse, status_code=status.HTTP_200_OK)
@rate_limit(max_requests=10, window_seconds=60)
def fix_duplicate_enrollments(
    request: FixDuplicateRequest,
    admin: AdminIdentity = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    """
    Collapse enrollments sharing (guardian email, child first name, child last
    name, location) into the most recently submitted one.

    Partial success is possible: rows that could not be changed are listed in
    `errors` and the rest stay changed.
    """
    if not request.guardianEmail or not request.childFirstName or not request.childLastName or not request.locationId:
        raise ValidationError(
            "Missing required fields: guardianEmail, childFirstName, childLastName, locationId"
        )
    location_id = parse_uuid(request.locationId, "locationId")

    logger.info(
        f"[MERGE] Duplicate merge requested by {admin.email} for "
        f"{request.guardianEmail}/{request.childFirstName} {request.childLastName}/{location_id}"
    )
    resolution = resolve_duplicate_enrollments(
        db,
        request.guardianEmail,
        request.childFirstName,
        request.childLastName,
        location_id,
        actor=admin.email,
    )

    if not resolution.has_duplicates:
        return FixDuplicateResponse(
            message="No duplicate enrollments found",
            keepEnrollment=resolution.enrollments[0] if resolution.enrollments else None,
            enrollments=resolution.enrollments,
        )

    return FixDuplicateResponse(
        message=f"Fixed {resolution.cancelled_count} duplicate enrollments",
        keepEnrollment=resolution.kept_enrollment,
        cancelledEnrollments=resolution.cancelled_count,
        errors=resolution.errors,
    )


@router.post("/{enrollment_id}/status", response_model=StatusChangeResponse)
@rate_limit(max_requests=30, window_seconds=60)
def change_enrollment_status(
    enrollment_id: str,
    request: StatusChangeRequest,
    admin: AdminIdentity = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    """
    Change an enrollment's status.

    400 for an unknown status, 404 if the enrollment does not exist, 409 if the
    transition is not allowed from the current status or another writer got
    there first.
    """
    if not request.status:
        raise ValidationError("Invalid status")
    target = parse_status(request.status)
    enrollment_uuid = parse_uuid(enrollment_id, "enrollment ID")

    result = transition(
        db,
        enrollment_uuid,
        target,
        admin.email,
        {"source": "admin_status_change"},
        reason=request.reason,
    )
    return StatusChangeResponse(
        success=True,
        message="Status updated successfully" if result.changed else "Status unchanged",
        changed=result.changed,
        previous_status=result.previous_status,
        enrollment=result.enrollment,
    )


@router.post("/{enrollment_id}/reject", response_model=StatusChangeResponse)
@rate_limit(max_requests=30, window_seconds=60)
def reject_enrollment(
    enrollment_id: str,
    request: RejectRequest,
    admin: AdminIdentity = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    """Reject a pending enrollment. A non-empty reason is required."""
    if not request.reason or not request.reason.strip():
        raise ValidationError("Rejection reason is required")
    enrollment_uuid = parse_uuid(enrollment_id, "enrollment ID")

    result = transition(
        db,
        enrollment_uuid,
        EnrollmentStatus.REJECTED,
        admin.email,
        {"source": "admin_reject"},
        reason=request.reason.strip(),
    )
    return StatusChangeResponse(
        success=True,
        message="Enrollment rejected",
        changed=result.changed,
        previous_status=result.previous_status,
        enrollment=result.enrollment,
    )


@router.get("/{enrollment_id}/activity", response_model=List[ActivityLogEntry])
def get_enrollment_activity(
    enrollment_id: str,
    admin: AdminIdentity = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    """Audit trail for one enrollment, newest first."""
    enrollment_uuid = parse_uuid(enrollment_id, "enrollment ID")
    if not db.query(Enrollment.id).filter(Enrollment.id == enrollment_uuid).first():
        raise NotFoundError(f"Enrollment {enrollment_id} not found")

    return db.query(ActivityLog).filter(
        ActivityLog.entity_type == "enrollment",
        ActivityLog.entity_id == str(enrollment_uuid),
    ).order_by(ActivityLog.created_at.desc()).all()


@router.get("/{enrollment_id}", response_model=EnrollmentSchema)
def get_enrollment(
    enrollment_id: str,
    admin: AdminIdentity = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    enrollment_uuid = parse_uuid(enrollment_id, "enrollment ID")
    enrollment = db.query(Enrollment).filter(Enrollment.id == enrollment_uuid).first()
    if not enrollment:
        raise NotFoundError(f"Enrollment {enrollment_id} not found")
    return enrollment
