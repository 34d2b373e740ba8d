"""
Scheduled reconciliation sweep for enrollments.

Corrects enrollments whose status disagrees with payment evidence, surfaces
stale pending applications for admin review, and replays webhook deliveries
that failed to process. Every status change goes through the transition
authority; one failing row never stops the rest of the batch.
"""
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from datetime import datetime, timedelta
from typing import Optional
import logging

from app.core.audit import log_activity
from app.core.config import settings
from app.core.errors import EnrollmentError
from app.models.activity_log import SYSTEM_ACTOR
from app.models.enrollment import Enrollment, EnrollmentStatus
from app.models.webhook_event import WebhookEvent, WebhookProcessingStatus
from app.schemas.billing_event import CHECKOUT_SESSION_COMPLETED
from app.services.enrollment_transitions import transition
from app.services.stripe_processor import replay_webhook_event

logger = logging.getLogger(__name__)

# Statuses that should have become active once a checkout reference is stored
AWAITING_ACTIVATION = (
    EnrollmentStatus.PENDING,
    EnrollmentStatus.PENDING_PAYMENT,
    EnrollmentStatus.APPROVED,
)

HEALTH_CHECK_ACTION = "enrollment_health_check"


def _sync_payment_status(db: Session, fixes: dict):
    try:
        rows = db.query(
            Enrollment.id,
            Enrollment.child_first_name,
            Enrollment.stripe_checkout_session_id,
        ).filter(
            Enrollment.stripe_checkout_session_id.isnot(None),
            Enrollment.status.in_(AWAITING_ACTIVATION),
        ).all()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"[SWEEP] Failed to list enrollments awaiting activation: {e}")
        fixes["errors"].append(f"Failed to list enrollments awaiting activation: {e}")
        return

    for enrollment_id, child_first_name, checkout_reference in rows:
        try:
            result = transition(
                db,
                enrollment_id,
                EnrollmentStatus.ACTIVE,
                SYSTEM_ACTOR,
                {"reason": "sweep"},
                checkout_reference=checkout_reference,
            )
        except EnrollmentError as e:
            logger.warning(f"[SWEEP] Failed to sync enrollment {enrollment_id}: {e.message}")
            fixes["errors"].append(f"Failed to sync {child_first_name}: {e.message}")
            continue
        if result.changed:
            fixes["paymentStatusSync"] += 1


def _flag_stale_pending(db: Session, fixes: dict, now: datetime):
    cutoff = now - timedelta(hours=settings.STALE_PENDING_HOURS)
    try:
        rows = db.query(Enrollment.id, Enrollment.child_first_name).filter(
            Enrollment.status == EnrollmentStatus.PENDING,
            Enrollment.stripe_checkout_session_id.is_(None),
            Enrollment.submitted_at < cutoff,
        ).all()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"[SWEEP] Failed to list stale enrollments: {e}")
        fixes["errors"].append(f"Failed to list stale enrollments: {e}")
        return

    for enrollment_id, child_first_name in rows:
        # Only touch the row; never approve or cancel an ambiguous application
        try:
            touched = db.query(Enrollment).filter(
                Enrollment.id == enrollment_id,
                Enrollment.status == EnrollmentStatus.PENDING,
                Enrollment.stripe_checkout_session_id.is_(None),
            ).update({Enrollment.updated_at: now}, synchronize_session=False)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning(f"[SWEEP] Failed to flag stale enrollment {enrollment_id}: {e}")
            fixes["errors"].append(f"Failed to flag {child_first_name}: {e}")
            continue
        if touched:
            fixes["stalePending"] += 1


def _retry_failed_webhooks(db: Session, fixes: dict, now: datetime):
    """
    Replay failed checkout events. Least-attempted first, so events that keep
    failing cannot hold every slot; events at MAX_WEBHOOK_ATTEMPTS are left
    for an admin replay.
    """
    cutoff = now - timedelta(minutes=settings.WEBHOOK_RETRY_MIN_AGE_MINUTES)
    try:
        failed_events = db.query(WebhookEvent).filter(
            WebhookEvent.processing_status == WebhookProcessingStatus.FAILED,
            WebhookEvent.event_type == CHECKOUT_SESSION_COMPLETED,
            WebhookEvent.received_at < cutoff,
            WebhookEvent.attempts < settings.MAX_WEBHOOK_ATTEMPTS,
        ).order_by(
            WebhookEvent.attempts,
            WebhookEvent.received_at,
        ).limit(settings.WEBHOOK_RETRY_BATCH_SIZE).all()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"[SWEEP] Failed to list failed webhook events: {e}")
        fixes["errors"].append(f"Failed to list failed webhook events: {e}")
        return

    event_ids = [e.id for e in failed_events]
    for webhook_event_id, webhook_event in zip(event_ids, failed_events):
        try:
            record = replay_webhook_event(db, webhook_event)
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning(f"[SWEEP] Failed to replay webhook {webhook_event_id}: {e}")
            fixes["errors"].append(f"Failed to retry webhook {webhook_event_id}: {e}")
            continue
        if record is not None and record.processing_status == WebhookProcessingStatus.SUCCESS:
            fixes["webhookRetries"] += 1
            logger.info(f"[SWEEP] Replayed webhook {webhook_event_id} for enrollment {record.enrollment_id}")
        else:
            reason = record.error_message if record is not None else "could not record retry"
            fixes["errors"].append(f"Failed to retry webhook {webhook_event_id}: {reason}")


def run_enrollment_health_check(db: Session, now: Optional[datetime] = None) -> dict:
    """
    Run one reconciliation pass.

    1. Activate enrollments that carry a checkout reference but are still
       pending, pending_payment or approved.
    2. Touch pending enrollments without a checkout reference older than
       STALE_PENDING_HOURS so they surface for admin review.
    3. Replay failed checkout-completed webhook events that have not yet
       reached MAX_WEBHOOK_ATTEMPTS.

    Returns the fix counters plus the list of per-item failures.
    """
    now = now or datetime.utcnow()
    fixes = {
        "paymentStatusSync": 0,
        "stalePending": 0,
        "webhookRetries": 0,
        "errors": [],
    }

    _sync_payment_status(db, fixes)
    _flag_stale_pending(db, fixes, now)
    _retry_failed_webhooks(db, fixes, now)

    try:
        log_activity(
            db,
            actor=SYSTEM_ACTOR,
            action=HEALTH_CHECK_ACTION,
            entity_type="system",
            entity_id="cron",
            details={"fixes": fixes, "timestamp": now},
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"[SWEEP] Failed to log health check: {e}")
        fixes["errors"].append(f"Failed to log health check: {e}")

    logger.info(
        f"[SWEEP] Complete: {fixes['paymentStatusSync']} synced, {fixes['stalePending']} stale, "
        f"{fixes['webhookRetries']} webhook retries, {len(fixes['errors'])} errors"
    )
    return fixes
