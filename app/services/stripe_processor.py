"""
Processor for Stripe webhook events.
Verifies signatures, parses events, and drives enrollment activation.
"""
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from datetime import datetime
from typing import Any, Dict, Optional
import pydantic
import logging
import json
import uuid

import stripe

from app.core.config import settings
from app.core.errors import AuthenticationError, EnrollmentError, ValidationError
from app.models.activity_log import SYSTEM_ACTOR
from app.models.enrollment import EnrollmentStatus
from app.models.webhook_event import WebhookEvent, WebhookProcessingStatus
from app.schemas.billing_event import (
    CheckoutSessionCompletedEvent,
    parse_billing_event,
)
from app.services.enrollment_transitions import transition

logger = logging.getLogger(__name__)


def verify_webhook_payload(body: bytes, signature: Optional[str], secret: str) -> Dict[str, Any]:
    """
    Check the stripe-signature header against the raw body and return the decoded envelope.

    Raises:
        AuthenticationError: missing or invalid signature
        ValidationError: body is not UTF-8 JSON
    """
    if not signature:
        raise AuthenticationError("Missing signature")

    try:
        payload = body.decode("utf-8")
    except UnicodeDecodeError:
        raise ValidationError("Invalid payload")

    try:
        stripe.WebhookSignature.verify_header(
            payload,
            signature,
            secret,
            tolerance=settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS,
        )
    except stripe.SignatureVerificationError as e:
        logger.warning(f"[WEBHOOK] Signature verification failed: {e}")
        raise AuthenticationError("Invalid signature")

    try:
        envelope = json.loads(payload)
    except ValueError as e:
        logger.warning(f"[WEBHOOK] Invalid payload: {e}")
        raise ValidationError("Invalid payload")

    if not isinstance(envelope, dict):
        raise ValidationError("Invalid payload")
    return envelope


def _record_webhook_event(
    db: Session,
    existing: Optional[WebhookEvent],
    provider_event_id: Optional[str],
    event_type: str,
    payload: Dict[str, Any],
    processing_status: WebhookProcessingStatus,
    enrollment_id: Optional[uuid.UUID] = None,
    error_message: Optional[str] = None,
) -> Optional[WebhookEvent]:
    """
    Insert or update the durable record of an event.

    A recording failure is logged and never propagated: the provider must still
    get its acknowledgement, and the sweep picks up whatever was missed.
    """
    try:
        if existing is None:
            record = WebhookEvent(
                provider_event_id=provider_event_id,
                event_type=event_type,
                payload=payload,
                attempts=1,
                received_at=datetime.utcnow(),
            )
            db.add(record)
        else:
            record = existing
            record.attempts = (record.attempts or 0) + 1

        record.processing_status = processing_status
        record.enrollment_id = enrollment_id
        record.error_message = error_message
        record.processed_at = datetime.utcnow()
        db.commit()
        return record
    except IntegrityError:
        # Concurrent delivery of the same provider event already wrote the row
        db.rollback()
        logger.info(f"[WEBHOOK] Event {provider_event_id} recorded by a concurrent delivery")
        return None
    except SQLAlchemyError:
        db.rollback()
        logger.exception(f"[WEBHOOK] Failed to record {processing_status.value} event {provider_event_id}")
        return None


def _apply_checkout_completed(
    db: Session,
    event: CheckoutSessionCompletedEvent,
    payload: Dict[str, Any],
    existing: Optional[WebhookEvent],
) -> Optional[WebhookEvent]:
    checkout_reference = event.checkout_reference
    enrollment_id = None
    try:
        try:
            enrollment_id = uuid.UUID(str(event.enrollment_id))
        except ValueError:
            raise ValidationError(f"Invalid enrollment_id in metadata: {event.enrollment_id}")

        result = transition(
            db,
            enrollment_id,
            EnrollmentStatus.ACTIVE,
            SYSTEM_ACTOR,
            {"checkoutReference": checkout_reference, "eventId": event.id},
            checkout_reference=checkout_reference,
        )
    except EnrollmentError as e:
        logger.warning(f"[WEBHOOK] Failed to activate enrollment {event.enrollment_id} from {event.id}: {e.message}")
        return _record_webhook_event(
            db, existing, event.id, event.type, payload,
            WebhookProcessingStatus.FAILED,
            enrollment_id=enrollment_id,
            error_message=e.message,
        )

    if result.changed:
        logger.info(f"[WEBHOOK] Activated enrollment {enrollment_id} with checkout {checkout_reference}")
    else:
        logger.info(f"[WEBHOOK] Enrollment {enrollment_id} already active with checkout {checkout_reference}")
    return _record_webhook_event(
        db, existing, event.id, event.type, payload,
        WebhookProcessingStatus.SUCCESS,
        enrollment_id=enrollment_id,
    )


def process_webhook_payload(db: Session, payload: Dict[str, Any]) -> Optional[WebhookEvent]:
    """
    Process a verified event envelope.

    Handles:
    - checkout.session.completed with metadata.enrollment_id -> activate the enrollment
    - checkout.session.completed without an enrollment id -> acknowledged, nothing recorded
    - any other event type -> acknowledged, nothing recorded

    Returns the WebhookEvent row written for this delivery, if any.
    """
    try:
        event = parse_billing_event(payload)
    except pydantic.ValidationError as e:
        event_type = str(payload.get("type") or "unknown")
        logger.warning(f"[WEBHOOK] Malformed {event_type} event {payload.get('id')}: {e}")
        return _record_webhook_event(
            db, None, payload.get("id"), event_type, payload,
            WebhookProcessingStatus.FAILED,
            error_message=f"Malformed event: {e.error_count()} validation error(s)",
        )

    if not isinstance(event, CheckoutSessionCompletedEvent):
        logger.info(f"[WEBHOOK] Event type {event.type} not handled - skipping")
        return None

    if not event.enrollment_id:
        logger.info(f"[WEBHOOK] Checkout {event.checkout_reference} has no enrollment_id - skipping")
        return None

    existing = None
    if event.id:
        try:
            existing = db.query(WebhookEvent).filter(WebhookEvent.provider_event_id == event.id).first()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"[WEBHOOK] Dedup lookup failed for event {event.id}: {e}")
            return _record_webhook_event(
                db, None, event.id, event.type, payload,
                WebhookProcessingStatus.FAILED,
                error_message=f"Failed to look up event: {e}",
            )
        if existing and existing.processing_status == WebhookProcessingStatus.SUCCESS:
            logger.info(f"[WEBHOOK] Event {event.id} already processed - skipping")
            return existing

    return _apply_checkout_completed(db, event, payload, existing)


def replay_webhook_event(db: Session, webhook_event: WebhookEvent) -> Optional[WebhookEvent]:
    """
    Re-drive a stored event through the same path as a live delivery.
    Used by the reconciliation sweep and the admin replay endpoint.
    """
    payload = webhook_event.payload or {}
    try:
        event = parse_billing_event(payload)
    except pydantic.ValidationError as e:
        return _record_webhook_event(
            db, webhook_event, webhook_event.provider_event_id, webhook_event.event_type, payload,
            WebhookProcessingStatus.FAILED,
            error_message=f"Malformed event: {e.error_count()} validation error(s)",
        )

    if not isinstance(event, CheckoutSessionCompletedEvent) or not event.enrollment_id:
        return _record_webhook_event(
            db, webhook_event, webhook_event.provider_event_id, webhook_event.event_type, payload,
            WebhookProcessingStatus.FAILED,
            error_message="Event cannot be replayed: not a checkout completion naming an enrollment",
        )

    return _apply_checkout_completed(db, event, payload, webhook_event)
