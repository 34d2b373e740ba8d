"""
Admin inspection and replay of recorded webhook events.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional
import logging

from app.db.session import get_db
from app.api.deps import AdminIdentity, get_current_admin, parse_uuid
from app.core.errors import ConflictError, NotFoundError, PersistenceError, ValidationError
from app.core.rate_limit import rate_limit
from app.models.webhook_event import WebhookEvent, WebhookProcessingStatus
from app.schemas.enrollment import WebhookEventResponse
from app.services.stripe_processor import replay_webhook_event

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/webhook-events", response_model=List[WebhookEventResponse])
def list_webhook_events(
    processing_status: Optional[str] = Query(None, description="pending, success or failed"),
    limit: int = Query(50, ge=1, le=500),
    admin: AdminIdentity = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    query = db.query(WebhookEvent)
    if processing_status:
        try:
            query = query.filter(WebhookEvent.processing_status == WebhookProcessingStatus(processing_status))
        except ValueError:
            raise ValidationError(f"Invalid processing_status: {processing_status}")
    return query.order_by(WebhookEvent.received_at.desc()).limit(limit).all()


@router.post("/webhook-events/{event_id}/replay", response_model=WebhookEventResponse)
@rate_limit(max_requests=10, window_seconds=60)
def replay_failed_webhook_event(
    event_id: str,
    admin: AdminIdentity = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    """Re-drive a failed event. The result is recorded on the same row."""
    event_uuid = parse_uuid(event_id, "webhook event ID")
    webhook_event = db.query(WebhookEvent).filter(WebhookEvent.id == event_uuid).first()
    if not webhook_event:
        raise NotFoundError(f"Webhook event {event_id} not found")
    if webhook_event.processing_status != WebhookProcessingStatus.FAILED:
        raise ConflictError(f"Webhook event {event_id} is {webhook_event.processing_status.value}, only failed events can be replayed")

    logger.info(f"[WEBHOOK] Replay of {event_id} requested by {admin.email}")
    record = replay_webhook_event(db, webhook_event)
    if record is None:
        raise PersistenceError(f"Failed to record replay of webhook event {event_id}")
    return record
