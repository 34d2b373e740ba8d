"""
Stripe webhook handler.
Verifies webhook signatures and drives enrollment activation.
"""
from fastapi import APIRouter, Request, Header, Depends, status
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from sqlalchemy.orm import Session
from typing import Optional
import logging

from app.db.session import get_db
from app.core.config import settings
from app.core.errors import AuthenticationError, ValidationError
from app.schemas.enrollment import WebhookAck
from app.services.stripe_processor import verify_webhook_payload, process_webhook_payload

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/stripe", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    db: Session = Depends(get_db),
    stripe_signature: Optional[str] = Header(None, alias="stripe-signature")
):
    """
    Handle Stripe webhook events.

    - 400 if the signature is missing or invalid; nothing is persisted
    - 500 if the webhook signing secret is not configured
    - 200 {"received": true} for every verified delivery, whatever the
      processing outcome; failures are recorded and left to the sweep
    """
    if not stripe_signature:
        logger.warning("[WEBHOOK] Request without stripe-signature header")
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": "Missing signature"})

    if not settings.STRIPE_WEBHOOK_SECRET:
        logger.error("[WEBHOOK] STRIPE_WEBHOOK_SECRET not configured")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Webhook secret not configured"},
        )

    # Raw body is required for signature verification
    body = await request.body()

    try:
        payload = verify_webhook_payload(body, stripe_signature, settings.STRIPE_WEBHOOK_SECRET)
    except (AuthenticationError, ValidationError) as e:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": e.message})

    logger.info(f"[WEBHOOK] Received {payload.get('type')} (ID: {payload.get('id')})")

    try:
        await run_in_threadpool(process_webhook_payload, db, payload)
    except Exception:
        # Verified deliveries are always acknowledged; the sweep replays failures
        logger.exception(f"[WEBHOOK] Unexpected error processing event {payload.get('id')}")

    return WebhookAck(received=True)
