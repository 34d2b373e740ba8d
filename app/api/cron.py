"""
Scheduler-invoked maintenance jobs.
"""
from fastapi import APIRouter, Depends, Header, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from datetime import datetime
from typing import Optional
import logging
import secrets

from app.db.session import get_db
from app.core.config import settings
from app.schemas.enrollment import SweepFixes, SweepResponse
from app.services.enrollment_reconciliation import run_enrollment_health_check

router = APIRouter()
logger = logging.getLogger(__name__)


def _bearer_matches(authorization: Optional[str], secret: str) -> bool:
    if not authorization:
        return False
    return secrets.compare_digest(authorization.encode(), f"Bearer {secret}".encode())


@router.post("/enrollment-health", response_model=SweepResponse)
def enrollment_health(
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db)
):
    """
    Reconciliation sweep. Requires `Authorization: Bearer <CRON_SECRET>`.
    """
    if not settings.CRON_SECRET:
        logger.error("[SWEEP] CRON_SECRET not configured")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "CRON_SECRET not configured"},
        )

    if not _bearer_matches(authorization, settings.CRON_SECRET):
        return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content={"detail": "Unauthorized"})

    fixes = run_enrollment_health_check(db)
    return SweepResponse(success=True, fixes=SweepFixes(**fixes), timestamp=datetime.utcnow())
