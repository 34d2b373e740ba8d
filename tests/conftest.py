import os

# Configure before any app module reads settings
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["CRON_SECRET"] = "cron_test_secret"
os.environ["ADMIN_EMAILS"] = "admin@example.com"
os.environ["SECRET_KEY"] = "test-secret-key"

import hashlib
import hmac
import json
import time
import uuid
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlalchemy.exc import OperationalError

import app.models  # noqa: F401
from app.core.rate_limit import reset_rate_limits
from app.core.security import create_access_token
from app.db.session import Base, SessionLocal, engine, get_db
from app.main import app as fastapi_app
from app.models.enrollment import Enrollment, EnrollmentStatus

WEBHOOK_SECRET = "whsec_test_secret"
CRON_SECRET = "cron_test_secret"
ADMIN_EMAIL = "admin@example.com"


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db):
    def override_get_db():
        yield db

    fastapi_app.dependency_overrides[get_db] = override_get_db
    reset_rate_limits()
    with TestClient(fastapi_app) as test_client:
        yield test_client
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {create_access_token(ADMIN_EMAIL)}"}


@pytest.fixture
def failing_reads():
    """
    Make every SELECT that binds one of the added ids (enrollment UUIDs or
    provider event ids) fail the way a Postgres statement timeout does.
    Clear the set to stop failing.
    """
    ids = set()

    def _fail(conn, cursor, statement, parameters, context, executemany):
        if not ids or not statement.lstrip().upper().startswith("SELECT"):
            return
        bound = str(parameters)
        needles = {str(i) for i in ids} | {i.hex for i in ids if isinstance(i, uuid.UUID)}
        if any(n in bound for n in needles):
            raise OperationalError(statement, parameters, Exception("canceling statement due to statement timeout"))

    event.listen(engine, "before_cursor_execute", _fail)
    yield ids
    event.remove(engine, "before_cursor_execute", _fail)


@pytest.fixture
def make_enrollment(db):
    def _make(
        status=EnrollmentStatus.PENDING,
        guardian_email="alice@example.com",
        child_first_name="Gracie",
        child_last_name="Doe",
        location_id=None,
        student_id=None,
        checkout_reference=None,
        submitted_at=None,
    ):
        enrollment = Enrollment(
            guardian_email=guardian_email,
            child_first_name=child_first_name,
            child_last_name=child_last_name,
            location_id=location_id or uuid.uuid4(),
            student_id=student_id,
            status=status,
            stripe_checkout_session_id=checkout_reference,
            submitted_at=submitted_at or datetime.utcnow() - timedelta(minutes=5),
        )
        db.add(enrollment)
        db.commit()
        db.refresh(enrollment)
        return enrollment

    return _make


def sign_payload(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    """Build a stripe-signature header (t=<ts>,v1=<hmac-sha256>)."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def checkout_completed_event(enrollment_id, session_id="cs_test_123", event_id="evt_test_123") -> dict:
    metadata = {}
    if enrollment_id is not None:
        metadata["enrollment_id"] = str(enrollment_id)
    return {
        "id": event_id,
        "object": "event",
        "type": "checkout.session.completed",
        "api_version": "2024-06-20",
        "created": int(time.time()),
        "data": {
            "object": {
                "id": session_id,
                "object": "checkout.session",
                "payment_status": "paid",
                "metadata": metadata,
            }
        },
    }


def post_webhook(client, event: dict, secret: str = WEBHOOK_SECRET, signature: str = None):
    payload = json.dumps(event)
    headers = {"Content-Type": "application/json"}
    headers["stripe-signature"] = signature if signature is not None else sign_payload(payload, secret)
    return client.post("/webhooks/stripe", content=payload, headers=headers)
