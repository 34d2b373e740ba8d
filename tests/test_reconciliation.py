"""Reconciliation sweep tests"""
from datetime import datetime, timedelta

from app.core.config import settings
from app.core.errors import PersistenceError
from app.models.activity_log import ActivityLog
from app.models.enrollment import Enrollment, EnrollmentStatus
from app.models.webhook_event import WebhookEvent, WebhookProcessingStatus
from app.services import enrollment_reconciliation, stripe_processor
from app.services.enrollment_reconciliation import run_enrollment_health_check
from tests.conftest import CRON_SECRET, checkout_completed_event, post_webhook


def _cron_headers(secret=CRON_SECRET):
    return {"Authorization": f"Bearer {secret}"}


def _record_failed_delivery(client, db, monkeypatch, enrollment_id, age=timedelta(minutes=10)):
    def failing_transition(*args, **kwargs):
        raise PersistenceError("database timed out")

    with monkeypatch.context() as m:
        m.setattr(stripe_processor, "transition", failing_transition)
        post_webhook(client, checkout_completed_event(enrollment_id))

    db.query(WebhookEvent).update(
        {WebhookEvent.received_at: datetime.utcnow() - age},
        synchronize_session=False,
    )
    db.commit()
    db.expire_all()


def test_paid_enrollments_are_activated_and_second_run_is_clean(db, make_enrollment):
    paid = make_enrollment(checkout_reference="cs_paid")
    approved = make_enrollment(status=EnrollmentStatus.APPROVED, checkout_reference="cs_approved", child_first_name="Ada")
    unpaid = make_enrollment(child_first_name="Lin")

    first = run_enrollment_health_check(db)

    assert first["paymentStatusSync"] == 2
    assert first["errors"] == []
    db.expire_all()
    assert db.get(Enrollment, paid.id).status == EnrollmentStatus.ACTIVE
    assert db.get(Enrollment, paid.id).paid is True
    assert db.get(Enrollment, approved.id).status == EnrollmentStatus.ACTIVE
    assert db.get(Enrollment, unpaid.id).status == EnrollmentStatus.PENDING

    second = run_enrollment_health_check(db)

    assert second["paymentStatusSync"] == 0
    assert second["webhookRetries"] == 0
    assert second["errors"] == []


def test_stale_pending_is_flagged_but_not_changed(db, make_enrollment):
    stale = make_enrollment(submitted_at=datetime.utcnow() - timedelta(hours=25))
    make_enrollment(child_first_name="Fresh", submitted_at=datetime.utcnow() - timedelta(hours=1))
    before = stale.updated_at

    fixes = run_enrollment_health_check(db)

    assert fixes["stalePending"] == 1
    db.expire_all()
    stored = db.get(Enrollment, stale.id)
    assert stored.status == EnrollmentStatus.PENDING
    assert stored.version == 1
    assert stored.updated_at >= before


def test_stale_window_follows_settings(db, make_enrollment, monkeypatch):
    monkeypatch.setattr(settings, "STALE_PENDING_HOURS", 2)
    make_enrollment(submitted_at=datetime.utcnow() - timedelta(hours=3))

    assert run_enrollment_health_check(db)["stalePending"] == 1


def test_failed_webhook_is_replayed(client, db, make_enrollment, monkeypatch):
    enrollment = make_enrollment()
    _record_failed_delivery(client, db, monkeypatch, enrollment.id)

    fixes = run_enrollment_health_check(db)

    assert fixes["webhookRetries"] == 1
    assert fixes["errors"] == []
    db.expire_all()
    stored = db.get(Enrollment, enrollment.id)
    assert stored.status == EnrollmentStatus.ACTIVE
    assert stored.stripe_checkout_session_id == "cs_test_123"
    record = db.query(WebhookEvent).one()
    assert record.processing_status == WebhookProcessingStatus.SUCCESS
    assert record.attempts == 2


def test_recent_failed_webhook_is_left_for_provider_retry(client, db, make_enrollment, monkeypatch):
    enrollment = make_enrollment()
    _record_failed_delivery(client, db, monkeypatch, enrollment.id, age=timedelta(minutes=1))

    fixes = run_enrollment_health_check(db)

    assert fixes["webhookRetries"] == 0
    assert db.query(WebhookEvent).one().processing_status == WebhookProcessingStatus.FAILED


def test_failed_webhook_for_rejected_enrollment_reports_error(client, db, make_enrollment):
    enrollment = make_enrollment(status=EnrollmentStatus.REJECTED)
    post_webhook(client, checkout_completed_event(enrollment.id))
    db.query(WebhookEvent).update(
        {WebhookEvent.received_at: datetime.utcnow() - timedelta(minutes=10)},
        synchronize_session=False,
    )
    db.commit()

    fixes = run_enrollment_health_check(db)

    assert fixes["webhookRetries"] == 0
    assert len(fixes["errors"]) == 1
    assert "Failed to retry webhook" in fixes["errors"][0]
    db.expire_all()
    assert db.get(Enrollment, enrollment.id).status == EnrollmentStatus.REJECTED


def test_one_failing_row_does_not_stop_the_batch(db, make_enrollment, monkeypatch):
    broken = make_enrollment(checkout_reference="cs_broken", child_first_name="Broken")
    healthy = make_enrollment(checkout_reference="cs_ok", child_first_name="Healthy")
    real_transition = enrollment_reconciliation.transition

    def flaky_transition(db, enrollment_id, *args, **kwargs):
        if enrollment_id == broken.id:
            raise PersistenceError("database timed out")
        return real_transition(db, enrollment_id, *args, **kwargs)

    monkeypatch.setattr(enrollment_reconciliation, "transition", flaky_transition)

    fixes = run_enrollment_health_check(db)

    assert fixes["paymentStatusSync"] == 1
    assert fixes["errors"] == ["Failed to sync Broken: database timed out"]
    db.expire_all()
    assert db.get(Enrollment, healthy.id).status == EnrollmentStatus.ACTIVE
    assert db.get(Enrollment, broken.id).status == EnrollmentStatus.PENDING


def test_each_run_writes_health_check_entry(db, make_enrollment):
    make_enrollment(checkout_reference="cs_paid")

    run_enrollment_health_check(db)

    entry = db.query(ActivityLog).filter(ActivityLog.action == "enrollment_health_check").one()
    assert entry.actor == "system"
    assert entry.details["fixes"]["paymentStatusSync"] == 1


def test_endpoint_requires_cron_secret(client):
    assert client.post("/cron/enrollment-health").status_code == 401
    assert client.post("/cron/enrollment-health", headers=_cron_headers("wrong")).status_code == 401


def test_endpoint_without_configured_secret_returns_500(client, monkeypatch):
    monkeypatch.setattr(settings, "CRON_SECRET", None)

    response = client.post("/cron/enrollment-health", headers=_cron_headers())

    assert response.status_code == 500


def test_endpoint_returns_fix_counts(client, db, make_enrollment):
    make_enrollment(checkout_reference="cs_paid")
    make_enrollment(child_first_name="Stale", submitted_at=datetime.utcnow() - timedelta(hours=30))

    response = client.post("/cron/enrollment-health", headers=_cron_headers())

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["fixes"] == {
        "paymentStatusSync": 1,
        "stalePending": 1,
        "webhookRetries": 0,
        "errors": [],
    }
    assert "timestamp" in body


def test_database_timeout_on_one_row_does_not_stop_the_batch(db, make_enrollment, failing_reads):
    broken = make_enrollment(checkout_reference="cs_broken", child_first_name="Broken")
    healthy = make_enrollment(checkout_reference="cs_ok", child_first_name="Healthy")
    failing_reads.add(broken.id)

    fixes = run_enrollment_health_check(db)

    failing_reads.clear()
    assert fixes["paymentStatusSync"] == 1
    assert len(fixes["errors"]) == 1
    assert fixes["errors"][0].startswith("Failed to sync Broken: Failed to load enrollment")
    db.expire_all()
    assert db.get(Enrollment, healthy.id).status == EnrollmentStatus.ACTIVE
    assert db.get(Enrollment, broken.id).status == EnrollmentStatus.PENDING


def _age_event(db, provider_event_id, minutes):
    db.query(WebhookEvent).filter(WebhookEvent.provider_event_id == provider_event_id).update(
        {WebhookEvent.received_at: datetime.utcnow() - timedelta(minutes=minutes)},
        synchronize_session=False,
    )
    db.commit()


def test_unrecoverable_events_do_not_starve_newer_ones(client, db, make_enrollment, monkeypatch):
    monkeypatch.setattr(settings, "WEBHOOK_RETRY_BATCH_SIZE", 2)
    for i in range(2):
        rejected = make_enrollment(status=EnrollmentStatus.REJECTED, child_first_name=f"Rejected{i}")
        post_webhook(client, checkout_completed_event(rejected.id, session_id=f"cs_stuck_{i}", event_id=f"evt_stuck_{i}"))
        _age_event(db, f"evt_stuck_{i}", minutes=30)

    recoverable = make_enrollment(child_first_name="Recoverable")

    def failing_transition(*args, **kwargs):
        raise PersistenceError("database timed out")

    with monkeypatch.context() as m:
        m.setattr(stripe_processor, "transition", failing_transition)
        post_webhook(client, checkout_completed_event(recoverable.id, session_id="cs_good", event_id="evt_good"))
    _age_event(db, "evt_good", minutes=10)

    first = run_enrollment_health_check(db)
    second = run_enrollment_health_check(db)

    assert first["webhookRetries"] == 0
    assert second["webhookRetries"] == 1
    db.expire_all()
    assert db.get(Enrollment, recoverable.id).status == EnrollmentStatus.ACTIVE
    good = db.query(WebhookEvent).filter(WebhookEvent.provider_event_id == "evt_good").one()
    assert good.processing_status == WebhookProcessingStatus.SUCCESS


def test_events_at_attempt_limit_are_no_longer_replayed(client, db, make_enrollment, monkeypatch):
    monkeypatch.setattr(settings, "MAX_WEBHOOK_ATTEMPTS", 2)
    rejected = make_enrollment(status=EnrollmentStatus.REJECTED)
    post_webhook(client, checkout_completed_event(rejected.id))
    _age_event(db, "evt_test_123", minutes=10)

    first = run_enrollment_health_check(db)
    second = run_enrollment_health_check(db)

    assert len(first["errors"]) == 1
    assert second["errors"] == []
    assert second["webhookRetries"] == 0
    db.expire_all()
    record = db.query(WebhookEvent).one()
    assert record.processing_status == WebhookProcessingStatus.FAILED
    assert record.attempts == 2
