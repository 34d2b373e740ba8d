"""Duplicate enrollment merge tests"""
import uuid
from datetime import datetime, timedelta

import pytest

from app.core.errors import PersistenceError
from app.core.security import create_access_token
from app.models.activity_log import ActivityLog
from app.models.enrollment import Enrollment, EnrollmentStatus
from app.services import duplicate_enrollments
from app.services.duplicate_enrollments import DUPLICATE_CANCELLATION_REASON, resolve_duplicate_enrollments


@pytest.fixture
def location_id():
    return uuid.uuid4()


@pytest.fixture
def make_duplicates(make_enrollment, location_id):
    def _make(count, **kwargs):
        now = datetime.utcnow()
        # Oldest first; the last one is the most recently submitted
        return [
            make_enrollment(location_id=location_id, submitted_at=now - timedelta(hours=count - i), **kwargs)
            for i in range(count)
        ]

    return _make


def _fix_duplicate_body(location_id, **overrides):
    body = {
        "guardianEmail": "alice@example.com",
        "childFirstName": "Gracie",
        "childLastName": "Doe",
        "locationId": str(location_id),
    }
    body.update(overrides)
    return body


def test_merge_keeps_most_recent_submission(client, db, admin_headers, make_duplicates, location_id):
    older, newer = make_duplicates(2)

    response = client.post(
        "/admin/enrollments/fix-duplicate",
        json=_fix_duplicate_body(location_id),
        headers=admin_headers,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Fixed 1 duplicate enrollments"
    assert body["cancelledEnrollments"] == 1
    assert body["keepEnrollment"]["id"] == str(newer.id)
    assert body["errors"] == []
    db.expire_all()
    cancelled = db.get(Enrollment, older.id)
    assert cancelled.status == EnrollmentStatus.CANCELLED
    assert cancelled.cancellation_reason == DUPLICATE_CANCELLATION_REASON
    assert db.get(Enrollment, newer.id).status == EnrollmentStatus.PENDING

    entry = db.query(ActivityLog).filter(ActivityLog.entity_id == str(older.id)).one()
    assert entry.actor == "admin@example.com"
    assert entry.details["detail"] == {"mergedInto": str(newer.id)}


def test_merge_activates_kept_enrollment_with_checkout_reference(db, make_enrollment, location_id):
    now = datetime.utcnow()
    make_enrollment(location_id=location_id, submitted_at=now - timedelta(hours=2))
    kept = make_enrollment(location_id=location_id, submitted_at=now, checkout_reference="cs_paid")

    resolution = resolve_duplicate_enrollments(db, "alice@example.com", "Gracie", "Doe", location_id, "admin@example.com")

    assert resolution.kept_enrollment.id == kept.id
    assert resolution.kept_enrollment.status == EnrollmentStatus.ACTIVE
    assert resolution.kept_enrollment.paid is True


def test_merge_of_three_leaves_one_live_enrollment(db, make_duplicates, location_id):
    enrollments = make_duplicates(3)

    resolution = resolve_duplicate_enrollments(db, "alice@example.com", "Gracie", "Doe", location_id, "admin@example.com")

    assert resolution.cancelled_count == 2
    db.expire_all()
    live = db.query(Enrollment).filter(Enrollment.status != EnrollmentStatus.CANCELLED).all()
    assert [e.id for e in live] == [enrollments[-1].id]


def test_single_match_is_noop(client, db, admin_headers, make_enrollment, location_id):
    only = make_enrollment(location_id=location_id)

    response = client.post(
        "/admin/enrollments/fix-duplicate",
        json=_fix_duplicate_body(location_id),
        headers=admin_headers,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "No duplicate enrollments found"
    assert body["cancelledEnrollments"] == 0
    assert [e["id"] for e in body["enrollments"]] == [str(only.id)]
    db.expire_all()
    assert db.get(Enrollment, only.id).status == EnrollmentStatus.PENDING


def test_no_match_is_noop(client, admin_headers, location_id):
    response = client.post(
        "/admin/enrollments/fix-duplicate",
        json=_fix_duplicate_body(location_id),
        headers=admin_headers,
    )

    assert response.status_code == 200
    assert response.json()["message"] == "No duplicate enrollments found"
    assert response.json()["keepEnrollment"] is None


def test_other_children_are_not_merged(db, make_enrollment, location_id):
    make_enrollment(location_id=location_id)
    sibling = make_enrollment(location_id=location_id, child_first_name="Hazel")

    resolution = resolve_duplicate_enrollments(db, "alice@example.com", "Gracie", "Doe", location_id, "admin@example.com")

    assert resolution.has_duplicates is False
    db.expire_all()
    assert db.get(Enrollment, sibling.id).status == EnrollmentStatus.PENDING


@pytest.mark.parametrize("missing", ["guardianEmail", "childFirstName", "childLastName", "locationId"])
def test_missing_fields_rejected(client, admin_headers, location_id, missing):
    body = _fix_duplicate_body(location_id)
    del body[missing]

    response = client.post("/admin/enrollments/fix-duplicate", json=body, headers=admin_headers)

    assert response.status_code == 400
    assert "Missing required fields" in response.json()["detail"]


def test_invalid_location_rejected(client, admin_headers):
    response = client.post(
        "/admin/enrollments/fix-duplicate",
        json=_fix_duplicate_body("not-a-uuid"),
        headers=admin_headers,
    )

    assert response.status_code == 400


def test_partial_failure_is_reported(db, make_duplicates, location_id, monkeypatch):
    first, second, kept = make_duplicates(3)
    real_transition = duplicate_enrollments.transition

    def flaky_transition(db, enrollment_id, *args, **kwargs):
        if enrollment_id == first.id:
            raise PersistenceError("database timed out")
        return real_transition(db, enrollment_id, *args, **kwargs)

    monkeypatch.setattr(duplicate_enrollments, "transition", flaky_transition)

    resolution = resolve_duplicate_enrollments(db, "alice@example.com", "Gracie", "Doe", location_id, "admin@example.com")

    assert resolution.cancelled_count == 1
    assert resolution.errors == [f"Failed to cancel enrollment {first.id}: database timed out"]
    db.expire_all()
    assert db.get(Enrollment, second.id).status == EnrollmentStatus.CANCELLED
    assert db.get(Enrollment, first.id).status == EnrollmentStatus.PENDING


def test_terminal_duplicates_are_left_alone(db, make_enrollment, location_id):
    now = datetime.utcnow()
    rejected = make_enrollment(location_id=location_id, status=EnrollmentStatus.REJECTED, submitted_at=now - timedelta(hours=3))
    pending = make_enrollment(location_id=location_id, submitted_at=now - timedelta(hours=2))
    make_enrollment(location_id=location_id, submitted_at=now)

    resolution = resolve_duplicate_enrollments(db, "alice@example.com", "Gracie", "Doe", location_id, "admin@example.com")

    assert resolution.cancelled_count == 1
    assert resolution.errors == []
    db.expire_all()
    assert db.get(Enrollment, rejected.id).status == EnrollmentStatus.REJECTED
    assert db.get(Enrollment, pending.id).status == EnrollmentStatus.CANCELLED


def test_fix_duplicate_requires_token(client, location_id):
    response = client.post("/admin/enrollments/fix-duplicate", json=_fix_duplicate_body(location_id))

    assert response.status_code == 401


def test_fix_duplicate_requires_admin(client, location_id):
    headers = {"Authorization": f"Bearer {create_access_token('parent@example.com')}"}

    response = client.post("/admin/enrollments/fix-duplicate", json=_fix_duplicate_body(location_id), headers=headers)

    assert response.status_code == 403


def test_database_timeout_reloading_kept_enrollment_is_reported(db, make_duplicates, location_id, failing_reads):
    older, newer = make_duplicates(2)
    failing_reads.add(newer.id)

    resolution = resolve_duplicate_enrollments(db, "alice@example.com", "Gracie", "Doe", location_id, "admin@example.com")

    failing_reads.clear()
    assert resolution.cancelled_count == 1
    assert len(resolution.errors) == 1
    assert resolution.errors[0].startswith(f"Failed to reload kept enrollment {newer.id}")
    db.expire_all()
    assert db.get(Enrollment, older.id).status == EnrollmentStatus.CANCELLED
    assert db.get(Enrollment, newer.id).status == EnrollmentStatus.PENDING


def test_database_timeout_finding_matches_returns_503(client, admin_headers, make_duplicates, location_id, failing_reads):
    make_duplicates(2)
    failing_reads.add("alice@example.com")

    response = client.post(
        "/admin/enrollments/fix-duplicate",
        json=_fix_duplicate_body(location_id),
        headers=admin_headers,
    )

    failing_reads.clear()
    assert response.status_code == 503
    assert response.json()["detail"].startswith("Failed to look up matching enrollments")
