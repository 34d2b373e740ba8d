#!/usr/bin/env python3
"""
Collapse duplicate enrollments in the database.
Groups by (guardian_email, child_first_name, child_last_name, location_id),
keeping the most recently submitted one and cancelling the rest.
"""
import sys
import os
import argparse

# Add parent directory to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from app.db.session import SessionLocal
from app.core.errors import EnrollmentError
from app.models.activity_log import SYSTEM_ACTOR
from app.models.enrollment import Enrollment
from app.services.duplicate_enrollments import resolve_duplicate_enrollments
from sqlalchemy import func


def fix_duplicate_enrollments(dry_run: bool = False):
    db = SessionLocal()

    try:
        print("🧹 Looking for duplicate enrollments...")

        duplicates = db.query(
            Enrollment.guardian_email,
            Enrollment.child_first_name,
            Enrollment.child_last_name,
            Enrollment.location_id,
            func.count(Enrollment.id).label('count')
        ).filter(
            Enrollment.location_id.isnot(None)
        ).group_by(
            Enrollment.guardian_email,
            Enrollment.child_first_name,
            Enrollment.child_last_name,
            Enrollment.location_id
        ).having(func.count(Enrollment.id) > 1).all()

        if not duplicates:
            print("✅ No duplicate enrollments found.")
            return

        total_cancelled = 0
        total_errors = 0
        for dup in duplicates:
            print(
                f"Found {dup.count} enrollments for {dup.child_first_name} {dup.child_last_name} "
                f"({dup.guardian_email}) at location {dup.location_id}"
            )
            if dry_run:
                continue

            try:
                resolution = resolve_duplicate_enrollments(
                    db,
                    dup.guardian_email,
                    dup.child_first_name,
                    dup.child_last_name,
                    dup.location_id,
                    actor=SYSTEM_ACTOR,
                )
            except EnrollmentError as e:
                print(f"  ❌ {e.message}")
                total_errors += 1
                continue
            kept = resolution.kept_enrollment
            if kept is not None:
                print(f"  Keeping: {kept.id} (submitted: {kept.submitted_at}, status: {kept.status.value})")
            print(f"  Cancelled: {resolution.cancelled_count}")
            for error in resolution.errors:
                print(f"  ❌ {error}")

            total_cancelled += resolution.cancelled_count
            total_errors += len(resolution.errors)

        if dry_run:
            print(f"\nDry run: {len(duplicates)} duplicate groups, nothing changed")
        else:
            print(f"\n✅ Cancelled {total_cancelled} duplicate enrollments ({total_errors} errors)")

    finally:
        db.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Collapse duplicate enrollments")
    parser.add_argument("--dry-run", action="store_true", help="Only list duplicate groups")
    args = parser.parse_args()

    fix_duplicate_enrollments(dry_run=args.dry_run)
