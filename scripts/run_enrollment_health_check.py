#!/usr/bin/env python3
"""
Run the enrollment reconciliation sweep once from the command line.
Same work as POST /cron/enrollment-health, without the HTTP layer.
"""
import sys
import os

# Add parent directory to path to import app modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.db.session import SessionLocal
from app.services.enrollment_reconciliation import run_enrollment_health_check


def main() -> int:
    db = SessionLocal()
    try:
        fixes = run_enrollment_health_check(db)
    finally:
        db.close()

    print("=" * 60)
    print("Enrollment Health Check")
    print("=" * 60)
    print(f"  Payment status synced: {fixes['paymentStatusSync']}")
    print(f"  Stale pending flagged: {fixes['stalePending']}")
    print(f"  Webhook retries:       {fixes['webhookRetries']}")

    if fixes["errors"]:
        print(f"\n⚠️  {len(fixes['errors'])} errors:")
        for error in fixes["errors"]:
            print(f"  - {error}")
        return 1

    print("\n✅ No errors")
    return 0


if __name__ == "__main__":
    sys.exit(main())
