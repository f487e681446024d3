"""Daily maintenance: payment reminders, overdue marking and retention cleanup.

Meant for cron, e.g. ``python -m backend.run_scheduled_jobs``.
"""

import argparse
import logging
from datetime import date

from backend.communication_module.notifications import delete_old_notifications
from backend.finance_module.services import mark_overdue_payments, send_payment_reminders
from backend.main import app  # noqa: F401  registers every table
from backend.rbac_module.config import settings
from backend.rbac_module.database import SessionLocal
from backend.rbac_module.models import School
from backend.rbac_module.services import cleanup_audit_logs

logger = logging.getLogger("run_scheduled_jobs")


def run(db, *, today: date, notification_days: int, audit_days: int) -> dict:
    summary = {
        "reminders": send_payment_reminders(db, today=today),
        "overdue": mark_overdue_payments(db, today=today),
        "notifications_deleted": delete_old_notifications(db, days_old=notification_days),
        "audit_logs_deleted": 0,
    }
    for school in db.query(School).all():
        summary["audit_logs_deleted"] += cleanup_audit_logs(db, school_id=school.id, days_old=audit_days)
    return summary


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="Run the daily school platform jobs")
    parser.add_argument("--date", type=date.fromisoformat, default=date.today(), help="Pretend today is YYYY-MM-DD")
    parser.add_argument("--notification-days", type=int, default=settings.notification_retention_days)
    parser.add_argument("--audit-days", type=int, default=settings.audit_retention_days)
    args = parser.parse_args(argv)

    db = SessionLocal()
    try:
        summary = run(db, today=args.date, notification_days=args.notification_days, audit_days=args.audit_days)
    finally:
        db.close()
    logger.info(f"Scheduled jobs finished: {summary}")


if __name__ == "__main__":
    main()
