"""Notifications raised by other modules when something happens in the school."""

import logging

from sqlalchemy.orm import Session

from ..people_module.services import parent_user_ids_for_student
from ..rbac_module.models import User, UserRole
from .models import NotificationType
from .notifications import dispatch

logger = logging.getLogger(__name__)

ATTENDANCE_TYPES = {
    "PRESENT": NotificationType.SUCCESS,
    "LATE": NotificationType.WARNING,
    "ABSENT": NotificationType.ERROR,
    "EXCUSED": NotificationType.INFO,
}

ATTENDANCE_WORDING = {
    "PRESENT": "was present",
    "LATE": "arrived late",
    "ABSENT": "was absent",
    "EXCUSED": "has an excused absence",
}


def admin_user_ids(db: Session, school_id: str, exclude: str | None = None) -> list[str]:
    query = db.query(User.id).filter(
        User.school_id == school_id,
        User.role == UserRole.ADMIN,
        User.is_active.is_(True),
        User.deleted_at.is_(None),
    )
    if exclude:
        query = query.filter(User.id != exclude)
    return [row[0] for row in query.all()]


def on_attendance_marked(db: Session, *, attendance, student_name: str) -> int:
    status_key = attendance.status.value
    day = attendance.date.isoformat()
    metadata = {
        "attendance_id": attendance.id,
        "student_id": attendance.student_id,
        "status": status_key,
        "date": day,
    }
    sent = dispatch(
        db,
        school_id=attendance.school_id,
        user_ids=parent_user_ids_for_student(db, attendance.student_id),
        title="Attendance recorded",
        message=f"{student_name} {ATTENDANCE_WORDING[status_key]} on {day}",
        type=ATTENDANCE_TYPES[status_key],
        link="/attendance",
        metadata=metadata,
        commit=False,
    )
    sent += dispatch(
        db,
        school_id=attendance.school_id,
        user_ids=admin_user_ids(db, attendance.school_id),
        title="Attendance recorded",
        message=f"{student_name}: {status_key} on {day}",
        type=ATTENDANCE_TYPES[status_key],
        link="/attendance",
        metadata=metadata,
        commit=False,
    )
    return sent


def on_payment_confirmed(db: Session, *, payment, student_name: str, concept_name: str) -> int:
    metadata = {"payment_id": payment.id, "student_id": payment.student_id, "amount": float(payment.amount)}
    sent = dispatch(
        db,
        school_id=payment.school_id,
        user_ids=parent_user_ids_for_student(db, payment.student_id),
        title="Payment confirmed",
        message=f"Payment of {payment.amount:.2f} for {concept_name} ({student_name}) was confirmed",
        type=NotificationType.SUCCESS,
        link="/payments",
        metadata=metadata,
        commit=False,
    )
    sent += dispatch(
        db,
        school_id=payment.school_id,
        user_ids=admin_user_ids(db, payment.school_id),
        title="Payment received",
        message=f"{student_name} paid {payment.amount:.2f} for {concept_name}",
        type=NotificationType.INFO,
        link="/payments",
        metadata=metadata,
        commit=False,
    )
    return sent


def reminder_wording(days_until_due: int, concept_name: str) -> tuple[str, NotificationType]:
    if days_until_due > 0:
        kind = NotificationType.WARNING if days_until_due <= 3 else NotificationType.INFO
        return f"{concept_name} is due in {days_until_due} days", kind
    if days_until_due == 0:
        return f"{concept_name} is due today", NotificationType.WARNING
    return f"{concept_name} is overdue", NotificationType.ERROR


def on_payment_reminder(db: Session, *, payment, student_name: str, concept_name: str, days_until_due: int) -> int:
    title, kind = reminder_wording(days_until_due, concept_name)
    return dispatch(
        db,
        school_id=payment.school_id,
        user_ids=parent_user_ids_for_student(db, payment.student_id),
        title=title,
        message=f"{concept_name} for {student_name}: {payment.amount:.2f} due on {payment.due_date.isoformat()}",
        type=kind,
        link="/payments",
        metadata={"payment_id": payment.id, "days_until_due": days_until_due},
        commit=False,
    )


def on_new_message(db: Session, *, conversation, message, recipients: list[str]) -> int:
    preview = message.content if len(message.content) <= 50 else f"{message.content[:50]}..."
    user_ids = [uid for uid in recipients if uid != message.sender_id]
    user_ids += admin_user_ids(db, conversation.school_id, exclude=message.sender_id)
    sent = dispatch(
        db,
        school_id=conversation.school_id,
        user_ids=user_ids,
        title=f"New message from {message.sender_name}",
        message=preview,
        type=NotificationType.INFO,
        link=f"/messages/{conversation.id}",
        metadata={"conversation_id": conversation.id, "message_id": message.id},
        commit=False,
    )
    logger.info(f"Message {message.id} fanned out to {sent} users")
    return sent
