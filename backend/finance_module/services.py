import logging
from datetime import date

from fastapi import HTTPException, status
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..communication_module.events import on_payment_confirmed, on_payment_reminder
from ..people_module.services import accessible_student_ids, ensure_student_access, get_parent, get_student
from ..rbac_module.database import paginate, utcnow
from ..rbac_module.models import AuditAction, User, UserRole
from ..rbac_module.services import get_in_school, record_audit
from .models import Payment, PaymentConcept, PaymentStatus

logger = logging.getLogger(__name__)

REMINDER_DAYS = (7, 3, 0)
OPEN_STATUSES = (PaymentStatus.PENDING, PaymentStatus.OVERDUE)


def _snapshot(payment: Payment) -> dict:
    return {
        "amount": payment.amount,
        "status": payment.status.value,
        "due_date": payment.due_date.isoformat(),
        "method": payment.method.value if payment.method else None,
    }


# --- concepts ---


def create_concept(db: Session, *, school_id: str, **fields) -> PaymentConcept:
    concept = PaymentConcept(school_id=school_id, **fields)
    db.add(concept)
    db.commit()
    db.refresh(concept)
    return concept


def list_concepts(db: Session, *, school_id: str, is_active: bool | None = None) -> list[PaymentConcept]:
    query = db.query(PaymentConcept).filter(PaymentConcept.school_id == school_id)
    if is_active is not None:
        query = query.filter(PaymentConcept.is_active.is_(is_active))
    return query.order_by(PaymentConcept.name.asc()).all()


def get_concept(db: Session, *, concept_id: str, school_id: str) -> PaymentConcept:
    return get_in_school(db, PaymentConcept, concept_id, school_id, "Payment concept")


def update_concept(db: Session, *, concept_id: str, school_id: str, changes: dict) -> PaymentConcept:
    concept = get_concept(db, concept_id=concept_id, school_id=school_id)
    for key, value in changes.items():
        setattr(concept, key, value)
    db.commit()
    db.refresh(concept)
    return concept


def deactivate_concept(db: Session, *, concept_id: str, school_id: str) -> None:
    concept = get_concept(db, concept_id=concept_id, school_id=school_id)
    concept.is_active = False
    db.commit()


# --- payments ---


def create_payment(
    db: Session,
    *,
    actor: User,
    school_id: str,
    student_id: str,
    concept_id: str,
    due_date: date,
    amount: float | None = None,
    notes: str | None = None,
) -> Payment:
    student = get_student(db, student_id=student_id, school_id=school_id)
    concept = get_concept(db, concept_id=concept_id, school_id=school_id)
    if not concept.is_active:
        raise HTTPException(status_code=400, detail="Payment concept is inactive")

    payment = Payment(
        school_id=school_id,
        student_id=student.id,
        concept_id=concept.id,
        amount=concept.amount if amount is None else amount,
        due_date=due_date,
        notes=notes,
    )
    db.add(payment)
    db.flush()
    record_audit(db, action=AuditAction.CREATE, resource="payments", resource_id=payment.id, user=actor, new_data=_snapshot(payment))
    db.refresh(payment)
    return payment


def list_payments(
    db: Session,
    *,
    user: User,
    page: int,
    limit: int,
    status: PaymentStatus | None = None,
    student_id: str | None = None,
):
    query = db.query(Payment).filter(Payment.school_id == user.school_id)
    visible = accessible_student_ids(db, user=user)
    if visible is not None:
        query = query.filter(Payment.student_id.in_(visible))
    if status:
        query = query.filter(Payment.status == status)
    if student_id:
        query = query.filter(Payment.student_id == student_id)
    return paginate(query.order_by(Payment.due_date.desc(), Payment.created_at.desc()), page=page, limit=limit)


def payment_stats(db: Session, *, school_id: str) -> dict:
    rows = (
        db.query(Payment.status, func.count(Payment.id), func.coalesce(func.sum(Payment.amount), 0))
        .filter(Payment.school_id == school_id)
        .group_by(Payment.status)
        .all()
    )
    by_status = {item: {"count": 0, "amount": 0.0} for item in PaymentStatus}
    for state, count, amount in rows:
        by_status[state] = {"count": count, "amount": round(float(amount), 2)}
    return {
        "total": sum(item["count"] for item in by_status.values()),
        "by_status": by_status,
        "collected": by_status[PaymentStatus.PAID]["amount"],
        "outstanding": round(sum(by_status[state]["amount"] for state in OPEN_STATUSES), 2),
    }


def student_payments(db: Session, *, user: User, student_id: str) -> list[Payment]:
    student = get_student(db, student_id=student_id, school_id=user.school_id)
    ensure_student_access(db, user=user, student=student)
    return db.query(Payment).filter(Payment.student_id == student.id).order_by(Payment.due_date.desc()).all()


def parent_payments(db: Session, *, user: User, parent_id: str) -> list[Payment]:
    parent = get_parent(db, parent_id=parent_id, school_id=user.school_id)
    if user.role != UserRole.ADMIN and parent.user_id != user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You cannot access this parent's payments")
    student_ids = [link.student_id for link in parent.student_links]
    return (
        db.query(Payment)
        .filter(Payment.student_id.in_(student_ids))
        .order_by(Payment.due_date.desc())
        .all()
    )


def get_payment(db: Session, *, payment_id: str, user: User) -> Payment:
    payment = get_in_school(db, Payment, payment_id, user.school_id, "Payment")
    ensure_student_access(db, user=user, student=payment.student)
    return payment


def update_payment(db: Session, *, actor: User, payment_id: str, changes: dict) -> Payment:
    payment = get_in_school(db, Payment, payment_id, actor.school_id, "Payment")
    before = _snapshot(payment)
    for key, value in changes.items():
        setattr(payment, key, value)
    if changes.get("status") == PaymentStatus.PAID and payment.paid_at is None:
        payment.paid_at = utcnow()
    record_audit(
        db,
        action=AuditAction.UPDATE,
        resource="payments",
        resource_id=payment.id,
        user=actor,
        old_data=before,
        new_data=_snapshot(payment),
    )
    db.refresh(payment)
    return payment


def delete_payment(db: Session, *, actor: User, payment_id: str) -> None:
    payment = get_in_school(db, Payment, payment_id, actor.school_id, "Payment")
    if payment.status == PaymentStatus.PAID:
        raise HTTPException(status_code=400, detail="A paid payment cannot be deleted")
    before = _snapshot(payment)
    db.delete(payment)
    record_audit(db, action=AuditAction.DELETE, resource="payments", resource_id=payment_id, user=actor, old_data=before)


def _receipt_number(payment: Payment) -> str:
    return f"REC-{utcnow():%Y%m%d}-{payment.id[:8].upper()}"


def mark_as_paid(
    db: Session,
    *,
    actor: User,
    payment_id: str,
    method,
    receipt_number: str | None = None,
    notes: str | None = None,
) -> Payment:
    payment = get_payment(db, payment_id=payment_id, user=actor)
    if payment.status == PaymentStatus.PAID:
        raise HTTPException(status_code=400, detail="This payment has already been paid")
    if payment.status == PaymentStatus.CANCELLED:
        raise HTTPException(status_code=400, detail="A cancelled payment cannot be paid")

    before = _snapshot(payment)
    payment.status = PaymentStatus.PAID
    payment.method = method
    payment.paid_at = utcnow()
    payment.receipt_number = receipt_number or _receipt_number(payment)
    if notes:
        payment.notes = notes
    db.flush()
    on_payment_confirmed(
        db,
        payment=payment,
        student_name=payment.student.user.full_name,
        concept_name=payment.concept.name,
    )
    record_audit(
        db,
        action=AuditAction.UPDATE,
        resource="payments",
        resource_id=payment.id,
        user=actor,
        old_data=before,
        new_data=_snapshot(payment),
    )
    db.refresh(payment)
    logger.info(f"Payment {payment.id} marked as paid by {actor.email} ({payment.method.value})")
    return payment


# --- scheduled jobs ---


def send_payment_reminders(db: Session, *, today: date, school_id: str | None = None) -> int:
    """Notify guardians about open payments due in 7, 3 or 0 days and about overdue ones."""
    query = db.query(Payment).filter(Payment.status.in_(OPEN_STATUSES))
    if school_id:
        query = query.filter(Payment.school_id == school_id)
    sent = 0
    for payment in query.all():
        days_until_due = (payment.due_date - today).days
        if days_until_due not in REMINDER_DAYS and days_until_due >= 0:
            continue
        sent += on_payment_reminder(
            db,
            payment=payment,
            student_name=payment.student.user.full_name,
            concept_name=payment.concept.name,
            days_until_due=days_until_due,
        )
    db.commit()
    logger.info(f"Sent {sent} payment reminders")
    return sent


def mark_overdue_payments(db: Session, *, today: date) -> int:
    updated = (
        db.query(Payment)
        .filter(Payment.status == PaymentStatus.PENDING, Payment.due_date < today)
        .update({Payment.status: PaymentStatus.OVERDUE}, synchronize_session=False)
    )
    db.commit()
    logger.info(f"Marked {updated} payments as overdue")
    return updated
