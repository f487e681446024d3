from __future__ import annotations

from datetime import date, timedelta

from backend.communication_module.events import reminder_wording
from backend.communication_module.models import Notification, NotificationType
from backend.finance_module.models import Payment, PaymentConcept, PaymentStatus
from backend.run_scheduled_jobs import run

PAYMENTS = "/api/v1/payments"


def make_concept(client, world, **overrides):
    payload = {"name": "Monthly fee", "amount": 350, "is_recurrent": True, "due_day": 10, **overrides}
    return client.post(f"{PAYMENTS}/concepts", json=payload, headers=world.admin_headers).json()


def make_payment(client, world, concept_id, **overrides):
    payload = {"student_id": world.student.id, "concept_id": concept_id, "due_date": "2026-03-10", **overrides}
    return client.post(PAYMENTS, json=payload, headers=world.admin_headers)


def test_amount_defaults_to_concept_amount(client, world):
    concept = make_concept(client, world)
    response = make_payment(client, world, concept["id"])
    assert response.status_code == 201
    body = response.json()
    assert body["amount"] == 350
    assert body["status"] == "PENDING"
    assert body["concept"]["name"] == "Monthly fee"
    assert body["student"]["student_code"] == "S001"

    assert make_payment(client, world, concept["id"], amount=120.5).json()["amount"] == 120.5


def test_inactive_concept_cannot_be_billed(client, world):
    concept = make_concept(client, world)
    client.delete(f"{PAYMENTS}/concepts/{concept['id']}", headers=world.admin_headers)
    assert make_payment(client, world, concept["id"]).status_code == 400


def test_payment_for_another_school_is_forbidden(client, world, other_world):
    concept = make_concept(client, world)
    response = make_payment(client, world, concept["id"], school_id=other_world.school.id)
    assert response.status_code == 403
    concept = make_concept(client, world)
    other_student = make_payment(client, world, concept["id"], student_id=other_world.student.id)
    assert other_student.status_code == 404


def test_parent_pays_and_is_notified(client, db, world):
    concept = make_concept(client, world)
    payment_id = make_payment(client, world, concept["id"]).json()["id"]

    response = client.post(f"{PAYMENTS}/{payment_id}/pay", json={"method": "CARD"}, headers=world.parent_headers)
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "PAID"
    assert body["method"] == "CARD"
    assert body["paid_at"] is not None
    assert body["receipt_number"].startswith("REC-")

    db.expire_all()
    titles = {n.user_id: n.title for n in db.query(Notification)}
    assert titles == {world.parent_user.id: "Payment confirmed", world.admin.id: "Payment received"}

    logs = client.get(f"/api/v1/audit-logs/resource/payments/{payment_id}", headers=world.admin_headers).json()
    assert sorted(entry["action"] for entry in logs["data"]) == ["CREATE", "UPDATE"]


def test_paid_payment_cannot_be_paid_or_deleted(client, world):
    concept = make_concept(client, world)
    payment_id = make_payment(client, world, concept["id"]).json()["id"]
    client.post(f"{PAYMENTS}/{payment_id}/pay", json={"method": "CASH", "receipt_number": "R-1"}, headers=world.admin_headers)

    again = client.post(f"{PAYMENTS}/{payment_id}/pay", json={"method": "CASH"}, headers=world.admin_headers)
    assert again.status_code == 400
    assert again.json()["error"]["message"] == "This payment has already been paid"
    assert client.delete(f"{PAYMENTS}/{payment_id}", headers=world.admin_headers).status_code == 400


def test_cancelled_payment_cannot_be_paid(client, world):
    concept = make_concept(client, world)
    payment_id = make_payment(client, world, concept["id"]).json()["id"]
    client.patch(f"{PAYMENTS}/{payment_id}", json={"status": "CANCELLED"}, headers=world.admin_headers)
    response = client.post(f"{PAYMENTS}/{payment_id}/pay", json={"method": "CASH"}, headers=world.parent_headers)
    assert response.status_code == 400


def test_parents_only_see_their_children(client, db, world, other_world):
    concept = make_concept(client, world)
    make_payment(client, world, concept["id"])
    assert client.get(PAYMENTS, headers=world.parent_headers).json()["meta"]["total"] == 1

    stranger_parent = other_world.parent
    assert client.get(f"{PAYMENTS}/parent/{world.parent.id}", headers=world.parent_headers).status_code == 200
    assert client.get(f"{PAYMENTS}/parent/{stranger_parent.id}", headers=world.parent_headers).status_code == 404
    assert client.get(PAYMENTS, headers=world.teacher_headers).status_code == 403
    assert client.get(PAYMENTS, headers=other_world.parent_headers).json()["meta"]["total"] == 0


def test_stats_split_collected_and_outstanding(client, world):
    concept = make_concept(client, world)
    paid = make_payment(client, world, concept["id"]).json()["id"]
    make_payment(client, world, concept["id"], amount=100)
    client.post(f"{PAYMENTS}/{paid}/pay", json={"method": "TRANSFER"}, headers=world.admin_headers)

    stats = client.get(f"{PAYMENTS}/stats", headers=world.admin_headers).json()
    assert stats["total"] == 2
    assert stats["collected"] == 350
    assert stats["outstanding"] == 100
    assert stats["by_status"]["PENDING"] == {"count": 1, "amount": 100.0}
    assert stats["by_status"]["CANCELLED"]["count"] == 0


def test_reminder_wording():
    assert reminder_wording(7, "Monthly fee") == ("Monthly fee is due in 7 days", NotificationType.INFO)
    assert reminder_wording(3, "Monthly fee") == ("Monthly fee is due in 3 days", NotificationType.WARNING)
    assert reminder_wording(0, "Monthly fee") == ("Monthly fee is due today", NotificationType.WARNING)
    assert reminder_wording(-2, "Monthly fee") == ("Monthly fee is overdue", NotificationType.ERROR)


def test_scheduled_jobs_remind_and_mark_overdue(db, world):
    today = date(2026, 5, 15)
    concept = PaymentConcept(school_id=world.school.id, name="Monthly fee", amount=350)
    db.add(concept)
    db.flush()
    for offset in (7, 3, 1, 0, -4):
        db.add(
            Payment(
                school_id=world.school.id,
                student_id=world.student.id,
                concept_id=concept.id,
                amount=350,
                due_date=today + timedelta(days=offset),
            )
        )
    db.add(
        Payment(
            school_id=world.school.id,
            student_id=world.student.id,
            concept_id=concept.id,
            amount=350,
            due_date=today + timedelta(days=3),
            status=PaymentStatus.PAID,
        )
    )
    db.commit()

    summary = run(db, today=today, notification_days=30, audit_days=365)
    assert summary["reminders"] == 4
    assert summary["overdue"] == 1

    db.expire_all()
    titles = sorted(n.title for n in db.query(Notification).filter(Notification.user_id == world.parent_user.id))
    assert titles == [
        "Monthly fee is due in 3 days",
        "Monthly fee is due in 7 days",
        "Monthly fee is due today",
        "Monthly fee is overdue",
    ]
    overdue = db.query(Payment).filter(Payment.status == PaymentStatus.OVERDUE).one()
    assert overdue.due_date == today - timedelta(days=4)
