from __future__ import annotations

from datetime import date, timedelta

import pytest

from backend.communication_module.models import Notification
from backend.people_module.models import Student, Teacher
from backend.rbac_module.models import UserRole

from .conftest import headers_for, make_user

GRADES = "/api/v1/grades"
ATTENDANCE = "/api/v1/attendance"


def grade(client, world, headers=None, **overrides):
    payload = {"student_id": world.student.id, "course_id": world.course.id, "value": 15, "period": 1, "type": "exam"}
    payload.update(overrides)
    return client.post(GRADES, json=payload, headers=headers or world.teacher_headers)


# --- grades ---


@pytest.mark.parametrize("value,letter", [(0, "C"), (10.5, "C"), (11, "B"), (14, "A"), (17.9, "A"), (18, "AD"), (20, "AD")])
def test_grade_letter_follows_value(client, world, value, letter):
    response = grade(client, world, value=value)
    assert response.status_code == 201
    assert response.json()["letter"] == letter


@pytest.mark.parametrize("value", [-1, 20.5, 21])
def test_grade_value_outside_scale_is_rejected(client, world, value):
    response = grade(client, world, value=value)
    assert response.status_code == 400
    assert response.json()["error"]["details"][0]["field"] == "value"


@pytest.mark.parametrize("field,value", [("period", 0), ("period", 5), ("type", "quiz"), ("letter", "Z")])
def test_grade_other_fields_are_validated(client, world, field, value):
    assert grade(client, world, **{field: value}).status_code == 400


def test_explicit_letter_must_match_value(client, world):
    assert grade(client, world, value=12, letter="B").json()["letter"] == "B"
    response = grade(client, world, value=8, letter="AD")
    assert response.status_code == 400
    assert response.json()["error"]["message"] == "Letter AD does not match value 8.0 (expected C)"


def test_student_must_be_enrolled(client, db, world):
    user = make_user(db, world.school, UserRole.STUDENT, "new.student@sch001.test")
    other = Student(school_id=world.school.id, user_id=user.id, student_code="S002", grade_section_id=world.section.id)
    db.add(other)
    db.commit()
    response = grade(client, world, student_id=other.id)
    assert response.status_code == 400


def test_teacher_can_only_grade_own_courses(client, db, world):
    user = make_user(db, world.school, UserRole.TEACHER, "substitute@sch001.test")
    db.add(Teacher(school_id=world.school.id, user_id=user.id))
    db.commit()
    assert grade(client, world, headers=headers_for(user)).status_code == 403
    assert grade(client, world, headers=world.admin_headers).status_code == 201


def test_parents_and_students_cannot_grade(client, world):
    assert grade(client, world, headers=world.parent_headers).status_code == 403
    assert grade(client, world, headers=world.student_headers).status_code == 403


def test_update_recalculates_letter(client, world):
    grade_id = grade(client, world, value=12).json()["id"]
    response = client.patch(f"{GRADES}/{grade_id}", json={"value": 19}, headers=world.teacher_headers)
    assert response.json()["letter"] == "AD"
    response = client.patch(f"{GRADES}/{grade_id}", json={"period": 2, "comment": "Retake"}, headers=world.teacher_headers)
    assert response.json()["letter"] == "AD"
    assert client.patch(f"{GRADES}/{grade_id}", json={"value": 25}, headers=world.teacher_headers).status_code == 400


def test_student_report_and_course_stats(client, world):
    grade(client, world, value=12, period=1)
    grade(client, world, value=16, period=1)
    grade(client, world, value=8, period=2, type="task")

    report = client.get(f"{GRADES}/student/{world.student.id}/report", headers=world.parent_headers).json()
    course = report["courses"][0]
    assert course["subject"] == "Mathematics"
    assert course["period_averages"] == {"1": 14.0, "2": 8.0}
    assert course["average"] == 12.0
    assert course["letter"] == "B"
    assert report["overall_average"] == 12.0

    stats = client.get(f"{GRADES}/course/{world.course.id}/stats", headers=world.teacher_headers).json()
    assert stats["total"] == 3
    assert stats["max"] == 16
    assert stats["min"] == 8
    assert stats["pass_rate"] == 66.67
    assert stats["letters"] == {"AD": 0, "A": 1, "B": 1, "C": 1}


def test_report_letter_follows_rounded_average(client, world):
    for value in (14, 14, 13.988):
        grade(client, world, value=value)
    report = client.get(f"{GRADES}/student/{world.student.id}/report", headers=world.teacher_headers).json()
    course = report["courses"][0]
    assert course["average"] == 14.0
    assert course["letter"] == "A"
    assert report["overall_average"] == 14.0
    assert report["overall_letter"] == "A"


def test_grade_visibility_for_students(client, db, world, other_world):
    grade(client, world)
    own = client.get(GRADES, headers=world.student_headers).json()
    assert own["meta"]["total"] == 1

    user = make_user(db, world.school, UserRole.STUDENT, "classmate@sch001.test")
    db.add(Student(school_id=world.school.id, user_id=user.id, student_code="S003"))
    db.commit()
    assert client.get(GRADES, headers=headers_for(user)).json()["meta"]["total"] == 0
    assert client.get(f"{GRADES}/student/{world.student.id}", headers=headers_for(user)).status_code == 403
    assert client.get(f"{GRADES}/student/{world.student.id}", headers=other_world.admin_headers).status_code == 404


# --- attendance ---


def mark(client, world, day=None, status="PRESENT", headers=None):
    payload = {
        "student_id": world.student.id,
        "grade_section_id": world.section.id,
        "date": (day or date.today()).isoformat(),
        "status": status,
    }
    return client.post(ATTENDANCE, json=payload, headers=headers or world.teacher_headers)


def test_attendance_is_unique_per_student_and_day(client, world):
    assert mark(client, world).status_code == 201
    assert mark(client, world, status="LATE").status_code == 409


def test_attendance_in_the_future_is_rejected(client, world):
    assert mark(client, world, day=date.today() + timedelta(days=1)).status_code == 400


def test_attendance_requires_student_in_section(client, db, world):
    user = make_user(db, world.school, UserRole.STUDENT, "floating@sch001.test")
    floating = Student(school_id=world.school.id, user_id=user.id, student_code="S009")
    db.add(floating)
    db.commit()
    payload = {"student_id": floating.id, "grade_section_id": world.section.id, "date": date.today().isoformat(), "status": "ABSENT"}
    assert client.post(ATTENDANCE, json=payload, headers=world.teacher_headers).status_code == 400


def test_marking_attendance_notifies_parents_and_admins(client, db, world):
    mark(client, world, status="ABSENT")
    db.expire_all()
    notified = {n.user_id: n.type.value for n in db.query(Notification)}
    assert notified == {world.parent_user.id: "ERROR", world.admin.id: "ERROR"}


def test_mark_all_upserts(client, world):
    today = date.today().isoformat()
    payload = {"grade_section_id": world.section.id, "date": today, "records": [{"student_id": world.student.id, "status": "LATE"}]}
    first = client.post(f"{ATTENDANCE}/mark-all", json=payload, headers=world.teacher_headers)
    assert first.json() == {"created": 1, "updated": 0}

    payload["records"][0]["status"] = "PRESENT"
    second = client.post(f"{ATTENDANCE}/mark-all", json=payload, headers=world.teacher_headers)
    assert second.json() == {"created": 0, "updated": 1}

    roster = client.get(f"{ATTENDANCE}/section/{world.section.id}", params={"date": today}, headers=world.teacher_headers).json()
    assert len(roster) == 1
    assert roster[0]["attendance"]["status"] == "PRESENT"


def test_mark_all_rejects_repeated_students(client, world):
    records = [{"student_id": world.student.id, "status": "PRESENT"}, {"student_id": world.student.id, "status": "ABSENT"}]
    payload = {"grade_section_id": world.section.id, "date": date.today().isoformat(), "records": records}
    response = client.post(f"{ATTENDANCE}/mark-all", json=payload, headers=world.teacher_headers)
    assert response.status_code == 400
    assert response.json()["error"]["message"] == "Validation failed"
    summary = client.get(f"{ATTENDANCE}/summary/{world.student.id}", headers=world.teacher_headers).json()
    assert summary["total"] == 0


def test_attendance_summary_rate(client, world):
    today = date.today()
    for offset, status in enumerate(["PRESENT", "LATE", "ABSENT", "EXCUSED", "ABSENT", "PRESENT"]):
        assert mark(client, world, day=today - timedelta(days=offset), status=status).status_code == 201

    summary = client.get(f"{ATTENDANCE}/summary/{world.student.id}", headers=world.parent_headers).json()
    assert summary["total"] == 6
    assert summary["absent"] == 2
    assert summary["attendance_rate"] == 66.67

    recent = client.get(
        f"{ATTENDANCE}/summary/{world.student.id}",
        params={"start_date": (today - timedelta(days=1)).isoformat()},
        headers=world.parent_headers,
    ).json()
    assert recent["total"] == 2
    assert recent["attendance_rate"] == 100.0


def test_empty_summary_has_zero_rate(client, world):
    summary = client.get(f"{ATTENDANCE}/summary/{world.student.id}", headers=world.admin_headers).json()
    assert summary["total"] == 0
    assert summary["attendance_rate"] == 0.0
