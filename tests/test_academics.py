from __future__ import annotations

from backend.people_module.models import Student, Teacher
from backend.rbac_module.models import UserRole

from .conftest import headers_for, make_user

SCHEDULES = "/api/v1/schedules"
CURRICULUM = "/api/v1/curriculum"


def slot(client, world, day=1, start="08:00", end="09:30", headers=None):
    payload = {
        "course_id": world.course.id,
        "grade_section_id": world.section.id,
        "day_of_week": day,
        "start_time": start,
        "end_time": end,
        "room": "101",
    }
    return client.post(SCHEDULES, json=payload, headers=headers or world.admin_headers)


def test_overlapping_schedule_is_a_conflict(client, world):
    assert slot(client, world).status_code == 201
    response = slot(client, world, start="09:00", end="10:00")
    assert response.status_code == 409
    assert response.json()["error"]["message"] == "Schedule conflicts with 08:00-09:30 on Monday"


def test_adjacent_and_other_day_slots_are_fine(client, world):
    assert slot(client, world).status_code == 201
    assert slot(client, world, start="09:30", end="10:15").status_code == 201
    assert slot(client, world, day=2).status_code == 201

    grouped = client.get(f"{SCHEDULES}/section/{world.section.id}", headers=world.student_headers).json()
    assert sorted(grouped) == ["1", "2"]
    assert [entry["start_time"] for entry in grouped["1"]] == ["08:00", "09:30"]


def test_times_are_normalized_and_ordered(client, world):
    response = slot(client, world, start="8:00", end="9:00")
    assert response.status_code == 201
    assert response.json()["start_time"] == "08:00"
    assert slot(client, world, day=3, start="10:00", end="09:00").status_code == 400
    assert slot(client, world, day=3, start="25:00", end="26:00").status_code == 400


def test_moving_a_slot_onto_another_is_a_conflict(client, world):
    slot(client, world)
    later = slot(client, world, start="10:00", end="11:00").json()
    response = client.patch(f"{SCHEDULES}/{later['id']}", json={"start_time": "09:00"}, headers=world.admin_headers)
    assert response.status_code == 409


def test_only_admins_manage_schedules(client, world):
    assert slot(client, world, headers=world.teacher_headers).status_code == 403


def test_teacher_schedule_lists_own_courses(client, world):
    slot(client, world, day=4)
    grouped = client.get(f"{SCHEDULES}/teacher/{world.teacher.id}", headers=world.teacher_headers).json()
    assert list(grouped) == ["4"]
    assert grouped["4"][0]["course"]["id"] == world.course.id


def test_subject_codes_are_unique_and_validated(client, world):
    payload = {"name": "Mathematics", "code": "MAT1"}
    assert client.post("/api/v1/subjects", json=payload, headers=world.admin_headers).status_code == 409
    payload["code"] = "mat-2"
    assert client.post("/api/v1/subjects", json=payload, headers=world.admin_headers).status_code == 400


def test_duplicate_grade_section_is_rejected(client, world):
    payload = {"grade": 1, "section": "A", "academic_year_id": world.year.id}
    assert client.post("/api/v1/grade-sections", json=payload, headers=world.admin_headers).status_code == 409
    payload["section"] = "B"
    assert client.post("/api/v1/grade-sections", json=payload, headers=world.admin_headers).status_code == 201


def test_enrolling_twice_is_a_conflict(client, world):
    payload = {"student_id": world.student.id, "course_id": world.course.id}
    assert client.post("/api/v1/enrollments", json=payload, headers=world.admin_headers).status_code == 409


def test_set_current_academic_year(client, world):
    payload = {"name": "2027", "start_date": "2027-01-01", "end_date": "2027-12-31"}
    created = client.post("/api/v1/academic-years", json=payload, headers=world.admin_headers).json()
    assert created["is_current"] is False

    client.post(f"/api/v1/academic-years/{created['id']}/set-current", headers=world.admin_headers)
    current = client.get("/api/v1/academic-years/current", headers=world.parent_headers).json()
    assert current["id"] == created["id"]
    years = client.get("/api/v1/academic-years", headers=world.admin_headers).json()
    assert sum(1 for year in years if year["is_current"]) == 1


def test_academic_year_dates_must_be_ordered(client, world):
    payload = {"name": "2028", "start_date": "2028-12-31", "end_date": "2028-01-01"}
    response = client.post("/api/v1/academic-years", json=payload, headers=world.admin_headers)
    assert response.status_code == 400


def test_resources_of_another_school_are_not_found(client, world, other_world):
    assert client.get(f"/api/v1/courses/{world.course.id}", headers=other_world.admin_headers).status_code == 404
    assert client.get(f"/api/v1/grade-sections/{world.section.id}", headers=other_world.admin_headers).status_code == 404
    listing = client.get("/api/v1/courses", headers=other_world.admin_headers).json()
    assert [course["id"] for course in listing["data"]] == [other_world.course.id]


def test_levels_are_unique_and_ordered(client, world):
    for name, order in (("Secondary", 2), ("Primary", 1), ("Kindergarten", 0)):
        response = client.post("/api/v1/levels", json={"name": name, "order": order}, headers=world.admin_headers)
        assert response.status_code == 201
    duplicate = client.post("/api/v1/levels", json={"name": "Primary", "order": 5}, headers=world.admin_headers)
    assert duplicate.status_code == 409

    levels = client.get("/api/v1/levels", headers=world.teacher_headers).json()
    assert [level["name"] for level in levels] == ["Kindergarten", "Primary", "Secondary"]
    assert client.get("/api/v1/levels", headers=world.parent_headers).status_code == 403
    assert client.post("/api/v1/levels", json={"name": "Other"}, headers=world.teacher_headers).status_code == 403


def test_enroll_section_skips_enrolled_and_inactive_students(client, db, world):
    for code, active in (("S002", True), ("S003", True), ("S004", False)):
        user = make_user(db, world.school, UserRole.STUDENT, f"{code.lower()}@sch001.test")
        db.add(
            Student(
                school_id=world.school.id,
                user_id=user.id,
                student_code=code,
                grade_section_id=world.section.id,
                is_active=active,
            )
        )
    db.commit()

    response = client.post(f"/api/v1/courses/{world.course.id}/enroll-section", headers=world.admin_headers)
    assert response.status_code == 200
    assert response.json() == {"enrolled": 2, "skipped": 1}
    again = client.post(f"/api/v1/courses/{world.course.id}/enroll-section", headers=world.admin_headers)
    assert again.json() == {"enrolled": 0, "skipped": 3}

    roster = client.get(f"/api/v1/courses/{world.course.id}/students", headers=world.teacher_headers).json()
    assert [student["student_code"] for student in roster] == ["S001", "S002", "S003"]
    assert client.post(f"/api/v1/courses/{world.course.id}/enroll-section", headers=world.teacher_headers).status_code == 403


def topic(client, world, headers=None, **overrides):
    payload = {"course_id": world.course.id, "unit": 1, "title": "Fractions", "month": 3, **overrides}
    return client.post(CURRICULUM, json=payload, headers=headers or world.teacher_headers)


def test_teacher_plans_curriculum_for_own_course(client, world):
    created = topic(client, world, objectives=["Compare fractions"])
    assert created.status_code == 201
    body = created.json()
    assert body["teacher_id"] == world.teacher.id
    assert body["status"] == "PLANNED"
    assert body["objectives"] == ["Compare fractions"]

    by_admin = topic(client, world, headers=world.admin_headers, title="Decimals", month=4, unit=2)
    assert by_admin.json()["teacher_id"] == world.teacher.id

    taught = client.patch(f"{CURRICULUM}/{body['id']}", json={"status": "TAUGHT"}, headers=world.teacher_headers)
    assert taught.json()["status"] == "TAUGHT"

    march = client.get(CURRICULUM, params={"month": 3}, headers=world.parent_headers).json()
    assert [item["title"] for item in march["data"]] == ["Fractions"]
    planned = client.get(CURRICULUM, params={"status": "PLANNED", "course_id": world.course.id}, headers=world.student_headers).json()
    assert [item["title"] for item in planned["data"]] == ["Decimals"]


def test_curriculum_is_limited_to_the_course_teacher(client, db, world):
    substitute = make_user(db, world.school, UserRole.TEACHER, "substitute@sch001.test")
    db.add(Teacher(school_id=world.school.id, user_id=substitute.id))
    db.commit()
    headers = headers_for(substitute)

    assert topic(client, world, headers=headers).status_code == 403
    topic_id = topic(client, world).json()["id"]
    assert client.patch(f"{CURRICULUM}/{topic_id}", json={"title": "Hijacked"}, headers=headers).status_code == 403
    assert client.delete(f"{CURRICULUM}/{topic_id}", headers=headers).status_code == 403
    assert topic(client, world, headers=world.parent_headers).status_code == 403

    assert client.delete(f"{CURRICULUM}/{topic_id}", headers=world.teacher_headers).json() == {"message": "Curriculum topic deleted"}
    assert client.get(f"{CURRICULUM}/{topic_id}", headers=world.teacher_headers).status_code == 404


def test_curriculum_fields_are_validated(client, world):
    assert topic(client, world, month=13).status_code == 400
    assert topic(client, world, unit=0).status_code == 400
    assert topic(client, world, title="ab").status_code == 400
