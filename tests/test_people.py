from __future__ import annotations

from backend.academic_module.models import GradeSection

STUDENTS = "/api/v1/students"
TEACHERS = "/api/v1/teachers"
PARENTS = "/api/v1/parents"


def account(email, first_name="Lucia", last_name="Lopez", **extra):
    return {"email": email, "password": "Welcome1", "first_name": first_name, "last_name": last_name, **extra}


def add_student(client, world, code="S002", email="lucia@sch001.test", **extra):
    payload = account(email, **{"student_code": code, "grade_section_id": world.section.id, **extra})
    return client.post(STUDENTS, json=payload, headers=world.admin_headers)


def login(client, email):
    response = client.post("/api/v1/auth/login", json={"email": email, "password": "Welcome1"})
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


def second_section(world, capacity=30):
    section = GradeSection(
        school_id=world.school.id, academic_year_id=world.year.id, grade=2, section="B", capacity=capacity
    )
    world.db.add(section)
    world.db.commit()
    return section


# --- students ---


def test_admin_creates_student_with_parents(client, world):
    response = add_student(client, world, parent_ids=[world.parent.id], birth_date="2018-04-02", gender="FEMALE")
    assert response.status_code == 201
    body = response.json()
    assert body["student_code"] == "S002"
    assert body["grade_section_id"] == world.section.id
    assert body["user"]["email"] == "lucia@sch001.test"
    assert body["is_active"] is True

    parents = client.get(f"{STUDENTS}/{body['id']}/parents", headers=world.teacher_headers).json()
    assert [(link["parent"]["id"], link["is_primary"]) for link in parents] == [(world.parent.id, True)]

    listed = client.get(STUDENTS, params={"grade_section_id": world.section.id}, headers=world.teacher_headers).json()
    assert listed["meta"]["total"] == 2


def test_student_code_and_email_must_be_unique(client, world):
    duplicate_code = add_student(client, world, code="S001")
    assert duplicate_code.status_code == 409
    assert duplicate_code.json()["error"]["message"] == "Student code already exists"
    duplicate_email = add_student(client, world, email="teacher@sch001.test")
    assert duplicate_email.status_code == 409
    assert duplicate_email.json()["error"]["message"] == "Email already registered"

    created = add_student(client, world).json()
    renamed = client.patch(f"{STUDENTS}/{created['id']}", json={"student_code": "S001"}, headers=world.admin_headers)
    assert renamed.status_code == 409


def test_future_birth_date_is_rejected(client, world):
    response = add_student(client, world, birth_date="2999-01-01")
    assert response.status_code == 400


def test_full_section_rejects_new_students(client, world):
    world.section.capacity = 1
    world.db.commit()
    response = add_student(client, world)
    assert response.status_code == 409
    assert response.json()["error"]["message"] == "Grade section is full"

    # The student already seated does not count against itself.
    same = client.patch(
        f"{STUDENTS}/{world.student.id}", json={"grade_section_id": world.section.id}, headers=world.admin_headers
    )
    assert same.status_code == 200


def test_moving_into_a_full_section_is_a_conflict(client, world):
    section = second_section(world, capacity=1)
    assert add_student(client, world, grade_section_id=section.id).status_code == 201

    moved = client.patch(f"{STUDENTS}/{world.student.id}/section/{section.id}", headers=world.admin_headers)
    assert moved.status_code == 409
    patched = client.patch(f"{STUDENTS}/{world.student.id}", json={"grade_section_id": section.id}, headers=world.admin_headers)
    assert patched.status_code == 409

    roomy = second_section(world)
    moved = client.patch(f"{STUDENTS}/{world.student.id}/section/{roomy.id}", headers=world.admin_headers)
    assert moved.status_code == 200
    assert moved.json()["grade_section_id"] == roomy.id


def test_deactivated_students_free_their_seat(client, world):
    world.section.capacity = 1
    world.db.commit()
    response = client.delete(f"{STUDENTS}/{world.student.id}", headers=world.admin_headers)
    assert response.json() == {"message": "Student deactivated"}
    assert client.get("/api/v1/auth/me", headers=world.student_headers).status_code == 401
    assert add_student(client, world).status_code == 201


def test_only_one_primary_guardian(client, world):
    tutor = client.post(PARENTS, json=account("tutor@sch001.test", role="TUTOR"), headers=world.admin_headers).json()
    links = [{"parent_id": world.parent.id, "is_primary": True}, {"parent_id": tutor["id"], "is_primary": True}]
    response = client.put(f"{STUDENTS}/{world.student.id}/parents", json={"parents": links}, headers=world.admin_headers)
    assert response.status_code == 400

    links[0]["is_primary"] = False
    response = client.put(f"{STUDENTS}/{world.student.id}/parents", json={"parents": links}, headers=world.admin_headers)
    assert response.status_code == 200
    assert {link["parent"]["id"]: link["is_primary"] for link in response.json()} == {
        world.parent.id: False,
        tutor["id"]: True,
    }


def test_student_detail_access(client, db, world, other_world):
    assert client.get(f"{STUDENTS}/{world.student.id}", headers=world.student_headers).status_code == 200
    assert client.get(f"{STUDENTS}/{world.student.id}", headers=world.parent_headers).status_code == 200
    assert client.get(f"{STUDENTS}/{world.student.id}", headers=other_world.parent_headers).status_code == 404
    assert client.post(STUDENTS, json=account("x@sch001.test", student_code="S777"), headers=world.teacher_headers).status_code == 403

    other = add_student(client, world).json()
    assert client.get(f"{STUDENTS}/{other['id']}", headers=world.parent_headers).status_code == 403
    assert client.get(f"{STUDENTS}/{other['id']}", headers=world.student_headers).status_code == 403


# --- teachers ---


def test_teacher_lifecycle(client, world):
    payload = account("nora@sch001.test", "Nora", "Nunez", teacher_code="T002", specialties=["Science"])
    created = client.post(TEACHERS, json=payload, headers=world.admin_headers)
    assert created.status_code == 201
    teacher = created.json()
    assert teacher["specialties"] == ["Science"]
    assert teacher["user"]["first_name"] == "Nora"

    payload.update(email="other@sch001.test")
    duplicate = client.post(TEACHERS, json=payload, headers=world.admin_headers)
    assert duplicate.status_code == 409
    assert duplicate.json()["error"]["message"] == "Teacher code already exists"

    updated = client.patch(
        f"{TEACHERS}/{teacher['id']}", json={"specialties": ["Science", "Art"], "phone": "555-0102"}, headers=world.admin_headers
    )
    assert updated.json()["specialties"] == ["Science", "Art"]
    assert updated.json()["user"]["phone"] == "555-0102"

    headers = login(client, "nora@sch001.test")
    assert client.get(f"{TEACHERS}/{teacher['id']}/courses", headers=headers).json() == []
    assert client.delete(f"{TEACHERS}/{teacher['id']}", headers=world.admin_headers).json() == {"message": "Teacher deactivated"}
    assert client.get("/api/v1/auth/me", headers=headers).status_code == 401
    inactive = client.get(TEACHERS, params={"is_active": False}, headers=world.admin_headers).json()
    assert [item["id"] for item in inactive["data"]] == [teacher["id"]]


def test_teacher_courses_and_admin_only_management(client, world):
    courses = client.get(f"{TEACHERS}/{world.teacher.id}/courses", headers=world.teacher_headers).json()
    assert [course["id"] for course in courses] == [world.course.id]
    assert client.get(TEACHERS, headers=world.teacher_headers).status_code == 403
    assert client.delete(f"{TEACHERS}/{world.teacher.id}", headers=world.teacher_headers).status_code == 403


# --- parents ---


def test_tutor_acts_as_parent_of_linked_children(client, world):
    payload = account("tutor@sch001.test", "Tina", "Tutor", role="TUTOR", student_ids=[world.student.id])
    created = client.post(PARENTS, json=payload, headers=world.admin_headers)
    assert created.status_code == 201
    tutor_id = created.json()["id"]

    headers = login(client, "tutor@sch001.test")
    assert client.get("/api/v1/auth/me", headers=headers).json()["role"] == "TUTOR"
    assert client.get(f"{PARENTS}/{tutor_id}", headers=headers).status_code == 200
    children = client.get(f"{PARENTS}/{tutor_id}/children", headers=headers).json()
    # The existing guardian stays primary.
    assert [(child["student"]["id"], child["is_primary"]) for child in children] == [(world.student.id, False)]

    assert client.get(f"{STUDENTS}/{world.student.id}", headers=headers).status_code == 200
    assert client.get(f"/api/v1/grades/student/{world.student.id}", headers=headers).status_code == 200
    assert client.get(f"{PARENTS}/{world.parent.id}", headers=headers).status_code == 403


def test_parents_only_see_themselves(client, world):
    other = client.post(PARENTS, json=account("other.parent@sch001.test"), headers=world.admin_headers).json()
    assert client.get(f"{PARENTS}/{other['id']}", headers=world.parent_headers).status_code == 403
    assert client.get(f"{PARENTS}/{other['id']}/children", headers=world.parent_headers).status_code == 403
    assert client.get(f"{PARENTS}/{world.parent.id}/children", headers=world.parent_headers).status_code == 200
    assert client.get(PARENTS, headers=world.parent_headers).status_code == 403


def test_reassigning_children_and_deactivating_a_parent(client, world):
    student = add_student(client, world).json()
    response = client.put(
        f"{PARENTS}/{world.parent.id}/children", json={"student_ids": [student["id"]]}, headers=world.admin_headers
    )
    assert response.status_code == 200
    assert [child["student"]["id"] for child in response.json()] == [student["id"]]
    assert response.json()[0]["is_primary"] is True

    assert client.delete(f"{PARENTS}/{world.parent.id}", headers=world.admin_headers).json() == {"message": "Parent deactivated"}
    assert client.get("/api/v1/auth/me", headers=world.parent_headers).status_code == 401
