from __future__ import annotations

import pytest

USERS = "/api/v1/users"
UPLOADS = "/api/v1/uploads"


def test_health_check(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["database"] == "connected"
    assert body["environment"] == "test"


@pytest.mark.parametrize("params", [{"page": 0}, {"limit": 0}, {"limit": 101}, {"page": "x"}])
def test_pagination_bounds(client, world, params):
    response = client.get(USERS, params=params, headers=world.admin_headers)
    assert response.status_code == 400
    error = response.json()["error"]
    assert error["message"] == "Validation failed"
    assert error["details"][0]["field"] == next(iter(params))


def test_largest_page_is_accepted(client, world):
    response = client.get(USERS, params={"page": 1, "limit": 100}, headers=world.admin_headers)
    assert response.status_code == 200
    meta = response.json()["meta"]
    assert meta["total"] == 4
    assert meta["limit"] == 100


def test_error_envelope_shape(client, world):
    response = client.get(f"{USERS}/missing", headers=world.admin_headers)
    assert response.status_code == 404
    body = response.json()
    assert body["success"] is False
    assert body["error"]["status_code"] == 404
    assert body["error"]["error"] == "Not Found"
    assert body["error"]["path"] == f"{USERS}/missing"
    assert body["error"]["timestamp"]


def test_validation_lists_every_bad_field(client, world):
    payload = {"email": "not-an-email", "password": "short", "first_name": "A", "last_name": "Lopez", "role": "JANITOR"}
    response = client.post(USERS, json=payload, headers=world.admin_headers)
    assert response.status_code == 400
    fields = {detail["field"] for detail in response.json()["error"]["details"]}
    assert fields == {"email", "password", "first_name", "role"}


def test_admin_creates_user_in_own_school(client, world, other_world):
    payload = {"email": "New.Teacher@sch001.test", "password": "Welcome1", "first_name": "Nora", "last_name": "Nunez", "role": "TEACHER"}
    response = client.post(USERS, json=payload, headers=world.admin_headers)
    assert response.status_code == 201
    assert response.json()["email"] == "new.teacher@sch001.test"
    assert response.json()["school_id"] == world.school.id
    assert client.post(USERS, json=payload, headers=world.admin_headers).status_code == 409

    payload.update(email="elsewhere@sch001.test", school_id=other_world.school.id)
    assert client.post(USERS, json=payload, headers=world.admin_headers).status_code == 403


@pytest.mark.parametrize(
    "email,accepted",
    [
        ("john.doe@example.com", True),
        ("a+tag@mail.example.co.uk", True),
        ("john..doe@example.com", False),
        (".john@example.com", False),
        ("john.@example.com", False),
        ("john@example..com", False),
        ("john@example", False),
    ],
)
def test_email_format(client, world, email, accepted):
    payload = {"email": email, "password": "Welcome1", "first_name": "Nora", "last_name": "Nunez", "role": "TEACHER"}
    response = client.post(USERS, json=payload, headers=world.admin_headers)
    assert response.status_code == (201 if accepted else 400)


def test_non_admins_cannot_create_users(client, world):
    payload = {"email": "x@sch001.test", "password": "Welcome1", "first_name": "Xavi", "last_name": "Xu", "role": "ADMIN"}
    assert client.post(USERS, json=payload, headers=world.teacher_headers).status_code == 403
    assert client.get(USERS, headers=world.parent_headers).status_code == 403


def test_users_only_edit_their_own_profile(client, world):
    own = client.patch(f"{USERS}/{world.parent_user.id}", json={"phone": "555-0101"}, headers=world.parent_headers)
    assert own.status_code == 200
    assert own.json()["phone"] == "555-0101"
    other = client.patch(f"{USERS}/{world.teacher_user.id}", json={"phone": "1"}, headers=world.parent_headers)
    assert other.status_code == 403
    promote = client.patch(f"{USERS}/{world.parent_user.id}", json={"role": "ADMIN"}, headers=world.parent_headers)
    assert promote.status_code == 403


def test_deleted_users_disappear_from_stats(client, world):
    assert client.delete(f"{USERS}/{world.admin.id}", headers=world.admin_headers).status_code == 400
    assert client.delete(f"{USERS}/{world.student_user.id}", headers=world.admin_headers).status_code == 200
    stats = client.get(f"{USERS}/stats", headers=world.admin_headers).json()
    assert stats["total"] == 3
    assert stats["by_role"]["STUDENT"] == 0


def test_users_of_other_schools_are_invisible(client, world, other_world):
    assert client.get(f"{USERS}/{other_world.teacher_user.id}", headers=world.admin_headers).status_code == 404
    emails = {user["email"] for user in client.get(USERS, headers=world.admin_headers).json()["data"]}
    assert "admin@sch002.test" not in emails


def test_school_detail_and_stats_are_tenant_scoped(client, world, other_world):
    own = client.get(f"/api/v1/schools/{world.school.id}/stats", headers=world.admin_headers).json()
    assert own["students"] == 1
    assert own["courses"] == 1
    assert client.get(f"/api/v1/schools/{other_world.school.id}", headers=world.admin_headers).status_code == 404


def upload(client, headers, name, mime_type, size):
    payload = {
        "file_name": f"stored-{name}",
        "original_name": name,
        "mime_type": mime_type,
        "size": size,
        "url": f"https://files.test/{name}",
        "path": f"uploads/{name}",
    }
    return client.post(UPLOADS, json=payload, headers=headers)


def test_upload_listing_and_stats(client, world):
    assert upload(client, world.teacher_headers, "homework.pdf", "application/pdf", 1024 * 1024).status_code == 201
    assert upload(client, world.teacher_headers, "photo.png", "IMAGE/PNG", 512 * 1024).status_code == 201
    upload(client, world.admin_headers, "logo.jpg", "image/jpeg", 512 * 1024)

    images = client.get(UPLOADS, params={"mime_type": "image"}, headers=world.admin_headers).json()
    assert images["meta"]["total"] == 2
    pdfs = client.get(UPLOADS, params={"mime_type": "application/pdf"}, headers=world.admin_headers).json()
    assert pdfs["data"][0]["uploaded_by"]["id"] == world.teacher_user.id

    stats = client.get(f"{UPLOADS}/stats", headers=world.admin_headers).json()
    assert stats["total_files"] == 3
    assert stats["total_size_mb"] == 2.0
    assert stats["by_type"] == [
        {"type": "application", "files": 1, "size": 1024 * 1024},
        {"type": "image", "files": 2, "size": 1024 * 1024},
    ]


def test_upload_rules(client, world, other_world):
    assert upload(client, world.parent_headers, "x.pdf", "application/pdf", 1).status_code == 403
    assert upload(client, world.teacher_headers, "x.pdf", "pdf", 1).status_code == 400
    created = upload(client, world.teacher_headers, "x.pdf", "application/pdf", 1).json()
    assert client.get(f"{UPLOADS}/{created['id']}", headers=other_world.admin_headers).status_code == 404
    assert client.delete(f"{UPLOADS}/{created['id']}", headers=world.teacher_headers).status_code == 403
    assert client.delete(f"{UPLOADS}/{created['id']}", headers=world.admin_headers).status_code == 200
    assert client.get(f"{UPLOADS}/{created['id']}", headers=world.admin_headers).status_code == 404
