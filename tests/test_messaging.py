from __future__ import annotations

from backend.communication_module.models import Notification
from backend.people_module.models import Teacher
from backend.rbac_module.models import UserRole

from .conftest import headers_for, make_user

CONVERSATIONS = "/api/v1/messages/conversations"


def open_conversation(client, world, message="Hello, how is Sofia doing?"):
    payload = {
        "student_id": world.student.id,
        "participants": [{"role": "TEACHER", "teacher_id": world.teacher.id}],
        "initial_message": message,
    }
    return client.post(CONVERSATIONS, json=payload, headers=world.parent_headers)


def test_parent_opens_conversation_with_teacher(client, db, world):
    response = open_conversation(client, world)
    assert response.status_code == 201
    body = response.json()
    assert body["student_name"] == "Sofia Student"
    assert body["grade_section"] == "1° A"
    assert body["last_message"] == "Hello, how is Sofia doing?"
    assert body["last_message_sender_id"] == world.parent_user.id
    roles = sorted((p["role"], p["user_id"]) for p in body["participants"])
    assert roles == sorted([("PARENT", world.parent_user.id), ("TEACHER", world.teacher_user.id)])
    assert body["unread_count"] == 0


def test_new_message_notifies_other_participants_and_admins(client, db, world):
    open_conversation(client, world)
    db.expire_all()
    notified = {n.user_id for n in db.query(Notification).filter(Notification.title.startswith("New message"))}
    assert notified == {world.teacher_user.id, world.admin.id}


def test_deactivated_participants_are_not_notified(client, db, world):
    conversation_id = open_conversation(client, world).json()["id"]
    assert client.delete(f"/api/v1/teachers/{world.teacher.id}", headers=world.admin_headers).status_code == 200
    reply = client.post(
        "/api/v1/messages",
        json={"conversation_id": conversation_id, "content": "Are you there?"},
        headers=world.parent_headers,
    )
    assert reply.status_code == 201

    db.expire_all()
    to_teacher = db.query(Notification).filter(Notification.user_id == world.teacher_user.id).all()
    assert [n.message for n in to_teacher] == ["Hello, how is Sofia doing?"]
    to_admin = db.query(Notification).filter(Notification.user_id == world.admin.id).count()
    assert to_admin == 2


def test_long_message_preview_is_truncated(client, db, world):
    open_conversation(client, world, message="x" * 120)
    db.expire_all()
    notification = db.query(Notification).filter(Notification.user_id == world.teacher_user.id).one()
    assert notification.message == "x" * 50 + "..."
    conversation = client.get(CONVERSATIONS, headers=world.parent_headers).json()["data"][0]
    assert conversation["last_message"] == "x" * 100


def test_unread_counts_and_reading_a_thread(client, world):
    conversation_id = open_conversation(client, world).json()["id"]

    listing = client.get(CONVERSATIONS, headers=world.teacher_headers).json()
    assert listing["meta"]["total"] == 1
    assert listing["data"][0]["unread_count"] == 1
    assert client.get("/api/v1/messages/unread-count", headers=world.teacher_headers).json() == {"unread_count": 1}

    messages = client.get(f"{CONVERSATIONS}/{conversation_id}/messages", headers=world.teacher_headers).json()
    assert [m["content"] for m in messages["data"]] == ["Hello, how is Sofia doing?"]
    assert messages["data"][0]["sender_role"] == "PARENT"
    assert client.get("/api/v1/messages/unread-count", headers=world.teacher_headers).json() == {"unread_count": 0}


def test_reply_updates_conversation_and_read_marking(client, world):
    conversation_id = open_conversation(client, world).json()["id"]
    reply = client.post(
        "/api/v1/messages",
        json={
            "conversation_id": conversation_id,
            "content": "Doing great!",
            "attachments": [{"name": "report.pdf", "type": "PDF", "url": "https://files.test/report.pdf", "size": 2048}],
        },
        headers=world.teacher_headers,
    )
    assert reply.status_code == 201
    assert reply.json()["sender_name"] == "Tomas Teacher"
    assert reply.json()["attachments"][0]["name"] == "report.pdf"

    unread = client.get(CONVERSATIONS, params={"unread_only": True}, headers=world.parent_headers).json()
    assert unread["data"][0]["last_message"] == "Doing great!"
    marked = client.post(f"{CONVERSATIONS}/{conversation_id}/read", headers=world.parent_headers)
    assert marked.json() == {"marked_as_read": 1}
    assert client.get(CONVERSATIONS, params={"unread_only": True}, headers=world.parent_headers).json()["meta"]["total"] == 0


def test_outsiders_cannot_read_conversation(client, db, world, other_world):
    conversation_id = open_conversation(client, world).json()["id"]
    outsider = make_user(db, world.school, UserRole.TEACHER, "other.teacher@sch001.test")
    db.add(Teacher(school_id=world.school.id, user_id=outsider.id))
    db.commit()

    assert client.get(f"{CONVERSATIONS}/{conversation_id}", headers=headers_for(outsider)).status_code == 403
    assert client.get(f"{CONVERSATIONS}/{conversation_id}", headers=other_world.admin_headers).status_code == 404
    assert client.get(f"{CONVERSATIONS}/{conversation_id}", headers=world.admin_headers).status_code == 200
    assert client.get(CONVERSATIONS, headers=headers_for(outsider)).json()["meta"]["total"] == 0


def test_students_cannot_use_messaging(client, world):
    assert client.get(CONVERSATIONS, headers=world.student_headers).status_code == 403


def test_participant_identity_must_match_role(client, world):
    payload = {"participants": [{"role": "TEACHER", "parent_id": world.parent.id}]}
    assert client.post(CONVERSATIONS, json=payload, headers=world.admin_headers).status_code == 400

    payload = {"participants": [{"role": "PARENT", "parent_id": world.parent.id, "teacher_id": world.teacher.id}]}
    assert client.post(CONVERSATIONS, json=payload, headers=world.admin_headers).status_code == 400


def test_participants_must_belong_to_the_school(client, world, other_world):
    payload = {"participants": [{"role": "TEACHER", "teacher_id": other_world.teacher.id}]}
    assert client.post(CONVERSATIONS, json=payload, headers=world.parent_headers).status_code == 400


def test_conversation_needs_someone_besides_the_creator(client, world):
    payload = {"participants": [{"role": "PARENT", "parent_id": world.parent.id}]}
    response = client.post(CONVERSATIONS, json=payload, headers=world.parent_headers)
    assert response.status_code == 400


def test_duplicate_participants_collapse(client, world):
    payload = {
        "participants": [
            {"role": "TEACHER", "teacher_id": world.teacher.id},
            {"role": "TEACHER", "teacher_id": world.teacher.id},
            {"role": "PARENT", "parent_id": world.parent.id},
        ]
    }
    response = client.post(CONVERSATIONS, json=payload, headers=world.teacher_headers)
    assert response.status_code == 201
    assert len(response.json()["participants"]) == 2


def test_only_creator_or_admin_deletes(client, world):
    conversation_id = open_conversation(client, world).json()["id"]
    assert client.delete(f"{CONVERSATIONS}/{conversation_id}", headers=world.teacher_headers).status_code == 403
    assert client.delete(f"{CONVERSATIONS}/{conversation_id}", headers=world.parent_headers).status_code == 200
    assert client.get(f"{CONVERSATIONS}/{conversation_id}", headers=world.parent_headers).status_code == 404
