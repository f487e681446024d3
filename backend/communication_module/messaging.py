import logging

from fastapi import HTTPException, status
from sqlalchemy import exists, false, func, or_
from sqlalchemy.orm import Session

from ..people_module.models import Parent, Student, Teacher
from ..people_module.services import parent_for_user, teacher_for_user
from ..rbac_module.database import paginate
from ..rbac_module.models import User, UserRole
from .events import on_new_message
from .models import (
    Conversation,
    ConversationParticipant,
    Message,
    MessageAttachment,
    MessageRead,
    ParticipantRole,
)

logger = logging.getLogger(__name__)

LAST_MESSAGE_LENGTH = 100


def _identities(db: Session, user: User) -> tuple[Teacher | None, Parent | None]:
    return teacher_for_user(db, user), parent_for_user(db, user)


def _participant_filter(teacher: Teacher | None, parent: Parent | None):
    clauses = []
    if teacher:
        clauses.append(ConversationParticipant.teacher_id == teacher.id)
    if parent:
        clauses.append(ConversationParticipant.parent_id == parent.id)
    return or_(*clauses) if clauses else None


def visible_conversations(db: Session, user: User):
    """Conversations ``user`` may read: all of the school for admins, otherwise those they take part in."""
    query = db.query(Conversation).filter(Conversation.school_id == user.school_id)
    if user.role == UserRole.ADMIN:
        return query
    condition = _participant_filter(*_identities(db, user))
    if condition is None:
        return query.filter(false())
    member = exists().where(ConversationParticipant.conversation_id == Conversation.id, condition)
    return query.filter(member)


def _unread_clause(user_id: str):
    already_read = exists().where(MessageRead.message_id == Message.id, MessageRead.user_id == user_id)
    return Message.sender_id != user_id, ~already_read


def unread_in_conversation(db: Session, *, conversation_id: str, user_id: str) -> int:
    return (
        db.query(func.count(Message.id))
        .filter(Message.conversation_id == conversation_id, *_unread_clause(user_id))
        .scalar()
    )


def get_conversation(db: Session, *, conversation_id: str, user: User) -> Conversation:
    conversation = (
        db.query(Conversation)
        .filter(Conversation.id == conversation_id, Conversation.school_id == user.school_id)
        .first()
    )
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")
    if user.role == UserRole.ADMIN:
        return conversation
    teacher, parent = _identities(db, user)
    for participant in conversation.participants:
        if teacher and participant.teacher_id == teacher.id:
            return conversation
        if parent and participant.parent_id == parent.id:
            return conversation
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You are not a participant of this conversation")


def _resolve_participants(db: Session, *, actor: User, participants: list[dict]) -> list[tuple]:
    resolved: dict[tuple, None] = {}
    for participant in participants:
        role = participant["role"]
        if role == ParticipantRole.TEACHER:
            found = db.query(Teacher).filter(
                Teacher.id == participant["teacher_id"], Teacher.school_id == actor.school_id
            ).first()
            if not found:
                raise HTTPException(status_code=400, detail=f"Unknown teacher {participant['teacher_id']}")
            resolved[(role, found.id, None)] = None
        else:
            found = db.query(Parent).filter(
                Parent.id == participant["parent_id"], Parent.school_id == actor.school_id
            ).first()
            if not found:
                raise HTTPException(status_code=400, detail=f"Unknown parent {participant['parent_id']}")
            resolved[(role, None, found.id)] = None

    teacher, parent = _identities(db, actor)
    own = None
    if actor.role == UserRole.TEACHER and teacher:
        own = (ParticipantRole.TEACHER, teacher.id, None)
    elif actor.role in (UserRole.PARENT, UserRole.TUTOR) and parent:
        own = (ParticipantRole.PARENT, None, parent.id)
    if own:
        resolved.setdefault(own, None)
    if not [key for key in resolved if key != own]:
        raise HTTPException(status_code=400, detail="A conversation needs at least one other participant")
    return list(resolved)


def _reachable_user_ids(conversation: Conversation) -> list[str]:
    """Participants that can still receive notifications: profile and account both active."""
    user_ids = []
    for participant in conversation.participants:
        profile = participant.teacher if participant.role == ParticipantRole.TEACHER else participant.parent
        if profile is None or not profile.is_active:
            continue
        if profile.user.is_active and profile.user.deleted_at is None:
            user_ids.append(profile.user_id)
    return user_ids


def _post_message(db: Session, *, conversation: Conversation, sender: User, content: str, attachments: list[dict]) -> Message:
    message = Message(
        conversation_id=conversation.id,
        sender_id=sender.id,
        sender_name=sender.full_name,
        sender_role=sender.role,
        content=content,
        attachments=[MessageAttachment(**attachment) for attachment in attachments],
    )
    db.add(message)
    db.flush()
    conversation.last_message = content[:LAST_MESSAGE_LENGTH]
    conversation.last_message_at = message.created_at
    conversation.last_message_sender_id = sender.id
    on_new_message(db, conversation=conversation, message=message, recipients=_reachable_user_ids(conversation))
    return message


def create_conversation(
    db: Session,
    *,
    actor: User,
    participants: list[dict],
    student_id: str | None = None,
    student_name: str | None = None,
    grade_section: str | None = None,
    initial_message: str | None = None,
) -> Conversation:
    if student_id:
        student = db.query(Student).filter(Student.id == student_id, Student.school_id == actor.school_id).first()
        if not student:
            raise HTTPException(status_code=400, detail=f"Unknown student {student_id}")
        student_name = student_name or student.user.full_name
        if not grade_section and student.grade_section:
            grade_section = student.grade_section.label

    members = _resolve_participants(db, actor=actor, participants=participants)
    conversation = Conversation(
        school_id=actor.school_id,
        student_id=student_id,
        student_name=student_name,
        grade_section=grade_section,
        created_by_id=actor.id,
        participants=[
            ConversationParticipant(role=role, teacher_id=teacher_id, parent_id=parent_id)
            for role, teacher_id, parent_id in members
        ],
    )
    db.add(conversation)
    db.flush()
    if initial_message:
        _post_message(db, conversation=conversation, sender=actor, content=initial_message, attachments=[])
    db.commit()
    db.refresh(conversation)
    logger.info(f"Conversation {conversation.id} opened by {actor.email} with {len(members)} participants")
    return conversation


def list_conversations(db: Session, *, user: User, page: int, limit: int, unread_only: bool = False):
    query = visible_conversations(db, user)
    if unread_only:
        unread = exists().where(Message.conversation_id == Conversation.id, *_unread_clause(user.id))
        query = query.filter(unread)
    activity = func.coalesce(Conversation.last_message_at, Conversation.created_at)
    return paginate(query.order_by(activity.desc()), page=page, limit=limit)


def list_messages(db: Session, *, conversation: Conversation, user: User, page: int, limit: int):
    query = db.query(Message).filter(Message.conversation_id == conversation.id)
    items, meta = paginate(query.order_by(Message.created_at.asc(), Message.id.asc()), page=page, limit=limit)
    mark_as_read(db, conversation=conversation, user=user)
    return items, meta


def send_message(db: Session, *, sender: User, conversation_id: str, content: str, attachments: list[dict]) -> Message:
    conversation = get_conversation(db, conversation_id=conversation_id, user=sender)
    message = _post_message(db, conversation=conversation, sender=sender, content=content, attachments=attachments)
    db.commit()
    db.refresh(message)
    return message


def mark_as_read(db: Session, *, conversation: Conversation, user: User) -> int:
    pending = (
        db.query(Message.id)
        .filter(Message.conversation_id == conversation.id, *_unread_clause(user.id))
        .all()
    )
    db.add_all(MessageRead(message_id=row[0], user_id=user.id) for row in pending)
    db.commit()
    return len(pending)


def total_unread(db: Session, *, user: User) -> int:
    conversation_ids = visible_conversations(db, user).with_entities(Conversation.id)
    return (
        db.query(func.count(Message.id))
        .filter(Message.conversation_id.in_(conversation_ids.scalar_subquery()), *_unread_clause(user.id))
        .scalar()
    )


def delete_conversation(db: Session, *, conversation_id: str, user: User) -> None:
    conversation = get_conversation(db, conversation_id=conversation_id, user=user)
    if user.role != UserRole.ADMIN and conversation.created_by_id != user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only the creator or an administrator can delete")
    db.delete(conversation)
    db.commit()
