from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ..rbac_module.database import get_db_session
from ..rbac_module.middleware import ALL_ROLES, PageParams, ensure_own_school, page_params, require_roles
from ..rbac_module.models import User, UserRole
from ..rbac_module.schemas import CountResponse, MessageResponse, Page
from . import messaging, notifications
from .models import Conversation, NotificationType
from .schemas import (
    BulkNotificationRequest,
    ConversationCreateRequest,
    ConversationOut,
    MarkReadOut,
    MessageCreateRequest,
    MessageOut,
    NotificationCreateRequest,
    NotificationOut,
    UnreadCountOut,
)

notifications_router = APIRouter(prefix="/notifications", tags=["Notifications"])
messages_router = APIRouter(prefix="/messages", tags=["Messages"])

conversation_members = require_roles(UserRole.ADMIN, UserRole.TEACHER, UserRole.PARENT)


# --- notifications ---


@notifications_router.post("", response_model=NotificationOut, status_code=status.HTTP_201_CREATED)
def notification_create(
    payload: NotificationCreateRequest,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(UserRole.ADMIN)),
):
    return notifications.create_notification(
        db, school_id=current_user.school_id, **payload.model_dump()
    )


@notifications_router.post("/bulk", response_model=CountResponse, status_code=status.HTTP_201_CREATED)
def notification_bulk(
    payload: BulkNotificationRequest,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(UserRole.ADMIN)),
):
    school_id = ensure_own_school(current_user, payload.school_id)
    count = notifications.send_bulk(
        db,
        actor=current_user,
        school_id=school_id,
        title=payload.title,
        message=payload.message,
        type=payload.type,
        link=payload.link,
        metadata=payload.metadata,
        roles=payload.roles,
        user_ids=payload.user_ids,
    )
    return CountResponse(message=f"Notification sent to {count} users", count=count)


@notifications_router.get("", response_model=Page[NotificationOut])
def my_notifications(
    unread_only: bool = False,
    paging: PageParams = Depends(page_params(default_limit=20)),
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(*ALL_ROLES)),
):
    items, meta = notifications.list_for_user(
        db, user=current_user, page=paging.page, limit=paging.limit, unread_only=unread_only
    )
    return {"data": items, "meta": meta}


@notifications_router.get("/unread-count", response_model=UnreadCountOut)
def my_unread_count(
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(*ALL_ROLES)),
):
    return UnreadCountOut(unread_count=notifications.unread_count(db, user=current_user))


@notifications_router.get("/all", response_model=Page[NotificationOut])
def school_notifications(
    type: NotificationType | None = None,
    paging: PageParams = Depends(page_params(default_limit=20)),
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(UserRole.ADMIN)),
):
    items, meta = notifications.list_for_school(
        db, school_id=current_user.school_id, page=paging.page, limit=paging.limit, type=type
    )
    return {"data": items, "meta": meta}


@notifications_router.patch("/read-all", response_model=CountResponse)
def notifications_read_all(
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(*ALL_ROLES)),
):
    count = notifications.mark_all_as_read(db, user=current_user)
    return CountResponse(message="All notifications marked as read", count=count)


@notifications_router.delete("/cleanup/old", response_model=CountResponse)
def notifications_cleanup(
    days_old: int = Query(default=30, ge=1, le=3650),
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(UserRole.ADMIN)),
):
    count = notifications.delete_old_notifications(db, days_old=days_old, school_id=current_user.school_id)
    return CountResponse(message=f"Deleted {count} old notifications", count=count)


@notifications_router.patch("/{notification_id}/read", response_model=NotificationOut)
def notification_read(
    notification_id: str,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(*ALL_ROLES)),
):
    return notifications.mark_as_read(db, notification_id=notification_id, user=current_user)


@notifications_router.get("/{notification_id}", response_model=NotificationOut)
def notification_detail(
    notification_id: str,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(*ALL_ROLES)),
):
    return notifications.get_notification(db, notification_id=notification_id, user=current_user)


@notifications_router.delete("/{notification_id}", response_model=MessageResponse)
def notification_delete(
    notification_id: str,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(UserRole.ADMIN)),
):
    notifications.delete_notification(db, notification_id=notification_id, school_id=current_user.school_id)
    return MessageResponse(message="Notification deleted")


# --- messaging ---


def _conversation_out(db: Session, conversation: Conversation, user: User) -> ConversationOut:
    unread = messaging.unread_in_conversation(db, conversation_id=conversation.id, user_id=user.id)
    return ConversationOut.model_validate(conversation).model_copy(update={"unread_count": unread})


@messages_router.post("/conversations", response_model=ConversationOut, status_code=status.HTTP_201_CREATED)
def conversation_create(
    payload: ConversationCreateRequest,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(conversation_members),
):
    conversation = messaging.create_conversation(
        db,
        actor=current_user,
        participants=[participant.model_dump() for participant in payload.participants],
        student_id=payload.student_id,
        student_name=payload.student_name,
        grade_section=payload.grade_section,
        initial_message=payload.initial_message,
    )
    return _conversation_out(db, conversation, current_user)


@messages_router.get("/conversations", response_model=Page[ConversationOut])
def conversation_list(
    unread_only: bool = False,
    paging: PageParams = Depends(page_params(default_limit=20)),
    db: Session = Depends(get_db_session),
    current_user: User = Depends(conversation_members),
):
    items, meta = messaging.list_conversations(
        db, user=current_user, page=paging.page, limit=paging.limit, unread_only=unread_only
    )
    return {"data": [_conversation_out(db, item, current_user) for item in items], "meta": meta}


@messages_router.get("/conversations/{conversation_id}", response_model=ConversationOut)
def conversation_detail(
    conversation_id: str,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(conversation_members),
):
    conversation = messaging.get_conversation(db, conversation_id=conversation_id, user=current_user)
    return _conversation_out(db, conversation, current_user)


@messages_router.get("/conversations/{conversation_id}/messages", response_model=Page[MessageOut])
def conversation_messages(
    conversation_id: str,
    paging: PageParams = Depends(page_params(default_limit=50)),
    db: Session = Depends(get_db_session),
    current_user: User = Depends(conversation_members),
):
    conversation = messaging.get_conversation(db, conversation_id=conversation_id, user=current_user)
    items, meta = messaging.list_messages(
        db, conversation=conversation, user=current_user, page=paging.page, limit=paging.limit
    )
    return {"data": items, "meta": meta}


@messages_router.post("", response_model=MessageOut, status_code=status.HTTP_201_CREATED)
def message_send(
    payload: MessageCreateRequest,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(conversation_members),
):
    return messaging.send_message(
        db,
        sender=current_user,
        conversation_id=payload.conversation_id,
        content=payload.content,
        attachments=[attachment.model_dump() for attachment in payload.attachments],
    )


@messages_router.post("/conversations/{conversation_id}/read", response_model=MarkReadOut)
def conversation_read(
    conversation_id: str,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(conversation_members),
):
    conversation = messaging.get_conversation(db, conversation_id=conversation_id, user=current_user)
    return MarkReadOut(marked_as_read=messaging.mark_as_read(db, conversation=conversation, user=current_user))


@messages_router.get("/unread-count", response_model=UnreadCountOut)
def messages_unread_count(
    db: Session = Depends(get_db_session),
    current_user: User = Depends(conversation_members),
):
    return UnreadCountOut(unread_count=messaging.total_unread(db, user=current_user))


@messages_router.delete("/conversations/{conversation_id}", response_model=MessageResponse)
def conversation_delete(
    conversation_id: str,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(conversation_members),
):
    messaging.delete_conversation(db, conversation_id=conversation_id, user=current_user)
    return MessageResponse(message="Conversation deleted")


router = APIRouter(prefix="/api/v1")
router.include_router(notifications_router)
router.include_router(messages_router)
