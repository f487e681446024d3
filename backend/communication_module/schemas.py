from datetime import datetime

from pydantic import BaseModel, Field, model_validator

from ..rbac_module.models import UserRole
from ..rbac_module.schemas import EntityId, ORMModel
from .models import AttachmentType, NotificationType, ParticipantRole

# --- notifications ---


class NotificationFields(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    message: str = Field(min_length=1, max_length=2000)
    type: NotificationType = NotificationType.INFO
    link: str | None = Field(default=None, max_length=500)
    metadata: dict | None = None


class NotificationCreateRequest(NotificationFields):
    user_id: EntityId


class BulkNotificationRequest(NotificationFields):
    """Targets either explicit users or whole roles; neither means every active user of the school."""

    roles: list[UserRole] = Field(default_factory=list)
    user_ids: list[EntityId] = Field(default_factory=list, max_length=1000)
    school_id: EntityId | None = None

    @model_validator(mode="after")
    def check_targets(self):
        if self.roles and self.user_ids:
            raise ValueError("Provide either roles or user_ids, not both")
        return self


class NotificationOut(ORMModel):
    id: str
    user_id: str
    school_id: str
    title: str
    message: str
    type: NotificationType
    link: str | None = None
    metadata: dict | None = Field(default=None, validation_alias="extra")
    is_read: bool
    read_at: datetime | None = None
    created_at: datetime


class UnreadCountOut(BaseModel):
    unread_count: int


# --- messaging ---


class ParticipantIn(BaseModel):
    role: ParticipantRole
    teacher_id: EntityId | None = None
    parent_id: EntityId | None = None

    @model_validator(mode="after")
    def check_identity(self):
        if self.role == ParticipantRole.TEACHER:
            if not self.teacher_id or self.parent_id:
                raise ValueError("A TEACHER participant needs teacher_id and no parent_id")
        elif not self.parent_id or self.teacher_id:
            raise ValueError("A PARENT participant needs parent_id and no teacher_id")
        return self


class ConversationCreateRequest(BaseModel):
    student_id: EntityId | None = None
    student_name: str | None = Field(default=None, max_length=100)
    grade_section: str | None = Field(default=None, max_length=50)
    participants: list[ParticipantIn] = Field(min_length=1, max_length=20)
    initial_message: str | None = Field(default=None, min_length=1, max_length=5000)


class AttachmentIn(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    type: AttachmentType
    url: str = Field(min_length=1, max_length=500)
    size: int = Field(ge=0)


class MessageCreateRequest(BaseModel):
    conversation_id: EntityId
    content: str = Field(min_length=1, max_length=5000)
    attachments: list[AttachmentIn] = Field(default_factory=list, max_length=10)


class AttachmentOut(ORMModel):
    id: str
    name: str
    type: AttachmentType
    url: str
    size: int


class MessageOut(ORMModel):
    id: str
    conversation_id: str
    sender_id: str
    sender_name: str
    sender_role: UserRole
    content: str
    created_at: datetime
    attachments: list[AttachmentOut] = Field(default_factory=list)


class ParticipantOut(ORMModel):
    id: str
    role: ParticipantRole
    teacher_id: str | None = None
    parent_id: str | None = None
    user_id: str | None = None
    display_name: str | None = None


class ConversationOut(ORMModel):
    id: str
    school_id: str
    student_id: str | None = None
    student_name: str | None = None
    grade_section: str | None = None
    created_by_id: str
    last_message: str | None = None
    last_message_at: datetime | None = None
    last_message_sender_id: str | None = None
    created_at: datetime
    participants: list[ParticipantOut]
    unread_count: int = 0


class MarkReadOut(BaseModel):
    marked_as_read: int
