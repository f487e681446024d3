import re
from datetime import datetime
from typing import Annotated, Generic, Literal, TypeVar

from pydantic import AfterValidator, BaseModel, BeforeValidator, ConfigDict, Field, StringConstraints

from .models import AuditAction, UserRole

EMAIL_PATTERN = re.compile(r"^[A-Za-z0-9_%+-]+(?:\.[A-Za-z0-9_%+-]+)*@[A-Za-z0-9-]+(?:\.[A-Za-z0-9-]+)*\.[A-Za-z]{2,}$")
PASSWORD_PATTERN = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)")


def _lower_strip(value):
    return value.strip().lower() if isinstance(value, str) else value


def _check_email(value: str) -> str:
    if not EMAIL_PATTERN.match(value):
        raise ValueError("Invalid email format")
    return value


def _check_password_strength(value: str) -> str:
    if not PASSWORD_PATTERN.match(value):
        raise ValueError("Password must contain an uppercase letter, a lowercase letter and a digit")
    return value


Email = Annotated[str, BeforeValidator(_lower_strip), Field(max_length=255), AfterValidator(_check_email)]
StrongPassword = Annotated[str, Field(min_length=8, max_length=50), AfterValidator(_check_password_strength)]
PersonName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=2, max_length=50)]
Phone = Annotated[str, StringConstraints(strip_whitespace=True, max_length=20)]
EntityId = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=36)]

T = TypeVar("T")


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class PageMeta(BaseModel):
    total: int
    page: int
    limit: int
    total_pages: int
    has_next_page: bool
    has_prev_page: bool


class Page(BaseModel, Generic[T]):
    data: list[T]
    meta: PageMeta


class MessageResponse(BaseModel):
    message: str


class CountResponse(BaseModel):
    message: str
    count: int


# --- auth ---


class LoginRequest(BaseModel):
    email: Email
    password: str = Field(min_length=6, max_length=50)


class UserOut(ORMModel):
    id: str
    email: str
    first_name: str
    last_name: str
    phone: str | None = None
    avatar: str | None = None
    role: UserRole
    school_id: str
    is_active: bool
    last_login_at: datetime | None = None
    created_at: datetime


class LoginResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    role: UserRole
    user: UserOut


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=10)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(min_length=1, max_length=50)
    new_password: StrongPassword
    confirm_password: str = Field(min_length=1, max_length=50)


class SchoolSummary(ORMModel):
    id: str
    name: str
    code: str
    logo: str | None = None


class ProfileOut(UserOut):
    school: SchoolSummary


# --- users ---


class UserCreateRequest(BaseModel):
    email: Email
    password: StrongPassword
    first_name: PersonName
    last_name: PersonName
    role: UserRole
    school_id: EntityId | None = None
    phone: Phone | None = None
    avatar: str | None = Field(default=None, max_length=500)


class UserUpdateRequest(BaseModel):
    email: Email | None = None
    first_name: PersonName | None = None
    last_name: PersonName | None = None
    phone: Phone | None = None
    avatar: str | None = Field(default=None, max_length=500)
    role: UserRole | None = None
    is_active: bool | None = None


class UserStatsOut(BaseModel):
    total: int
    active: int
    inactive: int
    by_role: dict[str, int]


UserSortField = Literal["created_at", "email", "first_name", "last_name"]
SortOrder = Literal["asc", "desc"]


# --- schools ---

SchoolCode = Annotated[
    str,
    StringConstraints(strip_whitespace=True, to_upper=True, min_length=3, max_length=20, pattern=r"^[A-Za-z0-9_-]+$"),
]


class SchoolCreateRequest(BaseModel):
    name: str = Field(min_length=3, max_length=100)
    code: SchoolCode
    address: str | None = Field(default=None, max_length=200)
    phone: Phone | None = None
    email: Email | None = None
    logo: str | None = Field(default=None, max_length=500)


class SchoolUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=3, max_length=100)
    address: str | None = Field(default=None, max_length=200)
    phone: Phone | None = None
    email: Email | None = None
    logo: str | None = Field(default=None, max_length=500)
    is_active: bool | None = None


class SchoolOut(ORMModel):
    id: str
    name: str
    code: str
    address: str | None = None
    phone: str | None = None
    email: str | None = None
    logo: str | None = None
    is_active: bool
    created_at: datetime


class SchoolStatsOut(BaseModel):
    users: int
    students: int
    teachers: int
    parents: int
    academic_years: int
    grade_sections: int
    subjects: int
    courses: int


# --- audit ---


class AuditLogOut(ORMModel):
    id: str
    action: AuditAction
    resource: str
    resource_id: str | None = None
    old_data: dict | None = None
    new_data: dict | None = None
    ip: str | None = None
    user_agent: str | None = None
    duration: int | None = None
    success: bool
    error_message: str | None = None
    user_id: str | None = None
    school_id: str | None = None
    created_at: datetime


class AuditStatsOut(BaseModel):
    total: int
    successful: int
    failed: int
    by_action: dict[str, int]
    by_resource: dict[str, int]
