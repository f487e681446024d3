from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from ..rbac_module.schemas import Email, EntityId, ORMModel, PersonName, Phone, StrongPassword
from .models import Gender


class UserBrief(ORMModel):
    id: str
    email: str
    first_name: str
    last_name: str
    phone: str | None = None
    avatar: str | None = None
    is_active: bool


class StudentBrief(ORMModel):
    id: str
    student_code: str
    grade_section_id: str | None = None
    user: UserBrief


class AccountFields(BaseModel):
    email: Email
    password: StrongPassword
    first_name: PersonName
    last_name: PersonName
    phone: Phone | None = None


class AccountUpdateFields(BaseModel):
    email: Email | None = None
    first_name: PersonName | None = None
    last_name: PersonName | None = None
    phone: Phone | None = None
    is_active: bool | None = None


# --- students ---


class StudentProfileFields(BaseModel):
    dni: str | None = Field(default=None, max_length=20)
    birth_date: date | None = None
    gender: Gender | None = None
    address: str | None = Field(default=None, max_length=200)
    emergency_phone: Phone | None = None
    blood_type: str | None = Field(default=None, max_length=10)
    allergies: str | None = Field(default=None, max_length=500)
    medical_notes: str | None = Field(default=None, max_length=1000)
    grade_section_id: EntityId | None = None

    @model_validator(mode="after")
    def check_birth_date(self):
        if self.birth_date and self.birth_date > date.today():
            raise ValueError("birth_date cannot be in the future")
        return self


class StudentCreateRequest(AccountFields, StudentProfileFields):
    student_code: str = Field(min_length=3, max_length=20)
    parent_ids: list[EntityId] = Field(default_factory=list)


class StudentUpdateRequest(AccountUpdateFields, StudentProfileFields):
    student_code: str | None = Field(default=None, min_length=3, max_length=20)


class StudentOut(ORMModel):
    id: str
    user_id: str
    school_id: str
    student_code: str
    dni: str | None = None
    birth_date: date | None = None
    gender: Gender | None = None
    address: str | None = None
    emergency_phone: str | None = None
    blood_type: str | None = None
    allergies: str | None = None
    medical_notes: str | None = None
    grade_section_id: str | None = None
    is_active: bool
    created_at: datetime
    user: UserBrief


class ParentLink(BaseModel):
    parent_id: EntityId
    is_primary: bool = False


class AssignParentsRequest(BaseModel):
    parents: list[ParentLink] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_single_primary(self):
        if sum(1 for link in self.parents if link.is_primary) > 1:
            raise ValueError("Only one parent can be primary")
        return self


# --- teachers ---


class TeacherCreateRequest(AccountFields):
    teacher_code: str | None = Field(default=None, min_length=2, max_length=20)
    specialties: list[str] = Field(default_factory=list)


class TeacherUpdateRequest(AccountUpdateFields):
    teacher_code: str | None = Field(default=None, min_length=2, max_length=20)
    specialties: list[str] | None = None


class TeacherOut(ORMModel):
    id: str
    user_id: str
    school_id: str
    teacher_code: str | None = None
    specialties: list[str]
    is_active: bool
    created_at: datetime
    user: UserBrief


# --- parents ---


class ParentProfileFields(BaseModel):
    dni: str | None = Field(default=None, max_length=20)
    occupation: str | None = Field(default=None, max_length=100)
    work_phone: Phone | None = None
    work_address: str | None = Field(default=None, max_length=200)
    relationship_type: str | None = Field(default=None, max_length=50)


class ParentCreateRequest(AccountFields, ParentProfileFields):
    role: Literal["PARENT", "TUTOR"] = "PARENT"
    student_ids: list[EntityId] = Field(default_factory=list)


class ParentUpdateRequest(AccountUpdateFields, ParentProfileFields):
    pass


class ParentOut(ORMModel):
    id: str
    user_id: str
    school_id: str
    dni: str | None = None
    occupation: str | None = None
    work_phone: str | None = None
    work_address: str | None = None
    relationship_type: str | None = None
    is_active: bool
    created_at: datetime
    user: UserBrief


class AssignChildrenRequest(BaseModel):
    student_ids: list[EntityId] = Field(default_factory=list)


class StudentParentOut(ORMModel):
    parent: ParentOut
    is_primary: bool


class ChildOut(ORMModel):
    student: StudentOut
    is_primary: bool
