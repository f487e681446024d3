import re
from datetime import date, datetime
from typing import Annotated

from pydantic import AfterValidator, BaseModel, Field, StringConstraints, model_validator

from ..rbac_module.schemas import EntityId, ORMModel
from .models import TopicStatus

TIME_PATTERN = re.compile(r"^([01]?[0-9]|2[0-3]):[0-5][0-9]$")


def _normalize_time(value: str) -> str:
    if not TIME_PATTERN.match(value):
        raise ValueError("Time must use the HH:MM format")
    hours, minutes = value.split(":")
    return f"{int(hours):02d}:{minutes}"


ClockTime = Annotated[str, AfterValidator(_normalize_time)]
SubjectCode = Annotated[str, StringConstraints(min_length=2, max_length=10, pattern=r"^[A-Z0-9]+$")]
HexColor = Annotated[str, StringConstraints(pattern=r"^#[0-9A-Fa-f]{6}$")]


# --- levels ---


class LevelCreateRequest(BaseModel):
    name: str = Field(min_length=2, max_length=50)
    order: int = Field(default=0, ge=0)


class LevelOut(ORMModel):
    id: str
    school_id: str
    name: str
    order: int


# --- academic years ---


class AcademicYearCreateRequest(BaseModel):
    name: str = Field(min_length=4, max_length=50)
    start_date: date
    end_date: date
    is_current: bool = False

    @model_validator(mode="after")
    def check_dates(self):
        if self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self


class AcademicYearUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=4, max_length=50)
    start_date: date | None = None
    end_date: date | None = None
    is_current: bool | None = None


class AcademicYearOut(ORMModel):
    id: str
    school_id: str
    name: str
    start_date: date
    end_date: date
    is_current: bool
    created_at: datetime


# --- grade sections ---


class GradeSectionCreateRequest(BaseModel):
    grade: int = Field(ge=1, le=6)
    section: str = Field(min_length=1, max_length=5)
    level_id: EntityId | None = None
    capacity: int = Field(default=30, ge=1, le=100)
    classroom: str | None = Field(default=None, max_length=50)
    academic_year_id: EntityId


class GradeSectionUpdateRequest(BaseModel):
    grade: int | None = Field(default=None, ge=1, le=6)
    section: str | None = Field(default=None, min_length=1, max_length=5)
    level_id: EntityId | None = None
    capacity: int | None = Field(default=None, ge=1, le=100)
    classroom: str | None = Field(default=None, max_length=50)
    is_active: bool | None = None


class GradeSectionOut(ORMModel):
    id: str
    school_id: str
    academic_year_id: str
    level_id: str | None = None
    grade: int
    section: str
    label: str
    capacity: int
    classroom: str | None = None
    is_active: bool
    student_count: int = 0


# --- subjects ---


class SubjectCreateRequest(BaseModel):
    name: str = Field(min_length=2, max_length=100)
    code: SubjectCode
    description: str | None = Field(default=None, max_length=500)
    color: HexColor | None = None


class SubjectUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=2, max_length=100)
    code: SubjectCode | None = None
    description: str | None = Field(default=None, max_length=500)
    color: HexColor | None = None
    is_active: bool | None = None


class SubjectOut(ORMModel):
    id: str
    school_id: str
    name: str
    code: str
    description: str | None = None
    color: str | None = None
    is_active: bool


# --- courses & enrollments ---


class CourseCreateRequest(BaseModel):
    name: str = Field(min_length=3, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    hours_per_week: int = Field(default=1, ge=1, le=20)
    teacher_id: EntityId
    grade_section_id: EntityId
    subject_id: EntityId
    academic_year_id: EntityId


class CourseUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=3, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    hours_per_week: int | None = Field(default=None, ge=1, le=20)
    teacher_id: EntityId | None = None
    is_active: bool | None = None


class CourseOut(ORMModel):
    id: str
    school_id: str
    name: str
    description: str | None = None
    hours_per_week: int
    teacher_id: str
    grade_section_id: str
    subject_id: str
    academic_year_id: str
    is_active: bool
    created_at: datetime
    subject: SubjectOut


class EnrollStudentsRequest(BaseModel):
    student_ids: list[EntityId] = Field(min_length=1)


class EnrollResult(BaseModel):
    enrolled: int
    skipped: int


class EnrollmentCreateRequest(BaseModel):
    student_id: EntityId
    course_id: EntityId


class EnrollmentOut(ORMModel):
    id: str
    student_id: str
    course_id: str
    enrolled_at: datetime
    course: CourseOut


# --- schedules ---


class ScheduleCreateRequest(BaseModel):
    day_of_week: int = Field(ge=0, le=6)
    start_time: ClockTime
    end_time: ClockTime
    room: str | None = Field(default=None, max_length=50)
    course_id: EntityId
    grade_section_id: EntityId

    @model_validator(mode="after")
    def check_times(self):
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class ScheduleUpdateRequest(BaseModel):
    day_of_week: int | None = Field(default=None, ge=0, le=6)
    start_time: ClockTime | None = None
    end_time: ClockTime | None = None
    room: str | None = Field(default=None, max_length=50)


class ScheduleOut(ORMModel):
    id: str
    course_id: str
    grade_section_id: str
    day_of_week: int
    start_time: str
    end_time: str
    room: str | None = None
    course: CourseOut


# --- curriculum ---


class CurriculumTopicCreateRequest(BaseModel):
    unit: int = Field(ge=1, le=12)
    title: str = Field(min_length=3, max_length=200)
    description: str | None = Field(default=None, max_length=2000)
    objectives: list[str] = Field(default_factory=list)
    estimated_hours: int = Field(default=1, ge=1)
    month: int = Field(ge=1, le=12)
    status: TopicStatus = TopicStatus.PLANNED
    attachment_url: str | None = Field(default=None, max_length=500)
    attachment_name: str | None = Field(default=None, max_length=200)
    course_id: EntityId
    teacher_id: EntityId | None = None


class CurriculumTopicUpdateRequest(BaseModel):
    unit: int | None = Field(default=None, ge=1, le=12)
    title: str | None = Field(default=None, min_length=3, max_length=200)
    description: str | None = Field(default=None, max_length=2000)
    objectives: list[str] | None = None
    estimated_hours: int | None = Field(default=None, ge=1)
    month: int | None = Field(default=None, ge=1, le=12)
    status: TopicStatus | None = None
    attachment_url: str | None = Field(default=None, max_length=500)
    attachment_name: str | None = Field(default=None, max_length=200)


class CurriculumTopicOut(ORMModel):
    id: str
    course_id: str
    teacher_id: str
    unit: int
    title: str
    description: str | None = None
    objectives: list[str]
    estimated_hours: int
    month: int
    status: TopicStatus
    attachment_url: str | None = None
    attachment_name: str | None = None
    created_at: datetime
    updated_at: datetime
