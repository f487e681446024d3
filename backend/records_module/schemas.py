import datetime as dt
from typing import Annotated

from pydantic import AfterValidator, BaseModel, Field, field_validator, model_validator

from ..people_module.schemas import StudentBrief
from ..rbac_module.schemas import EntityId, ORMModel
from .models import AttendanceStatus, GradeType

GRADE_LETTERS = ("AD", "A", "B", "C")


def _not_in_future(value: dt.date) -> dt.date:
    if value > dt.date.today():
        raise ValueError("Attendance cannot be recorded for a future date")
    return value


AttendanceDate = Annotated[dt.date, AfterValidator(_not_in_future)]


# --- attendance ---


class AttendanceCreateRequest(BaseModel):
    student_id: EntityId
    grade_section_id: EntityId
    date: AttendanceDate
    status: AttendanceStatus
    notes: str | None = Field(default=None, max_length=500)


class AttendanceMark(BaseModel):
    student_id: EntityId
    status: AttendanceStatus
    notes: str | None = Field(default=None, max_length=500)


class MarkAllRequest(BaseModel):
    grade_section_id: EntityId
    date: AttendanceDate
    records: list[AttendanceMark] = Field(min_length=1, max_length=100)

    @model_validator(mode="after")
    def check_unique_students(self):
        seen = set()
        for record in self.records:
            if record.student_id in seen:
                raise ValueError(f"Student {record.student_id} appears more than once")
            seen.add(record.student_id)
        return self


class MarkAllResult(BaseModel):
    created: int
    updated: int


class AttendanceUpdateRequest(BaseModel):
    status: AttendanceStatus | None = None
    notes: str | None = Field(default=None, max_length=500)


class AttendanceOut(ORMModel):
    id: str
    school_id: str
    student_id: str
    grade_section_id: str
    teacher_id: str | None = None
    recorded_by_id: str
    date: dt.date
    status: AttendanceStatus
    notes: str | None = None
    created_at: dt.datetime
    student: StudentBrief


class AttendanceSummaryOut(BaseModel):
    student_id: str
    total: int
    present: int
    late: int
    absent: int
    excused: int
    attendance_rate: float


class RosterEntry(BaseModel):
    student: StudentBrief
    attendance: AttendanceOut | None = None


# --- grades ---


class GradeCreateRequest(BaseModel):
    student_id: EntityId
    course_id: EntityId
    value: float = Field(ge=0, le=20)
    period: int = Field(ge=1, le=4)
    type: GradeType
    letter: str | None = None
    comment: str | None = Field(default=None, max_length=1000)

    @field_validator("letter")
    @classmethod
    def check_letter(cls, value: str | None) -> str | None:
        if value is not None and value not in GRADE_LETTERS:
            raise ValueError(f"letter must be one of {', '.join(GRADE_LETTERS)}")
        return value


class GradeUpdateRequest(BaseModel):
    value: float | None = Field(default=None, ge=0, le=20)
    period: int | None = Field(default=None, ge=1, le=4)
    type: GradeType | None = None
    comment: str | None = Field(default=None, max_length=1000)


class GradeOut(ORMModel):
    id: str
    school_id: str
    student_id: str
    course_id: str
    teacher_id: str
    value: float
    letter: str
    period: int
    type: GradeType
    comment: str | None = None
    created_at: dt.datetime


class CourseReport(BaseModel):
    course_id: str
    subject: str
    period_averages: dict[int, float]
    average: float
    letter: str
    total_grades: int


class StudentReportOut(BaseModel):
    student_id: str
    courses: list[CourseReport]
    overall_average: float | None = None
    overall_letter: str | None = None


class CourseGradeStatsOut(BaseModel):
    course_id: str
    period: int | None = None
    total: int
    average: float | None = None
    max: float | None = None
    min: float | None = None
    pass_rate: float | None = None
    letters: dict[str, int]
