from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ..rbac_module.database import get_db_session
from ..rbac_module.middleware import ALL_ROLES, PageParams, page_params, require_roles
from ..rbac_module.models import User, UserRole
from ..rbac_module.schemas import MessageResponse, Page
from . import services
from .models import AttendanceStatus, GradeType
from .schemas import (
    AttendanceCreateRequest,
    AttendanceOut,
    AttendanceSummaryOut,
    AttendanceUpdateRequest,
    CourseGradeStatsOut,
    GradeCreateRequest,
    GradeOut,
    GradeUpdateRequest,
    MarkAllRequest,
    MarkAllResult,
    RosterEntry,
    StudentReportOut,
)

attendance_router = APIRouter(prefix="/attendance", tags=["Attendance"])
grades_router = APIRouter(prefix="/grades", tags=["Grades"])

staff = require_roles(UserRole.ADMIN, UserRole.TEACHER)
anyone = require_roles(*ALL_ROLES)


# --- attendance ---


@attendance_router.post("", response_model=AttendanceOut, status_code=status.HTTP_201_CREATED)
def attendance_create(
    payload: AttendanceCreateRequest,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(staff),
):
    return services.create_attendance(db, actor=current_user, **payload.model_dump())


@attendance_router.post("/mark-all", response_model=MarkAllResult)
def attendance_mark_all(
    payload: MarkAllRequest,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(staff),
):
    return services.mark_all(
        db,
        actor=current_user,
        grade_section_id=payload.grade_section_id,
        date=payload.date,
        records=[record.model_dump() for record in payload.records],
    )


@attendance_router.get("", response_model=Page[AttendanceOut])
def attendance_list(
    date: date | None = None,
    grade_section_id: str | None = None,
    student_id: str | None = None,
    status: AttendanceStatus | None = None,
    paging: PageParams = Depends(page_params(default_limit=20)),
    db: Session = Depends(get_db_session),
    current_user: User = Depends(anyone),
):
    items, meta = services.list_attendance(
        db,
        user=current_user,
        page=paging.page,
        limit=paging.limit,
        date=date,
        grade_section_id=grade_section_id,
        student_id=student_id,
        status=status,
    )
    return {"data": items, "meta": meta}


@attendance_router.get("/student/{student_id}", response_model=list[AttendanceOut])
def attendance_for_student(
    student_id: str,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(anyone),
):
    return services.student_attendance(db, user=current_user, student_id=student_id)


@attendance_router.get("/summary/{student_id}", response_model=AttendanceSummaryOut)
def attendance_summary(
    student_id: str,
    start_date: date | None = None,
    end_date: date | None = None,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(anyone),
):
    return services.attendance_summary(
        db, user=current_user, student_id=student_id, start_date=start_date, end_date=end_date
    )


@attendance_router.get("/section/{section_id}", response_model=list[RosterEntry])
def attendance_roster(
    section_id: str,
    day: date = Query(alias="date"),
    db: Session = Depends(get_db_session),
    current_user: User = Depends(staff),
):
    return services.section_roster(db, section_id=section_id, school_id=current_user.school_id, date=day)


@attendance_router.get("/{attendance_id}", response_model=AttendanceOut)
def attendance_detail(
    attendance_id: str,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(anyone),
):
    return services.get_attendance(db, attendance_id=attendance_id, user=current_user)


@attendance_router.patch("/{attendance_id}", response_model=AttendanceOut)
def attendance_update(
    attendance_id: str,
    payload: AttendanceUpdateRequest,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(staff),
):
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    return services.update_attendance(db, actor=current_user, attendance_id=attendance_id, changes=changes)


@attendance_router.delete("/{attendance_id}", response_model=MessageResponse)
def attendance_delete(
    attendance_id: str,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(UserRole.ADMIN)),
):
    services.delete_attendance(db, actor=current_user, attendance_id=attendance_id)
    return MessageResponse(message="Attendance record deleted")


# --- grades ---


@grades_router.post("", response_model=GradeOut, status_code=status.HTTP_201_CREATED)
def grade_create(
    payload: GradeCreateRequest,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(staff),
):
    return services.create_grade(db, actor=current_user, **payload.model_dump())


@grades_router.get("", response_model=Page[GradeOut])
def grade_list(
    student_id: str | None = None,
    course_id: str | None = None,
    period: int | None = Query(default=None, ge=1, le=4),
    type: GradeType | None = None,
    paging: PageParams = Depends(page_params(default_limit=20)),
    db: Session = Depends(get_db_session),
    current_user: User = Depends(anyone),
):
    items, meta = services.list_grades(
        db,
        user=current_user,
        page=paging.page,
        limit=paging.limit,
        student_id=student_id,
        course_id=course_id,
        period=period,
        type=type,
    )
    return {"data": items, "meta": meta}


@grades_router.get("/student/{student_id}", response_model=list[GradeOut])
def grades_for_student(
    student_id: str,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(anyone),
):
    return services.student_grades(db, user=current_user, student_id=student_id)


@grades_router.get("/student/{student_id}/report", response_model=StudentReportOut)
def grade_report(
    student_id: str,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(anyone),
):
    return services.student_report(db, user=current_user, student_id=student_id)


@grades_router.get("/course/{course_id}", response_model=list[GradeOut])
def grades_for_course(
    course_id: str,
    period: int | None = Query(default=None, ge=1, le=4),
    db: Session = Depends(get_db_session),
    current_user: User = Depends(staff),
):
    return services.course_grades(db, user=current_user, course_id=course_id, period=period)


@grades_router.get("/course/{course_id}/stats", response_model=CourseGradeStatsOut)
def grade_course_stats(
    course_id: str,
    period: int | None = Query(default=None, ge=1, le=4),
    db: Session = Depends(get_db_session),
    current_user: User = Depends(staff),
):
    return services.course_stats(db, user=current_user, course_id=course_id, period=period)


@grades_router.get("/{grade_id}", response_model=GradeOut)
def grade_detail(
    grade_id: str,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(anyone),
):
    return services.get_grade(db, grade_id=grade_id, user=current_user)


@grades_router.patch("/{grade_id}", response_model=GradeOut)
def grade_update(
    grade_id: str,
    payload: GradeUpdateRequest,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(staff),
):
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    return services.update_grade(db, actor=current_user, grade_id=grade_id, changes=changes)


@grades_router.delete("/{grade_id}", response_model=MessageResponse)
def grade_delete(
    grade_id: str,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(staff),
):
    services.delete_grade(db, actor=current_user, grade_id=grade_id)
    return MessageResponse(message="Grade deleted")


router = APIRouter(prefix="/api/v1")
router.include_router(attendance_router)
router.include_router(grades_router)
