from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ..people_module.schemas import StudentOut
from ..rbac_module.database import get_db_session
from ..rbac_module.middleware import ALL_ROLES, PageParams, page_params, require_roles
from ..rbac_module.models import User, UserRole
from ..rbac_module.schemas import MessageResponse, Page
from .models import TopicStatus
from .schemas import (
    AcademicYearCreateRequest,
    AcademicYearOut,
    AcademicYearUpdateRequest,
    CourseCreateRequest,
    CourseOut,
    CourseUpdateRequest,
    CurriculumTopicCreateRequest,
    CurriculumTopicOut,
    CurriculumTopicUpdateRequest,
    EnrollmentCreateRequest,
    EnrollmentOut,
    EnrollResult,
    EnrollStudentsRequest,
    GradeSectionCreateRequest,
    GradeSectionOut,
    GradeSectionUpdateRequest,
    LevelCreateRequest,
    LevelOut,
    ScheduleCreateRequest,
    ScheduleOut,
    ScheduleUpdateRequest,
    SubjectCreateRequest,
    SubjectOut,
    SubjectUpdateRequest,
)
from . import services

levels_router = APIRouter(prefix="/levels", tags=["Levels"])
years_router = APIRouter(prefix="/academic-years", tags=["Academic Years"])
sections_router = APIRouter(prefix="/grade-sections", tags=["Grade Sections"])
subjects_router = APIRouter(prefix="/subjects", tags=["Subjects"])
courses_router = APIRouter(prefix="/courses", tags=["Courses"])
enrollments_router = APIRouter(prefix="/enrollments", tags=["Enrollments"])
schedules_router = APIRouter(prefix="/schedules", tags=["Schedules"])
curriculum_router = APIRouter(prefix="/curriculum", tags=["Curriculum"])

admin_only = require_roles(UserRole.ADMIN)
staff = require_roles(UserRole.ADMIN, UserRole.TEACHER)


# --- levels ---


@levels_router.post("", response_model=LevelOut, status_code=status.HTTP_201_CREATED)
def add_level(payload: LevelCreateRequest, db: Session = Depends(get_db_session), current_user: User = Depends(admin_only)):
    return services.create_level(db, school_id=current_user.school_id, name=payload.name, order=payload.order)


@levels_router.get("", response_model=list[LevelOut])
def levels_list(db: Session = Depends(get_db_session), current_user: User = Depends(staff)):
    return services.list_levels(db, school_id=current_user.school_id)


# --- academic years ---


@years_router.post("", response_model=AcademicYearOut, status_code=status.HTTP_201_CREATED)
def add_academic_year(
    payload: AcademicYearCreateRequest,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(admin_only),
):
    return services.create_academic_year(db, school_id=current_user.school_id, **payload.model_dump())


@years_router.get("", response_model=list[AcademicYearOut])
def academic_years_list(db: Session = Depends(get_db_session), current_user: User = Depends(require_roles(*ALL_ROLES))):
    return services.list_academic_years(db, school_id=current_user.school_id)


@years_router.get("/current", response_model=AcademicYearOut)
def academic_year_current(db: Session = Depends(get_db_session), current_user: User = Depends(require_roles(*ALL_ROLES))):
    return services.current_academic_year(db, school_id=current_user.school_id)


@years_router.get("/{year_id}", response_model=AcademicYearOut)
def academic_year_detail(year_id: str, db: Session = Depends(get_db_session), current_user: User = Depends(staff)):
    return services.get_academic_year(db, year_id=year_id, school_id=current_user.school_id)


@years_router.patch("/{year_id}", response_model=AcademicYearOut)
def academic_year_update(
    year_id: str,
    payload: AcademicYearUpdateRequest,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(admin_only),
):
    return services.update_academic_year(
        db, year_id=year_id, school_id=current_user.school_id, changes=payload.model_dump(exclude_unset=True, exclude_none=True)
    )


@years_router.post("/{year_id}/set-current", response_model=AcademicYearOut)
def academic_year_set_current(year_id: str, db: Session = Depends(get_db_session), current_user: User = Depends(admin_only)):
    return services.set_current_academic_year(db, year_id=year_id, school_id=current_user.school_id)


@years_router.delete("/{year_id}", response_model=MessageResponse)
def academic_year_delete(year_id: str, db: Session = Depends(get_db_session), current_user: User = Depends(admin_only)):
    services.delete_academic_year(db, year_id=year_id, school_id=current_user.school_id)
    return MessageResponse(message="Academic year deleted")


# --- grade sections ---


@sections_router.post("", response_model=GradeSectionOut, status_code=status.HTTP_201_CREATED)
def add_grade_section(
    payload: GradeSectionCreateRequest,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(admin_only),
):
    return services.create_grade_section(db, school_id=current_user.school_id, **payload.model_dump())


@sections_router.get("", response_model=Page[GradeSectionOut])
def grade_sections_list(
    academic_year_id: str | None = None,
    level_id: str | None = None,
    grade: int | None = Query(default=None, ge=1, le=6),
    is_active: bool | None = None,
    paging: PageParams = Depends(page_params(default_limit=20)),
    db: Session = Depends(get_db_session),
    current_user: User = Depends(staff),
):
    items, meta = services.list_grade_sections(
        db,
        school_id=current_user.school_id,
        page=paging.page,
        limit=paging.limit,
        academic_year_id=academic_year_id,
        level_id=level_id,
        grade=grade,
        is_active=is_active,
    )
    return {"data": items, "meta": meta}


@sections_router.get("/{section_id}", response_model=GradeSectionOut)
def grade_section_detail(section_id: str, db: Session = Depends(get_db_session), current_user: User = Depends(staff)):
    return services.get_grade_section(db, section_id=section_id, school_id=current_user.school_id)


@sections_router.get("/{section_id}/students", response_model=list[StudentOut])
def grade_section_students(section_id: str, db: Session = Depends(get_db_session), current_user: User = Depends(staff)):
    return services.section_students(db, section_id=section_id, school_id=current_user.school_id)


@sections_router.patch("/{section_id}", response_model=GradeSectionOut)
def grade_section_update(
    section_id: str,
    payload: GradeSectionUpdateRequest,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(admin_only),
):
    return services.update_grade_section(
        db, section_id=section_id, school_id=current_user.school_id, changes=payload.model_dump(exclude_unset=True, exclude_none=True)
    )


@sections_router.delete("/{section_id}", response_model=MessageResponse)
def grade_section_delete(section_id: str, db: Session = Depends(get_db_session), current_user: User = Depends(admin_only)):
    services.deactivate_grade_section(db, section_id=section_id, school_id=current_user.school_id)
    return MessageResponse(message="Grade section deactivated")


# --- subjects ---


@subjects_router.post("", response_model=SubjectOut, status_code=status.HTTP_201_CREATED)
def add_subject(payload: SubjectCreateRequest, db: Session = Depends(get_db_session), current_user: User = Depends(admin_only)):
    return services.create_subject(db, school_id=current_user.school_id, **payload.model_dump())


@subjects_router.get("", response_model=Page[SubjectOut])
def subjects_list(
    search: str | None = Query(default=None, max_length=100),
    is_active: bool | None = None,
    paging: PageParams = Depends(page_params(default_limit=20)),
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(*ALL_ROLES)),
):
    items, meta = services.list_subjects(
        db, school_id=current_user.school_id, page=paging.page, limit=paging.limit, search=search, is_active=is_active
    )
    return {"data": items, "meta": meta}


@subjects_router.get("/{subject_id}", response_model=SubjectOut)
def subject_detail(subject_id: str, db: Session = Depends(get_db_session), current_user: User = Depends(staff)):
    return services.get_subject(db, subject_id=subject_id, school_id=current_user.school_id)


@subjects_router.patch("/{subject_id}", response_model=SubjectOut)
def subject_update(
    subject_id: str,
    payload: SubjectUpdateRequest,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(admin_only),
):
    return services.update_subject(
        db, subject_id=subject_id, school_id=current_user.school_id, changes=payload.model_dump(exclude_unset=True, exclude_none=True)
    )


@subjects_router.delete("/{subject_id}", response_model=MessageResponse)
def subject_delete(subject_id: str, db: Session = Depends(get_db_session), current_user: User = Depends(admin_only)):
    services.deactivate_subject(db, subject_id=subject_id, school_id=current_user.school_id)
    return MessageResponse(message="Subject deactivated")


# --- courses ---


@courses_router.post("", response_model=CourseOut, status_code=status.HTTP_201_CREATED)
def add_course(payload: CourseCreateRequest, db: Session = Depends(get_db_session), current_user: User = Depends(admin_only)):
    return services.create_course(db, school_id=current_user.school_id, **payload.model_dump())


@courses_router.get("", response_model=Page[CourseOut])
def courses_list(
    teacher_id: str | None = None,
    grade_section_id: str | None = None,
    subject_id: str | None = None,
    academic_year_id: str | None = None,
    is_active: bool | None = None,
    paging: PageParams = Depends(page_params(default_limit=20)),
    db: Session = Depends(get_db_session),
    current_user: User = Depends(staff),
):
    items, meta = services.list_courses(
        db,
        actor=current_user,
        page=paging.page,
        limit=paging.limit,
        teacher_id=teacher_id,
        grade_section_id=grade_section_id,
        subject_id=subject_id,
        academic_year_id=academic_year_id,
        is_active=is_active,
    )
    return {"data": items, "meta": meta}


@courses_router.get("/{course_id}", response_model=CourseOut)
def course_detail(course_id: str, db: Session = Depends(get_db_session), current_user: User = Depends(staff)):
    return services.get_course(db, course_id=course_id, school_id=current_user.school_id)


@courses_router.get("/{course_id}/students", response_model=list[StudentOut])
def course_student_list(course_id: str, db: Session = Depends(get_db_session), current_user: User = Depends(staff)):
    return services.course_students(db, course_id=course_id, school_id=current_user.school_id)


@courses_router.post("/{course_id}/enroll", response_model=EnrollResult)
def course_enroll(
    course_id: str,
    payload: EnrollStudentsRequest,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(admin_only),
):
    return services.enroll_students(
        db, course_id=course_id, school_id=current_user.school_id, student_ids=payload.student_ids
    )


@courses_router.post("/{course_id}/enroll-section", response_model=EnrollResult)
def course_enroll_section(course_id: str, db: Session = Depends(get_db_session), current_user: User = Depends(admin_only)):
    return services.enroll_section(db, course_id=course_id, school_id=current_user.school_id)


@courses_router.delete("/{course_id}/students/{student_id}", response_model=MessageResponse)
def course_unenroll(
    course_id: str,
    student_id: str,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(admin_only),
):
    services.unenroll_student(db, course_id=course_id, student_id=student_id, school_id=current_user.school_id)
    return MessageResponse(message="Student removed from course")


@courses_router.patch("/{course_id}", response_model=CourseOut)
def course_update(
    course_id: str,
    payload: CourseUpdateRequest,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(admin_only),
):
    return services.update_course(
        db, course_id=course_id, school_id=current_user.school_id, changes=payload.model_dump(exclude_unset=True, exclude_none=True)
    )


@courses_router.delete("/{course_id}", response_model=MessageResponse)
def course_delete(course_id: str, db: Session = Depends(get_db_session), current_user: User = Depends(admin_only)):
    services.deactivate_course(db, course_id=course_id, school_id=current_user.school_id)
    return MessageResponse(message="Course deactivated")


# --- enrollments ---


@enrollments_router.post("", response_model=EnrollmentOut, status_code=status.HTTP_201_CREATED)
def add_enrollment(
    payload: EnrollmentCreateRequest,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(admin_only),
):
    return services.create_enrollment(
        db, school_id=current_user.school_id, student_id=payload.student_id, course_id=payload.course_id
    )


@enrollments_router.get("", response_model=Page[EnrollmentOut])
def enrollments_list(
    student_id: str | None = None,
    course_id: str | None = None,
    paging: PageParams = Depends(page_params(default_limit=20)),
    db: Session = Depends(get_db_session),
    current_user: User = Depends(staff),
):
    items, meta = services.list_enrollments(
        db,
        school_id=current_user.school_id,
        page=paging.page,
        limit=paging.limit,
        student_id=student_id,
        course_id=course_id,
    )
    return {"data": items, "meta": meta}


@enrollments_router.delete("/{enrollment_id}", response_model=MessageResponse)
def enrollment_delete(enrollment_id: str, db: Session = Depends(get_db_session), current_user: User = Depends(admin_only)):
    services.delete_enrollment(db, enrollment_id=enrollment_id, school_id=current_user.school_id)
    return MessageResponse(message="Enrollment deleted")


# --- schedules ---


@schedules_router.post("", response_model=ScheduleOut, status_code=status.HTTP_201_CREATED)
def add_schedule(payload: ScheduleCreateRequest, db: Session = Depends(get_db_session), current_user: User = Depends(admin_only)):
    return services.create_schedule(db, school_id=current_user.school_id, **payload.model_dump())


@schedules_router.get("", response_model=list[ScheduleOut])
def schedules_list(
    grade_section_id: str | None = None,
    course_id: str | None = None,
    day_of_week: int | None = Query(default=None, ge=0, le=6),
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(*ALL_ROLES)),
):
    return services.list_schedules(
        db,
        school_id=current_user.school_id,
        grade_section_id=grade_section_id,
        course_id=course_id,
        day_of_week=day_of_week,
    )


@schedules_router.get("/section/{section_id}", response_model=dict[int, list[ScheduleOut]])
def schedules_by_section(
    section_id: str,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(*ALL_ROLES)),
):
    return services.section_schedule(db, section_id=section_id, school_id=current_user.school_id)


@schedules_router.get("/teacher/{teacher_id}", response_model=dict[int, list[ScheduleOut]])
def schedules_by_teacher(teacher_id: str, db: Session = Depends(get_db_session), current_user: User = Depends(staff)):
    return services.teacher_schedule(db, teacher_id=teacher_id, school_id=current_user.school_id)


@schedules_router.get("/{schedule_id}", response_model=ScheduleOut)
def schedule_detail(schedule_id: str, db: Session = Depends(get_db_session), current_user: User = Depends(staff)):
    return services.get_schedule(db, schedule_id=schedule_id, school_id=current_user.school_id)


@schedules_router.patch("/{schedule_id}", response_model=ScheduleOut)
def schedule_update(
    schedule_id: str,
    payload: ScheduleUpdateRequest,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(admin_only),
):
    return services.update_schedule(
        db, schedule_id=schedule_id, school_id=current_user.school_id, changes=payload.model_dump(exclude_unset=True, exclude_none=True)
    )


@schedules_router.delete("/{schedule_id}", response_model=MessageResponse)
def schedule_delete(schedule_id: str, db: Session = Depends(get_db_session), current_user: User = Depends(admin_only)):
    services.delete_schedule(db, schedule_id=schedule_id, school_id=current_user.school_id)
    return MessageResponse(message="Schedule deleted")


# --- curriculum ---


@curriculum_router.post("", response_model=CurriculumTopicOut, status_code=status.HTTP_201_CREATED)
def add_topic(
    payload: CurriculumTopicCreateRequest,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(staff),
):
    return services.create_topic(db, actor=current_user, **payload.model_dump())


@curriculum_router.get("", response_model=Page[CurriculumTopicOut])
def topics_list(
    course_id: str | None = None,
    teacher_id: str | None = None,
    month: int | None = Query(default=None, ge=1, le=12),
    unit: int | None = Query(default=None, ge=1, le=12),
    topic_status: TopicStatus | None = Query(default=None, alias="status"),
    paging: PageParams = Depends(page_params(default_limit=50)),
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(*ALL_ROLES)),
):
    items, meta = services.list_topics(
        db,
        school_id=current_user.school_id,
        page=paging.page,
        limit=paging.limit,
        course_id=course_id,
        teacher_id=teacher_id,
        month=month,
        unit=unit,
        status=topic_status,
    )
    return {"data": items, "meta": meta}


@curriculum_router.get("/{topic_id}", response_model=CurriculumTopicOut)
def topic_detail(topic_id: str, db: Session = Depends(get_db_session), current_user: User = Depends(require_roles(*ALL_ROLES))):
    return services.get_topic(db, topic_id=topic_id, school_id=current_user.school_id)


@curriculum_router.patch("/{topic_id}", response_model=CurriculumTopicOut)
def topic_update(
    topic_id: str,
    payload: CurriculumTopicUpdateRequest,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(staff),
):
    return services.update_topic(db, actor=current_user, topic_id=topic_id, changes=payload.model_dump(exclude_unset=True, exclude_none=True))


@curriculum_router.delete("/{topic_id}", response_model=MessageResponse)
def topic_delete(topic_id: str, db: Session = Depends(get_db_session), current_user: User = Depends(staff)):
    services.delete_topic(db, actor=current_user, topic_id=topic_id)
    return MessageResponse(message="Curriculum topic deleted")


router = APIRouter(prefix="/api/v1")
for sub_router in (
    levels_router,
    years_router,
    sections_router,
    subjects_router,
    courses_router,
    enrollments_router,
    schedules_router,
    curriculum_router,
):
    router.include_router(sub_router)
