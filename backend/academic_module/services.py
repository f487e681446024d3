import logging
from collections import defaultdict

from fastapi import HTTPException, status
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..people_module.models import Student, Teacher
from ..people_module.services import teacher_for_user
from ..rbac_module.database import paginate
from ..rbac_module.models import User, UserRole
from ..rbac_module.services import get_in_school
from .models import AcademicYear, Course, CurriculumTopic, Enrollment, GradeSection, Level, Schedule, Subject

logger = logging.getLogger(__name__)

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]


def _apply(obj, changes: dict):
    for key, value in changes.items():
        setattr(obj, key, value)
    return obj


# --- levels ---


def create_level(db: Session, *, school_id: str, name: str, order: int) -> Level:
    if db.query(Level).filter(Level.school_id == school_id, Level.name == name).first():
        raise HTTPException(status_code=409, detail="Level already exists")
    level = Level(school_id=school_id, name=name, order=order)
    db.add(level)
    db.commit()
    db.refresh(level)
    return level


def list_levels(db: Session, *, school_id: str) -> list[Level]:
    return db.query(Level).filter(Level.school_id == school_id).order_by(Level.order.asc(), Level.name.asc()).all()


# --- academic years ---


def _clear_current_year(db: Session, school_id: str, keep_id: str | None = None) -> None:
    query = db.query(AcademicYear).filter(AcademicYear.school_id == school_id, AcademicYear.is_current.is_(True))
    if keep_id:
        query = query.filter(AcademicYear.id != keep_id)
    query.update({AcademicYear.is_current: False}, synchronize_session="fetch")


def create_academic_year(db: Session, *, school_id: str, **fields) -> AcademicYear:
    if fields.get("is_current"):
        _clear_current_year(db, school_id)
    year = AcademicYear(school_id=school_id, **fields)
    db.add(year)
    db.commit()
    db.refresh(year)
    return year


def list_academic_years(db: Session, *, school_id: str) -> list[AcademicYear]:
    return (
        db.query(AcademicYear)
        .filter(AcademicYear.school_id == school_id)
        .order_by(AcademicYear.is_current.desc(), AcademicYear.start_date.desc())
        .all()
    )


def current_academic_year(db: Session, *, school_id: str) -> AcademicYear:
    year = (
        db.query(AcademicYear)
        .filter(AcademicYear.school_id == school_id, AcademicYear.is_current.is_(True))
        .first()
    )
    if not year:
        raise HTTPException(status_code=404, detail="No current academic year")
    return year


def get_academic_year(db: Session, *, year_id: str, school_id: str) -> AcademicYear:
    return get_in_school(db, AcademicYear, year_id, school_id, "Academic year")


def update_academic_year(db: Session, *, year_id: str, school_id: str, changes: dict) -> AcademicYear:
    year = get_academic_year(db, year_id=year_id, school_id=school_id)
    start = changes.get("start_date", year.start_date)
    end = changes.get("end_date", year.end_date)
    if end <= start:
        raise HTTPException(status_code=400, detail="end_date must be after start_date")
    if changes.get("is_current"):
        _clear_current_year(db, school_id, keep_id=year.id)
    _apply(year, changes)
    db.commit()
    db.refresh(year)
    return year


def set_current_academic_year(db: Session, *, year_id: str, school_id: str) -> AcademicYear:
    year = get_academic_year(db, year_id=year_id, school_id=school_id)
    _clear_current_year(db, school_id, keep_id=year.id)
    year.is_current = True
    db.commit()
    db.refresh(year)
    logger.info(f"Academic year {year.name} is now current for school {school_id}")
    return year


def delete_academic_year(db: Session, *, year_id: str, school_id: str) -> None:
    year = get_academic_year(db, year_id=year_id, school_id=school_id)
    if db.query(GradeSection).filter(GradeSection.academic_year_id == year.id).count():
        raise HTTPException(status_code=409, detail="Academic year has grade sections")
    db.delete(year)
    db.commit()


# --- grade sections ---


def _section_exists(db: Session, *, academic_year_id, level_id, grade, section, exclude_id=None) -> bool:
    query = db.query(GradeSection).filter(
        GradeSection.academic_year_id == academic_year_id,
        GradeSection.grade == grade,
        GradeSection.section == section,
        GradeSection.level_id.is_(None) if level_id is None else GradeSection.level_id == level_id,
    )
    if exclude_id:
        query = query.filter(GradeSection.id != exclude_id)
    return query.first() is not None


def create_grade_section(db: Session, *, school_id: str, **fields) -> GradeSection:
    get_academic_year(db, year_id=fields["academic_year_id"], school_id=school_id)
    if fields.get("level_id"):
        get_in_school(db, Level, fields["level_id"], school_id, "Level")
    if _section_exists(
        db,
        academic_year_id=fields["academic_year_id"],
        level_id=fields.get("level_id"),
        grade=fields["grade"],
        section=fields["section"],
    ):
        raise HTTPException(status_code=409, detail="Grade section already exists")
    section = GradeSection(school_id=school_id, **fields)
    db.add(section)
    db.commit()
    db.refresh(section)
    return section


def list_grade_sections(
    db: Session,
    *,
    school_id: str,
    page: int,
    limit: int,
    academic_year_id: str | None = None,
    level_id: str | None = None,
    grade: int | None = None,
    is_active: bool | None = None,
):
    query = db.query(GradeSection).filter(GradeSection.school_id == school_id)
    if academic_year_id:
        query = query.filter(GradeSection.academic_year_id == academic_year_id)
    if level_id:
        query = query.filter(GradeSection.level_id == level_id)
    if grade:
        query = query.filter(GradeSection.grade == grade)
    if is_active is not None:
        query = query.filter(GradeSection.is_active == is_active)
    query = query.order_by(GradeSection.grade.asc(), GradeSection.section.asc())
    return paginate(query, page=page, limit=limit)


def get_grade_section(db: Session, *, section_id: str, school_id: str) -> GradeSection:
    return get_in_school(db, GradeSection, section_id, school_id, "Grade section")


def section_students(db: Session, *, section_id: str, school_id: str) -> list[Student]:
    section = get_grade_section(db, section_id=section_id, school_id=school_id)
    return (
        db.query(Student)
        .filter(Student.grade_section_id == section.id, Student.is_active.is_(True))
        .order_by(Student.student_code.asc())
        .all()
    )


def update_grade_section(db: Session, *, section_id: str, school_id: str, changes: dict) -> GradeSection:
    section = get_grade_section(db, section_id=section_id, school_id=school_id)
    if changes.get("level_id"):
        get_in_school(db, Level, changes["level_id"], school_id, "Level")
    if {"grade", "section", "level_id"} & changes.keys() and _section_exists(
        db,
        academic_year_id=section.academic_year_id,
        level_id=changes.get("level_id", section.level_id),
        grade=changes.get("grade", section.grade),
        section=changes.get("section", section.section),
        exclude_id=section.id,
    ):
        raise HTTPException(status_code=409, detail="Grade section already exists")
    if "capacity" in changes and changes["capacity"] < section.student_count:
        raise HTTPException(status_code=400, detail="Capacity is below the current number of students")
    _apply(section, changes)
    db.commit()
    db.refresh(section)
    return section


def deactivate_grade_section(db: Session, *, section_id: str, school_id: str) -> None:
    section = get_grade_section(db, section_id=section_id, school_id=school_id)
    section.is_active = False
    db.commit()


# --- subjects ---


def _subject_code_taken(db: Session, school_id: str, code: str, exclude_id: str | None = None) -> bool:
    query = db.query(Subject).filter(Subject.school_id == school_id, Subject.code == code)
    if exclude_id:
        query = query.filter(Subject.id != exclude_id)
    return query.first() is not None


def create_subject(db: Session, *, school_id: str, **fields) -> Subject:
    if _subject_code_taken(db, school_id, fields["code"]):
        raise HTTPException(status_code=409, detail="Subject code already exists")
    subject = Subject(school_id=school_id, **fields)
    db.add(subject)
    db.commit()
    db.refresh(subject)
    return subject


def list_subjects(db: Session, *, school_id: str, page: int, limit: int, search: str | None = None, is_active=None):
    query = db.query(Subject).filter(Subject.school_id == school_id)
    if search:
        pattern = f"%{search.strip().lower()}%"
        query = query.filter(func.lower(Subject.name).like(pattern) | func.lower(Subject.code).like(pattern))
    if is_active is not None:
        query = query.filter(Subject.is_active == is_active)
    return paginate(query.order_by(Subject.name.asc()), page=page, limit=limit)


def get_subject(db: Session, *, subject_id: str, school_id: str) -> Subject:
    return get_in_school(db, Subject, subject_id, school_id, "Subject")


def update_subject(db: Session, *, subject_id: str, school_id: str, changes: dict) -> Subject:
    subject = get_subject(db, subject_id=subject_id, school_id=school_id)
    if "code" in changes and _subject_code_taken(db, school_id, changes["code"], exclude_id=subject.id):
        raise HTTPException(status_code=409, detail="Subject code already exists")
    _apply(subject, changes)
    db.commit()
    db.refresh(subject)
    return subject


def deactivate_subject(db: Session, *, subject_id: str, school_id: str) -> None:
    subject = get_subject(db, subject_id=subject_id, school_id=school_id)
    subject.is_active = False
    db.commit()


# --- courses ---


def _active_teacher(db: Session, teacher_id: str, school_id: str) -> Teacher:
    teacher = get_in_school(db, Teacher, teacher_id, school_id, "Teacher")
    if not teacher.is_active:
        raise HTTPException(status_code=400, detail="Teacher is inactive")
    return teacher


def create_course(db: Session, *, school_id: str, **fields) -> Course:
    _active_teacher(db, fields["teacher_id"], school_id)
    section = get_grade_section(db, section_id=fields["grade_section_id"], school_id=school_id)
    get_subject(db, subject_id=fields["subject_id"], school_id=school_id)
    get_academic_year(db, year_id=fields["academic_year_id"], school_id=school_id)
    if section.academic_year_id != fields["academic_year_id"]:
        raise HTTPException(status_code=400, detail="Grade section belongs to another academic year")
    course = Course(school_id=school_id, **fields)
    db.add(course)
    db.commit()
    db.refresh(course)
    return course


def list_courses(
    db: Session,
    *,
    actor: User,
    page: int,
    limit: int,
    teacher_id: str | None = None,
    grade_section_id: str | None = None,
    subject_id: str | None = None,
    academic_year_id: str | None = None,
    is_active: bool | None = None,
):
    query = db.query(Course).filter(Course.school_id == actor.school_id)
    if actor.role == UserRole.TEACHER:
        own = teacher_for_user(db, actor)
        query = query.filter(Course.teacher_id == (own.id if own else None))
    elif teacher_id:
        query = query.filter(Course.teacher_id == teacher_id)
    if grade_section_id:
        query = query.filter(Course.grade_section_id == grade_section_id)
    if subject_id:
        query = query.filter(Course.subject_id == subject_id)
    if academic_year_id:
        query = query.filter(Course.academic_year_id == academic_year_id)
    if is_active is not None:
        query = query.filter(Course.is_active == is_active)
    return paginate(query.order_by(Course.name.asc()), page=page, limit=limit)


def get_course(db: Session, *, course_id: str, school_id: str) -> Course:
    return get_in_school(db, Course, course_id, school_id, "Course")


def ensure_course_teacher(db: Session, *, user: User, course: Course) -> None:
    """Teachers may only act on the courses they teach."""
    if user.role != UserRole.TEACHER:
        return
    own = teacher_for_user(db, user)
    if not own or own.id != course.teacher_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You do not teach this course")


def update_course(db: Session, *, course_id: str, school_id: str, changes: dict) -> Course:
    course = get_course(db, course_id=course_id, school_id=school_id)
    if changes.get("teacher_id"):
        _active_teacher(db, changes["teacher_id"], school_id)
    _apply(course, changes)
    db.commit()
    db.refresh(course)
    return course


def deactivate_course(db: Session, *, course_id: str, school_id: str) -> None:
    course = get_course(db, course_id=course_id, school_id=school_id)
    course.is_active = False
    db.commit()


def course_students(db: Session, *, course_id: str, school_id: str) -> list[Student]:
    course = get_course(db, course_id=course_id, school_id=school_id)
    return (
        db.query(Student)
        .join(Enrollment, Enrollment.student_id == Student.id)
        .filter(Enrollment.course_id == course.id)
        .order_by(Student.student_code.asc())
        .all()
    )


def teacher_courses(db: Session, *, teacher_id: str, school_id: str) -> list[Course]:
    teacher = get_in_school(db, Teacher, teacher_id, school_id, "Teacher")
    return db.query(Course).filter(Course.teacher_id == teacher.id).order_by(Course.name.asc()).all()


def _enroll(db: Session, course: Course, student_ids: list[str]) -> dict:
    already = {row[0] for row in db.query(Enrollment.student_id).filter(Enrollment.course_id == course.id).all()}
    enrolled = skipped = 0
    for student_id in dict.fromkeys(student_ids):
        student = get_in_school(db, Student, student_id, course.school_id, "Student")
        if student.id in already or not student.is_active:
            skipped += 1
            continue
        db.add(Enrollment(school_id=course.school_id, student_id=student.id, course_id=course.id))
        enrolled += 1
    db.commit()
    return {"enrolled": enrolled, "skipped": skipped}


def enroll_students(db: Session, *, course_id: str, school_id: str, student_ids: list[str]) -> dict:
    course = get_course(db, course_id=course_id, school_id=school_id)
    return _enroll(db, course, student_ids)


def enroll_section(db: Session, *, course_id: str, school_id: str) -> dict:
    course = get_course(db, course_id=course_id, school_id=school_id)
    students = section_students(db, section_id=course.grade_section_id, school_id=school_id)
    result = _enroll(db, course, [student.id for student in students])
    logger.info(f"Enrolled {result['enrolled']} students of section {course.grade_section_id} in {course.name}")
    return result


def unenroll_student(db: Session, *, course_id: str, student_id: str, school_id: str) -> None:
    course = get_course(db, course_id=course_id, school_id=school_id)
    enrollment = (
        db.query(Enrollment).filter(Enrollment.course_id == course.id, Enrollment.student_id == student_id).first()
    )
    if not enrollment:
        raise HTTPException(status_code=404, detail="Enrollment not found")
    db.delete(enrollment)
    db.commit()


# --- enrollments ---


def create_enrollment(db: Session, *, school_id: str, student_id: str, course_id: str) -> Enrollment:
    course = get_course(db, course_id=course_id, school_id=school_id)
    student = get_in_school(db, Student, student_id, school_id, "Student")
    if db.query(Enrollment).filter(Enrollment.course_id == course.id, Enrollment.student_id == student.id).first():
        raise HTTPException(status_code=409, detail="Student already enrolled in this course")
    enrollment = Enrollment(school_id=school_id, student_id=student.id, course_id=course.id)
    db.add(enrollment)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(status_code=409, detail="Student already enrolled in this course") from exc
    db.refresh(enrollment)
    return enrollment


def list_enrollments(
    db: Session,
    *,
    school_id: str,
    page: int,
    limit: int,
    student_id: str | None = None,
    course_id: str | None = None,
):
    query = db.query(Enrollment).filter(Enrollment.school_id == school_id)
    if student_id:
        query = query.filter(Enrollment.student_id == student_id)
    if course_id:
        query = query.filter(Enrollment.course_id == course_id)
    return paginate(query.order_by(Enrollment.enrolled_at.desc()), page=page, limit=limit)


def student_enrollments(db: Session, *, student_id: str) -> list[Enrollment]:
    return db.query(Enrollment).filter(Enrollment.student_id == student_id).order_by(Enrollment.enrolled_at.asc()).all()


def is_enrolled(db: Session, *, student_id: str, course_id: str) -> bool:
    return (
        db.query(Enrollment).filter(Enrollment.student_id == student_id, Enrollment.course_id == course_id).first()
        is not None
    )


def delete_enrollment(db: Session, *, enrollment_id: str, school_id: str) -> None:
    enrollment = get_in_school(db, Enrollment, enrollment_id, school_id, "Enrollment")
    db.delete(enrollment)
    db.commit()


# --- schedules ---


def _find_conflict(
    db: Session, *, grade_section_id: str, day_of_week: int, start_time: str, end_time: str, exclude_id=None
) -> Schedule | None:
    # Zero-padded HH:MM strings order the same way as times of day.
    query = db.query(Schedule).filter(
        Schedule.grade_section_id == grade_section_id,
        Schedule.day_of_week == day_of_week,
        Schedule.start_time < end_time,
        Schedule.end_time > start_time,
    )
    if exclude_id:
        query = query.filter(Schedule.id != exclude_id)
    return query.first()


def create_schedule(db: Session, *, school_id: str, **fields) -> Schedule:
    course = get_course(db, course_id=fields["course_id"], school_id=school_id)
    get_grade_section(db, section_id=fields["grade_section_id"], school_id=school_id)
    if course.grade_section_id != fields["grade_section_id"]:
        raise HTTPException(status_code=400, detail="Course does not belong to this grade section")
    conflict = _find_conflict(
        db,
        grade_section_id=fields["grade_section_id"],
        day_of_week=fields["day_of_week"],
        start_time=fields["start_time"],
        end_time=fields["end_time"],
    )
    if conflict:
        raise HTTPException(
            status_code=409,
            detail=f"Schedule conflicts with {conflict.start_time}-{conflict.end_time} on {DAY_NAMES[conflict.day_of_week]}",
        )
    schedule = Schedule(school_id=school_id, **fields)
    db.add(schedule)
    db.commit()
    db.refresh(schedule)
    return schedule


def list_schedules(
    db: Session,
    *,
    school_id: str,
    grade_section_id: str | None = None,
    course_id: str | None = None,
    day_of_week: int | None = None,
) -> list[Schedule]:
    query = db.query(Schedule).filter(Schedule.school_id == school_id)
    if grade_section_id:
        query = query.filter(Schedule.grade_section_id == grade_section_id)
    if course_id:
        query = query.filter(Schedule.course_id == course_id)
    if day_of_week is not None:
        query = query.filter(Schedule.day_of_week == day_of_week)
    return query.order_by(Schedule.day_of_week.asc(), Schedule.start_time.asc()).all()


def group_by_day(schedules: list[Schedule]) -> dict[int, list[Schedule]]:
    grouped: dict[int, list[Schedule]] = defaultdict(list)
    for schedule in schedules:
        grouped[schedule.day_of_week].append(schedule)
    return dict(grouped)


def section_schedule(db: Session, *, section_id: str, school_id: str) -> dict[int, list[Schedule]]:
    section = get_grade_section(db, section_id=section_id, school_id=school_id)
    return group_by_day(list_schedules(db, school_id=school_id, grade_section_id=section.id))


def teacher_schedule(db: Session, *, teacher_id: str, school_id: str) -> dict[int, list[Schedule]]:
    teacher = get_in_school(db, Teacher, teacher_id, school_id, "Teacher")
    schedules = (
        db.query(Schedule)
        .join(Course, Course.id == Schedule.course_id)
        .filter(Course.teacher_id == teacher.id)
        .order_by(Schedule.day_of_week.asc(), Schedule.start_time.asc())
        .all()
    )
    return group_by_day(schedules)


def get_schedule(db: Session, *, schedule_id: str, school_id: str) -> Schedule:
    return get_in_school(db, Schedule, schedule_id, school_id, "Schedule")


def update_schedule(db: Session, *, schedule_id: str, school_id: str, changes: dict) -> Schedule:
    schedule = get_schedule(db, schedule_id=schedule_id, school_id=school_id)
    day = changes.get("day_of_week", schedule.day_of_week)
    start = changes.get("start_time", schedule.start_time)
    end = changes.get("end_time", schedule.end_time)
    if end <= start:
        raise HTTPException(status_code=400, detail="end_time must be after start_time")
    conflict = _find_conflict(
        db,
        grade_section_id=schedule.grade_section_id,
        day_of_week=day,
        start_time=start,
        end_time=end,
        exclude_id=schedule.id,
    )
    if conflict:
        raise HTTPException(status_code=409, detail="Schedule conflicts with an existing slot")
    _apply(schedule, changes)
    db.commit()
    db.refresh(schedule)
    return schedule


def delete_schedule(db: Session, *, schedule_id: str, school_id: str) -> None:
    schedule = get_schedule(db, schedule_id=schedule_id, school_id=school_id)
    db.delete(schedule)
    db.commit()


# --- curriculum ---


def create_topic(db: Session, *, actor: User, teacher_id: str | None = None, **fields) -> CurriculumTopic:
    course = get_course(db, course_id=fields["course_id"], school_id=actor.school_id)
    ensure_course_teacher(db, user=actor, course=course)
    if actor.role == UserRole.TEACHER:
        teacher_id = teacher_for_user(db, actor).id
    elif teacher_id:
        get_in_school(db, Teacher, teacher_id, actor.school_id, "Teacher")
    else:
        teacher_id = course.teacher_id
    topic = CurriculumTopic(school_id=actor.school_id, teacher_id=teacher_id, **fields)
    db.add(topic)
    db.commit()
    db.refresh(topic)
    return topic


def list_topics(
    db: Session,
    *,
    school_id: str,
    page: int,
    limit: int,
    course_id: str | None = None,
    teacher_id: str | None = None,
    month: int | None = None,
    unit: int | None = None,
    status=None,
):
    query = db.query(CurriculumTopic).filter(CurriculumTopic.school_id == school_id)
    if course_id:
        query = query.filter(CurriculumTopic.course_id == course_id)
    if teacher_id:
        query = query.filter(CurriculumTopic.teacher_id == teacher_id)
    if month:
        query = query.filter(CurriculumTopic.month == month)
    if unit:
        query = query.filter(CurriculumTopic.unit == unit)
    if status:
        query = query.filter(CurriculumTopic.status == status)
    query = query.order_by(CurriculumTopic.month.asc(), CurriculumTopic.unit.asc(), CurriculumTopic.title.asc())
    return paginate(query, page=page, limit=limit)


def get_topic(db: Session, *, topic_id: str, school_id: str) -> CurriculumTopic:
    return get_in_school(db, CurriculumTopic, topic_id, school_id, "Curriculum topic")


def update_topic(db: Session, *, actor: User, topic_id: str, changes: dict) -> CurriculumTopic:
    topic = get_topic(db, topic_id=topic_id, school_id=actor.school_id)
    ensure_course_teacher(db, user=actor, course=get_course(db, course_id=topic.course_id, school_id=actor.school_id))
    _apply(topic, changes)
    db.commit()
    db.refresh(topic)
    return topic


def delete_topic(db: Session, *, actor: User, topic_id: str) -> None:
    topic = get_topic(db, topic_id=topic_id, school_id=actor.school_id)
    ensure_course_teacher(db, user=actor, course=get_course(db, course_id=topic.course_id, school_id=actor.school_id))
    db.delete(topic)
    db.commit()
