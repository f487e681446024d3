import logging
from collections import defaultdict
from datetime import date

from fastapi import HTTPException, status
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..academic_module.services import ensure_course_teacher, get_course, get_grade_section, is_enrolled
from ..communication_module.events import on_attendance_marked
from ..people_module.models import Student
from ..people_module.services import (
    accessible_student_ids,
    ensure_student_access,
    get_student,
    teacher_for_user,
)
from ..rbac_module.database import paginate
from ..rbac_module.models import AuditAction, User, UserRole
from ..rbac_module.services import get_in_school, record_audit
from .models import Attendance, AttendanceStatus, Grade

logger = logging.getLogger(__name__)

PASSING_GRADE = 11
# Statuses that count toward the attendance rate.
ATTENDED = (AttendanceStatus.PRESENT, AttendanceStatus.LATE, AttendanceStatus.EXCUSED)


def letter_for(value: float) -> str:
    if value >= 18:
        return "AD"
    if value >= 14:
        return "A"
    if value >= PASSING_GRADE:
        return "B"
    return "C"


def _round(value: float) -> float:
    return round(value, 2)


def _scope_to_visible_students(db: Session, query, model, user: User):
    visible = accessible_student_ids(db, user=user)
    if visible is None:
        return query
    return query.filter(model.student_id.in_(visible))


def _teacher_id(db: Session, user: User) -> str | None:
    if user.role != UserRole.TEACHER:
        return None
    teacher = teacher_for_user(db, user)
    return teacher.id if teacher else None


# --- attendance ---


def _student_in_section(db: Session, *, student_id: str, section_id: str, school_id: str) -> Student:
    student = get_student(db, student_id=student_id, school_id=school_id)
    if student.grade_section_id != section_id:
        raise HTTPException(status_code=400, detail=f"Student {student_id} does not belong to this grade section")
    return student


def create_attendance(db: Session, *, actor: User, student_id: str, grade_section_id: str, **fields) -> Attendance:
    section = get_grade_section(db, section_id=grade_section_id, school_id=actor.school_id)
    student = _student_in_section(db, student_id=student_id, section_id=section.id, school_id=actor.school_id)
    taken = db.query(Attendance).filter(Attendance.student_id == student.id, Attendance.date == fields["date"]).first()
    if taken:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Attendance already recorded for this date")

    attendance = Attendance(
        school_id=actor.school_id,
        student_id=student.id,
        grade_section_id=section.id,
        teacher_id=_teacher_id(db, actor),
        recorded_by_id=actor.id,
        **fields,
    )
    db.add(attendance)
    db.flush()
    on_attendance_marked(db, attendance=attendance, student_name=student.user.full_name)
    db.commit()
    db.refresh(attendance)
    return attendance


def mark_all(db: Session, *, actor: User, grade_section_id: str, date: date, records: list[dict]) -> dict:
    """Record a whole section for one day, updating rows that already exist."""
    section = get_grade_section(db, section_id=grade_section_id, school_id=actor.school_id)
    teacher_id = _teacher_id(db, actor)
    created = updated = 0
    for record in records:
        student = _student_in_section(db, student_id=record["student_id"], section_id=section.id, school_id=actor.school_id)
        attendance = db.query(Attendance).filter(Attendance.student_id == student.id, Attendance.date == date).first()
        if attendance:
            attendance.status = record["status"]
            attendance.notes = record.get("notes")
            attendance.recorded_by_id = actor.id
            updated += 1
        else:
            attendance = Attendance(
                school_id=actor.school_id,
                student_id=student.id,
                grade_section_id=section.id,
                teacher_id=teacher_id,
                recorded_by_id=actor.id,
                date=date,
                status=record["status"],
                notes=record.get("notes"),
            )
            db.add(attendance)
            created += 1
        db.flush()
        on_attendance_marked(db, attendance=attendance, student_name=student.user.full_name)
    db.commit()
    logger.info(f"Attendance for section {section.id} on {date}: {created} created, {updated} updated")
    return {"created": created, "updated": updated}


def list_attendance(
    db: Session,
    *,
    user: User,
    page: int,
    limit: int,
    date: date | None = None,
    grade_section_id: str | None = None,
    student_id: str | None = None,
    status: AttendanceStatus | None = None,
):
    query = db.query(Attendance).filter(Attendance.school_id == user.school_id)
    query = _scope_to_visible_students(db, query, Attendance, user)
    if date:
        query = query.filter(Attendance.date == date)
    if grade_section_id:
        query = query.filter(Attendance.grade_section_id == grade_section_id)
    if student_id:
        query = query.filter(Attendance.student_id == student_id)
    if status:
        query = query.filter(Attendance.status == status)
    return paginate(query.order_by(Attendance.date.desc(), Attendance.created_at.desc()), page=page, limit=limit)


def student_attendance(db: Session, *, user: User, student_id: str) -> list[Attendance]:
    student = get_student(db, student_id=student_id, school_id=user.school_id)
    ensure_student_access(db, user=user, student=student)
    return db.query(Attendance).filter(Attendance.student_id == student.id).order_by(Attendance.date.desc()).all()


def attendance_summary(
    db: Session,
    *,
    user: User,
    student_id: str,
    start_date: date | None = None,
    end_date: date | None = None,
) -> dict:
    student = get_student(db, student_id=student_id, school_id=user.school_id)
    ensure_student_access(db, user=user, student=student)
    if start_date and end_date and start_date > end_date:
        raise HTTPException(status_code=400, detail="start_date must be before end_date")

    query = db.query(Attendance.status, func.count(Attendance.id)).filter(Attendance.student_id == student.id)
    if start_date:
        query = query.filter(Attendance.date >= start_date)
    if end_date:
        query = query.filter(Attendance.date <= end_date)
    counts = {row[0]: row[1] for row in query.group_by(Attendance.status).all()}

    total = sum(counts.values())
    attended = sum(counts.get(key, 0) for key in ATTENDED)
    return {
        "student_id": student.id,
        "total": total,
        "present": counts.get(AttendanceStatus.PRESENT, 0),
        "late": counts.get(AttendanceStatus.LATE, 0),
        "absent": counts.get(AttendanceStatus.ABSENT, 0),
        "excused": counts.get(AttendanceStatus.EXCUSED, 0),
        "attendance_rate": _round(attended / total * 100) if total else 0.0,
    }


def section_roster(db: Session, *, section_id: str, school_id: str, date: date) -> list[dict]:
    section = get_grade_section(db, section_id=section_id, school_id=school_id)
    students = (
        db.query(Student)
        .filter(Student.grade_section_id == section.id, Student.is_active.is_(True))
        .order_by(Student.student_code.asc())
        .all()
    )
    records = {
        row.student_id: row
        for row in db.query(Attendance).filter(Attendance.grade_section_id == section.id, Attendance.date == date)
    }
    return [{"student": student, "attendance": records.get(student.id)} for student in students]


def get_attendance(db: Session, *, attendance_id: str, user: User) -> Attendance:
    attendance = get_in_school(db, Attendance, attendance_id, user.school_id, "Attendance record")
    ensure_student_access(db, user=user, student=attendance.student)
    return attendance


def update_attendance(db: Session, *, actor: User, attendance_id: str, changes: dict) -> Attendance:
    attendance = get_in_school(db, Attendance, attendance_id, actor.school_id, "Attendance record")
    status_changed = "status" in changes and changes["status"] != attendance.status
    for key, value in changes.items():
        setattr(attendance, key, value)
    attendance.recorded_by_id = actor.id
    if status_changed:
        db.flush()
        on_attendance_marked(db, attendance=attendance, student_name=attendance.student.user.full_name)
    db.commit()
    db.refresh(attendance)
    return attendance


def delete_attendance(db: Session, *, actor: User, attendance_id: str) -> None:
    attendance = get_in_school(db, Attendance, attendance_id, actor.school_id, "Attendance record")
    db.delete(attendance)
    record_audit(
        db,
        action=AuditAction.DELETE,
        resource="attendance",
        resource_id=attendance_id,
        user=actor,
        old_data={"student_id": attendance.student_id, "date": attendance.date.isoformat(), "status": attendance.status.value},
    )


# --- grades ---


def create_grade(db: Session, *, actor: User, student_id: str, course_id: str, letter: str | None = None, **fields) -> Grade:
    course = get_course(db, course_id=course_id, school_id=actor.school_id)
    ensure_course_teacher(db, user=actor, course=course)
    student = get_student(db, student_id=student_id, school_id=actor.school_id)
    if not is_enrolled(db, student_id=student.id, course_id=course.id):
        raise HTTPException(status_code=400, detail="Student is not enrolled in this course")
    expected = letter_for(fields["value"])
    if letter is not None and letter != expected:
        raise HTTPException(status_code=400, detail=f"Letter {letter} does not match value {fields['value']} (expected {expected})")

    grade = Grade(
        school_id=actor.school_id,
        student_id=student.id,
        course_id=course.id,
        teacher_id=course.teacher_id,
        letter=expected,
        **fields,
    )
    db.add(grade)
    db.commit()
    db.refresh(grade)
    logger.info(f"Grade {grade.value} ({grade.letter}) recorded for student {student.id} in course {course.id}")
    return grade


def list_grades(
    db: Session,
    *,
    user: User,
    page: int,
    limit: int,
    student_id: str | None = None,
    course_id: str | None = None,
    period: int | None = None,
    type=None,
):
    query = db.query(Grade).filter(Grade.school_id == user.school_id)
    query = _scope_to_visible_students(db, query, Grade, user)
    if student_id:
        query = query.filter(Grade.student_id == student_id)
    if course_id:
        query = query.filter(Grade.course_id == course_id)
    if period:
        query = query.filter(Grade.period == period)
    if type:
        query = query.filter(Grade.type == type)
    return paginate(query.order_by(Grade.created_at.desc()), page=page, limit=limit)


def student_grades(db: Session, *, user: User, student_id: str) -> list[Grade]:
    student = get_student(db, student_id=student_id, school_id=user.school_id)
    ensure_student_access(db, user=user, student=student)
    return (
        db.query(Grade)
        .filter(Grade.student_id == student.id)
        .order_by(Grade.course_id.asc(), Grade.period.asc(), Grade.created_at.asc())
        .all()
    )


def student_report(db: Session, *, user: User, student_id: str) -> dict:
    """Per-course period averages plus an overall average for one student."""
    grades = student_grades(db, user=user, student_id=student_id)
    by_course: dict[str, list[Grade]] = defaultdict(list)
    for grade in grades:
        by_course[grade.course_id].append(grade)

    courses = []
    for course_grades in by_course.values():
        course = course_grades[0].course
        by_period: dict[int, list[float]] = defaultdict(list)
        for grade in course_grades:
            by_period[grade.period].append(grade.value)
        average = _round(sum(grade.value for grade in course_grades) / len(course_grades))
        courses.append(
            {
                "course_id": course.id,
                "subject": course.subject.name,
                "period_averages": {period: _round(sum(values) / len(values)) for period, values in sorted(by_period.items())},
                "average": average,
                "letter": letter_for(average),
                "total_grades": len(course_grades),
            }
        )

    report = {"student_id": student_id, "courses": courses, "overall_average": None, "overall_letter": None}
    if grades:
        overall = _round(sum(grade.value for grade in grades) / len(grades))
        report["overall_average"] = overall
        report["overall_letter"] = letter_for(overall)
    return report


def course_grades(db: Session, *, user: User, course_id: str, period: int | None = None) -> list[Grade]:
    course = get_course(db, course_id=course_id, school_id=user.school_id)
    ensure_course_teacher(db, user=user, course=course)
    query = db.query(Grade).filter(Grade.course_id == course.id)
    if period:
        query = query.filter(Grade.period == period)
    return query.order_by(Grade.period.asc(), Grade.created_at.asc()).all()


def course_stats(db: Session, *, user: User, course_id: str, period: int | None = None) -> dict:
    values = [grade.value for grade in course_grades(db, user=user, course_id=course_id, period=period)]
    letters = {letter: 0 for letter in ("AD", "A", "B", "C")}
    for value in values:
        letters[letter_for(value)] += 1
    stats = {"course_id": course_id, "period": period, "total": len(values), "letters": letters}
    if values:
        passed = sum(1 for value in values if value >= PASSING_GRADE)
        stats.update(
            average=_round(sum(values) / len(values)),
            max=max(values),
            min=min(values),
            pass_rate=_round(passed / len(values) * 100),
        )
    return stats


def get_grade(db: Session, *, grade_id: str, user: User) -> Grade:
    grade = get_in_school(db, Grade, grade_id, user.school_id, "Grade")
    ensure_student_access(db, user=user, student=grade.student)
    return grade


def update_grade(db: Session, *, actor: User, grade_id: str, changes: dict) -> Grade:
    grade = get_in_school(db, Grade, grade_id, actor.school_id, "Grade")
    ensure_course_teacher(db, user=actor, course=grade.course)
    for key, value in changes.items():
        setattr(grade, key, value)
    grade.letter = letter_for(grade.value)
    db.commit()
    db.refresh(grade)
    return grade


def delete_grade(db: Session, *, actor: User, grade_id: str) -> None:
    grade = get_in_school(db, Grade, grade_id, actor.school_id, "Grade")
    ensure_course_teacher(db, user=actor, course=grade.course)
    db.delete(grade)
    record_audit(
        db,
        action=AuditAction.DELETE,
        resource="grades",
        resource_id=grade_id,
        user=actor,
        old_data={"student_id": grade.student_id, "course_id": grade.course_id, "value": grade.value},
    )
