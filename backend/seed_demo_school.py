"""Populate the default school with a small demo: one section, a teacher, a student with a parent, a course and a pending payment.

Run with ``python -m backend.seed_demo_school``; the schema and default administrator are created if missing.
"""

from datetime import date, timedelta

from backend.academic_module import services as academic
from backend.finance_module import services as finance
from backend.main import app  # noqa: F401  registers every table
from backend.people_module import services as people
from backend.rbac_module import init_rbac_module
from backend.rbac_module.config import settings
from backend.rbac_module.database import SessionLocal
from backend.rbac_module.models import User

DEMO_PASSWORD = "Demo12345"


def seed(db) -> None:
    admin = db.query(User).filter(User.email == settings.default_admin_email).one()
    school_id = admin.school_id
    if db.query(User).filter(User.email == "teacher@school.local").first():
        print("Demo data already present, nothing to do.")
        return

    today = date.today()
    year = academic.create_academic_year(
        db,
        school_id=school_id,
        name=str(today.year),
        start_date=date(today.year, 1, 1),
        end_date=date(today.year, 12, 31),
        is_current=True,
    )
    level = academic.create_level(db, school_id=school_id, name="Primary", order=1)
    section = academic.create_grade_section(
        db, school_id=school_id, academic_year_id=year.id, level_id=level.id, grade=1, section="A", capacity=30
    )
    subject = academic.create_subject(db, school_id=school_id, name="Mathematics", code="MAT1")
    print(f"Created {year.name} with section {section.label}")

    teacher = people.create_teacher(
        db,
        actor=admin,
        account={"email": "teacher@school.local", "password": DEMO_PASSWORD, "first_name": "Laura", "last_name": "Gomez"},
        profile={"teacher_code": "T001", "specialties": ["Mathematics"]},
    )
    student = people.create_student(
        db,
        actor=admin,
        account={"email": "student@school.local", "password": DEMO_PASSWORD, "first_name": "Mateo", "last_name": "Rios"},
        profile={"student_code": "S001", "grade_section_id": section.id},
        parent_ids=[],
    )
    parent = people.create_parent(
        db,
        actor=admin,
        account={"email": "parent@school.local", "password": DEMO_PASSWORD, "first_name": "Ana", "last_name": "Rios"},
        profile={"relationship_type": "Mother"},
        role="PARENT",
        student_ids=[student.id],
    )
    print(f"Created teacher {teacher.user.email}, student {student.user.email}, parent {parent.user.email}")

    course = academic.create_course(
        db,
        school_id=school_id,
        name="Mathematics 1A",
        teacher_id=teacher.id,
        grade_section_id=section.id,
        subject_id=subject.id,
        academic_year_id=year.id,
        hours_per_week=5,
    )
    academic.enroll_section(db, course_id=course.id, school_id=school_id)

    concept = finance.create_concept(db, school_id=school_id, name="Monthly fee", amount=350.0, is_recurrent=True, due_day=5)
    finance.create_payment(
        db,
        actor=admin,
        school_id=school_id,
        student_id=student.id,
        concept_id=concept.id,
        due_date=today + timedelta(days=7),
    )
    print(f"Created course {course.name} and a pending {concept.name} payment")


if __name__ == "__main__":
    init_rbac_module()
    db = SessionLocal()
    try:
        seed(db)
    finally:
        db.close()
    print(f"\nDone! Demo users share the password {DEMO_PASSWORD}.")
