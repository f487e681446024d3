from __future__ import annotations

import os
from datetime import date

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "test"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["JWT_SECRET"] = "test-access-secret"
os.environ["JWT_REFRESH_SECRET"] = "test-refresh-secret"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from backend.academic_module.models import AcademicYear, Course, Enrollment, GradeSection, Subject  # noqa: E402
from backend.main import app  # noqa: E402
from backend.people_module.models import Parent, Student, StudentParent, Teacher  # noqa: E402
from backend.rbac_module.database import Base, SessionLocal, engine  # noqa: E402
from backend.rbac_module.models import School, User, UserRole  # noqa: E402
from backend.rbac_module.security import create_access_token, hash_password  # noqa: E402

PASSWORD = "Secret123"


@pytest.fixture(autouse=True)
def fresh_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    return TestClient(app)


def make_school(db, code: str = "SCH001", name: str = "Test School") -> School:
    school = School(name=name, code=code)
    db.add(school)
    db.commit()
    return school


def make_user(db, school: School, role: UserRole, email: str, first_name: str = "Test", last_name: str = "User") -> User:
    user = User(
        school_id=school.id,
        email=email,
        password_hash=hash_password(PASSWORD),
        first_name=first_name,
        last_name=last_name,
        role=role,
    )
    db.add(user)
    db.commit()
    return user


def headers_for(user: User) -> dict[str, str]:
    token = create_access_token(user.id, user.role.value, school_id=user.school_id, email=user.email)
    return {"Authorization": f"Bearer {token}"}


class SchoolWorld:
    """One school with an admin, a teacher, a parent, a student, a section and a course."""

    def __init__(self, db, code: str = "SCH001"):
        self.db = db
        self.school = make_school(db, code=code, name=f"School {code}")
        prefix = code.lower()
        self.admin = make_user(db, self.school, UserRole.ADMIN, f"admin@{prefix}.test", "Ada", "Admin")
        self.teacher_user = make_user(db, self.school, UserRole.TEACHER, f"teacher@{prefix}.test", "Tomas", "Teacher")
        self.parent_user = make_user(db, self.school, UserRole.PARENT, f"parent@{prefix}.test", "Paula", "Parent")
        self.student_user = make_user(db, self.school, UserRole.STUDENT, f"student@{prefix}.test", "Sofia", "Student")

        self.year = AcademicYear(
            school_id=self.school.id,
            name="2026",
            start_date=date(2026, 1, 1),
            end_date=date(2026, 12, 31),
            is_current=True,
        )
        db.add(self.year)
        db.flush()
        self.section = GradeSection(
            school_id=self.school.id, academic_year_id=self.year.id, grade=1, section="A", capacity=30
        )
        self.subject = Subject(school_id=self.school.id, name="Mathematics", code="MAT1")
        self.teacher = Teacher(school_id=self.school.id, user_id=self.teacher_user.id, teacher_code="T001")
        self.parent = Parent(school_id=self.school.id, user_id=self.parent_user.id)
        db.add_all([self.section, self.subject, self.teacher, self.parent])
        db.flush()

        self.student = Student(
            school_id=self.school.id,
            user_id=self.student_user.id,
            student_code="S001",
            grade_section_id=self.section.id,
        )
        db.add(self.student)
        db.flush()
        db.add(StudentParent(student_id=self.student.id, parent_id=self.parent.id, is_primary=True))
        self.course = Course(
            school_id=self.school.id,
            name="Mathematics 1A",
            teacher_id=self.teacher.id,
            grade_section_id=self.section.id,
            subject_id=self.subject.id,
            academic_year_id=self.year.id,
            hours_per_week=4,
        )
        db.add(self.course)
        db.flush()
        db.add(Enrollment(school_id=self.school.id, student_id=self.student.id, course_id=self.course.id))
        db.commit()

    @property
    def admin_headers(self):
        return headers_for(self.admin)

    @property
    def teacher_headers(self):
        return headers_for(self.teacher_user)

    @property
    def parent_headers(self):
        return headers_for(self.parent_user)

    @property
    def student_headers(self):
        return headers_for(self.student_user)


@pytest.fixture
def world(db):
    return SchoolWorld(db)


@pytest.fixture
def other_world(db):
    return SchoolWorld(db, code="SCH002")
