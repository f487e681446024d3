import logging

from fastapi import HTTPException, status
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..academic_module.models import GradeSection
from ..rbac_module.database import paginate
from ..rbac_module.middleware import has_role
from ..rbac_module.models import AuditAction, User, UserRole
from ..rbac_module.services import build_user, get_in_school, record_audit
from .models import Parent, Student, StudentParent, Teacher

logger = logging.getLogger(__name__)

ACCOUNT_FIELDS = {"email", "first_name", "last_name", "phone"}


def _apply_account_changes(db: Session, user: User, changes: dict) -> None:
    if "email" in changes and changes["email"] != user.email:
        if db.query(User).filter(User.email == changes["email"], User.id != user.id).first():
            raise HTTPException(status_code=409, detail="Email already registered")
    for key in ACCOUNT_FIELDS & changes.keys():
        setattr(user, key, changes[key])
    if "is_active" in changes:
        user.is_active = changes["is_active"]


def _name_filter(query, search: str | None):
    if not search:
        return query
    pattern = f"%{search.strip().lower()}%"
    return query.join(User).filter(
        or_(
            func.lower(User.first_name).like(pattern),
            func.lower(User.last_name).like(pattern),
            func.lower(User.email).like(pattern),
        )
    )


def _check_section_capacity(db: Session, section: GradeSection, student_id: str | None = None) -> None:
    occupied = db.query(Student).filter(Student.grade_section_id == section.id, Student.is_active.is_(True))
    if student_id:
        occupied = occupied.filter(Student.id != student_id)
    if occupied.count() >= section.capacity:
        raise HTTPException(status_code=409, detail="Grade section is full")


# --- students ---


def create_student(db: Session, *, actor: User, account: dict, profile: dict, parent_ids: list[str]) -> Student:
    school_id = actor.school_id
    if db.query(Student).filter(Student.school_id == school_id, Student.student_code == profile["student_code"]).first():
        raise HTTPException(status_code=409, detail="Student code already exists")
    if profile.get("grade_section_id"):
        section = get_in_school(db, GradeSection, profile["grade_section_id"], school_id, "Grade section")
        _check_section_capacity(db, section)

    user = build_user(db, school_id=school_id, role=UserRole.STUDENT, **account)
    student = Student(school_id=school_id, user_id=user.id, **profile)
    db.add(student)
    db.flush()
    for index, parent_id in enumerate(dict.fromkeys(parent_ids)):
        parent = get_in_school(db, Parent, parent_id, school_id, "Parent")
        db.add(StudentParent(student_id=student.id, parent_id=parent.id, is_primary=index == 0))
    record_audit(db, action=AuditAction.CREATE, resource="students", resource_id=student.id, user=actor, commit=False)
    db.commit()
    db.refresh(student)
    logger.info(f"Student {student.student_code} created in school {school_id}")
    return student


def list_students(
    db: Session,
    *,
    school_id: str,
    page: int,
    limit: int,
    search: str | None = None,
    grade_section_id: str | None = None,
    is_active: bool | None = None,
):
    query = _name_filter(db.query(Student).filter(Student.school_id == school_id), search)
    if grade_section_id:
        query = query.filter(Student.grade_section_id == grade_section_id)
    if is_active is not None:
        query = query.filter(Student.is_active == is_active)
    return paginate(query.order_by(Student.created_at.desc()), page=page, limit=limit)


def get_student(db: Session, *, student_id: str, school_id: str) -> Student:
    return get_in_school(db, Student, student_id, school_id, "Student")


def ensure_student_access(db: Session, *, user: User, student: Student) -> None:
    """Students see themselves, guardians see linked children, staff see everyone in the school."""
    if user.role in (UserRole.ADMIN, UserRole.TEACHER):
        return
    if user.role == UserRole.STUDENT and student.user_id == user.id:
        return
    if has_role(user, UserRole.PARENT):
        parent = parent_for_user(db, user)
        if parent and any(link.student_id == student.id for link in parent.student_links):
            return
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You cannot access this student's records")


def accessible_student_ids(db: Session, *, user: User) -> list[str] | None:
    """Student ids visible to ``user``; ``None`` means the whole school."""
    if user.role in (UserRole.ADMIN, UserRole.TEACHER):
        return None
    if user.role == UserRole.STUDENT:
        student = student_for_user(db, user)
        return [student.id] if student else []
    parent = parent_for_user(db, user)
    return [link.student_id for link in parent.student_links] if parent else []


def student_for_user(db: Session, user: User) -> Student | None:
    return db.query(Student).filter(Student.user_id == user.id).first()


def update_student(db: Session, *, actor: User, student_id: str, changes: dict) -> Student:
    student = get_student(db, student_id=student_id, school_id=actor.school_id)
    code = changes.get("student_code")
    if code and code != student.student_code:
        taken = (
            db.query(Student)
            .filter(Student.school_id == student.school_id, Student.student_code == code, Student.id != student.id)
            .first()
        )
        if taken:
            raise HTTPException(status_code=409, detail="Student code already exists")
    section_id = changes.get("grade_section_id")
    if section_id and section_id != student.grade_section_id:
        section = get_in_school(db, GradeSection, section_id, student.school_id, "Grade section")
        _check_section_capacity(db, section, student.id)

    _apply_account_changes(db, student.user, changes)
    for key, value in changes.items():
        if key not in ACCOUNT_FIELDS:
            setattr(student, key, value)
    record_audit(db, action=AuditAction.UPDATE, resource="students", resource_id=student.id, user=actor, commit=False)
    db.commit()
    db.refresh(student)
    return student


def assign_parents(db: Session, *, actor: User, student_id: str, links: list[dict]) -> list[StudentParent]:
    student = get_student(db, student_id=student_id, school_id=actor.school_id)
    wanted = {}
    for link in links:
        parent = get_in_school(db, Parent, link["parent_id"], student.school_id, "Parent")
        wanted[parent.id] = link["is_primary"] or wanted.get(parent.id, False)

    student.parent_links.clear()
    db.flush()
    for parent_id, is_primary in wanted.items():
        student.parent_links.append(StudentParent(parent_id=parent_id, is_primary=is_primary))
    db.commit()
    db.refresh(student)
    return student.parent_links


def assign_section(db: Session, *, actor: User, student_id: str, section_id: str) -> Student:
    student = get_student(db, student_id=student_id, school_id=actor.school_id)
    section = get_in_school(db, GradeSection, section_id, student.school_id, "Grade section")
    if student.grade_section_id != section.id:
        _check_section_capacity(db, section, student.id)
        student.grade_section_id = section.id
        db.commit()
        db.refresh(student)
    return student


def deactivate_student(db: Session, *, actor: User, student_id: str) -> None:
    student = get_student(db, student_id=student_id, school_id=actor.school_id)
    student.is_active = False
    student.user.is_active = False
    record_audit(db, action=AuditAction.DELETE, resource="students", resource_id=student.id, user=actor, commit=False)
    db.commit()


# --- teachers ---


def create_teacher(db: Session, *, actor: User, account: dict, profile: dict) -> Teacher:
    school_id = actor.school_id
    code = profile.get("teacher_code")
    if code and db.query(Teacher).filter(Teacher.school_id == school_id, Teacher.teacher_code == code).first():
        raise HTTPException(status_code=409, detail="Teacher code already exists")
    user = build_user(db, school_id=school_id, role=UserRole.TEACHER, **account)
    teacher = Teacher(school_id=school_id, user_id=user.id, **profile)
    db.add(teacher)
    db.flush()
    record_audit(db, action=AuditAction.CREATE, resource="teachers", resource_id=teacher.id, user=actor, commit=False)
    db.commit()
    db.refresh(teacher)
    return teacher


def list_teachers(db: Session, *, school_id: str, page: int, limit: int, search: str | None = None, is_active=None):
    query = _name_filter(db.query(Teacher).filter(Teacher.school_id == school_id), search)
    if is_active is not None:
        query = query.filter(Teacher.is_active == is_active)
    return paginate(query.order_by(Teacher.created_at.desc()), page=page, limit=limit)


def get_teacher(db: Session, *, teacher_id: str, school_id: str) -> Teacher:
    return get_in_school(db, Teacher, teacher_id, school_id, "Teacher")


def teacher_for_user(db: Session, user: User) -> Teacher | None:
    return db.query(Teacher).filter(Teacher.user_id == user.id).first()


def update_teacher(db: Session, *, actor: User, teacher_id: str, changes: dict) -> Teacher:
    teacher = get_teacher(db, teacher_id=teacher_id, school_id=actor.school_id)
    code = changes.get("teacher_code")
    if code and code != teacher.teacher_code:
        taken = (
            db.query(Teacher)
            .filter(Teacher.school_id == teacher.school_id, Teacher.teacher_code == code, Teacher.id != teacher.id)
            .first()
        )
        if taken:
            raise HTTPException(status_code=409, detail="Teacher code already exists")
    _apply_account_changes(db, teacher.user, changes)
    for key, value in changes.items():
        if key not in ACCOUNT_FIELDS:
            setattr(teacher, key, value)
    db.commit()
    db.refresh(teacher)
    return teacher


def deactivate_teacher(db: Session, *, actor: User, teacher_id: str) -> None:
    teacher = get_teacher(db, teacher_id=teacher_id, school_id=actor.school_id)
    teacher.is_active = False
    teacher.user.is_active = False
    record_audit(db, action=AuditAction.DELETE, resource="teachers", resource_id=teacher.id, user=actor, commit=False)
    db.commit()


# --- parents ---


def _link_children(db: Session, parent: Parent, student_ids: list[str]) -> None:
    for student_id in dict.fromkeys(student_ids):
        student = get_in_school(db, Student, student_id, parent.school_id, "Student")
        has_primary = any(link.is_primary for link in student.parent_links)
        parent.student_links.append(StudentParent(student_id=student.id, is_primary=not has_primary))


def create_parent(db: Session, *, actor: User, account: dict, profile: dict, role: str, student_ids: list[str]) -> Parent:
    school_id = actor.school_id
    user = build_user(db, school_id=school_id, role=UserRole(role), **account)
    parent = Parent(school_id=school_id, user_id=user.id, **profile)
    db.add(parent)
    db.flush()
    _link_children(db, parent, student_ids)
    record_audit(db, action=AuditAction.CREATE, resource="parents", resource_id=parent.id, user=actor, commit=False)
    db.commit()
    db.refresh(parent)
    return parent


def list_parents(db: Session, *, school_id: str, page: int, limit: int, search: str | None = None, is_active=None):
    query = _name_filter(db.query(Parent).filter(Parent.school_id == school_id), search)
    if is_active is not None:
        query = query.filter(Parent.is_active == is_active)
    return paginate(query.order_by(Parent.created_at.desc()), page=page, limit=limit)


def get_parent(db: Session, *, parent_id: str, school_id: str) -> Parent:
    return get_in_school(db, Parent, parent_id, school_id, "Parent")


def parent_for_user(db: Session, user: User) -> Parent | None:
    return db.query(Parent).filter(Parent.user_id == user.id).first()


def ensure_parent_access(db: Session, *, user: User, parent: Parent) -> None:
    if user.role == UserRole.ADMIN or parent.user_id == user.id:
        return
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You cannot access this parent's records")


def update_parent(db: Session, *, actor: User, parent_id: str, changes: dict) -> Parent:
    parent = get_parent(db, parent_id=parent_id, school_id=actor.school_id)
    _apply_account_changes(db, parent.user, changes)
    for key, value in changes.items():
        if key not in ACCOUNT_FIELDS:
            setattr(parent, key, value)
    db.commit()
    db.refresh(parent)
    return parent


def assign_children(db: Session, *, actor: User, parent_id: str, student_ids: list[str]) -> list[StudentParent]:
    parent = get_parent(db, parent_id=parent_id, school_id=actor.school_id)
    keep = set(student_ids)
    parent.student_links = [link for link in parent.student_links if link.student_id in keep]
    db.flush()
    current = {link.student_id for link in parent.student_links}
    _link_children(db, parent, [sid for sid in student_ids if sid not in current])
    db.commit()
    db.refresh(parent)
    return parent.student_links


def deactivate_parent(db: Session, *, actor: User, parent_id: str) -> None:
    parent = get_parent(db, parent_id=parent_id, school_id=actor.school_id)
    parent.is_active = False
    parent.user.is_active = False
    record_audit(db, action=AuditAction.DELETE, resource="parents", resource_id=parent.id, user=actor, commit=False)
    db.commit()


def parent_user_ids_for_student(db: Session, student_id: str) -> list[str]:
    rows = (
        db.query(Parent.user_id)
        .join(StudentParent, StudentParent.parent_id == Parent.id)
        .filter(StudentParent.student_id == student_id, Parent.is_active.is_(True))
        .all()
    )
    return [row[0] for row in rows]
