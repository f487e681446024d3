from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ..academic_module.schemas import CourseOut, EnrollmentOut
from ..academic_module.services import student_enrollments, teacher_courses
from ..rbac_module.database import get_db_session
from ..rbac_module.middleware import ALL_ROLES, PageParams, page_params, require_roles
from ..rbac_module.models import User, UserRole
from ..rbac_module.schemas import MessageResponse, Page
from .schemas import (
    AccountFields,
    AssignChildrenRequest,
    AssignParentsRequest,
    ChildOut,
    ParentCreateRequest,
    ParentOut,
    ParentUpdateRequest,
    StudentCreateRequest,
    StudentOut,
    StudentParentOut,
    StudentUpdateRequest,
    TeacherCreateRequest,
    TeacherOut,
    TeacherUpdateRequest,
)
from .services import (
    assign_children,
    assign_parents,
    assign_section,
    create_parent,
    create_student,
    create_teacher,
    deactivate_parent,
    deactivate_student,
    deactivate_teacher,
    ensure_parent_access,
    ensure_student_access,
    get_parent,
    get_student,
    get_teacher,
    list_parents,
    list_students,
    list_teachers,
    update_parent,
    update_student,
    update_teacher,
)

students_router = APIRouter(prefix="/students", tags=["Students"])
teachers_router = APIRouter(prefix="/teachers", tags=["Teachers"])
parents_router = APIRouter(prefix="/parents", tags=["Parents"])

ACCOUNT_KEYS = set(AccountFields.model_fields)


def _split(payload, exclude: set[str]) -> tuple[dict, dict]:
    data = payload.model_dump(exclude=exclude)
    account = {key: value for key, value in data.items() if key in ACCOUNT_KEYS}
    profile = {key: value for key, value in data.items() if key not in ACCOUNT_KEYS}
    return account, profile


# --- students ---


@students_router.post("", response_model=StudentOut, status_code=status.HTTP_201_CREATED)
def add_student(
    payload: StudentCreateRequest,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(UserRole.ADMIN)),
):
    account, profile = _split(payload, exclude={"parent_ids"})
    return create_student(db, actor=current_user, account=account, profile=profile, parent_ids=payload.parent_ids)


@students_router.get("", response_model=Page[StudentOut])
def students_list(
    search: str | None = Query(default=None, max_length=100),
    grade_section_id: str | None = None,
    is_active: bool | None = None,
    paging: PageParams = Depends(page_params(default_limit=20)),
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(UserRole.ADMIN, UserRole.TEACHER)),
):
    items, meta = list_students(
        db,
        school_id=current_user.school_id,
        page=paging.page,
        limit=paging.limit,
        search=search,
        grade_section_id=grade_section_id,
        is_active=is_active,
    )
    return {"data": items, "meta": meta}


@students_router.get("/{student_id}", response_model=StudentOut)
def student_detail(
    student_id: str,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(*ALL_ROLES)),
):
    student = get_student(db, student_id=student_id, school_id=current_user.school_id)
    ensure_student_access(db, user=current_user, student=student)
    return student


@students_router.get("/{student_id}/parents", response_model=list[StudentParentOut])
def student_parents(
    student_id: str,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(UserRole.ADMIN, UserRole.TEACHER)),
):
    return get_student(db, student_id=student_id, school_id=current_user.school_id).parent_links


@students_router.get("/{student_id}/enrollments", response_model=list[EnrollmentOut])
def student_enrollment_list(
    student_id: str,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(*ALL_ROLES)),
):
    student = get_student(db, student_id=student_id, school_id=current_user.school_id)
    ensure_student_access(db, user=current_user, student=student)
    return student_enrollments(db, student_id=student.id)


@students_router.patch("/{student_id}", response_model=StudentOut)
def student_update(
    student_id: str,
    payload: StudentUpdateRequest,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(UserRole.ADMIN)),
):
    return update_student(db, actor=current_user, student_id=student_id, changes=payload.model_dump(exclude_unset=True, exclude_none=True))


@students_router.put("/{student_id}/parents", response_model=list[StudentParentOut])
def student_assign_parents(
    student_id: str,
    payload: AssignParentsRequest,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(UserRole.ADMIN)),
):
    links = [link.model_dump() for link in payload.parents]
    return assign_parents(db, actor=current_user, student_id=student_id, links=links)


@students_router.patch("/{student_id}/section/{section_id}", response_model=StudentOut)
def student_assign_section(
    student_id: str,
    section_id: str,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(UserRole.ADMIN)),
):
    return assign_section(db, actor=current_user, student_id=student_id, section_id=section_id)


@students_router.delete("/{student_id}", response_model=MessageResponse)
def student_delete(
    student_id: str,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(UserRole.ADMIN)),
):
    deactivate_student(db, actor=current_user, student_id=student_id)
    return MessageResponse(message="Student deactivated")


# --- teachers ---


@teachers_router.post("", response_model=TeacherOut, status_code=status.HTTP_201_CREATED)
def add_teacher(
    payload: TeacherCreateRequest,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(UserRole.ADMIN)),
):
    account, profile = _split(payload, exclude=set())
    return create_teacher(db, actor=current_user, account=account, profile=profile)


@teachers_router.get("", response_model=Page[TeacherOut])
def teachers_list(
    search: str | None = Query(default=None, max_length=100),
    is_active: bool | None = None,
    paging: PageParams = Depends(page_params(default_limit=20)),
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(UserRole.ADMIN)),
):
    items, meta = list_teachers(
        db,
        school_id=current_user.school_id,
        page=paging.page,
        limit=paging.limit,
        search=search,
        is_active=is_active,
    )
    return {"data": items, "meta": meta}


@teachers_router.get("/{teacher_id}", response_model=TeacherOut)
def teacher_detail(
    teacher_id: str,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(UserRole.ADMIN, UserRole.TEACHER)),
):
    return get_teacher(db, teacher_id=teacher_id, school_id=current_user.school_id)


@teachers_router.get("/{teacher_id}/courses", response_model=list[CourseOut])
def teacher_course_list(
    teacher_id: str,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(UserRole.ADMIN, UserRole.TEACHER)),
):
    return teacher_courses(db, teacher_id=teacher_id, school_id=current_user.school_id)


@teachers_router.patch("/{teacher_id}", response_model=TeacherOut)
def teacher_update(
    teacher_id: str,
    payload: TeacherUpdateRequest,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(UserRole.ADMIN)),
):
    return update_teacher(db, actor=current_user, teacher_id=teacher_id, changes=payload.model_dump(exclude_unset=True, exclude_none=True))


@teachers_router.delete("/{teacher_id}", response_model=MessageResponse)
def teacher_delete(
    teacher_id: str,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(UserRole.ADMIN)),
):
    deactivate_teacher(db, actor=current_user, teacher_id=teacher_id)
    return MessageResponse(message="Teacher deactivated")


# --- parents ---


@parents_router.post("", response_model=ParentOut, status_code=status.HTTP_201_CREATED)
def add_parent(
    payload: ParentCreateRequest,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(UserRole.ADMIN)),
):
    account, profile = _split(payload, exclude={"role", "student_ids"})
    return create_parent(
        db,
        actor=current_user,
        account=account,
        profile=profile,
        role=payload.role,
        student_ids=payload.student_ids,
    )


@parents_router.get("", response_model=Page[ParentOut])
def parents_list(
    search: str | None = Query(default=None, max_length=100),
    is_active: bool | None = None,
    paging: PageParams = Depends(page_params(default_limit=20)),
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(UserRole.ADMIN)),
):
    items, meta = list_parents(
        db,
        school_id=current_user.school_id,
        page=paging.page,
        limit=paging.limit,
        search=search,
        is_active=is_active,
    )
    return {"data": items, "meta": meta}


@parents_router.get("/{parent_id}", response_model=ParentOut)
def parent_detail(
    parent_id: str,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(UserRole.ADMIN, UserRole.PARENT)),
):
    parent = get_parent(db, parent_id=parent_id, school_id=current_user.school_id)
    ensure_parent_access(db, user=current_user, parent=parent)
    return parent


@parents_router.get("/{parent_id}/children", response_model=list[ChildOut])
def parent_children(
    parent_id: str,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(UserRole.ADMIN, UserRole.PARENT)),
):
    parent = get_parent(db, parent_id=parent_id, school_id=current_user.school_id)
    ensure_parent_access(db, user=current_user, parent=parent)
    return parent.student_links


@parents_router.patch("/{parent_id}", response_model=ParentOut)
def parent_update(
    parent_id: str,
    payload: ParentUpdateRequest,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(UserRole.ADMIN)),
):
    return update_parent(db, actor=current_user, parent_id=parent_id, changes=payload.model_dump(exclude_unset=True, exclude_none=True))


@parents_router.put("/{parent_id}/children", response_model=list[ChildOut])
def parent_assign_children(
    parent_id: str,
    payload: AssignChildrenRequest,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(UserRole.ADMIN)),
):
    return assign_children(db, actor=current_user, parent_id=parent_id, student_ids=payload.student_ids)


@parents_router.delete("/{parent_id}", response_model=MessageResponse)
def parent_delete(
    parent_id: str,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(UserRole.ADMIN)),
):
    deactivate_parent(db, actor=current_user, parent_id=parent_id)
    return MessageResponse(message="Parent deactivated")


router = APIRouter(prefix="/api/v1")
router.include_router(students_router)
router.include_router(teachers_router)
router.include_router(parents_router)
