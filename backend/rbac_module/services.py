import logging
import math
from datetime import timedelta
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from .config import settings
from .database import paginate, utcnow
from .models import AuditAction, AuditLog, School, User, UserRole
from .security import (
    AuthError,
    create_access_token,
    create_refresh_token,
    decode_refresh_token,
    hash_password,
    verify_password,
)

logger = logging.getLogger(__name__)


def get_in_school(db: Session, model, obj_id: str, school_id: str, label: str):
    """Fetch a tenant-owned row; rows of other schools are reported as missing."""
    obj = db.query(model).filter(model.id == obj_id, model.school_id == school_id).first()
    if not obj:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{label} not found")
    return obj


# --- audit ---


def record_audit(
    db: Session,
    *,
    action: AuditAction,
    resource: str,
    resource_id: str | None = None,
    user: User | None = None,
    school_id: str | None = None,
    success: bool = True,
    old_data: dict | None = None,
    new_data: dict | None = None,
    error_message: str | None = None,
    client: dict[str, Any] | None = None,
    commit: bool = True,
) -> AuditLog:
    client = client or {}
    entry = AuditLog(
        action=action,
        resource=resource,
        resource_id=resource_id,
        user_id=user.id if user else None,
        school_id=school_id or (user.school_id if user else None),
        success=success,
        old_data=old_data,
        new_data=new_data,
        error_message=error_message,
        ip=client.get("ip"),
        user_agent=(client.get("user_agent") or "")[:255] or None,
        duration=client.get("duration"),
    )
    db.add(entry)
    if commit:
        db.commit()
    return entry


def list_audit_logs(
    db: Session,
    *,
    school_id: str,
    page: int,
    limit: int,
    action: AuditAction | None = None,
    resource: str | None = None,
    resource_id: str | None = None,
    user_id: str | None = None,
    success: bool | None = None,
    start_date=None,
    end_date=None,
):
    if start_date and end_date and start_date > end_date:
        raise HTTPException(status_code=400, detail="start_date must be before end_date")
    query = db.query(AuditLog).filter(AuditLog.school_id == school_id)
    if action:
        query = query.filter(AuditLog.action == action)
    if resource:
        query = query.filter(AuditLog.resource == resource)
    if resource_id:
        query = query.filter(AuditLog.resource_id == resource_id)
    if user_id:
        query = query.filter(AuditLog.user_id == user_id)
    if success is not None:
        query = query.filter(AuditLog.success == success)
    if start_date:
        query = query.filter(AuditLog.created_at >= start_date)
    if end_date:
        query = query.filter(AuditLog.created_at <= end_date)
    return paginate(query.order_by(AuditLog.created_at.desc()), page=page, limit=limit)


def get_audit_log(db: Session, *, log_id: str, school_id: str) -> AuditLog:
    return get_in_school(db, AuditLog, log_id, school_id, "Audit log")


def audit_stats(db: Session, *, school_id: str) -> dict:
    base = db.query(AuditLog).filter(AuditLog.school_id == school_id)
    total = base.count()
    failed = base.filter(AuditLog.success.is_(False)).count()
    by_action = (
        db.query(AuditLog.action, func.count(AuditLog.id))
        .filter(AuditLog.school_id == school_id)
        .group_by(AuditLog.action)
        .all()
    )
    by_resource = (
        db.query(AuditLog.resource, func.count(AuditLog.id))
        .filter(AuditLog.school_id == school_id)
        .group_by(AuditLog.resource)
        .all()
    )
    return {
        "total": total,
        "successful": total - failed,
        "failed": failed,
        "by_action": {action.value: count for action, count in by_action},
        "by_resource": dict(by_resource),
    }


def login_history(db: Session, *, school_id: str, limit: int = 50) -> list[AuditLog]:
    return (
        db.query(AuditLog)
        .filter(AuditLog.school_id == school_id, AuditLog.action == AuditAction.LOGIN)
        .order_by(AuditLog.created_at.desc())
        .limit(limit)
        .all()
    )


def cleanup_audit_logs(db: Session, *, school_id: str, days_old: int) -> int:
    cutoff = utcnow() - timedelta(days=days_old)
    deleted = (
        db.query(AuditLog)
        .filter(AuditLog.school_id == school_id, AuditLog.created_at < cutoff)
        .delete(synchronize_session=False)
    )
    db.commit()
    logger.info(f"Purged {deleted} audit entries older than {days_old} days for school {school_id}")
    return deleted


# --- auth ---


def _issue_tokens(user: User) -> tuple[str, str]:
    access = create_access_token(
        subject=user.id,
        role=user.role.value,
        school_id=user.school_id,
        email=user.email,
    )
    return access, create_refresh_token(subject=user.id)


def login_user(db: Session, *, email: str, password: str, client: dict | None = None) -> tuple[User, str, str]:
    user = db.query(User).filter(User.email == email).first()
    if not user or user.deleted_at is not None:
        logger.warning(f"Login failed for unknown email {email}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    now = utcnow()
    if user.locked_until and user.locked_until > now:
        minutes = math.ceil((user.locked_until - now).total_seconds() / 60)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Account locked. Try again in {minutes} minutes",
        )
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Account is inactive")

    if not verify_password(password, user.password_hash):
        user.failed_login_attempts += 1
        if user.failed_login_attempts >= settings.max_login_attempts:
            user.locked_until = now + timedelta(minutes=settings.lockout_duration_minutes)
            user.failed_login_attempts = 0
            logger.warning(f"Account {user.email} locked after {settings.max_login_attempts} failed logins")
        record_audit(
            db,
            action=AuditAction.LOGIN,
            resource="auth",
            resource_id=user.id,
            user=user,
            success=False,
            error_message="Invalid password",
            client=client,
            commit=False,
        )
        db.commit()
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    user.failed_login_attempts = 0
    user.locked_until = None
    user.last_login_at = now
    record_audit(db, action=AuditAction.LOGIN, resource="auth", resource_id=user.id, user=user, client=client, commit=False)
    db.commit()
    db.refresh(user)
    logger.info(f"User {user.email} logged in as {user.role.value}")
    access, refresh = _issue_tokens(user)
    return user, access, refresh


def refresh_tokens(db: Session, *, refresh_token: str) -> tuple[User, str, str]:
    try:
        payload = decode_refresh_token(refresh_token)
    except AuthError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    user = db.query(User).filter(User.id == payload["sub"]).first()
    if not user or not user.is_active or user.deleted_at is not None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid user")
    access, refresh = _issue_tokens(user)
    return user, access, refresh


def logout_user(db: Session, *, user: User, client: dict | None = None) -> None:
    record_audit(db, action=AuditAction.LOGOUT, resource="auth", resource_id=user.id, user=user, client=client)


def change_password(db: Session, *, user: User, current_password: str, new_password: str, confirm_password: str) -> None:
    if new_password != confirm_password:
        raise HTTPException(status_code=400, detail="Passwords do not match")
    if not verify_password(current_password, user.password_hash):
        raise HTTPException(status_code=400, detail="Current password is incorrect")
    if current_password == new_password:
        raise HTTPException(status_code=400, detail="New password must differ from the current one")
    user.password_hash = hash_password(new_password)
    db.commit()


# --- users ---


def build_user(
    db: Session,
    *,
    school_id: str,
    email: str,
    password: str,
    first_name: str,
    last_name: str,
    role: UserRole,
    phone: str | None = None,
    avatar: str | None = None,
) -> User:
    """Stage a new user in the session without committing."""
    if db.query(User).filter(User.email == email).first():
        raise HTTPException(status_code=409, detail="Email already registered")
    user = User(
        school_id=school_id,
        email=email,
        password_hash=hash_password(password),
        first_name=first_name,
        last_name=last_name,
        role=role,
        phone=phone,
        avatar=avatar,
    )
    db.add(user)
    db.flush()
    return user


def _user_snapshot(user: User) -> dict:
    return {
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "role": user.role.value,
        "is_active": user.is_active,
    }


def create_user(db: Session, *, actor: User, school_id: str, **fields) -> User:
    user = build_user(db, school_id=school_id, **fields)
    record_audit(
        db,
        action=AuditAction.CREATE,
        resource="users",
        resource_id=user.id,
        user=actor,
        new_data=_user_snapshot(user),
        commit=False,
    )
    db.commit()
    db.refresh(user)
    return user


SORTABLE_USER_FIELDS = {
    "created_at": User.created_at,
    "email": User.email,
    "first_name": User.first_name,
    "last_name": User.last_name,
}


def list_users(
    db: Session,
    *,
    school_id: str,
    page: int,
    limit: int,
    search: str | None = None,
    role: UserRole | None = None,
    is_active: bool | None = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
):
    query = db.query(User).filter(User.school_id == school_id, User.deleted_at.is_(None))
    if search:
        pattern = f"%{search.strip().lower()}%"
        query = query.filter(
            or_(
                func.lower(User.first_name).like(pattern),
                func.lower(User.last_name).like(pattern),
                func.lower(User.email).like(pattern),
            )
        )
    if role:
        query = query.filter(User.role == role)
    if is_active is not None:
        query = query.filter(User.is_active == is_active)
    column = SORTABLE_USER_FIELDS[sort_by]
    query = query.order_by(column.asc() if sort_order == "asc" else column.desc())
    return paginate(query, page=page, limit=limit)


def get_user(db: Session, *, user_id: str, school_id: str) -> User:
    user = (
        db.query(User)
        .filter(User.id == user_id, User.school_id == school_id, User.deleted_at.is_(None))
        .first()
    )
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


def update_user(db: Session, *, actor: User, user_id: str, changes: dict) -> User:
    is_admin = actor.role == UserRole.ADMIN
    if not is_admin and actor.id != user_id:
        raise HTTPException(status_code=403, detail="You can only update your own profile")
    if not is_admin and ({"role", "is_active"} & changes.keys()):
        raise HTTPException(status_code=403, detail="Only administrators can change role or status")

    user = get_user(db, user_id=user_id, school_id=actor.school_id)
    if "email" in changes and changes["email"] != user.email:
        taken = db.query(User).filter(User.email == changes["email"], User.id != user.id).first()
        if taken:
            raise HTTPException(status_code=409, detail="Email already registered")

    before = _user_snapshot(user)
    for key, value in changes.items():
        setattr(user, key, value)
    record_audit(
        db,
        action=AuditAction.UPDATE,
        resource="users",
        resource_id=user.id,
        user=actor,
        old_data=before,
        new_data=_user_snapshot(user),
        commit=False,
    )
    db.commit()
    db.refresh(user)
    return user


def delete_user(db: Session, *, actor: User, user_id: str) -> None:
    if actor.id == user_id:
        raise HTTPException(status_code=400, detail="You cannot delete your own account")
    user = get_user(db, user_id=user_id, school_id=actor.school_id)
    user.is_active = False
    user.deleted_at = utcnow()
    record_audit(db, action=AuditAction.DELETE, resource="users", resource_id=user.id, user=actor, commit=False)
    db.commit()


def user_stats(db: Session, *, school_id: str) -> dict:
    base = db.query(User).filter(User.school_id == school_id, User.deleted_at.is_(None))
    total = base.count()
    active = base.filter(User.is_active.is_(True)).count()
    rows = (
        db.query(User.role, func.count(User.id))
        .filter(User.school_id == school_id, User.deleted_at.is_(None))
        .group_by(User.role)
        .all()
    )
    by_role = {role.value: 0 for role in UserRole}
    by_role.update({role.value: count for role, count in rows})
    return {"total": total, "active": active, "inactive": total - active, "by_role": by_role}


# --- schools ---


def create_school(db: Session, *, name: str, code: str, **fields) -> School:
    if db.query(School).filter(School.code == code).first():
        raise HTTPException(status_code=409, detail="School code already exists")
    school = School(name=name.strip(), code=code, **fields)
    db.add(school)
    db.commit()
    db.refresh(school)
    return school


def get_school(db: Session, *, school_id: str, actor: User) -> School:
    if school_id != actor.school_id:
        raise HTTPException(status_code=404, detail="School not found")
    school = db.query(School).filter(School.id == school_id).first()
    if not school:
        raise HTTPException(status_code=404, detail="School not found")
    return school


def update_school(db: Session, *, school_id: str, actor: User, changes: dict) -> School:
    school = get_school(db, school_id=school_id, actor=actor)
    for key, value in changes.items():
        setattr(school, key, value)
    db.commit()
    db.refresh(school)
    return school


def school_stats(db: Session, *, school_id: str, actor: User) -> dict:
    from ..academic_module.models import AcademicYear, Course, GradeSection, Subject
    from ..people_module.models import Parent, Student, Teacher

    get_school(db, school_id=school_id, actor=actor)

    def count(model) -> int:
        return db.query(model).filter(model.school_id == school_id).count()

    return {
        "users": db.query(User).filter(User.school_id == school_id, User.deleted_at.is_(None)).count(),
        "students": count(Student),
        "teachers": count(Teacher),
        "parents": count(Parent),
        "academic_years": count(AcademicYear),
        "grade_sections": count(GradeSection),
        "subjects": count(Subject),
        "courses": count(Course),
    }


def seed_default_admin(db: Session) -> None:
    if db.query(User).filter(User.email == settings.default_admin_email).first():
        return
    school = db.query(School).filter(School.code == settings.default_school_code).first()
    if not school:
        school = School(name=settings.default_school_name, code=settings.default_school_code)
        db.add(school)
        db.flush()
    db.add(
        User(
            school_id=school.id,
            email=settings.default_admin_email,
            password_hash=hash_password(settings.default_admin_password),
            first_name="System",
            last_name="Administrator",
            role=UserRole.ADMIN,
        )
    )
    db.commit()
    logger.info(f"Seeded default administrator {settings.default_admin_email}")
