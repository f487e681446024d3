from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from .database import get_db_session
from .middleware import ALL_ROLES, PageParams, ensure_own_school, get_current_user, page_params, require_roles
from .models import AuditAction, User, UserRole
from .schemas import (
    AuditLogOut,
    AuditStatsOut,
    ChangePasswordRequest,
    CountResponse,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    Page,
    ProfileOut,
    RefreshRequest,
    SchoolCreateRequest,
    SchoolOut,
    SchoolStatsOut,
    SchoolUpdateRequest,
    SortOrder,
    UserCreateRequest,
    UserOut,
    UserSortField,
    UserStatsOut,
    UserUpdateRequest,
)
from .services import (
    audit_stats,
    change_password,
    cleanup_audit_logs,
    create_school,
    create_user,
    delete_user,
    get_audit_log,
    get_school,
    get_user,
    list_audit_logs,
    list_users,
    login_history,
    login_user,
    logout_user,
    refresh_tokens,
    school_stats,
    update_school,
    update_user,
    user_stats,
)

auth_router = APIRouter(prefix="/auth", tags=["Auth"])
users_router = APIRouter(prefix="/users", tags=["Users"])
schools_router = APIRouter(prefix="/schools", tags=["Schools"])
audit_router = APIRouter(prefix="/audit-logs", tags=["Audit Logs"])


def _client(request: Request) -> dict:
    return {
        "ip": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }


def _login_response(user: User, access: str, refresh: str) -> LoginResponse:
    return LoginResponse(
        access_token=access,
        refresh_token=refresh,
        role=user.role,
        user=UserOut.model_validate(user),
    )


# --- auth ---


@auth_router.post("/login", response_model=LoginResponse)
def login(payload: LoginRequest, request: Request, db: Session = Depends(get_db_session)):
    user, access, refresh = login_user(db, email=payload.email, password=payload.password, client=_client(request))
    return _login_response(user, access, refresh)


@auth_router.post("/refresh", response_model=LoginResponse)
def refresh(payload: RefreshRequest, db: Session = Depends(get_db_session)):
    user, access, refresh_token = refresh_tokens(db, refresh_token=payload.refresh_token)
    return _login_response(user, access, refresh_token)


@auth_router.post("/logout", response_model=MessageResponse)
def logout(request: Request, db: Session = Depends(get_db_session), current_user: User = Depends(get_current_user)):
    logout_user(db, user=current_user, client=_client(request))
    return MessageResponse(message="Logged out")


@auth_router.get("/me", response_model=ProfileOut)
def me(current_user: User = Depends(get_current_user)):
    return current_user


@auth_router.post("/change-password", response_model=MessageResponse)
def update_password(
    payload: ChangePasswordRequest,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
):
    change_password(
        db,
        user=current_user,
        current_password=payload.current_password,
        new_password=payload.new_password,
        confirm_password=payload.confirm_password,
    )
    return MessageResponse(message="Password updated")


# --- users ---


@users_router.post("", response_model=UserOut, status_code=status.HTTP_201_CREATED)
def add_user(
    payload: UserCreateRequest,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(UserRole.ADMIN)),
):
    school_id = ensure_own_school(current_user, payload.school_id)
    return create_user(
        db,
        actor=current_user,
        school_id=school_id,
        email=payload.email,
        password=payload.password,
        first_name=payload.first_name,
        last_name=payload.last_name,
        role=payload.role,
        phone=payload.phone,
        avatar=payload.avatar,
    )


@users_router.get("", response_model=Page[UserOut])
def users_list(
    search: str | None = Query(default=None, max_length=100),
    role: UserRole | None = None,
    is_active: bool | None = None,
    sort_by: UserSortField = "created_at",
    sort_order: SortOrder = "desc",
    paging: PageParams = Depends(page_params(default_limit=10)),
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(UserRole.ADMIN, UserRole.TEACHER)),
):
    items, meta = list_users(
        db,
        school_id=current_user.school_id,
        page=paging.page,
        limit=paging.limit,
        search=search,
        role=role,
        is_active=is_active,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return {"data": items, "meta": meta}


@users_router.get("/stats", response_model=UserStatsOut)
def users_stats(db: Session = Depends(get_db_session), current_user: User = Depends(require_roles(UserRole.ADMIN))):
    return user_stats(db, school_id=current_user.school_id)


@users_router.get("/{user_id}", response_model=UserOut)
def user_detail(
    user_id: str,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(UserRole.ADMIN, UserRole.TEACHER)),
):
    return get_user(db, user_id=user_id, school_id=current_user.school_id)


@users_router.patch("/{user_id}", response_model=UserOut)
def user_update(
    user_id: str,
    payload: UserUpdateRequest,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(*ALL_ROLES)),
):
    return update_user(db, actor=current_user, user_id=user_id, changes=payload.model_dump(exclude_unset=True, exclude_none=True))


@users_router.delete("/{user_id}", response_model=MessageResponse)
def user_delete(
    user_id: str,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(UserRole.ADMIN)),
):
    delete_user(db, actor=current_user, user_id=user_id)
    return MessageResponse(message="User deleted")


# --- schools ---


@schools_router.post("", response_model=SchoolOut, status_code=status.HTTP_201_CREATED)
def add_school(
    payload: SchoolCreateRequest,
    db: Session = Depends(get_db_session),
    _: User = Depends(require_roles(UserRole.ADMIN)),
):
    return create_school(db, **payload.model_dump())


@schools_router.get("", response_model=list[SchoolOut])
def schools_list(db: Session = Depends(get_db_session), current_user: User = Depends(require_roles(UserRole.ADMIN))):
    return [get_school(db, school_id=current_user.school_id, actor=current_user)]


@schools_router.get("/{school_id}", response_model=SchoolOut)
def school_detail(
    school_id: str,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(UserRole.ADMIN)),
):
    return get_school(db, school_id=school_id, actor=current_user)


@schools_router.get("/{school_id}/stats", response_model=SchoolStatsOut)
def school_statistics(
    school_id: str,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(UserRole.ADMIN)),
):
    return school_stats(db, school_id=school_id, actor=current_user)


@schools_router.patch("/{school_id}", response_model=SchoolOut)
def school_update(
    school_id: str,
    payload: SchoolUpdateRequest,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(UserRole.ADMIN)),
):
    return update_school(db, school_id=school_id, actor=current_user, changes=payload.model_dump(exclude_unset=True, exclude_none=True))


# --- audit logs ---


@audit_router.get("", response_model=Page[AuditLogOut])
def audit_list(
    action: AuditAction | None = None,
    resource: str | None = None,
    resource_id: str | None = None,
    user_id: str | None = None,
    success: bool | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    paging: PageParams = Depends(page_params(default_limit=50)),
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(UserRole.ADMIN)),
):
    items, meta = list_audit_logs(
        db,
        school_id=current_user.school_id,
        page=paging.page,
        limit=paging.limit,
        action=action,
        resource=resource,
        resource_id=resource_id,
        user_id=user_id,
        success=success,
        start_date=start_date,
        end_date=end_date,
    )
    return {"data": items, "meta": meta}


@audit_router.get("/stats", response_model=AuditStatsOut)
def audit_statistics(db: Session = Depends(get_db_session), current_user: User = Depends(require_roles(UserRole.ADMIN))):
    return audit_stats(db, school_id=current_user.school_id)


@audit_router.get("/login-history", response_model=list[AuditLogOut])
def audit_login_history(
    limit: int = Query(default=50, ge=1, le=100),
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(UserRole.ADMIN)),
):
    return login_history(db, school_id=current_user.school_id, limit=limit)


@audit_router.get("/resource/{resource}/{resource_id}", response_model=Page[AuditLogOut])
def audit_by_resource(
    resource: str,
    resource_id: str,
    paging: PageParams = Depends(page_params(default_limit=50)),
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(UserRole.ADMIN)),
):
    items, meta = list_audit_logs(
        db,
        school_id=current_user.school_id,
        page=paging.page,
        limit=paging.limit,
        resource=resource,
        resource_id=resource_id,
    )
    return {"data": items, "meta": meta}


@audit_router.get("/user/{user_id}", response_model=Page[AuditLogOut])
def audit_by_user(
    user_id: str,
    paging: PageParams = Depends(page_params(default_limit=50)),
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(UserRole.ADMIN)),
):
    items, meta = list_audit_logs(
        db, school_id=current_user.school_id, page=paging.page, limit=paging.limit, user_id=user_id
    )
    return {"data": items, "meta": meta}


@audit_router.delete("/cleanup", response_model=CountResponse)
def audit_cleanup(
    days_old: int = Query(default=90, ge=1),
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(UserRole.ADMIN)),
):
    deleted = cleanup_audit_logs(db, school_id=current_user.school_id, days_old=days_old)
    return CountResponse(message=f"Deleted {deleted} audit entries", count=deleted)


@audit_router.get("/{log_id}", response_model=AuditLogOut)
def audit_detail(
    log_id: str,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(UserRole.ADMIN)),
):
    return get_audit_log(db, log_id=log_id, school_id=current_user.school_id)


router = APIRouter(prefix="/api/v1")
router.include_router(auth_router)
router.include_router(users_router)
router.include_router(schools_router)
router.include_router(audit_router)
