from collections.abc import Callable
from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException, Query, status
from sqlalchemy.orm import Session

from .database import get_db_session
from .models import User, UserRole
from .security import AuthError, decode_access_token

MAX_PAGE_LIMIT = 100

ALL_ROLES = tuple(UserRole)

# A tutor is a guardian and passes every guard open to parents.
ROLE_ACCESS = {
    UserRole.TUTOR: {UserRole.TUTOR, UserRole.PARENT},
}


def _parse_token(auth_header: str | None) -> str:
    if not auth_header:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing Authorization header")
    parts = auth_header.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1].strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid auth scheme")
    return parts[1].strip()


def get_current_user(
    authorization: str | None = Header(default=None, alias="Authorization"),
    db: Session = Depends(get_db_session),
) -> User:
    token = _parse_token(authorization)
    try:
        payload = decode_access_token(token)
    except AuthError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc

    user = db.query(User).filter(User.id == payload["sub"]).first()
    if not user or not user.is_active or user.deleted_at is not None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid user")
    return user


def has_role(user: User, *roles: UserRole) -> bool:
    reachable = ROLE_ACCESS.get(user.role, {user.role})
    return bool(set(roles).intersection(reachable))


def require_roles(*allowed_roles: UserRole) -> Callable:
    def dependency(current_user: User = Depends(get_current_user)) -> User:
        if not has_role(current_user, *allowed_roles):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient role privileges")
        return current_user

    return dependency


def ensure_own_school(current_user: User, school_id: str | None) -> str:
    """Resolve a body-supplied school id against the caller's tenant."""
    if school_id is not None and school_id != current_user.school_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cannot act on another school")
    return current_user.school_id


@dataclass(frozen=True)
class PageParams:
    page: int
    limit: int


def page_params(default_limit: int = 20) -> Callable:
    def dependency(
        page: int = Query(default=1, ge=1),
        limit: int = Query(default=default_limit, ge=1, le=MAX_PAGE_LIMIT),
    ) -> PageParams:
        return PageParams(page=page, limit=limit)

    return dependency
