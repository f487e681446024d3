from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ..rbac_module.database import get_db_session
from ..rbac_module.middleware import PageParams, ensure_own_school, page_params, require_roles
from ..rbac_module.models import User, UserRole
from ..rbac_module.schemas import MessageResponse, Page
from . import services
from .schemas import StorageStatsOut, UploadCreateRequest, UploadOut

uploads_router = APIRouter(prefix="/uploads", tags=["Uploads"])

staff = require_roles(UserRole.ADMIN, UserRole.TEACHER)


@uploads_router.post("", response_model=UploadOut, status_code=status.HTTP_201_CREATED)
def upload_create(
    payload: UploadCreateRequest,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(staff),
):
    school_id = ensure_own_school(current_user, payload.school_id)
    return services.create_upload(db, actor=current_user, school_id=school_id, **payload.model_dump(exclude={"school_id"}))


@uploads_router.get("", response_model=Page[UploadOut])
def upload_list(
    uploaded_by_id: str | None = None,
    mime_type: str | None = Query(default=None, max_length=100),
    paging: PageParams = Depends(page_params(default_limit=20)),
    db: Session = Depends(get_db_session),
    current_user: User = Depends(staff),
):
    items, meta = services.list_uploads(
        db,
        school_id=current_user.school_id,
        page=paging.page,
        limit=paging.limit,
        uploaded_by_id=uploaded_by_id,
        mime_type=mime_type,
    )
    return {"data": items, "meta": meta}


@uploads_router.get("/stats", response_model=StorageStatsOut)
def upload_stats(
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(UserRole.ADMIN)),
):
    return services.storage_stats(db, school_id=current_user.school_id)


@uploads_router.get("/{upload_id}", response_model=UploadOut)
def upload_detail(
    upload_id: str,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(staff),
):
    return services.get_upload(db, upload_id=upload_id, school_id=current_user.school_id)


@uploads_router.delete("/{upload_id}", response_model=MessageResponse)
def upload_delete(
    upload_id: str,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(UserRole.ADMIN)),
):
    services.delete_upload(db, actor=current_user, upload_id=upload_id)
    return MessageResponse(message="File deleted")


router = APIRouter(prefix="/api/v1")
router.include_router(uploads_router)
