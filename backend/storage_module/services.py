import logging
from collections import defaultdict

from sqlalchemy.orm import Session

from ..rbac_module.database import paginate
from ..rbac_module.models import AuditAction, User
from ..rbac_module.services import get_in_school, record_audit
from .models import Upload

logger = logging.getLogger(__name__)

MEGABYTE = 1024 * 1024


def create_upload(db: Session, *, actor: User, school_id: str, **fields) -> Upload:
    upload = Upload(school_id=school_id, uploaded_by_id=actor.id, **fields)
    db.add(upload)
    db.commit()
    db.refresh(upload)
    logger.info(f"Upload {upload.original_name} ({upload.size} bytes) registered by {actor.email}")
    return upload


def list_uploads(
    db: Session,
    *,
    school_id: str,
    page: int,
    limit: int,
    uploaded_by_id: str | None = None,
    mime_type: str | None = None,
):
    query = db.query(Upload).filter(Upload.school_id == school_id)
    if uploaded_by_id:
        query = query.filter(Upload.uploaded_by_id == uploaded_by_id)
    if mime_type:
        # "image" matches every image/* type, "image/png" only itself.
        if "/" in mime_type:
            query = query.filter(Upload.mime_type == mime_type.lower())
        else:
            query = query.filter(Upload.mime_type.startswith(f"{mime_type.lower()}/"))
    return paginate(query.order_by(Upload.created_at.desc()), page=page, limit=limit)


def get_upload(db: Session, *, upload_id: str, school_id: str) -> Upload:
    return get_in_school(db, Upload, upload_id, school_id, "File")


def delete_upload(db: Session, *, actor: User, upload_id: str) -> None:
    upload = get_upload(db, upload_id=upload_id, school_id=actor.school_id)
    snapshot = {"original_name": upload.original_name, "url": upload.url, "size": upload.size}
    db.delete(upload)
    record_audit(db, action=AuditAction.DELETE, resource="uploads", resource_id=upload_id, user=actor, old_data=snapshot)


def storage_stats(db: Session, *, school_id: str) -> dict:
    rows = db.query(Upload.mime_type, Upload.size).filter(Upload.school_id == school_id).all()
    by_type: dict[str, dict[str, int]] = defaultdict(lambda: {"files": 0, "size": 0})
    for mime_type, size in rows:
        bucket = by_type[mime_type.split("/")[0]]
        bucket["files"] += 1
        bucket["size"] += size
    total = sum(size for _, size in rows)
    return {
        "total_files": len(rows),
        "total_size": total,
        "total_size_mb": round(total / MEGABYTE, 2),
        "by_type": [{"type": kind, **values} for kind, values in sorted(by_type.items())],
    }
