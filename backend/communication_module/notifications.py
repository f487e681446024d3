import logging
from datetime import timedelta

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from ..rbac_module.database import paginate, utcnow
from ..rbac_module.models import AuditAction, User, UserRole
from ..rbac_module.services import record_audit
from .models import Notification, NotificationType

logger = logging.getLogger(__name__)


def _active_users(db: Session, school_id: str):
    return db.query(User).filter(
        User.school_id == school_id,
        User.is_active.is_(True),
        User.deleted_at.is_(None),
    )


def dispatch(
    db: Session,
    *,
    school_id: str,
    user_ids: list[str],
    title: str,
    message: str,
    type: NotificationType = NotificationType.INFO,
    link: str | None = None,
    metadata: dict | None = None,
    commit: bool = True,
) -> int:
    """Create one notification per distinct recipient and return how many were written."""
    recipients = list(dict.fromkeys(user_ids))
    db.add_all(
        Notification(
            school_id=school_id,
            user_id=user_id,
            title=title,
            message=message,
            type=type,
            link=link,
            extra=metadata,
        )
        for user_id in recipients
    )
    if commit:
        db.commit()
    return len(recipients)


def resolve_recipients(
    db: Session,
    *,
    school_id: str,
    roles: list[UserRole] | None = None,
    user_ids: list[str] | None = None,
) -> list[str]:
    """Pick bulk recipients.

    Explicit ``user_ids`` must all be active users of the school. ``roles``
    selects every active user holding one of them. With neither, the whole
    school is targeted. Supplying both is rejected because no precedence
    between them is defined.
    """
    if roles and user_ids:
        raise HTTPException(status_code=400, detail="Provide either roles or user_ids, not both")

    if user_ids:
        wanted = list(dict.fromkeys(user_ids))
        found = {row[0] for row in _active_users(db, school_id).filter(User.id.in_(wanted)).with_entities(User.id)}
        missing = [user_id for user_id in wanted if user_id not in found]
        if missing:
            raise HTTPException(status_code=400, detail=f"Unknown or inactive recipients: {', '.join(missing)}")
        return wanted

    query = _active_users(db, school_id)
    if roles:
        query = query.filter(User.role.in_(roles))
    return [row[0] for row in query.order_by(User.created_at.asc()).with_entities(User.id)]


def create_notification(db: Session, *, school_id: str, user_id: str, **fields) -> Notification:
    recipient = _active_users(db, school_id).filter(User.id == user_id).first()
    if not recipient:
        raise HTTPException(status_code=404, detail="User not found")
    notification = Notification(
        school_id=school_id,
        user_id=recipient.id,
        title=fields["title"],
        message=fields["message"],
        type=fields.get("type") or NotificationType.INFO,
        link=fields.get("link"),
        extra=fields.get("metadata"),
    )
    db.add(notification)
    db.commit()
    db.refresh(notification)
    return notification


def send_bulk(
    db: Session,
    *,
    actor: User,
    school_id: str,
    title: str,
    message: str,
    type: NotificationType,
    link: str | None,
    metadata: dict | None,
    roles: list[UserRole],
    user_ids: list[str],
) -> int:
    recipients = resolve_recipients(db, school_id=school_id, roles=roles, user_ids=user_ids)
    count = dispatch(
        db,
        school_id=school_id,
        user_ids=recipients,
        title=title,
        message=message,
        type=type,
        link=link,
        metadata=metadata,
        commit=False,
    )
    record_audit(
        db,
        action=AuditAction.CREATE,
        resource="notifications",
        user=actor,
        new_data={
            "title": title,
            "count": count,
            "roles": [role.value for role in roles],
            "user_ids": list(dict.fromkeys(user_ids)),
        },
        commit=False,
    )
    db.commit()
    logger.info(f"Bulk notification '{title}' sent to {count} users of school {school_id}")
    return count


def list_for_user(db: Session, *, user: User, page: int, limit: int, unread_only: bool = False):
    query = db.query(Notification).filter(Notification.user_id == user.id)
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))
    return paginate(query.order_by(Notification.created_at.desc()), page=page, limit=limit)


def list_for_school(db: Session, *, school_id: str, page: int, limit: int, type: NotificationType | None = None):
    query = db.query(Notification).filter(Notification.school_id == school_id)
    if type:
        query = query.filter(Notification.type == type)
    return paginate(query.order_by(Notification.created_at.desc()), page=page, limit=limit)


def unread_count(db: Session, *, user: User) -> int:
    return db.query(Notification).filter(Notification.user_id == user.id, Notification.is_read.is_(False)).count()


def get_notification(db: Session, *, notification_id: str, user: User) -> Notification:
    notification = (
        db.query(Notification)
        .filter(Notification.id == notification_id, Notification.school_id == user.school_id)
        .first()
    )
    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found")
    if notification.user_id != user.id and user.role != UserRole.ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not your notification")
    return notification


def mark_as_read(db: Session, *, notification_id: str, user: User) -> Notification:
    notification = (
        db.query(Notification)
        .filter(Notification.id == notification_id, Notification.user_id == user.id)
        .first()
    )
    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found")
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = utcnow()
        db.commit()
        db.refresh(notification)
    return notification


def mark_all_as_read(db: Session, *, user: User) -> int:
    updated = (
        db.query(Notification)
        .filter(Notification.user_id == user.id, Notification.is_read.is_(False))
        .update({Notification.is_read: True, Notification.read_at: utcnow()}, synchronize_session=False)
    )
    db.commit()
    return updated


def delete_notification(db: Session, *, notification_id: str, school_id: str) -> None:
    notification = (
        db.query(Notification)
        .filter(Notification.id == notification_id, Notification.school_id == school_id)
        .first()
    )
    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found")
    db.delete(notification)
    db.commit()


def delete_old_notifications(db: Session, *, days_old: int, school_id: str | None = None) -> int:
    """Purge read notifications older than ``days_old``; unread ones are kept."""
    cutoff = utcnow() - timedelta(days=days_old)
    query = db.query(Notification).filter(Notification.is_read.is_(True), Notification.created_at < cutoff)
    if school_id:
        query = query.filter(Notification.school_id == school_id)
    deleted = query.delete(synchronize_session=False)
    db.commit()
    logger.info(f"Deleted {deleted} read notifications older than {days_old} days")
    return deleted
