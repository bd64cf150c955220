from sqlalchemy.orm import Session
from typing import Iterable, Optional
import math
import re

from taskhub.errors import NotFoundError, ValidationError
from taskhub.notifications_service.models import Notification, NotificationType

# Only these link shapes may be bulk-marked read
LINK_WHITELIST = re.compile(r"^/(tasks|messages)/\d+$")


def _visible(db: Session, user_id: int):
    return db.query(Notification).filter(
        Notification.user_id == user_id,
        Notification.is_deleted.is_(False)
    )


def create_notification(
    db: Session,
    user_id: int,
    type: NotificationType,
    message: str,
    title: Optional[str] = None,
    link: Optional[str] = None
):
    notification = Notification(
        user_id=user_id,
        type=type,
        title=title,
        message=message,
        link=link,
        is_read=False,
        is_deleted=False,
        email_sent=False
    )
    db.add(notification)
    db.commit()
    db.refresh(notification)
    return notification


def mark_email_sent(db: Session, notification: Notification):
    notification.email_sent = True
    db.commit()
    return notification


def get_notifications(
    db: Session,
    user_id: int,
    page: int = 1,
    limit: int = 50,
    type: Optional[str] = None,
    unread_only: bool = False
):
    query = _visible(db, user_id)
    if type and type != "all":
        query = query.filter(Notification.type == NotificationType(type))
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))

    total = query.count()
    notifications = (
        query.order_by(Notification.created_at.desc(), Notification.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "notifications": notifications,
        "total": total,
        "unread_count": get_unread_count(db, user_id),
        "page": page,
        "total_pages": math.ceil(total / limit) if limit else 0,
    }


def get_unread_count(db: Session, user_id: int) -> int:
    return _visible(db, user_id).filter(Notification.is_read.is_(False)).count()


def mark_notification_read(db: Session, notification_id: int, user_id: int):
    notification = db.query(Notification).filter(
        Notification.id == notification_id,
        Notification.user_id == user_id
    ).first()
    if not notification:
        raise NotFoundError("Notification not found")
    notification.is_read = True
    db.commit()
    db.refresh(notification)
    return notification


def mark_all_read(db: Session, user_id: int) -> int:
    updated = _visible(db, user_id).filter(
        Notification.is_read.is_(False)
    ).update({"is_read": True}, synchronize_session=False)
    db.commit()
    return updated


def delete_notification(db: Session, notification_id: int, user_id: int):
    notification = db.query(Notification).filter(
        Notification.id == notification_id,
        Notification.user_id == user_id
    ).first()
    if not notification:
        raise NotFoundError("Notification not found")
    notification.is_deleted = True
    db.commit()
    return notification


def delete_notifications(db: Session, user_id: int, ids: Iterable[int]) -> int:
    ids = list(ids)
    if not ids:
        raise ValidationError("Invalid notification IDs")
    updated = db.query(Notification).filter(
        Notification.id.in_(ids),
        Notification.user_id == user_id
    ).update({"is_deleted": True}, synchronize_session=False)
    db.commit()
    return updated


def delete_all_notifications(db: Session, user_id: int) -> int:
    updated = _visible(db, user_id).update({"is_deleted": True}, synchronize_session=False)
    db.commit()
    return updated


def mark_read_by_link(db: Session, user_id: int, link: str) -> int:
    """Mark unread notifications pointing at exactly ``link`` as read."""
    if not link or not LINK_WHITELIST.match(link):
        raise ValidationError("Invalid link pattern")
    updated = _visible(db, user_id).filter(
        Notification.is_read.is_(False),
        Notification.link == link
    ).update({"is_read": True}, synchronize_session=False)
    db.commit()
    return updated
