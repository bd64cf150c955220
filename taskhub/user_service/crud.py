from sqlalchemy.orm import Session
from typing import Iterable

from taskhub.errors import NotFoundError
from taskhub.user_service.models import User
from taskhub.user_service.schemas import NotificationPreferences

PREFERENCE_FIELDS = tuple(NotificationPreferences.model_fields)


def get_user(db: Session, user_id: int):
    return db.query(User).filter(User.id == user_id).first()


def require_user(db: Session, user_id: int, detail: str = "User not found") -> User:
    user = get_user(db, user_id)
    if not user:
        raise NotFoundError(detail)
    return user


def get_users(db: Session, user_ids: Iterable[int]) -> dict:
    ids = set(user_ids)
    if not ids:
        return {}
    return {user.id: user for user in db.query(User).filter(User.id.in_(ids)).all()}


def get_display_name(db: Session, user_id: int) -> str:
    user = get_user(db, user_id)
    return user.display_name if user else f"User #{user_id}"


def get_preferences(db: Session, user_id: int) -> NotificationPreferences:
    user = get_user(db, user_id)
    if not user:
        # Unknown accounts fall back to the defaults (everything on)
        return NotificationPreferences()
    return NotificationPreferences.model_validate(user)


def update_preferences(db: Session, user_id: int, **changes) -> NotificationPreferences:
    user = require_user(db, user_id)
    for key, value in changes.items():
        if key in PREFERENCE_FIELDS and isinstance(value, bool):
            setattr(user, key, value)
    db.commit()
    db.refresh(user)
    return NotificationPreferences.model_validate(user)
