from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional

from taskhub.auth import resolve_account
from taskhub.database import get_db
from taskhub.notifications_service import crud
from taskhub.notifications_service.schemas import (
    DeleteManyRequest, MarkByLinkRequest, NotificationCount, NotificationPage,
    NotificationResponse, UpdatedResponse
)
from taskhub.user_service.crud import get_preferences, update_preferences
from taskhub.user_service.schemas import NotificationPreferences, NotificationPreferencesUpdate

router = APIRouter(prefix="/api/v1/notifications", tags=["notifications"])


@router.get("", response_model=NotificationPage)
def get_user_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    type: Optional[str] = Query(None, pattern="^(all|message|proposal|task|system|admin)$"),
    unread_only: bool = False,
    db: Session = Depends(get_db),
    account: dict = Depends(resolve_account)
):
    return crud.get_notifications(db, account["id"], page, limit, type, unread_only)


@router.get("/unread-count", response_model=NotificationCount)
def get_unread_count(
    db: Session = Depends(get_db),
    account: dict = Depends(resolve_account)
):
    return {"count": crud.get_unread_count(db, account["id"])}


@router.get("/preferences", response_model=NotificationPreferences)
def read_preferences(
    db: Session = Depends(get_db),
    account: dict = Depends(resolve_account)
):
    return get_preferences(db, account["id"])


@router.patch("/preferences", response_model=NotificationPreferences)
def change_preferences(
    request: NotificationPreferencesUpdate,
    db: Session = Depends(get_db),
    account: dict = Depends(resolve_account)
):
    return update_preferences(db, account["id"], **request.model_dump(exclude_none=True))


@router.post("/read-all", response_model=UpdatedResponse)
def mark_all_as_read(
    db: Session = Depends(get_db),
    account: dict = Depends(resolve_account)
):
    return {"updated": crud.mark_all_read(db, account["id"])}


@router.post("/read-by-link", response_model=UpdatedResponse)
def mark_read_by_link(
    request: MarkByLinkRequest,
    db: Session = Depends(get_db),
    account: dict = Depends(resolve_account)
):
    return {"updated": crud.mark_read_by_link(db, account["id"], request.link)}


@router.post("/delete-many", response_model=UpdatedResponse)
def delete_many(
    request: DeleteManyRequest,
    db: Session = Depends(get_db),
    account: dict = Depends(resolve_account)
):
    return {"updated": crud.delete_notifications(db, account["id"], request.ids)}


@router.delete("", response_model=UpdatedResponse)
def delete_all(
    db: Session = Depends(get_db),
    account: dict = Depends(resolve_account)
):
    return {"updated": crud.delete_all_notifications(db, account["id"])}


@router.post("/{notification_id}/read", response_model=NotificationResponse)
def mark_read(
    notification_id: int,
    db: Session = Depends(get_db),
    account: dict = Depends(resolve_account)
):
    return crud.mark_notification_read(db, notification_id, account["id"])


@router.delete("/{notification_id}")
def delete_notification(
    notification_id: int,
    db: Session = Depends(get_db),
    account: dict = Depends(resolve_account)
):
    crud.delete_notification(db, notification_id, account["id"])
    return {"message": "Notification deleted"}
