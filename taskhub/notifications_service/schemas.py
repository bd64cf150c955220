from pydantic import BaseModel, ConfigDict
from typing import List, Optional
from datetime import datetime

from taskhub.notifications_service.models import NotificationType


class NotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    type: NotificationType
    title: Optional[str] = None
    message: str
    link: Optional[str] = None
    is_read: bool
    email_sent: bool
    created_at: datetime


class NotificationPage(BaseModel):
    notifications: List[NotificationResponse]
    total: int
    unread_count: int
    page: int
    total_pages: int


class NotificationCount(BaseModel):
    count: int


class DeleteManyRequest(BaseModel):
    ids: List[int]


class MarkByLinkRequest(BaseModel):
    link: str


class UpdatedResponse(BaseModel):
    success: bool = True
    updated: int
