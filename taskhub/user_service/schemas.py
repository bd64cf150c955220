from pydantic import BaseModel, ConfigDict
from typing import Optional


class UserSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    display_name: str
    profile_image: Optional[str] = None


class NotificationPreferences(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    email_notifications: bool = True
    in_app_notifications: bool = True
    proposal_updates: bool = True
    task_updates: bool = True
    message_notifications: bool = True
    system_updates: bool = True


class NotificationPreferencesUpdate(BaseModel):
    email_notifications: Optional[bool] = None
    in_app_notifications: Optional[bool] = None
    proposal_updates: Optional[bool] = None
    task_updates: Optional[bool] = None
    message_notifications: Optional[bool] = None
    system_updates: Optional[bool] = None
