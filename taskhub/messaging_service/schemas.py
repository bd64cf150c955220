from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import Annotated, List, Literal, Optional, Union
from datetime import datetime

from taskhub.messaging_service.models import MessageStatus
from taskhub.user_service.schemas import UserSummary


# ------- Attachments (closed tagged variant) -------
class _AttachmentBase(BaseModel):
    url: str
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    mime_type: Optional[str] = None


class ImageAttachment(_AttachmentBase):
    type: Literal["image"] = "image"


class VideoAttachment(_AttachmentBase):
    type: Literal["video"] = "video"


class AudioAttachment(_AttachmentBase):
    type: Literal["audio"] = "audio"


class FileAttachment(_AttachmentBase):
    type: Literal["file"] = "file"


Attachment = Annotated[
    Union[ImageAttachment, VideoAttachment, AudioAttachment, FileAttachment],
    Field(discriminator="type"),
]


# ------- Conversations -------
class StartConversationRequest(BaseModel):
    recipient_id: int
    task_id: Optional[int] = None
    proposal_id: Optional[int] = None


class ConversationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    participant1_id: int
    participant2_id: int
    is_task_conversation: bool = False
    task_id: Optional[int] = None
    proposal_id: Optional[int] = None
    last_message_text: Optional[str] = None
    last_message_sender_id: Optional[int] = None
    last_message_at: Optional[datetime] = None
    pinned_for: List[int] = []
    muted_for: List[int] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class StartConversationResponse(BaseModel):
    conversation: ConversationResponse
    is_new: bool
    is_different_context: bool
    recipient_name: Optional[str] = None


class LastMessageSummary(BaseModel):
    text: Optional[str] = None
    sender_id: Optional[int] = None
    created_at: Optional[datetime] = None


class InboxEntry(BaseModel):
    conversation_id: int
    other_user: Optional[UserSummary] = None
    is_task_conversation: bool = False
    task_id: Optional[int] = None
    proposal_id: Optional[int] = None
    last_message: Optional[LastMessageSummary] = None
    unread_count: int = 0
    is_pinned: bool = False
    is_muted: bool = False
    updated_at: Optional[datetime] = None


class ConversationFlagRequest(BaseModel):
    value: bool


# ------- Messages -------
class MessageCreate(BaseModel):
    conversation_id: Optional[int] = None
    receiver_id: Optional[int] = None
    text: Optional[str] = None
    attachments: List[Attachment] = []
    reply_to_id: Optional[int] = None
    task_id: Optional[int] = None
    proposal_id: Optional[int] = None

    @model_validator(mode="after")
    def check_target(self):
        if self.conversation_id is None and self.receiver_id is None:
            raise ValueError("conversation_id or receiver_id required")
        return self


class MessageEdit(BaseModel):
    text: Optional[str] = None
    attachments_to_remove: List[str] = []
    new_attachments: List[Attachment] = []


class ReactionRequest(BaseModel):
    emoji: str = Field(min_length=1, max_length=32)


class ReactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    emoji: str
    user_id: int


class MessageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    conversation_id: int
    sender_id: int
    receiver_id: int
    text: str
    attachments: List[Attachment] = []
    status: MessageStatus
    is_read: bool
    read_at: Optional[datetime] = None
    is_edited: bool
    edited_at: Optional[datetime] = None
    reply_to_id: Optional[int] = None
    reactions: List[ReactionResponse] = []
    deleted_by: List[int] = []
    created_at: datetime


class ReactionsResponse(BaseModel):
    message_id: int
    reactions: List[ReactionResponse]


class MarkReadResponse(BaseModel):
    modified_count: int


class UnreadCountResponse(BaseModel):
    unread_count: int
