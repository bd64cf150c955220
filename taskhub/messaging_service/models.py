from sqlalchemy import (
    Column, Integer, String, Text, DateTime, ForeignKey, Boolean, JSON, UniqueConstraint, Index
)
from sqlalchemy.orm import relationship
import enum

from taskhub.database import Base, EnumValue, utcnow


class MessageStatus(str, enum.Enum):
    SENT = "sent"
    DELIVERED = "delivered"
    SEEN = "seen"


class Conversation(Base):
    """One thread per unordered pair of users.

    participant1_id is always the smaller id, so the unique constraint on the pair
    holds no matter who started the conversation.
    """
    __tablename__ = "conversations"
    __table_args__ = (
        UniqueConstraint("participant1_id", "participant2_id", name="uq_conversations_participant_pair"),
    )

    id = Column(Integer, primary_key=True, index=True)
    participant1_id = Column(Integer, nullable=False, index=True)
    participant2_id = Column(Integer, nullable=False, index=True)

    # Context of the first contact only
    is_task_conversation = Column(Boolean, default=False)
    task_id = Column(Integer, nullable=True)
    proposal_id = Column(Integer, nullable=True)

    last_message_text = Column(Text, nullable=True)
    last_message_sender_id = Column(Integer, nullable=True)
    last_message_at = Column(DateTime(timezone=True), nullable=True, index=True)

    pinned_for = Column(JSON, default=list)
    muted_for = Column(JSON, default=list)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    messages = relationship("Message", back_populates="conversation")

    @property
    def participants(self):
        return [self.participant1_id, self.participant2_id]

    def has_participant(self, user_id: int) -> bool:
        return user_id in (self.participant1_id, self.participant2_id)

    def other_participant(self, user_id: int) -> int:
        return self.participant2_id if self.participant1_id == user_id else self.participant1_id


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_conversation_receiver_read", "conversation_id", "receiver_id", "is_read"),
    )

    id = Column(Integer, primary_key=True, index=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id"), nullable=False, index=True)
    sender_id = Column(Integer, nullable=False, index=True)
    receiver_id = Column(Integer, nullable=False, index=True)
    text = Column(Text, nullable=False, default="")
    attachments = Column(JSON, default=list)
    status = Column(EnumValue(MessageStatus, length=20), nullable=False, default=MessageStatus.SENT)
    is_read = Column(Boolean, nullable=False, default=False)
    read_at = Column(DateTime(timezone=True), nullable=True)
    is_edited = Column(Boolean, nullable=False, default=False)
    edited_at = Column(DateTime(timezone=True), nullable=True)
    # Weak reference: the replied-to message is never cascaded
    reply_to_id = Column(Integer, ForeignKey("messages.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    conversation = relationship("Conversation", back_populates="messages")
    reactions = relationship(
        "MessageReaction",
        back_populates="message",
        cascade="all, delete-orphan",
        order_by="MessageReaction.id",
    )
    deletions = relationship("MessageDeletion", cascade="all, delete-orphan")

    @property
    def deleted_by(self):
        return [deletion.user_id for deletion in self.deletions]


class MessageReaction(Base):
    __tablename__ = "message_reactions"
    __table_args__ = (
        UniqueConstraint("message_id", "user_id", "emoji", name="uq_message_reactions_user_emoji"),
    )

    id = Column(Integer, primary_key=True, index=True)
    message_id = Column(Integer, ForeignKey("messages.id"), nullable=False, index=True)
    user_id = Column(Integer, nullable=False)
    emoji = Column(String(32), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    message = relationship("Message", back_populates="reactions")


class MessageDeletion(Base):
    """Per-user soft delete: the row hides the message for ``user_id`` only."""
    __tablename__ = "message_deletions"
    __table_args__ = (
        UniqueConstraint("message_id", "user_id", name="uq_message_deletions_user"),
    )

    id = Column(Integer, primary_key=True, index=True)
    message_id = Column(Integer, ForeignKey("messages.id"), nullable=False, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
