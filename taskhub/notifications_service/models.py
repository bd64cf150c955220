from sqlalchemy import Column, Integer, String, Text, DateTime, Boolean
import enum

from taskhub.database import Base, EnumValue, utcnow


class NotificationType(str, enum.Enum):
    MESSAGE = "message"
    PROPOSAL = "proposal"
    TASK = "task"
    SYSTEM = "system"
    ADMIN = "admin"


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    type = Column(EnumValue(NotificationType, 20), nullable=False, index=True)
    title = Column(String, nullable=True)
    message = Column(Text, nullable=False)
    link = Column(String, nullable=True)  # '/tasks/12', '/messages/3'
    is_read = Column(Boolean, default=False, nullable=False)
    is_deleted = Column(Boolean, default=False, nullable=False)
    email_sent = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
