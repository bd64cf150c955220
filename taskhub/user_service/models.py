from sqlalchemy import Column, Integer, String, Boolean, DateTime
from sqlalchemy.sql import func

from taskhub.database import Base


class User(Base):
    """Read-mostly projection of the account owned by the user service.

    Only the fields the messaging and notification core needs: display identity, the
    email address and the notification preference flags.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    first_name = Column(String, nullable=False, default="")
    last_name = Column(String, nullable=False, default="")
    profile_image = Column(String, nullable=True)

    email_notifications = Column(Boolean, nullable=False, default=True)
    in_app_notifications = Column(Boolean, nullable=False, default=True)
    proposal_updates = Column(Boolean, nullable=False, default=True)
    task_updates = Column(Boolean, nullable=False, default=True)
    message_notifications = Column(Boolean, nullable=False, default=True)
    system_updates = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    @property
    def display_name(self) -> str:
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or f"User #{self.id}"
