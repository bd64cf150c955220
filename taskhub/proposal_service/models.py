from sqlalchemy import (
    Column, Integer, String, Float, Text, DateTime, ForeignKey, JSON, UniqueConstraint, Index, text
)
from sqlalchemy.orm import relationship
import enum

from taskhub.database import Base, EnumValue, utcnow


class TaskStatus(str, enum.Enum):
    PUBLISHED = "published"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    WITHDRAWN = "withdrawn"


class ProposalStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"
    NOT_SELECTED = "not-selected"


ACTIVE_PROPOSAL_STATUSES = (ProposalStatus.PENDING, ProposalStatus.ACCEPTED)
REOPENABLE_PROPOSAL_STATUSES = (
    ProposalStatus.WITHDRAWN, ProposalStatus.REJECTED, ProposalStatus.NOT_SELECTED
)


class Task(Base):
    """The slice of a task that proposal resolution reads and writes."""
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, nullable=False, index=True)
    title = Column(String, nullable=False)
    status = Column(EnumValue(TaskStatus, 20), nullable=False, default=TaskStatus.PUBLISHED)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    assignments = relationship("TaskAssignment", back_populates="task", cascade="all, delete-orphan")
    proposals = relationship("Proposal", back_populates="task")

    @property
    def assigned_to(self):
        return [a.user_id for a in self.assignments]


class TaskAssignment(Base):
    __tablename__ = "task_assignments"
    __table_args__ = (
        UniqueConstraint("task_id", "user_id", name="uq_task_assignments_task_user"),
    )

    id = Column(Integer, primary_key=True, index=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    task = relationship("Task", back_populates="assignments")


class Proposal(Base):
    __tablename__ = "proposals"
    __table_args__ = (
        # Resubmission reuses the row, so each applicant has exactly one per task
        UniqueConstraint("task_id", "from_user_id", name="uq_proposals_task_applicant"),
        # At most one accepted proposal per task
        Index(
            "uq_proposals_task_accepted",
            "task_id",
            unique=True,
            postgresql_where=text("status = 'accepted'"),
            sqlite_where=text("status = 'accepted'"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    task_id = Column(Integer, ForeignKey("tasks.id"), nullable=False, index=True)
    from_user_id = Column(Integer, nullable=False, index=True)
    to_user_id = Column(Integer, nullable=False, index=True)
    message = Column(Text, nullable=False)
    attachments = Column(JSON, default=list)  # list of file URLs
    proposed_budget = Column(Float, nullable=True)
    proposed_duration = Column(String, nullable=True)
    status = Column(EnumValue(ProposalStatus, 20), nullable=False, default=ProposalStatus.PENDING, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    task = relationship("Task", back_populates="proposals")
