from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional
from datetime import datetime

from taskhub.proposal_service.models import ProposalStatus, TaskStatus


class ProposalCreate(BaseModel):
    task_id: int
    message: str = Field(min_length=1, max_length=5000)
    attachments: List[str] = []
    proposed_budget: Optional[float] = Field(default=None, ge=0)
    proposed_duration: Optional[str] = None


class ProposalResubmit(BaseModel):
    message: Optional[str] = Field(default=None, min_length=1, max_length=5000)
    attachments: Optional[List[str]] = None
    proposed_budget: Optional[float] = Field(default=None, ge=0)
    proposed_duration: Optional[str] = None


class ProposalResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    task_id: int
    from_user_id: int
    to_user_id: int
    message: str
    attachments: List[str] = []
    proposed_budget: Optional[float] = None
    proposed_duration: Optional[str] = None
    status: ProposalStatus
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class TaskSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    owner_id: int
    title: str
    status: TaskStatus
    assigned_to: List[int] = []


class ProposalWithTask(ProposalResponse):
    task: Optional[TaskSummary] = None


class AcceptResponse(BaseModel):
    proposal: ProposalResponse
    task: TaskSummary
    not_selected_ids: List[int]


class ProposalStats(BaseModel):
    applied: int
    in_progress: int
    completed: int
