from fastapi import APIRouter, BackgroundTasks, Depends, Response, status
from sqlalchemy.orm import Session
from typing import List

from taskhub.auth import resolve_account
from taskhub.database import get_db
from taskhub.events import EventPublisher, get_event_publisher
from taskhub.proposal_service import crud
from taskhub.proposal_service.schemas import (
    AcceptResponse, ProposalCreate, ProposalResponse, ProposalResubmit, ProposalStats, ProposalWithTask
)

router = APIRouter(prefix="/api/v1/proposals", tags=["proposals"])


def _event_data(proposal, task=None) -> dict:
    task = task or proposal.task
    return {
        "proposal_id": proposal.id,
        "task_id": proposal.task_id,
        "task_title": task.title if task else None,
        "owner_id": proposal.to_user_id,
        "applicant_id": proposal.from_user_id,
    }


@router.post("", response_model=ProposalResponse, status_code=status.HTTP_201_CREATED)
def create_proposal(
    request: ProposalCreate,
    response: Response,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    account: dict = Depends(resolve_account),
    publisher: EventPublisher = Depends(get_event_publisher)
):
    proposal, resubmitted = crud.create_proposal(
        db,
        request.task_id,
        account["id"],
        request.message,
        attachments=request.attachments,
        proposed_budget=request.proposed_budget,
        proposed_duration=request.proposed_duration,
    )
    if resubmitted:
        response.status_code = status.HTTP_200_OK
    event_type = "proposal.resubmitted" if resubmitted else "proposal.created"
    background_tasks.add_task(publisher.publish, event_type, _event_data(proposal))
    return proposal


@router.get("/mine", response_model=List[ProposalWithTask])
def get_my_proposals(
    db: Session = Depends(get_db),
    account: dict = Depends(resolve_account)
):
    return crud.list_my_proposals(db, account["id"])


@router.get("/mine/stats", response_model=ProposalStats)
def get_my_proposal_stats(
    db: Session = Depends(get_db),
    account: dict = Depends(resolve_account)
):
    return crud.my_proposal_stats(db, account["id"])


@router.get("/tasks/{task_id}", response_model=List[ProposalResponse])
def get_task_proposals(
    task_id: int,
    db: Session = Depends(get_db),
    account: dict = Depends(resolve_account)
):
    return crud.list_proposals_for_task(db, task_id, account["id"])


@router.get("/tasks/{task_id}/mine", response_model=ProposalResponse)
def get_my_proposal_for_task(
    task_id: int,
    db: Session = Depends(get_db),
    account: dict = Depends(resolve_account)
):
    return crud.get_my_proposal_for_task(db, task_id, account["id"])


@router.post("/{proposal_id}/accept", response_model=AcceptResponse)
def accept_proposal(
    proposal_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    account: dict = Depends(resolve_account),
    publisher: EventPublisher = Depends(get_event_publisher)
):
    proposal, task, not_selected_ids = crud.accept_proposal(db, proposal_id, account["id"])
    data = _event_data(proposal, task)
    data["not_selected"] = not_selected_ids
    background_tasks.add_task(publisher.publish, "proposal.accepted", data)
    return {"proposal": proposal, "task": task, "not_selected_ids": not_selected_ids}


@router.post("/{proposal_id}/reject", response_model=ProposalResponse)
def reject_proposal(
    proposal_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    account: dict = Depends(resolve_account),
    publisher: EventPublisher = Depends(get_event_publisher)
):
    proposal = crud.reject_proposal(db, proposal_id, account["id"])
    background_tasks.add_task(publisher.publish, "proposal.rejected", _event_data(proposal))
    return proposal


@router.post("/{proposal_id}/withdraw", response_model=ProposalResponse)
def withdraw_proposal(
    proposal_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    account: dict = Depends(resolve_account),
    publisher: EventPublisher = Depends(get_event_publisher)
):
    proposal = crud.withdraw_proposal(db, proposal_id, account["id"])
    background_tasks.add_task(publisher.publish, "proposal.withdrawn", _event_data(proposal))
    return proposal


@router.put("/{proposal_id}/resubmit", response_model=ProposalResponse)
def resubmit_proposal(
    proposal_id: int,
    request: ProposalResubmit,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    account: dict = Depends(resolve_account),
    publisher: EventPublisher = Depends(get_event_publisher)
):
    proposal = crud.resubmit_proposal(
        db,
        proposal_id,
        account["id"],
        message=request.message,
        attachments=request.attachments,
        proposed_budget=request.proposed_budget,
        proposed_duration=request.proposed_duration,
    )
    background_tasks.add_task(publisher.publish, "proposal.resubmitted", _event_data(proposal))
    return proposal
