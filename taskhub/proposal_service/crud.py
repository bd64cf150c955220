from sqlalchemy.orm import Session, joinedload
from sqlalchemy.exc import IntegrityError
from typing import List, Optional
import logging

from taskhub.database import utcnow
from taskhub.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from taskhub.proposal_service.models import (
    ACTIVE_PROPOSAL_STATUSES, REOPENABLE_PROPOSAL_STATUSES,
    Proposal, ProposalStatus, Task, TaskAssignment, TaskStatus
)

logger = logging.getLogger(__name__)

ALREADY_ACCEPTED = "already_accepted"
ALREADY_PROCESSED = "already_processed"
ACTIVE_PROPOSAL_EXISTS = "active_proposal_exists"


def get_task(db: Session, task_id: int):
    return db.query(Task).filter(Task.id == task_id).first()


def require_task(db: Session, task_id: int) -> Task:
    task = get_task(db, task_id)
    if not task:
        raise NotFoundError("Task not found")
    return task


def get_proposal(db: Session, proposal_id: int):
    return db.query(Proposal).filter(Proposal.id == proposal_id).first()


def require_proposal(db: Session, proposal_id: int) -> Proposal:
    proposal = get_proposal(db, proposal_id)
    if not proposal:
        raise NotFoundError("Proposal not found")
    return proposal


def _require_owner(proposal: Proposal, user_id: int):
    if user_id not in (proposal.to_user_id, proposal.task.owner_id):
        raise AuthorizationError("Not authorized")


def _clean_message(message: Optional[str]) -> str:
    message = (message or "").strip()
    if not message:
        raise ValidationError("Proposal message is required")
    return message


def _reopen(
    proposal: Proposal,
    message: Optional[str],
    attachments: Optional[List[str]],
    proposed_budget: Optional[float],
    proposed_duration: Optional[str]
):
    if message is not None:
        proposal.message = _clean_message(message)
    if attachments:
        proposal.attachments = list(attachments)
    if proposed_budget is not None:
        proposal.proposed_budget = proposed_budget
    if proposed_duration is not None:
        proposal.proposed_duration = proposed_duration
    proposal.status = ProposalStatus.PENDING
    proposal.updated_at = utcnow()


def create_proposal(
    db: Session,
    task_id: int,
    from_user_id: int,
    message: str,
    attachments: Optional[List[str]] = None,
    proposed_budget: Optional[float] = None,
    proposed_duration: Optional[str] = None
):
    """Submit a proposal; returns ``(proposal, resubmitted)``.

    An applicant whose earlier proposal on the task ended (withdrawn, rejected or not
    selected) gets that same row reopened instead of a second one.
    """
    message = _clean_message(message)
    task = require_task(db, task_id)
    if task.owner_id == from_user_id:
        raise ValidationError("Task owners cannot apply to their own tasks")

    existing = db.query(Proposal).filter(
        Proposal.task_id == task_id,
        Proposal.from_user_id == from_user_id
    ).first()
    if existing:
        if existing.status in ACTIVE_PROPOSAL_STATUSES:
            raise ConflictError("You already have an active proposal for this task", ACTIVE_PROPOSAL_EXISTS)
        _reopen(existing, message, attachments, proposed_budget, proposed_duration)
        db.commit()
        db.refresh(existing)
        return existing, True

    proposal = Proposal(
        task_id=task_id,
        from_user_id=from_user_id,
        to_user_id=task.owner_id,
        message=message,
        attachments=list(attachments or []),
        proposed_budget=proposed_budget,
        proposed_duration=proposed_duration,
        status=ProposalStatus.PENDING,
    )
    db.add(proposal)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("You already have an active proposal for this task", ACTIVE_PROPOSAL_EXISTS)
    db.refresh(proposal)
    return proposal, False


def resubmit_proposal(
    db: Session,
    proposal_id: int,
    user_id: int,
    message: Optional[str] = None,
    attachments: Optional[List[str]] = None,
    proposed_budget: Optional[float] = None,
    proposed_duration: Optional[str] = None
):
    proposal = require_proposal(db, proposal_id)
    if proposal.from_user_id != user_id:
        raise AuthorizationError("Not authorized")
    if proposal.status not in REOPENABLE_PROPOSAL_STATUSES:
        raise ConflictError("Only withdrawn, rejected or not selected proposals can be resubmitted", ACTIVE_PROPOSAL_EXISTS)
    _reopen(proposal, message, attachments, proposed_budget, proposed_duration)
    db.commit()
    db.refresh(proposal)
    return proposal


def _transition_pending(db: Session, proposal: Proposal, new_status: ProposalStatus):
    """Move a pending proposal to ``new_status`` in one conditional UPDATE."""
    updated = db.query(Proposal).filter(
        Proposal.id == proposal.id,
        Proposal.status == ProposalStatus.PENDING
    ).update({"status": new_status, "updated_at": utcnow()}, synchronize_session=False)
    if not updated:
        db.rollback()
        raise ConflictError("Proposal is no longer pending", ALREADY_PROCESSED)
    db.commit()
    db.refresh(proposal)
    return proposal


def withdraw_proposal(db: Session, proposal_id: int, user_id: int):
    proposal = require_proposal(db, proposal_id)
    if proposal.from_user_id != user_id:
        raise AuthorizationError("Not authorized")
    return _transition_pending(db, proposal, ProposalStatus.WITHDRAWN)


def reject_proposal(db: Session, proposal_id: int, user_id: int):
    proposal = require_proposal(db, proposal_id)
    _require_owner(proposal, user_id)
    return _transition_pending(db, proposal, ProposalStatus.REJECTED)


def accept_proposal(db: Session, proposal_id: int, user_id: int):
    """Accept one proposal and close the task's competition, all in one transaction.

    Returns ``(proposal, task, not_selected_user_ids)``. A caller that loses a race gets
    ConflictError with reason ``already_accepted`` or ``already_processed`` and nothing
    it wrote is kept.
    """
    proposal = require_proposal(db, proposal_id)
    _require_owner(proposal, user_id)
    task_id = proposal.task_id

    try:
        # Serializes concurrent accepts on the same task where the database supports it
        task = db.query(Task).filter(Task.id == task_id).with_for_update().populate_existing().one()

        accepted = db.query(Proposal.id).filter(
            Proposal.task_id == task_id,
            Proposal.status == ProposalStatus.ACCEPTED
        ).first()
        if accepted:
            raise ConflictError("Another proposal has already been accepted for this task", ALREADY_ACCEPTED)

        db.refresh(proposal)
        if proposal.status != ProposalStatus.PENDING:
            raise ConflictError("Proposal cannot be accepted (status is not pending)", ALREADY_PROCESSED)

        # Withdraw and reject do not take the task lock, so the pending check rides on the write
        updated = db.query(Proposal).filter(
            Proposal.id == proposal.id,
            Proposal.status == ProposalStatus.PENDING
        ).update({"status": ProposalStatus.ACCEPTED, "updated_at": utcnow()}, synchronize_session=False)
        if not updated:
            raise ConflictError("Proposal cannot be accepted (status is not pending)", ALREADY_PROCESSED)

        if proposal.from_user_id not in task.assigned_to:
            db.add(TaskAssignment(task_id=task_id, user_id=proposal.from_user_id))
        task.status = TaskStatus.IN_PROGRESS

        not_selected_ids = [
            row.from_user_id for row in db.query(Proposal.from_user_id).filter(
                Proposal.task_id == task_id,
                Proposal.id != proposal.id,
                Proposal.status == ProposalStatus.PENDING
            ).all()
        ]
        db.query(Proposal).filter(
            Proposal.task_id == task_id,
            Proposal.id != proposal.id,
            Proposal.status == ProposalStatus.PENDING
        ).update({"status": ProposalStatus.NOT_SELECTED, "updated_at": utcnow()}, synchronize_session=False)

        db.commit()
    except ConflictError:
        db.rollback()
        raise
    except IntegrityError as exc:
        db.rollback()
        logger.info("Accept of proposal %s lost the race: %s", proposal_id, exc.orig)
        raise ConflictError("Another proposal has already been accepted for this task", ALREADY_ACCEPTED)
    except Exception:
        db.rollback()
        raise

    db.refresh(proposal)
    db.refresh(task)
    return proposal, task, not_selected_ids


def list_proposals_for_task(db: Session, task_id: int, user_id: int):
    task = require_task(db, task_id)
    if task.owner_id != user_id:
        raise AuthorizationError("Not authorized")
    return db.query(Proposal).filter(
        Proposal.task_id == task_id
    ).order_by(Proposal.created_at.desc(), Proposal.id.desc()).all()


def list_my_proposals(db: Session, user_id: int):
    return db.query(Proposal).options(joinedload(Proposal.task)).filter(
        Proposal.from_user_id == user_id
    ).order_by(Proposal.created_at.desc(), Proposal.id.desc()).all()


def get_my_proposal_for_task(db: Session, task_id: int, user_id: int):
    proposal = db.query(Proposal).filter(
        Proposal.task_id == task_id,
        Proposal.from_user_id == user_id
    ).first()
    if not proposal:
        raise NotFoundError("Proposal not found")
    return proposal


def my_proposal_stats(db: Session, user_id: int) -> dict:
    stats = {"applied": 0, "in_progress": 0, "completed": 0}
    rows = db.query(Proposal.status, Task.status).join(Task, Proposal.task_id == Task.id).filter(
        Proposal.from_user_id == user_id
    ).all()
    for proposal_status, task_status in rows:
        if proposal_status == ProposalStatus.PENDING:
            stats["applied"] += 1
        elif proposal_status == ProposalStatus.ACCEPTED:
            if task_status in (TaskStatus.IN_PROGRESS, TaskStatus.PUBLISHED):
                stats["in_progress"] += 1
            elif task_status == TaskStatus.COMPLETED:
                stats["completed"] += 1
    return stats
