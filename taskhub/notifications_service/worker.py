import pika
import json
import logging
import os

from taskhub.database import SessionLocal
from taskhub.events import EVENTS_QUEUE, RABBITMQ_URL
from taskhub.notifications_service import templates
from taskhub.notifications_service.fanout import NotifyJob, fan_out
from taskhub.notifications_service.models import NotificationType
from taskhub.user_service.crud import get_display_name

logger = logging.getLogger(__name__)


def _names(session_factory, *user_ids):
    db = session_factory()
    try:
        return [get_display_name(db, user_id) for user_id in user_ids]
    finally:
        db.close()


def _chat_message_jobs(data, session_factory):
    recipient_id = data.get("recipient_id")
    sender_id = data.get("sender_id")
    conversation_id = data.get("conversation_id")
    if not recipient_id or not sender_id:
        return []
    sender_name, recipient_name = _names(session_factory, sender_id, recipient_id)
    return [NotifyJob(
        user_id=recipient_id,
        category=NotificationType.MESSAGE,
        message=f"{sender_name} sent you a message",
        link=f"/messages/{conversation_id}",
        title="New message",
        email_subject=f"New message from {sender_name}",
        email_html=templates.new_message(recipient_name, sender_name, data.get("preview") or "", conversation_id),
        sender_id=sender_id,
    )]


def _proposal_submitted_jobs(data, session_factory, resubmitted=False):
    owner_id = data.get("owner_id")
    applicant_id = data.get("applicant_id")
    task_id = data.get("task_id")
    task_title = data.get("task_title") or f"Task #{task_id}"
    owner_name, applicant_name = _names(session_factory, owner_id, applicant_id)

    verb = "resubmitted" if resubmitted else "submitted"
    return [
        NotifyJob(
            user_id=owner_id,
            category=NotificationType.PROPOSAL,
            message=f'{applicant_name} {verb} a proposal for your task "{task_title}"',
            link=f"/tasks/{task_id}",
            title="New Proposal Received",
            email_subject=f'New proposal for your task "{task_title}"',
            email_html=templates.proposal_submitted(owner_name, applicant_name, task_title, task_id),
        ),
        NotifyJob(
            user_id=applicant_id,
            category=NotificationType.PROPOSAL,
            message=f'Your proposal for "{task_title}" has been {verb} successfully.',
            link="/my-proposals",
            title="Proposal Submitted",
            email_subject=(
                f"Proposal Resubmitted - {task_title}" if resubmitted
                else f'Your proposal for "{task_title}" was submitted'
            ),
            email_html=templates.proposal_submission_confirmation(applicant_name, task_title),
        ),
    ]


def _proposal_accepted_jobs(data, session_factory):
    applicant_id = data.get("applicant_id")
    task_id = data.get("task_id")
    task_title = data.get("task_title") or f"Task #{task_id}"
    not_selected = [uid for uid in data.get("not_selected") or [] if uid != applicant_id]
    names = _names(session_factory, applicant_id, *not_selected)

    jobs = [NotifyJob(
        user_id=applicant_id,
        category=NotificationType.PROPOSAL,
        message=f'Congratulations! Your proposal for "{task_title}" has been accepted.',
        link=f"/tasks/{task_id}",
        title="Proposal Accepted",
        email_subject=f'Your proposal for "{task_title}" has been accepted!',
        email_html=templates.proposal_accepted(names[0], task_title, task_id),
    )]
    for user_id, name in zip(not_selected, names[1:]):
        jobs.append(NotifyJob(
            user_id=user_id,
            category=NotificationType.PROPOSAL,
            message=f'Your proposal for "{task_title}" was not selected. Keep applying to other tasks!',
            link="/browse-tasks",
            title="Proposal Update",
            email_subject=f'Update on your proposal for "{task_title}"',
            email_html=templates.proposal_not_selected(name, task_title),
        ))
    return jobs


def _proposal_rejected_jobs(data, session_factory):
    applicant_id = data.get("applicant_id")
    task_title = data.get("task_title") or f"Task #{data.get('task_id')}"
    applicant_name, = _names(session_factory, applicant_id)
    return [NotifyJob(
        user_id=applicant_id,
        category=NotificationType.PROPOSAL,
        message=f'Your proposal for "{task_title}" was not selected. Keep applying to other tasks!',
        link="/browse-tasks",
        title="Proposal Update",
        email_subject=f'Update on your proposal for "{task_title}"',
        email_html=templates.proposal_rejected(applicant_name, task_title),
    )]


def _proposal_withdrawn_jobs(data, session_factory):
    applicant_id = data.get("applicant_id")
    task_title = data.get("task_title") or f"Task #{data.get('task_id')}"
    applicant_name, = _names(session_factory, applicant_id)
    return [NotifyJob(
        user_id=applicant_id,
        category=NotificationType.PROPOSAL,
        message=f'You withdrew your proposal for "{task_title}".',
        link="/my-proposals",
        title="Proposal Withdrawn",
        email_subject=f"Proposal Withdrawn - {task_title}",
        email_html=templates.proposal_withdrawn(applicant_name, task_title),
    )]


def build_jobs(event_type: str, data: dict, session_factory=SessionLocal):
    if event_type == "chat.message":
        return _chat_message_jobs(data, session_factory)
    elif event_type == "proposal.created":
        return _proposal_submitted_jobs(data, session_factory)
    elif event_type == "proposal.resubmitted":
        return _proposal_submitted_jobs(data, session_factory, resubmitted=True)
    elif event_type == "proposal.accepted":
        return _proposal_accepted_jobs(data, session_factory)
    elif event_type == "proposal.rejected":
        return _proposal_rejected_jobs(data, session_factory)
    elif event_type == "proposal.withdrawn":
        return _proposal_withdrawn_jobs(data, session_factory)
    logger.debug("Ignoring event %s", event_type)
    return []


def handle_event(event_type: str, data: dict, session_factory=SessionLocal, email_sender=None, cooldown=None):
    jobs = build_jobs(event_type, data, session_factory)
    return fan_out(jobs, session_factory=session_factory, email_sender=email_sender, cooldown=cooldown)


def process_notification(ch, method, properties, body):
    try:
        event = json.loads(body)
        event_type = event.get("type")
        data = event.get("data") or {}
    except (ValueError, AttributeError) as exc:
        logger.error("Dropping malformed event: %s", exc)
        ch.basic_nack(delivery_tag=method.delivery_tag, requeue=False)
        return

    try:
        results = handle_event(event_type, data)
    except Exception as exc:
        logger.exception("Error processing event %s: %s", event_type, exc)
        ch.basic_nack(delivery_tag=method.delivery_tag, requeue=False)
        return

    failed = [r.user_id for r in results if not r.ok]
    if failed:
        logger.warning("Event %s: notifications failed for users %s", event_type, failed)
    ch.basic_ack(delivery_tag=method.delivery_tag)


def start_worker():
    params = pika.URLParameters(RABBITMQ_URL)
    connection = pika.BlockingConnection(params)
    channel = connection.channel()
    channel.queue_declare(queue=EVENTS_QUEUE, durable=True)
    channel.basic_consume(queue=EVENTS_QUEUE, on_message_callback=process_notification)
    logger.info("Notification worker started. Waiting for events...")
    channel.start_consuming()


if __name__ == "__main__":
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    start_worker()
