"""Best-effort notification fan-out.

``notify`` writes the in-app notification and sends the email for one user, gated by
that user's preferences. It never raises: every failure is logged and reported in the
returned ``FanoutResult`` so the action that triggered it is never affected.

``fan_out`` runs many targets concurrently, each with its own session, and settles
each one independently.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from sqlalchemy.orm import Session
from typing import Callable, Iterable, List, Optional
import logging
import os

from taskhub.database import SessionLocal
from taskhub.notifications_service import crud, mailer, templates
from taskhub.notifications_service.cooldown import EmailCooldown, get_email_cooldown
from taskhub.notifications_service.models import NotificationType
from taskhub.user_service.crud import get_preferences, get_user

logger = logging.getLogger(__name__)

NOTIFY_MAX_WORKERS = int(os.getenv("NOTIFY_MAX_WORKERS", "4"))

CATEGORY_PREFERENCE = {
    NotificationType.MESSAGE: "message_notifications",
    NotificationType.PROPOSAL: "proposal_updates",
    NotificationType.TASK: "task_updates",
    NotificationType.SYSTEM: "system_updates",
    NotificationType.ADMIN: "system_updates",
}


@dataclass
class NotifyJob:
    user_id: int
    category: NotificationType
    message: str
    link: Optional[str] = None
    title: Optional[str] = None
    send_email: bool = True
    email_subject: Optional[str] = None
    email_html: Optional[str] = None
    sender_id: Optional[int] = None


@dataclass
class FanoutResult:
    user_id: int
    notification_id: Optional[int] = None
    emailed: bool = False
    email_suppressed: bool = False
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def deliver(
    db: Session,
    job: NotifyJob,
    email_sender: Callable = None,
    cooldown: EmailCooldown = None
) -> FanoutResult:
    result = FanoutResult(user_id=job.user_id)
    try:
        category = NotificationType(job.category)
        user = get_user(db, job.user_id)
        if not user:
            result.error = "User not found"
            logger.warning("Notification target %s not found", job.user_id)
            return result

        prefs = get_preferences(db, job.user_id)
        category_enabled = getattr(prefs, CATEGORY_PREFERENCE[category])

        notification = None
        if prefs.in_app_notifications and category_enabled:
            try:
                notification = crud.create_notification(
                    db, job.user_id, category, job.message, title=job.title, link=job.link
                )
                result.notification_id = notification.id
            except Exception as exc:
                db.rollback()
                result.error = f"notification: {exc}"
                logger.warning("Failed to store notification for user %s: %s", job.user_id, exc)

        if not (job.send_email and prefs.email_notifications and category_enabled and user.email):
            return result

        window = None
        if category == NotificationType.MESSAGE and job.sender_id is not None:
            window = cooldown or get_email_cooldown()
            if not window.acquire(job.user_id, job.sender_id):
                result.email_suppressed = True
                return result

        try:
            html = job.email_html or templates.generic(user.display_name, job.message, job.link)
            subject = job.email_subject or job.title or f"Notification: {category.value}"
            (email_sender or mailer.send_email)(user.email, subject, html)
            result.emailed = True
            if notification is not None:
                crud.mark_email_sent(db, notification)
        except Exception as exc:
            db.rollback()
            result.error = f"email: {exc}"
            logger.warning("Email notification to user %s failed: %s", job.user_id, exc)
            if window is not None and not result.emailed:
                # Only a delivered email opens the window
                window.release(job.user_id, job.sender_id)
    except Exception as exc:
        db.rollback()
        result.error = str(exc)
        logger.warning("Notification for user %s failed: %s", job.user_id, exc)
    return result


def notify(
    db: Session,
    user_id: int,
    category: NotificationType,
    message: str,
    link: Optional[str] = None,
    title: Optional[str] = None,
    send_email: bool = True,
    email_subject: Optional[str] = None,
    email_html: Optional[str] = None,
    sender_id: Optional[int] = None,
    email_sender: Callable = None,
    cooldown: EmailCooldown = None
) -> FanoutResult:
    job = NotifyJob(
        user_id=user_id,
        category=category,
        message=message,
        link=link,
        title=title,
        send_email=send_email,
        email_subject=email_subject,
        email_html=email_html,
        sender_id=sender_id,
    )
    return deliver(db, job, email_sender=email_sender, cooldown=cooldown)


def _run_job(session_factory, job: NotifyJob, email_sender, cooldown) -> FanoutResult:
    try:
        db = session_factory()
    except Exception as exc:
        logger.warning("No session for notification to user %s: %s", job.user_id, exc)
        return FanoutResult(user_id=job.user_id, error=str(exc))
    try:
        return deliver(db, job, email_sender=email_sender, cooldown=cooldown)
    finally:
        db.close()


def fan_out(
    jobs: Iterable[NotifyJob],
    session_factory=SessionLocal,
    email_sender: Callable = None,
    cooldown: EmailCooldown = None,
    max_workers: int = NOTIFY_MAX_WORKERS
) -> List[FanoutResult]:
    """Deliver every job; results come back in job order, one per target."""
    jobs = list(jobs)
    if not jobs:
        return []
    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(jobs)))) as pool:
        futures = [
            pool.submit(_run_job, session_factory, job, email_sender, cooldown)
            for job in jobs
        ]
    results = []
    for job, future in zip(jobs, futures):
        try:
            results.append(future.result())
        except Exception as exc:
            logger.warning("Notification worker for user %s crashed: %s", job.user_id, exc)
            results.append(FanoutResult(user_id=job.user_id, error=str(exc)))
    failed = sum(1 for r in results if not r.ok)
    if failed:
        logger.info("Fan-out finished: %d of %d targets failed", failed, len(results))
    return results


def notify_many(
    user_ids: Iterable[int],
    category: NotificationType,
    message: str,
    link: Optional[str] = None,
    session_factory=SessionLocal,
    email_sender: Callable = None,
    cooldown: EmailCooldown = None,
    **options
) -> List[FanoutResult]:
    jobs = [
        NotifyJob(user_id=user_id, category=category, message=message, link=link, **options)
        for user_id in user_ids
    ]
    return fan_out(jobs, session_factory=session_factory, email_sender=email_sender, cooldown=cooldown)
