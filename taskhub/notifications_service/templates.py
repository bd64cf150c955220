"""HTML email bodies. Every interpolated value is escaped."""

from html import escape
import os

APP_BASE_URL = os.getenv("APP_BASE_URL", "http://localhost:5173")

PRIMARY = "#1E376E"
ACCENT = "#E96435"
TEXT_LIGHT = "#6B7280"


def _url(path: str) -> str:
    return f"{APP_BASE_URL.rstrip('/')}{path}"


def _layout(title: str, content: str) -> str:
    return (
        "<!DOCTYPE html><html><head><meta charset=\"UTF-8\">"
        f"<title>{escape(title)}</title></head>"
        "<body style=\"font-family:Arial,sans-serif;background:#F9FAFB;padding:24px;\">"
        "<div style=\"max-width:600px;margin:0 auto;background:#FFFFFF;border-radius:8px;padding:32px;\">"
        f"<h2 style=\"color:{PRIMARY};margin-top:0;\">{escape(title)}</h2>"
        f"{content}"
        f"<p style=\"color:{TEXT_LIGHT};font-size:12px;margin-top:32px;\">"
        "You can change which emails you receive in your notification settings.</p>"
        "</div></body></html>"
    )


def _button(label: str, path: str) -> str:
    return (
        f"<p><a href=\"{escape(_url(path), quote=True)}\" "
        f"style=\"background:{ACCENT};color:#FFFFFF;padding:10px 20px;border-radius:6px;"
        f"text-decoration:none;\">{escape(label)}</a></p>"
    )


def generic(name: str, message: str, link: str = None) -> str:
    content = f"<p>Hi {escape(name)},</p><p>{escape(message)}</p>"
    if link:
        content += _button("View", link)
    return _layout("New notification", content)


def new_message(receiver_name: str, sender_name: str, text: str, conversation_id: int) -> str:
    preview = text if len(text) <= 200 else text[:200] + "..."
    content = (
        f"<p>Hi {escape(receiver_name)},</p>"
        f"<p><strong>{escape(sender_name)}</strong> sent you a message:</p>"
        f"<blockquote style=\"border-left:3px solid {ACCENT};padding-left:12px;color:#1F2937;\">"
        f"{escape(preview)}</blockquote>"
        + _button("Reply", f"/messages/{conversation_id}")
    )
    return _layout(f"New message from {sender_name}", content)


def proposal_submitted(owner_name: str, applicant_name: str, task_title: str, task_id: int) -> str:
    content = (
        f"<p>Hi {escape(owner_name)},</p>"
        f"<p><strong>{escape(applicant_name)}</strong> submitted a proposal for your task "
        f"&quot;{escape(task_title)}&quot;.</p>"
        + _button("Review proposals", f"/tasks/{task_id}")
    )
    return _layout("New proposal received", content)


def proposal_submission_confirmation(applicant_name: str, task_title: str) -> str:
    content = (
        f"<p>Hi {escape(applicant_name)},</p>"
        f"<p>Your proposal for &quot;{escape(task_title)}&quot; has been submitted. "
        "We will let you know when the task owner responds.</p>"
        + _button("My proposals", "/my-proposals")
    )
    return _layout("Proposal submitted", content)


def proposal_accepted(applicant_name: str, task_title: str, task_id: int) -> str:
    content = (
        f"<p>Hi {escape(applicant_name)},</p>"
        f"<p>Congratulations! Your proposal for &quot;{escape(task_title)}&quot; has been accepted.</p>"
        + _button("Open task", f"/tasks/{task_id}")
    )
    return _layout("Proposal accepted", content)


def proposal_rejected(applicant_name: str, task_title: str) -> str:
    content = (
        f"<p>Hi {escape(applicant_name)},</p>"
        f"<p>Your proposal for &quot;{escape(task_title)}&quot; was not accepted this time.</p>"
        + _button("Browse tasks", "/browse-tasks")
    )
    return _layout("Proposal update", content)


def proposal_not_selected(applicant_name: str, task_title: str) -> str:
    content = (
        f"<p>Hi {escape(applicant_name)},</p>"
        f"<p>The owner of &quot;{escape(task_title)}&quot; selected another proposal. "
        "Keep applying to other tasks!</p>"
        + _button("Browse tasks", "/browse-tasks")
    )
    return _layout("Proposal update", content)


def proposal_withdrawn(applicant_name: str, task_title: str) -> str:
    content = (
        f"<p>Hi {escape(applicant_name)},</p>"
        f"<p>You withdrew your proposal for &quot;{escape(task_title)}&quot;. "
        "You can submit it again while the task is open.</p>"
    )
    return _layout("Proposal withdrawn", content)
