import logging
import os

import httpx

from taskhub.errors import TransientInfraError

logger = logging.getLogger(__name__)

RESEND_API_URL = os.getenv("RESEND_API_URL", "https://api.resend.com/emails")
RESEND_API_KEY = os.getenv("RESEND_API_KEY", "")
EMAIL_FROM = os.getenv("EMAIL_FROM", "Taskhub <noreply@taskhub.local>")


class MailerError(TransientInfraError):
    code = "mailer_error"


def send_email(to: str, subject: str, html: str, api_key: str = None) -> bool:
    """
    Send one HTML email through the Resend HTTP API.
    Without an API key email is disabled: nothing is sent and the call counts as delivered.
    """
    api_key = RESEND_API_KEY if api_key is None else api_key
    if not api_key:
        logger.info("RESEND_API_KEY not configured, skipping email to %s", to)
        return True

    try:
        response = httpx.post(
            RESEND_API_URL,
            headers={"Authorization": f"Bearer {api_key}"},
            json={"from": EMAIL_FROM, "to": [to], "subject": subject, "html": html},
            timeout=10.0
        )
    except httpx.HTTPError as exc:
        raise MailerError(f"Email provider unreachable: {exc}") from exc

    if response.status_code >= 400:
        raise MailerError(f"Email provider rejected message ({response.status_code}): {response.text}")
    return True
