# email_sender.py — Fire-and-forget transactional e-mail via the Resend HTTP API
import logging
from html import escape
from typing import Optional

import httpx

from config import Settings, get_settings

logger = logging.getLogger("flux.email")

RESEND_API_URL = "https://api.resend.com/emails"


async def send_email(
    to: str,
    subject: str,
    html: str,
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Optional[str]:
    """Send one e-mail. Returns the provider message id, or None.

    Never raises and never retries: delivery problems are logged only.
    """
    settings = settings or get_settings()
    if not settings.resend_api_key:
        logger.info(f"RESEND_API_KEY missing, skipping email to {to}")
        return None

    try:
        async with httpx.AsyncClient(timeout=10, transport=transport) as client:
            resp = await client.post(
                RESEND_API_URL,
                headers={"Authorization": f"Bearer {settings.resend_api_key}"},
                json={"from": settings.email_from, "to": to, "subject": subject, "html": html},
            )
    except httpx.HTTPError as e:
        logger.error(f"Failed to send email to {to}: {e}")
        return None

    if resp.status_code >= 400:
        logger.error(f"Resend API error {resp.status_code} for {to}: {resp.text[:200]}")
        return None

    try:
        message_id = resp.json().get("id")
    except ValueError:
        message_id = None
    logger.info(f"Email sent: {message_id}")
    return message_id


# ============================================================
# TEMPLATES
# ============================================================

def task_assigned_email(
    assignee_name: str, assigner_name: str, task_title: str,
    board_name: str, task_url: str,
) -> str:
    return (
        f"<p>Hi {escape(assignee_name)},</p>"
        f"<p>{escape(assigner_name)} assigned you to <strong>{escape(task_title)}</strong> "
        f"on the {escape(board_name)} board.</p>"
        f'<p><a href="{escape(task_url)}">Open the board</a></p>'
    )


def issue_created_email(
    workspace_name: str, issue_title: str, issue_type: str,
    reporter_name: str, issue_url: str,
) -> str:
    return (
        f"<p>{escape(reporter_name)} reported a new {escape(issue_type.lower())} "
        f"in {escape(workspace_name)}:</p>"
        f"<p><strong>{escape(issue_title)}</strong></p>"
        f'<p><a href="{escape(issue_url)}">View issues</a></p>'
    )
