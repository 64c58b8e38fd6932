"""Diploma link emails sent through the Resend API.

In dev mode (no RESEND_API_KEY), logs a warning and skips sending.
"""

from html import escape

import httpx
import structlog

from unidiploma.config import settings
from unidiploma.utils.log_mask import mask_email

logger = structlog.get_logger()

RESEND_API_URL = "https://api.resend.com/emails"

_email_client: httpx.AsyncClient | None = None


def _get_email_client() -> httpx.AsyncClient:
    global _email_client
    if _email_client is None or _email_client.is_closed:
        _email_client = httpx.AsyncClient(
            timeout=httpx.Timeout(connect=5.0, read=10.0, write=5.0, pool=5.0),
        )
    return _email_client


def build_diploma_email(student_name: str, diploma_title: str, diploma_url: str) -> dict:
    link = escape(diploma_url)
    return {
        "subject": f'Votre diplôme "{diploma_title}" est disponible',
        "html": (
            f"<p>Cher/Chère {escape(student_name)},</p>"
            "<p>Nous avons le plaisir de vous informer que votre diplôme "
            f'"{escape(diploma_title)}" est maintenant disponible.</p>'
            "<p>Vous pouvez le consulter et le télécharger en cliquant sur le lien suivant : "
            f'<a href="{link}">{link}</a></p>'
            "<p>Cordialement,<br/>L'équipe de l'Université</p>"
        ),
    }


async def send_diploma_link_email(
    to_email: str, student_name: str, diploma_title: str, diploma_url: str
) -> bool:
    """Send the download link of a diploma via Resend.

    If RESEND_API_KEY is not set, logs a warning and returns False (dev mode).
    Returns True if the email was sent successfully.
    """
    if not settings.RESEND_API_KEY:
        logger.warning(
            "resend_api_key_not_set",
            msg="RESEND_API_KEY not configured, skipping email send (dev mode)",
            email=mask_email(to_email),
        )
        return False

    message = build_diploma_email(student_name, diploma_title, diploma_url)
    payload = {
        "from": settings.EMAIL_FROM,
        "to": [to_email],
        "subject": message["subject"],
        "html": message["html"],
    }

    try:
        client = _get_email_client()
        response = await client.post(
            RESEND_API_URL,
            json=payload,
            headers={
                "Authorization": f"Bearer {settings.RESEND_API_KEY}",
                "Content-Type": "application/json",
            },
        )
    except httpx.HTTPError as exc:
        logger.error("diploma_email_error", email=mask_email(to_email), error=str(exc))
        return False

    if response.is_success:
        logger.info("diploma_email_sent", email=mask_email(to_email))
        return True
    logger.error(
        "diploma_email_failed",
        email=mask_email(to_email),
        status_code=response.status_code,
    )
    return False
