"""Transactional email via SES. Skipped (logged) when EMAIL_FROM is not configured."""

import asyncio

import boto3
import structlog

from dealroom.core.config import settings

logger = structlog.get_logger()


def _send_sync(to: str, subject: str, html_body: str, text_body: str) -> None:
    ses = boto3.client(
        "ses",
        region_name=settings.AWS_SES_REGION,
        aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
        aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
    )
    ses.send_email(
        Source=settings.EMAIL_FROM,
        Destination={"ToAddresses": [to]},
        Message={
            "Subject": {"Data": subject},
            "Body": {
                "Html": {"Data": html_body},
                "Text": {"Data": text_body},
            },
        },
    )


async def send_email(to: str, subject: str, html_body: str, text_body: str = "") -> bool:
    """Send one email. Returns False instead of raising on any failure."""
    if not settings.EMAIL_FROM:
        logger.info("email_skipped_no_sender", to=to, subject=subject)
        return False
    try:
        await asyncio.to_thread(_send_sync, to, subject, html_body, text_body)
    except Exception as exc:  # noqa: BLE001
        logger.warning("email_send_failed", to=to, subject=subject, error=str(exc))
        return False
    logger.info("email_sent", to=to, subject=subject)
    return True
