"""Notification service: in-app notifications for data room events."""

import uuid

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from dealroom.models.core import Notification
from dealroom.models.enums import NotificationType

logger = structlog.get_logger()


async def create_notification(
    db: AsyncSession,
    user_id: uuid.UUID,
    type: NotificationType,
    title: str,
    message: str,
    link: str | None = None,
) -> Notification | None:
    """Insert a notification inside a savepoint.

    A failed insert is logged and rolled back to the savepoint, leaving the
    caller's transaction intact. Returns None in that case.
    """
    notification = Notification(
        user_id=user_id,
        type=type,
        title=title,
        message=message,
        link=link,
    )
    try:
        async with db.begin_nested():
            db.add(notification)
    except SQLAlchemyError as exc:
        logger.warning("notification_failed", user_id=str(user_id), type=type.value, error=str(exc))
        return None
    logger.info("notification_created", user_id=str(user_id), type=type.value)
    return notification
