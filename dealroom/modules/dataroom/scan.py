"""Virus scan gate: callback from the external scanner settles a version's scan state."""

import uuid

import structlog
from fastapi import Header
from sqlalchemy.ext.asyncio import AsyncSession

from dealroom.core.config import settings
from dealroom.core.database import utcnow
from dealroom.core.errors import NotFound, Unauthenticated, UpstreamFailure
from dealroom.core.security import constant_time_equals
from dealroom.models.dataroom import DataRoomDocument, DataRoomDocumentVersion
from dealroom.models.enums import (
    AuditAction,
    AuditTargetType,
    DocumentStatus,
    NotificationType,
    VirusScanStatus,
)
from dealroom.modules.dataroom import audit
from dealroom.modules.notifications.service import create_notification

logger = structlog.get_logger()

_DOCUMENT_STATUS = {
    VirusScanStatus.CLEAN: DocumentStatus.READY,
    VirusScanStatus.BLOCKED: DocumentStatus.BLOCKED,
}


async def verify_scan_token(authorization: str | None = Header(None)) -> None:
    """Dependency: the scanner authenticates with ``Bearer <SCAN_WEBHOOK_TOKEN>``."""
    expected = settings.SCAN_WEBHOOK_TOKEN
    if not expected:
        logger.error("scan_webhook_token_not_configured")
        raise UpstreamFailure("Scan callback is not configured")
    if not authorization or not authorization.startswith("Bearer "):
        raise Unauthenticated("Missing scan callback token")
    if not constant_time_equals(authorization[len("Bearer "):].strip(), expected):
        logger.warning("scan_callback_bad_token")
        raise Unauthenticated("Invalid scan callback token")


async def on_scan_callback(
    db: AsyncSession,
    version_id: uuid.UUID,
    status: VirusScanStatus,
    reason: str | None = None,
) -> DataRoomDocumentVersion:
    """Set the version's scan result and, for the current version, the document status.

    Re-delivery of the same result is a no-op apart from a fresh audit row. A
    different result for an already scanned version is audited and ignored.
    """
    version = await db.get(DataRoomDocumentVersion, version_id)
    if version is None:
        raise NotFound("Document version not found")
    document = await db.get(DataRoomDocument, version.document_id)
    if document is None:
        raise NotFound("Document not found")

    if version.virus_scan is not VirusScanStatus.PENDING and version.virus_scan is not status:
        audit.record(
            db, document.data_room_id, None, AuditAction.VIRUS_SCAN, AuditTargetType.DOCUMENT_VERSION, version.id,
            {
                "status": status.value,
                "reason": reason,
                "document_id": str(document.id),
                "rejected": True,
                "current": version.virus_scan.value,
            },
            durable=True,
        )
        logger.warning(
            "dataroom_scan_result_rejected",
            version_id=str(version.id),
            current=version.virus_scan.value,
            status=status.value,
        )
        return version

    newly_blocked = status is VirusScanStatus.BLOCKED and version.virus_scan is not VirusScanStatus.BLOCKED

    version.virus_scan = status
    version.scan_reason = reason
    version.scanned_at = utcnow()
    if document.current_version_id == version.id:
        document.status = _DOCUMENT_STATUS[status]
    await db.flush()

    if newly_blocked:
        await create_notification(
            db,
            user_id=version.uploaded_by,
            type=NotificationType.DOCUMENT_BLOCKED,
            title="Upload blocked by virus scan",
            message=f"{version.file_name} was blocked by the virus scanner and cannot be shared.",
        )

    audit.record(
        db, document.data_room_id, None, AuditAction.VIRUS_SCAN, AuditTargetType.DOCUMENT_VERSION, version.id,
        {"status": status.value, "reason": reason, "document_id": str(document.id)},
        durable=True,
    )
    logger.info(
        "dataroom_scan_result",
        version_id=str(version.id),
        document_id=str(document.id),
        status=status.value,
    )
    return version
