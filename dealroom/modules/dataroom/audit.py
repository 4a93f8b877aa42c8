"""Append-only data room audit trail.

Events are queued on the request session and written after its transaction
ends, in a separate session. A failed audit write is logged and never fails
the request. Events queued in a transaction that rolls back are discarded
unless they are ``durable`` (denials, scan results), which are written
regardless of the outcome.
"""

import uuid
from dataclasses import dataclass, field
from typing import Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from dealroom.core import database
from dealroom.models.core import User
from dealroom.models.dataroom import DataRoomAudit
from dealroom.models.enums import AuditAction, AuditTargetType
from dealroom.schemas.auth import Identity

logger = structlog.get_logger()

_QUEUE_KEY = "dataroom_audit_queue"

ACTION_LABELS: dict[str, str] = {
    AuditAction.ROOM_INIT.value: "Created data room",
    AuditAction.FOLDER_CREATE.value: "Created folder",
    AuditAction.UPLOAD.value: "Uploaded document",
    AuditAction.VERSION_UPLOAD.value: "Uploaded new version",
    AuditAction.VIEW.value: "Viewed",
    AuditAction.VIEW_DENIED.value: "View denied",
    AuditAction.DOWNLOAD.value: "Downloaded document",
    AuditAction.DOWNLOAD_DENIED.value: "Download denied",
    AuditAction.POLICY_READ.value: "Viewed document policy",
    AuditAction.POLICY_CHANGE.value: "Changed document policy",
    AuditAction.DELETE.value: "Deleted document",
    AuditAction.SETTINGS_CHANGE.value: "Changed security settings",
    AuditAction.NDA_ACCEPT.value: "Accepted NDA",
    AuditAction.INVITE_SENT.value: "Sent invite",
    AuditAction.INVITE_ACCEPTED.value: "Accepted invite",
    AuditAction.VIRUS_SCAN.value: "Virus scan completed",
    AuditAction.ANALYZE.value: "Requested AI analysis",
}


@dataclass
class AuditEvent:
    data_room_id: uuid.UUID
    actor_id: uuid.UUID | None
    actor_email: str | None
    action: str
    target_type: str
    target_id: uuid.UUID | None
    meta: dict[str, Any] | None = field(default=None)
    durable: bool = False

    def to_row(self) -> DataRoomAudit:
        return DataRoomAudit(
            data_room_id=self.data_room_id,
            actor_id=self.actor_id,
            actor_email=self.actor_email,
            action=self.action,
            target_type=self.target_type,
            target_id=self.target_id,
            meta=self.meta,
        )


def record(
    db: AsyncSession,
    data_room_id: uuid.UUID,
    actor: Identity | None,
    action: AuditAction,
    target_type: AuditTargetType,
    target_id: uuid.UUID | None,
    meta: dict[str, Any] | None = None,
    *,
    durable: bool = False,
) -> None:
    """Queue an audit event for writing once the request transaction ends."""
    event = AuditEvent(
        data_room_id=data_room_id,
        actor_id=actor.user_id if actor else None,
        actor_email=actor.email if actor else None,
        action=action.value,
        target_type=target_type.value,
        target_id=target_id,
        meta=meta,
        durable=durable,
    )
    queue: list[AuditEvent] | None = db.info.get(_QUEUE_KEY)
    if queue is None:
        queue = []
        db.info[_QUEUE_KEY] = queue

        async def _flush(committed: bool) -> None:
            await flush_events(db.info.pop(_QUEUE_KEY, []), committed)

        database.add_after_transaction_hook(db, _flush)
    queue.append(event)


async def flush_events(events: list[AuditEvent], committed: bool) -> None:
    """Write queued events in their own session. Best-effort."""
    to_write = [e for e in events if committed or e.durable]
    if not to_write:
        return
    try:
        async with database.async_session_factory() as session:
            session.add_all([e.to_row() for e in to_write])
            await session.commit()
    except Exception:
        logger.exception(
            "dataroom_audit_write_failed",
            count=len(to_write),
            actions=[e.action for e in to_write],
        )


# ── Read side ────────────────────────────────────────────────────────────────


def _actor_name(row: DataRoomAudit, users: dict[uuid.UUID, User]) -> str:
    if row.actor_id is None:
        return row.actor_email or "System"
    user = users.get(row.actor_id)
    if user is not None:
        return user.full_name or user.email
    return row.actor_email or "Unknown"


async def list_audit(
    db: AsyncSession,
    data_room_id: uuid.UUID,
    actor_id: uuid.UUID | None = None,
    action: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[dict[str, Any]], int]:
    """Newest-first page of audit rows with resolved actor names, plus the total count."""
    filters = [DataRoomAudit.data_room_id == data_room_id]
    if actor_id is not None:
        filters.append(DataRoomAudit.actor_id == actor_id)
    if action:
        filters.append(DataRoomAudit.action == action)

    total = (
        await db.execute(select(func.count(DataRoomAudit.id)).where(*filters))
    ).scalar_one()

    result = await db.execute(
        select(DataRoomAudit)
        .where(*filters)
        .order_by(DataRoomAudit.created_at.desc(), DataRoomAudit.id)
        .offset(offset)
        .limit(limit)
    )
    rows = list(result.scalars().all())

    actor_ids = {r.actor_id for r in rows if r.actor_id is not None}
    users: dict[uuid.UUID, User] = {}
    if actor_ids:
        user_result = await db.execute(select(User).where(User.id.in_(actor_ids)))
        users = {u.id: u for u in user_result.scalars().all()}

    logs = [
        {
            "id": r.id,
            "actor_id": r.actor_id,
            "actor_email": r.actor_email,
            "actor_name": _actor_name(r, users),
            "action": r.action,
            "action_label": ACTION_LABELS.get(r.action, r.action),
            "target_type": r.target_type,
            "target_id": r.target_id,
            "meta": r.meta,
            "created_at": r.created_at,
        }
        for r in rows
    ]
    return logs, total
