"""NDA acceptance ledger: one acceptance per identity per room, never overwritten."""

import uuid
from typing import Any

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from dealroom.core.database import utcnow
from dealroom.core.errors import Conflict, Forbidden
from dealroom.models.dataroom import DataRoomNDAAcceptance
from dealroom.models.enums import AuditAction, AuditTargetType, DataRoomRole
from dealroom.modules.dataroom import access, audit
from dealroom.modules.dataroom.service import get_room_or_raise
from dealroom.schemas.auth import Identity

logger = structlog.get_logger()

DEFAULT_NDA_VERSION = "v1.0"


async def accept_nda(
    db: AsyncSession,
    identity: Identity,
    data_room_id: uuid.UUID,
    nda_version: str = DEFAULT_NDA_VERSION,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> dict[str, Any]:
    """Record NDA acceptance. Repeated calls return the original accepted_at."""
    room = await get_room_or_raise(db, data_room_id)
    role = await access.get_role(db, room.id, identity.user_id)
    if role is None:
        raise Forbidden()

    if role is DataRoomRole.OWNER:
        return {"accepted": True, "accepted_at": None, "nda_version": None}

    existing = await access.find_nda_acceptance(db, room.id, identity)
    if existing is not None:
        return {
            "accepted": True,
            "accepted_at": existing.accepted_at,
            "nda_version": existing.nda_version,
        }

    acceptance = DataRoomNDAAcceptance(
        data_room_id=room.id,
        user_id=identity.user_id,
        email=identity.email,
        accepted_at=utcnow(),
        nda_version=nda_version or DEFAULT_NDA_VERSION,
        ip_address=(ip_address or "unknown")[:64],
        user_agent=(user_agent or "unknown")[:1000],
    )
    db.add(acceptance)
    try:
        await db.flush()
    except IntegrityError as e:
        raise Conflict("NDA acceptance was recorded concurrently, retry") from e

    audit.record(
        db, room.id, identity, AuditAction.NDA_ACCEPT, AuditTargetType.NDA, acceptance.id,
        {"nda_version": acceptance.nda_version, "ip": acceptance.ip_address},
    )
    logger.info("dataroom_nda_accepted", room_id=str(room.id), user_id=str(identity.user_id))
    return {
        "accepted": True,
        "accepted_at": acceptance.accepted_at,
        "nda_version": acceptance.nda_version,
    }


async def get_nda_status(
    db: AsyncSession, identity: Identity, data_room_id: uuid.UUID
) -> dict[str, Any]:
    room = await get_room_or_raise(db, data_room_id)
    role = await access.get_role(db, room.id, identity.user_id)
    if role is None:
        raise Forbidden()

    if role is DataRoomRole.OWNER:
        return {"required": False, "accepted": True, "accepted_at": None, "role": role}

    acceptance = await access.find_nda_acceptance(db, room.id, identity)
    return {
        "required": True,
        "accepted": acceptance is not None,
        "accepted_at": acceptance.accepted_at if acceptance else None,
        "role": role,
    }
