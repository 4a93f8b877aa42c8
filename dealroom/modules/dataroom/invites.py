"""Data room invites: owner-issued, email-bound, single-use tokens."""

import html
import secrets
import uuid
from datetime import timedelta

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from dealroom.core import database
from dealroom.core.config import settings
from dealroom.core.database import utcnow
from dealroom.core.errors import Conflict, Forbidden, InvalidInput, NotFound
from dealroom.models.core import Listing, User
from dealroom.models.dataroom import DataRoomInvite, DataRoomPermission
from dealroom.models.enums import (
    AuditAction,
    AuditTargetType,
    DataRoomRole,
    InviteStatus,
    NotificationType,
)
from dealroom.modules.dataroom import audit
from dealroom.modules.dataroom.access import AccessAction
from dealroom.modules.dataroom.service import require_access, get_room_or_raise
from dealroom.modules.notifications.service import create_notification
from dealroom.schemas.auth import Identity
from dealroom.services.email import send_email

logger = structlog.get_logger()

_INVITABLE_ROLES = frozenset({DataRoomRole.EDITOR, DataRoomRole.VIEWER})


def _invite_link(token: str) -> str:
    return f"{settings.FRONTEND_URL.rstrip('/')}/dataroom/invite?token={token}"


def _invite_email(listing_title: str, role: DataRoomRole, token: str, message: str | None) -> tuple[str, str, str]:
    subject = f"You have been invited to the data room for {listing_title}"
    link = _invite_link(token)
    note = f"<p>{html.escape(message)}</p>" if message else ""
    html_body = (
        f"<p>You have been invited as {role.value.lower()} to the data room for "
        f"<strong>{html.escape(listing_title)}</strong>.</p>{note}"
        f"<p><a href=\"{link}\">Open the data room</a></p>"
        f"<p>The invite expires in {settings.INVITE_TTL_DAYS} days.</p>"
    )
    text_body = f"You have been invited to the data room for {listing_title}: {link}"
    return subject, html_body, text_body


async def create_invite(
    db: AsyncSession,
    identity: Identity,
    data_room_id: uuid.UUID,
    email: str,
    role: DataRoomRole = DataRoomRole.VIEWER,
    message: str | None = None,
) -> DataRoomInvite:
    room = await get_room_or_raise(db, data_room_id)
    await require_access(db, room, identity, AccessAction.MANAGE_PERMISSIONS)

    if role not in _INVITABLE_ROLES:
        raise InvalidInput("Invites can grant EDITOR or VIEWER only")

    email = email.strip().lower()
    now = utcnow()

    open_invite = (await db.execute(
        select(DataRoomInvite.id).where(
            DataRoomInvite.data_room_id == room.id,
            DataRoomInvite.email == email,
            (
                (DataRoomInvite.status == InviteStatus.ACCEPTED)
                | ((DataRoomInvite.status == InviteStatus.PENDING) & (DataRoomInvite.expires_at > now))
            ),
        ).limit(1)
    )).scalar_one_or_none()
    if open_invite is not None:
        raise Conflict("This email already has an open or accepted invite")

    invitee = (await db.execute(select(User).where(User.email == email))).scalar_one_or_none()
    if invitee is not None:
        has_access = (await db.execute(
            select(DataRoomPermission.id).where(
                DataRoomPermission.data_room_id == room.id,
                DataRoomPermission.user_id == invitee.id,
            )
        )).scalar_one_or_none()
        if has_access is not None:
            raise Conflict("This user already has access to the data room")

    invite = DataRoomInvite(
        data_room_id=room.id,
        email=email,
        role=role,
        token=secrets.token_hex(32),
        message=message,
        status=InviteStatus.PENDING,
        invited_by=identity.user_id,
        expires_at=now + timedelta(days=settings.INVITE_TTL_DAYS),
    )
    db.add(invite)
    await db.flush()

    listing = await db.get(Listing, room.listing_id)
    listing_title = listing.display_title if listing else "a listing"

    if invitee is not None:
        await create_notification(
            db,
            user_id=invitee.id,
            type=NotificationType.DATAROOM_INVITE,
            title="Data room invite",
            message=f"You have been invited to the data room for {listing_title}",
            link=_invite_link(invite.token),
        )

    audit.record(
        db, room.id, identity, AuditAction.INVITE_SENT, AuditTargetType.INVITE, invite.id,
        {"email": email, "role": role.value},
    )

    subject, html_body, text_body = _invite_email(listing_title, role, invite.token, message)

    async def _deliver(committed: bool) -> None:
        if committed:
            await send_email(email, subject, html_body, text_body)

    database.add_after_transaction_hook(db, _deliver)
    return invite


async def list_invites(
    db: AsyncSession, identity: Identity, data_room_id: uuid.UUID
) -> list[DataRoomInvite]:
    room = await get_room_or_raise(db, data_room_id)
    await require_access(db, room, identity, AccessAction.MANAGE_PERMISSIONS)
    result = await db.execute(
        select(DataRoomInvite)
        .where(DataRoomInvite.data_room_id == room.id)
        .order_by(DataRoomInvite.created_at.desc())
    )
    return list(result.scalars().all())


async def _mark_expired(invite_id: uuid.UUID) -> None:
    async with database.async_session_factory() as session:
        await session.execute(
            update(DataRoomInvite)
            .where(DataRoomInvite.id == invite_id, DataRoomInvite.status == InviteStatus.PENDING)
            .values(status=InviteStatus.EXPIRED, updated_at=utcnow())
        )
        await session.commit()


async def accept_invite(db: AsyncSession, identity: Identity, token: str) -> DataRoomPermission:
    """Turn a pending invite into a permission for the signed-in invitee."""
    invite = (await db.execute(
        select(DataRoomInvite).where(DataRoomInvite.token == token)
    )).scalar_one_or_none()
    if invite is None:
        raise NotFound("Invite not found")

    if invite.status is not InviteStatus.PENDING:
        raise InvalidInput("Invite is no longer valid")

    if invite.expires_at <= utcnow():
        invite_id = invite.id

        async def _expire(committed: bool) -> None:
            await _mark_expired(invite_id)

        database.add_after_transaction_hook(db, _expire)
        raise InvalidInput("Invite has expired")

    if identity.user_id is None:
        raise Forbidden("Sign in with an account to accept this invite")
    if identity.email != invite.email:
        raise Forbidden("This invite was sent to a different email address")

    permission = (await db.execute(
        select(DataRoomPermission).where(
            DataRoomPermission.data_room_id == invite.data_room_id,
            DataRoomPermission.user_id == identity.user_id,
        )
    )).scalar_one_or_none()
    if permission is None:
        permission = DataRoomPermission(
            data_room_id=invite.data_room_id,
            user_id=identity.user_id,
            role=invite.role,
            invited_by=invite.invited_by,
        )
        db.add(permission)

    invite.status = InviteStatus.ACCEPTED
    invite.accepted_at = utcnow()
    await db.flush()

    audit.record(
        db, invite.data_room_id, identity, AuditAction.INVITE_ACCEPTED, AuditTargetType.INVITE, invite.id,
        {"role": permission.role.value},
    )
    await create_notification(
        db,
        user_id=invite.invited_by,
        type=NotificationType.DATAROOM_ACCESS_GRANTED,
        title="Data room invite accepted",
        message=f"{invite.email} accepted your invite as {permission.role.value.lower()}.",
    )
    logger.info(
        "dataroom_invite_accepted",
        room_id=str(invite.data_room_id),
        user_id=str(identity.user_id),
        role=permission.role.value,
    )
    return permission
