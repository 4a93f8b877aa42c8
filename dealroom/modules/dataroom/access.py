"""Access decisions for data room resources.

``decide`` is a pure function over already-resolved facts (role, NDA state,
grant match, scan state). ``evaluate`` loads those facts for one request and
delegates to ``decide``; every service operation goes through it.

Evaluation order:

1. no identity                                   -> unauthenticated
2. no permission row for (room, user)            -> no-access
3. manage-permissions / view-audit               -> OWNER only
4. upload / delete / manage-policy               -> OWNER or EDITOR
5. view / download by OWNER                      -> allow
6. client IP outside the room allowlist          -> no-access
7. no NDA acceptance (user id or email)          -> nda-required
8. OWNER_ONLY document                           -> no-access
   CUSTOM document without a matching grant      -> not-granted
9. download of a blocked document / room         -> download-blocked
10. download or content view needs a clean scan  -> scan-pending / scan-blocked
"""

import enum
import ipaddress
import uuid
from dataclasses import dataclass

import structlog
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from dealroom.core.errors import Forbidden, Unauthenticated
from dealroom.models.dataroom import (
    DataRoom,
    DataRoomDocument,
    DataRoomDocumentGrant,
    DataRoomDocumentVersion,
    DataRoomNDAAcceptance,
    DataRoomPermission,
)
from dealroom.models.enums import DataRoomRole, DocumentVisibility, VirusScanStatus
from dealroom.schemas.auth import Identity

logger = structlog.get_logger()


class AccessAction(str, enum.Enum):
    VIEW = "view"
    DOWNLOAD = "download"
    UPLOAD = "upload"
    DELETE = "delete"
    MANAGE_POLICY = "manage-policy"
    MANAGE_PERMISSIONS = "manage-permissions"
    VIEW_AUDIT = "view-audit"


class DenyReason(str, enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    NO_ACCESS = "no-access"
    NDA_REQUIRED = "nda-required"
    NOT_GRANTED = "not-granted"
    DOWNLOAD_BLOCKED = "download-blocked"
    SCAN_PENDING = "scan-pending"
    SCAN_BLOCKED = "scan-blocked"


_OWNER_ONLY_ACTIONS = frozenset({AccessAction.MANAGE_PERMISSIONS, AccessAction.VIEW_AUDIT})
_EDITOR_ACTIONS = frozenset({AccessAction.UPLOAD, AccessAction.DELETE, AccessAction.MANAGE_POLICY})
_EDITOR_ROLES = frozenset({DataRoomRole.OWNER, DataRoomRole.EDITOR})

# Client-visible messages; other reasons read as "no access"
_DENY_MESSAGES: dict[DenyReason, str] = {
    DenyReason.UNAUTHENTICATED: "Authentication required",
    DenyReason.NDA_REQUIRED: "NDA must be accepted first",
    DenyReason.DOWNLOAD_BLOCKED: "Downloads are disabled for this document",
    DenyReason.SCAN_PENDING: "File is still being scanned",
    DenyReason.SCAN_BLOCKED: "File blocked by virus scan",
}
_GENERIC_DENY_MESSAGE = "No access to this data room"
_CLIENT_REASONS = frozenset({
    DenyReason.NDA_REQUIRED,
    DenyReason.DOWNLOAD_BLOCKED,
    DenyReason.SCAN_PENDING,
    DenyReason.SCAN_BLOCKED,
})


@dataclass(frozen=True)
class Subject:
    """What is known about the caller in one room."""

    identity: Identity
    role: DataRoomRole | None
    nda_accepted: bool = False
    ip_allowed: bool = True
    download_enabled: bool = True


@dataclass(frozen=True)
class Target:
    """What is known about the document (and the version being served)."""

    visibility: DocumentVisibility
    download_blocked: bool = False
    granted: bool = False
    scan_status: VirusScanStatus | None = None


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: DenyReason | None = None
    role: DataRoomRole | None = None

    @property
    def status_code(self) -> int:
        if self.allowed:
            return 200
        return 401 if self.reason is DenyReason.UNAUTHENTICATED else 403

    @property
    def message(self) -> str:
        if self.reason is None:
            return ""
        return _DENY_MESSAGES.get(self.reason, _GENERIC_DENY_MESSAGE)

    @property
    def client_reason(self) -> str:
        """Reason shown in the 403 body; the precise one stays in the audit log."""
        if self.reason in _CLIENT_REASONS:
            return self.reason.value  # type: ignore[union-attr]
        return DenyReason.NO_ACCESS.value

    def raise_if_denied(self) -> None:
        if self.allowed:
            return
        if self.reason is DenyReason.UNAUTHENTICATED:
            raise Unauthenticated(self.message)
        raise Forbidden(self.message, reason=self.client_reason)


def _allow(role: DataRoomRole | None) -> Decision:
    return Decision(allowed=True, role=role)


def _deny(reason: DenyReason, role: DataRoomRole | None = None) -> Decision:
    return Decision(allowed=False, reason=reason, role=role)


def decide(
    subject: Subject,
    action: AccessAction,
    target: Target | None = None,
    *,
    include_content: bool = False,
) -> Decision:
    """Pure access decision. ``include_content`` marks a view that serves file bytes."""
    if subject.identity.is_anonymous:
        return _deny(DenyReason.UNAUTHENTICATED)

    role = subject.role
    if role is None:
        return _deny(DenyReason.NO_ACCESS)

    if action in _OWNER_ONLY_ACTIONS:
        return _allow(role) if role is DataRoomRole.OWNER else _deny(DenyReason.NO_ACCESS, role)

    if action in _EDITOR_ACTIONS:
        return _allow(role) if role in _EDITOR_ROLES else _deny(DenyReason.NO_ACCESS, role)

    if role is DataRoomRole.OWNER:
        return _allow(role)

    if not subject.ip_allowed:
        return _deny(DenyReason.NO_ACCESS, role)

    if not subject.nda_accepted:
        return _deny(DenyReason.NDA_REQUIRED, role)

    if target is None:
        return _allow(role)

    if target.visibility is DocumentVisibility.OWNER_ONLY:
        return _deny(DenyReason.NO_ACCESS, role)
    if target.visibility is DocumentVisibility.CUSTOM and not target.granted:
        return _deny(DenyReason.NOT_GRANTED, role)

    serves_content = action is AccessAction.DOWNLOAD or include_content

    if action is AccessAction.DOWNLOAD and (target.download_blocked or not subject.download_enabled):
        return _deny(DenyReason.DOWNLOAD_BLOCKED, role)

    if serves_content:
        if target.scan_status is VirusScanStatus.BLOCKED:
            return _deny(DenyReason.SCAN_BLOCKED, role)
        if target.scan_status is not VirusScanStatus.CLEAN:
            return _deny(DenyReason.SCAN_PENDING, role)

    return _allow(role)


# ── Fact resolution ──────────────────────────────────────────────────────────


async def get_role(
    db: AsyncSession, data_room_id: uuid.UUID, user_id: uuid.UUID | None
) -> DataRoomRole | None:
    if user_id is None:
        return None
    result = await db.execute(
        select(DataRoomPermission.role).where(
            DataRoomPermission.data_room_id == data_room_id,
            DataRoomPermission.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


def _identity_clause(model, identity: Identity):
    """OR-match a row carrying user_id/email columns against the identity."""
    clauses = []
    if identity.user_id is not None:
        clauses.append(model.user_id == identity.user_id)
    if identity.email:
        clauses.append(model.email == identity.email)
    return or_(*clauses)


async def find_nda_acceptance(
    db: AsyncSession, data_room_id: uuid.UUID, identity: Identity
) -> DataRoomNDAAcceptance | None:
    if identity.is_anonymous:
        return None
    result = await db.execute(
        select(DataRoomNDAAcceptance)
        .where(
            DataRoomNDAAcceptance.data_room_id == data_room_id,
            _identity_clause(DataRoomNDAAcceptance, identity),
        )
        .order_by(DataRoomNDAAcceptance.accepted_at)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def is_granted(db: AsyncSession, document_id: uuid.UUID, identity: Identity) -> bool:
    if identity.is_anonymous:
        return False
    result = await db.execute(
        select(DataRoomDocumentGrant.id)
        .where(
            DataRoomDocumentGrant.document_id == document_id,
            _identity_clause(DataRoomDocumentGrant, identity),
        )
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


def ip_allowed(room: DataRoom, client_ip: str | None) -> bool:
    """Check the room's optional IP allowlist. Entries may be addresses or CIDR blocks."""
    allowed = (room.security_settings or {}).get("allowed_ips") or []
    if not allowed:
        return True
    if not client_ip:
        return False
    try:
        address = ipaddress.ip_address(client_ip)
    except ValueError:
        return False
    for entry in allowed:
        try:
            if address in ipaddress.ip_network(entry, strict=False):
                return True
        except ValueError:
            logger.warning("dataroom_invalid_ip_allowlist_entry", room_id=str(room.id), entry=entry)
    return False


async def load_subject(
    db: AsyncSession,
    room: DataRoom,
    identity: Identity,
    client_ip: str | None = None,
) -> Subject:
    role = await get_role(db, room.id, identity.user_id)
    nda_accepted = False
    if role is not None and role is not DataRoomRole.OWNER:
        nda_accepted = await find_nda_acceptance(db, room.id, identity) is not None
    return Subject(
        identity=identity,
        role=role,
        nda_accepted=nda_accepted,
        ip_allowed=ip_allowed(room, client_ip),
        download_enabled=room.download_enabled,
    )


async def load_target(
    db: AsyncSession,
    document: DataRoomDocument,
    identity: Identity,
    version: DataRoomDocumentVersion | None = None,
) -> Target:
    granted = False
    if document.visibility is DocumentVisibility.CUSTOM:
        granted = await is_granted(db, document.id, identity)
    if version is None and document.current_version_id is not None:
        version = await db.get(DataRoomDocumentVersion, document.current_version_id)
    return Target(
        visibility=document.visibility,
        download_blocked=document.download_blocked,
        granted=granted,
        scan_status=version.virus_scan if version is not None else None,
    )


async def evaluate(
    db: AsyncSession,
    room: DataRoom,
    identity: Identity,
    action: AccessAction,
    document: DataRoomDocument | None = None,
    version: DataRoomDocumentVersion | None = None,
    *,
    include_content: bool = False,
    client_ip: str | None = None,
) -> Decision:
    """Resolve facts for (room, identity, document) and decide."""
    subject = await load_subject(db, room, identity, client_ip)
    target = None
    if document is not None and subject.role is not None:
        target = await load_target(db, document, identity, version)
    return decide(subject, action, target, include_content=include_content)
