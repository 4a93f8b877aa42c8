"""Data Room business logic: rooms, folders, uploads, policies, listings, downloads."""

import ipaddress
import re
import uuid
from typing import Any

import httpx
import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from dealroom.core import database
from dealroom.core.config import settings
from dealroom.core.errors import Conflict, Forbidden, InvalidInput, NotFound
from dealroom.models.core import Listing
from dealroom.models.dataroom import (
    DataRoom,
    DataRoomDocument,
    DataRoomDocumentGrant,
    DataRoomDocumentVersion,
    DataRoomFolder,
    DataRoomPermission,
)
from dealroom.models.enums import (
    AuditAction,
    AuditTargetType,
    DataRoomRole,
    DocumentStatus,
    DocumentVisibility,
    VirusScanStatus,
)
from dealroom.modules.dataroom import access, audit, storage
from dealroom.modules.dataroom.access import AccessAction, Subject, Target
from dealroom.modules.dataroom.schemas import FOLDER_NAME_MAX_LENGTH
from dealroom.schemas.auth import Identity

logger = structlog.get_logger()

ROOT_FOLDER_NAME = "Root"
ROOT_FOLDER_PATH = "/"

_WHITESPACE_RE = re.compile(r"\s+")


# ── Lookups ──────────────────────────────────────────────────────────────────


async def get_room_or_raise(db: AsyncSession, data_room_id: uuid.UUID) -> DataRoom:
    room = await db.get(DataRoom, data_room_id)
    if room is None:
        raise NotFound("Data room not found")
    return room


async def get_room_for_listing(db: AsyncSession, listing_id: uuid.UUID) -> DataRoom | None:
    result = await db.execute(select(DataRoom).where(DataRoom.listing_id == listing_id))
    return result.scalar_one_or_none()


async def _get_listing_or_raise(db: AsyncSession, listing_id: uuid.UUID) -> Listing:
    listing = await db.get(Listing, listing_id)
    if listing is None:
        raise NotFound("Listing not found")
    return listing


async def get_document_or_raise(
    db: AsyncSession, document_id: uuid.UUID, data_room_id: uuid.UUID | None = None
) -> DataRoomDocument:
    document = await db.get(DataRoomDocument, document_id)
    if document is None or (data_room_id is not None and document.data_room_id != data_room_id):
        raise NotFound("Document not found")
    return document


async def get_root_folder(db: AsyncSession, data_room_id: uuid.UUID) -> DataRoomFolder | None:
    result = await db.execute(
        select(DataRoomFolder)
        .where(
            DataRoomFolder.data_room_id == data_room_id,
            DataRoomFolder.parent_id.is_(None),
            DataRoomFolder.path == ROOT_FOLDER_PATH,
        )
        .limit(1)
    )
    return result.scalar_one_or_none()


async def _get_folder_in_room(
    db: AsyncSession, folder_id: uuid.UUID, data_room_id: uuid.UUID
) -> DataRoomFolder | None:
    folder = await db.get(DataRoomFolder, folder_id)
    if folder is None or folder.data_room_id != data_room_id:
        return None
    return folder


async def resolve_version(
    db: AsyncSession,
    version_id: uuid.UUID | None = None,
    document_id: uuid.UUID | None = None,
) -> tuple[DataRoomDocumentVersion, DataRoomDocument, DataRoom]:
    """Resolve version -> document -> room, checking every link belongs to the next."""
    if version_id is None and document_id is None:
        raise InvalidInput("version_id or document_id is required")

    if version_id is not None:
        version = await db.get(DataRoomDocumentVersion, version_id)
        if version is None or (document_id is not None and version.document_id != document_id):
            raise NotFound("Document version not found")
        document = await get_document_or_raise(db, version.document_id)
    else:
        document = await get_document_or_raise(db, document_id)  # type: ignore[arg-type]
        if document.current_version_id is None:
            raise NotFound("Document has no uploaded version")
        version = await db.get(DataRoomDocumentVersion, document.current_version_id)
        if version is None or version.document_id != document.id:
            raise NotFound("Document version not found")

    room = await get_room_or_raise(db, document.data_room_id)
    return version, document, room


async def require_access(
    db: AsyncSession,
    room: DataRoom,
    identity: Identity,
    action: AccessAction,
    document: DataRoomDocument | None = None,
) -> access.Decision:
    decision = await access.evaluate(db, room, identity, action, document)
    decision.raise_if_denied()
    return decision


# ── Rooms ────────────────────────────────────────────────────────────────────


async def _ensure_owner_permission(db: AsyncSession, room: DataRoom, owner_id: uuid.UUID) -> None:
    result = await db.execute(
        select(DataRoomPermission).where(
            DataRoomPermission.data_room_id == room.id,
            DataRoomPermission.user_id == owner_id,
        )
    )
    permission = result.scalar_one_or_none()
    if permission is None:
        db.add(DataRoomPermission(
            data_room_id=room.id,
            user_id=owner_id,
            role=DataRoomRole.OWNER,
            invited_by=owner_id,
        ))
        logger.info("dataroom_owner_permission_backfilled", room_id=str(room.id))
    elif permission.role is not DataRoomRole.OWNER:
        permission.role = DataRoomRole.OWNER


async def _ensure_root_folder(db: AsyncSession, room: DataRoom) -> DataRoomFolder:
    root = await get_root_folder(db, room.id)
    if root is None:
        root = DataRoomFolder(
            data_room_id=room.id,
            parent_id=None,
            name=ROOT_FOLDER_NAME,
            path=ROOT_FOLDER_PATH,
            order=0,
        )
        db.add(root)
        await db.flush()
    return root


async def initialize_room(
    db: AsyncSession, identity: Identity, listing_id: uuid.UUID
) -> tuple[DataRoom, DataRoomFolder, bool]:
    """Create the listing's data room with a root folder and explicit OWNER row.

    Idempotent. On an existing room the OWNER row and root folder are repaired
    if missing. Returns (room, root_folder, created).
    """
    listing = await _get_listing_or_raise(db, listing_id)
    if identity.user_id is None or identity.user_id != listing.user_id:
        raise Forbidden("Only the listing owner can initialize its data room")

    room = await get_room_for_listing(db, listing_id)
    created = room is None
    if room is None:
        room = DataRoom(listing_id=listing_id, created_by=listing.user_id)
        db.add(room)
        try:
            await db.flush()
        except IntegrityError as e:
            raise Conflict("Data room was initialized concurrently, retry") from e

    await _ensure_owner_permission(db, room, listing.user_id)
    root = await _ensure_root_folder(db, room)

    if created:
        audit.record(
            db, room.id, identity, AuditAction.ROOM_INIT, AuditTargetType.ROOM, room.id,
            {"listing_id": str(listing_id)},
        )
        logger.info("dataroom_initialized", room_id=str(room.id), listing_id=str(listing_id))
    return room, root, created


async def get_security_settings(db: AsyncSession, identity: Identity, data_room_id: uuid.UUID) -> DataRoom:
    room = await get_room_or_raise(db, data_room_id)
    await require_access(db, room, identity, AccessAction.MANAGE_POLICY)
    return room


async def update_security_settings(
    db: AsyncSession,
    identity: Identity,
    data_room_id: uuid.UUID,
    nda_required: bool | None = None,
    download_enabled: bool | None = None,
    allowed_ips: list[str] | None = None,
) -> DataRoom:
    room = await get_room_or_raise(db, data_room_id)
    await require_access(db, room, identity, AccessAction.MANAGE_POLICY)

    before = {
        "nda_required": room.nda_required,
        "download_enabled": room.download_enabled,
        "allowed_ips": list((room.security_settings or {}).get("allowed_ips") or []),
    }
    if nda_required is not None:
        room.nda_required = nda_required
    if download_enabled is not None:
        room.download_enabled = download_enabled
    if allowed_ips is not None:
        cleaned: list[str] = []
        for entry in allowed_ips:
            entry = entry.strip()
            if not entry:
                continue
            try:
                ipaddress.ip_network(entry, strict=False)
            except ValueError as e:
                raise InvalidInput(f"Invalid IP address or CIDR block: {entry}") from e
            cleaned.append(entry)
        room.security_settings = {**(room.security_settings or {}), "allowed_ips": cleaned}
    await db.flush()

    audit.record(
        db, room.id, identity, AuditAction.SETTINGS_CHANGE, AuditTargetType.ROOM, room.id,
        {
            "from": before,
            "to": {
                "nda_required": room.nda_required,
                "download_enabled": room.download_enabled,
                "allowed_ips": (room.security_settings or {}).get("allowed_ips") or [],
            },
        },
    )
    return room


async def list_members(
    db: AsyncSession, identity: Identity, data_room_id: uuid.UUID
) -> list[DataRoomPermission]:
    room = await get_room_or_raise(db, data_room_id)
    await require_access(db, room, identity, AccessAction.MANAGE_PERMISSIONS)
    result = await db.execute(
        select(DataRoomPermission)
        .where(DataRoomPermission.data_room_id == room.id)
        .order_by(DataRoomPermission.created_at)
    )
    return list(result.scalars().all())


# ── Folders ──────────────────────────────────────────────────────────────────


def sanitize_folder_name(name: str) -> str:
    """Trim, collapse whitespace, replace path separators, cap length."""
    name = _WHITESPACE_RE.sub(" ", name.strip())
    name = name.replace("/", "-").replace("\\", "-")
    return name[:FOLDER_NAME_MAX_LENGTH].strip()


async def create_folder(
    db: AsyncSession,
    identity: Identity,
    data_room_id: uuid.UUID,
    name: str,
    parent_id: uuid.UUID | None = None,
) -> DataRoomFolder:
    """Create a folder under ``parent_id`` (the root folder when omitted)."""
    room = await get_room_or_raise(db, data_room_id)
    await require_access(db, room, identity, AccessAction.UPLOAD)

    clean_name = sanitize_folder_name(name)
    if not clean_name:
        raise InvalidInput("Folder name must not be empty")

    if parent_id is not None:
        parent = await _get_folder_in_room(db, parent_id, room.id)
        if parent is None:
            raise InvalidInput("Parent folder not found in this data room")
    else:
        parent = await _ensure_root_folder(db, room)

    max_order = (
        await db.execute(
            select(func.max(DataRoomFolder.order)).where(
                DataRoomFolder.data_room_id == room.id,
                DataRoomFolder.parent_id == parent.id,
            )
        )
    ).scalar_one_or_none()

    folder = DataRoomFolder(
        data_room_id=room.id,
        parent_id=parent.id,
        name=clean_name,
        path=f"{parent.path.rstrip('/')}/{clean_name}",
        order=(max_order or 0) + 1,
    )
    db.add(folder)
    await db.flush()

    audit.record(
        db, room.id, identity, AuditAction.FOLDER_CREATE, AuditTargetType.FOLDER, folder.id,
        {"name": folder.name, "path": folder.path},
    )
    return folder


# ── Uploads ──────────────────────────────────────────────────────────────────


async def begin_upload(
    db: AsyncSession,
    identity: Identity,
    listing_id: uuid.UUID,
    file_name: str,
    mime_type: str,
    size: int,
    folder_id: uuid.UUID | None = None,
) -> dict[str, Any]:
    """Create Document + Version 1 and return a presigned PUT for the new storage key.

    The room is created on the listing owner's first upload.
    """
    listing = await _get_listing_or_raise(db, listing_id)
    room = await get_room_for_listing(db, listing_id)
    if room is None:
        if identity.user_id is None or identity.user_id != listing.user_id:
            raise NotFound("Data room not found")
        room, _, _ = await initialize_room(db, identity, listing_id)

    await require_access(db, room, identity, AccessAction.UPLOAD)

    if folder_id is not None:
        folder = await _get_folder_in_room(db, folder_id, room.id)
        if folder is None:
            raise InvalidInput("Folder not found in this data room")
    else:
        folder = await _ensure_root_folder(db, room)

    storage_key = storage.build_storage_key(room.id, file_name)

    document = DataRoomDocument(
        data_room_id=room.id,
        folder_id=folder.id,
        title=file_name,
        status=DocumentStatus.PENDING_SCAN,
        created_by=identity.user_id,
    )
    db.add(document)
    await db.flush()

    version = DataRoomDocumentVersion(
        document_id=document.id,
        version=1,
        file_name=file_name,
        mime_type=mime_type,
        size=size,
        storage_key=storage_key,
        uploaded_by=identity.user_id,
        virus_scan=VirusScanStatus.PENDING,
    )
    db.add(version)
    await db.flush()

    document.current_version_id = version.id
    await db.flush()

    upload_url, expires_in = storage.issue_upload_url(storage_key, mime_type)

    audit.record(
        db, room.id, identity, AuditAction.UPLOAD, AuditTargetType.DOCUMENT, document.id,
        {"file_name": file_name, "size": size, "version_id": str(version.id), "version": 1},
    )
    logger.info(
        "dataroom_upload_url_issued",
        room_id=str(room.id),
        document_id=str(document.id),
        version_id=str(version.id),
    )
    return {
        "upload_url": upload_url,
        "document_id": document.id,
        "version_id": version.id,
        "version": version.version,
        "expires_in": expires_in,
    }


async def begin_version_upload(
    db: AsyncSession,
    identity: Identity,
    document_id: uuid.UUID,
    file_name: str,
    mime_type: str,
    size: int,
) -> dict[str, Any]:
    """Add version max+1 to an existing document and return its upload URL.

    Two concurrent uploads computing the same number collide on the
    (document_id, version) unique constraint; the loser gets Conflict.
    """
    document = await get_document_or_raise(db, document_id)
    room = await get_room_or_raise(db, document.data_room_id)
    await require_access(db, room, identity, AccessAction.UPLOAD, document)

    max_version = (
        await db.execute(
            select(func.max(DataRoomDocumentVersion.version)).where(
                DataRoomDocumentVersion.document_id == document.id
            )
        )
    ).scalar_one_or_none()
    next_version = (max_version or 0) + 1

    storage_key = storage.build_storage_key(room.id, file_name)
    version = DataRoomDocumentVersion(
        document_id=document.id,
        version=next_version,
        file_name=file_name,
        mime_type=mime_type,
        size=size,
        storage_key=storage_key,
        uploaded_by=identity.user_id,
        virus_scan=VirusScanStatus.PENDING,
    )
    db.add(version)
    try:
        await db.flush()
    except IntegrityError as e:
        raise Conflict("Another version was uploaded concurrently, retry") from e

    document.current_version_id = version.id
    # A blocked document stays blocked until the new version scans clean
    if document.status is not DocumentStatus.BLOCKED:
        document.status = DocumentStatus.PENDING_SCAN
    await db.flush()

    upload_url, expires_in = storage.issue_upload_url(storage_key, mime_type)

    audit.record(
        db, room.id, identity, AuditAction.VERSION_UPLOAD, AuditTargetType.DOCUMENT, document.id,
        {"file_name": file_name, "size": size, "version_id": str(version.id), "version": next_version},
    )
    return {
        "upload_url": upload_url,
        "document_id": document.id,
        "version_id": version.id,
        "version": version.version,
        "expires_in": expires_in,
    }


# ── Policy ───────────────────────────────────────────────────────────────────


async def _list_grants(db: AsyncSession, document_id: uuid.UUID) -> list[DataRoomDocumentGrant]:
    result = await db.execute(
        select(DataRoomDocumentGrant)
        .where(DataRoomDocumentGrant.document_id == document_id)
        .order_by(DataRoomDocumentGrant.created_at, DataRoomDocumentGrant.id)
    )
    return list(result.scalars().all())


def _policy_snapshot(document: DataRoomDocument) -> dict[str, Any]:
    return {
        "visibility": document.visibility.value,
        "download_blocked": document.download_blocked,
        "watermark_required": document.watermark_required,
    }


async def _reconcile_grants(
    db: AsyncSession,
    document: DataRoomDocument,
    identity: Identity,
    user_ids: set[uuid.UUID],
    emails: set[str],
) -> None:
    existing = await _list_grants(db, document.id)
    have_users = {g.user_id for g in existing if g.user_id is not None}
    have_emails = {g.email for g in existing if g.email is not None}

    stale = [
        g.id for g in existing
        if (g.user_id is not None and g.user_id not in user_ids)
        or (g.user_id is None and g.email not in emails)
    ]
    if stale:
        await db.execute(delete(DataRoomDocumentGrant).where(DataRoomDocumentGrant.id.in_(stale)))

    for user_id in sorted(user_ids - have_users, key=str):
        db.add(DataRoomDocumentGrant(document_id=document.id, user_id=user_id, created_by=identity.user_id))
    for email in sorted(emails - have_emails):
        db.add(DataRoomDocumentGrant(document_id=document.id, email=email, created_by=identity.user_id))
    await db.flush()


async def update_policy(
    db: AsyncSession,
    identity: Identity,
    document_id: uuid.UUID,
    visibility: DocumentVisibility | None = None,
    download_blocked: bool | None = None,
    watermark_required: bool | None = None,
    grant_user_ids: list[uuid.UUID] | None = None,
    grant_emails: list[str] | None = None,
) -> tuple[DataRoomDocument, list[DataRoomDocumentGrant]]:
    """Apply policy fields and reconcile grants in the request transaction.

    Any visibility other than CUSTOM clears every grant. Under CUSTOM, when
    either grant list is supplied the grant set becomes exactly
    ``grant_user_ids`` plus the normalized ``grant_emails``.
    """
    document = await get_document_or_raise(db, document_id)
    room = await get_room_or_raise(db, document.data_room_id)
    await require_access(db, room, identity, AccessAction.MANAGE_POLICY, document)

    before = _policy_snapshot(document)

    if visibility is not None:
        document.visibility = visibility
    if download_blocked is not None:
        document.download_blocked = download_blocked
    if watermark_required is not None:
        document.watermark_required = watermark_required

    desired_users = set(grant_user_ids or [])
    desired_emails = {e.strip().lower() for e in grant_emails or [] if e.strip()}

    if document.visibility is not DocumentVisibility.CUSTOM:
        await db.execute(
            delete(DataRoomDocumentGrant).where(DataRoomDocumentGrant.document_id == document.id)
        )
    elif grant_user_ids is not None or grant_emails is not None:
        await _reconcile_grants(db, document, identity, desired_users, desired_emails)
    await db.flush()

    grants = await _list_grants(db, document.id)
    audit.record(
        db, room.id, identity, AuditAction.POLICY_CHANGE, AuditTargetType.DOCUMENT, document.id,
        {
            "from": before,
            "to": _policy_snapshot(document),
            "grant_user_ids": sorted(str(g.user_id) for g in grants if g.user_id is not None),
            "grant_emails": sorted(g.email for g in grants if g.email is not None),
        },
    )
    return document, grants


async def get_policy(
    db: AsyncSession, identity: Identity, document_id: uuid.UUID
) -> tuple[DataRoomDocument, list[DataRoomDocumentGrant]]:
    document = await get_document_or_raise(db, document_id)
    room = await get_room_or_raise(db, document.data_room_id)
    await require_access(db, room, identity, AccessAction.MANAGE_POLICY, document)
    grants = await _list_grants(db, document.id)
    audit.record(
        db, room.id, identity, AuditAction.POLICY_READ, AuditTargetType.DOCUMENT, document.id,
    )
    return document, grants


# ── Listing ──────────────────────────────────────────────────────────────────


def _matches(grant: DataRoomDocumentGrant, identity: Identity) -> bool:
    if identity.user_id is not None and grant.user_id == identity.user_id:
        return True
    return bool(identity.email and grant.email == identity.email)


async def list_documents(
    db: AsyncSession,
    identity: Identity,
    data_room_id: uuid.UUID,
    client_ip: str | None = None,
) -> dict[str, Any]:
    """Folders plus the documents this caller may see, with per-document download flags.

    Grants and version history are included for OWNER/EDITOR only.
    """
    room = await get_room_or_raise(db, data_room_id)
    subject: Subject = await access.load_subject(db, room, identity, client_ip)
    access.decide(subject, AccessAction.VIEW).raise_if_denied()
    is_manager = subject.role in (DataRoomRole.OWNER, DataRoomRole.EDITOR)

    folders = list((await db.execute(
        select(DataRoomFolder)
        .where(DataRoomFolder.data_room_id == room.id)
        .order_by(DataRoomFolder.path, DataRoomFolder.order)
    )).scalars().all())

    documents = list((await db.execute(
        select(DataRoomDocument)
        .where(DataRoomDocument.data_room_id == room.id)
        .order_by(DataRoomDocument.created_at, DataRoomDocument.id)
    )).scalars().all())

    doc_ids = [d.id for d in documents]
    versions_by_doc: dict[uuid.UUID, list[DataRoomDocumentVersion]] = {d: [] for d in doc_ids}
    grants_by_doc: dict[uuid.UUID, list[DataRoomDocumentGrant]] = {d: [] for d in doc_ids}
    if doc_ids:
        for v in (await db.execute(
            select(DataRoomDocumentVersion)
            .where(DataRoomDocumentVersion.document_id.in_(doc_ids))
            .order_by(DataRoomDocumentVersion.version.desc())
        )).scalars().all():
            versions_by_doc[v.document_id].append(v)
        for g in (await db.execute(
            select(DataRoomDocumentGrant).where(DataRoomDocumentGrant.document_id.in_(doc_ids))
        )).scalars().all():
            grants_by_doc[g.document_id].append(g)

    items: list[dict[str, Any]] = []
    for document in documents:
        versions = versions_by_doc[document.id]
        current = next((v for v in versions if v.id == document.current_version_id), None)
        target = Target(
            visibility=document.visibility,
            download_blocked=document.download_blocked,
            granted=any(_matches(g, identity) for g in grants_by_doc[document.id]),
            scan_status=current.virus_scan if current else None,
        )
        if not access.decide(subject, AccessAction.VIEW, target).allowed:
            continue
        item: dict[str, Any] = {
            **{c: getattr(document, c) for c in (
                "id", "data_room_id", "folder_id", "title", "status", "visibility",
                "download_blocked", "watermark_required", "current_version_id",
                "created_at", "updated_at",
            )},
            "can_download": access.decide(subject, AccessAction.DOWNLOAD, target).allowed,
            "current_version": current,
        }
        if is_manager:
            item["versions"] = versions
            item["grants"] = grants_by_doc[document.id]
        items.append(item)

    audit.record(
        db, room.id, identity, AuditAction.VIEW, AuditTargetType.ROOM, room.id,
        {"documents": len(items)},
    )
    return {
        "data_room_id": room.id,
        "role": subject.role,
        "folders": folders,
        "documents": items,
    }


# ── Downloads / views ────────────────────────────────────────────────────────


def _watermark_subject(identity: Identity) -> str:
    return identity.email or str(identity.user_id)


async def _post_download_webhook(payload: dict[str, Any]) -> None:
    try:
        async with httpx.AsyncClient(timeout=5.0) as client:
            resp = await client.post(settings.DATAROOM_WEBHOOK_URL, json=payload)
            resp.raise_for_status()
    except Exception as exc:  # noqa: BLE001
        logger.warning("dataroom_webhook_failed", error=str(exc), event=payload.get("type"))


async def _issue_file_url(
    db: AsyncSession,
    identity: Identity,
    action: AccessAction,
    version_id: uuid.UUID | None,
    document_id: uuid.UUID | None,
    client_ip: str | None,
) -> dict[str, Any]:
    version, document, room = await resolve_version(db, version_id, document_id)
    is_download = action is AccessAction.DOWNLOAD

    decision = await access.evaluate(
        db, room, identity, action, document, version,
        include_content=True, client_ip=client_ip,
    )
    if not decision.allowed:
        audit.record(
            db, room.id, identity,
            AuditAction.DOWNLOAD_DENIED if is_download else AuditAction.VIEW_DENIED,
            AuditTargetType.DOCUMENT_VERSION, version.id,
            {"document_id": str(document.id), "reason": decision.reason.value},  # type: ignore[union-attr]
            durable=True,
        )
        logger.info(
            "dataroom_file_access_denied",
            action=action.value,
            version_id=str(version.id),
            reason=decision.reason.value,  # type: ignore[union-attr]
        )
        decision.raise_if_denied()

    watermarked = document.watermark_required and storage.watermark_enabled()
    if watermarked:
        url, expires_in = storage.issue_watermark_url(version.storage_key, _watermark_subject(identity))
    else:
        url, expires_in = storage.issue_download_url(
            version.storage_key, version.file_name, version.mime_type, inline=not is_download
        )

    audit.record(
        db, room.id, identity,
        AuditAction.DOWNLOAD if is_download else AuditAction.VIEW,
        AuditTargetType.DOCUMENT_VERSION, version.id,
        {"document_id": str(document.id), "version": version.version, "watermarked": watermarked},
    )

    if is_download and settings.DATAROOM_WEBHOOK_URL:
        payload = {
            "type": "dataroom.download",
            "data_room_id": str(room.id),
            "document_id": str(document.id),
            "version_id": str(version.id),
            "actor_id": str(identity.user_id) if identity.user_id else None,
            "watermarked": watermarked,
        }

        async def _notify(committed: bool) -> None:
            if committed:
                await _post_download_webhook(payload)

        database.add_after_transaction_hook(db, _notify)

    return {
        "download_url": url,
        "expires_in": expires_in,
        "file_name": version.file_name,
        "watermarked": watermarked,
    }


async def request_download(
    db: AsyncSession,
    identity: Identity,
    version_id: uuid.UUID | None = None,
    document_id: uuid.UUID | None = None,
    client_ip: str | None = None,
) -> dict[str, Any]:
    """Authorize a download and issue a short-lived attachment URL."""
    return await _issue_file_url(db, identity, AccessAction.DOWNLOAD, version_id, document_id, client_ip)


async def request_view(
    db: AsyncSession,
    identity: Identity,
    version_id: uuid.UUID | None = None,
    document_id: uuid.UUID | None = None,
    client_ip: str | None = None,
) -> dict[str, Any]:
    """Inline preview URL. Needs a clean scan but ignores download blocking."""
    return await _issue_file_url(db, identity, AccessAction.VIEW, version_id, document_id, client_ip)


# ── Delete ───────────────────────────────────────────────────────────────────


async def delete_document(db: AsyncSession, identity: Identity, document_id: uuid.UUID) -> None:
    """Remove a document with its versions and grants; stored objects are deleted after commit."""
    document = await get_document_or_raise(db, document_id)
    room = await get_room_or_raise(db, document.data_room_id)
    await require_access(db, room, identity, AccessAction.DELETE, document)

    title = document.title
    keys = list((await db.execute(
        select(DataRoomDocumentVersion.storage_key).where(
            DataRoomDocumentVersion.document_id == document.id
        )
    )).scalars().all())

    await db.execute(delete(DataRoomDocumentGrant).where(DataRoomDocumentGrant.document_id == document.id))
    await db.execute(delete(DataRoomDocumentVersion).where(DataRoomDocumentVersion.document_id == document.id))
    await db.delete(document)
    await db.flush()

    audit.record(
        db, room.id, identity, AuditAction.DELETE, AuditTargetType.DOCUMENT, document_id,
        {"title": title, "versions": len(keys)},
    )

    async def _purge(committed: bool) -> None:
        if committed:
            storage.delete_objects(keys)

    database.add_after_transaction_hook(db, _purge)


# ── Audit ────────────────────────────────────────────────────────────────────


async def list_room_audit(
    db: AsyncSession,
    identity: Identity,
    data_room_id: uuid.UUID,
    actor_id: uuid.UUID | None = None,
    action: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[dict[str, Any]], int]:
    room = await get_room_or_raise(db, data_room_id)
    await require_access(db, room, identity, AccessAction.VIEW_AUDIT)
    return await audit.list_audit(db, room.id, actor_id=actor_id, action=action, limit=limit, offset=offset)
