"""Data Room API router: rooms, folders, uploads, policies, downloads, NDA, invites, audit."""

import uuid
from typing import Any

import structlog
from fastapi import APIRouter, Depends, Header, Query, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from dealroom.auth.dependencies import get_current_user
from dealroom.core.database import get_db
from dealroom.models.dataroom import DataRoom, DataRoomDocument, DataRoomDocumentGrant
from dealroom.modules.dataroom import analysis, invites, nda, scan, service
from dealroom.modules.dataroom.rate_limit import client_ip, enforce_upload_rate_limit
from dealroom.modules.dataroom.schemas import (
    AnalysisResultResponse,
    AnalyzeRequest,
    AnalyzeResponse,
    AuditLogEntry,
    AuditLogListResponse,
    DocumentListItem,
    DocumentListResponse,
    DocumentPolicyResponse,
    DocumentPolicyUpdateRequest,
    DocumentResponse,
    DocumentVersionResponse,
    FileUrlResponse,
    FolderCreateRequest,
    FolderResponse,
    GrantResponse,
    InviteAcceptRequest,
    InviteAcceptResponse,
    InviteCreateRequest,
    InviteResponse,
    MemberResponse,
    NDAAcceptRequest,
    NDAAcceptResponse,
    NDAStatusResponse,
    RoomInitRequest,
    RoomInitResponse,
    RoomSettingsResponse,
    RoomSettingsUpdateRequest,
    ScanCallbackRequest,
    ScanCallbackResponse,
    UploadUrlRequest,
    UploadUrlResponse,
    VersionUploadRequest,
)
from dealroom.schemas.auth import Identity

logger = structlog.get_logger()

router = APIRouter(prefix="/dataroom", tags=["dataroom"])


def _settings_response(room: DataRoom) -> RoomSettingsResponse:
    return RoomSettingsResponse(
        id=room.id,
        listing_id=room.listing_id,
        nda_required=room.nda_required,
        download_enabled=room.download_enabled,
        allowed_ips=list((room.security_settings or {}).get("allowed_ips") or []),
    )


def _policy_response(
    document: DataRoomDocument, grants: list[DataRoomDocumentGrant]
) -> DocumentPolicyResponse:
    return DocumentPolicyResponse(
        document=DocumentResponse.model_validate(document),
        grants=[GrantResponse.model_validate(g) for g in grants],
    )


def _list_item(item: dict[str, Any]) -> DocumentListItem:
    current = item.pop("current_version")
    versions = item.pop("versions", None)
    grants = item.pop("grants", None)
    return DocumentListItem(
        **item,
        current_version=DocumentVersionResponse.model_validate(current) if current else None,
        versions=[DocumentVersionResponse.model_validate(v) for v in versions] if versions is not None else None,
        grants=[GrantResponse.model_validate(g) for g in grants] if grants is not None else None,
    )


# ── Rooms ────────────────────────────────────────────────────────────────────


@router.post("/init", response_model=RoomInitResponse)
async def init_room(
    body: RoomInitRequest,
    current_user: Identity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Create the listing's data room (idempotent). Listing owner only."""
    room, root, created = await service.initialize_room(db, current_user, body.listing_id)
    return RoomInitResponse(data_room_id=room.id, root_folder_id=root.id, created=created)


@router.get("/security-settings", response_model=RoomSettingsResponse)
async def get_security_settings(
    data_room_id: uuid.UUID = Query(...),
    current_user: Identity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    room = await service.get_security_settings(db, current_user, data_room_id)
    return _settings_response(room)


@router.patch("/security-settings", response_model=RoomSettingsResponse)
async def update_security_settings(
    body: RoomSettingsUpdateRequest,
    data_room_id: uuid.UUID = Query(...),
    current_user: Identity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Update NDA / download switches and the optional IP allowlist."""
    room = await service.update_security_settings(
        db,
        current_user,
        data_room_id,
        nda_required=body.nda_required,
        download_enabled=body.download_enabled,
        allowed_ips=body.allowed_ips,
    )
    return _settings_response(room)


@router.get("/{data_room_id}/members", response_model=list[MemberResponse])
async def list_members(
    data_room_id: uuid.UUID,
    current_user: Identity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    members = await service.list_members(db, current_user, data_room_id)
    return [MemberResponse.model_validate(m) for m in members]


# ── Folders ──────────────────────────────────────────────────────────────────


@router.post("/folders", response_model=FolderResponse)
async def create_folder(
    body: FolderCreateRequest,
    current_user: Identity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    folder = await service.create_folder(
        db, current_user, body.data_room_id, name=body.name, parent_id=body.parent_id
    )
    return FolderResponse.model_validate(folder)


# ── Documents ────────────────────────────────────────────────────────────────


@router.get("/{data_room_id}/documents", response_model=DocumentListResponse)
async def list_documents(
    data_room_id: uuid.UUID,
    request: Request,
    current_user: Identity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Folders and the documents visible to the caller."""
    result = await service.list_documents(db, current_user, data_room_id, client_ip=client_ip(request))
    return DocumentListResponse(
        data_room_id=result["data_room_id"],
        role=result["role"],
        folders=[FolderResponse.model_validate(f) for f in result["folders"]],
        documents=[_list_item(d) for d in result["documents"]],
    )


@router.post(
    "/upload-url",
    response_model=UploadUrlResponse,
    dependencies=[Depends(enforce_upload_rate_limit)],
)
async def request_upload_url(
    body: UploadUrlRequest,
    current_user: Identity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Register a new document and return a presigned PUT URL for version 1."""
    result = await service.begin_upload(
        db,
        current_user,
        listing_id=body.listing_id,
        file_name=body.file_name,
        mime_type=body.mime_type,
        size=body.size,
        folder_id=body.folder_id,
    )
    return UploadUrlResponse(**result)


@router.post(
    "/documents/{document_id}/versions",
    response_model=UploadUrlResponse,
    dependencies=[Depends(enforce_upload_rate_limit)],
)
async def request_version_upload_url(
    document_id: uuid.UUID,
    body: VersionUploadRequest,
    current_user: Identity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await service.begin_version_upload(
        db,
        current_user,
        document_id,
        file_name=body.file_name,
        mime_type=body.mime_type,
        size=body.size,
    )
    return UploadUrlResponse(**result)


@router.get("/documents/{document_id}/policy", response_model=DocumentPolicyResponse)
async def get_document_policy(
    document_id: uuid.UUID,
    current_user: Identity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    document, grants = await service.get_policy(db, current_user, document_id)
    return _policy_response(document, grants)


@router.patch("/documents/{document_id}", response_model=DocumentPolicyResponse)
async def update_document_policy(
    document_id: uuid.UUID,
    body: DocumentPolicyUpdateRequest,
    current_user: Identity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Change visibility / download / watermark flags and reconcile CUSTOM grants."""
    document, grants = await service.update_policy(
        db,
        current_user,
        document_id,
        visibility=body.visibility,
        download_blocked=body.download_blocked,
        watermark_required=body.watermark_required,
        grant_user_ids=body.grant_user_ids,
        grant_emails=body.grant_emails,
    )
    return _policy_response(document, grants)


@router.delete("/documents/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_document(
    document_id: uuid.UUID,
    current_user: Identity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await service.delete_document(db, current_user, document_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ── Downloads / views ────────────────────────────────────────────────────────


@router.get("/download-url", response_model=FileUrlResponse)
async def get_download_url(
    request: Request,
    version_id: uuid.UUID | None = Query(None),
    document_id: uuid.UUID | None = Query(None),
    current_user: Identity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Short-lived attachment URL for a version (or the document's current version)."""
    result = await service.request_download(
        db, current_user, version_id=version_id, document_id=document_id, client_ip=client_ip(request)
    )
    return FileUrlResponse(**result)


@router.get("/view-url", response_model=FileUrlResponse)
async def get_view_url(
    request: Request,
    version_id: uuid.UUID | None = Query(None),
    document_id: uuid.UUID | None = Query(None),
    current_user: Identity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await service.request_view(
        db, current_user, version_id=version_id, document_id=document_id, client_ip=client_ip(request)
    )
    return FileUrlResponse(**result)


# ── NDA ──────────────────────────────────────────────────────────────────────


@router.post("/nda/accept", response_model=NDAAcceptResponse)
async def accept_nda(
    body: NDAAcceptRequest,
    request: Request,
    user_agent: str | None = Header(None),
    current_user: Identity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await nda.accept_nda(
        db,
        current_user,
        body.data_room_id,
        nda_version=body.nda_version,
        ip_address=client_ip(request),
        user_agent=user_agent,
    )
    return NDAAcceptResponse(**result)


@router.get("/nda/status", response_model=NDAStatusResponse)
async def get_nda_status(
    data_room_id: uuid.UUID = Query(...),
    current_user: Identity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return NDAStatusResponse(**await nda.get_nda_status(db, current_user, data_room_id))


# ── Invites ──────────────────────────────────────────────────────────────────


@router.post("/invites", response_model=InviteResponse)
async def create_invite(
    body: InviteCreateRequest,
    current_user: Identity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Invite an email address as EDITOR or VIEWER. Owner only."""
    invite = await invites.create_invite(
        db, current_user, body.data_room_id, body.email, role=body.role, message=body.message
    )
    return InviteResponse.model_validate(invite)


@router.get("/invites", response_model=list[InviteResponse])
async def list_invites(
    data_room_id: uuid.UUID = Query(...),
    current_user: Identity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    items = await invites.list_invites(db, current_user, data_room_id)
    return [InviteResponse.model_validate(i) for i in items]


@router.post("/invites/accept", response_model=InviteAcceptResponse)
async def accept_invite(
    body: InviteAcceptRequest,
    current_user: Identity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    permission = await invites.accept_invite(db, current_user, body.token)
    return InviteAcceptResponse(data_room_id=permission.data_room_id, role=permission.role)


# ── Scan callback ────────────────────────────────────────────────────────────


@router.post(
    "/scan/callback",
    response_model=ScanCallbackResponse,
    dependencies=[Depends(scan.verify_scan_token)],
)
async def scan_callback(
    body: ScanCallbackRequest,
    db: AsyncSession = Depends(get_db),
):
    """Called by the virus scanner once a version has been scanned."""
    await scan.on_scan_callback(db, body.version_id, body.status, body.reason)
    return ScanCallbackResponse(ok=True)


# ── Audit ────────────────────────────────────────────────────────────────────


@router.get("/audit", response_model=AuditLogListResponse)
async def list_audit(
    data_room_id: uuid.UUID = Query(...),
    actor_id: uuid.UUID | None = Query(None),
    action: str | None = Query(None, max_length=50),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    current_user: Identity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Newest-first audit trail for a room. Owner only."""
    logs, total = await service.list_room_audit(
        db, current_user, data_room_id, actor_id=actor_id, action=action, limit=limit, offset=offset
    )
    return AuditLogListResponse(
        logs=[AuditLogEntry(**entry) for entry in logs],
        total=total,
        limit=limit,
        offset=offset,
    )


# ── AI analysis ──────────────────────────────────────────────────────────────


@router.post("/analyze", response_model=AnalyzeResponse)
async def trigger_analysis(
    body: AnalyzeRequest,
    current_user: Identity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Start AI analysis of a version; poll GET /analyze for the result."""
    status_ = await analysis.trigger_analysis(db, current_user, body.data_room_id, body.version_id)
    return AnalyzeResponse(status=status_)


@router.get("/analyze", response_model=AnalysisResultResponse)
async def get_analysis(
    data_room_id: uuid.UUID = Query(...),
    version_id: uuid.UUID = Query(...),
    current_user: Identity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return AnalysisResultResponse(**await analysis.get_analysis(db, current_user, data_room_id, version_id))
