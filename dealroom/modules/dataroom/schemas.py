"""Pydantic schemas for Data Room endpoints."""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from dealroom.models.enums import (
    AnalysisFindingType,
    AnalysisStatus,
    DataRoomRole,
    DocumentStatus,
    DocumentVisibility,
    InviteStatus,
    VirusScanStatus,
)

# ── Constants ────────────────────────────────────────────────────────────────

MAX_FILE_SIZE_BYTES = 500 * 1024 * 1024  # 500 MB
FOLDER_NAME_MAX_LENGTH = 80


# ── Rooms ────────────────────────────────────────────────────────────────────


class RoomInitRequest(BaseModel):
    listing_id: uuid.UUID


class RoomInitResponse(BaseModel):
    data_room_id: uuid.UUID
    root_folder_id: uuid.UUID
    created: bool


class RoomSettingsUpdateRequest(BaseModel):
    nda_required: bool | None = None
    download_enabled: bool | None = None
    allowed_ips: list[str] | None = None


class RoomSettingsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    listing_id: uuid.UUID
    nda_required: bool
    download_enabled: bool
    allowed_ips: list[str] = []


class MemberResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    role: DataRoomRole
    invited_by: uuid.UUID | None
    created_at: datetime


# ── Folders ──────────────────────────────────────────────────────────────────


class FolderCreateRequest(BaseModel):
    data_room_id: uuid.UUID
    name: str = Field(..., max_length=500)
    parent_id: uuid.UUID | None = None


class FolderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    data_room_id: uuid.UUID
    parent_id: uuid.UUID | None
    name: str
    path: str
    order: int
    created_at: datetime


# ── Uploads ──────────────────────────────────────────────────────────────────


class _FileFields(BaseModel):
    file_name: str = Field(..., min_length=1, max_length=500)
    mime_type: str = Field("application/octet-stream", max_length=255)
    size: int = Field(..., gt=0)

    @field_validator("file_name")
    @classmethod
    def strip_file_name(cls, v: str) -> str:
        v = v.strip().replace("/", "-").replace("\\", "-")
        if not v:
            raise ValueError("file_name must not be blank")
        return v

    @field_validator("size")
    @classmethod
    def validate_size(cls, v: int) -> int:
        if v > MAX_FILE_SIZE_BYTES:
            raise ValueError(f"File size {v} bytes exceeds maximum of {MAX_FILE_SIZE_BYTES} bytes")
        return v


class UploadUrlRequest(_FileFields):
    listing_id: uuid.UUID
    folder_id: uuid.UUID | None = None


class VersionUploadRequest(_FileFields):
    pass


class UploadUrlResponse(BaseModel):
    upload_url: str
    document_id: uuid.UUID
    version_id: uuid.UUID
    version: int
    expires_in: int


# ── Downloads / views ────────────────────────────────────────────────────────


class FileUrlResponse(BaseModel):
    download_url: str
    expires_in: int
    file_name: str
    watermarked: bool = False


# ── Documents ────────────────────────────────────────────────────────────────


class DocumentVersionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    version: int
    file_name: str
    mime_type: str
    size: int
    virus_scan: VirusScanStatus
    analysis_status: AnalysisStatus | None = None
    uploaded_by: uuid.UUID
    created_at: datetime


class GrantResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID | None
    email: str | None


class DocumentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    data_room_id: uuid.UUID
    folder_id: uuid.UUID
    title: str
    status: DocumentStatus
    visibility: DocumentVisibility
    download_blocked: bool
    watermark_required: bool
    current_version_id: uuid.UUID | None
    created_at: datetime
    updated_at: datetime


class DocumentListItem(DocumentResponse):
    can_download: bool = False
    current_version: DocumentVersionResponse | None = None
    versions: list[DocumentVersionResponse] | None = None
    grants: list[GrantResponse] | None = None


class DocumentListResponse(BaseModel):
    data_room_id: uuid.UUID
    role: DataRoomRole
    folders: list[FolderResponse]
    documents: list[DocumentListItem]


class DocumentPolicyUpdateRequest(BaseModel):
    visibility: DocumentVisibility | None = None
    download_blocked: bool | None = None
    watermark_required: bool | None = None
    grant_user_ids: list[uuid.UUID] | None = None
    grant_emails: list[str] | None = None


class DocumentPolicyResponse(BaseModel):
    document: DocumentResponse
    grants: list[GrantResponse]


# ── NDA ──────────────────────────────────────────────────────────────────────


class NDAAcceptRequest(BaseModel):
    data_room_id: uuid.UUID
    nda_version: str = Field("v1.0", min_length=1, max_length=50)


class NDAAcceptResponse(BaseModel):
    accepted: bool
    accepted_at: datetime | None
    nda_version: str | None


class NDAStatusResponse(BaseModel):
    required: bool
    accepted: bool
    accepted_at: datetime | None
    role: DataRoomRole | None


# ── Invites ──────────────────────────────────────────────────────────────────


class InviteCreateRequest(BaseModel):
    data_room_id: uuid.UUID
    email: str = Field(..., min_length=3, max_length=320)
    role: DataRoomRole = DataRoomRole.VIEWER
    message: str | None = Field(None, max_length=2000)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        v = v.strip().lower()
        if "@" not in v:
            raise ValueError("Invalid email address")
        return v


class InviteResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    data_room_id: uuid.UUID
    email: str
    role: DataRoomRole
    status: InviteStatus
    expires_at: datetime
    accepted_at: datetime | None
    created_at: datetime


class InviteAcceptRequest(BaseModel):
    token: str = Field(..., min_length=1, max_length=128)


class InviteAcceptResponse(BaseModel):
    data_room_id: uuid.UUID
    role: DataRoomRole


# ── Scan callback ────────────────────────────────────────────────────────────


class ScanCallbackRequest(BaseModel):
    version_id: uuid.UUID
    status: VirusScanStatus
    reason: str | None = Field(None, max_length=2000)

    @field_validator("status")
    @classmethod
    def validate_terminal(cls, v: VirusScanStatus) -> VirusScanStatus:
        if v is VirusScanStatus.PENDING:
            raise ValueError("status must be 'clean' or 'blocked'")
        return v


class ScanCallbackResponse(BaseModel):
    ok: bool = True


# ── Audit ────────────────────────────────────────────────────────────────────


class AuditLogEntry(BaseModel):
    id: uuid.UUID
    actor_id: uuid.UUID | None
    actor_email: str | None
    actor_name: str
    action: str
    action_label: str
    target_type: str
    target_id: uuid.UUID | None
    meta: dict[str, Any] | None
    created_at: datetime


class AuditLogListResponse(BaseModel):
    logs: list[AuditLogEntry]
    total: int
    limit: int
    offset: int


# ── Analysis ─────────────────────────────────────────────────────────────────


class AnalysisFinding(BaseModel):
    type: AnalysisFindingType
    message: str


class AnalyzeRequest(BaseModel):
    data_room_id: uuid.UUID
    version_id: uuid.UUID


class AnalyzeResponse(BaseModel):
    status: AnalysisStatus


class AnalysisResultResponse(BaseModel):
    status: AnalysisStatus | None
    summary: str | None
    score: int | None
    findings: list[AnalysisFinding]
    analyzed_at: datetime | None
