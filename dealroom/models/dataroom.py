"""Data Room models: rooms, permissions, folders, documents, versions, grants, NDAs, invites, audit."""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    BigInteger,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from dealroom.models.base import BaseModel, JSONType, TimestampedModel
from dealroom.models.enums import (
    AnalysisStatus,
    DataRoomRole,
    DocumentStatus,
    DocumentVisibility,
    InviteStatus,
    VirusScanStatus,
)


class DataRoom(BaseModel):
    __tablename__ = "data_rooms"
    __table_args__ = (
        UniqueConstraint("listing_id", name="uq_data_rooms_listing_id"),
    )

    listing_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("listings.id", ondelete="CASCADE"),
        nullable=False,
    )
    nda_required: Mapped[bool] = mapped_column(default=True, nullable=False)
    download_enabled: Mapped[bool] = mapped_column(default=True, nullable=False)
    # {"allowed_ips": ["203.0.113.0/24", ...]}; empty means unrestricted
    security_settings: Mapped[dict[str, Any] | None] = mapped_column(JSONType)
    created_by: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)


class DataRoomPermission(BaseModel):
    __tablename__ = "data_room_permissions"
    __table_args__ = (
        UniqueConstraint("data_room_id", "user_id", name="uq_data_room_permissions_room_user"),
        Index("ix_data_room_permissions_user_id", "user_id"),
    )

    data_room_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("data_rooms.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    role: Mapped[DataRoomRole] = mapped_column(nullable=False, default=DataRoomRole.VIEWER)
    invited_by: Mapped[uuid.UUID | None] = mapped_column(Uuid)

    def __repr__(self) -> str:
        return f"<DataRoomPermission(room={self.data_room_id}, user={self.user_id}, role={self.role.value})>"


class DataRoomFolder(BaseModel):
    __tablename__ = "data_room_folders"
    __table_args__ = (
        Index("ix_data_room_folders_room_parent", "data_room_id", "parent_id"),
    )

    data_room_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("data_rooms.id", ondelete="CASCADE"),
        nullable=False,
    )
    parent_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("data_room_folders.id", ondelete="CASCADE"),
    )
    name: Mapped[str] = mapped_column(String(80), nullable=False)
    path: Mapped[str] = mapped_column(String(2000), nullable=False)
    order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<DataRoomFolder(id={self.id}, path={self.path!r})>"


class DataRoomDocument(BaseModel):
    __tablename__ = "data_room_documents"
    __table_args__ = (
        Index("ix_data_room_documents_room_id", "data_room_id"),
        Index("ix_data_room_documents_folder_id", "folder_id"),
    )

    data_room_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("data_rooms.id", ondelete="CASCADE"),
        nullable=False,
    )
    folder_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("data_room_folders.id", ondelete="CASCADE"),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    status: Mapped[DocumentStatus] = mapped_column(
        nullable=False, default=DocumentStatus.PENDING_SCAN
    )
    visibility: Mapped[DocumentVisibility] = mapped_column(
        nullable=False, default=DocumentVisibility.NDA_ONLY
    )
    download_blocked: Mapped[bool] = mapped_column(default=False, nullable=False)
    watermark_required: Mapped[bool] = mapped_column(default=False, nullable=False)
    # Points at data_room_document_versions.id; no FK to avoid a cycle
    current_version_id: Mapped[uuid.UUID | None] = mapped_column(Uuid)
    created_by: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)

    def __repr__(self) -> str:
        return f"<DataRoomDocument(id={self.id}, title={self.title!r}, status={self.status.value})>"


class DataRoomDocumentVersion(TimestampedModel):
    """Immutable file revision. Only scan and analysis columns change after insert."""

    __tablename__ = "data_room_document_versions"
    __table_args__ = (
        UniqueConstraint("document_id", "version", name="uq_document_versions_document_version"),
        UniqueConstraint("storage_key", name="uq_document_versions_storage_key"),
    )

    document_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("data_room_documents.id", ondelete="CASCADE"),
        nullable=False,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    file_name: Mapped[str] = mapped_column(String(500), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(255), nullable=False)
    size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    storage_key: Mapped[str] = mapped_column(String(1000), nullable=False)
    uploaded_by: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    virus_scan: Mapped[VirusScanStatus] = mapped_column(
        nullable=False, default=VirusScanStatus.PENDING
    )
    scan_reason: Mapped[str | None] = mapped_column(Text)
    scanned_at: Mapped[datetime | None] = mapped_column()
    analysis_status: Mapped[AnalysisStatus | None] = mapped_column()
    analysis_summary: Mapped[str | None] = mapped_column(Text)
    analysis_score: Mapped[int | None] = mapped_column(Integer)
    # [{"type": "warning", "message": "..."}]
    analysis_findings: Mapped[list[dict[str, Any]] | None] = mapped_column(JSONType)
    analyzed_at: Mapped[datetime | None] = mapped_column()

    def __repr__(self) -> str:
        return f"<DataRoomDocumentVersion(id={self.id}, document={self.document_id}, v={self.version})>"


class DataRoomDocumentGrant(TimestampedModel):
    __tablename__ = "data_room_document_grants"
    __table_args__ = (
        UniqueConstraint("document_id", "user_id", name="uq_document_grants_document_user"),
        UniqueConstraint("document_id", "email", name="uq_document_grants_document_email"),
    )

    document_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("data_room_documents.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid)
    email: Mapped[str | None] = mapped_column(String(320))
    created_by: Mapped[uuid.UUID | None] = mapped_column(Uuid)


class DataRoomNDAAcceptance(TimestampedModel):
    __tablename__ = "data_room_nda_acceptances"
    __table_args__ = (
        UniqueConstraint("data_room_id", "user_id", name="uq_nda_acceptances_room_user"),
        UniqueConstraint("data_room_id", "email", name="uq_nda_acceptances_room_email"),
    )

    data_room_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("data_rooms.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid)
    email: Mapped[str | None] = mapped_column(String(320))
    accepted_at: Mapped[datetime] = mapped_column(nullable=False)
    nda_version: Mapped[str] = mapped_column(String(50), nullable=False, default="v1.0")
    ip_address: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(String(1000))


class DataRoomInvite(BaseModel):
    __tablename__ = "data_room_invites"
    __table_args__ = (
        UniqueConstraint("token", name="uq_data_room_invites_token"),
        Index("ix_data_room_invites_room_email", "data_room_id", "email"),
    )

    data_room_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("data_rooms.id", ondelete="CASCADE"),
        nullable=False,
    )
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    role: Mapped[DataRoomRole] = mapped_column(nullable=False)
    token: Mapped[str] = mapped_column(String(128), nullable=False)
    message: Mapped[str | None] = mapped_column(Text)
    status: Mapped[InviteStatus] = mapped_column(nullable=False, default=InviteStatus.PENDING)
    invited_by: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)
    accepted_at: Mapped[datetime | None] = mapped_column()


class DataRoomAudit(TimestampedModel):
    """Append-only audit trail. No updated_at, never updated or deleted."""

    __tablename__ = "data_room_audit"
    __table_args__ = (
        Index("ix_data_room_audit_room_created", "data_room_id", "created_at"),
        Index("ix_data_room_audit_actor_id", "actor_id"),
        Index("ix_data_room_audit_action", "action"),
    )

    data_room_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("data_rooms.id", ondelete="CASCADE"),
        nullable=False,
    )
    actor_id: Mapped[uuid.UUID | None] = mapped_column(Uuid)
    actor_email: Mapped[str | None] = mapped_column(String(320))
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    target_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[uuid.UUID | None] = mapped_column(Uuid)
    meta: Mapped[dict[str, Any] | None] = mapped_column(JSONType)
