"""create_data_room_tables

Revision ID: c4d5e6f7a8b9
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "c4d5e6f7a8b9"
down_revision = None
branch_labels = None
depends_on = None

_ROLE = ("OWNER", "EDITOR", "VIEWER")


def _uuid() -> postgresql.UUID:
    return postgresql.UUID(as_uuid=True)


def _pk() -> sa.Column:
    return sa.Column("id", _uuid(), server_default=sa.text("gen_random_uuid()"), nullable=False)


def _timestamps(updated: bool = True) -> list[sa.Column]:
    cols = [sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()"), nullable=False)]
    if updated:
        cols.append(sa.Column("updated_at", sa.DateTime(), server_default=sa.text("now()"), nullable=False))
    return cols


def upgrade() -> None:
    op.create_table(
        "users",
        _pk(),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean, server_default="true", nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "listings",
        _pk(),
        sa.Column("user_id", _uuid(), nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("anonymous_title", sa.String(500), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_listings_user_id", "listings", ["user_id"])

    op.create_table(
        "notifications",
        _pk(),
        sa.Column("user_id", _uuid(), nullable=False),
        sa.Column(
            "type",
            sa.Enum("DATAROOM_INVITE", "DATAROOM_ACCESS_GRANTED", "DOCUMENT_BLOCKED", name="notificationtype"),
            nullable=False,
        ),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("link", sa.String(1000), nullable=True),
        sa.Column("is_read", sa.Boolean, server_default="false", nullable=False),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_notifications_user_id_is_read", "notifications", ["user_id", "is_read"])

    op.create_table(
        "data_rooms",
        _pk(),
        sa.Column("listing_id", _uuid(), nullable=False),
        sa.Column("nda_required", sa.Boolean, server_default="true", nullable=False),
        sa.Column("download_enabled", sa.Boolean, server_default="true", nullable=False),
        sa.Column("security_settings", postgresql.JSONB, nullable=True),
        sa.Column("created_by", _uuid(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["listing_id"], ["listings.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("listing_id", name="uq_data_rooms_listing_id"),
    )

    op.create_table(
        "data_room_permissions",
        _pk(),
        sa.Column("data_room_id", _uuid(), nullable=False),
        sa.Column("user_id", _uuid(), nullable=False),
        sa.Column("role", sa.Enum(*_ROLE, name="dataroomrole"), nullable=False),
        sa.Column("invited_by", _uuid(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["data_room_id"], ["data_rooms.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("data_room_id", "user_id", name="uq_data_room_permissions_room_user"),
    )
    op.create_index("ix_data_room_permissions_user_id", "data_room_permissions", ["user_id"])

    op.create_table(
        "data_room_folders",
        _pk(),
        sa.Column("data_room_id", _uuid(), nullable=False),
        sa.Column("parent_id", _uuid(), nullable=True),
        sa.Column("name", sa.String(80), nullable=False),
        sa.Column("path", sa.String(2000), nullable=False),
        sa.Column("order", sa.Integer, server_default="0", nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["data_room_id"], ["data_rooms.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["parent_id"], ["data_room_folders.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_data_room_folders_room_parent", "data_room_folders", ["data_room_id", "parent_id"])

    op.create_table(
        "data_room_documents",
        _pk(),
        sa.Column("data_room_id", _uuid(), nullable=False),
        sa.Column("folder_id", _uuid(), nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column(
            "status",
            sa.Enum("PENDING_SCAN", "READY", "BLOCKED", name="documentstatus"),
            nullable=False,
        ),
        sa.Column(
            "visibility",
            sa.Enum("ALL", "NDA_ONLY", "OWNER_ONLY", "CUSTOM", name="documentvisibility"),
            nullable=False,
        ),
        sa.Column("download_blocked", sa.Boolean, server_default="false", nullable=False),
        sa.Column("watermark_required", sa.Boolean, server_default="false", nullable=False),
        sa.Column("current_version_id", _uuid(), nullable=True),
        sa.Column("created_by", _uuid(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["data_room_id"], ["data_rooms.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["folder_id"], ["data_room_folders.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_data_room_documents_room_id", "data_room_documents", ["data_room_id"])
    op.create_index("ix_data_room_documents_folder_id", "data_room_documents", ["folder_id"])

    op.create_table(
        "data_room_document_versions",
        _pk(),
        sa.Column("document_id", _uuid(), nullable=False),
        sa.Column("version", sa.Integer, nullable=False),
        sa.Column("file_name", sa.String(500), nullable=False),
        sa.Column("mime_type", sa.String(255), nullable=False),
        sa.Column("size", sa.BigInteger, nullable=False),
        sa.Column("storage_key", sa.String(1000), nullable=False),
        sa.Column("uploaded_by", _uuid(), nullable=False),
        sa.Column(
            "virus_scan",
            sa.Enum("PENDING", "CLEAN", "BLOCKED", name="virusscanstatus"),
            nullable=False,
        ),
        sa.Column("scan_reason", sa.Text, nullable=True),
        sa.Column("scanned_at", sa.DateTime(), nullable=True),
        sa.Column(
            "analysis_status",
            sa.Enum("ANALYZING", "OK", "WARNINGS", "FAILED", name="analysisstatus"),
            nullable=True,
        ),
        sa.Column("analysis_summary", sa.Text, nullable=True),
        sa.Column("analysis_score", sa.Integer, nullable=True),
        sa.Column("analysis_findings", postgresql.JSONB, nullable=True),
        sa.Column("analyzed_at", sa.DateTime(), nullable=True),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(["document_id"], ["data_room_documents.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("document_id", "version", name="uq_document_versions_document_version"),
        sa.UniqueConstraint("storage_key", name="uq_document_versions_storage_key"),
    )

    op.create_table(
        "data_room_document_grants",
        _pk(),
        sa.Column("document_id", _uuid(), nullable=False),
        sa.Column("user_id", _uuid(), nullable=True),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("created_by", _uuid(), nullable=True),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(["document_id"], ["data_room_documents.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("document_id", "user_id", name="uq_document_grants_document_user"),
        sa.UniqueConstraint("document_id", "email", name="uq_document_grants_document_email"),
    )

    op.create_table(
        "data_room_nda_acceptances",
        _pk(),
        sa.Column("data_room_id", _uuid(), nullable=False),
        sa.Column("user_id", _uuid(), nullable=True),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("accepted_at", sa.DateTime(), nullable=False),
        sa.Column("nda_version", sa.String(50), nullable=False),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.String(1000), nullable=True),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(["data_room_id"], ["data_rooms.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("data_room_id", "user_id", name="uq_nda_acceptances_room_user"),
        sa.UniqueConstraint("data_room_id", "email", name="uq_nda_acceptances_room_email"),
    )

    op.create_table(
        "data_room_invites",
        _pk(),
        sa.Column("data_room_id", _uuid(), nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("role", postgresql.ENUM(*_ROLE, name="dataroomrole", create_type=False), nullable=False),
        sa.Column("token", sa.String(128), nullable=False),
        sa.Column("message", sa.Text, nullable=True),
        sa.Column(
            "status",
            sa.Enum("PENDING", "ACCEPTED", "EXPIRED", "REVOKED", name="invitestatus"),
            nullable=False,
        ),
        sa.Column("invited_by", _uuid(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("accepted_at", sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["data_room_id"], ["data_rooms.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("token", name="uq_data_room_invites_token"),
    )
    op.create_index("ix_data_room_invites_room_email", "data_room_invites", ["data_room_id", "email"])

    op.create_table(
        "data_room_audit",
        _pk(),
        sa.Column("data_room_id", _uuid(), nullable=False),
        sa.Column("actor_id", _uuid(), nullable=True),
        sa.Column("actor_email", sa.String(320), nullable=True),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("target_type", sa.String(50), nullable=False),
        sa.Column("target_id", _uuid(), nullable=True),
        sa.Column("meta", postgresql.JSONB, nullable=True),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(["data_room_id"], ["data_rooms.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_data_room_audit_room_created", "data_room_audit", ["data_room_id", "created_at"])
    op.create_index("ix_data_room_audit_actor_id", "data_room_audit", ["actor_id"])
    op.create_index("ix_data_room_audit_action", "data_room_audit", ["action"])


def downgrade() -> None:
    op.drop_table("data_room_audit")
    op.drop_table("data_room_invites")
    op.drop_table("data_room_nda_acceptances")
    op.drop_table("data_room_document_grants")
    op.drop_table("data_room_document_versions")
    op.drop_table("data_room_documents")
    op.drop_table("data_room_folders")
    op.drop_table("data_room_permissions")
    op.drop_table("data_rooms")
    op.drop_table("notifications")
    op.drop_table("listings")
    op.drop_table("users")
    for name in (
        "invitestatus",
        "analysisstatus",
        "virusscanstatus",
        "documentvisibility",
        "documentstatus",
        "dataroomrole",
        "notificationtype",
    ):
        sa.Enum(name=name).drop(op.get_bind(), checkfirst=True)
