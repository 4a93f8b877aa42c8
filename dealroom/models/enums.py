"""Enumerations shared by models, schemas and services."""

import enum


class DataRoomRole(str, enum.Enum):
    OWNER = "OWNER"
    EDITOR = "EDITOR"
    VIEWER = "VIEWER"


class DocumentVisibility(str, enum.Enum):
    ALL = "ALL"
    NDA_ONLY = "NDA_ONLY"
    OWNER_ONLY = "OWNER_ONLY"
    CUSTOM = "CUSTOM"


class DocumentStatus(str, enum.Enum):
    PENDING_SCAN = "pending_scan"
    READY = "ready"
    BLOCKED = "blocked"


class VirusScanStatus(str, enum.Enum):
    PENDING = "pending"
    CLEAN = "clean"
    BLOCKED = "blocked"


class AnalysisStatus(str, enum.Enum):
    ANALYZING = "analyzing"
    OK = "ok"
    WARNINGS = "warnings"
    FAILED = "failed"


class AnalysisFindingType(str, enum.Enum):
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
    INFO = "info"


class InviteStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    EXPIRED = "EXPIRED"
    REVOKED = "REVOKED"


class AuditAction(str, enum.Enum):
    ROOM_INIT = "room_init"
    FOLDER_CREATE = "folder_create"
    UPLOAD = "upload"
    VERSION_UPLOAD = "version_upload"
    VIEW = "view"
    VIEW_DENIED = "view_denied"
    DOWNLOAD = "download"
    DOWNLOAD_DENIED = "download_denied"
    POLICY_READ = "policy_read"
    POLICY_CHANGE = "policy_change"
    DELETE = "delete"
    SETTINGS_CHANGE = "settings_change"
    NDA_ACCEPT = "nda_accept"
    INVITE_SENT = "invite_sent"
    INVITE_ACCEPTED = "invite_accepted"
    VIRUS_SCAN = "virus_scan"
    ANALYZE = "analyze"


class AuditTargetType(str, enum.Enum):
    ROOM = "dataRoom"
    FOLDER = "folder"
    DOCUMENT = "document"
    DOCUMENT_VERSION = "documentVersion"
    NDA = "nda"
    INVITE = "invite"


class NotificationType(str, enum.Enum):
    DATAROOM_INVITE = "dataroom_invite"
    DATAROOM_ACCESS_GRANTED = "dataroom_access_granted"
    DOCUMENT_BLOCKED = "document_blocked"
