"""SQLAlchemy models package: import all models so Base.metadata is populated."""

from dealroom.models.base import BaseModel, ModelMixin, TimestampedModel
from dealroom.models.core import Listing, Notification, User
from dealroom.models.dataroom import (
    DataRoom,
    DataRoomAudit,
    DataRoomDocument,
    DataRoomDocumentGrant,
    DataRoomDocumentVersion,
    DataRoomFolder,
    DataRoomInvite,
    DataRoomNDAAcceptance,
    DataRoomPermission,
)
from dealroom.models.enums import (
    AnalysisFindingType,
    AnalysisStatus,
    AuditAction,
    AuditTargetType,
    DataRoomRole,
    DocumentStatus,
    DocumentVisibility,
    InviteStatus,
    NotificationType,
    VirusScanStatus,
)

__all__ = [
    "AnalysisFindingType",
    "AnalysisStatus",
    "AuditAction",
    "AuditTargetType",
    "BaseModel",
    "DataRoom",
    "DataRoomAudit",
    "DataRoomDocument",
    "DataRoomDocumentGrant",
    "DataRoomDocumentVersion",
    "DataRoomFolder",
    "DataRoomInvite",
    "DataRoomNDAAcceptance",
    "DataRoomPermission",
    "DataRoomRole",
    "DocumentStatus",
    "DocumentVisibility",
    "InviteStatus",
    "Listing",
    "ModelMixin",
    "Notification",
    "NotificationType",
    "TimestampedModel",
    "User",
    "VirusScanStatus",
]
