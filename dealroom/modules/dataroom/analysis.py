"""AI document analysis: summary, 0-100 readiness score and typed findings per version.

Analysis runs in a background task with its own session after the triggering
request commits. It is attempted once; any failure is stored as ``failed``.
"""

import asyncio
import io
import uuid
from typing import Any

import structlog
from PyPDF2 import PdfReader
from sqlalchemy.ext.asyncio import AsyncSession

from dealroom.core import database
from dealroom.core.config import settings
from dealroom.core.database import utcnow
from dealroom.core.errors import Conflict, NotFound
from dealroom.models.dataroom import DataRoomDocument, DataRoomDocumentVersion
from dealroom.models.enums import (
    AnalysisFindingType,
    AnalysisStatus,
    AuditAction,
    AuditTargetType,
    VirusScanStatus,
)
from dealroom.modules.dataroom import access, audit, storage
from dealroom.modules.dataroom.access import AccessAction
from dealroom.modules.dataroom.service import get_room_or_raise, require_access
from dealroom.schemas.auth import Identity
from dealroom.services.llm import call_llm, parse_json_response

logger = structlog.get_logger()

PASSING_SCORE = 70
MAX_FINDINGS = 20

_SYSTEM_PROMPT = (
    "You review documents shared in an M&A data room for a company sale. "
    "Respond with a JSON object only: "
    '{"summary": string, "score": integer 0-100, '
    '"findings": [{"type": "success"|"warning"|"error"|"info", "message": string}]}. '
    "The score reflects how complete and buyer-ready the document is."
)

# Strong references so running tasks are not garbage collected
_background_tasks: set[asyncio.Task] = set()


def _is_pdf(mime_type: str, file_name: str) -> bool:
    return mime_type == "application/pdf" or file_name.lower().endswith(".pdf")


def _extract_text(raw: bytes, mime_type: str, file_name: str) -> str:
    if _is_pdf(mime_type, file_name):
        reader = PdfReader(io.BytesIO(raw))
        parts = [page.extract_text() or "" for page in reader.pages]
        return "\n".join(p for p in parts if p)
    if mime_type.startswith("text/") or mime_type in ("application/json", "application/csv"):
        return raw.decode("utf-8", errors="replace")
    return ""


def normalize_result(result: dict[str, Any]) -> tuple[str, int, list[dict[str, str]]]:
    """Clamp the score, keep only known finding types, cap the finding count."""
    summary = str(result.get("summary") or "").strip()
    try:
        score = int(result.get("score", 0))
    except (TypeError, ValueError):
        score = 0
    score = max(0, min(100, score))

    allowed = {t.value for t in AnalysisFindingType}
    findings: list[dict[str, str]] = []
    for item in result.get("findings") or []:
        if not isinstance(item, dict):
            continue
        finding_type = str(item.get("type", "")).lower()
        message = str(item.get("message") or "").strip()
        if finding_type in allowed and message:
            findings.append({"type": finding_type, "message": message})
    return summary, score, findings[:MAX_FINDINGS]


async def _analyze(version: DataRoomDocumentVersion) -> tuple[str, int, list[dict[str, str]]]:
    max_chars = settings.ANALYSIS_MAX_CHARS
    # PDFs need the trailer at the end of the file, text is read as a prefix
    max_bytes = None if _is_pdf(version.mime_type, version.file_name) else max_chars * 4
    raw = await asyncio.to_thread(storage.read_object, version.storage_key, max_bytes)
    text = await asyncio.to_thread(_extract_text, raw, version.mime_type, version.file_name)
    if not text.strip():
        text = f"[No extractable text. File name: {version.file_name}, type: {version.mime_type}]"

    prompt = (
        f"Document: {version.file_name}\n"
        f"Version: {version.version}\n\n"
        f"{text[:max_chars]}"
    )
    content = await call_llm(
        prompt=prompt,
        system=_SYSTEM_PROMPT,
        task_type="dataroom_document_analysis",
        max_tokens=1500,
        temperature=0.2,
    )
    return normalize_result(parse_json_response(content))


async def run_analysis(version_id: uuid.UUID) -> None:
    """Background entry point: analyze one version and persist the outcome."""
    async with database.async_session_factory() as db:
        version = await db.get(DataRoomDocumentVersion, version_id)
        if version is None:
            logger.warning("dataroom_analysis_version_missing", version_id=str(version_id))
            return
        try:
            summary, score, findings = await _analyze(version)
        except Exception:
            logger.exception("dataroom_analysis_failed", version_id=str(version_id))
            version.analysis_status = AnalysisStatus.FAILED
        else:
            version.analysis_summary = summary
            version.analysis_score = score
            version.analysis_findings = findings
            version.analysis_status = (
                AnalysisStatus.OK if score >= PASSING_SCORE else AnalysisStatus.WARNINGS
            )
            logger.info("dataroom_analysis_completed", version_id=str(version_id), score=score)
        version.analyzed_at = utcnow()
        await db.commit()


def _schedule(version_id: uuid.UUID) -> asyncio.Task:
    task = asyncio.create_task(run_analysis(version_id))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


async def _get_version_in_room(
    db: AsyncSession, data_room_id: uuid.UUID, version_id: uuid.UUID
) -> tuple[DataRoomDocumentVersion, DataRoomDocument]:
    version = await db.get(DataRoomDocumentVersion, version_id)
    if version is None:
        raise NotFound("Document version not found")
    document = await db.get(DataRoomDocument, version.document_id)
    if document is None or document.data_room_id != data_room_id:
        raise NotFound("Document version not found")
    return version, document


async def trigger_analysis(
    db: AsyncSession,
    identity: Identity,
    data_room_id: uuid.UUID,
    version_id: uuid.UUID,
) -> AnalysisStatus:
    """Mark the version as analyzing and start the analysis once this request commits."""
    room = await get_room_or_raise(db, data_room_id)
    await require_access(db, room, identity, AccessAction.UPLOAD)
    version, document = await _get_version_in_room(db, room.id, version_id)

    if version.virus_scan is VirusScanStatus.PENDING:
        raise Conflict("File is still being scanned")
    if version.virus_scan is VirusScanStatus.BLOCKED:
        raise Conflict("File blocked by virus scan")

    version.analysis_status = AnalysisStatus.ANALYZING
    await db.flush()

    audit.record(
        db, room.id, identity, AuditAction.ANALYZE, AuditTargetType.DOCUMENT_VERSION, version.id,
        {"document_id": str(document.id)},
    )

    async def _start(committed: bool) -> None:
        if committed:
            _schedule(version.id)

    database.add_after_transaction_hook(db, _start)
    return version.analysis_status


async def get_analysis(
    db: AsyncSession,
    identity: Identity,
    data_room_id: uuid.UUID,
    version_id: uuid.UUID,
) -> dict[str, Any]:
    room = await get_room_or_raise(db, data_room_id)
    version, document = await _get_version_in_room(db, room.id, version_id)
    decision = await access.evaluate(db, room, identity, AccessAction.VIEW, document, version)
    decision.raise_if_denied()
    return {
        "status": version.analysis_status,
        "summary": version.analysis_summary,
        "score": version.analysis_score,
        "findings": version.analysis_findings or [],
        "analyzed_at": version.analyzed_at,
    }
