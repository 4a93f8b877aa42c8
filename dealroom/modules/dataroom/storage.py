"""Object storage access: storage keys and short-lived presigned URLs."""

import re
import time
import uuid
from urllib.parse import quote, urlencode

import boto3
import structlog
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from dealroom.core.config import settings
from dealroom.core.errors import UpstreamFailure
from dealroom.core.security import hmac_sha256_hex

logger = structlog.get_logger()

_EXT_RE = re.compile(r"[^a-z0-9]")


# ── S3 Client ────────────────────────────────────────────────────────────────


def _get_s3_client():
    """Create a boto3 S3 client configured for MinIO / AWS."""
    return boto3.client(
        "s3",
        endpoint_url=settings.AWS_S3_ENDPOINT_URL or None,
        aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
        aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
        region_name=settings.AWS_S3_REGION,
        config=BotoConfig(signature_version="s3v4"),
    )


def build_storage_key(data_room_id: uuid.UUID, file_name: str) -> str:
    """Server-generated key under the room namespace: dataroom/{room}/{uuid}.{ext}."""
    ext = ""
    if "." in file_name:
        ext = _EXT_RE.sub("", file_name.rsplit(".", 1)[1].lower())[:10]
    return f"dataroom/{data_room_id}/{uuid.uuid4()}.{ext or 'bin'}"


def _content_disposition(file_name: str, inline: bool) -> str:
    kind = "inline" if inline else "attachment"
    ascii_name = file_name.encode("ascii", "ignore").decode().replace('"', "") or "download"
    return f"{kind}; filename=\"{ascii_name}\"; filename*=UTF-8''{quote(file_name)}"


def issue_upload_url(storage_key: str, mime_type: str) -> tuple[str, int]:
    """Presigned PUT bound to the key and content type, server-side encrypted."""
    ttl = settings.PRESIGNED_URL_TTL_SECONDS
    try:
        url = _get_s3_client().generate_presigned_url(
            "put_object",
            Params={
                "Bucket": settings.AWS_S3_BUCKET,
                "Key": storage_key,
                "ContentType": mime_type,
                "ServerSideEncryption": "AES256",
            },
            ExpiresIn=ttl,
        )
    except (BotoCoreError, ClientError) as e:
        logger.error("presigned_upload_failed", key=storage_key, error=str(e))
        raise UpstreamFailure("Could not issue upload URL") from e
    return url, ttl


def issue_download_url(
    storage_key: str,
    file_name: str,
    mime_type: str,
    inline: bool = False,
) -> tuple[str, int]:
    """Presigned GET with the original file name as content disposition."""
    ttl = settings.PRESIGNED_URL_TTL_SECONDS
    try:
        url = _get_s3_client().generate_presigned_url(
            "get_object",
            Params={
                "Bucket": settings.AWS_S3_BUCKET,
                "Key": storage_key,
                "ResponseContentDisposition": _content_disposition(file_name, inline),
                "ResponseContentType": mime_type,
            },
            ExpiresIn=ttl,
        )
    except (BotoCoreError, ClientError) as e:
        logger.error("presigned_download_failed", key=storage_key, error=str(e))
        raise UpstreamFailure("Could not issue download URL") from e
    return url, ttl


def watermark_enabled() -> bool:
    return bool(settings.WATERMARK_BASE_URL and settings.WATERMARK_SIGNING_SECRET)


def issue_watermark_url(storage_key: str, subject: str) -> tuple[str, int]:
    """Signed URL for the watermarking proxy, which stamps ``subject`` onto the file.

    The signature covers ``key|subject|ts`` so the proxy can reject tampered
    or stale links.
    """
    ts = int(time.time())
    sig = hmac_sha256_hex(settings.WATERMARK_SIGNING_SECRET, f"{storage_key}|{subject}|{ts}")
    query = urlencode({
        "bucket": settings.AWS_S3_BUCKET,
        "key": storage_key,
        "subject": subject,
        "ts": ts,
        "sig": sig,
    })
    return f"{settings.WATERMARK_BASE_URL.rstrip('/')}?{query}", settings.PRESIGNED_URL_TTL_SECONDS


def read_object(storage_key: str, max_bytes: int | None = None) -> bytes:
    """Fetch object bytes (used by document analysis)."""
    params = {"Bucket": settings.AWS_S3_BUCKET, "Key": storage_key}
    if max_bytes:
        params["Range"] = f"bytes=0-{max_bytes - 1}"
    try:
        response = _get_s3_client().get_object(**params)
        return response["Body"].read()
    except (BotoCoreError, ClientError) as e:
        raise UpstreamFailure("Could not read stored object") from e


def delete_objects(storage_keys: list[str]) -> None:
    """Best-effort delete; orphaned objects are logged, not raised."""
    if not storage_keys:
        return
    try:
        _get_s3_client().delete_objects(
            Bucket=settings.AWS_S3_BUCKET,
            Delete={"Objects": [{"Key": k} for k in storage_keys], "Quiet": True},
        )
    except (BotoCoreError, ClientError) as e:
        logger.warning("dataroom_object_delete_failed", keys=storage_keys, error=str(e))
