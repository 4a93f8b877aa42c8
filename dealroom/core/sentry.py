"""Sentry initialisation for the data room API."""

import structlog
import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.httpx import HttpxIntegration
from sentry_sdk.integrations.redis import RedisIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

logger = structlog.get_logger()

# Scan callbacks and presigned URLs carry bearer secrets in these headers
_SENSITIVE_HEADERS = {"authorization", "cookie", "x-api-key", "x-forwarded-for"}


def _scrub_sensitive_data(event: dict, hint: dict) -> dict:
    request = event.get("request", {})
    headers = request.get("headers", {})
    for header in list(headers):
        if header.lower() in _SENSITIVE_HEADERS:
            headers[header] = "[REDACTED]"
    if "query_string" in request:
        request["query_string"] = "[REDACTED]"
    return event


def init_sentry(
    dsn: str | None,
    environment: str = "development",
    release: str | None = None,
) -> None:
    """Initialise Sentry before the FastAPI app is created.

    No-op when dsn is None or empty.
    """
    if not dsn:
        logger.info("sentry_disabled", reason="SENTRY_DSN not set")
        return

    is_prod = environment == "production"

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        release=release,
        traces_sample_rate=0.1 if is_prod else 1.0,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
            RedisIntegration(),
            HttpxIntegration(),
        ],
        send_default_pii=False,
        before_send=_scrub_sensitive_data,
    )
    logger.info("sentry_initialized", environment=environment)
