from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

import structlog
from fastapi import APIRouter, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

from dealroom.core import database
from dealroom.core.config import settings
from dealroom.core.errors import (
    DataRoomError,
    dataroom_exception_handler,
    global_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from dealroom.core.sentry import init_sentry
from dealroom.middleware.security import RequestBodySizeLimitMiddleware, SecurityHeadersMiddleware

import dealroom.models  # noqa: F401 register all models at startup

from dealroom.modules.dataroom.router import router as dataroom_router

# Sentry must be initialised before the FastAPI app is created
init_sentry(settings.SENTRY_DSN, settings.SENTRY_ENVIRONMENT, settings.APP_VERSION)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None]:
    logger.info("Starting Data Room API", env=settings.APP_ENV)
    yield
    logger.info("Shutting down Data Room API")
    await database.engine.dispose()


_is_prod = settings.APP_ENV == "production"

app = FastAPI(
    title="Listing Data Room API",
    description="NDA-gated document sharing for business-for-sale listings.",
    version=settings.APP_VERSION or "0.1.0",
    docs_url=None if _is_prod else "/docs",
    redoc_url=None if _is_prod else "/redoc",
    openapi_url=None if _is_prod else "/openapi.json",
    lifespan=lifespan,
)

app.add_exception_handler(DataRoomError, dataroom_exception_handler)  # type: ignore[arg-type]
app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
app.add_exception_handler(Exception, global_exception_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "Accept", "X-Request-ID"],
    expose_headers=["Retry-After", "X-RateLimit-Limit", "X-RateLimit-Window"],
)
# Added last = outermost
app.add_middleware(
    RequestBodySizeLimitMiddleware,  # type: ignore[arg-type]
    max_bytes=settings.MAX_REQUEST_BODY_BYTES,
)
app.add_middleware(
    SecurityHeadersMiddleware,  # type: ignore[arg-type]
    is_production=_is_prod,
)


@app.middleware("http")
async def add_version_header(request: Request, call_next) -> Response:
    response = await call_next(request)
    response.headers["X-API-Version"] = "v1"
    return response


@app.get("/health")
async def health_check() -> dict:
    """Probe the database."""
    checks: dict[str, dict] = {}
    try:
        async with database.async_session_factory() as db:
            await db.execute(text("SELECT 1"))
        checks["database"] = {"status": "healthy"}
    except Exception as exc:  # noqa: BLE001
        checks["database"] = {"status": "unhealthy", "error": str(exc)}

    overall = "healthy" if all(c["status"] == "healthy" for c in checks.values()) else "degraded"
    return {"status": overall, "service": "dealroom-api", "checks": checks}


api_v1 = APIRouter(prefix="/v1")
api_v1.include_router(dataroom_router)

app.include_router(api_v1)
