"""Shared test fixtures for the data room API test suite."""

import os

# The app engine is built at import time; point it at SQLite before importing it
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./dealroom-test.db")
os.environ.setdefault("APP_ENV", "test")

import uuid
from collections.abc import AsyncGenerator
from unittest.mock import MagicMock, patch

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import dealroom.models  # noqa: F401 register all models
from dealroom.auth.dependencies import get_current_user
from dealroom.core import database
from dealroom.core.config import settings
from dealroom.core.database import Base
from dealroom.main import app
from dealroom.models.core import Listing, User
from dealroom.models.dataroom import DataRoomPermission
from dealroom.models.enums import DataRoomRole
from dealroom.modules.dataroom.rate_limit import InMemoryRateCounter, get_rate_counter
from dealroom.schemas.auth import Identity

# ── Test Data ────────────────────────────────────────────────────────────────

OWNER_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")
EDITOR_ID = uuid.UUID("00000000-0000-0000-0000-000000000002")
VIEWER_ID = uuid.UUID("00000000-0000-0000-0000-000000000003")
OUTSIDER_ID = uuid.UUID("00000000-0000-0000-0000-000000000004")
LISTING_ID = uuid.UUID("00000000-0000-0000-0000-000000000010")

OWNER = Identity(user_id=OWNER_ID, email="owner@example.com")
EDITOR = Identity(user_id=EDITOR_ID, email="editor@example.com")
VIEWER = Identity(user_id=VIEWER_ID, email="viewer@example.com")
OUTSIDER = Identity(user_id=OUTSIDER_ID, email="outsider@example.com")

SCAN_TOKEN = "scan-webhook-test-token"
PRESIGNED_URL = "https://s3.example.com/presigned-url"


def _override_auth(identity: Identity):
    """Create a get_current_user override for the given identity."""
    async def _override():
        return identity
    return _override


def login_as(identity: Identity) -> None:
    app.dependency_overrides[get_current_user] = _override_auth(identity)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
async def session_factory(tmp_path, monkeypatch) -> AsyncGenerator[async_sessionmaker[AsyncSession]]:
    """Fresh SQLite database per test, swapped in as the app's session factory."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'dealroom.db'}",
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    monkeypatch.setattr(database, "async_session_factory", factory)
    monkeypatch.setattr(settings, "SCAN_WEBHOOK_TOKEN", SCAN_TOKEN)
    monkeypatch.setattr(settings, "EMAIL_FROM", "")
    monkeypatch.setattr(settings, "DATAROOM_WEBHOOK_URL", "")
    monkeypatch.setattr(settings, "WATERMARK_BASE_URL", "")
    yield factory
    await engine.dispose()


@pytest.fixture
async def seed_data(session_factory: async_sessionmaker[AsyncSession]) -> None:
    """Seed the users and the listing every data room hangs off."""
    async with session_factory() as db:
        db.add_all([
            User(id=OWNER_ID, email="owner@example.com", full_name="Olivia Owner"),
            User(id=EDITOR_ID, email="editor@example.com", full_name="Eddie Editor"),
            User(id=VIEWER_ID, email="viewer@example.com", full_name="Vera Viewer"),
            User(id=OUTSIDER_ID, email="outsider@example.com", full_name=None),
        ])
        await db.flush()
        db.add(Listing(
            id=LISTING_ID,
            user_id=OWNER_ID,
            title="Acme Plumbing Ltd",
            anonymous_title="Established plumbing business, North West",
        ))
        await db.commit()


@pytest.fixture
def mock_s3():
    """Mock boto3 S3 client used by the storage module."""
    mock_client = MagicMock()
    mock_client.generate_presigned_url.return_value = PRESIGNED_URL

    with patch("dealroom.modules.dataroom.storage.boto3") as mock_boto3:
        mock_boto3.client.return_value = mock_client
        yield mock_client


@pytest.fixture
def rate_counter() -> InMemoryRateCounter:
    return InMemoryRateCounter(window=settings.UPLOAD_RATE_WINDOW_SECONDS)


@pytest.fixture
async def client(seed_data, mock_s3, rate_counter) -> AsyncGenerator[AsyncClient]:
    """AsyncClient against the app, authenticated as the listing owner."""
    app.dependency_overrides[get_rate_counter] = lambda: rate_counter
    login_as(OWNER)

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


# ── Flow helpers ─────────────────────────────────────────────────────────────


async def init_room(client: AsyncClient) -> dict:
    """Initialize the listing's data room as the owner; returns the response body."""
    login_as(OWNER)
    resp = await client.post("/v1/dataroom/init", json={"listing_id": str(LISTING_ID)})
    assert resp.status_code == 200, resp.text
    return resp.json()


async def add_member(
    session_factory: async_sessionmaker[AsyncSession],
    data_room_id: str,
    user_id: uuid.UUID,
    role: DataRoomRole,
) -> None:
    async with session_factory() as db:
        db.add(DataRoomPermission(
            data_room_id=uuid.UUID(data_room_id),
            user_id=user_id,
            role=role,
            invited_by=OWNER_ID,
        ))
        await db.commit()


async def upload_document(
    client: AsyncClient,
    file_name: str = "financials-2025.pdf",
    mime_type: str = "application/pdf",
    size: int = 2048,
    **extra,
) -> dict:
    """Request an upload URL as the owner; returns {document_id, version_id, ...}."""
    login_as(OWNER)
    resp = await client.post("/v1/dataroom/upload-url", json={
        "listing_id": str(LISTING_ID),
        "file_name": file_name,
        "mime_type": mime_type,
        "size": size,
        **extra,
    })
    assert resp.status_code == 200, resp.text
    return resp.json()


async def report_scan(client: AsyncClient, version_id: str, status: str = "clean", reason: str | None = None):
    return await client.post(
        "/v1/dataroom/scan/callback",
        json={"version_id": version_id, "status": status, "reason": reason},
        headers={"Authorization": f"Bearer {SCAN_TOKEN}"},
    )


async def accept_nda(client: AsyncClient, identity: Identity, data_room_id: str):
    login_as(identity)
    return await client.post("/v1/dataroom/nda/accept", json={"data_room_id": data_room_id})
