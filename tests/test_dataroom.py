"""API tests for the listing data room: rooms, folders, uploads, policies, listing, downloads."""

import uuid

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from dealroom.core.config import settings
from dealroom.models.dataroom import DataRoomDocument, DataRoomDocumentVersion
from dealroom.models.enums import DataRoomRole, DocumentStatus
from tests.conftest import (
    EDITOR,
    EDITOR_ID,
    LISTING_ID,
    OUTSIDER,
    OWNER,
    OWNER_ID,
    PRESIGNED_URL,
    VIEWER,
    VIEWER_ID,
    accept_nda,
    add_member,
    init_room,
    login_as,
    report_scan,
    upload_document,
)

pytestmark = pytest.mark.anyio


async def _viewer_ready(client: AsyncClient, session_factory, room_id: str) -> None:
    """Add VIEWER to the room and accept the NDA on their behalf."""
    await add_member(session_factory, room_id, VIEWER_ID, DataRoomRole.VIEWER)
    resp = await accept_nda(client, VIEWER, room_id)
    assert resp.status_code == 200


async def _set_policy(client: AsyncClient, document_id: str, **body) -> dict:
    login_as(OWNER)
    resp = await client.patch(f"/v1/dataroom/documents/{document_id}", json=body)
    assert resp.status_code == 200, resp.text
    return resp.json()


# ═══════════════════════════════════════════════════════════════════════════════
# ROOM INITIALIZATION
# ═══════════════════════════════════════════════════════════════════════════════


class TestRoomInit:
    async def test_init_creates_room_and_root_folder(self, client: AsyncClient):
        data = await init_room(client)
        assert data["created"] is True

        resp = await client.get(f"/v1/dataroom/{data['data_room_id']}/documents")
        assert resp.status_code == 200
        body = resp.json()
        assert body["role"] == "OWNER"
        assert [f["path"] for f in body["folders"]] == ["/"]
        assert body["folders"][0]["id"] == data["root_folder_id"]

    async def test_init_is_idempotent(self, client: AsyncClient):
        first = await init_room(client)
        second = await init_room(client)
        assert second["created"] is False
        assert second["data_room_id"] == first["data_room_id"]
        assert second["root_folder_id"] == first["root_folder_id"]

    async def test_init_records_owner_permission(self, client: AsyncClient):
        room = await init_room(client)
        resp = await client.get(f"/v1/dataroom/{room['data_room_id']}/members")
        assert resp.status_code == 200
        members = resp.json()
        assert len(members) == 1
        assert members[0]["user_id"] == str(OWNER_ID)
        assert members[0]["role"] == "OWNER"

    async def test_init_by_non_owner_forbidden(self, client: AsyncClient):
        login_as(OUTSIDER)
        resp = await client.post("/v1/dataroom/init", json={"listing_id": str(LISTING_ID)})
        assert resp.status_code == 403
        assert resp.json()["error"] == "forbidden"

    async def test_init_unknown_listing(self, client: AsyncClient):
        resp = await client.post("/v1/dataroom/init", json={"listing_id": str(uuid.uuid4())})
        assert resp.status_code == 404
        assert resp.json()["error"] == "not_found"

    async def test_init_malformed_body(self, client: AsyncClient):
        resp = await client.post("/v1/dataroom/init", json={"listing_id": "not-a-uuid"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_input"

    async def test_members_listing_is_owner_only(self, client: AsyncClient, session_factory):
        room = await init_room(client)
        await add_member(session_factory, room["data_room_id"], EDITOR_ID, DataRoomRole.EDITOR)
        login_as(EDITOR)
        resp = await client.get(f"/v1/dataroom/{room['data_room_id']}/members")
        assert resp.status_code == 403


# ═══════════════════════════════════════════════════════════════════════════════
# FOLDERS
# ═══════════════════════════════════════════════════════════════════════════════


class TestFolders:
    async def test_create_folder_under_root(self, client: AsyncClient):
        room = await init_room(client)
        resp = await client.post("/v1/dataroom/folders", json={
            "data_room_id": room["data_room_id"],
            "name": "  Financial   Statements ",
        })
        assert resp.status_code == 200
        data = resp.json()
        assert data["name"] == "Financial Statements"
        assert data["path"] == "/Financial Statements"
        assert data["parent_id"] == room["root_folder_id"]
        assert data["order"] == 1

    async def test_sibling_order_increments(self, client: AsyncClient):
        room = await init_room(client)
        orders = []
        for name in ("Legal", "Operations", "HR"):
            resp = await client.post("/v1/dataroom/folders", json={
                "data_room_id": room["data_room_id"], "name": name,
            })
            orders.append(resp.json()["order"])
        assert orders == [1, 2, 3]

    async def test_subfolder_path(self, client: AsyncClient):
        room = await init_room(client)
        parent = (await client.post("/v1/dataroom/folders", json={
            "data_room_id": room["data_room_id"], "name": "Finance",
        })).json()
        resp = await client.post("/v1/dataroom/folders", json={
            "data_room_id": room["data_room_id"], "name": "2024", "parent_id": parent["id"],
        })
        assert resp.status_code == 200
        assert resp.json()["path"] == "/Finance/2024"
        assert resp.json()["order"] == 1

    async def test_folder_name_separators_replaced(self, client: AsyncClient):
        room = await init_room(client)
        resp = await client.post("/v1/dataroom/folders", json={
            "data_room_id": room["data_room_id"], "name": "Legal/Contracts\\Leases",
        })
        assert resp.json()["name"] == "Legal-Contracts-Leases"

    async def test_folder_name_capped_at_80(self, client: AsyncClient):
        room = await init_room(client)
        resp = await client.post("/v1/dataroom/folders", json={
            "data_room_id": room["data_room_id"], "name": "x" * 200,
        })
        assert resp.status_code == 200
        assert len(resp.json()["name"]) == 80

    async def test_blank_folder_name_rejected(self, client: AsyncClient):
        room = await init_room(client)
        resp = await client.post("/v1/dataroom/folders", json={
            "data_room_id": room["data_room_id"], "name": "   ",
        })
        assert resp.status_code == 400

    async def test_unknown_parent_rejected(self, client: AsyncClient):
        room = await init_room(client)
        resp = await client.post("/v1/dataroom/folders", json={
            "data_room_id": room["data_room_id"], "name": "Orphan", "parent_id": str(uuid.uuid4()),
        })
        assert resp.status_code == 400

    async def test_viewer_cannot_create_folder(self, client: AsyncClient, session_factory):
        room = await init_room(client)
        await _viewer_ready(client, session_factory, room["data_room_id"])
        login_as(VIEWER)
        resp = await client.post("/v1/dataroom/folders", json={
            "data_room_id": room["data_room_id"], "name": "Mine",
        })
        assert resp.status_code == 403

    async def test_unknown_room(self, client: AsyncClient):
        resp = await client.post("/v1/dataroom/folders", json={
            "data_room_id": str(uuid.uuid4()), "name": "Finance",
        })
        assert resp.status_code == 404


# ═══════════════════════════════════════════════════════════════════════════════
# UPLOADS AND VERSIONS
# ═══════════════════════════════════════════════════════════════════════════════


class TestUploads:
    async def test_upload_url_creates_document_and_version_one(self, client: AsyncClient, mock_s3):
        data = await upload_document(client)
        assert data["upload_url"] == PRESIGNED_URL
        assert data["version"] == 1
        assert data["expires_in"] == 300

        call = mock_s3.generate_presigned_url.call_args
        kwargs = call.kwargs
        assert call.args[0] == "put_object"
        assert kwargs["ExpiresIn"] == 300
        assert kwargs["Params"]["ContentType"] == "application/pdf"
        assert kwargs["Params"]["ServerSideEncryption"] == "AES256"
        assert kwargs["Params"]["Key"].endswith(".pdf")

    async def test_first_upload_initializes_room(self, client: AsyncClient, session_factory):
        data = await upload_document(client)
        async with session_factory() as db:
            document = await db.get(DataRoomDocument, uuid.UUID(data["document_id"]))
            assert document.status is DocumentStatus.PENDING_SCAN
            assert document.current_version_id == uuid.UUID(data["version_id"])
            assert document.title == "financials-2025.pdf"

    async def test_upload_into_folder(self, client: AsyncClient, session_factory):
        room = await init_room(client)
        folder = (await client.post("/v1/dataroom/folders", json={
            "data_room_id": room["data_room_id"], "name": "Legal",
        })).json()
        data = await upload_document(client, folder_id=folder["id"])
        async with session_factory() as db:
            document = await db.get(DataRoomDocument, uuid.UUID(data["document_id"]))
            assert str(document.folder_id) == folder["id"]

    async def test_versions_are_numbered_consecutively(self, client: AsyncClient, session_factory):
        data = await upload_document(client)
        versions = [data["version"]]
        for _ in range(2):
            resp = await client.post(f"/v1/dataroom/documents/{data['document_id']}/versions", json={
                "file_name": "financials-2025-rev.pdf", "mime_type": "application/pdf", "size": 4096,
            })
            assert resp.status_code == 200
            versions.append(resp.json()["version"])
        assert versions == [1, 2, 3]

        async with session_factory() as db:
            rows = (await db.execute(
                select(DataRoomDocumentVersion.storage_key).where(
                    DataRoomDocumentVersion.document_id == uuid.UUID(data["document_id"])
                )
            )).scalars().all()
        assert len(set(rows)) == 3

    async def test_new_version_becomes_current_and_pending(self, client: AsyncClient, session_factory):
        data = await upload_document(client)
        await report_scan(client, data["version_id"], "clean")
        resp = await client.post(f"/v1/dataroom/documents/{data['document_id']}/versions", json={
            "file_name": "v2.pdf", "size": 10,
        })
        async with session_factory() as db:
            document = await db.get(DataRoomDocument, uuid.UUID(data["document_id"]))
            assert document.current_version_id == uuid.UUID(resp.json()["version_id"])
            assert document.status is DocumentStatus.PENDING_SCAN

    async def test_viewer_cannot_upload_version(self, client: AsyncClient, session_factory):
        data = await upload_document(client)
        room_id = await _room_id(session_factory, data["document_id"])
        await _viewer_ready(client, session_factory, room_id)
        login_as(VIEWER)
        resp = await client.post(f"/v1/dataroom/documents/{data['document_id']}/versions", json={
            "file_name": "evil.pdf", "size": 10,
        })
        assert resp.status_code == 403

    async def test_editor_can_upload(self, client: AsyncClient, session_factory):
        room = await init_room(client)
        await add_member(session_factory, room["data_room_id"], EDITOR_ID, DataRoomRole.EDITOR)
        login_as(EDITOR)
        resp = await client.post("/v1/dataroom/upload-url", json={
            "listing_id": str(LISTING_ID), "file_name": "lease.docx", "size": 100,
        })
        assert resp.status_code == 200

    async def test_non_owner_cannot_create_room_by_uploading(self, client: AsyncClient):
        login_as(OUTSIDER)
        resp = await client.post("/v1/dataroom/upload-url", json={
            "listing_id": str(LISTING_ID), "file_name": "x.pdf", "size": 10,
        })
        assert resp.status_code == 404

    @pytest.mark.parametrize("size", [0, -1, 500 * 1024 * 1024 + 1])
    async def test_invalid_size_rejected(self, client: AsyncClient, size: int):
        resp = await client.post("/v1/dataroom/upload-url", json={
            "listing_id": str(LISTING_ID), "file_name": "x.pdf", "size": size,
        })
        assert resp.status_code == 400

    async def test_version_for_unknown_document(self, client: AsyncClient):
        resp = await client.post(f"/v1/dataroom/documents/{uuid.uuid4()}/versions", json={
            "file_name": "x.pdf", "size": 10,
        })
        assert resp.status_code == 404

    async def test_upload_rate_limited_per_ip(self, client: AsyncClient, rate_counter):
        ip = "198.51.100.9"
        for _ in range(settings.UPLOAD_RATE_LIMIT):
            await rate_counter.increment(f"ip:{ip}")

        resp = await client.post(
            "/v1/dataroom/upload-url",
            json={"listing_id": str(LISTING_ID), "file_name": "x.pdf", "size": 10},
            headers={"X-Forwarded-For": ip},
        )
        assert resp.status_code == 429
        assert resp.headers["retry-after"] == "60"
        assert resp.json()["error"] == "rate_limited"

        other = await client.post(
            "/v1/dataroom/upload-url",
            json={"listing_id": str(LISTING_ID), "file_name": "x.pdf", "size": 10},
            headers={"X-Forwarded-For": "198.51.100.10"},
        )
        assert other.status_code == 200


async def _room_id(session_factory, document_id: str) -> str:
    async with session_factory() as db:
        document = await db.get(DataRoomDocument, uuid.UUID(document_id))
        return str(document.data_room_id)


# ═══════════════════════════════════════════════════════════════════════════════
# DOCUMENT POLICY
# ═══════════════════════════════════════════════════════════════════════════════


class TestPolicy:
    async def test_default_policy(self, client: AsyncClient):
        data = await upload_document(client)
        resp = await client.get(f"/v1/dataroom/documents/{data['document_id']}/policy")
        assert resp.status_code == 200
        document = resp.json()["document"]
        assert document["visibility"] == "NDA_ONLY"
        assert document["download_blocked"] is False
        assert document["watermark_required"] is False
        assert resp.json()["grants"] == []

    async def test_custom_grants_are_set_exactly(self, client: AsyncClient):
        data = await upload_document(client)
        body = await _set_policy(
            client, data["document_id"],
            visibility="CUSTOM",
            grant_user_ids=[str(VIEWER_ID)],
            grant_emails=[" Partner@Example.com "],
        )
        grants = body["grants"]
        assert body["document"]["visibility"] == "CUSTOM"
        assert {g["user_id"] for g in grants if g["user_id"]} == {str(VIEWER_ID)}
        assert {g["email"] for g in grants if g["email"]} == {"partner@example.com"}

    async def test_reconcile_is_idempotent(self, client: AsyncClient):
        data = await upload_document(client)
        policy = {"visibility": "CUSTOM", "grant_user_ids": [str(VIEWER_ID)], "grant_emails": ["a@b.com"]}
        first = await _set_policy(client, data["document_id"], **policy)
        second = await _set_policy(client, data["document_id"], **policy)
        assert sorted(g["id"] for g in first["grants"]) == sorted(g["id"] for g in second["grants"])

    async def test_reconcile_removes_stale_grants(self, client: AsyncClient):
        data = await upload_document(client)
        await _set_policy(
            client, data["document_id"],
            visibility="CUSTOM", grant_user_ids=[str(VIEWER_ID), str(EDITOR_ID)],
        )
        body = await _set_policy(client, data["document_id"], grant_user_ids=[str(EDITOR_ID)])
        assert [g["user_id"] for g in body["grants"]] == [str(EDITOR_ID)]

    async def test_grants_kept_when_lists_omitted(self, client: AsyncClient):
        data = await upload_document(client)
        await _set_policy(client, data["document_id"], visibility="CUSTOM", grant_user_ids=[str(VIEWER_ID)])
        body = await _set_policy(client, data["document_id"], download_blocked=True)
        assert len(body["grants"]) == 1
        assert body["document"]["download_blocked"] is True

    async def test_leaving_custom_clears_grants(self, client: AsyncClient):
        data = await upload_document(client)
        await _set_policy(client, data["document_id"], visibility="CUSTOM", grant_user_ids=[str(VIEWER_ID)])
        body = await _set_policy(client, data["document_id"], visibility="ALL", grant_user_ids=[str(VIEWER_ID)])
        assert body["grants"] == []

    async def test_viewer_cannot_read_or_change_policy(self, client: AsyncClient, session_factory):
        data = await upload_document(client)
        await _viewer_ready(client, session_factory, await _room_id(session_factory, data["document_id"]))
        login_as(VIEWER)
        assert (await client.get(f"/v1/dataroom/documents/{data['document_id']}/policy")).status_code == 403
        resp = await client.patch(f"/v1/dataroom/documents/{data['document_id']}", json={"visibility": "ALL"})
        assert resp.status_code == 403

    async def test_invalid_visibility(self, client: AsyncClient):
        data = await upload_document(client)
        resp = await client.patch(f"/v1/dataroom/documents/{data['document_id']}", json={"visibility": "PUBLIC"})
        assert resp.status_code == 400

    async def test_unknown_document(self, client: AsyncClient):
        resp = await client.patch(f"/v1/dataroom/documents/{uuid.uuid4()}", json={"visibility": "ALL"})
        assert resp.status_code == 404


# ═══════════════════════════════════════════════════════════════════════════════
# DOCUMENT LISTING
# ═══════════════════════════════════════════════════════════════════════════════


class TestDocumentListing:
    async def test_viewer_needs_nda(self, client: AsyncClient, session_factory):
        room = await init_room(client)
        await add_member(session_factory, room["data_room_id"], VIEWER_ID, DataRoomRole.VIEWER)
        login_as(VIEWER)
        resp = await client.get(f"/v1/dataroom/{room['data_room_id']}/documents")
        assert resp.status_code == 403
        assert resp.json()["detail"] == {"reason": "nda-required"}

    async def test_outsider_gets_generic_denial(self, client: AsyncClient):
        room = await init_room(client)
        login_as(OUTSIDER)
        resp = await client.get(f"/v1/dataroom/{room['data_room_id']}/documents")
        assert resp.status_code == 403
        assert resp.json()["message"] == "No access to this data room"
        assert resp.json()["detail"]["reason"] == "no-access"

    async def test_visibility_filtering(self, client: AsyncClient, session_factory):
        room = await init_room(client)
        visible = await upload_document(client, file_name="teaser.pdf")
        hidden = await upload_document(client, file_name="owner-notes.pdf")
        custom = await upload_document(client, file_name="heads-of-terms.pdf")
        granted = await upload_document(client, file_name="management-accounts.pdf")
        await _set_policy(client, visible["document_id"], visibility="ALL")
        await _set_policy(client, hidden["document_id"], visibility="OWNER_ONLY")
        await _set_policy(client, custom["document_id"], visibility="CUSTOM", grant_emails=["someone@else.com"])
        await _set_policy(client, granted["document_id"], visibility="CUSTOM", grant_emails=["viewer@example.com"])

        await _viewer_ready(client, session_factory, room["data_room_id"])
        login_as(VIEWER)
        resp = await client.get(f"/v1/dataroom/{room['data_room_id']}/documents")
        assert resp.status_code == 200
        titles = {d["title"] for d in resp.json()["documents"]}
        assert titles == {"teaser.pdf", "management-accounts.pdf"}

        login_as(OWNER)
        resp = await client.get(f"/v1/dataroom/{room['data_room_id']}/documents")
        assert len(resp.json()["documents"]) == 4

    async def test_viewer_listing_hides_versions_and_grants(self, client: AsyncClient, session_factory):
        room = await init_room(client)
        await upload_document(client)
        await _viewer_ready(client, session_factory, room["data_room_id"])
        login_as(VIEWER)
        document = (await client.get(f"/v1/dataroom/{room['data_room_id']}/documents")).json()["documents"][0]
        assert document["versions"] is None
        assert document["grants"] is None
        assert document["current_version"]["version"] == 1

        login_as(OWNER)
        document = (await client.get(f"/v1/dataroom/{room['data_room_id']}/documents")).json()["documents"][0]
        assert [v["version"] for v in document["versions"]] == [1]
        assert document["grants"] == []

    async def test_can_download_tracks_scan_state(self, client: AsyncClient, session_factory):
        room = await init_room(client)
        data = await upload_document(client)
        await _viewer_ready(client, session_factory, room["data_room_id"])

        login_as(VIEWER)
        listing = (await client.get(f"/v1/dataroom/{room['data_room_id']}/documents")).json()
        assert listing["documents"][0]["can_download"] is False
        assert listing["documents"][0]["status"] == "pending_scan"

        await report_scan(client, data["version_id"], "clean")
        listing = (await client.get(f"/v1/dataroom/{room['data_room_id']}/documents")).json()
        assert listing["documents"][0]["can_download"] is True
        assert listing["documents"][0]["status"] == "ready"

    async def test_unknown_room(self, client: AsyncClient):
        resp = await client.get(f"/v1/dataroom/{uuid.uuid4()}/documents")
        assert resp.status_code == 404


# ═══════════════════════════════════════════════════════════════════════════════
# DOWNLOADS AND VIEWS
# ═══════════════════════════════════════════════════════════════════════════════


class TestDownloads:
    async def test_viewer_download_flow(self, client: AsyncClient, session_factory):
        room = await init_room(client)
        data = await upload_document(client)
        assert (await report_scan(client, data["version_id"], "clean")).status_code == 200

        await add_member(session_factory, room["data_room_id"], VIEWER_ID, DataRoomRole.VIEWER)
        login_as(VIEWER)
        resp = await client.get("/v1/dataroom/download-url", params={"version_id": data["version_id"]})
        assert resp.status_code == 403
        assert resp.json()["detail"]["reason"] == "nda-required"

        assert (await accept_nda(client, VIEWER, room["data_room_id"])).status_code == 200
        resp = await client.get("/v1/dataroom/download-url", params={"version_id": data["version_id"]})
        assert resp.status_code == 200
        body = resp.json()
        assert body["download_url"] == PRESIGNED_URL
        assert body["expires_in"] == 300
        assert body["file_name"] == "financials-2025.pdf"
        assert body["watermarked"] is False

    async def test_download_by_document_uses_current_version(self, client: AsyncClient, mock_s3):
        data = await upload_document(client)
        v2 = (await client.post(f"/v1/dataroom/documents/{data['document_id']}/versions", json={
            "file_name": "financials-v2.pdf", "size": 10,
        })).json()
        await report_scan(client, v2["version_id"], "clean")

        login_as(OWNER)
        resp = await client.get("/v1/dataroom/download-url", params={"document_id": data["document_id"]})
        assert resp.status_code == 200
        assert resp.json()["file_name"] == "financials-v2.pdf"

        params = mock_s3.generate_presigned_url.call_args.kwargs["Params"]
        assert mock_s3.generate_presigned_url.call_args.args[0] == "get_object"
        assert params["ResponseContentDisposition"].startswith("attachment;")
        assert 'filename="financials-v2.pdf"' in params["ResponseContentDisposition"]

    async def test_download_requires_an_id(self, client: AsyncClient):
        resp = await client.get("/v1/dataroom/download-url")
        assert resp.status_code == 400

    async def test_download_unknown_version(self, client: AsyncClient):
        resp = await client.get("/v1/dataroom/download-url", params={"version_id": str(uuid.uuid4())})
        assert resp.status_code == 404

    async def test_version_document_mismatch(self, client: AsyncClient):
        first = await upload_document(client)
        second = await upload_document(client, file_name="other.pdf")
        resp = await client.get("/v1/dataroom/download-url", params={
            "version_id": first["version_id"], "document_id": second["document_id"],
        })
        assert resp.status_code == 404

    @pytest.mark.parametrize(("status", "reason"), [(None, "scan-pending"), ("blocked", "scan-blocked")])
    async def test_download_waits_for_clean_scan(self, client: AsyncClient, session_factory, status, reason):
        room = await init_room(client)
        data = await upload_document(client)
        if status:
            await report_scan(client, data["version_id"], status, reason="EICAR test signature")
        await _viewer_ready(client, session_factory, room["data_room_id"])

        login_as(VIEWER)
        resp = await client.get("/v1/dataroom/download-url", params={"version_id": data["version_id"]})
        assert resp.status_code == 403
        assert resp.json()["detail"]["reason"] == reason

    async def test_owner_download_before_scan(self, client: AsyncClient):
        data = await upload_document(client)
        resp = await client.get("/v1/dataroom/download-url", params={"version_id": data["version_id"]})
        assert resp.status_code == 200

    async def test_download_blocked_but_view_allowed(self, client: AsyncClient, session_factory, mock_s3):
        room = await init_room(client)
        data = await upload_document(client)
        await report_scan(client, data["version_id"], "clean")
        await _set_policy(client, data["document_id"], download_blocked=True)
        await _viewer_ready(client, session_factory, room["data_room_id"])

        login_as(VIEWER)
        resp = await client.get("/v1/dataroom/download-url", params={"version_id": data["version_id"]})
        assert resp.status_code == 403
        assert resp.json()["detail"]["reason"] == "download-blocked"

        resp = await client.get("/v1/dataroom/view-url", params={"version_id": data["version_id"]})
        assert resp.status_code == 200
        params = mock_s3.generate_presigned_url.call_args.kwargs["Params"]
        assert params["ResponseContentDisposition"].startswith("inline;")

    async def test_view_needs_clean_scan(self, client: AsyncClient, session_factory):
        room = await init_room(client)
        data = await upload_document(client)
        await _viewer_ready(client, session_factory, room["data_room_id"])
        login_as(VIEWER)
        resp = await client.get("/v1/dataroom/view-url", params={"version_id": data["version_id"]})
        assert resp.status_code == 403
        assert resp.json()["detail"]["reason"] == "scan-pending"

    async def test_custom_document_denial_is_generic(self, client: AsyncClient, session_factory):
        room = await init_room(client)
        data = await upload_document(client)
        await report_scan(client, data["version_id"], "clean")
        await _set_policy(client, data["document_id"], visibility="CUSTOM", grant_emails=["x@y.com"])
        await _viewer_ready(client, session_factory, room["data_room_id"])

        login_as(VIEWER)
        resp = await client.get("/v1/dataroom/download-url", params={"version_id": data["version_id"]})
        assert resp.status_code == 403
        assert resp.json()["message"] == "No access to this data room"
        assert resp.json()["detail"]["reason"] == "no-access"

        login_as(OWNER)
        audit = await client.get("/v1/dataroom/audit", params={
            "data_room_id": room["data_room_id"], "action": "download_denied",
        })
        assert audit.json()["logs"][0]["meta"]["reason"] == "not-granted"

    async def test_watermarked_download(self, client: AsyncClient, session_factory, monkeypatch):
        monkeypatch.setattr(settings, "WATERMARK_BASE_URL", "https://wm.example.com/render")
        monkeypatch.setattr(settings, "WATERMARK_SIGNING_SECRET", "wm-secret")
        room = await init_room(client)
        data = await upload_document(client)
        await report_scan(client, data["version_id"], "clean")
        await _set_policy(client, data["document_id"], watermark_required=True)
        await _viewer_ready(client, session_factory, room["data_room_id"])

        login_as(VIEWER)
        resp = await client.get("/v1/dataroom/download-url", params={"version_id": data["version_id"]})
        assert resp.status_code == 200
        body = resp.json()
        assert body["watermarked"] is True
        assert body["download_url"].startswith("https://wm.example.com/render?")
        assert "subject=viewer%40example.com" in body["download_url"]

    async def test_room_downloads_disabled(self, client: AsyncClient, session_factory):
        room = await init_room(client)
        data = await upload_document(client)
        await report_scan(client, data["version_id"], "clean")
        resp = await client.patch(
            "/v1/dataroom/security-settings",
            params={"data_room_id": room["data_room_id"]},
            json={"download_enabled": False},
        )
        assert resp.status_code == 200
        assert resp.json()["download_enabled"] is False
        await _viewer_ready(client, session_factory, room["data_room_id"])

        login_as(VIEWER)
        resp = await client.get("/v1/dataroom/download-url", params={"version_id": data["version_id"]})
        assert resp.status_code == 403
        assert resp.json()["detail"]["reason"] == "download-blocked"

    async def test_ip_allowlist(self, client: AsyncClient, session_factory):
        room = await init_room(client)
        data = await upload_document(client)
        await report_scan(client, data["version_id"], "clean")
        resp = await client.patch(
            "/v1/dataroom/security-settings",
            params={"data_room_id": room["data_room_id"]},
            json={"allowed_ips": ["203.0.113.0/24"]},
        )
        assert resp.json()["allowed_ips"] == ["203.0.113.0/24"]
        await _viewer_ready(client, session_factory, room["data_room_id"])

        login_as(VIEWER)
        outside = await client.get(
            "/v1/dataroom/download-url",
            params={"version_id": data["version_id"]},
            headers={"X-Forwarded-For": "198.51.100.1"},
        )
        assert outside.status_code == 403
        inside = await client.get(
            "/v1/dataroom/download-url",
            params={"version_id": data["version_id"]},
            headers={"X-Forwarded-For": "203.0.113.5"},
        )
        assert inside.status_code == 200


# ═══════════════════════════════════════════════════════════════════════════════
# SECURITY SETTINGS
# ═══════════════════════════════════════════════════════════════════════════════


class TestSecuritySettings:
    async def test_defaults(self, client: AsyncClient):
        room = await init_room(client)
        resp = await client.get("/v1/dataroom/security-settings", params={"data_room_id": room["data_room_id"]})
        assert resp.status_code == 200
        assert resp.json() == {
            "id": room["data_room_id"],
            "listing_id": str(LISTING_ID),
            "nda_required": True,
            "download_enabled": True,
            "allowed_ips": [],
        }

    async def test_invalid_ip_rejected(self, client: AsyncClient):
        room = await init_room(client)
        resp = await client.patch(
            "/v1/dataroom/security-settings",
            params={"data_room_id": room["data_room_id"]},
            json={"allowed_ips": ["10.0.0.0/8", "nonsense"]},
        )
        assert resp.status_code == 400

    async def test_viewer_cannot_change_settings(self, client: AsyncClient, session_factory):
        room = await init_room(client)
        await _viewer_ready(client, session_factory, room["data_room_id"])
        login_as(VIEWER)
        resp = await client.patch(
            "/v1/dataroom/security-settings",
            params={"data_room_id": room["data_room_id"]},
            json={"download_enabled": False},
        )
        assert resp.status_code == 403


# ═══════════════════════════════════════════════════════════════════════════════
# DELETE
# ═══════════════════════════════════════════════════════════════════════════════


class TestDelete:
    async def test_delete_removes_document_and_objects(self, client: AsyncClient, session_factory, mock_s3):
        room = await init_room(client)
        data = await upload_document(client)
        await client.post(f"/v1/dataroom/documents/{data['document_id']}/versions", json={
            "file_name": "v2.pdf", "size": 10,
        })
        await add_member(session_factory, room["data_room_id"], EDITOR_ID, DataRoomRole.EDITOR)

        login_as(EDITOR)
        resp = await client.delete(f"/v1/dataroom/documents/{data['document_id']}")
        assert resp.status_code == 204

        async with session_factory() as db:
            assert await db.get(DataRoomDocument, uuid.UUID(data["document_id"])) is None
            remaining = (await db.execute(
                select(DataRoomDocumentVersion).where(
                    DataRoomDocumentVersion.document_id == uuid.UUID(data["document_id"])
                )
            )).scalars().all()
            assert remaining == []

        deleted = mock_s3.delete_objects.call_args.kwargs["Delete"]["Objects"]
        assert len(deleted) == 2

    async def test_viewer_cannot_delete(self, client: AsyncClient, session_factory):
        data = await upload_document(client)
        await _viewer_ready(client, session_factory, await _room_id(session_factory, data["document_id"]))
        login_as(VIEWER)
        resp = await client.delete(f"/v1/dataroom/documents/{data['document_id']}")
        assert resp.status_code == 403

    async def test_delete_unknown(self, client: AsyncClient):
        resp = await client.delete(f"/v1/dataroom/documents/{uuid.uuid4()}")
        assert resp.status_code == 404
