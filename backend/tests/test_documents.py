# tests/test_documents.py — Folders, uploads, versioning, download and delete
import os

import pytest
from httpx import AsyncClient
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError

import storage
from models import Document, Notification, NotificationType
from tests.conftest import get_auth_headers

PDF = b"%PDF-1.4 quarterly return"


async def _folder(client: AsyncClient, user, client_row, name="GST Returns", year="2024-25", **extra) -> dict:
    payload = {"clientId": client_row.id, "financialYear": year, "name": name}
    payload.update(extra)
    res = await client.post("/api/documents/folders", headers=get_auth_headers(user), json=payload)
    assert res.status_code in (200, 201), res.text
    return res.json()


async def _upload(client: AsyncClient, user, client_id, folder_id, name="return.pdf", content=PDF, **form):
    data = {"folderId": folder_id, "clientId": client_id}
    data.update(form)
    return await client.post(
        "/api/documents",
        headers=get_auth_headers(user),
        files={"file": (name, content, "application/pdf")},
        data=data,
    )


def _stored_files(upload_dir):
    if not upload_dir.exists():
        return []
    return os.listdir(upload_dir)


@pytest.mark.asyncio
class TestFolders:
    async def test_create_then_reuse(self, client: AsyncClient, ca_admin, client_a):
        payload = {"clientId": client_a.id, "financialYear": "2024-25", "name": "GST Returns"}
        first = await client.post("/api/documents/folders", headers=get_auth_headers(ca_admin), json=payload)
        assert first.status_code == 201
        second = await client.post("/api/documents/folders", headers=get_auth_headers(ca_admin), json=payload)
        assert second.status_code == 200
        assert second.json()["id"] == first.json()["id"]

    async def test_same_name_different_year_is_new(self, client: AsyncClient, ca_admin, client_a):
        a = await _folder(client, ca_admin, client_a, year="2023-24")
        b = await _folder(client, ca_admin, client_a, year="2024-25")
        assert a["id"] != b["id"]

    async def test_subfolder_counts(self, client: AsyncClient, ca_admin, client_a):
        parent = await _folder(client, ca_admin, client_a)
        await _folder(client, ca_admin, client_a, name="April", parentFolderId=parent["id"])
        res = await client.get(f"/api/documents/folders?clientId={client_a.id}", headers=get_auth_headers(ca_admin))
        by_name = {f["name"]: f for f in res.json()}
        assert by_name["GST Returns"]["subfolderCount"] == 1
        assert by_name["April"]["parentFolderId"] == parent["id"]

    async def test_parent_from_other_client_rejected(self, client: AsyncClient, ca_admin, client_a, client_a2):
        parent = await _folder(client, ca_admin, client_a)
        res = await client.post("/api/documents/folders", headers=get_auth_headers(ca_admin), json={
            "clientId": client_a2.id, "financialYear": "2024-25", "name": "Nested", "parentFolderId": parent["id"],
        })
        assert res.status_code == 404

    async def test_blank_parent_means_top_level(self, client: AsyncClient, ca_admin, client_a):
        top = await _folder(client, ca_admin, client_a)
        res = await client.post("/api/documents/folders", headers=get_auth_headers(ca_admin), json={
            "clientId": client_a.id, "financialYear": "2024-25", "name": "GST Returns", "parentFolderId": "",
        })
        assert res.status_code == 200
        assert res.json()["id"] == top["id"]
        assert res.json()["parentFolderId"] is None

    async def test_client_user_folder_pinned_to_own_client(
        self, client: AsyncClient, ca_admin, client_a_user, client_a, client_a2,
    ):
        await _folder(client, ca_admin, client_a2, name="Sibling")
        created = await _folder(client, client_a_user, client_a2, name="Mine")
        assert created["clientId"] == client_a.id

        res = await client.get("/api/documents/folders", headers=get_auth_headers(client_a_user))
        assert [f["name"] for f in res.json()] == ["Mine"]

    async def test_staff_without_document_flag_forbidden(self, client: AsyncClient, ca_staff, client_a):
        res = await client.get("/api/documents/folders", headers=get_auth_headers(ca_staff))
        assert res.status_code == 403


@pytest.mark.asyncio
class TestUpload:
    async def test_upload_and_version(self, client: AsyncClient, ca_admin, client_a):
        folder = await _folder(client, ca_admin, client_a)
        first = await _upload(client, ca_admin, client_a.id, folder["id"])
        assert first.status_code == 201
        second = await _upload(client, ca_admin, client_a.id, folder["id"], content=PDF + b" revised")
        assert second.status_code == 201

        v1, v2 = first.json(), second.json()
        assert v1["versionNumber"] == 1
        assert v2["versionNumber"] == 2
        assert v1["versionGroupId"] == v2["versionGroupId"]
        assert v2["size"] == len(PDF) + len(b" revised")
        assert v2["status"] == "UPLOADED"

    async def test_competing_first_versions_collide(self, client: AsyncClient, db_session, ca_admin, client_a):
        folder = await _folder(client, ca_admin, client_a)
        first = (await _upload(client, ca_admin, client_a.id, folder["id"])).json()
        assert first["versionNumber"] == 1

        db_session.add(Document(
            folder_id=folder["id"],
            firm_id=client_a.firm_id,
            client_id=client_a.id,
            file_name="return.pdf",
            storage_path="elsewhere.pdf",
            version_group_id="another-group",
            version_number=1,
            uploaded_by_id=ca_admin.id,
        ))
        with pytest.raises(IntegrityError):
            await db_session.flush()
        await db_session.rollback()

    async def test_other_name_starts_new_group(self, client: AsyncClient, ca_admin, client_a):
        folder = await _folder(client, ca_admin, client_a)
        a = (await _upload(client, ca_admin, client_a.id, folder["id"], name="a.pdf")).json()
        b = (await _upload(client, ca_admin, client_a.id, folder["id"], name="b.pdf")).json()
        assert a["versionGroupId"] != b["versionGroupId"]
        assert b["versionNumber"] == 1

    async def test_versions_listing(self, client: AsyncClient, ca_admin, client_a):
        folder = await _folder(client, ca_admin, client_a)
        await _upload(client, ca_admin, client_a.id, folder["id"])
        latest = (await _upload(client, ca_admin, client_a.id, folder["id"])).json()
        res = await client.get(f"/api/documents/{latest['id']}/versions", headers=get_auth_headers(ca_admin))
        assert res.status_code == 200
        assert [d["versionNumber"] for d in res.json()] == [2, 1]

    async def test_ca_upload_notifies_client(self, client: AsyncClient, db_session, ca_admin, client_a):
        folder = await _folder(client, ca_admin, client_a)
        await _upload(client, ca_admin, client_a.id, folder["id"])
        result = await db_session.execute(
            select(Notification).where(Notification.type == NotificationType.DOCUMENT_UPLOADED)
        )
        assert [n.user_id for n in result.scalars().all()] == [client_a.primary_user_id]

    async def test_client_upload_does_not_notify(self, client: AsyncClient, db_session, ca_admin, client_a_user, client_a):
        folder = await _folder(client, ca_admin, client_a)
        res = await _upload(client, client_a_user, client_a.id, folder["id"])
        assert res.status_code == 201
        count = (await db_session.execute(select(func.count(Notification.id)))).scalar()
        assert count == 0

    async def test_oversized_upload_rejected(self, client: AsyncClient, db_session, ca_admin, client_a, upload_dir, monkeypatch):
        folder = await _folder(client, ca_admin, client_a)
        monkeypatch.setattr(storage, "MAX_FILE_SIZE", 8)
        res = await _upload(client, ca_admin, client_a.id, folder["id"])
        assert res.status_code == 413
        assert res.json()["code"] == "PAYLOAD_TOO_LARGE"
        assert _stored_files(upload_dir) == []
        assert (await db_session.execute(select(func.count(Document.id)))).scalar() == 0

    async def test_foreign_client_rejected_without_storing(
        self, client: AsyncClient, ca_admin, ca_admin_b, client_a, client_b, upload_dir,
    ):
        folder = await _folder(client, ca_admin_b, client_b)
        res = await _upload(client, ca_admin, client_b.id, folder["id"])
        assert res.status_code == 404
        assert _stored_files(upload_dir) == []

    async def test_folder_of_other_client_rejected(self, client: AsyncClient, ca_admin, client_a, client_a2, upload_dir):
        folder = await _folder(client, ca_admin, client_a2)
        res = await _upload(client, ca_admin, client_a.id, folder["id"])
        assert res.status_code == 404
        assert _stored_files(upload_dir) == []

    async def test_invalid_status_rejected(self, client: AsyncClient, ca_admin, client_a, upload_dir):
        folder = await _folder(client, ca_admin, client_a)
        res = await _upload(client, ca_admin, client_a.id, folder["id"], status="LOST")
        assert res.status_code == 400
        assert _stored_files(upload_dir) == []


@pytest.mark.asyncio
class TestDownloadAndDelete:
    async def test_download(self, client: AsyncClient, ca_admin, client_a_user, client_a):
        folder = await _folder(client, ca_admin, client_a)
        doc = (await _upload(client, ca_admin, client_a.id, folder["id"])).json()
        res = await client.get(f"/api/documents/{doc['id']}/download", headers=get_auth_headers(client_a_user))
        assert res.status_code == 200
        assert res.content == PDF
        assert "return.pdf" in res.headers["content-disposition"]

    async def test_download_missing_blob(self, client: AsyncClient, ca_admin, client_a, upload_dir):
        folder = await _folder(client, ca_admin, client_a)
        doc = (await _upload(client, ca_admin, client_a.id, folder["id"])).json()
        for name in _stored_files(upload_dir):
            os.remove(upload_dir / name)
        res = await client.get(f"/api/documents/{doc['id']}/download", headers=get_auth_headers(ca_admin))
        assert res.status_code == 404
        assert res.json()["detail"] == "File not found"

    async def test_other_firm_cannot_download(self, client: AsyncClient, ca_admin, ca_admin_b, client_a):
        folder = await _folder(client, ca_admin, client_a)
        doc = (await _upload(client, ca_admin, client_a.id, folder["id"])).json()
        res = await client.get(f"/api/documents/{doc['id']}/download", headers=get_auth_headers(ca_admin_b))
        assert res.status_code == 404

    async def test_delete_removes_blob(self, client: AsyncClient, ca_admin, client_a, upload_dir):
        folder = await _folder(client, ca_admin, client_a)
        doc = (await _upload(client, ca_admin, client_a.id, folder["id"])).json()
        assert len(_stored_files(upload_dir)) == 1

        res = await client.delete(f"/api/documents/{doc['id']}", headers=get_auth_headers(ca_admin))
        assert res.status_code == 204
        assert _stored_files(upload_dir) == []

        res = await client.get(f"/api/documents/{doc['id']}/download", headers=get_auth_headers(ca_admin))
        assert res.status_code == 404

    async def test_client_cannot_delete(self, client: AsyncClient, ca_admin, client_a_user, client_a):
        folder = await _folder(client, ca_admin, client_a)
        doc = (await _upload(client, ca_admin, client_a.id, folder["id"])).json()
        res = await client.delete(f"/api/documents/{doc['id']}", headers=get_auth_headers(client_a_user))
        assert res.status_code == 403

    async def test_status_update(self, client: AsyncClient, ca_admin, client_a):
        folder = await _folder(client, ca_admin, client_a)
        doc = (await _upload(client, ca_admin, client_a.id, folder["id"])).json()
        res = await client.patch(f"/api/documents/{doc['id']}/status", headers=get_auth_headers(ca_admin),
                                 json={"status": "REVIEWED"})
        assert res.status_code == 200
        listing = await client.get(f"/api/documents?folderId={folder['id']}", headers=get_auth_headers(ca_admin))
        assert listing.json()[0]["status"] == "REVIEWED"
