# tests/test_chat.py — Conversations, messages and per-reader read state
import pytest
from httpx import AsyncClient

from models import User
from tests.conftest import get_auth_headers


async def _open(client: AsyncClient, user, **payload):
    return await client.post("/api/chat/conversations", headers=get_auth_headers(user), json=payload)


async def _send(client: AsyncClient, user, conversation_id, body):
    res = await client.post(
        f"/api/chat/conversations/{conversation_id}/messages",
        headers=get_auth_headers(user),
        json={"body": body},
    )
    assert res.status_code == 201, res.text
    return res.json()


def _unread_for(listing, conversation_id):
    return next(c["unreadCount"] for c in listing if c["id"] == conversation_id)


@pytest.mark.asyncio
class TestConversations:
    async def test_open_is_find_or_create(self, client: AsyncClient, ca_admin, client_a):
        first = await _open(client, ca_admin, clientId=client_a.id)
        assert first.status_code == 201
        assert first.json()["type"] == "INTERNAL"
        second = await _open(client, ca_admin, clientId=client_a.id)
        assert second.status_code == 200
        assert second.json()["id"] == first.json()["id"]

    async def test_client_opens_same_thread_for_own_client(self, client: AsyncClient, ca_admin, client_a_user, client_a):
        from_client = await _open(client, client_a_user)
        assert from_client.status_code == 201
        assert from_client.json()["type"] == "CA_CLIENT"
        assert from_client.json()["clientId"] == client_a.id

        from_ca = await _open(client, ca_admin, clientId=client_a.id)
        assert from_ca.status_code == 200
        assert from_ca.json()["id"] == from_client.json()["id"]

    async def test_task_thread_is_separate(self, client: AsyncClient, ca_admin, client_a, gstr_3b):
        task = await client.post("/api/tasks", headers=get_auth_headers(ca_admin), json={
            "clientId": client_a.id,
            "complianceTypeId": gstr_3b.id,
            "periodStart": "2024-04-01T00:00:00Z",
            "periodEnd": "2024-04-30T00:00:00Z",
            "dueDate": "2024-05-20T00:00:00Z",
        })
        general = (await _open(client, ca_admin, clientId=client_a.id)).json()
        about_task = await _open(client, ca_admin, clientId=client_a.id, relatedTaskId=task.json()["id"])
        assert about_task.status_code == 201
        assert about_task.json()["id"] != general["id"]
        assert about_task.json()["relatedTaskId"] == task.json()["id"]

    async def test_task_of_other_client_rejected(self, client: AsyncClient, ca_admin, client_a, client_a2, gstr_3b):
        task = await client.post("/api/tasks", headers=get_auth_headers(ca_admin), json={
            "clientId": client_a2.id,
            "complianceTypeId": gstr_3b.id,
            "periodStart": "2024-04-01T00:00:00Z",
            "periodEnd": "2024-04-30T00:00:00Z",
            "dueDate": "2024-05-20T00:00:00Z",
        })
        res = await _open(client, ca_admin, clientId=client_a.id, relatedTaskId=task.json()["id"])
        assert res.status_code == 404

    async def test_other_firm_client_not_found(self, client: AsyncClient, ca_admin, client_b):
        res = await _open(client, ca_admin, clientId=client_b.id)
        assert res.status_code == 404

    async def test_ca_must_name_a_client(self, client: AsyncClient, ca_admin):
        res = await _open(client, ca_admin)
        assert res.status_code == 400
        assert res.json()["detail"] == "clientId is required"

    async def test_listing_is_tenant_scoped(self, client: AsyncClient, ca_admin, ca_admin_b, client_a_user, client_a, client_a2):
        await _open(client, ca_admin, clientId=client_a.id)
        await _open(client, ca_admin, clientId=client_a2.id)

        res = await client.get("/api/chat/conversations", headers=get_auth_headers(ca_admin))
        assert len(res.json()) == 2
        res = await client.get("/api/chat/conversations", headers=get_auth_headers(client_a_user))
        assert [c["clientId"] for c in res.json()] == [client_a.id]
        res = await client.get("/api/chat/conversations", headers=get_auth_headers(ca_admin_b))
        assert res.json() == []


@pytest.mark.asyncio
class TestMessages:
    async def test_send_and_list(self, client: AsyncClient, ca_admin, client_a_user, client_a):
        conv = (await _open(client, ca_admin, clientId=client_a.id)).json()
        await _send(client, ca_admin, conv["id"], "Please share March invoices")
        await _send(client, client_a_user, conv["id"], "Uploaded")

        res = await client.get(f"/api/chat/conversations/{conv['id']}/messages", headers=get_auth_headers(client_a_user))
        assert res.status_code == 200
        assert [m["body"] for m in res.json()] == ["Please share March invoices", "Uploaded"]
        assert res.json()[0]["senderName"] == "Anita Sharma"

        listing = await client.get("/api/chat/conversations", headers=get_auth_headers(ca_admin))
        assert listing.json()[0]["lastMessage"] == "Uploaded"

    async def test_read_state_is_per_user(self, client: AsyncClient, ca_admin, ca_staff_full, client_a_user, client_a):
        conv = (await _open(client, ca_admin, clientId=client_a.id)).json()
        msg = await _send(client, client_a_user, conv["id"], "Any update on my return?")

        admin_list = (await client.get("/api/chat/conversations", headers=get_auth_headers(ca_admin))).json()
        staff_list = (await client.get("/api/chat/conversations", headers=get_auth_headers(ca_staff_full))).json()
        assert _unread_for(admin_list, conv["id"]) == 1
        assert _unread_for(staff_list, conv["id"]) == 1

        res = await client.post(f"/api/chat/messages/{msg['id']}/read", headers=get_auth_headers(ca_admin))
        assert res.status_code == 200

        admin_list = (await client.get("/api/chat/conversations", headers=get_auth_headers(ca_admin))).json()
        staff_list = (await client.get("/api/chat/conversations", headers=get_auth_headers(ca_staff_full))).json()
        assert _unread_for(admin_list, conv["id"]) == 0
        assert _unread_for(staff_list, conv["id"]) == 1

    async def test_mark_read_twice_is_harmless(self, client: AsyncClient, ca_admin, client_a):
        conv = (await _open(client, ca_admin, clientId=client_a.id)).json()
        msg = await _send(client, ca_admin, conv["id"], "Note to self")
        for _ in range(2):
            res = await client.post(f"/api/chat/messages/{msg['id']}/read", headers=get_auth_headers(ca_admin))
            assert res.status_code == 200

        res = await client.get(f"/api/chat/conversations/{conv['id']}/messages", headers=get_auth_headers(ca_admin))
        assert res.json()[0]["read"] is True

    async def test_sibling_client_cannot_read_thread(self, client: AsyncClient, db_session, ca_admin, client_a, client_a2):
        conv = (await _open(client, ca_admin, clientId=client_a.id)).json()
        msg = await _send(client, ca_admin, conv["id"], "Confidential")
        sibling = await db_session.get(User, client_a2.primary_user_id)

        res = await client.get(f"/api/chat/conversations/{conv['id']}/messages", headers=get_auth_headers(sibling))
        assert res.status_code == 404
        res = await client.post(f"/api/chat/messages/{msg['id']}/read", headers=get_auth_headers(sibling))
        assert res.status_code == 404

    async def test_empty_body_rejected(self, client: AsyncClient, ca_admin, client_a):
        conv = (await _open(client, ca_admin, clientId=client_a.id)).json()
        res = await client.post(f"/api/chat/conversations/{conv['id']}/messages",
                                headers=get_auth_headers(ca_admin), json={"body": ""})
        assert res.status_code == 400
