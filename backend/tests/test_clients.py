# tests/test_clients.py — Client register, transactional creation and tenant isolation
import pytest
from httpx import AsyncClient
from sqlalchemy import select, func

from models import User, Client
from tests.conftest import get_auth_headers

NEW_CLIENT = {
    "displayName": "Deccan Foods Pvt Ltd",
    "type": "business",
    "pan": "dddpd3456d",
    "gstin": "27DDDPD3456D1Z5",
    "contactName": "Suresh Rao",
    "contactEmail": "suresh@deccanfoods.test",
}


async def _count(db_session, model, *where):
    db_session.expire_all()
    return (await db_session.execute(select(func.count(model.id)).where(*where))).scalar()


@pytest.mark.asyncio
class TestListClients:
    async def test_admin_lists_firm_clients(self, client: AsyncClient, ca_admin, client_a, client_a2, client_b):
        res = await client.get("/api/clients", headers=get_auth_headers(ca_admin))
        assert res.status_code == 200
        names = [c["displayName"] for c in res.json()]
        assert names == ["Acme Traders", "Bharat Textiles"]
        assert res.json()[0]["primaryUser"]["email"] == "owner@acme.test"

    async def test_client_user_sees_only_itself(self, client: AsyncClient, client_a_user, client_a, client_a2):
        res = await client.get("/api/clients", headers=get_auth_headers(client_a_user))
        assert res.status_code == 200
        assert [c["id"] for c in res.json()] == [client_a.id]

    async def test_staff_without_view_flag_forbidden(self, client: AsyncClient, ca_staff):
        res = await client.get("/api/clients", headers=get_auth_headers(ca_staff))
        assert res.status_code == 403
        assert res.json()["code"] == "FORBIDDEN"

    async def test_super_admin_needs_firm_context(self, client: AsyncClient, super_admin):
        res = await client.get("/api/clients", headers=get_auth_headers(super_admin))
        assert res.status_code == 400
        assert res.json()["detail"] == "Firm context required"

    async def test_cross_firm_client_is_not_found(self, client: AsyncClient, ca_admin, client_b):
        res = await client.get(f"/api/clients/{client_b.id}", headers=get_auth_headers(ca_admin))
        assert res.status_code == 404

    async def test_client_cannot_read_sibling_client(self, client: AsyncClient, client_a_user, client_a2):
        res = await client.get(f"/api/clients/{client_a2.id}", headers=get_auth_headers(client_a_user))
        assert res.status_code == 404


@pytest.mark.asyncio
class TestCreateClient:
    async def test_create_client_and_login_user(self, client: AsyncClient, db_session, ca_admin, firm_a):
        res = await client.post("/api/clients", headers=get_auth_headers(ca_admin), json=NEW_CLIENT)
        assert res.status_code == 201
        data = res.json()
        assert data["type"] == "BUSINESS"
        assert data["pan"] == "DDDPD3456D"
        assert data["firmId"] == firm_a.id
        assert data["primaryUser"]["email"] == "suresh@deccanfoods.test"

        contact = (await db_session.execute(
            select(User).where(User.email == "suresh@deccanfoods.test")
        )).scalar_one()
        assert contact.role.value == "CLIENT"
        assert contact.firm_id == firm_a.id

    async def test_staff_with_edit_flag_can_create(self, client: AsyncClient, ca_staff_full):
        res = await client.post("/api/clients", headers=get_auth_headers(ca_staff_full), json=NEW_CLIENT)
        assert res.status_code == 201

    async def test_client_role_cannot_create(self, client: AsyncClient, client_a_user):
        res = await client.post("/api/clients", headers=get_auth_headers(client_a_user), json=NEW_CLIENT)
        assert res.status_code == 403

    async def test_duplicate_email_rejected(self, client: AsyncClient, db_session, ca_admin, client_a):
        payload = dict(NEW_CLIENT, contactEmail="owner@acme.test")
        res = await client.post("/api/clients", headers=get_auth_headers(ca_admin), json=payload)
        assert res.status_code == 400
        assert res.json()["detail"] == "Email already exists"
        assert await _count(db_session, Client, Client.display_name == NEW_CLIENT["displayName"]) == 0

    async def test_duplicate_pan_leaves_no_orphan_user(self, client: AsyncClient, db_session, ca_admin, client_a):
        payload = dict(NEW_CLIENT, pan="aaapa1234a")
        res = await client.post("/api/clients", headers=get_auth_headers(ca_admin), json=payload)
        assert res.status_code == 400
        assert "PAN" in res.json()["detail"]
        assert await _count(db_session, User, User.email == NEW_CLIENT["contactEmail"]) == 0

    async def test_same_pan_allowed_in_other_firm(self, client: AsyncClient, ca_admin_b, client_a):
        payload = dict(NEW_CLIENT, pan="AAAPA1234A")
        res = await client.post("/api/clients", headers=get_auth_headers(ca_admin_b), json=payload)
        assert res.status_code == 201

    async def test_invalid_type_rejected(self, client: AsyncClient, ca_admin):
        payload = dict(NEW_CLIENT, type="TRUST")
        res = await client.post("/api/clients", headers=get_auth_headers(ca_admin), json=payload)
        assert res.status_code == 400

    async def test_missing_contact_rejected(self, client: AsyncClient, ca_admin):
        payload = {k: v for k, v in NEW_CLIENT.items() if k != "contactEmail"}
        res = await client.post("/api/clients", headers=get_auth_headers(ca_admin), json=payload)
        assert res.status_code == 400


@pytest.mark.asyncio
class TestUpdateClient:
    async def test_update_fields_and_contact(self, client: AsyncClient, ca_admin, client_a):
        res = await client.put(f"/api/clients/{client_a.id}", headers=get_auth_headers(ca_admin), json={
            "displayName": "Acme Traders LLP",
            "contactName": "New Contact",
        })
        assert res.status_code == 200
        data = res.json()
        assert data["displayName"] == "Acme Traders LLP"
        assert data["primaryUser"]["name"] == "New Contact"
        assert data["pan"] == "AAAPA1234A"

    async def test_update_other_firm_client_not_found(self, client: AsyncClient, ca_admin, client_b):
        res = await client.put(f"/api/clients/{client_b.id}", headers=get_auth_headers(ca_admin), json={
            "displayName": "Hijacked",
        })
        assert res.status_code == 404
