# tests/conftest.py — Shared test fixtures
import os
import tempfile

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Use SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///./test.db"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-unit-tests-only-min-32-chars"
os.environ["JWT_REFRESH_SECRET_KEY"] = "test-refresh-secret-key-for-unit-tests-min-32-chars"
os.environ["ENVIRONMENT"] = "test"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="ca-portal-uploads-"))

import storage
from auth import AuthService, _login_attempts
from compliance_catalogue import seed_compliance_types
from database import get_db_session
from main import app
from models import Base, Firm, User, Client, ClientType, ComplianceType, UserRole

PASSWORD = "Password123!"


@pytest.fixture(autouse=True)
def reset_login_attempts():
    _login_attempts.clear()
    yield
    _login_attempts.clear()


@pytest.fixture(autouse=True)
def upload_dir(tmp_path, monkeypatch):
    """Each test writes blobs into its own directory"""
    path = tmp_path / "uploads"
    monkeypatch.setattr(storage, "UPLOAD_DIR", str(path))
    return path


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    engine = create_async_engine(TEST_DB_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine):
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        await seed_compliance_types(session)
        await session.commit()
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(db_engine, db_session):
    """HTTP test client with overridden DB dependency"""
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


# ============================================================
# BUILDERS
# ============================================================

async def make_user(db, email, role, firm=None, name=None, **flags) -> User:
    user = User(
        name=name or email.split("@")[0],
        email=email,
        password_hash=AuthService.hash_password(PASSWORD),
        role=role,
        firm_id=firm.id if firm else None,
        **flags,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


async def make_client(db, firm, display_name, email, pan=None) -> Client:
    contact = await make_user(db, email, UserRole.CLIENT, firm, name=f"{display_name} Contact")
    row = Client(
        firm_id=firm.id,
        primary_user_id=contact.id,
        display_name=display_name,
        type=ClientType.BUSINESS,
        pan=pan,
    )
    db.add(row)
    await db.commit()
    await db.refresh(row)
    return row


def get_auth_headers(user: User) -> dict:
    """Generate auth headers for a user"""
    token = AuthService.create_access_token(user.id)
    return {"Authorization": f"Bearer {token}"}


# ============================================================
# TENANTS
# ============================================================

@pytest_asyncio.fixture
async def firm_a(db_session):
    firm = Firm(name="Sharma & Associates", gstin="27AAAAA0000A1Z5")
    db_session.add(firm)
    await db_session.commit()
    await db_session.refresh(firm)
    return firm


@pytest_asyncio.fixture
async def firm_b(db_session):
    firm = Firm(name="Mehta Tax Consultants", gstin="29BBBBB1111B1Z5")
    db_session.add(firm)
    await db_session.commit()
    await db_session.refresh(firm)
    return firm


@pytest_asyncio.fixture
async def super_admin(db_session):
    return await make_user(db_session, "root@portal.test", UserRole.SUPER_ADMIN, name="Platform Admin")


@pytest_asyncio.fixture
async def ca_admin(db_session, firm_a):
    return await make_user(db_session, "admin@sharma.test", UserRole.CA_ADMIN, firm_a, name="Anita Sharma")


@pytest_asyncio.fixture
async def ca_staff(db_session, firm_a):
    """Staff member with no capabilities granted"""
    return await make_user(db_session, "staff@sharma.test", UserRole.CA_STAFF, firm_a, name="Ravi Kumar")


@pytest_asyncio.fixture
async def ca_staff_full(db_session, firm_a):
    """Staff member with every capability granted"""
    return await make_user(
        db_session, "senior@sharma.test", UserRole.CA_STAFF, firm_a, name="Priya Nair",
        can_view_clients=True, can_edit_clients=True, can_access_documents=True,
        can_access_tasks=True, can_access_calendar=True, can_access_chat=True,
    )


@pytest_asyncio.fixture
async def ca_admin_b(db_session, firm_b):
    return await make_user(db_session, "admin@mehta.test", UserRole.CA_ADMIN, firm_b, name="Vikram Mehta")


@pytest_asyncio.fixture
async def client_a(db_session, firm_a):
    return await make_client(db_session, firm_a, "Acme Traders", "owner@acme.test", pan="AAAPA1234A")


@pytest_asyncio.fixture
async def client_a2(db_session, firm_a):
    return await make_client(db_session, firm_a, "Bharat Textiles", "owner@bharat.test", pan="BBBPB5678B")


@pytest_asyncio.fixture
async def client_b(db_session, firm_b):
    return await make_client(db_session, firm_b, "Coastal Exports", "owner@coastal.test", pan="CCCPC9012C")


@pytest_asyncio.fixture
async def client_a_user(db_session, client_a):
    return await db_session.get(User, client_a.primary_user_id)


@pytest_asyncio.fixture
async def client_b_user(db_session, client_b):
    return await db_session.get(User, client_b.primary_user_id)


@pytest_asyncio.fixture
async def gstr_3b(db_session):
    result = await db_session.execute(select(ComplianceType).where(ComplianceType.code == "GSTR_3B"))
    return result.scalar_one()
