# tests/conftest.py — Shared test fixtures
import os
import uuid
from typing import Optional

import pytest_asyncio
from httpx import AsyncClient, ASGITransport

# Use SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///./test.db"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-unit-tests-only-min-32-chars"
os.environ["ENVIRONMENT"] = "test"
os.environ["RESEND_API_KEY"] = ""

from models import User
from auth import AuthService
from database import Database
from main import app


@pytest_asyncio.fixture(scope="function")
async def database():
    db = Database(TEST_DB_URL)
    await db.drop_all()
    await db.init()
    app.state.db = db
    yield db
    await db.drop_all()
    await db.close()


@pytest_asyncio.fixture(scope="function")
async def db_session(database):
    async with database.session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(database):
    """HTTP test client bound to the test database"""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def _make_user(session, name: str, email: str) -> User:
    user = User(
        id=str(uuid.uuid4()),
        name=name,
        email=email,
        password_hash=AuthService.hash_password("Password123!"),
    )
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


@pytest_asyncio.fixture
async def admin_user(db_session):
    """Workspace owner in most tests"""
    return await _make_user(db_session, "Ada Admin", "ada@flux.dev")


@pytest_asyncio.fixture
async def editor_user(db_session):
    return await _make_user(db_session, "Eddie Editor", "eddie@flux.dev")


@pytest_asyncio.fixture
async def viewer_user(db_session):
    return await _make_user(db_session, "Vera Viewer", "vera@flux.dev")


@pytest_asyncio.fixture
async def outsider(db_session):
    """Registered user who belongs to no workspace"""
    return await _make_user(db_session, "Otto Outsider", "otto@flux.dev")


def get_auth_headers(user: User) -> dict:
    """Generate auth headers for a user"""
    token = AuthService.create_access_token(AuthService.token_claims(user))
    return {"Authorization": f"Bearer {token}"}


# ============================================================
# SCENARIO HELPERS
# ============================================================

async def create_workspace(client: AsyncClient, owner: User, slug: str = "acme", name: str = "Acme") -> dict:
    resp = await client.post(
        "/api/v1/workspaces", json={"name": name, "slug": slug}, headers=get_auth_headers(owner),
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


async def add_member(
    client: AsyncClient, admin: User, member: User, role: str = "VIEWER", slug: str = "acme",
) -> None:
    headers = get_auth_headers(admin)
    resp = await client.post(
        f"/api/v1/workspaces/{slug}/members", json={"email": member.email}, headers=headers,
    )
    assert resp.status_code == 201, resp.text
    if role != "VIEWER":
        resp = await client.patch(
            f"/api/v1/workspaces/{slug}/members/{member.id}", json={"role": role}, headers=headers,
        )
        assert resp.status_code == 200, resp.text


async def create_board(
    client: AsyncClient, user: User, name: str = "General", slug: str = "acme",
    categories: Optional[list] = None,
) -> dict:
    resp = await client.post(
        f"/api/v1/workspaces/{slug}/boards",
        json={"name": name, "categories": categories or []},
        headers=get_auth_headers(user),
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


async def create_task(
    client: AsyncClient, user: User, title: str, status: str = "BACKLOG",
    slug: str = "acme", board_slug: str = "general", **fields,
) -> dict:
    resp = await client.post(
        f"/api/v1/workspaces/{slug}/boards/{board_slug}/tasks",
        json={"title": title, "status": status, **fields},
        headers=get_auth_headers(user),
    )
    assert resp.status_code == 201, resp.text
    return resp.json()
