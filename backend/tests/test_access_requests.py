# tests/test_access_requests.py — Edit access requests
import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from models import AccessRequest, AccessRequestStatus
from tests.conftest import get_auth_headers, create_workspace, add_member


async def _request_access(client: AsyncClient, user, message=None):
    return await client.post(
        "/api/v1/workspaces/acme/access-requests",
        json={"message": message} if message else {},
        headers=get_auth_headers(user),
    )


@pytest.mark.asyncio
class TestRequestEditAccess:
    async def test_viewer_requests_access(self, client: AsyncClient, admin_user, viewer_user):
        await create_workspace(client, admin_user)
        await add_member(client, admin_user, viewer_user)
        resp = await _request_access(client, viewer_user, "I'd like to help")
        assert resp.status_code == 201
        data = resp.json()
        assert data["status"] == "PENDING"
        assert data["requested_role"] == "EDITOR"
        assert data["message"] == "I'd like to help"

    @pytest.mark.parametrize("role", ["ADMIN", "EDITOR"])
    async def test_rejected_when_already_editing(self, client: AsyncClient, admin_user, editor_user, role):
        await create_workspace(client, admin_user)
        await add_member(client, admin_user, editor_user, role=role)
        resp = await _request_access(client, editor_user)
        assert resp.status_code == 400
        assert "already have edit access" in resp.json()["detail"]

    async def test_owner_cannot_request(self, client: AsyncClient, admin_user):
        await create_workspace(client, admin_user)
        resp = await _request_access(client, admin_user)
        assert resp.status_code == 400

    async def test_duplicate_pending_request_rejected(self, client: AsyncClient, database, admin_user, viewer_user):
        await create_workspace(client, admin_user)
        await add_member(client, admin_user, viewer_user)
        assert (await _request_access(client, viewer_user)).status_code == 201
        resp = await _request_access(client, viewer_user)
        assert resp.status_code == 409
        assert "already have a pending request" in resp.json()["detail"]

        async with database.session() as session:
            result = await session.execute(select(AccessRequest))
            assert len(result.scalars().all()) == 1

    async def test_pending_uniqueness_enforced_by_storage(self, database, admin_user, viewer_user):
        async with database.session_factory() as session:
            for _ in range(2):
                session.add(AccessRequest(workspace_id="w1", user_id=viewer_user.id))
            with pytest.raises(IntegrityError):
                await session.commit()

        async with database.session_factory() as session:
            session.add(AccessRequest(workspace_id="w1", user_id=viewer_user.id, status=AccessRequestStatus.DENIED))
            session.add(AccessRequest(workspace_id="w1", user_id=viewer_user.id, status=AccessRequestStatus.DENIED))
            session.add(AccessRequest(workspace_id="w1", user_id=viewer_user.id))
            await session.commit()

    async def test_non_member_is_added_as_viewer(self, client: AsyncClient, admin_user, outsider):
        await create_workspace(client, admin_user)
        resp = await _request_access(client, outsider)
        assert resp.status_code == 201
        resp = await client.get("/api/v1/workspaces/acme/role", headers=get_auth_headers(outsider))
        assert resp.json() == {"role": "VIEWER"}

    async def test_has_pending(self, client: AsyncClient, admin_user, viewer_user):
        await create_workspace(client, admin_user)
        await add_member(client, admin_user, viewer_user)
        url = "/api/v1/workspaces/acme/access-requests/pending"
        headers = get_auth_headers(viewer_user)
        assert (await client.get(url, headers=headers)).json() == {"pending": False}
        await _request_access(client, viewer_user)
        assert (await client.get(url, headers=headers)).json() == {"pending": True}


@pytest.mark.asyncio
class TestReviewAccessRequest:
    async def test_admin_lists_pending(self, client: AsyncClient, admin_user, viewer_user):
        await create_workspace(client, admin_user)
        await add_member(client, admin_user, viewer_user)
        await _request_access(client, viewer_user)

        resp = await client.get("/api/v1/workspaces/acme/access-requests", headers=get_auth_headers(admin_user))
        assert resp.status_code == 200
        assert [r["user"]["email"] for r in resp.json()] == ["vera@flux.dev"]

    async def test_non_admin_gets_empty_list(self, client: AsyncClient, admin_user, viewer_user):
        await create_workspace(client, admin_user)
        await add_member(client, admin_user, viewer_user)
        await _request_access(client, viewer_user)
        resp = await client.get("/api/v1/workspaces/acme/access-requests", headers=get_auth_headers(viewer_user))
        assert resp.json() == []

    async def test_approve_promotes_to_editor(self, client: AsyncClient, admin_user, viewer_user):
        await create_workspace(client, admin_user)
        await add_member(client, admin_user, viewer_user)
        request_id = (await _request_access(client, viewer_user)).json()["id"]

        resp = await client.post(
            f"/api/v1/access-requests/{request_id}/review", json={"action": "approve"},
            headers=get_auth_headers(admin_user),
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "APPROVED"
        assert resp.json()["reviewed_by"] == admin_user.id
        assert resp.json()["reviewed_at"]

        resp = await client.get("/api/v1/workspaces/acme/role", headers=get_auth_headers(viewer_user))
        assert resp.json() == {"role": "EDITOR"}

    async def test_deny_keeps_viewer_and_allows_new_request(self, client: AsyncClient, admin_user, viewer_user):
        await create_workspace(client, admin_user)
        await add_member(client, admin_user, viewer_user)
        request_id = (await _request_access(client, viewer_user)).json()["id"]

        resp = await client.post(
            f"/api/v1/access-requests/{request_id}/review", json={"action": "deny"},
            headers=get_auth_headers(admin_user),
        )
        assert resp.json()["status"] == "DENIED"
        resp = await client.get("/api/v1/workspaces/acme/role", headers=get_auth_headers(viewer_user))
        assert resp.json() == {"role": "VIEWER"}
        assert (await _request_access(client, viewer_user)).status_code == 201

    async def test_handled_request_cannot_be_reviewed_again(self, client: AsyncClient, admin_user, viewer_user):
        await create_workspace(client, admin_user)
        await add_member(client, admin_user, viewer_user)
        request_id = (await _request_access(client, viewer_user)).json()["id"]
        url = f"/api/v1/access-requests/{request_id}/review"
        headers = get_auth_headers(admin_user)
        await client.post(url, json={"action": "deny"}, headers=headers)
        resp = await client.post(url, json={"action": "approve"}, headers=headers)
        assert resp.status_code == 409

    async def test_only_admin_reviews(self, client: AsyncClient, admin_user, editor_user, viewer_user):
        await create_workspace(client, admin_user)
        await add_member(client, admin_user, editor_user, role="EDITOR")
        await add_member(client, admin_user, viewer_user)
        request_id = (await _request_access(client, viewer_user)).json()["id"]
        resp = await client.post(
            f"/api/v1/access-requests/{request_id}/review", json={"action": "approve"},
            headers=get_auth_headers(editor_user),
        )
        assert resp.status_code == 403

    async def test_invalid_action(self, client: AsyncClient, admin_user, viewer_user):
        await create_workspace(client, admin_user)
        await add_member(client, admin_user, viewer_user)
        request_id = (await _request_access(client, viewer_user)).json()["id"]
        resp = await client.post(
            f"/api/v1/access-requests/{request_id}/review", json={"action": "maybe"},
            headers=get_auth_headers(admin_user),
        )
        assert resp.status_code == 422
