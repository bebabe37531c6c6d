# tests/test_tasks.py — Task lifecycle, ordering and permissions
import pytest
from httpx import AsyncClient

from tests.conftest import (
    get_auth_headers, create_workspace, add_member, create_board, create_task,
)

TASKS_URL = "/api/v1/workspaces/acme/boards/general/tasks"


async def _setup(client: AsyncClient, admin_user):
    await create_workspace(client, admin_user)
    return await create_board(client, admin_user)


async def _move(client: AsyncClient, user, task_id: str, **body):
    return await client.patch(f"/api/v1/tasks/{task_id}/position", json=body, headers=get_auth_headers(user))


async def _list(client: AsyncClient, user):
    resp = await client.get(TASKS_URL, headers=get_auth_headers(user))
    assert resp.status_code == 200
    return resp.json()


@pytest.mark.asyncio
class TestCreateTask:
    async def test_orders_start_at_1000_and_step_by_1000(self, client: AsyncClient, admin_user):
        await _setup(client, admin_user)
        first = await create_task(client, admin_user, "First")
        second = await create_task(client, admin_user, "Second")
        other_column = await create_task(client, admin_user, "Elsewhere", status="TODO")
        assert (first["order"], second["order"], other_column["order"]) == (1000, 2000, 1000)

    async def test_creator_is_first_assignee(self, client: AsyncClient, admin_user):
        await _setup(client, admin_user)
        task = await create_task(client, admin_user, "Mine", subtasks=[{"title": "Step 1"}])
        assert [a["id"] for a in task["assignees"]] == [admin_user.id]
        assert [s["title"] for s in task["subtasks"]] == ["Step 1"]
        assert task["version"] == 1
        assert task["priority"] == "MEDIUM"

    async def test_viewer_cannot_create(self, client: AsyncClient, admin_user, viewer_user):
        await _setup(client, admin_user)
        await add_member(client, admin_user, viewer_user)
        resp = await client.post(TASKS_URL, json={"title": "Nope"}, headers=get_auth_headers(viewer_user))
        assert resp.status_code == 403
        assert resp.json()["detail"] == "You do not have permission to create tasks"
        assert await _list(client, admin_user) == []

    async def test_outsider_cannot_create(self, client: AsyncClient, admin_user, outsider):
        await _setup(client, admin_user)
        resp = await client.post(TASKS_URL, json={"title": "Nope"}, headers=get_auth_headers(outsider))
        assert resp.status_code == 403

    async def test_category_must_belong_to_board(self, client: AsyncClient, admin_user):
        await _setup(client, admin_user)
        resp = await client.post(
            TASKS_URL, json={"title": "X", "category_id": "not-a-category"}, headers=get_auth_headers(admin_user),
        )
        assert resp.status_code == 400

    async def test_records_activity(self, client: AsyncClient, admin_user):
        await _setup(client, admin_user)
        await create_task(client, admin_user, "Ship v1")
        resp = await client.get("/api/v1/workspaces/acme/activity", headers=get_auth_headers(admin_user))
        assert resp.json()[0]["type"] == "TASK_CREATED"


@pytest.mark.asyncio
class TestMoveTask:
    async def test_acme_scenario_explicit_order(self, client: AsyncClient, admin_user):
        await _setup(client, admin_user)
        task = await create_task(client, admin_user, "Ship v1")
        assert task["order"] == 1000

        resp = await _move(client, admin_user, task["id"], status="TODO", order=500)
        assert resp.status_code == 200
        moved = resp.json()
        assert moved["status"] == "TODO"
        assert moved["order"] == 500
        assert moved["version"] == 2

    async def test_drop_before_first_uses_midpoint(self, client: AsyncClient, admin_user):
        await _setup(client, admin_user)
        existing = await create_task(client, admin_user, "Existing", status="TODO")
        task = await create_task(client, admin_user, "Ship v1")

        resp = await _move(client, admin_user, task["id"], status="TODO", over_id=existing["id"])
        assert resp.json()["order"] == 500
        assert [t["title"] for t in await _list(client, admin_user) if t["status"] == "TODO"] == [
            "Ship v1", "Existing",
        ]

    async def test_drop_on_column_appends(self, client: AsyncClient, admin_user):
        await _setup(client, admin_user)
        await create_task(client, admin_user, "A", status="TODO")
        task = await create_task(client, admin_user, "B")
        resp = await _move(client, admin_user, task["id"], status="TODO")
        assert resp.json()["order"] == 2000

    async def test_drop_into_empty_column(self, client: AsyncClient, admin_user):
        await _setup(client, admin_user)
        task = await create_task(client, admin_user, "Lonely")
        resp = await _move(client, admin_user, task["id"], status="DONE")
        assert resp.json()["order"] == 1000

    async def test_index_placement_between_neighbours(self, client: AsyncClient, admin_user):
        await _setup(client, admin_user)
        await create_task(client, admin_user, "A", status="TODO")
        await create_task(client, admin_user, "B", status="TODO")
        task = await create_task(client, admin_user, "C")
        resp = await _move(client, admin_user, task["id"], status="TODO", index=1)
        order = resp.json()["order"]
        assert 1000 < order < 2000

    async def test_reorder_within_column(self, client: AsyncClient, admin_user):
        await _setup(client, admin_user)
        a = await create_task(client, admin_user, "A")
        await create_task(client, admin_user, "B")
        c = await create_task(client, admin_user, "C")
        resp = await _move(client, admin_user, c["id"], status="BACKLOG", over_id=a["id"])
        assert resp.json()["order"] == 500
        assert [t["title"] for t in await _list(client, admin_user)] == ["C", "A", "B"]

    async def test_collapsed_gap_triggers_renumbering(self, client: AsyncClient, admin_user):
        await _setup(client, admin_user)
        await create_task(client, admin_user, "A")
        b = await create_task(client, admin_user, "B")
        resp = await _move(client, admin_user, b["id"], status="BACKLOG", order=1000 + 1e-9)
        assert resp.status_code == 200
        tasks = await _list(client, admin_user)
        assert [(t["title"], t["order"]) for t in tasks] == [("A", 1000), ("B", 2000)]

    async def test_records_task_moved(self, client: AsyncClient, admin_user):
        await _setup(client, admin_user)
        task = await create_task(client, admin_user, "Ship v1")
        await _move(client, admin_user, task["id"], status="DONE")
        resp = await client.get("/api/v1/workspaces/acme/activity", headers=get_auth_headers(admin_user))
        latest = resp.json()[0]
        assert latest["type"] == "TASK_MOVED"
        assert latest["metadata"]["from"] == "BACKLOG"
        assert latest["metadata"]["to"] == "DONE"

    async def test_viewer_without_assignment_cannot_move(self, client: AsyncClient, admin_user, viewer_user):
        await _setup(client, admin_user)
        await add_member(client, admin_user, viewer_user)
        task = await create_task(client, admin_user, "Ship v1")
        resp = await _move(client, viewer_user, task["id"], status="TODO", order=500)
        assert resp.status_code == 403
        assert "do not have permission" in resp.json()["detail"]
        assert (await _list(client, admin_user))[0]["status"] == "BACKLOG"

    async def test_assigned_viewer_can_move(self, client: AsyncClient, admin_user, viewer_user):
        await _setup(client, admin_user)
        await add_member(client, admin_user, viewer_user)
        task = await create_task(client, admin_user, "Ship v1")
        resp = await client.patch(
            f"/api/v1/tasks/{task['id']}", json={"assignee_ids": [admin_user.id, viewer_user.id]},
            headers=get_auth_headers(admin_user),
        )
        assert resp.status_code == 200
        resp = await _move(client, viewer_user, task["id"], status="IN_PROGRESS")
        assert resp.status_code == 200
        assert resp.json()["status"] == "IN_PROGRESS"

    async def test_stale_version_conflicts(self, client: AsyncClient, admin_user):
        await _setup(client, admin_user)
        task = await create_task(client, admin_user, "Ship v1")
        assert (await _move(client, admin_user, task["id"], status="TODO", expected_version=1)).status_code == 200
        resp = await _move(client, admin_user, task["id"], status="DONE", expected_version=1)
        assert resp.status_code == 409

    async def test_unknown_task(self, client: AsyncClient, admin_user):
        await _setup(client, admin_user)
        resp = await _move(client, admin_user, "missing", status="TODO")
        assert resp.status_code == 404


@pytest.mark.asyncio
class TestUpdateTask:
    async def test_update_fields(self, client: AsyncClient, admin_user):
        await _setup(client, admin_user)
        task = await create_task(client, admin_user, "Draft")
        resp = await client.patch(
            f"/api/v1/tasks/{task['id']}",
            json={"title": "Final", "priority": "HIGH", "tags": ["release"], "description": "Go"},
            headers=get_auth_headers(admin_user),
        )
        assert resp.status_code == 200
        data = resp.json()
        assert (data["title"], data["priority"], data["tags"], data["description"]) == (
            "Final", "HIGH", ["release"], "Go",
        )
        assert data["version"] == 2

    async def test_archive_moves_out_of_board(self, client: AsyncClient, admin_user):
        await _setup(client, admin_user)
        task = await create_task(client, admin_user, "Old news")
        headers = get_auth_headers(admin_user)
        resp = await client.patch(f"/api/v1/tasks/{task['id']}", json={"status": "ARCHIVED"}, headers=headers)
        assert resp.json()["status"] == "ARCHIVED"
        assert await _list(client, admin_user) == []

        resp = await client.get("/api/v1/workspaces/acme/archive", headers=headers)
        assert [t["title"] for t in resp.json()] == ["Old news"]

    async def test_assignment_records_activity(self, client: AsyncClient, admin_user, editor_user):
        await _setup(client, admin_user)
        await add_member(client, admin_user, editor_user, role="EDITOR")
        task = await create_task(client, admin_user, "Pair up")
        headers = get_auth_headers(admin_user)
        resp = await client.patch(
            f"/api/v1/tasks/{task['id']}", json={"assignee_ids": [admin_user.id, editor_user.id]}, headers=headers,
        )
        assert {a["id"] for a in resp.json()["assignees"]} == {admin_user.id, editor_user.id}

        resp = await client.get("/api/v1/workspaces/acme/activity?type=TASK_ASSIGNED", headers=headers)
        assigned = resp.json()
        assert len(assigned) == 1
        assert assigned[0]["metadata"]["assigneeId"] == editor_user.id

    async def test_assignees_must_be_members(self, client: AsyncClient, admin_user, outsider):
        await _setup(client, admin_user)
        task = await create_task(client, admin_user, "Solo")
        resp = await client.patch(
            f"/api/v1/tasks/{task['id']}", json={"assignee_ids": [outsider.id]},
            headers=get_auth_headers(admin_user),
        )
        assert resp.status_code == 400

    async def test_completing_subtask_records_activity(self, client: AsyncClient, admin_user):
        await _setup(client, admin_user)
        task = await create_task(client, admin_user, "Checklist", subtasks=[{"title": "One"}, {"title": "Two"}])
        subtasks = task["subtasks"]
        headers = get_auth_headers(admin_user)
        resp = await client.patch(
            f"/api/v1/tasks/{task['id']}",
            json={"subtasks": [
                {"id": subtasks[0]["id"], "title": "One", "completed": True},
                {"id": subtasks[1]["id"], "title": "Two", "completed": False},
            ]},
            headers=headers,
        )
        assert [s["completed"] for s in resp.json()["subtasks"]] == [True, False]
        assert [s["id"] for s in resp.json()["subtasks"]] == [s["id"] for s in subtasks]

        resp = await client.get("/api/v1/workspaces/acme/activity?type=SUBTASK_COMPLETED", headers=headers)
        assert [a["metadata"]["subtaskTitle"] for a in resp.json()] == ["One"]

    async def test_category_change_records_activity(self, client: AsyncClient, admin_user):
        await create_workspace(client, admin_user)
        board = await create_board(client, admin_user, categories=[{"name": "Bug", "color": "#dc2626"}])
        task = await create_task(client, admin_user, "Crash")
        headers = get_auth_headers(admin_user)
        category_id = board["categories"][0]["id"]

        resp = await client.patch(f"/api/v1/tasks/{task['id']}", json={"category_id": category_id}, headers=headers)
        assert resp.json()["category_id"] == category_id
        resp = await client.get("/api/v1/workspaces/acme/activity?type=CATEGORY_CHANGED", headers=headers)
        assert resp.json()[0]["metadata"]["to"] == category_id

        resp = await client.patch(f"/api/v1/tasks/{task['id']}", json={"category_id": None}, headers=headers)
        assert resp.json()["category_id"] is None

    async def test_viewer_cannot_update_unassigned(self, client: AsyncClient, admin_user, viewer_user):
        await _setup(client, admin_user)
        await add_member(client, admin_user, viewer_user)
        task = await create_task(client, admin_user, "Hands off")
        resp = await client.patch(
            f"/api/v1/tasks/{task['id']}", json={"title": "Mine now"}, headers=get_auth_headers(viewer_user),
        )
        assert resp.status_code == 403

    async def test_expected_version_mismatch(self, client: AsyncClient, admin_user):
        await _setup(client, admin_user)
        task = await create_task(client, admin_user, "Racy")
        resp = await client.patch(
            f"/api/v1/tasks/{task['id']}", json={"title": "Mine", "expected_version": 7},
            headers=get_auth_headers(admin_user),
        )
        assert resp.status_code == 409


@pytest.mark.asyncio
class TestDeleteTask:
    async def test_editor_deletes(self, client: AsyncClient, admin_user, editor_user):
        await _setup(client, admin_user)
        await add_member(client, admin_user, editor_user, role="EDITOR")
        task = await create_task(client, admin_user, "Doomed")
        await client.post(
            f"/api/v1/tasks/{task['id']}/comments", json={"content": "bye"}, headers=get_auth_headers(admin_user),
        )
        resp = await client.delete(f"/api/v1/tasks/{task['id']}", headers=get_auth_headers(editor_user))
        assert resp.status_code == 200
        assert await _list(client, admin_user) == []

        resp = await client.get("/api/v1/workspaces/acme/activity", headers=get_auth_headers(admin_user))
        assert resp.json()[0]["type"] == "TASK_DELETED"

    async def test_viewer_cannot_delete_even_if_assigned(self, client: AsyncClient, admin_user, viewer_user):
        await _setup(client, admin_user)
        await add_member(client, admin_user, viewer_user)
        task = await create_task(client, admin_user, "Keep me")
        await client.patch(
            f"/api/v1/tasks/{task['id']}", json={"assignee_ids": [viewer_user.id]},
            headers=get_auth_headers(admin_user),
        )
        resp = await client.delete(f"/api/v1/tasks/{task['id']}", headers=get_auth_headers(viewer_user))
        assert resp.status_code == 403
        assert resp.json()["detail"] == "You do not have permission to delete tasks"
        assert len(await _list(client, admin_user)) == 1


@pytest.mark.asyncio
class TestComments:
    async def test_viewer_comments_and_deletes_own(self, client: AsyncClient, admin_user, viewer_user):
        await _setup(client, admin_user)
        await add_member(client, admin_user, viewer_user)
        task = await create_task(client, admin_user, "Discuss")
        headers = get_auth_headers(viewer_user)

        resp = await client.post(f"/api/v1/tasks/{task['id']}/comments", json={"content": "+1"}, headers=headers)
        assert resp.status_code == 201
        comment = resp.json()
        assert comment["user"]["name"] == "Vera Viewer"

        resp = await client.delete(f"/api/v1/tasks/{task['id']}/comments/{comment['id']}", headers=headers)
        assert resp.status_code == 200
        assert (await _list(client, admin_user))[0]["comments"] == []

    async def test_cannot_delete_others_comment_unless_admin(
        self, client: AsyncClient, admin_user, editor_user, viewer_user,
    ):
        await _setup(client, admin_user)
        await add_member(client, admin_user, editor_user, role="EDITOR")
        await add_member(client, admin_user, viewer_user)
        task = await create_task(client, admin_user, "Discuss")
        resp = await client.post(
            f"/api/v1/tasks/{task['id']}/comments", json={"content": "mine"}, headers=get_auth_headers(viewer_user),
        )
        url = f"/api/v1/tasks/{task['id']}/comments/{resp.json()['id']}"

        assert (await client.delete(url, headers=get_auth_headers(editor_user))).status_code == 403
        assert (await client.delete(url, headers=get_auth_headers(admin_user))).status_code == 200

    async def test_outsider_cannot_comment(self, client: AsyncClient, admin_user, outsider):
        await _setup(client, admin_user)
        task = await create_task(client, admin_user, "Private")
        resp = await client.post(
            f"/api/v1/tasks/{task['id']}/comments", json={"content": "hi"}, headers=get_auth_headers(outsider),
        )
        assert resp.status_code == 403


@pytest.mark.asyncio
class TestVisibility:
    async def test_private_board_tasks_hidden(self, client: AsyncClient, admin_user, outsider):
        await _setup(client, admin_user)
        await create_task(client, admin_user, "Secret")
        resp = await client.get(TASKS_URL, headers=get_auth_headers(outsider))
        assert resp.status_code == 403
        assert (await client.get(TASKS_URL)).status_code == 403

    async def test_public_board_tasks_visible_anonymously(self, client: AsyncClient, admin_user):
        await _setup(client, admin_user)
        await create_task(client, admin_user, "Open")
        await client.patch(
            "/api/v1/workspaces/acme", json={"public_access": True}, headers=get_auth_headers(admin_user),
        )
        resp = await client.get(TASKS_URL)
        assert [t["title"] for t in resp.json()] == ["Open"]
