# board_client.py — Async API client for one board with optimistic updates
import logging
from typing import Any, Dict, List, Optional

import httpx

from board_state import OptimisticBoard, AddTask, UpdateTask, DeleteTask, MoveTask, PendingMutation
from ordering import ORDER_STEP, order_for_drop

logger = logging.getLogger("flux.client")


class FluxAPIError(Exception):
    """The server rejected a request; ``str(exc)`` is the server's message"""

    def __init__(self, status_code: int, detail: str):
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail


class BoardClient:
    """Keeps a board's visible tasks in sync with the API.

    Every mutation is applied to ``self.board`` before the request is sent and
    rolled back if the request fails, so ``self.board.tasks`` always reflects
    what a user should see.
    """

    def __init__(
        self,
        base_url: str,
        workspace_slug: str,
        board_slug: str,
        token: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._headers = headers
        self.workspace_slug = workspace_slug
        self.board_slug = board_slug
        self.board = OptimisticBoard()

    async def __aenter__(self) -> "BoardClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    @property
    def _tasks_url(self) -> str:
        return f"/api/v1/workspaces/{self.workspace_slug}/boards/{self.board_slug}/tasks"

    async def load(self) -> List[Dict[str, Any]]:
        tasks = await self._request("GET", self._tasks_url)
        self.board = OptimisticBoard(tasks)
        return self.board.tasks

    # ============================================================
    # MUTATIONS
    # ============================================================

    async def add_task(self, title: str, status: str = "BACKLOG", **fields) -> Dict[str, Any]:
        column = self.board.column(status)
        placeholder = {
            "id": self.board.new_temp_id(),
            "title": title,
            "status": status,
            "order": (column[-1]["order"] if column else 0.0) + ORDER_STEP,
            "assignees": [],
            "subtasks": [],
            "comments": [],
            **fields,
        }
        pending = self.board.apply(AddTask(placeholder))
        created = await self._settle(
            pending, "POST", self._tasks_url, json={"title": title, "status": status, **fields}
        )
        self.board.confirm(pending, server_id=created["id"])
        return self.board.get(created["id"])

    async def update_task(self, task_id: str, **changes) -> Dict[str, Any]:
        pending = self.board.apply(UpdateTask(task_id, changes))
        await self._settle(pending, "PATCH", f"/api/v1/tasks/{task_id}", json=changes)
        self.board.confirm(pending)
        return self.board.get(task_id)

    async def delete_task(self, task_id: str) -> None:
        pending = self.board.apply(DeleteTask(task_id))
        await self._settle(pending, "DELETE", f"/api/v1/tasks/{task_id}")
        self.board.confirm(pending)

    async def move_task(self, task_id: str, status: str, over_id: Optional[str] = None) -> Dict[str, Any]:
        """Drop ``task_id`` into ``status``, onto ``over_id`` or at the end of the column"""
        task = self.board.get(task_id)
        if task is None:
            raise KeyError(task_id)

        column = self.board.column(status)
        order = order_for_drop(column, task_id, over_id, task["order"])
        pending = self.board.apply(MoveTask(task_id, status, order))
        await self._settle(
            pending, "PATCH", f"/api/v1/tasks/{task_id}/position",
            json={"status": status, "order": order},
        )
        self.board.confirm(pending)
        return self.board.get(task_id)

    # ============================================================
    # TRANSPORT
    # ============================================================

    async def _settle(self, pending: PendingMutation, method: str, url: str, **kwargs) -> Any:
        try:
            return await self._request(method, url, **kwargs)
        except (FluxAPIError, httpx.HTTPError):
            self.board.rollback(pending)
            raise

    async def _request(self, method: str, url: str, **kwargs) -> Any:
        resp = await self._client.request(method, url, headers=self._headers, **kwargs)
        if resp.status_code >= 400:
            raise FluxAPIError(resp.status_code, _error_detail(resp))
        return resp.json() if resp.content else None


def _error_detail(resp: httpx.Response) -> str:
    try:
        detail = resp.json().get("detail")
    except ValueError:
        return resp.text or f"HTTP {resp.status_code}"
    if isinstance(detail, list):
        return "; ".join(str(d.get("msg", d)) if isinstance(d, dict) else str(d) for d in detail)
    return str(detail) if detail else f"HTTP {resp.status_code}"
