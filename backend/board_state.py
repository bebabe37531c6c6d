# board_state.py — Optimistic board state for API clients
"""
A client keeps the tasks it shows in an ``OptimisticBoard``. Mutations are
applied locally first, then the request goes out; the server's answer either
confirms the change or rolls it back to the snapshot taken before it.

    board = OptimisticBoard(tasks)
    pending = board.apply(MoveTask(task_id, "TODO", 1500.0))
    try:
        await api.move(...)
    except FluxAPIError:
        board.rollback(pending)
        raise
    board.confirm(pending)

Tasks are plain dicts shaped like the API's task payload.
"""
import copy
import itertools
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

TEMP_ID_PREFIX = "temp-"


# ============================================================
# ACTIONS
# ============================================================

@dataclass(frozen=True)
class AddTask:
    task: Dict[str, Any]


@dataclass(frozen=True)
class UpdateTask:
    task_id: str
    changes: Dict[str, Any]


@dataclass(frozen=True)
class DeleteTask:
    task_id: str


@dataclass(frozen=True)
class MoveTask:
    task_id: str
    status: str
    order: float


Action = Union[AddTask, UpdateTask, DeleteTask, MoveTask]


def reduce(tasks: List[Dict[str, Any]], action: Action) -> List[Dict[str, Any]]:
    """Pure transition: returns a new task list, never mutates ``tasks``.

    Actions that name an unknown task are no-ops.
    """
    if isinstance(action, AddTask):
        added = dict(action.task)
        return [t for t in tasks if t["id"] != added["id"]] + [added]

    if isinstance(action, UpdateTask):
        return [
            {**t, **action.changes} if t["id"] == action.task_id else t
            for t in tasks
        ]

    if isinstance(action, DeleteTask):
        return [t for t in tasks if t["id"] != action.task_id]

    if isinstance(action, MoveTask):
        return [
            {**t, "status": action.status, "order": action.order} if t["id"] == action.task_id else t
            for t in tasks
        ]

    raise TypeError(f"Unknown board action: {action!r}")


# ============================================================
# OPTIMISTIC BOARD
# ============================================================

@dataclass
class PendingMutation:
    """An applied but unconfirmed action plus what it replaced"""
    action: Action
    task_id: str
    snapshot: Optional[Dict[str, Any]] = None
    index: Optional[int] = None
    settled: bool = field(default=False)


class OptimisticBoard:
    def __init__(self, tasks: Optional[List[Dict[str, Any]]] = None):
        self.tasks: List[Dict[str, Any]] = [dict(t) for t in (tasks or [])]
        self._temp_ids = itertools.count(1)

    def new_temp_id(self) -> str:
        return f"{TEMP_ID_PREFIX}{next(self._temp_ids)}"

    def get(self, task_id: str) -> Optional[Dict[str, Any]]:
        for t in self.tasks:
            if t["id"] == task_id:
                return t
        return None

    def column(self, status: str) -> List[Dict[str, Any]]:
        """Visible tasks of one status, sorted by order"""
        return sorted((t for t in self.tasks if t.get("status") == status), key=lambda t: t["order"])

    def apply(self, action: Action) -> PendingMutation:
        task_id = action.task["id"] if isinstance(action, AddTask) else action.task_id
        snapshot, index = None, None
        for i, t in enumerate(self.tasks):
            if t["id"] == task_id:
                snapshot, index = copy.deepcopy(t), i
                break

        self.tasks = reduce(self.tasks, action)
        return PendingMutation(action=action, task_id=task_id, snapshot=snapshot, index=index)

    def confirm(self, pending: PendingMutation, server_id: Optional[str] = None) -> None:
        """Keep the optimistic value; an ADD swaps its temporary id for ``server_id``"""
        pending.settled = True
        if isinstance(pending.action, AddTask) and server_id and server_id != pending.task_id:
            self.tasks = [
                {**t, "id": server_id} if t["id"] == pending.task_id else t
                for t in self.tasks
            ]
            pending.task_id = server_id

    def rollback(self, pending: PendingMutation) -> None:
        """Restore the state the action replaced"""
        pending.settled = True
        remaining = [t for t in self.tasks if t["id"] != pending.task_id]
        if pending.snapshot is None:
            self.tasks = remaining
            return

        restored = copy.deepcopy(pending.snapshot)
        if len(remaining) == len(self.tasks):
            # Deleted locally; put it back where it was
            position = min(pending.index if pending.index is not None else len(remaining), len(remaining))
            remaining.insert(position, restored)
            self.tasks = remaining
        else:
            self.tasks = [restored if t["id"] == pending.task_id else t for t in self.tasks]
