# routers/tasks.py — Task cards: create, move, update, delete, comments
import logging
from datetime import datetime
from typing import Optional, List

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select, func, delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from activity import record_activity
from auth import get_current_user, get_optional_user, CurrentUser
from config import get_settings
from database import get_db_session
from email_sender import send_email, task_assigned_email
from lookups import get_workspace, get_workspace_by_id, get_board, get_task, ts, enum_value
from models import (
    Board, Task, Subtask, TaskComment, User, ActivityType, TaskStatus, TaskPriority,
    task_assignees,
)
from ordering import next_order, compute_order, order_for_drop, needs_rebalance, rebalance
from permissions import Action, require_permission

logger = logging.getLogger("flux.tasks")

router = APIRouter(prefix="/api/v1", tags=["Tasks"])

CONFLICT_DETAIL = "Task was modified by someone else. Reload and try again."


# ============================================================
# SCHEMAS
# ============================================================

class SubtaskIn(BaseModel):
    id: Optional[str] = None
    title: str = Field(..., min_length=1, max_length=500)
    completed: bool = False


class TaskCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.BACKLOG
    priority: TaskPriority = TaskPriority.MEDIUM
    category_id: Optional[str] = None
    tags: List[str] = []
    due_date: Optional[datetime] = None
    subtasks: List[SubtaskIn] = []


class TaskUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=500)
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    category_id: Optional[str] = None
    assignee_ids: Optional[List[str]] = None
    subtasks: Optional[List[SubtaskIn]] = None
    tags: Optional[List[str]] = None
    due_date: Optional[datetime] = None
    expected_version: Optional[int] = None


class PositionUpdate(BaseModel):
    """Where a task lands: an explicit ``order``, an ``index`` in the
    destination column, or the task it was dropped on (``over_id``).
    With none of them the task is appended."""
    status: TaskStatus
    order: Optional[float] = None
    index: Optional[int] = Field(None, ge=0)
    over_id: Optional[str] = None
    expected_version: Optional[int] = None


class CommentCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=10000)


class UserOut(BaseModel):
    id: str
    name: str
    email: str
    image: Optional[str] = None


class SubtaskOut(BaseModel):
    id: str
    title: str
    completed: bool


class CommentOut(BaseModel):
    id: str
    user_id: str
    content: str
    created_at: Optional[str] = None
    user: Optional[UserOut] = None


class TaskOut(BaseModel):
    id: str
    workspace_id: str
    board_id: str
    title: str
    description: Optional[str] = None
    status: str
    priority: str
    category_id: Optional[str] = None
    order: float
    tags: List[str] = []
    due_date: Optional[str] = None
    version: int
    assignees: List[UserOut] = []
    subtasks: List[SubtaskOut] = []
    comments: List[CommentOut] = []
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


# ============================================================
# BOARD TASKS
# ============================================================

@router.get("/workspaces/{slug}/boards/{board_slug}/tasks", response_model=List[TaskOut])
async def list_tasks(
    slug: str,
    board_slug: str,
    user: Optional[CurrentUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Active (non-archived) tasks of a board, sorted by order"""
    workspace = await get_workspace(db, slug)
    require_permission(
        workspace.member_for(user.id) if user else None, Action.VIEW_BOARD,
        "You do not have access to this board", public_access=workspace.public_access,
    )
    board = await get_board(db, workspace.id, board_slug)

    stmt = (
        select(Task)
        .where(Task.board_id == board.id, Task.status != TaskStatus.ARCHIVED)
        .order_by(Task.order.asc())
    )
    result = await db.execute(stmt)
    return [_task_to_out(t) for t in result.scalars().all()]


@router.post("/workspaces/{slug}/boards/{board_slug}/tasks", response_model=TaskOut, status_code=201)
async def create_task(
    slug: str,
    board_slug: str,
    data: TaskCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Create a task at the end of its column; the creator is the first assignee"""
    workspace = await get_workspace(db, slug)
    require_permission(
        workspace.member_for(user.id), Action.CREATE_TASK,
        "You do not have permission to create tasks",
    )
    board = await get_board(db, workspace.id, board_slug)
    _check_category(board, data.category_id)

    max_stmt = select(func.max(Task.order)).where(
        Task.board_id == board.id, Task.status == data.status
    )
    max_order = (await db.execute(max_stmt)).scalar()

    creator = await db.get(User, user.id)
    task = Task(
        workspace_id=workspace.id,
        board_id=board.id,
        title=data.title,
        description=data.description,
        status=data.status,
        priority=data.priority,
        category_id=data.category_id,
        order=next_order(max_order, get_settings().order_step),
        tags=data.tags,
        due_date=data.due_date,
        assignees=[creator] if creator else [],
        subtasks=[
            Subtask(title=s.title, completed=s.completed, position=i)
            for i, s in enumerate(data.subtasks)
        ],
        comments=[],
    )
    db.add(task)
    await db.commit()
    task_id = task.id

    await record_activity(
        db,
        workspace_id=workspace.id,
        user_id=user.id,
        type=ActivityType.TASK_CREATED,
        title="Task created",
        description=f'{user.name} created "{task.title}"',
        board=board,
        task_id=task_id,
        metadata={"taskTitle": task.title, "status": enum_value(task.status)},
    )
    task = await get_task(db, task_id, refresh=True)
    return _task_to_out(task)


@router.get("/workspaces/{slug}/archive", response_model=List[TaskOut])
async def list_archived_tasks(
    slug: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Archived tasks across the workspace, most recently updated first"""
    workspace = await get_workspace(db, slug)
    require_permission(
        workspace.member_for(user.id), Action.VIEW_BOARD,
        "You do not have access to this workspace",
    )
    stmt = (
        select(Task)
        .where(Task.workspace_id == workspace.id, Task.status == TaskStatus.ARCHIVED)
        .order_by(Task.updated_at.desc())
    )
    result = await db.execute(stmt)
    return [_task_to_out(t) for t in result.scalars().all()]


# ============================================================
# SINGLE TASK
# ============================================================

@router.patch("/tasks/{task_id}/position", response_model=TaskOut)
async def update_task_position(
    task_id: str,
    data: PositionUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Move a task within or across status columns"""
    task = await get_task(db, task_id)
    workspace = await get_workspace_by_id(db, task.workspace_id)
    require_permission(
        workspace.member_for(user.id), Action.UPDATE_TASK,
        "You do not have permission to update tasks",
        is_assignee=_is_assignee(task, user.id),
    )
    _check_version(task, data.expected_version)

    settings = get_settings()
    old_status = task.status
    column = await _column(db, task.board_id, data.status)

    if data.order is not None:
        new_order = data.order
    elif data.index is not None:
        others = [t for t in column if t.id != task.id]
        new_order = compute_order(others, data.index, settings.order_step)
    else:
        new_order = order_for_drop(
            column if data.status == old_status else [t for t in column if t.id != task.id],
            task.id, data.over_id, task.order, settings.order_step,
        )

    task.status = data.status
    task.order = new_order
    await _commit_task(db)

    await _rebalance_column(db, task.board_id, data.status)

    board = await db.get(Board, task.board_id)
    await record_activity(
        db,
        workspace_id=workspace.id,
        user_id=user.id,
        type=ActivityType.TASK_MOVED,
        title="Task moved",
        description=f'{user.name} moved "{task.title}" to {enum_value(data.status)}',
        board=board,
        task_id=task_id,
        metadata={"from": enum_value(old_status), "to": enum_value(data.status), "order": new_order},
    )
    task = await get_task(db, task_id, refresh=True)
    return _task_to_out(task)


@router.patch("/tasks/{task_id}", response_model=TaskOut)
async def update_task(
    task_id: str,
    data: TaskUpdate,
    background_tasks: BackgroundTasks,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Update task fields; archiving is ``status = ARCHIVED``"""
    task = await get_task(db, task_id)
    workspace = await get_workspace_by_id(db, task.workspace_id)
    require_permission(
        workspace.member_for(user.id), Action.UPDATE_TASK,
        "You do not have permission to update tasks",
        is_assignee=_is_assignee(task, user.id),
    )
    _check_version(task, data.expected_version)
    board = await db.get(Board, task.board_id)
    fields = data.model_fields_set

    changed = []
    if data.title is not None and data.title != task.title:
        task.title = data.title
        changed.append("title")
    if "description" in fields and data.description != task.description:
        task.description = data.description
        changed.append("description")
    if data.priority is not None and data.priority != task.priority:
        task.priority = data.priority
        changed.append("priority")
    if "tags" in fields and data.tags is not None and data.tags != (task.tags or []):
        task.tags = data.tags
        changed.append("tags")
    if "due_date" in fields and data.due_date != task.due_date:
        task.due_date = data.due_date
        changed.append("due_date")
    if data.status is not None and data.status != task.status:
        max_stmt = select(func.max(Task.order)).where(
            Task.board_id == task.board_id, Task.status == data.status
        )
        task.order = next_order((await db.execute(max_stmt)).scalar(), get_settings().order_step)
        task.status = data.status
        changed.append("status")

    old_category = task.category_id
    category_changed = False
    if "category_id" in fields and (data.category_id or None) != old_category:
        _check_category(board, data.category_id)
        task.category_id = data.category_id or None
        category_changed = True

    new_assignees = []
    if data.assignee_ids is not None:
        for assignee_id in data.assignee_ids:
            if not workspace.member_for(assignee_id):
                raise HTTPException(status_code=400, detail="Assignees must be workspace members")
        current_ids = {a.id for a in task.assignees}
        result = await db.execute(select(User).where(User.id.in_(data.assignee_ids)))
        users = {u.id: u for u in result.scalars().all()}
        task.assignees = [users[i] for i in dict.fromkeys(data.assignee_ids) if i in users]
        new_assignees = [(u.id, u.name, u.email) for u in task.assignees if u.id not in current_ids]

    completed_subtasks: List[str] = []
    if data.subtasks is not None:
        existing = {s.id: s for s in task.subtasks}
        subtasks = []
        for position, item in enumerate(data.subtasks):
            subtask = existing.get(item.id) if item.id else None
            if subtask is None:
                subtask = Subtask(title=item.title, completed=False, position=position)
            if item.completed and not subtask.completed:
                completed_subtasks.append(item.title)
            subtask.title = item.title
            subtask.completed = item.completed
            subtask.position = position
            subtasks.append(subtask)
        task.subtasks = subtasks

    await _commit_task(db)

    task_title, board_name = task.title, board.name
    task_url = f"{get_settings().app_url}/{workspace.slug}/{board.slug}"
    activity = dict(workspace_id=workspace.id, user_id=user.id, board=board, task_id=task_id)
    for assignee_id, assignee_name, assignee_email in new_assignees:
        await record_activity(
            db, type=ActivityType.TASK_ASSIGNED, title="Task assigned",
            description=f'{user.name} assigned {assignee_name} to "{task_title}"',
            metadata={"taskTitle": task_title, "assigneeId": assignee_id}, **activity,
        )
        if assignee_id != user.id:
            background_tasks.add_task(
                send_email,
                assignee_email,
                f"You were assigned to {task_title}",
                task_assigned_email(assignee_name, user.name, task_title, board_name, task_url),
            )
    for subtask_title in completed_subtasks:
        await record_activity(
            db, type=ActivityType.SUBTASK_COMPLETED, title="Subtask completed",
            description=f'{user.name} completed "{subtask_title}" on "{task_title}"',
            metadata={"taskTitle": task_title, "subtaskTitle": subtask_title}, **activity,
        )
    if category_changed:
        await record_activity(
            db, type=ActivityType.CATEGORY_CHANGED, title="Category changed",
            description=f'{user.name} changed the category of "{task_title}"',
            metadata={"from": old_category, "to": data.category_id or None}, **activity,
        )
    if changed:
        await record_activity(
            db, type=ActivityType.TASK_UPDATED, title="Task updated",
            description=f'{user.name} updated "{task_title}"',
            metadata={"taskTitle": task_title, "fields": changed}, **activity,
        )

    task = await get_task(db, task_id, refresh=True)
    return _task_to_out(task)


@router.delete("/tasks/{task_id}")
async def delete_task(
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Hard-delete a task with its assignees, subtasks and comments"""
    task = await get_task(db, task_id)
    workspace = await get_workspace_by_id(db, task.workspace_id)
    require_permission(
        workspace.member_for(user.id), Action.DELETE_TASK,
        "You do not have permission to delete tasks",
    )
    board = await db.get(Board, task.board_id)
    title = task.title

    await purge_tasks(db, Task.id == task_id)
    await db.commit()

    await record_activity(
        db,
        workspace_id=workspace.id,
        user_id=user.id,
        type=ActivityType.TASK_DELETED,
        title="Task deleted",
        description=f'{user.name} deleted "{title}"',
        board=board,
        task_id=task_id,
        metadata={"taskTitle": title},
    )
    return {"success": True}


# ============================================================
# COMMENTS
# ============================================================

@router.post("/tasks/{task_id}/comments", response_model=CommentOut, status_code=201)
async def add_comment(
    task_id: str,
    data: CommentCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Comment on a task (any member)"""
    task = await get_task(db, task_id)
    workspace = await get_workspace_by_id(db, task.workspace_id)
    require_permission(
        workspace.member_for(user.id), Action.COMMENT,
        "You must be a workspace member to comment",
    )

    comment = TaskComment(task_id=task.id, user_id=user.id, content=data.content)
    comment.user = await db.get(User, user.id)
    db.add(comment)
    await db.commit()
    out = _comment_to_out(comment)

    board = await db.get(Board, task.board_id)
    await record_activity(
        db,
        workspace_id=workspace.id,
        user_id=user.id,
        type=ActivityType.COMMENT_ADDED,
        title="Comment added",
        description=f'{user.name} commented on "{task.title}"',
        board=board,
        task_id=task.id,
        metadata={"taskTitle": task.title, "commentId": comment.id, "content": data.content[:200]},
    )
    return out


@router.delete("/tasks/{task_id}/comments/{comment_id}")
async def delete_comment(
    task_id: str,
    comment_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Delete a comment (its author, or an ADMIN)"""
    task = await get_task(db, task_id)
    workspace = await get_workspace_by_id(db, task.workspace_id)
    comment = await db.get(TaskComment, comment_id)
    if not comment or comment.task_id != task.id:
        raise HTTPException(status_code=404, detail="Comment not found")
    require_permission(
        workspace.member_for(user.id), Action.DELETE_COMMENT,
        "You can only delete your own comments",
        is_author=comment.user_id == user.id,
    )

    await db.execute(delete(TaskComment).where(TaskComment.id == comment_id))
    await db.commit()
    return {"success": True}


# ============================================================
# HELPERS
# ============================================================

async def purge_tasks(db: AsyncSession, *criteria) -> int:
    """Delete the tasks matching ``criteria`` and their child rows; caller commits"""
    task_ids = select(Task.id).where(*criteria)
    await db.execute(delete(task_assignees).where(task_assignees.c.task_id.in_(task_ids)))
    await db.execute(delete(Subtask).where(Subtask.task_id.in_(task_ids)))
    await db.execute(delete(TaskComment).where(TaskComment.task_id.in_(task_ids)))
    result = await db.execute(delete(Task).where(*criteria))
    return result.rowcount


def _is_assignee(task: Task, user_id: str) -> bool:
    return any(a.id == user_id for a in task.assignees)


def _check_version(task: Task, expected_version: Optional[int]) -> None:
    if expected_version is not None and expected_version != task.version:
        raise HTTPException(status_code=409, detail=CONFLICT_DETAIL)


def _check_category(board: Board, category_id: Optional[str]) -> None:
    if category_id and not any(c.id == category_id for c in board.categories):
        raise HTTPException(status_code=400, detail="Category does not belong to this board")


async def _commit_task(db: AsyncSession) -> None:
    try:
        await db.commit()
    except StaleDataError:
        await db.rollback()
        raise HTTPException(status_code=409, detail=CONFLICT_DETAIL)


async def _column(db: AsyncSession, board_id: str, status: TaskStatus) -> List[Task]:
    stmt = (
        select(Task)
        .where(Task.board_id == board_id, Task.status == status)
        .order_by(Task.order.asc(), Task.created_at.asc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def _rebalance_column(db: AsyncSession, board_id: str, status: TaskStatus) -> None:
    """Renumber a column once adjacent orders collapse below the epsilon"""
    settings = get_settings()
    column = await _column(db, board_id, status)
    if not needs_rebalance([t.order for t in column], settings.order_epsilon):
        return
    for t, order in zip(column, rebalance(len(column), settings.order_step)):
        t.order = order
    await _commit_task(db)
    logger.info(f"Rebalanced column {status.value} of board {board_id} ({len(column)} tasks)")


def _user_to_out(u: User) -> UserOut:
    return UserOut(id=u.id, name=u.name, email=u.email, image=u.image)


def _comment_to_out(c: TaskComment) -> CommentOut:
    return CommentOut(
        id=c.id,
        user_id=c.user_id,
        content=c.content,
        created_at=ts(c.created_at),
        user=_user_to_out(c.user) if c.user else None,
    )


def _task_to_out(task: Task) -> TaskOut:
    return TaskOut(
        id=task.id,
        workspace_id=task.workspace_id,
        board_id=task.board_id,
        title=task.title,
        description=task.description,
        status=enum_value(task.status),
        priority=enum_value(task.priority),
        category_id=task.category_id,
        order=task.order,
        tags=task.tags or [],
        due_date=ts(task.due_date),
        version=task.version,
        assignees=[_user_to_out(a) for a in task.assignees],
        subtasks=[SubtaskOut(id=s.id, title=s.title, completed=s.completed) for s in task.subtasks],
        comments=[_comment_to_out(c) for c in task.comments],
        created_at=ts(task.created_at),
        updated_at=ts(task.updated_at),
    )
