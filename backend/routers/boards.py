# routers/boards.py — Boards and their category taxonomy
import re
import logging
from typing import Optional, List

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select, delete, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, get_optional_user, CurrentUser
from database import get_db_session
from lookups import get_workspace, get_board, ts
from models import Board, BoardCategory, Task, Workspace
from permissions import Action, require_permission
from routers.tasks import purge_tasks

logger = logging.getLogger("flux.boards")

router = APIRouter(prefix="/api/v1/workspaces/{slug}/boards", tags=["Boards"])

HEX_COLOR = r"^#[0-9a-fA-F]{6}$"


# ============================================================
# SCHEMAS
# ============================================================

class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    color: str = Field(..., pattern=HEX_COLOR)


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    color: Optional[str] = Field(None, pattern=HEX_COLOR)


class BoardCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    color: str = Field("#6366f1", pattern=HEX_COLOR)
    icon: Optional[str] = None
    categories: List[CategoryIn] = []


class BoardUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    color: Optional[str] = Field(None, pattern=HEX_COLOR)
    icon: Optional[str] = None


class CategoryOut(BaseModel):
    id: str
    name: str
    color: str


class BoardOut(BaseModel):
    id: str
    workspace_id: str
    name: str
    slug: str
    description: Optional[str] = None
    color: str
    icon: Optional[str] = None
    categories: List[CategoryOut] = []
    created_at: Optional[str] = None


# ============================================================
# BOARDS
# ============================================================

@router.get("", response_model=List[BoardOut])
async def list_boards(
    slug: str,
    user: Optional[CurrentUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db_session),
):
    """All boards in a workspace, oldest first"""
    workspace = await _viewable_workspace(db, slug, user)
    stmt = select(Board).where(Board.workspace_id == workspace.id).order_by(Board.created_at.asc())
    result = await db.execute(stmt)
    return [_board_to_out(b) for b in result.scalars().all()]


@router.post("", response_model=BoardOut, status_code=201)
async def create_board(
    slug: str,
    data: BoardCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Create a board; its slug is derived from the name"""
    workspace = await get_workspace(db, slug)
    require_permission(
        workspace.member_for(user.id), Action.MANAGE_BOARD,
        "You do not have permission to create boards",
    )

    board_slug = slugify(data.name)
    if not board_slug:
        raise HTTPException(status_code=400, detail="Board name must contain letters or numbers")

    existing = await db.execute(
        select(Board.id).where(Board.workspace_id == workspace.id, Board.slug == board_slug)
    )
    if existing.scalar_one_or_none():
        raise HTTPException(status_code=409, detail="A board with this name already exists")

    board = Board(
        workspace_id=workspace.id,
        name=data.name,
        slug=board_slug,
        description=data.description,
        color=data.color,
        icon=data.icon,
        categories=[BoardCategory(name=c.name, color=c.color) for c in data.categories],
    )
    db.add(board)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=409, detail="A board with this name already exists")

    logger.info(f"Board created: {slug}/{board_slug} by {user.id}")
    return _board_to_out(board)


@router.get("/{board_slug}", response_model=BoardOut)
async def get_board_by_slug(
    slug: str,
    board_slug: str,
    user: Optional[CurrentUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db_session),
):
    workspace = await _viewable_workspace(db, slug, user)
    return _board_to_out(await get_board(db, workspace.id, board_slug))


@router.patch("/{board_slug}", response_model=BoardOut)
async def update_board(
    slug: str,
    board_slug: str,
    data: BoardUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Update board details; the slug stays stable across renames"""
    workspace = await get_workspace(db, slug)
    require_permission(
        workspace.member_for(user.id), Action.MANAGE_BOARD,
        "You do not have permission to update boards",
    )
    board = await get_board(db, workspace.id, board_slug)

    for field in ("name", "description", "color", "icon"):
        if field in data.model_fields_set:
            value = getattr(data, field)
            if value is None and field in ("name", "color"):
                continue
            setattr(board, field, value)

    await db.commit()
    return _board_to_out(board)


@router.delete("/{board_slug}")
async def delete_board(
    slug: str,
    board_slug: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Delete a board together with its tasks and categories (ADMIN only)"""
    workspace = await get_workspace(db, slug)
    require_permission(
        workspace.member_for(user.id), Action.DELETE_BOARD,
        "Only the workspace admin can delete boards",
    )
    board = await get_board(db, workspace.id, board_slug)

    removed = await purge_tasks(db, Task.board_id == board.id)
    await db.execute(delete(BoardCategory).where(BoardCategory.board_id == board.id))
    await db.execute(delete(Board).where(Board.id == board.id))
    await db.commit()

    logger.info(f"Board deleted: {slug}/{board_slug} ({removed} tasks) by {user.id}")
    return {"success": True, "tasks_deleted": removed}


# ============================================================
# CATEGORIES
# ============================================================

@router.get("/{board_slug}/categories", response_model=List[CategoryOut])
async def list_categories(
    slug: str,
    board_slug: str,
    user: Optional[CurrentUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db_session),
):
    workspace = await _viewable_workspace(db, slug, user)
    board = await get_board(db, workspace.id, board_slug)
    return [_category_to_out(c) for c in board.categories]


@router.post("/{board_slug}/categories", response_model=CategoryOut, status_code=201)
async def add_category(
    slug: str,
    board_slug: str,
    data: CategoryIn,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    workspace = await get_workspace(db, slug)
    require_permission(
        workspace.member_for(user.id), Action.MANAGE_CATEGORY,
        "You do not have permission to manage categories",
    )
    board = await get_board(db, workspace.id, board_slug)

    category = BoardCategory(board_id=board.id, name=data.name, color=data.color)
    db.add(category)
    await db.commit()
    return _category_to_out(category)


@router.patch("/{board_slug}/categories/{category_id}", response_model=CategoryOut)
async def update_category(
    slug: str,
    board_slug: str,
    category_id: str,
    data: CategoryUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    workspace = await get_workspace(db, slug)
    require_permission(
        workspace.member_for(user.id), Action.MANAGE_CATEGORY,
        "You do not have permission to manage categories",
    )
    board = await get_board(db, workspace.id, board_slug)

    changes = data.model_dump(exclude_none=True)
    if changes:
        result = await db.execute(
            update(BoardCategory)
            .where(BoardCategory.id == category_id, BoardCategory.board_id == board.id)
            .values(**changes)
        )
        if result.rowcount == 0:
            await db.rollback()
            raise HTTPException(status_code=404, detail="Category not found")
        await db.commit()

    category = await db.get(BoardCategory, category_id)
    if not category or category.board_id != board.id:
        raise HTTPException(status_code=404, detail="Category not found")
    return _category_to_out(category)


@router.delete("/{board_slug}/categories/{category_id}")
async def delete_category(
    slug: str,
    board_slug: str,
    category_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Delete a category and clear it from the board's tasks"""
    workspace = await get_workspace(db, slug)
    require_permission(
        workspace.member_for(user.id), Action.MANAGE_CATEGORY,
        "You do not have permission to manage categories",
    )
    board = await get_board(db, workspace.id, board_slug)

    result = await db.execute(
        delete(BoardCategory).where(BoardCategory.id == category_id, BoardCategory.board_id == board.id)
    )
    if result.rowcount == 0:
        await db.rollback()
        raise HTTPException(status_code=404, detail="Category not found")
    await db.execute(
        update(Task)
        .where(Task.board_id == board.id, Task.category_id == category_id)
        .values(category_id=None)
    )
    await db.commit()
    return {"success": True}


# ============================================================
# HELPERS
# ============================================================

def slugify(name: str) -> str:
    slug = re.sub(r"\s+", "-", name.strip().lower())
    return re.sub(r"[^a-z0-9-]", "", slug)


async def _viewable_workspace(db: AsyncSession, slug: str, user: Optional[CurrentUser]) -> Workspace:
    workspace = await get_workspace(db, slug)
    require_permission(
        workspace.member_for(user.id) if user else None, Action.VIEW_BOARD,
        "You do not have access to this workspace", public_access=workspace.public_access,
    )
    return workspace


def _category_to_out(c: BoardCategory) -> CategoryOut:
    return CategoryOut(id=c.id, name=c.name, color=c.color)


def _board_to_out(board: Board) -> BoardOut:
    return BoardOut(
        id=board.id,
        workspace_id=board.workspace_id,
        name=board.name,
        slug=board.slug,
        description=board.description,
        color=board.color,
        icon=board.icon,
        categories=[_category_to_out(c) for c in board.categories],
        created_at=ts(board.created_at),
    )
