# routers/activity.py — Workspace activity feed and unread tracking
from typing import Optional, List, Dict, Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy import select, func, update
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, CurrentUser
from database import get_db_session
from lookups import get_workspace, get_workspace_by_id, ts, enum_value
from models import ActivityLog, ActivityType, Workspace
from permissions import Action, require_permission

router = APIRouter(prefix="/api/v1", tags=["Activity"])


class ActorOut(BaseModel):
    id: str
    name: str
    image: Optional[str] = None


class ActivityOut(BaseModel):
    id: str
    type: str
    title: str
    description: str
    board_id: Optional[str] = None
    task_id: Optional[str] = None
    metadata: Dict[str, Any] = {}
    read: bool
    created_at: Optional[str] = None
    user: Optional[ActorOut] = None


@router.get("/workspaces/{slug}/activity", response_model=List[ActivityOut])
async def list_activity(
    slug: str,
    limit: int = Query(20, ge=1, le=100),
    type: Optional[ActivityType] = None,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Newest-first activity feed for members"""
    workspace = await _member_workspace(db, slug, user)
    stmt = select(ActivityLog).where(ActivityLog.workspace_id == workspace.id)
    if type is not None:
        stmt = stmt.where(ActivityLog.type == type)
    stmt = stmt.order_by(ActivityLog.created_at.desc()).limit(limit)
    result = await db.execute(stmt)
    return [_activity_to_out(a) for a in result.scalars().all()]


@router.get("/workspaces/{slug}/activity/comments", response_model=List[ActivityOut])
async def list_comment_activity(
    slug: str,
    limit: int = Query(20, ge=1, le=100),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return await list_activity(slug, limit, ActivityType.COMMENT_ADDED, user, db)


@router.get("/workspaces/{slug}/activity/unread-count")
async def unread_count(
    slug: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    workspace = await _member_workspace(db, slug, user)
    stmt = select(func.count(ActivityLog.id)).where(
        ActivityLog.workspace_id == workspace.id, ActivityLog.read.is_(False)
    )
    return {"count": (await db.execute(stmt)).scalar() or 0}


@router.post("/workspaces/{slug}/activity/read-all")
async def mark_all_read(
    slug: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    workspace = await _member_workspace(db, slug, user)
    result = await db.execute(
        update(ActivityLog)
        .where(ActivityLog.workspace_id == workspace.id, ActivityLog.read.is_(False))
        .values(read=True)
    )
    await db.commit()
    return {"success": True, "updated": result.rowcount}


@router.post("/activity/{activity_id}/read")
async def mark_read(
    activity_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    entry = await db.get(ActivityLog, activity_id)
    if not entry:
        raise HTTPException(status_code=404, detail="Activity not found")
    workspace = await get_workspace_by_id(db, entry.workspace_id)
    require_permission(
        workspace.member_for(user.id), Action.VIEW_BOARD,
        "You do not have access to this workspace",
    )
    entry.read = True
    await db.commit()
    return {"success": True}


async def _member_workspace(db: AsyncSession, slug: str, user: CurrentUser) -> Workspace:
    workspace = await get_workspace(db, slug)
    require_permission(
        workspace.member_for(user.id), Action.VIEW_BOARD,
        "You do not have access to this workspace",
    )
    return workspace


def _activity_to_out(a: ActivityLog) -> ActivityOut:
    return ActivityOut(
        id=a.id,
        type=enum_value(a.type),
        title=a.title,
        description=a.description,
        board_id=a.board_id,
        task_id=a.task_id,
        metadata=a.extra_data or {},
        read=a.read,
        created_at=ts(a.created_at),
        user=ActorOut(id=a.user.id, name=a.user.name, image=a.user.image) if a.user else None,
    )
