# routers/workspaces.py — Workspaces, membership and invitations
import re
import secrets
import logging
from typing import Optional, List

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy import select, delete, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, get_optional_user, CurrentUser
from database import get_db_session
from lookups import get_workspace, ts, enum_value
from models import (
    Workspace, WorkspaceMember, MemberRole, User, Board, BoardCategory,
    AccessRequest, ActivityLog, Issue, Task, utcnow,
)
from permissions import Action, require_permission
from routers.tasks import purge_tasks

logger = logging.getLogger("flux.workspaces")

router = APIRouter(prefix="/api/v1/workspaces", tags=["Workspaces"])


# ============================================================
# SCHEMAS
# ============================================================

class WorkspaceCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    slug: str = Field(..., min_length=1, max_length=64)


class WorkspaceSettingsUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    public_access: Optional[bool] = None


class JoinRequest(BaseModel):
    invite_code: Optional[str] = None


class InviteRequest(BaseModel):
    email: EmailStr


class RoleUpdate(BaseModel):
    role: MemberRole


class MemberUserOut(BaseModel):
    name: str
    email: str
    image: Optional[str] = None


class MemberOut(BaseModel):
    user_id: str
    role: str
    joined_at: Optional[str] = None
    user: Optional[MemberUserOut] = None


class WorkspaceSummary(BaseModel):
    id: str
    name: str
    slug: str
    public_access: bool


class WorkspaceOut(WorkspaceSummary):
    owner_id: str
    members: List[MemberOut] = []
    invite_code: Optional[str] = None
    created_at: Optional[str] = None


# ============================================================
# HELPERS
# ============================================================

def normalize_slug(raw: str) -> str:
    return re.sub(r"\s+", "-", raw.strip().lower())


def generate_invite_code() -> str:
    return secrets.token_urlsafe(8)[:10]


def _member_out(m: WorkspaceMember) -> MemberOut:
    return MemberOut(
        user_id=m.user_id,
        role=enum_value(m.role),
        joined_at=ts(m.joined_at),
        user=MemberUserOut(name=m.user.name, email=m.user.email, image=m.user.image) if m.user else None,
    )


def _workspace_out(workspace: Workspace, viewer: Optional[WorkspaceMember]) -> WorkspaceOut:
    is_admin = viewer is not None and viewer.role == MemberRole.ADMIN
    return WorkspaceOut(
        id=workspace.id,
        name=workspace.name,
        slug=workspace.slug,
        public_access=workspace.public_access or False,
        owner_id=workspace.owner_id,
        members=[_member_out(m) for m in workspace.members],
        invite_code=workspace.invite_code if is_admin else None,
        created_at=ts(workspace.created_at),
    )


# ============================================================
# WORKSPACE ENDPOINTS
# ============================================================

@router.post("", response_model=WorkspaceOut, status_code=201)
async def create_workspace(
    data: WorkspaceCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Create a workspace; the creator becomes its owner and sole ADMIN"""
    slug = normalize_slug(data.slug)
    if not slug:
        raise HTTPException(status_code=400, detail="Workspace slug is required")

    existing = await db.execute(select(Workspace.id).where(Workspace.slug == slug))
    if existing.scalar_one_or_none():
        raise HTTPException(status_code=409, detail="Workspace slug already taken")

    workspace = Workspace(
        name=data.name,
        slug=slug,
        owner_id=user.id,
        invite_code=generate_invite_code(),
        public_access=False,
    )
    owner = await db.get(User, user.id)
    workspace.members = [WorkspaceMember(user=owner, role=MemberRole.ADMIN, joined_at=utcnow())]
    db.add(workspace)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=409, detail="Workspace slug already taken")

    workspace = await get_workspace(db, slug)
    logger.info(f"Workspace created: {slug} by {user.id}")
    return _workspace_out(workspace, workspace.member_for(user.id))


@router.get("", response_model=List[WorkspaceSummary])
async def list_workspaces(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Workspaces the caller belongs to"""
    stmt = (
        select(Workspace)
        .join(WorkspaceMember, WorkspaceMember.workspace_id == Workspace.id)
        .where(WorkspaceMember.user_id == user.id)
        .order_by(Workspace.created_at.asc())
    )
    result = await db.execute(stmt)
    return [
        WorkspaceSummary(id=w.id, name=w.name, slug=w.slug, public_access=w.public_access or False)
        for w in result.scalars().unique().all()
    ]


@router.get("/{slug}", response_model=WorkspaceOut)
async def get_workspace_by_slug(
    slug: str,
    user: Optional[CurrentUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Workspace detail with members; visible to members, or anyone when public"""
    workspace = await get_workspace(db, slug)
    member = workspace.member_for(user.id) if user else None
    require_permission(
        member, Action.VIEW_BOARD, "You do not have access to this workspace",
        public_access=workspace.public_access,
    )
    return _workspace_out(workspace, member)


@router.patch("/{slug}", response_model=WorkspaceOut)
async def update_workspace_settings(
    slug: str,
    data: WorkspaceSettingsUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Update name or public access (ADMIN only)"""
    workspace = await get_workspace(db, slug)
    member = workspace.member_for(user.id)
    require_permission(member, Action.UPDATE_SETTINGS, "Only the workspace admin can modify settings")

    if data.name is not None:
        workspace.name = data.name
    if data.public_access is not None:
        workspace.public_access = data.public_access

    await db.commit()
    return _workspace_out(workspace, member)


@router.delete("/{slug}")
async def delete_workspace(
    slug: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Delete a workspace and everything scoped to it"""
    workspace = await get_workspace(db, slug)
    require_permission(
        workspace.member_for(user.id), Action.DELETE_WORKSPACE,
        "Only the workspace admin can delete the workspace",
    )

    board_ids = select(Board.id).where(Board.workspace_id == workspace.id)
    await db.execute(delete(AccessRequest).where(AccessRequest.workspace_id == workspace.id))
    await db.execute(delete(ActivityLog).where(ActivityLog.workspace_id == workspace.id))
    await db.execute(delete(Issue).where(Issue.workspace_id == workspace.id))
    await purge_tasks(db, Task.workspace_id == workspace.id)
    await db.execute(delete(BoardCategory).where(BoardCategory.board_id.in_(board_ids)))
    await db.execute(delete(Board).where(Board.workspace_id == workspace.id))
    await db.execute(delete(WorkspaceMember).where(WorkspaceMember.workspace_id == workspace.id))
    await db.execute(delete(Workspace).where(Workspace.id == workspace.id))
    await db.commit()

    logger.info(f"Workspace deleted: {slug} by {user.id}")
    return {"success": True}


# ============================================================
# MEMBERSHIP
# ============================================================

@router.get("/{slug}/role")
async def get_user_role(
    slug: str,
    user: Optional[CurrentUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db_session),
):
    """The caller's role in the workspace, or null"""
    if user is None:
        return {"role": None}
    workspace = await get_workspace(db, slug)
    member = workspace.member_for(user.id)
    return {"role": enum_value(member.role) if member else None}


@router.post("/{slug}/join")
async def join_workspace(
    slug: str,
    data: JoinRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Join as VIEWER through a public workspace or a valid invite code"""
    workspace = await get_workspace(db, slug)
    if workspace.member_for(user.id):
        return {"success": True, "role": enum_value(workspace.member_for(user.id).role)}

    invited = data.invite_code is not None and secrets.compare_digest(
        data.invite_code.encode(), (workspace.invite_code or "").encode()
    )
    if not (workspace.public_access or invited):
        raise HTTPException(status_code=403, detail="Invalid invite code")

    db.add(WorkspaceMember(workspace_id=workspace.id, user_id=user.id, role=MemberRole.VIEWER))
    try:
        await db.commit()
    except IntegrityError:
        # Joined concurrently; membership already exists
        await db.rollback()
    return {"success": True, "role": MemberRole.VIEWER.value}


@router.post("/{slug}/members", response_model=MemberOut, status_code=201)
async def invite_member(
    slug: str,
    data: InviteRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Add an existing user as VIEWER (ADMIN only)"""
    workspace = await get_workspace(db, slug)
    require_permission(
        workspace.member_for(user.id), Action.INVITE_MEMBER,
        "Only the workspace admin can invite members",
    )

    result = await db.execute(select(User).where(User.email == data.email))
    invitee = result.scalar_one_or_none()
    if not invitee:
        raise HTTPException(status_code=404, detail="User not found. They need to sign up for Flux first.")
    if workspace.member_for(invitee.id):
        raise HTTPException(status_code=409, detail="User is already a member of this workspace")

    member = WorkspaceMember(
        workspace_id=workspace.id, user=invitee, role=MemberRole.VIEWER, joined_at=utcnow(),
    )
    db.add(member)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=409, detail="User is already a member of this workspace")

    return _member_out(member)


@router.patch("/{slug}/members/{member_id}")
async def update_member_role(
    slug: str,
    member_id: str,
    data: RoleUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Change a member's role (ADMIN only); the owner's role is fixed"""
    workspace = await get_workspace(db, slug)
    require_permission(
        workspace.member_for(user.id), Action.CHANGE_ROLE,
        "Only the workspace admin can update member roles",
    )
    if member_id == workspace.owner_id:
        raise HTTPException(status_code=400, detail="Cannot change the owner's role")

    result = await db.execute(
        update(WorkspaceMember)
        .where(WorkspaceMember.workspace_id == workspace.id, WorkspaceMember.user_id == member_id)
        .values(role=data.role)
    )
    if result.rowcount == 0:
        await db.rollback()
        raise HTTPException(status_code=404, detail="Member not found")
    await db.commit()
    return {"success": True}


@router.delete("/{slug}/members/{member_id}")
async def remove_member(
    slug: str,
    member_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Remove a member (ADMIN only); the owner can never be removed"""
    workspace = await get_workspace(db, slug)
    require_permission(
        workspace.member_for(user.id), Action.REMOVE_MEMBER,
        "Only the workspace admin can remove members",
    )
    if member_id == workspace.owner_id:
        raise HTTPException(status_code=400, detail="Cannot remove the workspace owner")

    result = await db.execute(
        delete(WorkspaceMember)
        .where(WorkspaceMember.workspace_id == workspace.id, WorkspaceMember.user_id == member_id)
    )
    if result.rowcount == 0:
        await db.rollback()
        raise HTTPException(status_code=404, detail="Member not found")
    await db.commit()
    return {"success": True}
