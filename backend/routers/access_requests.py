# routers/access_requests.py — VIEWER → EDITOR access requests
import logging
from typing import Optional, List, Literal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, CurrentUser
from database import get_db_session
from lookups import get_workspace, get_workspace_by_id, ts, enum_value
from models import (
    AccessRequest, AccessRequestStatus, WorkspaceMember, MemberRole, utcnow,
)
from permissions import Action, can_perform, require_permission

logger = logging.getLogger("flux.access_requests")

router = APIRouter(prefix="/api/v1", tags=["Access Requests"])

PENDING_DETAIL = "You already have a pending request"


# ============================================================
# SCHEMAS
# ============================================================

class AccessRequestCreate(BaseModel):
    message: Optional[str] = Field(None, max_length=2000)


class AccessRequestReview(BaseModel):
    action: Literal["approve", "deny"]


class RequesterOut(BaseModel):
    id: str
    name: str
    email: str
    image: Optional[str] = None


class AccessRequestOut(BaseModel):
    id: str
    workspace_id: str
    user_id: str
    requested_role: str
    status: str
    message: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[str] = None
    created_at: Optional[str] = None
    user: Optional[RequesterOut] = None


# ============================================================
# ENDPOINTS
# ============================================================

@router.post("/workspaces/{slug}/access-requests", response_model=AccessRequestOut, status_code=201)
async def request_edit_access(
    slug: str,
    data: AccessRequestCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Ask the workspace admins for EDITOR rights"""
    workspace = await get_workspace(db, slug)
    member = workspace.member_for(user.id)
    if member and member.role in (MemberRole.ADMIN, MemberRole.EDITOR):
        raise HTTPException(status_code=400, detail="You already have edit access")

    existing = await db.execute(
        select(AccessRequest.id).where(
            AccessRequest.workspace_id == workspace.id,
            AccessRequest.user_id == user.id,
            AccessRequest.status == AccessRequestStatus.PENDING,
        )
    )
    if existing.scalar_one_or_none():
        raise HTTPException(status_code=409, detail=PENDING_DETAIL)

    if member is None:
        db.add(WorkspaceMember(workspace_id=workspace.id, user_id=user.id, role=MemberRole.VIEWER))

    access_request = AccessRequest(
        workspace_id=workspace.id,
        user_id=user.id,
        requested_role=MemberRole.EDITOR,
        status=AccessRequestStatus.PENDING,
        message=data.message,
    )
    db.add(access_request)
    try:
        await db.commit()
    except IntegrityError:
        # A concurrent submission won the partial unique index
        await db.rollback()
        raise HTTPException(status_code=409, detail=PENDING_DETAIL)

    logger.info(f"Access request {access_request.id} created in {slug} by {user.id}")
    return _request_to_out(access_request, user)


@router.get("/workspaces/{slug}/access-requests", response_model=List[AccessRequestOut])
async def list_access_requests(
    slug: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Pending requests, newest first; non-admins get an empty list"""
    workspace = await get_workspace(db, slug)
    if not can_perform(workspace.member_for(user.id), Action.REVIEW_ACCESS_REQUEST):
        return []

    stmt = (
        select(AccessRequest)
        .where(
            AccessRequest.workspace_id == workspace.id,
            AccessRequest.status == AccessRequestStatus.PENDING,
        )
        .order_by(AccessRequest.created_at.desc())
    )
    result = await db.execute(stmt)
    return [_request_to_out(r) for r in result.scalars().all()]


@router.get("/workspaces/{slug}/access-requests/pending")
async def has_pending_request(
    slug: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    workspace = await get_workspace(db, slug)
    result = await db.execute(
        select(AccessRequest.id).where(
            AccessRequest.workspace_id == workspace.id,
            AccessRequest.user_id == user.id,
            AccessRequest.status == AccessRequestStatus.PENDING,
        )
    )
    return {"pending": result.scalar_one_or_none() is not None}


@router.post("/access-requests/{request_id}/review", response_model=AccessRequestOut)
async def review_access_request(
    request_id: str,
    data: AccessRequestReview,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Approve (promote to EDITOR) or deny a pending request (ADMIN only)"""
    access_request = await db.get(AccessRequest, request_id)
    if not access_request:
        raise HTTPException(status_code=404, detail="Access request not found")

    workspace = await get_workspace_by_id(db, access_request.workspace_id)
    require_permission(
        workspace.member_for(user.id), Action.REVIEW_ACCESS_REQUEST,
        "Only the workspace admin can review access requests",
    )
    if access_request.status != AccessRequestStatus.PENDING:
        raise HTTPException(status_code=409, detail="This request has already been handled")

    approved = data.action == "approve"
    access_request.status = AccessRequestStatus.APPROVED if approved else AccessRequestStatus.DENIED
    access_request.reviewed_by = user.id
    access_request.reviewed_at = utcnow()

    if approved:
        result = await db.execute(
            update(WorkspaceMember)
            .where(
                WorkspaceMember.workspace_id == workspace.id,
                WorkspaceMember.user_id == access_request.user_id,
            )
            .values(role=access_request.requested_role)
        )
        if result.rowcount == 0:
            db.add(WorkspaceMember(
                workspace_id=workspace.id,
                user_id=access_request.user_id,
                role=access_request.requested_role,
            ))

    await db.commit()
    logger.info(f"Access request {request_id} {access_request.status.value} by {user.id}")
    return _request_to_out(access_request)


# ============================================================
# HELPERS
# ============================================================

def _request_to_out(r: AccessRequest, requester: Optional[CurrentUser] = None) -> AccessRequestOut:
    person = requester or r.user
    return AccessRequestOut(
        id=r.id,
        workspace_id=r.workspace_id,
        user_id=r.user_id,
        requested_role=enum_value(r.requested_role),
        status=enum_value(r.status),
        message=r.message,
        reviewed_by=r.reviewed_by,
        reviewed_at=ts(r.reviewed_at),
        created_at=ts(r.created_at),
        user=RequesterOut(id=person.id, name=person.name, email=person.email, image=person.image)
        if person else None,
    )
