# routers/issues.py — Workspace issue reports
import logging
from typing import Optional, List

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from activity import record_activity
from auth import get_current_user, CurrentUser
from config import get_settings
from database import get_db_session
from email_sender import send_email, issue_created_email
from lookups import get_workspace, ts, enum_value
from models import Issue, IssueStatus, IssuePriority, IssueType, ActivityType, User, Workspace
from permissions import Action, require_permission

logger = logging.getLogger("flux.issues")

router = APIRouter(prefix="/api/v1/workspaces/{slug}/issues", tags=["Issues"])


class IssueCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=300)
    description: Optional[str] = None
    priority: IssuePriority = IssuePriority.MEDIUM
    type: IssueType = IssueType.BUG
    assignee_id: Optional[str] = None


class IssueStatusUpdate(BaseModel):
    status: IssueStatus


class PersonOut(BaseModel):
    id: str
    name: str
    image: Optional[str] = None


class IssueOut(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    status: str
    priority: str
    type: str
    reporter: Optional[PersonOut] = None
    assignee: Optional[PersonOut] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@router.post("", response_model=IssueOut, status_code=201)
async def create_issue(
    slug: str,
    data: IssueCreate,
    background_tasks: BackgroundTasks,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Report an issue; every other member is notified by e-mail"""
    workspace = await _member_workspace(db, slug, user)
    if data.assignee_id and not workspace.member_for(data.assignee_id):
        raise HTTPException(status_code=400, detail="Assignee must be a workspace member")

    issue = Issue(
        workspace_id=workspace.id,
        title=data.title,
        description=data.description,
        status=IssueStatus.OPEN,
        priority=data.priority,
        type=data.type,
        reporter_id=user.id,
        assignee_id=data.assignee_id,
    )
    issue.reporter = await db.get(User, user.id)
    issue.assignee = await db.get(User, data.assignee_id) if data.assignee_id else None
    db.add(issue)
    await db.commit()
    out = _issue_to_out(issue)

    recipients = [m.user.email for m in workspace.members if m.user_id != user.id and m.user]
    issue_url = f"{get_settings().app_url}/{workspace.slug}/issues"
    html = issue_created_email(workspace.name, data.title, data.type.value, user.name, issue_url)
    for email in recipients:
        background_tasks.add_task(send_email, email, f"New issue in {workspace.name}: {data.title}", html)

    await record_activity(
        db,
        workspace_id=workspace.id,
        user_id=user.id,
        type=ActivityType.ISSUE_CREATED,
        title="Issue reported",
        description=f'{user.name} reported "{data.title}"',
        metadata={"issueId": out.id, "issueType": data.type.value},
    )
    logger.info(f"Issue {out.id} created in {slug}, notifying {len(recipients)} members")
    return out


@router.get("", response_model=List[IssueOut])
async def list_issues(
    slug: str,
    status: Optional[IssueStatus] = None,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Issues of the workspace, newest first"""
    workspace = await _member_workspace(db, slug, user)
    stmt = select(Issue).where(Issue.workspace_id == workspace.id)
    if status is not None:
        stmt = stmt.where(Issue.status == status)
    result = await db.execute(stmt.order_by(Issue.created_at.desc()))
    return [_issue_to_out(i) for i in result.scalars().all()]


@router.patch("/{issue_id}/status", response_model=IssueOut)
async def update_issue_status(
    slug: str,
    issue_id: str,
    data: IssueStatusUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    workspace = await _member_workspace(db, slug, user)
    issue = await db.get(Issue, issue_id)
    if not issue or issue.workspace_id != workspace.id:
        raise HTTPException(status_code=404, detail="Issue not found")

    issue.status = data.status
    await db.commit()
    return _issue_to_out(issue)


async def _member_workspace(db: AsyncSession, slug: str, user: CurrentUser) -> Workspace:
    workspace = await get_workspace(db, slug)
    require_permission(
        workspace.member_for(user.id), Action.COMMENT,
        "You must be a workspace member to manage issues",
    )
    return workspace


def _person(u: Optional[User]) -> Optional[PersonOut]:
    return PersonOut(id=u.id, name=u.name, image=u.image) if u else None


def _issue_to_out(issue: Issue) -> IssueOut:
    return IssueOut(
        id=issue.id,
        title=issue.title,
        description=issue.description,
        status=enum_value(issue.status),
        priority=enum_value(issue.priority),
        type=enum_value(issue.type),
        reporter=_person(issue.reporter),
        assignee=_person(issue.assignee),
        created_at=ts(issue.created_at),
        updated_at=ts(issue.updated_at),
    )
