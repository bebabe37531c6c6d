# permissions.py — Workspace role gate
"""
Maps (workspace membership, requested action) to allow/deny.

Roles are compared literally; there is no inheritance between ADMIN, EDITOR
and VIEWER. Every mutating endpoint calls ``require_permission`` before its
first write, so a denial never leaves partial state behind.
"""
from enum import Enum
from typing import Optional

from fastapi import HTTPException

from models import MemberRole, WorkspaceMember


class Action(str, Enum):
    VIEW_BOARD = "view_board"
    MANAGE_BOARD = "manage_board"          # create / update board
    DELETE_BOARD = "delete_board"
    MANAGE_CATEGORY = "manage_category"
    CREATE_TASK = "create_task"
    DELETE_TASK = "delete_task"
    UPDATE_TASK = "update_task"            # includes move
    COMMENT = "comment"
    DELETE_COMMENT = "delete_comment"
    INVITE_MEMBER = "invite_member"
    REVIEW_ACCESS_REQUEST = "review_access_request"
    CHANGE_ROLE = "change_role"
    REMOVE_MEMBER = "remove_member"
    UPDATE_SETTINGS = "update_settings"
    DELETE_WORKSPACE = "delete_workspace"


ADMIN = {MemberRole.ADMIN}
ADMIN_OR_EDITOR = {MemberRole.ADMIN, MemberRole.EDITOR}
ANY_MEMBER = {MemberRole.ADMIN, MemberRole.EDITOR, MemberRole.VIEWER}

# Roles that may perform an action unconditionally
POLICY = {
    Action.VIEW_BOARD: ANY_MEMBER,
    Action.MANAGE_BOARD: ADMIN_OR_EDITOR,
    Action.DELETE_BOARD: ADMIN,
    Action.MANAGE_CATEGORY: ADMIN_OR_EDITOR,
    Action.CREATE_TASK: ADMIN_OR_EDITOR,
    Action.DELETE_TASK: ADMIN_OR_EDITOR,
    Action.UPDATE_TASK: ADMIN_OR_EDITOR,
    Action.COMMENT: ANY_MEMBER,
    Action.DELETE_COMMENT: ADMIN,
    Action.INVITE_MEMBER: ADMIN,
    Action.REVIEW_ACCESS_REQUEST: ADMIN,
    Action.CHANGE_ROLE: ADMIN,
    Action.REMOVE_MEMBER: ADMIN,
    Action.UPDATE_SETTINGS: ADMIN,
    Action.DELETE_WORKSPACE: ADMIN,
}


def _role_of(membership) -> Optional[MemberRole]:
    if membership is None:
        return None
    role = membership.role if isinstance(membership, WorkspaceMember) else membership
    try:
        return MemberRole(role)
    except ValueError:
        return None


def can_perform(
    membership,
    action: Action,
    *,
    public_access: bool = False,
    is_assignee: bool = False,
    is_author: bool = False,
) -> bool:
    """Return True when ``membership`` (a WorkspaceMember, a role, or None) may perform ``action``.

    Conditional cells of the policy:
    - non-members may only view boards, and only on public workspaces
    - a VIEWER may update or move a task it is assigned to
    - any member may delete a comment it authored
    """
    role = _role_of(membership)
    if role is None:
        return action == Action.VIEW_BOARD and public_access

    if role in POLICY[action]:
        return True
    if action == Action.UPDATE_TASK:
        return role == MemberRole.VIEWER and is_assignee
    if action == Action.DELETE_COMMENT:
        return is_author
    return False


def require_permission(
    membership,
    action: Action,
    message: str,
    **context,
) -> None:
    """Raise 403 with ``message`` unless ``can_perform`` allows the action"""
    if not can_perform(membership, action, **context):
        raise HTTPException(status_code=403, detail=message)
