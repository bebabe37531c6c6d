# models.py — Database models for Flux
# - UUID string primary keys everywhere
# - Workspace is the tenant root; every other row is scoped to one workspace
# - Members and board categories are rows, not embedded arrays, so edits are
#   targeted single-row statements
# - Tasks carry a float `order` scoped to (board_id, status) and a version
#   counter for optimistic concurrency

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from sqlalchemy import (
    Column, String, DateTime, JSON, Boolean, Integer, Float, Table,
    Enum as SQLEnum, ForeignKey, Text, Index, UniqueConstraint, text,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


def new_uuid():
    return str(uuid.uuid4())


# ============================================================
# ENUMS
# ============================================================

class MemberRole(str, PyEnum):
    ADMIN = "ADMIN"
    EDITOR = "EDITOR"
    VIEWER = "VIEWER"


class TaskStatus(str, PyEnum):
    BACKLOG = "BACKLOG"
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"
    ARCHIVED = "ARCHIVED"


class TaskPriority(str, PyEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class AccessRequestStatus(str, PyEnum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DENIED = "DENIED"


class ActivityType(str, PyEnum):
    TASK_CREATED = "TASK_CREATED"
    TASK_UPDATED = "TASK_UPDATED"
    TASK_DELETED = "TASK_DELETED"
    TASK_MOVED = "TASK_MOVED"
    TASK_ASSIGNED = "TASK_ASSIGNED"
    COMMENT_ADDED = "COMMENT_ADDED"
    SUBTASK_COMPLETED = "SUBTASK_COMPLETED"
    CATEGORY_CHANGED = "CATEGORY_CHANGED"
    ISSUE_CREATED = "ISSUE_CREATED"


class IssueStatus(str, PyEnum):
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"


class IssuePriority(str, PyEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class IssueType(str, PyEnum):
    BUG = "BUG"
    FEATURE = "FEATURE"
    IMPROVEMENT = "IMPROVEMENT"


# ============================================================
# USERS
# ============================================================

class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=new_uuid)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, nullable=False, index=True)
    image = Column(String, nullable=True)
    password_hash = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


# ============================================================
# WORKSPACES
# ============================================================

class Workspace(Base):
    __tablename__ = "workspaces"

    id = Column(String, primary_key=True, default=new_uuid)
    name = Column(String, nullable=False)
    slug = Column(String, unique=True, nullable=False, index=True)
    owner_id = Column(String, ForeignKey("users.id"), nullable=False)
    invite_code = Column(String, unique=True, nullable=False)
    public_access = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    members = relationship(
        "WorkspaceMember", back_populates="workspace",
        order_by="WorkspaceMember.joined_at", lazy="selectin",
        cascade="all, delete-orphan",
    )

    def member_for(self, user_id: str):
        for member in self.members:
            if member.user_id == user_id:
                return member
        return None


class WorkspaceMember(Base):
    """One membership row per (workspace, user)"""
    __tablename__ = "workspace_members"

    id = Column(String, primary_key=True, default=new_uuid)
    workspace_id = Column(String, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    role = Column(SQLEnum(MemberRole), nullable=False, default=MemberRole.VIEWER)
    joined_at = Column(DateTime(timezone=True), default=utcnow)

    workspace = relationship("Workspace", back_populates="members")
    user = relationship("User", lazy="selectin")

    __table_args__ = (
        UniqueConstraint("workspace_id", "user_id", name="uq_member_workspace_user"),
    )


# ============================================================
# BOARDS
# ============================================================

class Board(Base):
    """Kanban board scoped to a workspace"""
    __tablename__ = "boards"

    id = Column(String, primary_key=True, default=new_uuid)
    workspace_id = Column(String, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    slug = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    color = Column(String, nullable=False, default="#6366f1")
    icon = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    categories = relationship(
        "BoardCategory", back_populates="board", lazy="selectin",
        order_by="BoardCategory.created_at", cascade="all, delete-orphan",
    )

    __table_args__ = (
        UniqueConstraint("workspace_id", "slug", name="uq_board_workspace_slug"),
    )


class BoardCategory(Base):
    """Category taxonomy entry for a board"""
    __tablename__ = "board_categories"

    id = Column(String, primary_key=True, default=new_uuid)
    board_id = Column(String, ForeignKey("boards.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    color = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    board = relationship("Board", back_populates="categories")


# ============================================================
# TASKS
# ============================================================

task_assignees = Table(
    "task_assignees",
    Base.metadata,
    Column("task_id", String, ForeignKey("tasks.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", String, ForeignKey("users.id"), primary_key=True),
)


class Task(Base):
    """Task card; `order` is only meaningful within its (board_id, status) column"""
    __tablename__ = "tasks"

    id = Column(String, primary_key=True, default=new_uuid)
    workspace_id = Column(String, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True)
    board_id = Column(String, ForeignKey("boards.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    status = Column(SQLEnum(TaskStatus), nullable=False, default=TaskStatus.BACKLOG)
    priority = Column(SQLEnum(TaskPriority), nullable=False, default=TaskPriority.MEDIUM)
    category_id = Column(String, nullable=True)  # validated against board categories in code
    order = Column(Float, nullable=False, default=0.0)
    tags = Column(JSON, default=list)
    due_date = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    assignees = relationship("User", secondary=task_assignees, lazy="selectin")
    subtasks = relationship(
        "Subtask", back_populates="task", lazy="selectin",
        order_by="Subtask.position", cascade="all, delete-orphan",
    )
    comments = relationship(
        "TaskComment", back_populates="task", lazy="selectin",
        order_by="TaskComment.created_at", cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("idx_task_board_status_order", "board_id", "status", "order"),
        Index("idx_task_workspace_status", "workspace_id", "status"),
    )


class Subtask(Base):
    __tablename__ = "subtasks"

    id = Column(String, primary_key=True, default=new_uuid)
    task_id = Column(String, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    completed = Column(Boolean, nullable=False, default=False)
    position = Column(Integer, nullable=False, default=0)

    task = relationship("Task", back_populates="subtasks")


class TaskComment(Base):
    """Comments on a task card"""
    __tablename__ = "task_comments"

    id = Column(String, primary_key=True, default=new_uuid)
    task_id = Column(String, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    task = relationship("Task", back_populates="comments")
    user = relationship("User", lazy="selectin")


# ============================================================
# ACCESS REQUESTS
# ============================================================

class AccessRequest(Base):
    """A VIEWER's request to be promoted to EDITOR"""
    __tablename__ = "access_requests"

    id = Column(String, primary_key=True, default=new_uuid)
    workspace_id = Column(String, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    requested_role = Column(SQLEnum(MemberRole), nullable=False, default=MemberRole.EDITOR)
    status = Column(SQLEnum(AccessRequestStatus), nullable=False, default=AccessRequestStatus.PENDING)
    message = Column(Text, nullable=True)
    reviewed_by = Column(String, ForeignKey("users.id"), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    user = relationship("User", foreign_keys=[user_id], lazy="selectin")

    __table_args__ = (
        # At most one pending request per (workspace, user)
        Index(
            "uq_access_request_pending", "workspace_id", "user_id",
            unique=True,
            sqlite_where=text("status = 'PENDING'"),
            postgresql_where=text("status = 'PENDING'"),
        ),
    )


# ============================================================
# ACTIVITY LOG
# ============================================================

class ActivityLog(Base):
    """Append-only activity entry; only `read` is ever updated"""
    __tablename__ = "activity_logs"

    id = Column(String, primary_key=True, default=new_uuid)
    workspace_id = Column(String, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True)
    board_id = Column(String, nullable=True, index=True)
    task_id = Column(String, nullable=True, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    type = Column(SQLEnum(ActivityType), nullable=False)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    extra_data = Column("metadata", JSON, default=dict)
    read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    user = relationship("User", lazy="selectin")

    __table_args__ = (
        Index("idx_activity_workspace_time", "workspace_id", "created_at"),
        Index("idx_activity_workspace_type_time", "workspace_id", "type", "created_at"),
    )


# ============================================================
# ISSUES
# ============================================================

class Issue(Base):
    """Workspace-level issue report (bug / feature / improvement)"""
    __tablename__ = "issues"

    id = Column(String, primary_key=True, default=new_uuid)
    workspace_id = Column(String, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    status = Column(SQLEnum(IssueStatus), nullable=False, default=IssueStatus.OPEN)
    priority = Column(SQLEnum(IssuePriority), nullable=False, default=IssuePriority.MEDIUM)
    type = Column(SQLEnum(IssueType), nullable=False, default=IssueType.BUG)
    reporter_id = Column(String, ForeignKey("users.id"), nullable=False)
    assignee_id = Column(String, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    reporter = relationship("User", foreign_keys=[reporter_id], lazy="selectin")
    assignee = relationship("User", foreign_keys=[assignee_id], lazy="selectin")
