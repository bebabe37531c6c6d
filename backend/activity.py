# activity.py — Best-effort activity recording
import logging
from typing import Optional, Dict, Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from models import ActivityLog, ActivityType, Board

logger = logging.getLogger("flux.activity")


async def record_activity(
    db: AsyncSession,
    *,
    workspace_id: str,
    user_id: str,
    type: ActivityType,
    title: str,
    description: str,
    board: Optional[Board] = None,
    task_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Optional[str]:
    """Append an activity entry and return its id, or None if the write failed.

    Call only after the primary mutation has been committed. The entry is
    written through its own session on the same engine, so a failed write is
    rolled back there and never expires or undoes anything the caller holds.
    """
    async with AsyncSession(db.bind, expire_on_commit=False) as audit:
        try:
            extra = dict(metadata or {})
            if board is not None:
                extra.setdefault("boardSlug", board.slug)
                extra.setdefault("boardName", board.name)

            entry = ActivityLog(
                workspace_id=workspace_id,
                board_id=board.id if board is not None else None,
                task_id=task_id,
                user_id=user_id,
                type=type,
                title=title,
                description=description,
                extra_data=extra,
                read=False,
            )
            audit.add(entry)
            await audit.commit()
        except SQLAlchemyError as e:
            logger.warning(f"Failed to log activity {type.value} for workspace {workspace_id}: {e}")
            await audit.rollback()
            return None
    return entry.id
