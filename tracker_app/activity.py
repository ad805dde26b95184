"""
Activity feed and user comments for a task.

The feed is a read-only projection over ``Comment`` rows: system records
written by the lifecycle engine and comments written by users, newest
first.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from .errors import InvalidArgument, NotFound
from .models import Comment, Task, User, to_utc_iso
from .schemas import COMMENT_MAX_LENGTH, parse_text

ACTIVITY_LOG_MAX_LIMIT = 100


def _live_task(session: Session, task_id: str) -> Task:
    task = session.scalar(select(Task).where(Task.id == task_id, Task.deleted_at.is_(None)))
    if task is None:
        raise NotFound("Task not found")
    return task


def _entry(comment: Comment) -> dict[str, Any]:
    actor = comment.user
    return {
        "id": comment.id,
        "type": "system" if comment.is_system else "comment",
        "content": comment.content,
        "actor": actor.to_summary() if actor is not None else {"id": comment.user_id},
        "is_system": comment.is_system,
        "system_action": comment.system_action,
        "metadata": comment.meta,
        "created_at": to_utc_iso(comment.created_at),
    }


def activity_log(session: Session, task_id: str, limit: int = 20) -> list[dict[str, Any]]:
    """
    Return the ``limit`` most recent comments on a task, newest first.

    Raises:
        NotFound: The task is missing or soft-deleted.
        InvalidArgument: ``limit`` is outside 1..100.
    """
    if isinstance(limit, bool) or not isinstance(limit, int):
        raise InvalidArgument("'limit' must be an integer")
    if not 1 <= limit <= ACTIVITY_LOG_MAX_LIMIT:
        raise InvalidArgument(f"'limit' must be between 1 and {ACTIVITY_LOG_MAX_LIMIT}")
    _live_task(session, task_id)

    comments = session.scalars(
        select(Comment)
        .where(Comment.task_id == task_id)
        .order_by(Comment.created_at.desc(), Comment.id.desc())
        .limit(limit)
    ).all()
    return [_entry(comment) for comment in comments]


def add_comment(session: Session, task_id: str, actor_id: str, content: str) -> Comment:
    """Insert a user comment and bump the task's comment counter."""
    content = parse_text(content, "content", max_length=COMMENT_MAX_LENGTH, required=True)
    try:
        task = _live_task(session, task_id)
        if session.get(User, actor_id) is None:
            raise NotFound("User not found")
        comment = Comment(task_id=task.id, user_id=actor_id, content=content, is_system=False)
        session.add(comment)
        task.comment_count = (task.comment_count or 0) + 1
        session.commit()
    except Exception:
        session.rollback()
        raise
    return comment
