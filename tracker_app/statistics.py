"""Per-project task statistics."""

from __future__ import annotations

from collections import Counter
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from .errors import NotFound
from .models import Project, Task, TaskStatus

_CLOSED = {TaskStatus.DONE.value, TaskStatus.CANCELLED.value}


def task_statistics(session: Session, project_id: str, today: date | None = None) -> dict[str, Any]:
    """
    Summarise the live tasks of a project.

    A task is overdue when its due date is before ``today`` (UTC by
    default) and it is neither done nor cancelled.
    """
    project = session.get(Project, project_id)
    if project is None or project.deleted_at is not None:
        raise NotFound("Project not found")
    today = today or datetime.now(timezone.utc).date()

    tasks = session.scalars(
        select(Task).where(Task.project_id == project_id, Task.deleted_at.is_(None))
    ).all()

    by_status = Counter(task.status for task in tasks)
    return {
        "project_id": project_id,
        "total": len(tasks),
        "by_status": {status.value: by_status.get(status.value, 0) for status in TaskStatus},
        "overdue": sum(
            1
            for task in tasks
            if task.due_date is not None and task.due_date < today and task.status not in _CLOSED
        ),
        "by_priority": dict(Counter(task.priority for task in tasks)),
        "by_type": dict(Counter(task.type for task in tasks)),
        "by_assignee": dict(Counter(task.assignee_id for task in tasks if task.assignee_id)),
        "estimated_hours": float(sum((t.estimated_hours or Decimal(0) for t in tasks), Decimal(0))),
        "actual_hours": float(sum((t.actual_hours or Decimal(0) for t in tasks), Decimal(0))),
    }
