"""
Per-project task numbering.

Task numbers are allocated inside the caller's transaction: the project row
is locked (``SELECT ... FOR UPDATE`` where the database supports it), the
next number is derived from the project's high-water mark and the largest
number on any task row, soft-deleted ones included, and the high-water mark
is advanced. The ``(project_id, task_number)`` unique constraint backs this
up; ``with_number_retry`` re-runs a unit of work that lost the race.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TypeVar

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .errors import NotFound
from .models import Project, Task

logger = logging.getLogger(__name__)

T = TypeVar("T")


def lock_project(session: Session, project_id: str) -> Project | None:
    """
    Lock a project row and reload it from the database.

    ``populate_existing`` matters: a project already in the identity map
    (joined in with its task) would otherwise keep the ``last_task_number``
    it had before the lock was granted.
    """
    return session.scalar(
        select(Project)
        .where(Project.id == project_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )


def lock_open_project(session: Session, project_id: str) -> Project:
    """
    Load an active, non-deleted project and lock its row for numbering.

    Raises:
        NotFound: The project does not exist, is deleted or not active.
    """
    project = lock_project(session, project_id)
    if project is None or not project.is_open:
        raise NotFound("Project not found or not active")
    return project


def next_task_number(session: Session, project: Project) -> int:
    """
    Reserve and return the next task number for ``project``.

    The project must already be locked by ``lock_open_project`` in the
    current transaction.
    """
    highest_row = session.scalar(
        select(func.max(Task.task_number)).where(Task.project_id == project.id)
    )
    number = max(project.last_task_number or 0, highest_row or 0) + 1
    project.last_task_number = number
    return number


def with_number_retry(session: Session, work: Callable[[], T], max_retries: int) -> T:
    """
    Run ``work`` and retry it after a task-number collision.

    ``work`` must be a complete unit of work (it commits or rolls back on
    its own). Any ``IntegrityError`` surviving ``max_retries`` retries is
    re-raised.
    """
    attempt = 0
    while True:
        try:
            return work()
        except IntegrityError:
            session.rollback()
            if attempt >= max_retries:
                raise
            attempt += 1
            logger.warning(
                "Task number collision, retrying allocation (attempt %s of %s)",
                attempt,
                max_retries,
            )
