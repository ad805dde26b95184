"""
Task lifecycle engine.

``TaskLifecycle`` is the only code that changes a task's status, assignee,
``started_at`` / ``completed_at`` or terminal fields, and the only producer
of system comments. Every public operation:

* takes the acting user's id explicitly,
* validates and checks permissions before touching anything,
* mutates the task and inserts its system comments in one transaction
  (commit on success, rollback on any exception),
* returns the resulting ``Task``.

Status changes are permissive by default: any status may follow any other.
With ``strict_transitions`` the ``ALLOWED_TRANSITIONS`` table applies.
"""

from __future__ import annotations

import copy
from collections.abc import Iterator
from contextlib import contextmanager
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from .errors import InvalidArgument, InvalidTransition, NotFound, PermissionDenied
from .models import (
    Comment,
    SystemAction,
    Task,
    TaskPriority,
    TaskStatus,
    TaskType,
    User,
    utcnow,
)
from .numbering import lock_open_project, lock_project, next_task_number, with_number_retry
from .schemas import (
    TITLE_MAX_LENGTH,
    TaskChanges,
    TaskCreate,
    parse_enum,
    parse_hours,
    parse_status,
    parse_tag,
)

COPY_SUFFIX = " (Copy)"

ALLOWED_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.TODO: frozenset({TaskStatus.IN_PROGRESS, TaskStatus.DONE, TaskStatus.CANCELLED}),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.TODO, TaskStatus.DONE, TaskStatus.CANCELLED}),
    TaskStatus.DONE: frozenset({TaskStatus.TODO}),
    TaskStatus.CANCELLED: frozenset({TaskStatus.TODO}),
}

# Plain attributes that update_task copies over without side effects.
_SIMPLE_FIELDS = (
    "title",
    "description",
    "due_date",
    "estimated_hours",
    "actual_hours",
    "resolution",
)


class TaskLifecycle:
    """
    Applies and records lifecycle operations on tasks.

    Args:
        session: SQLAlchemy session the engine reads and commits through.
        strict_transitions: Enforce ``ALLOWED_TRANSITIONS`` on status
            changes instead of accepting any status from any status.
        number_retries: How often create/copy/move are retried after a
            task-number collision.
    """

    def __init__(
        self,
        session: Session,
        *,
        strict_transitions: bool = False,
        number_retries: int = 3,
    ) -> None:
        self.session = session
        self.strict_transitions = strict_transitions
        self.number_retries = number_retries

    # -----------------------------------------------------------------
    # Plumbing
    # -----------------------------------------------------------------

    @contextmanager
    def _unit_of_work(self) -> Iterator[None]:
        try:
            yield
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    def get_task(self, task_id: str) -> Task:
        """Return the live (not soft-deleted) task or raise ``NotFound``."""
        task = self.session.scalar(
            select(Task).where(Task.id == task_id, Task.deleted_at.is_(None))
        )
        if task is None:
            raise NotFound("Task not found")
        return task

    def _get_user(self, user_id: str) -> User:
        user = self.session.get(User, user_id)
        if user is None:
            raise NotFound("User not found")
        return user

    def _active_assignee(self, user_id: str) -> User:
        user = self.session.get(User, user_id)
        if user is None or not user.is_active:
            raise NotFound("Assigned user not found or inactive")
        return user

    @staticmethod
    def _require_modifier(task: Task, actor_id: str) -> None:
        if actor_id not in (task.creator_id, task.assignee_id):
            raise PermissionDenied("Only the creator or assignee can update this task")

    @staticmethod
    def _require_creator(task: Task, actor_id: str, action: str) -> None:
        if task.creator_id != actor_id:
            raise PermissionDenied(f"Only the task creator can {action} this task")

    def _check_transition(self, old: TaskStatus, new: TaskStatus) -> None:
        if self.strict_transitions and new not in ALLOWED_TRANSITIONS[old]:
            raise InvalidTransition(f"Cannot change status from {old.value} to {new.value}")

    def _emit(
        self,
        task: Task,
        actor_id: str,
        action: SystemAction,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> Comment:
        comment = Comment(
            task_id=task.id,
            user_id=actor_id,
            content=content,
            is_system=True,
            system_action=action.value,
            meta=metadata,
        )
        self.session.add(comment)
        return comment

    @staticmethod
    def _touch(task: Task) -> None:
        task.updated_at = utcnow()

    def _apply_status(self, task: Task, actor_id: str, new: TaskStatus) -> bool:
        """
        Move ``task`` to ``new`` with timestamp bookkeeping and a
        ``status_changed`` comment. Returns False when nothing changed.
        """
        old = TaskStatus(task.status)
        if new is old:
            return False
        self._check_transition(old, new)

        now = utcnow()
        task.completed_at = now if new is TaskStatus.DONE else None
        if new is TaskStatus.IN_PROGRESS and task.started_at is None:
            task.started_at = now
        task.status = new.value

        self._emit(
            task,
            actor_id,
            SystemAction.STATUS_CHANGED,
            f"changed status from {old.value} to {new.value}",
            {"from": old.value, "to": new.value},
        )
        return True

    def _force_status(self, task: Task, new: TaskStatus) -> None:
        """Set a terminal/reset status directly; the caller emits its own comment."""
        old = TaskStatus(task.status)
        if new is not old:
            self._check_transition(old, new)
        now = utcnow()
        task.completed_at = now if new is TaskStatus.DONE else None
        if new is TaskStatus.IN_PROGRESS and task.started_at is None:
            task.started_at = now
        task.status = new.value

    def _apply_assignee(self, task: Task, actor_id: str, new_user: User | None) -> bool:
        """Change the assignee and emit ``assignee_changed``. False when unchanged."""
        new_id = new_user.id if new_user is not None else None
        if new_id == task.assignee_id:
            return False
        old_user = task.assignee

        if new_user is None:
            content = "unassigned this task"
        elif old_user is None:
            content = f"assigned this task to {new_user.display_name}"
        else:
            content = (
                f"reassigned this task from {old_user.display_name} "
                f"to {new_user.display_name}"
            )

        task.assignee = new_user
        task.assignee_id = new_id
        self._emit(
            task,
            actor_id,
            SystemAction.ASSIGNEE_CHANGED,
            content,
            {
                "from": old_user.id if old_user is not None else None,
                "to": new_id,
                "assignee": new_user.display_name if new_user is not None else None,
            },
        )
        return True

    # -----------------------------------------------------------------
    # Creation
    # -----------------------------------------------------------------

    def create_task(self, actor_id: str, data: TaskCreate) -> Task:
        """Create a ``todo`` task with the next number in its project."""

        def work() -> Task:
            with self._unit_of_work():
                self._get_user(actor_id)
                project = lock_open_project(self.session, data.project_id)
                assignee = (
                    self._active_assignee(data.assignee_id) if data.assignee_id else None
                )
                task = Task(
                    project=project,
                    task_number=next_task_number(self.session, project),
                    type=parse_enum(data.type, TaskType, "type").value,
                    title=data.title,
                    description=data.description,
                    status=TaskStatus.TODO.value,
                    priority=parse_enum(data.priority, TaskPriority, "priority").value,
                    creator_id=actor_id,
                    assignee=assignee,
                    due_date=data.due_date,
                    estimated_hours=data.estimated_hours,
                    actual_hours=data.actual_hours,
                    tags=list(data.tags),
                    labels=copy.deepcopy(data.labels),
                    meta={},
                )
                self.session.add(task)
                self.session.flush()
                self._emit(task, actor_id, SystemAction.TASK_CREATED, "created this task")
            return task

        return with_number_retry(self.session, work, self.number_retries)

    # -----------------------------------------------------------------
    # Updates
    # -----------------------------------------------------------------

    def update_task(self, task_id: str, actor_id: str, changes: TaskChanges) -> Task:
        """
        Apply a partial update.

        Only fields present in ``changes`` are written. A status change
        stamps timestamps and emits ``status_changed``; an assignee change
        emits ``assignee_changed``.
        """
        with self._unit_of_work():
            task = self.get_task(task_id)
            self._require_modifier(task, actor_id)
            fields = changes.provided()

            # Validate everything before the first write.
            new_status = parse_status(fields["status"]) if "status" in fields else None
            # Echoing the current assignee back is not a change, even if that
            # user has since been deactivated.
            assignee_changed = (
                "assignee_id" in fields and fields["assignee_id"] != task.assignee_id
            )
            new_assignee: User | None = None
            if assignee_changed and fields["assignee_id"]:
                new_assignee = self._active_assignee(fields["assignee_id"])
            for name in ("estimated_hours", "actual_hours"):
                if name in fields:
                    fields[name] = parse_hours(fields[name], name)
            if "type" in fields:
                fields["type"] = parse_enum(fields["type"], TaskType, "type")
            if "priority" in fields:
                fields["priority"] = parse_enum(fields["priority"], TaskPriority, "priority")
            if "title" in fields and not (fields["title"] or "").strip():
                raise InvalidArgument("'title' is required")
            if new_status is not None and new_status.value != task.status:
                self._check_transition(TaskStatus(task.status), new_status)

            for name in _SIMPLE_FIELDS:
                if name in fields:
                    setattr(task, name, fields[name])
            if "type" in fields:
                task.type = fields["type"].value
            if "priority" in fields:
                task.priority = fields["priority"].value
            if "tags" in fields:
                task.tags = list(dict.fromkeys(fields["tags"] or []))
            if "labels" in fields:
                task.labels = copy.deepcopy(fields["labels"] or {})
            if "metadata" in fields:
                task.meta = copy.deepcopy(fields["metadata"] or {})

            if new_status is not None:
                self._apply_status(task, actor_id, new_status)
            if assignee_changed:
                self._apply_assignee(task, actor_id, new_assignee)

            self._touch(task)
        return task

    def set_status(self, task_id: str, actor_id: str, new_status: TaskStatus | str) -> Task:
        """
        Change status through the dedicated entry point.

        Emits ``status_changed`` and, when the task becomes ``done``, also
        ``task_completed``. Re-setting the current status is a no-op.
        """
        status = parse_status(new_status)
        with self._unit_of_work():
            task = self.get_task(task_id)
            self._require_modifier(task, actor_id)
            if self._apply_status(task, actor_id, status):
                if status is TaskStatus.DONE:
                    self._emit(
                        task, actor_id, SystemAction.TASK_COMPLETED, "marked this task as completed"
                    )
                self._touch(task)
        return task

    def assign(self, task_id: str, actor_id: str, assignee_id: str) -> Task:
        with self._unit_of_work():
            task = self.get_task(task_id)
            self._require_modifier(task, actor_id)
            assignee = self._active_assignee(assignee_id)
            if self._apply_assignee(task, actor_id, assignee):
                self._touch(task)
        return task

    def unassign(self, task_id: str, actor_id: str) -> Task:
        with self._unit_of_work():
            task = self.get_task(task_id)
            self._require_modifier(task, actor_id)
            if self._apply_assignee(task, actor_id, None):
                self._touch(task)
        return task

    def complete(self, task_id: str, actor_id: str, resolution: str | None = None) -> Task:
        """Force ``done``; the resolution is kept unless a new one is given."""
        with self._unit_of_work():
            task = self.get_task(task_id)
            self._require_modifier(task, actor_id)
            self._force_status(task, TaskStatus.DONE)
            if resolution is not None:
                task.resolution = resolution
            self._touch(task)
            self._emit(task, actor_id, SystemAction.TASK_COMPLETED, "marked this task as completed")
        return task

    def reopen(self, task_id: str, actor_id: str) -> Task:
        """Force ``todo`` and clear ``completed_at`` and ``resolution``."""
        with self._unit_of_work():
            task = self.get_task(task_id)
            self._require_modifier(task, actor_id)
            self._force_status(task, TaskStatus.TODO)
            task.resolution = None
            self._touch(task)
            self._emit(task, actor_id, SystemAction.TASK_REOPENED, "reopened this task")
        return task

    def cancel(self, task_id: str, actor_id: str, reason: str | None = None) -> Task:
        """Force ``cancelled``; a given reason becomes the resolution."""
        with self._unit_of_work():
            task = self.get_task(task_id)
            self._require_modifier(task, actor_id)
            self._force_status(task, TaskStatus.CANCELLED)
            if reason is not None:
                task.resolution = reason
            self._touch(task)
            self._emit(
                task,
                actor_id,
                SystemAction.TASK_CANCELLED,
                reason or "cancelled this task",
                {"reason": reason} if reason else None,
            )
        return task

    def update_hours(self, task_id: str, actor_id: str, actual_hours: Decimal | float | str) -> Task:
        """Record actual hours; only the assignee may log time."""
        hours = parse_hours(actual_hours, "actual_hours")
        if hours is None:
            raise InvalidArgument("'actual_hours' is required")
        with self._unit_of_work():
            task = self.get_task(task_id)
            if task.assignee_id != actor_id:
                raise PermissionDenied("Only the assignee can update hours on this task")
            task.actual_hours = hours
            self._touch(task)
        return task

    # -----------------------------------------------------------------
    # Tags
    # -----------------------------------------------------------------

    def add_tag(self, task_id: str, tag: str) -> Task:
        tag = parse_tag(tag)
        with self._unit_of_work():
            task = self.get_task(task_id)
            tags = list(task.tags or [])
            if tag not in tags:
                task.tags = [*tags, tag]
                self._touch(task)
        return task

    def remove_tag(self, task_id: str, tag: str) -> Task:
        tag = parse_tag(tag)
        with self._unit_of_work():
            task = self.get_task(task_id)
            tags = list(task.tags or [])
            if tag in tags:
                task.tags = [t for t in tags if t != tag]
                self._touch(task)
        return task

    # -----------------------------------------------------------------
    # Copy / move / delete
    # -----------------------------------------------------------------

    def copy(self, task_id: str, actor_id: str, target_project_id: str | None = None) -> Task:
        """
        Copy a task, optionally into another project.

        The copy starts over as an unassigned ``todo`` owned by the actor,
        with tags and labels carried across verbatim.
        """

        def work() -> Task:
            with self._unit_of_work():
                original = self.get_task(task_id)
                self._get_user(actor_id)
                project = lock_open_project(
                    self.session, target_project_id or original.project_id
                )
                title = original.title[: TITLE_MAX_LENGTH - len(COPY_SUFFIX)] + COPY_SUFFIX
                duplicate = Task(
                    project=project,
                    task_number=next_task_number(self.session, project),
                    type=original.type,
                    title=title,
                    description=original.description,
                    status=TaskStatus.TODO.value,
                    priority=original.priority,
                    creator_id=actor_id,
                    estimated_hours=original.estimated_hours,
                    tags=list(original.tags or []),
                    labels=copy.deepcopy(original.labels or {}),
                    meta={"copiedFrom": original.id},
                )
                self.session.add(duplicate)
                self.session.flush()
                self._emit(
                    duplicate,
                    actor_id,
                    SystemAction.TASK_CREATED,
                    f"copied this task from {original.key}",
                    {"copiedFrom": original.id},
                )
            return duplicate

        return with_number_retry(self.session, work, self.number_retries)

    def move(self, task_id: str, actor_id: str, target_project_id: str) -> Task:
        """
        Re-home a task in another project under a fresh number.

        The old number stays burned in the source project.
        """

        def work() -> Task:
            with self._unit_of_work():
                task = self.get_task(task_id)
                self._require_creator(task, actor_id, "move")
                if target_project_id == task.project_id:
                    return task
                # Lock both projects in id order; the source high-water mark
                # is written below.
                for project_id in sorted((task.project_id, target_project_id)):
                    if project_id == target_project_id:
                        target = lock_open_project(self.session, project_id)
                    else:
                        lock_project(self.session, project_id)
                source = task.project
                source.last_task_number = max(source.last_task_number or 0, task.task_number)
                old_key = task.key
                # Allocate before re-homing so autoflush never writes the old
                # number into the target project.
                number = next_task_number(self.session, target)

                task.project = target
                task.task_number = number
                self._touch(task)
                self._emit(
                    task,
                    actor_id,
                    SystemAction.TASK_MOVED,
                    f"moved this task from {old_key} to {task.key}",
                    {"from": old_key, "to": task.key},
                )
            return task

        return with_number_retry(self.session, work, self.number_retries)

    def delete(self, task_id: str, actor_id: str) -> Task:
        """Soft-delete; comments and attachments are left in place."""
        with self._unit_of_work():
            task = self.get_task(task_id)
            self._require_creator(task, actor_id, "delete")
            task.deleted_at = utcnow()
        return task

    def delete_many(self, task_ids: list[str], actor_id: str) -> int:
        """
        Soft-delete every listed live task the actor created.

        Tasks created by someone else are skipped. Raises ``PermissionDenied``
        when nothing is left to delete.
        """
        with self._unit_of_work():
            tasks = self.session.scalars(
                select(Task).where(Task.id.in_(task_ids), Task.deleted_at.is_(None))
            ).all()
            own = [task for task in tasks if task.creator_id == actor_id]
            if not own:
                raise PermissionDenied("No tasks you created were found to delete")
            now = utcnow()
            for task in own:
                task.deleted_at = now
        return len(own)
