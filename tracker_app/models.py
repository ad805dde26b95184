"""
Database Models for the Task Tracker.

Defines the SQLAlchemy ORM models for users, projects, tasks and task
comments, along with the string enumerations used for task type, status,
priority and system-comment actions.

Tasks are numbered per project (``PROJ-42``) and are never hard-deleted:
``deleted_at`` marks a soft delete and every read filters it out.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

from . import db


def _uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_utc_iso(value: datetime | None) -> str | None:
    """
    Convert a datetime to a UTC ISO-8601 string.

    SQLite does not store timezone information, so values read back may be
    naive even though they were written in UTC. Naive datetimes are assumed
    UTC; aware ones are converted.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    else:
        value = value.astimezone(timezone.utc)
    return value.isoformat()


def _hours(value: Decimal | None) -> float | None:
    return None if value is None else float(value)


class TaskType(str, Enum):
    """Kinds of work item."""

    BUG = "bug"
    FEATURE = "feature"
    TASK = "task"
    IMPROVEMENT = "improvement"


class TaskStatus(str, Enum):
    """
    Task lifecycle statuses.

    Inherits from ``str`` so members compare equal to the raw strings stored
    in the database column and serialise directly to JSON.
    """

    TODO = "todo"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    CANCELLED = "cancelled"


class TaskPriority(str, Enum):
    """Task priority levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class ProjectStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    ARCHIVED = "archived"


class SystemAction(str, Enum):
    """Tags carried by engine-generated comments."""

    TASK_CREATED = "task_created"
    STATUS_CHANGED = "status_changed"
    ASSIGNEE_CHANGED = "assignee_changed"
    TASK_COMPLETED = "task_completed"
    TASK_REOPENED = "task_reopened"
    TASK_CANCELLED = "task_cancelled"
    TASK_MOVED = "task_moved"


class User(db.Model):
    """
    A person who creates, is assigned to, or comments on tasks.

    Only the identity fields the lifecycle needs are kept here; credentials
    live with whatever issues the bearer tokens.
    """

    __tablename__ = "users"

    id: str = db.Column(db.String(36), primary_key=True, default=_uuid)
    username: str = db.Column(db.String(50), nullable=False, unique=True)
    email: str = db.Column(db.String(100), nullable=False)
    full_name: str | None = db.Column(db.String(100), nullable=True)
    avatar: str | None = db.Column(db.String(255), nullable=True)
    is_active: bool = db.Column(db.Boolean, nullable=False, default=True)
    created_at: datetime = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    @property
    def display_name(self) -> str:
        return self.full_name or self.username

    def to_summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "full_name": self.full_name,
            "avatar": self.avatar,
        }

    def __repr__(self) -> str:
        return f"<User {self.username}>"


class Project(db.Model):
    """
    A named container of tasks, identified by a short uppercase key.

    Attributes:
        key: Unique uppercase key used as the prefix of task identifiers.
        status: ``active``, ``inactive`` or ``archived``; tasks can only be
            created in (or copied/moved to) active projects.
        last_task_number: High-water mark of issued task numbers. Kept on the
            project so a number freed by moving a task away is never handed
            out again.
    """

    __tablename__ = "projects"

    id: str = db.Column(db.String(36), primary_key=True, default=_uuid)
    name: str = db.Column(db.String(100), nullable=False)
    key: str = db.Column(db.String(10), nullable=False, unique=True)
    description: str | None = db.Column(db.Text, nullable=True)
    creator_id: str = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)
    status: str = db.Column(db.String(20), nullable=False, default=ProjectStatus.ACTIVE.value)
    last_task_number: int = db.Column(db.Integer, nullable=False, default=0)
    created_at: datetime = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: datetime = db.Column(
        db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )
    deleted_at: datetime | None = db.Column(db.DateTime(timezone=True), nullable=True)

    @property
    def is_open(self) -> bool:
        return self.deleted_at is None and self.status == ProjectStatus.ACTIVE.value

    def to_summary(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "key": self.key, "status": self.status}

    def __repr__(self) -> str:
        return f"<Project {self.key}>"


class Task(db.Model):
    """
    A unit of work inside a project.

    Attributes:
        task_number: Per-project sequence number; with the project key it
            forms the displayed identifier (see ``key``).
        tags: Ordered list of distinct strings.
        labels: Opaque JSON object supplied by clients.
        meta: Opaque JSON object (column ``metadata``); copies record
            ``copiedFrom`` here.
        started_at: Set the first time the task enters ``in_progress``.
        completed_at: Non-null exactly while status is ``done``.
        version: Row version for optimistic concurrency; bumped by every
            flush that changes the row.
    """

    __tablename__ = "tasks"
    __table_args__ = (
        db.UniqueConstraint("project_id", "task_number", name="uq_tasks_project_number"),
    )

    id: str = db.Column(db.String(36), primary_key=True, default=_uuid)
    project_id: str = db.Column(
        db.String(36), db.ForeignKey("projects.id"), nullable=False, index=True
    )
    task_number: int = db.Column(db.Integer, nullable=False)
    type: str = db.Column(db.String(20), nullable=False, default=TaskType.TASK.value)
    title: str = db.Column(db.String(200), nullable=False)
    description: str | None = db.Column(db.Text, nullable=True)
    status: str = db.Column(db.String(20), nullable=False, default=TaskStatus.TODO.value)
    priority: str = db.Column(db.String(20), nullable=False, default=TaskPriority.MEDIUM.value)
    creator_id: str = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)
    assignee_id: str | None = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=True, index=True
    )
    due_date: date | None = db.Column(db.Date, nullable=True)
    estimated_hours: Decimal | None = db.Column(db.Numeric(10, 2), nullable=True)
    actual_hours: Decimal | None = db.Column(db.Numeric(10, 2), nullable=True)
    tags: list = db.Column(db.JSON, nullable=False, default=list)
    labels: dict = db.Column(db.JSON, nullable=False, default=dict)
    meta: dict = db.Column("metadata", db.JSON, nullable=False, default=dict)
    resolution: str | None = db.Column(db.Text, nullable=True)
    started_at: datetime | None = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at: datetime | None = db.Column(db.DateTime(timezone=True), nullable=True)
    attachment_count: int = db.Column(db.Integer, nullable=False, default=0)
    comment_count: int = db.Column(db.Integer, nullable=False, default=0)
    version: int = db.Column(db.Integer, nullable=False)
    created_at: datetime = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: datetime = db.Column(
        db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )
    deleted_at: datetime | None = db.Column(db.DateTime(timezone=True), nullable=True)

    __mapper_args__ = {"version_id_col": version}

    project = db.relationship("Project", lazy="joined")
    creator = db.relationship("User", foreign_keys=[creator_id])
    assignee = db.relationship("User", foreign_keys=[assignee_id])

    @property
    def key(self) -> str:
        """Displayed identifier, e.g. ``WEB-12``."""
        return f"{self.project.key}-{self.task_number}"

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def to_dict(self) -> dict[str, Any]:
        """
        Serialise the task to a JSON-safe dictionary.

        Datetimes become UTC ISO-8601 strings, the due date an ISO date and
        hours plain numbers.
        """
        return {
            "id": self.id,
            "key": self.key,
            "project_id": self.project_id,
            "project": self.project.to_summary(),
            "task_number": self.task_number,
            "type": self.type,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "priority": self.priority,
            "creator_id": self.creator_id,
            "assignee_id": self.assignee_id,
            "assignee": self.assignee.to_summary() if self.assignee else None,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "estimated_hours": _hours(self.estimated_hours),
            "actual_hours": _hours(self.actual_hours),
            "tags": list(self.tags or []),
            "labels": dict(self.labels or {}),
            "metadata": dict(self.meta or {}),
            "resolution": self.resolution,
            "started_at": to_utc_iso(self.started_at),
            "completed_at": to_utc_iso(self.completed_at),
            "attachment_count": self.attachment_count,
            "comment_count": self.comment_count,
            "version": self.version,
            "created_at": to_utc_iso(self.created_at),
            "updated_at": to_utc_iso(self.updated_at),
        }

    def __repr__(self) -> str:
        return f"<Task {self.id}: {self.title}>"


class Comment(db.Model):
    """
    A comment on a task: either user-authored or an engine-generated system
    record (``is_system``) tagged with a ``SystemAction``.

    System comments are audit records and are never edited.
    """

    __tablename__ = "comments"

    id: int = db.Column(db.Integer, primary_key=True)
    task_id: str = db.Column(db.String(36), db.ForeignKey("tasks.id"), nullable=False, index=True)
    user_id: str = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)
    content: str = db.Column(db.Text, nullable=False)
    is_system: bool = db.Column(db.Boolean, nullable=False, default=False)
    system_action: str | None = db.Column(db.String(50), nullable=True)
    meta: dict | None = db.Column("metadata", db.JSON, nullable=True)
    created_at: datetime = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    user = db.relationship("User")

    def __repr__(self) -> str:
        kind = self.system_action if self.is_system else "comment"
        return f"<Comment {self.id} ({kind}) on {self.task_id}>"
