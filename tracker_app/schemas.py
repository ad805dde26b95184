"""
Typed request structures for the tracker API.

Each JSON body is parsed into a small dataclass before it reaches the
lifecycle engine, so the engine only ever sees validated enum members,
dates and decimals. Parsing failures raise ``InvalidArgument``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, TypeVar

from .errors import InvalidArgument
from .models import TaskPriority, TaskStatus, TaskType

TITLE_MAX_LENGTH = 200
DESCRIPTION_MAX_LENGTH = 5000
RESOLUTION_MAX_LENGTH = 2000
REASON_MAX_LENGTH = 500
COMMENT_MAX_LENGTH = 5000
TAG_MAX_LENGTH = 50
HOURS_MAX = Decimal("9999")

E = TypeVar("E", bound=Enum)


class _Unset:
    """Marker for a field that was absent from a partial update body."""

    _instance: _Unset | None = None

    def __new__(cls) -> _Unset:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()


# =====================================================================
# Field parsers
# =====================================================================


def parse_enum(value: Any, enum_cls: type[E], field_name: str) -> E:
    """Return the ``enum_cls`` member whose value is ``value``."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        valid = [member.value for member in enum_cls]
        raise InvalidArgument(f"Invalid {field_name}. Must be one of: {valid}") from None


def parse_status(value: Any) -> TaskStatus:
    return parse_enum(value, TaskStatus, "status")


def parse_text(
    value: Any,
    field_name: str,
    *,
    max_length: int,
    required: bool = False,
) -> str | None:
    """Validate an optional (or required) string field and its length."""
    if value is None:
        if required:
            raise InvalidArgument(f"'{field_name}' is required")
        return None
    if not isinstance(value, str):
        raise InvalidArgument(f"'{field_name}' must be a string")
    if required and not value.strip():
        raise InvalidArgument(f"'{field_name}' is required")
    if len(value) > max_length:
        raise InvalidArgument(f"'{field_name}' must be {max_length} characters or less")
    return value


def parse_identifier(value: Any, field_name: str, *, required: bool = True) -> str | None:
    if value is None and not required:
        return None
    if not isinstance(value, str) or not value.strip():
        raise InvalidArgument(f"'{field_name}' is required")
    return value.strip()


def parse_due_date(value: Any) -> date | None:
    """
    Parse an ISO-8601 date or date-time string into a ``date``.

    Date-times (including a trailing ``Z``) are accepted and truncated to
    their calendar date.
    """
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise InvalidArgument("Invalid due_date format. Use ISO format (YYYY-MM-DD)")
    try:
        if "T" in value:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
        return date.fromisoformat(value)
    except ValueError:
        raise InvalidArgument("Invalid due_date format. Use ISO format (YYYY-MM-DD)") from None


def parse_hours(value: Any, field_name: str) -> Decimal | None:
    """Parse a non-negative number of hours with two decimal places."""
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float, str, Decimal)):
        raise InvalidArgument(f"'{field_name}' must be a number")
    try:
        hours = Decimal(str(value))
    except InvalidOperation:
        raise InvalidArgument(f"'{field_name}' must be a number") from None
    if not hours.is_finite() or hours < 0 or hours > HOURS_MAX:
        raise InvalidArgument(f"'{field_name}' must be between 0 and {HOURS_MAX}")
    return hours.quantize(Decimal("0.01"))


def parse_tag(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidArgument("Tag must be a non-empty string")
    tag = value.strip()
    if len(tag) > TAG_MAX_LENGTH:
        raise InvalidArgument(f"Tag must be {TAG_MAX_LENGTH} characters or less")
    return tag


def parse_tags(value: Any) -> list[str]:
    """Parse a tag list, dropping duplicates while keeping first-seen order."""
    if value is None:
        return []
    if not isinstance(value, list):
        raise InvalidArgument("'tags' must be a list of strings")
    tags: list[str] = []
    for item in value:
        tag = parse_tag(item)
        if tag not in tags:
            tags.append(tag)
    return tags


def parse_object(value: Any, field_name: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise InvalidArgument(f"'{field_name}' must be a JSON object")
    return value


def _require_body(data: Any) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise InvalidArgument("Request body must be a JSON object")
    return data


# =====================================================================
# Request structures
# =====================================================================


@dataclass
class TaskCreate:
    """Body of ``POST /api/tasks``."""

    project_id: str
    title: str
    type: TaskType = TaskType.TASK
    description: str | None = None
    priority: TaskPriority = TaskPriority.MEDIUM
    assignee_id: str | None = None
    due_date: date | None = None
    estimated_hours: Decimal | None = None
    actual_hours: Decimal | None = None
    tags: list[str] = field(default_factory=list)
    labels: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_json(cls, data: Any) -> TaskCreate:
        data = _require_body(data)
        return cls(
            project_id=parse_identifier(data.get("project_id"), "project_id"),
            title=parse_text(
                data.get("title"), "title", max_length=TITLE_MAX_LENGTH, required=True
            ),
            type=parse_enum(data.get("type", TaskType.TASK.value), TaskType, "type"),
            description=parse_text(
                data.get("description"), "description", max_length=DESCRIPTION_MAX_LENGTH
            ),
            priority=parse_enum(
                data.get("priority", TaskPriority.MEDIUM.value), TaskPriority, "priority"
            ),
            assignee_id=parse_identifier(data.get("assignee_id"), "assignee_id", required=False),
            due_date=parse_due_date(data.get("due_date")),
            estimated_hours=parse_hours(data.get("estimated_hours"), "estimated_hours"),
            actual_hours=parse_hours(data.get("actual_hours"), "actual_hours"),
            tags=parse_tags(data.get("tags")),
            labels=parse_object(data.get("labels"), "labels"),
        )


@dataclass
class TaskChanges:
    """
    Partial update of a task.

    A field left as ``UNSET`` is not touched. ``None`` on a nullable field
    (assignee, due date, hours, description, resolution) clears it.
    """

    title: Any = UNSET
    description: Any = UNSET
    type: Any = UNSET
    status: Any = UNSET
    priority: Any = UNSET
    assignee_id: Any = UNSET
    due_date: Any = UNSET
    estimated_hours: Any = UNSET
    actual_hours: Any = UNSET
    tags: Any = UNSET
    labels: Any = UNSET
    resolution: Any = UNSET
    metadata: Any = UNSET

    @classmethod
    def from_json(cls, data: Any) -> TaskChanges:
        data = _require_body(data)
        changes = cls()
        if "title" in data:
            changes.title = parse_text(
                data["title"], "title", max_length=TITLE_MAX_LENGTH, required=True
            )
        if "description" in data:
            changes.description = parse_text(
                data["description"], "description", max_length=DESCRIPTION_MAX_LENGTH
            )
        if "type" in data:
            changes.type = parse_enum(data["type"], TaskType, "type")
        if "status" in data:
            changes.status = parse_status(data["status"])
        if "priority" in data:
            changes.priority = parse_enum(data["priority"], TaskPriority, "priority")
        if "assignee_id" in data:
            changes.assignee_id = parse_identifier(
                data["assignee_id"], "assignee_id", required=False
            )
        if "due_date" in data:
            changes.due_date = parse_due_date(data["due_date"])
        if "estimated_hours" in data:
            changes.estimated_hours = parse_hours(data["estimated_hours"], "estimated_hours")
        if "actual_hours" in data:
            changes.actual_hours = parse_hours(data["actual_hours"], "actual_hours")
        if "tags" in data:
            changes.tags = parse_tags(data["tags"])
        if "labels" in data:
            changes.labels = parse_object(data["labels"], "labels")
        if "resolution" in data:
            changes.resolution = parse_text(
                data["resolution"], "resolution", max_length=RESOLUTION_MAX_LENGTH
            )
        if "metadata" in data:
            changes.metadata = parse_object(data["metadata"], "metadata")
        return changes

    def provided(self) -> dict[str, Any]:
        """Return only the fields that were supplied."""
        return {name: value for name, value in vars(self).items() if value is not UNSET}


@dataclass
class StatusChange:
    status: TaskStatus

    @classmethod
    def from_json(cls, data: Any) -> StatusChange:
        data = _require_body(data)
        if "status" not in data:
            raise InvalidArgument("'status' field is required")
        return cls(status=parse_status(data["status"]))


@dataclass
class AssignRequest:
    assignee_id: str

    @classmethod
    def from_json(cls, data: Any) -> AssignRequest:
        data = _require_body(data)
        return cls(assignee_id=parse_identifier(data.get("assignee_id"), "assignee_id"))


@dataclass
class CompleteRequest:
    resolution: str | None = None

    @classmethod
    def from_json(cls, data: Any) -> CompleteRequest:
        data = _require_body(data or {})
        return cls(
            resolution=parse_text(
                data.get("resolution"), "resolution", max_length=RESOLUTION_MAX_LENGTH
            )
        )


@dataclass
class CancelRequest:
    reason: str | None = None

    @classmethod
    def from_json(cls, data: Any) -> CancelRequest:
        data = _require_body(data or {})
        return cls(reason=parse_text(data.get("reason"), "reason", max_length=REASON_MAX_LENGTH))


@dataclass
class TargetProject:
    """Body of copy (target optional) and move (target required)."""

    project_id: str | None = None

    @classmethod
    def from_json(cls, data: Any, *, required: bool) -> TargetProject:
        data = _require_body(data or {})
        return cls(
            project_id=parse_identifier(data.get("project_id"), "project_id", required=required)
        )


@dataclass
class HoursUpdate:
    actual_hours: Decimal

    @classmethod
    def from_json(cls, data: Any) -> HoursUpdate:
        data = _require_body(data)
        hours = parse_hours(data.get("actual_hours"), "actual_hours")
        if hours is None:
            raise InvalidArgument("'actual_hours' is required")
        return cls(actual_hours=hours)


@dataclass
class CommentCreate:
    content: str

    @classmethod
    def from_json(cls, data: Any) -> CommentCreate:
        data = _require_body(data)
        return cls(
            content=parse_text(
                data.get("content"), "content", max_length=COMMENT_MAX_LENGTH, required=True
            )
        )


@dataclass
class BatchDelete:
    task_ids: list[str]

    @classmethod
    def from_json(cls, data: Any) -> BatchDelete:
        data = _require_body(data)
        task_ids = data.get("task_ids")
        if not isinstance(task_ids, list) or not task_ids:
            raise InvalidArgument("'task_ids' must be a non-empty list")
        return cls(task_ids=[parse_identifier(item, "task_ids") for item in task_ids])


@dataclass
class TagRequest:
    tag: str

    @classmethod
    def from_json(cls, data: Any) -> TagRequest:
        data = _require_body(data)
        return cls(tag=parse_tag(data.get("tag")))
