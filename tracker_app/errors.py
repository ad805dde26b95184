"""
Error taxonomy for task lifecycle operations.

Every failure the engine reports on purpose is a ``TrackerError``. The HTTP
layer maps ``status_code`` straight onto the response, so callers only need
to tell the kinds apart by class.
"""

from __future__ import annotations


class TrackerError(Exception):
    """Base class for errors raised deliberately by the tracker."""

    status_code: int = 500
    code: str = "tracker_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"error": self.message, "code": self.code}


class NotFound(TrackerError):
    """A task, project, user or assignee is missing or soft-deleted."""

    status_code = 404
    code = "not_found"


class PermissionDenied(TrackerError):
    """The acting user lacks creator/assignee standing for the mutation."""

    status_code = 403
    code = "permission_denied"


class InvalidArgument(TrackerError):
    """A value is malformed: unknown enum member, bad date, negative hours."""

    status_code = 400
    code = "invalid_argument"


class InvalidTransition(InvalidArgument):
    """The requested status change is not in the allowed-transition table."""

    code = "invalid_transition"
