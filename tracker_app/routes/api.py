"""
REST API Endpoints for the Task Tracker.

A thin JSON layer over the lifecycle engine: each handler parses the body
into a typed request structure, calls one engine operation with the
authenticated user as actor, and serialises the resulting task. Engine
errors are translated to HTTP status codes by ``register_error_handlers``.

Endpoints:
    GET    /api/health                          - Service health check (public)
    POST   /api/tasks                           - Create a task
    POST   /api/tasks/batch-delete              - Soft-delete several tasks
    GET    /api/tasks/<id>                      - Retrieve a task
    PATCH  /api/tasks/<id>                      - Partial update
    DELETE /api/tasks/<id>                      - Soft-delete a task
    PATCH  /api/tasks/<id>/status               - Change status
    POST   /api/tasks/<id>/assign               - Assign / reassign
    POST   /api/tasks/<id>/unassign             - Clear the assignee
    POST   /api/tasks/<id>/complete             - Mark done
    POST   /api/tasks/<id>/reopen               - Reopen
    POST   /api/tasks/<id>/cancel               - Cancel
    PATCH  /api/tasks/<id>/hours                - Log actual hours
    POST   /api/tasks/<id>/tags                 - Add a tag
    DELETE /api/tasks/<id>/tags/<tag>           - Remove a tag
    POST   /api/tasks/<id>/copy                 - Copy a task
    POST   /api/tasks/<id>/move                 - Move to another project
    GET    /api/tasks/<id>/activity             - Activity feed
    POST   /api/tasks/<id>/comments             - Add a user comment
    GET    /api/projects/<id>/statistics        - Project task statistics
"""

from __future__ import annotations

import logging
import os

from flask import Blueprint, Flask, Response, current_app, g, jsonify, request
from sqlalchemy.orm.exc import StaleDataError
from werkzeug.exceptions import HTTPException

from .. import db
from ..activity import activity_log, add_comment
from ..auth import require_auth
from ..errors import InvalidArgument, TrackerError
from ..lifecycle import TaskLifecycle
from ..schemas import (
    AssignRequest,
    BatchDelete,
    CancelRequest,
    CommentCreate,
    CompleteRequest,
    HoursUpdate,
    StatusChange,
    TagRequest,
    TargetProject,
    TaskChanges,
    TaskCreate,
)
from ..statistics import task_statistics

logger = logging.getLogger(__name__)

api_bp = Blueprint("tracker_api", __name__)


# =====================================================================
# Helper Functions
# =====================================================================


def get_lifecycle() -> TaskLifecycle:
    """Build a lifecycle engine bound to the request's session and config."""
    return TaskLifecycle(
        db.session,
        strict_transitions=bool(current_app.config.get("STRICT_STATUS_TRANSITIONS", False)),
        number_retries=int(current_app.config.get("TASK_NUMBER_MAX_RETRIES", 3)),
    )


def _json_body() -> dict | None:
    return request.get_json(silent=True)


def _limit_arg() -> int:
    raw = request.args.get("limit")
    if raw is None:
        return int(current_app.config.get("ACTIVITY_LOG_DEFAULT_LIMIT", 20))
    try:
        return int(raw)
    except ValueError:
        raise InvalidArgument("'limit' must be an integer") from None


# =====================================================================
# API Endpoints
# =====================================================================


@api_bp.route("/health", methods=["GET"])
def health_check() -> tuple[Response, int]:
    """Liveness check for load balancers; no authentication required."""
    return (
        jsonify(
            {
                "status": "healthy",
                "service": "tracker",
                "environment": os.getenv("ENVIRONMENT", "unknown"),
            }
        ),
        200,
    )


@api_bp.route("/tasks", methods=["POST"])
@require_auth
def create_task() -> tuple[Response, int]:
    """Create a task in the project named by ``project_id``."""
    logger.info("POST /api/tasks - Creating task for user_id=%s", g.user_id)
    data = TaskCreate.from_json(_json_body())
    task = get_lifecycle().create_task(g.user_id, data)
    logger.info("Created task %s (%s)", task.id, task.key)
    return jsonify(task.to_dict()), 201


@api_bp.route("/tasks/batch-delete", methods=["POST"])
@require_auth
def batch_delete_tasks() -> tuple[Response, int]:
    """Soft-delete the listed tasks created by the caller."""
    data = BatchDelete.from_json(_json_body())
    deleted = get_lifecycle().delete_many(data.task_ids, g.user_id)
    logger.info("Batch-deleted %s tasks for user_id=%s", deleted, g.user_id)
    return jsonify({"deleted": deleted}), 200


@api_bp.route("/tasks/<task_id>", methods=["GET"])
@require_auth
def get_task(task_id: str) -> tuple[Response, int]:
    task = get_lifecycle().get_task(task_id)
    return jsonify(task.to_dict()), 200


@api_bp.route("/tasks/<task_id>", methods=["PATCH"])
@require_auth
def update_task(task_id: str) -> tuple[Response, int]:
    """
    Partially update a task.

    Only fields present in the body change; ``null`` clears a nullable
    field. The caller must be the creator or the assignee.
    """
    logger.info("PATCH /api/tasks/%s - Updating task", task_id)
    changes = TaskChanges.from_json(_json_body())
    task = get_lifecycle().update_task(task_id, g.user_id, changes)
    return jsonify(task.to_dict()), 200


@api_bp.route("/tasks/<task_id>", methods=["DELETE"])
@require_auth
def delete_task(task_id: str) -> tuple[Response, int]:
    logger.info("DELETE /api/tasks/%s - Deleting task", task_id)
    get_lifecycle().delete(task_id, g.user_id)
    return jsonify({"message": "Task deleted successfully"}), 200


@api_bp.route("/tasks/<task_id>/status", methods=["PATCH"])
@require_auth
def update_task_status(task_id: str) -> tuple[Response, int]:
    """Change only the status of a task."""
    logger.info("PATCH /api/tasks/%s/status - Updating status", task_id)
    data = StatusChange.from_json(_json_body())
    task = get_lifecycle().set_status(task_id, g.user_id, data.status)
    logger.info("Task %s status is now %s", task_id, task.status)
    return jsonify(task.to_dict()), 200


@api_bp.route("/tasks/<task_id>/assign", methods=["POST"])
@require_auth
def assign_task(task_id: str) -> tuple[Response, int]:
    data = AssignRequest.from_json(_json_body())
    task = get_lifecycle().assign(task_id, g.user_id, data.assignee_id)
    return jsonify(task.to_dict()), 200


@api_bp.route("/tasks/<task_id>/unassign", methods=["POST"])
@require_auth
def unassign_task(task_id: str) -> tuple[Response, int]:
    task = get_lifecycle().unassign(task_id, g.user_id)
    return jsonify(task.to_dict()), 200


@api_bp.route("/tasks/<task_id>/complete", methods=["POST"])
@require_auth
def complete_task(task_id: str) -> tuple[Response, int]:
    data = CompleteRequest.from_json(_json_body())
    task = get_lifecycle().complete(task_id, g.user_id, data.resolution)
    return jsonify(task.to_dict()), 200


@api_bp.route("/tasks/<task_id>/reopen", methods=["POST"])
@require_auth
def reopen_task(task_id: str) -> tuple[Response, int]:
    task = get_lifecycle().reopen(task_id, g.user_id)
    return jsonify(task.to_dict()), 200


@api_bp.route("/tasks/<task_id>/cancel", methods=["POST"])
@require_auth
def cancel_task(task_id: str) -> tuple[Response, int]:
    data = CancelRequest.from_json(_json_body())
    task = get_lifecycle().cancel(task_id, g.user_id, data.reason)
    return jsonify(task.to_dict()), 200


@api_bp.route("/tasks/<task_id>/hours", methods=["PATCH"])
@require_auth
def update_task_hours(task_id: str) -> tuple[Response, int]:
    data = HoursUpdate.from_json(_json_body())
    task = get_lifecycle().update_hours(task_id, g.user_id, data.actual_hours)
    return jsonify(task.to_dict()), 200


@api_bp.route("/tasks/<task_id>/tags", methods=["POST"])
@require_auth
def add_task_tag(task_id: str) -> tuple[Response, int]:
    data = TagRequest.from_json(_json_body())
    task = get_lifecycle().add_tag(task_id, data.tag)
    return jsonify(task.to_dict()), 200


@api_bp.route("/tasks/<task_id>/tags/<tag>", methods=["DELETE"])
@require_auth
def remove_task_tag(task_id: str, tag: str) -> tuple[Response, int]:
    task = get_lifecycle().remove_tag(task_id, tag)
    return jsonify(task.to_dict()), 200


@api_bp.route("/tasks/<task_id>/copy", methods=["POST"])
@require_auth
def copy_task(task_id: str) -> tuple[Response, int]:
    """Copy a task, into ``project_id`` when given or else the same project."""
    data = TargetProject.from_json(_json_body(), required=False)
    task = get_lifecycle().copy(task_id, g.user_id, data.project_id)
    logger.info("Copied task %s to %s", task_id, task.key)
    return jsonify(task.to_dict()), 201


@api_bp.route("/tasks/<task_id>/move", methods=["POST"])
@require_auth
def move_task(task_id: str) -> tuple[Response, int]:
    data = TargetProject.from_json(_json_body(), required=True)
    task = get_lifecycle().move(task_id, g.user_id, data.project_id)
    logger.info("Moved task %s to %s", task_id, task.key)
    return jsonify(task.to_dict()), 200


@api_bp.route("/tasks/<task_id>/activity", methods=["GET"])
@require_auth
def get_task_activity(task_id: str) -> tuple[Response, int]:
    """Newest-first activity feed; ``?limit=`` caps the number of entries."""
    entries = activity_log(db.session, task_id, limit=_limit_arg())
    return jsonify({"activity": entries, "count": len(entries)}), 200


@api_bp.route("/tasks/<task_id>/comments", methods=["POST"])
@require_auth
def create_task_comment(task_id: str) -> tuple[Response, int]:
    data = CommentCreate.from_json(_json_body())
    comment = add_comment(db.session, task_id, g.user_id, data.content)
    return jsonify({"id": comment.id, "task_id": task_id, "content": comment.content}), 201


@api_bp.route("/projects/<project_id>/statistics", methods=["GET"])
@require_auth
def get_project_statistics(project_id: str) -> tuple[Response, int]:
    return jsonify(task_statistics(db.session, project_id)), 200


# =====================================================================
# Error Handlers
# =====================================================================


def register_error_handlers(app: Flask) -> None:
    """Translate tracker, concurrency and HTTP errors into JSON responses."""

    @app.errorhandler(TrackerError)
    def handle_tracker_error(error: TrackerError) -> tuple[Response, int]:
        logger.warning("%s %s rejected: %s", request.method, request.path, error.message)
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(StaleDataError)
    def handle_stale_data(error: StaleDataError) -> tuple[Response, int]:
        logger.warning("Concurrent modification on %s: %s", request.path, error)
        return (
            jsonify({"error": "Task was modified concurrently, retry", "code": "conflict"}),
            409,
        )

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException) -> tuple[Response, int]:
        return jsonify({"error": error.description, "code": error.name}), error.code

    @app.errorhandler(500)
    def internal_error(error: Exception) -> tuple[Response, int]:
        logger.error("Internal server error: %s", error)
        return jsonify({"error": "Internal server error"}), 500
