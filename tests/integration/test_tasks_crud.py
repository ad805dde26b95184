"""
API tests for task endpoints.

Exercises the tracker through the Flask test client: authentication,
creation, reads, partial updates, the lifecycle actions and the mapping
of engine errors onto HTTP status codes. Each test follows the AAA
pattern:
- Arrange: Set up users, projects and tasks
- Act: Send the request
- Assert: Check status code and response body

Key SDET Concepts Demonstrated:
- Bearer-token authentication per acting user
- Status code validation for 201/400/401/403/404/409
- Response body validation against the serialised task
"""

import json

import pytest
from sqlalchemy import update

from shared.test_helpers import auth_headers, create_test_token, generate_throwaway_key_pair
from tracker_app.models import Task

pytestmark = pytest.mark.integration


def _post(client, url, headers, body=None):
    return client.post(url, data=json.dumps(body or {}), headers=headers)


def _patch(client, url, headers, body):
    return client.patch(url, data=json.dumps(body), headers=headers)


class TestHealth:
    def test_health_is_public(self, client, db_session):
        # Act
        response = client.get("/api/health")

        # Assert
        assert response.status_code == 200
        assert response.get_json()["service"] == "tracker"


class TestAuthentication:
    """Every task endpoint requires a valid bearer token."""

    @pytest.mark.api
    def test_missing_token_returns_401(self, client, db_session, sample_task):
        response = client.get(f"/api/tasks/{sample_task.id}")

        assert response.status_code == 401

    @pytest.mark.api
    def test_expired_token_returns_401(self, client, db_session, sample_task, creator):
        # Arrange
        token = create_test_token(creator.id, creator.username, expired=True)

        # Act
        response = client.get(f"/api/tasks/{sample_task.id}", headers=auth_headers(token))

        # Assert
        assert response.status_code == 401
        assert "expired" in response.get_json()["error"].lower()

    @pytest.mark.api
    def test_token_from_unknown_issuer_returns_401(self, client, db_session, sample_task, creator):
        other_private, _ = generate_throwaway_key_pair()
        token = create_test_token(creator.id, creator.username, private_key=other_private)

        response = client.get(f"/api/tasks/{sample_task.id}", headers=auth_headers(token))

        assert response.status_code == 401


class TestCreateTask:
    """Tests for POST /api/tasks."""

    @pytest.mark.api
    def test_create_task_returns_201_with_first_key(
        self, client, db_session, project_p, creator, headers_for
    ):
        # Arrange
        body = {"project_id": project_p.id, "title": "Set up CI", "tags": ["infra"]}

        # Act
        response = _post(client, "/api/tasks", headers_for(creator), body)

        # Assert
        assert response.status_code == 201
        data = response.get_json()
        assert data["key"] == "P-1"
        assert data["status"] == "todo"
        assert data["creator_id"] == creator.id
        assert data["tags"] == ["infra"]
        assert data["completed_at"] is None

    @pytest.mark.api
    def test_create_in_unknown_project_returns_404(self, client, db_session, creator, headers_for):
        response = _post(
            client, "/api/tasks", headers_for(creator), {"project_id": "nope", "title": "Lost"}
        )

        assert response.status_code == 404
        assert response.get_json()["code"] == "not_found"

    @pytest.mark.api
    def test_create_for_token_without_user_row_returns_404(
        self, client, db_session, project_p
    ):
        headers = auth_headers(create_test_token("ghost-user", "ghost"))

        response = _post(client, "/api/tasks", headers, {"project_id": project_p.id, "title": "x"})

        assert response.status_code == 404


class TestGetTask:
    def test_get_task_returns_serialised_task(
        self, client, db_session, sample_task, outsider, headers_for
    ):
        response = client.get(f"/api/tasks/{sample_task.id}", headers=headers_for(outsider))

        assert response.status_code == 200
        data = response.get_json()
        assert data["id"] == sample_task.id
        assert data["project"]["key"] == "P"

    def test_get_deleted_task_returns_404(
        self, client, db_session, lifecycle, sample_task, creator, headers_for
    ):
        lifecycle.delete(sample_task.id, creator.id)

        response = client.get(f"/api/tasks/{sample_task.id}", headers=headers_for(creator))

        assert response.status_code == 404


class TestUpdateTask:
    """Tests for PATCH /api/tasks/<id>."""

    @pytest.mark.api
    def test_partial_update_changes_only_given_fields(
        self, client, db_session, sample_task, creator, headers_for
    ):
        # Act
        response = _patch(
            client, f"/api/tasks/{sample_task.id}", headers_for(creator), {"priority": "high"}
        )

        # Assert
        assert response.status_code == 200
        data = response.get_json()
        assert data["priority"] == "high"
        assert data["title"] == "Sample Task"

    @pytest.mark.api
    def test_outsider_gets_403_and_task_is_unchanged(
        self, client, db_session, sample_task, creator, outsider, headers_for
    ):
        # Act
        response = _patch(
            client, f"/api/tasks/{sample_task.id}", headers_for(outsider), {"title": "Mine now"}
        )

        # Assert
        assert response.status_code == 403
        assert response.get_json()["code"] == "permission_denied"
        check = client.get(f"/api/tasks/{sample_task.id}", headers=headers_for(creator))
        assert check.get_json()["title"] == "Sample Task"

    @pytest.mark.api
    def test_update_missing_task_returns_404(self, client, db_session, creator, headers_for):
        response = _patch(client, "/api/tasks/missing", headers_for(creator), {"title": "x"})

        assert response.status_code == 404

    @pytest.mark.api
    def test_update_with_invalid_status_returns_400(
        self, client, db_session, sample_task, creator, headers_for
    ):
        response = _patch(
            client, f"/api/tasks/{sample_task.id}", headers_for(creator), {"status": "blocked"}
        )

        assert response.status_code == 400


class TestLifecycleActions:
    @pytest.mark.api
    def test_status_change_then_activity_feed(
        self, client, db_session, sample_task, creator, headers_for
    ):
        # Arrange
        headers = headers_for(creator)

        # Act
        response = _patch(
            client, f"/api/tasks/{sample_task.id}/status", headers, {"status": "done"}
        )
        feed = client.get(f"/api/tasks/{sample_task.id}/activity", headers=headers)

        # Assert
        assert response.status_code == 200
        assert response.get_json()["completed_at"] is not None
        actions = [entry["system_action"] for entry in feed.get_json()["activity"]]
        assert actions == ["task_completed", "status_changed", "task_created"]

    @pytest.mark.api
    def test_assign_then_unassign(
        self, client, db_session, sample_task, creator, alice, headers_for
    ):
        headers = headers_for(creator)

        assigned = _post(
            client, f"/api/tasks/{sample_task.id}/assign", headers, {"assignee_id": alice.id}
        )
        unassigned = _post(client, f"/api/tasks/{sample_task.id}/unassign", headers)

        assert assigned.get_json()["assignee"]["username"] == "alice"
        assert unassigned.get_json()["assignee_id"] is None

    @pytest.mark.api
    def test_complete_reopen_cancel(self, client, db_session, sample_task, creator, headers_for):
        headers = headers_for(creator)
        base = f"/api/tasks/{sample_task.id}"

        completed = _post(client, f"{base}/complete", headers, {"resolution": "Done and dusted"})
        reopened = _post(client, f"{base}/reopen", headers)
        cancelled = _post(client, f"{base}/cancel", headers, {"reason": "No longer needed"})

        assert completed.get_json()["resolution"] == "Done and dusted"
        assert reopened.get_json()["status"] == "todo"
        assert reopened.get_json()["resolution"] is None
        assert cancelled.get_json()["status"] == "cancelled"
        assert cancelled.get_json()["resolution"] == "No longer needed"

    @pytest.mark.api
    def test_hours_require_assignee(
        self, client, db_session, task_factory, project_p, creator, alice, headers_for
    ):
        task = task_factory(project=project_p, creator=creator, assignee=alice)

        denied = _patch(client, f"/api/tasks/{task.id}/hours", headers_for(creator), {"actual_hours": 2})
        logged = _patch(client, f"/api/tasks/{task.id}/hours", headers_for(alice), {"actual_hours": 2})

        assert denied.status_code == 403
        assert logged.status_code == 200
        assert logged.get_json()["actual_hours"] == 2.0

    @pytest.mark.api
    def test_tags_add_and_remove(self, client, db_session, sample_task, outsider, headers_for):
        headers = headers_for(outsider)
        base = f"/api/tasks/{sample_task.id}/tags"

        _post(client, base, headers, {"tag": "ui"})
        _post(client, base, headers, {"tag": "ui"})
        added = _post(client, base, headers, {"tag": "api"})
        removed = client.delete(f"{base}/ui", headers=headers)

        assert added.get_json()["tags"] == ["ui", "api"]
        assert removed.get_json()["tags"] == ["api"]


class TestCopyMoveDelete:
    @pytest.mark.api
    def test_copy_into_other_project_returns_201(
        self, client, db_session, sample_task, project_q, alice, headers_for
    ):
        response = _post(
            client,
            f"/api/tasks/{sample_task.id}/copy",
            headers_for(alice),
            {"project_id": project_q.id},
        )

        assert response.status_code == 201
        data = response.get_json()
        assert data["key"] == "Q-1"
        assert data["title"] == "Sample Task (Copy)"
        assert data["metadata"] == {"copiedFrom": sample_task.id}

    @pytest.mark.api
    def test_move_by_non_creator_returns_403(
        self, client, db_session, sample_task, project_q, alice, headers_for
    ):
        response = _post(
            client,
            f"/api/tasks/{sample_task.id}/move",
            headers_for(alice),
            {"project_id": project_q.id},
        )

        assert response.status_code == 403

    @pytest.mark.api
    def test_move_without_target_returns_400(
        self, client, db_session, sample_task, creator, headers_for
    ):
        response = _post(client, f"/api/tasks/{sample_task.id}/move", headers_for(creator), {})

        assert response.status_code == 400

    @pytest.mark.api
    def test_delete_then_get_returns_404(self, client, db_session, sample_task, creator, headers_for):
        headers = headers_for(creator)

        deleted = client.delete(f"/api/tasks/{sample_task.id}", headers=headers)
        fetched = client.get(f"/api/tasks/{sample_task.id}", headers=headers)

        assert deleted.status_code == 200
        assert fetched.status_code == 404

    @pytest.mark.api
    def test_batch_delete_reports_count(
        self, client, db_session, task_factory, project_p, creator, alice, headers_for
    ):
        own = task_factory(project=project_p, creator=creator)
        foreign = task_factory(project=project_p, creator=alice)

        response = _post(
            client,
            "/api/tasks/batch-delete",
            headers_for(creator),
            {"task_ids": [own.id, foreign.id]},
        )

        assert response.status_code == 200
        assert response.get_json() == {"deleted": 1}


class TestCommentsAndStatistics:
    @pytest.mark.api
    def test_comment_appears_first_in_feed(
        self, client, db_session, sample_task, outsider, headers_for
    ):
        headers = headers_for(outsider)

        created = _post(
            client, f"/api/tasks/{sample_task.id}/comments", headers, {"content": "Hello"}
        )
        feed = client.get(f"/api/tasks/{sample_task.id}/activity?limit=1", headers=headers)

        assert created.status_code == 201
        data = feed.get_json()
        assert data["count"] == 1
        assert data["activity"][0]["type"] == "comment"

    @pytest.mark.api
    def test_activity_limit_out_of_range_returns_400(
        self, client, db_session, sample_task, creator, headers_for
    ):
        response = client.get(
            f"/api/tasks/{sample_task.id}/activity?limit=500", headers=headers_for(creator)
        )

        assert response.status_code == 400

    @pytest.mark.api
    def test_project_statistics(self, client, db_session, sample_task, project_p, creator, headers_for):
        response = client.get(
            f"/api/projects/{project_p.id}/statistics", headers=headers_for(creator)
        )

        assert response.status_code == 200
        data = response.get_json()
        assert data["total"] == 1
        assert data["by_status"]["todo"] == 1


class TestConcurrentModification:
    @pytest.mark.api
    def test_write_against_stale_version_returns_409(
        self, client, db_session, sample_task, creator, headers_for
    ):
        """
        A request working from an out-of-date copy of the task is refused.

        Arrange: Load the task into the session, then bump its version from
            another connection as a concurrent request would
        Act: Change the status through the API
        Assert: 409 with the conflict body, and the row keeps its new version
        """
        # Arrange
        task_id = sample_task.id
        loaded_version = sample_task.version
        with db_session.engine.begin() as connection:
            connection.execute(
                update(Task).where(Task.id == task_id).values(version=loaded_version + 1)
            )

        # Act
        response = _patch(
            client, f"/api/tasks/{task_id}/status", headers_for(creator), {"status": "done"}
        )

        # Assert
        assert response.status_code == 409
        assert response.get_json() == {
            "error": "Task was modified concurrently, retry",
            "code": "conflict",
        }
        db_session.session.expire_all()
        assert db_session.session.get(Task, task_id).status == "todo"
