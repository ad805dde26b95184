"""
Shared pytest fixtures for the tracker test suite.

Provides the Flask application, test client, a clean database per test,
bearer-token headers and data factories for users, projects and tasks.

Key Concepts Demonstrated:
- Session-scoped app vs function-scoped database for isolation
- Factory fixtures that build rows with Faker defaults
- Tasks created through the lifecycle engine so numbering is realistic
"""

from __future__ import annotations

import itertools
import os
from datetime import date
from typing import Any

import pytest
from faker import Faker

from shared.test_helpers import TEST_PUBLIC_KEY, auth_headers, create_test_token

os.environ["FLASK_ENV"] = "testing"
os.environ["TEST_JWT_PUBLIC_KEY"] = TEST_PUBLIC_KEY

from tracker_app import create_app, db  # noqa: E402
from tracker_app.lifecycle import TaskLifecycle  # noqa: E402
from tracker_app.models import Project, Task, User  # noqa: E402
from tracker_app.schemas import TaskCreate  # noqa: E402

fake = Faker()
_project_keys = itertools.count(1)


# -----------------------------------------------------------------------------
# Application Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture(scope="session")
def app():
    """Create the Flask app once for the whole session with the testing config."""
    application = create_app("testing")
    yield application


@pytest.fixture(scope="function")
def client(app):
    """Provide a fresh Flask test client per test."""
    with app.test_client() as test_client:
        yield test_client


@pytest.fixture(scope="function")
def db_session(app):
    """
    Provide a clean database for each test function.

    Creates all tables before the test and drops them afterwards so no rows
    leak between tests.
    """
    with app.app_context():
        db.create_all()
        yield db
        db.session.rollback()
        db.drop_all()


@pytest.fixture
def lifecycle(db_session) -> TaskLifecycle:
    """Permissive lifecycle engine bound to the test session."""
    return TaskLifecycle(db_session.session)


@pytest.fixture
def strict_lifecycle(db_session) -> TaskLifecycle:
    """Lifecycle engine that enforces the allowed-transition table."""
    return TaskLifecycle(db_session.session, strict_transitions=True)


# -----------------------------------------------------------------------------
# Test Data Factory Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def user_factory(db_session):
    """Factory creating ``User`` rows with Faker-generated identities."""

    def _create_user(
        *,
        username: str | None = None,
        full_name: str | None = None,
        is_active: bool = True,
    ) -> User:
        user = User(
            username=username or fake.unique.user_name(),
            email=fake.unique.email(),
            full_name=full_name,
            is_active=is_active,
        )
        db_session.session.add(user)
        db_session.session.commit()
        return user

    return _create_user


@pytest.fixture
def project_factory(db_session, user_factory):
    """Factory creating ``Project`` rows; a creator is generated when omitted."""

    def _create_project(
        *,
        key: str | None = None,
        name: str | None = None,
        status: str = "active",
        creator: User | None = None,
    ) -> Project:
        creator = creator or user_factory()
        project = Project(
            key=key or f"K{next(_project_keys)}",
            name=name or fake.catch_phrase(),
            status=status,
            creator_id=creator.id,
        )
        db_session.session.add(project)
        db_session.session.commit()
        return project

    return _create_project


@pytest.fixture
def task_factory(lifecycle):
    """
    Factory creating tasks through ``TaskLifecycle.create_task``.

    Going through the engine means every task gets a real per-project number
    and a ``task_created`` system comment.
    """

    def _create_task(
        *,
        project: Project,
        creator: User,
        title: str | None = None,
        assignee: User | None = None,
        due_date: date | None = None,
        **fields: Any,
    ) -> Task:
        data = TaskCreate(
            project_id=project.id,
            title=title or fake.sentence(nb_words=4),
            assignee_id=assignee.id if assignee else None,
            due_date=due_date,
            **fields,
        )
        return lifecycle.create_task(creator.id, data)

    return _create_task


# -----------------------------------------------------------------------------
# Named Actors and Projects
# -----------------------------------------------------------------------------


@pytest.fixture
def creator(user_factory) -> User:
    return user_factory(username="creator", full_name="Casey Creator")


@pytest.fixture
def alice(user_factory) -> User:
    return user_factory(username="alice", full_name="Alice Able")


@pytest.fixture
def bob(user_factory) -> User:
    return user_factory(username="bob", full_name="Bob Baker")


@pytest.fixture
def outsider(user_factory) -> User:
    return user_factory(username="outsider")


@pytest.fixture
def project_p(project_factory, creator) -> Project:
    return project_factory(key="P", name="Project P", creator=creator)


@pytest.fixture
def project_q(project_factory, creator) -> Project:
    return project_factory(key="Q", name="Project Q", creator=creator)


@pytest.fixture
def sample_task(task_factory, project_p, creator) -> Task:
    """First task in project P, created by ``creator``."""
    return task_factory(project=project_p, creator=creator, title="Sample Task")


# -----------------------------------------------------------------------------
# API Helper Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def headers_for():
    """Return a function building bearer-token headers for a given user."""

    def _headers(user: User) -> dict[str, str]:
        return auth_headers(create_test_token(user_id=user.id, username=user.username))

    return _headers
