"""Shared test fixtures for the taskgrid test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, CSRF off)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- seed_data: two users sharing a workspace, a third user with a private
  workspace, sections and a handful of tasks
"""

from datetime import date

import pytest
from werkzeug.security import generate_password_hash

from taskgrid import create_app
from taskgrid.extensions import db as _db
from taskgrid.models.section import Section
from taskgrid.models.task import Task
from taskgrid.models.user import User
from taskgrid.models.workspace import Workspace, WorkspaceMember


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


def _make_user(email, name, password="password123", is_active=True):
    user = User(
        email=email,
        password_hash=generate_password_hash(password),
        name=name,
        is_active=is_active,
    )
    _db.session.add(user)
    _db.session.flush()
    return user


@pytest.fixture
def seed_data(app, db_session):
    """Seed users, workspaces, sections and tasks.

    Rows are inserted directly (no events are logged) so tests start with an
    empty events table. Returns plain ids so tests can use them from any
    app context.
    """
    with app.app_context():
        # --- Users ---
        alice = _make_user("alice@example.com", "Alice")
        bob = _make_user("bob@example.com", "Bob")
        carol = _make_user("carol@example.com", "Carol")

        # --- Shared workspace (alice owns, bob is a member) ---
        workspace = Workspace(
            name="Product Launch",
            description="Everything needed to ship the launch",
            owner_id=alice.id,
        )
        _db.session.add(workspace)
        _db.session.flush()
        _db.session.add(WorkspaceMember(user_id=alice.id, workspace_id=workspace.id, role="owner"))
        _db.session.add(WorkspaceMember(user_id=bob.id, workspace_id=workspace.id, role="member"))

        # --- Carol's private workspace ---
        other_workspace = Workspace(
            name="Secret Plans",
            description="Nobody else should find this",
            owner_id=carol.id,
        )
        _db.session.add(other_workspace)
        _db.session.flush()
        _db.session.add(WorkspaceMember(user_id=carol.id, workspace_id=other_workspace.id, role="owner"))

        # --- Sections ---
        backlog = Section(workspace_id=workspace.id, name="Backlog", position=0)
        doing = Section(
            workspace_id=workspace.id,
            name="In Progress",
            description="Work being done right now",
            position=1,
        )
        vault = Section(workspace_id=other_workspace.id, name="Vault", position=0)
        _db.session.add_all([backlog, doing, vault])
        _db.session.flush()

        # --- Tasks ---
        login_task = Task(
            section_id=backlog.id,
            workspace_id=workspace.id,
            title="Fix login bug",
            description="Users are logged out after a password reset",
            priority="high",
            assigned_to_user_id=bob.id,
            created_by_user_id=alice.id,
            due_date=date(2026, 11, 1),
            tags=["auth", "bug"],
        )
        notes_task = Task(
            section_id=backlog.id,
            workspace_id=workspace.id,
            title="Write release notes",
            description="Summarize the login and search changes",
            priority="low",
            created_by_user_id=alice.id,
            due_date=date(2026, 12, 15),
            tags=["docs"],
        )
        ranking_task = Task(
            section_id=doing.id,
            workspace_id=workspace.id,
            title="Design search ranking",
            description="Titles outrank descriptions and tags rank lowest",
            status="in_progress",
            priority="urgent",
            assigned_to_user_id=alice.id,
            created_by_user_id=alice.id,
            tags=["search", "auth"],
        )
        secret_task = Task(
            section_id=vault.id,
            workspace_id=other_workspace.id,
            title="Fix login bug in the vault",
            description="Private login bug",
            created_by_user_id=carol.id,
            tags=["auth"],
        )
        _db.session.add_all([login_task, notes_task, ranking_task, secret_task])
        _db.session.commit()

        return {
            "alice_id": alice.id,
            "bob_id": bob.id,
            "carol_id": carol.id,
            "workspace_id": workspace.id,
            "other_workspace_id": other_workspace.id,
            "backlog_id": backlog.id,
            "doing_id": doing.id,
            "vault_id": vault.id,
            "login_task_id": login_task.id,
            "notes_task_id": notes_task.id,
            "ranking_task_id": ranking_task.id,
            "secret_task_id": secret_task.id,
        }
