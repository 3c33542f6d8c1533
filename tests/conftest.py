"""
Shared pytest fixtures for the Product Workspace Platform test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - team / workspace: Pre-created entities via the API (bypass mode)
    - make_user / add_member / as_user: identity helpers for permission tests
    - make_item / connect: work item and connection builders
"""

import pytest

from app import create_app
from app.models import db as _db
from app.models.team import TeamMember, User
from app.utils.crypto import hash_password


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def team(client):
    res = client.post("/api/v1/teams", json={"name": "Product Team"})
    assert res.status_code == 201
    return res.get_json()


@pytest.fixture()
def workspace(client, team):
    res = client.post(f"/api/v1/teams/{team['id']}/workspaces", json={"name": "Roadmap"})
    assert res.status_code == 201
    return res.get_json()


@pytest.fixture()
def make_user():
    def _make(email, name=None):
        user = User(email=email, name=name or email.split("@")[0],
                    password_hash=hash_password("password123"))
        _db.session.add(user)
        _db.session.commit()
        return user
    return _make


@pytest.fixture()
def add_member():
    def _add(team_id, user, role="member"):
        member = TeamMember(team_id=team_id, user_id=user.id, role=role)
        _db.session.add(member)
        _db.session.commit()
        return member
    return _add


@pytest.fixture()
def as_user():
    """Headers that act as ``user`` (auth is disabled in testing)."""
    def _headers(user):
        return {"X-User-Id": str(user.id)}
    return _headers


@pytest.fixture()
def make_item(client, workspace):
    def _make(name, **fields):
        payload = {"name": name, "type": "feature", **fields}
        res = client.post(f"/api/v1/workspaces/{workspace['id']}/work-items", json=payload)
        assert res.status_code == 201, res.get_json()
        return res.get_json()
    return _make


@pytest.fixture()
def connect(client, workspace):
    def _connect(source, target, connection_type="dependency", **fields):
        payload = {
            "source_work_item_id": source["id"],
            "target_work_item_id": target["id"],
            "connection_type": connection_type,
            **fields,
        }
        res = client.post(f"/api/v1/workspaces/{workspace['id']}/connections", json=payload)
        assert res.status_code == 201, res.get_json()
        return res.get_json()
    return _connect
