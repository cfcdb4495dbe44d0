"""
Shared pytest fixtures for the back-office workflow engine test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - tenant: Pre-created Tenant entity
    - make_user: factory creating a user with roles in a tenant
    - ctx_for: AuthContext for a user, roles read from the database
    - auth_headers: Bearer header for a user / tenant pair
    - fake_storage: in-memory document storage swapped into the app
"""

import pytest

from backoffice import create_app
from backoffice.models import db as _db
from backoffice.models.auth import Tenant, User, UserRole
from backoffice.models.project import Project, ProjectMember
from backoffice.services.jwt_service import generate_access_token
from backoffice.services.permission import load_auth_context
from backoffice.services.storage import FileStorage, StorageError


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


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
    return app.test_client()


# ── ORM Helpers ──────────────────────────────────────────────────────────


def make_tenant(name="Acme K.K.", slug=None):
    t = Tenant(name=name, slug=slug or name.lower().replace(" ", "-").replace(".", ""))
    _db.session.add(t)
    _db.session.flush()
    return t


def make_user(tenant, email, roles=("member",), display_name=None, status="active"):
    u = User(email=email, display_name=display_name or email.split("@")[0], status=status)
    _db.session.add(u)
    _db.session.flush()
    for role in roles:
        _db.session.add(UserRole(tenant_id=tenant.id, user_id=u.id, role=role))
    _db.session.flush()
    return u


def make_project(tenant, pm, name="Core Project", status="planning", members=()):
    p = Project(tenant_id=tenant.id, name=name, status=status, pm_id=pm.id, created_by=pm.id)
    _db.session.add(p)
    _db.session.flush()
    for user in (pm, *members):
        _db.session.add(ProjectMember(tenant_id=tenant.id, project_id=p.id, user_id=user.id))
    _db.session.flush()
    return p


def ctx_for(user, tenant):
    """AuthContext with the user's stored roles in *tenant*."""
    return load_auth_context(user.id, tenant.id)


@pytest.fixture()
def tenant():
    t = make_tenant()
    _db.session.commit()
    return t


@pytest.fixture()
def auth_headers():
    def _headers(user, tenant):
        return {"Authorization": f"Bearer {generate_access_token(user.id, tenant.id)}"}
    return _headers


# ── Storage double ───────────────────────────────────────────────────────


class FakeStorage(FileStorage):
    """Dict-backed storage; ``fail_on`` names an operation that raises."""

    def __init__(self):
        self.objects = {}
        self.fail_on = None

    def save(self, path, content, mime_type):
        if self.fail_on == "save":
            raise StorageError("save failed")
        if path in self.objects:
            raise StorageError(f"Object already exists: {path}")
        self.objects[path] = (content, mime_type)

    def remove(self, path):
        if self.fail_on == "remove":
            raise StorageError("remove failed")
        self.objects.pop(path, None)

    def signed_url(self, path, expires_in=60):
        return f"https://files.example.test/{path}?expires={expires_in}"


@pytest.fixture()
def fake_storage(app, monkeypatch):
    storage = FakeStorage()
    monkeypatch.setitem(app.extensions, "file_storage", storage)
    return storage
