"""
Shared pytest fixtures for the tenant integrity test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - services: The app's wired remediation components
    - seed: Row factory that commits each insert
    - tenant_of: Read a row's tenant_id straight from the database
    - count_rows: COUNT(*) with an optional raw WHERE clause
"""

import dataclasses

import pytest
import sqlalchemy as sa

import app as _app_module
from app import create_app
from app.models import db as _db
from app.models.auth import Tenant, TenantStatus, User, UserRole
from app.models.chat import ChatChannel, ChatMessage
from app.models.project import Client, Project, Task
from app.models.time_tracking import ActiveTimer, TimeEntry
from app.models.workspace import AppSetting, Team, Workspace, WorkspaceMember
from app.services.tenancy_services import build_tenancy_services, get_services

# Dangling-reference checks need rows that point at nothing.
_app_module._SQLITE_FK_ENFORCEMENT = False


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


@pytest.fixture()
def services(app):
    return get_services()


@pytest.fixture()
def build_services(app):
    """Build a fresh component set with config overrides, e.g. flags off."""
    def _build(registry=None, **overrides):
        return build_tenancy_services({**app.config, **overrides}, registry=registry)
    return _build


@pytest.fixture()
def settings_with(services):
    def _replace(**changes):
        return dataclasses.replace(services.settings, **changes)
    return _replace


# ── Seed helpers ─────────────────────────────────────────────────────────


class Seeder:
    """Insert-and-commit helpers; every method returns the new row's id."""

    def _add(self, obj):
        _db.session.add(obj)
        _db.session.commit()
        return obj.id

    def tenant(self, slug, status=TenantStatus.ACTIVE, name=None):
        return self._add(Tenant(name=name or slug.title(), slug=slug, status=status))

    def quarantine(self):
        return self.tenant("quarantine", status=TenantStatus.ISOLATED, name="Quarantine")

    def user(self, email, tenant_id=None, name=None, role=UserRole.EMPLOYEE, is_active=True):
        return self._add(User(
            email=email, name=name or email.split("@")[0], tenant_id=tenant_id,
            role=role, is_active=is_active,
        ))

    def workspace(self, tenant_id=None, name="Main", created_by=None):
        return self._add(Workspace(tenant_id=tenant_id, name=name, created_by=created_by))

    def member(self, workspace_id, user_id):
        return self._add(WorkspaceMember(workspace_id=workspace_id, user_id=user_id))

    def team(self, tenant_id=None, workspace_id=None, name="Team"):
        return self._add(Team(tenant_id=tenant_id, workspace_id=workspace_id, name=name))

    def client(self, tenant_id=None, workspace_id=None, company_name="Client Co"):
        return self._add(Client(tenant_id=tenant_id, workspace_id=workspace_id, company_name=company_name))

    def project(self, tenant_id=None, client_id=None, workspace_id=None, team_id=None, name="Project"):
        return self._add(Project(
            tenant_id=tenant_id, client_id=client_id, workspace_id=workspace_id,
            team_id=team_id, name=name,
        ))

    def task(self, tenant_id=None, project_id=None, created_by=None, title="Task"):
        return self._add(Task(tenant_id=tenant_id, project_id=project_id, created_by=created_by, title=title))

    def time_entry(self, tenant_id=None, user_id=None, project_id=None, task_id=None):
        return self._add(TimeEntry(
            tenant_id=tenant_id, user_id=user_id, project_id=project_id, task_id=task_id,
            duration_seconds=600,
        ))

    def timer(self, tenant_id=None, user_id=None, project_id=None, task_id=None):
        return self._add(ActiveTimer(tenant_id=tenant_id, user_id=user_id, project_id=project_id, task_id=task_id))

    def channel(self, tenant_id=None, workspace_id=None, name="general"):
        return self._add(ChatChannel(tenant_id=tenant_id, workspace_id=workspace_id, name=name))

    def message(self, tenant_id=None, channel_id=None, author_id=None, body="hello"):
        return self._add(ChatMessage(tenant_id=tenant_id, channel_id=channel_id, author_id=author_id, body=body))

    def setting(self, tenant_id=None, key="theme", value="dark"):
        return self._add(AppSetting(tenant_id=tenant_id, key=key, value=value))


@pytest.fixture()
def seed():
    return Seeder()


@pytest.fixture()
def tenant_of():
    def _read(table, record_id):
        return _db.session.execute(
            sa.text(f'SELECT tenant_id FROM "{table}" WHERE id = :id'), {"id": record_id}
        ).scalar()
    return _read


@pytest.fixture()
def count_rows():
    def _count(table, where="1=1", **params):
        return _db.session.execute(
            sa.text(f'SELECT COUNT(*) FROM "{table}" WHERE {where}'), params
        ).scalar()
    return _count
