import pytest
import sqlalchemy as sa
from sqlalchemy.exc import OperationalError

from app.core.exceptions import (
    AmbiguousResolutionError,
    FeatureDisabledError,
    InvalidStateError,
    NotFoundError,
    SchemaDriftError,
)
from app.models import db as _db
from app.models.audit import TenantAuditEvent
from app.models.auth import Tenant, UserRole
from app.services.backfill_service import AMBIGUOUS, RESOLVED, UNRESOLVED, BackfillEngine
from app.services.tenancy_registry import (
    ForeignKeyPath,
    TableRegistry,
    TenantTable,
    build_default_registry,
)


def _events(event_type):
    return _db.session.execute(
        _db.select(TenantAuditEvent).where(TenantAuditEvent.event_type == event_type)
    ).scalars().all()


def _quarantine_id():
    tenant = Tenant.find_by_slug("quarantine")
    return tenant.id if tenant else None


# ── apply ────────────────────────────────────────────────────────────────


def test_apply_resolves_through_parent_chain(services, seed, tenant_of):
    t1 = seed.tenant("t1")
    client = seed.client(tenant_id=t1)
    project = seed.project(client_id=client)
    task = seed.task(project_id=project)

    result = services.backfill.run("apply")

    assert result["mode"] == "apply"
    assert result["updated"]["projects"] == 1
    assert result["updated"]["tasks"] == 1
    assert tenant_of("projects", project) == t1
    assert tenant_of("tasks", task) == t1
    assert result["errors"] == {}


def test_apply_quarantines_rows_nobody_claims(services, seed, tenant_of):
    task = seed.task(title="stray")

    result = services.backfill.run("apply")

    qid = _quarantine_id()
    assert qid is not None
    assert result["quarantine_tenant_id"] == qid
    assert result["quarantined"]["tasks"] == 1
    assert result["total_quarantined"] == 1
    assert tenant_of("tasks", task) == qid
    assert len(_events("quarantine_tenant_created")) == 1


def test_apply_is_idempotent(services, seed):
    t1 = seed.tenant("t1")
    client = seed.client(tenant_id=t1)
    seed.project(client_id=client)
    seed.task(title="stray")

    first = services.backfill.run("apply")
    second = services.backfill.run("apply")

    assert first["total_updated"] == 1
    assert first["total_quarantined"] == 1
    assert second["total_updated"] == 0
    assert second["total_quarantined"] == 0
    assert len(_events("tenant_id_backfill_applied")) == 1


def test_apply_records_one_summary_event(services, seed):
    t1 = seed.tenant("t1")
    client = seed.client(tenant_id=t1)
    seed.project(client_id=client)

    services.backfill.apply(actor_user_id=None)

    [event] = _events("tenant_id_backfill_applied")
    assert event.tenant_id is None
    assert event.event_metadata["updated"]["projects"] == 1


def test_ambiguous_rows_are_reported_and_left_alone(services, seed, tenant_of):
    t1 = seed.tenant("t1")
    t2 = seed.tenant("t2")
    client = seed.client(tenant_id=t1)
    workspace = seed.workspace(tenant_id=t2)
    project = seed.project(client_id=client, workspace_id=workspace)

    result = services.backfill.run("apply")

    assert result["ambiguous"]["projects"] == 1
    assert result["ambiguous_samples"]["projects"] == [project]
    assert result["ambiguous_details"]["projects"] == [{"id": project, "candidates": sorted([t1, t2])}]
    assert tenant_of("projects", project) is None
    assert result["updated"]["projects"] == 0
    assert result["quarantined"]["projects"] == 0


def test_paths_that_agree_are_not_ambiguous(services, seed, tenant_of):
    t1 = seed.tenant("t1")
    client = seed.client(tenant_id=t1)
    workspace = seed.workspace(tenant_id=t1)
    project = seed.project(client_id=client, workspace_id=workspace)

    result = services.backfill.run("apply")

    assert result["ambiguous"]["projects"] == 0
    assert tenant_of("projects", project) == t1


def test_user_resolves_through_workspace_membership(services, seed, tenant_of):
    t1 = seed.tenant("t1")
    workspace = seed.workspace(tenant_id=t1)
    user = seed.user("ana@acme.io")
    seed.member(workspace, user)

    services.backfill.run("apply")

    assert tenant_of("users", user) == t1


def test_super_users_are_never_backfilled(services, seed, tenant_of):
    root = seed.user("root@platform.io", role=UserRole.SUPER_USER)

    result = services.backfill.run("apply")

    assert tenant_of("users", root) is None
    assert result["quarantined"]["users"] == 0


def test_quarantined_ancestor_is_not_a_candidate(services, seed, tenant_of):
    qid = seed.quarantine()
    project = seed.project(tenant_id=qid)
    task = seed.task(project_id=project)

    result = services.backfill.run("apply")

    assert result["updated"]["tasks"] == 0
    assert result["quarantined"]["tasks"] == 1
    assert tenant_of("tasks", task) == qid


def test_root_table_orphans_go_to_quarantine(services, seed, tenant_of):
    setting = seed.setting(key="theme")

    services.backfill.run("apply")

    assert tenant_of("app_settings", setting) == _quarantine_id()


# ── dry run ──────────────────────────────────────────────────────────────


def test_dry_run_writes_nothing(services, seed, tenant_of, count_rows):
    t1 = seed.tenant("t1")
    client = seed.client(tenant_id=t1)
    project = seed.project(client_id=client)
    task = seed.task(title="stray")
    tenants_before = count_rows("tenants")

    result = services.backfill.run("dry_run")

    assert result["mode"] == "dry_run"
    assert result["updated"]["projects"] == 1
    assert result["quarantined"]["tasks"] == 1
    assert tenant_of("projects", project) is None
    assert tenant_of("tasks", task) is None
    assert count_rows("tenants") == tenants_before
    assert _quarantine_id() is None
    assert count_rows("tenant_audit_events") == 0


def test_dry_run_allowed_when_backfill_disabled(build_services, seed):
    seed.task(title="stray")
    services = build_services(BACKFILL_TENANT_IDS_ALLOWED=False)

    assert services.backfill.dry_run()["quarantined"]["tasks"] == 1


def test_apply_refused_when_backfill_disabled(build_services, seed, tenant_of):
    task = seed.task(title="stray")
    services = build_services(BACKFILL_TENANT_IDS_ALLOWED=False)

    with pytest.raises(FeatureDisabledError):
        services.backfill.run("apply")
    assert tenant_of("tasks", task) is None


def test_unknown_mode_is_rejected(services):
    with pytest.raises(ValueError):
        services.backfill.run("yolo")


# ── failure isolation ────────────────────────────────────────────────────


def test_failing_table_is_reported_and_run_continues(services, seed, tenant_of, monkeypatch):
    t1 = seed.tenant("t1")
    client = seed.client(tenant_id=t1)
    project = seed.project(client_id=client)
    task = seed.task(project_id=project)
    user = seed.user("ana@acme.io", tenant_id=t1)
    entry = seed.time_entry(user_id=user)

    engine = services.backfill
    original = engine._write

    def flaky(table, assignments):
        if table.name == "tasks":
            raise OperationalError("UPDATE tasks", {}, Exception("database is locked"))
        return original(table, assignments)

    monkeypatch.setattr(engine, "_write", flaky)
    result = engine.run("apply")

    assert "tasks" in result["errors"]
    assert "database is locked" in result["errors"]["tasks"]
    assert tenant_of("projects", project) == t1
    assert tenant_of("tasks", task) is None
    assert tenant_of("time_entries", entry) == t1


def test_live_tenant_holding_reserved_slug_never_receives_orphans(services, seed, tenant_of):
    live = seed.tenant("quarantine")
    project = seed.project(client_id=seed.client(tenant_id=live))
    task = seed.task(title="stray")

    result = services.backfill.run("apply")

    assert tenant_of("projects", project) == live
    assert tenant_of("tasks", task) is None
    assert "already exists" in result["errors"]["tasks"]
    assert result["quarantined"]["tasks"] == 0
    assert result["quarantine_tenant_id"] is None


def _registry_with_unusable_path():
    return TableRegistry([
        TenantTable(name="ghost_clients", root=True),
        TenantTable(name="workspaces", root=True),
        TenantTable(
            name="projects",
            fk_paths=(
                ForeignKeyPath("client_id", "ghost_clients"),
                ForeignKeyPath("workspace_id", "workspaces"),
            ),
        ),
    ])


@pytest.mark.parametrize("mode", ["dry_run", "apply"])
def test_unusable_path_leaves_table_unwritten(services, seed, tenant_of, mode):
    t1 = seed.tenant("t1")
    project = seed.project(workspace_id=seed.workspace(tenant_id=t1))

    result = BackfillEngine(_registry_with_unusable_path(), services.settings).run(mode)

    assert result["skipped_paths"] == {"projects": ["client_id -> ghost_clients"]}
    assert "client_id -> ghost_clients" in result["errors"]["projects"]
    assert "does not exist" in result["errors"]["ghost_clients"]
    assert result["updated"]["projects"] == 0
    assert result["quarantined"]["projects"] == 0
    assert tenant_of("projects", project) is None


def test_decide_refuses_when_a_path_is_unusable(services, seed):
    t1 = seed.tenant("t1")
    project = seed.project(workspace_id=seed.workspace(tenant_id=t1))

    with pytest.raises(SchemaDriftError) as exc:
        BackfillEngine(_registry_with_unusable_path(), services.settings).decide("projects", project)
    assert exc.value.table == "ghost_clients"


@pytest.mark.parametrize("chunk_size, expected_statements", [(500, 1), (1, 3)])
def test_resolved_rows_share_one_update_per_chunk(
    services, settings_with, seed, tenant_of, chunk_size, expected_statements
):
    t1 = seed.tenant("t1")
    t2 = seed.tenant("t2")
    projects = {
        seed.project(client_id=seed.client(tenant_id=t1)): t1,
        seed.project(client_id=seed.client(tenant_id=t2)): t2,
        seed.project(client_id=seed.client(tenant_id=t1)): t1,
    }
    statements = []

    def capture(conn, cursor, statement, parameters, context, executemany):
        if statement.startswith('UPDATE "projects"'):
            statements.append(statement)

    engine = BackfillEngine(services.registry, settings_with(update_chunk_size=chunk_size))
    sa.event.listen(_db.engine, "before_cursor_execute", capture)
    try:
        result = engine.run("apply")
    finally:
        sa.event.remove(_db.engine, "before_cursor_execute", capture)

    assert result["updated"]["projects"] == 3
    assert len(statements) == expected_statements
    for project, tenant in projects.items():
        assert tenant_of("projects", project) == tenant


def test_missing_table_is_reported_as_error(services, seed, tenant_of):
    registry = TableRegistry([
        *build_default_registry(),
        TenantTable(name="legacy_widgets", fk_paths=(ForeignKeyPath("workspace_id", "workspaces"),)),
    ])
    t1 = seed.tenant("t1")
    client = seed.client(tenant_id=t1)
    project = seed.project(client_id=client)

    result = BackfillEngine(registry, services.settings).run("apply")

    assert "does not exist" in result["errors"]["legacy_widgets"]
    assert tenant_of("projects", project) == t1


# ── single row ───────────────────────────────────────────────────────────


def test_decide_resolved(services, seed):
    t1 = seed.tenant("t1")
    client = seed.client(tenant_id=t1)
    project = seed.project(client_id=client)

    decision = services.backfill.decide("projects", project)

    assert decision.outcome == RESOLVED
    assert decision.tenant_id == t1


def test_decide_ambiguous(services, seed):
    t1 = seed.tenant("t1")
    t2 = seed.tenant("t2")
    project = seed.project(client_id=seed.client(tenant_id=t1), workspace_id=seed.workspace(tenant_id=t2))

    decision = services.backfill.decide("projects", project)

    assert decision.outcome == AMBIGUOUS
    assert decision.candidates == tuple(sorted([t1, t2]))
    assert decision.tenant_id is None


def test_decide_unresolved_for_root_table(services, seed):
    setting = seed.setting()

    assert services.backfill.decide("app_settings", setting).outcome == UNRESOLVED


def test_decide_rejects_rows_that_have_a_tenant(services, seed):
    t1 = seed.tenant("t1")
    project = seed.project(tenant_id=t1)

    with pytest.raises(InvalidStateError):
        services.backfill.decide("projects", project)


def test_decide_missing_row(services):
    with pytest.raises(NotFoundError):
        services.backfill.decide("projects", 9999)


def test_resolve_one_ambiguous_raises_and_leaves_row(services, seed, tenant_of):
    t1 = seed.tenant("t1")
    t2 = seed.tenant("t2")
    project = seed.project(client_id=seed.client(tenant_id=t1), workspace_id=seed.workspace(tenant_id=t2))

    with pytest.raises(AmbiguousResolutionError) as exc:
        services.backfill.resolve_one("projects", project)

    assert exc.value.candidates == sorted([t1, t2])
    assert tenant_of("projects", project) is None


def test_resolve_one_writes_and_audits(services, seed, tenant_of):
    t1 = seed.tenant("t1")
    project = seed.project(client_id=seed.client(tenant_id=t1))

    result = services.backfill.resolve_one("projects", project)

    assert result["applied_tenant_id"] == t1
    assert tenant_of("projects", project) == t1
    [event] = _events("tenant_id_backfill_row_resolved")
    assert event.tenant_id == t1
    assert event.event_metadata["before"] == {"tenant_id": None}


def test_resolve_one_quarantines_unresolved_row(services, seed, tenant_of):
    task = seed.task(title="stray")

    result = services.backfill.resolve_one("tasks", task)

    qid = _quarantine_id()
    assert result["outcome"] == UNRESOLVED
    assert tenant_of("tasks", task) == qid
    assert len(_events("tenant_id_backfill_row_quarantined")) == 1


def test_resolve_one_refused_when_backfill_disabled(build_services, seed):
    task = seed.task(title="stray")
    services = build_services(BACKFILL_TENANT_IDS_ALLOWED=False)

    with pytest.raises(FeatureDisabledError):
        services.backfill.resolve_one("tasks", task)
