from app.models.auth import TenantStatus
from app.services.tenancy_health_service import TenancyHealthAggregator
from app.services.tenancy_registry import TableRegistry, TenantTable, build_default_registry


def test_active_tenant_count_excludes_quarantine(services, seed):
    seed.tenant("acme")
    seed.tenant("globex")
    seed.tenant("paused", status=TenantStatus.SUSPENDED)
    seed.quarantine()

    assert services.health.active_tenant_count() == 2


def test_active_tenant_holding_reserved_slug_is_counted(services, seed):
    seed.tenant("quarantine")
    seed.tenant("acme")

    assert services.health.active_tenant_count() == 2
    assert services.health.snapshot()["has_quarantine_tenant"] is False


def test_clean_database_is_ready_for_strict(services):
    snapshot = services.health.snapshot()

    assert snapshot["current_mode"] == "soft"
    assert snapshot["total_missing"] == 0
    assert snapshot["readiness"] == {"can_enable_strict": True, "blockers": []}
    assert snapshot["schema_ready"] is True
    assert snapshot["has_quarantine_tenant"] is False


def test_critical_table_orphans_block_strict(services, seed):
    seed.task()
    seed.task()

    readiness = services.health.snapshot()["readiness"]

    assert readiness["can_enable_strict"] is False
    assert readiness["blockers"] == ["tasks has 2 rows without tenant_id"]


def test_non_critical_orphans_do_not_block(services, seed):
    seed.message()

    snapshot = services.health.snapshot()

    assert snapshot["missing_by_table"]["chat_messages"] == 1
    assert snapshot["total_missing"] == 1
    assert snapshot["readiness"]["can_enable_strict"] is True


def test_snapshot_counts_quarantined_rows(services, seed):
    qid = seed.quarantine()
    seed.project(tenant_id=qid)
    seed.tenant("acme")

    snapshot = services.health.snapshot()

    assert snapshot["has_quarantine_tenant"] is True
    assert snapshot["quarantine_tenant_id"] == qid
    assert snapshot["quarantined_by_table"]["projects"] == 1
    assert snapshot["total_quarantined"] == 1
    assert snapshot["active_tenant_count"] == 1


def test_missing_table_marks_schema_not_ready(services):
    registry = TableRegistry([
        *build_default_registry(),
        TenantTable(name="legacy_widgets", root=True),
    ])

    snapshot = TenancyHealthAggregator(registry, services.settings).snapshot()

    assert snapshot["schema_ready"] is False
    assert snapshot["readiness"]["can_enable_strict"] is False
    assert any("legacy_widgets" in b for b in snapshot["readiness"]["blockers"])


def test_tenant_id_scan_notes(build_services, seed):
    seed.task()
    services = build_services(BACKFILL_TENANT_IDS_ALLOWED=False)

    scan = services.health.tenant_id_scan()

    assert scan["total_missing"] == 1
    assert scan["backfill_allowed"] is False
    assert scan["quarantine_tenant_id"] is None
    assert len(scan["notes"]) == 2
    tasks = next(m for m in scan["missing"] if m["table"] == "tasks")
    assert tasks["count"] == 1
