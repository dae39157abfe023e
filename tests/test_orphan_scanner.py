import pytest

from app.core.exceptions import InvalidStateError
from app.models.auth import TenantStatus, UserRole
from app.services.orphan_scanner import OrphanScanner
from app.services.tenancy_registry import TableRegistry, TenantTable, build_default_registry


def _table(result, name):
    return next(t for t in result["tables"] if t["table"] == name)


def test_scan_counts_orphans_and_caps_samples(services, seed):
    t1 = seed.tenant("t1")
    seed.task(tenant_id=t1, title="owned")
    ids = [seed.task(title=f"loose {i}") for i in range(7)]

    result = services.scanner.scan("tasks")

    assert result.count == 7
    assert result.sample_ids == ids[:5]
    assert result.samples[0].display == "loose 0"
    assert result.recommended_action == "backfill"
    assert result.exists is True


def test_scan_excludes_super_users(services, seed):
    seed.user("root@platform.io", role=UserRole.SUPER_USER)
    orphan = seed.user("drifter@acme.io")

    result = services.scanner.scan("users")

    assert result.count == 1
    assert result.sample_ids == [orphan]
    assert result.samples[0].display == "drifter / drifter@acme.io"


def test_root_table_orphans_recommend_quarantine(services, seed):
    seed.setting(key="locale")

    assert services.scanner.scan("app_settings").recommended_action == "quarantine"


def test_clean_table_recommends_skip(services):
    result = services.scanner.scan("projects")

    assert result.count == 0
    assert result.recommended_action == "skip"


def test_scan_unregistered_table_raises(services):
    with pytest.raises(InvalidStateError):
        services.scanner.scan("invoices")


def test_scan_all_reports_totals_and_quarantine_state(services, seed):
    seed.project(name="lost")
    seed.task(title="lost")
    seed.task(title="lost too")

    result = services.scanner.scan_all()

    assert result["total_orphans"] == 3
    assert result["tables_with_orphans"] == 2
    assert _table(result, "tasks")["count"] == 2
    assert result["quarantine_tenant"] == {"exists": False, "id": None, "name": None}
    assert [t["table"] for t in result["tables"]] == build_default_registry().names()


def test_scan_all_ignores_ordinary_tenant_with_reserved_slug(services, seed):
    seed.tenant("quarantine", status=TenantStatus.ACTIVE)

    result = services.scanner.scan_all()

    assert result["quarantine_tenant"]["exists"] is False


def test_scan_all_tolerates_missing_table(services, seed):
    registry = TableRegistry([
        *build_default_registry(),
        TenantTable(name="legacy_widgets", root=True),
    ])
    seed.task(title="lost")

    result = OrphanScanner(registry, services.settings).scan_all()

    missing = _table(result, "legacy_widgets")
    assert missing["exists"] is False
    assert missing["count"] == 0
    assert _table(result, "tasks")["count"] == 1
    assert result["total_orphans"] == 1


def test_scan_reports_missing_columns(services, seed):
    registry = TableRegistry([TenantTable(name="teams", root=True, display_columns=("title",))])
    seed.team(name="orphan team")

    result = OrphanScanner(registry, services.settings).scan("teams")

    assert result.exists is False
    assert result.count == 0
    assert result.missing_columns == ["title"]


def test_scan_is_read_only(services, seed, tenant_of):
    task = seed.task(title="lost")

    services.scanner.scan_all()

    assert tenant_of("tasks", task) is None
