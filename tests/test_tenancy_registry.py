import pytest

from app.core.exceptions import InvalidStateError
from app.services.tenancy_registry import (
    ForeignKeyPath,
    Ownership,
    TableRegistry,
    TenantTable,
    build_default_registry,
)


def test_default_registry_order_is_stable():
    first = build_default_registry().names()
    second = build_default_registry().names()

    assert first == second
    assert first.index("clients") < first.index("projects") < first.index("tasks")
    assert first.index("tasks") < first.index("time_entries")
    assert first.index("chat_channels") < first.index("chat_messages")


def test_project_paths_keep_declared_order():
    projects = build_default_registry().get("projects")

    assert [p.target_table for p in projects.fk_paths] == ["clients", "workspaces", "teams"]


def test_root_tables_declare_no_paths():
    registry = build_default_registry()
    roots = [t.name for t in registry if t.root]

    assert roots == ["app_settings"]
    assert registry.get("app_settings").fk_paths == ()


def test_get_unregistered_table_is_invalid_state():
    with pytest.raises(InvalidStateError) as exc:
        build_default_registry().get("invoices")
    assert exc.value.details["table"] == "invoices"


def test_users_path_goes_through_membership_link():
    users = build_default_registry().get("users")
    path = users.fk_paths[0]

    assert path.is_link
    assert path.via_table == "workspace_members"
    assert path.link_column == "user_id"
    # link-table columns live on the link table, not on users
    assert "workspace_id" not in users.required_columns()
    assert "role" in users.required_columns()


def test_deletion_order_puts_children_first():
    order = [t.name for t in build_default_registry().deletion_order("projects")]

    assert order[-1] == "projects"
    assert set(order) == {"projects", "tasks", "time_entries", "active_timers"}
    assert order.index("time_entries") < order.index("tasks")
    assert order.index("active_timers") < order.index("tasks")


def test_deletion_order_for_leaf_is_just_the_table():
    assert [t.name for t in build_default_registry().deletion_order("chat_messages")] == ["chat_messages"]


def test_ownership_cycle_is_rejected():
    tables = [
        TenantTable(name="a", root=True, owns=(Ownership("b", "a_id"),)),
        TenantTable(name="b", root=True, owns=(Ownership("a", "b_id"),)),
    ]
    with pytest.raises(ValueError, match="Ownership cycle"):
        TableRegistry(tables)


def test_path_to_unregistered_table_is_rejected():
    with pytest.raises(ValueError, match="unregistered"):
        TableRegistry([TenantTable(name="a", fk_paths=(ForeignKeyPath("b_id", "b"),))])


def test_root_table_with_paths_is_rejected():
    tables = [
        TenantTable(name="b", root=True),
        TenantTable(name="a", root=True, fk_paths=(ForeignKeyPath("b_id", "b"),)),
    ]
    with pytest.raises(ValueError, match="Root table"):
        TableRegistry(tables)


def test_duplicate_registration_is_rejected():
    with pytest.raises(ValueError, match="twice"):
        TableRegistry([TenantTable(name="a", root=True), TenantTable(name="a", root=True)])
