"""
Declarative catalog of tenant-scoped tables.

Every table the remediation services touch is declared here once: its
tenant column, the ordered foreign-key paths used to infer a missing
tenant, how to display and archive a row, and which child tables it owns
for cascading deletes.

Registration order is the processing order. Parents are listed before
their children where the graph allows it, so a single backfill run can
resolve a child through a parent that was repaired moments earlier.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Iterator

from app.core.exceptions import InvalidStateError


@dataclass(frozen=True)
class ForeignKeyPath:
    """One hop from a row to an ancestor that carries a tenant.

    Direct FK:   ``target.id = row.<via_column>``
    Link table:  ``via_table.<link_column> = row.id AND target.id = via_table.<via_column>``
    """

    via_column: str
    target_table: str
    via_table: str | None = None
    link_column: str | None = None

    @property
    def is_link(self) -> bool:
        return self.via_table is not None

    def describe(self) -> str:
        if self.is_link:
            return f"{self.via_table}.{self.via_column} -> {self.target_table}"
        return f"{self.via_column} -> {self.target_table}"


@dataclass(frozen=True)
class Ownership:
    """Parent owns rows of ``child_table`` whose ``column`` points at it."""

    child_table: str
    column: str


@dataclass(frozen=True)
class ArchiveSpec:
    column: str
    value: Any


@dataclass(frozen=True)
class SentinelFilter:
    """Rows with ``column = value`` legitimately have no tenant."""

    column: str
    value: Any


@dataclass(frozen=True)
class TenantTable:
    name: str
    fk_paths: tuple[ForeignKeyPath, ...] = ()
    tenant_column: str = "tenant_id"
    id_column: str = "id"
    display_columns: tuple[str, ...] = ()
    root: bool = False
    critical: bool = False
    sentinel_filter: SentinelFilter | None = None
    archive: ArchiveSpec | None = None
    workspace_column: str | None = None
    owns: tuple[Ownership, ...] = ()

    def key_columns(self) -> list[str]:
        """Columns needed to find orphans and infer their tenant."""
        cols = [self.id_column, self.tenant_column]
        cols.extend(p.via_column for p in self.fk_paths if not p.is_link)
        if self.sentinel_filter:
            cols.append(self.sentinel_filter.column)
        # preserve order, drop duplicates
        return list(dict.fromkeys(cols))

    def required_columns(self) -> list[str]:
        """Columns that must exist on the live table for it to be scanned."""
        return list(dict.fromkeys([*self.key_columns(), *self.display_columns]))

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "tenant_column": self.tenant_column,
            "root": self.root,
            "critical": self.critical,
            "fk_paths": [p.describe() for p in self.fk_paths],
            "display_columns": list(self.display_columns),
            "archivable": self.archive is not None,
            "owns": [f"{o.child_table}.{o.column}" for o in self.owns],
        }


class TableRegistry:
    """Ordered, validated collection of :class:`TenantTable` declarations."""

    def __init__(self, tables: Iterable[TenantTable]):
        self._tables: dict[str, TenantTable] = {}
        for table in tables:
            if table.name in self._tables:
                raise ValueError(f"Table {table.name} registered twice")
            if table.root and table.fk_paths:
                raise ValueError(f"Root table {table.name} cannot declare inference paths")
            self._tables[table.name] = table
        self._validate_references()
        self._check_ownership_cycles()

    # ── Lookup ───────────────────────────────────────────────────────────

    def __iter__(self) -> Iterator[TenantTable]:
        return iter(self._tables.values())

    def __contains__(self, name: str) -> bool:
        return name in self._tables

    def __len__(self) -> int:
        return len(self._tables)

    def names(self) -> list[str]:
        return list(self._tables)

    def get(self, name: str) -> TenantTable:
        table = self._tables.get(name)
        if table is None:
            raise InvalidStateError(
                f"Table {name!r} is not a registered tenant-scoped table",
                details={"table": name, "registered": self.names()},
            )
        return table

    def inferable(self) -> list[TenantTable]:
        return [t for t in self if not t.root]

    def critical(self) -> list[TenantTable]:
        return [t for t in self if t.critical]

    # ── Ownership graph ──────────────────────────────────────────────────

    def deletion_order(self, name: str) -> list[TenantTable]:
        """Return ``name`` and every owned descendant, children first."""
        root = self.get(name)
        order: list[str] = []
        seen: set[str] = set()

        def visit(table: TenantTable) -> None:
            if table.name in seen:
                return
            seen.add(table.name)
            for edge in table.owns:
                visit(self._tables[edge.child_table])
            order.append(table.name)

        visit(root)
        return [self._tables[n] for n in order]

    def _validate_references(self) -> None:
        for table in self:
            for path in table.fk_paths:
                if path.target_table not in self._tables:
                    raise ValueError(
                        f"{table.name}: inference path targets unregistered table {path.target_table}"
                    )
                if path.is_link and not path.link_column:
                    raise ValueError(f"{table.name}: link path via {path.via_table} needs link_column")
            for edge in table.owns:
                if edge.child_table not in self._tables:
                    raise ValueError(f"{table.name}: owns unregistered table {edge.child_table}")

    def _check_ownership_cycles(self) -> None:
        visiting: set[str] = set()
        done: set[str] = set()

        def walk(name: str, trail: list[str]) -> None:
            if name in done:
                return
            if name in visiting:
                cycle = " -> ".join(trail[trail.index(name):] + [name])
                raise ValueError(f"Ownership cycle: {cycle}")
            visiting.add(name)
            for edge in self._tables[name].owns:
                walk(edge.child_table, trail + [name])
            visiting.discard(name)
            done.add(name)

        for name in self._tables:
            walk(name, [])


# ═══════════════════════════════════════════════════════════════════════════
# Default catalog
# ═══════════════════════════════════════════════════════════════════════════

_DEFAULT_TABLES: tuple[TenantTable, ...] = (
    TenantTable(
        name="workspaces",
        fk_paths=(ForeignKeyPath("created_by", "users"),),
        display_columns=("name",),
        owns=(
            Ownership("teams", "workspace_id"),
            Ownership("clients", "workspace_id"),
            Ownership("projects", "workspace_id"),
            Ownership("chat_channels", "workspace_id"),
        ),
    ),
    TenantTable(
        name="teams",
        fk_paths=(ForeignKeyPath("workspace_id", "workspaces"),),
        display_columns=("name",),
        critical=True,
        workspace_column="workspace_id",
    ),
    TenantTable(
        name="clients",
        fk_paths=(ForeignKeyPath("workspace_id", "workspaces"),),
        display_columns=("company_name", "display_name", "email"),
        critical=True,
        archive=ArchiveSpec("status", "inactive"),
        workspace_column="workspace_id",
    ),
    TenantTable(
        name="projects",
        fk_paths=(
            ForeignKeyPath("client_id", "clients"),
            ForeignKeyPath("workspace_id", "workspaces"),
            ForeignKeyPath("team_id", "teams"),
        ),
        display_columns=("name",),
        critical=True,
        archive=ArchiveSpec("status", "archived"),
        workspace_column="workspace_id",
        owns=(
            Ownership("tasks", "project_id"),
            Ownership("time_entries", "project_id"),
            Ownership("active_timers", "project_id"),
        ),
    ),
    TenantTable(
        name="tasks",
        fk_paths=(
            ForeignKeyPath("project_id", "projects"),
            ForeignKeyPath("created_by", "users"),
        ),
        display_columns=("title",),
        critical=True,
        owns=(
            Ownership("time_entries", "task_id"),
            Ownership("active_timers", "task_id"),
        ),
    ),
    TenantTable(
        name="users",
        fk_paths=(
            ForeignKeyPath(
                "workspace_id", "workspaces",
                via_table="workspace_members", link_column="user_id",
            ),
        ),
        display_columns=("name", "email"),
        critical=True,
        sentinel_filter=SentinelFilter("role", "super_user"),
        archive=ArchiveSpec("is_active", False),
        owns=(
            Ownership("time_entries", "user_id"),
            Ownership("active_timers", "user_id"),
        ),
    ),
    TenantTable(
        name="time_entries",
        fk_paths=(
            ForeignKeyPath("task_id", "tasks"),
            ForeignKeyPath("project_id", "projects"),
            ForeignKeyPath("user_id", "users"),
        ),
        display_columns=("description",),
    ),
    TenantTable(
        name="active_timers",
        fk_paths=(
            ForeignKeyPath("task_id", "tasks"),
            ForeignKeyPath("project_id", "projects"),
            ForeignKeyPath("user_id", "users"),
        ),
        display_columns=("description",),
    ),
    TenantTable(
        name="chat_channels",
        fk_paths=(
            ForeignKeyPath("workspace_id", "workspaces"),
            ForeignKeyPath("created_by", "users"),
        ),
        display_columns=("name",),
        workspace_column="workspace_id",
        owns=(Ownership("chat_messages", "channel_id"),),
    ),
    TenantTable(
        name="chat_messages",
        fk_paths=(
            ForeignKeyPath("channel_id", "chat_channels"),
            ForeignKeyPath("author_id", "users"),
        ),
        display_columns=("body",),
    ),
    TenantTable(
        name="app_settings",
        display_columns=("key",),
        root=True,
        critical=True,
    ),
)


def build_default_registry() -> TableRegistry:
    return TableRegistry(_DEFAULT_TABLES)
