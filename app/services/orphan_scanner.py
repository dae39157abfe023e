"""
Bounded, read-only scan for rows with no tenant association.

Per table: one COUNT and one capped SELECT. A table that is missing from
the live schema, or lacks a declared column, reports ``count 0,
exists False`` and the aggregate scan carries on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError

from app.models import db
from app.models.auth import Tenant
from app.services.helpers.schema_probe import SchemaProbe, quote
from app.services.tenancy_registry import TableRegistry, TenantTable
from app.services.tenancy_settings import TenancySettings

logger = logging.getLogger(__name__)

REASON_MISSING_TENANT = "missing_tenant_id"


def orphan_condition(table: TenantTable, alias: str = "t") -> tuple[str, dict[str, Any]]:
    """SQL predicate (and its bind params) matching orphan rows of ``table``."""
    sql = f"{alias}.{quote(table.tenant_column)} IS NULL"
    params: dict[str, Any] = {}
    if table.sentinel_filter:
        col = f"{alias}.{quote(table.sentinel_filter.column)}"
        sql += f" AND ({col} IS NULL OR {col} <> :sentinel_value)"
        params["sentinel_value"] = table.sentinel_filter.value
    return sql, params


def display_for(table: TenantTable, row: dict) -> str:
    parts = [str(row[c]) for c in table.display_columns if row.get(c) not in (None, "")]
    if not parts:
        return f"#{row[table.id_column]}"
    return " / ".join(parts)


@dataclass(frozen=True)
class OrphanRecord:
    table: str
    record_id: int
    reason: str
    display: str = ""

    def to_dict(self) -> dict:
        return {"id": self.record_id, "display": self.display, "reason": self.reason}


@dataclass
class TableScan:
    table: str
    count: int = 0
    samples: list[OrphanRecord] = field(default_factory=list)
    recommended_action: str = "skip"
    exists: bool = True
    missing_columns: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def sample_ids(self) -> list[int]:
        return [s.record_id for s in self.samples]

    def to_dict(self) -> dict:
        out = {
            "table": self.table,
            "count": self.count,
            "sample_ids": self.sample_ids,
            "samples": [s.to_dict() for s in self.samples],
            "recommended_action": self.recommended_action,
            "exists": self.exists,
        }
        if self.missing_columns:
            out["missing_columns"] = self.missing_columns
        if self.error:
            out["error"] = self.error
        return out


class OrphanScanner:
    def __init__(self, registry: TableRegistry, settings: TenancySettings):
        self.registry = registry
        self.settings = settings

    def scan(self, table_name: str, probe: SchemaProbe | None = None) -> TableScan:
        """Count orphan rows of one registered table and sample a few of them.

        Raises:
            InvalidStateError: If ``table_name`` is not registered.
        """
        table = self.registry.get(table_name)
        probe = probe or SchemaProbe()
        check = probe.probe(table.name, table.required_columns())
        if not check.usable:
            return TableScan(
                table=table.name,
                exists=False,
                missing_columns=list(check.missing_columns),
            )

        cond, params = orphan_condition(table)
        qt = quote(table.name)
        count = int(
            db.session.execute(
                sa.text(f"SELECT COUNT(*) FROM {qt} t WHERE {cond}"), params
            ).scalar() or 0
        )

        samples: list[OrphanRecord] = []
        if count:
            select_cols = ", ".join(
                f"t.{quote(c)}" for c in dict.fromkeys((table.id_column, *table.display_columns))
            )
            rows = db.session.execute(
                sa.text(
                    f"SELECT {select_cols} FROM {qt} t WHERE {cond} "
                    f"ORDER BY t.{quote(table.id_column)} LIMIT :limit"
                ),
                {**params, "limit": self.settings.sample_limit},
            ).mappings().all()
            samples = [
                OrphanRecord(
                    table=table.name,
                    record_id=r[table.id_column],
                    reason=REASON_MISSING_TENANT,
                    display=display_for(table, dict(r)),
                )
                for r in rows
            ]

        if count == 0:
            action = "skip"
        elif table.root:
            action = "quarantine"
        else:
            action = "backfill"
        return TableScan(table=table.name, count=count, samples=samples, recommended_action=action)

    def scan_each(self) -> list[TableScan]:
        """Scan every registered table; a failing table never aborts the rest.

        A table whose query fails is reported with ``exists=False`` and the
        database error.
        """
        probe = SchemaProbe()
        results: list[TableScan] = []
        for table in self.registry:
            try:
                results.append(self.scan(table.name, probe))
            except SQLAlchemyError as exc:
                db.session.rollback()
                logger.warning(
                    "Orphan scan failed for %s: %s", table.name, exc,
                    extra={"table": table.name},
                )
                results.append(TableScan(table=table.name, exists=False, error=str(exc)))
        return results

    def scan_all(self) -> dict:
        """Orphan report across the registry, with the quarantine tenant state."""
        results = self.scan_each()
        quarantine = Tenant.find_quarantine(self.settings.quarantine_slug)
        return {
            "tables": [r.to_dict() for r in results],
            "total_orphans": sum(r.count for r in results),
            "tables_with_orphans": sum(1 for r in results if r.count > 0),
            "quarantine_tenant": {
                "exists": quarantine is not None,
                "id": quarantine.id if quarantine else None,
                "name": quarantine.name if quarantine else None,
            },
        }
