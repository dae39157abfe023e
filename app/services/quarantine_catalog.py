"""Paginated, searchable view over rows held by the quarantine tenant."""

from __future__ import annotations

import logging

import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError

from app.models import db
from app.models.auth import Tenant
from app.services.helpers.schema_probe import SchemaProbe, quote
from app.services.orphan_scanner import display_for
from app.services.tenancy_registry import TableRegistry, TenantTable
from app.services.tenancy_settings import TenancySettings

logger = logging.getLogger(__name__)


def _like_pattern(search: str) -> str:
    escaped = search.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class QuarantineCatalog:
    def __init__(self, registry: TableRegistry, settings: TenancySettings):
        self.registry = registry
        self.settings = settings

    def _quarantine_tenant(self) -> Tenant | None:
        return Tenant.find_quarantine(self.settings.quarantine_slug)

    def list(
        self,
        table_name: str,
        page: int = 1,
        limit: int | None = None,
        search: str | None = None,
    ) -> dict:
        """List quarantined rows of one table.

        ``search`` is a case-insensitive substring match over the table's
        display columns; ``total`` is the filtered count.

        Raises:
            InvalidStateError: Table not registered.
            SchemaDriftError: Table or a display column is missing.
        """
        table = self.registry.get(table_name)
        page = max(1, int(page or 1))
        limit = int(limit or self.settings.page_size)
        limit = max(1, min(limit, self.settings.max_page_size))
        search = (search or "").strip()

        quarantine = self._quarantine_tenant()
        result = {
            "table": table.name,
            "rows": [],
            "total": 0,
            "page": page,
            "limit": limit,
            "search": search or None,
            "has_quarantine_tenant": quarantine is not None,
        }
        if quarantine is None:
            return result

        check = SchemaProbe().probe(table.name, table.required_columns())
        if not check.usable:
            raise check.as_error()

        where, params = self._where(table, quarantine.id, search)
        qt = quote(table.name)
        result["total"] = int(
            db.session.execute(sa.text(f"SELECT COUNT(*) FROM {qt} t WHERE {where}"), params).scalar() or 0
        )
        if result["total"] == 0:
            return result

        columns = [table.id_column, table.tenant_column, *table.display_columns]
        if table.archive:
            columns.append(table.archive.column)
        if table.workspace_column:
            columns.append(table.workspace_column)
        select_cols = ", ".join(f"t.{quote(c)}" for c in dict.fromkeys(columns))
        rows = db.session.execute(
            sa.text(
                f"SELECT {select_cols} FROM {qt} t WHERE {where} "
                f"ORDER BY t.{quote(table.id_column)} LIMIT :limit OFFSET :offset"
            ),
            {**params, "limit": limit, "offset": (page - 1) * limit},
        ).mappings().all()
        result["rows"] = [{**dict(r), "display": display_for(table, dict(r))} for r in rows]
        return result

    def summary(self) -> dict:
        """Quarantined row counts per table.

        "No quarantine tenant yet" is reported distinctly from "tenant
        exists, zero rows".
        """
        quarantine = self._quarantine_tenant()
        if quarantine is None:
            return {
                "has_quarantine_tenant": False,
                "quarantine_tenant_id": None,
                "counts": {},
                "total": 0,
                "unavailable_tables": [],
                "message": "No quarantine tenant exists yet",
            }

        probe = SchemaProbe()
        counts: dict[str, int] = {}
        unavailable: list[str] = []
        for table in self.registry:
            if not probe.probe(table.name, [table.tenant_column]).exists:
                counts[table.name] = 0
                unavailable.append(table.name)
                continue
            try:
                counts[table.name] = int(
                    db.session.execute(
                        sa.text(
                            f"SELECT COUNT(*) FROM {quote(table.name)} "
                            f"WHERE {quote(table.tenant_column)} = :qid"
                        ),
                        {"qid": quarantine.id},
                    ).scalar() or 0
                )
            except SQLAlchemyError as exc:
                db.session.rollback()
                logger.warning("Quarantine count failed for %s: %s", table.name, exc, extra={"table": table.name})
                counts[table.name] = 0
                unavailable.append(table.name)

        total = sum(counts.values())
        return {
            "has_quarantine_tenant": True,
            "quarantine_tenant_id": quarantine.id,
            "counts": counts,
            "total": total,
            "unavailable_tables": unavailable,
            "message": f"{total} rows in quarantine" if total else "Quarantine tenant exists but holds no rows",
        }

    def _where(self, table: TenantTable, quarantine_id: int, search: str) -> tuple[str, dict]:
        where = f"t.{quote(table.tenant_column)} = :qid"
        params: dict = {"qid": quarantine_id}
        if search and table.display_columns:
            ors = " OR ".join(
                f"LOWER(t.{quote(c)}) LIKE :pattern ESCAPE '\\'" for c in table.display_columns
            )
            where += f" AND ({ors})"
            params["pattern"] = _like_pattern(search)
        return where, params
