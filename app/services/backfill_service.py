"""
Tenant-id backfill: infer the owner of orphan rows through foreign keys.

For each registered table, in registry order:

    1. collect orphan row ids (tenant column NULL)
    2. walk every declared FK path to an ancestor that has a tenant
    3. one distinct candidate   → resolved
       several candidates       → ambiguous, never touched
       no candidate             → unresolved, routed to quarantine

``dry_run`` only counts. ``apply`` writes with a ``tenant_id IS NULL``
precondition, so a second run finds nothing left to touch. Each table is
committed on its own; a failure on one table is reported and the run
continues with the next.

The quarantine tenant is never a candidate: a quarantined ancestor proves
nothing about who owns its children.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone

import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError

from app.core.exceptions import (
    AmbiguousResolutionError,
    ConflictError,
    FeatureDisabledError,
    InvalidStateError,
    NotFoundError,
    SchemaDriftError,
)
from app.models import db
from app.services.audit_recorder import AuditRecorder
from app.services.helpers.schema_probe import SchemaProbe, quote
from app.services.orphan_scanner import orphan_condition
from app.services.quarantine_service import QuarantineManager
from app.services.tenancy_registry import ForeignKeyPath, TableRegistry, TenantTable
from app.services.tenancy_settings import TenancySettings

logger = logging.getLogger(__name__)

MODE_DRY_RUN = "dry_run"
MODE_APPLY = "apply"
MODES = (MODE_DRY_RUN, MODE_APPLY)

RESOLVED = "resolved"
AMBIGUOUS = "ambiguous"
UNRESOLVED = "unresolved"


@dataclass(frozen=True)
class BackfillDecision:
    """Outcome for one orphan row. Recomputed on every call."""

    table: str
    record_id: int
    outcome: str
    tenant_id: int | None = None
    candidates: tuple[int, ...] = ()

    @classmethod
    def from_candidates(cls, table: str, record_id: int, candidates) -> "BackfillDecision":
        distinct = tuple(sorted(set(candidates)))
        if len(distinct) == 1:
            return cls(table, record_id, RESOLVED, tenant_id=distinct[0], candidates=distinct)
        if len(distinct) > 1:
            return cls(table, record_id, AMBIGUOUS, candidates=distinct)
        return cls(table, record_id, UNRESOLVED)

    def to_dict(self) -> dict:
        return {
            "table": self.table,
            "record_id": self.record_id,
            "outcome": self.outcome,
            "tenant_id": self.tenant_id,
            "candidates": list(self.candidates),
        }


@dataclass
class TablePlan:
    table: str
    resolved: dict[int, list[int]] = field(default_factory=lambda: defaultdict(list))
    ambiguous: dict[int, tuple[int, ...]] = field(default_factory=dict)
    unresolved: list[int] = field(default_factory=list)
    skipped_paths: list[str] = field(default_factory=list)

    def assignments(self) -> dict[int, list[int]]:
        return dict(self.resolved)

    @property
    def resolved_count(self) -> int:
        return sum(len(ids) for ids in self.resolved.values())


class BackfillEngine:
    def __init__(
        self,
        registry: TableRegistry,
        settings: TenancySettings,
        quarantine: QuarantineManager | None = None,
        audit: AuditRecorder | None = None,
    ):
        self.registry = registry
        self.settings = settings
        self.audit = audit or AuditRecorder()
        self.quarantine = quarantine or QuarantineManager(registry, settings, audit=self.audit)

    # ═════════════════════════════════════════════════════════════════════
    # Bulk run
    # ═════════════════════════════════════════════════════════════════════

    def run(self, mode: str = MODE_DRY_RUN, *, actor_user_id: int | None = None) -> dict:
        """Simulate or apply the backfill over every registered table.

        Args:
            mode: ``"dry_run"`` (always allowed) or ``"apply"``.
            actor_user_id: Operator recorded on the audit event.

        Returns:
            Per-table ``updated`` / ``quarantined`` / ``ambiguous`` counts,
            ambiguous sample ids, per-table ``errors``, the FK paths skipped
            per table and the quarantine tenant id. A table with a skipped
            path cannot be verified, so none of its rows are written.

        Raises:
            ValueError: Unknown mode.
            FeatureDisabledError: ``apply`` while backfill is switched off.
        """
        if mode not in MODES:
            raise ValueError(f"mode must be one of {MODES}")
        if mode == MODE_APPLY and not self.settings.backfill_enabled:
            raise FeatureDisabledError("Tenant-id backfill apply", "BACKFILL_TENANT_IDS_ALLOWED")

        apply = mode == MODE_APPLY
        probe = SchemaProbe()
        quarantine = self.quarantine.find_quarantine_tenant()
        quarantine_id = quarantine.id if quarantine else None

        updated: dict[str, int] = {}
        quarantined: dict[str, int] = {}
        ambiguous: dict[str, int] = {}
        ambiguous_samples: dict[str, list[int]] = {}
        ambiguous_details: dict[str, list[dict]] = {}
        skipped_paths: dict[str, list[str]] = {}
        errors: dict[str, str] = {}

        for table in self.registry:
            updated[table.name] = 0
            quarantined[table.name] = 0
            ambiguous[table.name] = 0
            try:
                plan = self._plan(table, probe, quarantine_id)
            except SchemaDriftError as exc:
                errors[table.name] = str(exc)
                continue
            except SQLAlchemyError as exc:
                db.session.rollback()
                logger.warning("Backfill planning failed on %s: %s", table.name, exc, extra={"table": table.name})
                errors[table.name] = str(exc)
                continue

            if plan.ambiguous:
                ambiguous[table.name] = len(plan.ambiguous)
                sample = sorted(plan.ambiguous)[: self.settings.sample_limit]
                ambiguous_samples[table.name] = sample
                ambiguous_details[table.name] = [
                    {"id": rid, "candidates": list(plan.ambiguous[rid])} for rid in sample
                ]

            if plan.skipped_paths:
                skipped_paths[table.name] = plan.skipped_paths
                errors[table.name] = (
                    "Cannot verify inferred tenants, unusable FK paths: "
                    + ", ".join(plan.skipped_paths)
                )
                continue

            if not apply:
                updated[table.name] = plan.resolved_count
                quarantined[table.name] = len(plan.unresolved)
                continue

            try:
                if plan.unresolved and quarantine_id is None:
                    tenant, _ = self.quarantine.ensure_quarantine_tenant(actor_user_id=actor_user_id)
                    quarantine_id = tenant.id
                n_updated = self._write(table, plan.assignments())
                n_quarantined = self._write(table, {quarantine_id: plan.unresolved}) if plan.unresolved else 0
                db.session.commit()
            except ConflictError as exc:
                db.session.rollback()
                logger.error(
                    "Backfill skipped %s: %s", table.name, exc,
                    extra={"table": table.name, "mode": mode},
                )
                errors[table.name] = str(exc)
                continue
            except SQLAlchemyError as exc:
                db.session.rollback()
                logger.warning(
                    "Backfill apply failed on %s, table rolled back: %s", table.name, exc,
                    extra={"table": table.name, "mode": mode},
                )
                errors[table.name] = str(exc)
                continue

            updated[table.name] = n_updated
            quarantined[table.name] = n_quarantined
            if n_updated or n_quarantined:
                logger.info(
                    "Backfill applied on %s: %d rows updated, %d quarantined",
                    table.name, n_updated, n_quarantined,
                    extra={"table": table.name, "mode": mode},
                )

        total_updated = sum(updated.values())
        total_quarantined = sum(quarantined.values())
        if apply and (total_updated or total_quarantined):
            self.audit.append(
                tenant_id=None,
                event_type="tenant_id_backfill_applied",
                message=(
                    f"Tenant-id backfill applied: {total_updated} rows updated, "
                    f"{total_quarantined} quarantined"
                ),
                actor_user_id=actor_user_id,
                metadata={
                    "updated": updated,
                    "quarantined": quarantined,
                    "ambiguous": ambiguous,
                    "errors": errors,
                    "skipped_paths": skipped_paths,
                    "quarantine_tenant_id": quarantine_id,
                },
            )

        return {
            "mode": mode,
            "updated": updated,
            "quarantined": quarantined,
            "ambiguous": ambiguous,
            "ambiguous_samples": ambiguous_samples,
            "ambiguous_details": ambiguous_details,
            "skipped_paths": skipped_paths,
            "errors": errors,
            "total_updated": total_updated,
            "total_quarantined": total_quarantined,
            "quarantine_tenant_id": quarantine_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def dry_run(self) -> dict:
        return self.run(MODE_DRY_RUN)

    def apply(self, *, actor_user_id: int | None = None) -> dict:
        return self.run(MODE_APPLY, actor_user_id=actor_user_id)

    # ═════════════════════════════════════════════════════════════════════
    # Single row
    # ═════════════════════════════════════════════════════════════════════

    def decide(self, table_name: str, record_id: int) -> BackfillDecision:
        """Compute the decision for one orphan row without writing anything.

        Raises:
            InvalidStateError: Table unregistered, or the row is not an orphan.
            NotFoundError: Row does not exist.
            SchemaDriftError: Table or its tenant column is missing.
        """
        table = self.registry.get(table_name)
        probe = SchemaProbe()
        check = probe.probe(table.name, [table.id_column, table.tenant_column])
        if not check.usable:
            raise check.as_error()

        row = db.session.execute(
            sa.text(
                f"SELECT {quote(table.tenant_column)} FROM {quote(table.name)} "
                f"WHERE {quote(table.id_column)} = :id"
            ),
            {"id": record_id},
        ).first()
        if row is None:
            raise NotFoundError(resource=table.name, resource_id=record_id)

        cond, params = orphan_condition(table)
        is_orphan = db.session.execute(
            sa.text(
                f"SELECT 1 FROM {quote(table.name)} t "
                f"WHERE t.{quote(table.id_column)} = :id AND {cond}"
            ),
            {**params, "id": record_id},
        ).first()
        if is_orphan is None:
            raise InvalidStateError(
                f"{table.name} #{record_id} is not an orphan",
                details={"tenant_id": row[0]},
            )

        if table.root:
            return BackfillDecision(table.name, record_id, UNRESOLVED)
        quarantine = self.quarantine.find_quarantine_tenant()
        candidates = self._candidates(table, probe, quarantine.id if quarantine else None, record_id=record_id)
        return BackfillDecision.from_candidates(table.name, record_id, candidates.get(record_id, ()))

    def resolve_one(self, table_name: str, record_id: int, *, actor_user_id: int | None = None) -> dict:
        """Apply the decision for one orphan row.

        Raises:
            FeatureDisabledError: Backfill is switched off.
            AmbiguousResolutionError: The row resolves to several tenants.
        """
        if not self.settings.backfill_enabled:
            raise FeatureDisabledError("Tenant-id backfill apply", "BACKFILL_TENANT_IDS_ALLOWED")
        decision = self.decide(table_name, record_id)
        if decision.outcome == AMBIGUOUS:
            raise AmbiguousResolutionError(table_name, record_id, decision.candidates)

        table = self.registry.get(table_name)
        if decision.outcome == RESOLVED:
            tenant_id = decision.tenant_id
            event_type = "tenant_id_backfill_row_resolved"
        else:
            tenant, _ = self.quarantine.ensure_quarantine_tenant(actor_user_id=actor_user_id)
            tenant_id = tenant.id
            event_type = "tenant_id_backfill_row_quarantined"

        try:
            written = self._write(table, {tenant_id: [record_id]})
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise
        if not written:
            raise InvalidStateError(f"{table.name} #{record_id} was repaired concurrently")

        self.audit.append(
            tenant_id=tenant_id,
            event_type=event_type,
            message=f"{table.name} #{record_id} set to tenant {tenant_id} ({decision.outcome})",
            actor_user_id=actor_user_id,
            metadata={
                "table": table.name,
                "record_id": record_id,
                "before": {"tenant_id": None},
                "after": {"tenant_id": tenant_id},
                "decision": decision.to_dict(),
            },
        )
        return {**decision.to_dict(), "applied_tenant_id": tenant_id}

    # ── internals ────────────────────────────────────────────────────────

    def _plan(self, table: TenantTable, probe: SchemaProbe, quarantine_id: int | None) -> TablePlan:
        check = probe.probe(table.name, table.key_columns())
        if not check.usable:
            raise check.as_error()

        plan = TablePlan(table=table.name)
        cond, params = orphan_condition(table)
        orphan_ids = [
            r[0] for r in db.session.execute(
                sa.text(
                    f"SELECT t.{quote(table.id_column)} FROM {quote(table.name)} t "
                    f"WHERE {cond} ORDER BY t.{quote(table.id_column)}"
                ),
                params,
            )
        ]
        if not orphan_ids:
            return plan

        candidates = {} if table.root else self._candidates(table, probe, quarantine_id, plan=plan)
        for rid in orphan_ids:
            decision = BackfillDecision.from_candidates(table.name, rid, candidates.get(rid, ()))
            if decision.outcome == RESOLVED:
                plan.resolved[decision.tenant_id].append(rid)
            elif decision.outcome == AMBIGUOUS:
                plan.ambiguous[rid] = decision.candidates
            else:
                plan.unresolved.append(rid)
        return plan

    def _candidates(
        self,
        table: TenantTable,
        probe: SchemaProbe,
        quarantine_id: int | None,
        *,
        record_id: int | None = None,
        plan: TablePlan | None = None,
    ) -> dict[int, set[int]]:
        """Candidate tenants per orphan row id, one query per FK path.

        An unusable path is recorded on ``plan`` when planning a table; for
        a single row there is nothing to record it on, so the drift error
        propagates.
        """
        found: dict[int, set[int]] = defaultdict(set)
        for path in table.fk_paths:
            try:
                sql, params = self._path_query(table, path, probe, quarantine_id)
            except SchemaDriftError as exc:
                if plan is None:
                    raise
                logger.warning("Skipping path %s on %s: %s", path.describe(), table.name, exc,
                               extra={"table": table.name})
                plan.skipped_paths.append(path.describe())
                continue
            if record_id is not None:
                sql += f" AND t.{quote(table.id_column)} = :record_id"
                params["record_id"] = record_id
            for rid, tenant_id in db.session.execute(sa.text(sql), params):
                found[rid].add(tenant_id)
        return found

    def _path_query(
        self, table: TenantTable, path: ForeignKeyPath, probe: SchemaProbe, quarantine_id: int | None
    ) -> tuple[str, dict]:
        target = self.registry.get(path.target_table)
        check = probe.probe(target.name, [target.id_column, target.tenant_column])
        if not check.usable:
            raise check.as_error()

        cond, params = orphan_condition(table)
        a_tenant = f"a.{quote(target.tenant_column)}"
        t_id = f"t.{quote(table.id_column)}"
        if path.is_link:
            link = probe.probe(path.via_table, [path.link_column, path.via_column])
            if not link.usable:
                raise link.as_error()
            joins = (
                f"JOIN {quote(path.via_table)} l ON l.{quote(path.link_column)} = {t_id} "
                f"JOIN {quote(target.name)} a ON a.{quote(target.id_column)} = l.{quote(path.via_column)}"
            )
        else:
            joins = (
                f"JOIN {quote(target.name)} a "
                f"ON a.{quote(target.id_column)} = t.{quote(path.via_column)}"
            )

        sql = (
            f"SELECT {t_id}, {a_tenant} FROM {quote(table.name)} t {joins} "
            f"WHERE {cond} AND {a_tenant} IS NOT NULL"
        )
        if quarantine_id is not None:
            sql += f" AND {a_tenant} <> :quarantine_id"
            params["quarantine_id"] = quarantine_id
        return sql, params

    def _write(self, table: TenantTable, assignments: dict[int, list[int]]) -> int:
        """Set the tenant of rows that are still NULL. Returns rows written.

        ``assignments`` maps tenant id to row ids. Every tenant goes into
        the same UPDATE through a CASE on the row id; only the id list is
        chunked, at ``update_chunk_size``.
        """
        owner = {rid: tenant_id for tenant_id, ids in assignments.items() for rid in ids}
        ids = sorted(owner)
        tenant_col = quote(table.tenant_column)
        id_col = quote(table.id_column)
        written = 0
        size = self.settings.update_chunk_size
        for start in range(0, len(ids), size):
            chunk = ids[start:start + size]
            params: dict = {"ids": chunk}
            tenants = {owner[rid] for rid in chunk}
            if len(tenants) == 1:
                value = ":tenant_id"
                params["tenant_id"] = tenants.pop()
            else:
                whens = []
                for i, rid in enumerate(chunk):
                    whens.append(f"WHEN :rid_{i} THEN :tid_{i}")
                    params[f"rid_{i}"] = rid
                    params[f"tid_{i}"] = owner[rid]
                value = f"CASE {id_col} {' '.join(whens)} END"
            stmt = sa.text(
                f"UPDATE {quote(table.name)} SET {tenant_col} = {value} "
                f"WHERE {tenant_col} IS NULL AND {id_col} IN :ids"
            ).bindparams(sa.bindparam("ids", expanding=True))
            written += db.session.execute(stmt, params).rowcount
        return written
