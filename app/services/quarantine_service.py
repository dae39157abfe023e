"""
Quarantine Service — sentinel tenant and manual remediation of its rows.

The quarantine tenant holds rows whose real owner could not be inferred.
It is the isolated tenant holding the reserved slug, created lazily and
never counted as an active tenant. Operators then move each row out with
one of:

    assign   → move the row to a live, active tenant
    archive  → table-specific soft disable, row stays quarantined
    delete   → hard delete of the row and its owned descendants

Every successful action is committed first and then mirrored into one
audit event.
"""

from __future__ import annotations

import logging
from typing import Any

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.core.exceptions import (
    ConfirmationMismatchError,
    ConflictError,
    FeatureDisabledError,
    InvalidStateError,
    NotFoundError,
)
from app.models import db
from app.models.auth import Tenant, TenantStatus
from app.services.audit_recorder import AuditRecorder
from app.services.helpers.schema_probe import SchemaProbe, quote
from app.services.orphan_scanner import OrphanScanner, orphan_condition
from app.services.tenancy_registry import TableRegistry, TenantTable
from app.services.tenancy_settings import (
    DELETE_CONFIRM_HEADER,
    DELETE_CONFIRM_PHRASE,
    FIX_ORPHANS_CONFIRM_PHRASE,
    TenancySettings,
)

logger = logging.getLogger(__name__)


class QuarantineManager:
    def __init__(
        self,
        registry: TableRegistry,
        settings: TenancySettings,
        audit: AuditRecorder | None = None,
    ):
        self.registry = registry
        self.settings = settings
        self.audit = audit or AuditRecorder()

    # ═════════════════════════════════════════════════════════════════════
    # Sentinel tenant
    # ═════════════════════════════════════════════════════════════════════

    def find_quarantine_tenant(self) -> Tenant | None:
        """The isolated quarantine tenant, or None when it does not exist yet."""
        return Tenant.find_quarantine(self.settings.quarantine_slug)

    def _claim_slug(self) -> Tenant | None:
        tenant = Tenant.find_by_slug(self.settings.quarantine_slug)
        if tenant is not None and not tenant.is_quarantine:
            raise ConflictError("Tenant", "slug", tenant.slug)
        return tenant

    def ensure_quarantine_tenant(self, actor_user_id: int | None = None) -> tuple[Tenant, bool]:
        """Return the quarantine tenant, creating it on first need.

        A unique-slug violation from a concurrent creator is treated as
        "already exists". Any pending, uncommitted session work is rolled
        back in that case, so callers must not hold unflushed writes.

        Returns:
            ``(tenant, created)``

        Raises:
            ConflictError: The reserved slug belongs to an ordinary tenant.
        """
        tenant = self._claim_slug()
        if tenant is not None:
            return tenant, False

        tenant = Tenant(
            name=self.settings.quarantine_name,
            slug=self.settings.quarantine_slug,
            status=TenantStatus.ISOLATED,
        )
        try:
            db.session.add(tenant)
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            tenant = self._claim_slug()
            if tenant is None:
                raise
            logger.info("Quarantine tenant created concurrently, reusing id=%s", tenant.id)
            return tenant, False

        logger.info("Quarantine tenant created: id=%s", tenant.id, extra={"tenant_id": tenant.id})
        self.audit.append(
            tenant_id=tenant.id,
            event_type="quarantine_tenant_created",
            message=f"Quarantine tenant '{tenant.slug}' created",
            actor_user_id=actor_user_id,
            metadata={"slug": tenant.slug, "status": tenant.status},
        )
        return tenant, True

    # ═════════════════════════════════════════════════════════════════════
    # Row actions
    # ═════════════════════════════════════════════════════════════════════

    def assign(
        self,
        table_name: str,
        record_id: int,
        target_tenant_id: int,
        *,
        workspace_id: int | None = None,
        actor_user_id: int | None = None,
    ) -> dict:
        """Move a quarantined row to an active tenant.

        Args:
            table_name: Registered table the row lives in.
            record_id: Row primary key.
            target_tenant_id: Destination tenant; must exist and be active.
            workspace_id: Optional workspace of the destination tenant, for
                tables that carry a workspace column.
            actor_user_id: Operator performing the action.

        Raises:
            FeatureDisabledError: Quarantine actions are switched off.
            NotFoundError: Row, tenant or workspace does not exist.
            InvalidStateError: Row not quarantined, or target not usable.
        """
        self._require_actions("Quarantine assign")
        table = self.registry.get(table_name)
        quarantine = self._require_quarantine_tenant()
        row = self._quarantined_row(table, record_id, quarantine)

        target = db.session.get(Tenant, target_tenant_id)
        if target is None:
            raise NotFoundError(resource="Tenant", resource_id=target_tenant_id)
        if target.id == quarantine.id:
            raise InvalidStateError("Cannot assign a row to the quarantine tenant")
        if target.status != TenantStatus.ACTIVE:
            raise InvalidStateError(
                f"Target tenant {target.id} is not active",
                details={"tenant_id": target.id, "status": target.status},
            )

        values: dict[str, Any] = {"tenant_id": target.id}
        if workspace_id is not None:
            if not table.workspace_column:
                raise InvalidStateError(f"Table {table.name} has no workspace column")
            ws_tenant = db.session.execute(
                sa.text("SELECT tenant_id FROM workspaces WHERE id = :id"), {"id": workspace_id}
            ).first()
            if ws_tenant is None:
                raise NotFoundError(resource="workspaces", resource_id=workspace_id)
            if ws_tenant[0] != target.id:
                raise InvalidStateError(
                    f"Workspace {workspace_id} does not belong to tenant {target.id}",
                    details={"workspace_tenant_id": ws_tenant[0]},
                )
            values["workspace_id"] = workspace_id

        set_parts = [f"{quote(table.tenant_column)} = :tenant_id"]
        if "workspace_id" in values:
            set_parts.append(f"{quote(table.workspace_column)} = :workspace_id")
        self._guarded_update(table, record_id, quarantine, ", ".join(set_parts), values)

        before = {"tenant_id": quarantine.id}
        after = {"tenant_id": target.id}
        if table.workspace_column:
            before["workspace_id"] = row.get(table.workspace_column)
            after["workspace_id"] = values.get("workspace_id", row.get(table.workspace_column))

        logger.info(
            "Assigned %s id=%s to tenant %s", table.name, record_id, target.id,
            extra={"table": table.name, "tenant_id": target.id},
        )
        event = self.audit.append(
            tenant_id=target.id,
            event_type="quarantine_row_assigned",
            message=f"Assigned {table.name} #{record_id} from quarantine to tenant {target.id}",
            actor_user_id=actor_user_id,
            metadata={"table": table.name, "record_id": record_id, "before": before, "after": after},
        )
        return {
            "table": table.name,
            "record_id": record_id,
            "tenant_id": target.id,
            "workspace_id": after.get("workspace_id"),
            "audit_event_id": event.id if event else None,
        }

    def archive(self, table_name: str, record_id: int, *, actor_user_id: int | None = None) -> dict:
        """Soft-disable a quarantined row; it stays in quarantine."""
        self._require_actions("Quarantine archive")
        table = self.registry.get(table_name)
        if table.archive is None:
            raise InvalidStateError(
                f"Archive is not supported for {table.name}",
                details={"table": table.name},
            )
        quarantine = self._require_quarantine_tenant()
        row = self._quarantined_row(table, record_id, quarantine)

        column = table.archive.column
        self._guarded_update(
            table, record_id, quarantine, f"{quote(column)} = :archive_value",
            {"archive_value": table.archive.value},
        )

        logger.info("Archived %s id=%s", table.name, record_id, extra={"table": table.name})
        event = self.audit.append(
            tenant_id=quarantine.id,
            event_type="quarantine_row_archived",
            message=f"Archived quarantined {table.name} #{record_id}",
            actor_user_id=actor_user_id,
            metadata={
                "table": table.name,
                "record_id": record_id,
                "before": {column: row.get(column)},
                "after": {column: table.archive.value},
            },
        )
        return {
            "table": table.name,
            "record_id": record_id,
            "archived": {column: table.archive.value},
            "audit_event_id": event.id if event else None,
        }

    def delete(
        self,
        table_name: str,
        record_id: int,
        *,
        confirm_text: str | None,
        confirm_header: str | None,
        actor_user_id: int | None = None,
    ) -> dict:
        """Hard-delete a quarantined row and its owned descendants.

        Three independent controls must all hold: ``delete_enabled``, the
        exact confirmation phrase in ``confirm_text``, and the same phrase
        in the separate ``X-Confirm-Delete`` signal.

        Raises:
            FeatureDisabledError: Deletes are switched off.
            ConfirmationMismatchError: Either confirmation is missing or wrong.
            InvalidStateError: Row not quarantined, or a descendant lives
                outside quarantine.
        """
        if not self.settings.delete_enabled:
            raise FeatureDisabledError("Quarantine delete", "SUPER_DEBUG_DELETE_ALLOWED")
        if confirm_text != DELETE_CONFIRM_PHRASE:
            raise ConfirmationMismatchError(
                "Confirmation phrase does not match", expected_hint=DELETE_CONFIRM_PHRASE
            )
        if confirm_header != DELETE_CONFIRM_PHRASE:
            raise ConfirmationMismatchError(
                f"{DELETE_CONFIRM_HEADER} header is missing or wrong",
                expected_hint=DELETE_CONFIRM_HEADER,
            )

        table = self.registry.get(table_name)
        quarantine = self._require_quarantine_tenant()
        row = self._quarantined_row(table, record_id, quarantine)

        plan = self._collect_descendants(table, record_id)
        outside = self._rows_outside_quarantine(plan, quarantine.id)
        if outside:
            raise InvalidStateError(
                f"{table.name} #{record_id} owns rows outside quarantine; reassign or delete them first",
                details={"outside_quarantine": outside},
            )

        deleted: dict[str, int] = {}
        try:
            for owned in self.registry.deletion_order(table.name):
                ids = plan.get(owned.name)
                if not ids:
                    continue
                stmt = sa.text(
                    f"DELETE FROM {quote(owned.name)} "
                    f"WHERE {quote(owned.id_column)} IN :ids AND {quote(owned.tenant_column)} = :qid"
                ).bindparams(sa.bindparam("ids", expanding=True))
                result = db.session.execute(stmt, {"ids": sorted(ids), "qid": quarantine.id})
                deleted[owned.name] = result.rowcount
            if not deleted.get(table.name):
                raise InvalidStateError(f"{table.name} #{record_id} changed before it could be deleted")
            db.session.commit()
        except (SQLAlchemyError, InvalidStateError):
            db.session.rollback()
            raise

        logger.info(
            "Deleted quarantined %s id=%s (cascade %s)", table.name, record_id, deleted,
            extra={"table": table.name, "tenant_id": quarantine.id},
        )
        event = self.audit.append(
            tenant_id=quarantine.id,
            event_type="quarantine_row_deleted",
            message=f"Deleted quarantined {table.name} #{record_id}",
            actor_user_id=actor_user_id,
            metadata={"table": table.name, "record_id": record_id, "before": row, "deleted": deleted},
        )
        return {
            "table": table.name,
            "record_id": record_id,
            "deleted": deleted,
            "audit_event_id": event.id if event else None,
        }

    # ═════════════════════════════════════════════════════════════════════
    # Bulk orphan fix
    # ═════════════════════════════════════════════════════════════════════

    def quarantine_orphans(
        self,
        *,
        dry_run: bool = True,
        confirm_text: str | None = None,
        actor_user_id: int | None = None,
    ) -> dict:
        """Move every orphan row straight into the quarantine tenant.

        A dry run only reports what would move. Execution needs
        ``confirm_text == "FIX_ORPHANS"`` and quarantine actions enabled.
        """
        if not dry_run:
            if confirm_text != FIX_ORPHANS_CONFIRM_PHRASE:
                raise ConfirmationMismatchError(
                    f"To execute the orphan fix set dry_run=false and confirm_text='{FIX_ORPHANS_CONFIRM_PHRASE}'",
                    expected_hint=FIX_ORPHANS_CONFIRM_PHRASE,
                )
            self._require_actions("Orphan fix")

        scans = OrphanScanner(self.registry, self.settings).scan_each()
        quarantine = self.find_quarantine_tenant()
        created = False

        if dry_run:
            return {
                "dry_run": True,
                "quarantine_tenant_id": quarantine.id if quarantine else None,
                "would_create_quarantine_tenant": quarantine is None and any(s.count for s in scans),
                "tables": [
                    {
                        "table": s.table,
                        "count": s.count,
                        "sample_ids": s.sample_ids,
                        "exists": s.exists,
                        **({"error": s.error} if s.error else {}),
                    }
                    for s in scans
                ],
                "total": sum(s.count for s in scans),
            }

        moved: dict[str, int] = {}
        errors: dict[str, str] = {s.table: s.error for s in scans if s.error}
        if any(s.count for s in scans):
            quarantine, created = self.ensure_quarantine_tenant(actor_user_id=actor_user_id)
            for scan in scans:
                if not scan.count:
                    continue
                table = self.registry.get(scan.table)
                cond, params = orphan_condition(table, alias=quote(table.name))
                try:
                    result = db.session.execute(
                        sa.text(
                            f"UPDATE {quote(table.name)} SET {quote(table.tenant_column)} = :qid "
                            f"WHERE {cond}"
                        ),
                        {**params, "qid": quarantine.id},
                    )
                    db.session.commit()
                except SQLAlchemyError as exc:
                    db.session.rollback()
                    logger.warning("Orphan fix failed on %s: %s", table.name, exc, extra={"table": table.name})
                    errors[table.name] = str(exc)
                    continue
                moved[table.name] = result.rowcount

        total = sum(moved.values())
        if total:
            self.audit.append(
                tenant_id=quarantine.id,
                event_type="orphans_quarantined",
                message=f"Moved {total} orphan rows into quarantine",
                actor_user_id=actor_user_id,
                metadata={"moved": moved, "errors": errors},
            )
        return {
            "dry_run": False,
            "quarantine_tenant_id": quarantine.id if quarantine else None,
            "quarantine_tenant_created": created,
            "moved": moved,
            "errors": errors,
            "total": total,
        }

    # ── internals ────────────────────────────────────────────────────────

    def _require_actions(self, feature: str) -> None:
        if not self.settings.actions_enabled:
            raise FeatureDisabledError(feature, "SUPER_DEBUG_ACTIONS_ALLOWED")

    def _require_quarantine_tenant(self) -> Tenant:
        tenant = self.find_quarantine_tenant()
        if tenant is None:
            raise InvalidStateError("No quarantine tenant exists yet")
        return tenant

    def _fetch_row(self, table: TenantTable, record_id: int) -> dict | None:
        probe = SchemaProbe().probe(table.name, [table.id_column, table.tenant_column])
        if not probe.usable:
            raise probe.as_error()
        row = db.session.execute(
            sa.text(f"SELECT * FROM {quote(table.name)} WHERE {quote(table.id_column)} = :id"),
            {"id": record_id},
        ).mappings().first()
        return dict(row) if row is not None else None

    def _quarantined_row(self, table: TenantTable, record_id: int, quarantine: Tenant) -> dict:
        row = self._fetch_row(table, record_id)
        if row is None:
            raise NotFoundError(resource=table.name, resource_id=record_id)
        if row[table.tenant_column] != quarantine.id:
            raise InvalidStateError(
                f"{table.name} #{record_id} is not quarantined",
                details={"tenant_id": row[table.tenant_column]},
            )
        return row

    def _guarded_update(
        self, table: TenantTable, record_id: int, quarantine: Tenant, set_sql: str, params: dict
    ) -> None:
        """UPDATE one row only while it is still quarantined, then commit."""
        try:
            result = db.session.execute(
                sa.text(
                    f"UPDATE {quote(table.name)} SET {set_sql} "
                    f"WHERE {quote(table.id_column)} = :record_id "
                    f"AND {quote(table.tenant_column)} = :qid"
                ),
                {**params, "record_id": record_id, "qid": quarantine.id},
            )
            if result.rowcount == 0:
                raise InvalidStateError(f"{table.name} #{record_id} left quarantine concurrently")
            db.session.commit()
        except (SQLAlchemyError, InvalidStateError):
            db.session.rollback()
            raise

    def _collect_descendants(self, table: TenantTable, record_id: int) -> dict[str, set]:
        """Walk ``owns`` edges from one row and gather every owned row id."""
        probe = SchemaProbe()
        plan: dict[str, set] = {table.name: {record_id}}
        frontier: list[tuple[TenantTable, set]] = [(table, {record_id})]
        while frontier:
            parent, ids = frontier.pop()
            for edge in parent.owns:
                child = self.registry.get(edge.child_table)
                if not probe.probe(child.name, [child.id_column, edge.column]).usable:
                    continue
                stmt = sa.text(
                    f"SELECT {quote(child.id_column)} FROM {quote(child.name)} "
                    f"WHERE {quote(edge.column)} IN :ids"
                ).bindparams(sa.bindparam("ids", expanding=True))
                found = {r[0] for r in db.session.execute(stmt, {"ids": sorted(ids)})}
                new = found - plan.get(child.name, set())
                if new:
                    plan.setdefault(child.name, set()).update(new)
                    frontier.append((child, new))
        return plan

    def _rows_outside_quarantine(self, plan: dict[str, set], quarantine_id: int) -> dict[str, list]:
        outside: dict[str, list] = {}
        for name, ids in plan.items():
            table = self.registry.get(name)
            stmt = sa.text(
                f"SELECT {quote(table.id_column)} FROM {quote(table.name)} "
                f"WHERE {quote(table.id_column)} IN :ids "
                f"AND ({quote(table.tenant_column)} IS NULL OR {quote(table.tenant_column)} <> :qid) "
                f"ORDER BY {quote(table.id_column)} LIMIT :limit"
            ).bindparams(sa.bindparam("ids", expanding=True))
            bad = [
                r[0] for r in db.session.execute(
                    stmt, {"ids": sorted(ids), "qid": quarantine_id, "limit": self.settings.sample_limit}
                )
            ]
            if bad:
                outside[name] = bad
        return outside
