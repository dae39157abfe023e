"""
Tenancy health snapshot for the operator dashboard.

Pure combination of the orphan scan, the quarantine summary and an
active-tenant count. Only bounded counts and capped samples, so it is
safe to poll.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import func

from app.models import db
from app.models.auth import Tenant, TenantStatus
from app.services.orphan_scanner import OrphanScanner
from app.services.quarantine_catalog import QuarantineCatalog
from app.services.tenancy_registry import TableRegistry
from app.services.tenancy_settings import TenancySettings

logger = logging.getLogger(__name__)


class TenancyHealthAggregator:
    def __init__(
        self,
        registry: TableRegistry,
        settings: TenancySettings,
        scanner: OrphanScanner | None = None,
        catalog: QuarantineCatalog | None = None,
    ):
        self.registry = registry
        self.settings = settings
        self.scanner = scanner or OrphanScanner(registry, settings)
        self.catalog = catalog or QuarantineCatalog(registry, settings)

    def active_tenant_count(self) -> int:
        """Active tenants. The quarantine tenant is isolated, so never counted."""
        return db.session.execute(
            db.select(func.count(Tenant.id)).where(Tenant.status == TenantStatus.ACTIVE)
        ).scalar() or 0

    def snapshot(self) -> dict:
        scan = self.scanner.scan_all()
        summary = self.catalog.summary()
        logger.debug(
            "Tenancy health: %d rows missing tenant, %d quarantined",
            scan["total_orphans"], summary["total"],
        )

        missing_by_table = {t["table"]: t["count"] for t in scan["tables"]}
        unavailable = [t["table"] for t in scan["tables"] if not t["exists"]]

        blockers = []
        for table in self.registry.critical():
            count = missing_by_table.get(table.name, 0)
            if count > 0:
                blockers.append(f"{table.name} has {count} rows without tenant_id")
        for name in unavailable:
            blockers.append(f"{name} is missing from the schema or lacks required columns")

        return {
            "current_mode": self.settings.enforcement_mode,
            "total_missing": scan["total_orphans"],
            "missing_by_table": missing_by_table,
            "tables": scan["tables"],
            "total_quarantined": summary["total"],
            "quarantined_by_table": summary["counts"],
            "has_quarantine_tenant": summary["has_quarantine_tenant"],
            "quarantine_tenant_id": summary["quarantine_tenant_id"],
            "active_tenant_count": self.active_tenant_count(),
            "readiness": {
                "can_enable_strict": not blockers,
                "blockers": blockers,
            },
            "schema_ready": not unavailable,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def tenant_id_scan(self) -> dict:
        """Orphan counts plus what a backfill is currently allowed to do."""
        scan = self.scanner.scan_all()
        notes = []
        if not self.settings.backfill_enabled:
            notes.append("Backfill apply is disabled; set BACKFILL_TENANT_IDS_ALLOWED=true to enable")
        if not scan["quarantine_tenant"]["exists"]:
            notes.append("Quarantine tenant will be created on the first apply that needs it")
        return {
            "missing": [
                {"table": t["table"], "count": t["count"], "sample_ids": t["sample_ids"], "exists": t["exists"]}
                for t in scan["tables"]
            ],
            "total_missing": scan["total_orphans"],
            "quarantine_tenant_id": scan["quarantine_tenant"]["id"],
            "backfill_allowed": self.settings.backfill_enabled,
            "notes": notes,
        }
