"""Wires the remediation components together once per app."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from flask import current_app

from app.services.audit_recorder import AuditRecorder
from app.services.backfill_service import BackfillEngine
from app.services.integrity_service import IntegrityChecker
from app.services.orphan_scanner import OrphanScanner
from app.services.quarantine_catalog import QuarantineCatalog
from app.services.quarantine_service import QuarantineManager
from app.services.tenancy_health_service import TenancyHealthAggregator
from app.services.tenancy_registry import TableRegistry, build_default_registry
from app.services.tenancy_settings import TenancySettings

EXTENSION_KEY = "tenancy"


@dataclass(frozen=True)
class TenancyServices:
    settings: TenancySettings
    registry: TableRegistry
    audit: AuditRecorder
    scanner: OrphanScanner
    quarantine: QuarantineManager
    backfill: BackfillEngine
    catalog: QuarantineCatalog
    integrity: IntegrityChecker
    health: TenancyHealthAggregator


def build_tenancy_services(
    config: Mapping[str, Any],
    registry: TableRegistry | None = None,
) -> TenancyServices:
    settings = TenancySettings.from_config(config)
    registry = registry or build_default_registry()
    audit = AuditRecorder()
    scanner = OrphanScanner(registry, settings)
    quarantine = QuarantineManager(registry, settings, audit=audit)
    catalog = QuarantineCatalog(registry, settings)
    return TenancyServices(
        settings=settings,
        registry=registry,
        audit=audit,
        scanner=scanner,
        quarantine=quarantine,
        backfill=BackfillEngine(registry, settings, quarantine=quarantine, audit=audit),
        catalog=catalog,
        integrity=IntegrityChecker(settings),
        health=TenancyHealthAggregator(registry, settings, scanner=scanner, catalog=catalog),
    )


def init_app(app) -> TenancyServices:
    services = build_tenancy_services(app.config)
    app.extensions[EXTENSION_KEY] = services
    return services


def get_services() -> TenancyServices:
    return current_app.extensions[EXTENSION_KEY]
