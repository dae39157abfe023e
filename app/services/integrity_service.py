"""Read-only cross-tenant consistency checks (report-only)."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError

from app.models import db
from app.models.auth import TenantStatus, UserRole
from app.services.helpers.schema_probe import SchemaProbe, quote
from app.services.tenancy_settings import TenancySettings

logger = logging.getLogger(__name__)

BLOCKER = "blocker"
WARN = "warn"
INFO = "info"


@dataclass(frozen=True)
class IntegrityCheck:
    """One catalog entry: a fixed code, a static severity and one bounded query.

    ``from_where`` is a ``FROM ... WHERE ...`` fragment aliasing the
    offending table as ``t``.
    """

    code: str
    severity: str
    description: str
    tables: tuple[str, ...]
    from_where: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class IntegrityIssue:
    code: str
    severity: str
    count: int
    sample_ids: list
    description: str

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "severity": self.severity,
            "count": self.count,
            "sample_ids": self.sample_ids,
            "description": self.description,
        }


def _tenant_mismatch(code: str, severity: str, child: str, fk: str, parent: str, label: str) -> IntegrityCheck:
    return IntegrityCheck(
        code=code,
        severity=severity,
        description=f"{label} belongs to a different tenant than its {parent[:-1]}",
        tables=(child, parent),
        from_where=(
            f"FROM {quote(child)} t JOIN {quote(parent)} p ON p.id = t.{quote(fk)} "
            f"WHERE t.tenant_id IS NOT NULL AND p.tenant_id IS NOT NULL "
            f"AND t.tenant_id <> p.tenant_id"
        ),
    )


def _dangling(code: str, child: str, fk: str, parent: str, label: str) -> IntegrityCheck:
    return IntegrityCheck(
        code=code,
        severity=WARN,
        description=f"{label} references a {parent[:-1]} that no longer exists",
        tables=(child, parent),
        from_where=(
            f"FROM {quote(child)} t LEFT JOIN {quote(parent)} p ON p.id = t.{quote(fk)} "
            f"WHERE t.{quote(fk)} IS NOT NULL AND p.id IS NULL"
        ),
    )


CHECKS: tuple[IntegrityCheck, ...] = (
    _tenant_mismatch("PROJECT_CLIENT_TENANT_MISMATCH", BLOCKER, "projects", "client_id", "clients", "Project"),
    _tenant_mismatch("PROJECT_WORKSPACE_TENANT_MISMATCH", BLOCKER, "projects", "workspace_id", "workspaces", "Project"),
    _tenant_mismatch("TEAM_WORKSPACE_TENANT_MISMATCH", BLOCKER, "teams", "workspace_id", "workspaces", "Team"),
    _tenant_mismatch("TASK_PROJECT_TENANT_MISMATCH", BLOCKER, "tasks", "project_id", "projects", "Task"),
    _tenant_mismatch(
        "CHAT_MESSAGE_CHANNEL_TENANT_MISMATCH", BLOCKER, "chat_messages", "channel_id", "chat_channels",
        "Chat message",
    ),
    _tenant_mismatch("TIME_ENTRY_TASK_TENANT_MISMATCH", WARN, "time_entries", "task_id", "tasks", "Time entry"),
    _dangling("TASK_ORPHANED_PROJECT", "tasks", "project_id", "projects", "Task"),
    _dangling("TIME_ENTRY_ORPHANED_USER", "time_entries", "user_id", "users", "Time entry"),
    _dangling("CHAT_MESSAGE_ORPHANED_CHANNEL", "chat_messages", "channel_id", "chat_channels", "Chat message"),
    IntegrityCheck(
        code="ACTIVE_USER_INACTIVE_TENANT",
        severity=WARN,
        description="Active user belongs to a tenant that is inactive or suspended",
        tables=("users", "tenants"),
        from_where=(
            "FROM users t JOIN tenants p ON p.id = t.tenant_id "
            "WHERE t.is_active = :is_active AND p.status IN (:inactive, :suspended)"
        ),
        params={
            "is_active": True,
            "inactive": TenantStatus.INACTIVE,
            "suspended": TenantStatus.SUSPENDED,
        },
    ),
    IntegrityCheck(
        code="USER_WITHOUT_TENANT",
        severity=INFO,
        description="Non-platform user has no tenant association",
        tables=("users",),
        from_where="FROM users t WHERE t.tenant_id IS NULL AND (t.role IS NULL OR t.role <> :super_role)",
        params={"super_role": UserRole.SUPER_USER},
    ),
)


class IntegrityChecker:
    def __init__(self, settings: TenancySettings, checks: tuple[IntegrityCheck, ...] = CHECKS):
        self.settings = settings
        self.checks = checks

    def evaluate(self, check: IntegrityCheck) -> IntegrityIssue:
        """Run one check: a COUNT and, when non-zero, a capped sample."""
        count = int(
            db.session.execute(sa.text(f"SELECT COUNT(*) {check.from_where}"), check.params).scalar() or 0
        )
        sample_ids: list = []
        if count:
            sample_ids = [
                r[0] for r in db.session.execute(
                    sa.text(f"SELECT t.id {check.from_where} ORDER BY t.id LIMIT :limit"),
                    {**check.params, "limit": self.settings.sample_limit},
                )
            ]
        return IntegrityIssue(
            code=check.code,
            severity=check.severity,
            count=count,
            sample_ids=sample_ids,
            description=check.description,
        )

    def run(self) -> dict:
        """Evaluate the whole catalog; a failing check is listed, not raised.

        Only checks with a non-zero count appear in ``issues``.
        """
        probe = SchemaProbe()
        issues: list[IntegrityIssue] = []
        failed: list[dict] = []
        for check in self.checks:
            missing = [t for t in check.tables if not probe.has_table(t)]
            if missing:
                logger.warning("Integrity check %s skipped: missing %s", check.code, ", ".join(missing))
                failed.append({"code": check.code, "error": f"missing tables: {', '.join(missing)}"})
                continue
            try:
                issue = self.evaluate(check)
            except SQLAlchemyError as exc:
                db.session.rollback()
                logger.warning("Integrity check %s failed: %s", check.code, exc)
                failed.append({"code": check.code, "error": str(exc)})
                continue
            if issue.count > 0:
                issues.append(issue)

        return {
            "issues": [i.to_dict() for i in issues],
            "total_issues": len(issues),
            "blocker_count": sum(1 for i in issues if i.severity == BLOCKER),
            "warn_count": sum(1 for i in issues if i.severity == WARN),
            "info_count": sum(1 for i in issues if i.severity == INFO),
            "failed_checks": failed,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
