"""
Tenant audit domain model.

Models:
    - TenantAuditEvent: immutable, append-only record of every mutating
      remediation action (backfill apply, quarantine assign/archive/delete).
"""

import json
from datetime import UTC, datetime

from app.models import db

# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_EVENT_TYPES = {
    "quarantine_tenant_created",
    "tenant_id_backfill_applied",
    "tenant_id_backfill_row_resolved",
    "tenant_id_backfill_row_quarantined",
    "orphans_quarantined",
    "quarantine_row_assigned",
    "quarantine_row_archived",
    "quarantine_row_deleted",
}


class TenantAuditEvent(db.Model):
    """
    Immutable audit trail for tenant-association repairs.

    One row per action. ``metadata_json`` carries the before/after state
    of the repaired row or the per-table counts of a bulk run.
    """

    __tablename__ = "tenant_audit_events"
    __table_args__ = (
        db.Index("ix_tenant_audit_events_tenant", "tenant_id"),
        db.Index("ix_tenant_audit_events_type", "event_type"),
        db.Index("ix_tenant_audit_events_created_at", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    # NULL only for bulk runs that touched no single tenant
    tenant_id = db.Column(
        db.Integer,
        db.ForeignKey("tenants.id", ondelete="SET NULL"),
        nullable=True,
    )
    actor_user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        comment="NULL for system / CLI initiated events",
    )
    event_type = db.Column(db.String(60), nullable=False)
    message = db.Column(db.Text, nullable=False)
    metadata_json = db.Column(db.Text, default="{}")

    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def event_metadata(self) -> dict:
        """Deserialise *metadata_json* to a Python dict."""
        try:
            return json.loads(self.metadata_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def __repr__(self):
        return f"<TenantAuditEvent {self.id}: {self.event_type} tenant={self.tenant_id}>"
