"""
TenantScopedModel — Abstract base class for tenant-scoped tables.

Unlike a fully isolated table, ``tenant_id`` is nullable here: rows written
before tenancy was enforced may still be missing it. Those rows are what
the remediation services detect, backfill and quarantine.
"""

from datetime import datetime, timezone

from app.models import db


def _utcnow():
    return datetime.now(timezone.utc)


class TenantScopedModel(db.Model):
    """Abstract base for tables whose rows belong to exactly one tenant."""
    __abstract__ = True

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(
        db.Integer,
        db.ForeignKey("tenants.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    created_at = db.Column(db.DateTime, default=_utcnow)
