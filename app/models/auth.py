"""
Auth Models — tenants and users.

Tenant lifecycle (create, activate, suspend) is owned elsewhere; the
remediation services only read ``Tenant.status`` and create the single
reserved quarantine tenant.
"""

from datetime import datetime, timezone

from app.models import db


class TenantStatus:
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"
    ISOLATED = "isolated"  # reserved for the quarantine tenant

    ALL = (ACTIVE, INACTIVE, SUSPENDED, ISOLATED)


class UserRole:
    SUPER_USER = "super_user"
    ADMIN = "admin"
    EMPLOYEE = "employee"
    CLIENT = "client"


# ═══════════════════════════════════════════════════════════════
# 1. TENANTS
# ═══════════════════════════════════════════════════════════════
class Tenant(db.Model):
    __tablename__ = "tenants"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(100), unique=True, nullable=False)
    status = db.Column(db.String(20), nullable=False, default=TenantStatus.INACTIVE)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    users = db.relationship("User", back_populates="tenant", lazy="dynamic")

    @property
    def is_quarantine(self):
        return self.status == TenantStatus.ISOLATED

    @classmethod
    def find_by_slug(cls, slug):
        return db.session.execute(
            db.select(cls).where(cls.slug == slug)
        ).scalar_one_or_none()

    @classmethod
    def find_quarantine(cls, slug):
        """The isolated tenant holding ``slug``, or None.

        An ordinary tenant that happens to own the reserved slug is not the
        quarantine tenant and is never returned here.
        """
        tenant = cls.find_by_slug(slug)
        if tenant is None or not tenant.is_quarantine:
            return None
        return tenant

    def __repr__(self):
        return f"<Tenant {self.id}: {self.slug} ({self.status})>"


# ═══════════════════════════════════════════════════════════════
# 2. USERS
# ═══════════════════════════════════════════════════════════════
class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    # NULL for super users (platform level) and for legacy rows awaiting backfill
    tenant_id = db.Column(
        db.Integer, db.ForeignKey("tenants.id", ondelete="SET NULL"), nullable=True
    )
    email = db.Column(db.String(200), unique=True, nullable=False)
    name = db.Column(db.String(200), nullable=False)
    role = db.Column(db.String(20), nullable=False, default=UserRole.EMPLOYEE)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.Index("ix_users_tenant_id", "tenant_id"),
        db.Index("ix_users_role", "role"),
    )

    tenant = db.relationship("Tenant", back_populates="users")
