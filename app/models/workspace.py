"""
Workspace domain models — workspaces, memberships, teams, tenant settings.

Models:
    - Workspace: top-level container inside a tenant.
    - WorkspaceMember: user ↔ workspace link (not tenant-scoped itself).
    - Team: group of users inside a workspace.
    - AppSetting: tenant-level key/value setting; carries tenant_id directly.
"""

from app.models import db
from app.models.base import TenantScopedModel


class Workspace(TenantScopedModel):
    __tablename__ = "workspaces"

    name = db.Column(db.String(200), nullable=False)
    is_primary = db.Column(db.Boolean, default=False)
    created_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )


class WorkspaceMember(db.Model):
    __tablename__ = "workspace_members"

    id = db.Column(db.Integer, primary_key=True)
    workspace_id = db.Column(
        db.Integer, db.ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    role = db.Column(db.String(30), default="member")

    __table_args__ = (
        db.UniqueConstraint("workspace_id", "user_id", name="uq_workspace_member"),
    )


class Team(TenantScopedModel):
    __tablename__ = "teams"

    workspace_id = db.Column(
        db.Integer, db.ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=True
    )
    name = db.Column(db.String(200), nullable=False)


class AppSetting(TenantScopedModel):
    __tablename__ = "app_settings"

    key = db.Column(db.String(100), nullable=False)
    value = db.Column(db.Text)
