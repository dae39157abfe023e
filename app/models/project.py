"""Client → Project → Task hierarchy."""

from app.models import db
from app.models.base import TenantScopedModel


class Client(TenantScopedModel):
    """Customer of a tenant; projects are usually delivered for a client."""

    __tablename__ = "clients"

    workspace_id = db.Column(
        db.Integer, db.ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=True
    )
    company_name = db.Column(db.String(200), nullable=False)
    display_name = db.Column(db.String(200))
    email = db.Column(db.String(200))
    status = db.Column(db.String(20), nullable=False, default="active")


class Project(TenantScopedModel):
    __tablename__ = "projects"

    workspace_id = db.Column(
        db.Integer, db.ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=True
    )
    client_id = db.Column(
        db.Integer, db.ForeignKey("clients.id", ondelete="SET NULL"), nullable=True, index=True
    )
    team_id = db.Column(
        db.Integer, db.ForeignKey("teams.id", ondelete="SET NULL"), nullable=True
    )
    name = db.Column(db.String(200), nullable=False)
    status = db.Column(
        db.String(20), nullable=False, default="active",
        comment="active | archived",
    )


class Task(TenantScopedModel):
    __tablename__ = "tasks"

    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=True, index=True
    )
    created_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    title = db.Column(db.String(300), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="todo")
