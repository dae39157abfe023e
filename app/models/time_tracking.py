"""Time tracking models — completed time entries and running timers."""

from app.models import db
from app.models.base import TenantScopedModel


class TimeEntry(TenantScopedModel):
    __tablename__ = "time_entries"

    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True
    )
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=True
    )
    task_id = db.Column(
        db.Integer, db.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=True
    )
    description = db.Column(db.Text)
    duration_seconds = db.Column(db.Integer, nullable=False, default=0)


class ActiveTimer(TenantScopedModel):
    __tablename__ = "active_timers"

    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=True
    )
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=True
    )
    task_id = db.Column(
        db.Integer, db.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=True
    )
    description = db.Column(db.Text)
