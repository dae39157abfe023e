"""Chat models — channels and their messages."""

from app.models import db
from app.models.base import TenantScopedModel


class ChatChannel(TenantScopedModel):
    __tablename__ = "chat_channels"

    workspace_id = db.Column(
        db.Integer, db.ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=True
    )
    created_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    name = db.Column(db.String(120), nullable=False)


class ChatMessage(TenantScopedModel):
    __tablename__ = "chat_messages"

    channel_id = db.Column(
        db.Integer, db.ForeignKey("chat_channels.id", ondelete="CASCADE"), nullable=True, index=True
    )
    author_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    body = db.Column(db.Text, nullable=False)
