"""
Append-only audit trail for tenant-association repairs.

Durability is asymmetric: callers commit their data change first, then
record the event here in a separate unit of work. A failed audit insert
is logged and rolled back on its own; it never undoes or fails the repair
that triggered it.
"""

from __future__ import annotations

import json
import logging

from sqlalchemy.exc import SQLAlchemyError

from app.models import db
from app.models.audit import AUDIT_EVENT_TYPES, TenantAuditEvent

logger = logging.getLogger(__name__)


class AuditRecorder:
    def append(
        self,
        *,
        tenant_id: int | None,
        event_type: str,
        message: str,
        actor_user_id: int | None = None,
        metadata: dict | None = None,
    ) -> TenantAuditEvent | None:
        """Insert and commit one event.

        Returns:
            The stored event, or ``None`` when the write failed.

        Raises:
            ValueError: Unknown ``event_type`` (a programming error, not a
                store failure).
        """
        if event_type not in AUDIT_EVENT_TYPES:
            raise ValueError(f"Unknown audit event type: {event_type}")
        event = TenantAuditEvent(
            tenant_id=tenant_id,
            actor_user_id=actor_user_id,
            event_type=event_type,
            message=message,
            metadata_json=json.dumps(metadata or {}, default=str),
        )
        try:
            db.session.add(event)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception(
                "Audit write failed for %s", event_type,
                extra={"event_type": event_type, "tenant_id": tenant_id},
            )
            return None
        logger.info(
            "Audit %s: %s", event_type, message,
            extra={"event_type": event_type, "tenant_id": tenant_id, "actor_user_id": actor_user_id},
        )
        return event
