"""
Audit Log Service.

Records audit entries inside the caller's transaction: entries are added and
flushed but never committed here, so a rolled-back change leaves no trail.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import desc
from sqlalchemy.orm import Session

from ..enums import AuditAction
from .audit_models import AuditLogModel

SYSTEM_ACTOR = "system"


class AuditService:
    """Service for managing audit log entries.

    Usage:
        audit = AuditService(db_session)
        audit.record(AuditAction.REVIEWED, "Issue", issue_id,
                     before={"status": "unreviewed"}, after={"status": "valid"},
                     actor_id="alice")
        db_session.commit()
    """

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        action: Union[AuditAction, str],
        entity_kind: str,
        entity_id: Union[int, str],
        before: Optional[Dict[str, Any]] = None,
        after: Optional[Dict[str, Any]] = None,
        actor_id: str = SYSTEM_ACTOR,
        note: Optional[str] = None,
    ) -> AuditLogModel:
        """Add an audit entry to the current transaction.

        Args:
            action: What happened
            entity_kind: Type of entity ("Issue", "Reporter", ...)
            entity_id: ID of the entity
            before: State of the changed fields before the action
            after: State of the changed fields after the action
            actor_id: Identity that performed the action
            note: Optional human-readable note

        Returns:
            The pending AuditLogModel
        """
        entry = AuditLogModel(
            id=str(uuid.uuid4()),
            ts=datetime.now(timezone.utc),
            actor_id=actor_id,
            action=AuditAction(action).value,
            entity_kind=entity_kind,
            entity_id=str(entity_id),
            before=before,
            after=after,
            note=note,
        )

        self.db.add(entry)
        self.db.flush()
        return entry

    def query_by_entity(
        self,
        entity_kind: str,
        entity_id: Union[int, str],
        limit: int = 100,
        offset: int = 0,
    ) -> List[AuditLogModel]:
        """Get audit history for a specific entity, newest first."""
        return (
            self.db.query(AuditLogModel)
            .filter(
                AuditLogModel.entity_kind == entity_kind,
                AuditLogModel.entity_id == str(entity_id),
            )
            .order_by(desc(AuditLogModel.ts))
            .offset(offset)
            .limit(limit)
            .all()
        )

    def query_recent(
        self,
        limit: int = 50,
        action: Optional[str] = None,
    ) -> List[AuditLogModel]:
        """Get most recent audit entries, optionally for one action type."""
        query = self.db.query(AuditLogModel)

        if action:
            query = query.filter(AuditLogModel.action == action)

        return query.order_by(desc(AuditLogModel.ts)).limit(limit).all()
