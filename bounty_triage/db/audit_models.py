"""
Audit Log Database Models.

Every review decision, forced closure, lock, role change and score
recomputation is recorded with before/after snapshots and the acting identity.
"""

from typing import Any, Dict

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Enum,
    Index,
    String,
    Text,
)
from sqlalchemy.sql import func

from ..enums import AuditAction
from .base import Base
from .models import _iso

audit_action_enum = Enum(
    *[a.value for a in AuditAction],
    name="audit_action",
)


class AuditLogModel(Base):
    """Audit log entry, written in the same transaction as the change it describes."""

    __tablename__ = "audit_log"

    id = Column(String(36), primary_key=True)

    ts = Column(
        DateTime(timezone=True),
        nullable=False,
        default=func.now(),
        index=True,
    )

    # "system" for the sync engine and batch jobs
    actor_id = Column(String(200), nullable=False, index=True)

    action = Column(audit_action_enum, nullable=False, index=True)

    entity_kind = Column(String(50), nullable=False)
    entity_id = Column(String(200), nullable=False)

    before = Column(JSON, nullable=True)
    after = Column(JSON, nullable=True)

    note = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_audit_log_entity", "entity_kind", "entity_id"),
        Index("ix_audit_log_entity_ts", "entity_kind", "entity_id", "ts"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "ts": _iso(self.ts),
            "actor_id": self.actor_id,
            "action": self.action,
            "entity_kind": self.entity_kind,
            "entity_id": self.entity_id,
            "before": self.before,
            "after": self.after,
            "note": self.note,
        }
