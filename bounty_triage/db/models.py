"""
SQLAlchemy models for Bounty Triage.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Enum,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.sql import func

from ..enums import IssueStatus, ReporterRole
from .base import Base

issue_status_enum = Enum(
    *[s.value for s in IssueStatus], name="issue_status"
)
reporter_role_enum = Enum(
    *[r.value for r in ReporterRole], name="reporter_role"
)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value else None


class IssueModel(Base):
    """A GitHub issue mirrored into the local store.

    Keyed by the upstream issue id, which never changes. Content fields are
    owned by the sync engine; status and marked_* fields by reviewers.
    ``version`` increases on every write and backs the conditional updates.
    """

    __tablename__ = "issues"

    # External identity
    github_issue_id = Column(BigInteger, primary_key=True, autoincrement=False)
    github_number = Column(Integer, nullable=False)
    repo = Column(String(200), nullable=False, index=True)
    org = Column(String(200), nullable=False)

    # Content mirrored from upstream
    title = Column(String(1024), nullable=False, default="")
    body = Column(Text, nullable=False, default="")
    url = Column(String(2048), nullable=False, default="")
    reporter = Column(String(200), nullable=False, index=True)
    reporter_team = Column(String(200), nullable=False, default="Unknown Team")
    labels = Column(JSON, nullable=False, default=list)

    # Timestamps
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    received_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    # Review state
    status = Column(
        issue_status_enum,
        nullable=False,
        default=IssueStatus.UNREVIEWED.value,
        index=True,
    )
    marked_by = Column(String(200), nullable=True)
    marked_at = Column(DateTime(timezone=True), nullable=True)
    immutable = Column(Boolean, nullable=False, default=False)

    version = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        Index("ix_issues_reporter_status", "reporter", "status"),
        Index("ix_issues_created_at", "created_at"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "github_issue_id": self.github_issue_id,
            "github_number": self.github_number,
            "repo": self.repo,
            "org": self.org,
            "title": self.title,
            "body": self.body,
            "url": self.url,
            "reporter": self.reporter,
            "reporter_team": self.reporter_team,
            "labels": list(self.labels or []),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "received_at": _iso(self.received_at),
            "status": self.status,
            "marked_by": self.marked_by,
            "marked_at": _iso(self.marked_at),
            "immutable": self.immutable,
            "version": self.version,
        }


class ReporterModel(Base):
    """Aggregate points for one reporter identity."""

    __tablename__ = "reporters"

    github_username = Column(String(200), primary_key=True)
    role = Column(
        reporter_role_enum,
        nullable=False,
        default=ReporterRole.REPORTER.value,
        index=True,
    )
    total_points = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    __table_args__ = (
        Index("ix_reporters_total_points", "total_points"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "github_username": self.github_username,
            "role": self.role,
            "total_points": self.total_points,
            "created_at": _iso(self.created_at),
        }
