"""
Canonical enums for Bounty Triage records.
"""

from enum import Enum


class IssueStatus(str, Enum):
    """Review status of a mirrored issue."""

    UNREVIEWED = "unreviewed"
    VALID = "valid"
    INVALID = "invalid"
    CLOSED = "closed"


# Statuses a reviewer may assign directly.
REVIEW_STATUSES = frozenset({IssueStatus.VALID, IssueStatus.INVALID})


class ReporterRole(str, Enum):
    """Role classification of a reporter identity."""

    REPORTER = "reporter"
    REVIEWER = "reviewer"


class AuditAction(str, Enum):
    """Kinds of changes recorded in the audit log."""

    REVIEWED = "reviewed"
    CLOSED = "closed"
    LOCKED = "locked"
    ROLE_CHANGED = "role_changed"
    RECOMPUTED = "recomputed"
