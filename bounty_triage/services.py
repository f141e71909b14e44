"""
Bounty Triage Service Layer.

Database operations for issues and reporters with business rule validation:
review decisions and their score deltas, issue locking, role management,
the leaderboard, and full score recomputation.

Every state change is scoped to one issue or one reporter and applied with
conditional statements (compare-and-swap on ``IssueModel.version``, atomic
``total_points = total_points + delta``), so concurrent requests cannot lose
a score delta. The score recomputation is the only bulk write.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

import structlog
from sqlalchemy import desc, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .db.audit_models import AuditLogModel
from .db.audit_service import SYSTEM_ACTOR, AuditService
from .db.base import insert_or_ignore
from .db.models import IssueModel, ReporterModel
from .enums import REVIEW_STATUSES, AuditAction, IssueStatus, ReporterRole
from .errors import (
    ConcurrentUpdateError,
    InvalidStatusError,
    IssueLockedError,
    IssueNotFoundError,
    ScoreUpdateFailedError,
)
from .scoring import points_for_status, score_delta

logger = structlog.get_logger(__name__)

DEFAULT_MAX_RETRIES = 5


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class IssueService:
    """Service for reading and locking mirrored issues."""

    def __init__(self, db: Session, audit: Optional[AuditService] = None):
        self.db = db
        self.audit = audit or AuditService(db)

    def get(self, issue_id: int) -> Optional[IssueModel]:
        """Get an Issue by its GitHub issue id."""
        return self.db.get(IssueModel, issue_id, populate_existing=True)

    def list(
        self,
        status: Optional[str] = None,
        reporter: Optional[str] = None,
        repo: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[IssueModel]:
        """List Issues with optional filtering, newest first."""
        query = self.db.query(IssueModel)

        if status:
            query = query.filter(IssueModel.status == status)
        if reporter:
            query = query.filter(IssueModel.reporter == reporter)
        if repo:
            query = query.filter(IssueModel.repo == repo)

        return (
            query.order_by(desc(IssueModel.created_at), desc(IssueModel.github_issue_id))
            .offset(offset)
            .limit(limit)
            .all()
        )

    def lock(self, issue_id: int, actor_id: str = SYSTEM_ACTOR) -> IssueModel:
        """Permanently lock an Issue against sync and review changes.

        Locking an already locked Issue is a no-op.

        Raises:
            IssueNotFoundError: no Issue with this id
        """
        result = self.db.execute(
            update(IssueModel)
            .where(
                IssueModel.github_issue_id == issue_id,
                IssueModel.immutable.is_(False),
            )
            .values(immutable=True, version=IssueModel.version + 1)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 1:
            self.audit.record(
                AuditAction.LOCKED,
                "Issue",
                issue_id,
                before={"immutable": False},
                after={"immutable": True},
                actor_id=actor_id,
            )
            self.db.commit()
            logger.info("Issue locked", issue_id=issue_id, actor=actor_id)
        else:
            self.db.rollback()

        issue = self.get(issue_id)
        if issue is None:
            raise IssueNotFoundError(issue_id)
        return issue

    def history(self, issue_id: int, limit: int = 100) -> List[AuditLogModel]:
        """Audit trail of an Issue, newest first."""
        return self.audit.query_by_entity("Issue", issue_id, limit=limit)


class ReporterService:
    """Service for reporter score records."""

    def __init__(self, db: Session, audit: Optional[AuditService] = None):
        self.db = db
        self.audit = audit or AuditService(db)

    def get(self, username: str) -> Optional[ReporterModel]:
        """Get a Reporter by GitHub username."""
        return self.db.get(ReporterModel, username, populate_existing=True)

    def ensure(self, username: str, total_points: int = 0) -> bool:
        """Create the Reporter with a default role if it does not exist.

        Does not commit. Returns True if the record was created.
        """
        return insert_or_ignore(
            self.db,
            ReporterModel,
            {
                "github_username": username,
                "role": ReporterRole.REPORTER.value,
                "total_points": total_points,
                "created_at": utc_now(),
            },
            key=("github_username",),
        )

    def increment(self, username: str, delta: int) -> None:
        """Atomically add ``delta`` to a Reporter's total, creating it at zero.

        Does not commit; the caller owns the transaction.
        """
        self.ensure(username)
        if delta:
            self.db.execute(
                update(ReporterModel)
                .where(ReporterModel.github_username == username)
                .values(total_points=ReporterModel.total_points + delta)
                .execution_options(synchronize_session=False)
            )

    def leaderboard(
        self,
        limit: int = 50,
        exclude_reviewers: bool = False,
    ) -> List[ReporterModel]:
        """Reporters ranked by total points, highest first."""
        query = self.db.query(ReporterModel)

        if exclude_reviewers:
            query = query.filter(ReporterModel.role != ReporterRole.REVIEWER.value)

        return (
            query.order_by(
                desc(ReporterModel.total_points), ReporterModel.github_username
            )
            .limit(limit)
            .all()
        )

    def set_role(
        self,
        username: str,
        role: Union[ReporterRole, str],
        actor_id: str = SYSTEM_ACTOR,
    ) -> ReporterModel:
        """Promote or demote a Reporter, creating the record if needed."""
        role = ReporterRole(role)
        self.ensure(username)
        reporter = self.get(username)
        old_role = reporter.role

        if old_role != role.value:
            reporter.role = role.value
            self.audit.record(
                AuditAction.ROLE_CHANGED,
                "Reporter",
                username,
                before={"role": old_role},
                after={"role": role.value},
                actor_id=actor_id,
            )
            logger.info("Reporter role changed", reporter=username, role=role.value)

        self.db.commit()
        return self.get(username)


class ReviewService:
    """Applies reviewer decisions and keeps reporter totals consistent."""

    def __init__(
        self,
        db: Session,
        audit: Optional[AuditService] = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ):
        self.db = db
        self.audit = audit or AuditService(db)
        self.reporters = ReporterService(db, self.audit)
        self.max_retries = max_retries

    def set_status(
        self,
        issue_id: int,
        new_status: Union[IssueStatus, str],
        reviewer: str,
    ) -> Tuple[IssueModel, ReporterModel]:
        """Mark an Issue valid or invalid and apply the score delta.

        The status write and the reporter increment commit together. The
        status write is a compare-and-swap on ``version``; losing the race to
        another writer re-reads the Issue so the delta is computed from the
        status that actually preceded this decision.

        Returns:
            The updated Issue and its Reporter

        Raises:
            InvalidStatusError: ``new_status`` is not valid/invalid
            IssueNotFoundError: no Issue with this id
            IssueLockedError: the Issue is immutable
            ScoreUpdateFailedError: the increment failed; nothing was changed
            ConcurrentUpdateError: lost the race ``max_retries`` times
        """
        try:
            status = IssueStatus(new_status)
        except ValueError:
            raise InvalidStatusError(new_status)
        if status not in REVIEW_STATUSES:
            raise InvalidStatusError(new_status)

        for attempt in range(1, self.max_retries + 1):
            issue = self.db.get(IssueModel, issue_id, populate_existing=True)
            if issue is None:
                self.db.rollback()
                raise IssueNotFoundError(issue_id)
            if issue.immutable:
                self.db.rollback()
                raise IssueLockedError(issue_id)

            old_status = issue.status
            delta = score_delta(old_status, status)

            result = self.db.execute(
                update(IssueModel)
                .where(
                    IssueModel.github_issue_id == issue_id,
                    IssueModel.version == issue.version,
                    IssueModel.immutable.is_(False),
                )
                .values(
                    status=status.value,
                    marked_by=reviewer,
                    marked_at=utc_now(),
                    version=IssueModel.version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                self.db.rollback()
                logger.info(
                    "Issue changed during review, retrying",
                    issue_id=issue_id,
                    attempt=attempt,
                )
                continue

            try:
                self.reporters.increment(issue.reporter, delta)
                self.audit.record(
                    AuditAction.REVIEWED,
                    "Issue",
                    issue_id,
                    before={"status": old_status},
                    after={"status": status.value, "delta": delta},
                    actor_id=reviewer,
                )
                self.db.commit()
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error(
                    "Score update failed, review rolled back",
                    issue_id=issue_id,
                    reporter=issue.reporter,
                    delta=delta,
                    error=str(e),
                )
                raise ScoreUpdateFailedError(issue_id, issue.reporter, str(e)) from e

            logger.info(
                "Issue reviewed",
                issue_id=issue_id,
                reviewer=reviewer,
                old_status=old_status,
                new_status=status.value,
                reporter=issue.reporter,
                delta=delta,
            )
            issue = self.db.get(IssueModel, issue_id, populate_existing=True)
            reporter = self.reporters.get(issue.reporter)
            return issue, reporter

        raise ConcurrentUpdateError(issue_id, self.max_retries)


@dataclass
class RecomputeResult:
    """Outcome of a full score recomputation."""

    issues_scanned: int = 0
    reporters_reset: int = 0
    reporters_updated: int = 0
    reporters_created: int = 0
    totals: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "issues_scanned": self.issues_scanned,
            "reporters_reset": self.reporters_reset,
            "reporters_updated": self.reporters_updated,
            "reporters_created": self.reporters_created,
            "totals": dict(self.totals),
        }


class ScoreService:
    """Rebuilds reporter totals from the issue records."""

    STREAM_BATCH_SIZE = 500

    def __init__(self, db: Session, audit: Optional[AuditService] = None):
        self.db = db
        self.audit = audit or AuditService(db)
        self.reporters = ReporterService(db, self.audit)

    def recompute_all_scores(self, actor_id: str = SYSTEM_ACTOR) -> RecomputeResult:
        """Reset every total to zero and re-add the points of every Issue.

        Runs in one transaction. Reporter records are never deleted; a
        reporter without a record is only created when their total is
        non-zero. Reviews committed while this runs on a database without
        snapshot isolation may be overwritten; running it again converges.
        """
        result = RecomputeResult()

        result.reporters_reset = self.db.execute(
            update(ReporterModel)
            .values(total_points=0)
            .execution_options(synchronize_session=False)
        ).rowcount

        totals: Dict[str, int] = defaultdict(int)
        rows = self.db.execute(
            select(IssueModel.reporter, IssueModel.status).execution_options(
                yield_per=self.STREAM_BATCH_SIZE
            )
        )
        for reporter, status in rows:
            result.issues_scanned += 1
            totals[reporter] += points_for_status(status)

        known = set(self.db.scalars(select(ReporterModel.github_username)))

        for username, total in totals.items():
            if username not in known:
                if total == 0:
                    continue
                if self.reporters.ensure(username, total_points=total):
                    result.reporters_created += 1
            self.db.execute(
                update(ReporterModel)
                .where(ReporterModel.github_username == username)
                .values(total_points=total)
                .execution_options(synchronize_session=False)
            )
            result.reporters_updated += 1

        result.totals = dict(totals)

        self.audit.record(
            AuditAction.RECOMPUTED,
            "Leaderboard",
            "all",
            after={
                "issues_scanned": result.issues_scanned,
                "reporters_updated": result.reporters_updated,
                "reporters_created": result.reporters_created,
            },
            actor_id=actor_id,
        )
        self.db.commit()

        logger.info(
            "Scores recomputed",
            issues_scanned=result.issues_scanned,
            reporters_reset=result.reporters_reset,
            reporters_updated=result.reporters_updated,
            reporters_created=result.reporters_created,
        )
        return result
