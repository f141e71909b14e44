"""
Issue synchronization engine.

Mirrors the issues of every configured repository into the local store.
Repositories are fetched concurrently and merged independently; a failing
repository is logged and skipped without affecting the others.

Each fetched issue is reconciled with its local record by a merge-upsert
whose outcome is looked up in ``MERGE_TABLE``. Writes are conditional on the
record's ``version`` so overlapping sync passes and reviewer actions cannot
overwrite each other. A content update never writes ``status``: only an
upstream closure changes it.
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

import structlog
from pydantic import ValidationError
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .config import Settings
from .db.audit_service import AuditService
from .db.base import Database, insert_or_ignore
from .db.models import IssueModel, as_utc
from .enums import AuditAction, IssueStatus
from .errors import ConcurrentUpdateError, TriageError, UpstreamUnavailableError
from .github.client import IssueSource
from .github.models import UpstreamIssue
from .scoring import score_delta
from .services import ReporterService

logger = structlog.get_logger(__name__)


class MergeAction(str, Enum):
    """What a merge-upsert does with one fetched issue."""

    CREATE = "create"
    CREATE_CLOSED = "create_closed"
    SKIP_LOCKED = "skip_locked"
    SKIP_UNCHANGED = "skip_unchanged"
    UPDATE = "update"
    UPDATE_CLOSE = "update_close"


_BOOLS = (False, True)

# (record_exists, immutable, stale, upstream_closed) -> action
# "stale" means the fetched updated_at is not newer than the stored one.
MERGE_TABLE: Dict[Tuple[bool, bool, bool, bool], MergeAction] = {
    # No local record: immutable/stale cannot apply
    **{(False, i, s, False): MergeAction.CREATE for i in _BOOLS for s in _BOOLS},
    **{(False, i, s, True): MergeAction.CREATE_CLOSED for i in _BOOLS for s in _BOOLS},
    # Locked records ignore upstream entirely
    **{(True, True, s, c): MergeAction.SKIP_LOCKED for s in _BOOLS for c in _BOOLS},
    (True, False, True, False): MergeAction.SKIP_UNCHANGED,
    (True, False, True, True): MergeAction.SKIP_UNCHANGED,
    (True, False, False, False): MergeAction.UPDATE,
    (True, False, False, True): MergeAction.UPDATE_CLOSE,
}


def decide_merge(
    exists: bool, immutable: bool, stale: bool, upstream_closed: bool
) -> MergeAction:
    """Look up the merge action for one fetched issue."""
    return MERGE_TABLE[(bool(exists), bool(immutable), bool(stale), bool(upstream_closed))]


@dataclass
class SyncResult:
    """Counts for one sync pass (or one repository of it)."""

    repositories_synced: int = 0
    repositories_failed: int = 0
    created: int = 0
    updated: int = 0
    closed: int = 0
    unchanged: int = 0
    locked: int = 0
    pull_requests: int = 0
    errors: int = 0
    duration_seconds: float = 0.0
    failed_repositories: List[str] = field(default_factory=list)

    _COUNTERS = {
        MergeAction.CREATE: "created",
        MergeAction.CREATE_CLOSED: "created",
        MergeAction.UPDATE: "updated",
        MergeAction.UPDATE_CLOSE: "closed",
        MergeAction.SKIP_UNCHANGED: "unchanged",
        MergeAction.SKIP_LOCKED: "locked",
    }

    def record(self, action: MergeAction) -> None:
        name = self._COUNTERS[action]
        setattr(self, name, getattr(self, name) + 1)

    def merge(self, other: "SyncResult") -> None:
        for name in (
            "repositories_synced",
            "repositories_failed",
            "created",
            "updated",
            "closed",
            "unchanged",
            "locked",
            "pull_requests",
            "errors",
        ):
            setattr(self, name, getattr(self, name) + getattr(other, name))
        self.failed_repositories.extend(other.failed_repositories)

    @property
    def processed(self) -> int:
        """Issues that went through a merge-upsert."""
        return self.created + self.updated + self.closed + self.unchanged + self.locked

    def to_dict(self) -> Dict[str, Any]:
        return {
            "repositories_synced": self.repositories_synced,
            "repositories_failed": self.repositories_failed,
            "failed_repositories": list(self.failed_repositories),
            "created": self.created,
            "updated": self.updated,
            "closed": self.closed,
            "unchanged": self.unchanged,
            "locked": self.locked,
            "pull_requests": self.pull_requests,
            "errors": self.errors,
            "processed": self.processed,
            "duration_seconds": round(self.duration_seconds, 2),
        }


class SyncEngine:
    """Reconciles local issue records with the upstream repositories.

    Passes may overlap: a manual trigger can run while a scheduled pass is in
    flight. Scheduled callers pass ``skip_if_running=True`` to stand down
    instead.
    """

    def __init__(
        self,
        database: Database,
        source: IssueSource,
        org: str,
        repositories: Sequence[str],
        max_workers: int = 4,
        repo_timeout: Optional[float] = None,
        max_retries: int = 5,
    ):
        self.database = database
        self.source = source
        self.org = org
        self.repositories = list(repositories)
        self.max_workers = max_workers
        self.repo_timeout = repo_timeout
        self.max_retries = max_retries

        self._lock = threading.Lock()
        self._active_runs = 0

    @classmethod
    def from_settings(
        cls, database: Database, source: IssueSource, settings: Settings
    ) -> "SyncEngine":
        return cls(
            database=database,
            source=source,
            org=settings.github_org,
            repositories=settings.repositories,
            max_workers=settings.sync_max_workers,
            repo_timeout=settings.sync_repo_timeout_seconds,
            max_retries=settings.review_max_retries,
        )

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._active_runs > 0

    def sync_all(self, skip_if_running: bool = False) -> Optional[SyncResult]:
        """Run one sync pass over every configured repository.

        Returns:
            The pass counts, or None if skipped because another pass is running
        """
        with self._lock:
            if skip_if_running and self._active_runs:
                logger.info("Sync pass already running, skipping")
                return None
            self._active_runs += 1

        try:
            return self._run_pass()
        finally:
            with self._lock:
                self._active_runs -= 1

    def _run_pass(self) -> SyncResult:
        started = time.monotonic()
        result = SyncResult()

        if not self.repositories:
            logger.warning("No repositories configured, nothing to sync")
            return result

        logger.info("Starting sync pass", org=self.org, repositories=self.repositories)

        workers = min(self.max_workers, len(self.repositories))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="sync") as pool:
            futures = {
                pool.submit(self.sync_repository, repo): repo
                for repo in self.repositories
            }
            for future in as_completed(futures):
                repo = futures[future]
                try:
                    result.merge(future.result())
                except UpstreamUnavailableError as e:
                    result.repositories_failed += 1
                    result.failed_repositories.append(repo)
                    logger.warning(
                        "Skipping repository, upstream unavailable",
                        repo=repo,
                        status=e.status,
                        error=e.reason,
                    )
                except Exception as e:
                    result.repositories_failed += 1
                    result.failed_repositories.append(repo)
                    logger.exception("Unexpected error syncing repository", repo=repo, error=str(e))

        result.duration_seconds = time.monotonic() - started
        logger.info("Sync pass complete", **result.to_dict())
        return result

    def sync_repository(self, repo: str) -> SyncResult:
        """Fetch one repository and merge its issues.

        Raises:
            UpstreamUnavailableError: the repository could not be fetched
        """
        entries = self.source.list_issues(self.org, repo, timeout=self.repo_timeout)
        result = SyncResult(repositories_synced=1)

        with self.database.session() as db:
            for entry in entries:
                try:
                    issue = UpstreamIssue.model_validate(entry)
                except ValidationError as e:
                    result.errors += 1
                    logger.error(
                        "Skipping malformed upstream issue",
                        repo=repo,
                        issue_id=entry.get("id") if isinstance(entry, dict) else None,
                        error=str(e),
                    )
                    continue

                if issue.is_pull_request:
                    result.pull_requests += 1
                    continue

                try:
                    action = self.merge_upsert(db, repo, issue)
                except (SQLAlchemyError, TriageError) as e:
                    db.rollback()
                    result.errors += 1
                    logger.error(
                        "Failed to save issue",
                        repo=repo,
                        issue_id=issue.id,
                        number=issue.number,
                        error=str(e),
                    )
                    continue

                result.record(action)

        logger.info(
            "Repository synced",
            repo=repo,
            fetched=len(entries),
            created=result.created,
            updated=result.updated,
            closed=result.closed,
            unchanged=result.unchanged,
            locked=result.locked,
            errors=result.errors,
        )
        return result

    def merge_upsert(self, db: Session, repo: str, issue: UpstreamIssue) -> MergeAction:
        """Reconcile one fetched issue with its local record and commit.

        Raises:
            ConcurrentUpdateError: the record kept changing underneath
        """
        for _ in range(self.max_retries):
            existing = db.get(IssueModel, issue.id, populate_existing=True)

            if existing is None:
                action = decide_merge(False, False, False, issue.is_closed)
                if self._insert(db, repo, issue, action):
                    db.commit()
                    logger.debug("Saved issue", repo=repo, number=issue.number)
                    return action
                # Created by an overlapping pass; decide again against it
                db.rollback()
                continue

            stale = issue.updated_at <= as_utc(existing.updated_at)
            action = decide_merge(True, existing.immutable, stale, issue.is_closed)

            if action in (MergeAction.SKIP_LOCKED, MergeAction.SKIP_UNCHANGED):
                db.rollback()
                return action

            if self._update(db, repo, existing, issue, action):
                db.commit()
                logger.debug("Updated issue", repo=repo, number=issue.number, action=action.value)
                return action
            db.rollback()

        raise ConcurrentUpdateError(issue.id, self.max_retries)

    def _content(self, repo: str, issue: UpstreamIssue) -> Dict[str, Any]:
        return {
            "github_number": issue.number,
            "repo": repo,
            "org": self.org,
            "title": issue.title,
            "body": issue.body or "",
            "url": issue.html_url,
            "labels": issue.labels,
            "created_at": issue.created_at,
            "updated_at": issue.updated_at,
            "received_at": datetime.now(timezone.utc),
        }

    def _insert(
        self, db: Session, repo: str, issue: UpstreamIssue, action: MergeAction
    ) -> bool:
        status = (
            IssueStatus.CLOSED if action == MergeAction.CREATE_CLOSED else IssueStatus.UNREVIEWED
        )
        values = self._content(repo, issue)
        values.update(
            github_issue_id=issue.id,
            reporter=issue.reporter,
            reporter_team="Unknown Team",
            status=status.value,
            immutable=False,
            version=1,
        )
        return insert_or_ignore(db, IssueModel, values, key=("github_issue_id",))

    def _update(
        self,
        db: Session,
        repo: str,
        existing: IssueModel,
        issue: UpstreamIssue,
        action: MergeAction,
    ) -> bool:
        values = self._content(repo, issue)
        values["version"] = IssueModel.version + 1
        closing = action == MergeAction.UPDATE_CLOSE
        if closing:
            values["status"] = IssueStatus.CLOSED.value

        result = db.execute(
            update(IssueModel)
            .where(
                IssueModel.github_issue_id == existing.github_issue_id,
                IssueModel.version == existing.version,
                IssueModel.immutable.is_(False),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False

        if closing and existing.status != IssueStatus.CLOSED.value:
            audit = AuditService(db)
            delta = score_delta(existing.status, IssueStatus.CLOSED)
            if delta:
                # Closing a reviewed issue withdraws its points
                ReporterService(db, audit).increment(existing.reporter, delta)
            audit.record(
                AuditAction.CLOSED,
                "Issue",
                existing.github_issue_id,
                before={"status": existing.status},
                after={"status": IssueStatus.CLOSED.value, "delta": delta},
                note=f"Closed upstream in {self.org}/{repo}",
            )
            logger.info(
                "Issue closed upstream",
                repo=repo,
                issue_id=existing.github_issue_id,
                previous_status=existing.status,
                reporter=existing.reporter,
                delta=delta,
            )

        return True
