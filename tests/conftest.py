"""Test configuration and fixtures."""

import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Union

import pytest

from bounty_triage.db.base import Database
from bounty_triage.db.models import IssueModel
from bounty_triage.github.client import IssueSource
from bounty_triage.sync import SyncEngine

BASE_TIME = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def at(minutes: int) -> datetime:
    """A fixed UTC timestamp ``minutes`` after BASE_TIME."""
    return BASE_TIME + timedelta(minutes=minutes)


def github_issue(
    issue_id: int,
    number: Optional[int] = None,
    login: Optional[str] = "octocat",
    title: str = "Login page crashes",
    updated: int = 0,
    state: str = "open",
    labels: Optional[List[str]] = None,
    pull_request: bool = False,
    repo: str = "web",
) -> Dict[str, Any]:
    """Build a payload shaped like one entry of GET /repos/{org}/{repo}/issues."""
    number = number if number is not None else issue_id
    payload: Dict[str, Any] = {
        "id": issue_id,
        "number": number,
        "title": title,
        "body": f"Steps to reproduce #{number}",
        "html_url": f"https://github.com/acme/{repo}/issues/{number}",
        "user": {"login": login, "id": 1} if login else None,
        "labels": [{"name": name, "color": "d73a4a"} for name in (labels or [])],
        "state": state,
        "created_at": BASE_TIME.isoformat(),
        "updated_at": at(updated).isoformat(),
    }
    if pull_request:
        payload["pull_request"] = {"url": f"https://api.github.com/pulls/{number}"}
    return payload


class FakeIssueSource(IssueSource):
    """In-memory issue source; a repository mapped to an exception raises it."""

    def __init__(self, repos: Optional[Dict[str, Union[List[Dict[str, Any]], Exception]]] = None):
        self.repos: Dict[str, Union[List[Dict[str, Any]], Exception]] = dict(repos or {})
        self.calls: List[str] = []
        self.closed = False
        self._lock = threading.Lock()
        # Optional hook run inside list_issues, e.g. to block a pass
        self.on_list: Optional[Callable[[str], None]] = None

    def list_issues(self, org, repo, timeout=None):
        with self._lock:
            self.calls.append(repo)
        if self.on_list:
            self.on_list(repo)
        entries = self.repos.get(repo, [])
        if isinstance(entries, Exception):
            raise entries
        return [dict(entry) for entry in entries]

    def close(self):
        self.closed = True


@pytest.fixture
def database():
    """Fresh in-memory database for each test."""
    db = Database.from_url("sqlite://")
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def file_database(tmp_path):
    """File-backed database; each session gets its own connection."""
    db = Database.from_url(f"sqlite:///{tmp_path / 'triage.db'}")
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def db_session(database):
    with database.session() as session:
        yield session


@pytest.fixture
def source():
    return FakeIssueSource()


@pytest.fixture
def engine(database, source):
    return SyncEngine(database, source, org="acme", repositories=["web"], max_workers=1)


@pytest.fixture
def add_issue():
    """Insert an issue row directly, bypassing the sync engine."""

    def _add(db, issue_id, reporter="octocat", status="unreviewed", immutable=False, repo="web"):
        issue = IssueModel(
            github_issue_id=issue_id,
            github_number=issue_id,
            repo=repo,
            org="acme",
            title=f"Issue {issue_id}",
            body="",
            url=f"https://github.com/acme/{repo}/issues/{issue_id}",
            reporter=reporter,
            labels=[],
            created_at=at(issue_id),
            updated_at=at(issue_id),
            received_at=at(issue_id),
            status=status,
            immutable=immutable,
            version=1,
        )
        db.add(issue)
        db.commit()
        return issue

    return _add
