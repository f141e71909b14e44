"""
Tests for the sync engine.

Verifies:
- Merge decision table
- Creation, idempotence and content updates
- Locked issues and reviewer-owned fields are never touched by sync
- Upstream closure forces the closed status and withdraws points
- Pull requests, malformed entries and failing repositories are isolated
- Overlapping passes
"""

import threading

import pytest
from sqlalchemy.exc import OperationalError

from bounty_triage.db.audit_service import AuditService
from bounty_triage.db.models import IssueModel, ReporterModel
from bounty_triage.enums import AuditAction
from bounty_triage.errors import UpstreamUnavailableError
from bounty_triage.services import IssueService, ReviewService
from bounty_triage.sync import MERGE_TABLE, MergeAction, SyncEngine, SyncResult, decide_merge

from conftest import FakeIssueSource, github_issue


def get_issue(database, issue_id):
    with database.session() as db:
        return db.get(IssueModel, issue_id)


def get_reporter(database, username):
    with database.session() as db:
        return db.get(ReporterModel, username)


class TestDecideMerge:
    """Tests for the merge decision table."""

    def test_table_covers_every_combination(self):
        assert len(MERGE_TABLE) == 16

    @pytest.mark.parametrize(
        "exists, immutable, stale, closed, expected",
        [
            (False, False, False, False, MergeAction.CREATE),
            (False, False, False, True, MergeAction.CREATE_CLOSED),
            (True, True, False, False, MergeAction.SKIP_LOCKED),
            (True, True, False, True, MergeAction.SKIP_LOCKED),
            (True, False, True, False, MergeAction.SKIP_UNCHANGED),
            (True, False, True, True, MergeAction.SKIP_UNCHANGED),
            (True, False, False, False, MergeAction.UPDATE),
            (True, False, False, True, MergeAction.UPDATE_CLOSE),
        ],
    )
    def test_decisions(self, exists, immutable, stale, closed, expected):
        assert decide_merge(exists, immutable, stale, closed) == expected


class TestSyncResult:
    def test_merge_and_to_dict(self):
        total = SyncResult()
        part = SyncResult(repositories_synced=1, created=2, errors=1)
        part.record(MergeAction.UPDATE_CLOSE)
        total.merge(part)
        total.merge(SyncResult(repositories_failed=1, failed_repositories=["api"]))

        data = total.to_dict()
        assert data["repositories_synced"] == 1
        assert data["repositories_failed"] == 1
        assert data["failed_repositories"] == ["api"]
        assert data["created"] == 2
        assert data["closed"] == 1
        assert data["processed"] == 3


class TestCreate:
    def test_new_issues_are_created_unreviewed(self, database, source, engine):
        source.repos["web"] = [
            github_issue(1, labels=["bug", "security"]),
            github_issue(2, login="hacker42"),
        ]

        result = engine.sync_all()

        assert result.created == 2
        assert result.repositories_synced == 1
        issue = get_issue(database, 1)
        assert issue.status == "unreviewed"
        assert issue.reporter == "octocat"
        assert issue.repo == "web"
        assert issue.org == "acme"
        assert issue.labels == ["bug", "security"]
        assert issue.reporter_team == "Unknown Team"
        assert issue.immutable is False
        assert issue.version == 1

    def test_pull_requests_are_not_mirrored(self, database, source, engine):
        source.repos["web"] = [github_issue(1), github_issue(2, pull_request=True)]

        result = engine.sync_all()

        assert result.created == 1
        assert result.pull_requests == 1
        assert get_issue(database, 2) is None

    def test_deleted_user_becomes_ghost(self, database, source, engine):
        source.repos["web"] = [github_issue(1, login=None)]

        engine.sync_all()

        assert get_issue(database, 1).reporter == "ghost"

    def test_issue_closed_before_first_sync_is_created_closed(self, database, source, engine):
        source.repos["web"] = [github_issue(1, state="closed")]

        result = engine.sync_all()

        assert result.created == 1
        assert get_issue(database, 1).status == "closed"
        # No points involved, so no reporter record either
        assert get_reporter(database, "octocat") is None

    def test_sync_does_not_create_reporters(self, database, source, engine):
        source.repos["web"] = [github_issue(1)]

        engine.sync_all()

        assert get_reporter(database, "octocat") is None


class TestUpdate:
    def test_second_pass_is_a_no_op(self, database, source, engine):
        source.repos["web"] = [github_issue(1), github_issue(2)]
        engine.sync_all()
        before = [get_issue(database, i).to_dict() for i in (1, 2)]

        result = engine.sync_all()

        assert [get_issue(database, i).to_dict() for i in (1, 2)] == before
        assert result.created == 0
        assert result.updated == 0
        assert result.unchanged == 2
        assert get_issue(database, 1).version == 1

    def test_newer_upstream_content_is_applied(self, database, source, engine):
        source.repos["web"] = [github_issue(1, title="Crash")]
        engine.sync_all()

        source.repos["web"] = [github_issue(1, title="Crash on login", updated=5, labels=["p1"])]
        result = engine.sync_all()

        assert result.updated == 1
        issue = get_issue(database, 1)
        assert issue.title == "Crash on login"
        assert issue.labels == ["p1"]
        assert issue.version == 2

    def test_older_or_equal_upstream_content_is_ignored(self, database, source, engine):
        source.repos["web"] = [github_issue(1, title="Current", updated=10)]
        engine.sync_all()

        source.repos["web"] = [github_issue(1, title="Stale", updated=3)]
        result = engine.sync_all()

        assert result.unchanged == 1
        assert get_issue(database, 1).title == "Current"

    def test_review_status_survives_content_update(self, database, source, engine):
        source.repos["web"] = [github_issue(1)]
        engine.sync_all()
        with database.session() as db:
            ReviewService(db).set_status(1, "valid", reviewer="rita")

        source.repos["web"] = [github_issue(1, title="Edited", updated=5)]
        engine.sync_all()

        issue = get_issue(database, 1)
        assert issue.title == "Edited"
        assert issue.status == "valid"
        assert issue.marked_by == "rita"
        assert get_reporter(database, "octocat").total_points == 10

    def test_reporter_is_never_rewritten(self, database, source, engine):
        source.repos["web"] = [github_issue(1, login="octocat")]
        engine.sync_all()

        source.repos["web"] = [github_issue(1, login="someone-else", updated=5)]
        engine.sync_all()

        assert get_issue(database, 1).reporter == "octocat"

    def test_locked_issue_is_skipped(self, database, source, engine):
        source.repos["web"] = [github_issue(1, title="Original")]
        engine.sync_all()
        with database.session() as db:
            IssueService(db).lock(1, actor_id="rita")

        source.repos["web"] = [github_issue(1, title="Changed", updated=5, state="closed")]
        result = engine.sync_all()

        assert result.locked == 1
        issue = get_issue(database, 1)
        assert issue.title == "Original"
        assert issue.status == "unreviewed"


class TestUpstreamClosure:
    def test_closing_a_valid_issue_withdraws_its_points(self, database, source, engine):
        source.repos["web"] = [github_issue(1)]
        engine.sync_all()
        with database.session() as db:
            ReviewService(db).set_status(1, "valid", reviewer="rita")

        source.repos["web"] = [github_issue(1, updated=5, state="closed")]
        result = engine.sync_all()

        assert result.closed == 1
        assert get_issue(database, 1).status == "closed"
        assert get_reporter(database, "octocat").total_points == 0

        with database.session() as db:
            entries = AuditService(db).query_by_entity("Issue", 1)
        closed = [e for e in entries if e.action == AuditAction.CLOSED.value]
        assert len(closed) == 1
        assert closed[0].actor_id == "system"
        assert closed[0].before == {"status": "valid"}
        assert closed[0].after["delta"] == -10

    def test_closing_an_invalid_issue_restores_points(self, database, source, engine):
        source.repos["web"] = [github_issue(1)]
        engine.sync_all()
        with database.session() as db:
            ReviewService(db).set_status(1, "invalid", reviewer="rita")
        assert get_reporter(database, "octocat").total_points == -5

        source.repos["web"] = [github_issue(1, updated=5, state="closed")]
        engine.sync_all()

        assert get_reporter(database, "octocat").total_points == 0

    def test_closing_an_unreviewed_issue_creates_no_reporter(self, database, source, engine):
        source.repos["web"] = [github_issue(1)]
        engine.sync_all()

        source.repos["web"] = [github_issue(1, updated=5, state="closed")]
        result = engine.sync_all()

        assert result.closed == 1
        assert get_issue(database, 1).status == "closed"
        assert get_reporter(database, "octocat") is None
        with database.session() as db:
            entries = AuditService(db).query_by_entity("Issue", 1)
        assert [(e.action, e.after["delta"]) for e in entries] == [("closed", 0)]

    def test_reopened_issue_stays_closed(self, database, source, engine):
        source.repos["web"] = [github_issue(1, state="closed")]
        engine.sync_all()

        source.repos["web"] = [github_issue(1, title="Reopened", updated=5, state="open")]
        result = engine.sync_all()

        assert result.updated == 1
        issue = get_issue(database, 1)
        assert issue.title == "Reopened"
        assert issue.status == "closed"


class TestIsolation:
    def test_failing_repository_does_not_stop_the_others(self, database):
        source = FakeIssueSource(
            {
                "web": [github_issue(1, repo="web")],
                "api": UpstreamUnavailableError("api", "HTTP 502", status=502),
                "docs": [github_issue(3, repo="docs")],
            }
        )
        engine = SyncEngine(
            database, source, org="acme", repositories=["web", "api", "docs"], max_workers=1
        )

        result = engine.sync_all()

        assert result.repositories_synced == 2
        assert result.repositories_failed == 1
        assert result.failed_repositories == ["api"]
        assert result.created == 2
        assert get_issue(database, 3).repo == "docs"

    def test_malformed_entry_is_skipped(self, database, source, engine):
        broken = github_issue(2)
        del broken["created_at"]
        source.repos["web"] = [github_issue(1), broken, github_issue(3)]

        result = engine.sync_all()

        assert result.created == 2
        assert result.errors == 1
        assert get_issue(database, 2) is None

    def test_storage_error_on_one_issue_is_rolled_back(self, database, source, engine, monkeypatch):
        source.repos["web"] = [github_issue(1), github_issue(2), github_issue(3)]
        original = engine._insert

        def flaky_insert(db, repo, issue, action):
            if issue.id == 2:
                raise OperationalError("INSERT INTO issues", {}, Exception("disk I/O error"))
            return original(db, repo, issue, action)

        monkeypatch.setattr(engine, "_insert", flaky_insert)

        result = engine.sync_all()

        assert result.created == 2
        assert result.errors == 1
        assert get_issue(database, 1) is not None
        assert get_issue(database, 2) is None
        assert get_issue(database, 3) is not None

    def test_no_repositories_configured(self, database, source):
        engine = SyncEngine(database, source, org="acme", repositories=[])

        result = engine.sync_all()

        assert result.to_dict()["processed"] == 0
        assert source.calls == []


class TestOverlap:
    def test_scheduled_pass_skips_while_another_runs(self, file_database):
        entered = threading.Event()
        release = threading.Event()
        source = FakeIssueSource({"web": [github_issue(1)]})

        def block_first_call(repo):
            if not entered.is_set():
                entered.set()
                release.wait(timeout=5)

        source.on_list = block_first_call
        engine = SyncEngine(file_database, source, org="acme", repositories=["web"])

        results = []
        runner = threading.Thread(target=lambda: results.append(engine.sync_all()))
        runner.start()
        assert entered.wait(timeout=5)

        try:
            assert engine.is_running
            assert engine.sync_all(skip_if_running=True) is None
            # Manual passes run regardless
            manual = engine.sync_all()
            assert manual.created + manual.unchanged == 1
        finally:
            release.set()
            runner.join(timeout=5)

        assert results[0].created + results[0].unchanged == 1
        assert not engine.is_running
        with file_database.session() as db:
            assert db.query(IssueModel).count() == 1

    def test_concurrent_repositories_share_one_pass(self, file_database):
        source = FakeIssueSource(
            {
                "web": [github_issue(i, repo="web") for i in range(1, 6)],
                "api": [github_issue(i, repo="api") for i in range(6, 11)],
            }
        )
        engine = SyncEngine(
            file_database, source, org="acme", repositories=["web", "api"], max_workers=2
        )

        result = engine.sync_all()

        assert result.repositories_synced == 2
        assert result.created == 10
        assert sorted(source.calls) == ["api", "web"]
