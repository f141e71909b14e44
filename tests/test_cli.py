"""
Tests for the command line interface.
"""

import pytest
from typer.testing import CliRunner

from bounty_triage.cli import app

runner = CliRunner()


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'cli.db'}"


def test_init_db(database_url):
    result = runner.invoke(app, ["init-db", "--database-url", database_url])

    assert result.exit_code == 0, result.output
    assert "Database initialized" in result.output


def test_empty_leaderboard(database_url):
    result = runner.invoke(app, ["leaderboard", "--database-url", database_url])

    assert result.exit_code == 0, result.output
    assert "No reporters yet" in result.output


def test_set_role_then_leaderboard(database_url):
    result = runner.invoke(app, ["set-role", "rita", "reviewer", "--database-url", database_url])
    assert result.exit_code == 0, result.output
    assert "rita is now a reviewer" in result.output

    result = runner.invoke(app, ["leaderboard", "--database-url", database_url])
    assert "rita" in result.output

    result = runner.invoke(
        app, ["leaderboard", "--exclude-reviewers", "--database-url", database_url]
    )
    assert "No reporters yet" in result.output


def test_lock_unknown_issue(database_url):
    result = runner.invoke(app, ["lock", "12345", "--database-url", database_url])

    assert result.exit_code == 1
    assert "not found" in result.output


def test_recompute(database_url):
    result = runner.invoke(app, ["recompute", "--database-url", database_url])

    assert result.exit_code == 0, result.output
    assert "Scanned 0 issues" in result.output
