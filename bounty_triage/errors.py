"""
Error taxonomy for Bounty Triage.

Each error carries a stable ``code`` and the HTTP status the API layer
reports it with, so callers can tell the failure kinds apart.
"""

from typing import Any, Dict, Optional


class TriageError(Exception):
    """Base class for expected, caller-visible failures."""

    code = "TRIAGE_ERROR"
    status_code = 500

    def __init__(self, message: str, **details: Any):
        self.message = message
        self.details = details
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
            }
        }


class UpstreamUnavailableError(TriageError):
    """Fetching one repository from the upstream issue tracker failed."""

    code = "UPSTREAM_UNAVAILABLE"
    status_code = 502

    def __init__(self, repo: str, reason: str, status: Optional[int] = None):
        self.repo = repo
        self.reason = reason
        self.status = status
        super().__init__(
            f"Upstream fetch for {repo} failed: {reason}",
            repo=repo,
            status=status,
        )


class IssueNotFoundError(TriageError):
    """Raised when an issue identifier has no local record."""

    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, issue_id: int):
        self.issue_id = issue_id
        super().__init__(f"Issue {issue_id} not found", issue_id=issue_id)


class IssueLockedError(TriageError):
    """Raised when attempting to modify an immutable issue."""

    code = "LOCKED"
    status_code = 403

    def __init__(self, issue_id: int):
        self.issue_id = issue_id
        super().__init__(
            f"Issue {issue_id} is immutable and cannot be modified",
            issue_id=issue_id,
        )


class InvalidStatusError(TriageError):
    """Raised when a review asks for a status other than valid/invalid."""

    code = "INVALID_STATUS"
    status_code = 400

    def __init__(self, status: Any):
        self.status = status
        super().__init__(
            "Status must be 'valid' or 'invalid'",
            status=str(status),
        )


class ScoreUpdateFailedError(TriageError):
    """The reporter score increment could not be applied.

    The issue status write was rolled back with it; the caller may retry.
    """

    code = "SCORE_UPDATE_FAILED"
    status_code = 500

    def __init__(self, issue_id: int, reporter: str, reason: str):
        self.issue_id = issue_id
        self.reporter = reporter
        super().__init__(
            f"Score update for {reporter} failed; issue {issue_id} left unchanged: {reason}",
            issue_id=issue_id,
            reporter=reporter,
        )


class ConcurrentUpdateError(TriageError):
    """Concurrent writers kept winning the race for one issue."""

    code = "CONFLICT"
    status_code = 409

    def __init__(self, issue_id: int, attempts: int):
        self.issue_id = issue_id
        self.attempts = attempts
        super().__init__(
            f"Issue {issue_id} changed concurrently {attempts} times; retry",
            issue_id=issue_id,
            attempts=attempts,
        )


class AuthenticationRequiredError(TriageError):
    """The request carries no caller identity."""

    code = "UNAUTHENTICATED"
    status_code = 401

    def __init__(self):
        super().__init__("Caller identity is missing")


class ForbiddenError(TriageError):
    """The caller's role does not allow the operation."""

    code = "FORBIDDEN"
    status_code = 403

    def __init__(self, actor_id: str, required_role: str):
        self.actor_id = actor_id
        self.required_role = required_role
        super().__init__(
            f"Role '{required_role}' required",
            actor_id=actor_id,
            required_role=required_role,
        )
