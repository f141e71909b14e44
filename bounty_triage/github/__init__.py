"""
GitHub integration: the upstream issue source.
"""

from .client import GITHUB_API_URL, GitHubIssueSource, IssueSource
from .models import UpstreamIssue, UpstreamUser

__all__ = [
    "GITHUB_API_URL",
    "GitHubIssueSource",
    "IssueSource",
    "UpstreamIssue",
    "UpstreamUser",
]
