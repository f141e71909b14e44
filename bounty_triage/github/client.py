"""
Upstream issue source backed by the GitHub REST API.
"""

import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

import httpx
import structlog

from ..errors import UpstreamUnavailableError

logger = structlog.get_logger(__name__)

GITHUB_API_URL = "https://api.github.com"


class IssueSource(ABC):
    """Read-only source of issues for a named repository."""

    @abstractmethod
    def list_issues(
        self, org: str, repo: str, timeout: Optional[float] = None
    ) -> List[Dict[str, Any]]:
        """Return every issue (open and closed) of ``org/repo``.

        Args:
            org: Organization that owns the repository
            repo: Repository name
            timeout: Upper bound in seconds for the whole listing

        Raises:
            UpstreamUnavailableError: the repository could not be listed
        """

    def close(self) -> None:
        """Release any held resources."""


class GitHubIssueSource(IssueSource):
    """Lists repository issues through ``GET /repos/{org}/{repo}/issues``.

    Follows ``Link: rel="next"`` headers until the listing is exhausted.
    Every request is bounded by ``request_timeout`` and the whole listing by
    the ``timeout`` passed to :meth:`list_issues`.
    """

    def __init__(
        self,
        token: Optional[str] = None,
        base_url: str = GITHUB_API_URL,
        per_page: int = 100,
        request_timeout: float = 15.0,
        transport: Optional[httpx.BaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if token:
            headers["Authorization"] = f"token {token}"

        self.per_page = per_page
        self._clock = clock
        self.client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=request_timeout,
            transport=transport,
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self) -> "GitHubIssueSource":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def list_issues(
        self, org: str, repo: str, timeout: Optional[float] = None
    ) -> List[Dict[str, Any]]:
        deadline = self._clock() + timeout if timeout is not None else None
        issues: List[Dict[str, Any]] = []

        url: Optional[str] = f"/repos/{org}/{repo}/issues"
        params: Optional[Dict[str, Any]] = {"state": "all", "per_page": self.per_page}
        pages = 0

        while url:
            response = self._get(repo, url, params)
            payload = self._decode(repo, response)
            issues.extend(payload)
            pages += 1

            url = response.links.get("next", {}).get("url")
            # The next link already carries the query string
            params = None

            if url and deadline is not None and self._clock() > deadline:
                raise UpstreamUnavailableError(
                    repo, f"listing exceeded {timeout:g}s after {pages} page(s)"
                )

        logger.debug("Listed upstream issues", repo=repo, count=len(issues), pages=pages)
        return issues

    def _get(
        self, repo: str, url: str, params: Optional[Dict[str, Any]]
    ) -> httpx.Response:
        try:
            response = self.client.get(url, params=params)
        except httpx.TimeoutException as e:
            raise UpstreamUnavailableError(repo, "request timed out") from e
        except httpx.HTTPError as e:
            raise UpstreamUnavailableError(repo, f"transport error: {e}") from e

        if response.status_code in (403, 429) and response.headers.get(
            "X-RateLimit-Remaining"
        ) == "0":
            raise UpstreamUnavailableError(
                repo, "rate limit exhausted", status=response.status_code
            )

        if not response.is_success:
            raise UpstreamUnavailableError(
                repo, _error_message(response), status=response.status_code
            )

        return response

    @staticmethod
    def _decode(repo: str, response: httpx.Response) -> List[Dict[str, Any]]:
        try:
            payload = response.json()
        except ValueError as e:
            raise UpstreamUnavailableError(
                repo, "response body is not JSON", status=response.status_code
            ) from e

        if not isinstance(payload, list):
            raise UpstreamUnavailableError(
                repo, "expected a list of issues", status=response.status_code
            )
        return payload


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("message"):
        return f"HTTP {response.status_code}: {body['message']}"
    return f"HTTP {response.status_code}"
