"""
Pydantic schema for issues returned by the GitHub REST API.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class UpstreamUser(BaseModel):
    """The ``user`` object of an issue; only the login matters here."""

    model_config = ConfigDict(extra="ignore")

    login: str


class UpstreamIssue(BaseModel):
    """One entry of ``GET /repos/{org}/{repo}/issues``.

    GitHub returns pull requests from the same endpoint; they carry a
    ``pull_request`` object and must not be mirrored as issues.
    """

    model_config = ConfigDict(extra="ignore")

    id: int
    number: int
    title: str = ""
    body: Optional[str] = None
    html_url: str = ""
    user: UpstreamUser
    labels: List[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
    state: str = "open"
    pull_request: Optional[Dict[str, Any]] = None

    @field_validator("user", mode="before")
    @classmethod
    def _deleted_user(cls, value: Any) -> Any:
        # Issues from deleted accounts come back with user = null
        return value if value is not None else {"login": "ghost"}

    @field_validator("labels", mode="before")
    @classmethod
    def _label_names(cls, value: Any) -> List[str]:
        if value is None:
            return []
        names = []
        for label in value:
            if isinstance(label, dict):
                name = label.get("name")
                if name:
                    names.append(name)
            elif label:
                names.append(str(label))
        return names

    @field_validator("created_at", "updated_at")
    @classmethod
    def _to_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @property
    def is_pull_request(self) -> bool:
        return self.pull_request is not None

    @property
    def is_closed(self) -> bool:
        return self.state == "closed"

    @property
    def reporter(self) -> str:
        return self.user.login
