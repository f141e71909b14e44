"""Request bodies and caller identity for the HTTP API."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, constr

from .enums import ReporterRole


class Actor(BaseModel):
    """Caller identity as asserted by the upstream auth gateway."""

    model_config = ConfigDict(frozen=True)

    id: constr(min_length=1, max_length=200)
    role: ReporterRole = ReporterRole.REPORTER

    @property
    def is_reviewer(self) -> bool:
        return self.role == ReporterRole.REVIEWER


class StatusUpdate(BaseModel):
    """Body of ``PATCH /issues/{id}/status``.

    Kept a plain string so an unknown status is reported as INVALID_STATUS
    rather than a schema error.
    """

    status: constr(min_length=1, max_length=32)


class RoleUpdate(BaseModel):
    """Body of ``PUT /reporters/{username}/role``."""

    role: Literal["reporter", "reviewer"]
