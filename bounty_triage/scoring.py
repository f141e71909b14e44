"""
Points policy.

Points are fixed business policy: a valid report earns +10, an invalid one
costs -5, and every other status is worth nothing.
"""

from typing import Mapping, Optional, Union

from .enums import IssueStatus

POINTS_BY_STATUS: Mapping[IssueStatus, int] = {
    IssueStatus.VALID: 10,
    IssueStatus.INVALID: -5,
}


def points_for_status(status: Optional[Union[IssueStatus, str]]) -> int:
    """Return the points an issue in ``status`` contributes to its reporter."""
    if status is None:
        return 0
    try:
        status = IssueStatus(status)
    except ValueError:
        return 0
    return POINTS_BY_STATUS.get(status, 0)


def score_delta(
    old_status: Optional[Union[IssueStatus, str]],
    new_status: Optional[Union[IssueStatus, str]],
) -> int:
    """Signed change in a reporter's total caused by one status transition."""
    return points_for_status(new_status) - points_for_status(old_status)
