"""Fetch request value objects.

A fetch request describes which merge requests to pull from one project:
either everything merged into a branch within a date-time window, or the
merge requests reachable from the commit diff between two branches.
"""

from datetime import datetime
from enum import Enum
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, field_validator, model_validator


class FetchMode(str, Enum):
    """Query shape used to retrieve merge requests."""

    DATE_TIME_RANGE = "DateTimeRange"
    BRANCH_DIFF = "BranchDiff"


def _require_text(value: str, field_name: str) -> str:
    if value is None or not str(value).strip():
        raise ValueError(f"{field_name} must not be empty")
    return value


class DateTimeRangeFetchRequest(BaseModel):
    """Merge requests merged into `target_branch` between `start` and `end`."""

    model_config = ConfigDict(frozen=True)

    fetch_mode: Literal[FetchMode.DATE_TIME_RANGE] = FetchMode.DATE_TIME_RANGE
    project_id: str
    target_branch: str
    start: datetime
    end: datetime
    state: Optional[str] = None

    @field_validator("project_id", "target_branch")
    @classmethod
    def _not_blank(cls, value: str, info) -> str:
        return _require_text(value, info.field_name)

    @model_validator(mode="after")
    def _check_window(self) -> "DateTimeRangeFetchRequest":
        if self.start > self.end:
            raise ValueError("start must not be later than end")
        return self


class BranchDiffFetchRequest(BaseModel):
    """Merge requests in `source_branch` that are not yet in `target_branch`."""

    model_config = ConfigDict(frozen=True)

    fetch_mode: Literal[FetchMode.BRANCH_DIFF] = FetchMode.BRANCH_DIFF
    project_id: str
    source_branch: str
    target_branch: str

    @field_validator("project_id", "source_branch", "target_branch")
    @classmethod
    def _not_blank(cls, value: str, info) -> str:
        return _require_text(value, info.field_name)


FetchRequest = Union[DateTimeRangeFetchRequest, BranchDiffFetchRequest]


def create_date_time_range_request(
    project_id: str,
    target_branch: str,
    start: datetime,
    end: datetime,
    state: Optional[str] = None,
) -> DateTimeRangeFetchRequest:
    """
    Build a validated date-time range request.

    Raises:
        ValueError: If the project or branch is blank, or start > end
    """
    return DateTimeRangeFetchRequest(
        project_id=project_id,
        target_branch=target_branch,
        start=start,
        end=end,
        state=state,
    )


def create_branch_diff_request(
    project_id: str,
    source_branch: str,
    target_branch: str,
) -> BranchDiffFetchRequest:
    """
    Build a validated branch-diff request.

    Raises:
        ValueError: If the project or either branch is blank
    """
    return BranchDiffFetchRequest(
        project_id=project_id,
        source_branch=source_branch,
        target_branch=target_branch,
    )
