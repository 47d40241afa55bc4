"""Stage payload and pipeline report models.

Every stage of the reconciliation pipeline persists exactly one of the
payloads below as JSON in the staged cache.
"""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .error import Error
from .merge_request import MergeRequest, SourceControlPlatform
from .work_item import ResolutionStatus, WorkItem


class Stage(str, Enum):
    """Named pipeline stages, in execution order."""

    RAW_PULL_REQUESTS = "raw_pull_requests"
    FILTERED_PULL_REQUESTS = "filtered_pull_requests"
    RELEASE_BRANCHES = "release_branches"
    WORK_ITEMS = "work_items"
    USER_STORY_WORK_ITEMS = "user_story_work_items"
    CONSOLIDATED = "consolidated"


STAGE_ORDER: List[Stage] = [
    Stage.RAW_PULL_REQUESTS,
    Stage.FILTERED_PULL_REQUESTS,
    Stage.RELEASE_BRANCHES,
    Stage.WORK_ITEMS,
    Stage.USER_STORY_WORK_ITEMS,
    Stage.CONSOLIDATED,
]

# Stages whose artifact is read by a later stage.
REQUIRED_STAGES = frozenset(STAGE_ORDER) - {Stage.RELEASE_BRANCHES}


class ProjectResult(BaseModel):
    """Merge requests fetched for one project."""

    project_path: str
    platform: SourceControlPlatform
    pull_requests: List[MergeRequest] = Field(default_factory=list)


class PullRequestFetchResult(BaseModel):
    """Payload of the raw and filtered pull request stages."""

    results: List[ProjectResult] = Field(default_factory=list)
    dropped_count: int = 0

    def all_pull_requests(self) -> List[MergeRequest]:
        return [pr for result in self.results for pr in result.pull_requests]


class ReleaseBranchSnapshot(BaseModel):
    """Latest release branch per project; unmatched projects under NotFound."""

    branches: Dict[str, List[str]] = Field(default_factory=dict)


class WorkItemLink(BaseModel):
    """A work item referenced by a merge request."""

    pr_url: str
    work_item: WorkItem


class WorkItemFetchResult(BaseModel):
    """Payload of the work item stage."""

    work_items: List[WorkItemLink] = Field(default_factory=list)
    total_prs_analyzed: int = 0
    total_work_items_found: int = 0
    failure_count: int = 0


class ResolvedWorkItem(BaseModel):
    """A work item paired with its governing User Story / Feature / Epic."""

    pr_url: str
    work_item: WorkItem
    governing: WorkItem
    status: ResolutionStatus


class UserStoryResolutionResult(BaseModel):
    """Payload of the hierarchy resolution stage."""

    items: List[ResolvedWorkItem] = Field(default_factory=list)
    total_count: int = 0
    already_user_story_count: int = 0
    found_via_recursion_count: int = 0
    failed_count: int = 0


class ConsolidatedReleaseEntry(BaseModel):
    """One output row: a governing work item and the merge requests behind it."""

    project_name: str
    team_display_name: str
    feature_title: str
    work_item_id: int
    work_item_url: str
    work_item_type: str
    authors: List[str] = Field(default_factory=list)
    pull_request_urls: List[str] = Field(default_factory=list)
    pr_titles: List[str] = Field(default_factory=list)


class ConsolidatedProjectGroup(BaseModel):
    """Rows belonging to one project, already in output order."""

    project_name: str
    entries: List[ConsolidatedReleaseEntry] = Field(default_factory=list)


class ConsolidatedReleaseResult(BaseModel):
    """Payload of the consolidation stage."""

    projects: List[ConsolidatedProjectGroup] = Field(default_factory=list)

    def rows(self) -> List[ConsolidatedReleaseEntry]:
        return [entry for group in self.projects for entry in group.entries]


class StageStatus(str, Enum):
    """What happened to a stage during a run."""

    CACHED = "cached"
    EXECUTED = "executed"
    FAILED = "failed"
    NOT_RUN = "not_run"


class SkippedItem(BaseModel):
    """An item left out of a stage without failing the run."""

    stage: Stage
    reference: str
    reason_code: str
    message: str


class PipelineReport(BaseModel):
    """Overall outcome of one pipeline run."""

    dataset_hash: str
    success: bool = False
    stages: Dict[Stage, StageStatus] = Field(default_factory=dict)
    error: Optional[Error] = None
    skipped: List[SkippedItem] = Field(default_factory=list)
    result: Optional[ConsolidatedReleaseResult] = None
