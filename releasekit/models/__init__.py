"""Data models for the release reconciliation pipeline."""

from .error import (
    AzureDevOpsErrors,
    Error,
    HierarchyErrors,
    PipelineErrors,
    Result,
    SourceControlErrors,
)
from .fetch_request import (
    BranchDiffFetchRequest,
    DateTimeRangeFetchRequest,
    FetchMode,
    FetchRequest,
    create_branch_diff_request,
    create_date_time_range_request,
)
from .mapping import (
    FetchDefaults,
    PipelineConfig,
    ProjectConfig,
    TeamMapping,
    TeamSortRule,
    UserMapping,
)
from .merge_request import MergeRequest, SourceControlPlatform
from .stage_data import (
    ConsolidatedProjectGroup,
    ConsolidatedReleaseEntry,
    ConsolidatedReleaseResult,
    PipelineReport,
    ProjectResult,
    PullRequestFetchResult,
    ReleaseBranchSnapshot,
    ResolvedWorkItem,
    SkippedItem,
    Stage,
    StageStatus,
    UserStoryResolutionResult,
    WorkItemFetchResult,
    WorkItemLink,
)
from .work_item import ResolutionStatus, WorkItem, is_user_story_level

__all__ = [
    # Error models
    "Error",
    "Result",
    "SourceControlErrors",
    "AzureDevOpsErrors",
    "HierarchyErrors",
    "PipelineErrors",
    # Fetch request models
    "FetchMode",
    "FetchRequest",
    "DateTimeRangeFetchRequest",
    "BranchDiffFetchRequest",
    "create_date_time_range_request",
    "create_branch_diff_request",
    # Configuration models
    "FetchDefaults",
    "PipelineConfig",
    "ProjectConfig",
    "TeamMapping",
    "TeamSortRule",
    "UserMapping",
    # Merge request models
    "MergeRequest",
    "SourceControlPlatform",
    # Work item models
    "WorkItem",
    "ResolutionStatus",
    "is_user_story_level",
    # Stage models
    "Stage",
    "StageStatus",
    "ProjectResult",
    "PullRequestFetchResult",
    "ReleaseBranchSnapshot",
    "WorkItemLink",
    "WorkItemFetchResult",
    "ResolvedWorkItem",
    "UserStoryResolutionResult",
    "ConsolidatedReleaseEntry",
    "ConsolidatedProjectGroup",
    "ConsolidatedReleaseResult",
    "SkippedItem",
    "PipelineReport",
]
