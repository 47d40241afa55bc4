"""Project, user and team configuration models."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .fetch_request import FetchMode
from .merge_request import SourceControlPlatform


class TeamMapping(BaseModel):
    """Maps an Azure DevOps team / area name to the name shown in reports."""

    model_config = ConfigDict(frozen=True)

    original_team_name: str
    display_name: str


class TeamSortRule(BaseModel):
    """Sort rank of a team display name in consolidated output."""

    model_config = ConfigDict(frozen=True)

    team_display_name: str
    sort: int


class UserMapping(BaseModel):
    """Links platform user ids to a single display name."""

    model_config = ConfigDict(frozen=True)

    display_name: str
    gitlab_user_id: Optional[str] = None
    bitbucket_user_id: Optional[str] = None

    def user_id_for(self, platform: SourceControlPlatform) -> Optional[str]:
        if platform == SourceControlPlatform.GITLAB:
            return self.gitlab_user_id
        return self.bitbucket_user_id


class FetchDefaults(BaseModel):
    """Global fetch settings, overridable per project."""

    fetch_mode: FetchMode = FetchMode.DATE_TIME_RANGE
    target_branch: Optional[str] = None
    source_branch: Optional[str] = None
    start_date_time: Optional[datetime] = None
    end_date_time: Optional[datetime] = None
    state: Optional[str] = None


class ProjectConfig(BaseModel):
    """One source-control project to pull merge requests from."""

    platform: SourceControlPlatform
    project_path: str
    fetch_mode: Optional[FetchMode] = None
    target_branch: Optional[str] = None
    source_branch: Optional[str] = None
    start_date_time: Optional[datetime] = None
    end_date_time: Optional[datetime] = None


class PipelineConfig(BaseModel):
    """Everything the reconciliation pipeline needs besides its collaborators."""

    projects: List[ProjectConfig] = Field(default_factory=list)
    fetch: FetchDefaults = Field(default_factory=FetchDefaults)
    user_mappings: List[UserMapping] = Field(default_factory=list)
    team_mappings: List[TeamMapping] = Field(default_factory=list)
    team_sort_rules: List[TeamSortRule] = Field(default_factory=list)
