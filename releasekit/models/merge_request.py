"""Merge request data models."""

from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict


class SourceControlPlatform(str, Enum):
    """Source-control platform a merge request was fetched from."""

    GITLAB = "GitLab"
    BITBUCKET = "Bitbucket"


class MergeRequest(BaseModel):
    """A completed code change, normalized across platforms."""

    model_config = ConfigDict(frozen=True)

    title: str
    description: Optional[str] = None
    source_branch: str
    target_branch: str
    created_at: datetime
    merged_at: Optional[datetime] = None
    state: str
    author_user_id: str
    author_name: str
    pr_url: str
    platform: SourceControlPlatform
    project_path: str

    @property
    def dedup_key(self) -> Tuple[str, str, str]:
        return (self.platform.value, self.project_path, self.pr_url)

    @property
    def project_name(self) -> str:
        if not self.project_path:
            return "unknown"
        return self.project_path.rstrip("/").split("/")[-1] or "unknown"
