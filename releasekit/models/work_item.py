"""Work item data models."""

from enum import Enum
from typing import FrozenSet, Optional

from pydantic import BaseModel, ConfigDict


USER_STORY_LEVEL_TYPES: FrozenSet[str] = frozenset({"user story", "feature", "epic"})


def is_user_story_level(work_item_type: Optional[str]) -> bool:
    """Return True for User Story, Feature and Epic types (case-insensitive)."""
    if not work_item_type or not work_item_type.strip():
        return False
    return work_item_type.strip().lower() in USER_STORY_LEVEL_TYPES


class WorkItem(BaseModel):
    """A tracked unit of work from Azure DevOps."""

    model_config = ConfigDict(frozen=True)

    work_item_id: int
    title: str
    type: str
    state: str
    url: str
    original_team_name: str
    parent_work_item_id: Optional[int] = None

    @property
    def is_user_story_level(self) -> bool:
        return is_user_story_level(self.type)


class ResolutionStatus(str, Enum):
    """How a governing ancestor was found."""

    ALREADY_USER_STORY_OR_ABOVE = "already_user_story_or_above"
    FOUND_VIA_RECURSION = "found_via_recursion"

