"""
Unit tests for the governing-ancestor walk.
"""

from typing import Dict, List, Optional

import pytest

from releasekit.models.error import AzureDevOpsErrors, Result
from releasekit.models.work_item import ResolutionStatus, WorkItem
from releasekit.services.hierarchy_resolver import (
    MAX_DEPTH,
    resolve_governing_ancestor,
    resolve_with_status,
)


def make_item(work_item_id: int, type_: str, parent: Optional[int] = None) -> WorkItem:
    return WorkItem(
        work_item_id=work_item_id,
        title=f"Item {work_item_id}",
        type=type_,
        state="Active",
        url=f"https://dev.azure.com/org/proj/_workitems/edit/{work_item_id}",
        original_team_name="Proj\\Team A",
        parent_work_item_id=parent,
    )


class FakeParentFetcher:
    """Serves work items from a dict and records every requested id."""

    def __init__(self, items: Dict[int, WorkItem]):
        self.items = items
        self.calls: List[int] = []

    async def __call__(self, work_item_id: int) -> Result:
        self.calls.append(work_item_id)
        if work_item_id not in self.items:
            return Result.failure(AzureDevOpsErrors.work_item_not_found(work_item_id))
        return Result.success(self.items[work_item_id])


def task_chain(length: int, root_type: str = "Task") -> Dict[int, WorkItem]:
    """Items 1..length where item n's parent is n+1; item `length` is the root."""
    items = {}
    for n in range(1, length + 1):
        is_root = n == length
        items[n] = make_item(n, root_type if is_root else "Task", parent=None if is_root else n + 1)
    return items


class TestResolveGoverningAncestor:
    """Test resolution outcomes."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("type_", ["Epic", "Feature", "User Story", "user story"])
    async def test_user_story_level_item_returns_itself(self, type_):
        item = make_item(1, type_, parent=99)
        fetcher = FakeParentFetcher({})

        result, status = await resolve_with_status(item, fetcher)

        assert result.is_success
        assert result.value == item
        assert status == ResolutionStatus.ALREADY_USER_STORY_OR_ABOVE
        assert fetcher.calls == []

    @pytest.mark.asyncio
    async def test_finds_nearest_ancestor(self):
        items = {
            2: make_item(2, "Task", parent=3),
            3: make_item(3, "User Story", parent=4),
            4: make_item(4, "Feature"),
        }
        fetcher = FakeParentFetcher(items)

        result, status = await resolve_with_status(make_item(1, "Bug", parent=2), fetcher)

        assert result.value.work_item_id == 3
        assert status == ResolutionStatus.FOUND_VIA_RECURSION
        assert fetcher.calls == [2, 3]

    @pytest.mark.asyncio
    async def test_missing_parent_is_no_governing_ancestor(self):
        fetcher = FakeParentFetcher({2: make_item(2, "Task")})

        result = await resolve_governing_ancestor(make_item(1, "Task", parent=2), fetcher)

        assert result.is_failure
        assert result.error.code == "Hierarchy.NoGoverningAncestor"

    @pytest.mark.asyncio
    async def test_root_without_parent_is_no_governing_ancestor(self):
        fetcher = FakeParentFetcher({})

        result = await resolve_governing_ancestor(make_item(1, "Bug"), fetcher)

        assert result.error.code == "Hierarchy.NoGoverningAncestor"
        assert fetcher.calls == []

    @pytest.mark.asyncio
    async def test_fetch_failure_propagates_unchanged(self):
        fetcher = FakeParentFetcher({})

        result = await resolve_governing_ancestor(make_item(1, "Task", parent=5), fetcher)

        assert result.error == AzureDevOpsErrors.work_item_not_found(5)
        assert fetcher.calls == [5]


class TestDepthLimit:
    """Test the MAX_DEPTH bound."""

    @pytest.mark.asyncio
    async def test_user_story_at_tenth_parent_succeeds(self):
        # Item 0 is the start; parents 1..10, the 10th is the User Story.
        items = task_chain(MAX_DEPTH, root_type="User Story")
        fetcher = FakeParentFetcher(items)

        result = await resolve_governing_ancestor(make_item(0, "Task", parent=1), fetcher)

        assert result.is_success
        assert result.value.work_item_id == MAX_DEPTH
        assert len(fetcher.calls) == MAX_DEPTH

    @pytest.mark.asyncio
    async def test_eleven_task_parents_exceed_depth(self):
        items = task_chain(MAX_DEPTH + 1)
        fetcher = FakeParentFetcher(items)

        result = await resolve_governing_ancestor(make_item(0, "Task", parent=1), fetcher)

        assert result.is_failure
        assert result.error.code == "Hierarchy.MaxDepthExceeded"
        assert len(fetcher.calls) == MAX_DEPTH

    @pytest.mark.asyncio
    async def test_cycle_terminates(self):
        items = {
            2: make_item(2, "Task", parent=3),
            3: make_item(3, "Task", parent=1),
            1: make_item(1, "Task", parent=2),
        }
        fetcher = FakeParentFetcher(items)

        result = await resolve_governing_ancestor(items[1], fetcher)

        assert result.error.code == "Hierarchy.MaxDepthExceeded"
        assert len(fetcher.calls) == MAX_DEPTH
