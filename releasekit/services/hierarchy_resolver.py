"""
Parent-chain walk from a work item to its governing User Story, Feature or Epic.
"""

from typing import Awaitable, Callable, List, Tuple

from releasekit.models.error import HierarchyErrors, Result
from releasekit.models.work_item import ResolutionStatus, WorkItem
from releasekit.utils.logging import get_logger


logger = get_logger(__name__)

MAX_DEPTH = 10

FetchParent = Callable[[int], Awaitable[Result]]


async def resolve_with_status(
    item: WorkItem,
    fetch_parent: FetchParent,
) -> Tuple[Result, ResolutionStatus]:
    """
    Resolve the governing ancestor of `item` and report how it was found.

    At most MAX_DEPTH parents are fetched. A cycle in the parent links keeps
    consuming steps and therefore ends as MaxDepthExceeded. Fetch failures
    are returned unchanged.
    """
    if item.is_user_story_level:
        return Result.success(item), ResolutionStatus.ALREADY_USER_STORY_OR_ABOVE

    trail: List[int] = [item.work_item_id]
    current = item
    remaining = MAX_DEPTH

    while True:
        parent_id = current.parent_work_item_id
        if parent_id is None:
            logger.debug(
                f"Work item {item.work_item_id} has no governing ancestor (trail: {trail})",
                extra={"work_item_id": item.work_item_id},
            )
            return (
                Result.failure(HierarchyErrors.no_governing_ancestor(item.work_item_id)),
                ResolutionStatus.FOUND_VIA_RECURSION,
            )

        if remaining == 0:
            logger.warning(
                f"Parent chain of work item {item.work_item_id} exceeds {MAX_DEPTH} levels "
                f"(trail: {trail})",
                extra={"work_item_id": item.work_item_id},
            )
            return (
                Result.failure(HierarchyErrors.max_depth_exceeded(item.work_item_id, MAX_DEPTH)),
                ResolutionStatus.FOUND_VIA_RECURSION,
            )

        remaining -= 1
        parent_result = await fetch_parent(parent_id)
        if parent_result.is_failure:
            return parent_result, ResolutionStatus.FOUND_VIA_RECURSION

        current = parent_result.value
        trail.append(current.work_item_id)

        if current.is_user_story_level:
            return Result.success(current), ResolutionStatus.FOUND_VIA_RECURSION


async def resolve_governing_ancestor(item: WorkItem, fetch_parent: FetchParent) -> Result:
    """Return the nearest User Story / Feature / Epic at or above `item`."""
    result, _ = await resolve_with_status(item, fetch_parent)
    return result
