"""
Consolidation of resolved work items into release rows.

Rows are keyed by (project name, governing work item id), annotated with the
team display name and ordered by team sort rank.
"""

from typing import Dict, Iterable, List, Optional, Tuple

from releasekit.models.mapping import TeamMapping, TeamSortRule
from releasekit.models.merge_request import MergeRequest
from releasekit.models.stage_data import (
    ConsolidatedProjectGroup,
    ConsolidatedReleaseEntry,
    ConsolidatedReleaseResult,
    ResolvedWorkItem,
)


UNKNOWN_PROJECT = "unknown"


def resolve_team_display_name(original_team_name: Optional[str], team_mappings: Iterable[TeamMapping]) -> str:
    """
    Map an Azure DevOps team or area path to its display name.

    An exact (case-insensitive) match wins; otherwise the first mapping
    whose original name occurs in the team name applies, so area paths like
    `Project\\Team A` still resolve. Unknown teams keep their original name.
    """
    original = original_team_name or ""
    needle = original.lower()
    mappings = list(team_mappings)

    for mapping in mappings:
        if mapping.original_team_name.lower() == needle:
            return mapping.display_name

    for mapping in mappings:
        candidate = mapping.original_team_name.lower()
        if candidate and candidate in needle:
            return mapping.display_name

    return original


def build_rank_lookup(team_sort_rules: Iterable[TeamSortRule]) -> Dict[str, int]:
    return {rule.team_display_name.lower(): rule.sort for rule in team_sort_rules}


def sort_key(entry: ConsolidatedReleaseEntry, ranks: Dict[str, int]) -> Tuple[int, int, str, int]:
    """Rank first (unmapped teams last), then feature title, then id."""
    rank = ranks.get(entry.team_display_name.lower())
    if rank is None:
        return (1, 0, entry.feature_title, entry.work_item_id)
    return (0, rank, entry.feature_title, entry.work_item_id)


def _append_unique(values: List[str], value: Optional[str]) -> None:
    if value and value not in values:
        values.append(value)


def consolidate(
    pull_requests: Iterable[MergeRequest],
    resolved_items: Iterable[ResolvedWorkItem],
    team_mappings: Iterable[TeamMapping] = (),
    team_sort_rules: Iterable[TeamSortRule] = (),
) -> ConsolidatedReleaseResult:
    """
    Join merge requests with their governing work items.

    Args:
        pull_requests: Filtered merge requests of the run
        resolved_items: Work items with their governing ancestor
        team_mappings: Team display name mappings
        team_sort_rules: Sort rank per team display name

    Returns:
        Rows grouped by project name, groups ordered by name
    """
    by_url: Dict[str, List[MergeRequest]] = {}
    for mr in pull_requests:
        by_url.setdefault(mr.pr_url, []).append(mr)

    mappings = list(team_mappings)
    entries: Dict[Tuple[str, int], ConsolidatedReleaseEntry] = {}

    for item in resolved_items:
        matched = by_url.get(item.pr_url, [])
        project_name = matched[0].project_name if matched else UNKNOWN_PROJECT
        governing = item.governing
        key = (project_name, governing.work_item_id)

        entry = entries.get(key)
        if entry is None:
            entry = ConsolidatedReleaseEntry(
                project_name=project_name,
                team_display_name=resolve_team_display_name(governing.original_team_name, mappings),
                feature_title=governing.title,
                work_item_id=governing.work_item_id,
                work_item_url=governing.url,
                work_item_type=governing.type,
            )
            entries[key] = entry

        for mr in matched:
            _append_unique(entry.authors, mr.author_name)
            _append_unique(entry.pull_request_urls, mr.pr_url)
            _append_unique(entry.pr_titles, mr.title)

    ranks = build_rank_lookup(team_sort_rules)
    grouped: Dict[str, List[ConsolidatedReleaseEntry]] = {}
    for entry in entries.values():
        grouped.setdefault(entry.project_name, []).append(entry)

    return ConsolidatedReleaseResult(
        projects=[
            ConsolidatedProjectGroup(
                project_name=name,
                entries=sorted(grouped[name], key=lambda e: sort_key(e, ranks)),
            )
            for name in sorted(grouped)
        ]
    )
