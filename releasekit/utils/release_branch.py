"""
Release branch helpers.

Release branches are named `release/yyyyMMdd`. The date encoded in the name
gives them a total order, which is used to find the latest release and the
release that immediately follows a given one.
"""

import re
from datetime import datetime, timezone
from typing import Iterable, List, Optional


RELEASE_BRANCH_PREFIX = "release/"
_RELEASE_BRANCH_PATTERN = re.compile(r"release/([0-9]{8})")


def is_release_branch(name: Optional[str]) -> bool:
    """Return True if `name` is `release/` followed by exactly 8 digits."""
    if not name or not name.strip():
        return False
    return _RELEASE_BRANCH_PATTERN.fullmatch(name) is not None


def parse_release_date(name: Optional[str]) -> Optional[datetime]:
    """
    Parse the date of a release branch.

    Args:
        name: Branch name such as `release/20240115`

    Returns:
        UTC midnight of the encoded date, or None if the name does not match
        or the digits are not a valid calendar date
    """
    if not name or not name.strip():
        return None

    match = _RELEASE_BRANCH_PATTERN.fullmatch(name)
    if not match:
        return None

    try:
        parsed = datetime.strptime(match.group(1), "%Y%m%d")
    except ValueError:
        return None

    return parsed.replace(tzinfo=timezone.utc)


def sort_descending(branches: Iterable[Optional[str]]) -> List[str]:
    """Keep parseable release branches and order them newest first."""
    dated = []
    for branch in branches:
        date = parse_release_date(branch)
        if date is not None:
            dated.append((date, branch))

    dated.sort(key=lambda pair: pair[0], reverse=True)
    return [branch for _, branch in dated]


def find_next_newer(current: Optional[str], all_branches: Iterable[Optional[str]]) -> Optional[str]:
    """
    Find the release that immediately follows `current`.

    Returns the oldest branch strictly newer than `current`, or None if
    `current` is not a valid release branch or nothing newer exists.
    """
    current_date = parse_release_date(current)
    if current_date is None:
        return None

    newer = [
        branch
        for branch in sort_descending(all_branches)
        if parse_release_date(branch) > current_date
    ]

    # Descending order: the last newer branch is the closest one.
    return newer[-1] if newer else None


def is_latest(name: Optional[str], all_branches: Iterable[Optional[str]]) -> bool:
    """Return True if `name` is the newest release branch in `all_branches`."""
    if not is_release_branch(name):
        return False

    ordered = sort_descending(all_branches)
    return bool(ordered) and ordered[0] == name
