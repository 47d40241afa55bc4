"""Extraction of Azure DevOps work item ids embedded in branch names."""

import re
from typing import Optional


# Case-sensitive: `vsts123` is not a ticket reference.
TICKET_PATTERN = re.compile(r"VSTS(\d+)")


def parse_ticket_id(text: Optional[str]) -> Optional[int]:
    """Return the first `VSTS<digits>` id found in `text`, if any."""
    if not text or not text.strip():
        return None

    match = TICKET_PATTERN.search(text)
    if not match:
        return None

    return int(match.group(1))


def parse_merge_request_ticket(source_branch: Optional[str], title: Optional[str]) -> Optional[int]:
    """
    Find the work item id for a merge request.

    The source branch is authoritative; the title is consulted only when the
    source branch is blank.
    """
    if source_branch and source_branch.strip():
        return parse_ticket_id(source_branch)
    return parse_ticket_id(title)
