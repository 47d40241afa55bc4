"""
Unit tests for work item id extraction.
"""

import pytest

from releasekit.utils.ticket_id import parse_merge_request_ticket, parse_ticket_id


@pytest.mark.parametrize(
    "text,expected",
    [
        ("feature/VSTS12345-login", 12345),
        ("VSTS1", 1),
        ("bugfix/VSTS100-and-VSTS200", 100),
        ("feature/vsts12345", None),
        ("feature/VSTS-12345", None),
        ("feature/no-ticket", None),
        ("", None),
        (None, None),
    ],
)
def test_parse_ticket_id(text, expected):
    """First case-sensitive VSTS<digits> wins."""
    assert parse_ticket_id(text) == expected


def test_source_branch_takes_precedence_over_title():
    assert parse_merge_request_ticket("feature/VSTS111", "VSTS222 title") == 111


def test_title_not_consulted_when_branch_has_no_ticket():
    assert parse_merge_request_ticket("feature/cleanup", "VSTS222 title") is None


def test_title_used_when_branch_blank():
    assert parse_merge_request_ticket("  ", "Fix login VSTS222") == 222
    assert parse_merge_request_ticket(None, "VSTS333") == 333
