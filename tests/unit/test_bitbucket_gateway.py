"""
Unit tests for the Bitbucket gateway.
"""

from datetime import datetime, timezone

import httpx
import pytest

from releasekit.models.merge_request import SourceControlPlatform
from releasekit.services.bitbucket_gateway import BitbucketGateway, map_pull_request


BASE_URL = "https://api.bitbucket.org/2.0"
START = datetime(2024, 1, 1, tzinfo=timezone.utc)
END = datetime(2024, 1, 31, 23, 59, 59, tzinfo=timezone.utc)


def bitbucket_pr(pr_id: int, closed_on="2024-01-10T10:00:00+00:00", state="MERGED", destination="main"):
    return {
        "id": pr_id,
        "title": f"PR {pr_id}",
        "summary": {"raw": "Adds search"},
        "source": {"branch": {"name": f"feature/VSTS{pr_id}00-search"}},
        "destination": {"branch": {"name": destination}},
        "created_on": "2024-01-05T09:00:00+00:00",
        "closed_on": closed_on,
        "state": state,
        "author": {"uuid": "{abc-123}", "display_name": "Jane Doe"},
        "links": {"html": {"href": f"https://bitbucket.org/team/web/pull-requests/{pr_id}"}},
    }


def make_gateway(handler) -> BitbucketGateway:
    return BitbucketGateway(BASE_URL, "secret-token", transport=httpx.MockTransport(handler))


def test_map_pull_request():
    mr = map_pull_request(bitbucket_pr(3), "team/web")

    assert mr.platform == SourceControlPlatform.BITBUCKET
    assert mr.author_user_id == "{abc-123}"
    assert mr.author_name == "Jane Doe"
    assert mr.description == "Adds search"
    assert mr.target_branch == "main"
    assert mr.pr_url == "https://bitbucket.org/team/web/pull-requests/3"


class TestFetchByDateRange:
    """Test merged pull request listing."""

    @pytest.mark.asyncio
    async def test_follows_next_and_filters(self):
        next_url = f"{BASE_URL}/repositories/team/web/pullrequests?state=MERGED&page=2"
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(str(request.url))
            if request.url.params.get("page") == "2":
                return httpx.Response(200, json={"values": [bitbucket_pr(3, destination="develop")]})
            return httpx.Response(
                200,
                json={
                    "values": [bitbucket_pr(1), bitbucket_pr(2, closed_on="2023-12-01T00:00:00+00:00")],
                    "next": next_url,
                },
            )

        result = await make_gateway(handler).fetch_by_date_range("team/web", "main", START, END)

        assert result.is_success
        assert [mr.title for mr in result.value] == ["PR 1"]
        assert len(calls) == 2
        assert "/2.0/repositories/team/web/pullrequests" in calls[0]
        assert "state=MERGED" in calls[0]

    @pytest.mark.asyncio
    async def test_configured_state_sent_upper_case(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url.params["state"])
            return httpx.Response(200, json={"values": [bitbucket_pr(5, closed_on=None, state="OPEN")]})

        result = await make_gateway(handler).fetch_by_date_range("team/web", "main", START, END, state="open")

        assert result.is_success
        assert [mr.title for mr in result.value] == ["PR 5"]
        assert calls == ["OPEN"]

    @pytest.mark.asyncio
    async def test_empty_first_page(self):
        gateway = make_gateway(lambda request: httpx.Response(200, json={"values": []}))

        result = await gateway.fetch_by_date_range("team/web", "main", START, END)

        assert result.value == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,code",
        [
            (401, "SourceControl.Unauthorized"),
            (404, "SourceControl.ProjectNotFound"),
            (429, "SourceControl.RateLimitExceeded"),
            (503, "SourceControl.ApiError"),
        ],
    )
    async def test_status_mapping(self, status, code):
        gateway = make_gateway(lambda request: httpx.Response(status))

        result = await gateway.fetch_by_date_range("team/web", "main", START, END)

        assert result.error.code == code

    @pytest.mark.asyncio
    async def test_timeout_is_network_error(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out")

        result = await make_gateway(handler).fetch_by_date_range("team/web", "main", START, END)

        assert result.error.code == "SourceControl.NetworkError"

    @pytest.mark.asyncio
    async def test_non_object_page(self):
        gateway = make_gateway(lambda request: httpx.Response(200, json=["unexpected"]))

        result = await gateway.fetch_by_date_range("team/web", "main", START, END)

        assert result.error.code == "SourceControl.InvalidResponse"


class TestFetchByBranchDiff:
    """Test commit-diff based fetching."""

    @pytest.mark.asyncio
    async def test_synthesizes_diff_from_commits(self):
        def handler(request: httpx.Request) -> httpx.Response:
            path = request.url.path
            if path.endswith("/repositories/team/web/commits"):
                assert request.url.params["include"] == "release/20240115"
                assert request.url.params["exclude"] == "release/20240101"
                return httpx.Response(200, json={"values": [{"hash": "c1"}, {"hash": "c2"}]})
            if path.endswith("/commit/c1/pullrequests"):
                return httpx.Response(200, json={"values": [bitbucket_pr(1)]})
            if path.endswith("/commit/c2/pullrequests"):
                return httpx.Response(200, json={"values": [bitbucket_pr(1), bitbucket_pr(2, state="OPEN")]})
            return httpx.Response(404)

        result = await make_gateway(handler).fetch_by_branch_diff(
            "team/web", "release/20240115", "release/20240101"
        )

        assert [mr.title for mr in result.value] == ["PR 1"]

    @pytest.mark.asyncio
    async def test_missing_branch(self):
        gateway = make_gateway(lambda request: httpx.Response(404))

        result = await gateway.fetch_by_branch_diff("team/web", "nope", "main")

        assert result.error.code == "SourceControl.BranchNotFound"


class TestListBranches:
    """Test branch listing."""

    @pytest.mark.asyncio
    async def test_keeps_true_prefix_matches(self):
        queries = []

        def handler(request: httpx.Request) -> httpx.Response:
            queries.append(request.url.params.get("q"))
            return httpx.Response(
                200,
                json={"values": [{"name": "release/20240101"}, {"name": "old-release/20230101"}]},
            )

        result = await make_gateway(handler).list_branches("team/web", prefix="release/")

        assert result.value == ["release/20240101"]
        assert queries == ['name ~ "release/"']
