"""
Bitbucket Cloud 2.0 gateway.

Projects are addressed as `workspace/repo_slug`. Paginated responses carry
an absolute `next` link which is followed until absent.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from releasekit.models.error import Error, Result, SourceControlErrors
from releasekit.models.merge_request import MergeRequest, SourceControlPlatform
from releasekit.services.source_control import HttpGateway, dedupe_by_url, in_window, window_moment
from releasekit.utils.logging import get_logger


logger = get_logger(__name__)

PAGE_LEN = 50
MERGED_STATE = "MERGED"


def map_pull_request(data: Dict[str, Any], project_path: str) -> MergeRequest:
    """Convert a Bitbucket pull request payload into a MergeRequest."""
    author = data["author"]
    summary = data.get("summary") or {}
    return MergeRequest(
        title=data["title"],
        description=summary.get("raw"),
        source_branch=data["source"]["branch"]["name"],
        target_branch=data["destination"]["branch"]["name"],
        created_at=data["created_on"],
        merged_at=data.get("closed_on"),
        state=data["state"],
        author_user_id=author["uuid"],
        author_name=author.get("display_name") or "",
        pr_url=data["links"]["html"]["href"],
        platform=SourceControlPlatform.BITBUCKET,
        project_path=project_path,
    )


class BitbucketGateway(HttpGateway):
    """Fetches merged pull requests and branches from Bitbucket Cloud."""

    service_name = "bitbucket"

    def _repo_url(self, project_path: str) -> str:
        return f"/repositories/{project_path.strip('/')}"

    async def _get_values(
        self,
        client,
        url: str,
        not_found: Error,
        params: Optional[Dict[str, Any]] = None,
    ) -> Result:
        """Collect `values` across every page, following `next` links."""
        values: List[Any] = []
        next_url: Optional[str] = url
        next_params = params
        while next_url:
            result = await self._get_json(client, next_url, not_found, params=next_params)
            if result.is_failure:
                return result

            page = result.value
            if not isinstance(page, dict):
                return Result.failure(SourceControlErrors.invalid_response())

            page_values = page.get("values") or []
            if not page_values:
                break
            values.extend(page_values)

            # The next link already carries the query string.
            next_url = page.get("next")
            next_params = None
        return Result.success(values)

    async def fetch_by_date_range(
        self,
        project_path: str,
        target_branch: str,
        start: datetime,
        end: datetime,
        state: Optional[str] = None,
    ) -> Result:
        state = (state or MERGED_STATE).upper()
        logger.info(
            f"Fetching {state} Bitbucket pull requests into {target_branch} "
            f"between {start.isoformat()} and {end.isoformat()}",
            extra={"project_path": project_path, "platform": "Bitbucket"},
        )

        async with self._client() as client:
            values = await self._get_values(
                client,
                f"{self._repo_url(project_path)}/pullrequests",
                SourceControlErrors.project_not_found(project_path),
                params={"state": state, "pagelen": PAGE_LEN},
            )
        if values.is_failure:
            return values

        try:
            pull_requests = [map_pull_request(item, project_path) for item in values.value]
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"Unexpected Bitbucket pull request payload: {e}")
            return Result.failure(SourceControlErrors.invalid_response())

        merged_only = state == MERGED_STATE
        matched = [
            pr for pr in pull_requests
            if pr.target_branch == target_branch and in_window(window_moment(pr, merged_only), start, end)
        ]
        logger.info(
            f"Fetched {len(matched)} {state} Bitbucket pull requests",
            extra={"project_path": project_path, "platform": "Bitbucket"},
        )
        return Result.success(matched)

    async def fetch_by_branch_diff(
        self,
        project_path: str,
        source_branch: str,
        target_branch: str,
    ) -> Result:
        logger.info(
            f"Comparing Bitbucket branches {target_branch}...{source_branch}",
            extra={"project_path": project_path, "platform": "Bitbucket"},
        )
        repo_url = self._repo_url(project_path)
        project_missing = SourceControlErrors.project_not_found(project_path)

        async with self._client() as client:
            commits = await self._get_values(
                client,
                f"{repo_url}/commits",
                SourceControlErrors.branch_not_found(source_branch),
                params={"include": source_branch, "exclude": target_branch, "pagelen": PAGE_LEN},
            )
            if commits.is_failure:
                return commits

            pull_requests: List[MergeRequest] = []
            for commit in commits.value:
                sha = commit.get("hash") if isinstance(commit, dict) else None
                if not sha:
                    return Result.failure(SourceControlErrors.invalid_response())

                related = await self._get_values(
                    client, f"{repo_url}/commit/{sha}/pullrequests", project_missing
                )
                if related.is_failure:
                    return related

                try:
                    pull_requests.extend(
                        map_pull_request(item, project_path)
                        for item in related.value
                        if item.get("state") == MERGED_STATE
                    )
                except (AttributeError, KeyError, TypeError, ValueError) as e:
                    logger.error(f"Unexpected Bitbucket pull request payload: {e}")
                    return Result.failure(SourceControlErrors.invalid_response())

        unique = dedupe_by_url(pull_requests)
        logger.info(
            f"Found {len(unique)} pull requests between {target_branch} and {source_branch}",
            extra={"project_path": project_path, "platform": "Bitbucket"},
        )
        return Result.success(unique)

    async def list_branches(self, project_path: str, prefix: Optional[str] = None) -> Result:
        params: Dict[str, Any] = {"pagelen": PAGE_LEN}
        if prefix:
            params["q"] = f'name ~ "{prefix}"'

        async with self._client() as client:
            values = await self._get_values(
                client,
                f"{self._repo_url(project_path)}/refs/branches",
                SourceControlErrors.project_not_found(project_path),
                params=params,
            )
        if values.is_failure:
            return values

        try:
            names = [item["name"] for item in values.value]
        except (KeyError, TypeError):
            return Result.failure(SourceControlErrors.invalid_response())

        # `~` is a substring match; keep only true prefixes.
        if prefix:
            names = [name for name in names if name.startswith(prefix)]
        return Result.success(names)
