"""
GitLab REST v4 gateway.

Projects are addressed by their path (`group/subgroup/project`), URL-encoded
into the `:id` segment.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from releasekit.models.error import Result, SourceControlErrors
from releasekit.models.merge_request import MergeRequest, SourceControlPlatform
from releasekit.services.source_control import HttpGateway, dedupe_by_url, in_window, window_moment
from releasekit.utils.logging import get_logger


logger = get_logger(__name__)

PER_PAGE = 100
MERGED_STATE = "merged"


def map_merge_request(data: Dict[str, Any], project_path: str) -> MergeRequest:
    """Convert a GitLab merge request payload into a MergeRequest."""
    author = data["author"]
    return MergeRequest(
        title=data["title"],
        description=data.get("description"),
        source_branch=data["source_branch"],
        target_branch=data["target_branch"],
        created_at=data["created_at"],
        merged_at=data.get("merged_at"),
        state=data["state"],
        author_user_id=str(author["id"]),
        author_name=author.get("username") or author.get("name") or "",
        pr_url=data["web_url"],
        platform=SourceControlPlatform.GITLAB,
        project_path=project_path,
    )


class GitLabGateway(HttpGateway):
    """Fetches merged merge requests and branches from GitLab."""

    service_name = "gitlab"

    def _project_url(self, project_path: str) -> str:
        return f"/api/v4/projects/{quote(project_path, safe='')}"

    async def _get_pages(self, client, url: str, not_found, params: Dict[str, Any]) -> Result:
        """Collect every page of a `page`/`per_page` paginated list."""
        items: List[Any] = []
        page = 1
        while True:
            result = await self._get_json(
                client, url, not_found, params={**params, "page": page, "per_page": PER_PAGE}
            )
            if result.is_failure:
                return result
            if not isinstance(result.value, list):
                return Result.failure(SourceControlErrors.invalid_response())
            if not result.value:
                break
            items.extend(result.value)
            page += 1
        return Result.success(items)

    async def fetch_by_date_range(
        self,
        project_path: str,
        target_branch: str,
        start: datetime,
        end: datetime,
        state: Optional[str] = None,
    ) -> Result:
        state = state or MERGED_STATE
        logger.info(
            f"Fetching {state} GitLab merge requests into {target_branch} "
            f"between {start.isoformat()} and {end.isoformat()}",
            extra={"project_path": project_path, "platform": "GitLab"},
        )

        params = {
            "state": state,
            "target_branch": target_branch,
            "updated_after": start.isoformat(),
            "updated_before": end.isoformat(),
        }
        async with self._client() as client:
            pages = await self._get_pages(
                client,
                f"{self._project_url(project_path)}/merge_requests",
                SourceControlErrors.project_not_found(project_path),
                params,
            )
        if pages.is_failure:
            return pages

        try:
            merge_requests = [map_merge_request(item, project_path) for item in pages.value]
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"Unexpected GitLab merge request payload: {e}")
            return Result.failure(SourceControlErrors.invalid_response())

        merged_only = state == MERGED_STATE
        matched = [mr for mr in merge_requests if in_window(window_moment(mr, merged_only), start, end)]
        logger.info(
            f"Fetched {len(matched)} {state} GitLab merge requests",
            extra={"project_path": project_path, "platform": "GitLab"},
        )
        return Result.success(matched)

    async def fetch_by_branch_diff(
        self,
        project_path: str,
        source_branch: str,
        target_branch: str,
    ) -> Result:
        logger.info(
            f"Comparing GitLab branches {target_branch}...{source_branch}",
            extra={"project_path": project_path, "platform": "GitLab"},
        )
        project_url = self._project_url(project_path)
        project_missing = SourceControlErrors.project_not_found(project_path)

        async with self._client() as client:
            compare = await self._get_json(
                client,
                f"{project_url}/repository/compare",
                SourceControlErrors.branch_not_found(source_branch),
                params={"from": target_branch, "to": source_branch},
            )
            if compare.is_failure:
                return compare
            if not isinstance(compare.value, dict):
                return Result.failure(SourceControlErrors.invalid_response())

            merge_requests: List[MergeRequest] = []
            for commit in compare.value.get("commits") or []:
                sha = commit.get("id") if isinstance(commit, dict) else None
                if not sha:
                    return Result.failure(SourceControlErrors.invalid_response())

                related = await self._get_json(
                    client, f"{project_url}/repository/commits/{sha}/merge_requests", project_missing
                )
                if related.is_failure:
                    return related

                try:
                    merge_requests.extend(
                        map_merge_request(item, project_path)
                        for item in related.value or []
                        if item.get("state") == MERGED_STATE
                    )
                except (AttributeError, KeyError, TypeError, ValueError) as e:
                    logger.error(f"Unexpected GitLab merge request payload: {e}")
                    return Result.failure(SourceControlErrors.invalid_response())

        unique = dedupe_by_url(merge_requests)
        logger.info(
            f"Found {len(unique)} merge requests between {target_branch} and {source_branch}",
            extra={"project_path": project_path, "platform": "GitLab"},
        )
        return Result.success(unique)

    async def list_branches(self, project_path: str, prefix: Optional[str] = None) -> Result:
        params: Dict[str, Any] = {}
        if prefix:
            params["search"] = f"^{prefix}"

        async with self._client() as client:
            pages = await self._get_pages(
                client,
                f"{self._project_url(project_path)}/repository/branches",
                SourceControlErrors.project_not_found(project_path),
                params,
            )
        if pages.is_failure:
            return pages

        try:
            names = [item["name"] for item in pages.value]
        except (KeyError, TypeError):
            return Result.failure(SourceControlErrors.invalid_response())

        if prefix:
            names = [name for name in names if name.startswith(prefix)]
        return Result.success(names)
