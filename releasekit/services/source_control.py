"""
Source-control gateway interface and shared HTTP plumbing.

Gateways turn platform REST APIs into normalized MergeRequest lists. All
expected failures (auth, missing project, rate limits, network) come back as
failed Results; nothing here raises for remote errors.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

import httpx

from releasekit.models.error import Error, Result, SourceControlErrors
from releasekit.models.merge_request import MergeRequest
from releasekit.utils.logging import get_logger
from releasekit.utils.metrics import MetricsCollector, track_api_call


logger = get_logger(__name__)


class SourceControlGateway(Protocol):
    """Interface shared by the GitLab and Bitbucket gateways."""

    async def fetch_by_date_range(
        self,
        project_path: str,
        target_branch: str,
        start: datetime,
        end: datetime,
        state: Optional[str] = None,
    ) -> Result:
        """
        Merge requests into `target_branch` within [start, end].

        `state` is a platform state filter; merged when None. Merged requests
        are windowed on their merge time, others on their creation time.
        """
        ...

    async def fetch_by_branch_diff(
        self,
        project_path: str,
        source_branch: str,
        target_branch: str,
    ) -> Result:
        """Merged merge requests whose commits are in source but not target."""
        ...

    async def list_branches(self, project_path: str, prefix: Optional[str] = None) -> Result:
        """Branch names of a project, optionally restricted to a prefix."""
        ...


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so they compare with API timestamps."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def window_moment(mr: MergeRequest, merged_only: bool) -> Optional[datetime]:
    if merged_only:
        return mr.merged_at
    return mr.merged_at or mr.created_at


def in_window(moment: Optional[datetime], start: datetime, end: datetime) -> bool:
    if moment is None:
        return False
    return ensure_utc(start) <= ensure_utc(moment) <= ensure_utc(end)


def error_for_status(status_code: int, not_found: Error) -> Optional[Error]:
    """
    Map an HTTP status to a source-control error.

    Returns:
        None for 2xx responses, otherwise the matching Error
    """
    if 200 <= status_code < 300:
        return None
    if status_code == 401:
        return SourceControlErrors.unauthorized()
    if status_code == 404:
        return not_found
    if status_code == 429:
        return SourceControlErrors.rate_limit_exceeded()
    return SourceControlErrors.api_error(f"HTTP {status_code}")


def dedupe_by_url(merge_requests: List[MergeRequest]) -> List[MergeRequest]:
    """Drop repeated merge requests, keeping first-seen order."""
    seen = set()
    unique = []
    for mr in merge_requests:
        if mr.pr_url in seen:
            continue
        seen.add(mr.pr_url)
        unique.append(mr)
    return unique


class HttpGateway:
    """
    Base for REST gateways built on httpx.

    Subclasses set `service_name` and implement the SourceControlGateway
    operations on top of `_get_json`.
    """

    service_name = "source_control"

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 30.0,
        metrics: Optional[MetricsCollector] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._headers: Dict[str, str] = {"Accept": "application/json"}
        if token:
            self._headers["Authorization"] = f"Bearer {token}"
        self._timeout = timeout
        self._metrics = metrics
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._headers,
            timeout=self._timeout,
            transport=self._transport,
        )

    async def _get_json(
        self,
        client: httpx.AsyncClient,
        url: str,
        not_found: Error,
        params: Optional[Dict[str, Any]] = None,
    ) -> Result:
        """
        GET `url` and decode its JSON body.

        Returns:
            Result holding the decoded JSON, or the mapped error
        """
        try:
            async with track_api_call(self._metrics, self.service_name, logger, endpoint=url):
                response = await client.get(url, params=params)
        except httpx.TransportError as e:
            return Result.failure(SourceControlErrors.network_error(str(e)))

        error = error_for_status(response.status_code, not_found)
        if error is not None:
            logger.warning(
                f"{self.service_name} request failed with HTTP {response.status_code}: {url}",
                extra={"status_code": response.status_code},
            )
            return Result.failure(error)

        try:
            return Result.success(response.json())
        except ValueError:
            logger.error(f"{self.service_name} returned a non-JSON body for {url}")
            return Result.failure(SourceControlErrors.invalid_response())
