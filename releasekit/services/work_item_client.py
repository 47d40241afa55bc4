"""
Work item client for Azure DevOps.

Retrieves single work items from the Azure DevOps REST API
(`_apis/wit/workitems/{id}?$expand=all`). Transient failures (transport
errors, throttling, 5xx) are retried with exponential backoff behind a
circuit breaker; everything else maps straight onto AzureDevOps errors.
"""

import asyncio
from typing import Any, Dict, List, Optional

import httpx

from releasekit.models.error import AzureDevOpsErrors, Result
from releasekit.models.work_item import WorkItem
from releasekit.utils.logging import get_logger
from releasekit.utils.metrics import MetricsCollector, track_api_call
from releasekit.utils.resilience import (
    CircuitBreaker,
    CircuitBreakerOpenError,
    backoff_delay,
    create_azure_devops_circuit_breaker,
)


logger = get_logger(__name__)

API_VERSION = "7.0"
PARENT_RELATION = "System.LinkTypes.Hierarchy-Reverse"


class TransientWorkItemError(Exception):
    """Transient error that may succeed on retry."""
    pass


def extract_parent_id(relations: Optional[List[Dict[str, Any]]]) -> Optional[int]:
    """
    Find the parent id among a work item's relations.

    The parent link URL ends with the parent's id, e.g.
    `https://dev.azure.com/org/project/_apis/wit/workItems/12345`.
    """
    for relation in relations or []:
        rel = relation.get("rel") or ""
        if rel.lower() != PARENT_RELATION.lower():
            continue

        url = relation.get("url") or ""
        last_segment = url.rstrip("/").split("/")[-1]
        if last_segment.isdigit():
            return int(last_segment)
        return None

    return None


def _field(fields: Dict[str, Any], name: str) -> str:
    value = fields.get(name)
    return "" if value is None else str(value)


class WorkItemClient:
    """
    Fetches work items from Azure DevOps.

    Usage:
        client = WorkItemClient("https://dev.azure.com/my-org", pat)
        result = await client.get_work_item(12345)
    """

    def __init__(
        self,
        organization_url: str,
        personal_access_token: str,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        circuit_breaker: Optional[CircuitBreaker] = None,
        metrics: Optional[MetricsCollector] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the client.

        Args:
            organization_url: Azure DevOps organization URL
            personal_access_token: PAT for authentication
            max_retries: Maximum number of attempts for transient failures
            base_delay: Base delay in seconds for exponential backoff
            max_delay: Maximum delay in seconds between retries
            circuit_breaker: Optional CircuitBreaker instance for fault tolerance
            metrics: Optional collector for API call timing
            timeout: HTTP timeout in seconds
            transport: Custom httpx transport (used in tests)
        """
        self.organization_url = organization_url.rstrip("/")
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.metrics = metrics

        self.circuit_breaker = circuit_breaker or create_azure_devops_circuit_breaker()

        self._auth = ("", personal_access_token)
        self._timeout = timeout
        self._transport = transport

        logger.info(f"WorkItemClient initialized for organization: {self.organization_url}")

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.organization_url,
            auth=self._auth,
            headers={"Accept": "application/json"},
            timeout=self._timeout,
            transport=self._transport,
        )

    async def _get_with_retry(self, client: httpx.AsyncClient, url: str, params: Dict[str, str]) -> httpx.Response:
        """
        GET with exponential backoff retry and circuit breaker protection.

        Raises:
            TransientWorkItemError: If all retries are exhausted
            CircuitBreakerOpenError: If the circuit is open
        """
        async def _execute() -> httpx.Response:
            try:
                response = await client.get(url, params=params)
            except httpx.TransportError as e:
                raise TransientWorkItemError(f"Network error: {e}") from e

            if response.status_code == 429 or response.status_code >= 500:
                raise TransientWorkItemError(f"HTTP {response.status_code}")
            return response

        for attempt in range(self.max_retries):
            try:
                response = await self.circuit_breaker.call(_execute)
                if attempt > 0:
                    logger.info(f"Retry succeeded on attempt {attempt + 1}")
                return response

            except TransientWorkItemError as e:
                if attempt == self.max_retries - 1:
                    logger.error(f"All {self.max_retries} retry attempts exhausted: {e}")
                    raise

                delay = backoff_delay(attempt, self.base_delay, self.max_delay)
                logger.warning(
                    f"Attempt {attempt + 1}/{self.max_retries} failed: {e}. "
                    f"Retrying in {delay:.1f}s..."
                )
                await asyncio.sleep(delay)

        raise RuntimeError(f"_get_with_retry called with max_retries={self.max_retries}")

    def _html_url(self, data: Dict[str, Any], fields: Dict[str, Any]) -> str:
        href = ((data.get("_links") or {}).get("html") or {}).get("href")
        if href:
            return href

        project = fields.get("System.TeamProject")
        if project:
            return f"{self.organization_url}/{project}/_workitems/edit/{data['id']}"
        return f"{self.organization_url}/_workitems/edit/{data['id']}"

    def _to_work_item(self, data: Dict[str, Any]) -> WorkItem:
        fields = data.get("fields") or {}
        return WorkItem(
            work_item_id=data["id"],
            title=_field(fields, "System.Title"),
            type=_field(fields, "System.WorkItemType"),
            state=_field(fields, "System.State"),
            url=self._html_url(data, fields),
            original_team_name=_field(fields, "System.AreaPath"),
            parent_work_item_id=extract_parent_id(data.get("relations")),
        )

    async def get_work_item(self, work_item_id: int) -> Result:
        """
        Retrieve one work item with its relations.

        Returns:
            Result holding the WorkItem, or Unauthorized / WorkItemNotFound /
            ApiError
        """
        log = logger.with_context(work_item_id=work_item_id)
        url = f"/_apis/wit/workitems/{work_item_id}"

        try:
            async with self._client() as client:
                async with track_api_call(self.metrics, "azure_devops", log, endpoint=url):
                    response = await self._get_with_retry(
                        client, url, {"$expand": "all", "api-version": API_VERSION}
                    )
        except (TransientWorkItemError, CircuitBreakerOpenError) as e:
            return Result.failure(AzureDevOpsErrors.api_error(str(e)))

        # A rejected PAT is answered with 203 and an HTML sign-in page.
        if response.status_code in (401, 203):
            return Result.failure(AzureDevOpsErrors.unauthorized())
        if response.status_code == 404:
            return Result.failure(AzureDevOpsErrors.work_item_not_found(work_item_id))
        if response.status_code != 200:
            return Result.failure(AzureDevOpsErrors.api_error(f"HTTP {response.status_code}"))

        try:
            return Result.success(self._to_work_item(response.json()))
        except (KeyError, TypeError, ValueError) as e:
            log.error(f"Unexpected work item payload: {e}")
            return Result.failure(AzureDevOpsErrors.api_error("Response could not be parsed"))


def get_work_item_client(metrics: Optional[MetricsCollector] = None) -> WorkItemClient:
    """
    Factory function to create a WorkItemClient from application settings.

    Raises:
        ValueError: If the organization URL or PAT is not configured
    """
    from releasekit.config import settings

    if not settings.azure_devops_org_url or not settings.azure_devops_pat:
        raise ValueError("AZURE_DEVOPS_ORG_URL and AZURE_DEVOPS_PAT must be set")

    return WorkItemClient(
        organization_url=settings.azure_devops_org_url,
        personal_access_token=settings.azure_devops_pat,
        metrics=metrics,
        timeout=settings.http_timeout_seconds,
    )
