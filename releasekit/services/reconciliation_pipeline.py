"""
Staged reconciliation pipeline.

Drives merge requests through the stages

    raw_pull_requests -> filtered_pull_requests -> release_branches
        -> work_items -> user_story_work_items -> consolidated

Each stage either reuses its cached artifact or runs and persists its
payload before the next stage starts. Stage artifacts are written only after
a stage body completes, so a failed or cancelled stage leaves nothing behind.
"""

import asyncio
import time
from typing import Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, ValidationError

from releasekit.models.error import Error, PipelineErrors, Result
from releasekit.models.fetch_request import (
    BranchDiffFetchRequest,
    FetchMode,
    FetchRequest,
    create_branch_diff_request,
    create_date_time_range_request,
)
from releasekit.models.mapping import PipelineConfig, ProjectConfig
from releasekit.models.merge_request import MergeRequest, SourceControlPlatform
from releasekit.models.stage_data import (
    REQUIRED_STAGES,
    STAGE_ORDER,
    ConsolidatedReleaseResult,
    PipelineReport,
    ProjectResult,
    PullRequestFetchResult,
    ReleaseBranchSnapshot,
    ResolvedWorkItem,
    SkippedItem,
    Stage,
    StageStatus,
    UserStoryResolutionResult,
    WorkItemFetchResult,
    WorkItemLink,
)
from releasekit.models.work_item import ResolutionStatus
from releasekit.services.consolidation import consolidate
from releasekit.services.hierarchy_resolver import resolve_with_status
from releasekit.services.source_control import SourceControlGateway
from releasekit.services.staged_cache import StagedCache
from releasekit.utils.logging import get_logger, log_error_with_context, log_stage_transition
from releasekit.utils.metrics import MetricsCollector
from releasekit.utils.release_branch import (
    RELEASE_BRANCH_PREFIX,
    find_next_newer,
    is_latest,
    is_release_branch,
    sort_descending,
)
from releasekit.utils.ticket_id import parse_merge_request_ticket


logger = get_logger(__name__)

AZURE_UNAUTHORIZED = "AzureDevOps.Unauthorized"
NOT_FOUND_BRANCH = "NotFound"

WorkItemFetcher = Callable[[int], Awaitable[Result]]
M = TypeVar("M", bound=BaseModel)


class PipelineCancelledError(Exception):
    """Raised when a run is cancelled through its cancel event."""
    pass


class _RunState:
    """Mutable state of a single pipeline run."""

    def __init__(
        self,
        dataset_hash: str,
        report: PipelineReport,
        cancel_event: Optional[asyncio.Event],
    ):
        self.dataset_hash = dataset_hash
        self.report = report
        self.cancel_event = cancel_event
        self.log = logger.with_context(dataset_hash=dataset_hash)
        self.payloads: Dict[Stage, BaseModel] = {}
        # Work item fetches, including failures, shared by all stages of the run.
        self.work_items: Dict[int, Result] = {}


class ReconciliationPipeline:
    """
    Orchestrates one reconciliation run over the staged cache.

    Usage:
        pipeline = ReconciliationPipeline(cache, gateways, client.get_work_item, config)
        report = await pipeline.run(dataset_hash)
    """

    def __init__(
        self,
        cache: StagedCache,
        gateways: Mapping[SourceControlPlatform, SourceControlGateway],
        fetch_work_item: WorkItemFetcher,
        config: PipelineConfig,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.cache = cache
        self.gateways = dict(gateways)
        self.fetch_work_item = fetch_work_item
        self.config = config
        self.metrics = metrics

        self._stage_handlers: Dict[Stage, Callable[[_RunState], Awaitable[Result]]] = {
            Stage.RAW_PULL_REQUESTS: self._fetch_changes,
            Stage.FILTERED_PULL_REQUESTS: self._filter_by_user,
            Stage.RELEASE_BRANCHES: self._fetch_release_branches,
            Stage.WORK_ITEMS: self._fetch_work_items,
            Stage.USER_STORY_WORK_ITEMS: self._resolve_hierarchy,
            Stage.CONSOLIDATED: self._consolidate,
        }

    async def run(
        self,
        dataset_hash: str,
        *,
        force_refresh: bool = False,
        force_stages: Iterable[Stage] = (),
        until: Stage = Stage.CONSOLIDATED,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> PipelineReport:
        """
        Run every stage up to and including `until`.

        Args:
            dataset_hash: Key shared by all stage artifacts of this dataset
            force_refresh: Re-run every stage even when cached
            force_stages: Stages to re-run even when cached
            until: Last stage to run
            cancel_event: Set to stop the run at the next project/item boundary

        Returns:
            PipelineReport with per-stage status, skipped items and, when the
            consolidated stage was reached, the consolidated result

        Raises:
            ValueError: If a project's fetch settings are incomplete or invalid
            PipelineCancelledError: If `cancel_event` was set during the run
        """
        forced = set(force_stages)
        stages = STAGE_ORDER[: STAGE_ORDER.index(until) + 1]
        report = PipelineReport(
            dataset_hash=dataset_hash,
            stages={stage: StageStatus.NOT_RUN for stage in STAGE_ORDER},
        )
        run = _RunState(dataset_hash, report, cancel_event)

        if self.metrics:
            self.metrics.start()

        try:
            for stage in stages:
                stage_start = time.time()

                if not (force_refresh or stage in forced) and await self.cache.has_stage(dataset_hash, stage):
                    report.stages[stage] = StageStatus.CACHED
                    log_stage_transition(run.log, dataset_hash, stage.value, "cached")
                    self._record_stage(stage, stage_start, cached=True)
                    continue

                self._check_cancelled(run)
                log_stage_transition(run.log, dataset_hash, stage.value, "started")

                result = await self._stage_handlers[stage](run)
                if result.is_failure:
                    return self._fail(run, stage, result.error)

                payload: BaseModel = result.value
                written = await self.cache.write_stage(dataset_hash, stage, payload.model_dump_json())
                if not written:
                    if stage in REQUIRED_STAGES:
                        return self._fail(run, stage, PipelineErrors.cache_write_failed(stage.value))
                    run.log.warning(f"Stage {stage.value} could not be cached; continuing")

                run.payloads[stage] = payload
                report.stages[stage] = StageStatus.EXECUTED
                log_stage_transition(run.log, dataset_hash, stage.value, "completed")
                self._record_stage(stage, stage_start, cached=False)

            if Stage.CONSOLIDATED in stages:
                consolidated = await self._load(run, Stage.CONSOLIDATED, ConsolidatedReleaseResult)
                if consolidated.is_failure:
                    return self._fail(run, Stage.CONSOLIDATED, consolidated.error)
                report.result = consolidated.value

        except PipelineCancelledError:
            run.log.warning("Pipeline run cancelled")
            if self.metrics:
                self.metrics.complete(status="cancelled")
            raise

        report.success = True
        run.log.info(
            f"Pipeline run completed ({len(report.skipped)} skipped items)",
            extra={"skipped_count": len(report.skipped)},
        )
        if self.metrics:
            self.metrics.complete(status="completed")
        return report

    # ------------------------------------------------------------------
    # Run helpers
    # ------------------------------------------------------------------

    def _check_cancelled(self, run: _RunState) -> None:
        if run.cancel_event is not None and run.cancel_event.is_set():
            raise PipelineCancelledError(f"Pipeline run {run.dataset_hash} cancelled")

    def _fail(self, run: _RunState, stage: Stage, error: Error) -> PipelineReport:
        run.report.stages[stage] = StageStatus.FAILED
        run.report.error = error
        run.report.success = False
        log_stage_transition(run.log, run.dataset_hash, stage.value, "failed")
        run.log.error(f"Stage {stage.value} failed: {error}", extra={"stage": stage.value, "error_code": error.code})
        if self.metrics:
            self.metrics.complete(status="failed", error_message=str(error))
        return run.report

    def _record_stage(self, stage: Stage, started: float, cached: bool) -> None:
        if self.metrics:
            self.metrics.record_stage(stage.value, (time.time() - started) * 1000, cached)

    def _skip(self, run: _RunState, stage: Stage, reference: str, error: Error) -> None:
        run.report.skipped.append(
            SkippedItem(stage=stage, reference=reference, reason_code=error.code, message=error.message)
        )
        run.log.warning(f"Skipped {reference}: {error}", extra={"stage": stage.value})
        if self.metrics:
            self.metrics.record_skipped()

    async def _load(self, run: _RunState, stage: Stage, model: Type[M]) -> Result:
        """Return a stage payload from this run, or from the cache."""
        if stage in run.payloads:
            return Result.success(run.payloads[stage])

        raw = await self.cache.read_stage(run.dataset_hash, stage)
        if raw is None:
            return Result.failure(PipelineErrors.missing_stage_data(stage.value))

        try:
            payload = model.model_validate_json(raw)
        except ValidationError as e:
            run.log.error(f"Cached stage {stage.value} is unreadable: {e}")
            return Result.failure(PipelineErrors.missing_stage_data(stage.value))

        run.payloads[stage] = payload
        return Result.success(payload)

    async def _get_work_item(self, run: _RunState, work_item_id: int) -> Result:
        """Fetch a work item at most once per run."""
        if work_item_id not in run.work_items:
            run.work_items[work_item_id] = await self.fetch_work_item(work_item_id)
        return run.work_items[work_item_id]

    # ------------------------------------------------------------------
    # FetchChanges
    # ------------------------------------------------------------------

    def _build_request(self, project: ProjectConfig) -> FetchRequest:
        """
        Build the fetch request of a project, falling back to global defaults.

        Raises:
            ValueError: If a required setting is missing or invalid
        """
        defaults = self.config.fetch
        mode = project.fetch_mode or defaults.fetch_mode
        target_branch = project.target_branch or defaults.target_branch

        if mode == FetchMode.BRANCH_DIFF:
            source_branch = project.source_branch or defaults.source_branch
            if not source_branch or not target_branch:
                raise ValueError(
                    f"Project '{project.project_path}' needs source_branch and target_branch "
                    "for BranchDiff mode"
                )
            return create_branch_diff_request(project.project_path, source_branch, target_branch)

        start = project.start_date_time or defaults.start_date_time
        end = project.end_date_time or defaults.end_date_time
        if not target_branch or start is None or end is None:
            raise ValueError(
                f"Project '{project.project_path}' needs target_branch, start_date_time and "
                "end_date_time for DateTimeRange mode"
            )
        return create_date_time_range_request(project.project_path, target_branch, start, end, defaults.state)

    def _gateway_for(self, platform: SourceControlPlatform) -> SourceControlGateway:
        gateway = self.gateways.get(platform)
        if gateway is None:
            raise ValueError(f"No gateway configured for platform {platform.value}")
        return gateway

    async def _effective_target(
        self,
        run: _RunState,
        gateway: SourceControlGateway,
        request: BranchDiffFetchRequest,
    ) -> str:
        """
        Pick the target branch of a branch-diff fetch.

        A release source branch that is not the latest release is compared
        against the release that follows it; otherwise the configured target
        is used.
        """
        if not is_release_branch(request.source_branch):
            return request.target_branch

        listing = await gateway.list_branches(request.project_id, prefix=RELEASE_BRANCH_PREFIX)
        if listing.is_failure:
            run.log.warning(
                f"Could not list release branches, keeping target {request.target_branch}: {listing.error}",
                extra={"project_path": request.project_id},
            )
            return request.target_branch

        branches = listing.value
        if is_latest(request.source_branch, branches):
            return request.target_branch

        next_newer = find_next_newer(request.source_branch, branches)
        if next_newer is None:
            return request.target_branch

        run.log.info(
            f"Source {request.source_branch} is not the latest release; comparing against {next_newer}",
            extra={"project_path": request.project_id},
        )
        return next_newer

    async def _fetch_changes(self, run: _RunState) -> Result:
        # Validate every project before issuing any request.
        requests: List[Tuple[ProjectConfig, SourceControlGateway, FetchRequest]] = [
            (project, self._gateway_for(project.platform), self._build_request(project))
            for project in self.config.projects
        ]

        seen = set()
        results: List[ProjectResult] = []
        for project, gateway, request in requests:
            self._check_cancelled(run)
            log = run.log.with_context(project_path=project.project_path, platform=project.platform.value)

            if isinstance(request, BranchDiffFetchRequest):
                target_branch = await self._effective_target(run, gateway, request)
                fetched = await gateway.fetch_by_branch_diff(
                    request.project_id, request.source_branch, target_branch
                )
            else:
                fetched = await gateway.fetch_by_date_range(
                    request.project_id, request.target_branch, request.start, request.end, state=request.state
                )

            if fetched.is_failure:
                log.error(f"Fetching merge requests failed: {fetched.error}")
                return fetched

            unique: List[MergeRequest] = []
            for mr in fetched.value:
                if mr.dedup_key in seen:
                    continue
                seen.add(mr.dedup_key)
                unique.append(mr)

            log.info(f"Fetched {len(unique)} merge requests")
            results.append(
                ProjectResult(project_path=project.project_path, platform=project.platform, pull_requests=unique)
            )

        return Result.success(PullRequestFetchResult(results=results))

    # ------------------------------------------------------------------
    # FilterByUser
    # ------------------------------------------------------------------

    async def _filter_by_user(self, run: _RunState) -> Result:
        loaded = await self._load(run, Stage.RAW_PULL_REQUESTS, PullRequestFetchResult)
        if loaded.is_failure:
            return loaded

        if not self.config.user_mappings:
            run.log.warning("No user mappings configured; every merge request will be dropped")

        display_names: Dict[Tuple[SourceControlPlatform, str], str] = {}
        for mapping in self.config.user_mappings:
            for platform in SourceControlPlatform:
                user_id = mapping.user_id_for(platform)
                if user_id:
                    display_names[(platform, user_id)] = mapping.display_name

        dropped = 0
        results: List[ProjectResult] = []
        for project_result in loaded.value.results:
            self._check_cancelled(run)
            kept: List[MergeRequest] = []
            for mr in project_result.pull_requests:
                display_name = display_names.get((mr.platform, mr.author_user_id))
                if display_name is None:
                    dropped += 1
                    continue
                kept.append(mr.model_copy(update={"author_name": display_name}))

            results.append(
                ProjectResult(
                    project_path=project_result.project_path,
                    platform=project_result.platform,
                    pull_requests=kept,
                )
            )

        run.log.info(f"Dropped {dropped} merge requests by unmapped authors", extra={"dropped_count": dropped})
        return Result.success(PullRequestFetchResult(results=results, dropped_count=dropped))

    # ------------------------------------------------------------------
    # FetchReleaseBranches
    # ------------------------------------------------------------------

    async def _fetch_release_branches(self, run: _RunState) -> Result:
        branches: Dict[str, List[str]] = {}

        for project in self.config.projects:
            self._check_cancelled(run)
            gateway = self._gateway_for(project.platform)

            listing = await gateway.list_branches(project.project_path, prefix=RELEASE_BRANCH_PREFIX)
            latest = None
            if listing.is_success:
                ordered = sort_descending(listing.value)
                latest = ordered[0] if ordered else None
            else:
                run.log.warning(
                    f"Listing release branches failed: {listing.error}",
                    extra={"project_path": project.project_path},
                )

            branches.setdefault(latest or NOT_FOUND_BRANCH, []).append(project.project_path)

        return Result.success(ReleaseBranchSnapshot(branches=branches))

    # ------------------------------------------------------------------
    # FetchWorkItems
    # ------------------------------------------------------------------

    async def _fetch_work_items(self, run: _RunState) -> Result:
        loaded = await self._load(run, Stage.FILTERED_PULL_REQUESTS, PullRequestFetchResult)
        if loaded.is_failure:
            return loaded

        pull_requests = loaded.value.all_pull_requests()
        links: List[WorkItemLink] = []
        failures = 0

        for mr in pull_requests:
            self._check_cancelled(run)

            ticket_id = parse_merge_request_ticket(mr.source_branch, mr.title)
            if ticket_id is None:
                self._skip(run, Stage.WORK_ITEMS, mr.pr_url, PipelineErrors.no_ticket_id(mr.pr_url))
                continue

            fetched = await self._get_work_item(run, ticket_id)
            if fetched.is_failure:
                if fetched.error.code == AZURE_UNAUTHORIZED:
                    return fetched
                failures += 1
                self._skip(run, Stage.WORK_ITEMS, f"{mr.pr_url} (VSTS{ticket_id})", fetched.error)
                continue

            links.append(WorkItemLink(pr_url=mr.pr_url, work_item=fetched.value))

        run.log.info(f"Fetched {len(links)} work items for {len(pull_requests)} merge requests")
        return Result.success(
            WorkItemFetchResult(
                work_items=links,
                total_prs_analyzed=len(pull_requests),
                total_work_items_found=len(links),
                failure_count=failures,
            )
        )

    # ------------------------------------------------------------------
    # ResolveHierarchy
    # ------------------------------------------------------------------

    async def _resolve_hierarchy(self, run: _RunState) -> Result:
        loaded = await self._load(run, Stage.WORK_ITEMS, WorkItemFetchResult)
        if loaded.is_failure:
            return loaded

        links = loaded.value.work_items
        for link in links:
            run.work_items.setdefault(link.work_item.work_item_id, Result.success(link.work_item))

        async def fetch_parent(work_item_id: int) -> Result:
            self._check_cancelled(run)
            return await self._get_work_item(run, work_item_id)

        resolution = UserStoryResolutionResult(total_count=len(links))
        for link in links:
            self._check_cancelled(run)

            resolved, status = await resolve_with_status(link.work_item, fetch_parent)
            if resolved.is_failure:
                resolution.failed_count += 1
                self._skip(run, Stage.USER_STORY_WORK_ITEMS, str(link.work_item.work_item_id), resolved.error)
                continue

            if status == ResolutionStatus.ALREADY_USER_STORY_OR_ABOVE:
                resolution.already_user_story_count += 1
            else:
                resolution.found_via_recursion_count += 1

            resolution.items.append(
                ResolvedWorkItem(
                    pr_url=link.pr_url,
                    work_item=link.work_item,
                    governing=resolved.value,
                    status=status,
                )
            )

        run.log.info(
            f"Resolved {len(resolution.items)}/{resolution.total_count} work items to a User Story or above"
        )
        return Result.success(resolution)

    # ------------------------------------------------------------------
    # Consolidate
    # ------------------------------------------------------------------

    async def _consolidate(self, run: _RunState) -> Result:
        filtered = await self._load(run, Stage.FILTERED_PULL_REQUESTS, PullRequestFetchResult)
        if filtered.is_failure:
            return filtered
        resolved = await self._load(run, Stage.USER_STORY_WORK_ITEMS, UserStoryResolutionResult)
        if resolved.is_failure:
            return resolved

        try:
            result = consolidate(
                filtered.value.all_pull_requests(),
                resolved.value.items,
                self.config.team_mappings,
                self.config.team_sort_rules,
            )
        except (KeyError, TypeError, ValueError) as e:
            log_error_with_context(run.log, "Building consolidated rows failed", e, stage=Stage.CONSOLIDATED.value)
            return Result.failure(PipelineErrors.consolidation_failed(str(e)))

        run.log.info(f"Consolidated {len(result.rows())} rows across {len(result.projects)} projects")
        return Result.success(result)
