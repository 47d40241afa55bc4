"""
Command line entry point.

Runs one pipeline task per invocation:

    releasekit <task-name>

Each task runs the pipeline up to its stage, refreshing that stage and
reusing whatever upstream stages are already cached.
"""

import asyncio
import signal
import sys
from enum import Enum
from typing import Dict, List, Optional, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, ValidationError

from releasekit.config import Settings, compute_dataset_hash, load_pipeline_config, settings
from releasekit.models.error import Result
from releasekit.models.mapping import PipelineConfig
from releasekit.models.merge_request import SourceControlPlatform
from releasekit.models.stage_data import PipelineReport, Stage
from releasekit.services.bitbucket_gateway import BitbucketGateway
from releasekit.services.gitlab_gateway import GitLabGateway
from releasekit.services.reconciliation_pipeline import PipelineCancelledError, ReconciliationPipeline
from releasekit.services.redis_client import RedisClient, RedisConnectionError
from releasekit.services.staged_cache import StagedCache
from releasekit.services.work_item_client import WorkItemClient, get_work_item_client
from releasekit.utils.logging import get_logger, setup_logging
from releasekit.utils.metrics import MetricsCollector


logger = get_logger(__name__)

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2

USAGE = "Usage: releasekit <task-name>"


class TaskType(str, Enum):
    """Tasks selectable from the command line."""

    FETCH_RELEASE_BRANCH = "fetch-release-branch"
    FETCH_PR = "fetch-pr"
    FILTER_PR_BY_USER = "filter-pr-by-user"
    FETCH_AZURE_WORKITEMS = "fetch-azure-workitems"
    GET_USER_STORY = "get-user-story"
    CONSOLIDATE_RELEASE_DATA = "consolidate-release-data"
    RUN_ALL = "run-all"


# Last stage of each task, and whether that stage is refreshed.
TASK_STAGES: Dict[TaskType, Tuple[Stage, bool]] = {
    TaskType.FETCH_PR: (Stage.RAW_PULL_REQUESTS, True),
    TaskType.FILTER_PR_BY_USER: (Stage.FILTERED_PULL_REQUESTS, True),
    TaskType.FETCH_RELEASE_BRANCH: (Stage.RELEASE_BRANCHES, True),
    TaskType.FETCH_AZURE_WORKITEMS: (Stage.WORK_ITEMS, True),
    TaskType.GET_USER_STORY: (Stage.USER_STORY_WORK_ITEMS, True),
    TaskType.CONSOLIDATE_RELEASE_DATA: (Stage.CONSOLIDATED, True),
    TaskType.RUN_ALL: (Stage.CONSOLIDATED, False),
}


class ParseResult(BaseModel):
    """Outcome of parsing the command line."""

    model_config = ConfigDict(frozen=True)

    task: Optional[TaskType] = None
    error_message: Optional[str] = None

    @property
    def is_success(self) -> bool:
        return self.task is not None


class CommandLineParser:
    """Maps a single positional argument to a TaskType (case-insensitive)."""

    def __init__(self):
        self._tasks = {task.value: task for task in TaskType}

    def parse(self, args: List[str]) -> ParseResult:
        if not args:
            return ParseResult(error_message=f"No task specified. {USAGE}")

        if len(args) > 1:
            return ParseResult(error_message=f"Only one task can run at a time. {USAGE}")

        task = self._tasks.get(args[0].strip().lower())
        if task is None:
            valid = ", ".join(self._tasks)
            return ParseResult(error_message=f"Unsupported task: '{args[0]}'. Valid tasks: {valid}")

        return ParseResult(task=task)


def _work_item_fetcher(metrics: MetricsCollector):
    """Create the Azure DevOps client on first use, so tasks that never
    reach the work item stages do not need Azure DevOps credentials."""
    client: Optional[WorkItemClient] = None

    async def fetch(work_item_id: int) -> Result:
        nonlocal client
        if client is None:
            client = get_work_item_client(metrics)
        return await client.get_work_item(work_item_id)

    return fetch


def build_pipeline(
    app_settings: Settings,
    config: PipelineConfig,
    cache: StagedCache,
    metrics: MetricsCollector,
) -> ReconciliationPipeline:
    """Wire the pipeline with gateways configured from settings."""
    gateways = {
        SourceControlPlatform.GITLAB: GitLabGateway(
            app_settings.gitlab_url,
            app_settings.gitlab_token,
            timeout=app_settings.http_timeout_seconds,
            metrics=metrics,
        ),
        SourceControlPlatform.BITBUCKET: BitbucketGateway(
            app_settings.bitbucket_url,
            app_settings.bitbucket_token,
            timeout=app_settings.http_timeout_seconds,
            metrics=metrics,
        ),
    }
    return ReconciliationPipeline(cache, gateways, _work_item_fetcher(metrics), config, metrics=metrics)


def _register_signal_handlers(cancel_event: asyncio.Event) -> None:
    """Cancel the run cooperatively on SIGINT / SIGTERM."""
    loop = asyncio.get_running_loop()

    def signal_handler(signum, frame):
        signal_name = signal.Signals(signum).name
        logger.info(f"Received signal {signal_name}, cancelling pipeline run...")
        loop.call_soon_threadsafe(cancel_event.set)

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)


async def run_task(task: TaskType, app_settings: Settings = settings) -> int:
    """
    Run one task end to end.

    Returns:
        Process exit code
    """
    try:
        config = load_pipeline_config(app_settings.releasekit_config_file)
    except (OSError, yaml.YAMLError, ValidationError) as e:
        logger.error(f"Failed to load configuration {app_settings.releasekit_config_file}: {e}")
        return EXIT_FAILURE

    dataset_hash = app_settings.dataset_hash or compute_dataset_hash(config)
    until, refresh = TASK_STAGES[task]
    log = logger.with_context(dataset_hash=dataset_hash)
    log.info(f"Running task {task.value} up to stage {until.value}")

    redis_client = RedisClient(redis_url=app_settings.redis_url, instance_name=app_settings.redis_instance_name)
    try:
        await redis_client.initialize()
    except RedisConnectionError as e:
        log.error(f"Cache store unavailable: {e}")
        return EXIT_FAILURE

    metrics = MetricsCollector(dataset_hash)
    cache = StagedCache(redis_client, default_ttl=app_settings.cache_ttl_seconds)
    cancel_event = asyncio.Event()
    _register_signal_handlers(cancel_event)

    try:
        pipeline = build_pipeline(app_settings, config, cache, metrics)
        report: PipelineReport = await pipeline.run(
            dataset_hash,
            force_stages=(until,) if refresh else (),
            until=until,
            cancel_event=cancel_event,
        )
    except PipelineCancelledError as e:
        log.warning(str(e))
        return EXIT_FAILURE
    except ValueError as e:
        log.error(f"Invalid pipeline configuration: {e}")
        return EXIT_FAILURE
    except RedisConnectionError as e:
        log.error(f"Cache store lost during run: {e}")
        return EXIT_FAILURE
    finally:
        await redis_client.close()

    print(report.model_dump_json(indent=2))
    return EXIT_SUCCESS if report.success else EXIT_FAILURE


def main(argv: Optional[List[str]] = None) -> int:
    """Console entry point."""
    args = sys.argv[1:] if argv is None else argv

    parsed = CommandLineParser().parse(args)
    if not parsed.is_success:
        print(parsed.error_message, file=sys.stderr)
        return EXIT_USAGE

    setup_logging(settings.log_level.upper())
    return asyncio.run(run_task(parsed.task))


if __name__ == "__main__":
    sys.exit(main())
