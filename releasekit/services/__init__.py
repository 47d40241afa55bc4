"""Pipeline services package."""

from releasekit.services.redis_client import (
    RedisClient,
    RedisConnectionError
)
from releasekit.services.staged_cache import StagedCache
from releasekit.services.hierarchy_resolver import (
    MAX_DEPTH,
    resolve_governing_ancestor,
    resolve_with_status
)
from releasekit.services.source_control import SourceControlGateway
from releasekit.services.gitlab_gateway import GitLabGateway
from releasekit.services.bitbucket_gateway import BitbucketGateway
from releasekit.services.work_item_client import (
    WorkItemClient,
    get_work_item_client
)
from releasekit.services.reconciliation_pipeline import (
    PipelineCancelledError,
    ReconciliationPipeline
)

__all__ = [
    'RedisClient',
    'RedisConnectionError',
    'StagedCache',
    'MAX_DEPTH',
    'resolve_governing_ancestor',
    'resolve_with_status',
    'SourceControlGateway',
    'GitLabGateway',
    'BitbucketGateway',
    'WorkItemClient',
    'get_work_item_client',
    'PipelineCancelledError',
    'ReconciliationPipeline'
]
