"""
Utility modules for releasekit.
"""

from releasekit.utils.logging import (
    get_logger,
    setup_logging,
    log_stage_transition,
    log_api_call,
    log_error_with_context,
)
from releasekit.utils.metrics import (
    MetricsCollector,
    track_api_call,
)

__all__ = [
    "get_logger",
    "setup_logging",
    "log_stage_transition",
    "log_api_call",
    "log_error_with_context",
    "MetricsCollector",
    "track_api_call",
]
