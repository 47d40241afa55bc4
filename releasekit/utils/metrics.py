"""
Run metrics for the reconciliation pipeline.

One MetricsCollector lives for one run and records:
- run start, end and final status
- per-stage duration and whether the cached artifact was reused
- call count and latency per external service
- how many items were skipped
The summary is logged when the run completes.
"""

import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from releasekit.utils.logging import get_logger, log_api_call

logger = get_logger(__name__)


def _latency_stats(samples: Sequence[float]) -> Dict[str, Any]:
    return {
        "count": len(samples),
        "min_ms": round(min(samples), 2),
        "max_ms": round(max(samples), 2),
        "avg_ms": round(sum(samples) / len(samples), 2),
    }


class MetricsCollector:
    """Collects metrics during one reconciliation run."""

    def __init__(self, dataset_hash: str):
        self.dataset_hash = dataset_hash
        self.status = "running"
        self.error_message: Optional[str] = None

        self.start_time: Optional[datetime] = None
        self.end_time: Optional[datetime] = None
        self.duration_ms: Optional[int] = None

        self.stage_durations_ms: Dict[str, int] = {}
        self.cached_stages: List[str] = []
        self.skipped_items = 0

        self.api_calls: Dict[str, int] = {}
        self.api_latencies: Dict[str, List[float]] = {}

    def start(self) -> None:
        self.start_time = datetime.now(timezone.utc)
        self.status = "running"
        logger.info("Run metrics started", extra={"dataset_hash": self.dataset_hash})

    def complete(self, status: str = "completed", error_message: Optional[str] = None) -> None:
        """
        Close the run and log the summary.

        Args:
            status: 'completed', 'failed' or 'cancelled'
            error_message: Failure description, if any
        """
        self.status = status
        self.error_message = error_message
        self.end_time = datetime.now(timezone.utc)
        if self.start_time is not None:
            self.duration_ms = int((self.end_time - self.start_time).total_seconds() * 1000)

        logger.info(
            f"Run metrics {status}",
            extra={"dataset_hash": self.dataset_hash, "metrics": self.get_metrics_summary()},
        )

    def record_stage(self, stage: str, duration_ms: float, cached: bool) -> None:
        self.stage_durations_ms[stage] = int(duration_ms)
        if cached:
            self.cached_stages.append(stage)

    def record_skipped(self, count: int = 1) -> None:
        self.skipped_items += count

    def record_api_call(self, service: str, duration_ms: float) -> None:
        """Count one call to `service` ('gitlab', 'bitbucket', 'azure_devops')."""
        self.api_calls[service] = self.api_calls.get(service, 0) + 1
        self.api_latencies.setdefault(service, []).append(duration_ms)

    def get_metrics_summary(self) -> Dict[str, Any]:
        summary: Dict[str, Any] = {
            "dataset_hash": self.dataset_hash,
            "status": self.status,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_ms": self.duration_ms,
            "stage_durations_ms": dict(self.stage_durations_ms),
            "cached_stages": list(self.cached_stages),
            "skipped_items": self.skipped_items,
            "api_calls": dict(self.api_calls),
        }

        latencies = {service: _latency_stats(samples) for service, samples in self.api_latencies.items() if samples}
        if latencies:
            summary["api_latencies"] = latencies
        if self.error_message:
            summary["error_message"] = self.error_message

        return summary


@asynccontextmanager
async def track_api_call(
    metrics_collector: Optional[MetricsCollector],
    service: str,
    logger_adapter,
    endpoint: str = "",
    method: str = "GET",
):
    """
    Time the enclosed call, record it and log it.

    Usage:
        async with track_api_call(metrics, "gitlab", logger, endpoint=url):
            response = await client.get(url)
    """
    started = time.perf_counter()
    failure: Optional[BaseException] = None
    try:
        yield
    except Exception as e:
        failure = e
        raise
    finally:
        elapsed_ms = (time.perf_counter() - started) * 1000
        if metrics_collector is not None:
            metrics_collector.record_api_call(service, elapsed_ms)
        log_api_call(
            logger_adapter,
            service=service,
            endpoint=endpoint,
            method=method,
            duration_ms=elapsed_ms,
            error=str(failure) if failure else None,
        )
