"""
Structured JSON logging for pipeline runs.

Every record is written as one JSON object. Run context (dataset hash,
stage, project, work item) is attached through ContextLoggerAdapter and
promoted to top-level fields so log queries can filter on it directly.
"""

import json
import logging
import sys
import traceback
from datetime import datetime, timezone
from logging import LogRecord
from typing import IO, Any, Dict, MutableMapping, Optional


# Fields promoted to the top level of each JSON record.
CONTEXT_FIELDS = ("dataset_hash", "stage", "project_path", "platform", "work_item_id")

# Third-party loggers that only log at WARNING and above.
NOISY_LOGGERS = ("httpx", "httpcore")

_STANDARD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "taskName"}


class JSONFormatter(logging.Formatter):
    """
    Render a LogRecord as a single JSON line.

    Keys: timestamp (UTC, ISO 8601), level, logger, message, the context
    fields that are present, `context` for any other extras, `error` when
    exception info is attached and `source` (file, line, function).
    """

    def format(self, record: LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        extras = {key: value for key, value in vars(record).items() if key not in _STANDARD_ATTRS}
        for field in CONTEXT_FIELDS:
            if field in extras:
                payload[field] = extras.pop(field)
        if extras:
            payload["context"] = extras

        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc_value, exc_tb = record.exc_info
            payload["error"] = {
                "type": exc_type.__name__,
                "message": str(exc_value),
                "stack_trace": "".join(traceback.format_exception(exc_type, exc_value, exc_tb)),
            }

        payload["source"] = {"file": record.pathname, "line": record.lineno, "function": record.funcName}
        return json.dumps(payload, default=str)


class ContextLoggerAdapter(logging.LoggerAdapter):
    """
    LoggerAdapter that merges bound context into every call's `extra`.

    Bound context wins over per-call extras with the same key.
    """

    def __init__(self, logger: logging.Logger, extra: Optional[Dict[str, Any]] = None):
        super().__init__(logger, extra or {})

    def process(self, msg: str, kwargs: MutableMapping[str, Any]) -> tuple[str, MutableMapping[str, Any]]:
        kwargs["extra"] = {**kwargs.get("extra", {}), **self.extra}
        return msg, kwargs

    def with_context(self, **context: Any) -> "ContextLoggerAdapter":
        """Return a new adapter bound to this adapter's context plus `context`."""
        return ContextLoggerAdapter(self.logger, {**self.extra, **context})


def setup_logging(log_level: str = "INFO", stream: Optional[IO[str]] = None) -> None:
    """
    Route all logging through one JSON handler.

    Args:
        log_level: Root level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        stream: Output stream, stdout by default
    """
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(JSONFormatter())
    handler.setLevel(log_level)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(log_level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str, **context: Any) -> ContextLoggerAdapter:
    """
    Module logger with optional bound context.

    Example:
        logger = get_logger(__name__, dataset_hash="abc123")
        logger.info("Run started")  # record carries dataset_hash
    """
    return ContextLoggerAdapter(logging.getLogger(name), context)


def log_stage_transition(
    logger: logging.LoggerAdapter,
    dataset_hash: str,
    stage: str,
    status: str,
) -> None:
    """
    Record a pipeline stage changing state.

    `status` is one of 'started', 'cached', 'completed' or 'failed'.
    """
    logger.info(
        f"Pipeline stage {status}: {stage}",
        extra={"dataset_hash": dataset_hash, "stage": stage, "status": status},
    )


def log_api_call(
    logger: logging.LoggerAdapter,
    service: str,
    endpoint: str,
    method: str,
    status_code: Optional[int] = None,
    duration_ms: Optional[float] = None,
    error: Optional[str] = None,
) -> None:
    """
    Record one outbound call to GitLab, Bitbucket or Azure DevOps.

    Logged at ERROR when `error` is set, INFO otherwise.
    """
    details: Dict[str, Any] = {"service": service, "endpoint": endpoint, "method": method}
    if status_code is not None:
        details["status_code"] = status_code
    if duration_ms is not None:
        details["duration_ms"] = round(duration_ms, 2)

    if error:
        details["error"] = error
        logger.error(f"API call failed: {method} {endpoint}", extra=details)
    else:
        logger.info(f"API call: {method} {endpoint}", extra=details)


def log_error_with_context(
    logger: logging.LoggerAdapter,
    message: str,
    error: Exception,
    **context: Any,
) -> None:
    """Log `message` at ERROR with the exception's stack trace and `context`."""
    logger.error(message, extra=context, exc_info=error)
