"""Logging and observability utilities for Task Master.

Structured JSON logging for the optional log file, timing metrics for
workspace and engine operations, and event hooks fired whenever the task
document is mutated or a guidance prompt is produced.

Console output always goes to stderr: stdout carries the MCP stdio
transport and must stay clean.
"""

from __future__ import annotations

import json
import sys
import time
import logging as std_logging
from collections import deque
from contextlib import contextmanager
from datetime import datetime, timezone
from functools import wraps
from pathlib import Path
from typing import Any, Callable, Deque, Dict, List, Optional, Union


ROOT_LOGGER = "taskmaster"
WILDCARD_EVENT = "*"


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def setup_logging(log_level: Union[str, int] = std_logging.INFO, log_file: Optional[Path] = None) -> None:
    """Configure the ``taskmaster`` logger hierarchy.

    Calling this again replaces the handlers installed by a previous call.
    """
    logger = std_logging.getLogger(ROOT_LOGGER)
    if isinstance(log_level, str):
        log_level = log_level.upper()
    logger.setLevel(log_level)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_handler = std_logging.StreamHandler(sys.stderr)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(std_logging.Formatter(
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    logger.addHandler(console_handler)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = std_logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(std_logging.DEBUG)
        file_handler.setFormatter(JsonFormatter())
        logger.addHandler(file_handler)

    logger.info("Task Master logging initialized")


class JsonFormatter(std_logging.Formatter):
    """One JSON object per line; ``extra_fields`` are merged into the object."""

    def format(self, record: std_logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        extra = getattr(record, "extra_fields", None)
        if isinstance(extra, dict):
            for key, value in extra.items():
                entry.setdefault(key, value)
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str, ensure_ascii=False)


class PerformanceMonitor:
    """In-memory timing samples, bounded per metric name."""

    def __init__(self, max_samples: int = 500):
        self.max_samples = max_samples
        self.metrics: Dict[str, Deque[Dict[str, Any]]] = {}

    def record_metric(self, name: str, value: float, tags: Optional[Dict[str, str]] = None) -> None:
        sample = {"timestamp": _timestamp(), "name": name, "value": value, "tags": tags or {}}
        self.metrics.setdefault(name, deque(maxlen=self.max_samples)).append(sample)
        std_logging.getLogger(f"{ROOT_LOGGER}.performance").debug(
            f"Metric recorded: {name}={value}", extra={"extra_fields": sample}
        )

    def get_metrics(self, name: Optional[str] = None) -> Dict[str, List[Dict[str, Any]]]:
        if name:
            return {name: list(self.metrics.get(name, []))}
        return {key: list(samples) for key, samples in self.metrics.items()}

    def summary(self, name: str) -> Dict[str, Any]:
        """Count, mean and max of the retained samples plus how many of them failed."""
        samples = list(self.metrics.get(name, []))
        values = [sample["value"] for sample in samples]
        return {
            "count": len(values),
            "average": sum(values) / len(values) if values else 0,
            "max": max(values) if values else 0,
            "errors": sum(1 for sample in samples if sample["tags"].get("status") == "error"),
        }

    def clear(self) -> None:
        self.metrics.clear()


performance_monitor = PerformanceMonitor()


def log_performance(operation_name: str):
    """Decorator recording ``<operation_name>_duration`` for every call, failed or not."""
    def decorator(func: Callable[..., Any]):
        @wraps(func)
        def wrapper(*args, **kwargs):
            logger = std_logging.getLogger(f"{ROOT_LOGGER}.performance")
            started = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                duration = time.perf_counter() - started
                performance_monitor.record_metric(
                    f"{operation_name}_duration", duration, {"status": "error", "error_type": type(e).__name__}
                )
                logger.debug(
                    f"{operation_name} failed after {duration:.3f}s: {e}",
                    extra={"extra_fields": {"operation": operation_name, "duration": duration, "status": "error"}},
                )
                raise

            duration = time.perf_counter() - started
            performance_monitor.record_metric(f"{operation_name}_duration", duration, {"status": "success"})
            logger.debug(
                f"{operation_name} took {duration:.3f}s",
                extra={"extra_fields": {"operation": operation_name, "duration": duration, "status": "success"}},
            )
            return result

        return wrapper
    return decorator


@contextmanager
def log_operation(operation_name: str, **extra_fields):
    """Log the start and the outcome of a block, re-raising any failure."""
    logger = std_logging.getLogger(f"{ROOT_LOGGER}.operations")
    started = time.perf_counter()
    logger.debug(f"Starting {operation_name}", extra={"extra_fields": {
        "operation": operation_name, "status": "started", **extra_fields,
    }})
    try:
        yield
    except Exception as e:
        duration = time.perf_counter() - started
        logger.warning(f"{operation_name} failed after {duration:.3f}s: {e}", extra={"extra_fields": {
            "operation": operation_name,
            "status": "failed",
            "duration": duration,
            "error_type": type(e).__name__,
            "error_message": str(e),
            **extra_fields,
        }})
        raise

    duration = time.perf_counter() - started
    logger.info(f"Completed {operation_name} in {duration:.3f}s", extra={"extra_fields": {
        "operation": operation_name, "status": "completed", "duration": duration, **extra_fields,
    }})


class ObservabilityHooks:
    """Named event hooks.

    Callbacks registered for an event receive its fields as keyword
    arguments. Callbacks registered for ``"*"`` see every event and also
    receive ``event_type``.
    """

    def __init__(self):
        self.hooks: Dict[str, List[Callable[..., Any]]] = {}
        self.logger = std_logging.getLogger(f"{ROOT_LOGGER}.observability")

    def register_hook(self, event_type: str, callback: Callable[..., Any]) -> None:
        self.hooks.setdefault(event_type, []).append(callback)
        self.logger.debug(f"Registered hook for event: {event_type}")

    def unregister_hook(self, event_type: str, callback: Callable[..., Any]) -> None:
        callbacks = self.hooks.get(event_type, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def trigger_hooks(self, event_type: str, **data) -> int:
        """Run the callbacks for ``event_type``; returns how many of them failed.

        A failing hook is logged and never interrupts the operation that fired it.
        """
        calls = [(hook, data) for hook in self.hooks.get(event_type, [])]
        if event_type != WILDCARD_EVENT:
            calls.extend((hook, {"event_type": event_type, **data}) for hook in self.hooks.get(WILDCARD_EVENT, []))

        failures = 0
        for hook, kwargs in calls:
            try:
                hook(**kwargs)
            except Exception as e:
                failures += 1
                self.logger.error(f"Hook {getattr(hook, '__name__', hook)!s} failed for {event_type}: {e}")
        return failures

    def log_task_event(self, event_type: str, project_root: Optional[str] = None, **data) -> None:
        fields = {"project_root": project_root, "timestamp": _timestamp(), **data}
        self.logger.info(f"Task event: {event_type}", extra={"extra_fields": {"event_type": event_type, **fields}})
        self.trigger_hooks(event_type, **fields)


observability_hooks = ObservabilityHooks()


def log_task_mutation(operation: str, project_root: str, task_ids: List[str], **extra_fields) -> None:
    """Emit ``tasks_<operation>`` after a mutation has been saved."""
    observability_hooks.log_task_event(
        f"tasks_{operation.lower()}",
        project_root=project_root,
        task_ids=list(task_ids),
        **extra_fields,
    )


def log_guidance_event(action: str, project_root: str, **extra_fields) -> None:
    """Emit ``guidance_<action>`` when a guidance prompt is returned."""
    observability_hooks.log_task_event(f"guidance_{action.lower()}", project_root=project_root, **extra_fields)


def log_error_with_context(error: Exception, context: Dict[str, Any], **extra_fields) -> None:
    logger = std_logging.getLogger(f"{ROOT_LOGGER}.errors")
    error_data = {
        "timestamp": _timestamp(),
        "error_type": type(error).__name__,
        "error_message": str(error),
        **context,
        **extra_fields,
    }
    logger.error(
        f"Error in {context.get('operation', 'unknown operation')}: {error}",
        extra={"extra_fields": error_data},
        exc_info=error,
    )
