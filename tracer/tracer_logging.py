"""Logging and error tracking utilities for Tracer.

This module provides structured logging, operation timing, plan event
hooks, and the process-wide error collector used by the planning core.
"""

from __future__ import annotations

import json
import time
import logging as std_logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from functools import wraps
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union


def setup_logging(log_level: Union[str, int] = std_logging.INFO, log_file: Optional[Path] = None) -> None:
    """Setup structured logging for Tracer."""

    logger = std_logging.getLogger("tracer")
    logger.setLevel(log_level)

    # Clear existing handlers
    logger.handlers.clear()

    detailed_formatter = std_logging.Formatter(
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(module)s:%(funcName)s:%(lineno)d - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    console_handler = std_logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(detailed_formatter)
    logger.addHandler(console_handler)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = std_logging.FileHandler(log_file)
        file_handler.setLevel(std_logging.DEBUG)
        file_handler.setFormatter(JsonFormatter())
        logger.addHandler(file_handler)

    logger.info("Tracer logging initialized")


class JsonFormatter(std_logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: std_logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_fields"):
            log_entry.update(record.extra_fields)

        return json.dumps(log_entry, default=str)


def log_performance(operation_name: str):
    """Decorator to log the duration of an operation."""
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            start_time = time.time()
            logger = std_logging.getLogger("tracer.performance")

            try:
                result = func(*args, **kwargs)
            except Exception as e:
                duration = time.time() - start_time
                logger.error(
                    f"Failed operation: {operation_name} after {duration:.3f}s - {str(e)}",
                    extra={"extra_fields": {
                        "operation": operation_name,
                        "duration": duration,
                        "status": "error",
                        "error_type": type(e).__name__,
                    }},
                )
                raise

            duration = time.time() - start_time
            logger.debug(
                f"Completed operation: {operation_name} in {duration:.3f}s",
                extra={"extra_fields": {
                    "operation": operation_name,
                    "duration": duration,
                    "status": "success",
                }}
            )
            return result

        return wrapper
    return decorator


@contextmanager
def log_operation(operation_name: str, **extra_fields):
    """Context manager to log operations with custom fields."""
    logger = std_logging.getLogger("tracer.operations")
    start_time = time.time()

    logger.info(f"Starting operation: {operation_name}", extra={"extra_fields": {
        "operation": operation_name,
        "status": "started",
        **extra_fields
    }})

    try:
        yield
    except Exception as e:
        duration = time.time() - start_time
        logger.error(f"Failed operation: {operation_name} after {duration:.3f}s - {str(e)}", extra={"extra_fields": {
            "operation": operation_name,
            "status": "failed",
            "duration": duration,
            "error_type": type(e).__name__,
            "error_message": str(e),
            **extra_fields
        }})
        raise

    duration = time.time() - start_time
    logger.info(f"Completed operation: {operation_name} in {duration:.3f}s", extra={"extra_fields": {
        "operation": operation_name,
        "status": "completed",
        "duration": duration,
        **extra_fields
    }})


class PlanEventHooks:
    """Callbacks fired on plan and task lifecycle events."""

    def __init__(self):
        self.hooks: Dict[str, List[Callable[..., Any]]] = {}
        self.logger = std_logging.getLogger("tracer.events")

    def register_hook(self, event_type: str, callback: Callable[..., Any]) -> None:
        """Register a callback for a specific event type."""
        self.hooks.setdefault(event_type, []).append(callback)
        self.logger.debug(f"Registered hook for event: {event_type}")

    def clear_hooks(self, event_type: Optional[str] = None) -> None:
        if event_type is None:
            self.hooks.clear()
        else:
            self.hooks.pop(event_type, None)

    def trigger_hooks(self, event_type: str, **data) -> None:
        """Trigger all callbacks for a specific event type."""
        for hook in self.hooks.get(event_type, []):
            try:
                hook(**data)
            except Exception as e:
                self.logger.error(f"Hook failed for event {event_type}: {e}")

    def log_plan_event(self, event_type: str, plan_id: Optional[str] = None, **data) -> None:
        """Log a plan event and trigger hooks."""
        event_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "plan_id": plan_id,
            **data
        }

        self.logger.info(f"Plan event: {event_type}", extra={"extra_fields": {"event_type": event_type, **event_data}})
        self.trigger_hooks(event_type, **event_data)


# Global plan event hooks instance
plan_events = PlanEventHooks()


def log_error_with_context(error: Exception, context: Dict[str, Any], **extra_fields):
    """Log an error with rich context information."""
    logger = std_logging.getLogger("tracer.errors")

    error_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "error_type": type(error).__name__,
        "error_message": str(error),
        "context": context,
        **extra_fields
    }

    logger.error(
        f"Error in {context.get('operation', 'unknown operation')}: {str(error)}",
        extra={"extra_fields": error_data},
        exc_info=True
    )


class ErrorType(str, Enum):
    API_ERROR = "API_ERROR"
    FILE_ERROR = "FILE_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    PARSING_ERROR = "PARSING_ERROR"
    USER_INPUT_ERROR = "USER_INPUT_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"


@dataclass(slots=True)
class TracerError:
    """A recoverable condition reported by the planning core."""

    type: ErrorType
    message: str
    context: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    original_error: Optional[BaseException] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "message": self.message,
            "context": dict(self.context),
            "timestamp": self.timestamp.isoformat(),
        }


class ErrorCollector:
    """Append-only record of recoverable errors, shared for the process lifetime."""

    def __init__(self):
        self._errors: List[TracerError] = []
        self.logger = std_logging.getLogger("tracer.errors")

    def handle(
        self,
        error: Union[BaseException, str],
        error_type: ErrorType,
        context: Optional[Dict[str, Any]] = None,
    ) -> TracerError:
        """Record an error and log it as a warning."""
        tracer_error = TracerError(
            type=error_type,
            message=error if isinstance(error, str) else str(error),
            context=dict(context or {}),
            original_error=None if isinstance(error, str) else error,
        )
        self._errors.append(tracer_error)
        self.logger.warning(
            f"{error_type.value}: {tracer_error.message}",
            extra={"extra_fields": tracer_error.to_dict()},
        )
        return tracer_error

    def get_errors(self) -> List[TracerError]:
        return list(self._errors)

    def get_errors_by_type(self, error_type: ErrorType) -> List[TracerError]:
        return [error for error in self._errors if error.type == error_type]

    def has_errors(self) -> bool:
        return bool(self._errors)

    def clear(self) -> None:
        self._errors = []

    def __len__(self) -> int:
        return len(self._errors)


# Global error collector instance
error_collector = ErrorCollector()
