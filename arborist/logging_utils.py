"""
Logging utilities for arborist.

This module configures structlog for the CLI and provides helpers for
tracking tree operations, RPC calls and their timings.
"""

import functools
import inspect
import logging
import os
import sys
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional

import structlog

logger = structlog.get_logger(__name__)


class OperationType(Enum):
    """Types of tree operations for logging."""
    TREE_CREATION = "tree_creation"
    TREE_DELEGATION = "tree_delegation"
    RPC_CALL = "rpc_call"


class LogLevel(Enum):
    """Log levels for tree operations."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


_VERBOSITY_LEVELS = {0: logging.WARNING, 1: logging.INFO}


def configure_logging(verbosity: int = 0, log_format: Optional[str] = None) -> None:
    """
    Configure structlog on top of the standard library logger.

    Logs go to stderr so that stdout only carries command results.

    Args:
        verbosity: 0 for warnings, 1 for info, 2 or more for debug
        log_format: "console" or "json" (defaults to ARBORIST_LOG_FORMAT)
    """
    level = _VERBOSITY_LEVELS.get(verbosity, logging.DEBUG)
    env_level = os.getenv('ARBORIST_LOG_LEVEL')
    if env_level and verbosity == 0:
        level = logging.getLevelName(env_level.upper())
        if not isinstance(level, int):
            level = logging.WARNING

    log_format = (log_format or os.getenv('ARBORIST_LOG_FORMAT', 'console')).lower()
    renderer = (
        structlog.processors.JSONRenderer()
        if log_format == 'json'
        else structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    )

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level, force=True)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def _operation_record(
    operation_type: OperationType,
    operation_name: str,
    operation_id: str,
    status: str,
) -> Dict[str, Any]:
    return {
        "operation_id": operation_id,
        "operation_type": operation_type.value,
        "operation_name": operation_name,
        "status": status,
    }


def log_blockchain_operation(
    operation_type: OperationType,
    operation_name: str,
    level: LogLevel = LogLevel.INFO,
    include_performance: bool = True
):
    """
    Decorator for logging tree operations with performance metrics.

    Works on both coroutines and plain functions. Exceptions are logged
    and re-raised unchanged.

    Args:
        operation_type: Type of operation
        operation_name: Name of the operation
        level: Log level for the start and completion records
        include_performance: Whether to include execution time
    """
    def decorator(func: Callable) -> Callable:
        def _started(args, kwargs):
            start_time = time.time()
            operation_id = f"{operation_name}_{int(start_time)}"
            log_data = _operation_record(operation_type, operation_name, operation_id, "started")
            log_data["args_count"] = len(args)
            log_data["kwargs_keys"] = list(kwargs.keys())
            getattr(logger, level.value)("Tree operation started", **log_data)
            return start_time, operation_id

        def _finished(start_time, operation_id, error=None):
            execution_time = time.time() - start_time
            status = "failed" if error else "completed"
            log_data = _operation_record(operation_type, operation_name, operation_id, status)
            log_data["success"] = error is None
            if error is not None:
                log_data["error_type"] = type(error).__name__
                log_data["error_message"] = str(error)
            if include_performance:
                log_data["execution_time_seconds"] = execution_time
                log_data["performance_category"] = _categorize_performance(execution_time)
            if error is not None:
                logger.error("Tree operation failed", **log_data)
            else:
                getattr(logger, level.value)("Tree operation completed", **log_data)

        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            start_time, operation_id = _started(args, kwargs)
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                _finished(start_time, operation_id, e)
                raise
            _finished(start_time, operation_id)
            return result

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            start_time, operation_id = _started(args, kwargs)
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                _finished(start_time, operation_id, e)
                raise
            _finished(start_time, operation_id)
            return result

        return async_wrapper if inspect.iscoroutinefunction(func) else sync_wrapper

    return decorator


def log_tree_event(
    event_type: str,
    tree_address: str,
    additional_data: Optional[Dict[str, Any]] = None,
    level: LogLevel = LogLevel.INFO
):
    """
    Log Merkle tree related events.

    Args:
        event_type: Type of tree event (created, delegated)
        tree_address: Address of the tree
        additional_data: Additional event data
        level: Log level
    """
    log_data = {
        "event_type": "tree_event",
        "tree_event_type": event_type,
        "tree_address": tree_address,
        "timestamp": time.time()
    }

    if additional_data:
        log_data.update(additional_data)

    getattr(logger, level.value)("Merkle tree event", **log_data)


def log_rpc_metrics(
    endpoint: str,
    method: str,
    response_time: float,
    success: bool,
    error_message: Optional[str] = None
):
    """Log timing and outcome of a single RPC call."""
    log_data = {
        "event_type": "rpc_metrics",
        "operation_type": OperationType.RPC_CALL.value,
        "endpoint": endpoint,
        "rpc_method": method,
        "response_time_seconds": response_time,
        "success": success,
        "performance_category": _categorize_performance(response_time),
    }

    if error_message:
        log_data["error_message"] = error_message

    if success:
        logger.debug("RPC call metrics", **log_data)
    else:
        logger.warning("RPC call failed", **log_data)


def _categorize_performance(execution_time: float) -> str:
    """Bucket an execution time in seconds into a coarse category."""
    if execution_time < 0.1:
        return "excellent"
    elif execution_time < 0.5:
        return "good"
    elif execution_time < 2.0:
        return "acceptable"
    elif execution_time < 10.0:
        return "slow"
    else:
        return "very_slow"


def create_operation_logger(component_name: str) -> structlog.BoundLogger:
    """
    Create a specialized logger for a specific component.

    The logger stays lazy so that it picks up configure_logging() even
    when created at import time.

    Args:
        component_name: Name of the component

    Returns:
        Logger with component context
    """
    return structlog.get_logger(__name__, component=component_name)
