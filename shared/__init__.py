"""
FORMA Shared Module

Common utilities used across all services.
"""

from .utils import (
    setup_logger,
    resolve_log_level,
    success_response,
    error_response,
    handle_exceptions,
    log_execution_time,
    get_now_iso,
)

__all__ = [
    'setup_logger',
    'resolve_log_level',
    'success_response',
    'error_response',
    'handle_exceptions',
    'log_execution_time',
    'get_now_iso',
]
