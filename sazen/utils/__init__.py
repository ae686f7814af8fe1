"""Utility modules for the browser action engine.

Provides:
- Structured logging configuration
"""

from .logging import configure_logging, get_logger, LogContext, log_operation, SessionLogger

__all__ = [
    "configure_logging",
    "get_logger",
    "LogContext",
    "log_operation",
    "SessionLogger",
]
