"""Structured logging for sessions, replays and the CLI.

Everything logs through structlog on top of stdlib logging, so library
output (playwright, httpx) lands in the same stream. Sessions bind their
``session_id``; replays and flake runs bind their scope with LogContext.
"""

import logging
import sys
import time
from contextlib import contextmanager
from typing import Any, Iterator, Optional

import structlog

# Third-party loggers that are only useful when debugging the engine itself
CHATTY_LOGGERS = ("httpx", "httpcore", "asyncio")


def configure_logging(
    level: str = "INFO",
    json_format: bool = False,
    include_timestamp: bool = True,
) -> None:
    """Route structlog through stdlib logging on stderr.

    Args:
        level: Level name (DEBUG, INFO, WARNING, ERROR)
        json_format: Render JSON lines instead of the coloured console format
        include_timestamp: Prefix events with an ISO timestamp

    Raises:
        ValueError: ``level`` is not a stdlib level name.
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown log level '{level}'")

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=numeric_level, force=True)
    quiet_level = max(numeric_level, logging.WARNING)
    for name in CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
    ]
    if include_timestamp:
        processors.append(structlog.processors.TimeStamper(fmt="iso", utc=True))
    processors.append(structlog.processors.StackInfoRenderer())

    if json_format:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: Optional[str] = None, **context: Any) -> structlog.BoundLogger:
    """Named logger with ``context`` already bound."""
    return structlog.get_logger(name).bind(**context)


class LogContext:
    """Bind context variables for the duration of a ``with`` block.

    Nested contexts restore the outer values on exit:

        with LogContext(trace_path="run.json"):
            with LogContext(run=2):
                logger.info("Replay started")  # carries trace_path and run
    """

    def __init__(self, **context: Any):
        self.context = context
        self._tokens: Optional[dict] = None

    def __enter__(self) -> "LogContext":
        self._tokens = structlog.contextvars.bind_contextvars(**self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._tokens is not None:
            structlog.contextvars.reset_contextvars(**self._tokens)
            self._tokens = None


@contextmanager
def log_operation(
    operation: str,
    logger: Optional[structlog.BoundLogger] = None,
    **context: Any,
) -> Iterator[dict[str, Any]]:
    """Log the start and the outcome of an operation with its duration.

    Yields a dict; whatever the block stores in it is logged with the
    outcome. Exceptions are logged and re-raised.

        with log_operation("run_script", script=path) as op:
            op["failed"] = failed
    """
    log = (logger or get_logger()).bind(operation=operation, **context)
    details: dict[str, Any] = {}
    started = time.monotonic()
    log.info("Operation started")

    try:
        yield details
    except Exception as e:
        details["error"] = str(e)
        log.error("Operation failed", duration_ms=_elapsed_ms(started), **details)
        raise

    log.info("Operation finished", duration_ms=_elapsed_ms(started), **details)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class SessionLogger:
    """Logger for one browser session's action stream.

    Also keeps running counts, so the close event can summarize the session.
    """

    def __init__(self, session_id: str):
        self.log = get_logger("sazen.session", session_id=session_id)
        self.action_count = 0
        self.failure_count = 0

    def session_started(self, **details: Any) -> None:
        self.log.info("Session started", **details)

    def session_closed(self) -> None:
        self.log.info("Session closed", actions_performed=self.action_count, failures=self.failure_count)

    def action_started(self, action_id: str, action_type: str, target: Optional[str] = None) -> None:
        self.log.debug("Action started", action_id=action_id, action_type=action_type, target=target)

    def action_completed(self, action_id: str, action_type: str, status: str, duration_ms: int) -> None:
        """Count the outcome; anything but ``ok`` is a warning."""
        self.action_count += 1
        emit = self.log.debug
        if status != "ok":
            self.failure_count += 1
            emit = self.log.warning
        emit("Action completed", action_id=action_id, action_type=action_type, status=status, duration_ms=duration_ms)

    def retry_scheduled(self, action_type: str, attempt: int, max_attempts: int, backoff_ms: int) -> None:
        self.log.info(
            "Retrying action",
            action_type=action_type,
            attempt=attempt,
            max_attempts=max_attempts,
            backoff_ms=backoff_ms,
        )

    def pause_changed(self, paused: bool, sources: list[str], paused_ms: int) -> None:
        self.log.info("Execution paused" if paused else "Execution resumed", sources=sources, paused_ms=paused_ms)

    def screenshot_taken(self, path: str, annotated: bool = False) -> None:
        self.log.debug("Screenshot taken", path=path, annotated=annotated)

    def side_channel_failed(self, channel: str, error: str) -> None:
        self.log.warning("Best-effort capture failed", channel=channel, error=error)
