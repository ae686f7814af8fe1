"""Exception hierarchy and outcome classification for browser actions."""

from enum import Enum
from typing import Optional


class ActionStatus(str, Enum):
    """Outcome of a performed action."""
    OK = "ok"
    RETRYABLE_ERROR = "retryable_error"
    FATAL_ERROR = "fatal_error"


# Lower-cased substrings that mark a failure as transient
RETRYABLE_MARKERS = (
    "timeout",
    "target closed",
    "net::err",
    "navigation",
)

BENIGN_SHUTDOWN_MARKERS = (
    "target closed",
    "target page, context or browser has been closed",
    "browser has been closed",
    "context closed",
    "session closed",
)


class SazenError(Exception):
    """Base exception for the browser action engine."""
    pass


class ActionValidationError(SazenError):
    """An action or script failed schema validation."""

    def __init__(self, message: str, errors: Optional[list[dict]] = None):
        super().__init__(message)
        self.errors = errors or []


class SessionNotStartedError(SazenError):
    """A session operation was issued before start()."""

    def __init__(self, message: str = "Session not started; call start() first"):
        super().__init__(message)


class SessionClosedError(SazenError):
    """A session operation was issued after close()."""

    def __init__(self, message: str = "Session closed"):
        super().__init__(message)


class TargetResolutionError(SazenError):
    """An action target could not be resolved against the snapshot."""
    pass


class NodeNotFoundError(TargetResolutionError):
    """The requested node id is not present in the snapshot."""

    def __init__(self, node_id: str):
        super().__init__(f"Node '{node_id}' was not found in snapshot")
        self.node_id = node_id


class StableRefNotFoundError(TargetResolutionError):
    """No node in the snapshot carries the requested stableRef."""

    def __init__(self, stable_ref: str):
        super().__init__(f"No node found with stableRef '{stable_ref}'")
        self.stable_ref = stable_ref


class MissingTargetError(TargetResolutionError):
    """An interactive action carried neither nodeId nor target."""

    def __init__(self):
        super().__init__("Target is required when nodeId is not provided")


class LocatorExhaustedError(SazenError):
    """Every locator candidate failed; carries each candidate's reason."""

    def __init__(self, target_label: str, failures: list[tuple[str, str]]):
        self.target_label = target_label
        self.failures = failures
        lines = [f"Unable to resolve actionable locator for {target_label}."]
        lines.extend(f"- {label}: {reason}" for label, reason in failures)
        super().__init__("\n".join(lines))


class AssertionFailedError(SazenError):
    """An assert action's condition did not hold."""
    pass


class ConsentNotFoundError(SazenError):
    """No consent control was found and one was required."""
    pass


class PreflightError(SazenError):
    """Replay preflight found unreachable origins; nothing was executed."""

    def __init__(self, unreachable_origins: list[str]):
        self.unreachable_origins = unreachable_origins
        lines = ["Replay preflight failed. Required origins are unreachable:"]
        lines.extend(f"- {origin}" for origin in unreachable_origins)
        lines.append("Start the missing services or run replay with --no-preflight.")
        super().__init__("\n".join(lines))


def classify_error_message(message: str) -> ActionStatus:
    """Classify a failure message as retryable or fatal.

    Classification is by message content, not exception type, so provider
    errors surfaced through any wrapper classify the same way.
    """
    lowered = message.lower()
    if any(marker in lowered for marker in RETRYABLE_MARKERS):
        return ActionStatus.RETRYABLE_ERROR
    return ActionStatus.FATAL_ERROR


def is_benign_shutdown_error(message: str) -> bool:
    """True when a failure is the expected fallout of closing a session mid-operation."""
    lowered = message.lower()
    return any(marker in lowered for marker in BENIGN_SHUTDOWN_MARKERS)


def first_line(message: str) -> str:
    return message.split("\n", 1)[0]


class LoopSetupError(SazenError):
    """A loop setup action did not finish ok; no iteration was run."""

    def __init__(self, action_type: str, status: str, message: Optional[str]):
        self.action_type = action_type
        self.status = status
        super().__init__(
            f"Loop setup action '{action_type}' failed with status '{status}': {message or 'unknown error'}"
        )
