"""Outer retry wrapper around a single action attempt.

Only ``retryable_error`` outcomes are attempted again. A success or a
``fatal_error`` stops immediately. Every attempt leaves evidence in the
RetrySummary; callers decide what to persist.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

import structlog

from ..errors import ActionStatus

if TYPE_CHECKING:
    from .results import ActionResult

logger = structlog.get_logger()


class RetryFinalReason(str, Enum):
    """Why the retry loop stopped."""
    SUCCEEDED = "succeeded"
    MAX_ATTEMPTS_REACHED = "max_attempts_reached"
    NON_RETRYABLE_ERROR = "non_retryable_error"
    RETRY_DISABLED = "retry_disabled"


@dataclass(frozen=True)
class RetryAttemptEvidence:
    attempt: int
    action_id: str
    status: ActionStatus
    duration_ms: int
    post_url: str
    post_dom_hash: str
    event_count: int
    error_message: Optional[str] = None
    screenshot_path: Optional[str] = None
    annotated_screenshot_path: Optional[str] = None

    @classmethod
    def from_result(cls, attempt: int, result: "ActionResult") -> "RetryAttemptEvidence":
        return cls(
            attempt=attempt,
            action_id=result.action_id,
            status=result.status,
            duration_ms=result.duration_ms,
            post_url=result.post_snapshot.url,
            post_dom_hash=result.post_snapshot.dom_hash,
            event_count=len(result.events),
            error_message=result.error_message,
            screenshot_path=result.screenshot_path,
            annotated_screenshot_path=result.annotated_screenshot_path,
        )

    def to_dict(self) -> dict:
        data = {
            "attempt": self.attempt,
            "actionId": self.action_id,
            "status": self.status.value,
            "durationMs": self.duration_ms,
            "postUrl": self.post_url,
            "postDomHash": self.post_dom_hash,
            "eventCount": self.event_count,
        }
        if self.error_message is not None:
            data["errorMessage"] = self.error_message
        if self.screenshot_path is not None:
            data["screenshotPath"] = self.screenshot_path
        if self.annotated_screenshot_path is not None:
            data["annotatedScreenshotPath"] = self.annotated_screenshot_path
        return data


@dataclass(frozen=True)
class RetrySummary:
    enabled: bool
    max_attempts: int
    backoff_ms: int
    final_reason: RetryFinalReason
    attempts: tuple[RetryAttemptEvidence, ...] = field(default_factory=tuple)

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)

    @property
    def attempt_statuses(self) -> list[ActionStatus]:
        return [attempt.status for attempt in self.attempts]

    @property
    def attempt_durations_ms(self) -> list[int]:
        return [attempt.duration_ms for attempt in self.attempts]

    def to_dict(self) -> dict:
        return {
            "enabled": self.enabled,
            "maxAttempts": self.max_attempts,
            "attemptCount": self.attempt_count,
            "backoffMs": self.backoff_ms,
            "finalReason": self.final_reason.value,
            "attempts": [attempt.to_dict() for attempt in self.attempts],
        }


def final_reason_for(status: ActionStatus, attempts_used: int, max_attempts: int) -> RetryFinalReason:
    if status == ActionStatus.OK:
        return RetryFinalReason.SUCCEEDED
    if status == ActionStatus.FATAL_ERROR:
        return RetryFinalReason.NON_RETRYABLE_ERROR
    if max_attempts <= 1:
        return RetryFinalReason.RETRY_DISABLED
    return RetryFinalReason.MAX_ATTEMPTS_REACHED


async def run_with_retry(
    attempt: Callable[[int], Awaitable["ActionResult"]],
    max_attempts: int,
    backoff_ms: int = 0,
    on_retry: Optional[Callable[[int, "ActionResult"], None]] = None,
) -> tuple["ActionResult", RetrySummary]:
    """Run ``attempt(n)`` until it stops returning ``retryable_error``.

    Args:
        attempt: Coroutine factory taking the 1-based attempt number.
        max_attempts: Upper bound on attempts (values below 1 count as 1).
        backoff_ms: Wait between a failed attempt and the next one.
        on_retry: Called with (next attempt number, failed result) before the backoff.

    Returns:
        The final attempt's result and the summary of every attempt.
    """
    max_attempts = max(1, max_attempts)
    evidence = []
    result = None

    for attempt_number in range(1, max_attempts + 1):
        result = await attempt(attempt_number)
        evidence.append(RetryAttemptEvidence.from_result(attempt_number, result))

        if result.status != ActionStatus.RETRYABLE_ERROR or attempt_number == max_attempts:
            break

        if on_retry is not None:
            on_retry(attempt_number + 1, result)
        if backoff_ms > 0:
            await asyncio.sleep(backoff_ms / 1000)

    summary = RetrySummary(
        enabled=max_attempts > 1,
        max_attempts=max_attempts,
        backoff_ms=backoff_ms,
        final_reason=final_reason_for(result.status, len(evidence), max_attempts),
        attempts=tuple(evidence),
    )
    if summary.final_reason != RetryFinalReason.SUCCEEDED:
        logger.debug(
            "Retry loop finished without success",
            final_reason=summary.final_reason.value,
            attempts=summary.attempt_count,
        )
    return result, summary
