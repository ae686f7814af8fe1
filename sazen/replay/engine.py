"""Deterministic replay of a saved trace.

A replay re-executes every recorded action in a fresh session and compares
each outcome with the recording: exactly (strict) or by status, URL and
selector invariants (relaxed). Required origins are checked first so an
unreachable dependency aborts the replay instead of producing mismatches.
"""

from dataclasses import dataclass
from typing import Callable, Optional
from urllib.parse import urlsplit

import httpx
import structlog

from ..config import SessionOptions, get_settings
from ..errors import PreflightError
from ..execution.results import ActionResult
from ..session.session import AgentSession, note_origin_from_url
from ..trace.models import SavedTrace, TraceRecord
from ..trace.store import load_saved_trace
from .models import MismatchReason, ReplayMismatch, ReplayMode, ReplayOptions, ReplayReport
from .selectors import evaluate_selector_invariant

logger = structlog.get_logger()

SessionFactory = Callable[[SessionOptions], AgentSession]

CHECK_METHODS = ("HEAD", "GET")


def normalize_url(url: str) -> str:
    """Origin plus path without trailing slash; query and fragment dropped."""
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        return url
    path = parts.path.rstrip("/") or "/"
    return f"{parts.scheme.lower()}://{parts.netloc.lower()}{path}"


def collect_required_origins(trace: SavedTrace) -> list[str]:
    """Origins recorded in the trace environment, else inferred from navigations and post-URLs."""
    if trace.environment and trace.environment.required_origins:
        return sorted(set(trace.environment.required_origins))

    origins: set[str] = set()
    for record in trace.records:
        if record.action_type == "navigate":
            note_origin_from_url(origins, str(record.action.get("url", "")))
        if record.result.post_url:
            note_origin_from_url(origins, record.result.post_url)
    return sorted(origins)


# =============================================================================
# Preflight
# =============================================================================


async def check_origin(client: httpx.AsyncClient, origin: str) -> bool:
    """True when HEAD or GET gets any response below 500."""
    for method in CHECK_METHODS:
        try:
            response = await client.request(method, origin)
        except httpx.HTTPError as e:
            logger.debug("Origin check failed", origin=origin, method=method, error=str(e))
            continue
        if response.status_code < 500:
            return True
    return False


async def run_preflight(
    origins: list[str],
    timeout_ms: int,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> None:
    """Check every origin; raise once, listing all unreachable ones.

    Raises:
        PreflightError: at least one origin is unreachable.
    """
    if not origins:
        return

    async with httpx.AsyncClient(
        transport=transport,
        follow_redirects=True,
        timeout=timeout_ms / 1000,
    ) as client:
        unreachable = [origin for origin in origins if not await check_origin(client, origin)]

    if unreachable:
        logger.warning("Replay preflight failed", unreachable=unreachable)
        raise PreflightError(unreachable)


# =============================================================================
# Comparison
# =============================================================================


@dataclass(frozen=True)
class RecordComparison:
    mismatch: Optional[ReplayMismatch] = None
    selector_checked: bool = False

    @property
    def selector_mismatch(self) -> bool:
        return self.mismatch is not None and self.mismatch.reason == MismatchReason.SELECTOR_INVARIANT


def compare_record(
    index: int,
    record: TraceRecord,
    result: ActionResult,
    mode: ReplayMode,
    selector_invariants: bool,
) -> RecordComparison:
    """Compare one replayed result with its recording under ``mode``."""
    expected = record.result
    post = result.post_snapshot

    def mismatch(reason: MismatchReason, expected_value: str, actual_value: str) -> ReplayMismatch:
        return ReplayMismatch(
            index=index,
            reason=reason,
            expected=expected_value,
            actual=actual_value,
            action_type=record.action_type,
        )

    if mode == ReplayMode.STRICT:
        if post.dom_hash != expected.post_dom_hash:
            return RecordComparison(mismatch(MismatchReason.DOM_HASH, expected.post_dom_hash, post.dom_hash))
        return RecordComparison()

    if result.status != expected.status:
        return RecordComparison(mismatch(MismatchReason.STATUS, expected.status.value, result.status.value))

    if expected.post_url and normalize_url(expected.post_url) != normalize_url(post.url):
        return RecordComparison(
            mismatch(MismatchReason.URL, normalize_url(expected.post_url), normalize_url(post.url))
        )

    if selector_invariants and expected.wait_for_selector:
        selector = expected.wait_for_selector
        invariant = evaluate_selector_invariant(selector, post.nodes)
        if invariant.supported:
            if invariant.match_count == 0:
                return RecordComparison(
                    mismatch(
                        MismatchReason.SELECTOR_INVARIANT,
                        f"selector '{selector}' to match >= 1 node",
                        "0 matches",
                    ),
                    selector_checked=True,
                )
            return RecordComparison(selector_checked=True)

    return RecordComparison()


# =============================================================================
# Replay
# =============================================================================


def _default_session_factory(options: SessionOptions) -> AgentSession:
    return AgentSession(options)


async def replay_trace(
    trace_path: str,
    options: Optional[SessionOptions] = None,
    replay_options: Optional[ReplayOptions] = None,
    session_factory: Optional[SessionFactory] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ReplayReport:
    """Replay a saved trace in a fresh session and report every mismatch.

    Args:
        trace_path: Trace file to replay.
        options: Session options for the replay session.
        replay_options: Mode, preflight and invariant switches.
        session_factory: Builds the replay session (defaults to a Playwright-backed one).
        transport: httpx transport for preflight checks.

    Raises:
        PreflightError: a required origin is unreachable; no action was executed.
    """
    replay_options = replay_options or ReplayOptions()
    mode = ReplayMode(replay_options.mode)
    absolute_path, trace = load_saved_trace(trace_path)
    required_origins = collect_required_origins(trace)

    if replay_options.preflight:
        await run_preflight(required_origins, replay_options.preflight_timeout_ms, transport=transport)

    report = ReplayReport(
        trace_path=absolute_path,
        mode=mode,
        total_actions=len(trace.records),
        checked_origins=required_origins,
        preflight_skipped=not replay_options.preflight,
        selector_invariants_enabled=replay_options.selector_invariants and mode == ReplayMode.RELAXED,
    )
    log = logger.bind(trace_path=absolute_path, mode=mode.value)
    log.info("Replay started", actions=report.total_actions)

    factory = session_factory or _default_session_factory
    session = factory(options or get_settings().session_options())
    await session.start()

    try:
        for index, record in enumerate(trace.records):
            result = await session.perform(record.action)
            comparison = compare_record(index, record, result, mode, replay_options.selector_invariants)

            if comparison.selector_checked:
                report.selector_checks += 1
            if comparison.selector_mismatch:
                report.selector_mismatches += 1

            if comparison.mismatch is None:
                report.matched += 1
            else:
                report.mismatched += 1
                report.mismatches.append(comparison.mismatch)
                log.debug(
                    "Replay mismatch",
                    index=index,
                    reason=comparison.mismatch.reason.value,
                    action_type=record.action_type,
                )
    finally:
        await session.close()

    log.info("Replay finished", matched=report.matched, mismatched=report.mismatched)
    return report
