"""Agent browser session.

AgentSession owns one browser page and runs the action pipeline: validate,
resolve the target, drive the provider, wait for the page to settle, then
capture before/after state into an ActionResult and a trace record.

Mutating operations (perform, snapshot, save_trace, save_session, close)
go through a per-session FIFO queue, so concurrent callers are serialized
without locking on their side.
"""

import time
import traceback
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional
from urllib.parse import urlsplit

from ..actions.schema import (
    Action,
    AssertAction,
    CheckpointAction,
    ClickAction,
    FillAction,
    HandleConsentAction,
    MockAction,
    NavigateAction,
    PauseAction,
    PressAction,
    SelectAction,
    SelectorAssert,
    SelectorWait,
    SetViewportAction,
    SnapshotAction,
    WaitForAction,
    parse_action,
)
from ..browser.annotate import annotate_action_screenshot
from ..browser.deterministic import apply_deterministic_settings, install_layout_shift_capture
from ..browser.observer import BrowserObserver, ObserverEvent, collect_performance_metrics
from ..browser.overlay import install_browser_overlay
from ..browser.provider import BrowserProvider, LocatorHandle, PlaywrightProvider
from ..browser.routing import MockRouter
from ..config import ScreenshotMode, SessionOptions, Settings, get_settings
from ..errors import (
    ActionStatus,
    LocatorExhaustedError,
    SessionClosedError,
    SessionNotStartedError,
    classify_error_message,
    first_line,
    is_benign_shutdown_error,
)
from ..execution.resolver import ResolvedTarget, resolve_target
from ..execution.results import (
    ActionError,
    ActionResult,
    CheckpointSummary,
    PauseSummary,
    PerformanceMetrics,
    SelectorDiagnostics,
    append_error,
)
from ..execution.retry import run_with_retry
from ..execution.stability import wait_for_stability
from ..snapshot.capture import take_snapshot
from ..snapshot.diff import diff_snapshots
from ..snapshot.models import BoundingBox, Snapshot
from ..trace.models import (
    DiffCounts,
    SavedSession,
    SavedTrace,
    TimelineCheckpoint,
    TimelineEntry,
    TimelineRetry,
    TimelineTarget,
    TraceEnvironment,
    TraceRecord,
    TraceRecordResult,
)
from ..trace.store import (
    STORAGE_STATE_FILE,
    load_session_manifest,
    session_dir,
    write_session_manifest,
    write_trace,
)
from ..utils.logging import SessionLogger
from .conditions import handle_consent, run_assert_condition, run_wait_condition, wait_for_enter_or_timeout
from .control import DEFAULT_PAUSE_SOURCE, ExecutionControl, OperationQueue

MIN_CANDIDATE_TIMEOUT_MS = 1_500
DEFAULT_TAB_ID = "tab_1"

LocatorOperation = Callable[[LocatorHandle, int], Awaitable[None]]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def note_origin_from_url(origins: set[str], url: str) -> None:
    """Add the http(s) origin of ``url`` to ``origins``; other URLs are ignored."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return
    if parts.scheme in ("http", "https") and parts.netloc:
        origins.add(f"{parts.scheme}://{parts.netloc}")


def extract_selector_invariant(action: Action) -> Optional[str]:
    """Selector a replay can check for, when the action waited on or asserted one."""
    match action:
        case WaitForAction(condition=SelectorWait(selector=selector)):
            return selector
        case AssertAction(condition=SelectorAssert(selector=selector)):
            return selector
    return None


def per_candidate_timeout_ms(timeout_ms: int, candidate_count: int) -> int:
    return max(MIN_CANDIDATE_TIMEOUT_MS, timeout_ms // max(1, candidate_count))


def locator_operation(action: Action) -> LocatorOperation:
    match action:
        case FillAction(value=value):
            return lambda locator, timeout_ms: locator.fill(value, timeout_ms)
        case SelectAction(value=value):
            return lambda locator, timeout_ms: locator.select_option(value, timeout_ms)
    return lambda locator, timeout_ms: locator.click(timeout_ms)


@dataclass
class ActionExecution:
    """What the dispatch step learned; filled in as it goes so failures keep partial detail."""
    resolved_node_id: Optional[str] = None
    resolved_bounding_box: Optional[BoundingBox] = None
    selector_diagnostics: Optional[SelectorDiagnostics] = None
    pause_elapsed_ms: Optional[int] = None
    checkpoint: Optional[CheckpointSummary] = None


class AgentSession:
    """One browser page driven by validated actions, with an append-only trace."""

    def __init__(
        self,
        options: Optional[SessionOptions] = None,
        provider: Optional[BrowserProvider] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.options = options or self.settings.session_options()
        self.provider = provider or PlaywrightProvider()

        self.session_id = str(uuid.uuid4())
        self.tab_id = DEFAULT_TAB_ID
        self.logger = SessionLogger(self.session_id)

        self._control = ExecutionControl()
        self._queue = OperationQueue(name=self.session_id)
        self._router = MockRouter()
        self._observer: Optional[BrowserObserver] = None

        self._action_counter = 0
        self._last_snapshot: Optional[Snapshot] = None
        self._records: list[TraceRecord] = []
        self._timeline: list[TimelineEntry] = []
        self._required_origins: set[str] = set()

        self._started = False
        self._closed = False

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Launch the browser, install page instrumentation and take the first snapshot."""
        if self._closed:
            raise SessionClosedError()
        if self._started:
            return

        await self.provider.start(self.options)

        if self.options.browser_overlay:
            await install_browser_overlay(
                self.provider,
                pause=self.pause_execution,
                resume=self.resume_execution,
                state=self.get_execution_control_state,
            )

        await install_layout_shift_capture(self.provider)
        if self.options.deterministic:
            await apply_deterministic_settings(self.provider)

        self._observer = BrowserObserver.for_pack(
            self.options.redaction_pack,
            noise_filtering=self.options.log_noise_filtering,
        )
        self.provider.attach_observer(self._observer)
        self._started = True

        self._last_snapshot = await take_snapshot(self.provider)
        self.logger.session_started(
            deterministic=self.options.deterministic,
            stability_profile=self.options.stability_profile,
            url=self._last_snapshot.url,
        )

    async def close(self) -> None:
        """Close after queued work settles. Calling it again is a no-op."""
        if self._closed:
            return
        self._closed = True
        if not self._started:
            return
        if self._queue.pending:
            self.logger.log.debug("Close waiting for queued operations", pending=self._queue.pending)
        await self._queue.run(self._close_provider)

    async def _close_provider(self) -> None:
        try:
            await self.provider.close()
        except Exception as e:
            if not is_benign_shutdown_error(str(e)):
                raise
            self.logger.log.debug("Ignoring shutdown error", error=first_line(str(e)))
        finally:
            self._observer = None
            self.logger.session_closed()

    async def __aenter__(self) -> "AgentSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @classmethod
    async def load_saved_session(
        cls,
        name: str,
        options: Optional[SessionOptions] = None,
        root_dir: Optional[str] = None,
        provider: Optional[BrowserProvider] = None,
        settings: Optional[Settings] = None,
    ) -> "AgentSession":
        """Start a session from a saved manifest's storage state and reopen its URL."""
        settings = settings or get_settings()
        manifest = load_session_manifest(name, root_dir or settings.sessions_dir)
        base = options or settings.session_options()

        session = cls(
            base.merged(storage_state_path=manifest.storage_state_path),
            provider=provider,
            settings=settings,
        )
        await session.start()
        await session.perform({"type": "navigate", "url": manifest.url, "waitUntil": "domcontentloaded"})
        return session

    # =========================================================================
    # Execution control
    # =========================================================================

    def pause_execution(self, source: str = DEFAULT_PAUSE_SOURCE) -> dict:
        state = self._control.pause(source)
        self.logger.pause_changed(state["paused"], state["sources"], state["pausedMs"])
        return state

    def resume_execution(self, source: str = DEFAULT_PAUSE_SOURCE) -> dict:
        state = self._control.resume(source)
        self.logger.pause_changed(state["paused"], state["sources"], state["pausedMs"])
        return state

    def get_execution_control_state(self) -> dict:
        return self._control.state()

    def subscribe(self, listener: Callable[[ObserverEvent], None]) -> Callable[[], None]:
        """Receive observer events as they happen; returns an unsubscribe callable."""
        return self._require_observer().subscribe(listener)

    # =========================================================================
    # Public operations
    # =========================================================================

    async def perform(self, raw_action: Any) -> ActionResult:
        """Validate and run one action.

        Validation happens before queueing, so malformed input never reaches
        the browser. Execution failures are reported in the result's status
        and error, not raised.

        Raises:
            ActionValidationError: the action does not match any action schema.
            SessionNotStartedError: start() has not been called.
            SessionClosedError: the session was closed.
        """
        action = parse_action(raw_action)
        self._require_open()
        return await self._queue.run(lambda: self._perform_queued(action))

    async def snapshot(self) -> Snapshot:
        self._require_open()
        return await self._queue.run(self._capture_snapshot)

    async def save_trace(self, path: str | Path) -> str:
        """Write the trace recorded so far; returns the absolute path."""
        return await self._queue.run(lambda: self._write_trace(path))

    async def save_session(self, name: str, root_dir: Optional[str] = None) -> str:
        """Save storage state and a manifest under ``root_dir/name``; returns the manifest path."""
        self._require_open()
        return await self._queue.run(lambda: self._write_session(name, root_dir))

    @property
    def last_snapshot(self) -> Optional[Snapshot]:
        return self._last_snapshot

    @property
    def records(self) -> list[TraceRecord]:
        return list(self._records)

    @property
    def timeline(self) -> list[TimelineEntry]:
        return list(self._timeline)

    @property
    def required_origins(self) -> list[str]:
        return sorted(self._required_origins)

    # =========================================================================
    # Pipeline
    # =========================================================================

    async def _perform_queued(self, action: Action) -> ActionResult:
        await self._control.wait_until_resumed()

        max_attempts = self.options.max_action_attempts
        backoff_ms = self.options.retry_backoff_ms

        def on_retry(next_attempt: int, _failed: ActionResult) -> None:
            self.logger.retry_scheduled(action.type, next_attempt, max_attempts, backoff_ms)

        result, retry = await run_with_retry(
            lambda attempt: self._perform_once(action),
            max_attempts=max_attempts,
            backoff_ms=backoff_ms,
            on_retry=on_retry,
        )
        if max_attempts > 1:
            result = result.with_retry(retry)

        self._record(action, result)
        return result

    async def _perform_once(self, action: Action) -> ActionResult:
        started_at = _now_ms()
        self._action_counter += 1
        action_id = f"action_{self._action_counter}"
        pre_snapshot = self._last_snapshot or await take_snapshot(self.provider)
        self.logger.action_started(action_id, action.type)

        status = ActionStatus.OK
        error: Optional[ActionError] = None
        execution = ActionExecution()

        try:
            await self._execute(action, pre_snapshot, execution)
            await wait_for_stability(
                self.provider,
                action.type,
                self.options.stability_profile,
                self.options.stable_wait_ms,
                self._action_timeout(action),
            )
        except Exception as e:
            message = str(e)
            status = classify_error_message(message)
            error = ActionError(message=message, stack=traceback.format_exc())

        try:
            post_snapshot = await take_snapshot(self.provider)
        except Exception as e:
            if status == ActionStatus.OK:
                status = ActionStatus.RETRYABLE_ERROR
            error = append_error(error, f"Post-action snapshot failed: {e}")
            post_snapshot = replace(
                pre_snapshot,
                snapshot_id=str(uuid.uuid4()),
                timestamp=_now_ms(),
                url=self._safe_url(pre_snapshot.url),
            )

        self._last_snapshot = post_snapshot
        dom_diff = diff_snapshots(pre_snapshot, post_snapshot)
        events = tuple(self._require_observer().drain())

        performance = PerformanceMetrics()
        try:
            performance = await collect_performance_metrics(self.provider)
        except Exception as e:
            error = append_error(error, f"Performance capture failed: {e}")
            self.logger.side_channel_failed("performance", first_line(str(e)))

        screenshot_path = None
        annotated_path = None
        try:
            screenshot_path = await self._capture_screenshot(action_id)
        except Exception as e:
            error = append_error(error, f"Screenshot capture failed: {e}")
            self.logger.side_channel_failed("screenshot", first_line(str(e)))

        if screenshot_path and self.options.annotate_screenshots:
            try:
                annotated_path = await annotate_action_screenshot(
                    screenshot_path,
                    action.type,
                    pre_snapshot,
                    resolved_node_id=execution.resolved_node_id,
                    resolved_bounding_box=execution.resolved_bounding_box,
                )
                if annotated_path:
                    self.logger.screenshot_taken(annotated_path, annotated=True)
            except Exception as e:
                error = append_error(error, f"Screenshot annotation failed: {e}")
                self.logger.side_channel_failed("annotation", first_line(str(e)))

        finished_at = _now_ms()
        pause_summary = None
        if isinstance(action, PauseAction):
            pause_summary = PauseSummary(
                mode=action.mode or "enter",
                note=action.note,
                elapsed_ms=execution.pause_elapsed_ms if execution.pause_elapsed_ms is not None else finished_at - started_at,
                url_changed=pre_snapshot.url != post_snapshot.url,
                dom_changed=pre_snapshot.dom_hash != post_snapshot.dom_hash,
            )

        result = ActionResult(
            action_id=action_id,
            session_id=self.session_id,
            tab_id=self.tab_id,
            status=status,
            action=action,
            started_at=started_at,
            finished_at=finished_at,
            duration_ms=finished_at - started_at,
            pre_snapshot=pre_snapshot,
            post_snapshot=post_snapshot,
            dom_diff=dom_diff,
            events=events,
            performance=performance,
            screenshot_path=screenshot_path,
            annotated_screenshot_path=annotated_path,
            resolved_node_id=execution.resolved_node_id,
            resolved_bounding_box=execution.resolved_bounding_box,
            selector_diagnostics=execution.selector_diagnostics,
            pause_summary=pause_summary,
            checkpoint_summary=execution.checkpoint,
            error=error,
        )
        self.logger.action_completed(action_id, action.type, status.value, result.duration_ms)
        return result

    async def _execute(self, action: Action, pre_snapshot: Snapshot, execution: ActionExecution) -> None:
        timeout_ms = self._action_timeout(action)

        match action:
            case NavigateAction(url=url, wait_until=wait_until):
                await self.provider.navigate(url, wait_until or "domcontentloaded", timeout_ms)

            case ClickAction() | FillAction() | SelectAction():
                resolved = resolve_target(pre_snapshot, action.node_id, action.target)
                await self._run_locator_action(resolved, timeout_ms, locator_operation(action), execution)
                execution.resolved_node_id = resolved.node.id if resolved.node else None

            case PressAction(key=key):
                await self.provider.press(key)

            case PauseAction():
                execution.pause_elapsed_ms = await self._run_pause(action, timeout_ms)

            case AssertAction(condition=condition):
                await run_assert_condition(self.provider, condition, timeout_ms)

            case HandleConsentAction(mode=mode, require_found=require_found):
                await handle_consent(self.provider, mode or "accept", timeout_ms, bool(require_found))

            case WaitForAction(condition=condition):
                await run_wait_condition(self.provider, condition, timeout_ms)

            case SnapshotAction():
                await self._capture_snapshot()

            case SetViewportAction(width=width, height=height):
                await self.provider.set_viewport(width, height)

            case MockAction(route=route):
                self._router.add(route)
                await self.provider.install_router(self._router)

            case CheckpointAction(name=name, root_dir=root_dir):
                manifest_path = await self._write_session(name, root_dir)
                execution.checkpoint = CheckpointSummary(name=name, manifest_path=manifest_path)

            case _:
                raise ValueError(f"Unsupported action: {action!r}")

    async def _run_locator_action(
        self,
        resolved: ResolvedTarget,
        timeout_ms: int,
        operation: LocatorOperation,
        execution: ActionExecution,
    ) -> None:
        """Try each candidate in order; the first that succeeds wins."""
        attempt_timeout_ms = per_candidate_timeout_ms(timeout_ms, len(resolved.candidates))
        failures: list[tuple[str, str]] = []

        for index, candidate in enumerate(resolved.candidates):
            execution.selector_diagnostics = SelectorDiagnostics(
                target_label=resolved.label,
                candidate_count=len(resolved.candidates),
                attempted_candidate_count=index + 1,
                match_count=resolved.match_count,
            )
            locator = self.provider.locator(candidate)
            try:
                box = await self._bounding_box_or_none(locator, attempt_timeout_ms)
                await operation(locator, attempt_timeout_ms)
            except Exception as e:
                failures.append((candidate.label, first_line(str(e))))
                continue

            execution.resolved_bounding_box = box
            execution.selector_diagnostics = replace(
                execution.selector_diagnostics,
                selected_candidate_index=index,
                selected_candidate_label=candidate.label,
            )
            return

        raise LocatorExhaustedError(resolved.label, failures)

    @staticmethod
    async def _bounding_box_or_none(locator: LocatorHandle, timeout_ms: int) -> Optional[BoundingBox]:
        try:
            return await locator.bounding_box(timeout_ms)
        except Exception:
            return None

    async def _run_pause(self, action: PauseAction, timeout_ms: int) -> int:
        started = time.monotonic()
        if (action.mode or "enter") == "timeout":
            await self.provider.wait_for_timeout(timeout_ms)
        else:
            await wait_for_enter_or_timeout(timeout_ms)
        return int((time.monotonic() - started) * 1000)

    async def _capture_snapshot(self) -> Snapshot:
        self._last_snapshot = await take_snapshot(self.provider)
        return self._last_snapshot

    async def _capture_screenshot(self, action_id: str) -> Optional[str]:
        if not self.options.capture_screenshots:
            return None

        path = (
            Path(self.options.artifacts_dir)
            / self.session_id
            / f"{self._action_counter:04d}-{action_id}.png"
        ).resolve()
        path.parent.mkdir(parents=True, exist_ok=True)
        await self.provider.screenshot(
            str(path),
            full_page=self.options.screenshot_mode == ScreenshotMode.FULLPAGE,
        )
        self.logger.screenshot_taken(str(path))
        return str(path)

    def _record(self, action: Action, result: ActionResult) -> None:
        """Append the trace record and timeline entry, and note origins for replay preflight."""
        diagnostics = result.selector_diagnostics
        retry = result.retry
        checkpoint = result.checkpoint_summary

        record_result = TraceRecordResult(
            status=result.status,
            post_dom_hash=result.post_snapshot.dom_hash,
            duration_ms=result.duration_ms,
            post_url=result.post_snapshot.url,
            post_title=result.post_snapshot.title,
            post_interactive_count=result.post_snapshot.interactive_count,
            wait_for_selector=extract_selector_invariant(action),
            network_error_count=result.network_error_count,
            event_count=len(result.events),
            error_message=result.error_message,
        )
        if diagnostics:
            record_result.selector_target = diagnostics.target_label
            record_result.selector_candidate_count = diagnostics.candidate_count
            record_result.selector_fallback_depth = diagnostics.fallback_depth
            record_result.selector_attempted_count = diagnostics.attempted_candidate_count
            record_result.selector_selected_candidate = diagnostics.selected_candidate_label
        if retry:
            record_result.retry_attempt_count = retry.attempt_count
            record_result.retry_max_attempts = retry.max_attempts
            record_result.retry_final_reason = retry.final_reason.value
            record_result.retry_attempt_statuses = retry.attempt_statuses
            record_result.retry_attempt_durations_ms = retry.attempt_durations_ms
        if checkpoint:
            record_result.checkpoint_name = checkpoint.name
            record_result.checkpoint_manifest_path = checkpoint.manifest_path

        entry = TimelineEntry(
            index=len(self._records),
            action_type=action.type,
            status=result.status,
            duration_ms=result.duration_ms,
            post_url=result.post_snapshot.url,
            post_dom_hash=result.post_snapshot.dom_hash,
            dom_diff_summary=DiffCounts(**result.dom_diff.summary.to_dict()),
            event_count=len(result.events),
            screenshot_path=result.screenshot_path,
            annotated_screenshot_path=result.annotated_screenshot_path,
            target=self._timeline_target(result),
        )
        if retry:
            entry.retry = TimelineRetry(
                attempt_count=retry.attempt_count,
                max_attempts=retry.max_attempts,
                backoff_ms=retry.backoff_ms,
                final_reason=retry.final_reason.value,
                attempt_statuses=retry.attempt_statuses,
                attempt_durations_ms=retry.attempt_durations_ms,
            )
        if checkpoint:
            entry.checkpoint = TimelineCheckpoint(name=checkpoint.name, manifest_path=checkpoint.manifest_path)

        self._records.append(TraceRecord(action=action.to_dict(), result=record_result))
        self._timeline.append(entry)

        note_origin_from_url(self._required_origins, result.post_snapshot.url)
        if isinstance(action, NavigateAction):
            note_origin_from_url(self._required_origins, action.url)

    @staticmethod
    def _timeline_target(result: ActionResult) -> Optional[TimelineTarget]:
        if result.resolved_node_id is None and result.resolved_bounding_box is None:
            return None
        node = result.pre_snapshot.find(result.resolved_node_id) if result.resolved_node_id else None
        box = result.resolved_bounding_box or (node.bounding_box if node else None)
        return TimelineTarget(
            node_id=result.resolved_node_id,
            stable_ref=node.stable_ref if node else None,
            role=node.role if node else None,
            name=node.name if node else None,
            bounding_box=box.to_dict() if box else None,
        )

    # =========================================================================
    # Persistence
    # =========================================================================

    async def _write_trace(self, path: str | Path) -> str:
        trace = SavedTrace(
            created_at=_iso_now(),
            session_id=self.session_id,
            options=self.options.to_trace_dict(),
            environment=TraceEnvironment(required_origins=self.required_origins),
            timeline=list(self._timeline),
            records=list(self._records),
        )
        return write_trace(path, trace)

    async def _write_session(self, name: str, root_dir: Optional[str] = None) -> str:
        root = root_dir or self.settings.sessions_dir
        storage_state_path = session_dir(name, root) / STORAGE_STATE_FILE
        storage_state_path.parent.mkdir(parents=True, exist_ok=True)
        await self.provider.storage_state(str(storage_state_path))

        manifest = SavedSession(
            created_at=_iso_now(),
            name=name,
            url=self.provider.url,
            storage_state_path=str(storage_state_path),
        )
        manifest_path = write_session_manifest(manifest, root)
        self.logger.log.info("Session saved", name=name, manifest_path=manifest_path)
        return manifest_path

    # =========================================================================
    # Helpers
    # =========================================================================

    def _action_timeout(self, action: Action) -> int:
        return getattr(action, "timeout_ms", None) or self.options.action_timeout_ms

    def _safe_url(self, fallback: str) -> str:
        try:
            return self.provider.url
        except Exception:
            return fallback

    def _require_open(self) -> None:
        if self._closed:
            raise SessionClosedError()
        if not self._started:
            raise SessionNotStartedError()

    def _require_observer(self) -> BrowserObserver:
        if self._observer is None:
            raise SessionNotStartedError("Observer not initialized; call start() first")
        return self._observer
