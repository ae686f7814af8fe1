"""Tests for the AgentSession action pipeline over an in-memory provider."""

import asyncio
import json
from pathlib import Path

import pytest


class TestSessionLifecycle:
    """Tests for start, close and guards."""

    @pytest.mark.asyncio
    async def test_start_installs_instrumentation(self, make_session, fake_provider):
        """Test start launches the provider, injects scripts and takes a first snapshot."""
        session = make_session()
        await session.start()

        assert fake_provider.started is True
        assert fake_provider.reduced_motion is True
        assert len(fake_provider.init_scripts) == 2
        assert fake_provider.observer is not None
        assert fake_provider.bindings == {}
        assert session.last_snapshot.url == "about:blank"

        await session.close()

    @pytest.mark.asyncio
    async def test_overlay_and_non_deterministic(self, make_session, fake_provider):
        """Test the overlay binding is exposed and determinism can be switched off."""
        from sazen.browser.overlay import OVERLAY_BINDING

        session = make_session(browser_overlay=True, deterministic=False)
        await session.start()

        assert OVERLAY_BINDING in fake_provider.bindings
        assert fake_provider.reduced_motion is False
        # Overlay script and layout shift capture
        assert len(fake_provider.init_scripts) == 2

        await session.close()

    @pytest.mark.asyncio
    async def test_perform_before_start(self, make_session):
        """Test operations require a started session."""
        from sazen.errors import SessionNotStartedError

        session = make_session()

        with pytest.raises(SessionNotStartedError):
            await session.perform({"type": "snapshot"})

    @pytest.mark.asyncio
    async def test_invalid_action_is_rejected_before_anything_runs(self, make_session, fake_provider):
        """Test validation errors surface before the session is even checked."""
        from sazen.errors import ActionValidationError

        session = make_session()

        with pytest.raises(ActionValidationError):
            await session.perform({"type": "click"})
        assert fake_provider.calls == []

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, make_session, fake_provider):
        """Test closing twice is a no-op and later operations fail."""
        from sazen.errors import SessionClosedError

        session = make_session()
        await session.start()
        await session.close()
        await session.close()

        assert fake_provider.closed is True
        with pytest.raises(SessionClosedError):
            await session.perform({"type": "snapshot"})
        with pytest.raises(SessionClosedError):
            await session.start()

    @pytest.mark.asyncio
    async def test_benign_shutdown_errors_are_ignored(self, make_session, fake_provider):
        """Test 'target closed' style failures during close are swallowed."""
        fake_provider.close_error = "Target page, context or browser has been closed"
        session = make_session()
        await session.start()

        await session.close()

    @pytest.mark.asyncio
    async def test_other_shutdown_errors_propagate(self, make_session, fake_provider):
        """Test unexpected close failures reach the caller."""
        fake_provider.close_error = "disk on fire"
        session = make_session()
        await session.start()

        with pytest.raises(Exception, match="disk on fire"):
            await session.close()

    @pytest.mark.asyncio
    async def test_async_context_manager(self, make_session, fake_provider):
        """Test the session starts and closes around an async with block."""
        async with make_session() as session:
            assert session.last_snapshot is not None

        assert fake_provider.closed is True


class TestActionPipeline:
    """Tests for perform."""

    @pytest.mark.asyncio
    async def test_navigate(self, make_session, fake_provider, app_url):
        """Test navigation captures before/after state and a diff."""
        async with make_session() as session:
            result = await session.perform({"type": "navigate", "url": app_url})

        assert result.ok
        assert result.action_id == "action_1"
        assert result.tab_id == "tab_1"
        assert result.pre_snapshot.url == "about:blank"
        assert result.post_snapshot.url == app_url
        assert result.dom_diff.summary.added == 3
        assert ("navigate", app_url, "domcontentloaded") in fake_provider.calls
        assert result.performance.dom_content_loaded_ms == 12.5
        assert result.screenshot_path is None

    @pytest.mark.asyncio
    async def test_click_by_stable_ref(self, make_session, app_url, next_url):
        """Test the most specific candidate wins and the page change is captured."""
        async with make_session() as session:
            await session.perform({"type": "navigate", "url": app_url})
            result = await session.perform({
                "type": "click",
                "target": {"kind": "stableRef", "value": "testid:submit"},
            })

        diagnostics = result.selector_diagnostics
        assert result.ok
        assert result.resolved_node_id == "n1"
        assert result.post_snapshot.url == next_url
        assert diagnostics.target_label == "stableRef:testid:submit"
        assert diagnostics.selected_candidate_index == 0
        assert diagnostics.selected_candidate_label == "testId:submit"
        assert diagnostics.attempted_candidate_count == 1
        assert [node.id for node in result.dom_diff.removed] == ["n1", "n2", "n3"]

    @pytest.mark.asyncio
    async def test_locator_fallback(self, make_session, fake_provider, app_url):
        """Test a failing candidate falls through to the next one."""
        fake_provider.locator_errors["testId:submit"] = "Timeout 1500ms exceeded.\n=== logs ==="

        async with make_session() as session:
            await session.perform({"type": "navigate", "url": app_url})
            result = await session.perform({"type": "click", "nodeId": "n1"})
            record = session.records[-1]

        assert result.ok
        assert result.selector_diagnostics.selected_candidate_index == 1
        assert result.selector_diagnostics.selected_candidate_label == "id:submit"
        assert result.selector_diagnostics.attempted_candidate_count == 2
        assert ("click", "id:submit") in fake_provider.calls
        assert record.result.selector_fallback_depth == 1
        assert record.result.selector_selected_candidate == "id:submit"

    @pytest.mark.asyncio
    async def test_fill_uses_form_candidate(self, make_session, fake_provider, app_url):
        """Test fill writes through the first working candidate."""
        async with make_session() as session:
            await session.perform({"type": "navigate", "url": app_url})
            result = await session.perform({"type": "fill", "nodeId": "n2", "value": "a@b.io"})

        assert result.ok
        assert fake_provider.filled == {"input[name=email]": "a@b.io"}

    @pytest.mark.asyncio
    async def test_locator_exhausted(self, make_session, fake_provider, app_url):
        """Test every candidate failing reports each reason and is retryable on timeouts."""
        from sazen.errors import ActionStatus

        fake_provider.locator_errors["css:#missing"] = "Timeout 2000ms exceeded.\nCall log: ..."

        async with make_session() as session:
            await session.perform({"type": "navigate", "url": app_url})
            result = await session.perform({"type": "click", "target": {"kind": "css", "selector": "#missing"}})

        assert result.status == ActionStatus.RETRYABLE_ERROR
        assert result.error_message == (
            "Unable to resolve actionable locator for css:#missing.\n"
            "- css:#missing: Timeout 2000ms exceeded."
        )
        assert result.error.stack
        assert result.selector_diagnostics.selected_candidate_index is None
        assert fake_provider.timeouts == []

    @pytest.mark.asyncio
    async def test_unknown_stable_ref_fails_without_browser_interaction(self, make_session, fake_provider, app_url):
        """Test resolution failures are fatal and no locator is touched."""
        from sazen.errors import ActionStatus

        async with make_session() as session:
            await session.perform({"type": "navigate", "url": app_url})
            result = await session.perform({
                "type": "click",
                "target": {"kind": "stableRef", "value": "testid:missing"},
            })

        assert result.status == ActionStatus.FATAL_ERROR
        assert result.error_message == "No node found with stableRef 'testid:missing'"
        assert not [call for call in fake_provider.calls if call[0] in ("click", "fill", "select", "wait_for")]
        assert result.selector_diagnostics is None

    @pytest.mark.asyncio
    async def test_assertion_failure_is_fatal(self, make_session, fake_provider, app_url):
        """Test failed assertions are not retryable."""
        from sazen.errors import ActionStatus

        fake_provider.texts["#submit"] = "Submit order"

        async with make_session() as session:
            await session.perform({"type": "navigate", "url": app_url})
            result = await session.perform({
                "type": "assert",
                "condition": {"kind": "selector", "selector": "#submit", "textContains": "Cancel"},
            })

        assert result.status == ActionStatus.FATAL_ERROR
        assert result.error_message.startswith("Assert failed")

    @pytest.mark.asyncio
    async def test_post_snapshot_failure_falls_back(self, make_session, fake_provider, app_url):
        """Test a failed post-action capture reuses the pre-action content and is retryable."""
        from sazen.errors import ActionStatus

        async with make_session() as session:
            await session.perform({"type": "navigate", "url": app_url})
            fake_provider.snapshot_failures = 1
            result = await session.perform({"type": "press", "key": "Tab"})

        assert result.status == ActionStatus.RETRYABLE_ERROR
        assert result.error_message == "Post-action snapshot failed: Execution context was destroyed"
        assert result.post_snapshot.dom_hash == result.pre_snapshot.dom_hash
        assert result.post_snapshot.snapshot_id != result.pre_snapshot.snapshot_id

    @pytest.mark.asyncio
    async def test_side_channel_failures_do_not_change_status(self, make_session, fake_provider, app_url):
        """Test performance capture failures are appended to the error only."""
        fake_provider.performance_error = "perf boom"

        async with make_session() as session:
            result = await session.perform({"type": "navigate", "url": app_url})

        assert result.ok
        assert result.error_message == "Performance capture failed: perf boom"

    @pytest.mark.asyncio
    async def test_screenshots_and_annotation(self, make_session, app_url, tmp_path):
        """Test screenshots are written per action and annotated for targeted actions."""
        async with make_session(capture_screenshots=True) as session:
            await session.perform({"type": "navigate", "url": app_url})
            result = await session.perform({"type": "click", "nodeId": "n1"})
            session_id = session.session_id

        expected = (tmp_path / "artifacts" / session_id / "0002-action_2.png").resolve()
        assert result.screenshot_path == str(expected)
        assert expected.exists()
        assert result.annotated_screenshot_path.endswith("0002-action_2.annotated.png")
        assert Path(result.annotated_screenshot_path).exists()

    @pytest.mark.asyncio
    async def test_events_are_attributed_to_the_action(self, make_session, fake_provider, app_url):
        """Test each result carries only events raised while it ran."""
        def click_logs(provider):
            provider.observer.on_console("log", "submitted token=abc")
            provider.observer.on_request_failed("POST", "https://app.test/api/orders", "fetch", "net::ERR_FAILED")

        fake_provider.on_click["testId:submit"] = click_logs
        seen = []

        async with make_session() as session:
            first = await session.perform({"type": "navigate", "url": app_url})
            unsubscribe = session.subscribe(seen.append)
            second = await session.perform({"type": "click", "nodeId": "n1"})
            unsubscribe()

        assert first.events == ()
        assert [event.kind for event in second.events] == ["console", "network"]
        assert second.events[0].text == "submitted token=[REDACTED]"
        assert second.network_error_count == 1
        assert len(seen) == 2

    @pytest.mark.asyncio
    async def test_pause_action(self, make_session, app_url):
        """Test a timed pause reports what changed while paused."""
        async with make_session() as session:
            await session.perform({"type": "navigate", "url": app_url})
            result = await session.perform({"type": "pause", "mode": "timeout", "timeoutMs": 10, "note": "look"})

        assert result.pause_summary.mode == "timeout"
        assert result.pause_summary.note == "look"
        assert result.pause_summary.url_changed is False
        assert result.pause_summary.dom_changed is False
        assert result.pause_summary.elapsed_ms >= 0

    @pytest.mark.asyncio
    async def test_mock_and_viewport_actions(self, make_session, fake_provider):
        """Test mock routes are installed on the context and viewport changes pass through."""
        async with make_session() as session:
            await session.perform({"type": "mock", "route": {"urlPattern": "**/api/**", "json": {"ok": True}}})
            await session.perform({"type": "setViewport", "width": 390, "height": 844})

        assert len(fake_provider.router) == 1
        assert ("set_viewport", 390, 844) in fake_provider.calls

    @pytest.mark.asyncio
    async def test_snapshot_action_and_method(self, make_session, app_url):
        """Test snapshots refresh the last snapshot."""
        async with make_session() as session:
            await session.perform({"type": "navigate", "url": app_url})
            result = await session.perform({"type": "snapshot"})
            snapshot = await session.snapshot()

        assert result.ok
        assert snapshot.url == app_url
        assert session.last_snapshot is snapshot


class TestRetry:
    """Tests for retry of retryable failures."""

    @pytest.mark.asyncio
    async def test_retry_until_success(self, make_session, fake_provider, app_url):
        """Test a transient failure is retried and the summary is recorded."""
        from sazen.errors import ActionStatus

        async with make_session(max_action_attempts=3) as session:
            await session.perform({"type": "navigate", "url": app_url})
            fake_provider.snapshot_failures = 1
            result = await session.perform({"type": "press", "key": "Enter"})
            record = session.records[-1]
            entry = session.timeline[-1]

        assert result.ok
        assert result.action_id == "action_3"
        assert result.retry.attempt_count == 2
        assert result.retry.attempt_statuses == [ActionStatus.RETRYABLE_ERROR, ActionStatus.OK]
        assert result.retry.final_reason.value == "succeeded"
        assert len(session.records) == 2
        assert record.result.retry_attempt_count == 2
        assert record.result.retry_final_reason == "succeeded"
        assert entry.retry.max_attempts == 3
        assert entry.index == 1

    @pytest.mark.asyncio
    async def test_no_retry_summary_when_disabled(self, make_session, app_url):
        """Test single-attempt sessions do not attach retry summaries."""
        async with make_session() as session:
            result = await session.perform({"type": "navigate", "url": app_url})

        assert result.retry is None
        assert session.records[0].result.retry_attempt_count is None


class TestExecutionControl:
    """Tests for pause/resume of queued actions."""

    @pytest.mark.asyncio
    async def test_actions_wait_while_paused(self, make_session, app_url):
        """Test queued actions hold until every pause source is cleared."""
        async with make_session() as session:
            session.pause_execution("agent")
            session.pause_execution("overlay")
            task = asyncio.ensure_future(session.perform({"type": "navigate", "url": app_url}))
            await asyncio.sleep(0.01)
            assert not task.done()

            session.resume_execution("agent")
            await asyncio.sleep(0.01)
            assert not task.done()
            assert session.get_execution_control_state()["sources"] == ["overlay"]

            session.resume_execution("overlay")
            result = await asyncio.wait_for(task, timeout=1)

        assert result.ok

    @pytest.mark.asyncio
    async def test_concurrent_performs_are_serialized(self, make_session, app_url):
        """Test concurrent callers are executed in submission order."""
        async with make_session() as session:
            results = await asyncio.gather(
                session.perform({"type": "navigate", "url": app_url}),
                session.perform({"type": "press", "key": "Tab"}),
                session.perform({"type": "snapshot"}),
            )

        assert [result.action_id for result in results] == ["action_1", "action_2", "action_3"]
        assert [entry.action_type for entry in session.timeline] == ["navigate", "press", "snapshot"]
        assert results[1].pre_snapshot.snapshot_id == results[0].post_snapshot.snapshot_id

    @pytest.mark.asyncio
    async def test_separate_sessions_overlap(self, provider_factory, session_options, test_settings, app_url):
        """Test a session blocked in the browser does not hold up another session."""
        from sazen.session import AgentSession

        blocked_provider = provider_factory()
        blocked_provider.press_gate = asyncio.Event()
        blocked = AgentSession(session_options, provider=blocked_provider, settings=test_settings)
        free = AgentSession(session_options, provider=provider_factory(), settings=test_settings)

        async with blocked, free:
            stuck = asyncio.ensure_future(blocked.perform({"type": "press", "key": "Tab"}))
            await asyncio.sleep(0.01)
            assert ("press", "Tab") in blocked_provider.calls

            result = await asyncio.wait_for(free.perform({"type": "navigate", "url": app_url}), timeout=1)
            assert result.ok
            assert not stuck.done()

            blocked_provider.press_gate.set()
            assert (await asyncio.wait_for(stuck, timeout=1)).ok


class TestPersistence:
    """Tests for traces, saved sessions and checkpoints."""

    @pytest.mark.asyncio
    async def test_save_trace(self, make_session, app_url, tmp_path):
        """Test the trace holds records, a timeline and required origins."""
        from sazen.trace.store import load_saved_trace

        async with make_session() as session:
            await session.perform({"type": "navigate", "url": app_url})
            await session.perform({"type": "waitFor", "condition": {"kind": "selector", "selector": "#submit"}})
            await session.perform({"type": "click", "nodeId": "n1"})
            path = await session.save_trace(tmp_path / "traces" / "run.json")

        absolute, trace = load_saved_trace(path)
        raw = json.loads(Path(path).read_text(encoding="utf-8"))

        assert absolute == path
        assert trace.session_id == session.session_id
        assert trace.environment.required_origins == ["https://app.test"]
        assert [record.action_type for record in trace.records] == ["navigate", "waitFor", "click"]
        assert trace.records[1].result.wait_for_selector == "#submit"
        assert [entry.index for entry in trace.timeline] == [0, 1, 2]
        assert trace.timeline[2].target.stable_ref == "testid:submit"
        assert raw["records"][0]["action"] == {"type": "navigate", "url": app_url}
        assert raw["records"][0]["result"]["postDomHash"] == trace.records[0].result.post_dom_hash
        assert raw["options"]["stabilityProfile"] == "fast"

    @pytest.mark.asyncio
    async def test_save_and_load_session(self, make_session, provider_factory, session_options, test_settings, app_url):
        """Test a saved session restores storage state and reopens its URL."""
        from sazen.session import AgentSession
        from sazen.trace.store import load_session_manifest

        async with make_session() as session:
            await session.perform({"type": "navigate", "url": app_url})
            manifest_path = await session.save_session("logged-in")

        manifest = load_session_manifest("logged-in", test_settings.sessions_dir)
        assert Path(manifest_path).exists()
        assert manifest.url == app_url
        assert Path(manifest.storage_state_path).exists()

        provider = provider_factory()
        restored = await AgentSession.load_saved_session(
            "logged-in",
            options=session_options,
            provider=provider,
            settings=test_settings,
        )
        try:
            assert provider.options.storage_state_path == manifest.storage_state_path
            assert ("navigate", app_url, "domcontentloaded") in provider.calls
            assert restored.last_snapshot.url == app_url
        finally:
            await restored.close()

    @pytest.mark.asyncio
    async def test_load_missing_session(self, session_options, test_settings):
        """Test loading an unknown session name fails."""
        from sazen.session import AgentSession

        with pytest.raises(FileNotFoundError):
            await AgentSession.load_saved_session("nope", options=session_options, settings=test_settings)

    @pytest.mark.asyncio
    async def test_checkpoint_action(self, make_session, app_url, tmp_path):
        """Test a checkpoint saves the session and is summarized on the result."""
        root = str(tmp_path / "checkpoints")

        async with make_session() as session:
            await session.perform({"type": "navigate", "url": app_url})
            result = await session.perform({"type": "checkpoint", "name": "cart", "rootDir": root})
            record = session.records[-1]
            entry = session.timeline[-1]

        assert result.ok
        assert result.checkpoint_summary.name == "cart"
        assert Path(result.checkpoint_summary.manifest_path).exists()
        assert record.result.checkpoint_name == "cart"
        assert entry.checkpoint.manifest_path == result.checkpoint_summary.manifest_path


class TestHelpers:
    """Tests for module-level session helpers."""

    @pytest.mark.parametrize("url,expected", [
        ("https://app.test/a?b=1", {"https://app.test"}),
        ("http://localhost:3000/", {"http://localhost:3000"}),
        ("about:blank", set()),
        ("data:text/html,hi", set()),
    ])
    def test_note_origin_from_url(self, url, expected):
        """Test only http(s) origins are collected."""
        from sazen.session import note_origin_from_url

        origins = set()
        note_origin_from_url(origins, url)

        assert origins == expected

    def test_extract_selector_invariant(self):
        """Test selector waits and selector asserts yield invariants."""
        from sazen.actions import parse_action
        from sazen.session import extract_selector_invariant

        wait = parse_action({"type": "waitFor", "condition": {"kind": "selector", "selector": "#ok"}})
        check = parse_action({"type": "assert", "condition": {"kind": "selector", "selector": ".done"}})
        other = parse_action({"type": "assert", "condition": {"kind": "url_contains", "value": "/x"}})

        assert extract_selector_invariant(wait) == "#ok"
        assert extract_selector_invariant(check) == ".done"
        assert extract_selector_invariant(other) is None

    def test_per_candidate_timeout(self):
        """Test the action timeout is split across candidates with a floor."""
        from sazen.session.session import per_candidate_timeout_ms

        assert per_candidate_timeout_ms(10_000, 2) == 5_000
        assert per_candidate_timeout_ms(2_000, 4) == 1_500
        assert per_candidate_timeout_ms(2_000, 0) == 2_000
