"""Tests for the retry wrapper and action result records."""

import pytest


@pytest.fixture
def result_factory(snapshot_factory):
    """Build minimal ActionResults with a given status."""
    from sazen.actions import parse_action
    from sazen.errors import ActionStatus
    from sazen.execution.results import ActionError, ActionResult
    from sazen.snapshot.diff import diff_snapshots

    snapshot = snapshot_factory(["n1"])
    action = parse_action({"type": "click", "nodeId": "n1"})

    def factory(status: ActionStatus, attempt: int = 1, message: str | None = None) -> ActionResult:
        return ActionResult(
            action_id=f"action_{attempt}",
            session_id="session-1",
            tab_id="tab_1",
            status=status,
            action=action,
            started_at=0,
            finished_at=5,
            duration_ms=5,
            pre_snapshot=snapshot,
            post_snapshot=snapshot,
            dom_diff=diff_snapshots(snapshot, snapshot),
            error=ActionError(message=message) if message else None,
        )
    return factory


class TestRunWithRetry:
    """Tests for run_with_retry."""

    @pytest.mark.asyncio
    async def test_retryable_then_success(self, result_factory):
        """Test a retryable failure is attempted again until success."""
        from sazen.errors import ActionStatus
        from sazen.execution.retry import RetryFinalReason, run_with_retry

        statuses = [ActionStatus.RETRYABLE_ERROR, ActionStatus.OK]
        retries = []

        async def attempt(number):
            return result_factory(statuses[number - 1], number)

        result, summary = await run_with_retry(attempt, 3, on_retry=lambda n, r: retries.append(n))

        assert result.status == ActionStatus.OK
        assert summary.final_reason == RetryFinalReason.SUCCEEDED
        assert summary.attempt_count == 2
        assert summary.attempt_statuses == statuses
        assert [evidence.action_id for evidence in summary.attempts] == ["action_1", "action_2"]
        assert retries == [2]

    @pytest.mark.asyncio
    async def test_fatal_error_stops_immediately(self, result_factory):
        """Test fatal errors are never retried."""
        from sazen.errors import ActionStatus
        from sazen.execution.retry import RetryFinalReason, run_with_retry

        calls = []

        async def attempt(number):
            calls.append(number)
            return result_factory(ActionStatus.FATAL_ERROR, number, "Node 'n9' was not found in snapshot")

        result, summary = await run_with_retry(attempt, 5)

        assert calls == [1]
        assert summary.final_reason == RetryFinalReason.NON_RETRYABLE_ERROR
        assert summary.attempts[0].error_message == "Node 'n9' was not found in snapshot"

    @pytest.mark.asyncio
    async def test_max_attempts_reached(self, result_factory):
        """Test a persistently retryable failure stops at the attempt limit."""
        from sazen.errors import ActionStatus
        from sazen.execution.retry import RetryFinalReason, run_with_retry

        async def attempt(number):
            return result_factory(ActionStatus.RETRYABLE_ERROR, number, "Timeout 100ms exceeded")

        result, summary = await run_with_retry(attempt, 3, backoff_ms=1)

        assert summary.attempt_count == 3
        assert summary.final_reason == RetryFinalReason.MAX_ATTEMPTS_REACHED
        assert summary.enabled is True
        assert result.action_id == "action_3"

    @pytest.mark.asyncio
    async def test_retry_disabled(self, result_factory):
        """Test a single attempt budget reports retry as disabled."""
        from sazen.errors import ActionStatus
        from sazen.execution.retry import RetryFinalReason, run_with_retry

        async def attempt(number):
            return result_factory(ActionStatus.RETRYABLE_ERROR, number, "net::ERR_CONNECTION_RESET")

        _, summary = await run_with_retry(attempt, 0)

        assert summary.max_attempts == 1
        assert summary.enabled is False
        assert summary.final_reason == RetryFinalReason.RETRY_DISABLED

    @pytest.mark.asyncio
    async def test_summary_to_dict(self, result_factory):
        """Test the retry summary serializes attempt evidence in camelCase."""
        from sazen.errors import ActionStatus
        from sazen.execution.retry import run_with_retry

        async def attempt(number):
            return result_factory(ActionStatus.OK, number)

        _, summary = await run_with_retry(attempt, 2)
        data = summary.to_dict()

        assert data["maxAttempts"] == 2
        assert data["attemptCount"] == 1
        assert data["finalReason"] == "succeeded"
        assert data["attempts"][0]["status"] == "ok"
        assert "errorMessage" not in data["attempts"][0]


class TestClassifyErrorMessage:
    """Tests for message-based failure classification."""

    @pytest.mark.parametrize("message,expected", [
        ("Timeout 30000ms exceeded.", "retryable_error"),
        ("Target closed", "retryable_error"),
        ("net::ERR_NAME_NOT_RESOLVED at https://x.test", "retryable_error"),
        ("Navigation failed because page crashed", "retryable_error"),
        ("Node 'n9' was not found in snapshot", "fatal_error"),
        ("Assertion failed: URL did not contain 'x'", "fatal_error"),
    ])
    def test_classification(self, message, expected):
        """Test retryable markers are matched case-insensitively."""
        from sazen.errors import classify_error_message

        assert classify_error_message(message).value == expected


class TestActionResult:
    """Tests for ActionResult helpers."""

    def test_error_append(self):
        """Test appended side-channel failures are joined with '; '."""
        from sazen.execution.results import append_error

        error = append_error(None, "Timeout 10ms exceeded")
        error = append_error(error, "Screenshot capture failed: disk full")

        assert error.message == "Timeout 10ms exceeded; Screenshot capture failed: disk full"

    def test_to_dict_omits_absent_optionals(self, result_factory):
        """Test optional fields only appear when set."""
        from sazen.errors import ActionStatus

        data = result_factory(ActionStatus.OK).to_dict()

        assert data["status"] == "ok"
        assert data["action"] == {"type": "click", "nodeId": "n1"}
        assert "error" not in data
        assert "retry" not in data
        assert data["domDiff"]["summary"] == {"added": 0, "removed": 0, "changed": 0}

    def test_selector_diagnostics_to_dict(self):
        """Test the selected candidate is only serialized when one won."""
        from sazen.execution.results import SelectorDiagnostics

        failed = SelectorDiagnostics("css:#x", 1, 1)
        won = SelectorDiagnostics("nodeId:n1", 3, 2, 1, "id:submit")

        assert "selectedCandidateIndex" not in failed.to_dict()
        assert won.to_dict()["selectedCandidateLabel"] == "id:submit"
        assert won.fallback_depth == 1
