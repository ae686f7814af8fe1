"""Tests for deterministic environment scripts and the pause overlay."""

import json

import pytest

from fakes import FakeProvider


class TestDeterministicSettings:
    """Tests for the deterministic init script."""

    def test_script_embeds_config(self):
        """Test seed, fixed time and animation flag are injected as JSON."""
        from sazen.browser.deterministic import DeterministicOptions, deterministic_init_script

        script = deterministic_init_script(DeterministicOptions(seed=7, fixed_time_ms=1000, disable_animations=False))

        assert json.dumps({"seed": 7, "fixedTimeMs": 1000, "disableAnimations": False}) in script
        assert "window.__agentDeterministicApplied" in script

    def test_default_constants(self):
        """Test the default seed and clock are the shared constants."""
        from sazen.browser.deterministic import deterministic_init_script
        from sazen.config import DETERMINISTIC_FIXED_TIME_MS, DETERMINISTIC_SEED

        script = deterministic_init_script()

        assert f'"seed": {DETERMINISTIC_SEED}' in script
        assert f'"fixedTimeMs": {DETERMINISTIC_FIXED_TIME_MS}' in script

    @pytest.mark.asyncio
    async def test_apply_registers_init_script_and_reduced_motion(self):
        """Test applying settings goes through the context hooks."""
        from sazen.browser.deterministic import apply_deterministic_settings, install_layout_shift_capture

        provider = FakeProvider()
        await apply_deterministic_settings(provider)
        await install_layout_shift_capture(provider)

        assert provider.reduced_motion is True
        assert len(provider.init_scripts) == 2
        assert "__agentLayoutShifts" in provider.init_scripts[1]


class TestBrowserOverlay:
    """Tests for the overlay binding."""

    def _handler(self):
        from sazen.browser.overlay import make_overlay_handler
        from sazen.session.control import ExecutionControl

        control = ExecutionControl(clock=lambda: 0)
        return control, make_overlay_handler(control.pause, control.resume, control.state)

    def test_pause_and_resume_commands(self):
        """Test overlay buttons toggle the overlay pause source."""
        control, handle = self._handler()

        state = handle(None, {"type": "pause"})
        assert state["paused"] is True
        assert state["sources"] == ["overlay"]

        state = handle(None, {"type": "resume"})
        assert state["paused"] is False

    def test_state_is_default_command(self):
        """Test a request without a type reports state."""
        control, handle = self._handler()

        assert handle(None, None) == {"paused": False, "pausedMs": 0, "sources": []}

    def test_unknown_command(self):
        """Test unsupported commands raise."""
        from sazen.browser.overlay import OverlayCommandError

        _, handle = self._handler()

        with pytest.raises(OverlayCommandError, match="Unsupported overlay control command 'reload'"):
            handle(None, {"type": "reload"})

    @pytest.mark.asyncio
    async def test_install_exposes_binding(self):
        """Test installation exposes the binding and injects the overlay script."""
        from sazen.browser.overlay import OVERLAY_BINDING, install_browser_overlay
        from sazen.session.control import ExecutionControl

        provider = FakeProvider()
        control = ExecutionControl()
        await install_browser_overlay(provider, control.pause, control.resume, control.state)

        assert OVERLAY_BINDING in provider.bindings
        assert len(provider.init_scripts) == 1
        assert OVERLAY_BINDING in provider.init_scripts[0]
