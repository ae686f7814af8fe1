"""Auditable, replayable browser actions for automated agents."""

from .actions import parse_action, parse_loop_script, parse_script
from .config import SessionOptions, Settings, get_settings
from .errors import ActionStatus
from .replay import ReplayMode, ReplayOptions, detect_flakes, replay_trace
from .session import AgentSession, run_loop

__version__ = "0.4.0"

__all__ = [
    "AgentSession",
    "ActionStatus",
    "SessionOptions",
    "Settings",
    "get_settings",
    "parse_action",
    "parse_script",
    "parse_loop_script",
    "run_loop",
    "ReplayMode",
    "ReplayOptions",
    "detect_flakes",
    "replay_trace",
]
