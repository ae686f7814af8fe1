"""Deterministic replay and flake detection."""

from .models import (
    FlakeReport,
    MismatchReason,
    ReplayMismatch,
    ReplayMode,
    ReplayOptions,
    ReplayReport,
    UnstableAction,
)
from .selectors import SimpleSelector, evaluate_selector_invariant, parse_simple_selector
from .engine import collect_required_origins, normalize_url, replay_trace, run_preflight
from .flakes import detect_flakes

__all__ = [
    # Models
    "FlakeReport",
    "MismatchReason",
    "ReplayMismatch",
    "ReplayMode",
    "ReplayOptions",
    "ReplayReport",
    "UnstableAction",
    # Selector invariants
    "SimpleSelector",
    "evaluate_selector_invariant",
    "parse_simple_selector",
    # Replay
    "collect_required_origins",
    "normalize_url",
    "replay_trace",
    "run_preflight",
    "detect_flakes",
]
