"""Replay options and the reports replay and flake detection produce."""

from dataclasses import dataclass, field
from enum import Enum


class ReplayMode(str, Enum):
    """How strictly a replayed action must reproduce the recording."""
    STRICT = "strict"  # post-action domHash must match exactly
    RELAXED = "relaxed"  # status, normalized URL and selector invariants


class MismatchReason(str, Enum):
    DOM_HASH = "dom_hash"
    STATUS = "status"
    URL = "url"
    SELECTOR_INVARIANT = "selector_invariant"


@dataclass(frozen=True)
class ReplayOptions:
    mode: ReplayMode = ReplayMode.STRICT
    preflight: bool = True
    preflight_timeout_ms: int = 4_000
    selector_invariants: bool = True


@dataclass(frozen=True)
class ReplayMismatch:
    index: int
    reason: MismatchReason
    expected: str
    actual: str
    action_type: str

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "reason": self.reason.value,
            "expected": self.expected,
            "actual": self.actual,
            "actionType": self.action_type,
        }


@dataclass
class ReplayReport:
    """Outcome of one replay; mismatches are data, never exceptions."""
    trace_path: str
    mode: ReplayMode
    total_actions: int
    checked_origins: list[str] = field(default_factory=list)
    preflight_skipped: bool = False
    selector_invariants_enabled: bool = False
    matched: int = 0
    mismatched: int = 0
    selector_checks: int = 0
    selector_mismatches: int = 0
    mismatches: list[ReplayMismatch] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "tracePath": self.trace_path,
            "mode": self.mode.value,
            "totalActions": self.total_actions,
            "matched": self.matched,
            "mismatched": self.mismatched,
            "preflight": {
                "checkedOrigins": list(self.checked_origins),
                "skipped": self.preflight_skipped,
            },
            "invariants": {
                "selectorEnabled": self.selector_invariants_enabled,
                "selectorChecks": self.selector_checks,
                "selectorMismatches": self.selector_mismatches,
            },
            "mismatches": [mismatch.to_dict() for mismatch in self.mismatches],
        }


@dataclass(frozen=True)
class UnstableAction:
    index: int
    action_type: str
    mismatch_runs: int

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "actionType": self.action_type,
            "mismatchRuns": self.mismatch_runs,
        }


@dataclass(frozen=True)
class FlakeReport:
    trace_path: str
    runs: int
    mode: ReplayMode
    unstable_actions: tuple[UnstableAction, ...] = ()

    def to_dict(self) -> dict:
        return {
            "tracePath": self.trace_path,
            "runs": self.runs,
            "mode": self.mode.value,
            "unstableActions": [action.to_dict() for action in self.unstable_actions],
        }
