"""Browser sessions: the action pipeline and its concurrency control."""

from .control import ExecutionControl, OperationQueue
from .session import AgentSession, extract_selector_invariant, note_origin_from_url
from .conditions import calculate_overlap_ratio, handle_consent, response_predicate
from .loop import LoopRunReport, LoopStopReason, build_loop_metrics_report, run_loop

__all__ = [
    # Session
    "AgentSession",
    "extract_selector_invariant",
    "note_origin_from_url",
    # Control
    "ExecutionControl",
    "OperationQueue",
    # Loop
    "LoopRunReport",
    "LoopStopReason",
    "build_loop_metrics_report",
    "run_loop",
    # Conditions
    "calculate_overlap_ratio",
    "handle_consent",
    "response_predicate",
]
