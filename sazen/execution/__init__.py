"""Action execution: target resolution, stability waits, retries and results."""

from .resolver import (
    LocatorSpec,
    ResolvedTarget,
    dedupe_candidates,
    locator_candidates_for_node,
    rank_matches,
    resolve_target,
    score_node_for_interaction,
)
from .stability import compute_network_idle_budget_ms, compute_quiet_window_ms, wait_for_stability
from .retry import RetryAttemptEvidence, RetryFinalReason, RetrySummary, run_with_retry
from .results import (
    ActionError,
    ActionResult,
    CheckpointSummary,
    PauseSummary,
    PerformanceMetrics,
    SelectorDiagnostics,
)

__all__ = [
    # Resolver
    "LocatorSpec",
    "ResolvedTarget",
    "dedupe_candidates",
    "locator_candidates_for_node",
    "rank_matches",
    "resolve_target",
    "score_node_for_interaction",
    # Stability
    "compute_network_idle_budget_ms",
    "compute_quiet_window_ms",
    "wait_for_stability",
    # Retry
    "RetryAttemptEvidence",
    "RetryFinalReason",
    "RetrySummary",
    "run_with_retry",
    # Results
    "ActionError",
    "ActionResult",
    "CheckpointSummary",
    "PauseSummary",
    "PerformanceMetrics",
    "SelectorDiagnostics",
]
