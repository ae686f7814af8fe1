"""Loop runner: perform a step action, observe the page, then branch.

Each iteration performs the script's step action, evaluates every branch's
predicates against the page after the step and runs the actions of the
first branch that matched. The run stops when that branch says ``break``,
when no branch matches, when the step fails (unless the script continues
on step errors) or when the iteration limit is reached.

Everything goes through ``AgentSession.perform`` and ``snapshot``, so loop
actions land in the session trace like any other action.
"""

import math
import operator
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union

import structlog

from ..actions.schema import AssertAction, AssertPredicate, LoopBranch, LoopPredicate, LoopScript, SnapshotPredicate
from ..errors import LoopSetupError
from ..execution.results import ActionResult
from ..snapshot.models import Snapshot
from .session import AgentSession

logger = structlog.get_logger()

DEFAULT_MAX_ITERATIONS = 5
DETAIL_LIMIT = 120

SNAPSHOT_FIELDS = {
    "url": "url",
    "title": "title",
    "domHash": "dom_hash",
    "nodeCount": "node_count",
    "interactiveCount": "interactive_count",
}

NUMERIC_OPERATORS = {
    "gt": operator.gt,
    "gte": operator.ge,
    "lt": operator.lt,
    "lte": operator.le,
}

Number = Union[int, float]


class LoopStopReason(str, Enum):
    BRANCH_BREAK = "branch_break"
    NO_BRANCH_MATCH = "no_branch_match"
    MAX_ITERATIONS = "max_iterations"
    STEP_ERROR = "step_error"


@dataclass(frozen=True)
class PredicateResult:
    kind: str
    passed: bool
    negate: bool
    detail: str


@dataclass(frozen=True)
class BranchResult:
    label: str
    matched: bool
    match_mode: str
    predicates: tuple[PredicateResult, ...] = ()


@dataclass
class LoopIteration:
    """One step action, the branch decisions it led to and the branch actions run."""
    iteration: int
    step_result: ActionResult
    branch_results: list[BranchResult] = field(default_factory=list)
    selected_branch_label: Optional[str] = None
    selected_branch_next: Optional[str] = None
    selected_branch_action_results: list[ActionResult] = field(default_factory=list)
    observation_snapshot: Optional[Snapshot] = None

    @property
    def total_duration_ms(self) -> int:
        return self.step_result.duration_ms + sum(
            result.duration_ms for result in self.selected_branch_action_results
        )


@dataclass
class LoopRunReport:
    max_iterations: int
    stop_reason: LoopStopReason
    iterations: list[LoopIteration] = field(default_factory=list)


class _Observation:
    """Post-step snapshot, taken at most once per iteration."""

    def __init__(self, session: AgentSession):
        self._session = session
        self.snapshot: Optional[Snapshot] = None

    async def get(self) -> Snapshot:
        if self.snapshot is None:
            self.snapshot = await self._session.snapshot()
        return self.snapshot


# =============================================================================
# Runner
# =============================================================================


async def run_loop(
    session: AgentSession,
    script: LoopScript,
    max_iterations: Optional[int] = None,
) -> LoopRunReport:
    """Run ``script`` on a started session.

    Args:
        session: Started session; the loop's actions are recorded in its trace
        script: Validated loop script
        max_iterations: Overrides the script's own limit when given

    Raises:
        LoopSetupError: a setup action did not finish ok.
    """
    limit = max(1, max_iterations or script.max_iterations or DEFAULT_MAX_ITERATIONS)
    log = logger.bind(session_id=session.session_id, max_iterations=limit)

    for action in script.setup_actions:
        result = await session.perform(action)
        if not result.ok:
            raise LoopSetupError(action.type, result.status.value, result.error_message)

    report = LoopRunReport(max_iterations=limit, stop_reason=LoopStopReason.MAX_ITERATIONS)

    for number in range(1, limit + 1):
        step_result = await session.perform(script.step_action)
        iteration = LoopIteration(iteration=number, step_result=step_result)
        report.iterations.append(iteration)

        if not step_result.ok and not script.continue_on_step_error:
            report.stop_reason = LoopStopReason.STEP_ERROR
            break

        observation = _Observation(session)
        selected = await _resolve_branches(session, script.branches, observation, iteration)
        if script.capture_observation_snapshot or observation.snapshot is not None:
            iteration.observation_snapshot = await observation.get()

        if selected is None:
            report.stop_reason = LoopStopReason.NO_BRANCH_MATCH
            break

        for action in selected.actions:
            iteration.selected_branch_action_results.append(await session.perform(action))

        if selected.next == "break":
            report.stop_reason = LoopStopReason.BRANCH_BREAK
            break

    log.info(
        "Loop finished",
        stop_reason=report.stop_reason.value,
        iterations=len(report.iterations),
    )
    return report


def branch_label(branch: LoopBranch, index: int) -> str:
    """The branch's label, or ``branch_N`` (1-based) when it has none."""
    return (branch.label or "").strip() or f"branch_{index + 1}"


async def _resolve_branches(
    session: AgentSession,
    branches: list[LoopBranch],
    observation: _Observation,
    iteration: LoopIteration,
) -> Optional[LoopBranch]:
    """Evaluate every branch, recording results; return the first that matched."""
    selected: Optional[LoopBranch] = None

    for index, branch in enumerate(branches):
        label = branch_label(branch, index)
        results = tuple([await evaluate_predicate(session, predicate, observation) for predicate in branch.when])

        if not results:
            matched = True
        elif branch.match == "any":
            matched = any(result.passed for result in results)
        else:
            matched = all(result.passed for result in results)

        iteration.branch_results.append(
            BranchResult(label=label, matched=matched, match_mode=branch.match, predicates=results)
        )
        if matched and selected is None:
            selected = branch
            iteration.selected_branch_label = label
            iteration.selected_branch_next = branch.next

    return selected


async def evaluate_predicate(
    session: AgentSession,
    predicate: LoopPredicate,
    observation: _Observation,
) -> PredicateResult:
    match predicate:
        case AssertPredicate(condition=condition, timeout_ms=timeout_ms, negate=negate):
            result = await session.perform(
                AssertAction(type="assert", condition=condition, timeout_ms=timeout_ms)
            )
            if result.ok:
                detail = f"assert:{condition.kind} passed"
            else:
                detail = f"assert:{condition.kind} failed ({result.error_message or 'unknown'})"
            return PredicateResult(kind="assert", passed=result.ok != negate, negate=negate, detail=detail)

        case SnapshotPredicate(negate=negate):
            passed, detail = evaluate_snapshot_predicate(await observation.get(), predicate)
            return PredicateResult(kind="snapshot", passed=passed != negate, negate=negate, detail=detail)

    raise ValueError(f"Unsupported loop predicate: {predicate!r}")


def evaluate_snapshot_predicate(snapshot: Snapshot, predicate: SnapshotPredicate) -> tuple[bool, str]:
    """Compare one snapshot field; returns the raw outcome (before negation) and a detail line."""
    actual = getattr(snapshot, SNAPSHOT_FIELDS[predicate.field])
    subject = f"snapshot.{predicate.field} {predicate.operator}"
    shown = truncate_detail(str(actual))

    match predicate.operator:
        case "contains":
            passed = str(predicate.value) in str(actual)
            return passed, f"{subject} '{predicate.value}' => actual='{shown}'"
        case "equals" | "not_equals":
            expected = _comparable(actual, predicate.value)
            passed = (actual == expected) == (predicate.operator == "equals")
            return passed, f"{subject} '{expected}' => actual='{shown}'"

    left = as_number(actual)
    right = as_number(predicate.value)
    if left is None or right is None:
        return False, f"{subject} '{predicate.value}' => non-numeric comparison"
    return NUMERIC_OPERATORS[predicate.operator](left, right), f"{subject} {right} => actual={left}"


def as_number(value: object) -> Optional[Number]:
    """Finite numeric value of ``value``, or None; integral values come back as int."""
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return int(number) if number.is_integer() else number


def _comparable(actual: Union[str, int], value: Union[str, Number]) -> Union[str, Number]:
    if isinstance(actual, int):
        number = as_number(value)
        return number if number is not None else value
    return str(value)


def truncate_detail(text: str) -> str:
    if len(text) <= DETAIL_LIMIT:
        return text
    return text[: DETAIL_LIMIT - 3] + "..."


# =============================================================================
# Metrics
# =============================================================================


@dataclass(frozen=True)
class DurationSummary:
    average: float = 0
    p50: int = 0
    p95: int = 0
    max: int = 0

    @classmethod
    def of(cls, values: list[int]) -> "DurationSummary":
        if not values:
            return cls()
        return cls(
            average=round(sum(values) / len(values), 2),
            p50=percentile(values, 50),
            p95=percentile(values, 95),
            max=max(values),
        )

    def to_dict(self) -> dict:
        return {"average": self.average, "p50": self.p50, "p95": self.p95, "max": self.max}


@dataclass(frozen=True)
class BranchTransition:
    from_label: str
    to_label: str
    count: int

    def to_dict(self) -> dict:
        return {"from": self.from_label, "to": self.to_label, "count": self.count}


@dataclass
class LoopMetricsReport:
    """Iteration timings and how the run moved between branches."""
    created_at: str
    iteration_count: int
    max_iterations: int
    stop_reason: LoopStopReason
    step_durations: DurationSummary
    iteration_durations: DurationSummary
    branch_selection: dict[str, int]
    transitions: list[BranchTransition]

    def to_dict(self) -> dict:
        return {
            "createdAt": self.created_at,
            "iterationCount": self.iteration_count,
            "maxIterations": self.max_iterations,
            "stopReason": self.stop_reason.value,
            "durationsMs": {
                "step": self.step_durations.to_dict(),
                "iterationTotal": self.iteration_durations.to_dict(),
            },
            "branchSelection": dict(self.branch_selection),
            "selectedBranchTransitions": [transition.to_dict() for transition in self.transitions],
        }


def percentile(values: list[int], p: float) -> int:
    """Nearest-rank percentile."""
    if not values:
        return 0
    ordered = sorted(values)
    rank = max(0, min(len(ordered) - 1, math.ceil(p / 100 * len(ordered)) - 1))
    return ordered[rank]


def build_loop_metrics_report(report: LoopRunReport) -> LoopMetricsReport:
    """Summarize a run; iterations without a selected branch count as ``(none)``."""
    selection: Counter = Counter()
    transitions: Counter = Counter()
    previous = "(start)"

    for iteration in report.iterations:
        label = iteration.selected_branch_label or "(none)"
        selection[label] += 1
        transitions[(previous, label)] += 1
        previous = label

    ranked = sorted(transitions.items(), key=lambda item: (-item[1], item[0][0], item[0][1]))

    return LoopMetricsReport(
        created_at=datetime.now(timezone.utc).isoformat(),
        iteration_count=len(report.iterations),
        max_iterations=report.max_iterations,
        stop_reason=report.stop_reason,
        step_durations=DurationSummary.of([iteration.step_result.duration_ms for iteration in report.iterations]),
        iteration_durations=DurationSummary.of([iteration.total_duration_ms for iteration in report.iterations]),
        branch_selection=dict(selection),
        transitions=[BranchTransition(source, target, count) for (source, target), count in ranked],
    )
