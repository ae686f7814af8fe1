"""Selector health: how reliably a trace's element targets resolved."""

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from ..errors import ActionStatus
from .models import SavedTrace, TraceRecord

TOP_TARGET_LIMIT = 8
TARGETED_ACTIONS = ("click", "fill", "select")
SELECTOR_ASSERT_KINDS = ("selector", "selector_bbox_min", "selector_overlap_max")


@dataclass
class SelectorHealthTotals:
    selector_actions: int = 0
    fallback_used: int = 0
    ambiguous: int = 0
    failures: int = 0
    timeout_failures: int = 0

    def to_dict(self) -> dict:
        return {
            "selectorActions": self.selector_actions,
            "fallbackUsed": self.fallback_used,
            "ambiguous": self.ambiguous,
            "failures": self.failures,
            "timeoutFailures": self.timeout_failures,
        }


@dataclass
class TargetHealth:
    target: str
    total: int = 0
    failures: int = 0
    timeouts: int = 0
    fallback_depth_sum: int = 0
    fallback_depth_count: int = 0

    @property
    def avg_fallback_depth(self) -> float:
        if not self.fallback_depth_count:
            return 0
        return round(self.fallback_depth_sum / self.fallback_depth_count, 3)

    def to_dict(self) -> dict:
        return {
            "target": self.target,
            "total": self.total,
            "failures": self.failures,
            "timeouts": self.timeouts,
            "avgFallbackDepth": self.avg_fallback_depth,
        }


@dataclass
class SelectorHealthReport:
    created_at: str
    totals: SelectorHealthTotals
    fallback_depth_average: float
    fallback_depth_max: int
    fallback_depth_histogram: dict[int, int]
    top_targets: list[TargetHealth] = field(default_factory=list)
    trace_path: Optional[str] = None

    @property
    def fallback_rate(self) -> float:
        if self.totals.selector_actions <= 0:
            return 0
        return round(self.totals.fallback_used / self.totals.selector_actions, 4)

    @property
    def ambiguity_rate(self) -> float:
        if self.totals.selector_actions <= 0:
            return 0
        return round(self.totals.ambiguous / self.totals.selector_actions, 4)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "createdAt": self.created_at,
            "totals": self.totals.to_dict(),
            "fallbackDepth": {
                "average": self.fallback_depth_average,
                "max": self.fallback_depth_max,
                "histogram": {str(depth): count for depth, count in sorted(self.fallback_depth_histogram.items())},
            },
            "topTargets": [target.to_dict() for target in self.top_targets],
        }
        if self.trace_path:
            data["tracePath"] = self.trace_path
        return data


def is_selector_action(action: dict) -> bool:
    action_type = action.get("type")
    condition = action.get("condition") or {}
    if action_type in TARGETED_ACTIONS:
        return True
    if action_type == "waitFor":
        return condition.get("kind") == "selector"
    if action_type == "assert":
        return condition.get("kind") in SELECTOR_ASSERT_KINDS
    return False


def selector_target_label(record: TraceRecord) -> Optional[str]:
    """Recorded target label, else one derived from the action itself."""
    if record.result.selector_target:
        return record.result.selector_target

    action = record.action
    action_type = action.get("type")
    condition = action.get("condition") or {}

    if action_type in TARGETED_ACTIONS:
        target = action.get("target") or {}
        kind = target.get("kind")
        if kind == "css":
            return f"css:{target.get('selector')}"
        if kind == "stableRef":
            return f"stableRef:{target.get('value')}"
        if kind == "roleName":
            return f"roleName:{target.get('role')}:{target.get('name')}"
        if kind == "node":
            return f"node:{target.get('nodeId')}"
        if action.get("nodeId"):
            return f"node:{action['nodeId']}"

    if action_type == "waitFor" and condition.get("kind") == "selector":
        return f"waitFor:{condition.get('selector')}"

    if action_type == "assert":
        kind = condition.get("kind")
        if kind == "selector":
            return f"assert:{condition.get('selector')}"
        if kind == "selector_bbox_min":
            return f"assert_bbox:{condition.get('selector')}"
        if kind == "selector_overlap_max":
            return f"assert_overlap:{condition.get('selectorA')}|{condition.get('selectorB')}"

    return None


def build_selector_health_report(trace: SavedTrace, trace_path: Optional[str] = None) -> SelectorHealthReport:
    totals = SelectorHealthTotals()
    histogram: Counter = Counter()
    depth_sum = 0
    depth_count = 0
    depth_max = 0
    targets: dict[str, TargetHealth] = {}

    for record in trace.records:
        selector_action = is_selector_action(record.action)
        if selector_action:
            totals.selector_actions += 1

        depth = record.result.selector_fallback_depth
        if depth is not None:
            depth = max(0, int(depth))
            depth_sum += depth
            depth_count += 1
            depth_max = max(depth_max, depth)
            histogram[depth] += 1
            if depth > 0:
                totals.fallback_used += 1

        if (record.result.selector_candidate_count or 0) > 1:
            totals.ambiguous += 1

        failed = record.result.status != ActionStatus.OK
        if failed:
            totals.failures += 1
        timed_out = failed and "timeout" in (record.result.error_message or "").lower()
        if timed_out:
            totals.timeout_failures += 1

        label = selector_target_label(record)
        if label is None:
            continue

        stats = targets.setdefault(label, TargetHealth(target=label))
        if selector_action:
            stats.total += 1
        if failed:
            stats.failures += 1
        if timed_out:
            stats.timeouts += 1
        if depth is not None:
            stats.fallback_depth_sum += depth
            stats.fallback_depth_count += 1

    top_targets = sorted(targets.values(), key=lambda stats: (-stats.failures, -stats.total, stats.target))

    return SelectorHealthReport(
        created_at=datetime.now(timezone.utc).isoformat(),
        totals=totals,
        fallback_depth_average=round(depth_sum / depth_count, 3) if depth_count else 0,
        fallback_depth_max=depth_max,
        fallback_depth_histogram=dict(histogram),
        top_targets=top_targets[:TOP_TARGET_LIMIT],
        trace_path=trace_path,
    )


def format_selector_health_summary(report: SelectorHealthReport) -> list[str]:
    totals = report.totals
    lines = [
        f"selector actions={totals.selector_actions} failures={totals.failures} "
        f"timeoutFailures={totals.timeout_failures}",
        f"fallback used={totals.fallback_used} ambiguous={totals.ambiguous} "
        f"avgDepth={report.fallback_depth_average} maxDepth={report.fallback_depth_max}",
    ]
    if report.top_targets:
        lines.append("top targets:")
        for target in report.top_targets[:3]:
            lines.append(
                f"- {target.target} total={target.total} failures={target.failures} "
                f"timeouts={target.timeouts} avgDepth={target.avg_fallback_depth}"
            )
    return lines
