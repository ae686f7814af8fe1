"""Result records produced by the action pipeline."""

from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Optional

from ..errors import ActionStatus
from ..snapshot.models import BoundingBox, Snapshot, SnapshotDiff

if TYPE_CHECKING:
    from ..actions.schema import Action
    from ..browser.observer import ObserverEvent
    from .retry import RetrySummary


@dataclass(frozen=True)
class PerformanceMetrics:
    """Page timing read after an action; None where the browser had no entry."""
    dom_content_loaded_ms: Optional[float] = None
    load_ms: Optional[float] = None
    first_paint_ms: Optional[float] = None
    first_contentful_paint_ms: Optional[float] = None
    layout_shift_score: float = 0.0

    def to_dict(self) -> dict:
        return {
            "domContentLoadedMs": self.dom_content_loaded_ms,
            "loadMs": self.load_ms,
            "firstPaintMs": self.first_paint_ms,
            "firstContentfulPaintMs": self.first_contentful_paint_ms,
            "layoutShiftScore": self.layout_shift_score,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PerformanceMetrics":
        return cls(
            dom_content_loaded_ms=data.get("domContentLoadedMs"),
            load_ms=data.get("loadMs"),
            first_paint_ms=data.get("firstPaintMs"),
            first_contentful_paint_ms=data.get("firstContentfulPaintMs"),
            layout_shift_score=float(data.get("layoutShiftScore") or 0.0),
        )


@dataclass(frozen=True)
class SelectorDiagnostics:
    """How a target was located: which candidate won after how many tries."""
    target_label: str
    candidate_count: int
    attempted_candidate_count: int
    selected_candidate_index: Optional[int] = None
    selected_candidate_label: Optional[str] = None
    match_count: int = 0

    @property
    def fallback_depth(self) -> Optional[int]:
        return self.selected_candidate_index

    def to_dict(self) -> dict:
        data: dict[str, Any] = {
            "targetLabel": self.target_label,
            "candidateCount": self.candidate_count,
            "attemptedCandidateCount": self.attempted_candidate_count,
        }
        if self.selected_candidate_index is not None:
            data["selectedCandidateIndex"] = self.selected_candidate_index
            data["selectedCandidateLabel"] = self.selected_candidate_label
        return data


@dataclass(frozen=True)
class PauseSummary:
    mode: str
    elapsed_ms: int
    url_changed: bool
    dom_changed: bool
    note: Optional[str] = None

    def to_dict(self) -> dict:
        data: dict[str, Any] = {
            "mode": self.mode,
            "elapsedMs": self.elapsed_ms,
            "urlChanged": self.url_changed,
            "domChanged": self.dom_changed,
        }
        if self.note is not None:
            data["note"] = self.note
        return data


@dataclass(frozen=True)
class CheckpointSummary:
    name: str
    manifest_path: str

    def to_dict(self) -> dict:
        return {"name": self.name, "manifestPath": self.manifest_path}


@dataclass(frozen=True)
class ActionError:
    message: str
    stack: Optional[str] = None

    def append(self, message: str) -> "ActionError":
        return ActionError(message=f"{self.message}; {message}", stack=self.stack)

    def to_dict(self) -> dict:
        data = {"message": self.message}
        if self.stack:
            data["stack"] = self.stack
        return data


def append_error(existing: Optional[ActionError], message: str) -> ActionError:
    """Join a new failure onto an existing error with '; '."""
    if existing is None:
        return ActionError(message=message)
    return existing.append(message)


@dataclass(frozen=True)
class ActionResult:
    """Everything observed while performing one action."""
    action_id: str
    session_id: str
    tab_id: str
    status: ActionStatus
    action: "Action"
    started_at: int
    finished_at: int
    duration_ms: int
    pre_snapshot: Snapshot
    post_snapshot: Snapshot
    dom_diff: SnapshotDiff
    events: tuple["ObserverEvent", ...] = ()
    performance: PerformanceMetrics = field(default_factory=PerformanceMetrics)
    screenshot_path: Optional[str] = None
    annotated_screenshot_path: Optional[str] = None
    resolved_node_id: Optional[str] = None
    resolved_bounding_box: Optional[BoundingBox] = None
    selector_diagnostics: Optional[SelectorDiagnostics] = None
    pause_summary: Optional[PauseSummary] = None
    checkpoint_summary: Optional[CheckpointSummary] = None
    retry: Optional["RetrySummary"] = None
    error: Optional[ActionError] = None

    @property
    def ok(self) -> bool:
        return self.status == ActionStatus.OK

    @property
    def error_message(self) -> Optional[str]:
        return self.error.message if self.error else None

    @property
    def network_error_count(self) -> int:
        return sum(
            1 for event in self.events
            if event.kind == "network" and event.phase == "request_failed"
        )

    def with_retry(self, retry: "RetrySummary") -> "ActionResult":
        return replace(self, retry=retry)

    def to_dict(self) -> dict:
        data: dict[str, Any] = {
            "actionId": self.action_id,
            "sessionId": self.session_id,
            "tabId": self.tab_id,
            "status": self.status.value,
            "action": self.action.to_dict(),
            "startedAt": self.started_at,
            "finishedAt": self.finished_at,
            "durationMs": self.duration_ms,
            "preSnapshot": self.pre_snapshot.to_dict(),
            "postSnapshot": self.post_snapshot.to_dict(),
            "domDiff": self.dom_diff.to_dict(),
            "events": [event.to_dict() for event in self.events],
            "performance": self.performance.to_dict(),
        }
        optional = {
            "screenshotPath": self.screenshot_path,
            "annotatedScreenshotPath": self.annotated_screenshot_path,
            "resolvedNodeId": self.resolved_node_id,
            "resolvedBoundingBox": self.resolved_bounding_box.to_dict() if self.resolved_bounding_box else None,
            "selectorDiagnostics": self.selector_diagnostics.to_dict() if self.selector_diagnostics else None,
            "pauseSummary": self.pause_summary.to_dict() if self.pause_summary else None,
            "checkpointSummary": self.checkpoint_summary.to_dict() if self.checkpoint_summary else None,
            "retry": self.retry.to_dict() if self.retry else None,
            "error": self.error.to_dict() if self.error else None,
        }
        data.update({key: value for key, value in optional.items() if value is not None})
        return data
