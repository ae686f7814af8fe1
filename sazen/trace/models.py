"""Trace and session manifest file models.

These are the on-disk JSON documents. Fields are snake_case in Python and
camelCase in the files; optional fields are omitted when unset.
"""

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..errors import ActionStatus

TRACE_VERSION = 2
SESSION_MANIFEST_VERSION = 1


class TraceModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class DiffCounts(TraceModel):
    added: int = 0
    removed: int = 0
    changed: int = 0


class TraceRecordResult(TraceModel):
    """Minimal outcome of one action: enough to replay and compare."""

    status: ActionStatus
    post_dom_hash: str
    duration_ms: int
    post_url: Optional[str] = None
    post_title: Optional[str] = None
    post_interactive_count: Optional[int] = None
    wait_for_selector: Optional[str] = None
    selector_target: Optional[str] = None
    selector_candidate_count: Optional[int] = None
    selector_fallback_depth: Optional[int] = None
    selector_attempted_count: Optional[int] = None
    selector_selected_candidate: Optional[str] = None
    network_error_count: Optional[int] = None
    event_count: Optional[int] = None
    error_message: Optional[str] = None
    retry_attempt_count: Optional[int] = None
    retry_max_attempts: Optional[int] = None
    retry_final_reason: Optional[str] = None
    retry_attempt_statuses: Optional[list[ActionStatus]] = None
    retry_attempt_durations_ms: Optional[list[int]] = None
    checkpoint_name: Optional[str] = None
    checkpoint_manifest_path: Optional[str] = None


class TraceRecord(TraceModel):
    # Raw action document; replay validates it again before executing
    action: dict[str, Any]
    result: TraceRecordResult

    @property
    def action_type(self) -> str:
        return str(self.action.get("type", ""))


class TimelineTarget(TraceModel):
    node_id: Optional[str] = None
    stable_ref: Optional[str] = None
    role: Optional[str] = None
    name: Optional[str] = None
    bounding_box: Optional[dict[str, float]] = None


class TimelineRetry(TraceModel):
    attempt_count: int
    max_attempts: int
    backoff_ms: int
    final_reason: str
    attempt_statuses: list[ActionStatus]
    attempt_durations_ms: list[int]


class TimelineCheckpoint(TraceModel):
    name: str
    manifest_path: str


class TimelineEntry(TraceModel):
    index: int
    action_type: str
    status: ActionStatus
    duration_ms: int
    post_url: str
    post_dom_hash: str
    dom_diff_summary: DiffCounts = Field(default_factory=DiffCounts)
    event_count: int = 0
    screenshot_path: Optional[str] = None
    annotated_screenshot_path: Optional[str] = None
    target: Optional[TimelineTarget] = None
    retry: Optional[TimelineRetry] = None
    checkpoint: Optional[TimelineCheckpoint] = None


class TraceEnvironment(TraceModel):
    required_origins: list[str] = Field(default_factory=list)


class SavedTrace(TraceModel):
    """A complete recorded session."""

    version: int = TRACE_VERSION
    created_at: str
    session_id: str
    options: dict[str, Any] = Field(default_factory=dict)
    environment: Optional[TraceEnvironment] = None
    timeline: Optional[list[TimelineEntry]] = None
    records: list[TraceRecord] = Field(default_factory=list)


class SavedSession(TraceModel):
    """Manifest needed to restore an authenticated session and resume navigation."""

    version: Literal[1] = SESSION_MANIFEST_VERSION
    created_at: str
    name: str
    url: str
    storage_state_path: str
