"""Trace files: recorded actions, timelines and session manifests."""

from .models import (
    SavedSession,
    SavedTrace,
    TimelineEntry,
    TraceEnvironment,
    TraceRecord,
    TraceRecordResult,
)
from .store import (
    TraceFormatError,
    get_trace_timeline,
    load_saved_trace,
    load_session_manifest,
    write_session_manifest,
    write_trace,
)
from .selector_health import (
    SelectorHealthReport,
    build_selector_health_report,
    format_selector_health_summary,
)

__all__ = [
    # Models
    "SavedSession",
    "SavedTrace",
    "TimelineEntry",
    "TraceEnvironment",
    "TraceRecord",
    "TraceRecordResult",
    # Store
    "TraceFormatError",
    "get_trace_timeline",
    "load_saved_trace",
    "load_session_manifest",
    "write_session_manifest",
    "write_trace",
    # Selector health
    "SelectorHealthReport",
    "build_selector_health_report",
    "format_selector_health_summary",
]
