"""Page snapshots: capture, content hashing, diffing and agent views."""

from .models import (
    BoundingBox,
    Viewport,
    Node,
    Snapshot,
    NodeChange,
    ChangedNode,
    DiffSummary,
    SnapshotDiff,
    compute_dom_hash,
)
from .capture import SnapshotOptions, SNAPSHOT_SCRIPT, snapshot_from_raw, take_snapshot
from .diff import diff_snapshots
from .describe import create_agent_page_description, token_optimized_snapshot

__all__ = [
    # Models
    "BoundingBox",
    "Viewport",
    "Node",
    "Snapshot",
    "NodeChange",
    "ChangedNode",
    "DiffSummary",
    "SnapshotDiff",
    "compute_dom_hash",
    # Capture
    "SnapshotOptions",
    "SNAPSHOT_SCRIPT",
    "snapshot_from_raw",
    "take_snapshot",
    # Diff
    "diff_snapshots",
    # Agent views
    "create_agent_page_description",
    "token_optimized_snapshot",
]
