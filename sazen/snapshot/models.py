"""Data models for page snapshots and snapshot diffs.

Snapshots are immutable value objects: a capture produces new Node and
Snapshot instances and nothing mutates them afterwards.
"""

import hashlib
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Iterable, Literal, Union

ChangeField = Literal["text", "value", "visible", "enabled", "name"]

DOM_HASH_LENGTH = 16


@dataclass(frozen=True)
class BoundingBox:
    """Rendered box of an element in CSS pixels."""
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0

    @property
    def has_area(self) -> bool:
        return self.width > 0 and self.height > 0

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}

    @classmethod
    def from_dict(cls, data: dict | None) -> "BoundingBox":
        data = data or {}
        return cls(
            x=float(data.get("x", 0.0)),
            y=float(data.get("y", 0.0)),
            width=float(data.get("width", 0.0)),
            height=float(data.get("height", 0.0)),
        )


@dataclass(frozen=True)
class Viewport:
    width: int
    height: int

    def to_dict(self) -> dict:
        return {"width": self.width, "height": self.height}


@dataclass(frozen=True)
class Node:
    """Projection of one page element at capture time."""
    id: str
    stable_ref: str
    tag: str
    role: str
    name: str
    text: str
    value: str
    visible: bool
    enabled: bool
    editable: bool
    interactive: bool
    bounding_box: BoundingBox
    path: str
    attributes: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "stableRef": self.stable_ref,
            "tag": self.tag,
            "role": self.role,
            "name": self.name,
            "text": self.text,
            "value": self.value,
            "visible": self.visible,
            "enabled": self.enabled,
            "editable": self.editable,
            "interactive": self.interactive,
            "boundingBox": self.bounding_box.to_dict(),
            "path": self.path,
            "attributes": dict(self.attributes),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Node":
        """Create a Node from the in-page walk's raw output."""
        return cls(
            id=str(data["id"]),
            stable_ref=str(data.get("stableRef", "")),
            tag=str(data.get("tag", "")),
            role=str(data.get("role", "generic")),
            name=str(data.get("name", "")),
            text=str(data.get("text", "")),
            value=str(data.get("value", "")),
            visible=bool(data.get("visible", False)),
            enabled=bool(data.get("enabled", True)),
            editable=bool(data.get("editable", False)),
            interactive=bool(data.get("interactive", False)),
            bounding_box=BoundingBox.from_dict(data.get("boundingBox")),
            path=str(data.get("path", "")),
            attributes={str(k): str(v) for k, v in (data.get("attributes") or {}).items()},
        )


def _js_bool(value: bool) -> str:
    return "true" if value else "false"


def compute_dom_hash(nodes: Iterable[Node]) -> str:
    """Content fingerprint over the ordered (id, stableRef, visible, enabled, text, value) tuples."""
    hash_input = "\n".join(
        f"{node.id}|{node.stable_ref}|{_js_bool(node.visible)}|{_js_bool(node.enabled)}|{node.text}|{node.value}"
        for node in nodes
    )
    return hashlib.sha1(hash_input.encode("utf-8")).hexdigest()[:DOM_HASH_LENGTH]


@dataclass(frozen=True)
class Snapshot:
    """Structural projection of the page at one instant."""
    snapshot_id: str
    timestamp: int  # epoch milliseconds
    url: str
    title: str
    dom_hash: str
    viewport: Viewport
    node_count: int
    interactive_count: int
    nodes: tuple[Node, ...]

    @classmethod
    def build(
        cls,
        url: str,
        title: str,
        viewport: Viewport,
        nodes: Iterable[Node],
    ) -> "Snapshot":
        """Create a snapshot, deriving hash and counts from the nodes."""
        node_tuple = tuple(nodes)
        return cls(
            snapshot_id=str(uuid.uuid4()),
            timestamp=int(time.time() * 1000),
            url=url,
            title=title,
            dom_hash=compute_dom_hash(node_tuple),
            viewport=viewport,
            node_count=len(node_tuple),
            interactive_count=sum(1 for node in node_tuple if node.interactive),
            nodes=node_tuple,
        )

    def find(self, node_id: str) -> Node | None:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def to_dict(self) -> dict:
        return {
            "snapshotId": self.snapshot_id,
            "timestamp": self.timestamp,
            "url": self.url,
            "title": self.title,
            "domHash": self.dom_hash,
            "viewport": self.viewport.to_dict(),
            "nodeCount": self.node_count,
            "interactiveCount": self.interactive_count,
            "nodes": [node.to_dict() for node in self.nodes],
        }


@dataclass(frozen=True)
class NodeChange:
    field: ChangeField
    before: Union[str, bool]
    after: Union[str, bool]

    def to_dict(self) -> dict:
        return {"field": self.field, "before": self.before, "after": self.after}


@dataclass(frozen=True)
class ChangedNode:
    id: str
    stable_ref: str
    changes: tuple[NodeChange, ...]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "stableRef": self.stable_ref,
            "changes": [change.to_dict() for change in self.changes],
        }


@dataclass(frozen=True)
class DiffSummary:
    added: int = 0
    removed: int = 0
    changed: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"added": self.added, "removed": self.removed, "changed": self.changed}


@dataclass(frozen=True)
class SnapshotDiff:
    """Node-id keyed difference between two snapshots."""
    before_snapshot_id: str
    after_snapshot_id: str
    added: tuple[Node, ...]
    removed: tuple[Node, ...]
    changed: tuple[ChangedNode, ...]
    summary: DiffSummary

    def to_dict(self) -> dict:
        return {
            "beforeSnapshotId": self.before_snapshot_id,
            "afterSnapshotId": self.after_snapshot_id,
            "added": [node.to_dict() for node in self.added],
            "removed": [node.to_dict() for node in self.removed],
            "changed": [node.to_dict() for node in self.changed],
            "summary": self.summary.to_dict(),
        }
