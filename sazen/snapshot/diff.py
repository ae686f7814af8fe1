"""Snapshot diffing."""

from .models import ChangedNode, DiffSummary, NodeChange, Snapshot, SnapshotDiff

COMPARED_FIELDS = ("text", "value", "visible", "enabled", "name")


def diff_snapshots(before: Snapshot, after: Snapshot) -> SnapshotDiff:
    """Compare two snapshots by node id.

    Nodes only in ``after`` are added, nodes only in ``before`` are removed,
    and nodes in both with a differing text/value/visible/enabled/name are
    changed, with one NodeChange per differing field.
    """
    before_map = {node.id: node for node in before.nodes}
    after_map = {node.id: node for node in after.nodes}

    added = tuple(node for node_id, node in after_map.items() if node_id not in before_map)
    removed = []
    changed = []

    for node_id, node in before_map.items():
        successor = after_map.get(node_id)
        if successor is None:
            removed.append(node)
            continue

        changes = tuple(
            NodeChange(field=name, before=getattr(node, name), after=getattr(successor, name))
            for name in COMPARED_FIELDS
            if getattr(node, name) != getattr(successor, name)
        )
        if changes:
            changed.append(ChangedNode(id=node_id, stable_ref=successor.stable_ref, changes=changes))

    return SnapshotDiff(
        before_snapshot_id=before.snapshot_id,
        after_snapshot_id=after.snapshot_id,
        added=added,
        removed=tuple(removed),
        changed=tuple(changed),
        summary=DiffSummary(added=len(added), removed=len(removed), changed=len(changed)),
    )
