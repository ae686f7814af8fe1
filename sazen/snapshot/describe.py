"""Agent-facing views of a snapshot.

These are compact projections meant to be handed to a planning model: a
token-lean node list and a ranked description of what can be interacted
with, plus hints about targeting problems on the page.
"""

import re
from typing import Any

from .models import BoundingBox, Node, Snapshot

DEFAULT_MAX_ELEMENTS = 80
MIN_HIT_AREA_SIDE = 44
SMALL_TARGET_PX = 24
OVERLAP_SCAN_LIMIT = 180
TOKEN_TEXT_LIMIT = 80


def _normalize_name(value: str) -> str:
    return re.sub(r"\s+", " ", value).strip().lower()


def is_box_in_viewport(box: BoundingBox, viewport_width: int, viewport_height: int) -> bool:
    right = box.x + box.width
    bottom = box.y + box.height
    return right > 0 and bottom > 0 and box.x < viewport_width and box.y < viewport_height


def _intersects(a: BoundingBox, b: BoundingBox) -> bool:
    right = min(a.x + a.width, b.x + b.width)
    left = max(a.x, b.x)
    bottom = min(a.y + a.height, b.y + b.height)
    top = max(a.y, b.y)
    return right - left > 0 and bottom - top > 0


def score_interaction_confidence(
    node: Node,
    viewport_width: int,
    viewport_height: int,
) -> tuple[int, list[str]]:
    """Score how likely an agent can act on a node, with the reasons that contributed."""
    score = 0
    reasons = []

    if node.visible:
        score += 35
        reasons.append("visible")
    if node.enabled:
        score += 20
        reasons.append("enabled")
    if is_box_in_viewport(node.bounding_box, viewport_width, viewport_height):
        score += 20
        reasons.append("in-viewport")
    if node.role != "generic":
        score += 10
        reasons.append("semantic-role")
    if (node.name or node.text).strip():
        score += 10
        reasons.append("named-or-textual")
    if node.bounding_box.width * node.bounding_box.height >= MIN_HIT_AREA_SIDE * MIN_HIT_AREA_SIDE:
        score += 5
        reasons.append("adequate-hit-area")

    return score, reasons


def suggested_actions(node: Node) -> list[str]:
    if not node.enabled:
        return []

    actions = []
    if node.editable or node.role == "textbox":
        actions.append("fill")
    if node.tag == "select" or node.role in ("combobox", "listbox"):
        actions.append("select")
    if node.interactive:
        actions.append("click")
    return actions


def describe_location(box: BoundingBox, viewport_width: int, viewport_height: int) -> str:
    """Describe where a box sits, in viewport thirds or as an offscreen direction."""
    if not is_box_in_viewport(box, viewport_width, viewport_height):
        if box.x + box.width < 0:
            horizontal = "left"
        elif box.x > viewport_width:
            horizontal = "right"
        else:
            horizontal = "center"
        if box.y + box.height < 0:
            vertical = "above"
        elif box.y > viewport_height:
            vertical = "below"
        else:
            vertical = "middle"
        return f"offscreen-{vertical}-{horizontal}"

    center_x = box.x + box.width / 2
    center_y = box.y + box.height / 2

    if center_x < viewport_width / 3:
        horizontal = "left"
    elif center_x > viewport_width * 2 / 3:
        horizontal = "right"
    else:
        horizontal = "center"

    if center_y < viewport_height / 3:
        vertical = "top"
    elif center_y > viewport_height * 2 / 3:
        vertical = "bottom"
    else:
        vertical = "middle"

    return f"{vertical}-{horizontal}"


def detect_potential_issues(snapshot: Snapshot) -> list[str]:
    """Flag page conditions that tend to make element targeting unreliable."""
    width, height = snapshot.viewport.width, snapshot.viewport.height
    visible_interactive = [node for node in snapshot.nodes if node.interactive and node.visible]

    if not visible_interactive:
        return ["No visible interactive elements were detected."]

    issues = []

    tiny = [
        node for node in visible_interactive
        if node.bounding_box.width < SMALL_TARGET_PX or node.bounding_box.height < SMALL_TARGET_PX
    ]
    if tiny:
        issues.append(f"{len(tiny)} interactive elements have small hit areas (<{SMALL_TARGET_PX}px).")

    disabled = [node for node in snapshot.nodes if node.interactive and not node.enabled]
    if disabled:
        issues.append(f"{len(disabled)} interactive elements are disabled.")

    offscreen = [
        node for node in visible_interactive
        if not is_box_in_viewport(node.bounding_box, width, height)
    ]
    if offscreen:
        issues.append(f"{len(offscreen)} interactive elements are currently outside the viewport.")

    counts: dict[str, int] = {}
    for node in visible_interactive:
        key = f"{node.role}:{_normalize_name(node.name or node.text)}"
        counts[key] = counts.get(key, 0) + 1
    duplicates = sum(1 for count in counts.values() if count > 1)
    if duplicates:
        issues.append(
            f"{duplicates} duplicate visible role/name combinations may cause ambiguous targeting."
        )

    scanned = visible_interactive[:OVERLAP_SCAN_LIMIT]
    overlaps = 0
    for index, node in enumerate(scanned):
        for other in scanned[index + 1:]:
            if _intersects(node.bounding_box, other.bounding_box):
                overlaps += 1
    if overlaps:
        issues.append(f"{overlaps} overlapping interactive element pairs detected in viewport.")

    return issues


def token_optimized_snapshot(snapshot: Snapshot) -> dict[str, Any]:
    """Keep interactive nodes and visible text, drop geometry and attributes."""
    nodes = [
        {
            "id": node.id,
            "ref": node.stable_ref,
            "role": node.role,
            "name": node.name,
            "text": node.text[:TOKEN_TEXT_LIMIT],
            "visible": node.visible,
            "enabled": node.enabled,
            "interactive": node.interactive,
        }
        for node in snapshot.nodes
        if node.interactive or (node.visible and node.text)
    ]
    return {
        "snapshotId": snapshot.snapshot_id,
        "url": snapshot.url,
        "title": snapshot.title,
        "domHash": snapshot.dom_hash,
        "viewport": snapshot.viewport.to_dict(),
        "nodeCount": snapshot.node_count,
        "interactiveCount": snapshot.interactive_count,
        "nodes": nodes,
    }


def create_agent_page_description(
    snapshot: Snapshot,
    max_elements: int = DEFAULT_MAX_ELEMENTS,
) -> dict[str, Any]:
    """Rank interactive elements by confidence and describe the page for an agent."""
    width, height = snapshot.viewport.width, snapshot.viewport.height

    scored = []
    for node in snapshot.nodes:
        if not node.interactive:
            continue
        score, reasons = score_interaction_confidence(node, width, height)
        scored.append((score, reasons, node))

    # Highest score first, then lexicographic id
    scored.sort(key=lambda item: item[2].id)
    scored.sort(key=lambda item: item[0], reverse=True)

    elements = [
        {
            "id": node.id,
            "stableRef": node.stable_ref,
            "role": node.role,
            "name": node.name,
            "text": node.text,
            "bbox": node.bounding_box.to_dict(),
            "inViewport": is_box_in_viewport(node.bounding_box, width, height),
            "visible": node.visible,
            "enabled": node.enabled,
            "interactive": node.interactive,
            "location": describe_location(node.bounding_box, width, height),
            "suggestedActions": suggested_actions(node),
            "confidenceScore": score,
            "confidenceReasons": reasons,
        }
        for score, reasons, node in scored[:max_elements]
    ]

    return {
        "snapshotId": snapshot.snapshot_id,
        "url": snapshot.url,
        "title": snapshot.title,
        "domHash": snapshot.dom_hash,
        "viewport": snapshot.viewport.to_dict(),
        "summary": (
            f"{len(elements)} interactive elements in view model "
            f"({snapshot.node_count} total nodes)."
        ),
        "interactiveElements": elements,
        "potentialIssues": detect_potential_issues(snapshot),
    }
