"""Screenshot annotation: outline the element an action targeted."""

from pathlib import Path
from typing import Optional

from PIL import Image, ImageDraw

from ..snapshot.models import BoundingBox, Snapshot

BOX_THICKNESS = 3
MARKER_RADIUS = 6

ACTION_COLORS = {
    "click": (236, 72, 153, 255),
    "fill": (14, 116, 144, 255),
    "select": (14, 116, 144, 255),
    "assert": (22, 163, 74, 255),
    "handleConsent": (202, 138, 4, 255),
}
DEFAULT_COLOR = (59, 130, 246, 255)


def color_for_action(action_type: str) -> tuple[int, int, int, int]:
    return ACTION_COLORS.get(action_type, DEFAULT_COLOR)


def annotated_path_for(screenshot_path: str) -> str:
    """``shot.png`` -> ``shot.annotated.png`` in the same directory."""
    path = Path(screenshot_path)
    suffix = path.suffix or ".png"
    return str(path.with_name(f"{path.stem}.annotated{suffix}"))


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def draw_target(image: Image.Image, box: BoundingBox, color: tuple[int, int, int, int]) -> Image.Image:
    """Draw the box outline and a filled centre marker, clamped to the image."""
    image = image.convert("RGBA")
    draw = ImageDraw.Draw(image)
    max_x, max_y = image.width - 1, image.height - 1

    x0 = _clamp(int(box.x), 0, max_x)
    y0 = _clamp(int(box.y), 0, max_y)
    x1 = _clamp(int(box.x + box.width), 0, max_x)
    y1 = _clamp(int(box.y + box.height), 0, max_y)
    if x1 > x0 and y1 > y0:
        draw.rectangle([x0, y0, x1, y1], outline=color, width=BOX_THICKNESS)

    cx = _clamp(int(box.x + box.width / 2), 0, max_x)
    cy = _clamp(int(box.y + box.height / 2), 0, max_y)
    draw.ellipse(
        [cx - MARKER_RADIUS, cy - MARKER_RADIUS, cx + MARKER_RADIUS, cy + MARKER_RADIUS],
        fill=color,
    )
    return image


async def annotate_action_screenshot(
    screenshot_path: str,
    action_type: str,
    snapshot: Snapshot,
    resolved_node_id: Optional[str] = None,
    resolved_bounding_box: Optional[BoundingBox] = None,
) -> Optional[str]:
    """
    Write an annotated copy of a screenshot.

    The box comes from the locator's live bounding box when available, else
    from the resolved node in the pre-action snapshot.

    Returns:
        Path of the annotated copy, or None when there is no box with area.
    """
    box = resolved_bounding_box
    if box is None and resolved_node_id:
        node = snapshot.find(resolved_node_id)
        box = node.bounding_box if node else None

    if box is None or not box.has_area:
        return None

    with Image.open(screenshot_path) as source:
        annotated = draw_target(source, box, color_for_action(action_type))

    output_path = annotated_path_for(screenshot_path)
    annotated.save(output_path, format="PNG")
    return output_path
