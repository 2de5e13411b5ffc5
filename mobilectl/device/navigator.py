"""D-pad targeting for devices whose only pointer input is directional keys.

Only a single step is ever computed: the screen changes after every press,
so the caller re-dumps the hierarchy, re-locates both endpoints and asks
again until no direction is returned.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET

from mobilectl.device.ui_elements import find_focused_node, find_node_with_label, parse_bounds
from mobilectl.models import Button, Rect

# Upper bound on presses for one navigate call; an unreachable or
# mislabelled target would otherwise loop forever.
MAX_DPAD_PRESSES = 50
DPAD_SETTLE_DELAY = 0.3  # seconds between a press and the next dump


def dpad_direction(focused: Rect, target: Rect) -> Button | None:
    """Next directional press from focused toward target, horizontal first.

    Returns None when both origins coincide (already on target).
    """
    if focused.x < target.x:
        return Button.DPAD_RIGHT
    if focused.x > target.x:
        return Button.DPAD_LEFT
    if focused.y < target.y:
        return Button.DPAD_DOWN
    if focused.y > target.y:
        return Button.DPAD_UP
    return None


def locate_endpoints(root: ET.Element, label: str) -> tuple[Rect | None, Rect | None]:
    """Return (focused_rect, target_rect); either is None when not found."""
    target = find_node_with_label(root, label)
    focused = find_focused_node(root)
    target_rect = parse_bounds(target.get("bounds")) if target is not None else None
    focused_rect = parse_bounds(focused.get("bounds")) if focused is not None else None
    return focused_rect, target_rect
