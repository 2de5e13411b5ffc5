"""UI hierarchy parsing: UiAutomator XML and WebDriverAgent JSON to ScreenElement.

Both walkers are pure functions over an already-fetched tree and use an
explicit stack, so deeply nested layouts never hit the recursion limit.
"""

from __future__ import annotations

import logging
import re
import xml.etree.ElementTree as ET
from collections.abc import Iterator

from mobilectl.models import HierarchyParseError, Rect, ScreenElement

logger = logging.getLogger("mobilectl.ui-elements")

_BOUNDS_RE = re.compile(r"^\[(\d+),(\d+)\]\[(\d+),(\d+)\]$")

# WDA element classes worth returning to the caller
WDA_ACCEPTED_TYPES = frozenset({
    "TextField", "Button", "Switch", "Icon", "SearchField", "StaticText", "Image",
})
_WDA_TYPE_PREFIX = "XCUIElementType"


# ---------------------------------------------------------------------------
# Android (UiAutomator XML)
# ---------------------------------------------------------------------------


def parse_bounds(bounds: str | None) -> Rect | None:
    """Parse a UiAutomator bounds string ``[l,t][r,b]`` into a Rect.

    Returns None when the string does not match exactly or describes a
    negative extent.
    """
    if not bounds:
        return None
    match = _BOUNDS_RE.match(bounds)
    if not match:
        return None
    left, top, right, bottom = (int(v) for v in match.groups())
    if right < left or bottom < top:
        return None
    return Rect(x=left, y=top, width=right - left, height=bottom - top)


def parse_uiautomator_xml(dump: str) -> ET.Element:
    """Parse a raw ``uiautomator dump`` into its ``<hierarchy>`` element.

    The dump written to /dev/tty is followed by a status line
    ("UI hierchary dumped to: /dev/tty"), so everything outside the
    hierarchy is cut off first.
    """
    start = dump.find("<?xml")
    if start == -1:
        start = dump.find("<hierarchy")
    end = dump.rfind("</hierarchy>")
    if start == -1 or end == -1:
        raise HierarchyParseError(
            "UiAutomator dump does not contain a <hierarchy> element", tool="adb",
        )
    try:
        root = ET.fromstring(dump[start:end + len("</hierarchy>")])
    except ET.ParseError as exc:
        raise HierarchyParseError(f"Malformed UiAutomator XML: {exc}", tool="adb")

    if root.tag != "hierarchy" or root.find("node") is None:
        raise HierarchyParseError("UiAutomator hierarchy has no root node", tool="adb")
    return root


def iter_nodes(root: ET.Element) -> Iterator[ET.Element]:
    """Yield every ``<node>`` below root in depth-first pre-order."""
    stack = list(reversed(root.findall("node")))
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.findall("node")))


def _android_label(node: ET.Element) -> str:
    return node.get("content-desc") or node.get("hint") or ""


def _to_android_element(node: ET.Element) -> ScreenElement | None:
    text = node.get("text") or ""
    label = _android_label(node)
    if not text and not label:
        return None

    rect = parse_bounds(node.get("bounds"))
    if rect is None:
        logger.debug("Dropping node with unparsable bounds %r", node.get("bounds"))
        return None

    return ScreenElement(
        type=node.get("class") or "text",
        text=text or None,
        label=label or None,
        identifier=node.get("resource-id") or None,
        focused=True if node.get("focused") == "true" else None,
        rect=rect,
    )


def collect_android_elements(root: ET.Element) -> list[ScreenElement]:
    """Flatten a UiAutomator hierarchy, children before their ancestors."""
    elements: list[ScreenElement] = []
    stack: list[tuple[ET.Element, bool]] = [
        (node, False) for node in reversed(root.findall("node"))
    ]
    while stack:
        node, expanded = stack.pop()
        if expanded:
            element = _to_android_element(node)
            if element is not None:
                elements.append(element)
            continue
        stack.append((node, True))
        stack.extend((child, False) for child in reversed(node.findall("node")))
    return elements


def find_node_with_label(root: ET.Element, label: str) -> ET.Element | None:
    """First node (pre-order) whose text, content-desc or hint equals label."""
    for node in iter_nodes(root):
        if label in (node.get("text"), node.get("content-desc"), node.get("hint")):
            return node
    return None


def find_focused_node(root: ET.Element) -> ET.Element | None:
    for node in iter_nodes(root):
        if node.get("focused") == "true":
            return node
    return None


# ---------------------------------------------------------------------------
# iOS (WebDriverAgent /source JSON)
# ---------------------------------------------------------------------------


def parse_wda_source(payload: dict) -> dict:
    """Extract the root node from a WDA ``/source?format=json`` response."""
    tree = payload.get("value") if isinstance(payload, dict) else None
    if not isinstance(tree, dict) or "type" not in tree:
        raise HierarchyParseError("WDA page source has no root element", tool="wda")
    return tree


def _children(node: dict) -> list[dict]:
    """Normalize a node's ``children`` field to a list (it may be absent or a single node)."""
    children = node.get("children")
    if not children:
        return []
    if isinstance(children, dict):
        return [children]
    return [c for c in children if isinstance(c, dict)]


def _strip_type(wda_type: str) -> str:
    if wda_type.startswith(_WDA_TYPE_PREFIX):
        return wda_type[len(_WDA_TYPE_PREFIX):]
    return wda_type


def _to_wda_element(node: dict) -> ScreenElement | None:
    el_type = _strip_type(node.get("type") or "")
    if el_type not in WDA_ACCEPTED_TYPES:
        return None
    if node.get("isVisible") != "1":
        return None

    rect = node.get("rect") or {}
    try:
        x, y = int(rect["x"]), int(rect["y"])
        width, height = int(rect["width"]), int(rect["height"])
    except (KeyError, TypeError, ValueError):
        return None
    if x < 0 or y < 0 or width < 0 or height < 0:
        return None

    label = node.get("label")
    name = node.get("name")
    if label is None and name is None:
        return None

    value = node.get("value")
    return ScreenElement(
        type=el_type,
        label=label,
        name=name,
        value=str(value) if value is not None else None,
        identifier=node.get("rawIdentifier") or None,
        rect=Rect(x=x, y=y, width=width, height=height),
    )


def collect_wda_elements(tree: dict) -> list[ScreenElement]:
    """Flatten a WDA source tree in pre-order, keeping only interactive controls."""
    elements: list[ScreenElement] = []
    stack = [tree]
    while stack:
        node = stack.pop()
        element = _to_wda_element(node)
        if element is not None:
            elements.append(element)
        stack.extend(reversed(_children(node)))
    return elements


# ---------------------------------------------------------------------------
# Filtering
# ---------------------------------------------------------------------------


def filter_visible(elements: list[ScreenElement]) -> list[ScreenElement]:
    """Drop zero-width or zero-height elements. Applied by every backend."""
    return [e for e in elements if not e.rect.is_empty]
