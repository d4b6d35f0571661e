"""Geometry for placing label elements on a canvas.

All positions are millimetres from the top-left corner of the label. The
designer canvas draws 4 px per mm multiplied by the current zoom factor.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from labels.elements import BARCODE, IMAGE, TEXT, LabelElement, elements_from_dicts

BASE_PX_PER_MM = 4
ZOOM_MIN = 0.3
ZOOM_MAX = 3.0
ZOOM_IN_FACTOR = 1.2
ZOOM_OUT_FACTOR = 0.8
DEFAULT_GRID_MM = 5
MIN_ELEMENT_MM = 5
HANDLES = ("nw", "ne", "sw", "se")


@dataclass(frozen=True)
class Rect:
    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @classmethod
    def of(cls, element: LabelElement) -> Rect:
        return cls(element.x, element.y, element.width, element.height)


@dataclass(frozen=True)
class PlacedElement:
    element: LabelElement
    box: Rect
    content: Any


def mm_to_px(value_mm: float, scale: float = 1.0) -> float:
    return value_mm * BASE_PX_PER_MM * scale


def px_to_mm(value_px: float, scale: float = 1.0) -> float:
    if scale <= 0:
        raise ValueError("Scale must be positive.")
    return value_px / (BASE_PX_PER_MM * scale)


def clamp_zoom(zoom: float) -> float:
    return min(max(zoom, ZOOM_MIN), ZOOM_MAX)


def zoom_in(zoom: float) -> float:
    return clamp_zoom(zoom * ZOOM_IN_FACTOR)


def zoom_out(zoom: float) -> float:
    return clamp_zoom(zoom * ZOOM_OUT_FACTOR)


def snap_to_grid(value_mm: float, grid_size_mm: float = DEFAULT_GRID_MM) -> float:
    """Round to the nearest grid line; exact halves round up."""
    if grid_size_mm <= 0:
        return value_mm
    return math.floor(value_mm / grid_size_mm + 0.5) * grid_size_mm


def clamp_position(x: float, y: float, width: float, height: float, canvas_width: float, canvas_height: float) -> tuple[float, float]:
    """Keep an element inside the canvas; one larger than the canvas is pinned to 0."""
    x = min(max(x, 0), max(canvas_width - width, 0))
    y = min(max(y, 0), max(canvas_height - height, 0))
    return x, y


def move_to_pointer(
    rect: Rect,
    pointer_x: float,
    pointer_y: float,
    canvas_width: float,
    canvas_height: float,
    *,
    offset_x: float = 0,
    offset_y: float = 0,
    grid_size_mm: float = DEFAULT_GRID_MM,
) -> Rect:
    """One drag step: the grabbed point follows the pointer, snapped then clamped."""
    x = snap_to_grid(pointer_x - offset_x, grid_size_mm)
    y = snap_to_grid(pointer_y - offset_y, grid_size_mm)
    x, y = clamp_position(x, y, rect.width, rect.height, canvas_width, canvas_height)
    return Rect(x, y, rect.width, rect.height)


def resize_from_handle(
    handle: str,
    rect: Rect,
    pointer_x: float,
    pointer_y: float,
    canvas_width: float,
    canvas_height: float,
    *,
    grid_size_mm: float = DEFAULT_GRID_MM,
    min_size_mm: float = MIN_ELEMENT_MM,
) -> Rect:
    """Resize by dragging a corner handle; the opposite corner stays where it is."""
    if handle not in HANDLES:
        raise ValueError(f"Unknown resize handle '{handle}'.")

    snapped_x = snap_to_grid(pointer_x, grid_size_mm)
    snapped_y = snap_to_grid(pointer_y, grid_size_mm)
    x, y, width, height = rect.x, rect.y, rect.width, rect.height

    if handle.endswith("w"):
        left = max(snapped_x, 0)
        width = max(rect.right - left, min_size_mm)
        x = max(rect.right - width, 0)
        width = rect.right - x
    else:
        width = max(snapped_x - rect.x, min_size_mm)
        width = min(width, max(canvas_width - x, 0))

    if handle.startswith("n"):
        top = max(snapped_y, 0)
        height = max(rect.bottom - top, min_size_mm)
        y = max(rect.bottom - height, 0)
        height = rect.bottom - y
    else:
        height = max(snapped_y - rect.y, min_size_mm)
        height = min(height, max(canvas_height - y, 0))

    return Rect(x, y, width, height)


def resolve_content(element: LabelElement, data: Mapping[str, Any]) -> Any:
    if element.type == BARCODE:
        return data.get("barcode", "")
    if element.type == IMAGE:
        return data.get("logo")
    if element.type == TEXT:
        return data.get(element.field, "")
    return None


def layout_template(template: Mapping[str, Any], data: Mapping[str, Any], scale: float = 1.0) -> dict[str, Any]:
    """Pixel boxes for every element of a template, in z-order, with resolved content."""
    scale = clamp_zoom(scale)
    placed = []
    for element in elements_from_dicts(template.get("elements")):
        box = Rect(
            mm_to_px(element.x, scale),
            mm_to_px(element.y, scale),
            mm_to_px(element.width, scale),
            mm_to_px(element.height, scale),
        )
        placed.append(PlacedElement(element=element, box=box, content=resolve_content(element, data)))

    return {
        "scale": scale,
        "width": mm_to_px(template["width"], scale),
        "height": mm_to_px(template["height"], scale),
        "elements": placed,
    }
