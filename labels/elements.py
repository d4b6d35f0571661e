"""Label element types.

Elements are stored on a template as plain dicts with camelCase keys, which is
also the import/export format. The dataclasses here are the typed view used by
layout and printing code.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from common.utils import to_bool, to_number

TEXT = "text"
BARCODE = "barcode"
IMAGE = "image"
ELEMENT_TYPES = (TEXT, BARCODE, IMAGE)

TEXT_FIELDS = ("productName", "features", "price", "date")
FIELDS_BY_TYPE = {
    TEXT: TEXT_FIELDS,
    BARCODE: ("barcode",),
    IMAGE: ("logo",),
}
ALIGNMENTS = ("left", "center", "right")

FONT_SIZE_MIN = 4
FONT_SIZE_MAX = 72
DEFAULT_FONT_SIZE = 12

# Width and height in mm for freshly placed elements.
DEFAULT_SIZES = {
    TEXT: (30, 8),
    BARCODE: (40, 10),
    IMAGE: (15, 15),
}


def _clean_number(value: Any) -> float | int | None:
    number = to_number(value)
    if number is None:
        return None
    return int(number) if number.is_integer() else number


@dataclass
class LabelElement:
    type: str
    field: str
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

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "field": self.field,
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
        }


@dataclass
class TextElement(LabelElement):
    font_size: float = DEFAULT_FONT_SIZE
    bold: bool = False
    italic: bool = False
    align: str = "left"

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(fontSize=self.font_size, bold=self.bold, italic=self.italic, align=self.align)
        return data


@dataclass
class BarcodeElement(LabelElement):
    pass


@dataclass
class ImageElement(LabelElement):
    pass


ELEMENT_CLASSES = {
    TEXT: TextElement,
    BARCODE: BarcodeElement,
    IMAGE: ImageElement,
}


def element_from_dict(data: Mapping[str, Any]) -> LabelElement:
    """Build a typed element, ignoring keys the element type does not know."""
    element_type = str(data.get("type") or "")
    element_class = ELEMENT_CLASSES.get(element_type, LabelElement)
    values = {
        "type": element_type,
        "field": str(data.get("field") or ""),
        "x": _clean_number(data.get("x")),
        "y": _clean_number(data.get("y")),
        "width": _clean_number(data.get("width")),
        "height": _clean_number(data.get("height")),
    }
    if element_class is TextElement:
        font_size = _clean_number(data.get("fontSize"))
        values.update(
            font_size=DEFAULT_FONT_SIZE if font_size is None else font_size,
            bold=to_bool(data.get("bold")),
            italic=to_bool(data.get("italic")),
            align=str(data.get("align") or "left"),
        )
    return element_class(**values)


def elements_from_dicts(items: Iterable[Mapping[str, Any]] | None) -> list[LabelElement]:
    return [element_from_dict(item) for item in items or [] if isinstance(item, Mapping)]


def new_element(element_type: str, field: str | None = None, x: float = 0, y: float = 0) -> LabelElement:
    """Element as dropped onto the canvas: default size for its type, first allowed field."""
    if element_type not in ELEMENT_CLASSES:
        raise ValueError(f"Unknown element type '{element_type}'.")
    width, height = DEFAULT_SIZES[element_type]
    return ELEMENT_CLASSES[element_type](
        type=element_type,
        field=field or FIELDS_BY_TYPE[element_type][0],
        x=x,
        y=y,
        width=width,
        height=height,
    )
