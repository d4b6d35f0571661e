from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from common.utils import to_number
from labels.elements import ALIGNMENTS, ELEMENT_TYPES, FIELDS_BY_TYPE, FONT_SIZE_MAX, FONT_SIZE_MIN, TEXT

NAME_MAX_LENGTH = 100
SIZE_MIN_MM = 10
SIZE_MAX_MM = 500


@dataclass
class ValidationResult:
    is_valid: bool
    errors: list[str] = field(default_factory=list)


def _dimension(value: Any) -> float | None:
    number = to_number(value)
    if number is None or not SIZE_MIN_MM <= number <= SIZE_MAX_MM:
        return None
    return number


def _validate_element(index: int, element: Any, width: float | None, height: float | None) -> list[str]:
    prefix = f"Element {index}"
    if not isinstance(element, Mapping):
        return [f"{prefix}: Element must be an object"]

    errors = []
    element_type = element.get("type")
    element_field = element.get("field")
    if not element_type:
        errors.append(f"{prefix}: Type is required")
    if not element_field:
        errors.append(f"{prefix}: Field is required")

    x, y = to_number(element.get("x")), to_number(element.get("y"))
    w, h = to_number(element.get("width")), to_number(element.get("height"))
    if None in (x, y, w, h):
        errors.append(f"{prefix}: Position and size must be numbers")
    else:
        if x < 0 or y < 0:
            errors.append(f"{prefix}: Position cannot be negative")
        if w <= 0 or h <= 0:
            errors.append(f"{prefix}: Size must be positive")
        if width is not None and x + w > width:
            errors.append(f"{prefix}: Extends beyond template width")
        if height is not None and y + h > height:
            errors.append(f"{prefix}: Extends beyond template height")

    if element_type and element_type not in ELEMENT_TYPES:
        errors.append(f"{prefix}: Unknown type '{element_type}'")
    elif element_type and element_field and element_field not in FIELDS_BY_TYPE[element_type]:
        errors.append(f"{prefix}: Field '{element_field}' is not valid for type '{element_type}'")

    if element_type == TEXT:
        font_size = element.get("fontSize")
        if font_size is not None:
            font_size = to_number(font_size)
            if font_size is None or not FONT_SIZE_MIN <= font_size <= FONT_SIZE_MAX:
                errors.append(f"{prefix}: Font size must be between {FONT_SIZE_MIN} and {FONT_SIZE_MAX}")
        align = element.get("align")
        if align is not None and align not in ALIGNMENTS:
            errors.append(f"{prefix}: Alignment must be one of left, center, right")

    return errors


def validate_template(template: Mapping[str, Any]) -> ValidationResult:
    """Check a template payload and collect every problem instead of stopping at the first."""
    errors = []

    name = template.get("name")
    if not isinstance(name, str) or not name.strip():
        errors.append("Template name is required")
    elif len(name.strip()) > NAME_MAX_LENGTH:
        errors.append(f"Template name must be at most {NAME_MAX_LENGTH} characters")

    width = _dimension(template.get("width"))
    if width is None:
        errors.append(f"Template width must be between {SIZE_MIN_MM}mm and {SIZE_MAX_MM}mm")
    height = _dimension(template.get("height"))
    if height is None:
        errors.append(f"Template height must be between {SIZE_MIN_MM}mm and {SIZE_MAX_MM}mm")

    elements = template.get("elements")
    if not isinstance(elements, (list, tuple)) or not elements:
        errors.append("Template must have at least one element")
        elements = []

    for index, element in enumerate(elements, start=1):
        errors.extend(_validate_element(index, element, width, height))

    return ValidationResult(is_valid=not errors, errors=errors)
