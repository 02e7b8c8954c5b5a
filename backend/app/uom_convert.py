from __future__ import annotations

import math
import re
from typing import Any, Optional, Union

from backend.app.models import Dimension

Number = Union[int, float]

CANONICAL_UNITS = ("mm", "m", "in", "ft", "pcs")

_UOM_ALIASES = {
    "mm": "mm",
    "millimeter": "mm",
    "millimeters": "mm",
    "millimetre": "mm",
    "millimetres": "mm",
    "m": "m",
    "meter": "m",
    "meters": "m",
    "metre": "m",
    "metres": "m",
    "mtr": "m",
    "mtrs": "m",
    "in": "in",
    "in.": "in",
    "inch": "in",
    "inches": "in",
    '"': "in",
    "ft": "ft",
    "ft.": "ft",
    "foot": "ft",
    "feet": "ft",
    "'": "ft",
    "pcs": "pcs",
    "pcs.": "pcs",
    "pc": "pcs",
    "pc.": "pcs",
    "piece": "pcs",
    "pieces": "pcs",
}


# "1,000" and "1,250.5": commas group thousands
_GROUPED_NUMBER = re.compile(r"^[+-]?\d{1,3}(,\d{3})+(\.\d+)?$")
# "0,5" and "12,75": a single decimal comma, never followed by exactly three digits
_DECIMAL_COMMA = re.compile(r"^[+-]?\d*,(\d{1,2}|\d{4,})$")


def normalize_unit(u: Any) -> Optional[str]:
    """Map a raw unit string onto the canonical set, or ``None`` if unknown."""
    if not isinstance(u, str):
        return None
    key = u.strip().lower()
    if not key:
        return None
    return _UOM_ALIASES.get(key)


def normalize_uom(u: Any) -> Optional[str]:
    """Quantity unit of measure: canonical when known, otherwise kept as given."""
    if not isinstance(u, str):
        return None
    value = u.strip()
    if not value:
        return None
    return _UOM_ALIASES.get(value.lower(), value)


def _number_text(raw: str) -> Optional[str]:
    text = raw.strip()
    if "," not in text:
        return text
    if _GROUPED_NUMBER.match(text):
        return text.replace(",", "")
    if _DECIMAL_COMMA.match(text):
        return text.replace(",", ".")
    # ambiguous separators such as "1,2,3" or "1.000,5"
    return None


def coerce_number(raw: Any) -> Optional[Number]:
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, str):
        text = _number_text(raw)
        if not text:
            return None
        try:
            raw = float(text)
        except ValueError:
            return None
    if not isinstance(raw, (int, float)):
        return None
    if isinstance(raw, float):
        if not math.isfinite(raw):
            return None
        if raw.is_integer():
            return int(raw)
    return raw


def normalize_dimension(raw_value: Any, raw_unit: Any) -> Dimension:
    # an unrecognized unit is dropped, never replaced by a default
    return Dimension(value=coerce_number(raw_value), unit=normalize_unit(raw_unit))
