"""
JSON parsing and number-parsing utilities.
"""

import json
import math
import re
from typing import Any, Optional, Union

_FLOAT_PREFIX = re.compile(r'^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?')
_INT_PREFIX = re.compile(r'^[+-]?\d+')


def safe_json_parse(text: Any, default: Any = None) -> Any:
    """
    Safely parse JSON with fallback.

    Args:
        text: JSON string
        default: Default value if parsing fails

    Returns:
        Parsed JSON or default value
    """
    if not isinstance(text, (str, bytes, bytearray)):
        return default
    try:
        return json.loads(text)
    except (json.JSONDecodeError, ValueError, RecursionError):
        return default


def pretty_print_json(data: Any, indent: int = 2) -> str:
    """
    Convert data to pretty-printed JSON string.

    Args:
        data: Data to serialize
        indent: Indentation level

    Returns:
        str: Pretty-printed JSON
    """
    return json.dumps(data, indent=indent, ensure_ascii=False, default=str)


def parse_float_prefix(value: Any) -> Optional[Union[int, float]]:
    """
    Parse a number the way a lenient numeric input does: the longest leading
    numeric prefix wins and trailing garbage is ignored.

    "3.5kg" -> 3.5, "42" -> 42, "  7e2x" -> 700.0, "abc" -> None

    Args:
        value: Text or number

    Returns:
        int or float, or None if no number could be read
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return None if isinstance(value, float) and math.isnan(value) else value
    if not isinstance(value, str):
        return None

    text = value.strip()
    if text.lower().lstrip("+-").startswith("infinity"):
        return float("-inf") if text.startswith("-") else float("inf")

    match = _FLOAT_PREFIX.match(text)
    if not match:
        return None

    literal = match.group(0)
    if re.fullmatch(r'[+-]?\d+', literal):
        return int(literal)
    return float(literal)


def parse_int_prefix(value: Any) -> Optional[int]:
    """
    Parse an integer from the leading digits of a value.

    Args:
        value: Text or number

    Returns:
        int, or None if no integer could be read
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return None if math.isnan(value) or math.isinf(value) else int(value)
    if not isinstance(value, str):
        return None

    match = _INT_PREFIX.match(value.strip())
    return int(match.group(0)) if match else None
