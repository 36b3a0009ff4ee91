# value_extractor.py

import json
import math
import re
from typing import Any, Optional

__all__ = ["extract", "to_loose_string", "parse_float", "format_number", "is_missing", "_MISSING"]

# --- Sentinel Object for Missing Keys ---
# Distinguishes "never set" (a variable or input that does not exist) from an explicit null.
_MISSING = object()

_INDEXED_PART = re.compile(r'^(.+)?\[(\d+)\]$')
_FLOAT_PREFIX = re.compile(r'^\s*([+-]?(?:Infinity|(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?))')


def is_missing(value: Any) -> bool:
    return value is None or value is _MISSING


def extract(value: Any, path: Optional[str], missing: Any = None) -> Any:
    """
    Navigates a parsed JSON value with a restricted path syntax.

    Supported forms: '.' (the whole value), '.field.sub', '.items[2]', '.[0]',
    and a trailing '| length' operation ('.items | length', '. | length').
    Returns None whenever the path is invalid or the traversal hits a missing value,
    a null, or a non-list used with bracket syntax. Never raises.

    `missing` is returned instead when the last step of the path names an absent
    key or an out-of-range index, so callers can tell it apart from an explicit null.
    """
    if not isinstance(path, str) or not path.startswith('.'):
        return None

    if ' | ' in path:
        base_path, operation = [part.strip() for part in path.split(' | ', 1)]
        base_value = value if base_path == '.' else extract(value, base_path, missing)
        if operation == 'length':
            if isinstance(base_value, (list, str, dict)):
                return len(base_value)
            return None
        return base_value

    clean_path = path[1:]
    if not clean_path:
        return value

    current = value
    for part in clean_path.split('.'):
        if current is None or current is missing:
            return None

        indexed = _INDEXED_PART.match(part)
        if indexed:
            name, index = indexed.group(1), int(indexed.group(2))
            if name:
                current = current.get(name) if isinstance(current, dict) else None
            if not isinstance(current, list):
                return None
            current = current[index] if index < len(current) else missing
        elif isinstance(current, dict):
            current = current.get(part, missing)
        elif isinstance(current, list) and part.isdigit():
            index = int(part)
            current = current[index] if index < len(current) else missing
        else:
            return missing

    return current


# ---------------------------
# Loose comparison helpers
# ---------------------------

def format_number(number: float) -> str:
    if math.isnan(number):
        return "NaN"
    if math.isinf(number):
        return "Infinity" if number > 0 else "-Infinity"
    if float(number).is_integer():
        return str(int(number))
    return str(number)


def to_loose_string(value: Any) -> str:
    """
    String form used by equals/notEquals comparisons and by substitution into text.
    Booleans become 'true'/'false', null becomes 'null', a missing value becomes 'undefined',
    integral floats drop their fraction, and containers are rendered as compact JSON.
    """
    if value is _MISSING:
        return "undefined"
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return format_number(value)
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(',', ':'), ensure_ascii=False)
    return str(value)


def parse_float(value: Any) -> Optional[float]:
    """
    Lenient float parsing: numbers pass through, strings are read up to the first
    character that cannot belong to a number ('12px' -> 12.0). Returns None when
    nothing numeric can be read, including for booleans, null and containers.
    """
    if isinstance(value, bool) or is_missing(value):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
        return None if math.isnan(number) else number
    if not isinstance(value, str):
        return None
    match = _FLOAT_PREFIX.match(value)
    if not match:
        return None
    text = match.group(1)
    if text.lstrip('+-') == 'Infinity':
        return float('-inf') if text.startswith('-') else float('inf')
    return float(text)
