# FILE: codeagent/script/values.py
"""
Variable values for the script environment.

A value is one of: str, int, float, bool, list, dict, or None (absent).
All coercions go through the helpers here so truthiness, text rendering
and comparison are consistent between conditions, templates and
instructions.

Truthiness:
  - bool: as-is
  - str: true unless empty, "0", or "false" (any case)
  - number: true unless zero
  - None: false
  - anything else (list, dict): true
"""

from __future__ import annotations

import json
import re
from enum import Enum
from typing import Any, Dict, List, Optional, Union

Value = Union[str, int, float, bool, List[Any], Dict[str, Any], None]

_NUMBER_RE = re.compile(r"^-?\d+(\.\d+)?$")


class ValueKind(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOL = "bool"
    LIST = "list"
    MAP = "map"
    NULL = "null"


def kind_of(value: Value) -> ValueKind:
    # bool is a subclass of int, so check it first
    if value is None:
        return ValueKind.NULL
    if isinstance(value, bool):
        return ValueKind.BOOL
    if isinstance(value, (int, float)):
        return ValueKind.NUMBER
    if isinstance(value, str):
        return ValueKind.STRING
    if isinstance(value, (list, tuple)):
        return ValueKind.LIST
    if isinstance(value, dict):
        return ValueKind.MAP
    return ValueKind.STRING


def is_truthy(value: Value) -> bool:
    kind = kind_of(value)
    if kind is ValueKind.NULL:
        return False
    if kind is ValueKind.BOOL:
        return bool(value)
    if kind is ValueKind.NUMBER:
        return value != 0
    if kind is ValueKind.STRING and isinstance(value, str):
        return not (value == "" or value == "0" or value.lower() == "false")
    return True


def to_text(value: Value) -> str:
    """Render a value for templates, prompts and comparisons."""
    kind = kind_of(value)
    if kind is ValueKind.NULL:
        return ""
    if kind is ValueKind.BOOL:
        return "true" if value else "false"
    if kind is ValueKind.NUMBER:
        if isinstance(value, float) and value.is_integer():
            return str(int(value))
        return str(value)
    if kind in (ValueKind.LIST, ValueKind.MAP):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def parse_literal(text: str) -> Value:
    """Interpret a bare expression token as a bool, number or string."""
    raw = text.strip()
    lowered = raw.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    if lowered in ("null", "none"):
        return None
    if _NUMBER_RE.match(raw):
        return float(raw) if "." in raw else int(raw)
    return raw


def values_equal(left: Value, right: Value) -> bool:
    """Loose equality: identical values, equal numbers, or equal text forms."""
    if left == right and type(left) is type(right):
        return True
    lk, rk = kind_of(left), kind_of(right)
    if lk is ValueKind.NUMBER and rk is ValueKind.NUMBER:
        return float(left) == float(right)  # type: ignore[arg-type]
    return to_text(left) == to_text(right)


def lookup_path(env: Dict[str, Any], path: str) -> Optional[Value]:
    """Resolve a dotted path (a.b.c) through nested maps; None when absent."""
    current: Any = env
    for part in path.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return None
    return current


__all__ = [
    "Value",
    "ValueKind",
    "kind_of",
    "is_truthy",
    "to_text",
    "parse_literal",
    "values_equal",
    "lookup_path",
]
