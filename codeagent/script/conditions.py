# FILE: codeagent/script/conditions.py
"""Condition evaluation for $if / $while / $for / $match."""

from __future__ import annotations

import re
from typing import Any, Dict

from codeagent.script.values import (
    Value,
    is_truthy,
    lookup_path,
    parse_literal,
    values_equal,
)

_IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z0-9_]+)*$")

# Checked in this order so "!==" is not mistaken for "!=" or "=="
_COMPARISON_OPS = (
    ("!==", False),
    ("===", True),
    ("!=", False),
    ("==", True),
)


def evaluate_expression(expr: str, env: Dict[str, Any]) -> Value:
    """Quoted string, variable path, or literal."""
    text = expr.strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"'):
        return text[1:-1]
    if text.startswith("{{") and text.endswith("}}"):
        text = text[2:-2].strip()
    if _IDENT_RE.match(text):
        found = lookup_path(env, text)
        if found is not None:
            return found
        if text.lower() in ("true", "false", "null", "none"):
            return parse_literal(text)
        return ""
    return parse_literal(text)


def evaluate_condition(condition: str, env: Dict[str, Any]) -> bool:
    cond = condition.strip()
    if not cond:
        return False

    for op, want_equal in _COMPARISON_OPS:
        if op in cond:
            left, right = cond.split(op, 1)
            equal = values_equal(
                evaluate_expression(left, env),
                evaluate_expression(right, env),
            )
            return equal if want_equal else not equal

    if cond.startswith("!"):
        return not evaluate_condition(cond[1:], env)

    return is_truthy(evaluate_expression(cond, env))


__all__ = ["evaluate_expression", "evaluate_condition"]
