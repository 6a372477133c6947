# FILE: codeagent/script/template.py
"""
{{ variable }} rendering.

Supports dotted paths and a small filter chain:
    {{ user.name | trim | upper }}
Missing variables render as an empty string.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, Dict

from codeagent.script.values import lookup_path, to_text

logger = logging.getLogger(__name__)

_TEMPLATE_RE = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}")

FILTERS: Dict[str, Callable[[str], str]] = {
    "upper": str.upper,
    "lower": str.lower,
    "trim": str.strip,
    "strip": str.strip,
    "title": str.title,
}


def _apply_filters(value: Any, filters: list) -> str:
    if "json" in filters:
        text = json.dumps(value, ensure_ascii=False)
    else:
        text = to_text(value)
    for name in filters:
        if name == "json":
            continue
        fn = FILTERS.get(name)
        if fn is None:
            logger.debug("[template] unknown filter '%s' ignored", name)
            continue
        text = fn(text)
    return text


def render_template(text: str, env: Dict[str, Any]) -> str:
    if not text or "{{" not in text:
        return text

    def _sub(match: "re.Match[str]") -> str:
        parts = [p.strip() for p in match.group(1).split("|")]
        path = parts[0]
        filters = [p.lower() for p in parts[1:] if p]
        return _apply_filters(lookup_path(env, path), filters)

    return _TEMPLATE_RE.sub(_sub, text)


__all__ = ["render_template", "FILTERS"]
