# FILE: codeagent/pipelines/content.py
"""
Post-processing for generated file content.

Models wrap file bodies in markdown fences and chatty preambles
("Here is the file:"). clean_generated_content() keeps only the file body.
For package manifests, backfill_package_json() fills the fields npm needs
with defaults derived from the blueprint.
"""

from __future__ import annotations

import json
import logging
import posixpath
import re
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

_FENCED_BLOCK_RE = re.compile(r"```[^\n`]*\n(.*?)(?:\n```|\Z)", re.DOTALL)

_NARRATIVE_PREFIX_RE = re.compile(
    r"^\s*(?:"
    r"(?:sure|certainly|of course|okay|ok)[,!.]?\s.*"
    r"|here(?:'s| is| are)\b.*"
    r"|below is\b.*"
    r"|the following\b.*"
    r"|this (?:file|code)\b.*:"
    r"|(?:file|filename|path)\s*:\s*\S+"
    r")\s*$",
    re.IGNORECASE,
)

PACKAGE_JSON_DEFAULTS: Dict[str, Any] = {
    "version": "1.0.0",
    "description": "",
    "main": "index.js",
}

_ENTRY_CANDIDATES = (
    "index.js", "server.js", "app.js", "main.js",
    "src/index.js", "src/server.js", "src/app.js", "src/main.js",
    "index.ts", "src/index.ts",
)


def _largest_fenced_block(text: str) -> Optional[str]:
    blocks = _FENCED_BLOCK_RE.findall(text)
    if not blocks:
        return None
    return max(blocks, key=len)


def clean_generated_content(text: str) -> str:
    """File body with fences, narrative preamble lines and trailing chatter removed."""
    if not text:
        return ""
    body = text
    if "```" in body:
        block = _largest_fenced_block(body)
        if block is not None:
            body = block
        else:
            body = body.replace("```", "")

    lines = body.splitlines()
    while lines and (not lines[0].strip() or _NARRATIVE_PREFIX_RE.match(lines[0])):
        lines.pop(0)
    while lines and not lines[-1].strip():
        lines.pop()
    cleaned = "\n".join(lines)
    return cleaned + "\n" if cleaned else ""


def is_json_path(path: str) -> bool:
    return path.lower().endswith(".json")


def is_package_manifest(path: str) -> bool:
    return posixpath.basename(path).lower() == "package.json"


def validate_json_content(content: str) -> Tuple[bool, Optional[str]]:
    try:
        json.loads(content)
    except json.JSONDecodeError as e:
        return False, f"line {e.lineno}, column {e.colno}: {e.msg}"
    return True, None


def _pick_entry(written_paths: List[str]) -> Optional[str]:
    for candidate in _ENTRY_CANDIDATES:
        if candidate in written_paths:
            return candidate
    return None


def backfill_package_json(
    content: str,
    *,
    project_name: str,
    description: str = "",
    package_dependencies: Optional[List[str]] = None,
    written_paths: Optional[List[str]] = None,
) -> Tuple[str, List[str]]:
    """
    Fill missing package.json fields. Returns (new_content, filled_field_names).

    Content that is not a JSON object is returned unchanged.
    """
    try:
        data = json.loads(content)
    except json.JSONDecodeError:
        return content, []
    if not isinstance(data, dict):
        return content, []

    filled: List[str] = []
    entry = _pick_entry(written_paths or [])

    if not data.get("name"):
        data["name"] = _package_name(project_name)
        filled.append("name")
    if not data.get("version"):
        data["version"] = PACKAGE_JSON_DEFAULTS["version"]
        filled.append("version")
    if "description" not in data:
        data["description"] = description or PACKAGE_JSON_DEFAULTS["description"]
        filled.append("description")
    if not data.get("main"):
        data["main"] = entry or PACKAGE_JSON_DEFAULTS["main"]
        filled.append("main")

    scripts = data.get("scripts")
    if not isinstance(scripts, dict):
        scripts = {}
    if not scripts.get("start"):
        scripts["start"] = f"node {data['main']}"
        data["scripts"] = scripts
        filled.append("scripts.start")

    deps = data.get("dependencies")
    if not isinstance(deps, dict):
        deps = {}
        data["dependencies"] = deps
        filled.append("dependencies")
    for pkg in package_dependencies or []:
        name = pkg.strip()
        if name and name not in deps and not name.startswith((".", "/")):
            deps[name] = "*"
            if "dependencies" not in filled:
                filled.append("dependencies")

    if filled:
        logger.info(f"[content] package.json backfilled: {filled}")
    return json.dumps(data, indent=2) + "\n", filled


def _package_name(project_name: str) -> str:
    slug = re.sub(r"[^a-z0-9._-]+", "-", (project_name or "").lower()).strip("-._")
    return slug[:214] or "generated-project"


__all__ = [
    "clean_generated_content",
    "is_json_path",
    "is_package_manifest",
    "validate_json_content",
    "backfill_package_json",
    "PACKAGE_JSON_DEFAULTS",
]
