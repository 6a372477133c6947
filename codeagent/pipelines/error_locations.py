# FILE: codeagent/pipelines/error_locations.py
"""
Error location extraction for debug requests.

Recognises JavaScript/Node stack frames, Python tracebacks, Java/Kotlin
frames and generic `file:line[:col]` mentions. Each candidate path is
resolved against the workspace (absolute inside the root, relative to the
root, or a unique basename match among non-ignored files). Locations
outside the workspace are dropped. Results are de-duplicated by path:line
and keep first-seen order.
"""

from __future__ import annotations

import logging
import posixpath
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Pattern, Tuple

from codeagent.errors import WorkspacePathError
from codeagent.tools.workspace import Workspace

logger = logging.getLogger(__name__)

# (pattern, path group, line group, column group, function group)
_PATTERNS: List[Tuple[Pattern[str], int, int, Optional[int], Optional[int]]] = [
    # Python: File "/app/x.py", line 12, in handler
    (re.compile(r"""File\s+["']([^"']+)["'],\s*line\s+(\d+)(?:,\s*in\s+([\w<>]+))?"""), 1, 2, None, 3),
    # Java/Kotlin: at com.example.Foo.bar(Foo.java:42)
    (re.compile(r"at\s+[\w$.<>]+\(([\w$.-]+\.(?:java|kt|scala)):(\d+)\)"), 1, 2, None, None),
    # JS with function: at handler (/app/src/x.js:12:5)
    (re.compile(r"at\s+([\w$.<>\[\] ]+?)\s+\(([^():\s]+):(\d+):(\d+)\)"), 2, 3, 4, 1),
    # JS bare: at /app/src/x.js:12:5
    (re.compile(r"at\s+([^():\s]+):(\d+):(\d+)"), 1, 2, 3, None),
    # Error in file.js:12
    (re.compile(r"(?:error|Error|ERROR)\s+(?:in|at|on)\s+([^\s:]+):(\d+)"), 1, 2, None, None),
    # Generic file.ext:12[:5]
    (re.compile(r"([\w./\\-]+\.[A-Za-z]{1,5}):(\d+)(?::(\d+))?"), 1, 2, 3, None),
]


@dataclass
class ErrorLocation:
    path: str
    line: Optional[int] = None
    column: Optional[int] = None
    function: Optional[str] = None

    @property
    def key(self) -> str:
        return f"{self.path}:{self.line}"


def resolve_error_path(raw: str, workspace: Workspace, file_list: Optional[List[str]] = None) -> Optional[str]:
    clean = raw.strip().strip("\"'").replace("\\", "/")
    if not clean or clean.startswith(("node:", "internal/")):
        return None

    try:
        full = workspace.resolve(clean)
        if full.is_file():
            return full.relative_to(workspace.root).as_posix()
    except WorkspacePathError:
        pass

    name = posixpath.basename(clean)
    files = file_list if file_list is not None else list(workspace.iter_files())
    matches = [p for p in files if posixpath.basename(p) == name]
    if len(matches) == 1:
        return matches[0]
    if len(matches) > 1:
        # Prefer the candidate that shares the longest path suffix
        suffix_matches = [p for p in matches if clean.endswith(p) or p.endswith(clean.lstrip("./"))]
        if len(suffix_matches) == 1:
            return suffix_matches[0]
    return None


def parse_error_locations(text: str, workspace: Workspace) -> List[ErrorLocation]:
    if not text:
        return []
    file_list = list(workspace.iter_files())
    found: Dict[str, ErrorLocation] = {}
    cache: Dict[str, Optional[str]] = {}

    for pattern, p_group, l_group, c_group, f_group in _PATTERNS:
        for m in pattern.finditer(text):
            raw_path = m.group(p_group)
            if raw_path not in cache:
                cache[raw_path] = resolve_error_path(raw_path, workspace, file_list)
            path = cache[raw_path]
            if path is None:
                continue
            line = int(m.group(l_group)) if m.group(l_group) else None
            column = int(m.group(c_group)) if c_group and m.group(c_group) else None
            function = m.group(f_group).strip() if f_group and m.group(f_group) else None
            loc = ErrorLocation(path=path, line=line, column=column, function=function)
            if loc.key not in found:
                found[loc.key] = loc

    locations = list(found.values())
    logger.info(f"[error_locations] parsed {len(locations)} location(s)")
    return locations


def read_context(workspace: Workspace, location: ErrorLocation, radius: int = 10) -> Optional[str]:
    """Numbered source lines around the location (±radius), '>' marking the error line."""
    try:
        full = workspace.resolve(location.path)
        lines = full.read_text(encoding="utf-8", errors="replace").splitlines()
    except (WorkspacePathError, OSError) as e:
        logger.warning(f"[error_locations] cannot read {location.path}: {e}")
        return None

    if not lines:
        return ""
    if location.line is None:
        start, end = 0, min(len(lines), radius * 2 + 1)
    else:
        center = max(1, min(location.line, len(lines)))
        start = max(0, center - 1 - radius)
        end = min(len(lines), center + radius)

    width = len(str(end))
    out = []
    for i in range(start, end):
        marker = ">" if location.line is not None and i + 1 == location.line else " "
        out.append(f"{marker}{str(i + 1).rjust(width)} | {lines[i]}")
    return "\n".join(out)


__all__ = ["ErrorLocation", "resolve_error_path", "parse_error_locations", "read_context"]
