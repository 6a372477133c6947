# FILE: codeagent/orchestrator/grouping.py
"""
Independence-based grouping of tool calls.

Two calls are dependent only when both mutate files at the same path.
Read-only calls are always independent, as are calls of different kinds
that do not both write the same file. Calls are greedily packed, in input
order, into groups whose members are pairwise independent; a call that
conflicts with something in the current group starts a new group.
"""

from __future__ import annotations

import posixpath
from typing import List, Optional, Sequence, Set

from codeagent.llm.schemas import FunctionCall

FILE_MUTATING_TOOLS: Set[str] = {"write_file", "edit", "replace", "create_file", "delete_file"}
READ_ONLY_TOOLS: Set[str] = {"read_file", "list_directory", "ls", "glob", "grep", "search_file_content"}

_PATH_KEYS = ("file_path", "path", "absolute_path", "target_file")


def target_path(call: FunctionCall) -> Optional[str]:
    for key in _PATH_KEYS:
        value = call.args.get(key)
        if isinstance(value, str) and value.strip():
            norm = posixpath.normpath(value.strip().replace("\\", "/"))
            return norm[2:] if norm.startswith("./") else norm
    return None


def are_independent(a: FunctionCall, b: FunctionCall) -> bool:
    if a.name in READ_ONLY_TOOLS or b.name in READ_ONLY_TOOLS:
        return True
    if a.name in FILE_MUTATING_TOOLS and b.name in FILE_MUTATING_TOOLS:
        pa, pb = target_path(a), target_path(b)
        if pa is None or pb is None:
            # Unknown target: keep them ordered
            return False
        return pa != pb
    return True


def group_for_parallel_execution(calls: Sequence[FunctionCall]) -> List[List[int]]:
    """Partition call indexes into sequential groups of mutually independent calls."""
    groups: List[List[int]] = []
    current: List[int] = []
    for idx, call in enumerate(calls):
        if all(are_independent(calls[j], call) for j in current):
            current.append(idx)
        else:
            groups.append(current)
            current = [idx]
    if current:
        groups.append(current)
    return groups


__all__ = [
    "FILE_MUTATING_TOOLS",
    "READ_ONLY_TOOLS",
    "target_path",
    "are_independent",
    "group_for_parallel_execution",
]
