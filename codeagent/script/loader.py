# FILE: codeagent/script/loader.py
"""
Script resolution and caching.

A ScriptLoader is owned by a RunContext; its cache lives exactly as long
as that context. Names resolve relative to the calling script's directory
first, then the loader's search roots:

    name            (exact file)
    name.ai.yaml
    name.yaml
    name/name.ai.yaml   (directory entry point)
"""

from __future__ import annotations

import logging
import os
import threading
from typing import Dict, List, Optional, Sequence

from codeagent.errors import ScriptNotFoundError
from codeagent.script.models import Script
from codeagent.script.parser import parse_script, parse_script_file

logger = logging.getLogger(__name__)

SCRIPT_SUFFIXES = (".ai.yaml", ".yaml", ".yml")

DEFAULT_TASK_SCRIPT = """\
---
user: {{task}}
"""


class ScriptLoader:
    def __init__(self, search_roots: Optional[Sequence[str]] = None):
        self.search_roots: List[str] = [os.path.abspath(r) for r in (search_roots or [])]
        self._cache: Dict[str, Script] = {}
        self._lock = threading.Lock()

    def _candidates(self, name: str, base_dir: Optional[str]) -> List[str]:
        dirs: List[str] = []
        if os.path.isabs(name):
            dirs.append("")
        else:
            if base_dir:
                dirs.append(base_dir)
            dirs.extend(self.search_roots)
            dirs.append(os.getcwd())

        stem = os.path.basename(name.rstrip("/"))
        out: List[str] = []
        for d in dirs:
            base = os.path.join(d, name) if d else name
            out.append(base)
            for suffix in SCRIPT_SUFFIXES:
                out.append(base + suffix)
            out.append(os.path.join(base, stem + ".ai.yaml"))
        return out

    def resolve(self, name: str, base_dir: Optional[str] = None) -> str:
        candidates = self._candidates(name, base_dir)
        for path in candidates:
            if os.path.isfile(path):
                return os.path.realpath(path)
        raise ScriptNotFoundError(name, candidates)

    def load(self, name: str, base_dir: Optional[str] = None) -> Script:
        path = self.resolve(name, base_dir)
        with self._lock:
            cached = self._cache.get(path)
        if cached is not None:
            return cached

        script = parse_script_file(path)
        with self._lock:
            self._cache[path] = script
        logger.info("[loader] loaded script %s", path)
        return script

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    @property
    def cached_paths(self) -> List[str]:
        with self._lock:
            return sorted(self._cache)


def default_task_script() -> Script:
    """Single auto-run turn that forwards the `task` parameter to the model."""
    return parse_script(DEFAULT_TASK_SCRIPT, name="task")


__all__ = ["ScriptLoader", "default_task_script", "SCRIPT_SUFFIXES"]
