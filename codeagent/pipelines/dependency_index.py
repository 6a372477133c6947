# FILE: codeagent/pipelines/dependency_index.py
"""
Live import/export index of files written or touched during a run.

Extraction is line-based regex, good enough to tell the model what a
dependency actually exports and which local modules a file pulls in.
Supported: JavaScript/TypeScript (ES modules and CommonJS) and Python.
"""

from __future__ import annotations

import logging
import posixpath
import re
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

JS_EXTENSIONS = (".js", ".jsx", ".ts", ".tsx", ".mjs", ".cjs")
PY_EXTENSIONS = (".py",)

_JS_IMPORT_FROM = re.compile(r"""^\s*import\s+.*?\s+from\s+['"]([^'"]+)['"]""")
_JS_IMPORT_BARE = re.compile(r"""^\s*import\s+['"]([^'"]+)['"]""")
_JS_REQUIRE = re.compile(r"""require\(\s*['"]([^'"]+)['"]\s*\)""")
_JS_EXPORT = re.compile(
    r"^\s*export\s+(?:default\s+)?(?:async\s+)?(?:function\*?|class|const|let|var)?\s*([A-Za-z_$][\w$]*)"
)
_JS_EXPORT_LIST = re.compile(r"^\s*export\s*\{([^}]*)\}")
_JS_MODULE_EXPORTS_OBJ = re.compile(r"^\s*module\.exports\s*=\s*\{([^}]*)\}?")
_JS_MODULE_EXPORTS_NAME = re.compile(r"^\s*module\.exports\s*=\s*([A-Za-z_$][\w$]*)\s*;?\s*$")
_JS_EXPORTS_PROP = re.compile(r"^\s*(?:module\.)?exports\.([A-Za-z_$][\w$]*)\s*=")

_PY_IMPORT = re.compile(r"^\s*import\s+([\w.]+)")
_PY_FROM = re.compile(r"^\s*from\s+([\w.]+)\s+import")
_PY_DEF = re.compile(r"^(?:async\s+)?def\s+([A-Za-z_]\w*)")
_PY_CLASS = re.compile(r"^class\s+([A-Za-z_]\w*)")
_PY_ASSIGN = re.compile(r"^([A-Z_][A-Z0-9_]*)\s*=")

_JS_KEYWORDS = {"default", "function", "class", "const", "let", "var", "async"}


@dataclass
class FileSymbols:
    path: str
    imports: List[str] = field(default_factory=list)
    exports: List[str] = field(default_factory=list)


def _add(items: List[str], value: str) -> None:
    value = value.strip()
    if value and value not in items:
        items.append(value)


def _names_from_braces(body: str) -> List[str]:
    names: List[str] = []
    for part in body.split(","):
        part = part.strip()
        if not part:
            continue
        # `a as b` exports b; `key: value` exports key
        if " as " in part:
            part = part.split(" as ")[-1]
        part = part.split(":")[0].strip()
        if re.match(r"^[A-Za-z_$][\w$]*$", part):
            names.append(part)
    return names


def extract_symbols(path: str, content: str) -> FileSymbols:
    symbols = FileSymbols(path=path)
    lower = path.lower()

    if lower.endswith(JS_EXTENSIONS):
        for line in content.splitlines():
            m = _JS_IMPORT_FROM.match(line) or _JS_IMPORT_BARE.match(line)
            if m:
                _add(symbols.imports, m.group(1))
            for req in _JS_REQUIRE.findall(line):
                _add(symbols.imports, req)

            m = _JS_EXPORT_LIST.match(line)
            if m:
                for name in _names_from_braces(m.group(1)):
                    _add(symbols.exports, name)
                continue
            m = _JS_EXPORT.match(line)
            if m and m.group(1) not in _JS_KEYWORDS:
                _add(symbols.exports, m.group(1))
                continue
            m = _JS_MODULE_EXPORTS_OBJ.match(line)
            if m:
                for name in _names_from_braces(m.group(1)):
                    _add(symbols.exports, name)
                continue
            m = _JS_MODULE_EXPORTS_NAME.match(line) or _JS_EXPORTS_PROP.match(line)
            if m:
                _add(symbols.exports, m.group(1))

    elif lower.endswith(PY_EXTENSIONS):
        for line in content.splitlines():
            m = _PY_FROM.match(line) or _PY_IMPORT.match(line)
            if m:
                _add(symbols.imports, m.group(1))
                continue
            m = _PY_DEF.match(line) or _PY_CLASS.match(line) or _PY_ASSIGN.match(line)
            if m and not m.group(1).startswith("_"):
                _add(symbols.exports, m.group(1))

    return symbols


def _resolve_local_import(importer: str, spec: str, known: List[str]) -> Optional[str]:
    """Map a relative JS import or dotted Python module onto an indexed path."""
    base_dir = posixpath.dirname(importer)
    candidates: List[str] = []
    if spec.startswith("."):
        if importer.lower().endswith(PY_EXTENSIONS):
            # from .x import y
            level = len(spec) - len(spec.lstrip("."))
            parent = base_dir
            for _ in range(level - 1):
                parent = posixpath.dirname(parent)
            mod = spec.lstrip(".").replace(".", "/")
            root = posixpath.normpath(posixpath.join(parent, mod)) if mod else parent
            candidates = [root + ".py", posixpath.join(root, "__init__.py")]
        else:
            root = posixpath.normpath(posixpath.join(base_dir, spec))
            candidates = [root] + [root + ext for ext in JS_EXTENSIONS] + [
                posixpath.join(root, "index" + ext) for ext in JS_EXTENSIONS
            ]
    elif importer.lower().endswith(PY_EXTENSIONS):
        mod = spec.replace(".", "/")
        candidates = [mod + ".py", posixpath.join(mod, "__init__.py")]
        if base_dir:
            candidates += [posixpath.join(base_dir, mod + ".py")]
    for c in candidates:
        if c in known:
            return c
    return None


class DependencyIndex:
    def __init__(self):
        self._files: Dict[str, FileSymbols] = {}
        self._lock = threading.Lock()

    def record(self, path: str, content: str) -> FileSymbols:
        symbols = extract_symbols(path, content)
        with self._lock:
            self._files[path] = symbols
        logger.debug(f"[dep_index] {path}: {len(symbols.imports)} imports, {len(symbols.exports)} exports")
        return symbols

    def remove(self, path: str) -> None:
        with self._lock:
            self._files.pop(path, None)

    def has(self, path: str) -> bool:
        return path in self._files

    def get(self, path: str) -> Optional[FileSymbols]:
        return self._files.get(path)

    def paths(self) -> List[str]:
        return list(self._files)

    def exports_of(self, path: str) -> List[str]:
        sym = self._files.get(path)
        return list(sym.exports) if sym else []

    def imports_of(self, path: str) -> List[str]:
        sym = self._files.get(path)
        return list(sym.imports) if sym else []

    def local_dependencies_of(self, path: str) -> List[str]:
        known = list(self._files)
        out: List[str] = []
        for spec in self.imports_of(path):
            target = _resolve_local_import(path, spec, known)
            if target and target != path and target not in out:
                out.append(target)
        return out

    def dependents_of(self, path: str) -> List[str]:
        return [p for p in self._files if p != path and path in self.local_dependencies_of(p)]

    def __len__(self) -> int:
        return len(self._files)


__all__ = ["FileSymbols", "extract_symbols", "DependencyIndex"]
