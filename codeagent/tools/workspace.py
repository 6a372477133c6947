# FILE: codeagent/tools/workspace.py
"""
Workspace path contract and ignore rules.

Every path handed to a file tool goes through Workspace.resolve():
- relative paths are joined to the root and canonicalized
- absolute paths are accepted only if they already point inside the root,
  or start with a recognised synthetic sandbox prefix (/workspace/...,
  /home/user/project/...) that models like to invent; those are re-rooted
- anything that escapes the root after canonicalization is rejected

Ignore rules: built-in defaults (dependency dirs, build output, VCS, lock
files, logs) plus optional patterns from `.agentignore` in the root.
"""

from __future__ import annotations

import fnmatch
import logging
import os
import re
from pathlib import Path, PurePosixPath
from typing import Iterator, List, Optional, Sequence

from codeagent.errors import WorkspacePathError

logger = logging.getLogger(__name__)

SANDBOX_PREFIXES = (
    "/workspace",
    "/home/user/project",
    "/home/user/workspace",
    "/sandbox",
    "/project",
    "/mnt/data",
    "/tmp/workspace",
)

IGNORE_FILE = ".agentignore"

DEFAULT_IGNORE_PATTERNS = (
    # Dependencies and build artifacts
    "node_modules/", ".npm/", ".cache/", "build/", "dist/", "out/", ".gradle/",
    "target/", "__pycache__/", ".pytest_cache/", ".venv/", "venv/",
    # Version control
    ".git/", ".svn/", ".hg/",
    # IDE and editor files
    ".vscode/", ".idea/", ".vs/", "*.swp", "*.swo", "*~", ".DS_Store",
    # Logs and temporary files
    "*.log", "*.tmp", "*.temp", ".tmp/", "Thumbs.db",
    # Compiled files
    "*.class", "*.jar", "*.war", "*.pyc", "*.pyo", "*.o", "*.so", "*.dll", "*.exe",
    # Coverage
    "coverage/", ".nyc_output/", ".coverage/", "htmlcov/",
    # Lock files
    "package-lock.json", "yarn.lock", "pnpm-lock.yaml",
)

CODE_EXTENSIONS = {
    ".py", ".js", ".jsx", ".ts", ".tsx", ".mjs", ".cjs", ".java", ".kt", ".go",
    ".rs", ".rb", ".php", ".c", ".h", ".cpp", ".hpp", ".cs", ".swift", ".vue",
    ".svelte", ".html", ".css", ".scss", ".sh",
}

_WINDOWS_ABS_RE = re.compile(r"^[A-Za-z]:[\\/]")


def _is_within(path: Path, root: Path) -> bool:
    try:
        path.relative_to(root)
    except ValueError:
        return False
    return True


class IgnoreRules:
    def __init__(self, patterns: Sequence[str] = DEFAULT_IGNORE_PATTERNS):
        self.dir_patterns: List[str] = []
        self.file_patterns: List[str] = []
        for pattern in patterns:
            self.add(pattern)

    def add(self, pattern: str) -> None:
        pat = pattern.strip()
        if not pat or pat.startswith("#"):
            return
        if pat.endswith("/"):
            self.dir_patterns.append(pat.rstrip("/"))
        else:
            self.file_patterns.append(pat)

    @classmethod
    def for_root(cls, root: Path) -> "IgnoreRules":
        rules = cls()
        ignore_file = root / IGNORE_FILE
        if ignore_file.is_file():
            try:
                for line in ignore_file.read_text(encoding="utf-8").splitlines():
                    rules.add(line)
            except OSError as e:
                logger.warning(f"[workspace] could not read {IGNORE_FILE}: {e}")
        return rules

    def is_ignored_dir(self, name: str) -> bool:
        return any(fnmatch.fnmatch(name, p) for p in self.dir_patterns)

    def is_ignored(self, rel_path: str) -> bool:
        parts = PurePosixPath(rel_path.replace("\\", "/")).parts
        if any(self.is_ignored_dir(part) for part in parts[:-1]):
            return True
        name = parts[-1] if parts else rel_path
        for pattern in self.file_patterns:
            if fnmatch.fnmatch(name, pattern) or fnmatch.fnmatch(rel_path, pattern):
                return True
        return False


class Workspace:
    def __init__(self, root: str, ignore: Optional[IgnoreRules] = None):
        self.root = Path(root).resolve()
        self.ignore = ignore or IgnoreRules.for_root(self.root)

    def resolve(self, path: str) -> Path:
        if path is None or not str(path).strip():
            raise WorkspacePathError(str(path), "empty path")
        raw = str(path).strip().replace("\\", "/")
        if "\x00" in raw:
            raise WorkspacePathError(raw, "contains NUL byte")

        if _WINDOWS_ABS_RE.match(raw):
            raise WorkspacePathError(raw, "absolute path outside workspace")

        if raw.startswith("/"):
            direct = Path(raw).resolve()
            if _is_within(direct, self.root):
                return direct
            for prefix in SANDBOX_PREFIXES:
                if raw == prefix or raw.startswith(prefix + "/"):
                    raw = raw[len(prefix):].lstrip("/") or "."
                    logger.debug(f"[workspace] normalized sandbox path {path} -> {raw}")
                    break
            else:
                raise WorkspacePathError(str(path), "absolute path outside workspace")

        candidate = (self.root / raw).resolve()
        if not _is_within(candidate, self.root):
            raise WorkspacePathError(str(path), "escapes workspace root")
        return candidate

    def relative(self, path: str) -> str:
        return self.resolve(path).relative_to(self.root).as_posix()

    def is_valid_path(self, path: str) -> bool:
        try:
            resolved = self.resolve(path)
        except WorkspacePathError:
            return False
        return resolved != self.root

    def iter_files(self, max_files: int = 5000) -> Iterator[str]:
        """Relative posix paths of non-ignored files, sorted per directory."""
        count = 0
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames[:] = sorted(d for d in dirnames if not self.ignore.is_ignored_dir(d))
            for name in sorted(filenames):
                rel = Path(dirpath, name).relative_to(self.root).as_posix()
                if self.ignore.is_ignored(rel):
                    continue
                yield rel
                count += 1
                if count >= max_files:
                    return

    def code_files(self) -> List[str]:
        return [p for p in self.iter_files() if Path(p).suffix.lower() in CODE_EXTENSIONS]

    def count_code_files(self) -> int:
        return len(self.code_files())


__all__ = [
    "SANDBOX_PREFIXES",
    "DEFAULT_IGNORE_PATTERNS",
    "CODE_EXTENSIONS",
    "IgnoreRules",
    "Workspace",
]
