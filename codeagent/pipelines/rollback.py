# FILE: codeagent/pipelines/rollback.py
"""
Write transaction for multi-file generation.

Records the pre-write content of every file it overwrites and the list of
files it creates, so a failed run can put the workspace back exactly as it
was: modified files are restored, created files are deleted, and
directories created along the way are removed when left empty.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List

from codeagent.tools.workspace import Workspace

logger = logging.getLogger(__name__)


class WriteTransaction:
    def __init__(self, workspace: Workspace):
        self.workspace = workspace
        self.backups: Dict[str, str] = {}
        self.files_added: List[str] = []
        self.dirs_added: List[Path] = []
        self.written: List[str] = []

    def write(self, path: str, content: str) -> Path:
        full_path = self.workspace.resolve(path)
        rel = full_path.relative_to(self.workspace.root).as_posix()

        if rel not in self.backups and rel not in self.files_added:
            if full_path.exists():
                self.backups[rel] = full_path.read_text(encoding="utf-8", errors="replace")
            else:
                self.files_added.append(rel)

        missing: List[Path] = []
        parent = full_path.parent
        while parent != self.workspace.root and not parent.exists():
            missing.append(parent)
            parent = parent.parent
        full_path.parent.mkdir(parents=True, exist_ok=True)
        self.dirs_added.extend(reversed(missing))

        full_path.write_text(content, encoding="utf-8")
        if rel not in self.written:
            self.written.append(rel)
        return full_path

    def rollback(self) -> bool:
        """Undo every write. Returns True if everything was restored."""
        success = True

        for path, content in self.backups.items():
            try:
                (self.workspace.root / path).write_text(content, encoding="utf-8")
                logger.info(f"[rollback] Restored: {path}")
            except OSError as e:
                logger.error(f"[rollback] Failed to restore {path}: {e}")
                success = False

        for path in self.files_added:
            try:
                full_path = self.workspace.root / path
                if full_path.exists():
                    full_path.unlink()
                    logger.info(f"[rollback] Deleted: {path}")
            except OSError as e:
                logger.error(f"[rollback] Failed to delete {path}: {e}")
                success = False

        # Deepest first
        for directory in sorted(self.dirs_added, key=lambda p: len(p.parts), reverse=True):
            try:
                if directory.exists() and not any(directory.iterdir()):
                    directory.rmdir()
            except OSError as e:
                logger.warning(f"[rollback] Could not remove {directory}: {e}")

        self.commit()
        return success

    def commit(self) -> None:
        self.backups.clear()
        self.files_added.clear()
        self.dirs_added.clear()


__all__ = ["WriteTransaction"]
