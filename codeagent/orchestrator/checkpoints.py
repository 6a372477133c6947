# FILE: codeagent/orchestrator/checkpoints.py
"""
Checkpoint persistence for resumable multi-step operations.

One JSON file per operation id:
    {operationId, step, totalSteps, timestamp, completedFiles[], state{}}

Design:
    - Dataclass-based, JSON round-trip via to_dict()/from_dict()
    - Atomic writes (temp file in the same directory, then os.replace)
    - Written per step, deleted on success, read once at resume
    - Files older than the retention window are garbage-collected when the
      store is opened

v1.0 (2026-09-04): Initial implementation
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

_SAFE_ID_RE = re.compile(r"[^A-Za-z0-9_.-]")


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class Checkpoint:
    operation_id: str
    step: int = 0
    total_steps: int = 0
    completed_files: List[str] = field(default_factory=list)
    state: Dict[str, Any] = field(default_factory=dict)
    timestamp: int = field(default_factory=_now_ms)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operationId": self.operation_id,
            "step": self.step,
            "totalSteps": self.total_steps,
            "timestamp": self.timestamp,
            "completedFiles": list(self.completed_files),
            "state": dict(self.state),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Checkpoint":
        return cls(
            operation_id=str(data["operationId"]),
            step=int(data.get("step", 0)),
            total_steps=int(data.get("totalSteps", 0)),
            completed_files=list(data.get("completedFiles") or []),
            state=dict(data.get("state") or {}),
            timestamp=int(data.get("timestamp") or 0),
        )

    @property
    def progress(self) -> float:
        if self.total_steps <= 0:
            return 0.0
        return min(self.step / self.total_steps, 1.0)


class CheckpointStore:
    """Directory of checkpoint files. A disabled store accepts writes and does nothing."""

    def __init__(
        self,
        directory: str,
        *,
        retention_hours: float = 24.0,
        enabled: bool = True,
        collect_on_open: bool = True,
    ):
        self.directory = directory
        self.retention_s = retention_hours * 3600.0
        self.enabled = enabled
        if enabled:
            os.makedirs(directory, exist_ok=True)
            if collect_on_open:
                self.cleanup_expired()

    def _path(self, operation_id: str) -> str:
        return os.path.join(self.directory, f"{_SAFE_ID_RE.sub('_', operation_id)}.json")

    def save(self, checkpoint: Checkpoint) -> None:
        if not self.enabled:
            return
        checkpoint.timestamp = _now_ms()
        path = self._path(checkpoint.operation_id)
        json_str = json.dumps(checkpoint.to_dict(), indent=2, ensure_ascii=False)

        # Atomic write: temp file in same directory, then rename
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, prefix=".ckpt_", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(json_str)
            os.replace(tmp_path, path)
        except Exception:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            logger.error("[checkpoint] Failed to save %s", path)
            raise
        logger.debug(
            "[checkpoint] saved %s step %d/%d",
            checkpoint.operation_id, checkpoint.step, checkpoint.total_steps,
        )

    def load(self, operation_id: str) -> Optional[Checkpoint]:
        """Returns None if no checkpoint exists or it cannot be parsed."""
        if not self.enabled:
            return None
        path = self._path(operation_id)
        if not os.path.isfile(path):
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            checkpoint = Checkpoint.from_dict(data)
        except (OSError, ValueError, KeyError) as e:
            logger.error("[checkpoint] Failed to load %s: %s", path, e)
            return None
        logger.info(
            "[checkpoint] Loaded %s: step %d/%d, %d files done",
            operation_id, checkpoint.step, checkpoint.total_steps, len(checkpoint.completed_files),
        )
        return checkpoint

    def delete(self, operation_id: str) -> bool:
        if not self.enabled:
            return False
        try:
            os.unlink(self._path(operation_id))
        except FileNotFoundError:
            return False
        return True

    def list_ids(self) -> List[str]:
        if not self.enabled or not os.path.isdir(self.directory):
            return []
        ids: List[str] = []
        for name in sorted(os.listdir(self.directory)):
            if name.endswith(".json") and not name.startswith("."):
                ids.append(name[: -len(".json")])
        return ids

    def cleanup_expired(self, now_s: Optional[float] = None) -> int:
        """Delete checkpoint files older than the retention window."""
        if not self.enabled or not os.path.isdir(self.directory):
            return 0
        cutoff = (now_s if now_s is not None else time.time()) - self.retention_s
        removed = 0
        for name in os.listdir(self.directory):
            if not name.endswith(".json"):
                continue
            path = os.path.join(self.directory, name)
            try:
                if os.path.getmtime(path) < cutoff:
                    os.unlink(path)
                    removed += 1
            except OSError as e:
                logger.warning("[checkpoint] could not remove %s: %s", path, e)
        if removed:
            logger.info("[checkpoint] removed %d expired checkpoint(s)", removed)
        return removed


__all__ = ["Checkpoint", "CheckpointStore"]
