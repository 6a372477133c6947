# FILE: codeagent/pipelines/result.py
"""Outcome shared by the blueprint and upgrade pipelines."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class PipelineResult:
    pipeline: str
    success: bool
    summary_text: str = ""
    files_written: List[str] = field(default_factory=list)
    failed_files: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    error: Optional[str] = None
    needs_clarification: bool = False
    ai_call_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pipeline": self.pipeline,
            "success": self.success,
            "summary_text": self.summary_text,
            "files_written": list(self.files_written),
            "failed_files": list(self.failed_files),
            "warnings": list(self.warnings),
            "error": self.error,
            "needs_clarification": self.needs_clarification,
            "ai_call_count": self.ai_call_count,
        }


__all__ = ["PipelineResult"]
