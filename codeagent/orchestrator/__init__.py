# FILE: codeagent/orchestrator/__init__.py
"""Tool-call orchestration and checkpoint persistence."""

from codeagent.orchestrator.checkpoints import Checkpoint, CheckpointStore
from codeagent.orchestrator.grouping import are_independent, group_for_parallel_execution
from codeagent.orchestrator.tool_loop import (
    OrchestratorOutcome,
    StallPolicy,
    ToolCallOrchestrator,
)

__all__ = [
    "Checkpoint",
    "CheckpointStore",
    "are_independent",
    "group_for_parallel_execution",
    "OrchestratorOutcome",
    "StallPolicy",
    "ToolCallOrchestrator",
]
