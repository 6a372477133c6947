# FILE: codeagent/tools/__init__.py
"""Tool interface, executor, workspace path contract and built-in tools."""

from codeagent.tools.base import (
    ToolErrorType,
    ToolError,
    ToolResult,
    ToolValidationError,
    CancellationToken,
    Tool,
    ToolRegistry,
)
from codeagent.tools.executor import ToolExecutor, validate_schema
from codeagent.tools.workspace import Workspace, IgnoreRules
from codeagent.tools.file_tools import WRITE_TODOS_TOOL, build_default_registry

__all__ = [
    "ToolErrorType",
    "ToolError",
    "ToolResult",
    "ToolValidationError",
    "CancellationToken",
    "Tool",
    "ToolRegistry",
    "ToolExecutor",
    "validate_schema",
    "Workspace",
    "IgnoreRules",
    "WRITE_TODOS_TOOL",
    "build_default_registry",
]
