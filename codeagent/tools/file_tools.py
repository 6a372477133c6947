# FILE: codeagent/tools/file_tools.py
"""
Built-in workspace tools: read_file, write_file, edit, list_directory,
shell, write_todos.

All paths go through Workspace.resolve(); a rejected path becomes an
invalid_parameters error for the model to correct.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from codeagent.errors import WorkspacePathError
from codeagent.tools.base import (
    CancellationToken,
    Tool,
    ToolErrorType,
    ToolRegistry,
    ToolResult,
)
from codeagent.tools.schemas import (
    EDIT_INPUT_V1,
    LIST_DIRECTORY_INPUT_V1,
    READ_FILE_INPUT_V1,
    SHELL_INPUT_V1,
    WRITE_FILE_INPUT_V1,
    WRITE_TODOS_INPUT_V1,
)
from codeagent.tools.workspace import Workspace

logger = logging.getLogger(__name__)

WRITE_TODOS_TOOL = "write_todos"
MAX_SHELL_OUTPUT = 20000


class _WorkspaceTool(Tool):
    def __init__(self, workspace: Workspace):
        self.workspace = workspace

    def _path_error(self, e: WorkspacePathError) -> ToolResult:
        return ToolResult.failure(ToolErrorType.INVALID_PARAMETERS, str(e))


class ReadFileTool(_WorkspaceTool):
    name = "read_file"
    description = "Read a text file from the workspace. Optional offset (0-based line) and limit (lines)."
    input_schema = READ_FILE_INPUT_V1
    read_only = True

    def __init__(self, workspace: Workspace, max_lines: int = 500):
        super().__init__(workspace)
        self.max_lines = max_lines

    async def invoke(self, params: Dict[str, Any], cancel_token: Optional[CancellationToken] = None) -> ToolResult:
        try:
            path = self.workspace.resolve(params["file_path"])
        except WorkspacePathError as e:
            return self._path_error(e)
        if not path.is_file():
            return ToolResult.failure(ToolErrorType.EXECUTION_ERROR, f"File not found: {params['file_path']}")

        text = await asyncio.to_thread(path.read_text, encoding="utf-8", errors="replace")
        lines = text.splitlines()
        offset = int(params.get("offset") or 0)
        limit = int(params.get("limit") or self.max_lines)
        chunk = lines[offset:offset + limit]
        truncated = offset + limit < len(lines)
        content = "\n".join(chunk)
        display = f"Read {len(chunk)} lines from {params['file_path']}"
        if truncated:
            display += f" (of {len(lines)})"
        return ToolResult(content=content, display_text=display, data={"total_lines": len(lines)})


class WriteFileTool(_WorkspaceTool):
    name = "write_file"
    description = "Create or overwrite a file in the workspace with the given content."
    input_schema = WRITE_FILE_INPUT_V1
    mutates_files = True

    async def invoke(self, params: Dict[str, Any], cancel_token: Optional[CancellationToken] = None) -> ToolResult:
        try:
            path = self.workspace.resolve(params["file_path"])
        except WorkspacePathError as e:
            return self._path_error(e)
        existed = path.exists()

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(params["content"], encoding="utf-8")

        await asyncio.to_thread(_write)
        rel = path.relative_to(self.workspace.root).as_posix()
        verb = "Updated" if existed else "Created"
        return ToolResult(content=f"{verb} {rel}", display_text=f"{verb} {rel} ({len(params['content'])} chars)")


class EditTool(_WorkspaceTool):
    name = "edit"
    description = "Replace an exact string in a workspace file. old_string must match exactly once unless replace_all."
    input_schema = EDIT_INPUT_V1
    mutates_files = True

    async def invoke(self, params: Dict[str, Any], cancel_token: Optional[CancellationToken] = None) -> ToolResult:
        try:
            path = self.workspace.resolve(params["file_path"])
        except WorkspacePathError as e:
            return self._path_error(e)

        old = params["old_string"]
        new = params["new_string"]
        if not path.exists():
            if old == "":
                path.parent.mkdir(parents=True, exist_ok=True)
                await asyncio.to_thread(path.write_text, new, encoding="utf-8")
                return ToolResult(content=f"Created {params['file_path']}")
            return ToolResult.failure(ToolErrorType.EXECUTION_ERROR, f"File not found: {params['file_path']}")

        text = await asyncio.to_thread(path.read_text, encoding="utf-8")
        occurrences = text.count(old) if old else 0
        if occurrences == 0:
            return ToolResult.failure(ToolErrorType.EXECUTION_ERROR, "old_string not found in file")
        if occurrences > 1 and not params.get("replace_all"):
            return ToolResult.failure(
                ToolErrorType.EXECUTION_ERROR,
                f"old_string matches {occurrences} times; add context or set replace_all",
            )
        updated = text.replace(old, new) if params.get("replace_all") else text.replace(old, new, 1)
        await asyncio.to_thread(path.write_text, updated, encoding="utf-8")
        return ToolResult(content=f"Edited {params['file_path']} ({occurrences} replacement(s))")


class ListDirectoryTool(_WorkspaceTool):
    name = "list_directory"
    description = "List files and directories under a workspace path (ignored entries hidden)."
    input_schema = LIST_DIRECTORY_INPUT_V1
    read_only = True

    async def invoke(self, params: Dict[str, Any], cancel_token: Optional[CancellationToken] = None) -> ToolResult:
        try:
            path = self.workspace.resolve(params.get("path") or ".")
        except WorkspacePathError as e:
            return self._path_error(e)
        if not path.is_dir():
            return ToolResult.failure(ToolErrorType.EXECUTION_ERROR, f"Not a directory: {params.get('path')}")

        entries: List[str] = []
        for child in sorted(path.iterdir()):
            rel = child.relative_to(self.workspace.root).as_posix()
            if child.is_dir():
                if self.workspace.ignore.is_ignored_dir(child.name):
                    continue
                entries.append(rel + "/")
            elif not self.workspace.ignore.is_ignored(rel):
                entries.append(rel)
        return ToolResult(content="\n".join(entries), display_text=f"{len(entries)} entries")


class ShellTool(_WorkspaceTool):
    name = "shell"
    description = "Run a shell command in the workspace root and return combined output."
    input_schema = SHELL_INPUT_V1

    def __init__(self, workspace: Workspace, default_timeout_s: float = 120.0):
        super().__init__(workspace)
        self.default_timeout_s = default_timeout_s

    async def invoke(self, params: Dict[str, Any], cancel_token: Optional[CancellationToken] = None) -> ToolResult:
        timeout = float(params.get("timeout_s") or self.default_timeout_s)
        proc = await asyncio.create_subprocess_shell(
            params["command"],
            cwd=str(self.workspace.root),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        try:
            out, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            return ToolResult.failure(ToolErrorType.EXECUTION_ERROR, f"command timed out after {timeout:.0f}s")

        text = (out or b"").decode("utf-8", errors="replace")
        if len(text) > MAX_SHELL_OUTPUT:
            text = text[-MAX_SHELL_OUTPUT:]
        if proc.returncode != 0:
            return ToolResult.failure(ToolErrorType.EXECUTION_ERROR, f"exit code {proc.returncode}\n{text}")
        return ToolResult(content=text, display_text="exit code 0", data={"exit_code": 0})


class WriteTodosTool(Tool):
    name = WRITE_TODOS_TOOL
    description = "Record the implementation plan as a todo list. Call once, then implement."
    input_schema = WRITE_TODOS_INPUT_V1

    def __init__(self) -> None:
        self.todos: List[Dict[str, Any]] = []

    async def invoke(self, params: Dict[str, Any], cancel_token: Optional[CancellationToken] = None) -> ToolResult:
        self.todos = [
            {"description": t["description"], "status": t.get("status") or "pending"}
            for t in params["todos"]
        ]
        lines = [f"{i + 1}. [{t['status']}] {t['description']}" for i, t in enumerate(self.todos)]
        return ToolResult(
            content="\n".join(lines),
            display_text=f"{len(self.todos)} todos",
            data={"status": "created", "message": "Todo list saved. Proceed with implementing the tasks."},
        )


def build_default_registry(workspace: Workspace, max_read_lines: int = 500) -> ToolRegistry:
    return ToolRegistry([
        ReadFileTool(workspace, max_lines=max_read_lines),
        WriteFileTool(workspace),
        EditTool(workspace),
        ListDirectoryTool(workspace),
        ShellTool(workspace),
        WriteTodosTool(),
    ])


__all__ = [
    "WRITE_TODOS_TOOL",
    "ReadFileTool",
    "WriteFileTool",
    "EditTool",
    "ListDirectoryTool",
    "ShellTool",
    "WriteTodosTool",
    "build_default_registry",
]
