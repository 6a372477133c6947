# FILE: tests/test_tools.py
"""
Tests for codeagent/tools: workspace path contract, ignore rules,
ToolExecutor error typing, built-in file tools, and call grouping.
"""

import sys
from pathlib import Path

_project_root = Path(__file__).parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

import asyncio
import os

import pytest


# =============================================================================
# Workspace path contract
# =============================================================================

class TestWorkspaceResolve:
    """Test Workspace.resolve acceptance and rejection."""

    def test_relative_path(self, tmp_path):
        from codeagent.tools.workspace import Workspace
        ws = Workspace(str(tmp_path))
        assert ws.resolve("src/app.js") == tmp_path.resolve() / "src" / "app.js"
        assert ws.relative("./src/../src/app.js") == "src/app.js"

    def test_parent_escape_rejected(self, tmp_path):
        from codeagent.errors import WorkspacePathError
        from codeagent.tools.workspace import Workspace
        ws = Workspace(str(tmp_path))
        with pytest.raises(WorkspacePathError):
            ws.resolve("../outside.txt")

    def test_sandbox_prefix_is_rerooted(self, tmp_path):
        from codeagent.tools.workspace import Workspace
        ws = Workspace(str(tmp_path))
        assert ws.resolve("/workspace/src/index.js") == tmp_path.resolve() / "src" / "index.js"
        assert ws.resolve("/home/user/project/a.py") == tmp_path.resolve() / "a.py"

    def test_absolute_inside_root_accepted(self, tmp_path):
        from codeagent.tools.workspace import Workspace
        ws = Workspace(str(tmp_path))
        inside = str(tmp_path.resolve() / "x.txt")
        assert ws.resolve(inside) == Path(inside)

    @pytest.mark.parametrize("bad", ["/etc/passwd", "C:\\Windows\\win.ini", "", "   ", "a\x00b"])
    def test_rejected_paths(self, tmp_path, bad):
        from codeagent.errors import WorkspacePathError
        from codeagent.tools.workspace import Workspace
        with pytest.raises(WorkspacePathError):
            Workspace(str(tmp_path)).resolve(bad)

    def test_symlink_escape_rejected(self, tmp_path):
        from codeagent.errors import WorkspacePathError
        from codeagent.tools.workspace import Workspace
        root = tmp_path / "root"
        root.mkdir()
        outside = tmp_path / "outside"
        outside.mkdir()
        os.symlink(str(outside), str(root / "link"))
        with pytest.raises(WorkspacePathError):
            Workspace(str(root)).resolve("link/secret.txt")

    def test_is_valid_path(self, tmp_path):
        from codeagent.tools.workspace import Workspace
        ws = Workspace(str(tmp_path))
        assert ws.is_valid_path("a/b.txt")
        assert not ws.is_valid_path(".")
        assert not ws.is_valid_path("../x")


class TestIgnoreRules:
    """Test default and .agentignore rules."""

    def test_defaults(self):
        from codeagent.tools.workspace import IgnoreRules
        rules = IgnoreRules()
        assert rules.is_ignored("node_modules/left-pad/index.js")
        assert rules.is_ignored("logs/server.log")
        assert rules.is_ignored("package-lock.json")
        assert not rules.is_ignored("src/index.js")

    def test_agentignore_and_code_files(self, tmp_path):
        from codeagent.tools.workspace import Workspace
        (tmp_path / ".agentignore").write_text("# local\nsecret/\n*.env\n", encoding="utf-8")
        (tmp_path / "secret").mkdir()
        (tmp_path / "secret" / "key.js").write_text("x", encoding="utf-8")
        (tmp_path / "prod.env").write_text("A=1", encoding="utf-8")
        (tmp_path / "app.js").write_text("x", encoding="utf-8")
        (tmp_path / "README.md").write_text("x", encoding="utf-8")
        ws = Workspace(str(tmp_path))
        files = list(ws.iter_files())
        assert "app.js" in files
        assert "README.md" in files
        assert "secret/key.js" not in files
        assert "prod.env" not in files
        assert ws.code_files() == ["app.js"]
        assert ws.count_code_files() == 1


# =============================================================================
# Executor
# =============================================================================

def _registry(tmp_path, extra=()):
    from codeagent.tools.file_tools import build_default_registry
    from codeagent.tools.workspace import Workspace
    registry = build_default_registry(Workspace(str(tmp_path)))
    for tool in extra:
        registry.register(tool)
    return registry


def _make_tool(name, behaviour):
    from codeagent.tools.base import Tool, ToolResult

    class _Tool(Tool):
        input_schema = {"type": "object", "properties": {}}

        async def invoke(self, params, cancel_token=None):
            await behaviour()
            return ToolResult(content="done")

    _Tool.name = name
    return _Tool()


class TestToolExecutor:
    """Test ToolExecutor never raises and types every failure."""

    @pytest.mark.asyncio
    async def test_unknown_tool(self, tmp_path):
        from codeagent.llm.schemas import FunctionCall
        from codeagent.tools.base import ToolErrorType
        from codeagent.tools.executor import ToolExecutor
        result = await ToolExecutor(_registry(tmp_path)).execute(FunctionCall(name="teleport"))
        assert result.error.type is ToolErrorType.NOT_FOUND

    @pytest.mark.asyncio
    async def test_invalid_parameters(self, tmp_path):
        from codeagent.llm.schemas import FunctionCall
        from codeagent.tools.base import ToolErrorType
        from codeagent.tools.executor import ToolExecutor
        result = await ToolExecutor(_registry(tmp_path)).execute(
            FunctionCall(name="write_file", args={"file_path": "a.txt"})
        )
        assert result.error.type is ToolErrorType.INVALID_PARAMETERS
        assert "content" in result.error.message

    @pytest.mark.asyncio
    async def test_cancelled_before_invoke(self, tmp_path):
        from codeagent.llm.schemas import FunctionCall
        from codeagent.tools.base import CancellationToken, ToolErrorType
        from codeagent.tools.executor import ToolExecutor
        token = CancellationToken()
        token.cancel("user stop")
        result = await ToolExecutor(_registry(tmp_path)).execute(
            FunctionCall(name="list_directory", args={}), token
        )
        assert result.error.type is ToolErrorType.CANCELLED
        assert result.error.message == "user stop"

    @pytest.mark.asyncio
    async def test_handler_exception_becomes_execution_error(self, tmp_path):
        from codeagent.llm.schemas import FunctionCall
        from codeagent.tools.base import ToolErrorType
        from codeagent.tools.executor import ToolExecutor

        async def boom():
            raise RuntimeError("kaput")

        registry = _registry(tmp_path, [_make_tool("boom", boom)])
        result = await ToolExecutor(registry).execute(FunctionCall(name="boom"))
        assert result.error.type is ToolErrorType.EXECUTION_ERROR
        assert "kaput" in result.error.message

    @pytest.mark.asyncio
    async def test_timeout(self, tmp_path):
        from codeagent.llm.schemas import FunctionCall
        from codeagent.tools.base import ToolErrorType
        from codeagent.tools.executor import ToolExecutor

        async def slow():
            await asyncio.sleep(1.0)

        registry = _registry(tmp_path, [_make_tool("slow", slow)])
        result = await ToolExecutor(registry, timeout_s=0.01).execute(FunctionCall(name="slow"))
        assert result.error.type is ToolErrorType.EXECUTION_ERROR
        assert "timeout" in result.error.message


class TestValidateSchema:
    """Test the minimal schema validator."""

    def test_nested_errors(self):
        from codeagent.tools.executor import validate_schema
        schema = {
            "type": "object",
            "required": ["todos"],
            "properties": {"todos": {"type": "array", "items": {"type": "string"}}},
        }
        assert validate_schema(schema, {"todos": ["a"]}) == []
        errs = validate_schema(schema, {"todos": ["a", 3]})
        assert errs == ["todos.1.expected string, got int"]

    def test_bool_is_not_integer(self):
        from codeagent.tools.executor import validate_schema
        assert validate_schema({"type": "integer"}, True)


# =============================================================================
# File tools
# =============================================================================

class TestFileTools:
    """Test the built-in workspace tools end to end."""

    @pytest.mark.asyncio
    async def test_write_read_edit(self, tmp_path):
        from codeagent.llm.schemas import FunctionCall
        from codeagent.tools.executor import ToolExecutor
        executor = ToolExecutor(_registry(tmp_path))

        written = await executor.execute(FunctionCall(
            name="write_file", args={"file_path": "src/app.js", "content": "let a = 1;\nlet b = 1;\n"}
        ))
        assert not written.is_error
        assert written.content == "Created src/app.js"

        ambiguous = await executor.execute(FunctionCall(
            name="edit", args={"file_path": "src/app.js", "old_string": "= 1", "new_string": "= 2"}
        ))
        assert ambiguous.is_error
        assert "2 times" in ambiguous.error.message

        edited = await executor.execute(FunctionCall(
            name="edit", args={"file_path": "src/app.js", "old_string": "let a = 1", "new_string": "let a = 5"}
        ))
        assert not edited.is_error

        read = await executor.execute(FunctionCall(
            name="read_file", args={"file_path": "src/app.js", "offset": 0, "limit": 1}
        ))
        assert read.content == "let a = 5;"
        assert read.data["total_lines"] == 2

    @pytest.mark.asyncio
    async def test_write_outside_workspace_rejected(self, tmp_path):
        from codeagent.llm.schemas import FunctionCall
        from codeagent.tools.base import ToolErrorType
        from codeagent.tools.executor import ToolExecutor
        root = tmp_path / "ws"
        root.mkdir()
        result = await ToolExecutor(_registry(root)).execute(FunctionCall(
            name="write_file", args={"file_path": "../escape.txt", "content": "x"}
        ))
        assert result.error.type is ToolErrorType.INVALID_PARAMETERS
        assert not (tmp_path / "escape.txt").exists()

    @pytest.mark.asyncio
    async def test_list_directory_hides_ignored(self, tmp_path):
        from codeagent.llm.schemas import FunctionCall
        from codeagent.tools.executor import ToolExecutor
        (tmp_path / "node_modules").mkdir()
        (tmp_path / "index.js").write_text("x", encoding="utf-8")
        result = await ToolExecutor(_registry(tmp_path)).execute(FunctionCall(name="list_directory", args={}))
        assert result.content.splitlines() == ["index.js"]

    @pytest.mark.asyncio
    async def test_write_todos(self, tmp_path):
        from codeagent.llm.schemas import FunctionCall
        from codeagent.tools.executor import ToolExecutor
        result = await ToolExecutor(_registry(tmp_path)).execute(FunctionCall(
            name="write_todos", args={"todos": [{"description": "scaffold"}, {"description": "tests"}]}
        ))
        assert not result.is_error
        assert result.content == "1. [pending] scaffold\n2. [pending] tests"
        assert result.to_response()["status"] == "created"


# =============================================================================
# Grouping
# =============================================================================

def _call(name, **args):
    from codeagent.llm.schemas import FunctionCall
    return FunctionCall(name=name, args=args)


class TestGrouping:
    """Test independence-based grouping of tool calls."""

    def test_same_path_writes_are_sequential(self):
        from codeagent.orchestrator.grouping import group_for_parallel_execution
        calls = [_call("write_file", file_path="a.js"), _call("edit", file_path="./a.js")]
        assert group_for_parallel_execution(calls) == [[0], [1]]

    def test_different_paths_run_together(self):
        from codeagent.orchestrator.grouping import group_for_parallel_execution
        calls = [_call("write_file", file_path="a.js"), _call("write_file", file_path="b.js")]
        assert group_for_parallel_execution(calls) == [[0, 1]]

    def test_reads_are_always_independent(self):
        from codeagent.orchestrator.grouping import are_independent
        assert are_independent(_call("read_file", file_path="a.js"), _call("write_file", file_path="a.js"))

    def test_unknown_target_is_dependent(self):
        from codeagent.orchestrator.grouping import are_independent
        assert not are_independent(_call("write_file"), _call("edit", file_path="a.js"))

    def test_order_is_preserved_across_groups(self):
        from codeagent.orchestrator.grouping import group_for_parallel_execution
        calls = [
            _call("write_file", file_path="a.js"),
            _call("read_file", file_path="b.js"),
            _call("write_file", file_path="a.js"),
            _call("write_file", file_path="c.js"),
        ]
        groups = group_for_parallel_execution(calls)
        assert groups == [[0, 1], [2, 3]]
        assert [i for g in groups for i in g] == [0, 1, 2, 3]
