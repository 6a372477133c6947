# FILE: tests/test_pipelines.py
"""
Tests for codeagent/pipelines/blueprint_pipeline.py and upgrade.py
Both pipelines run against a scripted backend and a temporary workspace.
"""

import sys
from pathlib import Path

_project_root = Path(__file__).parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

import dataclasses
import json

import pytest

from conftest import tool_call


TODO_MANIFEST = json.dumps({
    "projectType": "nodejs",
    "projectDescription": "Todo API",
    "files": [
        {"path": "package.json", "type": "config"},
        {"path": "index.js", "dependencies": ["src/app.js"], "packageDependencies": ["express"]},
        {"path": "src/app.js", "exports": ["createApp"]},
    ],
})

APP_JS = "```js\nfunction createApp() {}\nmodule.exports = { createApp };\n```"
INDEX_JS = "const express = require('express');\nconst { createApp } = require('./src/app');\ncreateApp();\n"


def _two_file_manifest():
    return json.dumps({"projectType": "nodejs", "files": [{"path": "a.js"}, {"path": "b.js"}]})


@pytest.fixture
def fast_settings(settings):
    return dataclasses.replace(settings, file_gen_max_retries=3)


# =============================================================================
# Blueprint pipeline
# =============================================================================

class TestBlueprintPipeline:
    """Test two-phase project generation."""

    @pytest.mark.asyncio
    async def test_generates_in_dependency_order(self, make_ctx, workspace_dir):
        from codeagent.pipelines.blueprint_pipeline import BlueprintPipeline
        ctx, backend = make_ctx([TODO_MANIFEST, APP_JS, INDEX_JS, '{"name": "todo"}'])
        result = await BlueprintPipeline(ctx).run("Create a todo API")

        assert result.success is True
        assert result.files_written == ["src/app.js", "index.js", "package.json"]
        assert result.ai_call_count == 4
        assert (workspace_dir / "src/app.js").read_text() == "function createApp() {}\nmodule.exports = { createApp };\n"
        assert all(r.tools is None for r in backend.requests)

        # index.js is generated knowing what src/app.js really exports
        index_prompt = backend.requests[2].messages[-1].text
        assert "Write the complete content of `index.js`" in index_prompt
        assert "- src/app.js (written) exports: createApp" in index_prompt

        package = json.loads((workspace_dir / "package.json").read_text())
        assert package["name"] == "todo"
        assert package["main"] == "index.js"
        assert package["scripts"]["start"] == "node index.js"
        assert package["dependencies"] == {"express": "*"}
        assert ctx.checkpoints.list_ids() == []
        assert result.summary_text.startswith("Created 3 file(s)")

    @pytest.mark.asyncio
    async def test_invalid_manifest_is_regenerated_once(self, make_ctx):
        from codeagent.pipelines.blueprint_pipeline import BlueprintPipeline
        manifest = json.dumps({"projectType": "python", "files": [{"path": "main.py"}]})
        ctx, backend = make_ctx(["Sorry, here is my plan in prose.", manifest, "print('hi')\n"])
        result = await BlueprintPipeline(ctx).run("Build a python tool")

        assert result.success
        retry = backend.requests[1].messages
        assert retry[-1].text.startswith("Your previous reply could not be parsed as JSON")
        assert retry[-2].text == "Sorry, here is my plan in prose."

    @pytest.mark.asyncio
    async def test_manifest_failing_twice_aborts(self, make_ctx):
        from codeagent.pipelines.blueprint_pipeline import BlueprintPipeline
        ctx, backend = make_ctx(["no json", "still no json"])
        result = await BlueprintPipeline(ctx).run("Build a python tool")
        assert result.success is False
        assert "manifest" in result.error
        assert len(backend.requests) == 2

    @pytest.mark.asyncio
    async def test_first_file_failure_rolls_back(self, make_ctx, fast_settings, workspace_dir):
        from codeagent.pipelines.blueprint_pipeline import BlueprintPipeline
        ctx, backend = make_ctx([_two_file_manifest(), "", "  ", ""], settings_override=fast_settings)
        result = await BlueprintPipeline(ctx).run("Build an app")

        assert result.success is False
        assert result.error.startswith("First file a.js failed: empty response")
        assert result.failed_files == ["a.js"]
        assert list(workspace_dir.iterdir()) == []
        assert ctx.checkpoints.list_ids() == []
        assert ctx.sleep.delays == [0.0, 0.0]
        escalated = backend.requests[2].messages[-1].text
        assert "Your previous reply was unusable (empty response)" in escalated

    @pytest.mark.asyncio
    async def test_later_failure_is_skipped(self, make_ctx, fast_settings, workspace_dir):
        from codeagent.pipelines.blueprint_pipeline import BlueprintPipeline
        ctx, _ = make_ctx([_two_file_manifest(), "const a = 1;", "", "", ""], settings_override=fast_settings)
        result = await BlueprintPipeline(ctx).run("Build an app")

        assert result.success is True
        assert result.files_written == ["a.js"]
        assert result.failed_files == ["b.js"]
        assert (workspace_dir / "a.js").exists()
        assert "Failed: b.js" in result.summary_text

    @pytest.mark.asyncio
    async def test_tool_call_gets_one_no_tools_retry(self, make_ctx, workspace_dir):
        from codeagent.pipelines.blueprint_pipeline import NO_TOOLS_PROMPT, BlueprintPipeline
        manifest = json.dumps({"files": [{"path": "a.js"}]})
        ctx, backend = make_ctx([
            manifest,
            tool_call("write_file", file_path="a.js", content="x"),
            "const a = 1;",
        ])
        result = await BlueprintPipeline(ctx).run("Build an app")
        assert result.success
        assert backend.requests[2].messages[-1].text == NO_TOOLS_PROMPT
        assert (workspace_dir / "a.js").read_text() == "const a = 1;\n"

    @pytest.mark.asyncio
    async def test_repeated_tool_calls_fail_the_file(self, make_ctx):
        from codeagent.pipelines.blueprint_pipeline import BlueprintPipeline
        manifest = json.dumps({"files": [{"path": "a.js"}]})
        ctx, _ = make_ctx([
            manifest,
            tool_call("write_file", file_path="a.js", content="x"),
            tool_call("write_file", file_path="a.js", content="x"),
        ])
        result = await BlueprintPipeline(ctx).run("Build an app")
        assert result.success is False
        assert "calling tools" in result.error

    @pytest.mark.asyncio
    async def test_invalid_json_file_is_retried(self, make_ctx, fast_settings, workspace_dir):
        from codeagent.pipelines.blueprint_pipeline import BlueprintPipeline
        manifest = json.dumps({"files": [{"path": "config/settings.json"}]})
        ctx, backend = make_ctx([manifest, "{bad json", '{"debug": true}'], settings_override=fast_settings)
        result = await BlueprintPipeline(ctx).run("Build an app")
        assert result.success
        assert json.loads((workspace_dir / "config/settings.json").read_text()) == {"debug": True}
        assert "invalid JSON" in backend.requests[2].messages[-1].text

    @pytest.mark.asyncio
    async def test_resume_from_checkpoint(self, make_ctx, workspace_dir):
        from codeagent.orchestrator.checkpoints import Checkpoint
        from codeagent.pipelines.blueprint import parse_manifest
        from codeagent.pipelines.blueprint_pipeline import BlueprintPipeline, operation_id_for
        task = "Build an app"
        ctx, backend = make_ctx(["const b = require('./a');\n"])
        blueprint = parse_manifest(_two_file_manifest())
        (workspace_dir / "a.js").write_text("module.exports = { a: 1 };\n")
        op_id = operation_id_for(str(ctx.workspace.root), task)
        ctx.checkpoints.save(Checkpoint(
            operation_id=op_id,
            step=1,
            total_steps=2,
            completed_files=["a.js"],
            state={"task": task, "blueprint": blueprint.model_dump(by_alias=True)},
        ))

        result = await BlueprintPipeline(ctx).run(task)

        assert result.success
        assert result.files_written == ["a.js", "b.js"]
        assert len(backend.requests) == 1
        assert "`b.js`" in backend.requests[0].messages[-1].text
        assert ctx.dependency_index.exports_of("a.js") == ["a"]
        assert ctx.checkpoints.load(op_id) is None

    @pytest.mark.asyncio
    async def test_checkpoint_write_failure_does_not_abort(self, make_ctx, workspace_dir, monkeypatch):
        from codeagent.pipelines.blueprint_pipeline import BlueprintPipeline
        ctx, backend = make_ctx([_two_file_manifest(), "module.exports = 1;\n", "module.exports = 2;\n"])
        saves = []

        def _disk_full(checkpoint):
            saves.append(checkpoint.step)
            raise OSError(28, "No space left on device")

        monkeypatch.setattr(ctx.checkpoints, "save", _disk_full)
        result = await BlueprintPipeline(ctx).run("Build an app")

        assert result.success
        assert result.files_written == ["a.js", "b.js"]
        assert saves == [0, 1, 2]
        assert (workspace_dir / "b.js").read_text() == "module.exports = 2;\n"

    def test_operation_id_is_stable(self):
        from codeagent.pipelines.blueprint_pipeline import operation_id_for
        first = operation_id_for("/ws", "Build an app")
        assert first == operation_id_for("/ws", "  Build an app  ")
        assert first != operation_id_for("/other", "Build an app")
        assert first.startswith("blueprint-") and len(first) == len("blueprint-") + 12


# =============================================================================
# Upgrade pipeline
# =============================================================================

APP_SOURCE = "function greet(name) {\n  return 'Hi ' + name;\n}\nmodule.exports = { greet };\n"


@pytest.fixture
def project(workspace_dir):
    (workspace_dir / "src").mkdir()
    (workspace_dir / "src/app.js").write_text(APP_SOURCE)
    return workspace_dir


class TestUpgradePipeline:
    """Test the read-plan / targeted-edit flow on an existing project."""

    @pytest.mark.asyncio
    async def test_targeted_edit(self, make_ctx, project):
        from codeagent.pipelines.upgrade import UPGRADE_SYSTEM_PROMPT, UpgradePipeline
        ctx, backend = make_ctx([
            '[{"path": "src/app.js", "reason": "crash site"}]',
            tool_call("edit", file_path="src/app.js", old_string="'Hi '", new_string="'Hello '"),
            "Replaced the greeting prefix in src/app.js so greet no longer crashes.",
        ])
        result = await UpgradePipeline(ctx).run("Fix the TypeError crash in app.js")

        assert result.success
        assert result.files_written == ["src/app.js"]
        assert "'Hello '" in (project / "src/app.js").read_text()
        assert result.summary_text.endswith("Modified files: src/app.js")
        assert result.ai_call_count == 3

        planning = backend.requests[1]
        assert planning.messages[0].text == UPGRADE_SYSTEM_PROMPT
        assert "File src/app.js" in planning.messages[1].text
        assert "1: function greet(name) {" in planning.messages[1].text
        assert planning.tools
        assert backend.requests[0].tools is None

    @pytest.mark.asyncio
    async def test_ambiguous_request_asks_for_clarification(self, make_ctx, project):
        from codeagent.pipelines.upgrade import CLARIFY_TEXT, UpgradePipeline
        ctx, backend = make_ctx(['{"intent": "unknown", "confidence": 0.2}'])
        result = await UpgradePipeline(ctx).run("hmm, thoughts on the add button?")
        assert result.needs_clarification
        assert result.summary_text == CLARIFY_TEXT
        assert result.ai_call_count == 1
        assert len(backend.requests) == 1

    @pytest.mark.asyncio
    async def test_refinement_upgrades_confidence(self, make_ctx, project):
        from codeagent.pipelines.intent import IntentKind, classify_intent
        from codeagent.pipelines.upgrade import UpgradePipeline
        ctx, _ = make_ctx(['```json\n{"intent": "upgrade", "confidence": 1.4}\n```'])
        message = "Rename greet"
        refined = await UpgradePipeline(ctx).refine_intent(message, classify_intent(message))
        assert refined.kind is IntentKind.UPGRADE
        assert refined.confidence == 1.0
        assert refined.source == "model"

    @pytest.mark.asyncio
    async def test_unparseable_refinement_keeps_rules(self, make_ctx, project):
        from codeagent.pipelines.intent import classify_intent
        from codeagent.pipelines.upgrade import UpgradePipeline
        ctx, _ = make_ctx(["I think it is an upgrade"])
        rules = classify_intent("Rename greet")
        assert await UpgradePipeline(ctx).refine_intent("Rename greet", rules) is rules

    @pytest.mark.asyncio
    async def test_full_rewrite_is_redirected(self, make_ctx, project):
        from codeagent.pipelines.upgrade import REWRITE_REDIRECT, UpgradePipeline
        ctx, backend = make_ctx([
            "[]",
            "I will rewrite the entire file from scratch.",
            tool_call("edit", file_path="src/app.js", old_string="'Hi '", new_string="'Hey '"),
            "Changed the greeting with a single targeted edit to src/app.js.",
        ])
        result = await UpgradePipeline(ctx).run("Fix the TypeError crash in app.js")

        assert result.success
        assert backend.requests[2].messages[-1].text == REWRITE_REDIRECT
        assert "'Hey '" in (project / "src/app.js").read_text()
        # Fallback read plan picked the file named in the message
        assert "File src/app.js" in backend.requests[1].messages[1].text

    @pytest.mark.asyncio
    async def test_stack_trace_context_in_prompt(self, make_ctx, project):
        from codeagent.pipelines.upgrade import UpgradePipeline
        ctx, backend = make_ctx([
            '["src/app.js"]',
            "The failing line only needs a null check; here is the explanation of the fix.",
        ])
        message = "TypeError: name is undefined\n    at greet (/srv/src/app.js:2:10)"
        result = await UpgradePipeline(ctx).run(message)

        assert result.success
        assert result.files_written == []
        prompt = backend.requests[1].messages[1].text
        assert "src/app.js:2 (in greet)" in prompt
        assert ">2 |   return 'Hi ' + name;" in prompt


class TestReadPlanParsing:
    """Test read plan JSON parsing and rewrite detection."""

    def test_parse_read_plan(self):
        from codeagent.pipelines.upgrade import parse_read_plan
        text = '```json\n[{"path": "a.js", "offset": 10, "limit": 5}, "b.js", {"offset": 1}, {"path": "c.js", "limit": -1}]\n```'
        plan = parse_read_plan(text)
        assert [(e.path, e.offset, e.limit) for e in plan] == [("a.js", 10, 5), ("b.js", None, None), ("c.js", None, None)]

    def test_parse_read_plan_garbage(self):
        from codeagent.pipelines.upgrade import parse_read_plan
        assert parse_read_plan("no plan") == []
        assert parse_read_plan("[not json]") == []

    @pytest.mark.parametrize("text,expected", [
        ("Let me rewrite the whole project", True),
        ("A complete rewrite is best", True),
        ("I'll start over", True),
        ("I'll update the greet function", False),
    ])
    def test_proposes_full_rewrite(self, text, expected):
        from codeagent.llm.schemas import LlmResponse
        from codeagent.pipelines.upgrade import proposes_full_rewrite
        assert proposes_full_rewrite(LlmResponse(text=text)) is expected


# =============================================================================
# Routing from the interpreter
# =============================================================================

class TestPipelineRouting:
    """Test that the first AI-bearing message of a run can hand off to a pipeline."""

    @pytest.mark.asyncio
    async def test_new_project_request_routes_to_blueprint(self, make_ctx, workspace_dir):
        from codeagent.engine.interpreter import TurnInterpreter
        from codeagent.script.parser import parse_script
        ctx, _ = make_ctx([TODO_MANIFEST, APP_JS, INDEX_JS, '{"name": "todo"}'])
        script = parse_script("---\nuser: Create a todo app with Express [[RESULT]]\n")
        result = await TurnInterpreter(ctx).run(script, {})

        assert result.success
        assert result.variables["PIPELINE"]["pipeline"] == "blueprint"
        assert result.final_text.startswith("Created 3 file(s)")
        assert result.variables["RESULT"] == result.final_text
        assert result.ai_call_count == 4
        assert [m.role for m in result.chat_history] == ["user", "assistant"]

    @pytest.mark.asyncio
    async def test_existing_project_routes_to_upgrade(self, make_ctx, project):
        from codeagent.engine.interpreter import TurnInterpreter
        from codeagent.script.parser import parse_script
        ctx, _ = make_ctx([
            '["src/app.js"]',
            "The crash came from a missing null check; no edits were needed after review.",
        ])
        script = parse_script("---\nuser: Fix the TypeError crash in app.js [[R]]\n")
        result = await TurnInterpreter(ctx).run(script, {})

        assert result.success
        assert result.variables["PIPELINE"]["pipeline"] == "upgrade"
        assert result.final_text.startswith("The crash came from a missing null check")
        assert result.ai_call_count == 2

    @pytest.mark.asyncio
    async def test_failed_pipeline_fails_the_run(self, make_ctx):
        from codeagent.engine.interpreter import TurnInterpreter
        from codeagent.script.parser import parse_script
        ctx, _ = make_ctx(["no json", "still none", "ignored"])
        script = parse_script("---\nuser: Create a chat app [[R]]\n---\nuser: and then? [[S]]\n")
        result = await TurnInterpreter(ctx).run(script, {})

        assert result.success is False
        assert "manifest" in result.error
        assert result.turn_count == 2
        assert result.variables["S"] == "ignored"

    @pytest.mark.asyncio
    async def test_pipelines_can_be_disabled(self, make_ctx, settings):
        from codeagent.engine.interpreter import TurnInterpreter
        from codeagent.script.parser import parse_script
        ctx, backend = make_ctx(["plain answer"], settings_override=dataclasses.replace(settings, pipelines_enabled=False))
        script = parse_script("---\nuser: Create a todo app [[R]]\n")
        result = await TurnInterpreter(ctx).run(script, {})
        assert result.final_text == "plain answer"
        assert len(backend.requests) == 1
