# FILE: codeagent/pipelines/blueprint_pipeline.py
"""
Blueprint pipeline: two-phase new-project generation.

Phase 1 (manifest)
    One tools-disabled call returns a JSON manifest of every file. A parse
    failure gets exactly one regeneration with a stricter prompt. The
    manifest is validated; only zero usable files is fatal.

Phase 2 (files)
    Files are generated in dependency order with config files last. Each
    file gets its own tools-disabled call that sees the file's declared
    imports/exports and what its dependencies really export (from the live
    dependency index of files already written). Empty output is retried
    with linear backoff and an increasingly literal prompt; a tool call
    despite tools being disabled gets one explicit "no tools" retry. JSON
    output must parse; package.json gets required fields backfilled.

Every write goes through a WriteTransaction. If the first file fails the
run aborts and rolls back; later failures are logged and skipped.
Progress is checkpointed after each file so an interrupted run with the
same workspace and task resumes where it stopped.

v1.2 (2026-10-16): checkpoint write failures no longer abort generation
v1.1 (2026-10-02): checkpoint resume + dependency export cross-check
v1.0 (2026-09-24): Initial implementation
"""

from __future__ import annotations

import hashlib
import logging
import posixpath
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from config.model_ranks import get_sampling_defaults
from codeagent.errors import AgentError, BlueprintError, ManifestParseError, WorkspacePathError
from codeagent.llm.schemas import ChatMessage, LlmResponse
from codeagent.orchestrator.checkpoints import Checkpoint
from codeagent.pipelines.blueprint import (
    Blueprint,
    FileSpec,
    ValidationReport,
    parse_manifest,
    validate_blueprint,
)
from codeagent.pipelines.blueprint_sort import order_files
from codeagent.pipelines.content import (
    backfill_package_json,
    clean_generated_content,
    is_json_path,
    is_package_manifest,
    validate_json_content,
)
from codeagent.pipelines.result import PipelineResult
from codeagent.pipelines.rollback import WriteTransaction

if TYPE_CHECKING:
    from codeagent.engine.context import RunContext

logger = logging.getLogger(__name__)

PIPELINE_NAME = "blueprint"

# =============================================================================
# PROMPTS
# =============================================================================

MANIFEST_SYSTEM_PROMPT = """You are a software architect planning a new project.
Return ONLY a JSON object, no markdown and no commentary, with this shape:
{
  "projectType": "nodejs | python | web | ...",
  "projectDescription": "one paragraph",
  "files": [
    {
      "path": "relative/path/to/file.ext",
      "type": "code | config",
      "dependencies": ["relative paths of project files this file imports"],
      "description": "what this file contains",
      "exports": ["names this file exports"],
      "imports": ["modules or packages this file imports"],
      "packageDependencies": ["third-party packages this file needs"],
      "relatedFiles": []
    }
  ]
}
Use relative paths only. List every file the project needs, including config files such as package.json."""

MANIFEST_RETRY_PROMPT = (
    "Your previous reply could not be parsed as JSON ({problem}). "
    "Reply again with ONLY the JSON object. The first character must be '{{' and the last must be '}}'."
)

FILE_SYSTEM_PROMPT = (
    "You write exactly one file of a larger project. Reply with the raw file content only: "
    "no markdown fences, no explanations, no surrounding text."
)

NO_TOOLS_PROMPT = (
    "Tools are disabled for this step. Do not call any tool. "
    "Reply with the complete content of the file as plain text."
)

_ESCALATION = (
    "",
    "Your previous reply was unusable ({problem}). Reply with ONLY the content of {path}.",
    "Reply with nothing except the content of {path}. The first character of your reply must be "
    "the first character of the file. Do not describe the file.",
)

NODE_BUILTINS = {
    "assert", "buffer", "child_process", "cluster", "crypto", "dgram", "dns", "events", "fs",
    "http", "http2", "https", "net", "os", "path", "process", "querystring", "readline",
    "stream", "string_decoder", "timers", "tls", "url", "util", "v8", "vm", "worker_threads", "zlib",
}


def operation_id_for(workspace_root: str, task: str) -> str:
    digest = hashlib.sha1(f"{workspace_root}\n{task.strip()}".encode("utf-8")).hexdigest()
    return f"blueprint-{digest[:12]}"


class BlueprintPipeline:
    def __init__(
        self,
        ctx: "RunContext",
        *,
        model: Optional[str] = None,
        call_kwargs: Optional[Dict[str, Any]] = None,
    ):
        self.ctx = ctx
        self.model = model or ctx.llm.default_model
        self.call_kwargs = dict(call_kwargs or {})
        self.ai_call_count = 0

    # -------------------------------------------------------------------------
    # Public
    # -------------------------------------------------------------------------

    async def run(self, task: str) -> PipelineResult:
        ctx = self.ctx
        op_id = operation_id_for(str(ctx.workspace.root), task)
        checkpoint = ctx.checkpoints.load(op_id)
        warnings: List[str] = []

        blueprint: Optional[Blueprint] = None
        if checkpoint is not None and checkpoint.state.get("blueprint"):
            try:
                blueprint = Blueprint.model_validate(checkpoint.state["blueprint"])
                ctx.progress(
                    f"Resuming project generation ({len(checkpoint.completed_files)}/{checkpoint.total_steps} files done)"
                )
            except ValueError as e:
                logger.warning(f"[blueprint] discarding unreadable checkpoint {op_id}: {e}")
                checkpoint = None

        if blueprint is None:
            ctx.progress("Phase 1: planning project files...")
            try:
                blueprint = await self._request_manifest(task)
            except (ManifestParseError, AgentError) as e:
                return self._failed(f"Could not get a project manifest: {e}", warnings)

        try:
            report = validate_blueprint(blueprint, ctx.workspace, ctx.settings.max_blueprint_files)
        except BlueprintError as e:
            return self._failed(str(e), warnings)
        warnings.extend(report.warnings)
        for w in report.warnings:
            ctx.progress(f"Warning: {w}")

        sort = order_files(report.files, report.dependency_map)
        total = len(sort.order)
        ctx.progress(f"Phase 2: generating {total} files: {', '.join(sort.paths)}")

        completed: List[str] = list(checkpoint.completed_files) if checkpoint else []
        state = {"task": task, "blueprint": blueprint.model_dump(by_alias=True)}
        if checkpoint is None:
            checkpoint = Checkpoint(operation_id=op_id, total_steps=total, state=state)
            self._save_checkpoint(checkpoint)

        return await self._generate_all(task, blueprint, report, sort.order, checkpoint, completed, warnings)

    # -------------------------------------------------------------------------
    # Phase 1
    # -------------------------------------------------------------------------

    async def _request_manifest(self, task: str) -> Blueprint:
        messages = [
            ChatMessage(role="system", text=MANIFEST_SYSTEM_PROMPT),
            ChatMessage(role="user", text=task),
        ]
        response = await self._call(messages, "analysis")
        try:
            return parse_manifest(response.text)
        except ManifestParseError as e:
            logger.warning(f"[blueprint] manifest parse failed, regenerating once: {e}")
            self.ctx.progress("Manifest was not valid JSON; asking once more...")
            messages = messages + [
                ChatMessage(role="assistant", text=response.text or "(empty)"),
                ChatMessage(role="user", text=MANIFEST_RETRY_PROMPT.format(problem=e)),
            ]
        response = await self._call(messages, "analysis")
        return parse_manifest(response.text)

    # -------------------------------------------------------------------------
    # Phase 2
    # -------------------------------------------------------------------------

    async def _generate_all(
        self,
        task: str,
        blueprint: Blueprint,
        report: ValidationReport,
        order: List[FileSpec],
        checkpoint: Checkpoint,
        completed: List[str],
        warnings: List[str],
    ) -> PipelineResult:
        ctx = self.ctx
        txn = WriteTransaction(ctx.workspace)
        files_written: List[str] = []
        failed: List[str] = []
        total = len(order)

        for step, spec in enumerate(order, start=1):
            if ctx.cancel_token.cancelled:
                ctx.progress("Generation cancelled; progress saved for resume.")
                return self._result(False, blueprint, files_written, failed, warnings, error="cancelled")

            if spec.path in completed and self._restore_completed(spec.path):
                ctx.progress(f"[{step}/{total}] {spec.path} (already generated)")
                files_written.append(spec.path)
                continue

            ctx.progress(f"[{step}/{total}] Generating {spec.path}...")
            content, problem = await self._generate_file(task, blueprint, report, spec, files_written)

            if content is not None:
                try:
                    txn.write(spec.path, content)
                except (WorkspacePathError, OSError) as e:
                    content, problem = None, f"write failed: {e}"

            if content is None:
                if not files_written:
                    ctx.progress(f"Failed to generate {spec.path} ({problem}); rolling back.")
                    txn.rollback()
                    ctx.checkpoints.delete(checkpoint.operation_id)
                    return self._result(
                        False, blueprint, [], [spec.path], warnings,
                        error=f"First file {spec.path} failed: {problem}",
                    )
                logger.warning(f"[blueprint] skipping {spec.path}: {problem}")
                ctx.progress(f"Skipped {spec.path}: {problem}")
                failed.append(spec.path)
                continue

            ctx.dependency_index.record(spec.path, content)
            files_written.append(spec.path)
            completed.append(spec.path)
            checkpoint.step = step
            checkpoint.completed_files = list(completed)
            self._save_checkpoint(checkpoint)
            ctx.progress(f"Wrote {spec.path} ({len(content.splitlines())} lines)")

        txn.commit()
        ctx.checkpoints.delete(checkpoint.operation_id)
        return self._result(True, blueprint, files_written, failed, warnings)

    def _save_checkpoint(self, checkpoint: Checkpoint) -> None:
        try:
            self.ctx.checkpoints.save(checkpoint)
        except OSError as e:
            logger.warning(f"[blueprint] checkpoint save failed for {checkpoint.operation_id}: {e}")

    def _restore_completed(self, path: str) -> bool:
        try:
            full = self.ctx.workspace.resolve(path)
            if not full.is_file():
                return False
            self.ctx.dependency_index.record(path, full.read_text(encoding="utf-8", errors="replace"))
        except (WorkspacePathError, OSError):
            return False
        return True

    async def _generate_file(
        self,
        task: str,
        blueprint: Blueprint,
        report: ValidationReport,
        spec: FileSpec,
        written: List[str],
    ) -> Tuple[Optional[str], str]:
        """(content, "") on success, (None, reason) on failure."""
        settings = self.ctx.settings
        base_prompt = self._file_prompt(task, blueprint, report, spec, written)
        no_tools_used = False
        problem = ""
        attempt = 1
        extra: List[ChatMessage] = []

        while attempt <= settings.file_gen_max_retries:
            messages = [
                ChatMessage(role="system", text=FILE_SYSTEM_PROMPT),
                ChatMessage(role="user", text=self._escalate(base_prompt, spec.path, attempt, problem)),
            ] + extra
            try:
                response = await self._call(messages, "code_generation")
            except AgentError as e:
                return None, f"model call failed: {e}"

            if response.function_calls:
                if no_tools_used:
                    return None, "model kept calling tools while tools were disabled"
                no_tools_used = True
                logger.info(f"[blueprint] {spec.path}: tool call with tools disabled; retrying without tools")
                extra = [
                    ChatMessage(role="assistant", text=response.text or "(tool call)"),
                    ChatMessage(role="user", text=NO_TOOLS_PROMPT),
                ]
                continue
            extra = []

            content = clean_generated_content(response.text)
            if not content.strip():
                problem = "empty response"
            elif is_json_path(spec.path):
                ok, err = validate_json_content(content)
                if ok:
                    return self._finish_json(spec, blueprint, content), ""
                problem = f"invalid JSON: {err}"
            else:
                return content, ""

            if attempt >= settings.file_gen_max_retries:
                break
            delay = settings.file_gen_retry_delay_s * attempt
            logger.info(f"[blueprint] {spec.path}: {problem}; retry {attempt + 1} in {delay:.1f}s")
            await self.ctx.sleep(delay)
            attempt += 1

        return None, f"{problem} after {attempt} attempts"

    def _finish_json(self, spec: FileSpec, blueprint: Blueprint, content: str) -> str:
        if not is_package_manifest(spec.path):
            return content
        packages = list(blueprint.all_package_dependencies())
        for pkg in self._detected_packages():
            if pkg not in packages:
                packages.append(pkg)
        new_content, filled = backfill_package_json(
            content,
            project_name=posixpath.basename(str(self.ctx.workspace.root)) or blueprint.project_type,
            description=blueprint.project_description,
            package_dependencies=packages,
            written_paths=self.ctx.dependency_index.paths(),
        )
        if filled:
            self.ctx.progress(f"Filled missing package.json fields: {', '.join(filled)}")
        return new_content

    def _detected_packages(self) -> List[str]:
        """Bare package names imported by indexed JS/TS files."""
        found: List[str] = []
        index = self.ctx.dependency_index
        for path in index.paths():
            if not path.endswith((".js", ".jsx", ".ts", ".tsx", ".mjs", ".cjs")):
                continue
            for spec in index.imports_of(path):
                if spec.startswith((".", "/", "node:")):
                    continue
                parts = spec.split("/")
                name = "/".join(parts[:2]) if spec.startswith("@") else parts[0]
                if name and name not in NODE_BUILTINS and name not in found:
                    found.append(name)
        return found

    def _file_prompt(
        self,
        task: str,
        blueprint: Blueprint,
        report: ValidationReport,
        spec: FileSpec,
        written: List[str],
    ) -> str:
        index = self.ctx.dependency_index
        lines = [
            f"Project request: {task}",
            f"Project type: {blueprint.project_type or 'unspecified'}",
        ]
        if blueprint.project_description:
            lines.append(f"Project description: {blueprint.project_description}")
        lines += ["", f"Write the complete content of `{spec.path}`."]
        if spec.description:
            lines.append(f"Purpose: {spec.description}")
        if spec.imports:
            lines.append(f"Declared imports: {', '.join(spec.imports)}")
        if spec.exports:
            lines.append(f"It must export: {', '.join(spec.exports)}")
        if spec.package_dependencies:
            lines.append(f"Third-party packages it may use: {', '.join(spec.package_dependencies)}")

        deps = report.dependency_map.get(spec.path, [])
        if deps:
            lines += ["", "Dependencies:"]
            declared = {f.path: f for f in report.files}
            for dep in deps:
                dep_spec = declared.get(dep)
                if index.has(dep):
                    actual = index.exports_of(dep)
                    line = f"- {dep} (written) exports: {', '.join(actual) or 'nothing detected'}"
                    if dep_spec is not None:
                        missing = [e for e in dep_spec.exports if e not in actual]
                        if missing:
                            line += f"; NOT exported despite the plan: {', '.join(missing)}"
                    lines.append(line)
                elif dep_spec is not None:
                    lines.append(f"- {dep} (planned) exports: {', '.join(dep_spec.exports) or 'unspecified'}")

        if spec.is_config:
            lines += ["", f"Files already written: {', '.join(written) or 'none'}"]
            packages = blueprint.all_package_dependencies()
            if packages:
                lines.append(f"Packages used by the project: {', '.join(packages)}")

        lines += [
            "",
            "Use only the declared imports and the exports listed for the dependencies above. "
            "Do not import modules that are not listed.",
        ]
        return "\n".join(lines)

    @staticmethod
    def _escalate(prompt: str, path: str, attempt: int, problem: str) -> str:
        if attempt <= 1:
            return prompt
        step = _ESCALATION[min(attempt - 1, len(_ESCALATION) - 1)]
        return f"{prompt}\n\n{step.format(path=path, problem=problem or 'empty')}"

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _call(self, messages: List[ChatMessage], task_kind: str) -> LlmResponse:
        temperature, top_p, top_k = get_sampling_defaults(task_kind, self.model)
        kwargs: Dict[str, Any] = {"temperature": temperature, "top_p": top_p, "top_k": top_k}
        kwargs.update(self.call_kwargs)
        kwargs["model"] = self.model
        self.ai_call_count += 1
        return await self.ctx.llm.complete(messages, tools=None, **kwargs)

    def _failed(self, error: str, warnings: List[str]) -> PipelineResult:
        logger.error(f"[blueprint] {error}")
        self.ctx.progress(f"Project generation failed: {error}")
        return PipelineResult(
            pipeline=PIPELINE_NAME,
            success=False,
            summary_text=f"Project generation failed: {error}",
            warnings=list(warnings),
            error=error,
            ai_call_count=self.ai_call_count,
        )

    def _result(
        self,
        success: bool,
        blueprint: Blueprint,
        files_written: List[str],
        failed: List[str],
        warnings: List[str],
        error: Optional[str] = None,
    ) -> PipelineResult:
        if success:
            lines = [f"Created {len(files_written)} file(s) for the {blueprint.project_type or 'new'} project:"]
        else:
            lines = [f"Project generation failed: {error}"]
        lines += [f"- {p}" for p in files_written]
        if failed:
            lines.append(f"Failed: {', '.join(failed)}")
        if warnings:
            lines.append(f"Warnings: {len(warnings)}")
        summary = "\n".join(lines)
        self.ctx.progress(summary)
        return PipelineResult(
            pipeline=PIPELINE_NAME,
            success=success,
            summary_text=summary,
            files_written=list(files_written),
            failed_files=list(failed),
            warnings=list(warnings),
            error=error,
            ai_call_count=self.ai_call_count,
        )


__all__ = ["BlueprintPipeline", "operation_id_for", "PIPELINE_NAME"]
