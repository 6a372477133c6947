# FILE: codeagent/pipelines/upgrade.py
"""
Upgrade/debug pipeline for existing projects.

Steps:
    1. classify the request (fix / upgrade / both) with a confidence score;
       weak rule-based scores are refined by one JSON classification call;
       below the configured threshold the pipeline asks for clarification
    2. parse error locations from the message and read ±N lines around each
    3. ask for a minimal read plan: JSON [{path, offset?, limit?, reason}]
       (falls back to error-location files and files named in the message)
    4. read exactly those files, honouring ignore rules
    5. one tools-enabled planning call asking for targeted edits; a reply
       that proposes rewriting whole files is redirected once before any
       tool runs
    6. the resulting tool calls go through the tool-call orchestrator
    7. touched files are re-indexed in the dependency index
"""

from __future__ import annotations

import json
import logging
import posixpath
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from config.model_ranks import get_sampling_defaults
from codeagent.errors import AgentError, WorkspacePathError
from codeagent.llm.schemas import ChatMessage, LlmResponse
from codeagent.orchestrator.tool_loop import StallPolicy
from codeagent.pipelines.blueprint import strip_code_fences
from codeagent.pipelines.error_locations import ErrorLocation, parse_error_locations, read_context
from codeagent.pipelines.intent import IntentClassification, IntentKind, classify_intent
from codeagent.pipelines.result import PipelineResult
from codeagent.state import ConversationState

if TYPE_CHECKING:
    from codeagent.engine.context import RunContext

logger = logging.getLogger(__name__)

PIPELINE_NAME = "upgrade"

REFINE_BELOW_CONFIDENCE = 0.8
MAX_PLANNED_FILES = 8
MAX_LISTED_FILES = 200
FALLBACK_FILE_COUNT = 3

# =============================================================================
# PROMPTS
# =============================================================================

CLASSIFY_PROMPT = """Classify this request about an existing code project.
Reply with ONLY a JSON object: {{"intent": "fix" | "upgrade" | "both" | "unknown", "confidence": 0.0-1.0}}
"fix" means repairing errors or broken behaviour, "upgrade" means adding or improving features.

Request:
{message}"""

READ_PLAN_PROMPT = """You are preparing to modify an existing project. Decide the minimal set of files to read.
Reply with ONLY a JSON array: [{{"path": "relative/path", "offset": 0, "limit": 200, "reason": "why"}}]
offset and limit are optional line numbers. Pick at most {max_files} files.

Request:
{message}

Error locations:
{locations}

Project files:
{files}"""

UPGRADE_SYSTEM_PROMPT = (
    "You are modifying an existing project. Make targeted edits with the edit tool instead of "
    "rewriting whole files. Keep existing behaviour that the request does not ask to change. "
    "Read a file before editing it if its content is not shown below."
)

REWRITE_REDIRECT = (
    "Do not rewrite entire files. Apply only the minimal targeted edits needed for this request, "
    "using the edit tool with exact old_string/new_string replacements."
)

CLARIFY_TEXT = (
    "I couldn't tell whether you want me to fix a problem or change the project. "
    "Could you describe the error you see, or the change you want?"
)

_REWRITE_RE = re.compile(
    r"\b(rewrite|re-write|recreate|regenerate)\b.{0,40}\b(entire|whole|complete|all|from scratch|everything)\b"
    r"|\b(complete|full|total)\s+rewrite\b"
    r"|\bfrom scratch\b"
    r"|\breplace the (entire|whole) (file|project|codebase)\b"
    r"|\bstart over\b",
    re.IGNORECASE | re.DOTALL,
)


@dataclass
class ReadPlanEntry:
    path: str
    offset: Optional[int] = None
    limit: Optional[int] = None
    reason: str = ""


def proposes_full_rewrite(response: LlmResponse) -> bool:
    if _REWRITE_RE.search(response.text or ""):
        return True
    for call in response.function_calls:
        explanation = call.args.get("reason") or call.args.get("description") or ""
        if isinstance(explanation, str) and _REWRITE_RE.search(explanation):
            return True
    return False


def parse_read_plan(text: str) -> List[ReadPlanEntry]:
    cleaned = strip_code_fences(text)
    start, end = cleaned.find("["), cleaned.rfind("]")
    if start < 0 or end <= start:
        return []
    try:
        data = json.loads(cleaned[start:end + 1])
    except json.JSONDecodeError as e:
        logger.warning(f"[upgrade] read plan is not valid JSON: {e}")
        return []
    entries: List[ReadPlanEntry] = []
    for item in data if isinstance(data, list) else []:
        if isinstance(item, str):
            item = {"path": item}
        if not isinstance(item, dict) or not isinstance(item.get("path"), str):
            continue
        offset = item.get("offset")
        limit = item.get("limit")
        entries.append(ReadPlanEntry(
            path=item["path"].strip(),
            offset=offset if isinstance(offset, int) and offset >= 0 else None,
            limit=limit if isinstance(limit, int) and limit > 0 else None,
            reason=str(item.get("reason") or ""),
        ))
    return entries


class UpgradePipeline:
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

    async def run(self, message: str) -> PipelineResult:
        ctx = self.ctx
        ctx.progress("Analyzing request against the existing project...")

        intent = classify_intent(message)
        if intent.confidence < REFINE_BELOW_CONFIDENCE:
            intent = await self.refine_intent(message, intent)
        logger.info(f"[upgrade] intent={intent.kind.value} confidence={intent.confidence:.2f} ({intent.source})")

        if intent.kind is IntentKind.UNKNOWN or intent.confidence < ctx.settings.intent_confidence_threshold:
            ctx.progress("Request is ambiguous; asking for clarification.")
            return PipelineResult(
                pipeline=PIPELINE_NAME,
                success=True,
                summary_text=CLARIFY_TEXT,
                needs_clarification=True,
                ai_call_count=self.ai_call_count,
            )

        locations = parse_error_locations(message, ctx.workspace)
        error_context = self._error_context(locations)
        if locations:
            ctx.progress(f"Found {len(locations)} error location(s): {', '.join(l.key for l in locations)}")

        plan = await self._read_plan(message, locations)
        file_context = self._read_files(plan)
        ctx.progress(f"Read {len(file_context)} file(s): {', '.join(file_context) or 'none'}")

        state = ConversationState()
        state.append(ChatMessage(role="system", text=UPGRADE_SYSTEM_PROMPT))
        state.append(ChatMessage(role="user", text=self._task_prompt(message, intent, error_context, file_context)))

        tools = ctx.registry.specs()
        response = await self._call(state.history, tools=tools)
        if proposes_full_rewrite(response):
            ctx.progress("Plan proposed a full rewrite; redirecting to targeted edits.")
            if response.text.strip():
                state.append(ChatMessage(role="assistant", text=response.text))
            state.append(ChatMessage(role="user", text=REWRITE_REDIRECT))
            response = await self._call(state.history, tools=tools)

        orchestrator = ctx.new_orchestrator()
        outcome = await orchestrator.run(
            state,
            response,
            call_kwargs=self._sampling(),
            stall_policy=StallPolicy(file_generation_task=False),
        )
        self.ai_call_count += state.ai_call_count

        for path in sorted(outcome.touched_paths):
            self._reindex(path)

        touched = sorted(outcome.touched_paths)
        summary = outcome.final_text.strip() or "Done."
        if touched:
            summary += f"\n\nModified files: {', '.join(touched)}"
        ctx.progress(f"Upgrade finished ({outcome.stop_reason}); {len(touched)} file(s) modified.")
        return PipelineResult(
            pipeline=PIPELINE_NAME,
            success=outcome.stop_reason != "cancelled",
            summary_text=summary,
            files_written=touched,
            error="cancelled" if outcome.stop_reason == "cancelled" else None,
            ai_call_count=self.ai_call_count,
        )

    # -------------------------------------------------------------------------
    # Intent
    # -------------------------------------------------------------------------

    async def refine_intent(self, message: str, rules: IntentClassification) -> IntentClassification:
        messages = [ChatMessage(role="user", text=CLASSIFY_PROMPT.format(message=message))]
        try:
            response = await self._call(messages, tools=None, task_kind="analysis")
        except AgentError as e:
            logger.warning(f"[upgrade] intent refinement failed, keeping rule-based result: {e}")
            return rules

        cleaned = strip_code_fences(response.text)
        start, end = cleaned.find("{"), cleaned.rfind("}")
        try:
            data = json.loads(cleaned[start:end + 1]) if 0 <= start < end else {}
        except json.JSONDecodeError:
            data = {}
        try:
            kind = IntentKind(str(data.get("intent", "")).lower())
            confidence = float(data.get("confidence"))
        except (ValueError, TypeError):
            return rules
        return IntentClassification(
            kind=kind,
            confidence=max(0.0, min(confidence, 1.0)),
            indicators=rules.indicators,
            source="model",
        )

    # -------------------------------------------------------------------------
    # Context gathering
    # -------------------------------------------------------------------------

    def _error_context(self, locations: List[ErrorLocation]) -> List[str]:
        blocks: List[str] = []
        radius = self.ctx.settings.error_context_lines
        for loc in locations:
            snippet = read_context(self.ctx.workspace, loc, radius)
            if snippet:
                header = f"{loc.path}:{loc.line}" if loc.line else loc.path
                if loc.function:
                    header += f" (in {loc.function})"
                blocks.append(f"{header}\n{snippet}")
        return blocks

    async def _read_plan(self, message: str, locations: List[ErrorLocation]) -> List[ReadPlanEntry]:
        files = list(self.ctx.workspace.iter_files(max_files=MAX_LISTED_FILES))
        prompt = READ_PLAN_PROMPT.format(
            max_files=MAX_PLANNED_FILES,
            message=message,
            locations="\n".join(l.key for l in locations) or "none",
            files="\n".join(files) or "(empty)",
        )
        plan: List[ReadPlanEntry] = []
        try:
            response = await self._call([ChatMessage(role="user", text=prompt)], tools=None, task_kind="analysis")
            plan = parse_read_plan(response.text)
        except AgentError as e:
            logger.warning(f"[upgrade] read plan call failed: {e}")

        valid = [e for e in plan if self._readable(e.path)][:MAX_PLANNED_FILES]
        if valid:
            return valid
        logger.info("[upgrade] read plan empty or invalid; using fallback file selection")
        return self._fallback_plan(message, locations, files)

    def _fallback_plan(self, message: str, locations: List[ErrorLocation], files: List[str]) -> List[ReadPlanEntry]:
        chosen: List[str] = []
        for loc in locations:
            if loc.path not in chosen:
                chosen.append(loc.path)
        lowered = message.lower()
        for path in files:
            if posixpath.basename(path).lower() in lowered and path not in chosen:
                chosen.append(path)
        if not chosen:
            chosen = self.ctx.workspace.code_files()[:FALLBACK_FILE_COUNT]
        return [ReadPlanEntry(path=p, reason="fallback") for p in chosen[:MAX_PLANNED_FILES]]

    def _readable(self, path: str) -> bool:
        try:
            full = self.ctx.workspace.resolve(path)
        except WorkspacePathError:
            return False
        rel = full.relative_to(self.ctx.workspace.root).as_posix()
        return full.is_file() and not self.ctx.workspace.ignore.is_ignored(rel)

    def _read_files(self, plan: List[ReadPlanEntry]) -> Dict[str, str]:
        out: Dict[str, str] = {}
        max_lines = self.ctx.settings.max_file_lines
        for entry in plan:
            try:
                full = self.ctx.workspace.resolve(entry.path)
                content = full.read_text(encoding="utf-8", errors="replace")
            except (WorkspacePathError, OSError) as e:
                logger.warning(f"[upgrade] cannot read {entry.path}: {e}")
                continue
            rel = full.relative_to(self.ctx.workspace.root).as_posix()
            self.ctx.dependency_index.record(rel, content)
            lines = content.splitlines()
            start = entry.offset or 0
            limit = min(entry.limit or max_lines, max_lines)
            window = lines[start:start + limit]
            body = "\n".join(f"{i + 1}: {line}" for i, line in enumerate(window, start=start))
            if start + limit < len(lines):
                body += f"\n... ({len(lines) - start - limit} more lines)"
            out[rel] = body
        return out

    def _task_prompt(
        self,
        message: str,
        intent: IntentClassification,
        error_context: List[str],
        file_context: Dict[str, str],
    ) -> str:
        parts = [f"Request ({intent.kind.value}): {message}"]
        if error_context:
            parts.append("Error locations:\n\n" + "\n\n".join(error_context))
        for path, body in file_context.items():
            dependents = self.ctx.dependency_index.dependents_of(path)
            header = f"File {path}"
            if dependents:
                header += f" (used by: {', '.join(dependents)})"
            parts.append(f"{header}:\n{body}")
        parts.append("Make the smallest set of targeted edits that satisfies the request.")
        return "\n\n".join(parts)

    def _reindex(self, path: str) -> None:
        try:
            full = self.ctx.workspace.resolve(path)
        except WorkspacePathError:
            return
        rel = full.relative_to(self.ctx.workspace.root).as_posix()
        if full.is_file():
            self.ctx.dependency_index.record(rel, full.read_text(encoding="utf-8", errors="replace"))
        else:
            self.ctx.dependency_index.remove(rel)

    # -------------------------------------------------------------------------
    # Calls
    # -------------------------------------------------------------------------

    def _sampling(self, task_kind: str = "problem_solving") -> Dict[str, Any]:
        temperature, top_p, top_k = get_sampling_defaults(task_kind, self.model)
        kwargs: Dict[str, Any] = {"temperature": temperature, "top_p": top_p, "top_k": top_k}
        kwargs.update(self.call_kwargs)
        kwargs["model"] = self.model
        return kwargs

    async def _call(self, messages: List[ChatMessage], *, tools, task_kind: str = "problem_solving") -> LlmResponse:
        self.ai_call_count += 1
        return await self.ctx.llm.complete(list(messages), tools=tools, **self._sampling(task_kind))


__all__ = [
    "UpgradePipeline",
    "ReadPlanEntry",
    "parse_read_plan",
    "proposes_full_rewrite",
    "CLARIFY_TEXT",
    "REWRITE_REDIRECT",
    "PIPELINE_NAME",
]
