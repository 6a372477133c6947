# FILE: codeagent/engine/interpreter.py
"""
Turn Interpreter.

run(script, params) walks the script's turns in order. Per turn:

    1. messages: replacements and templates are applied; plain messages are
       appended to history; a placeholder message triggers a model call
       whose text binds to the placeholder variable, RESPONSE and
       LatestResult; tool calls go to the tool-call orchestrator
    2. the first AI-bearing message of a top-level run may instead be
       handed to the upgrade or blueprint pipeline; its summary becomes the
       turn result and the turn's remaining messages are skipped
    3. control-flow blocks
    4. instructions
    5. chain target (sub-invocation seeded with content = current result)
    6. auto-run: no placeholder fired, script auto-runs and the turn had a
       user message -> one model call over the history as it stands

Final text = RESPONSE, else LatestResult, else "". Failures are caught once
here; the failure result keeps the partial history and variables.

v1.3 (2026-10-09): auto-run goes through the pipeline branch too
v1.2 (2026-09-30): pipelines branch on the first AI-bearing message
v1.1 (2026-09-18): chaining + pipe blocks run nested scripts
v1.0 (2026-09-10): Initial implementation
"""

from __future__ import annotations

import logging
import random
import re
from typing import Any, Dict, List, Optional

from codeagent.engine.context import RunContext
from codeagent.engine.control_flow import run_block
from codeagent.engine.instructions import execute_instruction
from codeagent.engine.llm_call import (
    apply_constraint,
    build_call_messages,
    resolve_sampling,
    strip_placeholders,
)
from codeagent.errors import AgentError, ExecutionCancelled, ScriptNotFoundError
from codeagent.llm.backends import TextCallback
from codeagent.llm.history import last_user_text, prepare_history
from codeagent.llm.schemas import ChatMessage, FunctionCall, LlmResponse
from codeagent.orchestrator.tool_loop import StallPolicy
from codeagent.pipelines.blueprint_pipeline import BlueprintPipeline
from codeagent.pipelines.intent import (
    is_file_generation_task,
    looks_like_new_project,
    looks_like_upgrade_request,
)
from codeagent.pipelines.result import PipelineResult
from codeagent.pipelines.upgrade import UpgradePipeline
from codeagent.script.models import (
    DEFAULT_RESULT_VAR,
    CallOverrides,
    Instruction,
    InstructionKind,
    Message,
    Replacement,
    ReplacementKind,
    Role,
    Script,
    Turn,
)
from codeagent.script.parser import PLACEHOLDER_RE
from codeagent.script.template import render_template
from codeagent.script.values import lookup_path, to_text
from codeagent.state import ConversationState, ExecutionResult

logger = logging.getLogger(__name__)

MAX_NESTING_DEPTH = 16

_REGEX_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL, "x": re.VERBOSE}


class TurnInterpreter:
    def __init__(
        self,
        ctx: RunContext,
        *,
        depth: int = 0,
        on_text: Optional[TextCallback] = None,
        rng: Optional[random.Random] = None,
    ):
        self.ctx = ctx
        self.depth = depth
        self.on_text = on_text
        self.rng = rng or random.Random()

    # -------------------------------------------------------------------------
    # Public
    # -------------------------------------------------------------------------

    async def run(self, script: Script, input_params: Optional[Dict[str, Any]] = None) -> ExecutionResult:
        variables: Dict[str, Any] = dict(script.parameters)
        variables.update(input_params or {})
        state = ConversationState(variables=variables)
        # Only the outermost run may hand off to a pipeline
        state.pipeline_checked = self.depth > 0

        logger.info(f"[interpreter] run {script.name} depth={self.depth} turns={len(script.turns)}")
        try:
            if self.depth > MAX_NESTING_DEPTH:
                raise AgentError(f"Script nesting deeper than {MAX_NESTING_DEPTH} levels ({script.name})")
            for index, turn in enumerate(script.turns):
                self._check_cancelled()
                logger.debug(f"[interpreter] {script.name} turn {index + 1}/{len(script.turns)}")
                await self._run_turn(script, turn, state)
                state.turn_count += 1
        except Exception as e:
            logger.exception(f"[interpreter] {script.name} failed at turn {state.turn_count + 1}: {e}")
            return ExecutionResult.from_state(state, success=False, error=str(e) or type(e).__name__)

        if state.pipeline_error:
            return ExecutionResult.from_state(state, success=False, error=state.pipeline_error)
        return ExecutionResult.from_state(state)

    # -------------------------------------------------------------------------
    # Turn
    # -------------------------------------------------------------------------

    async def _run_turn(self, script: Script, turn: Turn, state: ConversationState) -> None:
        fired = False

        for message in turn.messages:
            content = await self._prepare_content(script, message, state)

            if not message.has_placeholder:
                if content.strip():
                    state.append(ChatMessage(role=message.role.value, text=content))
                continue

            fired = True
            state.placeholder_fired = True
            if not state.pipeline_checked:
                state.pipeline_checked = True
                user_text = self._effective_user_text(message, content, state)
                result = await self._maybe_run_pipeline(user_text)
                if result is not None:
                    self._record_pipeline(state, message, content, result)
                    break

            await self._ai_call(message, content, state)

        for block in turn.control_flow:
            self._check_cancelled()
            await run_block(block, state, self.ctx, self._nested_runner(script), self.ctx.settings.loop_max_iterations)

        for instruction in turn.instructions:
            await execute_instruction(instruction, state, self.ctx)

        if turn.chain is not None:
            await self._run_chain(script, turn, state)

        if not fired and script.auto_run and turn.has_user_message:
            await self._auto_run(state)

    async def _prepare_content(self, script: Script, message: Message, state: ConversationState) -> str:
        if message.immediate:
            content = render_template(message.content, state.variables)
            return await self._apply_replacements(script, message, content, state)
        content = await self._apply_replacements(script, message, message.content, state)
        return render_template(content, state.variables)

    # -------------------------------------------------------------------------
    # Replacements
    # -------------------------------------------------------------------------

    async def _apply_replacements(self, script: Script, message: Message, content: str, state: ConversationState) -> str:
        for repl in message.replacements:
            if repl.markup not in content:
                continue
            value = await self._replacement_value(script, repl, state)
            content = content.replace(repl.markup, value)
        return content

    async def _replacement_value(self, script: Script, repl: Replacement, state: ConversationState) -> str:
        if repl.kind is ReplacementKind.SCRIPT:
            params = dict(state.variables)
            params.update({k: render_template(v, state.variables) for k, v in repl.params.items()})
            result = await self._nested_runner(script)(repl.target, params)
            return result.final_text if result.success else ""

        if repl.kind is ReplacementKind.INSTRUCTION:
            instruction = Instruction(
                name=repl.target,
                kind=InstructionKind.for_name(repl.target),
                args=dict(repl.params),
                raw=", ".join(f"{k}={v}" for k, v in repl.params.items()),
            )
            return await execute_instruction(instruction, state, self.ctx, emit=False)

        flags = 0
        for ch in repl.flags:
            flags |= _REGEX_FLAGS.get(ch, 0)
        source = to_text(lookup_path(state.variables, repl.variable))
        try:
            m = re.search(repl.target, source, flags)
        except re.error as e:
            logger.warning(f"[interpreter] bad regex replacement /{repl.target}/: {e}")
            return ""
        if m is None:
            return ""
        group: Any = repl.group or 0
        if isinstance(group, str) and group.isdigit():
            group = int(group)
        try:
            return m.group(group) or ""
        except IndexError as e:
            logger.warning(f"[interpreter] regex group {repl.group!r} not found: {e}")
            return ""

    # -------------------------------------------------------------------------
    # AI calls
    # -------------------------------------------------------------------------

    async def _ai_call(self, message: Message, content: str, state: ConversationState) -> None:
        placeholder = message.placeholder
        variable = placeholder.variable if placeholder else DEFAULT_RESULT_VAR
        overrides = placeholder.overrides if placeholder else CallOverrides()
        prompt = strip_placeholders(content)

        messages = build_call_messages(
            state.history, message, content, self.ctx.settings.max_chat_history_messages
        )
        call_kwargs = resolve_sampling(overrides, prompt, self.ctx.llm.default_model)
        tools = self.ctx.registry.specs() if message.choice is None else None

        self._check_cancelled()
        state.ai_call_count += 1
        response = await self.ctx.llm.complete(messages, tools=tools, on_text=self.on_text, **call_kwargs)

        if message.role is Role.USER and prompt:
            state.append(ChatMessage(role="user", text=prompt))

        if response.function_calls and message.choice is None:
            text = await self._orchestrate(state, response, call_kwargs, prompt)
        else:
            text = response.text
            if message.choice is not None:
                text = apply_constraint(text, message.choice, self.rng)
            if message.role is Role.USER:
                state.append(ChatMessage(role="assistant", text=text))
            elif placeholder is not None:
                filled = content.replace(placeholder.markup, text) if placeholder.markup else text
                state.append(ChatMessage(role=message.role.value, text=PLACEHOLDER_RE.sub("", filled).strip() or text))

        state.bind_result(variable, text)

    async def _orchestrate(
        self,
        state: ConversationState,
        response: LlmResponse,
        call_kwargs: Dict[str, Any],
        prompt: str,
    ) -> str:
        def _count(call: FunctionCall) -> None:
            state.tool_call_count += 1

        orchestrator = self.ctx.new_orchestrator(on_tool_call=_count)
        policy = StallPolicy(
            file_generation_task=is_file_generation_task(prompt or last_user_text(state.history) or ""),
            target_file_count=self.ctx.settings.stall_target_file_count,
        )
        outcome = await orchestrator.run(state, response, call_kwargs=call_kwargs, stall_policy=policy)
        logger.info(f"[interpreter] tool loop finished: {outcome.stop_reason} at depth {outcome.depth}")
        if outcome.stop_reason == "cancelled":
            raise ExecutionCancelled("Execution cancelled")
        return outcome.final_text

    async def _auto_run(self, state: ConversationState) -> None:
        user_text = last_user_text(state.history)
        if user_text is None:
            return

        if not state.pipeline_checked:
            state.pipeline_checked = True
            result = await self._maybe_run_pipeline(user_text)
            if result is not None:
                self._record_pipeline(state, None, "", result)
                return

        logger.debug("[interpreter] auto-run over current history")
        messages = prepare_history(state.history, self.ctx.settings.max_chat_history_messages)
        call_kwargs = resolve_sampling(CallOverrides(), user_text, self.ctx.llm.default_model)
        self._check_cancelled()
        state.ai_call_count += 1
        response = await self.ctx.llm.complete(
            messages, tools=self.ctx.registry.specs(), on_text=self.on_text, **call_kwargs
        )
        if response.function_calls:
            text = await self._orchestrate(state, response, call_kwargs, user_text)
        else:
            text = response.text
            state.append(ChatMessage(role="assistant", text=text))
        state.bind_result(DEFAULT_RESULT_VAR, text)

    # -------------------------------------------------------------------------
    # Pipelines
    # -------------------------------------------------------------------------

    def _effective_user_text(self, message: Message, content: str, state: ConversationState) -> str:
        if message.role is Role.USER:
            stripped = strip_placeholders(content)
            if stripped:
                return stripped
        return last_user_text(state.history) or ""

    async def _maybe_run_pipeline(self, user_text: str) -> Optional[PipelineResult]:
        settings = self.ctx.settings
        if not settings.pipelines_enabled or not user_text.strip():
            return None

        code_files = self.ctx.workspace.count_code_files()
        if looks_like_upgrade_request(user_text, code_files, settings.upgrade_min_code_files):
            logger.info(f"[interpreter] routing to upgrade pipeline ({code_files} code files)")
            return await UpgradePipeline(self.ctx).run(user_text)
        if looks_like_new_project(user_text):
            logger.info("[interpreter] routing to blueprint pipeline")
            return await BlueprintPipeline(self.ctx).run(user_text)
        return None

    def _record_pipeline(
        self,
        state: ConversationState,
        message: Optional[Message],
        content: str,
        result: PipelineResult,
    ) -> None:
        if message is not None and message.role is Role.USER:
            prompt = strip_placeholders(content)
            if prompt:
                state.append(ChatMessage(role="user", text=prompt))
        state.append(ChatMessage(role="assistant", text=result.summary_text))
        variable = message.placeholder.variable if message is not None and message.placeholder else DEFAULT_RESULT_VAR
        state.bind_result(variable, result.summary_text)
        state.ai_call_count += result.ai_call_count
        state.variables["PIPELINE"] = result.to_dict()
        if not result.success:
            state.pipeline_error = result.error or result.summary_text

    # -------------------------------------------------------------------------
    # Nested scripts
    # -------------------------------------------------------------------------

    def _nested_runner(self, parent: Script):
        async def _run(name: str, params: Dict[str, Any]) -> ExecutionResult:
            target = self.ctx.loader.load(name, base_dir=parent.source_dir)
            child = TurnInterpreter(self.ctx, depth=self.depth + 1, on_text=self.on_text, rng=self.rng)
            return await child.run(target, params)

        return _run

    async def _run_chain(self, script: Script, turn: Turn, state: ConversationState) -> None:
        chain = turn.chain
        params: Dict[str, Any] = {k: render_template(v, state.variables) for k, v in chain.params.items()}
        params["content"] = state.final_text
        try:
            result = await self._nested_runner(script)(chain.name, params)
        except ScriptNotFoundError as e:
            logger.warning(f"[interpreter] chain target not found, skipping: {e}")
            self.ctx.progress(f"Chain target '{chain.name}' not found; skipped.")
            return

        state.ai_call_count += result.ai_call_count
        state.tool_call_count += result.tool_call_count
        if result.success:
            state.bind_result(DEFAULT_RESULT_VAR, result.final_text)
        else:
            logger.warning(f"[interpreter] chain {chain.name} failed: {result.error}")
            self.ctx.progress(f"Chained script '{chain.name}' failed: {result.error}")
            state.bind_result(DEFAULT_RESULT_VAR, "")

    def _check_cancelled(self) -> None:
        if self.ctx.cancel_token.cancelled:
            raise ExecutionCancelled(self.ctx.cancel_token.reason or "Execution cancelled")


async def run_script(
    ctx: RunContext,
    script: Script,
    input_params: Optional[Dict[str, Any]] = None,
    *,
    on_text: Optional[TextCallback] = None,
) -> ExecutionResult:
    return await TurnInterpreter(ctx, on_text=on_text).run(script, input_params)


__all__ = ["TurnInterpreter", "run_script", "MAX_NESTING_DEPTH"]
