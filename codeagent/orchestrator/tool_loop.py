# FILE: codeagent/orchestrator/tool_loop.py
"""
Tool Call Orchestrator.

Executes the tool calls a model proposes and keeps the conversation
advancing until the model stops proposing calls or a bound trips.

Flow per step (explicit work queue, no recursion):
    1. repeated-call check (continuations only) -> stop, keep last response
    2. record the assistant turn, group calls by independence, run groups
       sequentially and calls within a group concurrently, append exactly
       one tool result per call in the original order
    3. depth bound check -> stop
    4. continuation call seeded with the results -> next step (depth + 1)

A continuation that proposes no calls ends the chain, unless it is a
stall: right after a successful write_todos, or boilerplate text while a
file-generation task is short of its file target. A stall gets one
directive follow-up. write_todos is executed at most once per chain;
later calls get a synthetic "already recorded" result.

v1.2 (2026-09-21): identical-call repeat detection
v1.1 (2026-09-15): write_todos suppression + stall directives
v1.0 (2026-09-08): Initial implementation
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional, Set

from codeagent.llm.client import LlmClient
from codeagent.llm.history import prepare_history
from codeagent.llm.schemas import (
    ChatMessage,
    FunctionCall,
    FunctionResponse,
    LlmResponse,
    ToolSpec,
)
from codeagent.orchestrator.grouping import (
    FILE_MUTATING_TOOLS,
    group_for_parallel_execution,
    target_path,
)
from codeagent.state import ConversationState
from codeagent.tools.base import CancellationToken, ToolErrorType, ToolResult
from codeagent.tools.executor import ToolExecutor
from codeagent.tools.file_tools import WRITE_TODOS_TOOL

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]
ToolCallCallback = Callable[[FunctionCall], None]
ToolResultCallback = Callable[[FunctionCall, ToolResult], None]

# =============================================================================
# BOUNDS / PROMPTS
# =============================================================================

DEFAULT_REPEAT_THRESHOLD = 2

# Tools that legitimately appear many times in a row
TOOL_REPEAT_THRESHOLDS: Dict[str, int] = {
    "write_file": 6,
    "edit": 5,
    "shell": 4,
    "read_file": 4,
    "list_directory": 3,
}

IDENTICAL_CALL_THRESHOLD = 2

CONTINUE_PROMPT = (
    "Please continue with the next steps to complete the task. "
    "If everything is done, reply with a short summary and no tool calls."
)

TODO_DIRECTIVE = (
    "The todo list has been created. Stop planning and start implementing now: "
    "create or edit the files for the first task using the available tools. "
    "Do not call write_todos again."
)

STALL_DIRECTIVE = (
    "You've described the plan but the task is not finished yet: only {written} of at least "
    "{target} files exist. Proceed with implementing it now by calling the file tools. "
    "Do not just describe what you will do."
)

_BOILERPLATE_RE = re.compile(
    r"^(ok(ay)?|done|sure|great|understood|got it|i('ll| will) (now )?(start|begin|proceed|continue|create|implement)"
    r"|let me (now )?(start|begin|proceed|continue|create|implement)|next,? i('ll| will)|now i('ll| will))\b",
    re.IGNORECASE,
)


@dataclass
class StallPolicy:
    file_generation_task: bool = False
    target_file_count: int = 3


@dataclass
class OrchestratorOutcome:
    response: LlmResponse
    final_text: str
    depth: int
    stop_reason: str
    files_written: List[str] = field(default_factory=list)
    touched_paths: Set[str] = field(default_factory=set)


@dataclass
class _Step:
    response: LlmResponse
    depth: int


@dataclass
class _ChainState:
    todo_written: bool = False
    todo_directive_used: bool = False
    stall_directive_used: bool = False
    files_written: List[str] = field(default_factory=list)
    touched_paths: Set[str] = field(default_factory=set)
    last_text: str = ""


def is_minimal_response(text: str) -> bool:
    stripped = (text or "").strip()
    if len(stripped) < 40:
        return True
    first_line = stripped.splitlines()[0]
    return bool(_BOILERPLATE_RE.match(first_line)) and len(stripped) < 400


class ToolCallOrchestrator:
    def __init__(
        self,
        llm: LlmClient,
        executor: ToolExecutor,
        *,
        tools: Optional[List[ToolSpec]] = None,
        max_depth: int = 10,
        repeat_window: int = 10,
        max_history_messages: int = 50,
        cancel_token: Optional[CancellationToken] = None,
        on_chunk: Optional[ProgressCallback] = None,
        on_tool_call: Optional[ToolCallCallback] = None,
        on_tool_result: Optional[ToolResultCallback] = None,
    ):
        self.llm = llm
        self.executor = executor
        self.tools = tools if tools is not None else executor.registry.specs()
        self.max_depth = max_depth
        self.repeat_window = repeat_window
        self.max_history_messages = max_history_messages
        self.cancel_token = cancel_token
        self.on_chunk = on_chunk
        self.on_tool_call = on_tool_call
        self.on_tool_result = on_tool_result

    # -------------------------------------------------------------------------
    # Public
    # -------------------------------------------------------------------------

    async def run(
        self,
        state: ConversationState,
        initial: LlmResponse,
        *,
        call_kwargs: Optional[Dict[str, Any]] = None,
        stall_policy: Optional[StallPolicy] = None,
    ) -> OrchestratorOutcome:
        """Drive `initial` (not yet recorded in history) to completion."""
        call_kwargs = dict(call_kwargs or {})
        policy = stall_policy or StallPolicy()
        chain = _ChainState()
        queue: Deque[_Step] = deque([_Step(response=initial, depth=0)])
        last = initial
        depth = 0
        stop_reason = "completed"

        while queue:
            step = queue.popleft()
            last = step.response
            depth = step.depth
            if step.response.text.strip():
                chain.last_text = step.response.text

            if self.cancel_token is not None and self.cancel_token.cancelled:
                stop_reason = "cancelled"
                self._record_text_only(state, step.response)
                break

            calls = self._ensure_ids(step.response.function_calls, state)

            if not calls:
                self._record_text_only(state, step.response)
                directive = self._stall_directive(step, chain, policy)
                if directive is None:
                    break
                if step.depth >= self.max_depth:
                    stop_reason = "max_depth"
                    break
                logger.info(f"[orchestrator] stall at depth {step.depth}; injecting directive")
                self._progress("Model stalled; asking it to continue implementing.")
                state.append(ChatMessage(role="user", text=directive))
                nxt = await self._continue(state, call_kwargs, nudge=False)
                queue.append(_Step(response=nxt, depth=step.depth + 1))
                continue

            if step.depth > 0 and self._is_repeating(state.history, calls):
                logger.warning(f"[orchestrator] repeated tool calls at depth {step.depth}; stopping")
                self._progress("Stopping: the model keeps repeating the same tool call.")
                stop_reason = "repeat_detected"
                self._record_text_only(state, step.response)
                break

            state.append(ChatMessage(role="assistant", text=step.response.text, function_calls=calls))
            results = await self.execute_calls(calls, chain)
            for call, result in zip(calls, results):
                state.append(_result_message(call, result))

            if self.cancel_token is not None and self.cancel_token.cancelled:
                stop_reason = "cancelled"
                break

            if step.depth >= self.max_depth:
                logger.warning(f"[orchestrator] max continuation depth {self.max_depth} reached")
                self._progress(f"Stopping: reached the continuation limit ({self.max_depth}).")
                stop_reason = "max_depth"
                break

            nxt = await self._continue(state, call_kwargs, nudge=True)
            queue.append(_Step(response=nxt, depth=step.depth + 1))

        final_text = last.text if last.text.strip() else chain.last_text
        return OrchestratorOutcome(
            response=last,
            final_text=final_text,
            depth=depth,
            stop_reason=stop_reason,
            files_written=list(chain.files_written),
            touched_paths=set(chain.touched_paths),
        )

    async def execute_calls(
        self,
        calls: List[FunctionCall],
        chain: Optional[_ChainState] = None,
    ) -> List[ToolResult]:
        """Run calls in independence groups; results come back in input order."""
        chain = chain or _ChainState()
        results: List[Optional[ToolResult]] = [None] * len(calls)
        for group in group_for_parallel_execution(calls):
            outs = await asyncio.gather(*(self._execute_one(calls[i], chain) for i in group))
            for i, out in zip(group, outs):
                results[i] = out
        return [r for r in results if r is not None]

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _execute_one(self, call: FunctionCall, chain: _ChainState) -> ToolResult:
        if call.name == WRITE_TODOS_TOOL and chain.todo_written:
            logger.info("[orchestrator] suppressing repeated write_todos call")
            return ToolResult(
                content="The todo list already exists. Do not call write_todos again; implement the next task.",
                display_text="write_todos suppressed",
            )

        if self.on_tool_call is not None:
            self.on_tool_call(call)
        result = await self.executor.execute(call, self.cancel_token)
        if self.on_tool_result is not None:
            self.on_tool_result(call, result)

        if result.is_error:
            if result.error is not None and result.error.type is not ToolErrorType.CANCELLED:
                self._progress(f"Tool {call.name} failed: {result.error.message}")
            return result

        if call.name == WRITE_TODOS_TOOL:
            chain.todo_written = True
        if call.name in FILE_MUTATING_TOOLS:
            path = target_path(call)
            if path:
                chain.touched_paths.add(path)
                if call.name == "write_file" and path not in chain.files_written:
                    chain.files_written.append(path)
        if result.display_text:
            self._progress(f"{call.name}: {result.display_text}")
        return result

    async def _continue(self, state: ConversationState, call_kwargs: Dict[str, Any], nudge: bool) -> LlmResponse:
        messages = prepare_history(state.history, self.max_history_messages)
        if nudge:
            messages.append(ChatMessage(role="user", text=CONTINUE_PROMPT))
        state.ai_call_count += 1
        return await self.llm.complete(messages, tools=self.tools, **call_kwargs)

    def _stall_directive(self, step: _Step, chain: _ChainState, policy: StallPolicy) -> Optional[str]:
        if step.depth == 0:
            return None
        if chain.todo_written and not chain.todo_directive_used:
            chain.todo_directive_used = True
            return TODO_DIRECTIVE
        if (
            policy.file_generation_task
            and not chain.stall_directive_used
            and len(chain.files_written) < policy.target_file_count
            and is_minimal_response(step.response.text)
        ):
            chain.stall_directive_used = True
            return STALL_DIRECTIVE.format(written=len(chain.files_written), target=policy.target_file_count)
        return None

    def _is_repeating(self, history: List[ChatMessage], calls: List[FunctionCall]) -> bool:
        window = history[-self.repeat_window:] if self.repeat_window > 0 else history
        name_counts: Dict[str, int] = {}
        signature_counts: Dict[str, int] = {}
        for entry in window:
            if entry.role == "tool" and entry.function_response is not None:
                name = entry.function_response.name
                name_counts[name] = name_counts.get(name, 0) + 1
            for fc in entry.function_calls:
                sig = fc.signature()
                signature_counts[sig] = signature_counts.get(sig, 0) + 1

        for call in calls:
            threshold = TOOL_REPEAT_THRESHOLDS.get(call.name, DEFAULT_REPEAT_THRESHOLD)
            if name_counts.get(call.name, 0) >= threshold:
                return True
            if signature_counts.get(call.signature(), 0) >= IDENTICAL_CALL_THRESHOLD:
                return True
        return False

    def _ensure_ids(self, calls: List[FunctionCall], state: ConversationState) -> List[FunctionCall]:
        out: List[FunctionCall] = []
        for i, call in enumerate(calls):
            if call.id:
                out.append(call)
            else:
                out.append(call.model_copy(update={"id": f"call_{len(state.history)}_{i}"}))
        return out

    def _record_text_only(self, state: ConversationState, response: LlmResponse) -> None:
        if response.text.strip():
            state.append(ChatMessage(role="assistant", text=response.text))

    def _progress(self, text: str) -> None:
        if self.on_chunk is not None:
            self.on_chunk(text)


def _result_message(call: FunctionCall, result: ToolResult) -> ChatMessage:
    text = result.content if not result.is_error else f"Error: {result.error.message}"  # type: ignore[union-attr]
    return ChatMessage(
        role="tool",
        text=text,
        function_response=FunctionResponse(name=call.name, response=result.to_response(), id=call.id),
    )


__all__ = [
    "StallPolicy",
    "OrchestratorOutcome",
    "ToolCallOrchestrator",
    "is_minimal_response",
    "CONTINUE_PROMPT",
    "TODO_DIRECTIVE",
    "STALL_DIRECTIVE",
    "TOOL_REPEAT_THRESHOLDS",
]
