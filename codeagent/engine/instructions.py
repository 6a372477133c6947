# FILE: codeagent/engine/instructions.py
"""
Instruction execution.

Built-ins:
    $echo: text       render text (or, with ?=, look up a variable) and emit it
    $set: key=value   bind key to the rendered value (also `key: value`,
                      or several pairs via $set(a=1, b=2))
    $print            emit LatestResult

Anything else is dispatched to a handler registered on the RunContext
under the instruction name; unknown instructions are logged and skipped.
Every instruction returns its output text ("" when it emits nothing) so
`[[@$name(...)]]` replacements can splice it into a message.
"""

from __future__ import annotations

import inspect
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Optional, Tuple, Union

from codeagent.script.models import DEFAULT_RESULT_VAR, Instruction, InstructionKind
from codeagent.script.template import render_template
from codeagent.script.values import lookup_path, parse_literal, to_text
from codeagent.state import ConversationState

if TYPE_CHECKING:
    from codeagent.engine.context import RunContext

logger = logging.getLogger(__name__)

InstructionHandler = Callable[
    [Instruction, Dict[str, Any], ConversationState],
    Union[Optional[str], Awaitable[Optional[str]]],
]


def _unquote(text: str) -> str:
    t = text.strip()
    if len(t) >= 2 and t[0] == t[-1] and t[0] in ("'", '"'):
        return t[1:-1]
    return t


def _split_assignment(content: str) -> Optional[Tuple[str, str]]:
    """`key=value` or `key: value`, whichever separator comes first."""
    positions = [i for i in (content.find("="), content.find(":")) if i > 0]
    if not positions:
        return None
    cut = min(positions)
    key = _unquote(content[:cut])
    if not key:
        return None
    return key, content[cut + 1:].strip()


def _echo(instruction: Instruction, state: ConversationState) -> str:
    value = instruction.args.get("value", instruction.raw)
    if instruction.template_ref:
        return to_text(lookup_path(state.variables, value.strip()))
    return render_template(value, state.variables)


def _set(instruction: Instruction, state: ConversationState) -> str:
    if "value" in instruction.args:
        pair = _split_assignment(instruction.raw or instruction.args["value"])
        if pair is None:
            logger.warning(f"[instructions] $set without key/value: {instruction.raw!r}")
            return ""
        key, raw_value = pair
        if instruction.template_ref:
            state.variables[key] = lookup_path(state.variables, raw_value)
        else:
            state.variables[key] = parse_literal(render_template(_unquote(raw_value), state.variables))
        return ""

    for key, raw_value in instruction.args.items():
        state.variables[key] = parse_literal(render_template(raw_value, state.variables))
    return ""


async def execute_instruction(
    instruction: Instruction,
    state: ConversationState,
    ctx: "RunContext",
    *,
    emit: bool = True,
) -> str:
    kind = instruction.kind
    if kind is InstructionKind.ECHO:
        output = _echo(instruction, state)
    elif kind is InstructionKind.SET:
        output = _set(instruction, state)
    elif kind is InstructionKind.PRINT:
        output = to_text(state.variables.get(DEFAULT_RESULT_VAR))
    elif kind is InstructionKind.CUSTOM:
        output = await _run_custom(instruction, state, ctx)
    else:
        raise ValueError(f"Unhandled instruction kind: {kind}")

    if emit and output and kind is not InstructionKind.SET:
        ctx.progress(output)
    return output


async def _run_custom(instruction: Instruction, state: ConversationState, ctx: "RunContext") -> str:
    handler = ctx.instruction_handlers.get(instruction.name) or ctx.instruction_handlers.get(instruction.name.lower())
    if handler is None:
        logger.warning(f"[instructions] unknown instruction ${instruction.name}; skipped")
        return ""
    args = {k: render_template(v, state.variables) for k, v in instruction.args.items()}
    result = handler(instruction, args, state)
    if inspect.isawaitable(result):
        result = await result
    return to_text(result)


__all__ = ["InstructionHandler", "execute_instruction"]
