# FILE: codeagent/engine/control_flow.py
"""
Control-flow execution over the closed set of block types.

    IfBlock     exactly one branch
    WhileBlock  body while the condition is truthy
    ForBlock    `item in coll` binds each element (list items, map keys,
                range(n) for an integer); a bare condition loops like while
    MatchBlock  first case whose label equals the expression, else default
    PipeBlock   elements in order; nested scripts receive the current
                environment (plus the previous element's output as
                `content`) and only their variable changes are kept

Loops stop after `max_iterations` (1000 by default) with a warning.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Iterable, Tuple

from codeagent.engine.instructions import execute_instruction
from codeagent.script.conditions import evaluate_condition, evaluate_expression
from codeagent.script.models import (
    ControlFlowBlock,
    ForBlock,
    IfBlock,
    Instruction,
    MatchBlock,
    PipeBlock,
    ScriptRef,
    WhileBlock,
)
from codeagent.script.template import render_template
from codeagent.script.values import values_equal
from codeagent.state import ConversationState, ExecutionResult

if TYPE_CHECKING:
    from codeagent.engine.context import RunContext

logger = logging.getLogger(__name__)

NestedScriptRunner = Callable[[str, Dict[str, Any]], Awaitable[ExecutionResult]]


async def _run_body(body: Tuple[Instruction, ...], state: ConversationState, ctx: "RunContext") -> None:
    for instruction in body:
        await execute_instruction(instruction, state, ctx)


def _iteration_items(expression: str, state: ConversationState) -> Iterable[Any]:
    """Items for a $for loop; integer bounds stay lazy ranges."""
    expr = expression.strip()
    if expr.startswith("range(") and expr.endswith(")"):
        bound = evaluate_expression(expr[6:-1], state.variables)
        try:
            return range(int(bound))  # type: ignore[arg-type]
        except (TypeError, ValueError):
            logger.warning(f"[control_flow] range bound is not a number: {expr}")
            return []
    value = evaluate_expression(expr, state.variables)
    if isinstance(value, dict):
        return list(value.keys())
    if isinstance(value, (list, tuple)):
        return list(value)
    if isinstance(value, bool) or value is None:
        return []
    if isinstance(value, (int, float)):
        return range(int(value))
    if isinstance(value, str) and value:
        return [part.strip() for part in value.split(",") if part.strip()]
    return []


def _capped(items: Iterable[Any], limit: int, label: str) -> Iterable[Any]:
    for i, item in enumerate(items):
        if i >= limit:
            logger.warning(f"[control_flow] {label} stopped after {limit} iterations")
            return
        yield item


async def run_block(
    block: ControlFlowBlock,
    state: ConversationState,
    ctx: "RunContext",
    run_nested: NestedScriptRunner,
    max_iterations: int = 1000,
) -> None:
    if isinstance(block, IfBlock):
        branch = block.then_body if evaluate_condition(block.condition, state.variables) else block.else_body
        await _run_body(branch, state, ctx)

    elif isinstance(block, WhileBlock):
        await _run_while(block.condition, block.body, state, ctx, max_iterations)

    elif isinstance(block, ForBlock):
        if block.variable and block.iterable:
            items = _iteration_items(block.iterable, state)
            for item in _capped(items, max_iterations, f"$for {block.variable}"):
                state.variables[block.variable] = item
                await _run_body(block.body, state, ctx)
        else:
            await _run_while(block.condition, block.body, state, ctx, max_iterations)

    elif isinstance(block, MatchBlock):
        value = evaluate_expression(block.expression, state.variables)
        for label, body in block.cases:
            if values_equal(value, evaluate_expression(label, state.variables)) or values_equal(value, label):
                await _run_body(body, state, ctx)
                break
        else:
            await _run_body(block.default, state, ctx)

    elif isinstance(block, PipeBlock):
        await _run_pipe(block, state, ctx, run_nested)

    else:
        raise TypeError(f"Unknown control-flow block: {type(block).__name__}")


async def _run_while(
    condition: str,
    body: Tuple[Instruction, ...],
    state: ConversationState,
    ctx: "RunContext",
    max_iterations: int,
) -> None:
    iterations = 0
    while evaluate_condition(condition, state.variables):
        if iterations >= max_iterations:
            logger.warning(f"[control_flow] loop '{condition}' stopped after {max_iterations} iterations")
            break
        iterations += 1
        await _run_body(body, state, ctx)


async def _run_pipe(
    block: PipeBlock,
    state: ConversationState,
    ctx: "RunContext",
    run_nested: NestedScriptRunner,
) -> None:
    previous = ""
    for element in block.elements:
        if isinstance(element, ScriptRef):
            params = dict(state.variables)
            params.update({k: render_template(v, state.variables) for k, v in element.params.items()})
            if previous:
                params["content"] = previous
            result = await run_nested(element.name, params)
            if not result.success:
                logger.warning(f"[control_flow] pipe element {element.name} failed: {result.error}")
            for key, value in result.variables.items():
                if key not in params or params[key] != value:
                    state.variables[key] = value
            previous = result.final_text
        else:
            previous = await execute_instruction(element, state, ctx)


__all__ = ["NestedScriptRunner", "run_block"]
