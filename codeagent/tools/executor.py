# FILE: codeagent/tools/executor.py
"""
Tool execution + lightweight schema validation.

Goals:
- No external jsonschema dependency.
- One place for lookup, validation, cancellation checks and timeouts.
- Never raises: every outcome is a ToolResult (errors are typed so the
  model can self-correct).
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, List, Optional

from codeagent.llm.schemas import FunctionCall
from codeagent.tools.base import (
    CancellationToken,
    ToolErrorType,
    ToolRegistry,
    ToolResult,
    ToolValidationError,
)

logger = logging.getLogger(__name__)


def _is_int(v: Any) -> bool:
    return isinstance(v, int) and not isinstance(v, bool)


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def _validate_required(schema: dict, data: dict) -> List[str]:
    errs: List[str] = []
    for key in schema.get("required") or []:
        if key not in data or data[key] is None:
            errs.append(f"missing required field: {key}")
    return errs


def validate_schema(schema: dict, data: Any, path: str = "") -> List[str]:
    """
    Minimal schema validator (enough to catch the common mistakes models make).
    Supports:
      - type: object/array/string/integer/number/boolean
      - required / properties (objects)
      - items (arrays)
      - enum
      - minLength/maxLength (strings), minimum/maximum (numbers)
    """
    errs: List[str] = []
    t = schema.get("type")

    def p(msg: str) -> str:
        return f"{path}{msg}" if path else msg

    enum = schema.get("enum")
    if enum is not None and data not in enum:
        return [p(f"value {data!r} not in {enum}")]

    if t == "object":
        if not isinstance(data, dict):
            return [p(f"expected object, got {type(data).__name__}")]
        errs += _validate_required(schema, data)
        props = schema.get("properties") or {}
        for k, v in data.items():
            if k in props and v is not None:
                errs += validate_schema(props[k], v, path=f"{path}{k}.")
        return errs

    if t == "array":
        if not isinstance(data, list):
            return [p(f"expected array, got {type(data).__name__}")]
        item_schema = schema.get("items")
        if item_schema:
            for i, item in enumerate(data):
                errs += validate_schema(item_schema, item, path=f"{path}{i}.")
        return errs

    if t == "string":
        if not isinstance(data, str):
            return [p(f"expected string, got {type(data).__name__}")]
        min_len = schema.get("minLength")
        max_len = schema.get("maxLength")
        if min_len is not None and len(data) < int(min_len):
            errs.append(p(f"string shorter than minLength {min_len}"))
        if max_len is not None and len(data) > int(max_len):
            errs.append(p(f"string longer than maxLength {max_len}"))
        return errs

    if t in ("integer", "number"):
        ok = _is_int(data) if t == "integer" else _is_number(data)
        if not ok:
            return [p(f"expected {t}, got {type(data).__name__}")]
        mn = schema.get("minimum")
        mx = schema.get("maximum")
        if mn is not None and data < mn:
            errs.append(p(f"{t} less than minimum {mn}"))
        if mx is not None and data > mx:
            errs.append(p(f"{t} greater than maximum {mx}"))
        return errs

    if t == "boolean":
        if not isinstance(data, bool):
            return [p(f"expected boolean, got {type(data).__name__}")]
        return errs

    # unknown schema types are treated as "no validation"
    return errs


class ToolExecutor:
    """
    Executes registered tools with:
      - registry lookup (not_found)
      - schema validation (invalid_parameters)
      - cancellation check before invoking (cancelled)
      - timeouts and handler exceptions (execution_error)
    """

    def __init__(self, registry: ToolRegistry, timeout_s: float = 60.0):
        self.registry = registry
        self.timeout_s = timeout_s

    async def execute(
        self,
        call: FunctionCall,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ToolResult:
        started = time.perf_counter()

        tool = self.registry.get(call.name)
        if tool is None:
            return ToolResult.failure(
                ToolErrorType.NOT_FOUND,
                f"Unknown tool '{call.name}'. Available: {', '.join(self.registry.names())}",
            )

        try:
            params = tool.validate(call.args or {})
        except ToolValidationError as e:
            return ToolResult.failure(ToolErrorType.INVALID_PARAMETERS, f"{call.name}: {e}")

        if cancel_token is not None and cancel_token.cancelled:
            return ToolResult.failure(ToolErrorType.CANCELLED, cancel_token.reason or "cancelled")

        try:
            result = await asyncio.wait_for(tool.invoke(params, cancel_token), timeout=self.timeout_s)
        except asyncio.TimeoutError:
            return ToolResult.failure(ToolErrorType.EXECUTION_ERROR, f"{call.name}: tool timeout after {self.timeout_s:.0f}s")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("[tools] %s handler error: %s", call.name, e)
            return ToolResult.failure(ToolErrorType.EXECUTION_ERROR, f"{call.name}: {e}")

        elapsed = int((time.perf_counter() - started) * 1000)
        logger.debug("[tools] %s finished in %dms (error=%s)", call.name, elapsed, result.is_error)
        return result


__all__ = ["validate_schema", "ToolExecutor"]
