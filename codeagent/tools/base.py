# FILE: codeagent/tools/base.py
"""
Tool interface, results and registry.

    registry.get(name) -> Tool | None
    tool.validate(args) -> params dict (raises ToolValidationError)
    await tool.invoke(params, cancel_token) -> ToolResult

Tool failures are values, not exceptions: ToolResult.error carries a typed
ToolError that is fed back to the model.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from codeagent.llm.schemas import ToolSpec


class ToolErrorType(str, Enum):
    INVALID_PARAMETERS = "invalid_parameters"
    EXECUTION_ERROR = "execution_error"
    NOT_FOUND = "not_found"
    CANCELLED = "cancelled"


@dataclass
class ToolError:
    type: ToolErrorType
    message: str

    def to_dict(self) -> dict:
        return {"type": self.type.value, "message": self.message}


@dataclass
class ToolResult:
    content: str = ""
    display_text: Optional[str] = None
    error: Optional[ToolError] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @classmethod
    def failure(cls, error_type: ToolErrorType, message: str) -> "ToolResult":
        return cls(error=ToolError(type=error_type, message=message))

    def to_response(self) -> Dict[str, Any]:
        """Payload sent back to the model as the function response."""
        if self.error is not None:
            return {"error": self.error.message, "error_type": self.error.type.value}
        out: Dict[str, Any] = {"output": self.content}
        out.update(self.data)
        return out

    def to_dict(self) -> dict:
        return {
            "content": self.content,
            "display_text": self.display_text,
            "error": self.error.to_dict() if self.error else None,
        }


class ToolValidationError(ValueError):
    pass


class CancellationToken:
    """Cooperative cancellation, checked at tool-invocation boundaries."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason = ""

    def cancel(self, reason: str = "cancelled") -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


class Tool(ABC):
    name: str = ""
    description: str = ""
    input_schema: Dict[str, Any] = {"type": "object", "properties": {}}
    mutates_files: bool = False
    read_only: bool = False

    def validate(self, args: Dict[str, Any]) -> Dict[str, Any]:
        from codeagent.tools.executor import validate_schema

        errs = validate_schema(self.input_schema, args)
        if errs:
            raise ToolValidationError("; ".join(errs))
        return dict(args)

    @abstractmethod
    async def invoke(self, params: Dict[str, Any], cancel_token: Optional[CancellationToken] = None) -> ToolResult:
        raise NotImplementedError

    def spec(self) -> ToolSpec:
        return ToolSpec(name=self.name, description=self.description, input_schema=self.input_schema)


class ToolRegistry:
    def __init__(self, tools: Optional[Iterable[Tool]] = None):
        self._tools: Dict[str, Tool] = {}
        for tool in tools or ():
            self.register(tool)

    def register(self, tool: Tool) -> None:
        if not tool.name:
            raise ValueError("tool must have a name")
        self._tools[tool.name] = tool

    def get(self, name: str) -> Optional[Tool]:
        return self._tools.get(name)

    def names(self) -> List[str]:
        return list(self._tools)

    def specs(self) -> List[ToolSpec]:
        return [t.spec() for t in self._tools.values()]

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)


__all__ = [
    "ToolErrorType",
    "ToolError",
    "ToolResult",
    "ToolValidationError",
    "CancellationToken",
    "Tool",
    "ToolRegistry",
]
