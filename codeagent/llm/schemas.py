# FILE: codeagent/llm/schemas.py
"""
Provider-neutral LLM message and response models.

Every backend adapter normalizes its wire format into these shapes:
  - ChatMessage: one history entry (text, tool calls, or a tool result)
  - LlmResponse: {text, finish_reason, function_calls}
  - ToolSpec: tool name + JSON-schema-like input schema offered to the model
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class TaskKind(str, Enum):
    CODE_GENERATION = "code_generation"
    PROBLEM_SOLVING = "problem_solving"
    ANALYSIS = "analysis"
    DEFAULT = "default"


class FunctionCall(BaseModel):
    """A structured tool invocation proposed by the model."""
    model_config = ConfigDict(extra="ignore")

    name: str
    args: Dict[str, Any] = Field(default_factory=dict)
    id: Optional[str] = None

    def signature(self) -> str:
        """Stable identity used for repeated-call detection."""
        items = sorted((k, repr(v)) for k, v in self.args.items())
        return f"{self.name}({items})"


class FunctionResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    response: Dict[str, Any] = Field(default_factory=dict)
    id: Optional[str] = None


class ChatMessage(BaseModel):
    """
    One chat history entry.

    role is system | user | assistant | tool. Tool results use role "tool"
    and carry function_response; assistant turns that requested tools carry
    function_calls.
    """
    model_config = ConfigDict(extra="ignore")

    role: str
    text: str = ""
    function_calls: List[FunctionCall] = Field(default_factory=list)
    function_response: Optional[FunctionResponse] = None

    @property
    def is_empty(self) -> bool:
        return (
            not self.text.strip()
            and not self.function_calls
            and self.function_response is None
        )


class ToolSpec(BaseModel):
    name: str
    description: str = ""
    input_schema: Dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})


class LlmResponse(BaseModel):
    text: str = ""
    finish_reason: str = "stop"
    function_calls: List[FunctionCall] = Field(default_factory=list)
    model: Optional[str] = None

    @property
    def has_calls(self) -> bool:
        return bool(self.function_calls)


class LlmRequest(BaseModel):
    """Everything a backend needs for one call (after defaults are applied)."""
    messages: List[ChatMessage]
    model: Optional[str] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    tools: Optional[List[ToolSpec]] = None
    max_tokens: Optional[int] = None


__all__ = [
    "TaskKind",
    "FunctionCall",
    "FunctionResponse",
    "ChatMessage",
    "ToolSpec",
    "LlmResponse",
    "LlmRequest",
]
