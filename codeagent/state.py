# FILE: codeagent/state.py
"""
Per-run conversation state and the public execution result.

ConversationState is owned by exactly one interpreter invocation. Nested
and chained scripts get a fresh state seeded from a parameter map.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from codeagent.llm.schemas import ChatMessage
from codeagent.script.models import DEFAULT_RESULT_VAR, RESPONSE_VAR


@dataclass
class ConversationState:
    variables: Dict[str, Any] = field(default_factory=dict)
    history: List[ChatMessage] = field(default_factory=list)
    turn_count: int = 0
    ai_call_count: int = 0
    tool_call_count: int = 0
    placeholder_fired: bool = False
    pipeline_checked: bool = False
    pipeline_error: Optional[str] = None

    def append(self, message: ChatMessage) -> None:
        self.history.append(message)

    def bind_result(self, variable: str, text: str) -> None:
        """Bind an AI/pipeline result to its variable, RESPONSE and LatestResult."""
        self.variables[variable or DEFAULT_RESULT_VAR] = text
        self.variables[RESPONSE_VAR] = text
        self.variables[DEFAULT_RESULT_VAR] = text

    @property
    def final_text(self) -> str:
        for key in (RESPONSE_VAR, DEFAULT_RESULT_VAR):
            value = self.variables.get(key)
            if value is not None:
                return value if isinstance(value, str) else str(value)
        return ""


@dataclass
class ExecutionResult:
    success: bool
    final_text: str = ""
    variables: Dict[str, Any] = field(default_factory=dict)
    chat_history: List[ChatMessage] = field(default_factory=list)
    error: Optional[str] = None
    turn_count: int = 0
    ai_call_count: int = 0
    tool_call_count: int = 0

    @classmethod
    def from_state(cls, state: ConversationState, success: bool = True, error: Optional[str] = None) -> "ExecutionResult":
        return cls(
            success=success,
            final_text=state.final_text,
            variables=dict(state.variables),
            chat_history=list(state.history),
            error=error,
            turn_count=state.turn_count,
            ai_call_count=state.ai_call_count,
            tool_call_count=state.tool_call_count,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "final_text": self.final_text,
            "variables": self.variables,
            "chat_history": [m.model_dump() for m in self.chat_history],
            "error": self.error,
            "turn_count": self.turn_count,
            "ai_call_count": self.ai_call_count,
            "tool_call_count": self.tool_call_count,
        }


__all__ = ["ConversationState", "ExecutionResult"]
