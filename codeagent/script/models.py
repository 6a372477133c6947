# FILE: codeagent/script/models.py
"""
Parsed script structure.

Script -> Turns -> (Messages, Instructions, ControlFlowBlocks, chain target).
Everything here is frozen once the parser builds it; runtime state lives in
codeagent.state.ConversationState.

Control flow is a closed set of block types (IfBlock, WhileBlock, ForBlock,
MatchBlock, PipeBlock). The interpreter dispatches over exactly these and
raises on anything else.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

DEFAULT_RESULT_VAR = "LatestResult"
RESPONSE_VAR = "RESPONSE"


# =============================================================================
# MESSAGES
# =============================================================================

class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"

    @classmethod
    def parse(cls, raw: str) -> Optional["Role"]:
        key = (raw or "").strip().lower()
        if key in ("model", "ai", "assistant"):
            return cls.ASSISTANT
        if key == "system":
            return cls.SYSTEM
        if key in ("user", "human"):
            return cls.USER
        return None


@dataclass(frozen=True)
class CallOverrides:
    model: Optional[str] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None


@dataclass(frozen=True)
class AiPlaceholder:
    """[[VAR:params]] - substitute the model's response here."""
    variable: str = DEFAULT_RESULT_VAR
    overrides: CallOverrides = field(default_factory=CallOverrides)
    markup: str = ""


@dataclass(frozen=True)
class ConstrainedChoice:
    """[[VAR:|A|B|C:count:random]] - restrict the bound value to options."""
    options: Tuple[str, ...]
    count: int = 1
    random: bool = False


class ReplacementKind(str, Enum):
    SCRIPT = "script"            # [[@script(k=v)]]
    INSTRUCTION = "instruction"  # [[@$instr(k=v)]]
    REGEX = "regex"              # /pattern/flags:VAR[:group]


@dataclass(frozen=True)
class Replacement:
    kind: ReplacementKind
    markup: str
    target: str
    params: Dict[str, str] = field(default_factory=dict)
    flags: str = ""
    variable: str = ""
    group: Optional[str] = None


@dataclass(frozen=True)
class Message:
    role: Role
    content: str
    placeholder: Optional[AiPlaceholder] = None
    choice: Optional[ConstrainedChoice] = None
    replacements: Tuple[Replacement, ...] = ()
    immediate: bool = False

    @property
    def has_placeholder(self) -> bool:
        return self.placeholder is not None


# =============================================================================
# INSTRUCTIONS
# =============================================================================

class InstructionKind(str, Enum):
    ECHO = "echo"
    SET = "set"
    PRINT = "print"
    CUSTOM = "custom"

    @classmethod
    def for_name(cls, name: str) -> "InstructionKind":
        try:
            kind = cls(name.lower())
        except ValueError:
            return cls.CUSTOM
        return kind


@dataclass(frozen=True)
class Instruction:
    name: str
    kind: InstructionKind
    args: Dict[str, str] = field(default_factory=dict)
    raw: str = ""
    template_ref: bool = False


# =============================================================================
# CONTROL FLOW
# =============================================================================

@dataclass(frozen=True)
class IfBlock:
    condition: str
    then_body: Tuple[Instruction, ...] = ()
    else_body: Tuple[Instruction, ...] = ()


@dataclass(frozen=True)
class WhileBlock:
    condition: str
    body: Tuple[Instruction, ...] = ()


@dataclass(frozen=True)
class ForBlock:
    """$for item in items  (or a bare condition, which loops like $while)."""
    condition: str
    body: Tuple[Instruction, ...] = ()
    variable: Optional[str] = None
    iterable: Optional[str] = None


@dataclass(frozen=True)
class MatchBlock:
    expression: str
    cases: Tuple[Tuple[str, Tuple[Instruction, ...]], ...] = ()
    default: Tuple[Instruction, ...] = ()


@dataclass(frozen=True)
class ScriptRef:
    name: str
    params: Dict[str, str] = field(default_factory=dict)


PipeElement = Union[Instruction, ScriptRef]


@dataclass(frozen=True)
class PipeBlock:
    elements: Tuple[PipeElement, ...] = ()


ControlFlowBlock = Union[IfBlock, WhileBlock, ForBlock, MatchBlock, PipeBlock]


# =============================================================================
# TURNS / SCRIPT
# =============================================================================

@dataclass(frozen=True)
class ChainTarget:
    name: str
    params: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Turn:
    messages: Tuple[Message, ...] = ()
    instructions: Tuple[Instruction, ...] = ()
    control_flow: Tuple[ControlFlowBlock, ...] = ()
    chain: Optional[ChainTarget] = None

    @property
    def has_user_message(self) -> bool:
        return any(m.role is Role.USER for m in self.messages)

    @property
    def has_placeholder(self) -> bool:
        return any(m.has_placeholder for m in self.messages)


@dataclass(frozen=True)
class Script:
    name: str
    turns: Tuple[Turn, ...] = ()
    parameters: Dict[str, Any] = field(default_factory=dict)
    source_path: Optional[str] = None
    auto_run: bool = True
    description: str = ""
    script_type: str = ""
    inputs: Dict[str, Any] = field(default_factory=dict)
    outputs: Dict[str, Any] = field(default_factory=dict)
    imports: Tuple[str, ...] = ()
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def source_dir(self) -> Optional[str]:
        if not self.source_path:
            return None
        return os.path.dirname(os.path.abspath(self.source_path))


__all__ = [
    "DEFAULT_RESULT_VAR",
    "RESPONSE_VAR",
    "Role",
    "CallOverrides",
    "AiPlaceholder",
    "ConstrainedChoice",
    "ReplacementKind",
    "Replacement",
    "Message",
    "InstructionKind",
    "Instruction",
    "IfBlock",
    "WhileBlock",
    "ForBlock",
    "MatchBlock",
    "ScriptRef",
    "PipeElement",
    "PipeBlock",
    "ControlFlowBlock",
    "ChainTarget",
    "Turn",
    "Script",
]
