# FILE: codeagent/script/__init__.py
"""Script model, parser, loader, templates and conditions."""

from codeagent.script.models import (
    DEFAULT_RESULT_VAR,
    RESPONSE_VAR,
    Role,
    Message,
    Instruction,
    InstructionKind,
    IfBlock,
    WhileBlock,
    ForBlock,
    MatchBlock,
    PipeBlock,
    ScriptRef,
    ChainTarget,
    Turn,
    Script,
)
from codeagent.script.parser import parse_script, parse_script_file
from codeagent.script.loader import ScriptLoader, default_task_script

__all__ = [
    "DEFAULT_RESULT_VAR",
    "RESPONSE_VAR",
    "Role",
    "Message",
    "Instruction",
    "InstructionKind",
    "IfBlock",
    "WhileBlock",
    "ForBlock",
    "MatchBlock",
    "PipeBlock",
    "ScriptRef",
    "ChainTarget",
    "Turn",
    "Script",
    "parse_script",
    "parse_script_file",
    "ScriptLoader",
    "default_task_script",
]
