# FILE: codeagent/engine/llm_call.py
"""
LLM call construction for AI placeholders.

Messages sent = filtered history + the current message with its
placeholder markup stripped. A constrained choice appends an instruction
listing the allowed options. Sampling comes from per-call overrides, else
task-aware defaults keyed by the model's capability tier.

After the call, a (non-random) constrained choice maps the raw response
onto a canonical option: exact match, then whole-word, then substring, all
case-insensitive. A single-option constraint always substitutes. Random
mode picks locally without trusting the model.
"""

from __future__ import annotations

import logging
import random
import re
from typing import Any, Dict, List, Optional

from config.model_ranks import get_sampling_defaults
from codeagent.llm.history import prepare_history
from codeagent.llm.schemas import ChatMessage, TaskKind
from codeagent.script.models import CallOverrides, ConstrainedChoice, Message, Role
from codeagent.script.parser import PLACEHOLDER_RE

logger = logging.getLogger(__name__)

_TASK_PATTERNS = (
    (TaskKind.PROBLEM_SOLVING, re.compile(
        r"\b(fix|debug|error|exception|bug|issue|broken|crash|solve|troubleshoot|fails?|failing)\b", re.IGNORECASE)),
    (TaskKind.CODE_GENERATION, re.compile(
        r"\b(create|write|implement|build|generate|code|function|class|script|program|app|api|refactor)\b",
        re.IGNORECASE)),
    (TaskKind.ANALYSIS, re.compile(
        r"\b(analy[sz]e|analysis|explain|review|compare|summari[sz]e|describe|evaluate|assess|why)\b",
        re.IGNORECASE)),
)

_TRIM_CHARS = " \t\r\n\"'`.,!?:;*()[]"


def classify_task_kind(text: str) -> TaskKind:
    for kind, pattern in _TASK_PATTERNS:
        if pattern.search(text or ""):
            return kind
    return TaskKind.DEFAULT


def strip_placeholders(content: str) -> str:
    return PLACEHOLDER_RE.sub("", content or "").strip()


def constraint_instruction(choice: ConstrainedChoice) -> str:
    options = ", ".join(f'"{o}"' for o in choice.options)
    if choice.count > 1:
        text = f"Respond with exactly {choice.count} of the following options, separated by commas: {options}."
    else:
        text = f"Respond with exactly one of the following options: {options}."
    if choice.random:
        text += " Any of them is acceptable."
    return text + " Reply with the option text only."


def build_call_messages(
    history: List[ChatMessage],
    message: Message,
    content: str,
    max_messages: int = 50,
) -> List[ChatMessage]:
    """History (filtered) + current message with placeholder markup stripped."""
    messages = prepare_history(history, max_messages)
    current = strip_placeholders(content)
    role = "assistant" if message.role is Role.ASSISTANT else ("system" if message.role is Role.SYSTEM else "user")

    instruction = constraint_instruction(message.choice) if message.choice is not None else ""
    if role == "user":
        text = "\n\n".join(p for p in (current, instruction) if p)
        if text:
            messages.append(ChatMessage(role="user", text=text))
    else:
        if current:
            messages.append(ChatMessage(role=role, text=current))
        if instruction:
            messages.append(ChatMessage(role="user", text=instruction))
    return messages


def _word_positions(option: str, text: str, flags: int) -> Optional[int]:
    m = re.search(r"(?<![\w])" + re.escape(option) + r"(?![\w])", text, flags)
    return m.start() if m else None


def _match_options(text: str, options: List[str], count: int) -> List[str]:
    normalized = text.strip().strip(_TRIM_CHARS).lower()

    for option in options:
        if normalized == option.lower():
            return [option]

    # Whole-word: case-sensitive hits win over case-insensitive ones
    for flags in (0, re.IGNORECASE):
        hits = []
        for option in options:
            pos = _word_positions(option, text, flags)
            if pos is not None:
                hits.append((pos, -len(option), option))
        if hits:
            return [o for _, _, o in sorted(hits)][:count]

    lowered = text.lower()
    hits = []
    for option in options:
        pos = lowered.find(option.lower())
        if pos >= 0:
            hits.append((pos, -len(option), option))
    return [o for _, _, o in sorted(hits)][:count]


def apply_constraint(
    response_text: str,
    choice: ConstrainedChoice,
    rng: Optional[random.Random] = None,
) -> str:
    options = list(choice.options)
    if not options:
        return response_text
    count = max(1, min(choice.count, len(options)))

    if choice.random:
        picker = rng or random
        picked = picker.sample(options, count) if count > 1 else [picker.choice(options)]
        return ", ".join(picked)

    if len(options) == 1:
        return options[0]

    matched = _match_options(response_text or "", options, count)
    if not matched:
        logger.info(f"[llm_call] response matched none of {options}; keeping raw text")
        return (response_text or "").strip()
    return ", ".join(matched)


def resolve_sampling(
    overrides: CallOverrides,
    prompt_text: str,
    default_model: str,
) -> Dict[str, Any]:
    """model/temperature/top_p/top_k for a call: overrides first, then task-aware defaults."""
    model = overrides.model or default_model
    task_kind = classify_task_kind(prompt_text)
    temperature, top_p, top_k = get_sampling_defaults(task_kind.value, model)
    return {
        "model": model,
        "temperature": overrides.temperature if overrides.temperature is not None else temperature,
        "top_p": overrides.top_p if overrides.top_p is not None else top_p,
        "top_k": overrides.top_k if overrides.top_k is not None else top_k,
    }


__all__ = [
    "classify_task_kind",
    "strip_placeholders",
    "constraint_instruction",
    "build_call_messages",
    "apply_constraint",
    "resolve_sampling",
]
