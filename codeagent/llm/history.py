# FILE: codeagent/llm/history.py
"""History filtering shared by turn calls and tool continuations."""

from __future__ import annotations

from typing import List, Optional

from codeagent.llm.schemas import ChatMessage


def prepare_history(
    history: List[ChatMessage],
    max_messages: int = 50,
    *,
    system_instruction: bool = True,
) -> List[ChatMessage]:
    """
    Messages to send for a call:
    - system-role and empty entries are dropped from the history
    - system-role text is folded into one leading system instruction
    - only the most recent `max_messages` entries are kept; tool results
      orphaned by the cut are dropped so call/result pairs stay intact
    """
    system_parts = [m.text for m in history if m.role == "system" and m.text.strip()]
    kept = [m for m in history if m.role != "system" and not m.is_empty]

    if max_messages > 0 and len(kept) > max_messages:
        kept = kept[-max_messages:]
        while kept and kept[0].role == "tool":
            kept.pop(0)

    out: List[ChatMessage] = []
    if system_instruction and system_parts:
        out.append(ChatMessage(role="system", text="\n\n".join(system_parts)))
    out.extend(kept)
    return out


def last_user_text(history: List[ChatMessage]) -> Optional[str]:
    for m in reversed(history):
        if m.role == "user" and m.text.strip():
            return m.text
    return None


__all__ = ["prepare_history", "last_user_text"]
