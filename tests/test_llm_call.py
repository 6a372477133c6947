# FILE: tests/test_llm_call.py
"""
Tests for codeagent/engine/llm_call.py
Task classification, outbound message construction, constrained-choice
mapping and sampling resolution.
"""

import sys
from pathlib import Path

_project_root = Path(__file__).parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

import random

import pytest


def _choice(*options, count=1, pick_random=False):
    from codeagent.script.models import ConstrainedChoice
    return ConstrainedChoice(options=tuple(options), count=count, random=pick_random)


class TestClassifyTaskKind:
    """Test keyword-based task classification."""

    @pytest.mark.parametrize("text,expected", [
        ("Fix the crash in the login flow", "problem_solving"),
        ("Write a function that parses dates", "code_generation"),
        ("Explain the architecture", "analysis"),
        ("Hello there", "default"),
    ])
    def test_classification(self, text, expected):
        from codeagent.engine.llm_call import classify_task_kind
        assert classify_task_kind(text).value == expected


class TestBuildCallMessages:
    """Test history + current message assembly."""

    def test_user_message_with_constraint(self):
        from codeagent.engine.llm_call import build_call_messages
        from codeagent.llm.schemas import ChatMessage
        from codeagent.script.models import Role
        from codeagent.script.parser import build_message

        history = [
            ChatMessage(role="system", text="Be brief."),
            ChatMessage(role="user", text="hi"),
            ChatMessage(role="assistant", text="hello"),
        ]
        message = build_message(Role.USER, "Pick a letter [[X:|A|B]]")
        out = build_call_messages(history, message, message.content)

        assert [m.role for m in out] == ["system", "user", "assistant", "user"]
        assert out[-1].text.startswith("Pick a letter\n\nRespond with exactly one of the following options")
        assert '"A", "B"' in out[-1].text
        assert "[[" not in out[-1].text

    def test_assistant_message_keeps_role(self):
        from codeagent.engine.llm_call import build_call_messages
        from codeagent.script.models import Role
        from codeagent.script.parser import build_message
        message = build_message(Role.ASSISTANT, "Sure, here it is: [[DRAFT]]")
        out = build_call_messages([], message, message.content)
        assert [(m.role, m.text) for m in out] == [("assistant", "Sure, here it is:")]

    def test_history_is_capped(self):
        from codeagent.engine.llm_call import build_call_messages
        from codeagent.llm.schemas import ChatMessage
        from codeagent.script.models import Role
        from codeagent.script.parser import build_message
        history = [ChatMessage(role="user", text=f"m{i}") for i in range(80)]
        message = build_message(Role.USER, "next [[R]]")
        out = build_call_messages(history, message, message.content, max_messages=50)
        assert len(out) == 51
        assert out[0].text == "m30"


class TestApplyConstraint:
    """Test mapping a raw response onto the allowed options."""

    def test_whole_word_inside_sentence(self):
        from codeagent.engine.llm_call import apply_constraint
        assert apply_constraint("the answer is B", _choice("A", "B", "C")) == "B"

    def test_exact_match_is_case_insensitive(self):
        from codeagent.engine.llm_call import apply_constraint
        assert apply_constraint(" b. ", _choice("A", "B")) == "B"

    def test_substring_fallback(self):
        from codeagent.engine.llm_call import apply_constraint
        assert apply_constraint("reddish, I think", _choice("red", "green")) == "red"

    def test_no_match_keeps_raw_text(self):
        from codeagent.engine.llm_call import apply_constraint
        assert apply_constraint(" purple ", _choice("red", "green")) == "purple"

    def test_single_option_always_substitutes(self):
        from codeagent.engine.llm_call import apply_constraint
        assert apply_constraint("whatever", _choice("yes")) == "yes"

    def test_count_joins_in_response_order(self):
        from codeagent.engine.llm_call import apply_constraint
        assert apply_constraint("I pick C and A", _choice("A", "B", "C", count=2)) == "C, A"

    def test_random_mode_picks_locally(self):
        from codeagent.engine.llm_call import apply_constraint
        rng = random.Random(7)
        picked = apply_constraint("ignored", _choice("x", "y", "z", count=2, pick_random=True), rng)
        parts = picked.split(", ")
        assert len(parts) == 2
        assert len(set(parts)) == 2
        assert set(parts) <= {"x", "y", "z"}


class TestResolveSampling:
    """Test per-call overrides over task-aware defaults."""

    def test_overrides_win(self):
        from codeagent.engine.llm_call import resolve_sampling
        from codeagent.script.models import CallOverrides
        out = resolve_sampling(CallOverrides(temperature=0.9), "Write a function", "gpt-4.1")
        assert out == {"model": "gpt-4.1", "temperature": 0.9, "top_p": 0.90, "top_k": 40}

    def test_defaults_follow_model_tier(self):
        from codeagent.engine.llm_call import resolve_sampling
        from codeagent.script.models import CallOverrides
        out = resolve_sampling(CallOverrides(model="claude-opus-4-20250514"), "Fix this bug", "gpt-4.1")
        assert out["model"] == "claude-opus-4-20250514"
        assert (out["temperature"], out["top_p"], out["top_k"]) == (0.3, 0.90, 40)

    def test_unknown_model_default_task(self):
        from codeagent.engine.llm_call import resolve_sampling
        from codeagent.script.models import CallOverrides
        out = resolve_sampling(CallOverrides(), "Hello", "mystery-model")
        assert (out["temperature"], out["top_p"], out["top_k"]) == (0.7, 0.95, None)


class TestStripPlaceholders:
    """Test placeholder markup removal."""

    def test_strip(self):
        from codeagent.engine.llm_call import strip_placeholders
        assert strip_placeholders("Answer: [[A:|x|y]]  ") == "Answer:"


class TestModelRanks:
    """Test capability tiers and token estimates from config/."""

    @pytest.mark.parametrize("model,rank", [
        ("gpt-4.1", 2),
        ("gpt-4.1-mini", 1),
        ("claude-opus-4-20250514", 3),
        ("claude-sonnet-4-6", 2),
        ("llama3.1:8b", 1),
        ("GPT-5.2-Pro", 3),
        ("", 0),
        (None, 0),
        ("mystery-model", 0),
    ])
    def test_capability_rank(self, model, rank):
        from config.model_ranks import get_capability_rank
        assert get_capability_rank(model) == rank

    def test_rank_names_and_unknown_task(self):
        from config.model_ranks import get_rank_name, get_sampling_defaults
        assert get_rank_name(3) == "frontier"
        assert get_rank_name(7) == "unknown"
        assert get_sampling_defaults("poetry", "gpt-4.1") == (0.7, 0.95, None)

    def test_estimate_tokens(self):
        from config.agent_settings import estimate_tokens
        assert estimate_tokens("") == 0
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcde") == 2
