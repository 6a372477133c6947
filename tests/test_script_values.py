# FILE: tests/test_script_values.py
"""
Tests for codeagent/script/values.py, conditions.py and template.py
Truthiness, loose equality, condition evaluation and {{ }} rendering.
"""

import sys
from pathlib import Path

_project_root = Path(__file__).parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

import pytest


# =============================================================================
# Values
# =============================================================================

class TestTruthiness:
    """Test is_truthy across value kinds."""

    @pytest.mark.parametrize("value", ["", "0", "false", "FALSE", 0, 0.0, None, False])
    def test_falsy_values(self, value):
        from codeagent.script.values import is_truthy
        assert is_truthy(value) is False

    @pytest.mark.parametrize("value", ["yes", "no", "1", 1, -2, 0.5, True, [], {}, ["a"]])
    def test_truthy_values(self, value):
        from codeagent.script.values import is_truthy
        assert is_truthy(value) is True


class TestToText:
    """Test rendering values as text."""

    def test_scalars(self):
        from codeagent.script.values import to_text
        assert to_text(None) == ""
        assert to_text(True) == "true"
        assert to_text(3.0) == "3"
        assert to_text(2.5) == "2.5"

    def test_collections_render_as_json(self):
        from codeagent.script.values import to_text
        assert to_text(["a", 1]) == '["a", 1]'
        assert to_text({"k": "v"}) == '{"k": "v"}'


class TestParseLiteral:
    """Test parse_literal token interpretation."""

    def test_literals(self):
        from codeagent.script.values import parse_literal
        assert parse_literal("true") is True
        assert parse_literal(" False ") is False
        assert parse_literal("null") is None
        assert parse_literal("42") == 42
        assert parse_literal("-1.5") == -1.5
        assert parse_literal("hello") == "hello"


class TestValuesEqual:
    """Test loose equality."""

    def test_numbers_compare_numerically(self):
        from codeagent.script.values import values_equal
        assert values_equal(1, 1.0)

    def test_text_forms(self):
        from codeagent.script.values import values_equal
        assert values_equal("1", 1)
        assert values_equal(True, "true")
        assert not values_equal("a", "b")


class TestLookupPath:
    """Test dotted path lookup."""

    def test_nested_maps_and_lists(self):
        from codeagent.script.values import lookup_path
        env = {"user": {"name": "ada", "tags": ["x", "y"]}}
        assert lookup_path(env, "user.name") == "ada"
        assert lookup_path(env, "user.tags.1") == "y"
        assert lookup_path(env, "user.missing") is None


# =============================================================================
# Conditions
# =============================================================================

class TestConditions:
    """Test evaluate_condition."""

    def test_equality_with_variable_and_quoted_literal(self):
        from codeagent.script.conditions import evaluate_condition
        assert evaluate_condition('stage == "done"', {"stage": "done"})
        assert not evaluate_condition('stage != "done"', {"stage": "done"})

    def test_strict_operators_parse_before_loose(self):
        from codeagent.script.conditions import evaluate_condition
        assert evaluate_condition("count === 3", {"count": 3})
        assert evaluate_condition("count !== 4", {"count": 3})

    def test_negation_and_truthiness(self):
        from codeagent.script.conditions import evaluate_condition
        assert evaluate_condition("!missing", {})
        assert evaluate_condition("flag", {"flag": "yes"})
        assert not evaluate_condition("flag", {"flag": "0"})

    def test_empty_condition_is_false(self):
        from codeagent.script.conditions import evaluate_condition
        assert evaluate_condition("   ", {"x": 1}) is False

    def test_existing_variable_wins_over_literal(self):
        from codeagent.script.conditions import evaluate_expression
        assert evaluate_expression("true", {"true": "shadowed"}) == "shadowed"
        assert evaluate_expression("true", {}) is True

    def test_braced_variable(self):
        from codeagent.script.conditions import evaluate_condition
        assert evaluate_condition('{{ mode }} == "fast"', {"mode": "fast"})

    def test_unknown_identifier_is_empty_string(self):
        from codeagent.script.conditions import evaluate_condition
        assert not evaluate_condition("mode == fast", {"mode": "fast"})
        assert evaluate_condition('missing == ""', {})


# =============================================================================
# Templates
# =============================================================================

class TestRenderTemplate:
    """Test {{ }} substitution and filters."""

    def test_missing_variable_renders_empty(self):
        from codeagent.script.template import render_template
        assert render_template("Hi {{name}}!", {}) == "Hi !"

    def test_dotted_path_and_filters(self):
        from codeagent.script.template import render_template
        env = {"user": {"name": "  ada  "}}
        assert render_template("{{ user.name | trim | upper }}", env) == "ADA"

    def test_json_filter(self):
        from codeagent.script.template import render_template
        assert render_template("{{ items | json }}", {"items": ["a"]}) == '["a"]'

    def test_text_without_braces_is_unchanged(self):
        from codeagent.script.template import render_template
        assert render_template("plain text", {"x": 1}) == "plain text"
