# FILE: codeagent/engine/__init__.py
"""Script execution: run context, turn interpreter and LLM call construction."""

from codeagent.engine.context import RunContext
from codeagent.engine.interpreter import MAX_NESTING_DEPTH, TurnInterpreter, run_script

__all__ = ["RunContext", "TurnInterpreter", "run_script", "MAX_NESTING_DEPTH"]
