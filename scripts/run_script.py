#!/usr/bin/env python3
"""
Run a script (or a bare task) against a workspace from the command line.

Usage:
    python scripts/run_script.py --workspace ./proj --task "Create a todo app in Node"
    python scripts/run_script.py --workspace ./proj --script review.ai.yaml --param file=app.js
    python scripts/run_script.py --workspace ./proj --script flow --provider anthropic --json
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path

# Add project root
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

load_dotenv()

from config.agent_settings import AgentSettings, LOG_LEVEL
from codeagent.engine import RunContext, run_script
from codeagent.errors import ScriptNotFoundError, ScriptParseError
from codeagent.llm.backends import create_backend
from codeagent.script import default_task_script
from codeagent.script.values import parse_literal


def _parse_params(pairs):
    params = {}
    for pair in pairs or []:
        if "=" not in pair:
            raise SystemExit(f"Error: --param expects key=value, got {pair!r}")
        key, value = pair.split("=", 1)
        params[key.strip()] = parse_literal(value)
    return params


def _print_chunk(text: str) -> None:
    print(f"  > {text}", flush=True)


async def _run(args) -> int:
    settings = AgentSettings.from_env()
    backend = create_backend(args.provider or settings.default_provider, args.model or settings.default_model)
    ctx = RunContext.create(
        backend,
        args.workspace,
        settings=settings,
        search_roots=args.search_root,
        on_chunk=None if args.json else _print_chunk,
    )

    params = _parse_params(args.param)
    if args.script:
        try:
            script = ctx.loader.load(args.script)
        except (ScriptNotFoundError, ScriptParseError) as e:
            print(f"Error: {e}")
            return 2
    else:
        script = default_task_script()
        params["task"] = args.task

    result = await run_script(ctx, script, params)

    if args.json:
        print(json.dumps(result.to_dict(), indent=2, default=str))
    else:
        print()
        print(result.final_text)
        print()
        print(
            f"turns={result.turn_count} ai_calls={result.ai_call_count} "
            f"tool_calls={result.tool_call_count} success={result.success}"
        )
        if result.error:
            print(f"Error: {result.error}")
    return 0 if result.success else 1


def main():
    parser = argparse.ArgumentParser(description="Run a codeagent script against a workspace")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--script", help="Script name or path (.ai.yaml)")
    source.add_argument("--task", help="Free-text task, run through the default task script")
    parser.add_argument("--workspace", default=".", help="Workspace root (default: current directory)")
    parser.add_argument("--provider", help="openai | anthropic | ollama")
    parser.add_argument("--model", help="Model id override")
    parser.add_argument("--param", action="append", help="Script parameter key=value (repeatable)")
    parser.add_argument("--search-root", action="append", help="Extra directory to resolve script names in")
    parser.add_argument("--json", action="store_true", help="Print the full result as JSON")
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not os.path.isdir(args.workspace):
        print(f"Error: Directory not found: {args.workspace}")
        sys.exit(1)

    sys.exit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
