# FILE: tests/conftest.py
"""
Pytest configuration for the codeagent test suite.

Configures:
- pytest-asyncio for async test support
- ScriptedBackend: an LlmBackend that replays canned responses
- make_ctx: RunContext factory bound to a tmp workspace with no-op sleeps
"""
import sys
from pathlib import Path

_project_root = Path(__file__).parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

import pytest

from config.agent_settings import AgentSettings
from codeagent.llm.backends import LlmBackend
from codeagent.llm.schemas import FunctionCall, LlmResponse
from codeagent.orchestrator.checkpoints import CheckpointStore

# pytest-asyncio plugin (strict mode, see pyproject.toml)
pytest_plugins = ["pytest_asyncio"]


class ScriptedBackend(LlmBackend):
    """Replays responses in order; str -> text, Exception -> raised, callable -> called with the request."""

    provider = "fake"

    def __init__(self, responses=None, default_model: str = "gpt-4.1"):
        super().__init__(default_model)
        self.responses = list(responses or [])
        self.requests = []

    async def call(self, request, on_text=None):
        self.requests.append(request)
        if not self.responses:
            return LlmResponse(text="(no more responses)")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        if callable(item):
            item = item(request)
        if isinstance(item, str):
            return LlmResponse(text=item)
        return item


def tool_call(name: str, **args) -> LlmResponse:
    return LlmResponse(text="", function_calls=[FunctionCall(name=name, args=args)])


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def settings(tmp_path):
    return AgentSettings(
        rate_limit_max_requests=1000,
        rate_limit_window_s=1.0,
        retry_initial_delay_s=0.0,
        file_gen_retry_delay_s=0.0,
        checkpoint_dir=str(tmp_path / "_checkpoints"),
        default_provider="fake",
        default_model="gpt-4.1",
    )


@pytest.fixture
def workspace_dir(tmp_path):
    ws = tmp_path / "ws"
    ws.mkdir()
    return ws


@pytest.fixture
def make_ctx(settings, workspace_dir):
    from codeagent.engine.context import RunContext

    def _make(responses=None, *, settings_override=None, search_roots=None, on_chunk=None):
        effective = settings_override or settings
        backend = ScriptedBackend(responses)
        ctx = RunContext.create(
            backend,
            str(workspace_dir),
            settings=effective,
            search_roots=search_roots,
            checkpoints=CheckpointStore(effective.checkpoint_dir, retention_hours=1.0),
            on_chunk=on_chunk,
            sleep=SleepRecorder(),
        )
        return ctx, backend

    return _make
