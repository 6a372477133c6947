# FILE: tests/test_backends.py
"""
Tests for codeagent/llm/backends.py
Wire-format normalization and response parsing per provider. SDK clients
are replaced by small fakes; Ollama runs over httpx.MockTransport.
"""

import sys
from pathlib import Path

_project_root = Path(__file__).parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

import json
from types import SimpleNamespace

import httpx
import pytest


def _history():
    from codeagent.llm.schemas import ChatMessage, FunctionCall, FunctionResponse
    return [
        ChatMessage(role="system", text="Be brief."),
        ChatMessage(role="user", text="List files"),
        ChatMessage(role="assistant", text="", function_calls=[
            FunctionCall(name="list_directory", args={"path": "."}, id="c1"),
        ]),
        ChatMessage(role="tool", text="a.js", function_response=FunctionResponse(
            name="list_directory", response={"output": "a.js"}, id="c1",
        )),
        ChatMessage(role="assistant", text="There is one file."),
    ]


def _request(**kwargs):
    from codeagent.llm.schemas import LlmRequest
    kwargs.setdefault("messages", _history())
    return LlmRequest(**kwargs)


# =============================================================================
# Normalization
# =============================================================================

class TestNormalization:
    """Test history conversion to each provider's message format."""

    def test_openai(self):
        from codeagent.llm.backends import normalize_messages_for_openai
        out = normalize_messages_for_openai(_history())
        assert [m["role"] for m in out] == ["system", "user", "assistant", "tool", "assistant"]
        call = out[2]["tool_calls"][0]
        assert call["id"] == "c1"
        assert json.loads(call["function"]["arguments"]) == {"path": "."}
        assert out[3] == {"role": "tool", "tool_call_id": "c1", "content": '{"output": "a.js"}'}

    def test_anthropic_merges_roles_and_splits_system(self):
        from codeagent.llm.backends import normalize_messages_for_anthropic
        system, out = normalize_messages_for_anthropic(_history())
        assert system == "Be brief."
        assert [m["role"] for m in out] == ["user", "assistant", "user", "assistant"]
        assert out[1]["content"] == [{"type": "tool_use", "id": "c1", "name": "list_directory", "input": {"path": "."}}]
        assert out[2]["content"][0]["type"] == "tool_result"
        assert out[2]["content"][0]["tool_use_id"] == "c1"

    def test_ollama(self):
        from codeagent.llm.backends import normalize_messages_for_ollama
        out = normalize_messages_for_ollama(_history())
        assert out[2]["tool_calls"] == [{"function": {"name": "list_directory", "arguments": {"path": "."}}}]
        assert out[3] == {"role": "tool", "content": '{"output": "a.js"}'}


# =============================================================================
# OpenAI
# =============================================================================

class _FakeCompletions:
    def __init__(self, response):
        self.response = response
        self.kwargs = None

    async def create(self, **kwargs):
        self.kwargs = kwargs
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


def _openai_client(response):
    completions = _FakeCompletions(response)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


class TestOpenAIBackend:
    """Test OpenAIBackend request kwargs and response parsing."""

    @pytest.mark.asyncio
    async def test_tool_call_response(self):
        from codeagent.llm.backends import OpenAIBackend
        from codeagent.llm.schemas import ToolSpec
        message = SimpleNamespace(
            content=None,
            tool_calls=[SimpleNamespace(
                id="call_9",
                function=SimpleNamespace(name="read_file", arguments='{"file_path": "a.js"}'),
            )],
        )
        client, completions = _openai_client(
            SimpleNamespace(choices=[SimpleNamespace(message=message, finish_reason="tool_calls")])
        )
        backend = OpenAIBackend(client=client)
        response = await backend.call(_request(
            tools=[ToolSpec(name="read_file")], temperature=0.3, top_p=0.9, max_tokens=100,
        ))

        assert response.text == ""
        assert response.finish_reason == "tool_calls"
        assert response.function_calls[0].name == "read_file"
        assert response.function_calls[0].args == {"file_path": "a.js"}
        assert response.function_calls[0].id == "call_9"
        assert completions.kwargs["model"] == "gpt-4.1"
        assert completions.kwargs["tool_choice"] == "auto"
        assert completions.kwargs["max_tokens"] == 100
        assert completions.kwargs["temperature"] == 0.3

    @pytest.mark.asyncio
    async def test_reasoning_models_skip_temperature(self):
        from codeagent.llm.backends import OpenAIBackend
        message = SimpleNamespace(content="hi", tool_calls=None)
        client, completions = _openai_client(
            SimpleNamespace(choices=[SimpleNamespace(message=message, finish_reason="stop")])
        )
        backend = OpenAIBackend(default_model="o3-mini", client=client)
        await backend.call(_request(temperature=0.3, max_tokens=50))
        assert "temperature" not in completions.kwargs
        assert completions.kwargs["max_completion_tokens"] == 50

    @pytest.mark.asyncio
    async def test_sdk_errors_are_mapped(self):
        from codeagent.errors import RateLimitError as BackendRateLimit
        from codeagent.llm.backends import OpenAIBackend

        class RateLimitError(Exception):
            status_code = 429
            response = SimpleNamespace(headers={"retry-after": "2"})

        client, _ = _openai_client(RateLimitError("slow down"))
        with pytest.raises(BackendRateLimit) as exc:
            await OpenAIBackend(client=client).call(_request())
        assert exc.value.retry_after == 2.0
        assert exc.value.provider == "openai"


# =============================================================================
# Anthropic
# =============================================================================

class _FakeMessages:
    def __init__(self, response):
        self.response = response
        self.kwargs = None

    async def create(self, **kwargs):
        self.kwargs = kwargs
        return self.response


class TestAnthropicBackend:
    """Test AnthropicBackend request kwargs and block parsing."""

    @pytest.mark.asyncio
    async def test_text_and_tool_use_blocks(self):
        from codeagent.llm.backends import AnthropicBackend
        response = SimpleNamespace(
            content=[
                SimpleNamespace(type="text", text="Reading it now."),
                SimpleNamespace(type="tool_use", id="tu_1", name="read_file", input={"file_path": "a.js"}),
            ],
            stop_reason="tool_use",
        )
        messages = _FakeMessages(response)
        chunks = []
        backend = AnthropicBackend(client=SimpleNamespace(messages=messages))
        out = await backend.call(_request(temperature=0.2, top_k=40), on_text=chunks.append)

        assert out.text == "Reading it now."
        assert out.finish_reason == "tool_use"
        assert out.function_calls[0].id == "tu_1"
        assert chunks == ["Reading it now."]
        assert messages.kwargs["system"] == "Be brief."
        assert messages.kwargs["temperature"] == 0.2
        assert messages.kwargs["top_k"] == 40
        assert "tools" not in messages.kwargs


# =============================================================================
# Ollama
# =============================================================================

class TestOllamaBackend:
    """Test OllamaBackend over a mocked HTTP transport."""

    @pytest.mark.asyncio
    async def test_chat_round_trip(self):
        from codeagent.llm.backends import OllamaBackend
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["payload"] = json.loads(request.content)
            return httpx.Response(200, json={
                "message": {
                    "content": "",
                    "tool_calls": [{"function": {"name": "list_directory", "arguments": {"path": "src"}}}],
                },
                "done_reason": "stop",
            })

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            backend = OllamaBackend(http_client=client)
            out = await backend.call(_request(temperature=0.1, max_tokens=64))

        assert seen["url"] == "http://localhost:11434/api/chat"
        assert seen["payload"]["model"] == "llama3.1"
        assert seen["payload"]["options"] == {"temperature": 0.1, "num_predict": 64}
        assert out.function_calls[0].name == "list_directory"
        assert out.function_calls[0].args == {"path": "src"}

    @pytest.mark.asyncio
    async def test_busy_model_is_rate_limited(self):
        from codeagent.errors import RateLimitError
        from codeagent.llm.backends import OllamaBackend

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, json={"error": "busy"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(RateLimitError):
                await OllamaBackend(http_client=client).call(_request())

    @pytest.mark.asyncio
    async def test_connection_error_is_network_error(self):
        from codeagent.errors import NetworkError
        from codeagent.llm.backends import OllamaBackend

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(NetworkError):
                await OllamaBackend(http_client=client).call(_request())


class TestCreateBackend:
    """Test the provider factory."""

    def test_ollama_alias(self):
        from codeagent.llm.backends import OllamaBackend, create_backend
        backend = create_backend("local", "qwen2.5-coder")
        assert isinstance(backend, OllamaBackend)
        assert backend.default_model == "qwen2.5-coder"

    def test_unknown_provider(self):
        from codeagent.llm.backends import create_backend
        with pytest.raises(ValueError):
            create_backend("mystery")
