# FILE: codeagent/llm/backends.py
"""
LLM backend adapters.

Each adapter takes a provider-neutral LlmRequest and returns an LlmResponse
{text, finish_reason, function_calls}. Wire formats handled:
- OpenAI chat completions (AsyncOpenAI), including streamed deltas that
  are reassembled here; incremental text goes to the optional on_text
  callback
- Anthropic messages (AsyncAnthropic) with tool_use / tool_result blocks
- Local models through the Ollama HTTP API (httpx)

Adapters do not retry; LlmClient wraps them with the rate limiter, the
retry driver and the hard timeout. Provider exceptions are mapped onto the
BackendError taxonomy so the retry driver can decide.

v1.2 (2026-09-18): OpenAI streaming reassembly
v1.1 (2026-09-09): Ollama adapter
v1.0 (2026-09-02): OpenAI + Anthropic adapters
"""

from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx

from codeagent.errors import (
    AuthenticationError,
    BackendError,
    InvalidRequestError,
    NetworkError,
    RateLimitError,
)
from codeagent.llm.retry import to_backend_error
from codeagent.llm.schemas import (
    ChatMessage,
    FunctionCall,
    LlmRequest,
    LlmResponse,
    ToolSpec,
)

logger = logging.getLogger(__name__)

TextCallback = Callable[[str], None]


class LlmBackend(ABC):
    """call(request) -> LlmResponse, raising BackendError subclasses on failure."""

    provider: str = "unknown"

    def __init__(self, default_model: str):
        self.default_model = default_model

    @abstractmethod
    async def call(self, request: LlmRequest, on_text: Optional[TextCallback] = None) -> LlmResponse:
        raise NotImplementedError


# =============================================================================
# HELPERS
# =============================================================================

def _call_id(call: FunctionCall, index: int) -> str:
    return call.id or f"call_{index}_{call.name}"


def _parse_arguments(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        return {"_raw": raw}
    return parsed if isinstance(parsed, dict) else {"_raw": parsed}


def _build_openai_tools(tools: List[ToolSpec]) -> List[dict]:
    return [
        {
            "type": "function",
            "function": {
                "name": t.name,
                "description": (t.description or "")[:800],
                "parameters": t.input_schema,
            },
        }
        for t in tools
    ]


def _build_anthropic_tools(tools: List[ToolSpec]) -> List[dict]:
    return [
        {
            "name": t.name,
            "description": (t.description or "")[:800],
            "input_schema": t.input_schema,
        }
        for t in tools
    ]


def _supports_temperature(model_id: str) -> bool:
    """GPT-5.x and o-series only accept the default temperature."""
    m = (model_id or "").strip().lower()
    return not (m.startswith("gpt-5") or m.startswith("o1") or m.startswith("o3") or m.startswith("o4"))


def _openai_token_param_name(model_id: str) -> str:
    m = (model_id or "").strip().lower()
    if m.startswith("gpt-5") or m.startswith("o1") or m.startswith("o3") or m.startswith("o4"):
        return "max_completion_tokens"
    return "max_tokens"


def _map_sdk_error(e: Exception, provider: str) -> BackendError:
    """Map openai/anthropic SDK exceptions (same class names) to BackendError."""
    name = type(e).__name__
    status = getattr(e, "status_code", None)
    if name == "RateLimitError":
        retry_after = None
        response = getattr(e, "response", None)
        if response is not None:
            try:
                retry_after = float(response.headers.get("retry-after"))
            except (TypeError, ValueError):
                retry_after = None
        return RateLimitError(str(e), retry_after=retry_after, provider=provider, status_code=status)
    if name in ("APIConnectionError", "APITimeoutError"):
        return NetworkError(str(e), provider=provider)
    if name in ("AuthenticationError", "PermissionDeniedError"):
        return AuthenticationError(str(e), provider=provider, status_code=status)
    if name in ("BadRequestError", "UnprocessableEntityError", "NotFoundError"):
        return InvalidRequestError(str(e), provider=provider, status_code=status)
    if name == "InternalServerError" or (status is not None and status >= 500):
        return RateLimitError(str(e), provider=provider, status_code=status)
    return to_backend_error(e, provider)


# =============================================================================
# OPENAI
# =============================================================================

def normalize_messages_for_openai(messages: List[ChatMessage]) -> List[dict]:
    out: List[dict] = []
    call_index = 0
    for m in messages:
        if m.role == "tool" and m.function_response is not None:
            out.append({
                "role": "tool",
                "tool_call_id": m.function_response.id or f"call_{m.function_response.name}",
                "content": json.dumps(m.function_response.response, ensure_ascii=False),
            })
        elif m.role == "assistant" and m.function_calls:
            tool_calls = []
            for fc in m.function_calls:
                tool_calls.append({
                    "id": _call_id(fc, call_index),
                    "type": "function",
                    "function": {"name": fc.name, "arguments": json.dumps(fc.args, ensure_ascii=False)},
                })
                call_index += 1
            out.append({"role": "assistant", "content": m.text or "", "tool_calls": tool_calls})
        elif m.role in ("system", "user", "assistant"):
            out.append({"role": m.role, "content": m.text})
        else:
            out.append({"role": "user", "content": m.text})
    return out


class OpenAIBackend(LlmBackend):
    provider = "openai"

    def __init__(
        self,
        default_model: str = "gpt-4.1",
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        client: Any = None,
    ):
        super().__init__(default_model)
        if client is None:
            from openai import AsyncOpenAI

            client = AsyncOpenAI(api_key=api_key or os.getenv("OPENAI_API_KEY"), base_url=base_url)
        self._client = client

    def _kwargs(self, request: LlmRequest, model: str) -> dict:
        kwargs: Dict[str, Any] = dict(model=model, messages=normalize_messages_for_openai(request.messages))
        if request.tools:
            kwargs["tools"] = _build_openai_tools(request.tools)
            kwargs["tool_choice"] = "auto"
        if request.max_tokens:
            kwargs[_openai_token_param_name(model)] = int(request.max_tokens)
        if _supports_temperature(model):
            if request.temperature is not None:
                kwargs["temperature"] = float(request.temperature)
            if request.top_p is not None:
                kwargs["top_p"] = float(request.top_p)
        return kwargs

    async def call(self, request: LlmRequest, on_text: Optional[TextCallback] = None) -> LlmResponse:
        model = request.model or self.default_model
        kwargs = self._kwargs(request, model)
        try:
            if on_text is not None:
                return await self._call_streaming(kwargs, model, on_text)
            resp = await self._client.chat.completions.create(**kwargs)
        except BackendError:
            raise
        except Exception as e:
            raise _map_sdk_error(e, self.provider) from e

        choice = resp.choices[0]
        msg = choice.message
        calls = [
            FunctionCall(name=tc.function.name, args=_parse_arguments(tc.function.arguments), id=tc.id)
            for tc in (getattr(msg, "tool_calls", None) or [])
        ]
        return LlmResponse(
            text=msg.content or "",
            finish_reason=choice.finish_reason or "stop",
            function_calls=calls,
            model=model,
        )

    async def _call_streaming(self, kwargs: dict, model: str, on_text: TextCallback) -> LlmResponse:
        stream = await self._client.chat.completions.create(stream=True, **kwargs)
        text_parts: List[str] = []
        partial_calls: Dict[int, Dict[str, Any]] = {}
        finish_reason = "stop"

        async for chunk in stream:
            if not chunk.choices:
                continue
            choice = chunk.choices[0]
            delta = choice.delta
            if getattr(delta, "content", None):
                text_parts.append(delta.content)
                on_text(delta.content)
            for tc in getattr(delta, "tool_calls", None) or []:
                slot = partial_calls.setdefault(tc.index, {"id": None, "name": "", "arguments": ""})
                if tc.id:
                    slot["id"] = tc.id
                if tc.function is not None:
                    slot["name"] += tc.function.name or ""
                    slot["arguments"] += tc.function.arguments or ""
            if choice.finish_reason:
                finish_reason = choice.finish_reason

        calls = [
            FunctionCall(name=slot["name"], args=_parse_arguments(slot["arguments"]), id=slot["id"])
            for _, slot in sorted(partial_calls.items())
            if slot["name"]
        ]
        return LlmResponse(text="".join(text_parts), finish_reason=finish_reason, function_calls=calls, model=model)


# =============================================================================
# ANTHROPIC
# =============================================================================

def normalize_messages_for_anthropic(messages: List[ChatMessage]) -> Tuple[str, List[dict]]:
    """Split out the system prompt and merge consecutive same-role turns."""
    sys_parts: List[str] = []
    out: List[dict] = []
    call_index = 0

    def _append(role: str, blocks: List[dict]) -> None:
        if out and out[-1]["role"] == role:
            out[-1]["content"].extend(blocks)
        else:
            out.append({"role": role, "content": list(blocks)})

    for m in messages:
        if m.role == "system":
            if m.text:
                sys_parts.append(m.text)
        elif m.role == "tool" and m.function_response is not None:
            _append("user", [{
                "type": "tool_result",
                "tool_use_id": m.function_response.id or f"call_{m.function_response.name}",
                "content": json.dumps(m.function_response.response, ensure_ascii=False),
            }])
        elif m.role == "assistant":
            blocks: List[dict] = []
            if m.text:
                blocks.append({"type": "text", "text": m.text})
            for fc in m.function_calls:
                blocks.append({"type": "tool_use", "id": _call_id(fc, call_index), "name": fc.name, "input": fc.args})
                call_index += 1
            if blocks:
                _append("assistant", blocks)
        elif m.text:
            _append("user", [{"type": "text", "text": m.text}])

    return "\n\n".join(sys_parts).strip(), out


class AnthropicBackend(LlmBackend):
    provider = "anthropic"

    def __init__(
        self,
        default_model: str = "claude-sonnet-4-5-20250514",
        api_key: Optional[str] = None,
        client: Any = None,
        max_tokens: int = 8192,
    ):
        super().__init__(default_model)
        if client is None:
            import anthropic

            client = anthropic.AsyncAnthropic(api_key=api_key or os.getenv("ANTHROPIC_API_KEY"))
        self._client = client
        self._max_tokens = max_tokens

    async def call(self, request: LlmRequest, on_text: Optional[TextCallback] = None) -> LlmResponse:
        model = request.model or self.default_model
        system, running_messages = normalize_messages_for_anthropic(request.messages)

        create_kwargs: Dict[str, Any] = dict(
            model=model,
            messages=running_messages,
            max_tokens=min(request.max_tokens or self._max_tokens, 128000),
        )
        if system:
            create_kwargs["system"] = system
        if request.temperature is not None:
            create_kwargs["temperature"] = float(request.temperature)
        elif request.top_p is not None:
            create_kwargs["top_p"] = float(request.top_p)
        if request.top_k is not None:
            create_kwargs["top_k"] = int(request.top_k)
        # Anthropic expects 'tools' to be a proper list; do not pass None.
        if request.tools:
            create_kwargs["tools"] = _build_anthropic_tools(request.tools)

        try:
            resp = await self._client.messages.create(**create_kwargs)
        except Exception as e:
            raise _map_sdk_error(e, self.provider) from e

        text_parts: List[str] = []
        calls: List[FunctionCall] = []
        for b in resp.content or []:
            btype = getattr(b, "type", None)
            if btype == "text":
                text_parts.append(getattr(b, "text", ""))
            elif btype == "tool_use":
                calls.append(FunctionCall(name=b.name, args=dict(b.input or {}), id=b.id))

        text = "\n".join(t for t in text_parts if t).strip()
        if on_text is not None and text:
            on_text(text)
        return LlmResponse(
            text=text,
            finish_reason=getattr(resp, "stop_reason", None) or "end_turn",
            function_calls=calls,
            model=model,
        )


# =============================================================================
# OLLAMA (local models)
# =============================================================================

def normalize_messages_for_ollama(messages: List[ChatMessage]) -> List[dict]:
    out: List[dict] = []
    for m in messages:
        if m.role == "tool" and m.function_response is not None:
            out.append({"role": "tool", "content": json.dumps(m.function_response.response, ensure_ascii=False)})
        elif m.role == "assistant" and m.function_calls:
            out.append({
                "role": "assistant",
                "content": m.text or "",
                "tool_calls": [{"function": {"name": fc.name, "arguments": fc.args}} for fc in m.function_calls],
            })
        elif m.role in ("system", "user", "assistant"):
            out.append({"role": m.role, "content": m.text})
    return out


class OllamaBackend(LlmBackend):
    provider = "ollama"

    def __init__(
        self,
        default_model: str = "llama3.1",
        base_url: str = "http://localhost:11434",
        http_client: Optional[httpx.AsyncClient] = None,
        timeout_s: float = 300.0,
    ):
        super().__init__(default_model)
        self.base_url = base_url.rstrip("/")
        self._http = http_client
        self._timeout_s = timeout_s

    async def call(self, request: LlmRequest, on_text: Optional[TextCallback] = None) -> LlmResponse:
        model = request.model or self.default_model
        options: Dict[str, Any] = {}
        if request.temperature is not None:
            options["temperature"] = request.temperature
        if request.top_p is not None:
            options["top_p"] = request.top_p
        if request.top_k is not None:
            options["top_k"] = request.top_k
        if request.max_tokens:
            options["num_predict"] = request.max_tokens

        payload: Dict[str, Any] = {
            "model": model,
            "messages": normalize_messages_for_ollama(request.messages),
            "stream": False,
            "options": options,
        }
        if request.tools:
            payload["tools"] = _build_openai_tools(request.tools)

        client = self._http or httpx.AsyncClient(timeout=self._timeout_s)
        try:
            resp = await client.post(f"{self.base_url}/api/chat", json=payload)
            if resp.status_code == 429:
                raise RateLimitError("Local model busy (429)", provider=self.provider, status_code=429)
            resp.raise_for_status()
            data = resp.json()
        except BackendError:
            raise
        except httpx.HTTPStatusError as e:
            raise to_backend_error(e, self.provider) from e
        except httpx.HTTPError as e:
            raise NetworkError(f"{type(e).__name__}: {e}", provider=self.provider) from e
        finally:
            if self._http is None:
                await client.aclose()

        message = data.get("message") or {}
        calls = [
            FunctionCall(
                name=(tc.get("function") or {}).get("name", ""),
                args=_parse_arguments((tc.get("function") or {}).get("arguments")),
                id=f"call_{i}",
            )
            for i, tc in enumerate(message.get("tool_calls") or [])
        ]
        text = message.get("content") or ""
        if on_text is not None and text:
            on_text(text)
        return LlmResponse(
            text=text,
            finish_reason=data.get("done_reason") or "stop",
            function_calls=[c for c in calls if c.name],
            model=model,
        )


# =============================================================================
# FACTORY
# =============================================================================

def create_backend(provider: str, model: Optional[str] = None, **kwargs: Any) -> LlmBackend:
    p = (provider or "").strip().lower()
    if p == "openai":
        return OpenAIBackend(default_model=model or "gpt-4.1", **kwargs)
    if p == "anthropic":
        return AnthropicBackend(default_model=model or "claude-sonnet-4-5-20250514", **kwargs)
    if p in ("ollama", "local"):
        return OllamaBackend(default_model=model or "llama3.1", **kwargs)
    raise ValueError(f"Unknown provider: {provider}")


__all__ = [
    "LlmBackend",
    "TextCallback",
    "OpenAIBackend",
    "AnthropicBackend",
    "OllamaBackend",
    "create_backend",
    "normalize_messages_for_openai",
    "normalize_messages_for_anthropic",
    "normalize_messages_for_ollama",
]
