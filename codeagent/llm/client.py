# FILE: codeagent/llm/client.py
"""
LlmClient: the single path for outbound model calls.

Every call:
1. waits on the shared sliding-window rate limiter
2. runs the backend under a hard timeout (asyncio.wait_for)
3. is wrapped by the retry driver (rate-limit / network errors only)

A timeout raises LlmTimeoutError and is never retried; callers surface it
to the user.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, List, Optional

from codeagent.errors import LlmTimeoutError
from codeagent.llm.backends import LlmBackend, TextCallback
from codeagent.llm.rate_limiter import SlidingWindowRateLimiter
from codeagent.llm.retry import RetryPolicy, with_backoff
from codeagent.llm.schemas import ChatMessage, LlmRequest, LlmResponse, ToolSpec

logger = logging.getLogger(__name__)


class LlmClient:
    def __init__(
        self,
        backend: LlmBackend,
        *,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
        retry_policy: Optional[RetryPolicy] = None,
        timeout_s: float = 120.0,
        max_tokens: Optional[int] = None,
        sleep: Optional[Callable] = None,
    ):
        self.backend = backend
        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter()
        self.retry_policy = retry_policy or RetryPolicy()
        self.timeout_s = timeout_s
        self.max_tokens = max_tokens
        self._sleep = sleep
        self.call_count = 0

    @property
    def default_model(self) -> str:
        return self.backend.default_model

    async def complete(
        self,
        messages: List[ChatMessage],
        *,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
        top_k: Optional[int] = None,
        tools: Optional[List[ToolSpec]] = None,
        on_text: Optional[TextCallback] = None,
    ) -> LlmResponse:
        request = LlmRequest(
            messages=messages,
            model=model or self.backend.default_model,
            temperature=temperature,
            top_p=top_p,
            top_k=top_k,
            tools=tools or None,
            max_tokens=self.max_tokens,
        )

        async def _attempt() -> LlmResponse:
            await self.rate_limiter.acquire()
            self.call_count += 1
            try:
                return await asyncio.wait_for(
                    self.backend.call(request, on_text=on_text),
                    timeout=self.timeout_s,
                )
            except asyncio.TimeoutError:
                raise LlmTimeoutError(
                    f"Model call timed out after {self.timeout_s:.0f}s ({request.model})",
                    provider=self.backend.provider,
                )

        response = await with_backoff(
            _attempt,
            self.retry_policy,
            sleep=self._sleep,
            label=f"{self.backend.provider}:{request.model}",
        )
        logger.debug(
            f"[llm] {self.backend.provider}:{request.model} -> {len(response.text)} chars, "
            f"{len(response.function_calls)} calls"
        )
        return response


__all__ = ["LlmClient"]
