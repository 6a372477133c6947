# FILE: codeagent/llm/__init__.py
"""LLM access: schemas, backend adapters, rate limiting, retry, client."""

from codeagent.llm.schemas import (
    TaskKind,
    FunctionCall,
    FunctionResponse,
    ChatMessage,
    ToolSpec,
    LlmResponse,
    LlmRequest,
)
from codeagent.llm.rate_limiter import SlidingWindowRateLimiter
from codeagent.llm.retry import RetryPolicy, with_backoff, classify_error, ErrorCategory
from codeagent.llm.backends import LlmBackend, create_backend
from codeagent.llm.client import LlmClient

__all__ = [
    "TaskKind",
    "FunctionCall",
    "FunctionResponse",
    "ChatMessage",
    "ToolSpec",
    "LlmResponse",
    "LlmRequest",
    "SlidingWindowRateLimiter",
    "RetryPolicy",
    "with_backoff",
    "classify_error",
    "ErrorCategory",
    "LlmBackend",
    "create_backend",
    "LlmClient",
]
