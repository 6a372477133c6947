# FILE: codeagent/errors.py
"""
Exception hierarchy for the agent execution core.

Backend errors carry a retryability flag that the retry driver consults.
Tool failures are NOT exceptions: the executor turns them into typed
ToolResult errors so the model can self-correct.
"""

from __future__ import annotations

from typing import Optional


class AgentError(Exception):
    """Base class for every error raised by codeagent."""


# =============================================================================
# Script errors
# =============================================================================

class ScriptParseError(AgentError):
    def __init__(self, message: str, source: Optional[str] = None, line: Optional[int] = None):
        self.source = source
        self.line = line
        where = ""
        if source:
            where = f" ({source}{':' + str(line) if line else ''})"
        super().__init__(f"{message}{where}")


class ScriptNotFoundError(AgentError):
    def __init__(self, name: str, searched: Optional[list] = None):
        self.name = name
        self.searched = list(searched or [])
        super().__init__(f"Script not found: {name}")


# =============================================================================
# Backend errors
# =============================================================================

class BackendError(AgentError):
    """An outbound LLM call failed."""

    retryable = False

    def __init__(self, message: str, *, provider: Optional[str] = None, status_code: Optional[int] = None):
        self.provider = provider
        self.status_code = status_code
        super().__init__(message)


class RateLimitError(BackendError):
    retryable = True

    def __init__(self, message: str, *, retry_after: Optional[float] = None, **kwargs):
        self.retry_after = retry_after
        super().__init__(message, **kwargs)


class NetworkError(BackendError):
    retryable = True


class LlmTimeoutError(BackendError):
    """Hard timeout expired. Never retried automatically."""


class AuthenticationError(BackendError):
    pass


class InvalidRequestError(BackendError):
    pass


# =============================================================================
# Workspace / pipeline errors
# =============================================================================

class WorkspacePathError(AgentError):
    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Rejected path '{path}': {reason}")


class ManifestParseError(AgentError):
    pass


class BlueprintError(AgentError):
    """Pipeline-fatal blueprint failure (zero files, first-file failure)."""


class ExecutionCancelled(AgentError):
    pass


__all__ = [
    "AgentError",
    "ScriptParseError",
    "ScriptNotFoundError",
    "BackendError",
    "RateLimitError",
    "NetworkError",
    "LlmTimeoutError",
    "AuthenticationError",
    "InvalidRequestError",
    "WorkspacePathError",
    "ManifestParseError",
    "BlueprintError",
    "ExecutionCancelled",
]
