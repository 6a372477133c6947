# FILE: codeagent/engine/context.py
"""
RunContext: everything an interpreter run needs, constructed once and
passed down explicitly.

Lifetime: one context per workspace session. The script cache, checkpoint
store, dependency index and rate limiter live here rather than in module
globals, so two contexts never share state by accident. Concurrent runs
may share a context (the rate limiter and caches are safe for that); each
run still owns its ConversationState.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from config.agent_settings import AgentSettings
from codeagent.llm.backends import LlmBackend
from codeagent.llm.client import LlmClient
from codeagent.llm.rate_limiter import SlidingWindowRateLimiter
from codeagent.llm.retry import RetryPolicy
from codeagent.orchestrator.checkpoints import CheckpointStore
from codeagent.orchestrator.tool_loop import ToolCallOrchestrator
from codeagent.pipelines.dependency_index import DependencyIndex
from codeagent.script.loader import ScriptLoader
from codeagent.tools.base import CancellationToken, ToolRegistry
from codeagent.tools.executor import ToolExecutor
from codeagent.tools.file_tools import build_default_registry
from codeagent.tools.workspace import Workspace

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]


@dataclass
class RunContext:
    llm: LlmClient
    settings: AgentSettings
    workspace: Workspace
    registry: ToolRegistry
    executor: ToolExecutor
    loader: ScriptLoader
    checkpoints: CheckpointStore
    dependency_index: DependencyIndex = field(default_factory=DependencyIndex)
    cancel_token: CancellationToken = field(default_factory=CancellationToken)
    instruction_handlers: Dict[str, Any] = field(default_factory=dict)
    on_chunk: Optional[ProgressCallback] = None
    sleep: Callable[[float], Any] = asyncio.sleep

    @classmethod
    def create(
        cls,
        backend: LlmBackend,
        workspace_root: str,
        *,
        settings: Optional[AgentSettings] = None,
        search_roots: Optional[Sequence[str]] = None,
        registry: Optional[ToolRegistry] = None,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
        checkpoints: Optional[CheckpointStore] = None,
        on_chunk: Optional[ProgressCallback] = None,
        sleep: Optional[Callable[[float], Any]] = None,
    ) -> "RunContext":
        settings = settings or AgentSettings.from_env()
        sleep = sleep or asyncio.sleep
        workspace = Workspace(workspace_root)

        llm = LlmClient(
            backend,
            rate_limiter=rate_limiter or SlidingWindowRateLimiter(
                settings.rate_limit_max_requests, settings.rate_limit_window_s
            ),
            retry_policy=RetryPolicy(
                max_attempts=settings.retry_max_attempts,
                initial_delay_s=settings.retry_initial_delay_s,
                max_delay_s=settings.retry_max_delay_s,
                multiplier=settings.retry_multiplier,
            ),
            timeout_s=settings.llm_timeout_s,
            max_tokens=settings.max_tokens_for(backend.provider),
            sleep=sleep,
        )
        registry = registry or build_default_registry(workspace, settings.max_file_lines)
        roots: List[str] = list(search_roots or [])
        if checkpoints is None:
            checkpoints = CheckpointStore(
                settings.checkpoint_dir,
                retention_hours=settings.checkpoint_retention_hours,
                enabled=settings.checkpoints_enabled,
            )

        logger.info(
            f"[context] workspace={workspace.root} provider={backend.provider} "
            f"model={backend.default_model} tools={registry.names()}"
        )
        return cls(
            llm=llm,
            settings=settings,
            workspace=workspace,
            registry=registry,
            executor=ToolExecutor(registry, timeout_s=settings.tool_timeout_s),
            loader=ScriptLoader(roots),
            checkpoints=checkpoints,
            on_chunk=on_chunk,
            sleep=sleep,
        )

    def progress(self, text: str) -> None:
        logger.info(f"[progress] {text}")
        if self.on_chunk is not None:
            self.on_chunk(text)

    def new_orchestrator(self, **kwargs: Any) -> ToolCallOrchestrator:
        kwargs.setdefault("on_chunk", self.on_chunk)
        return ToolCallOrchestrator(
            self.llm,
            self.executor,
            max_depth=self.settings.max_continuation_depth,
            repeat_window=self.settings.repeat_window,
            max_history_messages=self.settings.max_chat_history_messages,
            cancel_token=self.cancel_token,
            **kwargs,
        )


__all__ = ["RunContext", "ProgressCallback"]
