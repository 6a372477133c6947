# FILE: config/agent_settings.py
"""Environment-driven settings for the agent execution core.

Every value can be overridden with a CODEAGENT_* environment variable.
Entry points call load_dotenv() before importing this module so .env
files are honoured.

Values are read once at import into module constants; AgentSettings
snapshots them so tests and services can build variants with
dataclasses.replace() instead of mutating the environment.
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from typing import Dict


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


# =============================================================================
# Outbound call limits
# =============================================================================

RATE_LIMIT_MAX_REQUESTS = int(os.getenv("CODEAGENT_RATE_LIMIT_MAX_REQUESTS") or "10")
RATE_LIMIT_WINDOW_S = float(os.getenv("CODEAGENT_RATE_LIMIT_WINDOW_S") or "1.0")

RETRY_MAX_ATTEMPTS = int(os.getenv("CODEAGENT_RETRY_MAX_ATTEMPTS") or "5")
RETRY_INITIAL_DELAY_S = float(os.getenv("CODEAGENT_RETRY_INITIAL_DELAY_S") or "1.0")
RETRY_MAX_DELAY_S = float(os.getenv("CODEAGENT_RETRY_MAX_DELAY_S") or "10.0")
RETRY_MULTIPLIER = float(os.getenv("CODEAGENT_RETRY_MULTIPLIER") or "2.0")

LLM_TIMEOUT_S = float(os.getenv("CODEAGENT_LLM_TIMEOUT_S") or "120")
TOOL_TIMEOUT_S = float(os.getenv("CODEAGENT_TOOL_TIMEOUT_S") or "60")

# =============================================================================
# Conversation bounds
# =============================================================================

MAX_CONTINUATION_DEPTH = int(os.getenv("CODEAGENT_MAX_CONTINUATION_DEPTH") or "10")
REPEAT_WINDOW = int(os.getenv("CODEAGENT_REPEAT_WINDOW") or "10")
LOOP_MAX_ITERATIONS = int(os.getenv("CODEAGENT_LOOP_MAX_ITERATIONS") or "1000")
MAX_CHAT_HISTORY_MESSAGES = int(os.getenv("CODEAGENT_MAX_CHAT_HISTORY") or "50")
CHARS_PER_TOKEN = 4
STALL_TARGET_FILE_COUNT = int(os.getenv("CODEAGENT_STALL_TARGET_FILES") or "3")

# =============================================================================
# Pipelines
# =============================================================================

FILE_GEN_MAX_RETRIES = int(os.getenv("CODEAGENT_FILE_GEN_MAX_RETRIES") or "20")
FILE_GEN_RETRY_DELAY_S = float(os.getenv("CODEAGENT_FILE_GEN_RETRY_DELAY_S") or "1.0")
MAX_BLUEPRINT_FILES = int(os.getenv("CODEAGENT_MAX_BLUEPRINT_FILES") or "100")
MAX_FILE_LINES = int(os.getenv("CODEAGENT_MAX_FILE_LINES") or "500")
ERROR_CONTEXT_LINES = int(os.getenv("CODEAGENT_ERROR_CONTEXT_LINES") or "10")
UPGRADE_MIN_CODE_FILES = int(os.getenv("CODEAGENT_UPGRADE_MIN_CODE_FILES") or "1")
INTENT_CONFIDENCE_THRESHOLD = float(os.getenv("CODEAGENT_INTENT_CONFIDENCE_THRESHOLD") or "0.5")
PIPELINES_ENABLED = _env_bool("CODEAGENT_PIPELINES_ENABLED", True)

# =============================================================================
# Checkpoints
# =============================================================================

CHECKPOINTS_ENABLED = _env_bool("CODEAGENT_CHECKPOINTS_ENABLED", True)
CHECKPOINT_DIR = os.getenv("CODEAGENT_CHECKPOINT_DIR") or os.path.join(
    tempfile.gettempdir(), "codeagent-checkpoints"
)
CHECKPOINT_RETENTION_HOURS = float(os.getenv("CODEAGENT_CHECKPOINT_RETENTION_HOURS") or "24")

# =============================================================================
# Providers
# =============================================================================

DEFAULT_PROVIDER = os.getenv("CODEAGENT_PROVIDER") or "openai"
DEFAULT_MODEL = os.getenv("CODEAGENT_MODEL") or "gpt-4.1"
OLLAMA_BASE_URL = os.getenv("CODEAGENT_OLLAMA_URL") or "http://localhost:11434"
LOG_LEVEL = os.getenv("CODEAGENT_LOG_LEVEL") or "INFO"

# Per-provider output token caps
MAX_TOKENS_BY_PROVIDER: Dict[str, int] = {
    "openai": 16384,
    "anthropic": 8192,
    "ollama": 4096,
}


@dataclass
class AgentSettings:
    rate_limit_max_requests: int = RATE_LIMIT_MAX_REQUESTS
    rate_limit_window_s: float = RATE_LIMIT_WINDOW_S
    retry_max_attempts: int = RETRY_MAX_ATTEMPTS
    retry_initial_delay_s: float = RETRY_INITIAL_DELAY_S
    retry_max_delay_s: float = RETRY_MAX_DELAY_S
    retry_multiplier: float = RETRY_MULTIPLIER
    llm_timeout_s: float = LLM_TIMEOUT_S
    tool_timeout_s: float = TOOL_TIMEOUT_S
    max_continuation_depth: int = MAX_CONTINUATION_DEPTH
    repeat_window: int = REPEAT_WINDOW
    loop_max_iterations: int = LOOP_MAX_ITERATIONS
    max_chat_history_messages: int = MAX_CHAT_HISTORY_MESSAGES
    stall_target_file_count: int = STALL_TARGET_FILE_COUNT
    file_gen_max_retries: int = FILE_GEN_MAX_RETRIES
    file_gen_retry_delay_s: float = FILE_GEN_RETRY_DELAY_S
    max_blueprint_files: int = MAX_BLUEPRINT_FILES
    max_file_lines: int = MAX_FILE_LINES
    error_context_lines: int = ERROR_CONTEXT_LINES
    upgrade_min_code_files: int = UPGRADE_MIN_CODE_FILES
    intent_confidence_threshold: float = INTENT_CONFIDENCE_THRESHOLD
    pipelines_enabled: bool = PIPELINES_ENABLED
    checkpoints_enabled: bool = CHECKPOINTS_ENABLED
    checkpoint_dir: str = CHECKPOINT_DIR
    checkpoint_retention_hours: float = CHECKPOINT_RETENTION_HOURS
    default_provider: str = DEFAULT_PROVIDER
    default_model: str = DEFAULT_MODEL
    max_tokens_by_provider: Dict[str, int] = field(
        default_factory=lambda: dict(MAX_TOKENS_BY_PROVIDER)
    )

    @classmethod
    def from_env(cls) -> "AgentSettings":
        return cls()

    def max_tokens_for(self, provider: str) -> int:
        return self.max_tokens_by_provider.get(provider, 4096)


def estimate_tokens(text: str) -> int:
    """Rough token estimate used for context trimming decisions."""
    return (len(text or "") + CHARS_PER_TOKEN - 1) // CHARS_PER_TOKEN


__all__ = [
    "AgentSettings",
    "estimate_tokens",
    "RATE_LIMIT_MAX_REQUESTS",
    "RATE_LIMIT_WINDOW_S",
    "LLM_TIMEOUT_S",
    "MAX_CONTINUATION_DEPTH",
    "LOOP_MAX_ITERATIONS",
    "CHECKPOINT_DIR",
    "DEFAULT_PROVIDER",
    "DEFAULT_MODEL",
    "OLLAMA_BASE_URL",
    "LOG_LEVEL",
    "MAX_TOKENS_BY_PROVIDER",
]
