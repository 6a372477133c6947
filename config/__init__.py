# FILE: config/__init__.py
"""Configuration package for codeagent.

Contains:
- model_ranks.py: Model capability tiers and task-aware sampling defaults
- agent_settings.py: CODEAGENT_* environment settings
"""

from config.model_ranks import (
    MODEL_CAPABILITY_RANKS,
    get_capability_rank,
    get_rank_name,
    get_sampling_defaults,
)
from config.agent_settings import AgentSettings, estimate_tokens

__all__ = [
    "MODEL_CAPABILITY_RANKS",
    "get_capability_rank",
    "get_rank_name",
    "get_sampling_defaults",
    "AgentSettings",
    "estimate_tokens",
]
