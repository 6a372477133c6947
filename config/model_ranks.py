# FILE: config/model_ranks.py
"""Model capability tiers and task-aware sampling defaults.

Tier levels:
  - frontier (3): GPT-5.2 Pro, Claude Opus, Gemini 3 Pro
  - pro (2): GPT-5.2, GPT-4.1, Claude Sonnet, Gemini 2.5 Pro
  - fast (1): GPT-5 mini, Claude Haiku, Gemini Flash, local models
  - unknown (0)

Sampling defaults are looked up by (task kind, tier). Stronger models get
lower code-generation temperatures than fast models.

v1.0 (2026-09-02): Tiers reused for per-call sampling defaults
"""

from __future__ import annotations

from typing import Dict, Optional, Tuple

# =============================================================================
# Capability Tier Mapping
# =============================================================================

MODEL_CAPABILITY_RANKS: Dict[str, int] = {
    # -------------------------------------------------------------------------
    # Frontier (rank 3)
    # -------------------------------------------------------------------------
    "gpt-5.2-pro": 3,
    "claude-opus-4-5-20251101": 3,
    "claude-opus-4-20250514": 3,
    "gemini-3-pro-preview": 3,
    "gemini-3-pro": 3,

    # -------------------------------------------------------------------------
    # Pro (rank 2)
    # -------------------------------------------------------------------------
    "gpt-5.2": 2,
    "gpt-5.1": 2,
    "gpt-5": 2,
    "gpt-4.1": 2,
    "gpt-4o": 2,
    "claude-sonnet-4-5-20250514": 2,
    "claude-sonnet-4-20250514": 2,
    "gemini-2.5-pro": 2,

    # -------------------------------------------------------------------------
    # Fast (rank 1)
    # -------------------------------------------------------------------------
    "gpt-5-mini": 1,
    "gpt-5-nano": 1,
    "gpt-4.1-mini": 1,
    "gpt-4.1-nano": 1,
    "gpt-4o-mini": 1,
    "claude-haiku-3-5-20241022": 1,
    "gemini-2.0-flash": 1,
    "gemini-2.5-flash": 1,
}

# Prefix fallbacks for model ids that carry date or size suffixes.
# Longest prefix wins.
MODEL_PREFIX_RANKS: Dict[str, int] = {
    "claude-opus": 3,
    "claude-sonnet": 2,
    "claude-haiku": 1,
    "gemini-3-pro": 3,
    "gemini-2.5-pro": 2,
    "gemini": 1,
    "gpt-5.2-pro": 3,
    "gpt-5": 2,
    "gpt-4.1": 2,
    "gpt-4o": 2,
    "llama": 1,
    "qwen": 1,
    "mistral": 1,
    "deepseek": 1,
    "codellama": 1,
}


def get_capability_rank(model_id: Optional[str]) -> int:
    """Returns rank (1-3) or 0 if unknown.

    Args:
        model_id: Model identifier string

    Returns:
        3 = frontier, 2 = pro, 1 = fast, 0 = unknown
    """
    if not model_id:
        return 0
    model = model_id.strip().lower()
    if model in MODEL_CAPABILITY_RANKS:
        return MODEL_CAPABILITY_RANKS[model]

    # -mini/-nano variants are always fast regardless of family
    if model.endswith("-mini") or model.endswith("-nano"):
        return 1

    best_len = 0
    rank = 0
    for prefix, value in MODEL_PREFIX_RANKS.items():
        if model.startswith(prefix) and len(prefix) > best_len:
            best_len = len(prefix)
            rank = value
    return rank


def get_rank_name(rank: int) -> str:
    """Get human-readable rank name."""
    return {3: "frontier", 2: "pro", 1: "fast", 0: "unknown"}.get(rank, "unknown")


# =============================================================================
# Task-Aware Sampling Defaults
# =============================================================================

# (temperature, top_p, top_k); top_k of None means "backend default"
SamplingTriple = Tuple[float, float, Optional[int]]

TASK_SAMPLING_DEFAULTS: Dict[str, Dict[int, SamplingTriple]] = {
    "code_generation": {
        3: (0.2, 0.90, 40),
        2: (0.3, 0.90, 40),
        1: (0.4, 0.95, 40),
        0: (0.3, 0.95, 40),
    },
    "problem_solving": {
        3: (0.3, 0.90, 40),
        2: (0.4, 0.92, 40),
        1: (0.5, 0.95, 50),
        0: (0.4, 0.95, 50),
    },
    "analysis": {
        3: (0.2, 0.85, 20),
        2: (0.3, 0.90, 30),
        1: (0.3, 0.90, 40),
        0: (0.3, 0.90, 40),
    },
    "default": {
        3: (0.7, 0.95, None),
        2: (0.7, 0.95, None),
        1: (0.8, 0.95, None),
        0: (0.7, 0.95, None),
    },
}


def get_sampling_defaults(task_kind: str, model_id: Optional[str]) -> SamplingTriple:
    """Look up (temperature, top_p, top_k) for a task kind and model."""
    table = TASK_SAMPLING_DEFAULTS.get(task_kind) or TASK_SAMPLING_DEFAULTS["default"]
    return table[get_capability_rank(model_id)]


__all__ = [
    "MODEL_CAPABILITY_RANKS",
    "MODEL_PREFIX_RANKS",
    "get_capability_rank",
    "get_rank_name",
    "SamplingTriple",
    "TASK_SAMPLING_DEFAULTS",
    "get_sampling_defaults",
]
