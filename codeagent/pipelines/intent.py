# FILE: codeagent/pipelines/intent.py
"""
Request intent heuristics.

Three questions are answered without calling a model:
- does this message ask to fix or upgrade an existing project?
- does it ask for a brand-new project?
- is it a file-generation task (used by the orchestrator's stall check)?

classify_intent() scores fix vs upgrade keywords and returns a confidence:
both present 0.85, two or more hits in one category 0.8, a single hit
0.6, nothing 0.3. Stack traces count as two fix hits.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Pattern, Sequence

logger = logging.getLogger(__name__)


class IntentKind(str, Enum):
    FIX = "fix"
    UPGRADE = "upgrade"
    BOTH = "both"
    UNKNOWN = "unknown"


ERROR_KEYWORDS = (
    "error", "exception", "failed", "failure", "crash", "crashes", "bug",
    "doesn't work", "does not work", "not working", "broken", "undefined",
    "null pointer", "cannot", "can't", "unable", "invalid", "missing",
    "compile error", "runtime error", "syntax error", "type error", "fix",
    "debug", "stack trace", "traceback",
)

UPGRADE_KEYWORDS = (
    "upgrade", "enhance", "improve", "add feature", "new feature", "implement",
    "add", "extend", "update to", "upgrade to", "migrate", "refactor",
    "modify", "change", "optimize", "rename", "replace",
)

CREATE_KEYWORDS = (
    "create", "build", "generate", "make", "scaffold", "bootstrap", "set up",
    "setup", "start a", "write", "develop", "init", "initialize",
)

PROJECT_NOUNS = (
    "app", "application", "project", "website", "web site", "site", "server",
    "api", "service", "backend", "frontend", "game", "cli", "tool", "bot",
    "program", "dashboard", "library", "extension", "microservice", "webapp",
)

_STACK_TRACE_RE = re.compile(
    r"(Traceback \(most recent call last\)"
    r"|^\s*at\s+\S+\s*\(.*:\d+(:\d+)?\)"
    r"|^\s*at\s+/\S+:\d+"
    r"|File \"[^\"]+\", line \d+"
    r"|\b(?:Reference|Type|Syntax|Range)Error\b"
    r"|\bjava\.lang\.\w+"
    r"|\b\w+Exception\b)",
    re.MULTILINE,
)

_FILE_GEN_RE = re.compile(
    r"\b(create|write|generate|make|build|scaffold)\b.{0,60}\b(files?|project|app|application|website|server|api)\b",
    re.IGNORECASE | re.DOTALL,
)


def _keyword_pattern(words: Sequence[str]) -> List[Pattern[str]]:
    return [re.compile(r"(?<![\w])" + re.escape(w) + r"(?![\w])", re.IGNORECASE) for w in words]


_ERROR_PATTERNS = list(zip(ERROR_KEYWORDS, _keyword_pattern(ERROR_KEYWORDS)))
_UPGRADE_PATTERNS = list(zip(UPGRADE_KEYWORDS, _keyword_pattern(UPGRADE_KEYWORDS)))
_CREATE_PATTERNS = _keyword_pattern(CREATE_KEYWORDS)
_NOUN_PATTERNS = _keyword_pattern(PROJECT_NOUNS)


@dataclass
class IntentClassification:
    kind: IntentKind
    confidence: float
    indicators: List[str] = field(default_factory=list)
    source: str = "rules"

    @property
    def needs_fix(self) -> bool:
        return self.kind in (IntentKind.FIX, IntentKind.BOTH)

    @property
    def needs_upgrade(self) -> bool:
        return self.kind in (IntentKind.UPGRADE, IntentKind.BOTH)


def has_stack_trace(message: str) -> bool:
    return bool(_STACK_TRACE_RE.search(message or ""))


def _hits(message: str, patterns) -> List[str]:
    return [word for word, pat in patterns if pat.search(message)]


def classify_intent(message: str) -> IntentClassification:
    text = message or ""
    error_hits = _hits(text, _ERROR_PATTERNS)
    upgrade_hits = _hits(text, _UPGRADE_PATTERNS)
    error_score = len(error_hits)
    if has_stack_trace(text):
        error_hits.append("stack trace")
        error_score += 2

    indicators = error_hits + upgrade_hits
    if error_score and upgrade_hits:
        result = IntentClassification(IntentKind.BOTH, 0.85, indicators)
    elif error_score:
        result = IntentClassification(IntentKind.FIX, 0.8 if error_score >= 2 else 0.6, indicators)
    elif upgrade_hits:
        result = IntentClassification(IntentKind.UPGRADE, 0.8 if len(upgrade_hits) >= 2 else 0.6, indicators)
    else:
        result = IntentClassification(IntentKind.UNKNOWN, 0.3, indicators)

    logger.debug(f"[intent] {result.kind.value} ({result.confidence:.2f}) indicators={indicators}")
    return result


def looks_like_upgrade_request(message: str, code_file_count: int, min_code_files: int = 1) -> bool:
    """Error pattern or modification keyword, and enough existing code to work on."""
    if code_file_count < min_code_files:
        return False
    text = message or ""
    if has_stack_trace(text):
        return True
    return bool(_hits(text, _ERROR_PATTERNS) or _hits(text, _UPGRADE_PATTERNS))


def looks_like_new_project(message: str) -> bool:
    text = message or ""
    return any(p.search(text) for p in _CREATE_PATTERNS) and any(p.search(text) for p in _NOUN_PATTERNS)


def is_file_generation_task(message: str) -> bool:
    return bool(_FILE_GEN_RE.search(message or ""))


__all__ = [
    "IntentKind",
    "IntentClassification",
    "ERROR_KEYWORDS",
    "UPGRADE_KEYWORDS",
    "classify_intent",
    "has_stack_trace",
    "looks_like_upgrade_request",
    "looks_like_new_project",
    "is_file_generation_task",
]
