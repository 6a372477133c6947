# FILE: codeagent/pipelines/blueprint.py
"""
Blueprint manifest: models, parsing and validation.

Manifest JSON (Phase 1 output):
    {
      "projectType": "nodejs",
      "projectDescription": "...",
      "files": [
        {"path": "src/app.js", "type": "code", "dependencies": ["src/db.js"],
         "description": "...", "exports": ["createApp"], "imports": ["express"],
         "packageDependencies": ["express"], "relatedFiles": []}
      ]
    }

Parsing strips markdown fences and parses the substring between the first
'{' and the last '}'. Validation never raises except for zero usable
files; everything else is a warning, and invalid paths are filtered out.
"""

from __future__ import annotations

import fnmatch
import json
import logging
import posixpath
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from codeagent.errors import BlueprintError, ManifestParseError
from codeagent.tools.workspace import Workspace

logger = logging.getLogger(__name__)

CONFIG_FILENAMES = {
    "package.json", "tsconfig.json", "jsconfig.json", ".env", ".env.example",
    ".gitignore", ".dockerignore", "dockerfile", "docker-compose.yml",
    "docker-compose.yaml", "requirements.txt", "pyproject.toml", "setup.cfg",
    "setup.py", "pipfile", "cargo.toml", "go.mod", "pom.xml", "build.gradle",
    "makefile", "procfile", ".prettierrc", ".eslintrc", ".babelrc",
    "composer.json", "gemfile", "manifest.json", "vercel.json", "netlify.toml",
}

CONFIG_PATTERNS = (
    "*.config.js", "*.config.ts", "*.config.mjs", "*.config.cjs", "*.config.json",
    ".eslintrc*", ".prettierrc*", ".babelrc*", "tsconfig.*.json", "docker-compose.*",
)

_FENCE_RE = re.compile(r"```[A-Za-z0-9_+-]*\s*\n?")
_INVALID_PATH_CHARS = set('<>"|?*')


def is_config_filename(path: str) -> bool:
    name = posixpath.basename(path.replace("\\", "/")).lower()
    if name in CONFIG_FILENAMES:
        return True
    return any(fnmatch.fnmatch(name, p) for p in CONFIG_PATTERNS)


def _as_str_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value if v is not None and str(v).strip()]
    return [str(value)]


class FileSpec(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    path: str
    type: str = "code"
    dependencies: List[str] = Field(default_factory=list)
    description: str = ""
    exports: List[str] = Field(default_factory=list)
    imports: List[str] = Field(default_factory=list)
    package_dependencies: List[str] = Field(default_factory=list, alias="packageDependencies")
    related_files: List[str] = Field(default_factory=list, alias="relatedFiles")

    @field_validator("dependencies", "exports", "imports", "package_dependencies", "related_files", mode="before")
    @classmethod
    def _coerce_list(cls, value: Any) -> List[str]:
        return _as_str_list(value)

    @field_validator("type", "description", mode="before")
    @classmethod
    def _coerce_str(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @property
    def is_config(self) -> bool:
        return self.type.strip().lower() == "config" or is_config_filename(self.path)


class Blueprint(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    project_type: str = Field("", alias="projectType")
    project_description: str = Field("", alias="projectDescription")
    files: List[FileSpec] = Field(default_factory=list)

    @field_validator("project_type", "project_description", mode="before")
    @classmethod
    def _coerce_str(cls, value: Any) -> str:
        return "" if value is None else str(value)

    def all_package_dependencies(self) -> List[str]:
        seen: List[str] = []
        for f in self.files:
            for dep in f.package_dependencies:
                if dep not in seen:
                    seen.append(dep)
        return seen


# =============================================================================
# PARSING
# =============================================================================

def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", text or "").replace("```", "")


def extract_json_object(text: str) -> str:
    cleaned = strip_code_fences(text)
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start < 0 or end <= start:
        raise ManifestParseError("No JSON object found in response")
    return cleaned[start:end + 1]


def parse_manifest(text: str) -> Blueprint:
    raw = extract_json_object(text)
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ManifestParseError(f"Manifest is not valid JSON: {e}")
    if not isinstance(data, dict):
        raise ManifestParseError("Manifest must be a JSON object")
    files = data.get("files")
    if files is not None and not isinstance(files, list):
        raise ManifestParseError("'files' must be a list")
    # Drop entries that are not objects with a path before model validation
    if isinstance(files, list):
        data["files"] = [f for f in files if isinstance(f, dict) and f.get("path")]
    try:
        return Blueprint.model_validate(data)
    except ValidationError as e:
        raise ManifestParseError(f"Manifest does not match schema: {e}")


# =============================================================================
# VALIDATION
# =============================================================================

def normalize_manifest_path(path: str) -> str:
    p = path.strip().replace("\\", "/")
    while p.startswith("./"):
        p = p[2:]
    return posixpath.normpath(p) if p else p


def resolve_dependency(dep: str, known_paths: List[str]) -> Optional[str]:
    """Map a declared dependency onto a manifest path (exact, normalized, stem or basename)."""
    if dep in known_paths:
        return dep
    norm = normalize_manifest_path(dep)
    if norm in known_paths:
        return norm
    stem_matches = [p for p in known_paths if posixpath.splitext(p)[0] == posixpath.splitext(norm)[0]]
    if len(stem_matches) == 1:
        return stem_matches[0]
    base = posixpath.basename(norm)
    base_matches = [p for p in known_paths if posixpath.basename(p) == base]
    if len(base_matches) == 1:
        return base_matches[0]
    base_stem = posixpath.splitext(base)[0]
    stem_base_matches = [p for p in known_paths if posixpath.splitext(posixpath.basename(p))[0] == base_stem]
    if len(stem_base_matches) == 1:
        return stem_base_matches[0]
    return None


def _path_problem(path: str, workspace: Optional[Workspace]) -> Optional[str]:
    if not path or not path.strip():
        return "empty path"
    if path.endswith("/"):
        return "path is a directory"
    if any(c in _INVALID_PATH_CHARS for c in path):
        return "invalid characters"
    if workspace is not None:
        return None if workspace.is_valid_path(path) else "outside workspace"
    norm = normalize_manifest_path(path)
    if norm.startswith("/") or norm.startswith("..") or re.match(r"^[A-Za-z]:", norm):
        return "outside workspace"
    return None


@dataclass
class ValidationReport:
    files: List[FileSpec] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    dependency_map: Dict[str, List[str]] = field(default_factory=dict)
    has_cycles: bool = False


def _find_cycle_nodes(deps: Dict[str, List[str]]) -> List[str]:
    WHITE, GREY, BLACK = 0, 1, 2
    color = {n: WHITE for n in deps}
    in_cycle: List[str] = []

    for root in deps:
        if color[root] != WHITE:
            continue
        stack = [(root, iter(deps[root]))]
        color[root] = GREY
        path = [root]
        while stack:
            node, it = stack[-1]
            nxt = next(it, None)
            if nxt is None:
                color[node] = BLACK
                stack.pop()
                path.pop()
                continue
            if color.get(nxt) == GREY:
                for n in path[path.index(nxt):]:
                    if n not in in_cycle:
                        in_cycle.append(n)
            elif color.get(nxt) == WHITE:
                color[nxt] = GREY
                stack.append((nxt, iter(deps[nxt])))
                path.append(nxt)
    return in_cycle


def validate_blueprint(
    blueprint: Blueprint,
    workspace: Optional[Workspace] = None,
    max_files: int = 100,
) -> ValidationReport:
    report = ValidationReport()
    if not blueprint.files:
        raise BlueprintError("Blueprint contains no files")

    seen: set = set()
    for spec in blueprint.files:
        problem = _path_problem(spec.path, workspace)
        if problem:
            report.warnings.append(f"Skipping invalid path '{spec.path}': {problem}")
            continue
        norm = normalize_manifest_path(spec.path)
        if norm in seen:
            report.warnings.append(f"Duplicate file '{norm}' ignored")
            continue
        seen.add(norm)
        report.files.append(spec.model_copy(update={"path": norm}))

    if len(report.files) > max_files:
        report.warnings.append(f"Blueprint lists {len(report.files)} files; only the first {max_files} are generated")
        report.files = report.files[:max_files]

    if not report.files:
        raise BlueprintError("Blueprint contains no valid files")

    known = [f.path for f in report.files]
    for spec in report.files:
        resolved: List[str] = []
        for dep in spec.dependencies:
            target = resolve_dependency(dep, known)
            if target is None:
                report.warnings.append(f"{spec.path}: unresolved dependency '{dep}'")
            elif target != spec.path and target not in resolved:
                resolved.append(target)
        report.dependency_map[spec.path] = resolved

    cycle_nodes = _find_cycle_nodes(report.dependency_map)
    if cycle_nodes:
        report.has_cycles = True
        report.warnings.append(f"Dependency cycle among: {', '.join(cycle_nodes)}")

    for w in report.warnings:
        logger.warning(f"[blueprint] {w}")
    return report


__all__ = [
    "CONFIG_FILENAMES",
    "is_config_filename",
    "FileSpec",
    "Blueprint",
    "strip_code_fences",
    "extract_json_object",
    "parse_manifest",
    "normalize_manifest_path",
    "resolve_dependency",
    "ValidationReport",
    "validate_blueprint",
]
