# FILE: codeagent/pipelines/__init__.py
"""New-project (blueprint) and existing-project (upgrade/debug) pipelines."""

from codeagent.pipelines.blueprint import Blueprint, FileSpec, parse_manifest, validate_blueprint
from codeagent.pipelines.blueprint_pipeline import BlueprintPipeline, operation_id_for
from codeagent.pipelines.blueprint_sort import SortResult, order_files
from codeagent.pipelines.dependency_index import DependencyIndex
from codeagent.pipelines.intent import (
    IntentClassification,
    IntentKind,
    classify_intent,
    is_file_generation_task,
    looks_like_new_project,
    looks_like_upgrade_request,
)
from codeagent.pipelines.result import PipelineResult
from codeagent.pipelines.rollback import WriteTransaction
from codeagent.pipelines.upgrade import UpgradePipeline

__all__ = [
    "Blueprint",
    "FileSpec",
    "parse_manifest",
    "validate_blueprint",
    "BlueprintPipeline",
    "operation_id_for",
    "SortResult",
    "order_files",
    "DependencyIndex",
    "IntentClassification",
    "IntentKind",
    "classify_intent",
    "is_file_generation_task",
    "looks_like_new_project",
    "looks_like_upgrade_request",
    "PipelineResult",
    "WriteTransaction",
    "UpgradePipeline",
]
