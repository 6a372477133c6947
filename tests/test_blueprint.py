# FILE: tests/test_blueprint.py
"""
Tests for codeagent/pipelines/blueprint.py and blueprint_sort.py
Manifest parsing, validation warnings and generation order.
"""

import sys
from pathlib import Path

_project_root = Path(__file__).parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

import json

import pytest


def _blueprint(*files):
    from codeagent.pipelines.blueprint import Blueprint
    return Blueprint.model_validate({"projectType": "nodejs", "files": list(files)})


# =============================================================================
# Parsing
# =============================================================================

class TestParseManifest:
    """Test JSON extraction and model validation."""

    def test_fenced_manifest_with_aliases(self):
        from codeagent.pipelines.blueprint import parse_manifest
        text = (
            "Here is the plan:\n```json\n"
            + json.dumps({
                "projectType": "nodejs",
                "projectDescription": "Todo API",
                "files": [{
                    "path": "src/app.js",
                    "dependencies": "src/db.js",
                    "packageDependencies": ["express"],
                }],
            })
            + "\n```\nLet me know if you want changes."
        )
        bp = parse_manifest(text)
        assert bp.project_type == "nodejs"
        assert bp.project_description == "Todo API"
        spec = bp.files[0]
        assert spec.path == "src/app.js"
        assert spec.type == "code"
        assert spec.dependencies == ["src/db.js"]
        assert spec.package_dependencies == ["express"]

    def test_entries_without_path_are_dropped(self):
        from codeagent.pipelines.blueprint import parse_manifest
        bp = parse_manifest('{"files": [{"path": "a.js"}, {"type": "code"}, "b.js"]}')
        assert [f.path for f in bp.files] == ["a.js"]

    @pytest.mark.parametrize("text", [
        "no json at all",
        '{"files": [1, 2,}',
        '{"files": "a.js"}',
    ])
    def test_bad_manifest_raises(self, text):
        from codeagent.errors import ManifestParseError
        from codeagent.pipelines.blueprint import parse_manifest
        with pytest.raises(ManifestParseError):
            parse_manifest(text)

    def test_all_package_dependencies_deduplicated(self):
        bp = _blueprint(
            {"path": "a.js", "packageDependencies": ["express", "cors"]},
            {"path": "b.js", "packageDependencies": ["express"]},
        )
        assert bp.all_package_dependencies() == ["express", "cors"]


class TestConfigDetection:
    """Test config file classification."""

    @pytest.mark.parametrize("path,expected", [
        ("package.json", True),
        ("web/vite.config.js", True),
        (".eslintrc.json", True),
        ("Dockerfile", True),
        ("src/app.js", False),
        ("src/config.js", False),
    ])
    def test_is_config_filename(self, path, expected):
        from codeagent.pipelines.blueprint import is_config_filename
        assert is_config_filename(path) is expected

    def test_type_field_marks_config(self):
        from codeagent.pipelines.blueprint import FileSpec
        assert FileSpec(path="settings.js", type="config").is_config


# =============================================================================
# Validation
# =============================================================================

class TestValidateBlueprint:
    """Test path filtering and dependency resolution."""

    def test_invalid_and_duplicate_paths_become_warnings(self):
        from codeagent.pipelines.blueprint import validate_blueprint
        bp = _blueprint(
            {"path": "./src/app.js"},
            {"path": "src/app.js"},
            {"path": "../outside.js"},
            {"path": "bad|name.js"},
            {"path": "src/"},
        )
        report = validate_blueprint(bp)
        assert [f.path for f in report.files] == ["src/app.js"]
        assert len(report.warnings) == 4

    def test_workspace_rejects_escape(self, workspace_dir):
        from codeagent.pipelines.blueprint import validate_blueprint
        from codeagent.tools.workspace import Workspace
        report = validate_blueprint(
            _blueprint({"path": "ok.js"}, {"path": "../../etc/passwd"}),
            Workspace(str(workspace_dir)),
        )
        assert [f.path for f in report.files] == ["ok.js"]

    def test_no_usable_files_raises(self):
        from codeagent.errors import BlueprintError
        from codeagent.pipelines.blueprint import Blueprint, validate_blueprint
        with pytest.raises(BlueprintError):
            validate_blueprint(Blueprint())
        with pytest.raises(BlueprintError):
            validate_blueprint(_blueprint({"path": "../x.js"}))

    def test_dependencies_resolve_by_stem_and_basename(self):
        from codeagent.pipelines.blueprint import validate_blueprint
        bp = _blueprint(
            {"path": "src/app.js", "dependencies": ["./src/db", "routes.js", "ghost.js"]},
            {"path": "src/db.js"},
            {"path": "src/routes/routes.js"},
        )
        report = validate_blueprint(bp)
        assert report.dependency_map["src/app.js"] == ["src/db.js", "src/routes/routes.js"]
        assert any("ghost.js" in w for w in report.warnings)
        assert report.has_cycles is False

    def test_max_files_truncates(self):
        from codeagent.pipelines.blueprint import validate_blueprint
        bp = _blueprint(*[{"path": f"f{i}.js"} for i in range(5)])
        report = validate_blueprint(bp, max_files=3)
        assert [f.path for f in report.files] == ["f0.js", "f1.js", "f2.js"]

    def test_cycle_is_reported(self):
        from codeagent.pipelines.blueprint import validate_blueprint
        bp = _blueprint(
            {"path": "a.js", "dependencies": ["b.js"]},
            {"path": "b.js", "dependencies": ["a.js"]},
        )
        report = validate_blueprint(bp)
        assert report.has_cycles
        assert any("cycle" in w.lower() for w in report.warnings)


# =============================================================================
# Ordering
# =============================================================================

class TestOrderFiles:
    """Test dependency-respecting generation order."""

    def _order(self, bp):
        from codeagent.pipelines.blueprint import validate_blueprint
        from codeagent.pipelines.blueprint_sort import order_files
        report = validate_blueprint(bp)
        return order_files(report.files, report.dependency_map)

    def test_dependencies_first_config_last(self):
        result = self._order(_blueprint(
            {"path": "package.json", "type": "config"},
            {"path": "index.js", "dependencies": ["src/app.js"]},
            {"path": "src/app.js", "dependencies": ["src/db.js"]},
            {"path": "src/db.js"},
            {"path": "README.md"},
        ))
        assert result.paths == ["src/db.js", "src/app.js", "index.js", "README.md", "package.json"]
        assert result.cycle_broken is False

    def test_independent_files_keep_manifest_order(self):
        result = self._order(_blueprint({"path": "c.js"}, {"path": "a.js"}, {"path": "b.js"}))
        assert result.paths == ["c.js", "a.js", "b.js"]

    def test_cycle_falls_back_to_manifest_order(self):
        result = self._order(_blueprint(
            {"path": "a.js", "dependencies": ["b.js"]},
            {"path": "b.js", "dependencies": ["a.js"]},
            {"path": "c.js", "dependencies": ["a.js"]},
        ))
        assert result.paths == ["a.js", "b.js", "c.js"]
        assert result.cycle_broken is True
