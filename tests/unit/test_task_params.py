"""Tests for task parameter validation and the layer policy."""

import json

import pytest

from tasktrail.errors import TaskValidationError
from tasktrail.models.task_file_action import FileAction, normalize_path
from tasktrail.models.task_params import (
    TITLE_MAX_LENGTH,
    TaskCreateParams,
    TaskUpdateParams,
    parse_params,
    process_acceptance_criteria,
)
from tasktrail.models.task_status import TaskStatus


class TestLayerPolicy:
    @pytest.mark.parametrize(
        "layer", ["presentation", "business", "data", "infrastructure", "cross-cutting", "documentation"]
    )
    def test_file_required_layer_needs_file_actions(self, layer):
        with pytest.raises(TaskValidationError) as exc_info:
            parse_params(TaskCreateParams, {"title": "Build it", "layer": layer})
        assert "file_actions is required" in str(exc_info.value)
        assert "FILE_OPTIONAL" in str(exc_info.value)

    def test_empty_file_actions_is_an_explicit_declaration(self):
        params = parse_params(TaskCreateParams, {"title": "Config only", "layer": "business", "file_actions": []})
        assert params.file_actions == []

    @pytest.mark.parametrize("layer", ["planning", "coordination", "review"])
    def test_file_optional_layers(self, layer):
        params = parse_params(TaskCreateParams, {"title": "Think", "layer": layer})
        assert params.file_actions is None

    def test_unknown_layer_is_rejected(self):
        with pytest.raises(TaskValidationError) as exc_info:
            parse_params(TaskCreateParams, {"title": "Oops", "layer": "frontend", "file_actions": []})
        assert "Invalid layer" in str(exc_info.value)

    def test_watch_files_converts_to_edit_actions(self):
        params = parse_params(
            TaskCreateParams, {"title": "Legacy", "layer": "data", "watch_files": ["db/schema.sql"]}
        )
        assert params.file_actions == [FileAction(action="edit", path="db/schema.sql")]

    def test_file_actions_may_be_a_json_string(self):
        raw = json.dumps([{"action": "create", "path": "./src/new.py"}])
        params = parse_params(TaskCreateParams, {"title": "New module", "layer": "business", "file_actions": raw})
        assert params.file_actions == [FileAction(action="create", path="src/new.py")]

    def test_invalid_json_file_actions(self):
        with pytest.raises(TaskValidationError) as exc_info:
            parse_params(TaskCreateParams, {"title": "Bad", "layer": "business", "file_actions": "[oops"})
        assert "Invalid file_actions format" in str(exc_info.value)

    def test_invalid_file_action(self):
        with pytest.raises(TaskValidationError):
            parse_params(
                TaskCreateParams,
                {"title": "Bad", "layer": "business", "file_actions": [{"action": "rename", "path": "a.py"}]},
            )

    def test_update_only_checks_policy_when_layer_given(self):
        params = parse_params(TaskUpdateParams, {"title": "Renamed"})
        assert params.changes() == {"title": "Renamed"}

        with pytest.raises(TaskValidationError):
            parse_params(TaskUpdateParams, {"layer": "presentation"})


class TestFieldValidation:
    def test_defaults(self):
        params = parse_params(TaskCreateParams, {"title": "  Trim me  "})
        assert params.title == "Trim me"
        assert params.priority == 2
        assert params.status is TaskStatus.TODO
        assert params.tags == []

    def test_blank_title(self):
        with pytest.raises(TaskValidationError) as exc_info:
            parse_params(TaskCreateParams, {"title": "   "})
        assert exc_info.value.field == "title"

    def test_title_too_long(self):
        with pytest.raises(TaskValidationError):
            parse_params(TaskCreateParams, {"title": "x" * (TITLE_MAX_LENGTH + 1)})

    @pytest.mark.parametrize("priority", [0, 5])
    def test_priority_range(self, priority):
        with pytest.raises(TaskValidationError) as exc_info:
            parse_params(TaskCreateParams, {"title": "P", "priority": priority})
        assert exc_info.value.field == "priority"

    def test_unknown_status(self):
        with pytest.raises(TaskValidationError) as exc_info:
            parse_params(TaskCreateParams, {"title": "S", "status": "finished"})
        assert "Invalid status" in str(exc_info.value)

    def test_tags_from_comma_string_are_deduplicated(self):
        params = parse_params(TaskCreateParams, {"title": "T", "tags": "api, db,api,"})
        assert params.tags == ["api", "db"]

    def test_unknown_field_is_rejected(self):
        with pytest.raises(TaskValidationError):
            parse_params(TaskCreateParams, {"title": "T", "owner": "bob"})

    def test_non_mapping_input(self):
        with pytest.raises(TaskValidationError):
            parse_params(TaskCreateParams, ["title"])


class TestAcceptanceCriteria:
    def test_plain_text_is_kept(self):
        assert process_acceptance_criteria("Tests pass") == ("Tests pass", None)

    def test_empty(self):
        assert process_acceptance_criteria(None) == (None, None)
        assert process_acceptance_criteria([]) == (None, None)

    def test_list_of_checks_is_summarized(self):
        checks = [
            {"type": "tests_pass", "command": "pytest"},
            {"type": "file_exists", "file": "src/app.py"},
        ]
        text, stored = process_acceptance_criteria(checks)
        assert text == "1. tests_pass: pytest\n2. file_exists: src/app.py"
        assert json.loads(stored) == checks

    def test_json_string_list(self):
        text, stored = process_acceptance_criteria('[{"type": "pattern", "pattern": "TODO"}]')
        assert text == "1. pattern: TODO"
        assert stored is not None


class TestNormalizePath:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("./src/a.py", "src/a.py"),
            ("src\\b.py", "src/b.py"),
            (" docs//c.md ", "docs/c.md"),
            ("src/../a.ts", "a.ts"),
            ("src/./lib/../b.ts", "src/b.ts"),
            ("src/..", ""),
        ],
    )
    def test_normalize(self, raw, expected):
        assert normalize_path(raw) == expected
