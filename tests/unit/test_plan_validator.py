"""Unit tests for plan schema validation."""

import sys
from pathlib import Path

_root = Path(__file__).resolve().parent.parent.parent
if str(_root) not in sys.path:
    sys.path.insert(0, str(_root))

import pytest
from cowork.core.errors import PlanValidationError, ValidationError
from cowork.core.plan_validator import PlanValidator, validate_plan
from cowork.core.types import StepType


def _read(path="."):
    return {"type": "readFiles", "params": {"path": path}}


def _violations(raw, workspace, **kwargs):
    with pytest.raises(PlanValidationError) as exc_info:
        PlanValidator(**kwargs).validate(raw, workspace)
    return exc_info.value.violations


class TestValidPlans:

    def test_minimal_read_plan(self, tmp_path):
        plan = validate_plan({"goal": "list files", "steps": [_read()]}, str(tmp_path))
        assert plan.goal == "list files"
        assert len(plan.steps) == 1
        assert plan.steps[0].type == StepType.READ_FILES
        assert plan.steps[0].id == "step-1"
        assert plan.steps[0].description

    def test_receipts_example(self, tmp_path):
        raw = {
            "goal": "organize receipts",
            "requiresConfirmation": True,
            "steps": [
                _read(),
                {"type": "createFolder", "params": {"folders": ["documents", "images"]}},
            ],
        }
        plan = validate_plan(raw, str(tmp_path))
        assert [s.type for s in plan.steps] == [StepType.READ_FILES, StepType.CREATE_FOLDER]

    def test_flag_may_be_omitted(self, tmp_path):
        raw = {"goal": "g", "steps": [{"type": "createFolder", "folders": ["a"]}]}
        plan = validate_plan(raw, str(tmp_path))
        assert plan.steps[0].params["folders"] == ["a"]

    def test_task_and_action_aliases(self, tmp_path):
        raw = {"task": "old dialect", "steps": [{"action": "readFiles", "path": "."}]}
        plan = validate_plan(raw, str(tmp_path))
        assert plan.goal == "old dialect"
        assert plan.steps[0].type == StepType.READ_FILES

    def test_nested_params_win_over_flat(self, tmp_path):
        raw = {"goal": "g", "steps": [{"type": "readFiles", "path": "flat", "params": {"path": "nested"}}]}
        plan = validate_plan(raw, str(tmp_path))
        assert plan.steps[0].params["path"] == "nested"

    @pytest.mark.parametrize("tag,kind,extra", [
        ("createFile", StepType.WRITE_FILE, {"path": "a.txt", "content": "x"}),
        ("moveFile", StepType.RENAME_FILE, {"sourcePath": "a", "destinationPath": "b"}),
        ("extractText", StepType.EXTRACT_DATA, {"instructions": "totals"}),
    ])
    def test_legacy_tags_are_normalized(self, tmp_path, tag, kind, extra):
        step = {"action": tag}
        step.update(extra)
        plan = validate_plan({"task": "legacy", "steps": [step]}, str(tmp_path))
        assert plan.steps[0].type == kind

    def test_create_file_does_not_overwrite(self, tmp_path):
        raw = {"task": "t", "steps": [{"action": "createFile", "path": "a.txt", "content": "x"}]}
        plan = validate_plan(raw, str(tmp_path))
        assert plan.steps[0].params["overwrite"] is False

    def test_timeout_milliseconds_become_seconds(self, tmp_path):
        raw = {"goal": "g", "steps": [dict(_read(), timeout=2500)]}
        plan = validate_plan(raw, str(tmp_path))
        assert plan.steps[0].timeout == 2.5
        assert plan.estimated_duration == 2.5

    def test_estimated_duration_uses_type_defaults(self, tmp_path):
        raw = {"goal": "g", "steps": [_read(), {"type": "generateReport"}]}
        plan = validate_plan(raw, str(tmp_path))
        assert plan.estimated_duration == 10.0 + 120.0

    def test_write_from_previous_needs_no_content(self, tmp_path):
        raw = {"goal": "g", "steps": [{"type": "writeFile", "filename": "r.md", "fromPrevious": True}]}
        plan = validate_plan(raw, str(tmp_path))
        assert plan.steps[0].params["fromPrevious"] is True

    def test_explicit_ids_are_kept(self, tmp_path):
        raw = {"goal": "g", "steps": [dict(_read(), id="scan")]}
        assert validate_plan(raw, str(tmp_path)).steps[0].id == "scan"


class TestInvalidPlans:

    def test_error_is_a_validation_error(self, tmp_path):
        with pytest.raises(ValidationError):
            validate_plan({"steps": []}, str(tmp_path))

    def test_all_violations_are_reported(self, tmp_path):
        violations = _violations({"goal": "", "steps": [{"type": "teleport"}]}, str(tmp_path))
        assert any(v.startswith("goal:") for v in violations)
        assert any("unrecognized action 'teleport'" in v for v in violations)

    def test_empty_steps(self, tmp_path):
        violations = _violations({"goal": "g", "steps": []}, str(tmp_path))
        assert any("at least one step" in v for v in violations)

    def test_missing_steps(self, tmp_path):
        violations = _violations({"goal": "g"}, str(tmp_path))
        assert any(v.startswith("steps:") for v in violations)

    def test_not_an_object(self, tmp_path):
        violations = _violations(["not", "a", "plan"], str(tmp_path))
        assert "expected a JSON object" in violations[0]

    @pytest.mark.parametrize("count", [4, 10])
    def test_step_limit(self, tmp_path, count):
        raw = {"goal": "g", "steps": [_read() for _ in range(count)]}
        violations = _violations(raw, str(tmp_path), max_steps=3)
        assert any("maximum step limit" in v for v in violations)

    @pytest.mark.parametrize("tag", ["noop", "runPlaywrightTask", "browserAction", "deleteFile"])
    def test_unrecognized_tags(self, tmp_path, tag):
        violations = _violations({"goal": "g", "steps": [{"type": tag}]}, str(tmp_path))
        assert any("unrecognized action" in v for v in violations)

    @pytest.mark.parametrize("step", [
        {"type": "writeFile", "filename": "a.txt", "content": "x"},
        {"type": "createFolder", "folders": ["a"]},
        {"type": "renameFile", "sourcePath": "a", "destinationPath": "b"},
    ])
    def test_destructive_step_requires_confirmation_flag(self, tmp_path, step):
        raw = {"goal": "g", "requiresConfirmation": False, "steps": [_read(), step]}
        violations = _violations(raw, str(tmp_path))
        assert any("confirmation" in v for v in violations)

    def test_flag_true_without_destructive_steps(self, tmp_path):
        raw = {"goal": "g", "requiresConfirmation": True, "steps": [_read()]}
        violations = _violations(raw, str(tmp_path))
        assert any("no destructive steps" in v for v in violations)

    @pytest.mark.parametrize("step,field", [
        ({"type": "readFiles"}, "path"),
        ({"type": "writeFile", "content": "x"}, "filename"),
        ({"type": "writeFile", "filename": "a.txt"}, "content"),
        ({"type": "createFolder"}, "folders"),
        ({"type": "createFolder", "folders": []}, "folders"),
        ({"type": "renameFile", "destination": "b"}, "sourcePath"),
        ({"type": "renameFile", "source": "a"}, "destinationPath"),
    ])
    def test_missing_required_fields(self, tmp_path, step, field):
        violations = _violations({"goal": "g", "steps": [step]}, str(tmp_path))
        assert any(f".{field}:" in v for v in violations)

    def test_duplicate_ids(self, tmp_path):
        raw = {"goal": "g", "steps": [dict(_read(), id="a"), dict(_read(), id="a")]}
        violations = _violations(raw, str(tmp_path))
        assert any("duplicate step id" in v for v in violations)

    @pytest.mark.parametrize("timeout", [0, -5, "fast", True])
    def test_bad_timeout(self, tmp_path, timeout):
        raw = {"goal": "g", "steps": [dict(_read(), timeout=timeout)]}
        violations = _violations(raw, str(tmp_path))
        assert any(".timeout:" in v for v in violations)

    def test_relative_workspace(self):
        violations = _violations({"goal": "g", "steps": [_read()]}, "relative/ws")
        assert any(v.startswith("workspace:") for v in violations)

    def test_operation_not_allowed(self, tmp_path):
        raw = {"goal": "g", "steps": [{"type": "createFolder", "folders": ["a"]}]}
        violations = _violations(raw, str(tmp_path), allowed_operations=["readFiles"])
        assert any("not allowed by configuration" in v for v in violations)

    def test_message_lists_violations(self, tmp_path):
        with pytest.raises(PlanValidationError) as exc_info:
            validate_plan({"goal": "g", "steps": []}, str(tmp_path))
        assert exc_info.value.message.startswith("Invalid task plan: ")
        assert exc_info.value.field_name == "steps"
