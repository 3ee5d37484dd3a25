"""
Plan schema validation.

Turns an untyped candidate plan (oracle output, already decoded into
Python objects) into a TaskPlan, or raises PlanValidationError listing
every violation found. Never touches the filesystem.

Canonical DSL:

    {"goal": str,
     "steps": [{"type": <kind>, ...kind fields, "params"?: {...}}],
     "requiresConfirmation"?: bool}

Key aliases: "task" for "goal", "action" for "type". Legacy step tags
(createFile, moveFile, extractText) are rewritten to their canonical kind
before any rule runs.
"""

import logging
import os
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from cowork.core.errors import ErrorContext, PlanValidationError
from cowork.core.types import (
    DEFAULT_STEP_TIMEOUTS,
    DESTRUCTIVE_STEP_TYPES,
    StepType,
    TaskPlan,
    TaskStep,
    new_id,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_STEPS = 20

# Keys describing the step itself rather than its parameters.
_STEP_META_KEYS = frozenset({
    "id", "type", "action", "description", "params",
    "requiresConfirmation", "timeout",
})

_LEGACY_TAGS: Dict[str, Tuple[StepType, Dict[str, Any]]] = {
    "createFile": (StepType.WRITE_FILE, {"overwrite": False}),
    "moveFile": (StepType.RENAME_FILE, {}),
    "extractText": (StepType.EXTRACT_DATA, {}),
}


def _is_nonempty_str(value: Any) -> bool:
    return isinstance(value, str) and value.strip() != ""


def _first(params: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if params.get(key) is not None:
            return params[key]
    return None


def _default_description(kind: StepType, params: Mapping[str, Any]) -> str:
    if kind == StepType.READ_FILES:
        return f"Read files from {params.get('path', '.')}"
    if kind == StepType.WRITE_FILE:
        return f"Write file {_first(params, 'filename', 'path')}"
    if kind == StepType.CREATE_FOLDER:
        return "Create folders: " + ", ".join(str(f) for f in params.get("folders") or [])
    if kind == StepType.RENAME_FILE:
        src = _first(params, "sourcePath", "source", "pattern")
        dst = _first(params, "destinationPath", "destination")
        return f"Rename {src} to {dst}"
    if kind == StepType.EXTRACT_DATA:
        return f"Extract data from {params.get('path', '.')}"
    return "Generate report"


def _check_string_list(value: Any, where: str, errors: List[str], allow_empty: bool = True) -> None:
    if not isinstance(value, list) or not all(_is_nonempty_str(v) for v in value):
        errors.append(f"{where}: must be a list of non-empty strings")
    elif not allow_empty and not value:
        errors.append(f"{where}: must contain at least one entry")


def _check_kind_fields(kind: StepType, params: Mapping[str, Any], where: str, errors: List[str]) -> None:
    """Per-kind required/optional field rules."""
    if kind == StepType.READ_FILES:
        if not _is_nonempty_str(params.get("path")):
            errors.append(f"{where}.path: required field is missing or empty")
        if params.get("extensions") is not None:
            _check_string_list(params["extensions"], f"{where}.extensions", errors)
        if params.get("pattern") is not None and not _is_nonempty_str(params["pattern"]):
            errors.append(f"{where}.pattern: must be a non-empty string")

    elif kind == StepType.WRITE_FILE:
        if not _is_nonempty_str(_first(params, "filename", "path")):
            errors.append(f"{where}.filename: required field is missing or empty")
        from_previous = params.get("fromPrevious", False)
        if not isinstance(from_previous, bool):
            errors.append(f"{where}.fromPrevious: must be a boolean")
        if "content" in params and params["content"] is not None:
            if not isinstance(params["content"], str):
                errors.append(f"{where}.content: must be a string")
        elif from_previous is not True:
            errors.append(f"{where}.content: required field is missing")
        if params.get("overwrite") is not None and not isinstance(params["overwrite"], bool):
            errors.append(f"{where}.overwrite: must be a boolean")

    elif kind == StepType.CREATE_FOLDER:
        if params.get("folders") is None:
            errors.append(f"{where}.folders: required field is missing or empty")
        else:
            _check_string_list(params["folders"], f"{where}.folders", errors, allow_empty=False)

    elif kind == StepType.RENAME_FILE:
        if not _is_nonempty_str(_first(params, "sourcePath", "source", "pattern")):
            errors.append(f"{where}.sourcePath: required field is missing or empty")
        if not _is_nonempty_str(_first(params, "destinationPath", "destination")):
            errors.append(f"{where}.destinationPath: required field is missing or empty")

    elif kind == StepType.EXTRACT_DATA:
        if params.get("path") is not None and not _is_nonempty_str(params["path"]):
            errors.append(f"{where}.path: must be a non-empty string")
        if params.get("extensions") is not None:
            _check_string_list(params["extensions"], f"{where}.extensions", errors)

    elif kind == StepType.GENERATE_REPORT:
        for key in ("goal", "outputPath"):
            if params.get(key) is not None and not _is_nonempty_str(params[key]):
                errors.append(f"{where}.{key}: must be a non-empty string")


def is_destructive(kind: Optional[StepType]) -> bool:
    return kind in DESTRUCTIVE_STEP_TYPES


class PlanValidator:
    """Validates candidate plans against the DSL and the engine limits."""

    def __init__(
        self,
        max_steps: int = DEFAULT_MAX_STEPS,
        allowed_operations: Optional[Iterable[str]] = None,
        default_timeouts: Optional[Mapping[StepType, float]] = None,
    ) -> None:
        self.max_steps = max_steps
        self.allowed_operations = (
            frozenset(allowed_operations) if allowed_operations is not None
            else frozenset(t.value for t in StepType)
        )
        self.default_timeouts = dict(default_timeouts or DEFAULT_STEP_TIMEOUTS)

    def validate(self, raw_plan: Any, workspace: str) -> TaskPlan:
        errors: List[str] = []

        if not isinstance(raw_plan, Mapping):
            raise PlanValidationError(
                [f"plan: expected a JSON object, got {type(raw_plan).__name__}"],
                ErrorContext(operation="validate_plan", workspace=workspace),
            )

        if not isinstance(workspace, str) or not os.path.isabs(workspace):
            errors.append("workspace: must be an absolute path")

        goal = raw_plan.get("goal", raw_plan.get("task"))
        if not _is_nonempty_str(goal):
            errors.append("goal: required field is missing or empty")

        raw_steps = raw_plan.get("steps")
        steps: List[TaskStep] = []
        if raw_steps is None:
            errors.append("steps: required field is missing")
        elif not isinstance(raw_steps, list):
            errors.append("steps: must be a list")
        elif not raw_steps:
            errors.append("steps: plan must contain at least one step")
        else:
            if len(raw_steps) > self.max_steps:
                errors.append(
                    f"steps: plan has {len(raw_steps)} steps, exceeding the "
                    f"maximum step limit of {self.max_steps}"
                )
            seen_ids = set()
            for index, raw_step in enumerate(raw_steps):
                step = self._validate_step(raw_step, index, errors)
                if step is None:
                    continue
                if step.id in seen_ids:
                    errors.append(f"steps[{index}].id: duplicate step id '{step.id}'")
                seen_ids.add(step.id)
                steps.append(step)

        flag = raw_plan.get("requiresConfirmation")
        if flag is not None:
            if not isinstance(flag, bool):
                errors.append("requiresConfirmation: must be a boolean")
            elif isinstance(raw_steps, list):
                destructive = sorted({s.type_name for s in steps if is_destructive(s.type)})
                if destructive and not flag:
                    errors.append(
                        "requiresConfirmation: plan contains destructive steps ("
                        + ", ".join(destructive)
                        + ") so the confirmation flag must be true"
                    )
                elif flag and not destructive and len(steps) == len(raw_steps):
                    errors.append(
                        "requiresConfirmation: confirmation flag is true but the "
                        "plan contains no destructive steps"
                    )

        if errors:
            logger.warning("Plan rejected with %d violation(s): %s", len(errors), "; ".join(errors))
            raise PlanValidationError(
                errors, ErrorContext(operation="validate_plan", workspace=workspace),
            )

        plan_id = raw_plan.get("id")
        plan = TaskPlan(
            id=plan_id if _is_nonempty_str(plan_id) else new_id("plan-"),
            goal=goal.strip(),
            workspace=os.path.normpath(workspace),
            steps=tuple(steps),
            estimated_duration=sum(s.effective_timeout(self.default_timeouts) for s in steps),
        )
        logger.info("Plan %s validated: %d step(s) for '%s'", plan.id, len(plan.steps), plan.goal[:80])
        return plan

    def _validate_step(self, raw_step: Any, index: int, errors: List[str]) -> Optional[TaskStep]:
        where = f"steps[{index}]"
        if not isinstance(raw_step, Mapping):
            errors.append(f"{where}: must be an object")
            return None

        tag = raw_step.get("type", raw_step.get("action"))
        if not _is_nonempty_str(tag):
            errors.append(f"{where}.type: required field is missing or empty")
            return None

        params: Dict[str, Any] = {
            k: v for k, v in raw_step.items() if k not in _STEP_META_KEYS
        }
        nested = raw_step.get("params")
        if nested is not None:
            if not isinstance(nested, Mapping):
                errors.append(f"{where}.params: must be an object")
            else:
                params.update(nested)

        if tag in _LEGACY_TAGS:
            kind, implied = _LEGACY_TAGS[tag]
            for key, value in implied.items():
                params.setdefault(key, value)
        else:
            kind = StepType.parse(tag)
        if kind is None:
            errors.append(f"{where}.type: unrecognized action '{tag}'")
            return None
        if kind.value not in self.allowed_operations:
            errors.append(f"{where}.type: operation '{kind.value}' is not allowed by configuration")

        _check_kind_fields(kind, params, where, errors)

        step_id = raw_step.get("id")
        if step_id is not None and not _is_nonempty_str(step_id):
            errors.append(f"{where}.id: must be a non-empty string")
            step_id = None

        description = raw_step.get("description")
        if description is not None and not isinstance(description, str):
            errors.append(f"{where}.description: must be a string")
            description = None

        confirm = raw_step.get("requiresConfirmation")
        if confirm is not None and not isinstance(confirm, bool):
            errors.append(f"{where}.requiresConfirmation: must be a boolean")
            confirm = None

        timeout_ms = raw_step.get("timeout")
        timeout: Optional[float] = None
        if timeout_ms is not None:
            if isinstance(timeout_ms, bool) or not isinstance(timeout_ms, (int, float)) or timeout_ms <= 0:
                errors.append(f"{where}.timeout: must be a positive number of milliseconds")
            else:
                timeout = timeout_ms / 1000.0

        return TaskStep(
            id=step_id or f"step-{index + 1}",
            type=kind,
            description=(description or "").strip() or _default_description(kind, params),
            params=params,
            requires_confirmation=confirm,
            timeout=timeout,
        )


def validate_plan(
    raw_plan: Any,
    workspace: str,
    max_steps: int = DEFAULT_MAX_STEPS,
    allowed_operations: Optional[Iterable[str]] = None,
) -> TaskPlan:
    """Module-level shortcut for one-off validation."""
    return PlanValidator(max_steps, allowed_operations).validate(raw_plan, workspace)
