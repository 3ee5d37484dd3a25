"""
Shared data types for planning and execution.

TaskStep and TaskPlan are produced by the plan validator and treated as
read-only afterwards. ExecutionContext is owned by a single run.
"""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple, Union

from cowork.core.errors import CoworkError


class StepType(Enum):
    READ_FILES = "readFiles"
    WRITE_FILE = "writeFile"
    CREATE_FOLDER = "createFolder"
    RENAME_FILE = "renameFile"
    EXTRACT_DATA = "extractData"
    GENERATE_REPORT = "generateReport"

    @classmethod
    def parse(cls, value: Union[str, "StepType"]) -> Optional["StepType"]:
        """Return the matching member, or None for an unknown tag."""
        if isinstance(value, cls):
            return value
        for member in cls:
            if member.value == value:
                return member
        return None


DESTRUCTIVE_STEP_TYPES = frozenset({
    StepType.WRITE_FILE,
    StepType.CREATE_FOLDER,
    StepType.RENAME_FILE,
})

# Seconds. Overridden by the ``timeouts`` section of config/rules.yaml.
DEFAULT_STEP_TIMEOUTS: Dict[StepType, float] = {
    StepType.READ_FILES: 10.0,
    StepType.CREATE_FOLDER: 15.0,
    StepType.WRITE_FILE: 15.0,
    StepType.RENAME_FILE: 15.0,
    StepType.EXTRACT_DATA: 60.0,
    StepType.GENERATE_REPORT: 120.0,
}


def new_id(prefix: str = "") -> str:
    token = uuid.uuid4().hex[:12]
    return f"{prefix}{token}"


@dataclass(frozen=True)
class TaskStep:
    """
    One typed operation.

    ``type`` is normally a StepType. An unrecognised string is kept as-is so
    the executor can reject it deterministically.
    """

    id: str
    type: Union[StepType, str]
    description: str
    params: Mapping[str, Any] = field(default_factory=dict)
    requires_confirmation: Optional[bool] = None
    timeout: Optional[float] = None  # seconds

    def __post_init__(self) -> None:
        parsed = StepType.parse(self.type)
        if parsed is not None:
            object.__setattr__(self, "type", parsed)
        if self.params is None:
            object.__setattr__(self, "params", {})

    @property
    def type_name(self) -> str:
        return self.type.value if isinstance(self.type, StepType) else str(self.type)

    @property
    def is_known_type(self) -> bool:
        return isinstance(self.type, StepType)

    def effective_timeout(self, defaults: Optional[Mapping[StepType, float]] = None) -> float:
        if self.timeout is not None:
            return self.timeout
        table = defaults or DEFAULT_STEP_TIMEOUTS
        if isinstance(self.type, StepType):
            return table.get(self.type, DEFAULT_STEP_TIMEOUTS[self.type])
        return min(DEFAULT_STEP_TIMEOUTS.values())


@dataclass(frozen=True)
class TaskPlan:
    id: str
    goal: str
    workspace: str
    steps: Tuple[TaskStep, ...]
    estimated_duration: float = 0.0  # seconds, sum of step timeouts

    @classmethod
    def empty(cls, goal: str, workspace: str) -> "TaskPlan":
        """Terminal plan for a goal that matched no known pattern."""
        return cls(id=new_id("plan-"), goal=goal, workspace=workspace, steps=())

    @property
    def is_empty(self) -> bool:
        return not self.steps


@dataclass
class ExecutionContext:
    """Mutable state for one run. Never shared between runs."""

    workspace: str
    dry_run: bool = False
    goal: str = ""
    logs: List[str] = field(default_factory=list)
    confirmed_steps: Set[str] = field(default_factory=set)
    outputs: Dict[str, Any] = field(default_factory=dict)

    def log(self, message: str) -> None:
        self.logs.append(message)


@dataclass(frozen=True)
class SafetyCheck:
    is_destructive: bool
    risk_level: str  # "low" | "medium" | "high"
    warnings: Tuple[str, ...]
    requires_confirmation: bool


@dataclass(frozen=True)
class ExecutorResult:
    step_id: str
    success: bool
    duration: float  # seconds
    output: Any = None
    error: Optional[str] = None
    failure: Optional[CoworkError] = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class TaskSummary:
    plan_id: str
    goal: str
    total_steps: int
    completed_steps: int
    status: str  # "completed" | "failed" | "cancelled"
    results: Tuple[ExecutorResult, ...]

    @property
    def success(self) -> bool:
        return self.status == "completed"

    @property
    def first_failure(self) -> Optional[ExecutorResult]:
        for result in self.results:
            if not result.success:
                return result
        return None
