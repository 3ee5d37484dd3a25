"""Execution engine: validation, safety gate, executor, errors and recovery."""

from cowork.core.plan_executor import PlanExecutor
from cowork.core.plan_validator import PlanValidator, validate_plan
from cowork.core.recovery import RecoveryManager
from cowork.core.safety_controller import SafetyController

__all__ = [
    "PlanExecutor",
    "PlanValidator",
    "RecoveryManager",
    "SafetyController",
    "validate_plan",
]
