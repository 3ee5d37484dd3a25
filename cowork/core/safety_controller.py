"""
Safety gate: risk classification, confirmation protocol and dry-run
annotation for plan steps.

The gate never prompts directly. Confirmation goes through an injected
Confirmer; the terminal implementation lives in cowork.interfaces.cli.
"""

import logging
from typing import Dict, Optional, Protocol, Tuple

from cowork.core.types import SafetyCheck, StepType, TaskStep

logger = logging.getLogger(__name__)

# type -> (risk level, destructive, default warning)
RISK_TABLE: Dict[StepType, Tuple[str, bool, Optional[str]]] = {
    StepType.READ_FILES: ("low", False, None),
    StepType.EXTRACT_DATA: ("low", False, None),
    StepType.GENERATE_REPORT: ("medium", False, None),
    StepType.CREATE_FOLDER: ("medium", True, "This will create a new directory"),
    StepType.WRITE_FILE: ("high", True, "This will create or overwrite a file"),
    StepType.RENAME_FILE: ("high", True, "This will rename a file"),
}

_UNKNOWN_RISK = ("medium", False, None)


class Confirmer(Protocol):
    """Presentation-side capability that asks the user a yes/no question."""

    def confirm(self, step: TaskStep, check: SafetyCheck) -> bool:
        ...


class AutoConfirmer:
    """Non-interactive mode: every confirmation is granted."""

    def confirm(self, step: TaskStep, check: SafetyCheck) -> bool:
        logger.info("Auto-confirmed %s step: %s", check.risk_level, step.description)
        return True


class RejectingConfirmer:
    """Every confirmation is refused. Used when no user is available to ask."""

    def confirm(self, step: TaskStep, check: SafetyCheck) -> bool:
        logger.info("Confirmation refused (no interactive user): %s", step.description)
        return False


class SafetyController:
    """
    Classify steps and gate destructive ones behind a confirmation.

    Args:
        confirmer: asked whenever a step requires confirmation.
        non_interactive: short-circuit every confirmation to True.
    """

    def __init__(self, confirmer: Optional[Confirmer] = None, non_interactive: bool = False) -> None:
        self._confirmer: Confirmer = confirmer or RejectingConfirmer()
        self.non_interactive = non_interactive

    def check(self, step: TaskStep) -> SafetyCheck:
        if isinstance(step.type, StepType):
            risk, destructive, warning = RISK_TABLE[step.type]
        else:
            risk, destructive, warning = _UNKNOWN_RISK
        return SafetyCheck(
            is_destructive=destructive,
            risk_level=risk,
            warnings=(warning,) if warning else (),
            requires_confirmation=destructive or bool(step.requires_confirmation),
        )

    def request_confirmation(self, step: TaskStep) -> bool:
        """Return True if the step may run."""
        check = self.check(step)
        if not check.requires_confirmation:
            return True

        logger.info(
            "Step requires confirmation: %s (risk: %s)", step.description, check.risk_level,
        )
        for warning in check.warnings:
            logger.info("  warning: %s", warning)

        if self.non_interactive:
            return True

        approved = bool(self._confirmer.confirm(step, check))
        if approved:
            logger.info("Step approved: %s", step.id)
        else:
            logger.info("Step denied: %s", step.id)
        return approved

    def create_dry_run_log(self, step: TaskStep) -> str:
        check = self.check(step)
        return f"[DRY RUN] {step.type_name}: {step.description} (Risk: {check.risk_level})"
