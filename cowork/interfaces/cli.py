"""
Command-line entry point.

    cowork "organize receipts" ./receipts --dry-run
    cowork "summary report" ~/notes --yes
    cowork "sort my downloads by type" ~/Downloads --llm

Plans the goal with the rule-based planner (or, with --llm, an OpenRouter
model that falls back to the rules), validates the plan, then runs
it step by step. Destructive steps ask for approval on the terminal unless
--yes (or engine.non_interactive) is set. Exit code 0 on full success or
when the goal matches no known task, 1 otherwise.
"""

import argparse
import logging
import os
import sys
from typing import Any, Callable, Dict, Optional, TextIO

from dotenv import load_dotenv

from cowork import __version__
from cowork.core.errors import CoworkError, ErrorCategory, PlanValidationError
from cowork.core.logger import ActionLogger, ErrorLogger
from cowork.core.plan_executor import PlanExecutor
from cowork.core.plan_validator import PlanValidator
from cowork.core.recovery import RecoveryManager
from cowork.core.safety_controller import AutoConfirmer, SafetyController
from cowork.core.types import ExecutionContext, SafetyCheck, TaskPlan, TaskStep
from cowork.models.openrouter_client import OpenRouterClient
from cowork.models.planner import ModelPlanner, RuleBasedPlanner
from cowork.utils.config import EngineConfig, load_config
from cowork.utils.paths import base_path

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class TerminalConfirmer:
    """Ask on the terminal. EOF or Ctrl-C counts as "no"."""

    def __init__(
        self,
        input_fn: Callable[[str], str] = input,
        out: Optional[TextIO] = None,
    ) -> None:
        self._input = input_fn
        self._out = out or sys.stdout

    def _ask(self, prompt: str) -> bool:
        try:
            response = self._input(prompt).strip().lower()
        except (EOFError, KeyboardInterrupt):
            response = "no"
        return response in ("y", "yes")

    def confirm(self, step: TaskStep, check: SafetyCheck) -> bool:
        print("\n" + "=" * 60, file=self._out)
        print("APPROVAL REQUIRED", file=self._out)
        print("=" * 60, file=self._out)
        print("Step:", step.description, file=self._out)
        print("Type:", step.type_name, file=self._out)
        print("Parameters:", dict(step.params), file=self._out)
        print("Risk Level:", check.risk_level, file=self._out)
        for warning in check.warnings:
            print("Warning:", warning, file=self._out)
        print("=" * 60, file=self._out)
        return self._ask("Approve? (yes/no): ")

    def acknowledge(self, message: str) -> bool:
        """Used by the RecoveryManager for user-intervention strategies."""
        print(f"\n{message}", file=self._out)
        return self._ask("Continue? (yes/no): ")


def _resolve_log_dir(config: EngineConfig, log_dir: Optional[str]) -> Optional[str]:
    chosen = log_dir or config.log_dir
    if chosen and not os.path.isabs(chosen):
        chosen = os.path.join(base_path(), chosen)
    return chosen


def model_planner(generate: Callable[[str], str], config: EngineConfig) -> ModelPlanner:
    """ModelPlanner constrained by ``config``, with rule-based fallback."""
    return ModelPlanner(
        generate,
        fallback=RuleBasedPlanner(),
        max_steps=config.max_steps,
        allowed_operations=config.allowed_operations,
    )


def _print_plan(plan: TaskPlan, out: TextIO) -> None:
    print(f"Plan {plan.id}: {plan.goal}", file=out)
    for index, step in enumerate(plan.steps, 1):
        print(f"  {index}. [{step.type_name}] {step.description}", file=out)
    print(f"Estimated duration (upper bound): {plan.estimated_duration:.0f}s", file=out)


def run(
    goal: str,
    workspace: str,
    dry_run: bool = False,
    *,
    non_interactive: bool = False,
    config: Optional[EngineConfig] = None,
    config_path: Optional[str] = None,
    planner: Optional[Any] = None,
    confirmer: Optional[TerminalConfirmer] = None,
    log_dir: Optional[str] = None,
    out: Optional[TextIO] = None,
    err: Optional[TextIO] = None,
) -> int:
    """Plan and execute ``goal`` inside ``workspace``. Returns the exit code."""
    out = out or sys.stdout
    err = err or sys.stderr

    try:
        config = config or load_config(config_path)
    except CoworkError as e:
        print(f"Error: {e.user_message}\n{e.message}", file=err)
        return 1

    workspace_abs = os.path.abspath(workspace)
    if not os.path.isdir(workspace_abs):
        print(f"Error: workspace does not exist or is not a directory: {workspace_abs}", file=err)
        return 1

    non_interactive = non_interactive or config.non_interactive
    terminal = confirmer or TerminalConfirmer(out=out)

    planner = planner or RuleBasedPlanner()
    try:
        raw_plan = planner.create_plan(goal, workspace_abs)
    except CoworkError as e:
        print(f"Error: planning failed: {e.user_message}\n  {e.message}", file=err)
        return 1

    if raw_plan is None:
        plan = TaskPlan.empty(goal, workspace_abs)
        print(f"No plan: '{plan.goal}' does not match any known task. Nothing to do.", file=out)
        return 0

    validator = PlanValidator(config.max_steps, config.allowed_operations, config.timeouts)
    try:
        plan = validator.validate(raw_plan, workspace_abs)
    except PlanValidationError as e:
        print(f"Error: {e.user_message}", file=err)
        for violation in e.violations:
            print(f"  - {violation}", file=err)
        return 1

    _print_plan(plan, out)

    safety = SafetyController(AutoConfirmer() if non_interactive else terminal, non_interactive)
    retry_limits: Dict[ErrorCategory, Any] = {
        ErrorCategory.FILE_SYSTEM: (config.file_retry.max_retries, config.file_retry.retry_delay),
        ErrorCategory.NETWORK: (config.network_retry.max_retries, config.network_retry.retry_delay),
    }
    recovery = RecoveryManager(
        confirmer=(lambda message: True) if non_interactive else terminal.acknowledge,
        retry_limits=retry_limits,
    )
    chosen_log_dir = _resolve_log_dir(config, log_dir)
    action_logger = ActionLogger(chosen_log_dir)
    executor = PlanExecutor(
        safety=safety,
        recovery_manager=recovery,
        error_logger=ErrorLogger(
            chosen_log_dir, config.max_error_log_bytes, config.max_error_log_files,
        ),
        action_logger=action_logger,
        timeouts=config.timeouts,
    )
    context = ExecutionContext(workspace=workspace_abs, dry_run=dry_run, goal=plan.goal)

    try:
        summary = executor.execute_plan(plan, context)
    finally:
        action_logger.close()

    for line in context.logs:
        print(line, file=out)

    if summary.success:
        print(f"Completed {summary.completed_steps}/{summary.total_steps} step(s).", file=out)
        return 0

    failed = summary.first_failure
    if failed is not None:
        step = next((s for s in plan.steps if s.id == failed.step_id), None)
        description = step.description if step else failed.step_id
        risk = safety.check(step).risk_level if step else "unknown"
        print(f"Step failed: {description} (risk: {risk})", file=err)
        if failed.failure is not None and failed.failure.user_friendly:
            print(f"  {failed.failure.user_message}", file=err)
        print(f"  {failed.error}", file=err)
    print(
        f"Stopped after {summary.completed_steps}/{summary.total_steps} step(s): {summary.status}.",
        file=err,
    )
    return 1


def main(argv: Optional[list] = None) -> None:
    parser = argparse.ArgumentParser(
        prog="cowork",
        description="Plan and run safe file tasks inside a workspace folder.",
    )
    parser.add_argument("goal", help="What to do, e.g. 'organize receipts'")
    parser.add_argument("workspace", help="Folder the task may touch")
    parser.add_argument("--dry-run", action="store_true",
                        help="Show what would happen without changing anything")
    parser.add_argument("--yes", "-y", action="store_true",
                        help="Approve destructive steps without asking")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Debug logging")
    parser.add_argument("--config", help="Path to rules.yaml")
    parser.add_argument("--llm", action="store_true",
                        help="Plan with a language model via OpenRouter (falls back to rules)")
    parser.add_argument("--model", help="OpenRouter model id (default: OPENROUTER_MODEL)")
    parser.add_argument("--version", action="version", version=f"cowork {__version__}")
    args = parser.parse_args(argv)

    load_dotenv(os.path.join(base_path(), ".env"))

    try:
        config = load_config(args.config)
    except CoworkError as e:
        print(f"Error: {e.user_message}\n{e.message}", file=sys.stderr)
        sys.exit(1)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else getattr(logging, config.log_level),
        format=LOG_FORMAT,
    )

    planner = None
    if args.llm:
        try:
            client = OpenRouterClient(default_model=args.model)
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
        planner = model_planner(client.generate, config)

    sys.exit(run(
        args.goal,
        args.workspace,
        dry_run=args.dry_run,
        non_interactive=args.yes,
        config=config,
        planner=planner,
    ))


if __name__ == "__main__":
    main()
