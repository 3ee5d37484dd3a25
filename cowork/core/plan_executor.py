"""
Plan Executor - runs a validated TaskPlan one step at a time.

Per step:
  1. Unknown step types fail immediately ("Unknown step type: X")
  2. Dry run: log what would happen, report success, touch nothing
  3. Destructive steps go through the SafetyController confirmation
  4. The step runs on a daemon worker thread joined against
     its timeout
  5. Failures are wrapped into CoworkErrors and, when a RecoveryManager
     is attached, handed to it before the step is reported as failed

The plan runner is fail-fast: it stops at the first failed step and never
reorders steps, since later steps read what earlier ones produced.

Supported step types:
  - readFiles: directory listing (extensions / glob filter) or one file
  - writeFile: write a named file, optionally from a previous step's output
  - createFolder: create one or more directories
  - renameFile: rename/move one file, or every glob match into a folder
  - extractData: analyze files with the ContentAnalyzer
  - generateReport: render a markdown report (not written to disk)
"""

import csv
import errno
import fnmatch
import glob
import io
import logging
import os
import shutil
import threading
import time
from typing import Any, Callable, Dict, List, Mapping, Optional

from cowork.core import sandbox
from cowork.core.errors import (
    CoworkError,
    ErrorCategory,
    ErrorContext,
    ErrorFactory,
    ErrorSeverity,
    ExecutionError,
    ValidationError,
    cancelled_strategy,
)
from cowork.core.logger import ActionLogger, ErrorLogger
from cowork.core.recovery import RecoveryManager
from cowork.core.safety_controller import SafetyController
from cowork.core.types import (
    DEFAULT_STEP_TIMEOUTS,
    ExecutionContext,
    ExecutorResult,
    StepType,
    TaskPlan,
    TaskStep,
    TaskSummary,
)
from cowork.tools.content_analyzer import ContentAnalyzer

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "User cancelled the operation"

# Guard against strategies that keep handing back new recoverable errors
MAX_RECOVERY_ROUNDS = 10

# Single-file reads return at most this much text
MAX_READ_CHARS = 64 * 1024

_GLOB_CHARS = ("*", "?", "[")


def _first(params: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if params.get(key) is not None:
            return params[key]
    return None


def _normalize_extensions(extensions: Optional[List[str]]) -> List[str]:
    return [e.lower() if e.startswith(".") else "." + e.lower() for e in extensions or []]


class PlanExecutor:
    """
    Execute TaskSteps inside a workspace sandbox.

    Args:
        safety: confirmation gate; defaults to one that refuses every
            destructive step.
        recovery_manager: consulted on failure when present.
        error_logger: receives every CoworkError raised by a step.
        action_logger: receives every ExecutorResult.
        analyzer: ContentAnalyzer for extractData / generateReport.
        timeouts: per-type default timeouts in seconds.
    """

    def __init__(
        self,
        safety: Optional[SafetyController] = None,
        recovery_manager: Optional[RecoveryManager] = None,
        error_logger: Optional[ErrorLogger] = None,
        action_logger: Optional[ActionLogger] = None,
        analyzer: Optional[ContentAnalyzer] = None,
        timeouts: Optional[Mapping[StepType, float]] = None,
    ) -> None:
        self.safety = safety or SafetyController()
        self.recovery = recovery_manager
        self.error_logger = error_logger
        self.action_logger = action_logger
        self.analyzer = analyzer or ContentAnalyzer()
        self.timeouts = dict(timeouts or DEFAULT_STEP_TIMEOUTS)
        self._handlers: Dict[StepType, Callable[[TaskStep, ExecutionContext], Dict[str, Any]]] = {
            StepType.READ_FILES: self._do_read_files,
            StepType.WRITE_FILE: self._do_write_file,
            StepType.CREATE_FOLDER: self._do_create_folder,
            StepType.RENAME_FILE: self._do_rename_file,
            StepType.EXTRACT_DATA: self._do_extract_data,
            StepType.GENERATE_REPORT: self._do_generate_report,
        }

    # -- Plan runner -------------------------------------------------------

    def execute_plan(
        self,
        plan: TaskPlan,
        context: ExecutionContext,
        cancel_event: Optional[threading.Event] = None,
    ) -> TaskSummary:
        """Run every step in order, stopping at the first failure."""
        if not context.goal:
            context.goal = plan.goal
        logger.info(
            "PlanExecutor: plan %s, %d step(s)%s for '%s'",
            plan.id, len(plan.steps), " (dry run)" if context.dry_run else "", plan.goal[:80],
        )

        results: List[ExecutorResult] = []
        status = "completed"
        for index, step in enumerate(plan.steps):
            if cancel_event is not None and cancel_event.is_set():
                logger.warning("PlanExecutor: cancelled before step %d/%d", index + 1, len(plan.steps))
                context.log(f"[CANCELLED] {step.description}")
                status = "cancelled"
                break
            result = self.execute_step(step, context)
            results.append(result)
            if not result.success:
                status = "cancelled" if result.error == CANCELLED_MESSAGE else "failed"
                break

        completed = sum(1 for r in results if r.success)
        logger.info(
            "PlanExecutor: plan %s %s (%d/%d steps)",
            plan.id, status, completed, len(plan.steps),
        )
        return TaskSummary(
            plan_id=plan.id,
            goal=plan.goal,
            total_steps=len(plan.steps),
            completed_steps=completed,
            status=status,
            results=tuple(results),
        )

    # -- Single step -------------------------------------------------------

    def execute_step(self, step: TaskStep, context: ExecutionContext) -> ExecutorResult:
        start = time.monotonic()

        if not step.is_known_type:
            error = ValidationError(
                f"Unknown step type: {step.type_name}",
                self._error_context(step, context),
                field_name="type",
            )
            self._log_error(error)
            return self._failure(step, context, error, start)

        if context.dry_run:
            context.log(self.safety.create_dry_run_log(step))
            return self._record(step, ExecutorResult(step.id, True, time.monotonic() - start))

        if step.id not in context.confirmed_steps:
            if not self.safety.request_confirmation(step):
                context.log(f"[CANCELLED] {step.description}")
                error = ErrorFactory.create_error(
                    CANCELLED_MESSAGE,
                    ErrorCategory.USER_INPUT,
                    self._error_context(step, context),
                    severity=ErrorSeverity.LOW,
                    recovery_strategy=cancelled_strategy(),
                    retryable=False,
                )
                return self._record(step, ExecutorResult(
                    step.id, False, time.monotonic() - start,
                    error=CANCELLED_MESSAGE, failure=error,
                ))
            if self.safety.check(step).requires_confirmation:
                context.confirmed_steps.add(step.id)

        def operation() -> Dict[str, Any]:
            return self._run_with_timeout(step, context)

        try:
            output = operation()
        except Exception as exc:
            error = self._wrap(exc, step, context)
            try:
                output = self._recover(error, operation, step, context)
            except Exception as final_exc:
                final = self._wrap(final_exc, step, context)
                return self._failure(step, context, final, start)

        context.outputs[step.id] = output
        context.log(f"[OK] {step.description}")
        return self._record(step, ExecutorResult(step.id, True, time.monotonic() - start, output=output))

    def _run_with_timeout(self, step: TaskStep, context: ExecutionContext) -> Dict[str, Any]:
        timeout = step.effective_timeout(self.timeouts)
        handler = self._handlers[step.type]
        started = time.monotonic()
        outcome: Dict[str, Any] = {}

        def target():
            try:
                outcome["result"] = handler(step, context)
            except BaseException as exc:
                outcome["error"] = exc

        # Daemon: an overrun is abandoned and never joined at exit.
        worker = threading.Thread(target=target, name=f"cowork-step-{step.id}", daemon=True)
        worker.start()
        worker.join(timeout)
        if worker.is_alive():
            elapsed = time.monotonic() - started
            logger.error("PlanExecutor: step %s timed out after %.1fs", step.id, elapsed)
            raise ExecutionError(
                f"Step {step.id} timed out after {elapsed:.1f}s",
                self._error_context(step, context, extra={"timeout": timeout}),
                step_description=step.description,
            )
        if "error" in outcome:
            raise outcome["error"]
        return outcome["result"]

    def _recover(
        self,
        error: CoworkError,
        operation: Callable[[], Dict[str, Any]],
        step: TaskStep,
        context: ExecutionContext,
    ) -> Dict[str, Any]:
        self._log_error(error)
        if self.recovery is None or not self.recovery.can_recover(error):
            raise error

        current = error
        for _ in range(MAX_RECOVERY_ROUNDS):
            try:
                return self.recovery.attempt_recovery(current, operation)
            except Exception as exc:
                following = self._wrap(exc, step, context)
                if following is current:
                    raise
                self._log_error(following)
                current = following
        raise current

    # -- Bookkeeping -------------------------------------------------------

    def _wrap(self, exc: BaseException, step: TaskStep, context: ExecutionContext) -> CoworkError:
        return ErrorFactory.from_exception(
            exc,
            "execute_step",
            step=step.id,
            workspace=context.workspace,
            extra={"step_type": step.type_name, "description": step.description},
            default_category=ErrorCategory.EXECUTION,
        )

    @staticmethod
    def _error_context(step: TaskStep, context: ExecutionContext, extra: Optional[Dict[str, Any]] = None) -> ErrorContext:
        data = {"step_type": step.type_name, "description": step.description}
        data.update(extra or {})
        return ErrorContext(
            operation="execute_step",
            step=step.id,
            workspace=context.workspace,
            extra=data,
        )

    def _failure(self, step: TaskStep, context: ExecutionContext, error: CoworkError, start: float) -> ExecutorResult:
        logger.warning("PlanExecutor: step %s failed: %s", step.id, error.message)
        context.log(f"[FAILED] {step.description}: {error.message}")
        return self._record(step, ExecutorResult(
            step.id, False, time.monotonic() - start, error=error.message, failure=error,
        ))

    def _record(self, step: TaskStep, result: ExecutorResult) -> ExecutorResult:
        if self.action_logger is not None:
            self.action_logger.log_result(result, step)
        return result

    def _log_error(self, error: CoworkError) -> None:
        if self.error_logger is not None:
            self.error_logger.log(error)

    # -- Step handlers -----------------------------------------------------

    def _do_read_files(self, step: TaskStep, context: ExecutionContext) -> Dict[str, Any]:
        params = step.params
        rel = params.get("path") or "."
        target = sandbox.resolve(context.workspace, rel)
        logger.info("PlanExecutor step %s: readFiles '%s'", step.id, rel)

        if os.path.isfile(target):
            size = os.path.getsize(target)
            with open(target, "r", encoding="utf-8", errors="replace") as f:
                text = f.read(MAX_READ_CHARS + 1)
            return {
                "path": target,
                "files": [{"name": os.path.basename(target), "path": target, "size": size}],
                "content": text[:MAX_READ_CHARS],
                "truncated": len(text) > MAX_READ_CHARS,
            }

        extensions = _normalize_extensions(params.get("extensions"))
        pattern = params.get("pattern")
        files: List[Dict[str, Any]] = []
        directories: List[str] = []
        skipped: List[str] = []
        # listdir raises FileNotFoundError / NotADirectoryError as-is
        for name in sorted(os.listdir(target)):
            full = os.path.join(target, name)
            if os.path.isdir(full):
                directories.append(name)
                continue
            if extensions and os.path.splitext(name)[1].lower() not in extensions:
                continue
            if pattern and not fnmatch.fnmatch(name, pattern):
                continue
            try:
                size = os.path.getsize(full)
            except OSError as e:
                # dangling link, or removed since listdir
                logger.warning("Skipping %s: %s", full, e)
                skipped.append(name)
                continue
            files.append({"name": name, "path": full, "size": size})
        return {
            "path": target,
            "files": files,
            "directories": directories,
            "skipped": skipped,
            "count": len(files),
        }

    def _do_write_file(self, step: TaskStep, context: ExecutionContext) -> Dict[str, Any]:
        params = step.params
        rel = _first(params, "filename", "path")
        target = sandbox.resolve(context.workspace, rel)
        content = params.get("content")
        if content is None and params.get("fromPrevious"):
            content = self._previous_content(context)
        if content is None:
            raise ValueError(f"No content to write for {rel}")

        overwrite = params.get("overwrite", True)
        if os.path.isdir(target):
            raise IsADirectoryError(errno.EISDIR, "Target is a directory", rel)
        if not overwrite and os.path.exists(target):
            raise FileExistsError(errno.EEXIST, "File already exists", rel)

        data = content.encode("utf-8")
        os.makedirs(os.path.dirname(target), exist_ok=True)
        logger.info("PlanExecutor step %s: writeFile '%s' (%d bytes)", step.id, rel, len(data))
        with open(target, "wb") as f:
            f.write(data)
        return {"filePath": target, "bytesWritten": len(data)}

    @staticmethod
    def _previous_content(context: ExecutionContext) -> Optional[str]:
        """Most recent string ``content`` produced earlier in this run."""
        for output in reversed(list(context.outputs.values())):
            if isinstance(output, dict) and isinstance(output.get("content"), str):
                return output["content"]
        return None

    def _do_create_folder(self, step: TaskStep, context: ExecutionContext) -> Dict[str, Any]:
        folders = step.params.get("folders") or []
        # Resolve everything first so one bad entry creates nothing
        targets = [sandbox.resolve(context.workspace, folder) for folder in folders]
        created: List[str] = []
        existing: List[str] = []
        for target in targets:
            if os.path.isdir(target):
                existing.append(target)
                continue
            os.makedirs(target)
            created.append(target)
        logger.info(
            "PlanExecutor step %s: createFolder created=%d existing=%d",
            step.id, len(created), len(existing),
        )
        return {"createdFolders": created, "existingFolders": existing}

    def _do_rename_file(self, step: TaskStep, context: ExecutionContext) -> Dict[str, Any]:
        params = step.params
        source = _first(params, "sourcePath", "source", "pattern")
        destination = _first(params, "destinationPath", "destination")
        dest = sandbox.resolve(context.workspace, destination)

        if any(ch in source for ch in _GLOB_CHARS):
            sandbox.resolve(context.workspace, os.path.dirname(source) or ".")
            matches = sorted(glob.glob(os.path.join(context.workspace, source)))
            sources = [sandbox.resolve(context.workspace, m) for m in matches if os.path.isfile(m)]
            os.makedirs(dest, exist_ok=True)
            moves = [(src, os.path.join(dest, os.path.basename(src))) for src in sources]
        else:
            src = sandbox.resolve(context.workspace, source)
            if not os.path.lexists(src):
                raise FileNotFoundError(errno.ENOENT, "Source does not exist", source)
            if os.path.isdir(dest):
                moves = [(src, os.path.join(dest, os.path.basename(src)))]
            else:
                os.makedirs(os.path.dirname(dest), exist_ok=True)
                moves = [(src, dest)]

        for _, to in moves:
            if os.path.exists(to):
                raise FileExistsError(errno.EEXIST, "Destination already exists", to)

        moved = []
        for src, to in moves:
            shutil.move(src, to)
            moved.append({"from": src, "to": to})
        logger.info("PlanExecutor step %s: renameFile moved %d file(s)", step.id, len(moved))
        result: Dict[str, Any] = {"moved": moved, "count": len(moved)}
        if len(moved) == 1:
            result.update(moved[0])
        return result

    def _do_extract_data(self, step: TaskStep, context: ExecutionContext) -> Dict[str, Any]:
        params = step.params
        rel = params.get("path") or "."
        target = sandbox.resolve(context.workspace, rel)
        logger.info("PlanExecutor step %s: extractData '%s'", step.id, rel)
        if os.path.isfile(target):
            analyses = [self.analyzer.analyze_file(target)]
        else:
            if not os.path.isdir(target):
                raise FileNotFoundError(errno.ENOENT, "Path does not exist", rel)
            analyses = self.analyzer.analyze_directory(target, params.get("extensions"))

        statistics = self.analyzer.summarize(analyses)
        buf = io.StringIO()
        writer = csv.writer(buf, lineterminator="\n")
        writer.writerow(["name", "category", "size", "keywords"])
        for a in analyses:
            writer.writerow([a.name, a.category, a.size, " ".join(a.keywords)])

        return {
            "extractedData": [a.to_dict() for a in analyses],
            "summary": "Data extraction completed",
            "categories": statistics["categories"],
            "statistics": statistics,
            "content": buf.getvalue(),
        }

    def _do_generate_report(self, step: TaskStep, context: ExecutionContext) -> Dict[str, Any]:
        params = step.params
        goal = params.get("goal") or context.goal or "Workspace report"
        statistics = None
        for output in reversed(list(context.outputs.values())):
            if isinstance(output, dict) and isinstance(output.get("statistics"), dict):
                statistics = output["statistics"]
                break
        if statistics is None:
            statistics = self.analyzer.summarize(self.analyzer.analyze_directory(context.workspace))
        logger.info("PlanExecutor step %s: generateReport for '%s'", step.id, goal[:80])
        return {
            "title": "Generated Report",
            "format": "markdown",
            "content": self.analyzer.render_report(goal, statistics),
            "outputPath": params.get("outputPath"),
        }
