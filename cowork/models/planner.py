"""
Planning collaborators: turn a goal into a raw (unvalidated) plan dict.

RuleBasedPlanner matches a few keyword patterns and needs nothing but the
goal text. ModelPlanner asks a text generator (any callable prompt -> text)
for a JSON plan and falls back to the rule-based planner through the
RecoveryManager when the model call or its decoding fails.

Both return plain dicts in the canonical plan DSL; the caller is expected
to run them through PlanValidator before execution.
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

from cowork.core.errors import AIProviderError, ErrorContext, ai_fallback_strategy
from cowork.core.plan_validator import DEFAULT_MAX_STEPS
from cowork.core.recovery import RecoveryManager
from cowork.core.types import StepType
from cowork.models.cache import PlanCache
from cowork.utils.parsing import decode_plan

logger = logging.getLogger(__name__)

_DATA_EXTENSIONS = [".csv", ".json", ".txt"]

_PLANNING_PROMPT = """You are a careful file-task planner. Produce a plan for the goal below.

GOAL: {goal}

CONSTRAINTS:
- Maximum steps: {max_steps}
- Allowed step types: {operations}
- All paths are relative to the workspace root; never use absolute paths or '..'.
- Set "requiresConfirmation": true on the plan if any step is writeFile, createFolder or renameFile.

Step types:
- readFiles {{path, extensions?, pattern?}}: list files in a directory
- writeFile {{filename, content | fromPrevious: true}}: write a file
- createFolder {{folders: [..]}}: create directories
- renameFile {{sourcePath | pattern, destinationPath}}: move or rename files
- extractData {{path?, extensions?}}: analyze file contents
- generateReport {{goal?, outputPath?}}: produce a markdown report

Respond with ONLY a valid JSON object:
{{"goal": "...", "requiresConfirmation": true, "steps": [{{"type": "...", "description": "...", "params": {{}}, "timeout": 10000}}]}}
"""


class RuleBasedPlanner:
    """Keyword matcher for the common workspace chores."""

    def create_plan(self, goal: str, workspace: str) -> Optional[Dict[str, Any]]:
        """Return a raw plan, or None when the goal matches no known pattern."""
        lower = (goal or "").lower()
        if "organize" in lower or "sort" in lower:
            steps = self._organization_steps()
        elif "extract" in lower or "csv" in lower:
            steps = self._extraction_steps()
        elif "report" in lower or "summary" in lower:
            steps = self._report_steps(goal)
        else:
            logger.info("RuleBasedPlanner: no pattern matches '%s'", goal[:80])
            return None

        logger.info("RuleBasedPlanner: %d step(s) for '%s'", len(steps), goal[:80])
        return {
            "goal": goal,
            "requiresConfirmation": any(
                s["type"] in (StepType.WRITE_FILE.value, StepType.CREATE_FOLDER.value, StepType.RENAME_FILE.value)
                for s in steps
            ),
            "steps": steps,
        }

    @staticmethod
    def _organization_steps() -> List[Dict[str, Any]]:
        return [
            {
                "type": "readFiles",
                "description": "Scan workspace directory for files",
                "params": {"path": "."},
                "timeout": 30000,
            },
            {
                "type": "extractData",
                "description": "Analyze file types and content",
                "params": {"path": "."},
                "timeout": 60000,
            },
            {
                "type": "createFolder",
                "description": "Create organized folder structure",
                "params": {"folders": ["documents", "images", "spreadsheets", "other"]},
                "requiresConfirmation": True,
                "timeout": 10000,
            },
        ]

    @staticmethod
    def _extraction_steps() -> List[Dict[str, Any]]:
        return [
            {
                "type": "readFiles",
                "description": "Scan for data files",
                "params": {"path": ".", "extensions": list(_DATA_EXTENSIONS)},
                "timeout": 30000,
            },
            {
                "type": "extractData",
                "description": "Extract structured data from files",
                "params": {"path": ".", "extensions": list(_DATA_EXTENSIONS)},
                "timeout": 60000,
            },
            {
                "type": "writeFile",
                "description": "Export extracted data as CSV",
                "params": {"filename": "extracted_data.csv", "fromPrevious": True},
                "requiresConfirmation": True,
                "timeout": 10000,
            },
        ]

    @staticmethod
    def _report_steps(goal: str) -> List[Dict[str, Any]]:
        return [
            {
                "type": "readFiles",
                "description": "Read source files for report generation",
                "params": {"path": "."},
                "timeout": 30000,
            },
            {
                "type": "generateReport",
                "description": "Generate summary/report from source data",
                "params": {"goal": goal, "outputPath": "generated_report.md"},
                "timeout": 120000,
            },
            {
                "type": "writeFile",
                "description": "Save generated report",
                "params": {"filename": "generated_report.md", "fromPrevious": True},
                "requiresConfirmation": True,
                "timeout": 10000,
            },
        ]


class ModelPlanner:
    """
    Plan with a language model, falling back to rules on any model failure.

    Args:
        generate: callable(prompt) -> response text.
        fallback: planner used when the model fails (default RuleBasedPlanner).
        recovery_manager: applies the AI fallback strategy.
        cache: optional PlanCache for repeated goals.
        max_steps / allowed_operations: constraints stated in the prompt.
    """

    def __init__(
        self,
        generate: Callable[[str], str],
        fallback: Optional[RuleBasedPlanner] = None,
        recovery_manager: Optional[RecoveryManager] = None,
        cache: Optional[PlanCache] = None,
        max_steps: int = DEFAULT_MAX_STEPS,
        allowed_operations: Optional[Sequence[str]] = None,
    ) -> None:
        self._generate = generate
        self._fallback = fallback or RuleBasedPlanner()
        self._recovery = recovery_manager or RecoveryManager()
        self._cache = cache
        self.max_steps = max_steps
        self.allowed_operations = list(allowed_operations or [t.value for t in StepType])

    def build_prompt(self, goal: str) -> str:
        return _PLANNING_PROMPT.format(
            goal=goal,
            max_steps=self.max_steps,
            operations=", ".join(self.allowed_operations),
        )

    def create_plan(self, goal: str, workspace: str) -> Optional[Dict[str, Any]]:
        if self._cache is not None:
            cached = self._cache.get(goal, workspace)
            if cached is not None:
                return cached

        try:
            plan = self._plan_with_model(goal, workspace)
        except AIProviderError as error:
            logger.warning("ModelPlanner: %s", error.message)
            return self._recovery.attempt_recovery(error)

        if self._cache is not None:
            self._cache.set(goal, workspace, plan)
        return plan

    def _plan_with_model(self, goal: str, workspace: str) -> Dict[str, Any]:
        context = ErrorContext(operation="create_plan", workspace=workspace, extra={"goal": goal})
        strategy = ai_fallback_strategy(lambda: self._fallback.create_plan(goal, workspace))

        try:
            text = self._generate(self.build_prompt(goal))
        except Exception as e:
            raise AIProviderError(f"Model call failed: {e}", context, cause=e, recovery_strategy=strategy) from e

        decoded = decode_plan(text)
        if decoded is None:
            raise AIProviderError(
                "Model response did not contain a JSON plan", context, recovery_strategy=strategy,
            )
        # Some models wrap the plan: {"plan": {...}, "reasoning": ...}
        if isinstance(decoded.get("plan"), dict) and "steps" not in decoded:
            decoded = dict(decoded["plan"])
        decoded.setdefault("goal", goal)
        logger.info("ModelPlanner: decoded plan with %d step(s)", len(decoded.get("steps") or []))
        return decoded
