"""
Structured audit logging for Cowork: JSONL action log and JSONL error log.

ActionLogger writes one record per step result to
logs/actions/YYYY-MM-DD.jsonl and rotates by date. ErrorLogger writes one
record per CoworkError to logs/errors/cowork-errors-YYYY-MM-DD.jsonl,
rotates by size and can be queried back as ErrorRecord values.
ErrorAnalyzer summarizes a recent window of that log into trends and
recurring message patterns.
"""

import json
import logging
import os
import re
import threading
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from cowork.core.errors import CoworkError, ErrorCategory, ErrorRecord, ErrorSeverity
from cowork.core.types import ExecutorResult, TaskStep
from cowork.utils.paths import logs_dir

logger = logging.getLogger(__name__)

DEFAULT_MAX_ERROR_LOG_BYTES = 10 * 1024 * 1024
DEFAULT_MAX_ERROR_LOG_FILES = 5


def _today() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d")


def _timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


class ActionLogger:
    """Append-only JSONL log of executed steps."""

    def __init__(self, log_dir: Optional[str] = None) -> None:
        self._actions_dir = logs_dir("actions", root=log_dir)
        self._current_date: Optional[str] = None
        self._current_action_file: Optional[Any] = None
        self._lock = threading.Lock()

    @property
    def actions_dir(self) -> str:
        return self._actions_dir

    def _action_file(self) -> Any:
        """Return open file for today's action log. Rotates by date."""
        today = _today()
        if self._current_date != today:
            self._close_file()
            self._current_date = today
        if self._current_action_file is None:
            path = os.path.join(self._actions_dir, f"{today}.jsonl")
            self._current_action_file = open(path, "a", encoding="utf-8")
        return self._current_action_file

    def log_action(
        self,
        *,
        action_type: str,
        parameters: Optional[dict] = None,
        result: str = "success",
        duration_ms: Optional[float] = None,
        error: Optional[str] = None,
        **extra: Any,
    ) -> None:
        """Append one JSONL record to logs/actions/YYYY-MM-DD.jsonl."""
        entry = {
            "timestamp": _timestamp(),
            "action_type": action_type,
            "parameters": parameters if parameters is not None else {},
            "result": result,
            "duration_ms": duration_ms,
            "error": error,
        }
        entry.update(extra)
        # Remove None values for cleaner JSON
        entry = {k: v for k, v in entry.items() if v is not None}
        with self._lock:
            try:
                f = self._action_file()
                f.write(json.dumps(entry, default=str) + "\n")
                f.flush()
            except OSError as e:
                logger.error("Failed to write action log: %s", e)

    def log_result(self, result: ExecutorResult, step: Optional[TaskStep] = None) -> None:
        self.log_action(
            action_type=step.type_name if step else "unknown",
            parameters=dict(step.params) if step else {},
            result="success" if result.success else "failure",
            duration_ms=round(result.duration * 1000, 3),
            error=result.error,
            step_id=result.step_id,
            description=step.description if step else None,
        )

    def _close_file(self) -> None:
        if self._current_action_file is not None:
            try:
                self._current_action_file.close()
            except OSError:
                pass
            self._current_action_file = None

    def close(self) -> None:
        with self._lock:
            self._close_file()
            self._current_date = None


class ErrorLogger:
    """
    JSONL error log with size-based rotation.

    When today's file reaches ``max_bytes`` it is renamed to ``<name>.1``
    (older backups shift up) and at most ``max_files`` backups are kept.
    """

    def __init__(
        self,
        log_dir: Optional[str] = None,
        max_bytes: int = DEFAULT_MAX_ERROR_LOG_BYTES,
        max_files: int = DEFAULT_MAX_ERROR_LOG_FILES,
    ) -> None:
        self._errors_dir = logs_dir("errors", root=log_dir)
        self.max_bytes = max_bytes
        self.max_files = max_files
        self._lock = threading.Lock()

    @property
    def log_file(self) -> str:
        return os.path.join(self._errors_dir, f"cowork-errors-{_today()}.jsonl")

    def log(self, error: CoworkError) -> None:
        line = json.dumps(error.to_dict(), default=str)
        with self._lock:
            path = self.log_file
            try:
                self._rotate_if_needed(path)
                with open(path, "a", encoding="utf-8") as f:
                    f.write(line + "\n")
            except OSError as e:
                # The error log must never turn one failure into two.
                logger.error("Failed to write error log %s: %s", path, e)

    def _rotate_if_needed(self, path: str) -> None:
        try:
            size = os.path.getsize(path)
        except OSError:
            return
        if size < self.max_bytes:
            return
        logger.info("Rotating error log %s (%d bytes)", path, size)
        oldest = f"{path}.{self.max_files}"
        if os.path.exists(oldest):
            os.remove(oldest)
        for index in range(self.max_files - 1, 0, -1):
            src = f"{path}.{index}"
            if os.path.exists(src):
                os.replace(src, f"{path}.{index + 1}")
        if self.max_files > 0:
            os.replace(path, f"{path}.1")
        else:
            os.remove(path)

    def _files_oldest_first(self) -> List[str]:
        path = self.log_file
        backups = [f"{path}.{i}" for i in range(self.max_files, 0, -1)]
        return [p for p in backups + [path] if os.path.isfile(p)]

    def get_errors(
        self,
        category: Optional[ErrorCategory] = None,
        severity: Optional[ErrorSeverity] = None,
        since: Optional[datetime] = None,
    ) -> List[ErrorRecord]:
        """Read today's errors back, oldest first. Malformed lines are skipped."""
        records: List[ErrorRecord] = []
        with self._lock:
            files = self._files_oldest_first()
            for path in files:
                try:
                    with open(path, "r", encoding="utf-8") as f:
                        lines = f.readlines()
                except OSError as e:
                    logger.warning("Could not read error log %s: %s", path, e)
                    continue
                for line in lines:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        record = ErrorRecord.from_dict(json.loads(line))
                    except (ValueError, KeyError, TypeError):
                        logger.debug("Skipping malformed error log line in %s", path)
                        continue
                    if category is not None and record.category != category:
                        continue
                    if severity is not None and record.severity != severity:
                        continue
                    if since is not None and record.timestamp < since:
                        continue
                    records.append(record)
        return records

    def clear(self) -> None:
        """Delete today's error log and its backups."""
        with self._lock:
            for path in self._files_oldest_first():
                try:
                    os.remove(path)
                except OSError as e:
                    logger.warning("Could not remove error log %s: %s", path, e)


# Applied in order; URLs and emails go first so their digits and slashes
# are not rewritten piecemeal.
_MESSAGE_NORMALIZERS = (
    (re.compile(r"https?://\S+"), "URL"),
    (re.compile(r"\b[\w.+-]+@[\w-]+\.[\w.-]+\b"), "EMAIL"),
    (re.compile(r"[\"'`]"), ""),
    (re.compile(r"(?:[A-Za-z]:)?(?:\.{0,2}[\\/][^\s\\/:,;]+)+[\\/]?"), "PATH"),
    (re.compile(r"\d+"), "N"),
)

MAX_PATTERNS = 10
MAX_PATTERN_EXAMPLES = 3


def normalize_message(message: str) -> str:
    """Strip the specifics (numbers, quotes, emails, URLs, paths) from an error message."""
    for regex, replacement in _MESSAGE_NORMALIZERS:
        message = regex.sub(replacement, message)
    return message


class ErrorAnalyzer:
    """Summaries over a recent window of the error log."""

    def __init__(self, error_logger: ErrorLogger) -> None:
        self.error_logger = error_logger

    def _recent(self, hours: float) -> List[ErrorRecord]:
        since = datetime.now(timezone.utc) - timedelta(hours=hours)
        return self.error_logger.get_errors(since=since)

    def get_error_trends(self, hours: float = 24) -> Dict[str, Any]:
        records = self._recent(hours)
        by_category = Counter(r.category.value for r in records)
        by_severity = Counter(r.severity.value for r in records)
        return {
            "hours": hours,
            "total_errors": len(records),
            "by_category": dict(by_category),
            "by_severity": dict(by_severity),
            "critical_errors": by_severity.get(ErrorSeverity.CRITICAL.value, 0),
            "retryable_errors": sum(1 for r in records if r.retryable),
        }

    def get_error_patterns(self, hours: float = 24) -> List[Dict[str, Any]]:
        """
        Group recent errors by normalized message, most frequent first.

        Returns at most MAX_PATTERNS entries, each with up to
        MAX_PATTERN_EXAMPLES original messages. Ties keep first-seen order.
        """
        groups: Dict[str, Dict[str, Any]] = {}
        for record in self._recent(hours):
            pattern = normalize_message(record.message)
            group = groups.setdefault(pattern, {"pattern": pattern, "count": 0, "examples": []})
            group["count"] += 1
            if len(group["examples"]) < MAX_PATTERN_EXAMPLES:
                group["examples"].append(record.message)
        ranked = sorted(groups.values(), key=lambda g: g["count"], reverse=True)
        logger.debug("ErrorAnalyzer: %d pattern(s) over %sh", len(ranked), hours)
        return ranked[:MAX_PATTERNS]
