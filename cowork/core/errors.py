"""
Error taxonomy for the plan execution engine.

Every failure that crosses a component boundary is expressed as a
CoworkError carrying a category, a severity, the context it happened in
and the RecoveryStrategy the RecoveryManager should apply. Errors are
built once at the point of failure and only read afterwards.

ErrorRecord is the narrow, read-only view rebuilt from a log line; it is
never re-raised or re-executed.
"""

import urllib.error
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union


class ErrorCategory(Enum):
    """Where an error originated."""

    SYSTEM = "system"
    CONFIGURATION = "configuration"
    PLANNING = "planning"
    EXECUTION = "execution"
    SAFETY = "safety"
    AI = "ai"
    FILE_SYSTEM = "file_system"
    NETWORK = "network"
    VALIDATION = "validation"
    USER_INPUT = "user_input"


class ErrorSeverity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RecoveryAction(Enum):
    RETRY = "retry"
    FALLBACK = "fallback"
    ABORT = "abort"
    USER_INTERVENTION = "user_intervention"
    IGNORE = "ignore"
    RESTART = "restart"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ErrorContext:
    """Where and when an error happened. Enough to rebuild a log line."""

    operation: str
    step: Optional[str] = None
    file: Optional[str] = None
    workspace: Optional[str] = None
    timestamp: datetime = field(default_factory=_utcnow)
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RecoveryStrategy:
    """
    Policy attached to an error.

    retry_delay is the backoff base in seconds. fallback is only used by
    RecoveryAction.FALLBACK and must take no arguments.
    """

    action: RecoveryAction
    max_retries: Optional[int] = None
    retry_delay: Optional[float] = None
    fallback: Optional[Callable[[], Any]] = None
    user_message: str = ""
    requires_confirmation: bool = False


class CoworkError(Exception):
    """Base error for everything the engine reports."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory,
        severity: ErrorSeverity,
        context: ErrorContext,
        recovery_strategy: RecoveryStrategy,
        *,
        code: Optional[str] = None,
        cause: Optional[BaseException] = None,
        retryable: Optional[bool] = None,
        user_friendly: bool = True,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.context = context
        self.recovery_strategy = recovery_strategy
        self.code = code
        self.cause = cause
        if retryable is None:
            retryable = recovery_strategy.action == RecoveryAction.RETRY
        self.retryable = retryable
        self.user_friendly = user_friendly
        if cause is not None:
            self.__cause__ = cause

    @property
    def name(self) -> str:
        return type(self).__name__

    @property
    def user_message(self) -> str:
        """Non-technical message for the presentation layer."""
        if self.user_friendly and self.recovery_strategy.user_message:
            return self.recovery_strategy.user_message
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Flat JSON-safe representation used by ErrorLogger."""
        return {
            "timestamp": self.context.timestamp.isoformat(),
            "name": self.name,
            "level": "ERROR",
            "category": self.category.value,
            "severity": self.severity.value,
            "code": self.code,
            "message": self.message,
            "operation": self.context.operation,
            "step": self.context.step,
            "file": self.context.file,
            "workspace": self.context.workspace,
            "retryable": self.retryable,
            "recovery_action": self.recovery_strategy.action.value,
            "user_message": self.recovery_strategy.user_message,
            "user_friendly": self.user_friendly,
            "cause": repr(self.cause) if self.cause is not None else None,
            "extra": self.context.extra,
        }

    def __str__(self) -> str:
        return f"[{self.severity.value.upper()}] {self.category.value}: {self.message}"


# ---------------------------------------------------------------------------
# Concrete error types (category defaults)
# ---------------------------------------------------------------------------

class ConfigurationError(CoworkError):
    def __init__(
        self,
        message: str,
        context: ErrorContext,
        recovery_strategy: Optional[RecoveryStrategy] = None,
    ) -> None:
        super().__init__(
            message,
            ErrorCategory.CONFIGURATION,
            ErrorSeverity.MEDIUM,
            context,
            recovery_strategy or RecoveryStrategy(
                action=RecoveryAction.USER_INTERVENTION,
                user_message="Please check your configuration file and try again.",
            ),
            code="CONFIG_ERROR",
        )


class AIProviderError(CoworkError):
    def __init__(
        self,
        message: str,
        context: ErrorContext,
        cause: Optional[BaseException] = None,
        recovery_strategy: Optional[RecoveryStrategy] = None,
    ) -> None:
        super().__init__(
            message,
            ErrorCategory.AI,
            ErrorSeverity.HIGH,
            context,
            recovery_strategy or RecoveryStrategy(
                action=RecoveryAction.FALLBACK,
                user_message="AI service is unavailable. Falling back to rule-based planning.",
            ),
            code="AI_PROVIDER_ERROR",
            cause=cause,
            retryable=True,
        )


class FileSystemError(CoworkError):
    def __init__(
        self,
        message: str,
        context: ErrorContext,
        cause: Optional[BaseException] = None,
        recovery_strategy: Optional[RecoveryStrategy] = None,
    ) -> None:
        super().__init__(
            message,
            ErrorCategory.FILE_SYSTEM,
            ErrorSeverity.MEDIUM,
            context,
            recovery_strategy or file_retry_strategy(),
            code="FILESYSTEM_ERROR",
            cause=cause,
        )


class PlanningError(CoworkError):
    def __init__(
        self,
        message: str,
        context: ErrorContext,
        cause: Optional[BaseException] = None,
        recovery_strategy: Optional[RecoveryStrategy] = None,
    ) -> None:
        super().__init__(
            message,
            ErrorCategory.PLANNING,
            ErrorSeverity.HIGH,
            context,
            recovery_strategy or RecoveryStrategy(
                action=RecoveryAction.FALLBACK,
                user_message="Planning failed. Using simplified approach.",
            ),
            code="PLANNING_ERROR",
            cause=cause,
        )


class ExecutionError(CoworkError):
    def __init__(
        self,
        message: str,
        context: ErrorContext,
        cause: Optional[BaseException] = None,
        step_description: Optional[str] = None,
    ) -> None:
        step_label = step_description or context.step or "unknown step"
        super().__init__(
            message,
            ErrorCategory.EXECUTION,
            ErrorSeverity.HIGH,
            context,
            RecoveryStrategy(
                action=RecoveryAction.USER_INTERVENTION,
                user_message=(
                    f"Step execution failed: {step_label}. "
                    "Please check the error and try again."
                ),
                requires_confirmation=True,
            ),
            code="EXECUTION_ERROR",
            cause=cause,
            retryable=False,
        )


class SafetyError(CoworkError):
    def __init__(
        self,
        message: str,
        context: ErrorContext,
        recovery_strategy: Optional[RecoveryStrategy] = None,
    ) -> None:
        super().__init__(
            message,
            ErrorCategory.SAFETY,
            ErrorSeverity.CRITICAL,
            context,
            recovery_strategy or RecoveryStrategy(
                action=RecoveryAction.ABORT,
                user_message="Safety check failed. Operation aborted for your protection.",
            ),
            code="SAFETY_ERROR",
        )


class OutOfBoundsError(SafetyError):
    """A path resolved outside the workspace boundary."""

    def __init__(self, path: str, workspace: str, operation: str = "resolve_path") -> None:
        super().__init__(
            f'Path "{path}" is outside allowed workspace boundaries',
            ErrorContext(operation=operation, file=path, workspace=workspace),
        )
        self.path = path
        self.workspace = workspace


class ValidationError(CoworkError):
    def __init__(
        self,
        message: str,
        context: ErrorContext,
        field_name: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        where = f" for field: {field_name}" if field_name else ""
        super().__init__(
            message,
            ErrorCategory.VALIDATION,
            ErrorSeverity.MEDIUM,
            context,
            RecoveryStrategy(
                action=RecoveryAction.USER_INTERVENTION,
                user_message=f"Validation failed{where}. Please correct the input and try again.",
            ),
            code="VALIDATION_ERROR",
            cause=cause,
        )
        self.field_name = field_name


class PlanValidationError(ValidationError):
    """Candidate plan rejected; ``violations`` lists every problem found."""

    def __init__(self, violations: List[str], context: Optional[ErrorContext] = None) -> None:
        self.violations = list(violations)
        first_field = self.violations[0].split(":", 1)[0] if self.violations else None
        summary = "Invalid task plan: " + "; ".join(self.violations)
        super().__init__(
            summary,
            context or ErrorContext(operation="validate_plan"),
            field_name=first_field,
        )


class NetworkError(CoworkError):
    def __init__(
        self,
        message: str,
        context: ErrorContext,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(
            message,
            ErrorCategory.NETWORK,
            ErrorSeverity.HIGH,
            context,
            network_backoff_strategy(),
            code="NETWORK_ERROR",
            cause=cause,
            retryable=True,
        )


# ---------------------------------------------------------------------------
# Strategy factories
# ---------------------------------------------------------------------------

def file_retry_strategy(max_retries: int = 3, retry_delay: float = 1.0) -> RecoveryStrategy:
    return RecoveryStrategy(
        action=RecoveryAction.RETRY,
        max_retries=max_retries,
        retry_delay=retry_delay,
        user_message="File operation failed. Retrying...",
    )


def permission_strategy() -> RecoveryStrategy:
    return RecoveryStrategy(
        action=RecoveryAction.USER_INTERVENTION,
        user_message="Permission denied. Please check file permissions and try again.",
    )


def cancelled_strategy() -> RecoveryStrategy:
    return RecoveryStrategy(
        action=RecoveryAction.ABORT,
        user_message="The operation was cancelled. Nothing further was changed.",
    )


def path_conflict_strategy() -> RecoveryStrategy:
    return RecoveryStrategy(
        action=RecoveryAction.USER_INTERVENTION,
        user_message="A file or folder is in the way. Please check the workspace and try again.",
    )


def network_backoff_strategy(max_retries: int = 5, retry_delay: float = 2.0) -> RecoveryStrategy:
    return RecoveryStrategy(
        action=RecoveryAction.RETRY,
        max_retries=max_retries,
        retry_delay=retry_delay,
        user_message="Network operation failed. Retrying with exponential backoff...",
    )


def ai_fallback_strategy(fallback: Callable[[], Any]) -> RecoveryStrategy:
    return RecoveryStrategy(
        action=RecoveryAction.FALLBACK,
        fallback=fallback,
        user_message="AI service unavailable. Using rule-based approach.",
    )


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

class ErrorFactory:
    """Builds the right CoworkError subclass for a category or exception."""

    @staticmethod
    def create_error(
        error: Union[BaseException, str],
        category: ErrorCategory,
        context: ErrorContext,
        *,
        severity: Optional[ErrorSeverity] = None,
        recovery_strategy: Optional[RecoveryStrategy] = None,
        code: Optional[str] = None,
        retryable: Optional[bool] = None,
    ) -> CoworkError:
        message = error if isinstance(error, str) else str(error) or type(error).__name__
        cause = None if isinstance(error, str) else error

        if category == ErrorCategory.CONFIGURATION:
            return ConfigurationError(message, context, recovery_strategy)
        if category == ErrorCategory.AI:
            return AIProviderError(message, context, cause, recovery_strategy)
        if category == ErrorCategory.FILE_SYSTEM:
            return FileSystemError(message, context, cause, recovery_strategy)
        if category == ErrorCategory.PLANNING:
            return PlanningError(message, context, cause, recovery_strategy)
        if category == ErrorCategory.EXECUTION:
            return ExecutionError(message, context, cause)
        if category == ErrorCategory.SAFETY:
            return SafetyError(message, context, recovery_strategy)
        if category == ErrorCategory.VALIDATION:
            return ValidationError(message, context)
        if category == ErrorCategory.NETWORK:
            return NetworkError(message, context, cause)
        return CoworkError(
            message,
            category,
            severity or ErrorSeverity.MEDIUM,
            context,
            recovery_strategy or RecoveryStrategy(
                action=RecoveryAction.ABORT,
                user_message="An unexpected error occurred.",
            ),
            code=code,
            cause=cause,
            retryable=retryable,
        )

    @staticmethod
    def from_exception(
        exc: BaseException,
        operation: str,
        *,
        step: Optional[str] = None,
        file: Optional[str] = None,
        workspace: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
        default_category: ErrorCategory = ErrorCategory.SYSTEM,
    ) -> CoworkError:
        """Classify an arbitrary exception. CoworkErrors pass through untouched."""
        if isinstance(exc, CoworkError):
            return exc

        context = ErrorContext(
            operation=operation,
            step=step,
            file=file or getattr(exc, "filename", None),
            workspace=workspace,
            extra=dict(extra or {}),
        )
        if isinstance(exc, PermissionError):
            return FileSystemError(str(exc), context, exc, permission_strategy())
        if isinstance(exc, (FileExistsError, IsADirectoryError, NotADirectoryError)):
            # Retrying cannot clear these
            return FileSystemError(str(exc), context, exc, path_conflict_strategy())
        if isinstance(exc, (ConnectionError, urllib.error.URLError)):
            return NetworkError(str(exc), context, exc)
        if isinstance(exc, OSError):
            return FileSystemError(str(exc), context, exc)
        if isinstance(exc, (ValueError, TypeError, KeyError)):
            return ValidationError(str(exc), context, cause=exc)
        return ErrorFactory.create_error(exc, default_category, context)


# ---------------------------------------------------------------------------
# Read-only view rebuilt from log lines
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ErrorRecord:
    timestamp: datetime
    category: ErrorCategory
    severity: ErrorSeverity
    message: str
    operation: str
    name: str = "CoworkError"
    code: Optional[str] = None
    step: Optional[str] = None
    file: Optional[str] = None
    workspace: Optional[str] = None
    retryable: bool = False
    recovery_action: Optional[RecoveryAction] = None
    user_friendly: bool = True
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ErrorRecord":
        """Raises KeyError/ValueError on malformed entries."""
        action = data.get("recovery_action")
        return cls(
            timestamp=datetime.fromisoformat(data["timestamp"]),
            category=ErrorCategory(data["category"]),
            severity=ErrorSeverity(data["severity"]),
            message=data["message"],
            operation=data.get("operation") or "",
            name=data.get("name") or "CoworkError",
            code=data.get("code"),
            step=data.get("step"),
            file=data.get("file"),
            workspace=data.get("workspace"),
            retryable=bool(data.get("retryable", False)),
            recovery_action=RecoveryAction(action) if action else None,
            user_friendly=bool(data.get("user_friendly", True)),
            extra=dict(data.get("extra") or {}),
        )
