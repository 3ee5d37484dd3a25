"""
Recovery manager - applies the RecoveryStrategy attached to a CoworkError.

Supported actions: retry with exponential backoff, fallback, user
intervention, abort, ignore and restart. Retry counters are keyed by
(category, operation, step, file) and guarded by a lock so a manager can
be shared, although one manager per run is the intended use.
"""

import logging
import random
import threading
import time
from dataclasses import replace
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from cowork.core.errors import (
    CoworkError,
    ErrorCategory,
    ErrorContext,
    ErrorFactory,
    ErrorSeverity,
    RecoveryAction,
    RecoveryStrategy,
    cancelled_strategy,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = 1.0  # seconds
MAX_RETRY_DELAY = 30.0
JITTER_RATIO = 0.1


def calculate_retry_delay(
    attempt: int,
    base_delay: float,
    rng: Callable[[], float] = random.random,
) -> float:
    """base * 2^attempt plus up to 10% jitter, capped at MAX_RETRY_DELAY."""
    exponential = base_delay * (2 ** attempt)
    jitter = rng() * JITTER_RATIO * exponential
    return min(exponential + jitter, MAX_RETRY_DELAY)


class RecoveryManager:
    """
    Decide and perform recovery for a failed operation.

    Args:
        confirmer: callable(prompt) -> bool used by user-intervention
            strategies that require confirmation. Without one, such
            strategies are treated as refused.
        sleep: delay function, injectable for tests.
        retry_limits: per-category (max_retries, base delay) applied to
            every RETRY strategy of that category, e.g. from config.
    """

    def __init__(
        self,
        confirmer: Optional[Callable[[str], bool]] = None,
        sleep: Callable[[float], None] = time.sleep,
        retry_limits: Optional[Mapping[ErrorCategory, Tuple[int, float]]] = None,
    ) -> None:
        self._confirmer = confirmer
        self._sleep = sleep
        self._retry_limits = dict(retry_limits or {})
        self._custom_strategies: Dict[str, RecoveryStrategy] = {}
        self._retry_counters: Dict[str, int] = {}
        self._reset_hooks: List[Callable[[], None]] = []
        self._lock = threading.Lock()

    # -- Registration ------------------------------------------------------

    def register_strategy(self, error_type: str, strategy: RecoveryStrategy) -> None:
        """Override the strategy for every error whose class name is ``error_type``."""
        self._custom_strategies[error_type] = strategy

    def register_reset_hook(self, hook: Callable[[], None]) -> None:
        """Called on RESTART before the operation is re-invoked."""
        self._reset_hooks.append(hook)

    # -- Queries -----------------------------------------------------------

    def get_strategy(self, error: CoworkError) -> RecoveryStrategy:
        strategy = self._custom_strategies.get(error.name, error.recovery_strategy)
        limits = self._retry_limits.get(error.category)
        if limits is not None and strategy.action == RecoveryAction.RETRY:
            strategy = replace(strategy, max_retries=limits[0], retry_delay=limits[1])
        return strategy

    def can_recover(self, error: CoworkError) -> bool:
        strategy = self.get_strategy(error)
        if strategy.action == RecoveryAction.ABORT:
            return False
        if strategy.action == RecoveryAction.RETRY:
            key = self._retry_key(error)
            with self._lock:
                current = self._retry_counters.get(key, 0)
            return current < self._max_retries(strategy)
        if strategy.action == RecoveryAction.FALLBACK:
            return strategy.fallback is not None
        return True

    def get_retry_stats(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._retry_counters)

    def clear_retry_stats(self) -> None:
        with self._lock:
            self._retry_counters.clear()

    # -- Recovery ----------------------------------------------------------

    def attempt_recovery(
        self,
        error: CoworkError,
        operation: Optional[Callable[[], Any]] = None,
    ) -> Any:
        """
        Apply the strategy for ``error``.

        ``operation`` is the failed call; RETRY and RESTART re-invoke it and
        return its result. Exceptions from the re-invocation propagate as-is
        so the caller can classify them and decide whether to try again.
        """
        strategy = self.get_strategy(error)
        action = strategy.action

        if action == RecoveryAction.RETRY:
            return self._perform_retry(error, strategy, operation)
        if action == RecoveryAction.FALLBACK:
            return self._perform_fallback(error, strategy)
        if action == RecoveryAction.USER_INTERVENTION:
            return self._request_user_intervention(error, strategy)
        if action == RecoveryAction.ABORT:
            logger.error("Aborting %s: %s", error.context.operation, error.message)
            raise error
        if action == RecoveryAction.IGNORE:
            logger.info("Ignoring error in %s: %s", error.context.operation, error.message)
            return None
        if action == RecoveryAction.RESTART:
            return self._perform_restart(error, operation)
        raise ValueError(f"Unknown recovery action: {action}")

    def _perform_retry(
        self,
        error: CoworkError,
        strategy: RecoveryStrategy,
        operation: Optional[Callable[[], Any]],
    ) -> Any:
        key = self._retry_key(error)
        max_retries = self._max_retries(strategy)

        with self._lock:
            current = self._retry_counters.get(key, 0)
            if current < max_retries:
                self._retry_counters[key] = current + 1

        if current >= max_retries:
            raise self._escalate(
                f"Maximum retries ({max_retries}) exceeded for {error.context.operation}: {error.message}",
                error,
                ErrorSeverity.HIGH,
            )
        if operation is None:
            raise self._escalate(
                f"No operation available to retry for {error.context.operation}",
                error,
                ErrorSeverity.HIGH,
            )

        base = strategy.retry_delay if strategy.retry_delay is not None else DEFAULT_RETRY_DELAY
        delay = calculate_retry_delay(current, base)
        logger.warning(
            "Retrying %s (attempt %d/%d) in %.2fs: %s",
            error.context.operation, current + 1, max_retries, delay, error.message,
        )
        self._sleep(delay)
        return operation()

    def _perform_fallback(self, error: CoworkError, strategy: RecoveryStrategy) -> Any:
        if strategy.fallback is None:
            raise self._escalate(
                f"No fallback method available for {error.context.operation}",
                error,
                ErrorSeverity.HIGH,
            )
        logger.warning(
            "Falling back for %s: %s",
            error.context.operation, strategy.user_message or error.message,
        )
        try:
            return strategy.fallback()
        except Exception as fallback_error:
            raise self._escalate(
                f"Fallback method failed for {error.context.operation}: "
                f"original error: {error.message}; fallback error: {fallback_error}",
                error,
                ErrorSeverity.CRITICAL,
            ) from fallback_error

    def _request_user_intervention(self, error: CoworkError, strategy: RecoveryStrategy) -> Any:
        message = strategy.user_message or error.message
        logger.warning("User intervention required: %s", message)
        if strategy.requires_confirmation:
            confirmed = bool(self._confirmer(message)) if self._confirmer else False
            if not confirmed:
                raise ErrorFactory.create_error(
                    f"User cancelled operation {error.context.operation}: {error.message}",
                    ErrorCategory.USER_INPUT,
                    error.context,
                    severity=ErrorSeverity.MEDIUM,
                    recovery_strategy=cancelled_strategy(),
                    retryable=False,
                ) from error
        # Advisory only: the caller decides what to do with the original error.
        raise error

    def _perform_restart(self, error: CoworkError, operation: Optional[Callable[[], Any]]) -> Any:
        logger.warning("Restarting %s", error.context.operation)
        self.clear_retry_stats()
        for hook in self._reset_hooks:
            try:
                hook()
            except Exception as e:
                logger.warning("Reset hook %r failed: %s", hook, e)
        if operation is None:
            raise self._escalate(
                f"No operation available to restart for {error.context.operation}",
                error,
                ErrorSeverity.HIGH,
            )
        return operation()

    # -- Helpers -----------------------------------------------------------

    @staticmethod
    def _max_retries(strategy: RecoveryStrategy) -> int:
        return strategy.max_retries if strategy.max_retries is not None else DEFAULT_MAX_RETRIES

    @staticmethod
    def _retry_key(error: CoworkError) -> str:
        parts = [
            error.category.value,
            error.context.operation,
            error.context.step or "",
            error.context.file or "",
        ]
        return ":".join(p for p in parts if p)

    @staticmethod
    def _escalate(message: str, error: CoworkError, severity: ErrorSeverity) -> CoworkError:
        context = ErrorContext(
            operation=error.context.operation,
            step=error.context.step,
            file=error.context.file,
            workspace=error.context.workspace,
            extra={**error.context.extra, "original_error": error.message},
        )
        return ErrorFactory.create_error(
            message,
            ErrorCategory.SYSTEM,
            context,
            severity=severity,
            retryable=False,
        )
