"""Unit tests for RecoveryManager strategies and retry bookkeeping."""

import sys
import threading
from pathlib import Path

_root = Path(__file__).resolve().parent.parent.parent
if str(_root) not in sys.path:
    sys.path.insert(0, str(_root))

import pytest
from cowork.core.errors import (
    CoworkError,
    ErrorCategory,
    ErrorContext,
    ErrorSeverity,
    ExecutionError,
    FileSystemError,
    RecoveryAction,
    RecoveryStrategy,
    SafetyError,
    ValidationError,
    ai_fallback_strategy,
    file_retry_strategy,
)
from cowork.core.recovery import MAX_RETRY_DELAY, RecoveryManager, calculate_retry_delay


def _ctx(step="s1", file="a.txt"):
    return ErrorContext(operation="write", step=step, file=file, workspace="/ws")


class FakeSleep:
    def __init__(self):
        self.delays = []

    def __call__(self, seconds):
        self.delays.append(seconds)


def _error(action, **kwargs):
    return CoworkError(
        "failed", ErrorCategory.SYSTEM, ErrorSeverity.MEDIUM, _ctx(),
        RecoveryStrategy(action=action, **kwargs),
    )


class TestRetry:

    def test_backoff_then_escalation(self):
        """Three retries at ~1s, 2s, 4s; the fourth failure escalates."""
        sleep = FakeSleep()
        manager = RecoveryManager(sleep=sleep)
        error = FileSystemError("disk busy", _ctx())

        def always_fails():
            raise OSError("still busy")

        for _ in range(3):
            with pytest.raises(OSError):
                manager.attempt_recovery(error, always_fails)

        assert len(sleep.delays) == 3
        for delay, expected in zip(sleep.delays, [1.0, 2.0, 4.0]):
            assert expected <= delay <= expected * 1.1

        assert manager.can_recover(error) is False
        with pytest.raises(CoworkError) as exc_info:
            manager.attempt_recovery(error, always_fails)
        escalated = exc_info.value
        assert escalated.category == ErrorCategory.SYSTEM
        assert escalated.retryable is False
        assert "Maximum retries (3) exceeded" in escalated.message
        assert len(sleep.delays) == 3

    def test_success_returns_operation_result(self):
        manager = RecoveryManager(sleep=FakeSleep())
        assert manager.attempt_recovery(FileSystemError("x", _ctx()), lambda: "done") == "done"

    def test_counters_are_keyed_per_step_and_file(self):
        manager = RecoveryManager(sleep=FakeSleep())
        manager.attempt_recovery(FileSystemError("x", _ctx(step="s1")), lambda: 1)
        manager.attempt_recovery(FileSystemError("x", _ctx(step="s2")), lambda: 1)
        manager.attempt_recovery(FileSystemError("x", _ctx(step="s2", file="b.txt")), lambda: 1)
        stats = manager.get_retry_stats()
        assert stats == {
            "file_system:write:s1:a.txt": 1,
            "file_system:write:s2:a.txt": 1,
            "file_system:write:s2:b.txt": 1,
        }

    def test_clear_retry_stats(self):
        manager = RecoveryManager(sleep=FakeSleep())
        manager.attempt_recovery(FileSystemError("x", _ctx()), lambda: 1)
        manager.clear_retry_stats()
        assert manager.get_retry_stats() == {}

    def test_without_operation_escalates(self):
        manager = RecoveryManager(sleep=FakeSleep())
        with pytest.raises(CoworkError) as exc_info:
            manager.attempt_recovery(FileSystemError("x", _ctx()))
        assert exc_info.value.category == ErrorCategory.SYSTEM

    def test_retry_limits_override_budget(self):
        sleep = FakeSleep()
        manager = RecoveryManager(sleep=sleep, retry_limits={ErrorCategory.FILE_SYSTEM: (1, 0.5)})
        error = FileSystemError("x", _ctx())
        assert manager.attempt_recovery(error, lambda: "ok") == "ok"
        assert 0.5 <= sleep.delays[0] <= 0.55
        assert manager.can_recover(error) is False

    def test_concurrent_retries_are_counted(self):
        manager = RecoveryManager(sleep=FakeSleep())
        error = _error(RecoveryAction.RETRY, max_retries=100, retry_delay=0.0)

        def worker():
            for _ in range(10):
                manager.attempt_recovery(error, lambda: None)

        threads = [threading.Thread(target=worker) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert sum(manager.get_retry_stats().values()) == 50


class TestRetryDelay:

    @pytest.mark.parametrize("attempt,base,expected", [
        (0, 1.0, 1.0),
        (1, 1.0, 2.0),
        (2, 1.0, 4.0),
        (3, 2.0, 16.0),
    ])
    def test_no_jitter(self, attempt, base, expected):
        assert calculate_retry_delay(attempt, base, rng=lambda: 0.0) == expected

    def test_max_jitter_is_ten_percent(self):
        assert calculate_retry_delay(2, 1.0, rng=lambda: 1.0) == pytest.approx(4.4)

    def test_capped(self):
        assert calculate_retry_delay(10, 1.0, rng=lambda: 1.0) == MAX_RETRY_DELAY


class TestFallback:

    def test_fallback_result(self):
        manager = RecoveryManager()
        error = _error(RecoveryAction.FALLBACK, fallback=lambda: {"plan": "rules"})
        assert manager.attempt_recovery(error) == {"plan": "rules"}

    def test_failing_fallback_is_critical(self):
        def broken():
            raise RuntimeError("rules broke too")

        manager = RecoveryManager()
        error = _error(RecoveryAction.FALLBACK, fallback=broken)
        with pytest.raises(CoworkError) as exc_info:
            manager.attempt_recovery(error)
        assert exc_info.value.severity == ErrorSeverity.CRITICAL
        assert "failed" in exc_info.value.message
        assert "rules broke too" in exc_info.value.message

    def test_missing_fallback(self):
        manager = RecoveryManager()
        error = _error(RecoveryAction.FALLBACK)
        assert manager.can_recover(error) is False
        with pytest.raises(CoworkError):
            manager.attempt_recovery(error)

    def test_ai_fallback_strategy_factory(self):
        strategy = ai_fallback_strategy(lambda: 42)
        assert strategy.action == RecoveryAction.FALLBACK
        assert strategy.fallback() == 42


class TestUserIntervention:

    def test_refusal_raises_user_input_error(self):
        manager = RecoveryManager(confirmer=lambda message: False)
        error = ExecutionError("boom", _ctx(), step_description="Write file")
        with pytest.raises(CoworkError) as exc_info:
            manager.attempt_recovery(error)
        assert exc_info.value.category == ErrorCategory.USER_INPUT
        assert "boom" in exc_info.value.message

    def test_no_confirmer_counts_as_refusal(self):
        manager = RecoveryManager()
        with pytest.raises(CoworkError) as exc_info:
            manager.attempt_recovery(ExecutionError("boom", _ctx()))
        assert exc_info.value.category == ErrorCategory.USER_INPUT

    def test_acceptance_reraises_original(self):
        asked = []
        manager = RecoveryManager(confirmer=lambda message: asked.append(message) or True)
        error = ExecutionError("boom", _ctx(), step_description="Write file")
        with pytest.raises(ExecutionError) as exc_info:
            manager.attempt_recovery(error)
        assert exc_info.value is error
        assert "Write file" in asked[0]

    def test_without_confirmation_reraises_original(self):
        manager = RecoveryManager()
        error = ValidationError("bad", _ctx())
        with pytest.raises(ValidationError) as exc_info:
            manager.attempt_recovery(error)
        assert exc_info.value is error


class TestOtherActions:

    def test_abort_reraises(self):
        manager = RecoveryManager()
        error = SafetyError("nope", _ctx())
        assert manager.can_recover(error) is False
        with pytest.raises(SafetyError) as exc_info:
            manager.attempt_recovery(error)
        assert exc_info.value is error

    def test_ignore_returns_none(self):
        manager = RecoveryManager()
        error = _error(RecoveryAction.IGNORE)
        assert manager.can_recover(error) is True
        assert manager.attempt_recovery(error, lambda: "not called") is None

    def test_restart_clears_counters_and_runs_hooks(self):
        hooks = []
        manager = RecoveryManager(sleep=FakeSleep())
        manager.register_reset_hook(lambda: hooks.append("reset"))
        manager.attempt_recovery(FileSystemError("x", _ctx()), lambda: 1)
        assert manager.get_retry_stats()

        result = manager.attempt_recovery(_error(RecoveryAction.RESTART), lambda: "again")
        assert result == "again"
        assert hooks == ["reset"]
        assert manager.get_retry_stats() == {}


class TestRegisteredStrategies:

    def test_override_by_error_type_name(self):
        manager = RecoveryManager()
        manager.register_strategy("SafetyError", RecoveryStrategy(action=RecoveryAction.IGNORE))
        error = SafetyError("nope", _ctx())
        assert manager.can_recover(error) is True
        assert manager.attempt_recovery(error) is None

    def test_override_does_not_touch_other_types(self):
        manager = RecoveryManager(sleep=FakeSleep())
        manager.register_strategy("SafetyError", file_retry_strategy())
        assert manager.get_strategy(ValidationError("x", _ctx())).action == RecoveryAction.USER_INTERVENTION
