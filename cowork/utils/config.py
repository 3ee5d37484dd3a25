"""
Configuration loader for Cowork.

Reads config/rules.yaml once per call and returns an EngineConfig that the
caller threads explicitly through the validator, executor and recovery
manager. There is no module-level cache: two runs may hold two different
configs.

Usage:
    from cowork.utils.config import load_config
    cfg = load_config()            # config/rules.yaml under COWORK_ROOT
    cfg = load_config("my.yaml")   # explicit file

Environment overrides: COWORK_MAX_STEPS, COWORK_NONINTERACTIVE,
COWORK_LOG_LEVEL.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

import yaml

from cowork.core.errors import ConfigurationError, ErrorContext
from cowork.core.types import DEFAULT_STEP_TIMEOUTS, StepType
from cowork.utils.paths import config_path

logger = logging.getLogger(__name__)

_VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# A missing YAML section behaves exactly like an empty one.
_RECOVERY_DEFAULTS: Dict[str, Dict[str, float]] = {
    "file_system": {"max_retries": 3, "retry_delay": 1.0},
    "network": {"max_retries": 5, "retry_delay": 2.0},
}


@dataclass(frozen=True)
class RetrySettings:
    max_retries: int
    retry_delay: float  # seconds


@dataclass(frozen=True)
class EngineConfig:
    max_steps: int = 20
    non_interactive: bool = False
    allowed_operations: Tuple[str, ...] = tuple(t.value for t in StepType)
    timeouts: Dict[StepType, float] = field(default_factory=lambda: dict(DEFAULT_STEP_TIMEOUTS))
    file_retry: RetrySettings = RetrySettings(3, 1.0)
    network_retry: RetrySettings = RetrySettings(5, 2.0)
    log_level: str = "INFO"
    log_dir: Optional[str] = None
    max_error_log_bytes: int = 10 * 1024 * 1024
    max_error_log_files: int = 5


def _load_yaml(path: str) -> Dict[str, Any]:
    """Load a YAML file and return it as a dict (empty if the file is missing)."""
    if not os.path.isfile(path):
        logger.debug("No config file at %s, using defaults", path)
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(
            f"Could not load configuration from {path}: {e}",
            ErrorContext(operation="load_config", file=path),
        ) from e
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Configuration root in {path} must be a mapping",
            ErrorContext(operation="load_config", file=path),
        )
    return data


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _section(raw: Dict[str, Any], name: str) -> Dict[str, Any]:
    section = raw.get(name) or {}
    return section if isinstance(section, dict) else {}


def build_config(raw: Dict[str, Any], source: str = "<dict>") -> EngineConfig:
    """Validate a parsed rules mapping and build an EngineConfig."""
    errors = []
    engine = _section(raw, "engine")
    timeouts_raw = _section(raw, "timeouts")
    recovery_raw = _section(raw, "recovery")
    logging_raw = _section(raw, "logging")

    max_steps = engine.get("max_steps", 20)
    if not isinstance(max_steps, int) or isinstance(max_steps, bool) or max_steps < 1:
        errors.append("engine.max_steps must be a positive integer")

    allowed = engine.get("allowed_operations") or [t.value for t in StepType]
    if not isinstance(allowed, list):
        errors.append("engine.allowed_operations must be a list")
        allowed = []
    for op in allowed:
        if StepType.parse(op) is None:
            errors.append(f"engine.allowed_operations: unknown operation '{op}'")

    timeouts = dict(DEFAULT_STEP_TIMEOUTS)
    for name, seconds in timeouts_raw.items():
        kind = StepType.parse(name)
        if kind is None:
            errors.append(f"timeouts: unknown operation '{name}'")
            continue
        if not isinstance(seconds, (int, float)) or isinstance(seconds, bool) or seconds <= 0:
            errors.append(f"timeouts.{name} must be a positive number of seconds")
            continue
        timeouts[kind] = float(seconds)

    retries = {}
    for category, defaults in _RECOVERY_DEFAULTS.items():
        section = recovery_raw.get(category) or {}
        if not isinstance(section, dict):
            errors.append(f"recovery.{category} must be a mapping")
            section = {}
        merged = dict(defaults)
        merged.update({k: v for k, v in section.items() if v is not None})
        if not isinstance(merged["max_retries"], int) or merged["max_retries"] < 0:
            errors.append(f"recovery.{category}.max_retries must be a non-negative integer")
        if not isinstance(merged["retry_delay"], (int, float)) or merged["retry_delay"] < 0:
            errors.append(f"recovery.{category}.retry_delay must be a non-negative number")
        retries[category] = merged

    log_level = str(logging_raw.get("level", "INFO")).upper()
    if log_level not in _VALID_LOG_LEVELS:
        errors.append(f"logging.level: invalid log level '{log_level}'")

    if errors:
        raise ConfigurationError(
            "Configuration validation failed:\n" + "\n".join(errors),
            ErrorContext(operation="load_config", file=source, extra={"errors": errors}),
        )

    return EngineConfig(
        max_steps=max_steps,
        non_interactive=bool(engine.get("non_interactive", False)),
        allowed_operations=tuple(allowed),
        timeouts=timeouts,
        file_retry=RetrySettings(
            int(retries["file_system"]["max_retries"]),
            float(retries["file_system"]["retry_delay"]),
        ),
        network_retry=RetrySettings(
            int(retries["network"]["max_retries"]),
            float(retries["network"]["retry_delay"]),
        ),
        log_level=log_level,
        log_dir=logging_raw.get("log_dir"),
        max_error_log_bytes=int(logging_raw.get("max_error_log_bytes", 10 * 1024 * 1024)),
        max_error_log_files=int(logging_raw.get("max_error_log_files", 5)),
    )


def load_config(path: Optional[str] = None) -> EngineConfig:
    """Load rules.yaml (or ``path``), apply env overrides, return EngineConfig."""
    source = path or config_path()
    raw = _load_yaml(source)

    engine = dict(_section(raw, "engine"))
    logging_section = dict(_section(raw, "logging"))
    if os.environ.get("COWORK_MAX_STEPS"):
        try:
            engine["max_steps"] = int(os.environ["COWORK_MAX_STEPS"])
        except ValueError:
            engine["max_steps"] = os.environ["COWORK_MAX_STEPS"]
    if os.environ.get("COWORK_NONINTERACTIVE"):
        engine["non_interactive"] = _env_bool(os.environ["COWORK_NONINTERACTIVE"])
    if os.environ.get("COWORK_LOG_LEVEL"):
        logging_section["level"] = os.environ["COWORK_LOG_LEVEL"]

    merged = dict(raw)
    merged["engine"] = engine
    merged["logging"] = logging_section
    config = build_config(merged, source)
    logger.debug("Loaded configuration from %s (max_steps=%d)", source, config.max_steps)
    return config
