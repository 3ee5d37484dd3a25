"""Unit tests for rules.yaml loading, validation and env overrides."""

import sys
from pathlib import Path

_root = Path(__file__).resolve().parent.parent.parent
if str(_root) not in sys.path:
    sys.path.insert(0, str(_root))

import pytest
from cowork.core.errors import ConfigurationError
from cowork.core.types import DEFAULT_STEP_TIMEOUTS, StepType
from cowork.utils.config import EngineConfig, build_config, load_config


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("COWORK_MAX_STEPS", "COWORK_NONINTERACTIVE", "COWORK_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)


def _write(tmp_path, text):
    path = tmp_path / "rules.yaml"
    path.write_text(text, encoding="utf-8")
    return str(path)


class TestDefaults:

    def test_missing_file_gives_defaults(self, tmp_path):
        cfg = load_config(str(tmp_path / "absent.yaml"))
        assert cfg == EngineConfig()

    def test_empty_file_gives_defaults(self, tmp_path):
        cfg = load_config(_write(tmp_path, ""))
        assert cfg.max_steps == 20
        assert cfg.timeouts == DEFAULT_STEP_TIMEOUTS
        assert cfg.file_retry.max_retries == 3
        assert cfg.network_retry.retry_delay == 2.0
        assert set(cfg.allowed_operations) == {t.value for t in StepType}

    def test_missing_recovery_section_matches_empty_one(self, tmp_path):
        absent = load_config(_write(tmp_path, "engine:\n  max_steps: 5\n"))
        empty = load_config(_write(tmp_path, "engine:\n  max_steps: 5\nrecovery: {}\n"))
        assert absent == empty
        assert absent.file_retry.max_retries == 3
        assert absent.network_retry.retry_delay == 2.0

    def test_partial_recovery_section_keeps_other_defaults(self, tmp_path):
        cfg = load_config(_write(tmp_path, "recovery:\n  network:\n    max_retries: 1\n"))
        assert cfg.network_retry.max_retries == 1
        assert cfg.network_retry.retry_delay == 2.0
        assert cfg.file_retry.max_retries == 3

    def test_shipped_rules_file_is_valid(self):
        cfg = load_config(str(_root / "config" / "rules.yaml"))
        assert cfg.max_steps == 20
        assert cfg.log_level == "INFO"


class TestYaml:

    def test_values_are_read(self, tmp_path):
        cfg = load_config(_write(tmp_path, """
engine:
  max_steps: 5
  non_interactive: true
  allowed_operations: [readFiles, extractData]
timeouts:
  readFiles: 3
recovery:
  file_system:
    max_retries: 1
    retry_delay: 0.5
logging:
  level: debug
  log_dir: /tmp/cowork-logs
"""))
        assert cfg.max_steps == 5
        assert cfg.non_interactive is True
        assert cfg.allowed_operations == ("readFiles", "extractData")
        assert cfg.timeouts[StepType.READ_FILES] == 3.0
        assert cfg.timeouts[StepType.GENERATE_REPORT] == 120.0
        assert cfg.file_retry.max_retries == 1
        assert cfg.file_retry.retry_delay == 0.5
        assert cfg.network_retry.max_retries == 5
        assert cfg.log_level == "DEBUG"
        assert cfg.log_dir == "/tmp/cowork-logs"

    def test_malformed_yaml(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_config(_write(tmp_path, "engine: [unclosed"))

    def test_root_must_be_mapping(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_config(_write(tmp_path, "- just\n- a list\n"))


class TestValidation:

    @pytest.mark.parametrize("raw,fragment", [
        ({"engine": {"max_steps": 0}}, "engine.max_steps"),
        ({"engine": {"max_steps": "many"}}, "engine.max_steps"),
        ({"engine": {"allowed_operations": ["deleteFile"]}}, "unknown operation 'deleteFile'"),
        ({"timeouts": {"teleport": 3}}, "timeouts: unknown operation"),
        ({"timeouts": {"readFiles": -1}}, "timeouts.readFiles"),
        ({"recovery": {"file_system": {"max_retries": -1}}}, "recovery.file_system.max_retries"),
        ({"recovery": {"network": {"retry_delay": "soon"}}}, "recovery.network.retry_delay"),
        ({"logging": {"level": "LOUD"}}, "logging.level"),
    ])
    def test_invalid_values(self, raw, fragment):
        with pytest.raises(ConfigurationError) as exc_info:
            build_config(raw)
        assert fragment in exc_info.value.message

    def test_all_errors_are_collected(self):
        with pytest.raises(ConfigurationError) as exc_info:
            build_config({"engine": {"max_steps": 0}, "logging": {"level": "LOUD"}})
        assert len(exc_info.value.context.extra["errors"]) == 2


class TestEnvOverrides:

    def test_max_steps(self, tmp_path, monkeypatch):
        monkeypatch.setenv("COWORK_MAX_STEPS", "7")
        assert load_config(_write(tmp_path, "engine:\n  max_steps: 3\n")).max_steps == 7

    def test_invalid_max_steps(self, tmp_path, monkeypatch):
        monkeypatch.setenv("COWORK_MAX_STEPS", "lots")
        with pytest.raises(ConfigurationError):
            load_config(_write(tmp_path, ""))

    @pytest.mark.parametrize("value,expected", [("1", True), ("yes", True), ("0", False), ("off", False)])
    def test_non_interactive(self, tmp_path, monkeypatch, value, expected):
        monkeypatch.setenv("COWORK_NONINTERACTIVE", value)
        assert load_config(_write(tmp_path, "")).non_interactive is expected

    def test_log_level(self, tmp_path, monkeypatch):
        monkeypatch.setenv("COWORK_LOG_LEVEL", "warning")
        assert load_config(_write(tmp_path, "")).log_level == "WARNING"
