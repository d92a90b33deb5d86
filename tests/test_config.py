"""Tests for YAML configuration loading."""

from pathlib import Path

import pytest

from sentinel.config import load_config
from sentinel.config.loader import ConfigLoader, ConfigLoadError
from sentinel.config.models import LogFormat, LogLevel, StorageBackend
from sentinel.models.rules import RuleType

REPO_CONFIG = Path(__file__).resolve().parent.parent / "config"

ENV_VARS = (
    "LOG_LEVEL",
    "LOG_FORMAT",
    "REDIS_URL",
    "DATABASE_URL",
    "SMTP_HOST",
    "SMTP_PORT",
    "SMTP_USERNAME",
    "SMTP_PASSWORD",
    "SENTINEL_CONFIG_PATH",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def _write(directory: Path, name: str, content: str) -> None:
    (directory / name).write_text(content, encoding="utf-8")


def test_repository_config_loads():
    config = ConfigLoader(REPO_CONFIG).load()

    assert [r.id for r in config.rules.rules] == [
        "default_1",
        "default_2",
        "default_3",
        "default_4",
    ]
    assert config.rules.rules[0].type == RuleType.RATE
    assert len(config.rules.channels) == 5
    assert len(config.anomaly.rules) == 5
    assert config.anomaly.alert_confidence == 0.8
    assert config.dispatch.alert_cache_size == 1000
    assert config.storage.backend == StorageBackend.MEMORY


def test_missing_directory_gives_defaults(tmp_path):
    config = ConfigLoader(tmp_path / "absent").load()

    assert config.rules.rules == []
    assert config.anomaly.enabled
    assert config.logging.format == LogFormat.JSON
    assert config.redis.url == "redis://localhost:6379"


def test_invalid_entries_are_skipped(tmp_path):
    _write(
        tmp_path,
        "rules.yaml",
        """
rules:
  - id: good
    name: Good rule
    type: pattern
    condition:
      severity: [critical]
  - id: bad
    name: Bad rule
    type: bogus
    condition: {}
channels:
  - id: hook
    name: Hook
    type: webhook
    config: {url: "https://hooks.example.com/x"}
  - id: broken
    type: carrier_pigeon
""",
    )

    config = ConfigLoader(tmp_path).load()

    assert [r.id for r in config.rules.rules] == ["good"]
    assert [c.id for c in config.rules.channels] == ["hook"]


def test_env_overrides(tmp_path, monkeypatch):
    _write(
        tmp_path,
        "engine.yaml",
        """
logging:
  format: json
  level: INFO
dispatch:
  smtp:
    host: mail.internal
    port: 25
""",
    )
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setenv("LOG_FORMAT", "text")
    monkeypatch.setenv("SMTP_HOST", "smtp.example.com")
    monkeypatch.setenv("SMTP_PORT", "2525")
    monkeypatch.setenv("REDIS_URL", "redis://cache:6379")

    config = ConfigLoader(tmp_path).load()

    assert config.logging.level == LogLevel.DEBUG
    assert config.logging.format == LogFormat.TEXT
    assert config.dispatch.smtp.host == "smtp.example.com"
    assert config.dispatch.smtp.port == 2525
    assert config.redis.url == "redis://cache:6379"


def test_unknown_log_level_falls_back(tmp_path, monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "chatty")

    assert ConfigLoader(tmp_path).load().logging.level == LogLevel.INFO


def test_invalid_yaml_raises(tmp_path):
    _write(tmp_path, "rules.yaml", "rules: [unclosed\n")

    with pytest.raises(ConfigLoadError) as exc_info:
        ConfigLoader(tmp_path).load()

    assert exc_info.value.file_path == tmp_path / "rules.yaml"


def test_non_mapping_file_raises(tmp_path):
    _write(tmp_path, "engine.yaml", "- just\n- a list\n")

    with pytest.raises(ConfigLoadError, match="mapping"):
        ConfigLoader(tmp_path).load()


def test_invalid_training_settings_raise(tmp_path):
    _write(tmp_path, "anomaly.yaml", "training:\n  min_training_samples: 1\n")

    with pytest.raises(ConfigLoadError, match="anomaly"):
        ConfigLoader(tmp_path).load()


def test_config_path_must_be_directory(tmp_path):
    target = tmp_path / "file.yaml"
    target.write_text("{}", encoding="utf-8")

    with pytest.raises(ConfigLoadError):
        ConfigLoader(target)


def test_load_config_reads_env_path(tmp_path, monkeypatch):
    _write(tmp_path, "anomaly.yaml", "enabled: false\n")
    monkeypatch.setenv("SENTINEL_CONFIG_PATH", str(tmp_path))

    assert not load_config().anomaly.enabled
