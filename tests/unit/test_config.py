"""Tests for configuration loading."""

import pytest

from pipeline_xray.config import load_config
from pipeline_xray.persistence import (
    InMemoryExecutionRepository,
    SQLiteExecutionRepository,
    get_repository,
)


def test_defaults_without_file(tmp_path, monkeypatch):
    monkeypatch.setenv("XRAY_CONFIG", str(tmp_path / "missing.yaml"))
    for name in (
        "XRAY_AUTO_REASONING",
        "XRAY_REASONING_CONCURRENCY",
        "XRAY_REASONING_MAX_RETRIES",
        "XRAY_REASONING_DEBUG",
        "XRAY_DATABASE_URL",
        "DATABASE_URL",
    ):
        monkeypatch.delenv(name, raising=False)

    config = load_config()
    assert config.reasoning.auto_process is False
    assert config.reasoning.concurrency == 3
    assert config.reasoning.max_retries == 4
    assert config.reasoning.retry_delays == [1.0, 2.0, 4.0, 8.0]
    assert config.database_url is None


def test_load_config_from_file_and_env(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
reasoning:
  concurrency: 5
  retry_delays: [0.5, 1.5]
llm:
  model: openai:gpt-4o-mini
"""
    )
    monkeypatch.setenv("XRAY_CONFIG", str(config_path))
    monkeypatch.setenv("XRAY_AUTO_REASONING", "true")
    monkeypatch.setenv("XRAY_REASONING_MAX_RETRIES", "2")
    monkeypatch.setenv("XRAY_REASONING_DEBUG", "false")

    config = load_config()
    assert config.reasoning.concurrency == 5
    assert config.reasoning.retry_delays == [0.5, 1.5]
    assert config.reasoning.auto_process is True
    assert config.reasoning.max_retries == 2
    assert config.reasoning.debug is False
    assert config.llm.model == "openai:gpt-4o-mini"


def test_get_repository_uses_database_url(tmp_path, monkeypatch):
    monkeypatch.setenv("XRAY_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.setenv("XRAY_DATABASE_URL", f"sqlite://{tmp_path / 'xray.db'}")

    repo = get_repository()
    assert isinstance(repo, SQLiteExecutionRepository)
    assert get_repository() is repo


def test_get_repository_defaults_to_memory_and_rejects_unknown_scheme(tmp_path, monkeypatch):
    monkeypatch.setenv("XRAY_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.delenv("XRAY_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)

    assert isinstance(get_repository(), InMemoryExecutionRepository)
    with pytest.raises(ValueError, match="Unsupported database backend"):
        get_repository("mysql://localhost/xray")
