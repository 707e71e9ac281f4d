from __future__ import annotations

import pytest

import config
from inspector import truncation


def test_app_config_defaults() -> None:
    cfg = config.AppConfig()

    assert cfg.max_iterations == 20
    assert cfg.tool_timeout_s == 30.0
    assert cfg.task_timeout_ms == 300_000
    assert cfg.rate_limit_backoff_s == 5.0
    assert cfg.health_check_interval_s == 30.0
    assert cfg.model == "claude-sonnet-4-20250514"


def test_load_app_config_ignores_none_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "_user_config", {"limits": {"max_iterations": 7}})

    assert config.load_app_config().max_iterations == 7
    assert config.load_app_config(max_iterations=None).max_iterations == 7
    assert config.load_app_config(max_iterations=3).max_iterations == 3


def test_default_provider_definitions(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "_user_config", {})
    monkeypatch.setenv("BRAVE_API_KEY", "secret")

    definitions = {d.id: d for d in config.load_provider_definitions()}

    assert set(definitions) == {"filesystem", "brave-search"}
    assert definitions["filesystem"].command == "npx"
    assert definitions["filesystem"].args[-1] == "/tmp"
    assert definitions["brave-search"].env == {"BRAVE_API_KEY": "secret"}


def test_configured_providers_replace_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "_user_config", {
        "providers": [{"id": "git", "command": "uvx", "args": ["mcp-server-git"]}],
    })

    (definition,) = config.load_provider_definitions()

    assert definition.name == "git"
    assert definition.args == ("mcp-server-git",)
    assert definition.transport == "stdio"


def test_data_dir_honours_env(tmp_path) -> None:
    assert config.get_data_dir() == tmp_path.resolve()


def test_dotted_get(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "_user_config", {"a": {"b": 1}})

    assert config.get("a.b") == 1
    assert config.get("a.c", 5) == 5
    assert config.get("a.b.c", "x") == "x"


def test_truncation_limits(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(truncation, "_overrides", {"console.text": 10, "trace.result": 5})

    assert truncation.get_limit("console.text") == 10
    assert truncation.get_limit("trace.result") == 1000
    assert truncation.trunc("abcdefghijklmnop", "console.text") == "abcdefg..."
    with pytest.raises(KeyError):
        truncation.get_limit("console.typo")
