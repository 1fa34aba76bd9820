from __future__ import annotations

from pathlib import Path

import pytest

from lspbridge.config import DEFAULT_CONFIG_NAME, load_config
from lspbridge.exceptions import ConfigError
from lspbridge.runtime import env_policy


def test_defaults_without_file(tmp_path: Path) -> None:
    config = load_config(root=tmp_path)
    assert config.server.command == []
    assert config.client.timeout_seconds() == 30.0
    assert config.client.notification_budget_seconds() == 2.0
    assert config.formatting.tab_size == 8


def test_reads_root_config(tmp_path: Path) -> None:
    (tmp_path / DEFAULT_CONFIG_NAME).write_text(
        """
[server]
command = ["gopls", "serve"]

[server.options]
usePlaceholders = true

[client]
workspace_folders = ["/src/a", "/src/b"]
hide_diagnostics = true
timeout = "1m30s"

[formatting]
insert_spaces = true
""",
        encoding="utf-8",
    )
    config = load_config(root=tmp_path)
    assert config.server.command == ["gopls", "serve"]
    assert config.server.options == {"usePlaceholders": True}
    assert config.client.workspace_folders == ["/src/a", "/src/b"]
    assert config.client.hide_diagnostics is True
    assert config.client.timeout_seconds() == 90.0
    assert config.formatting.insert_spaces is True


def test_explicit_path_must_exist(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="not found"):
        load_config(config_path=tmp_path / "nope.toml")


def test_invalid_toml_and_schema(tmp_path: Path) -> None:
    broken = tmp_path / "broken.toml"
    broken.write_text("[server\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="broken.toml"):
        load_config(config_path=broken)

    unknown = tmp_path / "unknown.toml"
    unknown.write_text('[client]\ncolour = "blue"\n', encoding="utf-8")
    with pytest.raises(ConfigError, match="colour"):
        load_config(config_path=unknown)

    bad_duration = tmp_path / "duration.toml"
    bad_duration.write_text('[client]\ntimeout = "soon"\n', encoding="utf-8")
    with pytest.raises(ConfigError, match="soon"):
        load_config(config_path=bad_duration)


@pytest.mark.parametrize(
    ("text", "expected_ns"),
    [
        ("1ns", 1),
        ("500ms", 500_000_000),
        ("1.5s", 1_500_000_000),
        ("1m30s", 90_000_000_000),
        ("2h", 7_200_000_000_000),
    ],
)
def test_parse_duration(text: str, expected_ns: int) -> None:
    assert env_policy.parse_duration_to_ns(text) == expected_ns


@pytest.mark.parametrize("text", ["", "10", "0s", "5 days", "-1s"])
def test_parse_duration_rejects(text: str) -> None:
    with pytest.raises(ConfigError):
        env_policy.parse_duration_to_ns(text)


def test_timeout_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(env_policy.TIMEOUT_ENV, raising=False)
    assert env_policy.timeout_from_env() is None
    monkeypatch.setenv(env_policy.TIMEOUT_ENV, " 750ms ")
    assert env_policy.timeout_from_env() == 0.75
    monkeypatch.setenv(env_policy.TIMEOUT_ENV, "later")
    with pytest.raises(ConfigError, match=env_policy.TIMEOUT_ENV):
        env_policy.timeout_from_env()
