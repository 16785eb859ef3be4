"""Tests for configuration loading and validation."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from tabconsole.config.settings import (
    ServerConfig,
    SessionConfig,
    Settings,
    ShutdownConfig,
    load_settings,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Isolate from the caller's environment and any local .env file."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("PORT", raising=False)
    monkeypatch.delenv("TABCONSOLE_SERVER__PORT", raising=False)
    monkeypatch.delenv("TABCONSOLE_SESSION__WELCOME_DELAY", raising=False)


def _write_yaml(path: Path, text: str) -> Path:
    path.write_text(text)
    return path


class TestSettings:
    def test_default_settings(self) -> None:
        """Default Settings should be valid."""
        settings = Settings()
        assert settings.server.host == "0.0.0.0"
        assert settings.server.port == 3000
        assert settings.server.static_dir == "public"
        assert settings.session.main_tab_id == "main"
        assert settings.session.welcome_delay == 0.3
        assert settings.shutdown.grace_period == 5.0
        assert settings.logging.level == "INFO"

    def test_port_out_of_range_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ServerConfig(port=70000)

    def test_negative_welcome_delay_rejected(self) -> None:
        with pytest.raises(ValidationError):
            SessionConfig(welcome_delay=-1)

    def test_grace_period_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            ShutdownConfig(grace_period=0)


class TestLoadSettings:
    def test_missing_file_uses_defaults(self, tmp_path: Path) -> None:
        settings = load_settings(tmp_path / "missing.yaml")
        assert settings.server.port == 3000

    def test_yaml_values_are_loaded(self, tmp_path: Path) -> None:
        path = _write_yaml(
            tmp_path / "console.yaml",
            "server:\n  port: 4000\n  static_dir: web\n"
            "session:\n  main_tab_id: home\n"
            "shutdown:\n  grace_period: 2.5\n",
        )
        settings = load_settings(path)
        assert settings.server.port == 4000
        assert settings.server.static_dir == "web"
        assert settings.session.main_tab_id == "home"
        assert settings.shutdown.grace_period == 2.5

    def test_empty_yaml_file_uses_defaults(self, tmp_path: Path) -> None:
        settings = load_settings(_write_yaml(tmp_path / "empty.yaml", ""))
        assert settings.server.port == 3000

    def test_plain_port_env_overrides_yaml(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        path = _write_yaml(tmp_path / "console.yaml", "server:\n  port: 4000\n")
        monkeypatch.setenv("PORT", "5000")
        assert load_settings(path).server.port == 5000

    def test_blank_port_env_is_ignored(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PORT", "  ")
        assert load_settings().server.port == 3000

    def test_prefixed_env_beats_yaml(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        path = _write_yaml(tmp_path / "console.yaml", "session:\n  welcome_delay: 1.0\n")
        monkeypatch.setenv("TABCONSOLE_SESSION__WELCOME_DELAY", "0")
        assert load_settings(path).session.welcome_delay == 0

    def test_invalid_yaml_value_raises(self, tmp_path: Path) -> None:
        path = _write_yaml(tmp_path / "console.yaml", "server:\n  port: nope\n")
        with pytest.raises(ValidationError):
            load_settings(path)
