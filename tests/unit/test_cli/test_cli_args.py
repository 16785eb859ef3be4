"""Tests for command-line parsing and the serve entry point."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from tabconsole.cli import main, parse_args


class TestParseArgs:
    def test_serve_defaults(self) -> None:
        args = parse_args(["serve"])
        assert args.command == "serve"
        assert args.host is None
        assert args.port is None
        assert args.config is None
        assert not args.verbose

    def test_global_and_serve_options(self) -> None:
        args = parse_args(
            ["-c", "my.yaml", "-v", "serve", "--host", "127.0.0.1", "--port", "8080",
             "--static-dir", "web"]
        )
        assert args.config == Path("my.yaml")
        assert args.verbose
        assert args.host == "127.0.0.1"
        assert args.port == 8080
        assert args.static_dir == "web"

    def test_port_must_be_integer(self) -> None:
        with pytest.raises(SystemExit):
            parse_args(["serve", "--port", "http"])


class TestMain:
    def test_serve_applies_overrides_and_exits_with_status(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("PORT", raising=False)
        fake_serve = AsyncMock(return_value=0)

        with patch("tabconsole.server.runner.serve", fake_serve), \
                patch("tabconsole.utils.logging.setup_logging") as setup:
            with pytest.raises(SystemExit) as exc_info:
                main(["-v", "serve", "--port", "4321", "--host", "127.0.0.1"])

        assert exc_info.value.code == 0
        settings = fake_serve.await_args.args[0]
        assert settings.server.port == 4321
        assert settings.server.host == "127.0.0.1"
        assert settings.logging.level == "DEBUG"
        setup.assert_called_once_with(settings.logging)

    def test_no_command_prints_help(self, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit):
            main([])
        assert "serve" in capsys.readouterr().out
