"""Tests for the uvicorn runner and its signal routing."""

from __future__ import annotations

import asyncio
import os
import signal
import socket
from unittest.mock import MagicMock

import pytest
import uvicorn

from tabconsole.config.settings import Settings
from tabconsole.server.runner import ConsoleServer, _watch_hangup, serve
from tabconsole.session.manager import LifecycleManager
from tabconsole.session.registry import SessionRegistry
from tabconsole.shutdown import ShutdownCoordinator


async def _app(scope, receive, send) -> None:  # pragma: no cover - never served
    raise AssertionError("not reached")


@pytest.fixture
def coordinator() -> ShutdownCoordinator:
    registry = SessionRegistry()
    manager = MagicMock(spec=LifecycleManager)
    manager.kill_all.return_value = 0
    return ShutdownCoordinator(manager, registry, exit_func=MagicMock())


class TestConsoleServer:
    def test_signal_goes_through_coordinator(self, coordinator: ShutdownCoordinator) -> None:
        server = ConsoleServer(uvicorn.Config(_app), coordinator)
        assert not server.should_exit

        server.handle_exit(signal.SIGTERM, None)

        assert coordinator.reason == "SIGTERM"
        assert server.should_exit

    def test_second_signal_is_ignored(self, coordinator: ShutdownCoordinator) -> None:
        server = ConsoleServer(uvicorn.Config(_app), coordinator)
        server.handle_exit(signal.SIGINT, None)
        server.handle_exit(signal.SIGTERM, None)
        assert coordinator.reason == "SIGINT"
        assert not server.force_exit

    @pytest.mark.asyncio
    async def test_sighup_triggers_shutdown(self, coordinator: ShutdownCoordinator) -> None:
        loop = asyncio.get_running_loop()
        if not _watch_hangup(loop, coordinator):
            pytest.skip("SIGHUP handlers unavailable here")
        try:
            os.kill(os.getpid(), signal.SIGHUP)
            await asyncio.sleep(0.05)
        finally:
            loop.remove_signal_handler(signal.SIGHUP)
        assert coordinator.reason == "SIGHUP"


class TestServe:
    @pytest.mark.asyncio
    async def test_port_in_use_exits_nonzero(self, shell, tmp_path) -> None:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as busy:
            busy.bind(("127.0.0.1", 0))
            busy.listen(1)
            port = busy.getsockname()[1]

            settings = Settings()
            settings.server.host = "127.0.0.1"
            settings.server.port = port
            settings.server.static_dir = str(tmp_path / "missing")

            assert await serve(settings, shell=shell) == 1
