"""Run the console under uvicorn with coordinated shutdown."""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from types import FrameType

import uvicorn

from tabconsole.config.settings import Settings
from tabconsole.server.app import create_app
from tabconsole.session.platform import ShellCommand
from tabconsole.shutdown import ShutdownCoordinator

logger = logging.getLogger(__name__)


class ConsoleServer(uvicorn.Server):
    """uvicorn server whose signal handling goes through the coordinator.

    The coordinator kills every shell first and then asks the server to
    stop accepting connections.
    """

    def __init__(self, config: uvicorn.Config, coordinator: ShutdownCoordinator) -> None:
        super().__init__(config)
        self._coordinator = coordinator
        coordinator.attach_listener(self.request_close)

    def request_close(self) -> None:
        self.should_exit = True

    def handle_exit(self, sig: int, frame: FrameType | None) -> None:
        try:
            reason = signal.Signals(sig).name
        except ValueError:
            reason = f"signal {sig}"
        self._coordinator.trigger_threadsafe(reason)


async def serve(settings: Settings, shell: ShellCommand | None = None) -> int:
    """Serve until shutdown and return the process exit status."""
    app = create_app(settings, shell=shell)
    coordinator: ShutdownCoordinator = app.state.coordinator
    config = uvicorn.Config(
        app,
        host=settings.server.host,
        port=settings.server.port,
        log_level=settings.logging.level.lower(),
    )
    server = ConsoleServer(config, coordinator)
    loop = asyncio.get_running_loop()
    coordinator.install(loop)
    hangup = _watch_hangup(loop, coordinator)
    _log_banner(settings, app.state.manager.shell)

    error: BaseException | None = None
    try:
        await server.serve()
    except (OSError, SystemExit) as e:
        # uvicorn exits via SystemExit when it cannot bind the port.
        error = e
    except Exception as e:
        logger.exception("Uncaught exception in server")
        error = e
    finally:
        coordinator.trigger("server stopped")
        coordinator.uninstall()
        if hangup:
            loop.remove_signal_handler(signal.SIGHUP)
    return coordinator.listener_closed(error)


def _watch_hangup(loop: asyncio.AbstractEventLoop, coordinator: ShutdownCoordinator) -> bool:
    """Treat SIGHUP like SIGTERM. uvicorn only captures SIGINT and SIGTERM."""
    if not hasattr(signal, "SIGHUP"):
        return False
    try:
        loop.add_signal_handler(signal.SIGHUP, coordinator.trigger, "SIGHUP")
    except (NotImplementedError, RuntimeError) as e:
        logger.debug("SIGHUP not watched: %s", e)
        return False
    return True


def _log_banner(settings: Settings, shell: ShellCommand) -> None:
    host = "localhost" if settings.server.host in ("0.0.0.0", "::") else settings.server.host
    logger.info("Server Management Console started")
    logger.info("URL: http://%s:%d", host, settings.server.port)
    logger.info("Platform: %s", sys.platform)
    logger.info("Shell: %s (%s)", shell.name, shell.program)
    logger.info("Press Ctrl+C to stop")
