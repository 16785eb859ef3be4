"""Process lifecycle manager.

Creates, writes to and kills the shell behind each tab, and republishes
everything a shell produces (output chunks, exit, errors) as server
events addressed to the connection that owns the tab.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from dataclasses import dataclass, field
from typing import AsyncIterator, Coroutine, Protocol

from pydantic import BaseModel

from tabconsole.domain.models import (
    OutputType,
    ServerEvent,
    TerminalClosed,
    TerminalError,
    TerminalOutput,
)
from tabconsole.session.platform import ShellCommand, default_shell, welcome_message
from tabconsole.session.process import (
    DEFAULT_READ_CHUNK_SIZE,
    InputFailed,
    OutputChunk,
    ProcessExited,
    ProcessFailed,
    ProcessHandle,
    ProcessWriteError,
    ShellSpawnError,
)
from tabconsole.session.registry import SessionKey, SessionRegistry

logger = logging.getLogger(__name__)

NOT_FOUND_MESSAGE = "Terminal process not found"
WRITE_FAILED_MESSAGE = "Failed to execute command"


class EventSink(Protocol):
    """Delivers a server event to exactly one connection."""

    def emit(self, connection_id: str, event: ServerEvent, payload: BaseModel) -> object: ...


@dataclass
class _KeyLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class LifecycleManager:
    """Owns the create/write/kill paths for every tab's shell.

    Only this class mutates the process side of the registry. Creates for
    the same key are serialized, so a (connection, tab) pair never ends up
    with two processes.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        sink: EventSink,
        *,
        shell: ShellCommand | None = None,
        welcome_delay: float = 0.3,
        read_chunk_size: int = DEFAULT_READ_CHUNK_SIZE,
        cwd: str | None = None,
    ) -> None:
        self._registry = registry
        self._sink = sink
        self._shell = shell or default_shell()
        self._welcome_delay = welcome_delay
        self._read_chunk_size = read_chunk_size
        self._cwd = cwd
        self._locks: dict[SessionKey, _KeyLock] = {}
        self._tasks: set[asyncio.Task[None]] = set()
        self._handles: set[ProcessHandle] = set()
        self._closed = False

    @property
    def shell(self) -> ShellCommand:
        return self._shell

    @property
    def is_closed(self) -> bool:
        return self._closed

    def get(self, tab_id: str, connection_id: str) -> ProcessHandle | None:
        return self._registry.get(SessionKey(connection_id, tab_id))

    async def create(self, tab_id: str, connection_id: str) -> ProcessHandle | None:
        """Spawn the shell for a tab.

        Returns the live handle, or None when spawning failed (an error
        event has then been sent to the connection). If the tab already
        has a live process, that process is returned and nothing is
        spawned.
        """
        key = SessionKey(connection_id, tab_id)
        async with self._serialized(key):
            existing = self._registry.get(key)
            if existing is not None:
                if existing.is_alive:
                    logger.warning("Tab %s already has a live process (pid=%d)", key, existing.pid)
                    return existing
                # Exited, but the relay has not reaped it yet.
                existing.detach()
                self._registry.remove_if(key, existing)

            if self._closed:
                logger.warning("Refusing to create tab %s during shutdown", key)
                return None

            cwd = self._cwd or os.getcwd()
            logger.info("Creating terminal process for tab: %s, client: %s", tab_id, connection_id)
            try:
                handle = await ProcessHandle.spawn(
                    self._shell,
                    tab_id,
                    connection_id,
                    cwd=cwd,
                    read_chunk_size=self._read_chunk_size,
                )
            except ShellSpawnError as e:
                logger.error("Terminal process error for tab %s: %s", key, e)
                self._sink.emit(
                    connection_id,
                    ServerEvent.TERMINAL_ERROR,
                    TerminalError(tab_id=tab_id, error=str(e)),
                )
                return None

            self._handles = {h for h in self._handles if not h.is_finished}
            self._handles.add(handle)
            if self._closed:
                # Shutdown drained the registry while we were spawning.
                handle.detach()
                handle.terminate()
                return None

            self._registry.put(key, handle)
            self._start_task(self._relay(key, handle))
            self._start_task(self._welcome(key, handle))
            return handle

    def write(self, tab_id: str, connection_id: str, text: str) -> bool:
        """Queue one line of input for a tab's shell without waiting on it.

        Every call either queues the line or reports a terminal-error to
        the connection; a write that fails after queueing is reported by
        the relay. Returns True when the line was queued.
        """
        key = SessionKey(connection_id, tab_id)
        handle = self._registry.get(key)
        if handle is None or not handle.is_alive:
            logger.error("No terminal process found for tab: %s", key)
            self._sink.emit(
                connection_id,
                ServerEvent.TERMINAL_ERROR,
                TerminalError(tab_id=tab_id, error=NOT_FOUND_MESSAGE),
            )
            return False

        try:
            handle.write(text + "\n")
        except ProcessWriteError as e:
            logger.error("Error writing to terminal %s: %s", key, e)
            self._sink.emit(
                connection_id,
                ServerEvent.TERMINAL_ERROR,
                TerminalError(tab_id=tab_id, error=WRITE_FAILED_MESSAGE),
            )
            return False
        return True

    def kill(self, tab_id: str, connection_id: str) -> bool:
        """Terminate a tab's shell and drop it from the registry.

        No-op (returns False) when the tab has no process. The registry
        entry is removed even if signalling fails.
        """
        key = SessionKey(connection_id, tab_id)
        handle = self._registry.get(key)
        if handle is None:
            return False
        try:
            handle.detach()
            if handle.terminate():
                logger.info("Killed terminal process for tab: %s (pid=%d)", key, handle.pid)
        except OSError as e:
            logger.error("Error killing process for tab %s: %s", key, e)
        finally:
            self._registry.remove(key)
        return True

    def kill_all(self) -> int:
        """Kill every registered shell and refuse further creates.

        Returns the number of handles that were killed.
        """
        self._closed = True
        killed = 0
        for key in self._registry.keys():
            try:
                if self.kill(key.tab_id, key.connection_id):
                    killed += 1
            except Exception:
                logger.exception("Error killing process %s", key)
                self._registry.remove(key)
        return killed

    async def aclose(self) -> None:
        """Cancel relay and welcome tasks, then every handle's own tasks."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        handles, self._handles = self._handles, set()
        await asyncio.gather(*(h.aclose() for h in handles), return_exceptions=True)

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------

    @contextlib.asynccontextmanager
    async def _serialized(self, key: SessionKey) -> AsyncIterator[None]:
        entry = self._locks.get(key)
        if entry is None:
            entry = self._locks[key] = _KeyLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[key]

    def _start_task(self, coro: Coroutine[object, object, None]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _relay(self, key: SessionKey, handle: ProcessHandle) -> None:
        """Drain a handle's channel into server events for its connection."""
        cid, tab_id = key.connection_id, key.tab_id
        async for event in handle.events():
            if isinstance(event, OutputChunk):
                logger.debug("Tab %s %s: %d chars", key, event.stream.value, len(event.text))
                self._sink.emit(
                    cid,
                    ServerEvent.TERMINAL_OUTPUT,
                    TerminalOutput(tab_id=tab_id, output=event.text, type=event.stream),
                )
            elif isinstance(event, ProcessExited):
                logger.info("Terminal process for tab %s closed with code %s", key, event.code)
                handle.detach()
                self._registry.remove_if(key, handle)
                self._sink.emit(
                    cid,
                    ServerEvent.TERMINAL_CLOSED,
                    TerminalClosed(tab_id=tab_id, code=event.code),
                )
            elif isinstance(event, ProcessFailed):
                logger.error("Terminal process error for tab %s: %s", key, event.message)
                handle.detach()
                handle.terminate()
                self._registry.remove_if(key, handle)
                self._sink.emit(
                    cid,
                    ServerEvent.TERMINAL_ERROR,
                    TerminalError(tab_id=tab_id, error=event.message),
                )
            elif isinstance(event, InputFailed):
                logger.error("Error writing to terminal %s: %s", key, event.message)
                self._sink.emit(
                    cid,
                    ServerEvent.TERMINAL_ERROR,
                    TerminalError(tab_id=tab_id, error=WRITE_FAILED_MESSAGE),
                )

    async def _welcome(self, key: SessionKey, handle: ProcessHandle) -> None:
        await asyncio.sleep(self._welcome_delay)
        if self._registry.get(key) is not handle:
            return
        self._sink.emit(
            key.connection_id,
            ServerEvent.TERMINAL_OUTPUT,
            TerminalOutput(
                tab_id=key.tab_id,
                output=welcome_message(key.tab_id, self._shell, handle.cwd),
                type=OutputType.WELCOME,
            ),
        )
