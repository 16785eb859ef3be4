"""Shell process backing a single tab.

A ProcessHandle owns one spawned shell and its stdin/stdout/stderr pipes.
Reader tasks push every chunk the OS delivers onto a per-handle channel,
followed by exactly one terminal event (exit or failure). Consumers drain
the channel with ``events()``; ``detach()`` closes it early so nothing
queued is delivered after a kill.

Input goes the other way through a writer task: ``write()`` only queues
bytes, so a shell that stops reading stdin never blocks the caller. A
failed write surfaces later as an ``InputFailed`` event on the channel.
"""

from __future__ import annotations

import asyncio
import codecs
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterator, Union

from tabconsole import TabConsoleError
from tabconsole.domain.models import OutputType
from tabconsole.session.platform import ShellCommand

logger = logging.getLogger(__name__)

DEFAULT_READ_CHUNK_SIZE = 4096

# How long to keep draining pipes after the shell itself has exited.
# Background jobs can hold stdout open indefinitely.
_DRAIN_TIMEOUT = 1.0


class ProcessError(TabConsoleError):
    """Raised when a shell process cannot be started or written to."""


class ShellSpawnError(ProcessError):
    """The shell binary could not be executed."""


class ProcessWriteError(ProcessError):
    """Input could not be delivered to the shell's stdin."""


@dataclass(frozen=True)
class OutputChunk:
    stream: OutputType
    text: str


@dataclass(frozen=True)
class ProcessExited:
    code: int | None


@dataclass(frozen=True)
class ProcessFailed:
    message: str


@dataclass(frozen=True)
class InputFailed:
    """Queued input could not be written; the shell keeps running."""

    message: str


HandleEvent = Union[OutputChunk, ProcessExited, ProcessFailed, InputFailed]


class ProcessHandle:
    """A live shell process owned by one (connection, tab) pair."""

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        tab_id: str,
        connection_id: str,
        cwd: str,
        read_chunk_size: int = DEFAULT_READ_CHUNK_SIZE,
    ) -> None:
        self._process = process
        self.tab_id = tab_id
        self.connection_id = connection_id
        self.cwd = cwd
        self.created_at = datetime.now()
        self._read_chunk_size = read_chunk_size
        self._channel: asyncio.Queue[HandleEvent | None] = asyncio.Queue()
        self._closed = False
        self._detached = False
        self._tasks: list[asyncio.Task[None]] = []
        self._input: asyncio.Queue[bytes] = asyncio.Queue()
        self._writer: asyncio.Task[None] | None = None

    @classmethod
    async def spawn(
        cls,
        shell: ShellCommand,
        tab_id: str,
        connection_id: str,
        *,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        read_chunk_size: int = DEFAULT_READ_CHUNK_SIZE,
    ) -> ProcessHandle:
        """Start ``shell`` with piped stdio and begin reading its output.

        Raises:
            ShellSpawnError: If the OS refuses to start the process.
        """
        cwd = cwd or os.getcwd()
        try:
            process = await asyncio.create_subprocess_exec(
                *shell.argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                env=env if env is not None else os.environ.copy(),
            )
        except OSError as e:
            raise ShellSpawnError(
                f"Failed to start {shell.program}: {e.strerror or e}"
            ) from e

        handle = cls(process, tab_id, connection_id, cwd, read_chunk_size)
        handle._start()
        logger.debug("Spawned %s for tab %s (pid=%d)", shell.program, tab_id, process.pid)
        return handle

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    @property
    def is_alive(self) -> bool:
        """True until the OS has reported the process as exited."""
        return self._process.returncode is None

    @property
    def is_detached(self) -> bool:
        return self._detached

    @property
    def stdin_open(self) -> bool:
        stdin = self._process.stdin
        return stdin is not None and not stdin.is_closing()

    async def events(self) -> AsyncIterator[HandleEvent]:
        """Yield output and lifecycle events in the order they occurred."""
        while not self._detached:
            event = await self._channel.get()
            if event is None or self._detached:
                return
            yield event

    @property
    def is_finished(self) -> bool:
        """True once every reader, watcher and writer task has ended."""
        return bool(self._tasks) and all(task.done() for task in self._tasks)

    def write(self, data: str) -> None:
        """Queue ``data`` for the shell's stdin and return immediately.

        Raises:
            ProcessWriteError: If stdin is already closed. Failures that
                happen once the bytes reach the pipe are published as
                ``InputFailed`` instead.
        """
        if not self.stdin_open:
            raise ProcessWriteError("stdin is closed")
        if self._writer is not None and self._writer.done():
            raise ProcessWriteError("shell no longer accepts input")
        self._input.put_nowait(data.encode("utf-8"))

    def terminate(self) -> bool:
        """Send SIGTERM unless the process has already been reported dead.

        Returns True when a signal was sent.
        """
        if self._process.returncode is not None:
            return False
        try:
            self._process.terminate()
        except ProcessLookupError:
            return False
        return True

    def detach(self) -> None:
        """Stop delivering events; queued output is dropped."""
        self._detached = True
        self._close_channel()

    async def wait(self) -> int:
        return await self._process.wait()

    async def aclose(self) -> None:
        """Cancel the handle's background tasks and wait for them to end.

        Does not signal the process; call ``terminate()`` first for that.
        """
        self._detached = True
        self._close_channel()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------

    def _start(self) -> None:
        readers = [
            asyncio.create_task(self._read_stream(self._process.stdout, OutputType.STDOUT)),
            asyncio.create_task(self._read_stream(self._process.stderr, OutputType.STDERR)),
        ]
        self._writer = asyncio.create_task(self._feed_stdin())
        self._tasks = [*readers, self._writer, asyncio.create_task(self._watch_exit(readers))]

    async def _feed_stdin(self) -> None:
        stdin = self._process.stdin
        if stdin is None:
            return
        while True:
            data = await self._input.get()
            try:
                stdin.write(data)
                await stdin.drain()
            except OSError as e:
                logger.warning("Write to tab %s failed: %s", self.tab_id, e)
                self._publish(InputFailed(f"Failed to write to shell: {e}"))

    async def _read_stream(
        self, stream: asyncio.StreamReader | None, kind: OutputType
    ) -> None:
        if stream is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            while True:
                data = await stream.read(self._read_chunk_size)
                if not data:
                    break
                text = decoder.decode(data)
                if text:
                    self._publish(OutputChunk(kind, text))
        except OSError as e:
            logger.warning("Pipe error on %s of tab %s: %s", kind.value, self.tab_id, e)
            self._publish(ProcessFailed(f"{kind.value} pipe failed: {e}"))
            self._close_channel()
            return
        tail = decoder.decode(b"", final=True)
        if tail:
            self._publish(OutputChunk(kind, tail))

    async def _watch_exit(self, readers: list[asyncio.Task[None]]) -> None:
        code = await self._process.wait()
        # A write blocked on a full pipe would otherwise never return when
        # a surviving child still holds the read end.
        if self._writer is not None:
            self._writer.cancel()
        _, pending = await asyncio.wait(readers, timeout=_DRAIN_TIMEOUT)
        for task in pending:
            task.cancel()
        self._publish(ProcessExited(code))
        self._close_channel()

    def _publish(self, event: HandleEvent) -> None:
        if not self._closed:
            self._channel.put_nowait(event)

    def _close_channel(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._channel.put_nowait(None)

    def __repr__(self) -> str:
        return (
            f"ProcessHandle(tab_id={self.tab_id!r}, connection_id={self.connection_id!r}, "
            f"pid={self.pid}, alive={self.is_alive})"
        )
