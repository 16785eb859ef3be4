"""Shared test fixtures for the tabconsole test suite.

Provides a recording event sink, a real /bin/sh-backed lifecycle
manager, and helpers for waiting on asynchronously delivered events.
"""

from __future__ import annotations

import asyncio
import sys
from typing import Any, AsyncIterator, Callable

import pytest
import pytest_asyncio
from pydantic import BaseModel

from tabconsole.domain.models import ServerEvent
from tabconsole.session.manager import LifecycleManager
from tabconsole.session.platform import ShellCommand
from tabconsole.session.process import ProcessHandle
from tabconsole.session.registry import SessionRegistry

TEST_SHELL = ShellCommand(program="/bin/sh", name="sh")


# ---------------------------------------------------------------------------
# Event sink
# ---------------------------------------------------------------------------


class RecordingSink:
    """EventSink that keeps every emitted event in order."""

    def __init__(self) -> None:
        self.events: list[tuple[str, str, dict[str, Any]]] = []

    def emit(self, connection_id: str, event: ServerEvent, payload: BaseModel) -> bool:
        self.events.append(
            (connection_id, event.value, payload.model_dump(mode="json", by_alias=True))
        )
        return True

    def of(self, event: str, connection_id: str | None = None) -> list[dict[str, Any]]:
        return [
            data
            for cid, name, data in self.events
            if name == event and (connection_id is None or cid == connection_id)
        ]

    def for_connection(self, connection_id: str) -> list[tuple[str, dict[str, Any]]]:
        return [(name, data) for cid, name, data in self.events if cid == connection_id]

    async def wait_for(
        self,
        event: str,
        predicate: Callable[[dict[str, Any]], bool] = lambda data: True,
        connection_id: str | None = None,
        timeout: float = 5.0,
    ) -> dict[str, Any]:
        """Poll until a matching event has been emitted."""
        deadline = asyncio.get_running_loop().time() + timeout
        while True:
            for data in self.of(event, connection_id):
                if predicate(data):
                    return data
            if asyncio.get_running_loop().time() > deadline:
                raise AssertionError(f"No {event} event matched within {timeout}s: {self.events}")
            await asyncio.sleep(0.02)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def shell() -> ShellCommand:
    if sys.platform.startswith("win"):
        pytest.skip("process tests need a POSIX shell")
    return TEST_SHELL


@pytest.fixture
def registry() -> SessionRegistry:
    return SessionRegistry()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def spawned(monkeypatch: pytest.MonkeyPatch) -> list[ProcessHandle]:
    """Every ProcessHandle spawned during the test, in spawn order."""
    handles: list[ProcessHandle] = []
    original = ProcessHandle.spawn.__func__  # type: ignore[attr-defined]

    async def recording_spawn(cls, *args, **kwargs):  # type: ignore[no-untyped-def]
        handle = await original(cls, *args, **kwargs)
        handles.append(handle)
        return handle

    monkeypatch.setattr(ProcessHandle, "spawn", classmethod(recording_spawn))
    return handles


@pytest_asyncio.fixture
async def manager(
    registry: SessionRegistry,
    sink: RecordingSink,
    shell: ShellCommand,
    spawned: list[ProcessHandle],
) -> AsyncIterator[LifecycleManager]:
    """A LifecycleManager spawning real /bin/sh processes."""
    mgr = LifecycleManager(registry, sink, shell=shell, welcome_delay=0.01)
    yield mgr
    mgr.kill_all()
    await _reap(spawned)
    await mgr.aclose()


async def _reap(handles: list[ProcessHandle]) -> None:
    """Terminate and wait for every handle so no child outlives the test."""
    for handle in handles:
        handle.detach()
        handle.terminate()
    for handle in handles:
        await asyncio.wait_for(handle.wait(), timeout=5.0)
        await asyncio.wait_for(
            asyncio.gather(*handle._tasks, return_exceptions=True), timeout=5.0
        )


@pytest.fixture
def reap() -> Callable[[list[ProcessHandle]], Any]:
    """Coroutine function that terminates and reaps the given handles."""
    return _reap
