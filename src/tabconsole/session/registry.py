"""Session registry: (connection, tab) -> live shell process.

The registry is the only long-lived owner of ProcessHandles and also
keeps one ConnectionRecord per connected client. It does no locking;
all mutation happens on the event loop thread.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Iterator, NamedTuple

from tabconsole import TabConsoleError
from tabconsole.domain.models import ConnectionState

if TYPE_CHECKING:
    from tabconsole.session.process import ProcessHandle

logger = logging.getLogger(__name__)


class SessionExistsError(TabConsoleError):
    """A different handle is already registered for the key."""


class SessionKey(NamedTuple):
    """Composite key; tuple equality keeps it collision-free for any ids."""

    connection_id: str
    tab_id: str

    def __str__(self) -> str:
        return f"{self.connection_id}-{self.tab_id}"


@dataclass
class ConnectionRecord:
    connection_id: str
    tabs: set[str] = field(default_factory=set)
    state: ConnectionState = ConnectionState.CONNECTING
    connected_at: datetime = field(default_factory=datetime.now)


class SessionRegistry:
    """Maps session keys to process handles and tracks open connections."""

    def __init__(self) -> None:
        self._handles: dict[SessionKey, ProcessHandle] = {}
        self._connections: dict[str, ConnectionRecord] = {}

    # -------------------------------------------------------------------
    # Process handles
    # -------------------------------------------------------------------

    def put(self, key: SessionKey, handle: ProcessHandle) -> None:
        existing = self._handles.get(key)
        if existing is not None and existing is not handle:
            raise SessionExistsError(f"Session {key} already has a process (pid={existing.pid})")
        self._handles[key] = handle

    def get(self, key: SessionKey) -> ProcessHandle | None:
        return self._handles.get(key)

    def remove(self, key: SessionKey) -> ProcessHandle | None:
        return self._handles.pop(key, None)

    def remove_if(self, key: SessionKey, handle: ProcessHandle) -> bool:
        """Remove ``key`` only while it still maps to ``handle``.

        A process that exits after its tab was respawned must not evict
        the replacement.
        """
        if self._handles.get(key) is handle:
            del self._handles[key]
            return True
        return False

    def keys(self) -> list[SessionKey]:
        return list(self._handles)

    def keys_for(self, connection_id: str) -> list[SessionKey]:
        return [key for key in self._handles if key.connection_id == connection_id]

    def handles(self) -> list[ProcessHandle]:
        return list(self._handles.values())

    def __len__(self) -> int:
        return len(self._handles)

    def __contains__(self, key: object) -> bool:
        return key in self._handles

    def __iter__(self) -> Iterator[SessionKey]:
        return iter(list(self._handles))

    # -------------------------------------------------------------------
    # Connection records
    # -------------------------------------------------------------------

    def open_connection(self, connection_id: str) -> ConnectionRecord:
        if connection_id in self._connections:
            raise SessionExistsError(f"Connection {connection_id} is already open")
        record = ConnectionRecord(connection_id=connection_id)
        self._connections[connection_id] = record
        return record

    def connection(self, connection_id: str) -> ConnectionRecord | None:
        return self._connections.get(connection_id)

    def close_connection(self, connection_id: str) -> ConnectionRecord | None:
        return self._connections.pop(connection_id, None)

    def connections(self) -> list[ConnectionRecord]:
        return list(self._connections.values())

    def clear(self) -> None:
        """Forget every handle and connection record."""
        logger.debug(
            "Clearing registry (%d sessions, %d connections)",
            len(self._handles), len(self._connections),
        )
        self._handles.clear()
        self._connections.clear()
