"""Per-connection protocol handler.

Translates a client's tab requests into lifecycle manager calls and
acknowledges them to that client only. A router moves through
CONNECTING -> ACTIVE -> DISCONNECTED; disconnecting kills every shell
the connection owns.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from pydantic import BaseModel, ValidationError

from tabconsole.domain.models import (
    ClientEvent,
    CommandRequest,
    ConnectionState,
    ServerEvent,
    TabAck,
    TabRequest,
    TerminalError,
)
from tabconsole.session.manager import EventSink, LifecycleManager
from tabconsole.session.registry import ConnectionRecord, SessionRegistry

logger = logging.getLogger(__name__)

MAIN_TAB_MESSAGE = "The main tab cannot be closed"


class ConnectionRouter:
    """Routes one client's events to its shells."""

    def __init__(
        self,
        connection_id: str,
        manager: LifecycleManager,
        registry: SessionRegistry,
        sink: EventSink,
        *,
        main_tab_id: str = "main",
    ) -> None:
        self.connection_id = connection_id
        self._manager = manager
        self._registry = registry
        self._sink = sink
        self._main_tab_id = main_tab_id
        self._record: ConnectionRecord | None = None
        self._state = ConnectionState.CONNECTING
        self._handlers: dict[
            ClientEvent, tuple[type[BaseModel], Callable[[Any], Awaitable[None]]]
        ] = {
            ClientEvent.EXECUTE_COMMAND: (CommandRequest, self._execute_command),
            ClientEvent.CREATE_TAB: (TabRequest, self._create_tab),
            ClientEvent.CLOSE_TAB: (TabRequest, self._close_tab),
            ClientEvent.SWITCH_TAB: (TabRequest, self._switch_tab),
        }

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def tabs(self) -> frozenset[str]:
        if self._record is None:
            return frozenset()
        return frozenset(self._record.tabs)

    async def connect(self) -> None:
        """Open the connection record and spawn the main tab."""
        if self._state is not ConnectionState.CONNECTING:
            return
        self._record = self._registry.open_connection(self.connection_id)
        self._record.tabs.add(self._main_tab_id)
        self._set_state(ConnectionState.ACTIVE)
        logger.info("Client connected: %s", self.connection_id)
        await self._manager.create(self._main_tab_id, self.connection_id)

    async def dispatch(self, event: str, data: Any) -> None:
        """Handle one inbound event.

        Unknown events and malformed payloads are logged and dropped; a
        malformed payload that names a tab also gets a terminal-error.
        """
        if self._state is not ConnectionState.ACTIVE:
            logger.warning(
                "Ignoring %r from %s in state %s", event, self.connection_id, self._state.value
            )
            return
        try:
            kind = ClientEvent(event)
        except ValueError:
            logger.warning("Ignoring unknown event %r from %s", event, self.connection_id)
            return

        model, handler = self._handlers[kind]
        try:
            request = model.model_validate(data)
        except ValidationError as e:
            logger.warning(
                "Invalid %s payload from %s: %s", kind.value, self.connection_id, e.errors()
            )
            tab_id = data.get("tabId") if isinstance(data, dict) else None
            if isinstance(tab_id, str) and tab_id:
                self._emit(
                    ServerEvent.TERMINAL_ERROR,
                    TerminalError(tab_id=tab_id, error=f"Invalid {kind.value} request"),
                )
            return
        await handler(request)

    def disconnect(self) -> None:
        """Kill every shell owned by this connection. Safe to call twice."""
        if self._state is ConnectionState.DISCONNECTED:
            return
        self._set_state(ConnectionState.DISCONNECTED)
        logger.info("Client disconnected: %s", self.connection_id)

        record = self._registry.close_connection(self.connection_id)
        owned = set(record.tabs) if record is not None else set()
        owned.update(key.tab_id for key in self._registry.keys_for(self.connection_id))
        for tab_id in sorted(owned):
            try:
                self._manager.kill(tab_id, self.connection_id)
            except Exception:
                logger.exception("Error cleaning up tab %s of %s", tab_id, self.connection_id)

    # -------------------------------------------------------------------
    # Event handlers
    # -------------------------------------------------------------------

    async def _execute_command(self, request: CommandRequest) -> None:
        logger.info("Executing in tab %s: %s", request.tab_id, request.command)
        self._manager.write(request.tab_id, self.connection_id, request.command)

    async def _create_tab(self, request: TabRequest) -> None:
        logger.info("Creating new tab: %s for client: %s", request.tab_id, self.connection_id)
        self._tabs_add(request.tab_id)
        await self._manager.create(request.tab_id, self.connection_id)
        self._emit(ServerEvent.TAB_CREATED, TabAck(tab_id=request.tab_id))

    async def _close_tab(self, request: TabRequest) -> None:
        if request.tab_id == self._main_tab_id:
            logger.warning("Client %s tried to close the main tab", self.connection_id)
            self._emit(
                ServerEvent.TERMINAL_ERROR,
                TerminalError(tab_id=request.tab_id, error=MAIN_TAB_MESSAGE),
            )
            return
        logger.info("Closing tab: %s for client: %s", request.tab_id, self.connection_id)
        self._manager.kill(request.tab_id, self.connection_id)
        if self._record is not None:
            self._record.tabs.discard(request.tab_id)
        self._emit(ServerEvent.TAB_CLOSED, TabAck(tab_id=request.tab_id))

    async def _switch_tab(self, request: TabRequest) -> None:
        handle = self._manager.get(request.tab_id, self.connection_id)
        if handle is None or not handle.is_alive:
            logger.info("Creating missing terminal process for tab: %s", request.tab_id)
            self._tabs_add(request.tab_id)
            await self._manager.create(request.tab_id, self.connection_id)
        self._emit(ServerEvent.TAB_SWITCHED, TabAck(tab_id=request.tab_id))

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------

    def _tabs_add(self, tab_id: str) -> None:
        if self._record is not None:
            self._record.tabs.add(tab_id)

    def _set_state(self, state: ConnectionState) -> None:
        self._state = state
        if self._record is not None:
            self._record.state = state

    def _emit(self, event: ServerEvent, payload: BaseModel) -> None:
        self._sink.emit(self.connection_id, event, payload)
