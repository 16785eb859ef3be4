"""Core domain models for tabconsole.

These models describe the events exchanged with a client over its
connection: requests coming in (run a command, open/close/switch a tab)
and notifications going out (process output, exit, errors, and tab
acknowledgements). Field names follow the camelCase wire format.
"""

from __future__ import annotations

import enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class ClientEvent(str, enum.Enum):
    """Event names a client may send."""

    EXECUTE_COMMAND = "execute-command"
    CREATE_TAB = "create-tab"
    CLOSE_TAB = "close-tab"
    SWITCH_TAB = "switch-tab"


class ServerEvent(str, enum.Enum):
    """Event names the server sends to a single connection."""

    TERMINAL_OUTPUT = "terminal-output"
    TERMINAL_CLOSED = "terminal-closed"
    TERMINAL_ERROR = "terminal-error"
    TAB_CREATED = "tab-created"
    TAB_CLOSED = "tab-closed"
    TAB_SWITCHED = "tab-switched"


class OutputType(str, enum.Enum):
    """Origin of a terminal-output chunk."""

    STDOUT = "stdout"
    STDERR = "stderr"
    WELCOME = "welcome"  # Synthetic greeting, not produced by the shell


class ConnectionState(str, enum.Enum):
    CONNECTING = "connecting"
    ACTIVE = "active"
    DISCONNECTED = "disconnected"


class ShutdownPhase(str, enum.Enum):
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"


# ---------------------------------------------------------------------------
# Wire envelope
# ---------------------------------------------------------------------------


class Envelope(BaseModel):
    """A named event with its payload, as sent over the WebSocket."""

    event: str = Field(min_length=1, description="Event name")
    data: dict[str, Any] = Field(default_factory=dict, description="Event payload")


# ---------------------------------------------------------------------------
# Client -> server payloads
# ---------------------------------------------------------------------------


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)


class TabRequest(_WireModel):
    """Payload of create-tab, close-tab and switch-tab."""

    tab_id: str = Field(alias="tabId", min_length=1)


class CommandRequest(_WireModel):
    """Payload of execute-command."""

    command: str = Field(description="Line of input for the shell, without newline")
    tab_id: str = Field(alias="tabId", min_length=1)


# ---------------------------------------------------------------------------
# Server -> client payloads
# ---------------------------------------------------------------------------


class TerminalOutput(_WireModel):
    tab_id: str = Field(alias="tabId")
    output: str
    type: OutputType


class TerminalClosed(_WireModel):
    tab_id: str = Field(alias="tabId")
    code: int | None = Field(description="Exit status; negative when killed by a signal")


class TerminalError(_WireModel):
    tab_id: str = Field(alias="tabId")
    error: str


class TabAck(_WireModel):
    """Acknowledgement of a client-initiated tab operation."""

    tab_id: str = Field(alias="tabId")
