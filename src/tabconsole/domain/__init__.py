"""Domain models for tabconsole.

Wire-level event payloads and the enumerations shared by the session
layer and the server. All payload models use Pydantic v2 for validation
and serialization.
"""

from tabconsole.domain.models import (
    ClientEvent,
    CommandRequest,
    ConnectionState,
    Envelope,
    OutputType,
    ServerEvent,
    ShutdownPhase,
    TabAck,
    TabRequest,
    TerminalClosed,
    TerminalError,
    TerminalOutput,
)

__all__ = [
    "ClientEvent",
    "CommandRequest",
    "ConnectionState",
    "Envelope",
    "OutputType",
    "ServerEvent",
    "ShutdownPhase",
    "TabAck",
    "TabRequest",
    "TerminalClosed",
    "TerminalError",
    "TerminalOutput",
]
