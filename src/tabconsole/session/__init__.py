"""Session multiplexing core.

Maps (connection, tab) pairs to shell processes, streams their output
back to the owning connection, and tears them down on close, exit or
disconnect.
"""

from tabconsole.session.manager import EventSink, LifecycleManager
from tabconsole.session.platform import ShellCommand, default_shell
from tabconsole.session.process import (
    ProcessError,
    ProcessHandle,
    ProcessWriteError,
    ShellSpawnError,
)
from tabconsole.session.registry import (
    ConnectionRecord,
    SessionExistsError,
    SessionKey,
    SessionRegistry,
)
from tabconsole.session.router import ConnectionRouter

__all__ = [
    "ConnectionRecord",
    "ConnectionRouter",
    "EventSink",
    "LifecycleManager",
    "ProcessError",
    "ProcessHandle",
    "ProcessWriteError",
    "SessionExistsError",
    "SessionKey",
    "SessionRegistry",
    "ShellCommand",
    "ShellSpawnError",
    "default_shell",
]
