"""tabconsole -- Multi-tab shell sessions over a WebSocket connection.

Each connected client owns a set of named tabs, and every tab is backed
by its own shell process. Output from a process is streamed back only to
the connection that owns the tab.
"""

__version__ = "0.1.0"


class TabConsoleError(Exception):
    """Base class for tabconsole errors."""
