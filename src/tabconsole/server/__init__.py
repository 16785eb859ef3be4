"""Network surface for tabconsole.

A FastAPI application carries the WebSocket event transport, a health
endpoint and the static client, and is served by uvicorn.
"""

from tabconsole.server.app import create_app
from tabconsole.server.hub import ConnectionHub

__all__ = ["ConnectionHub", "create_app"]
