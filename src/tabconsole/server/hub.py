"""Connection-scoped delivery of server events.

Every live connection gets one outbound queue. ``emit`` only ever puts a
message on the queue of the connection it names, and a single sender
task per connection drains that queue, so each client sees its events in
emission order and never sees another client's.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from pydantic import BaseModel

from tabconsole.domain.models import ServerEvent

logger = logging.getLogger(__name__)

Message = dict[str, Any]


class ConnectionHub:
    def __init__(self) -> None:
        self._queues: dict[str, asyncio.Queue[Message | None]] = {}

    def register(self, connection_id: str) -> asyncio.Queue[Message | None]:
        queue: asyncio.Queue[Message | None] = asyncio.Queue()
        self._queues[connection_id] = queue
        return queue

    def unregister(self, connection_id: str) -> None:
        queue = self._queues.pop(connection_id, None)
        if queue is not None:
            queue.put_nowait(None)

    def emit(self, connection_id: str, event: ServerEvent, payload: BaseModel) -> bool:
        queue = self._queues.get(connection_id)
        if queue is None:
            logger.debug("Dropping %s for closed connection %s", event.value, connection_id)
            return False
        queue.put_nowait(
            {"event": event.value, "data": payload.model_dump(mode="json", by_alias=True)}
        )
        return True

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._queues

    def __len__(self) -> int:
        return len(self._queues)


async def pump(
    queue: asyncio.Queue[Message | None],
    send: Callable[[Message], Awaitable[None]],
) -> None:
    """Forward queued messages to ``send`` until the queue is closed."""
    while True:
        message = await queue.get()
        if message is None:
            return
        await send(message)
