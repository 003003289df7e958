"""
Ordered outbound delivery for one WebSocket connection.

Room and handler code posts messages without awaiting; one sender task per
connection writes them to the socket in the order they were posted. Code
holding a room lock therefore never waits on the network, and every client
still sees a room's updates in mutation order.
"""

import asyncio
import logging
from typing import Optional

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class Outbox:
    """
    FIFO of messages for a single socket, drained by a background task.

    The sender task is started on demand by ``post`` and exits once the
    queue is empty, so idle connections hold no task.
    """

    def __init__(self, websocket: Optional[WebSocket]) -> None:
        self.websocket = websocket
        self._queue: asyncio.Queue = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None
        self._closed = False

    def post(self, message: dict) -> None:
        """Queue a message for delivery. Never blocks."""
        if self._closed or self.websocket is None:
            return
        self._queue.put_nowait(message)
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._drain())

    async def _drain(self) -> None:
        while not self._queue.empty():
            message = self._queue.get_nowait()
            try:
                await self.websocket.send_json(message)
            except Exception as e:
                logger.debug(f"Dropped {message.get('type')} message: {e}")
            finally:
                self._queue.task_done()

    async def flush(self) -> None:
        """Wait until everything posted so far has been written."""
        await self._queue.join()

    async def close(self) -> None:
        """Stop delivering; anything still queued is discarded."""
        self._closed = True
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
