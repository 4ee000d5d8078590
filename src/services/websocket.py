"""
WebSocket Connection Manager on top of the change-feed.
Relays every inserted row to the browsers currently watching the guestbook.
"""

import asyncio
import logging
from typing import List, Optional

from fastapi import WebSocket

from src.core.message import Message
from src.services.change_feed import RedisChangeFeed

logger = logging.getLogger(__name__)


class ConnectionManager:
    def __init__(self, change_feed: Optional[RedisChangeFeed]) -> None:
        self.change_feed = change_feed
        self.active_connections: List[WebSocket] = []
        self.relay_task: Optional[asyncio.Task[None]] = None

    async def connect(self, websocket: WebSocket) -> None:
        """
        Accepts a new WebSocket connection.
        """
        await websocket.accept()
        if not self.active_connections:
            self._start_relay()

        self.active_connections.append(websocket)
        logger.info("WS connected. Total: %d", len(self.active_connections))

    def disconnect(self, websocket: WebSocket) -> None:
        """
        Removes a WebSocket connection
        """
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)

        # Cleanup subscription if nobody is watching.
        if not self.active_connections:
            self._stop_relay()

    async def broadcast(self, message: Message) -> None:
        """
        Sends a row to every connected client.
        """
        payload = message.model_dump(mode="json")

        for connection in self.active_connections[:]:
            try:
                await connection.send_json(payload)
            # pylint: disable=broad-exception-caught
            except Exception as e:
                logger.warning("Error sending to WS: %s", e)

    def _start_relay(self) -> None:
        if self.change_feed is None or self.relay_task is not None:
            return

        async def relay(change_feed: RedisChangeFeed) -> None:
            try:
                async for message in change_feed.listen():
                    await self.broadcast(message)
            except asyncio.CancelledError:
                raise
            # pylint: disable=broad-exception-caught
            except Exception as e:
                logger.error("Change-feed relay error: %s", e)

        self.relay_task = asyncio.create_task(relay(self.change_feed))

    def _stop_relay(self) -> None:
        if self.relay_task is not None:
            self.relay_task.cancel()
            self.relay_task = None
