"""
Change-feed over Redis Pub/Sub.
Every row inserted through the fallback endpoint is published here;
feeds and WebSocket relays subscribe to receive it in near-real-time.
"""

import json
import logging
from typing import AsyncIterator

import redis.asyncio as redis
from pydantic import ValidationError as PydanticValidationError

from src.core.message import Message

logger = logging.getLogger(__name__)


class RedisChangeFeed:
    """Publishes inserted rows and yields pushed rows to listeners."""

    def __init__(self, redis_client: redis.Redis, channel: str):
        self._redis = redis_client
        self.channel = channel

    @classmethod
    def from_url(cls, url: str, channel: str) -> "RedisChangeFeed":
        client = redis.from_url(url, decode_responses=True)  # type: ignore[no-untyped-call]
        return cls(client, channel)

    async def publish(self, message: Message) -> None:
        """Pushes one inserted row to every subscriber."""
        await self._redis.publish(self.channel, message.model_dump_json())

    async def listen(self) -> AsyncIterator[Message]:
        """
        Yields each pushed row.
        Malformed payloads are logged and skipped, the subscription survives them.
        """
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(self.channel)
        logger.info("Subscribed to change-feed channel: %s", self.channel)

        try:
            async for event in pubsub.listen():
                if event["type"] != "message":
                    continue
                try:
                    yield Message(**json.loads(event["data"]))
                except (json.JSONDecodeError, TypeError, PydanticValidationError) as e:
                    logger.error("Could not parse change-feed message: %s", e)
        finally:
            await pubsub.unsubscribe(self.channel)
            logger.info("Unsubscribed from %s", self.channel)

    async def aclose(self) -> None:
        await self._redis.aclose()
