"""
Server side of the fallback endpoint.
Normalizes incoming photos, persists through the configured backend and
announces new rows on the change-feed.
"""

import logging
from typing import List, Optional

from src.core.errors import ValidationError
from src.core.message import Message, MessageId
from src.core.photo import (
    Absent,
    PendingUpload,
    extension_for,
    generate_photo_key,
    parse_photo,
    serialize_photo,
)
from src.services.backend import MessageBackend
from src.services.change_feed import RedisChangeFeed
from src.services.remote import RemoteService

logger = logging.getLogger(__name__)


class MessageService:
    """Creates, lists and updates messages on behalf of clients."""

    def __init__(self, backend: MessageBackend, publisher: Optional[RedisChangeFeed] = None):
        self.backend = backend
        self.publisher = publisher

    @property
    def uses_remote(self) -> bool:
        return isinstance(self.backend, RemoteService)

    async def list_messages(self) -> List[Message]:
        return await self.backend.list_messages()

    async def _normalize_photo(self, raw: Optional[str]) -> Optional[str]:
        """
        Uploads an embedded payload and returns the reference to persist.
        URLs and storage keys pass through untouched.
        """
        ref = parse_photo(raw)
        if isinstance(ref, Absent):
            return None
        if isinstance(ref, PendingUpload):
            key = generate_photo_key(extension_for(ref.content_type, ref.filename))
            return await self.backend.store_photo(key, ref.data, ref.content_type)
        return serialize_photo(ref)

    async def create_message(self, name: Optional[str], message: Optional[str], photo: Optional[str] = None) -> Message:
        """
        Persists a new message.
        An upload failure aborts the whole create: no row without its photo.
        """
        if not name or not name.strip() or not message or not message.strip():
            raise ValidationError("name and message required")

        photo_ref = await self._normalize_photo(photo)
        created = await self.backend.insert_message(name, message, photo_ref)
        logger.info("Created message %s (photo: %s)", created.id, bool(photo_ref))

        if self.publisher:
            try:
                await self.publisher.publish(created)
            # pylint: disable=broad-exception-caught
            except Exception as e:
                logger.warning("Could not publish message %s to change-feed: %s", created.id, e)

        return created

    async def attach_photo(self, message_id: MessageId, photo: str) -> Message:
        """Server-mediated photo attach for a row created without one."""
        photo_ref = await self._normalize_photo(photo)
        if not photo_ref:
            raise ValidationError("photo required")

        updated = await self.backend.update_photo(message_id, photo_ref)
        logger.info("Attached photo to message %s", message_id)
        return updated
