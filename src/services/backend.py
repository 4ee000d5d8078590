"""
Storage contract shared by the hosted backend client and the local JSON store.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from src.core.message import Message, MessageId


class MessageBackend(ABC):
    """
    Abstract interface for a place messages and photos are persisted.
    The fallback endpoint talks to exactly one of these.
    """

    @abstractmethod
    async def list_messages(self) -> List[Message]:
        """Returns every message, newest first."""

    @abstractmethod
    async def insert_message(self, name: str, message: str, photo: Optional[str]) -> Message:
        """Persists a new row. `id` and `created_at` are assigned here."""

    @abstractmethod
    async def update_photo(self, message_id: MessageId, photo: str) -> Message:
        """
        Attaches a photo reference to an existing row.
        Raises MessageNotFound if no row has that id.
        """

    @abstractmethod
    async def store_photo(self, key: str, data: bytes, content_type: str) -> str:
        """
        Stores photo bytes under `key` without overwriting.
        Returns the reference to persist (a URL or the key itself).
        """

    async def aclose(self) -> None:
        """Releases held resources."""
