"""
HTTP client for the fallback endpoint (/api/messages).
Used when direct access to the hosted backend is unconfigured or rejected.
"""

import logging
from typing import Any, List, Optional, Type
from urllib.parse import quote

import httpx
from pydantic import ValidationError as PydanticValidationError

from src.core.errors import FetchError, InsertError, RemoteServiceError
from src.core.message import Message, MessageId

logger = logging.getLogger(__name__)


class FallbackApiClient:
    """Talks to the server-mediated message API."""

    def __init__(self, base_url: str, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def _call(self, error_cls: Type[RemoteServiceError], method: str, **kwargs: Any) -> Any:
        url = f"{self.base_url}/messages"
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise error_cls(f"{method} {url} failed: {e}") from e

        if response.is_error:
            raise error_cls(
                f"{method} {url} returned {response.status_code}", status_code=response.status_code
            )
        try:
            return response.json()
        except ValueError as e:
            raise error_cls(f"{method} {url} returned a non-JSON body") from e

    @staticmethod
    def _parse(error_cls: Type[RemoteServiceError], row: Any) -> Message:
        try:
            return Message(**row)
        except (TypeError, PydanticValidationError) as e:
            raise error_cls(f"Unexpected message shape: {e}") from e

    async def list_messages(self) -> List[Message]:
        data = await self._call(FetchError, "GET")
        if not isinstance(data, list):
            raise FetchError("Expected a list of messages")
        return [self._parse(FetchError, row) for row in data]

    async def create_message(self, name: str, message: str, photo: Optional[str] = None) -> Message:
        payload = {"name": name, "message": message}
        if photo:
            payload["photo"] = photo
        data = await self._call(InsertError, "POST", json=payload)
        # Some deployments answer with the inserted row set.
        row = data[0] if isinstance(data, list) and data else data
        created = self._parse(InsertError, row)
        logger.debug("Server API stored message %s", created.id)
        return created

    async def attach_photo(self, message_id: MessageId, photo: str) -> Message:
        data = await self._call(InsertError, "POST", json={"id": message_id, "photo": photo})
        row = data[0] if isinstance(data, list) and data else data
        return self._parse(InsertError, row)

    def photo_url(self, key: str) -> str:
        """URL of a photo kept by the server's local fallback storage."""
        return f"{self.base_url}/photos/{quote(key)}"

    async def aclose(self) -> None:
        await self._client.aclose()
