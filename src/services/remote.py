"""
Thin REST client for the hosted backend: the `messages` table,
the photo bucket, and public URLs for stored objects.
"""

import logging
from typing import Any, Dict, List, Optional, Type
from urllib.parse import quote

import httpx
from pydantic import ValidationError as PydanticValidationError

from src.config.settings import RemoteConfig
from src.core.errors import FetchError, InsertError, MessageNotFound, RemoteServiceError, UploadError
from src.core.message import Message, MessageId
from src.services.backend import MessageBackend

logger = logging.getLogger(__name__)


def first_row(data: Any) -> Dict[str, Any]:
    """Insert/update endpoints answer with an array; callers want one row."""
    if isinstance(data, list):
        if not data:
            raise MessageNotFound("Empty row set")
        return data[0]
    return data


def _parse(error_cls: Type[RemoteServiceError], row: Any) -> Message:
    try:
        return Message(**row)
    except (TypeError, PydanticValidationError) as e:
        raise error_cls(f"Unexpected row shape: {e}") from e


class RemoteService(MessageBackend):
    """Handles table and blob-store calls against the hosted backend."""

    def __init__(self, config: RemoteConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._client = client or httpx.AsyncClient(timeout=config.timeout)

    @property
    def _headers(self) -> Dict[str, str]:
        return {
            "apikey": self.config.key,
            "Authorization": f"Bearer {self.config.key}",
        }

    @property
    def _table_url(self) -> str:
        return f"{self.config.url}/rest/v1/{self.config.table}"

    async def _request(
        self, error_cls: Type[RemoteServiceError], method: str, url: str, **kwargs: Any
    ) -> httpx.Response:
        headers = {**self._headers, **kwargs.pop("headers", {})}
        try:
            response = await self._client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise error_cls(f"{method} {url} failed: {e}") from e

        if response.is_error:
            raise error_cls(
                f"{method} {url} returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        return response

    @staticmethod
    def _json(error_cls: Type[RemoteServiceError], response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise error_cls("Backend returned a non-JSON body", status_code=response.status_code) from e

    async def list_messages(self) -> List[Message]:
        response = await self._request(
            FetchError,
            "GET",
            self._table_url,
            params={"select": "*", "order": "created_at.desc"},
        )
        return [_parse(FetchError, row) for row in self._json(FetchError, response)]

    async def insert_message(self, name: str, message: str, photo: Optional[str]) -> Message:
        response = await self._request(
            InsertError,
            "POST",
            self._table_url,
            json=[{"name": name, "message": message, "photo": photo}],
            headers={"Prefer": "return=representation"},
        )
        try:
            return _parse(InsertError, first_row(self._json(InsertError, response)))
        except MessageNotFound as e:
            raise InsertError("Insert returned no row") from e

    async def update_photo(self, message_id: MessageId, photo: str) -> Message:
        response = await self._request(
            InsertError,
            "PATCH",
            self._table_url,
            params={"id": f"eq.{message_id}"},
            json={"photo": photo},
            headers={"Prefer": "return=representation"},
        )
        try:
            return _parse(InsertError, first_row(self._json(InsertError, response)))
        except MessageNotFound as e:
            raise MessageNotFound(f"No message with id {message_id}") from e

    async def upload_photo(self, key: str, data: bytes, content_type: str) -> None:
        """
        Uploads bytes under `key`. Never overwrites: a taken key is an UploadError.
        """
        url = f"{self.config.url}/storage/v1/object/{self.config.bucket}/{quote(key)}"
        await self._request(
            UploadError,
            "POST",
            url,
            content=data,
            headers={
                "Content-Type": content_type,
                "x-upsert": "false",
                "cache-control": "3600",
            },
        )
        logger.debug("Uploaded photo %s (%d bytes)", key, len(data))

    def public_url(self, key: str) -> str:
        """Public URL of an object in the photo bucket."""
        return f"{self.config.url}/storage/v1/object/public/{self.config.bucket}/{quote(key)}"

    async def store_photo(self, key: str, data: bytes, content_type: str) -> str:
        await self.upload_photo(key, data, content_type)
        return self.public_url(key)

    async def aclose(self) -> None:
        await self._client.aclose()
