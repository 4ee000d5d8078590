"""Unit tests for the server-side message service."""

# pylint: disable=redefined-outer-name
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.core.errors import UploadError, ValidationError
from src.core.message import Message
from src.core.photo import to_data_uri
from src.services.backend import MessageBackend
from src.services.messages import MessageService
from src.services.storage import LocalMessageStore


@pytest.fixture
def local_store(tmp_path):
    return LocalMessageStore(str(tmp_path / "messages.json"), str(tmp_path / "photos"))


@pytest.fixture
def publisher():
    feed = MagicMock()
    feed.publish = AsyncMock()
    return feed


@pytest.fixture
def mock_backend():
    backend = MagicMock(spec=MessageBackend)
    backend.insert_message.return_value = Message(id=1, name="Alice", message="Congrats!")
    return backend


@pytest.mark.asyncio
async def test_create_uploads_embedded_photo_before_insert(local_store, publisher):
    """An embedded payload is stored first and only its reference is persisted."""
    service = MessageService(local_store, publisher=publisher)

    created = await service.create_message("Alice", "Congrats!", to_data_uri(b"jpeg-bytes", "image/jpeg"))

    assert created.photo.startswith("messages/")
    assert created.photo.endswith(".jpeg")
    assert local_store.photo_path(created.photo).read_bytes() == b"jpeg-bytes"
    publisher.publish.assert_awaited_once_with(created)


@pytest.mark.asyncio
async def test_create_keeps_urls_untouched(local_store):
    service = MessageService(local_store)

    created = await service.create_message("Alice", "Congrats!", "https://cdn.example.com/a.png")

    assert created.photo == "https://cdn.example.com/a.png"


@pytest.mark.asyncio
@pytest.mark.parametrize("name, message", [("", "hi"), ("Bob", ""), (None, "hi"), ("   ", "hi")])
async def test_create_requires_name_and_message(mock_backend, name, message):
    service = MessageService(mock_backend)

    with pytest.raises(ValidationError):
        await service.create_message(name, message)

    mock_backend.insert_message.assert_not_awaited()
    mock_backend.store_photo.assert_not_awaited()


@pytest.mark.asyncio
async def test_upload_failure_does_not_commit(mock_backend, publisher):
    mock_backend.store_photo.side_effect = UploadError("bucket missing", status_code=404)
    service = MessageService(mock_backend, publisher=publisher)

    with pytest.raises(UploadError):
        await service.create_message("Alice", "Congrats!", to_data_uri(b"x", "image/png"))

    mock_backend.insert_message.assert_not_awaited()
    publisher.publish.assert_not_awaited()


@pytest.mark.asyncio
async def test_publish_failure_is_logged_not_raised(mock_backend, publisher, caplog):
    publisher.publish.side_effect = ConnectionError("redis down")
    service = MessageService(mock_backend, publisher=publisher)

    created = await service.create_message("Alice", "Congrats!")

    assert created.id == 1
    assert "Could not publish message 1" in caplog.text


@pytest.mark.asyncio
async def test_attach_photo_uploads_then_updates(local_store):
    service = MessageService(local_store)
    created = await service.create_message("Alice", "Congrats!")

    updated = await service.attach_photo(created.id, to_data_uri(b"late", "image/png"))

    assert updated.id == created.id
    assert updated.photo.endswith(".png")
    assert local_store.photo_path(updated.photo).read_bytes() == b"late"


def test_uses_remote_flag(local_store):
    assert MessageService(local_store).uses_remote is False
