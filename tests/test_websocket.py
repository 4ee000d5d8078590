"""
Unit tests for the WebSocket relay on top of the change-feed.
"""

# Disable these false positives as they are caused by pytest syntax
# pylint: disable=redefined-outer-name

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.core.message import Message
from src.services.websocket import ConnectionManager


@pytest.fixture
def change_feed():
    feed = MagicMock()

    async def no_pushes():
        await asyncio.Event().wait()
        yield  # pragma: no cover

    feed.listen.side_effect = no_pushes
    return feed


@pytest.fixture
def manager(change_feed):
    return ConnectionManager(change_feed)


@pytest.mark.asyncio
async def test_connect_and_disconnect(manager):
    """Test connecting adds to local state and disconnect removes it."""
    websocket = AsyncMock()

    with patch.object(manager, "_start_relay") as mock_start:
        await manager.connect(websocket)
        assert websocket in manager.active_connections
        websocket.accept.assert_awaited_once()
        mock_start.assert_called_once()

    with patch.object(manager, "_stop_relay") as mock_stop:
        manager.disconnect(websocket)
        assert not manager.active_connections
        mock_stop.assert_called_once()


@pytest.mark.asyncio
async def test_broadcast_sends_to_every_socket(manager):
    healthy = AsyncMock()
    broken = AsyncMock()
    broken.send_json.side_effect = RuntimeError("socket closed")
    manager.active_connections = [broken, healthy]
    message = Message(id=1, name="Alice", message="Congrats!")

    await manager.broadcast(message)

    healthy.send_json.assert_awaited_once_with(message.model_dump(mode="json"))


@pytest.mark.asyncio
async def test_relay_forwards_pushes(change_feed):
    pushed = Message(id=5, name="Bob", message="Cheers")

    async def one_push():
        yield pushed
        await asyncio.Event().wait()

    change_feed.listen.side_effect = one_push
    manager = ConnectionManager(change_feed)
    websocket = AsyncMock()

    await manager.connect(websocket)
    await asyncio.sleep(0.01)

    websocket.send_json.assert_awaited_once_with(pushed.model_dump(mode="json"))

    manager.disconnect(websocket)
    assert manager.relay_task is None


@pytest.mark.asyncio
async def test_without_change_feed_no_relay_starts():
    manager = ConnectionManager(None)
    websocket = AsyncMock()

    await manager.connect(websocket)

    assert manager.relay_task is None
    assert manager.active_connections == [websocket]
