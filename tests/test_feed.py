"""
Unit tests for the Display List and the Reconciliation Feed:
ordering, de-duplication across channels, re-fetch scheduling and degradation.
"""

# pylint: disable=redefined-outer-name
# pylint: disable=protected-access
import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.core.errors import FetchError
from src.core.message import Message
from src.core.photo import PhotoResolver
from src.services.feed import MESSAGES_UPDATED, DisplayList, FeedEvent, ReconciliationFeed

T0 = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)


def row(id_, name="Alice", message="Congrats!", minutes=0, photo=None) -> Message:
    return Message(id=id_, name=name, message=message, photo=photo, created_at=T0 + timedelta(minutes=minutes))


@pytest.fixture
def source():
    mock = MagicMock()
    mock.list_messages = AsyncMock(return_value=[])
    return mock


@pytest.fixture
def feed(source):
    return ReconciliationFeed([source], refetch_delay=0.01)


# --- DisplayList ---


def test_display_list_orders_newest_first():
    display = DisplayList()
    t2, t1, t3 = row(2, "b", minutes=2), row(1, "a", minutes=1), row(3, "c", minutes=3)

    for message in (t2, t1, t3):
        display.merge(message)

    assert [m.id for m in display.messages()] == [3, 2, 1]


def test_ties_are_broken_by_arrival():
    display = DisplayList()
    display.merge(row(1, "first"))
    display.merge(row(2, "second"))

    assert [m.id for m in display.messages()] == [2, 1]


def test_rows_without_timestamp_stay_on_top():
    display = DisplayList()
    display.merge(row(1, minutes=10))
    display.merge(Message(name="Bob", message="pending"))

    assert display.messages()[0].name == "Bob"


def test_duplicate_id_is_ignored():
    display = DisplayList()

    assert display.merge(row(5)) is True
    assert display.merge(row(5, message="edited elsewhere")) is False
    assert len(display) == 1


def test_content_match_collapses_when_id_is_unknown():
    display = DisplayList()
    display.merge(Message(name="Alice", message="Congrats!"))

    changed = display.merge(row(5))

    assert changed is True
    assert len(display) == 1
    assert display.messages()[0].id == 5


def test_known_distinct_ids_are_not_merged_by_content():
    display = DisplayList()
    display.merge(row(1))
    display.merge(row(2))

    assert len(display) == 2


def test_numeric_and_string_ids_match():
    display = DisplayList()
    display.merge(row(7))

    assert display.merge(row("7")) is False


def test_replace_is_idempotent():
    display = DisplayList()
    snapshot = [row(3, "c", minutes=3), row(2, "b", minutes=2), row(1, "a", minutes=1)]

    assert display.replace(snapshot) is True
    before = display.messages()

    assert display.replace(list(snapshot)) is False
    assert display.messages() == before


def test_replace_keeps_server_order_on_ties():
    display = DisplayList()
    display.replace([row(2, "newer"), row(1, "older")])

    assert [m.id for m in display.messages()] == [2, 1]


# --- ReconciliationFeed ---


@pytest.mark.asyncio
async def test_start_replaces_list_with_bulk_fetch(feed, source):
    feed.display.merge(row(99, "stale"))
    source.list_messages.return_value = [row(2, "b", minutes=2), row(1, "a", minutes=1)]

    await feed.start()

    assert [m.id for m in feed.display.messages()] == [2, 1]


@pytest.mark.asyncio
async def test_optimistic_then_push_shows_one_entry(feed):
    stored = row(10)

    feed.notify(stored)
    assert feed.receive_push(row(10)) is False

    assert len(feed.display) == 1
    await feed.stop()


@pytest.mark.asyncio
async def test_push_matching_content_shows_one_entry(feed):
    feed.notify(Message(name="Alice", message="Congrats!"))

    feed.receive_push(row(11))

    assert len(feed.display) == 1
    assert feed.display.messages()[0].id == 11
    await feed.stop()


@pytest.mark.asyncio
async def test_notify_broadcasts_and_schedules_one_refetch(feed, source):
    events = []
    feed.subscribe(events.append)
    stored = row(12)
    source.list_messages.return_value = [stored]

    feed.notify(stored)

    assert events == [FeedEvent(MESSAGES_UPDATED, stored)]
    assert source.list_messages.await_count == 0

    await asyncio.sleep(0.05)

    assert source.list_messages.await_count == 1
    assert feed.display.messages() == [stored]


@pytest.mark.asyncio
async def test_unsubscribe_and_failing_listeners(feed, caplog):
    broken = MagicMock(side_effect=RuntimeError("listener bug"))
    quiet = MagicMock()
    feed.subscribe(broken)
    unsubscribe = feed.subscribe(quiet)
    unsubscribe()

    feed.notify(row(13))

    broken.assert_called_once()
    quiet.assert_not_called()
    assert len(feed.display) == 1
    assert "Feed listener failed" in caplog.text
    await feed.stop()


@pytest.mark.asyncio
async def test_failed_refresh_keeps_last_known_list(feed, source):
    feed.display.replace([row(1)])
    source.list_messages.side_effect = FetchError("offline")

    assert await feed.refresh() is False
    assert [m.id for m in feed.display.messages()] == [1]


@pytest.mark.asyncio
async def test_refresh_falls_through_to_next_source(source):
    backup = MagicMock()
    backup.list_messages = AsyncMock(return_value=[row(4)])
    source.list_messages.side_effect = FetchError("policy")
    feed = ReconciliationFeed([source, backup])

    assert await feed.refresh() is True
    assert [m.id for m in feed.display.messages()] == [4]


@pytest.mark.asyncio
async def test_empty_answer_falls_through_to_next_source(source):
    backup = MagicMock()
    backup.list_messages = AsyncMock(return_value=[row(5)])
    feed = ReconciliationFeed([source, backup])

    assert await feed.refresh() is True
    assert [m.id for m in feed.display.messages()] == [5]


@pytest.mark.asyncio
async def test_empty_answer_is_used_when_later_sources_fail(source):
    backup = MagicMock()
    backup.list_messages = AsyncMock(side_effect=FetchError("offline"))
    feed = ReconciliationFeed([source, backup])
    feed.display.replace([row(1)])

    assert await feed.refresh() is True
    assert len(feed.display) == 0


class FakeChangeFeed:
    """Yields a fixed batch of pushes, then stays subscribed."""

    def __init__(self, pushes):
        self.pushes = pushes

    async def listen(self):
        for message in self.pushes:
            yield message
        await asyncio.Event().wait()


@pytest.mark.asyncio
async def test_change_feed_pushes_are_merged(source):
    source.list_messages.return_value = [row(1, "a", minutes=1)]
    feed = ReconciliationFeed([source], change_feed=FakeChangeFeed([row(2, "b", minutes=2), row(1, "a", minutes=1)]))

    await feed.start()
    await asyncio.sleep(0.01)

    assert [m.id for m in feed.display.messages()] == [2, 1]

    await feed.stop()
    assert feed._feed_task is None


@pytest.mark.asyncio
async def test_stop_cancels_pending_refetch(feed, source):
    feed.refetch_delay = 10
    feed.notify(row(1))

    await feed.stop()

    assert not feed._refetch_tasks
    source.list_messages.assert_not_awaited()


def test_items_degrade_photos_one_by_one():
    def public_url(key):
        if key == "messages/broken.png":
            raise RuntimeError("bucket gone")
        return f"https://cdn/{key}"

    feed = ReconciliationFeed([], resolver=PhotoResolver(public_url))
    feed.display.replace(
        [
            row(3, "c", minutes=3, photo="messages/ok.png"),
            row(2, "b", minutes=2, photo="messages/broken.png"),
            row(1, "a", minutes=1),
        ]
    )

    items = feed.items()

    assert [item.id for item in items] == [3, 2, 1]
    assert items[0].photo.url == "https://cdn/messages/ok.png"
    assert items[1].photo.status == "unavailable"
    assert items[2].photo.status == "none"


def test_long_messages_are_previewed_not_cut():
    feed = ReconciliationFeed([])
    body = "x" * 301
    feed.display.merge(row(1, message=body))

    item = feed.items()[0]

    assert item.truncated is True
    assert item.preview == "x" * 300 + "..."
    assert item.message == body
