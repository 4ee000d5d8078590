"""
Reconciliation Feed.

Owns the Display List and merges three inputs into it: the bulk fetch,
optimistic notifications from the submission controller, and change-feed
pushes. Everything runs on one event loop, so mutations need no locking.
"""

import asyncio
import itertools
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterator, Callable, List, Optional, Protocol, Sequence, Set, Tuple

from src.core.errors import GuestbookError
from src.core.message import TRUNCATE_AT, Message, MessageId, same_message
from src.core.photo import PhotoDisplay, PhotoResolver

logger = logging.getLogger(__name__)

MESSAGES_UPDATED = "messages:updated"


class MessageSource(Protocol):
    async def list_messages(self) -> List[Message]: ...


class ChangeFeed(Protocol):
    def listen(self) -> AsyncIterator[Message]: ...


@dataclass(frozen=True)
class FeedEvent:
    """Broadcast to subscribers on every successful submission."""

    name: str
    message: Message


Listener = Callable[[FeedEvent], None]


@dataclass(frozen=True)
class DisplayedMessage:
    """A message card, ready to render."""

    id: Optional[MessageId]
    name: str
    message: str
    created_at: Optional[datetime]
    photo: PhotoDisplay

    @property
    def truncated(self) -> bool:
        return len(self.message) > TRUNCATE_AT

    @property
    def preview(self) -> str:
        if self.truncated:
            return f"{self.message[:TRUNCATE_AT]}..."
        return self.message


@dataclass
class _Entry:
    message: Message
    # Arrival counter; higher arrived later.
    seq: int


def _order_key(entry: _Entry) -> Tuple[int, float, int]:
    # Newest first; rows without a timestamp yet sit on top; later arrivals win ties.
    created = entry.message.created_at
    if created is None:
        return (0, 0.0, -entry.seq)
    return (1, -created.timestamp(), -entry.seq)


class DisplayList:
    """Ordered, de-duplicated projection of the guestbook."""

    def __init__(self) -> None:
        self._entries: List[_Entry] = []
        self._counter = itertools.count()

    def __len__(self) -> int:
        return len(self._entries)

    def messages(self) -> List[Message]:
        return [entry.message for entry in self._entries]

    def find(self, message: Message) -> Optional[_Entry]:
        for entry in self._entries:
            if same_message(entry.message, message):
                return entry
        return None

    def merge(self, message: Message) -> bool:
        """
        Prepends a row unless it is already shown.
        An entry still waiting for its id is upgraded in place by the
        authoritative row. Returns True when the list changed.
        """
        existing = self.find(message)
        if existing is not None:
            if existing.message.id is None and message.id is not None:
                existing.message = message
                self._entries.sort(key=_order_key)
                return True
            return False

        self._entries.append(_Entry(message, next(self._counter)))
        self._entries.sort(key=_order_key)
        return True

    def replace(self, messages: Sequence[Message]) -> bool:
        """
        Swaps in a fresh server snapshot (newest first).
        Returns True when the visible list differs from before.
        """
        before = self.messages()
        # Number in reverse so the server's own order settles ties.
        seqs = [next(self._counter) for _ in messages]
        self._entries = [_Entry(message, seq) for message, seq in zip(messages, reversed(seqs))]
        self._entries.sort(key=_order_key)
        return self.messages() != before


class ReconciliationFeed:
    """
    Keeps the Display List converging on the server's view.
    Consumers read `items()` and may `subscribe()` to submission events.
    """

    def __init__(
        self,
        sources: Sequence[MessageSource],
        resolver: Optional[PhotoResolver] = None,
        change_feed: Optional[ChangeFeed] = None,
        refetch_delay: float = 1.0,
    ):
        self.sources = list(sources)
        self.resolver = resolver or PhotoResolver()
        self.change_feed = change_feed
        self.refetch_delay = refetch_delay
        self.display = DisplayList()
        self._listeners: List[Listener] = []
        self._refetch_tasks: Set[asyncio.Task[None]] = set()
        self._feed_task: Optional[asyncio.Task[None]] = None

    async def start(self) -> None:
        """Initial bulk fetch, then follow the change-feed in the background."""
        await self.refresh()
        if self.change_feed is not None and self._feed_task is None:
            self._feed_task = asyncio.create_task(self._consume_change_feed(self.change_feed))

    async def stop(self) -> None:
        tasks = list(self._refetch_tasks)
        if self._feed_task is not None:
            tasks.append(self._feed_task)
            self._feed_task = None

        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._refetch_tasks.clear()

    async def refresh(self) -> bool:
        """
        Replaces the list with the first source that returns rows.
        An empty answer moves on to the next source; it is only used when
        no later source has anything. On failure the last known list stays
        on screen.
        """
        rows: Optional[List[Message]] = None
        for source in self.sources:
            try:
                fetched = await source.list_messages()
            except GuestbookError as e:
                logger.warning("Fetch from %s failed: %s", type(source).__name__, e)
                continue

            rows = fetched
            if rows:
                break
            logger.debug("%s returned no messages, trying the next source", type(source).__name__)

        if rows is None:
            logger.warning("Every message source failed, keeping %d cached messages", len(self.display))
            return False

        if self.display.replace(rows):
            logger.debug("Display list refreshed with %d messages", len(rows))
        return True

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Registers a listener; returns a callable that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def notify(self, message: Message) -> None:
        """
        Optimistic path: called by the submission controller with a stored row.
        Shows it at once and schedules one reconciling re-fetch.
        """
        self.display.merge(message)

        event = FeedEvent(MESSAGES_UPDATED, message)
        for listener in self._listeners[:]:
            try:
                listener(event)
            # pylint: disable=broad-exception-caught
            except Exception as e:
                logger.error("Feed listener failed: %s", e)

        self._schedule_refetch()

    def receive_push(self, message: Message) -> bool:
        """Authoritative path: a change-feed push."""
        added = self.display.merge(message)
        if not added:
            logger.debug("Ignored duplicate push for message %s", message.id)
        return added

    def items(self) -> List[DisplayedMessage]:
        return [
            DisplayedMessage(
                id=row.id,
                name=row.name,
                message=row.message,
                created_at=row.created_at,
                photo=self.resolver.resolve(row.photo),
            )
            for row in self.display.messages()
        ]

    def _schedule_refetch(self) -> None:
        async def delayed() -> None:
            await asyncio.sleep(self.refetch_delay)
            await self.refresh()

        task = asyncio.get_running_loop().create_task(delayed())
        self._refetch_tasks.add(task)
        task.add_done_callback(self._refetch_tasks.discard)

    async def _consume_change_feed(self, change_feed: ChangeFeed) -> None:
        try:
            async for message in change_feed.listen():
                self.receive_push(message)
        except asyncio.CancelledError:
            raise
        # pylint: disable=broad-exception-caught
        except Exception as e:
            logger.error("Change-feed listener error: %s", e)
