"""
Submission Controller.

Turns a form submission into exactly one persisted message. Persistence
paths are an ordered list of strategies; the first one that succeeds wins.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Protocol

from src.core.errors import GENERIC_FAILURE, GuestbookError, SubmissionError, UploadError, ValidationError
from src.core.message import Message
from src.core.photo import (
    ABSENT,
    PendingUpload,
    PhotoRef,
    StorageKey,
    Url,
    extension_for,
    generate_photo_key,
    serialize_photo,
)
from src.services.fallback_client import FallbackApiClient
from src.services.remote import RemoteService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PhotoFile:
    """A photo picked in the form."""

    data: bytes
    content_type: str = "image/png"
    filename: Optional[str] = None


@dataclass(frozen=True)
class SubmissionDraft:
    """Validated form content, with the photo in its current shape."""

    name: str
    message: str
    photo: PhotoRef = ABSENT


@dataclass(frozen=True)
class StrategyResult:
    """Outcome of one persistence attempt."""

    strategy: str
    message: Optional[Message] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.message is not None


class Notifier(Protocol):
    """Narrow capability the controller needs from the feed."""

    def notify(self, message: Message) -> None: ...


class Publisher(Protocol):
    """Pushes a stored row onto the change-feed."""

    async def publish(self, message: Message) -> None: ...


class PersistenceStrategy(ABC):
    """One way of getting a draft persisted."""

    name: str = "strategy"

    @abstractmethod
    async def persist(self, draft: SubmissionDraft) -> StrategyResult:
        """Attempts to persist the draft. Never raises for backend failures."""


class DirectInsertStrategy(PersistenceStrategy):
    """
    Inserts straight into the hosted table with the client credentials.
    If the stored row lacks a photo we still hold, one best-effort
    follow-up attaches it through the fallback endpoint. The server never
    sees these rows, so the final one is published to the change-feed here.
    """

    name = "direct"

    def __init__(self, remote: RemoteService, api: FallbackApiClient, publisher: Optional[Publisher] = None):
        self.remote = remote
        self.api = api
        self.publisher = publisher

    async def persist(self, draft: SubmissionDraft) -> StrategyResult:
        photo = draft.photo.url if isinstance(draft.photo, Url) else None
        if isinstance(draft.photo, StorageKey):
            photo = draft.photo.key

        try:
            row = await self.remote.insert_message(draft.name, draft.message, photo)
        except GuestbookError as e:
            logger.warning("Direct insert failed, falling back to server API: %s", e)
            return StrategyResult(self.name, error=e)

        pending = serialize_photo(draft.photo)
        if not row.photo and pending and row.id is not None:
            row = await self._attach_photo(row, pending)

        await self._publish(row)
        return StrategyResult(self.name, message=row)

    async def _publish(self, row: Message) -> None:
        if self.publisher is None:
            return
        try:
            await self.publisher.publish(row)
        # pylint: disable=broad-exception-caught
        except Exception as e:
            logger.warning("Could not publish message %s to change-feed: %s", row.id, e)

    async def _attach_photo(self, row: Message, photo: str) -> Message:
        try:
            updated = await self.api.attach_photo(row.id, photo)  # type: ignore[arg-type]
        except GuestbookError as e:
            # The message itself is stored; only the photo is late.
            logger.warning("Photo attach for message %s failed: %s", row.id, e)
            return row

        logger.debug("Attached photo to message %s via server API", row.id)
        return updated


class FallbackApiStrategy(PersistenceStrategy):
    """Server-mediated insert; retained photo bytes travel as a data URI."""

    name = "fallback"

    def __init__(self, api: FallbackApiClient):
        self.api = api

    async def persist(self, draft: SubmissionDraft) -> StrategyResult:
        try:
            row = await self.api.create_message(draft.name, draft.message, serialize_photo(draft.photo))
        except GuestbookError as e:
            logger.error("Fallback insert failed: %s", e)
            return StrategyResult(self.name, error=e)
        return StrategyResult(self.name, message=row)


def build_strategies(
    api: FallbackApiClient,
    remote: Optional[RemoteService] = None,
    publisher: Optional[Publisher] = None,
) -> List[PersistenceStrategy]:
    """Direct first when the client holds credentials, the server API always last."""
    strategies: List[PersistenceStrategy] = []
    if remote is not None:
        strategies.append(DirectInsertStrategy(remote, api, publisher))
    strategies.append(FallbackApiStrategy(api))
    return strategies


class SubmissionController:
    """Validates, uploads, persists, then notifies. One message per submit."""

    def __init__(
        self,
        strategies: List[PersistenceStrategy],
        notifier: Notifier,
        uploader: Optional[RemoteService] = None,
    ):
        if not strategies:
            raise ValueError("At least one persistence strategy is required")
        self.strategies = strategies
        self.notifier = notifier
        self.uploader = uploader

    @staticmethod
    def validate(name: Optional[str], message: Optional[str]) -> SubmissionDraft:
        name = (name or "").strip()
        message = (message or "").strip()
        if not name or not message:
            raise ValidationError("Please enter your name and a message.")
        return SubmissionDraft(name=name, message=message)

    async def _prepare_photo(self, photo: PhotoFile) -> PhotoRef:
        """
        Direct upload when possible. On failure the bytes are kept so the
        server can upload them instead.
        """
        pending = PendingUpload(data=photo.data, content_type=photo.content_type, filename=photo.filename)
        if self.uploader is None:
            return pending

        key = generate_photo_key(extension_for(photo.content_type, photo.filename))
        try:
            await self.uploader.upload_photo(key, photo.data, photo.content_type)
        except UploadError as e:
            logger.warning("Direct photo upload failed, server will upload instead: %s", e)
            return pending

        return Url(self.uploader.public_url(key))

    async def submit(self, name: Optional[str], message: Optional[str], photo: Optional[PhotoFile] = None) -> Message:
        """
        Persists one message and notifies the feed.

        Raises:
            ValidationError: name or message missing; nothing was contacted.
            SubmissionError: every persistence path failed.
        """
        draft = self.validate(name, message)

        if photo is not None:
            draft = SubmissionDraft(draft.name, draft.message, await self._prepare_photo(photo))

        results: List[StrategyResult] = []
        for strategy in self.strategies:
            result = await strategy.persist(draft)
            results.append(result)
            if result.message is not None:
                stored = result.message
                break
        else:
            for failed in results:
                logger.error("Submission path %s failed: %r", failed.strategy, failed.error)
            raise SubmissionError(GENERIC_FAILURE) from results[-1].error

        logger.info("Message %s stored via %s", stored.id, results[-1].strategy)

        self.notifier.notify(stored)
        return stored
