"""
Client-side wiring: one configuration object in, a ready feed and
submission controller out.
"""

import logging
from typing import List, Optional

import httpx

from src.config.settings import Settings
from src.core.message import Message
from src.core.photo import PhotoResolver
from src.services.change_feed import RedisChangeFeed
from src.services.fallback_client import FallbackApiClient
from src.services.feed import DisplayedMessage, MessageSource, ReconciliationFeed
from src.services.remote import RemoteService
from src.services.submission import PhotoFile, SubmissionController, build_strategies

logger = logging.getLogger(__name__)


class Guestbook:
    """What the page needs: the message list and a way to sign the book."""

    def __init__(
        self,
        controller: SubmissionController,
        feed: ReconciliationFeed,
        api: FallbackApiClient,
        remote: Optional[RemoteService] = None,
        change_feed: Optional[RedisChangeFeed] = None,
    ):
        self.controller = controller
        self.feed = feed
        self.api = api
        self.remote = remote
        self.change_feed = change_feed

    @classmethod
    def from_settings(cls, settings: Settings, http_client: Optional[httpx.AsyncClient] = None) -> "Guestbook":
        """
        Missing client credentials are decided here, once: without them the
        page only ever talks to the fallback endpoint.
        """
        api = FallbackApiClient(settings.api_base_url, timeout=settings.request_timeout, client=http_client)

        remote_config = settings.client_remote()
        remote = RemoteService(remote_config, client=http_client) if remote_config else None

        change_feed = None
        if settings.redis_url:
            change_feed = RedisChangeFeed.from_url(settings.redis_url, settings.change_feed_channel)

        sources: List[MessageSource] = [api]
        if remote is not None:
            sources.insert(0, remote)
            resolver = PhotoResolver(remote.public_url)
        else:
            resolver = PhotoResolver(api.photo_url)

        feed = ReconciliationFeed(sources, resolver, change_feed=change_feed, refetch_delay=settings.refetch_delay)
        controller = SubmissionController(build_strategies(api, remote, change_feed), feed, uploader=remote)

        logger.info(
            "Guestbook ready (direct access: %s, realtime: %s)", remote is not None, change_feed is not None
        )
        return cls(controller, feed, api, remote=remote, change_feed=change_feed)

    async def start(self) -> None:
        await self.feed.start()

    async def submit(self, name: str, message: str, photo: Optional[PhotoFile] = None) -> Message:
        return await self.controller.submit(name, message, photo)

    def messages(self) -> List[DisplayedMessage]:
        return self.feed.items()

    async def aclose(self) -> None:
        await self.feed.stop()
        await self.api.aclose()
        if self.remote is not None:
            await self.remote.aclose()
        if self.change_feed is not None:
            await self.change_feed.aclose()
