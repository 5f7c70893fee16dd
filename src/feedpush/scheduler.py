"""Per-feed sync cycles: fetch, normalize, detect, persist, notify."""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass

import httpx

from feedpush.change_detector import detect_new_items
from feedpush.database import Database
from feedpush.errors import PipelineError, StoreError
from feedpush.feed_parser import DEFAULT_FETCH_TIMEOUT, fetch_feed, parse_feed
from feedpush.models import Channel, Item, utcnow
from feedpush.notifier import NotificationDispatcher

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    """Outcome of one sync cycle."""

    channel: Channel
    new_items: list[Item]
    created: bool = False

    @property
    def new_item_count(self) -> int:
        return len(self.new_items)


class FetchScheduler:
    """Runs sync cycles, at most one at a time per feed link.

    A cycle requested while another one for the same feed is running waits
    for it and then runs on its own. Different feeds never wait on each other.
    """

    def __init__(
        self,
        db: Database,
        dispatcher: NotificationDispatcher,
        client: httpx.AsyncClient,
        fetch_timeout: float = DEFAULT_FETCH_TIMEOUT,
    ):
        self.db = db
        self.dispatcher = dispatcher
        self.client = client
        self.fetch_timeout = fetch_timeout
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    @asynccontextmanager
    async def _feed_lock(self, feed_url: str):
        """Hold the feed's lock; it is dropped once nobody holds or awaits it."""
        lock = self._locks.get(feed_url)
        if lock is None:
            lock = self._locks[feed_url] = asyncio.Lock()
        self._lock_users[feed_url] = self._lock_users.get(feed_url, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[feed_url] -= 1
            if not self._lock_users[feed_url]:
                del self._lock_users[feed_url]
                del self._locks[feed_url]

    def is_syncing(self, feed_url: str) -> bool:
        lock = self._locks.get(feed_url)
        return lock is not None and lock.locked()

    async def sync(self, feed_url: str) -> int:
        """Run one cycle for a feed and return the count of new items.

        Raises:
            FetchError: The feed could not be fetched within the timeout.
            ParseError: The payload is neither RSS nor Atom.
            StoreError: The database rejected a read or the batch insert.
        """
        result = await self._run_cycle(feed_url)
        return result.new_item_count

    async def add_feed(self, feed_url: str) -> SyncResult:
        """Register a feed (reusing it if already known) and sync it."""
        return await self._run_cycle(feed_url)

    async def sync_all(self) -> dict[str, int | Exception]:
        """Sync every stored channel concurrently.

        Failures of any kind are recorded on the channel and returned, never
        raised.
        """
        channels = await asyncio.to_thread(self.db.get_channels)
        urls = [channel.feed_link for channel in channels]
        results = await asyncio.gather(
            *(self.sync(url) for url in urls), return_exceptions=True
        )

        outcome: dict[str, int | Exception] = {}
        for url, result in zip(urls, results):
            if isinstance(result, BaseException) and not isinstance(result, Exception):
                raise result
            if isinstance(result, Exception):
                if isinstance(result, PipelineError):
                    logger.warning("Feed %s error: %s", url, result)
                else:
                    logger.error("Feed %s failed unexpectedly: %r", url, result)
                try:
                    await asyncio.to_thread(self.db.record_channel_error, url, str(result))
                except PipelineError as e:
                    logger.error("Could not record error for %s: %s", url, e)
            outcome[url] = result
        return outcome

    async def _run_cycle(self, feed_url: str) -> SyncResult:
        async with self._feed_lock(feed_url):
            payload = await fetch_feed(self.client, feed_url, self.fetch_timeout)
            parsed = parse_feed(payload, feed_url)
            if parsed.rejected:
                logger.info(
                    "Feed %s: dropped %d malformed items", feed_url, len(parsed.rejected)
                )

            channel, created = await asyncio.to_thread(
                self.db.find_or_create_channel, parsed.channel
            )
            if created:
                logger.info("Registered channel %d '%s'", channel.id, channel.title)

            watermark = await asyncio.to_thread(self.db.watermark, channel.id)
            new_items = detect_new_items(parsed.items, watermark)

            # Once the insert starts, the batch is announced even if the
            # caller is cancelled, and the feed stays locked until it is.
            persist = asyncio.ensure_future(self._persist(channel, new_items))
            try:
                stored = await asyncio.shield(persist)
            except asyncio.CancelledError:
                await persist
                raise

            if stored:
                logger.info(
                    "Feed '%s': %d new items (latest published %s -> %s)",
                    channel.title,
                    len(stored),
                    watermark.latest_published,
                    watermark.advanced_by(stored),
                )
            return SyncResult(channel=channel, new_items=stored, created=created)

    async def _persist(self, channel: Channel, new_items: list[Item]) -> list[Item]:
        stored = await asyncio.to_thread(self.db.insert_items, channel.id, new_items)
        if stored:
            await self.dispatcher.dispatch(channel.id, stored)
        try:
            await asyncio.to_thread(self.db.mark_channel_synced, channel.id, utcnow())
        except StoreError as e:
            logger.warning("Could not mark channel %d as synced: %s", channel.id, e)
        return stored
