"""Connection lifecycle and incoming client actions."""

import asyncio
import json
import logging

from feedpush.database import Database
from feedpush.errors import PipelineError
from feedpush.models import SubscribedFeed
from feedpush.notifier import (
    NotificationDispatcher,
    Session,
    action_result_message,
    new_feed_message,
)
from feedpush.scheduler import FetchScheduler
from feedpush.subscriptions import SubscriptionIndex

logger = logging.getLogger(__name__)

UNKNOWN_ACTION = "Unknown"


class ConnectionHub:
    """Wires client sessions into the subscription index.

    The transport calls ``register_session`` when a connection opens,
    ``handle_message`` for every text frame, and ``unregister_session`` when
    it closes.
    """

    def __init__(
        self,
        db: Database,
        index: SubscriptionIndex,
        dispatcher: NotificationDispatcher,
        scheduler: FetchScheduler,
    ):
        self.db = db
        self.index = index
        self.dispatcher = dispatcher
        self.scheduler = scheduler
        self._handlers = {
            "AddFeed": self._on_add_feed,
            "Subscribe": self._on_subscribe,
            "MarkSeen": self._on_mark_seen,
            "MarkFeedSeen": self._on_mark_feed_seen,
            "Refresh": self._on_refresh,
        }

    async def register_session(self, session: Session) -> None:
        """Index a new session under every channel its user follows."""
        channel_ids = await asyncio.to_thread(
            self.db.subscribed_channel_ids, session.user_id
        )
        if session.closed:
            logger.info("Session for user %s closed before registration", session.user_id)
            return
        self.index.register(session)
        for channel_id in channel_ids:
            self.index.register(session, channel_id)
        logger.info(
            "Session registered for user %s (%d channels)",
            session.user_id, len(channel_ids),
        )

    def unregister_session(self, session: Session) -> None:
        session.close()
        self.index.unregister(session)

    async def subscribe(self, session: Session, channel_id: int) -> SubscribedFeed:
        """Subscribe the session's user to a channel and announce it.

        Every live session of the user starts receiving the channel's
        NewItems messages and gets a NewFeed message now.
        """
        subscribed = await asyncio.to_thread(
            self.db.subscribe, session.user_id, channel_id
        )
        sessions = {
            s for s in self.index.sessions_for_user(session.user_id) | {session}
            if not s.closed
        }
        for user_session in sessions:
            self.index.register(user_session, channel_id)
        await self.dispatcher.send(sessions, new_feed_message(subscribed))
        return subscribed

    async def add_feed(self, session: Session, feed_url: str) -> SubscribedFeed:
        """Register (or reuse) a feed, sync it, and subscribe the user."""
        result = await self.scheduler.add_feed(feed_url)
        return await self.subscribe(session, result.channel.id)

    async def handle_message(self, session: Session, text: str) -> bool:
        """Run one incoming action and reply with an ActionResult message.

        Expects ``{"id": <action>, "data": {...}}``.
        """
        try:
            message = json.loads(text)
            action = message["id"]
            data = message.get("data") or {}
        except (ValueError, KeyError, TypeError, AttributeError):
            logger.warning("Ignoring malformed message from user %s", session.user_id)
            await self.dispatcher.send([session], action_result_message(UNKNOWN_ACTION, False))
            return False

        handler = self._handlers.get(action)
        result = False
        if handler is None:
            logger.warning("Unknown action %r from user %s", action, session.user_id)
            action = UNKNOWN_ACTION
        else:
            try:
                await handler(session, data)
                result = True
            except PipelineError as e:
                logger.warning("%s failed (%s): %s", action, e.reason, e)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("%s rejected, bad payload: %s", action, e)

        await self.dispatcher.send([session], action_result_message(action, result))
        return result

    async def _on_add_feed(self, session: Session, data: dict) -> None:
        await self.add_feed(session, data["url"])

    async def _on_subscribe(self, session: Session, data: dict) -> None:
        await self.subscribe(session, int(data["feed_id"]))

    async def _on_mark_seen(self, session: Session, data: dict) -> None:
        item_ids = [int(item_id) for item_id in data["item_ids"]]
        await asyncio.to_thread(self.db.mark_items_seen, session.user_id, item_ids)

    async def _on_mark_feed_seen(self, session: Session, data: dict) -> None:
        await asyncio.to_thread(
            self.db.mark_channel_seen, session.user_id, int(data["feed_id"])
        )

    async def _on_refresh(self, session: Session, data: dict) -> None:
        channel = await asyncio.to_thread(self.db.get_channel, int(data["feed_id"]))
        if channel is None:
            raise ValueError(f"no channel {data['feed_id']}")
        await self.scheduler.sync(channel.feed_link)
