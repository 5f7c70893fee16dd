"""Outbound notification messages and their delivery to live sessions."""

import asyncio
import json
import logging
from datetime import datetime

from feedpush.errors import DeliveryError
from feedpush.models import CompositeItem, Item, SubscribedFeed
from feedpush.subscriptions import SubscriptionIndex

logger = logging.getLogger(__name__)

DEFAULT_DELIVERY_TIMEOUT = 5.0

NEW_FEED = "NewFeed"
NEW_ITEMS = "NewItems"
ACTION_RESULT = "ActionResult"


class Session:
    """One live client connection that can receive pushed messages.

    Transports subclass this and implement ``send``; they set ``closed``
    once the underlying connection is gone.
    """

    def __init__(self, user_id: int):
        self.user_id = user_id
        self.closed = False

    async def send(self, text: str) -> None:
        raise NotImplementedError

    def close(self) -> None:
        self.closed = True


# --- Wire messages ---


def new_items_message(channel_id: int, items: list[CompositeItem]) -> dict:
    return {
        "id": NEW_ITEMS,
        "data": {
            "feed_id": channel_id,
            "items": [composite_item_to_dict(item) for item in items],
        },
    }


def new_feed_message(subscribed: SubscribedFeed) -> dict:
    return {
        "id": NEW_FEED,
        "data": {
            "feed_id": subscribed.channel.id,
            "feed": subscribed_feed_to_dict(subscribed),
        },
    }


def action_result_message(action: str, result: bool) -> dict:
    return {"id": ACTION_RESULT, "data": {"id": action, "result": result}}


def composite_item_to_dict(item: CompositeItem) -> dict:
    """Serialize an outbound item. Absent summary/content keys are omitted."""
    data = {"id": item.id, "title": item.title, "link": item.link}
    if item.summary is not None:
        data["summary"] = item.summary
    if item.content is not None:
        data["content"] = item.content
    data["published_at"] = _isoformat(item.published_at)
    data["updated_at"] = _isoformat(item.updated_at)
    data["seen"] = item.seen
    return data


def subscribed_feed_to_dict(subscribed: SubscribedFeed) -> dict:
    channel = subscribed.channel
    return {
        "id": channel.id,
        "title": channel.title,
        "description": channel.description,
        "site_link": channel.site_link,
        "feed_link": channel.feed_link,
        "updated_at": _isoformat(channel.updated_at),
        "user_id": subscribed.user_id,
        "unseen_count": subscribed.unseen_count,
    }


def encode(message: dict) -> str:
    return json.dumps(message)


def _isoformat(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt else None


# --- Delivery ---


class NotificationDispatcher:
    """Delivers messages to every live session of a channel.

    A closed, failing, or slow session is logged and skipped; the others
    still receive the message. Nothing is retried: clients re-read current
    state when they reconnect.
    """

    def __init__(
        self,
        index: SubscriptionIndex,
        delivery_timeout: float = DEFAULT_DELIVERY_TIMEOUT,
    ):
        self.index = index
        self.delivery_timeout = delivery_timeout

    async def dispatch(self, channel_id: int, items: list[Item]) -> int:
        """Send one NewItems message for ``items`` to the channel's sessions.

        Returns:
            Number of sessions that received the message.
        """
        if not items:
            return 0
        sessions = self.index.sessions_for(channel_id)
        if not sessions:
            return 0

        message = new_items_message(
            channel_id, [CompositeItem.from_item(item) for item in items]
        )
        delivered = await self.send(sessions, message)
        logger.info(
            "Channel %d: notified %d/%d sessions of %d new items",
            channel_id, delivered, len(sessions), len(items),
        )
        return delivered

    async def send(self, sessions, message: dict) -> int:
        """Deliver ``message`` to each session concurrently. Returns successes."""
        targets = list(sessions)
        text = encode(message)
        results = await asyncio.gather(
            *(self._deliver(session, text) for session in targets),
            return_exceptions=True,
        )

        delivered = 0
        for session, result in zip(targets, results):
            if isinstance(result, DeliveryError):
                logger.warning(
                    "Skipping session of user %s: %s", session.user_id, result
                )
            elif isinstance(result, BaseException):
                raise result
            else:
                delivered += 1
        return delivered

    async def _deliver(self, session: Session, text: str) -> None:
        if session.closed:
            raise DeliveryError("transport closed")
        try:
            await asyncio.wait_for(session.send(text), self.delivery_timeout)
        except asyncio.TimeoutError as e:
            raise DeliveryError("delivery timed out") from e
        except Exception as e:
            raise DeliveryError(str(e) or type(e).__name__) from e
