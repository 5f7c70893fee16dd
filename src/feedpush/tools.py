"""Agent tool implementations for the feedpush console."""

import asyncio
import json

from langchain_core.tools import tool

from feedpush.errors import FetchError, ParseError, StoreError
from feedpush.hub import ConnectionHub
from feedpush.models import Channel
from feedpush.notifier import Session


def create_tools(
    hub: ConnectionHub,
    session: Session,
    loop: asyncio.AbstractEventLoop,
) -> list:
    """Build the agent's tools for one console session.

    The agent runs on a worker thread; pipeline coroutines are submitted to
    ``loop`` and awaited from there.
    """
    db = hub.db
    user_id = session.user_id

    def run(coro):
        return asyncio.run_coroutine_threadsafe(coro, loop).result()

    @tool
    def add_feed(url: str) -> str:
        """Add an RSS or Atom feed by URL and subscribe to it.

        Args:
            url: The URL of the RSS or Atom feed.
        """
        try:
            result = run(hub.scheduler.add_feed(url))
            subscribed = run(hub.subscribe(session, result.channel.id))
        except (FetchError, ParseError) as e:
            return json.dumps({
                "status": "error",
                "reason": e.reason,
                "message": str(e),
            })
        except StoreError as e:
            return json.dumps({
                "status": "error",
                "reason": e.reason,
                "message": f"Could not save feed: {e}",
            })

        return json.dumps({
            "status": "subscribed" if result.created else "already_registered",
            "feed": {
                "id": subscribed.channel.id,
                "title": subscribed.channel.title,
                "description": subscribed.channel.description,
                "url": subscribed.channel.feed_link,
                "new_items": result.new_item_count,
                "unseen_count": subscribed.unseen_count,
            },
        })

    @tool
    def refresh_feed(feed_identifier: str) -> str:
        """Fetch a subscribed feed right now and report how many items are new.

        Args:
            feed_identifier: The title or URL of the feed.
        """
        channel, error = _resolve_channel(db, feed_identifier)
        if error:
            return error
        try:
            new_items = run(hub.scheduler.sync(channel.feed_link))
        except (FetchError, ParseError, StoreError) as e:
            db.record_channel_error(channel.feed_link, str(e))
            return json.dumps({
                "status": "error",
                "reason": e.reason,
                "message": str(e),
            })
        return json.dumps({
            "status": "success",
            "feed_title": channel.title,
            "new_items": new_items,
        })

    @tool
    def list_feeds() -> str:
        """List subscribed feeds with their unseen counts and fetch status."""
        feeds = db.get_subscribed_feeds(user_id)
        return json.dumps({
            "feeds": [
                {
                    "id": sub.channel.id,
                    "title": sub.channel.title,
                    "url": sub.channel.feed_link,
                    "status": "erroring" if sub.channel.error_count > 0 else "active",
                    "updated_at": sub.channel.updated_at.isoformat(),
                    "unseen_count": sub.unseen_count,
                    **({"last_error": sub.channel.last_error} if sub.channel.last_error else {}),
                }
                for sub in feeds
            ],
            "total": len(feeds),
        })

    @tool
    def get_items(
        feed_identifier: str = "",
        unseen_only: bool = False,
        limit: int = 20,
    ) -> str:
        """Get feed items, optionally filtered by feed or seen status.

        Args:
            feed_identifier: Optional filter by feed title or URL.
            unseen_only: If true, only return items not yet seen.
            limit: Maximum number of items to return (default 20).
        """
        channel_id = None
        if feed_identifier:
            channel, error = _resolve_channel(db, feed_identifier)
            if error:
                return error
            channel_id = channel.id

        items = db.get_subscribed_items(
            user_id, channel_id=channel_id, unseen_only=unseen_only, limit=limit
        )
        return json.dumps({
            "items": [
                {
                    "id": sub.item.id,
                    "feed_id": sub.item.channel_id,
                    "title": sub.item.title,
                    "link": sub.item.link,
                    "summary": (sub.item.summary or "")[:200],
                    "published_at": (
                        sub.item.published_at.isoformat() if sub.item.published_at else None
                    ),
                    "seen": sub.seen,
                }
                for sub in items
            ],
            "total": len(items),
        })

    @tool
    def mark_as_seen(
        item_ids: list[int] | None = None,
        feed_identifier: str = "",
    ) -> str:
        """Mark items as seen, or mark all items in a feed as seen.

        Args:
            item_ids: Optional list of specific item IDs to mark as seen.
            feed_identifier: Optional feed title or URL; marks all its items as seen.
        """
        if not item_ids and not feed_identifier:
            return json.dumps({
                "status": "error",
                "message": "Provide item_ids and/or feed_identifier",
            })

        total_marked = 0
        if feed_identifier:
            channel, error = _resolve_channel(db, feed_identifier)
            if error:
                return error
            total_marked += db.mark_channel_seen(user_id, channel.id)
        if item_ids:
            total_marked += db.mark_items_seen(user_id, item_ids)

        return json.dumps({
            "status": "success",
            "items_marked": total_marked,
        })

    return [add_feed, refresh_feed, list_feeds, get_items, mark_as_seen]


def _resolve_channel(db, identifier: str) -> tuple[Channel | None, str | None]:
    """Find exactly one channel by title or URL, or a JSON error to return."""
    matches = db.find_channels_by_identifier(identifier)
    if not matches:
        return None, json.dumps({
            "status": "error",
            "message": f"No feed found matching '{identifier}'",
        })
    if len(matches) > 1:
        exact = [c for c in matches if c.feed_link == identifier]
        if len(exact) != 1:
            return None, json.dumps({
                "status": "error",
                "message": "Multiple feeds match. Please be more specific.",
                "matches": [c.title for c in matches],
            })
        matches = exact
    return matches[0], None
