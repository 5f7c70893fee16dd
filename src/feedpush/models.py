"""Data models for feedpush."""

from dataclasses import dataclass, field
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Channel:
    """Represents a registered RSS/Atom source."""

    title: str
    feed_link: str
    site_link: str = ""
    description: str | None = None
    updated_at: datetime = field(default_factory=utcnow)
    error_count: int = 0
    last_error: str | None = None
    id: int | None = None


@dataclass
class Item:
    """Represents a single normalized entry from a channel."""

    guid: str
    title: str
    link: str
    summary: str | None = None
    content: str | None = None
    published_at: datetime | None = None
    updated_at: datetime | None = None
    channel_id: int | None = None
    id: int | None = None


@dataclass
class User:
    username: str
    id: int | None = None


@dataclass
class SubscribedFeed:
    """A channel as seen by one subscriber."""

    channel: Channel
    user_id: int
    unseen_count: int = 0


@dataclass
class SubscribedItem:
    """An item as seen by one subscriber."""

    item: Item
    user_id: int
    seen: bool = False


@dataclass
class CompositeItem:
    """Outbound projection of an item. Never persisted."""

    id: int
    title: str
    link: str
    summary: str | None = None
    content: str | None = None
    published_at: datetime | None = None
    updated_at: datetime | None = None
    seen: bool = False

    @classmethod
    def from_item(cls, item: Item, seen: bool = False) -> "CompositeItem":
        return cls(
            id=item.id,
            title=item.title,
            link=item.link,
            summary=item.summary,
            content=item.content,
            published_at=item.published_at,
            updated_at=item.updated_at,
            seen=seen,
        )

    @classmethod
    def from_subscribed(cls, subscribed: SubscribedItem) -> "CompositeItem":
        return cls.from_item(subscribed.item, seen=subscribed.seen)


@dataclass
class Watermark:
    """What a channel already holds: newest published date and known guids."""

    latest_published: datetime | None = None
    guids: set[str] = field(default_factory=set)

    def knows(self, guid: str) -> bool:
        return guid in self.guids

    def advanced_by(self, items: list[Item]) -> datetime | None:
        """Latest published date once ``items`` are stored. Never moves back."""
        latest = self.latest_published
        for item in items:
            if item.published_at is None:
                continue
            if latest is None or item.published_at > latest:
                latest = item.published_at
        return latest
