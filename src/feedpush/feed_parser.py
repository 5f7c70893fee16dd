"""RSS/Atom fetching and normalization using httpx and feedparser."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from urllib.parse import urlparse

import feedparser
import httpx

from feedpush.errors import FetchError, ParseError
from feedpush.models import Channel, Item

logger = logging.getLogger(__name__)

DEFAULT_FETCH_TIMEOUT = 15.0


@dataclass
class ParsedFeed:
    """Result of normalizing an RSS/Atom payload."""

    format: str
    channel: Channel
    items: list[Item]
    rejected: list[str] = field(default_factory=list)


class _NotThisFormat(Exception):
    """A variant mapper does not recognise the document."""


async def fetch_feed(
    client: httpx.AsyncClient,
    url: str,
    timeout: float = DEFAULT_FETCH_TIMEOUT,
) -> bytes:
    """Fetch the raw bytes of a feed.

    Args:
        client: Shared HTTP client.
        url: The feed URL.
        timeout: Upper bound for the whole request in seconds.

    Raises:
        FetchError: If the URL is invalid, unreachable, too slow, or the
            server answers with a non-2xx status.
    """
    _validate_url(url)

    try:
        response = await client.get(url, timeout=timeout, follow_redirects=True)
    except httpx.TimeoutException as e:
        raise FetchError(f"Timed out fetching {url}") from e
    except httpx.HTTPError as e:
        raise FetchError(f"Could not reach URL: {e}") from e

    if response.status_code in (401, 403):
        raise FetchError(
            "Feed requires authentication. Ensure the URL is publicly accessible."
        )
    if not response.is_success:
        raise FetchError(f"Could not reach URL: HTTP {response.status_code}")

    return response.content


def parse_feed(payload: bytes, url: str) -> ParsedFeed:
    """Normalize an RSS or Atom payload into one channel and its items.

    RSS is tried first, then Atom. Items missing a guid, title, or link are
    dropped one by one and never fail the whole parse.

    Raises:
        ParseError: If the payload is neither RSS nor Atom, or the channel
            lacks a required field.
    """
    parsed = feedparser.parse(payload)
    reasons = []

    for mapper in (_map_rss, _map_atom):
        try:
            result = mapper(parsed, url)
        except _NotThisFormat as e:
            reasons.append(str(e))
            continue
        for reason in result.rejected:
            logger.debug("%s: %s", url, reason)
        return result

    if parsed.bozo and parsed.get("bozo_exception"):
        reasons.append(f"malformed document: {parsed.bozo_exception}")
    raise ParseError("; ".join(reasons))


def _map_rss(parsed, url: str) -> ParsedFeed:
    if not parsed.get("version", "").startswith("rss"):
        raise _NotThisFormat("not an RSS document")

    feed = parsed.feed
    if not feed.get("title"):
        raise _NotThisFormat("RSS channel has no title")

    channel = Channel(
        title=feed["title"],
        site_link=feed.get("link", ""),
        feed_link=url,
        description=feed.get("description") or "",
    )

    items, rejected = [], []
    for entry in parsed.entries:
        missing = _missing_fields(entry, ("id", "title", "link"))
        if "link" not in missing and _link_is_guid(entry):
            missing.append("link")
        if missing:
            rejected.append(_rejection(entry, missing))
            continue
        published = _parse_date(entry.get("published"))
        content = _content_value(entry)
        items.append(
            Item(
                guid=entry["id"],
                title=entry["title"],
                link=entry["link"],
                summary=_summary_value(entry, content),
                content=content,
                published_at=published,
                updated_at=published,
            )
        )

    return ParsedFeed("rss", channel, items, rejected)


def _map_atom(parsed, url: str) -> ParsedFeed:
    if not parsed.get("version", "").startswith("atom"):
        raise _NotThisFormat("not an Atom document")

    feed = parsed.feed
    if not feed.get("title"):
        raise _NotThisFormat("Atom feed has no title")

    channel = Channel(
        title=feed["title"],
        site_link=_first_href(feed) or "",
        feed_link=url,
        description=feed.get("subtitle"),
    )

    items, rejected = [], []
    for entry in parsed.entries:
        link = _first_href(entry)
        missing = _missing_fields(entry, ("id", "title"))
        if not link:
            missing.append("link")
        if missing:
            rejected.append(_rejection(entry, missing))
            continue
        content = _content_value(entry)
        items.append(
            Item(
                guid=entry["id"],
                title=entry["title"],
                link=link,
                summary=_summary_value(entry, content),
                content=content,
                published_at=_parse_date(entry.get("published")),
                updated_at=_parse_date(entry.get("updated")),
            )
        )

    return ParsedFeed("atom", channel, items, rejected)


def _validate_url(url: str) -> None:
    """Validate that the URL has a valid format."""
    try:
        result = urlparse(url)
    except ValueError:
        raise FetchError("Invalid URL format")
    if not result.scheme or not result.netloc:
        raise FetchError("Invalid URL format")
    if result.scheme not in ("http", "https"):
        raise FetchError("Invalid URL format: only http and https are supported")


def _missing_fields(entry, names: tuple[str, ...]) -> list[str]:
    return [name for name in names if not entry.get(name)]


def _rejection(entry, missing: list[str]) -> str:
    label = entry.get("title") or entry.get("id") or "unknown"
    return f"Skipping entry '{label}': missing {', '.join(missing)}"


def _first_href(node) -> str | None:
    for link in node.get("links") or []:
        if link.get("href"):
            return link["href"]
    return node.get("link")


def _content_value(entry) -> str | None:
    for content in entry.get("content") or []:
        if content.get("value"):
            return content["value"]
    return None


def _summary_value(entry, content: str | None) -> str | None:
    # feedparser copies the first content body into a missing summary.
    summary = entry.get("summary")
    if not summary or summary == content:
        return None
    return summary


def _link_is_guid(entry) -> bool:
    """True when feedparser filled ``link`` from a permalink guid."""
    if not entry.get("guidislink"):
        return False
    return not any(
        link.get("rel") == "alternate" and link.get("href")
        for link in entry.get("links") or []
    )


def _parse_date(value: str | None) -> datetime | None:
    """Parse RFC-2822, falling back to ISO-8601. Unparseable dates are None."""
    if not value:
        return None
    value = value.strip()

    try:
        return _as_utc(parsedate_to_datetime(value))
    except (TypeError, ValueError, IndexError, OverflowError):
        pass

    iso = value[:-1] + "+00:00" if value.endswith(("Z", "z")) else value
    try:
        return _as_utc(datetime.fromisoformat(iso))
    except (ValueError, OverflowError):
        return None


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
