"""Shared test fixtures for feedpush tests."""

import asyncio
import json
import os
import tempfile

import httpx
import pytest
import pytest_asyncio

from feedpush.database import Database
from feedpush.notifier import NotificationDispatcher, Session
from feedpush.scheduler import FetchScheduler
from feedpush.subscriptions import SubscriptionIndex

SAMPLE_RSS_XML = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Test Feed</title>
    <link>https://example.com</link>
    <description>A test RSS feed</description>
    <item>
      <title>First Article</title>
      <link>https://example.com/article-1</link>
      <guid>article-1</guid>
      <description>Description of the first article</description>
      <pubDate>Fri, 13 Feb 2026 10:00:00 GMT</pubDate>
    </item>
    <item>
      <title>Second Article</title>
      <link>https://example.com/article-2</link>
      <guid>article-2</guid>
      <description>Description of the second article</description>
      <pubDate>Fri, 13 Feb 2026 09:00:00 GMT</pubDate>
    </item>
  </channel>
</rss>"""

SAMPLE_ATOM_XML = """<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Test Atom Feed</title>
  <link href="https://example.com"/>
  <subtitle>A test Atom feed</subtitle>
  <id>urn:uuid:feed</id>
  <updated>2026-02-13T10:00:00Z</updated>
  <entry>
    <title>Atom Entry 1</title>
    <link href="https://example.com/entry-1"/>
    <id>urn:uuid:entry-1</id>
    <summary>Summary of entry 1</summary>
    <updated>2026-02-13T10:00:00Z</updated>
  </entry>
</feed>"""

SAMPLE_NOT_A_FEED_XML = """<?xml version="1.0" encoding="UTF-8"?>
<html>
  <body>This is not a feed</body>
</html>"""


def build_rss(items: list[dict], title: str = "Test Feed") -> bytes:
    """Render an RSS 2.0 document; ``None`` fields are left out."""
    entries = []
    for item in items:
        parts = [
            f"<{tag}>{item[tag]}</{tag}>"
            for tag in ("title", "link", "guid", "description", "pubDate")
            if item.get(tag) is not None
        ]
        entries.append("<item>" + "".join(parts) + "</item>")
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<rss version="2.0"><channel>'
        f"<title>{title}</title>"
        "<link>https://example.com</link>"
        "<description>Generated feed</description>"
        + "".join(entries)
        + "</channel></rss>"
    ).encode()


def rss_item(n: int, **overrides) -> dict:
    item = {
        "title": f"Article {n}",
        "link": f"https://example.com/article-{n}",
        "guid": f"article-{n}",
        "description": f"Summary {n}",
        "pubDate": f"Fri, 13 Feb 2026 {n:02d}:00:00 GMT",
    }
    item.update(overrides)
    return item


class FakeSession(Session):
    """Session that records decoded messages instead of writing to a socket."""

    def __init__(self, user_id: int = 1, fail: bool = False, delay: float = 0):
        super().__init__(user_id)
        self.fail = fail
        self.delay = delay
        self.messages: list[dict] = []

    async def send(self, text: str) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ConnectionResetError("broken pipe")
        self.messages.append(json.loads(text))

    def of_kind(self, kind: str) -> list[dict]:
        return [m for m in self.messages if m["id"] == kind]


class FeedServer:
    """In-memory HTTP origin for httpx.MockTransport."""

    def __init__(self):
        self.responses: dict[str, tuple[int, bytes]] = {}
        self.timeouts: set[str] = set()
        self.requests: list[str] = []

    def serve(self, url: str, body: bytes | str, status: int = 200) -> None:
        if isinstance(body, str):
            body = body.encode()
        self.responses[url] = (status, body)

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(url)
        if url in self.timeouts:
            raise httpx.ConnectTimeout("timed out", request=request)
        status, body = self.responses.get(url, (404, b"not found"))
        return httpx.Response(status, content=body)


@pytest.fixture
def tmp_db_path():
    """Provide a temporary SQLite database path."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        path = f.name
    yield path
    for suffix in ("", "-wal", "-shm"):
        try:
            os.unlink(path + suffix)
        except OSError:
            pass


@pytest.fixture
def db(tmp_db_path):
    """A connected database on a temporary file."""
    database = Database(tmp_db_path)
    database.connect()
    yield database
    database.close()


@pytest.fixture
def user(db):
    return db.get_or_create_user("alice")


@pytest.fixture
def index():
    registry = SubscriptionIndex()
    yield registry
    registry.clear()


@pytest.fixture
def dispatcher(index):
    return NotificationDispatcher(index, delivery_timeout=0.5)


@pytest.fixture
def feed_server():
    return FeedServer()


@pytest_asyncio.fixture
async def client(feed_server):
    async with httpx.AsyncClient(transport=httpx.MockTransport(feed_server.handler)) as c:
        yield c


@pytest.fixture
def scheduler(db, dispatcher, client):
    return FetchScheduler(db, dispatcher, client, fetch_timeout=1.0)


@pytest.fixture
def make_session():
    """Factory for recording sessions."""
    return FakeSession


@pytest.fixture
def sample_rss_xml():
    """Sample valid RSS 2.0 XML."""
    return SAMPLE_RSS_XML


@pytest.fixture
def sample_atom_xml():
    """Sample valid Atom XML."""
    return SAMPLE_ATOM_XML


@pytest.fixture
def sample_not_a_feed_xml():
    """Sample XML that is not a feed."""
    return SAMPLE_NOT_A_FEED_XML


@pytest.fixture
def rss():
    """Builders for generated RSS payloads: ``rss.build`` and ``rss.item``."""

    class _Rss:
        build = staticmethod(build_rss)
        item = staticmethod(rss_item)

    return _Rss
