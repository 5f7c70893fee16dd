"""Tests for the scheduled trigger."""

import asyncio

import pytest

from feedpush.poller import poll_feeds_once, start_polling


@pytest.mark.asyncio
async def test_poll_feeds_once_counts_new_items(scheduler, feed_server, rss):
    urls = ["http://one.example/rss", "http://two.example/rss", "http://down.example/rss"]
    for url in urls:
        feed_server.serve(url, rss.build([rss.item(1)]))
        await scheduler.add_feed(url)

    feed_server.serve(urls[0], rss.build([rss.item(2), rss.item(1)]))
    feed_server.serve(urls[1], rss.build([rss.item(3), rss.item(2), rss.item(1)]))
    feed_server.serve(urls[2], b"", status=500)

    assert await poll_feeds_once(scheduler) == 3


@pytest.mark.asyncio
async def test_start_polling_keeps_running(scheduler, feed_server, rss):
    url = "http://one.example/rss"
    feed_server.serve(url, rss.build([rss.item(1)]))
    await scheduler.add_feed(url)

    task = asyncio.create_task(start_polling(scheduler, interval=0))
    while feed_server.requests.count(url) < 3:
        await asyncio.sleep(0.01)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
