"""Tests for connection lifecycle and incoming actions."""

import asyncio
import json

import pytest

from feedpush.hub import ConnectionHub

FEED_URL = "http://example.com/rss"


@pytest.fixture
def hub(db, index, dispatcher, scheduler):
    return ConnectionHub(db, index, dispatcher, scheduler)


def _action(action_id, **data):
    return json.dumps({"id": action_id, "data": data})


@pytest.mark.asyncio
async def test_register_session_indexes_existing_subscriptions(hub, db, index, scheduler, feed_server, make_session, user, sample_rss_xml):
    feed_server.serve(FEED_URL, sample_rss_xml)
    result = await scheduler.add_feed(FEED_URL)
    db.subscribe(user.id, result.channel.id)

    session = make_session(user.id)
    await hub.register_session(session)

    assert index.sessions_for(result.channel.id) == {session}

    hub.unregister_session(session)
    assert session.closed
    assert index.sessions_for(result.channel.id) == frozenset()
    assert len(index) == 0


@pytest.mark.asyncio
async def test_session_closed_during_registration_is_not_indexed(hub, db, index, scheduler, feed_server, make_session, user, sample_rss_xml):
    feed_server.serve(FEED_URL, sample_rss_xml)
    channel = (await scheduler.add_feed(FEED_URL)).channel
    db.subscribe(user.id, channel.id)
    session = make_session(user.id)

    registering = asyncio.create_task(hub.register_session(session))
    await asyncio.sleep(0)
    hub.unregister_session(session)
    await registering

    assert index.sessions_for(channel.id) == frozenset()
    assert len(index) == 0


@pytest.mark.asyncio
async def test_session_closed_during_subscribe_is_skipped(hub, index, scheduler, feed_server, make_session, user, sample_rss_xml):
    feed_server.serve(FEED_URL, sample_rss_xml)
    channel = (await scheduler.add_feed(FEED_URL)).channel
    phone, laptop = make_session(user.id), make_session(user.id)
    for session in (phone, laptop):
        await hub.register_session(session)

    subscribing = asyncio.create_task(hub.subscribe(phone, channel.id))
    await asyncio.sleep(0)
    hub.unregister_session(laptop)
    await subscribing

    assert index.sessions_for(channel.id) == {phone}
    assert laptop.messages == []
    assert len(phone.of_kind("NewFeed")) == 1

@pytest.mark.asyncio
async def test_subscribe_announces_to_every_user_session(hub, index, scheduler, feed_server, make_session, user, sample_rss_xml):
    feed_server.serve(FEED_URL, sample_rss_xml)
    channel = (await scheduler.add_feed(FEED_URL)).channel
    phone, laptop = make_session(user.id), make_session(user.id)
    stranger = make_session(user.id + 100)
    for session in (phone, laptop, stranger):
        await hub.register_session(session)

    subscribed = await hub.subscribe(phone, channel.id)

    assert subscribed.unseen_count == 2
    assert index.sessions_for(channel.id) == {phone, laptop}
    for session in (phone, laptop):
        (message,) = session.of_kind("NewFeed")
        assert message["data"]["feed_id"] == channel.id
        assert message["data"]["feed"]["unseen_count"] == 2
    assert stranger.messages == []


@pytest.mark.asyncio
async def test_add_feed_action(hub, db, index, feed_server, make_session, user, sample_rss_xml):
    feed_server.serve(FEED_URL, sample_rss_xml)
    session = make_session(user.id)
    await hub.register_session(session)

    assert await hub.handle_message(session, _action("AddFeed", url=FEED_URL)) is True

    channel = db.get_channel_by_link(FEED_URL)
    assert index.sessions_for(channel.id) == {session}
    assert [m["id"] for m in session.messages] == ["NewFeed", "ActionResult"]
    assert session.messages[-1]["data"] == {"id": "AddFeed", "result": True}


@pytest.mark.asyncio
async def test_add_feed_action_reports_unreachable(hub, db, feed_server, make_session, user):
    feed_server.serve(FEED_URL, b"down", status=503)
    session = make_session(user.id)

    assert await hub.handle_message(session, _action("AddFeed", url=FEED_URL)) is False

    assert session.messages == [
        {"id": "ActionResult", "data": {"id": "AddFeed", "result": False}}
    ]
    assert not db.channel_exists(FEED_URL)


@pytest.mark.asyncio
async def test_mark_seen_actions(hub, db, scheduler, feed_server, make_session, user, sample_rss_xml):
    feed_server.serve(FEED_URL, sample_rss_xml)
    session = make_session(user.id)
    await hub.handle_message(session, _action("AddFeed", url=FEED_URL))
    channel = db.get_channel_by_link(FEED_URL)
    first_id = db.get_subscribed_items(user.id)[0].item.id

    assert await hub.handle_message(session, _action("MarkSeen", item_ids=[first_id]))
    assert db.get_subscribed_feed(user.id, channel.id).unseen_count == 1

    assert await hub.handle_message(session, _action("MarkFeedSeen", feed_id=channel.id))
    assert db.get_subscribed_feed(user.id, channel.id).unseen_count == 0


@pytest.mark.asyncio
async def test_refresh_action_pushes_new_items(hub, db, feed_server, make_session, user, rss):
    feed_server.serve(FEED_URL, rss.build([rss.item(1)]))
    session = make_session(user.id)
    await hub.register_session(session)
    await hub.handle_message(session, _action("AddFeed", url=FEED_URL))
    channel = db.get_channel_by_link(FEED_URL)

    feed_server.serve(FEED_URL, rss.build([rss.item(2), rss.item(1)]))
    assert await hub.handle_message(session, _action("Refresh", feed_id=channel.id))

    (pushed,) = session.of_kind("NewItems")
    assert [i["title"] for i in pushed["data"]["items"]] == ["Article 2"]
    assert await hub.handle_message(session, _action("Refresh", feed_id=9999)) is False


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "text, reply_id",
    [
        ("not json", "Unknown"),
        ("[1, 2]", "Unknown"),
        ('{"data": {}}', "Unknown"),
        (_action("Teleport"), "Unknown"),
        (_action("Subscribe"), "Subscribe"),
        (_action("MarkSeen", item_ids=["x"]), "MarkSeen"),
    ],
)
async def test_bad_messages_get_failed_result(hub, make_session, user, text, reply_id):
    session = make_session(user.id)

    assert await hub.handle_message(session, text) is False

    assert session.messages == [
        {"id": "ActionResult", "data": {"id": reply_id, "result": False}}
    ]
