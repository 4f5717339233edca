import asyncio

import pytest

from callit.config import SESSION_COOKIE_NAME
from callit.realtime import Change, ChangeFeed, get_feed
from callit.services.auth import create_session

from main import app


class FakeSocket:
    """Collects what the feed sends."""

    def __init__(self, fail=False):
        self.sent = []
        self.accepted = False
        self.fail = fail

    async def accept(self):
        self.accepted = True

    async def send_json(self, message):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(message)


def _prediction(**fields):
    row = {"id": "p1", "user_id": "alice-id", "content": "Called", "is_locked": False}
    row.update(fields)
    return row


async def _connected(feed, user_id, *tables):
    socket = FakeSocket()
    await feed.connect(socket, user_id)
    for table in tables:
        feed.subscribe(socket, table)
    return socket


@pytest.mark.asyncio
async def test_publish_reaches_subscribers_only():
    feed = ChangeFeed()
    voter = await _connected(feed, "bob-id", "votes")
    other = await _connected(feed, "carol-id", "comments")

    await feed.publish(Change("votes", "insert", None, {"id": "v1", "prediction_id": "p1"}))

    assert voter.sent == [{"table": "votes", "type": "insert", "old": None, "new": {"id": "v1", "prediction_id": "p1"}}]
    assert other.sent == []


@pytest.mark.asyncio
async def test_unlocked_rows_go_to_their_author_only():
    feed = ChangeFeed()
    author = await _connected(feed, "alice-id", "predictions")
    viewer = await _connected(feed, "bob-id", "predictions")

    await feed.publish(Change("predictions", "insert", None, _prediction()))

    assert [m["type"] for m in author.sent] == ["insert"]
    assert viewer.sent == []


@pytest.mark.asyncio
async def test_locking_arrives_as_insert_for_others():
    feed = ChangeFeed()
    author = await _connected(feed, "alice-id", "predictions")
    viewer = await _connected(feed, "bob-id", "predictions")

    await feed.publish(Change(
        "predictions", "update",
        _prediction(),
        _prediction(is_locked=True, locked_at="2026-01-01T00:00:00"),
    ))

    assert author.sent[0]["type"] == "update"
    assert viewer.sent[0]["type"] == "insert"
    assert viewer.sent[0]["old"] is None
    assert viewer.sent[0]["new"]["is_locked"] is True


@pytest.mark.asyncio
async def test_hidden_delete_is_not_sent():
    feed = ChangeFeed()
    viewer = await _connected(feed, "bob-id", "predictions")

    await feed.publish(Change("predictions", "delete", _prediction(), None))
    assert viewer.sent == []


@pytest.mark.asyncio
async def test_unsubscribe_and_failed_sockets():
    feed = ChangeFeed()
    socket = await _connected(feed, "bob-id", "votes")
    broken = FakeSocket(fail=True)
    await feed.connect(broken, "carol-id")
    feed.subscribe(broken, "votes")
    assert feed.subscriber_count("votes") == 2

    await feed.publish(Change("votes", "delete", {"id": "v1"}, None))
    assert feed.subscriber_count("votes") == 1
    assert broken not in feed.active_connections

    feed.unsubscribe(socket, "votes")
    await feed.publish(Change("votes", "delete", {"id": "v2"}, None))
    assert len(socket.sent) == 1


def test_websocket_subscribe(client, session, alice):
    client.cookies.set(SESSION_COOKIE_NAME, create_session(session, alice.id))
    app.dependency_overrides[get_feed] = ChangeFeed

    with client.websocket_connect("/realtime") as websocket:
        websocket.send_json({"action": "subscribe", "table": "predictions"})
        assert websocket.receive_json() == {"type": "subscribed", "table": "predictions"}

        websocket.send_json({"action": "subscribe", "table": "sessions"})
        assert websocket.receive_json()["type"] == "error"

        websocket.send_json({"action": "listen", "table": "votes"})
        assert websocket.receive_json() == {"type": "error", "detail": "Unknown action: listen"}


def test_rest_writes_are_published(sign_in, make_prediction, alice, bob):
    feed = ChangeFeed()
    app.dependency_overrides[get_feed] = lambda: feed
    prediction = make_prediction(alice, "Called", locked=True)
    client = sign_in(bob)

    socket = FakeSocket()
    asyncio.run(feed.connect(socket, alice.id))
    feed.subscribe(socket, "votes")

    response = client.post("/rest/votes", json={"prediction_id": prediction.id, "vote_type": "agree"})
    assert response.status_code == 201

    assert len(socket.sent) == 1
    assert socket.sent[0]["type"] == "insert"
    assert socket.sent[0]["new"]["id"] == response.json()["id"]


def test_malformed_frames_get_errors_and_connection_is_released(client):
    feed = ChangeFeed()
    app.dependency_overrides[get_feed] = lambda: feed

    with client.websocket_connect("/realtime") as websocket:
        websocket.send_text("not json")
        assert websocket.receive_json() == {"type": "error", "detail": "Invalid JSON"}

        websocket.send_json(["subscribe", "votes"])
        assert websocket.receive_json()["type"] == "error"

        websocket.send_json({"action": "subscribe", "table": ["votes"]})
        assert websocket.receive_json()["type"] == "error"

        websocket.send_json({"action": "subscribe", "table": "votes"})
        assert websocket.receive_json() == {"type": "subscribed", "table": "votes"}
        assert len(feed.active_connections) == 1

    assert feed.active_connections == []
    assert feed.connection_info == {}
    assert feed.subscriber_count("votes") == 0
