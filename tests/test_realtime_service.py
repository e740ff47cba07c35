import json
import threading
import time
from dataclasses import replace
from urllib.parse import unquote

import pytest

from pocketbase_client.client import PocketBase
from pocketbase_client.models import QueryOptions, RealtimeAction, RealtimeEvent
from pocketbase_client.services.realtime_service import build_subscription_key
from pocketbase_client.sse import RealtimeConnectionError

from conftest import FakeStreamResponse, pb_connect_lines, wait_until


def test_subscription_key_without_options_is_the_topic():
    assert build_subscription_key("posts") == "posts"
    assert build_subscription_key("posts", QueryOptions()) == "posts"


def test_subscription_key_encodes_query_and_headers():
    key = build_subscription_key(
        "posts/abc",
        QueryOptions(filter="status = 'live'", expand="author", sort="-created", headers={"X-Token": "1"}),
    )

    topic, encoded = key.split("?options=")
    assert topic == "posts/abc"
    assert json.loads(unquote(encoded)) == {
        "query": {"filter": "status = 'live'", "expand": "author"},
        "headers": {"X-Token": "1"},
    }


def test_subscribe_connects_submits_and_dispatches_by_topic(pb, session):
    stream = FakeStreamResponse(pb_connect_lines("client-1"))
    session.streams.append(stream)
    updates = []
    creates = []
    delivered = threading.Event()

    def on_update(event):
        updates.append(event)
        delivered.set()

    pb.realtime.subscribe("update", on_update)
    pb.realtime.subscribe("create", creates.append)

    assert pb.realtime.is_connected
    assert pb.realtime.client_id == "client-1"
    assert session.realtime_submits() == [
        {"clientId": "client-1", "subscriptions": ["update"]},
        {"clientId": "client-1", "subscriptions": ["update", "create"]},
    ]

    stream.push("event: update", 'data: {"a":1}', "")

    assert delivered.wait(2)
    assert updates == [RealtimeEvent(action=RealtimeAction.UPDATE, record={"a": 1})]
    assert creates == []


def test_record_envelope_is_decoded(pb, session):
    stream = FakeStreamResponse(pb_connect_lines("client-1"))
    session.streams.append(stream)
    received = []

    pb.realtime.subscribe("posts", received.append)
    stream.push(
        "event: posts",
        'data: {"action":"delete","record":{"id":"r1","title":"bye"}}',
        "",
    )

    assert wait_until(lambda: len(received) == 1)
    assert received[0].action is RealtimeAction.DELETE
    assert received[0].record == {"id": "r1", "title": "bye"}


def test_failing_callback_does_not_block_other_listeners(pb, session):
    stream = FakeStreamResponse(pb_connect_lines("client-1"))
    session.streams.append(stream)
    received = []

    def broken(event):
        raise RuntimeError("listener bug")

    pb.realtime.subscribe("posts", broken)
    pb.realtime.subscribe("posts", received.append)
    stream.push("event: posts", 'data: {"action":"create","record":{"id":"1"}}', "")
    stream.push("event: posts", "data: not json", "")
    stream.push("event: posts", 'data: {"action":"update","record":{"id":"1"}}', "")

    assert wait_until(lambda: len(received) == 2)
    assert [event.action for event in received] == [RealtimeAction.CREATE, RealtimeAction.UPDATE]


def test_unsubscribe_function_resubmits_then_disconnects(pb, session):
    stream = FakeStreamResponse(pb_connect_lines("client-1"))
    session.streams.append(stream)
    disconnects = []
    pb.realtime.on_disconnect(disconnects.append)

    stop_posts = pb.realtime.subscribe("posts", lambda event: None)
    stop_users = pb.realtime.subscribe("users", lambda event: None)

    stop_posts()
    assert session.realtime_submits()[-1] == {"clientId": "client-1", "subscriptions": ["users"]}
    assert pb.realtime.is_connected

    stop_users()
    assert not pb.realtime.is_connected
    assert pb.realtime.client_id == ""
    assert stream.closed
    assert disconnects == [[]]


def test_unsubscribe_topic_removes_every_key_of_the_topic(pb, session):
    session.streams.append(FakeStreamResponse(pb_connect_lines("client-1")))

    pb.realtime.subscribe("posts", lambda event: None)
    pb.realtime.subscribe("posts", lambda event: None, QueryOptions(filter="id != ''"))
    pb.realtime.subscribe("posts/abc", lambda event: None)

    pb.realtime.unsubscribe("posts")

    assert pb.realtime.subscription_keys == ["posts/abc"]
    assert session.realtime_submits()[-1]["subscriptions"] == ["posts/abc"]


def test_unsubscribe_by_prefix(pb, session):
    session.streams.append(FakeStreamResponse(pb_connect_lines("client-1")))

    pb.realtime.subscribe("posts", lambda event: None)
    pb.realtime.subscribe("posts/abc", lambda event: None)
    pb.realtime.subscribe("users", lambda event: None)

    pb.realtime.unsubscribe_by_prefix("posts")

    assert pb.realtime.subscription_keys == ["users"]


def test_reconnects_and_resubscribes_after_connection_drop(pb, session):
    first = FakeStreamResponse(pb_connect_lines("client-1"))
    second = FakeStreamResponse(pb_connect_lines("client-2"))
    session.streams.extend([first, second])
    disconnects = []
    received = []
    pb.realtime.on_disconnect(disconnects.append)

    pb.realtime.subscribe("posts", received.append)
    first.end()

    assert wait_until(lambda: pb.realtime.client_id == "client-2" and pb.realtime.is_connected)
    assert disconnects == [["posts"]]
    assert session.realtime_submits()[-1] == {"clientId": "client-2", "subscriptions": ["posts"]}

    second.push("event: posts", 'data: {"action":"create","record":{"id":"9"}}', "")
    assert wait_until(lambda: len(received) == 1)


def test_reconnect_gives_up_after_max_attempts(settings, session, auth_store):
    settings = replace(settings, realtime_max_reconnect_attempts=2)
    client = PocketBase(settings=settings, auth_store=auth_store, session=session)
    first = FakeStreamResponse(pb_connect_lines("client-1"))
    session.streams.extend(
        [first, FakeStreamResponse(status_code=500), FakeStreamResponse(status_code=500)]
    )
    errors = []
    client.realtime.on_error(errors.append)

    try:
        client.realtime.subscribe("posts", lambda event: None)
        first.end()

        assert wait_until(lambda: len(errors) == 1)
        assert isinstance(errors[0], RealtimeConnectionError)
        assert not client.realtime.is_connected
        assert len(session.stream_requests) == 3
    finally:
        client.close()


def test_subscribe_fails_fast_with_the_connection_error(settings, session, auth_store):
    settings = replace(settings, connect_timeout_seconds=3.0, realtime_max_reconnect_attempts=1)
    client = PocketBase(settings=settings, auth_store=auth_store, session=session)
    session.streams.extend([FakeStreamResponse(status_code=500), FakeStreamResponse(status_code=500)])
    errors = []
    client.realtime.on_error(errors.append)

    try:
        started = time.monotonic()
        with pytest.raises(RealtimeConnectionError) as exc_info:
            client.realtime.subscribe("posts", lambda event: None)
        elapsed = time.monotonic() - started

        assert elapsed < 1.5
        assert isinstance(exc_info.value.__cause__, RealtimeConnectionError)
        assert "500" in str(exc_info.value.__cause__)
        assert client.realtime.subscription_keys == []
        assert len(session.stream_requests) == 2
        assert wait_until(lambda: len(errors) == 1)
    finally:
        client.close()


def test_giving_up_after_a_drop_notifies_disconnect_once(settings, session, auth_store):
    settings = replace(settings, realtime_max_reconnect_attempts=1)
    client = PocketBase(settings=settings, auth_store=auth_store, session=session)
    first = FakeStreamResponse(pb_connect_lines("client-1"))
    session.streams.append(first)
    disconnects = []
    errors = []
    client.realtime.on_disconnect(disconnects.append)
    client.realtime.on_error(errors.append)

    try:
        client.realtime.subscribe("posts", lambda event: None)
        # reconnect budget already spent when the live stream drops
        client.realtime._reconnect_attempts = 1
        first.end()

        assert wait_until(lambda: len(errors) == 1)
        assert disconnects == [["posts"]]
        assert not client.realtime.is_connected
        assert len(session.stream_requests) == 1
    finally:
        client.close()


def test_subscribe_times_out_without_pb_connect(settings, session, auth_store):
    settings = replace(settings, connect_timeout_seconds=0.2)
    client = PocketBase(settings=settings, auth_store=auth_store, session=session)
    stream = FakeStreamResponse()
    session.streams.append(stream)

    try:
        with pytest.raises(RealtimeConnectionError):
            client.realtime.subscribe("posts", lambda event: None)

        assert client.realtime.subscription_keys == []
        assert stream.closed
    finally:
        client.close()


def test_subscribe_requires_topic(pb):
    with pytest.raises(ValueError):
        pb.realtime.subscribe("", lambda event: None)


def test_realtime_uses_auth_token(pb, session, auth_store):
    auth_store.save("session-token", {"id": "u1"})
    session.streams.append(FakeStreamResponse(pb_connect_lines("client-1")))

    pb.realtime.subscribe("posts", lambda event: None)

    assert session.stream_requests[0]["url"] == "http://pb.test/api/realtime"
    assert session.stream_requests[0]["headers"]["Authorization"] == "session-token"
    assert session.requests[0]["headers"]["Authorization"] == "session-token"
