"""Tests for remote gateways (quote_sync.sync.gateway)."""

import asyncio
import logging
import random
from unittest.mock import Mock, patch

import pytest
import requests

from quote_sync.sync.errors import GatewayError
from quote_sync.sync.gateway import (
    POST_ID_OFFSET,
    SERVER_UPDATE_SUFFIX,
    SIMULATED_QUOTE,
    HttpGateway,
    InMemoryGateway,
    parse_records_body,
    posts_to_records,
    record_to_post,
)
from quote_sync.sync.models import (
    ChangeKind,
    Origin,
    PendingChange,
    Quote,
    Record,
)
from quote_sync.sync.persistence import SERVER_KEY, MemoryKeyValueStore

URL = "https://quotes.example.com/api/quotes"


def _rec(record_id, text="text", last_modified=10):
    return Record(
        id=record_id,
        payload=Quote(text=text, category="Life"),
        last_modified=last_modified,
    )


def _change(seq, kind, record):
    return PendingChange(
        seq=seq, kind=kind, record_id=record.id, record=record, created_at=0
    )


def _response(body=None, status=200, json_error=None):
    response = Mock()
    response.status_code = status
    if status >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(
            f"{status} Server Error"
        )
    else:
        response.raise_for_status.return_value = None
    if json_error is not None:
        response.json.side_effect = json_error
    else:
        response.json.return_value = body
    return response


# ---------------------------------------------------------------------------
# In-memory gateway
# ---------------------------------------------------------------------------


class TestInMemoryGateway:
    def test_push_applies_changes_in_order(self, clock):
        gateway = InMemoryGateway(clock)
        asyncio.run(
            gateway.push(
                [
                    _change(1, ChangeKind.ADD, _rec(1, "v1")),
                    _change(2, ChangeKind.UPDATE, _rec(1, "v2")),
                    _change(3, ChangeKind.ADD, _rec(2)),
                    _change(4, ChangeKind.DELETE, _rec(2)),
                ]
            )
        )
        records = gateway.records()
        assert [(r.id, r.payload.text) for r in records] == [(1, "v2")]
        assert records[0].origin == Origin.REMOTE
        assert len(gateway.push_calls) == 1

    def test_pull_snapshot(self, clock):
        gateway = InMemoryGateway(clock, [_rec(1), _rec(2)])
        snapshot = asyncio.run(gateway.pull())
        assert [r.id for r in snapshot.records] == [1, 2]
        assert snapshot.timestamp == clock.now

    def test_remote_edits(self, clock):
        gateway = InMemoryGateway(clock, [_rec(1)])
        stored = gateway.put_remote(_rec(2))
        assert stored.origin == Origin.REMOTE
        gateway.delete_remote(1)
        assert [r.id for r in gateway.records()] == [2]

    def test_persistence(self, clock):
        kv = MemoryKeyValueStore()
        gateway = InMemoryGateway(clock, persistence=kv)
        gateway.put_remote(_rec(7, "kept"))
        assert kv.load(SERVER_KEY)[0]["id"] == 7

        reloaded = InMemoryGateway(clock, persistence=kv)
        assert [r.payload.text for r in reloaded.records()] == ["kept"]

    def test_explicit_records_ignore_persisted_state(self, clock):
        kv = MemoryKeyValueStore({SERVER_KEY: [_rec(7).to_wire()]})
        gateway = InMemoryGateway(clock, [_rec(1)], persistence=kv)
        assert [r.id for r in gateway.records()] == [1]

    def test_add_for_taken_id_is_stored_under_new_id(self, clock):
        gateway = InMemoryGateway(clock, [_rec(5, "first client")])
        asyncio.run(
            gateway.push([_change(1, ChangeKind.ADD, _rec(5, "second client"))])
        )
        texts = {r.id: r.payload.text for r in gateway.records()}
        assert texts == {5: "first client", clock.now: "second client"}

    def test_repeated_add_is_idempotent(self, clock):
        gateway = InMemoryGateway(clock)
        add = _change(1, ChangeKind.ADD, _rec(5, "same"))
        asyncio.run(gateway.push([add]))
        asyncio.run(gateway.push([add]))
        assert [r.id for r in gateway.records()] == [5]


class ScriptedRandom(random.Random):
    """Random source replaying fixed ``random()`` values.

    ``choice`` always picks the first element.
    """

    def __init__(self, *values):
        super().__init__(0)
        self.values = list(values)

    def random(self):
        return self.values.pop(0)

    def choice(self, seq):
        return seq[0]


class TestServerSimulation:
    def test_off_by_default(self, clock):
        gateway = InMemoryGateway(clock, [_rec(1)], rng=ScriptedRandom())
        snapshot = asyncio.run(gateway.pull())
        assert [r.payload.text for r in snapshot.records] == ["text"]

    def test_adds_server_quote(self, clock):
        gateway = InMemoryGateway(
            clock,
            [_rec(1), _rec(2)],
            simulate_updates=True,
            rng=ScriptedRandom(0.1, 0.9),
        )
        snapshot = asyncio.run(gateway.pull())

        added = snapshot.records[-1]
        assert [r.id for r in snapshot.records] == [1, 2, clock.now]
        assert added.payload == SIMULATED_QUOTE
        assert added.origin == Origin.REMOTE
        assert added.version == 1
        assert added.last_modified == clock.now

    def test_nothing_added_to_empty_server(self, clock):
        gateway = InMemoryGateway(
            clock, simulate_updates=True, rng=ScriptedRandom(0.0, 0.0)
        )
        assert asyncio.run(gateway.pull()).records == []

    def test_edits_existing_quote(self, clock):
        gateway = InMemoryGateway(
            clock,
            [_rec(i) for i in range(1, 5)],
            simulate_updates=True,
            rng=ScriptedRandom(0.9, 0.1),
        )
        snapshot = asyncio.run(gateway.pull())

        edited = snapshot.records[0]
        assert edited.payload.text == "text" + SERVER_UPDATE_SUFFIX
        assert edited.version == 2
        assert edited.last_modified == clock.now
        assert [r.payload.text for r in snapshot.records[1:]] == ["text"] * 3

    def test_small_server_is_not_edited(self, clock):
        gateway = InMemoryGateway(
            clock,
            [_rec(i) for i in range(1, 4)],
            simulate_updates=True,
            rng=ScriptedRandom(0.9, 0.0),
        )
        assert gateway.simulate_server_updates() == []

    def test_changes_are_persisted_and_logged(self, clock, caplog):
        kv = MemoryKeyValueStore()
        gateway = InMemoryGateway(
            clock,
            persistence=kv,
            simulate_updates=True,
            rng=ScriptedRandom(0.1, 0.1),
        )
        for i in range(1, 5):
            gateway.put_remote(_rec(i))

        with caplog.at_level(logging.INFO, logger="quote_sync.sync.gateway"):
            made = gateway.simulate_server_updates()

        assert made == ["added new server quote", "updated existing quote"]
        assert len(kv.load(SERVER_KEY)) == 5
        assert "Server simulation: added new server quote" in caplog.text


# ---------------------------------------------------------------------------
# HTTP gateway
# ---------------------------------------------------------------------------


class TestHttpGatewayPull:
    @patch("quote_sync.sync.gateway.requests.Session.get")
    def test_pull_record_list(self, mock_get, clock):
        mock_get.return_value = _response([_rec(1).to_wire(), _rec(2).to_wire()])
        gateway = HttpGateway(URL, clock)

        snapshot = asyncio.run(gateway.pull())

        assert [r.id for r in snapshot.records] == [1, 2]
        assert all(r.origin == Origin.REMOTE for r in snapshot.records)
        assert snapshot.timestamp == clock.now
        mock_get.assert_called_once_with(URL, timeout=30.0)

    @patch("quote_sync.sync.gateway.requests.Session.get")
    def test_pull_records_object_with_timestamp(self, mock_get, clock):
        mock_get.return_value = _response(
            {"records": [_rec(1).to_wire()], "timestamp": 123}
        )
        snapshot = asyncio.run(HttpGateway(URL, clock).pull())
        assert snapshot.timestamp == 123

    @patch("quote_sync.sync.gateway.requests.Session.get")
    def test_pull_posts(self, mock_get, clock):
        mock_get.return_value = _response(
            [
                {"id": 1, "title": "a" * 30, "body": "ignored"},
                {"id": 2, "title": "short", "body": "b" * 100},
            ]
        )
        gateway = HttpGateway(URL, clock, payload_format="posts")

        snapshot = asyncio.run(gateway.pull())

        first, second = snapshot.records
        assert first.id == 1 + POST_ID_OFFSET
        assert first.payload.text == "a" * 30
        assert second.payload.text == "short. " + "b" * 80 + "..."
        assert first.last_modified == 0

    @patch("quote_sync.sync.gateway.requests.Session.get")
    def test_connection_error(self, mock_get, clock):
        mock_get.side_effect = requests.ConnectionError("refused")
        with pytest.raises(GatewayError, match="Pull from .* failed"):
            asyncio.run(HttpGateway(URL, clock).pull())

    @patch("quote_sync.sync.gateway.requests.Session.get")
    def test_http_error(self, mock_get, clock):
        mock_get.return_value = _response(status=503)
        with pytest.raises(GatewayError, match="503"):
            asyncio.run(HttpGateway(URL, clock).pull())

    @patch("quote_sync.sync.gateway.requests.Session.get")
    def test_invalid_json(self, mock_get, clock):
        mock_get.return_value = _response(json_error=ValueError("Expecting value"))
        with pytest.raises(GatewayError, match="invalid JSON"):
            asyncio.run(HttpGateway(URL, clock).pull())

    @patch("quote_sync.sync.gateway.requests.Session.get")
    def test_posts_format_requires_list(self, mock_get, clock):
        mock_get.return_value = _response({"posts": []})
        gateway = HttpGateway(URL, clock, payload_format="posts")
        with pytest.raises(GatewayError, match="list of posts"):
            asyncio.run(gateway.pull())


class TestHttpGatewayPush:
    @patch("quote_sync.sync.gateway.requests.Session.post")
    def test_push_records_batch(self, mock_post, clock):
        mock_post.return_value = _response({})
        changes = [
            _change(1, ChangeKind.ADD, _rec(1)),
            _change(2, ChangeKind.DELETE, _rec(2)),
        ]

        asyncio.run(HttpGateway(URL, clock).push(changes))

        mock_post.assert_called_once()
        body = mock_post.call_args.kwargs["json"]
        assert [c["kind"] for c in body["changes"]] == ["add", "delete"]
        assert body["changes"][0]["recordId"] == 1

    @patch("quote_sync.sync.gateway.requests.Session.post")
    def test_push_posts_skips_deletes(self, mock_post, clock):
        mock_post.return_value = _response({})
        changes = [
            _change(1, ChangeKind.ADD, _rec(1)),
            _change(2, ChangeKind.DELETE, _rec(2)),
            _change(3, ChangeKind.UPDATE, _rec(3)),
        ]

        asyncio.run(HttpGateway(URL, clock, payload_format="posts").push(changes))

        assert mock_post.call_count == 2

    @patch("quote_sync.sync.gateway.requests.Session.post")
    def test_push_nothing(self, mock_post, clock):
        asyncio.run(HttpGateway(URL, clock).push([]))
        mock_post.assert_not_called()

    @patch("quote_sync.sync.gateway.requests.Session.post")
    def test_push_failure(self, mock_post, clock):
        mock_post.side_effect = requests.Timeout("slow")
        with pytest.raises(GatewayError, match="Push to .* failed"):
            asyncio.run(
                HttpGateway(URL, clock).push([_change(1, ChangeKind.ADD, _rec(1))])
            )

    def test_unknown_format(self, clock):
        with pytest.raises(ValueError, match="Unknown payload format"):
            HttpGateway(URL, clock, payload_format="xml")

    def test_session_is_reused(self, clock):
        gateway = HttpGateway(URL, clock)
        session = gateway._get_session()
        assert gateway._get_session() is session
        assert session.headers["Accept"] == "application/json"


# ---------------------------------------------------------------------------
# Payload helpers
# ---------------------------------------------------------------------------


class TestPayloadHelpers:
    def test_parse_records_skips_malformed(self):
        records, timestamp = parse_records_body(
            [_rec(1).to_wire(), {"id": "x"}, {"nope": True}], 77
        )
        assert [r.id for r in records] == [1]
        assert timestamp == 77

    def test_parse_records_rejects_other_shapes(self):
        with pytest.raises(GatewayError, match="no records list"):
            parse_records_body({"data": []}, 0)
        with pytest.raises(GatewayError):
            parse_records_body("text", 0)

    def test_posts_limit_and_round_robin_categories(self):
        posts = [
            {"id": i, "title": f"A long enough post title {i}", "body": ""}
            for i in range(1, 12)
        ]
        records = posts_to_records(posts)
        assert len(records) == 8
        assert records[0].payload.category == "Inspiration"
        assert records[7].payload.category == records[0].payload.category

    def test_posts_malformed_skipped(self):
        records = posts_to_records([{"title": "no id"}, None])
        assert records == []

    def test_record_to_post(self):
        post = record_to_post(_rec(9, "A quote worth sharing with the world"))
        assert post["title"].startswith("Quote: A quote worth")
        assert "Category: Life" in post["body"]
        assert "ID: 9" in post["body"]
        assert post["userId"] == 1
