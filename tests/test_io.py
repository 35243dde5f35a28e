"""Tests for the HTTP collaborators: feed poller and Messenger channel."""

from unittest import mock

import pytest
import requests

from stock_notifier import feed, notifier
from stock_notifier.feed import FeedPoller
from stock_notifier.notifier import MAX_MESSAGE_LENGTH, MessengerChannel, build_payload
from stock_notifier.stock import Category
from stock_notifier.utils import ConfigurationError, FeedUnavailableError, MalformedSnapshotError


def response(status=200, body=b"{}"):
    resp = requests.Response()
    resp.status_code = status
    resp._content = body
    resp.url = "https://example.test"
    return resp


@pytest.fixture(autouse=True)
def no_retry_sleep(monkeypatch):
    monkeypatch.setattr(feed._get.retry, "sleep", lambda seconds: None)
    monkeypatch.setattr(notifier._post.retry, "sleep", lambda seconds: None)


class TestFeedPoller:

    def test_fetch_snapshot(self):
        session = mock.Mock()
        session.get.return_value = response(body=b'{"seed_stock": [{"item_id": "kiwi", "quantity": 2}]}')
        snap = FeedPoller("https://api.test/", session=session).fetch_snapshot()
        assert snap.item_ids(Category.SEED) == {"kiwi"}
        assert session.get.call_args[0][0] == "https://api.test/v2/growagarden/stock"

    def test_retries_network_errors_three_times(self):
        session = mock.Mock()
        session.get.side_effect = requests.ConnectionError("down")
        with pytest.raises(FeedUnavailableError):
            FeedPoller("https://api.test", session=session).fetch_snapshot()
        assert session.get.call_count == 3

    def test_recovers_after_transient_error(self):
        session = mock.Mock()
        session.get.side_effect = [response(503), response(body=b'{"egg_stock": []}')]
        snap = FeedPoller("https://api.test", session=session).fetch_snapshot()
        assert snap.is_empty()

    def test_client_error_is_not_retried(self):
        session = mock.Mock()
        session.get.return_value = response(404)
        with pytest.raises(FeedUnavailableError):
            FeedPoller("https://api.test", session=session).fetch_snapshot()
        assert session.get.call_count == 1

    def test_malformed_body(self):
        session = mock.Mock()
        session.get.return_value = response(body=b"<html>")
        with pytest.raises(MalformedSnapshotError):
            FeedPoller("https://api.test", session=session).fetch_snapshot()


class TestMessengerChannel:

    def test_send_posts_payload(self):
        session = mock.Mock()
        session.post.return_value = response()
        channel = MessengerChannel("token", "https://graph.test/me/messages", session=session)
        assert channel.send("123", "hello")
        kwargs = session.post.call_args.kwargs
        assert kwargs["params"] == {"access_token": "token"}
        assert kwargs["json"] == {
            "messaging_type": "UPDATE",
            "recipient": {"id": "123"},
            "message": {"text": "hello"},
        }

    def test_rate_limit_is_retried(self):
        session = mock.Mock()
        session.post.side_effect = [response(429), response(429), response()]
        channel = MessengerChannel("token", session=session)
        assert channel.send("123", "hello")
        assert session.post.call_count == 3

    def test_retries_are_bounded(self):
        session = mock.Mock()
        session.post.return_value = response(429)
        channel = MessengerChannel("token", session=session)
        assert channel.send("123", "hello") is False
        assert session.post.call_count == 4

    def test_network_error_returns_false(self):
        session = mock.Mock()
        session.post.side_effect = requests.ConnectionError("reset")
        assert MessengerChannel("token", session=session).send("123", "hello") is False

    def test_client_error_returns_false(self):
        session = mock.Mock()
        session.post.return_value = response(400, b'{"error": {}}')
        assert MessengerChannel("token", session=session).send("123", "hello") is False
        assert session.post.call_count == 1

    def test_missing_recipient_is_programmer_error(self):
        with pytest.raises(ValueError):
            MessengerChannel("token", session=mock.Mock()).send("", "hello")

    def test_requires_token(self):
        with pytest.raises(ConfigurationError):
            MessengerChannel("", session=mock.Mock())

    def test_long_text_is_truncated(self):
        text = build_payload("1", "x" * 5000)["message"]["text"]
        assert len(text) == MAX_MESSAGE_LENGTH
        assert text.endswith("…")

    def test_sent_text_is_recognised_as_echo(self):
        session = mock.Mock()
        session.post.side_effect = [response(), response(400)]
        channel = MessengerChannel("token", session=session)
        assert channel.send("123", "hello")
        assert channel.is_echo("hello")
        assert not channel.send("123", "never delivered")
        assert not channel.is_echo("never delivered")
