"""
Tests for the send-verification fallback.
"""

import time

import pytest

from chatlink.config.schema import SendConfig
from chatlink.errors import TransportError
from chatlink.gateway.verify import SendVerifier, find_sent_message, is_benign_send_error, is_temp_id
from chatlink.transport.base import MessageInfo

from conftest import FakeClient

MARKED_UNREAD = TypeError("Cannot read properties of undefined (reading 'markedUnread')")


def own(msg_id, body, age_s, from_me=True):
    return MessageInfo(id=msg_id, body=body, timestamp=int(time.time() - age_s), from_me=from_me)


@pytest.fixture
def verifier():
    return SendVerifier(SendConfig(settle_s=0))


@pytest.fixture
def client(tmp_path):
    return FakeClient(tmp_path)


class TestBenignErrors:
    def test_markers(self):
        assert is_benign_send_error(MARKED_UNREAD)
        assert is_benign_send_error(RuntimeError("Evaluation failed: markedUnread"))
        assert not is_benign_send_error(RuntimeError("Chat not found"))

    def test_temp_ids(self):
        assert is_temp_id("temp_1700000000000")
        assert not is_temp_id("true_111@c.us_3EB0")


class TestFindSentMessage:
    def match(self, messages, text="Hello"):
        return find_sent_message(messages, text, now=time.time(), match_window_s=15, recent_window_s=5)

    def test_exact_match(self):
        assert self.match([own("a", "Hello", 10)]).id == "a"

    def test_partial_match_either_way(self):
        assert self.match([own("a", "Hello there", 10)]).id == "a"
        assert self.match([own("b", "Hell", 10)]).id == "b"

    def test_whitespace_ignored(self):
        assert self.match([own("a", "  Hello \n", 10)]).id == "a"

    def test_old_message_ignored(self):
        assert self.match([own("a", "Hello", 30)]) is None

    def test_other_party_ignored(self):
        assert self.match([own("a", "Hello", 1, from_me=False)]) is None

    def test_very_recent_own_message_without_text_match(self):
        assert self.match([own("a", "something else", 2)]).id == "a"
        assert self.match([own("a", "something else", 10)]) is None

    def test_text_match_preferred_over_recency(self):
        found = self.match([own("a", "Hello", 12), own("b", "unrelated", 1)])
        assert found.id == "a"

    def test_empty_body_never_text_matches(self):
        assert self.match([own("a", "", 10)]) is None


class TestSendVerifier:
    @pytest.mark.asyncio
    async def test_normal_send(self, verifier, client):
        assert await verifier.send(client, "c1@c.us", "Hello") == "abc123"

    @pytest.mark.asyncio
    async def test_benign_error_with_matching_message(self, verifier, client):
        client.send_error = MARKED_UNREAD
        client.messages["c1@c.us"] = [own("older", "hi", 60), own("real-id", "Hello", 1)]

        assert await verifier.send(client, "c1@c.us", "Hello") == "real-id"

    @pytest.mark.asyncio
    async def test_benign_error_without_match_returns_temp_id(self, verifier, client):
        client.send_error = MARKED_UNREAD
        client.messages["c1@c.us"] = [own("older", "hi", 60)]

        message_id = await verifier.send(client, "c1@c.us", "Hello")

        assert message_id.startswith("temp_")
        assert message_id[len("temp_"):].isdigit()

    @pytest.mark.asyncio
    async def test_verification_fetch_failure_still_returns_temp_id(self, verifier, client):
        client.send_error = MARKED_UNREAD
        client.failures["fetch_messages"] = RuntimeError("socket closed")

        assert is_temp_id(await verifier.send(client, "c1@c.us", "Hello"))

    @pytest.mark.asyncio
    async def test_unverified_can_be_made_strict(self, client):
        strict = SendVerifier(SendConfig(settle_s=0, assume_sent_on_unverified=False))
        client.send_error = MARKED_UNREAD

        with pytest.raises(TransportError, match="could not be verified"):
            await strict.send(client, "c1@c.us", "Hello")

    @pytest.mark.asyncio
    async def test_other_errors_propagate_unchanged(self, verifier, client):
        error = RuntimeError("Phone not connected")
        client.send_error = error

        with pytest.raises(RuntimeError) as exc:
            await verifier.send(client, "c1@c.us", "Hello")
        assert exc.value is error
