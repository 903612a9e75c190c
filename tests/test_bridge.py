"""
Tests for the WebSocket bridge client, using an in-memory bridge.
"""

import asyncio
import json

import pytest
import websockets

from chatlink.config.schema import BridgeConfig
from chatlink.errors import TransportError
from chatlink.gateway.verify import is_benign_send_error
from chatlink.transport import bridge_factory
from chatlink.transport.base import ClientEvent
from chatlink.transport.bridge import BridgeClient


class FakeBridge:
    """Answers every request from a canned table and lets tests push events."""

    def __init__(self, results=None, errors=None):
        self.sent = []
        self.results = results or {}
        self.errors = errors or {}
        self.closed = False
        self.queue = asyncio.Queue()

    async def send(self, raw):
        data = json.loads(raw)
        self.sent.append(data)
        if data["type"] != "request":
            return
        method = data["method"]
        response = {"type": "response", "id": data["id"]}
        if method in self.errors:
            response["error"] = self.errors[method]
        else:
            response["result"] = self.results.get(method)
        await self.queue.put(json.dumps(response))

    async def push(self, message):
        await self.queue.put(json.dumps(message))

    async def drop(self):
        await self.queue.put(None)

    async def close(self):
        self.closed = True
        await self.queue.put(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self.queue.get()
        if item is None:
            raise StopAsyncIteration
        return item

    def requests(self, method):
        return [m for m in self.sent if m.get("method") == method]


async def connected_client(monkeypatch, tmp_path, token="", **bridge_kwargs):
    bridge = FakeBridge(**bridge_kwargs)

    async def fake_connect(url):
        assert url == "ws://bridge:3001"
        return bridge

    monkeypatch.setattr(websockets, "connect", fake_connect)
    config = BridgeConfig(url="ws://bridge:3001", token=token, request_timeout_s=1.0)
    client = BridgeClient(tmp_path / "auth", config, session_name="u1")
    await client.connect()
    return client, bridge


class TestBridgeClient:
    @pytest.mark.asyncio
    async def test_connect_authenticates_and_initializes(self, monkeypatch, tmp_path):
        client, bridge = await connected_client(monkeypatch, tmp_path, token="secret")

        assert bridge.sent[0] == {"type": "auth", "token": "secret"}
        [init] = bridge.requests("initialize")
        assert init["params"] == {"session": "u1", "authDir": str(tmp_path / "auth")}
        assert client._pending == {}
        assert not client.is_ready

        await client.destroy()

    @pytest.mark.asyncio
    async def test_lifecycle_events(self, monkeypatch, tmp_path):
        client, bridge = await connected_client(monkeypatch, tmp_path)
        seen = []
        client.on(ClientEvent.QR, lambda code: seen.append(("qr", code)))
        client.on(ClientEvent.AUTHENTICATED, lambda: seen.append(("authenticated",)))
        client.on(ClientEvent.READY, lambda: seen.append(("ready",)))

        await bridge.push({"type": "qr", "qr": "2@abc"})
        await bridge.push({"type": "authenticated"})
        await bridge.push({"type": "ready", "info": {"wid": "111@c.us", "pushname": "Alice", "platform": "android"}})
        await client.get_chats()  # round-trip so every pushed event is processed

        assert seen == [("qr", "2@abc"), ("authenticated",), ("ready",)]
        assert client.is_ready
        assert client.info.to_dict() == {"id": "111@c.us", "display_name": "Alice", "platform": "android"}

        await client.destroy()

    @pytest.mark.asyncio
    async def test_retrieval_maps_bridge_fields(self, monkeypatch, tmp_path):
        client, bridge = await connected_client(
            monkeypatch,
            tmp_path,
            results={
                "getChats": [{"id": "111@c.us", "name": "Alice", "user": "111", "unreadCount": 3, "isGroup": False}],
                "fetchMessages": [
                    {"id": "m1", "body": "hi", "type": "chat", "timestamp": 1700000000, "fromMe": True, "ack": 2},
                ],
                "downloadMedia": {"mimetype": "image/png", "data": "AAAA"},
            },
        )

        [chat] = await client.get_chats()
        assert (chat.id, chat.name, chat.user, chat.unread_count) == ("111@c.us", "Alice", "111", 3)

        [message] = await client.fetch_messages("111@c.us", 10)
        assert message.from_me and message.ack == 2 and message.timestamp == 1700000000
        assert bridge.requests("fetchMessages")[0]["params"] == {"chatId": "111@c.us", "limit": 10}

        media = await client.download_media("111@c.us", "m1")
        assert media.mimetype == "image/png" and media.size == 3

        assert await client.get_chat("nope@c.us") is None

        await client.destroy()

    @pytest.mark.asyncio
    async def test_error_text_preserved(self, monkeypatch, tmp_path):
        text = "Cannot read properties of undefined (reading 'markedUnread')"
        client, _ = await connected_client(monkeypatch, tmp_path, errors={"sendMessage": text})

        with pytest.raises(TransportError) as exc:
            await client.send_message("111@c.us", "Hello")

        assert str(exc.value) == text
        assert is_benign_send_error(exc.value)

        await client.destroy()

    @pytest.mark.asyncio
    async def test_dropped_connection_emits_disconnected(self, monkeypatch, tmp_path):
        client, bridge = await connected_client(monkeypatch, tmp_path)
        reasons = []
        client.on(ClientEvent.DISCONNECTED, lambda reason: reasons.append(reason))

        await bridge.push({"type": "ready", "info": {"wid": "111@c.us"}})
        await bridge.drop()
        await asyncio.wait_for(client._reader, 1.0)

        assert reasons == ["bridge connection closed"]
        assert not client.is_ready

    @pytest.mark.asyncio
    async def test_destroy_is_silent(self, monkeypatch, tmp_path):
        client, bridge = await connected_client(monkeypatch, tmp_path)
        reasons = []
        client.on(ClientEvent.DISCONNECTED, lambda reason: reasons.append(reason))

        await client.destroy()

        assert bridge.closed
        assert len(bridge.requests("destroy")) == 1
        assert reasons == []

    @pytest.mark.asyncio
    async def test_request_without_connection(self, tmp_path):
        client = BridgeClient(tmp_path, BridgeConfig(), session_name="u1")
        with pytest.raises(TransportError, match="not connected"):
            await client.get_chats()

    def test_factory_binds_session_name(self, tmp_path):
        client = bridge_factory(BridgeConfig())("alice", tmp_path)
        assert isinstance(client, BridgeClient)
        assert client.session_name == "alice"
        assert client.auth_dir == tmp_path
