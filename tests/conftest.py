"""
Shared fixtures: a scripted in-memory chat client and a fast test config.
"""

import asyncio
import time
from pathlib import Path

import pytest

from chatlink.config.schema import Config, GatewayConfig, SendConfig, SessionsConfig
from chatlink.transport.base import (
    ChatClient,
    ChatInfo,
    ClientEvent,
    ClientInfo,
    ContactInfo,
    MediaPayload,
    MessageInfo,
)
from chatlink.utils.helpers import get_auth_dir


class FakeClient(ChatClient):
    """
    In-memory ChatClient.

    Lifecycle events are fired explicitly with fire(); connect() can be
    scripted to emit events, to block, or to fail.
    """

    def __init__(self, auth_dir: Path, user_id: str = "u1"):
        super().__init__(auth_dir)
        self.user_id = user_id
        self._info: ClientInfo | None = None

        self.chats: list[ChatInfo] = []
        self.contacts: dict[str, ContactInfo] = {}
        self.avatars: dict[str, str] = {}
        self.messages: dict[str, list[MessageInfo]] = {}
        self.media: dict[str, MediaPayload] = {}

        self.connect_events: list[tuple] = []
        self.connect_gate: asyncio.Event | None = None
        self.connect_error: Exception | None = None
        self.send_error: Exception | None = None
        self.send_id = "abc123"
        self.delays: dict[str, float] = {}
        self.failures: dict[str, Exception] = {}

        self.connected_calls = 0
        self.logged_out = False
        self.destroyed = False
        self.sent: list[tuple[str, str]] = []

    @property
    def info(self) -> ClientInfo | None:
        return self._info

    async def fire(self, event: ClientEvent, *args) -> None:
        if event == ClientEvent.READY:
            self._info = ClientInfo(id=f"{self.user_id}@c.us", display_name=self.user_id, platform="android")
        elif event in (ClientEvent.AUTH_FAILURE, ClientEvent.DISCONNECTED):
            self._info = None
        await self._emit(event, *args)

    async def _step(self, name: str) -> None:
        if name in self.delays:
            await asyncio.sleep(self.delays[name])
        if name in self.failures:
            raise self.failures[name]

    async def connect(self) -> None:
        self.connected_calls += 1
        if self.connect_gate is not None:
            await self.connect_gate.wait()
        if self.connect_error is not None:
            raise self.connect_error
        for event, *args in self.connect_events:
            await self.fire(event, *args)

    async def get_chats(self) -> list[ChatInfo]:
        await self._step("get_chats")
        return list(self.chats)

    async def get_chat(self, chat_id: str) -> ChatInfo | None:
        return next((c for c in self.chats if c.id == chat_id), None)

    async def get_contact(self, chat_id: str) -> ContactInfo:
        await self._step("get_contact")
        if chat_id not in self.contacts:
            raise RuntimeError(f"no contact for {chat_id}")
        return self.contacts[chat_id]

    async def get_profile_pic_url(self, contact_id: str) -> str | None:
        await self._step("get_profile_pic_url")
        return self.avatars.get(contact_id)

    async def fetch_messages(self, chat_id: str, limit: int) -> list[MessageInfo]:
        await self._step("fetch_messages")
        return list(self.messages.get(chat_id, []))[-limit:]

    async def download_media(self, chat_id: str, message_id: str) -> MediaPayload | None:
        await self._step("download_media")
        return self.media.get(message_id)

    async def send_message(self, chat_id: str, text: str) -> MessageInfo:
        self.sent.append((chat_id, text))
        message = MessageInfo(id=self.send_id, body=text, timestamp=int(time.time()), from_me=True, ack=1)
        if self.send_error is not None:
            raise self.send_error
        self.messages.setdefault(chat_id, []).append(message)
        return message

    async def logout(self) -> None:
        self.logged_out = True

    async def destroy(self) -> None:
        self.destroyed = True
        self._info = None


class FakeFactory:
    """Client factory that records every client it creates."""

    def __init__(self, setup=None):
        self.created: list[FakeClient] = []
        self.setup = setup

    def __call__(self, user_id: str, auth_dir: Path) -> FakeClient:
        client = FakeClient(auth_dir, user_id=user_id)
        if self.setup is not None:
            self.setup(client)
        self.created.append(client)
        return client

    @property
    def last(self) -> FakeClient:
        return self.created[-1]


def write_credentials(config: Config, user_id: str) -> Path:
    """Simulate credentials left on disk by a previous login."""
    auth_dir = get_auth_dir(config.data_path, user_id)
    auth_dir.mkdir(parents=True, exist_ok=True)
    (auth_dir / "creds.json").write_text("{}")
    return auth_dir


def chat(chat_id: str, name: str = "", unread: int = 0, is_group: bool = False) -> ChatInfo:
    return ChatInfo(
        id=chat_id,
        name=name,
        user=chat_id.split("@")[0],
        unread_count=unread,
        is_group=is_group,
    )


@pytest.fixture
def config(tmp_path) -> Config:
    return Config(
        sessions=SessionsConfig(data_dir=str(tmp_path / "sessions"), restore_wait_s=0.2),
        gateway=GatewayConfig(
            ready_poll_interval_s=0.01,
            ready_poll_attempts=5,
            avatar_timeout_s=0.05,
            last_message_timeout_s=0.05,
            media_timeout_s=0.05,
        ),
        send=SendConfig(settle_s=0),
    )


@pytest.fixture
def factory() -> FakeFactory:
    return FakeFactory()
