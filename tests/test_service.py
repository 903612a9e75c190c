"""
Tests for the structured SessionService surface.
"""

import pytest

from chatlink.service import SessionService, failure
from chatlink.errors import NotReadyError, ValidationError
from chatlink.transport.base import ClientEvent, MessageInfo

from conftest import FakeFactory, chat, write_credentials


@pytest.fixture
def service(config, factory):
    return SessionService(config, client_factory=factory)


class TestFailureShape:
    def test_chatlink_errors_keep_code(self):
        assert failure(NotReadyError("u1", 10.0)) == {
            "success": False,
            "message": "Client not ready for user u1 after 10.0s. Please wait a moment and try again.",
            "error": "not_ready",
            "retryable": True,
        }
        assert failure(ValidationError("user_id is required"))["error"] == "validation_error"

    def test_unexpected_errors_are_transport_errors(self):
        result = failure(RuntimeError("socket hang up"))
        assert result["error"] == "transport_error"
        assert result["message"] == "socket hang up"
        assert result["retryable"] is False


class TestSessionService:
    @pytest.mark.asyncio
    async def test_first_login_scenario(self, service, factory):
        restored = await service.restore_session("u1")
        assert restored["success"]
        assert restored["connected"] is False
        assert restored["has_session"] is False

        started = await service.initialize("u1")
        assert started["success"] and started["pending"]

        qr = await service.get_pairing_artifact("u1")
        assert qr["qr_code"] is None
        assert qr["message"] == "QR code not available yet"

        await factory.last.fire(ClientEvent.QR, "2@pairing")
        qr = await service.get_pairing_artifact("u1")
        assert qr["status"] == "qr_ready"
        assert qr["qr_code"].startswith("data:image/png;base64,")
        assert qr["code"] == "2@pairing"

        await factory.last.fire(ClientEvent.READY)
        status = await service.get_status("u1")
        assert status == {
            "success": True,
            "status": "connected",
            "connected": True,
            "client_info": {"id": "u1@c.us", "display_name": "u1", "platform": "android"},
        }

        qr = await service.get_pairing_artifact("u1")
        assert qr["qr_code"] is None
        assert qr["message"] == "Already connected"

    @pytest.mark.asyncio
    async def test_status_of_unknown_user(self, service):
        assert await service.get_status("ghost") == {
            "success": True,
            "status": "not_initialized",
            "connected": False,
            "client_info": None,
        }

    @pytest.mark.asyncio
    async def test_validation_failure_is_structured(self, service, factory):
        result = await service.initialize("")
        assert result["success"] is False
        assert result["error"] == "validation_error"
        assert factory.created == []

    @pytest.mark.asyncio
    async def test_not_initialized_failure(self, service):
        result = await service.list_conversations("u1")
        assert result["success"] is False
        assert result["error"] == "not_initialized"
        assert result["retryable"] is False

    @pytest.mark.asyncio
    async def test_not_ready_failure_is_retryable(self, service):
        await service.initialize("u1")
        result = await service.count_conversations("u1")
        assert result["error"] == "not_ready"
        assert result["retryable"] is True

    @pytest.mark.asyncio
    async def test_connect_failure_is_reported(self, config):
        factory = FakeFactory(setup=lambda c: setattr(c, "connect_error", OSError("connection refused")))
        service = SessionService(config, client_factory=factory)

        result = await service.initialize("u1")

        assert result["success"] is False
        assert result["message"] == "connection refused"
        assert (await service.get_status("u1"))["status"] == "not_initialized"

    @pytest.mark.asyncio
    async def test_conversations_and_messages(self, config):
        write_credentials(config, "u1")

        def setup(client):
            client.connect_events.append((ClientEvent.READY,))
            client.chats = [chat("c1@c.us", "Carol", unread=1)]
            client.messages["c1@c.us"] = [MessageInfo(id="m1", body="hey", timestamp=1700000000)]

        service = SessionService(config, client_factory=FakeFactory(setup=setup))
        assert (await service.restore_session("u1"))["connected"]

        listed = await service.list_conversations("u1")
        assert listed["success"]
        assert [c["name"] for c in listed["conversations"]] == ["Carol"]

        assert await service.count_conversations("u1") == {"success": True, "count": 1}

        messages = await service.get_messages("u1", "c1@c.us")
        assert messages["messages"][0]["text"] == "hey"
        assert messages["messages"][0]["sender"] == "them"

        sent = await service.send_message("u1", "c1@c.us", "Hello")
        assert sent == {"success": True, "message_id": "abc123", "message": "Message sent"}

        missing = await service.get_messages("u1", "nope@c.us")
        assert missing["error"] == "conversation_not_found"

    @pytest.mark.asyncio
    async def test_check_session_without_credentials(self, service):
        result = await service.check_session("u1")
        assert result["success"]
        assert result["needs_initialize"] is True
        assert "initialize" in result["message"]

    @pytest.mark.asyncio
    async def test_disconnect(self, service, factory):
        await service.initialize("u1")
        await factory.last.fire(ClientEvent.READY)

        assert await service.disconnect("u1") == {"success": True, "message": "Disconnected successfully"}
        assert factory.last.logged_out
        assert (await service.get_status("u1"))["status"] == "not_initialized"

    @pytest.mark.asyncio
    async def test_status_listener(self, service, factory):
        changes = []
        service.on_status_change(lambda uid, old, new: changes.append(new.value))

        await service.initialize("u1")
        await factory.last.fire(ClientEvent.READY)

        assert changes == ["initializing", "connected"]
        assert service.list_sessions()[0]["status"] == "connected"

    @pytest.mark.asyncio
    async def test_shutdown(self, service, factory):
        await service.initialize("u1")
        await service.shutdown()
        assert factory.last.destroyed
        assert not factory.last.logged_out
        assert service.list_sessions() == []
