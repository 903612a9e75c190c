"""
会话服务模块 - chatlink 对外的统一操作入口。

本模块是 chatlink 的"门面"，负责：
1. 在进程启动时创建注册表、协调器和网关，并把它们连接起来
2. 把每个操作的结果转换成结构化字典 {success, ..., message}
3. 在边界处对异常分类：ChatlinkError 按其 code/retryable 报告，
   其他异常作为传输错误报告（保留原始错误信息）

【数据流】
HTTP 路由 / CLI → SessionService → SessionCoordinator（握手/恢复/断开）
                                → ConversationGateway（列表/消息/发送）
                                → SessionRegistry（状态查询）

【二开提示】
client_factory 默认使用 bridge_factory(config.bridge)，
接入其他聊天网络时只需提供新的 ChatClient 实现和工厂函数。
"""

from pathlib import Path
from typing import Any, Awaitable, Callable

from loguru import logger

from chatlink.config.schema import Config
from chatlink.errors import ChatlinkError, TransportError
from chatlink.gateway.conversations import ConversationGateway
from chatlink.session.coordinator import SessionCoordinator, require_user_id
from chatlink.session.registry import SessionRegistry, StatusListener
from chatlink.session.state import SessionStatus
from chatlink.transport.base import ClientFactory


def failure(error: Exception, message: str | None = None) -> dict[str, Any]:
    """
    把异常转换成失败结果。

    返回:
        {success: False, message, error, retryable}
    """
    if isinstance(error, ChatlinkError):
        code, retryable = error.code, error.retryable
    else:
        code, retryable = TransportError.code, False
    return {
        "success": False,
        "message": message or str(error),
        "error": code,
        "retryable": retryable,
    }


class SessionService:
    """
    会话服务 - 所有用户会话操作的统一入口。

    属性:
        config: 全局配置
        registry: 会话注册表（进程内唯一）
        coordinator: 初始化/恢复/断开协调器
        gateway: 会话/消息网关
    """

    def __init__(self, config: Config | None = None, client_factory: ClientFactory | None = None):
        self.config = config or Config()
        if client_factory is None:
            # 延迟导入：只有使用默认传输时才需要 websockets
            from chatlink.transport import bridge_factory
            client_factory = bridge_factory(self.config.bridge)

        self.registry = SessionRegistry()
        self.coordinator = SessionCoordinator(self.registry, self.config.sessions, client_factory)
        self.gateway = ConversationGateway(self.registry, self.config.gateway, self.config.send)

    @classmethod
    def from_config(cls, config_path: str | None = None) -> "SessionService":
        """从配置文件创建服务（默认 ~/.chatlink/config.json）。"""
        from chatlink.config.loader import load_config
        return cls(load_config(Path(config_path) if config_path else None))

    def on_status_change(self, listener: StatusListener) -> None:
        """订阅会话状态变化（如同步到用户库中的连接状态）。"""
        self.registry.add_listener(listener)

    async def _guard(self, label: str, user_id: str, op: Callable[[], Awaitable[dict[str, Any]]]) -> dict[str, Any]:
        try:
            return await op()
        except ChatlinkError as e:
            logger.warning(f"{label} failed for user {user_id}: {e}")
            return failure(e)
        except Exception as e:
            logger.error(f"{label} error for user {user_id}: {e}")
            return failure(e)

    # ------------------------------------------------------------------
    # 会话生命周期
    # ------------------------------------------------------------------

    async def initialize(self, user_id: str) -> dict[str, Any]:
        """启动扫码握手。返回 {success, connected, pending, message}。"""
        async def op():
            result = await self.coordinator.initialize(user_id)
            return result.to_dict()
        return await self._guard("Initialize", user_id, op)

    async def restore_session(self, user_id: str) -> dict[str, Any]:
        """用已有凭据恢复会话。返回 {success, connected, has_session, pending, message}。"""
        async def op():
            result = await self.coordinator.restore(user_id)
            data = result.to_dict()
            data.setdefault("has_session", True)
            return data
        return await self._guard("Restore", user_id, op)

    async def check_session(self, user_id: str) -> dict[str, Any]:
        """
        检查会话：能恢复就恢复，否则提示需要扫码初始化。

        返回:
            restore_session 的结果，外加 needs_initialize 字段
        """
        result = await self.restore_session(user_id)
        if result["success"]:
            result["needs_initialize"] = not result["connected"] and not result.get("has_session", True)
            if result["needs_initialize"]:
                result["message"] = "No existing session found. Please initialize to scan a QR code."
        return result

    async def get_pairing_artifact(self, user_id: str) -> dict[str, Any]:
        """
        获取配对二维码。

        返回:
            {success, qr_code, code, status, message}；已连接或尚未生成时 qr_code 为 None
        """
        async def op():
            uid = require_user_id(user_id)
            status = self.registry.status(uid)
            artifact = self.registry.get_pairing_artifact(uid)
            if artifact is not None:
                message = "QR code ready"
            elif status == SessionStatus.CONNECTED:
                message = "Already connected"
            else:
                message = "QR code not available yet"
            return {
                "success": True,
                "qr_code": artifact.data_url if artifact else None,
                "code": artifact.code if artifact else None,
                "status": status.value,
                "message": message,
            }
        return await self._guard("Get QR code", user_id, op)

    async def get_status(self, user_id: str) -> dict[str, Any]:
        """返回 {success, status, connected, client_info}。"""
        async def op():
            uid = require_user_id(user_id)
            session = self.registry.get(uid)
            connected = session is not None and session.is_connected
            info = session.client.info if connected else None
            return {
                "success": True,
                "status": self.registry.status(uid).value,
                "connected": connected,
                "client_info": info.to_dict() if info else None,
            }
        return await self._guard("Get status", user_id, op)

    async def disconnect(self, user_id: str) -> dict[str, Any]:
        """注销并销毁客户端。返回 {success, message}。"""
        async def op():
            await self.coordinator.disconnect(user_id)
            return {"success": True, "message": "Disconnected successfully"}
        return await self._guard("Disconnect", user_id, op)

    def list_sessions(self) -> list[dict[str, Any]]:
        """所有会话的摘要（按最后更新时间倒序）。"""
        return self.registry.list_sessions()

    async def shutdown(self) -> None:
        """关闭所有客户端（不注销凭据）。"""
        logger.info("Shutting down session service...")
        await self.coordinator.shutdown()

    # ------------------------------------------------------------------
    # 会话与消息
    # ------------------------------------------------------------------

    async def list_conversations(self, user_id: str) -> dict[str, Any]:
        """返回 {success, conversations}。"""
        async def op():
            uid = require_user_id(user_id)
            summaries = await self.gateway.list_conversations(uid)
            return {"success": True, "conversations": [s.to_dict() for s in summaries]}
        return await self._guard("List conversations", user_id, op)

    async def count_conversations(self, user_id: str) -> dict[str, Any]:
        """返回 {success, count}。"""
        async def op():
            uid = require_user_id(user_id)
            return {"success": True, "count": await self.gateway.count_conversations(uid)}
        return await self._guard("Count conversations", user_id, op)

    async def get_messages(self, user_id: str, conversation_id: str) -> dict[str, Any]:
        """返回 {success, messages}。"""
        async def op():
            uid = require_user_id(user_id)
            messages = await self.gateway.get_messages(uid, conversation_id)
            return {"success": True, "messages": [m.to_dict() for m in messages]}
        return await self._guard("Get messages", user_id, op)

    async def send_message(self, user_id: str, conversation_id: str, text: str) -> dict[str, Any]:
        """返回 {success, message_id, message}。"""
        async def op():
            uid = require_user_id(user_id)
            message_id = await self.gateway.send_message(uid, conversation_id, text)
            return {"success": True, "message_id": message_id, "message": "Message sent"}
        return await self._guard("Send message", user_id, op)
