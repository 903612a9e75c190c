"""
会话协调器 - 初始化（扫码握手）与恢复（凭据重连）的统一编排。

本模块包含 SessionCoordinator，负责：
1. initialize：为用户创建新客户端并启动扫码握手，立即返回 pending
2. restore：检查磁盘上是否有凭据，有则重建客户端并有界等待 ready
3. disconnect：注销并销毁客户端，清除会话
4. 把传输层的五种生命周期事件映射到注册表的状态迁移

【并发防护】
同一用户的两个请求在前一个完成前到达，是需要防御的主要竞争。
两个流程共用一个 SingleFlight：进行中的握手会被后来者加入，
所有调用方得到相同的结果，且底层只创建一个客户端。

【二开提示】
client_factory 是唯一的传输层依赖点，测试时注入假客户端，
生产环境使用 transport.bridge_factory()。
"""

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from loguru import logger

from chatlink.config.schema import SessionsConfig
from chatlink.errors import ValidationError
from chatlink.session.flight import SingleFlight
from chatlink.session.registry import SessionRegistry
from chatlink.session.state import CONNECTING_STATES, SessionStatus
from chatlink.transport.base import ChatClient, ClientEvent, ClientFactory
from chatlink.transport.pairing import build_artifact
from chatlink.utils.helpers import ensure_dir, get_auth_dir, get_sessions_path


@dataclass
class SessionResult:
    """
    初始化 / 恢复的结果。

    属性:
        connected: 是否已连接
        pending: 握手是否仍在进行（调用方应轮询状态）
        has_session: 是否存在可恢复的凭据（仅恢复流程填写）
        message: 人类可读的说明
    """

    connected: bool
    pending: bool = False
    has_session: bool | None = None
    message: str = ""
    success: bool = True

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "connected": self.connected,
            "pending": self.pending,
            "message": self.message,
        }
        if self.has_session is not None:
            data["has_session"] = self.has_session
        return data


def require_user_id(user_id: str | None) -> str:
    """校验用户 ID，非法时抛出 ValidationError。"""
    if not user_id or not str(user_id).strip():
        raise ValidationError("user_id is required")
    return str(user_id).strip()


class SessionCoordinator:
    """
    会话协调器 - 管理每个用户的握手、恢复和断开。

    属性:
        registry: 会话注册表（注入，不持有全局状态）
        config: 会话配置
        sessions_root: 会话根目录，每个用户一个子目录
        _client_factory: 客户端工厂
        _flights: 单飞合并器，键为 user_id
        _background: 后台销毁任务（保留引用避免被回收）
    """

    def __init__(
        self,
        registry: SessionRegistry,
        config: SessionsConfig,
        client_factory: ClientFactory,
    ):
        self.registry = registry
        self.config = config
        self.sessions_root: Path = get_sessions_path(config.data_dir)
        self._client_factory = client_factory
        self._flights = SingleFlight()
        self._background: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------

    def is_connected(self, user_id: str) -> bool:
        """用户是否有一个已就绪的客户端。"""
        session = self.registry.get(user_id)
        return session is not None and session.is_connected

    def is_pending(self, user_id: str) -> bool:
        """用户是否有进行中的合并操作。"""
        return self._flights.pending(user_id)

    def has_credentials(self, user_id: str) -> bool:
        """
        检查磁盘上是否存在该用户的凭据。

        只检查凭据目录是否存在且非空，不解析任何内容（格式由传输层决定）。
        """
        auth_dir = get_auth_dir(self.sessions_root, user_id)
        try:
            return auth_dir.is_dir() and any(auth_dir.iterdir())
        except OSError as e:
            logger.error(f"Error checking credentials for user {user_id}: {e}")
            return False

    # ------------------------------------------------------------------
    # 初始化
    # ------------------------------------------------------------------

    async def initialize(self, user_id: str) -> SessionResult:
        """
        为用户启动扫码握手。

        流程：
        1. 已连接 → 直接返回 connected（幂等）
        2. 有进行中的合并操作 → 加入并返回其结果
        3. 处于握手中 → 返回 pending，不重复握手
        4. 否则创建客户端、注册事件回调、启动连接，立即返回 pending

        异常:
            ValidationError: user_id 为空
            Exception: 客户端创建或连接失败（会话已清除，所有合并调用方收到同一异常）
        """
        user_id = require_user_id(user_id)

        if self.is_connected(user_id):
            return SessionResult(connected=True, message="Already connected")

        if not self._flights.pending(user_id) and self.registry.status(user_id) in CONNECTING_STATES:
            return SessionResult(
                connected=False,
                pending=True,
                message="Client is already initializing",
            )

        return await self._flights.run(user_id, lambda: self._initialize(user_id))

    async def _initialize(self, user_id: str) -> SessionResult:
        logger.info(f"Initializing client for user {user_id}")
        await self._open_client(user_id, SessionStatus.INITIALIZING)
        return SessionResult(
            connected=False,
            pending=True,
            message="Client initialized. Waiting for QR code...",
        )

    # ------------------------------------------------------------------
    # 恢复
    # ------------------------------------------------------------------

    async def restore(self, user_id: str) -> SessionResult:
        """
        尝试用磁盘上的凭据恢复会话。

        流程：
        1. 已连接 → 返回 connected
        2. 有进行中的合并操作 → 加入并返回其结果
        3. 处于握手中 → 有界等待后重查，仍未连接则返回 pending
        4. 没有凭据 → 返回 has_session=False，不创建客户端（调用方应改为 initialize）
        5. 否则重建客户端并有界等待 ready
        """
        user_id = require_user_id(user_id)

        if self.is_connected(user_id):
            return SessionResult(connected=True, has_session=True, message="Already connected")

        if not self._flights.pending(user_id):
            session = self.registry.get(user_id)
            if session is not None and session.status in CONNECTING_STATES:
                await session.wait_settled(self.config.restore_wait_s)
                if session.is_connected:
                    return SessionResult(connected=True, has_session=True, message="Session restored")
                return SessionResult(
                    connected=False,
                    pending=True,
                    has_session=True,
                    message="Session is still connecting",
                )

            if not self.has_credentials(user_id):
                return SessionResult(
                    connected=False,
                    has_session=False,
                    message="No existing session found",
                )

        return await self._flights.run(user_id, lambda: self._restore(user_id))

    async def _restore(self, user_id: str) -> SessionResult:
        logger.info(f"Restoring session for user {user_id}")
        session = await self._open_client(user_id, SessionStatus.RESTORING)

        status = await session.wait_settled(self.config.restore_wait_s)
        if session.is_connected:
            return SessionResult(
                connected=True,
                has_session=True,
                message="Session restored successfully",
            )
        if status in (SessionStatus.AUTH_FAILURE, SessionStatus.DISCONNECTED):
            return SessionResult(
                connected=False,
                has_session=True,
                message=f"Session could not be restored: {status.value}",
            )
        return SessionResult(
            connected=False,
            pending=True,
            has_session=True,
            message="Session found but not connected yet",
        )

    # ------------------------------------------------------------------
    # 客户端创建与事件绑定
    # ------------------------------------------------------------------

    async def _open_client(self, user_id: str, status: SessionStatus):
        """
        创建客户端、绑定到注册表、注册回调并启动连接。

        任何一步失败都会清除会话并销毁已创建的客户端，然后重新抛出。
        """
        client: ChatClient | None = None
        try:
            auth_dir = ensure_dir(get_auth_dir(self.sessions_root, user_id))
            client = self._client_factory(user_id, auth_dir)
            session = self.registry.attach(user_id, client, status)
            self._wire(user_id, client)
            await client.connect()
            return session
        except Exception as e:
            logger.error(f"Error starting client for user {user_id}: {e}")
            self.registry.discard(user_id, client)
            if client is not None:
                await self._destroy_quietly(user_id, client)
            raise

    def _wire(self, user_id: str, client: ChatClient) -> None:
        """把客户端的生命周期事件映射为注册表的状态迁移。"""

        def on_qr(code: str) -> None:
            try:
                artifact = build_artifact(code)
            except Exception as e:
                logger.error(f"Error generating QR code for user {user_id}: {e}")
                return
            if self.registry.set_pairing_artifact(user_id, artifact, client=client):
                logger.info(f"QR code generated for user {user_id}")

        def on_authenticated() -> None:
            self.registry.transition(user_id, SessionStatus.AUTHENTICATED, client=client)

        def on_ready() -> None:
            self.registry.transition(user_id, SessionStatus.CONNECTED, client=client)

        def on_auth_failure(message: str = "") -> None:
            logger.error(f"Auth failure for user {user_id}: {message}")
            if self.registry.transition(
                user_id, SessionStatus.AUTH_FAILURE, client=client, reason=message or "auth_failure"
            ):
                self._destroy_in_background(user_id, client)

        def on_disconnected(reason: str = "") -> None:
            logger.info(f"Client disconnected for user {user_id}: {reason}")
            if self.registry.transition(
                user_id, SessionStatus.DISCONNECTED, client=client, reason=reason or "disconnected"
            ):
                self._destroy_in_background(user_id, client)

        client.on(ClientEvent.QR, on_qr)
        client.on(ClientEvent.AUTHENTICATED, on_authenticated)
        client.on(ClientEvent.READY, on_ready)
        client.on(ClientEvent.AUTH_FAILURE, on_auth_failure)
        client.on(ClientEvent.DISCONNECTED, on_disconnected)

    def _destroy_in_background(self, user_id: str, client: ChatClient) -> None:
        # 事件回调运行在客户端自己的读取任务里，不能在其中直接等待 destroy
        task = asyncio.create_task(self._destroy_quietly(user_id, client))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _destroy_quietly(self, user_id: str, client: ChatClient) -> None:
        try:
            await client.destroy()
        except Exception as e:
            logger.error(f"Error destroying client for user {user_id}: {e}")

    # ------------------------------------------------------------------
    # 断开与关闭
    # ------------------------------------------------------------------

    async def disconnect(self, user_id: str) -> None:
        """
        断开用户连接：取消进行中的握手，注销凭据并销毁客户端，清除会话。

        注销和销毁的失败只记录日志，会话无论如何都会被清除。
        """
        user_id = require_user_id(user_id)

        self._flights.cancel(user_id)
        session = self.registry.remove(user_id)
        client = session.client if session else None

        if client is not None:
            try:
                await client.logout()
            except Exception as e:
                logger.error(f"Error during logout for user {user_id}: {e}")
            await self._destroy_quietly(user_id, client)

        logger.info(f"Disconnected user {user_id}")

    async def shutdown(self) -> None:
        """取消所有进行中的操作并关闭所有客户端（不注销）。"""
        self._flights.cancel_all()
        await self.registry.close_all()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
