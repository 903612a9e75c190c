"""
会话注册表实现模块 - 按用户 ID 保存会话状态与客户端句柄。

本模块包含 SessionRegistry：一个纯内存的 {user_id: Session} 映射，
是整个系统唯一的共享可变状态。

【修改入口】
所有状态变化都经过 transition()（及其包装 set_status / set_pairing_artifact），
它负责：
1. 丢弃来自已被替换客户端的过期事件
2. 调用 Session.apply() 做合法性检查
3. 记录日志并通知监听者

【并发模型】
协调器和传输层回调都运行在同一个 asyncio 事件循环上，
所有方法都是同步的，中间没有挂起点，因此不需要加锁。

【生命周期】
注册表在进程启动时创建，注入到协调器和网关中；
进程退出时调用 close_all() 关闭所有客户端。
"""

import asyncio
from typing import Any, Callable

from loguru import logger

from chatlink.session.state import Session, SessionStatus
from chatlink.transport.base import ChatClient
from chatlink.transport.pairing import PairingArtifact

# 状态变化监听器：(user_id, 旧状态, 新状态)
StatusListener = Callable[[str, SessionStatus, SessionStatus], None]


class SessionRegistry:
    """
    会话注册表 - 管理所有用户会话的内存映射。

    属性:
        _sessions: 会话字典 {user_id: Session}
        _listeners: 状态变化监听器列表
    """

    def __init__(self):
        self._sessions: dict[str, Session] = {}
        self._listeners: list[StatusListener] = []

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, user_id: str) -> Session | None:
        """获取会话，不存在时返回 None。"""
        return self._sessions.get(user_id)

    def status(self, user_id: str) -> SessionStatus:
        """获取会话状态，不存在时为 not_initialized。"""
        session = self._sessions.get(user_id)
        return session.status if session else SessionStatus.NOT_INITIALIZED

    def get_client(self, user_id: str) -> ChatClient | None:
        """获取当前活跃的客户端句柄。"""
        session = self._sessions.get(user_id)
        return session.client if session else None

    def get_pairing_artifact(self, user_id: str) -> PairingArtifact | None:
        """获取配对产物，仅在 qr_ready 时非空。"""
        session = self._sessions.get(user_id)
        return session.pairing if session else None

    def attach(self, user_id: str, client: ChatClient, status: SessionStatus) -> Session:
        """
        为用户绑定一个新客户端，进入 initializing 或 restoring。

        已有会话时复用 Session 对象并替换句柄，旧句柄从此不可达，
        其后续事件会被 transition() 当作过期事件丢弃。

        返回:
            绑定后的会话
        """
        session = self._sessions.get(user_id)
        if session is None:
            session = Session(user_id=user_id)
            self._sessions[user_id] = session
        elif session.client is not None and session.client is not client:
            logger.warning(f"Replacing existing client for user {user_id}")

        old = session.status
        session.bind(client, status)
        logger.info(f"Session {user_id}: {old.value} -> {status.value}")
        self._notify(user_id, old, status)
        return session

    def transition(
        self,
        user_id: str,
        status: SessionStatus,
        *,
        client: ChatClient | None = None,
        artifact: PairingArtifact | None = None,
        reason: str | None = None,
    ) -> bool:
        """
        执行一次状态迁移（唯一的修改入口）。

        参数:
            user_id: 用户 ID
            status: 目标状态
            client: 事件来源客户端；提供时必须是当前句柄，否则视为过期事件
            artifact: 目标为 qr_ready 时的配对产物
            reason: 终止状态的原因

        返回:
            True 表示状态已改变
        """
        session = self._sessions.get(user_id)
        if session is None:
            logger.debug(f"Ignoring {status.value} for unknown session {user_id}")
            return False
        if client is not None and session.client is not client:
            logger.debug(f"Ignoring {status.value} from stale client of user {user_id}")
            return False

        old = session.status
        if not session.apply(status, artifact=artifact, reason=reason):
            logger.warning(f"Session {user_id}: invalid transition {old.value} -> {status.value}")
            return False

        if old != status:
            logger.info(f"Session {user_id}: {old.value} -> {status.value}")
            self._notify(user_id, old, status)
        return True

    def set_status(self, user_id: str, status: SessionStatus, **kwargs: Any) -> bool:
        """transition() 的别名。"""
        return self.transition(user_id, status, **kwargs)

    def set_pairing_artifact(
        self,
        user_id: str,
        artifact: PairingArtifact | None,
        *,
        client: ChatClient | None = None,
    ) -> bool:
        """
        设置配对产物（同时进入 qr_ready）。

        传入 None 时不做任何事：配对产物只会随着离开 qr_ready 被清除。
        """
        if artifact is None:
            return self.status(user_id) != SessionStatus.QR_READY
        return self.transition(user_id, SessionStatus.QR_READY, client=client, artifact=artifact)

    def remove(self, user_id: str) -> Session | None:
        """
        移除会话（状态重置，句柄清除）。

        返回:
            被移除的会话，不存在时返回 None
        """
        session = self._sessions.pop(user_id, None)
        if session is not None:
            old = session.status
            logger.info(f"Session {user_id}: {old.value} -> removed")
            self._notify(user_id, old, SessionStatus.NOT_INITIALIZED)
        return session

    def discard(self, user_id: str, client: ChatClient | None) -> Session | None:
        """
        仅当当前句柄是 client（或没有句柄）时移除会话。

        用于握手失败后的清理：失败的客户端若已被替换，不影响新会话。
        """
        session = self._sessions.get(user_id)
        if session is None:
            return None
        if session.client is not None and session.client is not client:
            return None
        return self.remove(user_id)

    def add_listener(self, listener: StatusListener) -> None:
        """注册状态变化监听器。"""
        self._listeners.append(listener)

    def _notify(self, user_id: str, old: SessionStatus, new: SessionStatus) -> None:
        for listener in self._listeners:
            try:
                listener(user_id, old, new)
            except Exception as e:
                logger.error(f"Error in status listener for {user_id}: {e}")

    def list_sessions(self) -> list[dict[str, Any]]:
        """列出所有会话的摘要，按最后更新时间倒序排列。"""
        sessions = sorted(self._sessions.values(), key=lambda s: s.updated_at, reverse=True)
        return [s.to_dict() for s in sessions]

    async def close_all(self) -> None:
        """
        关闭所有客户端并清空注册表（进程退出时调用）。

        只销毁连接，不注销凭据，下次启动可以通过恢复重新连上。
        """
        sessions = list(self._sessions.values())
        self._sessions.clear()
        clients = [s.client for s in sessions if s.client is not None]
        if not clients:
            return

        logger.info(f"Closing {len(clients)} client(s)...")
        results = await asyncio.gather(*(c.destroy() for c in clients), return_exceptions=True)
        for session, result in zip([s for s in sessions if s.client is not None], results):
            if isinstance(result, Exception):
                logger.error(f"Error closing client for user {session.user_id}: {result}")
