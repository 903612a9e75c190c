"""
会话模块 - 每个用户一条聊天网络连接的生命周期管理。

- state.py：会话状态机（SessionStatus / Session）
- registry.py：会话注册表（唯一的共享可变状态）
- flight.py：同一用户并发请求的单飞合并
- coordinator.py：初始化 / 恢复 / 断开的编排

数据流：调用方 → SessionCoordinator → SessionRegistry（状态迁移）
        → ConversationGateway（从注册表取活跃句柄）→ 传输层
"""

from chatlink.session.coordinator import SessionCoordinator, SessionResult
from chatlink.session.registry import SessionRegistry
from chatlink.session.state import Session, SessionStatus

__all__ = ["SessionCoordinator", "SessionResult", "SessionRegistry", "Session", "SessionStatus"]
