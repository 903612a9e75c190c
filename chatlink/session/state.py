"""
会话状态机 - 单个用户会话的状态、句柄与合法迁移。

状态集合：
not_initialized → initializing → qr_ready → authenticated → connected
                  restoring   ─────────────→ authenticated → connected
任何非终止状态 → connected / auth_failure / disconnected

迁移规则：
- qr_ready 只能从 initializing 进入（已处于 qr_ready 时刷新配对码视为原地迁移）
- authenticated 只能从握手状态进入
- connected / auth_failure / disconnected 可从任意非终止状态进入
- initializing / restoring 只在绑定新客户端时出现（见 Session.bind）

不变式：
- 配对产物非空 当且仅当 status == qr_ready
- 进入 auth_failure / disconnected 时丢弃客户端句柄

Session.apply() 是唯一的状态修改入口，由 SessionRegistry 调用，
传输层回调永远不直接改字段。
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from chatlink.transport.base import ChatClient
from chatlink.transport.pairing import PairingArtifact
from chatlink.utils.timeouts import race


class SessionStatus(str, Enum):
    """会话状态枚举。值与对外接口中的状态字符串一致。"""

    NOT_INITIALIZED = "not_initialized"
    INITIALIZING = "initializing"
    QR_READY = "qr_ready"
    AUTHENTICATED = "authenticated"
    RESTORING = "restoring"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    AUTH_FAILURE = "auth_failure"


# 握手进行中的状态：此时不应再启动新的握手
HANDSHAKE_STATES = frozenset({
    SessionStatus.INITIALIZING,
    SessionStatus.RESTORING,
    SessionStatus.QR_READY,
})

# 连接建立中的状态：握手状态加上已认证但尚未 ready
CONNECTING_STATES = HANDSHAKE_STATES | {SessionStatus.AUTHENTICATED}

# 终止状态：进入后句柄被丢弃
TERMINAL_STATES = frozenset({
    SessionStatus.DISCONNECTED,
    SessionStatus.AUTH_FAILURE,
})

# 等待恢复结果时视为"已有结论"的状态
SETTLED_STATES = TERMINAL_STATES | {SessionStatus.CONNECTED}


def can_transition(src: SessionStatus, dst: SessionStatus) -> bool:
    """判断 src → dst 是否为合法迁移（不含绑定新客户端的情况）。"""
    if dst in SETTLED_STATES:
        return src not in TERMINAL_STATES
    if dst == SessionStatus.QR_READY:
        return src in (SessionStatus.INITIALIZING, SessionStatus.QR_READY)
    if dst == SessionStatus.AUTHENTICATED:
        return src in HANDSHAKE_STATES
    return False


@dataclass
class Session:
    """
    单个用户的会话。

    属性:
        user_id: 外部提供的稳定用户标识
        status: 当前状态
        client: 当前活跃的客户端句柄（会话独占）
        pairing: 配对产物，仅在 qr_ready 时非空
        last_error: 最近一次失败原因（auth_failure / disconnected 的参数）
    """

    user_id: str
    status: SessionStatus = SessionStatus.NOT_INITIALIZED
    client: ChatClient | None = None
    pairing: PairingArtifact | None = None
    last_error: str | None = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)
    _settled: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    @property
    def pairing_artifact(self) -> str | None:
        """配对二维码的 data URL。"""
        return self.pairing.data_url if self.pairing else None

    @property
    def is_connected(self) -> bool:
        return self.client is not None and self.client.is_ready

    def bind(self, client: ChatClient, status: SessionStatus) -> None:
        """
        绑定一个新的客户端句柄并进入握手状态。

        旧句柄（如有）从此不可达；是否销毁由调用方决定。
        """
        if status not in (SessionStatus.INITIALIZING, SessionStatus.RESTORING):
            raise ValueError(f"Cannot bind a client in status {status.value}")
        self.client = client
        self.status = status
        self.pairing = None
        self.last_error = None
        self._settled.clear()
        self.updated_at = datetime.now()

    def apply(
        self,
        status: SessionStatus,
        artifact: PairingArtifact | None = None,
        reason: str | None = None,
    ) -> bool:
        """
        执行一次状态迁移。

        参数:
            status: 目标状态
            artifact: 目标为 qr_ready 时必须提供的配对产物
            reason: 目标为终止状态时记录的原因

        返回:
            True 表示迁移成功，False 表示非法迁移（状态不变）
        """
        if not can_transition(self.status, status):
            return False
        if status == SessionStatus.QR_READY and artifact is None:
            return False

        self.status = status
        self.pairing = artifact if status == SessionStatus.QR_READY else None
        if status in TERMINAL_STATES:
            self.client = None
            self.last_error = reason
        if status in SETTLED_STATES:
            self._settled.set()
        self.updated_at = datetime.now()
        return True

    async def wait_settled(self, timeout: float) -> SessionStatus:
        """
        等待会话进入 connected / auth_failure / disconnected，最多 timeout 秒。

        返回:
            等待结束时的状态（超时则为当时的状态）
        """
        await race(self._settled.wait(), timeout, default=None, label="session settle")
        return self.status

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "status": self.status.value,
            "connected": self.is_connected,
            "has_pairing_artifact": self.pairing is not None,
            "last_error": self.last_error,
            "updated_at": self.updated_at.isoformat(),
        }
