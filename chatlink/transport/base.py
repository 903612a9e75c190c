"""
传输层基类模块 - 定义聊天网络客户端的统一接口。

本模块提供了 ChatClient 抽象基类，会话协调器和消息网关只依赖这一接口，
具体的网络协议、加密和凭据存储都由实现类（如 bridge.BridgeClient）负责。

【核心抽象方法】
- connect(): 启动连接/握手流程（不等待扫码完成）
- get_chats() / get_chat() / get_contact(): 会话与联系人检索
- fetch_messages() / download_media(): 消息历史与媒体
- send_message(): 发送文本消息
- logout() / destroy(): 注销凭据 / 释放资源

【生命周期事件】
实现类通过 _emit() 触发以下五种事件，协调器用 on() 注册回调：
qr、authenticated、ready、auth_failure、disconnected

【就绪判断】
info 属性在 ready 事件之后才非空，消息网关以此作为"可服务"标志。
"""

import inspect
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable

from loguru import logger


class ClientEvent(str, Enum):
    """传输层生命周期事件名称。"""

    QR = "qr"                          # 配对码已下发（参数：原始配对字符串）
    AUTHENTICATED = "authenticated"    # 凭据校验通过
    READY = "ready"                    # 客户端可服务
    AUTH_FAILURE = "auth_failure"      # 认证失败（参数：失败原因）
    DISCONNECTED = "disconnected"      # 连接断开（参数：断开原因）


@dataclass
class ClientInfo:
    """已连接客户端的身份信息。"""

    id: str                       # 本机账号 ID
    display_name: str = ""        # 账号昵称
    platform: str = ""            # 设备平台

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "display_name": self.display_name, "platform": self.platform}


@dataclass
class ChatInfo:
    """传输层返回的原始会话。"""

    id: str                        # 会话 ID（序列化形式）
    name: str = ""                 # 会话名称
    user: str = ""                 # ID 中的用户部分（通常是手机号）
    unread_count: int = 0
    is_group: bool = False
    is_read_only: bool = False


@dataclass
class ContactInfo:
    """传输层返回的联系人。"""

    id: str
    number: str = ""
    name: str = ""                 # 通讯录中保存的名称
    pushname: str = ""             # 对方自己设置的昵称


@dataclass
class MessageInfo:
    """传输层返回的原始消息。"""

    id: str
    body: str = ""
    type: str = "chat"             # chat / image / video / audio / document / sticker ...
    timestamp: int = 0             # Unix 时间戳（秒）
    from_me: bool = False
    ack: int = 0                   # 回执序号：1 已发送，2 已送达，3 已读
    has_media: bool = False
    caption: str = ""


@dataclass
class MediaPayload:
    """下载得到的媒体内容。data 为 base64 编码字符串。"""

    mimetype: str
    data: str
    filename: str | None = None

    @property
    def size(self) -> int:
        """解码后的字节数（根据 base64 长度推算，不实际解码），用于缩略图大小判断。"""
        padding = self.data.count("=", max(len(self.data) - 2, 0))
        return len(self.data) * 3 // 4 - padding


# 事件回调：同步函数或协程函数均可
EventHandler = Callable[..., Any]


class ChatClient(ABC):
    """
    聊天网络客户端抽象基类 - 每个用户独占一个实例。

    实例由协调器通过工厂函数创建，绑定到该用户的凭据目录。
    实例本身不知道"用户"的概念，只负责一条连接。

    属性:
        auth_dir: 凭据目录（由实现类读写，格式不作约定）
        _handlers: 事件回调表 {事件名: [回调函数列表]}
    """

    def __init__(self, auth_dir: Path):
        self.auth_dir = auth_dir
        self._handlers: dict[str, list[EventHandler]] = {}

    def on(self, event: ClientEvent | str, handler: EventHandler) -> None:
        """注册生命周期事件回调。同一事件可以注册多个回调。"""
        key = event.value if isinstance(event, ClientEvent) else event
        self._handlers.setdefault(key, []).append(handler)

    async def _emit(self, event: ClientEvent | str, *args: Any) -> None:
        """
        触发事件，依次调用已注册的回调。

        单个回调抛出的异常只记录日志，不影响其他回调和连接本身。
        """
        key = event.value if isinstance(event, ClientEvent) else event
        for handler in list(self._handlers.get(key, [])):
            try:
                result = handler(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Error in {key} handler: {e}")

    @property
    @abstractmethod
    def info(self) -> ClientInfo | None:
        """已就绪时返回身份信息，否则返回 None。"""

    @property
    def is_ready(self) -> bool:
        """客户端是否可服务。"""
        return self.info is not None

    @abstractmethod
    async def connect(self) -> None:
        """启动连接与握手。握手结果通过事件异步通知。"""

    @abstractmethod
    async def get_chats(self) -> list[ChatInfo]:
        """获取全部会话，顺序为传输层原生顺序。"""

    @abstractmethod
    async def get_chat(self, chat_id: str) -> ChatInfo | None:
        """按 ID 获取会话，不存在时返回 None。"""

    @abstractmethod
    async def get_contact(self, chat_id: str) -> ContactInfo:
        """解析会话对应的联系人。"""

    @abstractmethod
    async def get_profile_pic_url(self, contact_id: str) -> str | None:
        """获取联系人头像 URL，没有头像时返回 None。"""

    @abstractmethod
    async def fetch_messages(self, chat_id: str, limit: int) -> list[MessageInfo]:
        """获取会话最近的 limit 条消息，按时间从旧到新排列。"""

    @abstractmethod
    async def download_media(self, chat_id: str, message_id: str) -> MediaPayload | None:
        """下载消息携带的媒体。"""

    @abstractmethod
    async def send_message(self, chat_id: str, text: str) -> MessageInfo:
        """发送文本消息，返回传输层生成的消息。"""

    @abstractmethod
    async def logout(self) -> None:
        """注销当前账号（使凭据失效）。"""

    @abstractmethod
    async def destroy(self) -> None:
        """关闭连接并释放资源（不注销凭据）。"""


# 工厂函数签名：(user_id, auth_dir) -> ChatClient
ClientFactory = Callable[[str, Path], ChatClient]
