"""
展示格式化 - 把传输层的原始会话/消息转换为调用方使用的视图。

- ConversationSummary：会话列表中的一行
- MessageView：消息历史中的一条
- summarize_message：按消息类型生成摘要文本
- message_status：由回执序号推导发送状态
"""

from dataclasses import asdict, dataclass
from typing import Any

from chatlink.transport.base import ChatInfo, MessageInfo
from chatlink.utils.helpers import format_clock

# 媒体类型的占位文本
_PLACEHOLDERS = {
    "image": "📷 Image",
    "video": "🎥 Video",
    "audio": "🎵 Audio",
    "sticker": "🎨 Sticker",
}


@dataclass
class ConversationSummary:
    """会话摘要。timestamp 为最后一条消息的 Unix 时间戳，没有消息时为 None。"""

    id: str
    name: str
    phone_number: str = ""
    avatar: str | None = None
    last_message: str = ""
    last_message_type: str | None = None
    last_message_image: str | None = None
    timestamp: int | None = None
    display_time: str = ""
    unread: int = 0
    is_group: bool = False
    is_read_only: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class MessageView:
    """消息视图。status 只对自己发出的消息有值。"""

    id: str
    text: str
    timestamp: int
    display_time: str
    sender: str
    status: str | None
    type: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def summarize_message(message: MessageInfo) -> str:
    """
    生成最后一条消息的摘要文本。

    规则：
    - 图片 / 视频：有说明文字时用说明文字，否则用占位文本
    - 音频 / 贴纸：固定占位文本
    - 文档：占位图标加文件名（消息正文）
    - 其他：消息正文，正文为空时为 "[类型]"
    """
    kind = message.type
    if kind in ("image", "video"):
        return message.caption or _PLACEHOLDERS[kind]
    if kind in ("audio", "sticker"):
        return _PLACEHOLDERS[kind]
    if kind == "document":
        return f"📄 {message.body or 'Document'}"
    return message.body or f"[{kind}]"


def message_status(ack: int) -> str:
    """回执序号 → 发送状态：3 及以上为 read，2 为 delivered，其余为 sent。"""
    if ack >= 3:
        return "read"
    if ack == 2:
        return "delivered"
    return "sent"


def to_message_view(message: MessageInfo) -> MessageView:
    return MessageView(
        id=message.id,
        text=message.body or f"[{message.type}]",
        timestamp=message.timestamp,
        display_time=format_clock(message.timestamp),
        sender="me" if message.from_me else "them",
        status=message_status(message.ack) if message.from_me else None,
        type=message.type,
    )


def degraded_summary(chat: ChatInfo) -> ConversationSummary:
    """会话格式化失败时的最小摘要：只保留会话本身的字段，未读数置 0。"""
    return ConversationSummary(
        id=chat.id,
        name=chat.name or chat.user or "Unknown",
        phone_number=chat.user,
        is_group=chat.is_group,
        is_read_only=chat.is_read_only,
    )
