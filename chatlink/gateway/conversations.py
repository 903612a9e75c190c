"""
会话/消息网关 - 已连接会话上的只读检索与发送。

本模块包含 ConversationGateway，负责：
1. 就绪前置检查：没有句柄直接失败，句柄未就绪则有界轮询
2. list_conversations：逐个会话并发补全联系人、头像、最后一条消息和缩略图
3. count_conversations / get_messages / send_message

【降级策略】
会话列表允许部分结果：任一会话的子请求失败或超时，只降级该会话的字段；
消息历史和发送不允许部分结果，失败即整体失败。

【二开提示】
所有分项超时都来自 GatewayConfig，经由 utils.timeouts.race 统一执行。
"""

import asyncio

from loguru import logger

from chatlink.config.schema import GatewayConfig, SendConfig
from chatlink.errors import (
    ClientNotInitializedError,
    ConversationNotFoundError,
    NotReadyError,
    ValidationError,
)
from chatlink.gateway.formatting import (
    ConversationSummary,
    MessageView,
    degraded_summary,
    summarize_message,
    to_message_view,
)
from chatlink.gateway.verify import SendVerifier
from chatlink.session.registry import SessionRegistry
from chatlink.transport.base import ChatClient, ChatInfo, MessageInfo
from chatlink.utils.helpers import format_display_time
from chatlink.utils.timeouts import poll_until, race


class ConversationGateway:
    """
    会话/消息网关。

    属性:
        registry: 会话注册表（只读取句柄，不修改状态）
        config: 网关配置（就绪轮询与分项超时）
        verifier: 发送校验兜底
    """

    def __init__(
        self,
        registry: SessionRegistry,
        config: GatewayConfig,
        send_config: SendConfig,
    ):
        self.registry = registry
        self.config = config
        self.verifier = SendVerifier(send_config)

    async def _ready_client(self, user_id: str) -> ChatClient:
        """
        取得已就绪的客户端。

        句柄不存在时立即失败；存在但未就绪时按配置轮询，
        轮询期间句柄被替换也会被观察到（每次都从注册表重新取）。
        轮询期间句柄被移除（认证失败、断开）时立即结束，不再等满上限。

        异常:
            ClientNotInitializedError: 没有句柄，或轮询期间句柄被移除
            NotReadyError: 超过就绪等待上限
        """
        if self.registry.get_client(user_id) is None:
            raise ClientNotInitializedError(user_id)

        def ready_or_gone() -> bool:
            client = self.registry.get_client(user_id)
            return client is None or client.is_ready

        if not await poll_until(ready_or_gone, self.config.ready_poll_attempts, self.config.ready_poll_interval_s):
            raise NotReadyError(user_id, self.config.ready_ceiling_s)

        client = self.registry.get_client(user_id)
        if client is None:
            logger.warning(f"Client for user {user_id} was dropped while waiting for readiness")
            raise ClientNotInitializedError(user_id)
        return client

    # ------------------------------------------------------------------
    # 会话列表
    # ------------------------------------------------------------------

    async def list_conversations(self, user_id: str) -> list[ConversationSummary]:
        """
        列出用户的所有会话摘要。

        顺序为传输层原生顺序，没有最后消息时间的会话排到最后（稳定排序）；
        开启 sort_by_recency 时改为按最后消息时间倒序。
        """
        client = await self._ready_client(user_id)
        chats = await client.get_chats()
        logger.info(f"Found {len(chats)} chats for user {user_id}")
        if not chats:
            return []

        summaries = await asyncio.gather(*(self._summarize(client, chat) for chat in chats))

        if self.config.sort_by_recency:
            summaries.sort(key=lambda s: s.timestamp or 0, reverse=True)
        else:
            summaries.sort(key=lambda s: not s.timestamp)

        logger.debug(f"Formatted {len(summaries)} chats for user {user_id}")
        return summaries

    async def _summarize(self, client: ChatClient, chat: ChatInfo) -> ConversationSummary:
        """生成单个会话的摘要，任何失败都降级为最小摘要。"""
        try:
            return await self._build_summary(client, chat)
        except Exception as e:
            logger.warning(f"Error formatting chat {chat.id}: {e}")
            return degraded_summary(chat)

    async def _build_summary(self, client: ChatClient, chat: ChatInfo) -> ConversationSummary:
        name = chat.name or "Unknown"
        phone_number = chat.user
        avatar = None

        try:
            contact = await race(
                client.get_contact(chat.id),
                self.config.contact_timeout_s,
                label="contact fetch",
            )
            name = contact.pushname or contact.name or contact.number or chat.name or "Unknown"
            phone_number = contact.number or chat.user
            avatar = await self._avatar(client, contact.id)
        except Exception as e:
            logger.debug(f"Contact not available for chat {chat.id}: {e}")
            name = chat.name or chat.user or "Unknown"

        summary = ConversationSummary(
            id=chat.id,
            name=name,
            phone_number=phone_number,
            avatar=avatar,
            unread=chat.unread_count,
            is_group=chat.is_group,
            is_read_only=chat.is_read_only,
        )

        last = await self._last_message(client, chat.id)
        if last is not None:
            summary.last_message = summarize_message(last)
            summary.last_message_type = last.type
            summary.timestamp = last.timestamp or None
            summary.display_time = format_display_time(last.timestamp)
            if last.type == "image" and last.has_media:
                summary.last_message_image = await self._thumbnail(client, chat.id, last)
        return summary

    async def _avatar(self, client: ChatClient, contact_id: str) -> str | None:
        try:
            return await race(
                client.get_profile_pic_url(contact_id),
                self.config.avatar_timeout_s,
                label="profile pic fetch",
            )
        except Exception:
            return None

    async def _last_message(self, client: ChatClient, chat_id: str) -> MessageInfo | None:
        try:
            messages = await race(
                client.fetch_messages(chat_id, 1),
                self.config.last_message_timeout_s,
                label="last message fetch",
            )
        except Exception as e:
            logger.debug(f"Could not fetch last message for chat {chat_id}: {e}")
            return None
        return messages[-1] if messages else None

    async def _thumbnail(self, client: ChatClient, chat_id: str, message: MessageInfo) -> str | None:
        """下载图片并在小于上限时内联为 data URL。"""
        try:
            media = await race(
                client.download_media(chat_id, message.id),
                self.config.media_timeout_s,
                label="image download",
            )
        except Exception as e:
            logger.debug(f"Could not download image for chat {chat_id}: {e}")
            return None
        if media is None or not media.data:
            return None
        if media.size >= self.config.thumbnail_max_bytes:
            return None
        return f"data:{media.mimetype};base64,{media.data}"

    async def count_conversations(self, user_id: str) -> int:
        """会话总数（底层仍是一次完整的会话列表拉取）。"""
        client = await self._ready_client(user_id)
        chats = await client.get_chats()
        return len(chats)

    # ------------------------------------------------------------------
    # 消息
    # ------------------------------------------------------------------

    async def get_messages(self, user_id: str, conversation_id: str) -> list[MessageView]:
        """获取会话最近的消息（最多 message_history_limit 条），从旧到新。"""
        if not conversation_id:
            raise ValidationError("conversation_id is required")
        client = await self._ready_client(user_id)
        await self._require_chat(client, conversation_id)
        messages = await client.fetch_messages(conversation_id, self.config.message_history_limit)
        return [to_message_view(m) for m in messages]

    async def send_message(self, user_id: str, conversation_id: str, text: str) -> str:
        """
        发送文本消息。

        返回:
            传输层消息 ID；误报错误且无法确认时为临时 ID（见 verify.py）
        """
        if not conversation_id:
            raise ValidationError("conversation_id is required")
        if not text or not text.strip():
            raise ValidationError("message text is required")
        client = await self._ready_client(user_id)
        await self._require_chat(client, conversation_id)
        message_id = await self.verifier.send(client, conversation_id, text)
        logger.info(f"Message sent to {conversation_id} for user {user_id}: {message_id}")
        return message_id

    async def _require_chat(self, client: ChatClient, conversation_id: str) -> ChatInfo:
        chat = await client.get_chat(conversation_id)
        if chat is None:
            raise ConversationNotFoundError(conversation_id)
        return chat
