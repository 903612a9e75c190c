"""
发送校验兜底 - 处理"消息其实已发出，但发送调用抛错"的误报。

底层传输有一类已知的内部错误：消息已经发出，发送调用却抛出异常，
错误文本包含 "markedUnread" 或空字段访问（"Cannot read properties of undefined"）。

遇到这类错误时：
1. 静置 settle_s 秒，等消息落库
2. 回查会话最近 verify_limit 条消息
3. 先找 match_window_s 秒内自己发出、正文与发送文本相等或互相包含的消息，
   找不到再找 recent_window_s 秒内自己发出的任意消息
4. 找到则返回其 ID
5. 找不到时返回本地生成的临时 ID "temp_<毫秒时间戳>"（可能误报成功），
   或在 assume_sent_on_unverified=False 时抛出 TransportError

其他发送错误原样抛出。
"""

import time

from loguru import logger

from chatlink.config.schema import SendConfig
from chatlink.errors import TransportError
from chatlink.transport.base import ChatClient, MessageInfo
from chatlink.utils.helpers import now_ms
from chatlink.utils.timeouts import settle

# 误报错误的特征文本
BENIGN_MARKERS = (
    "markedUnread",
    "Cannot read properties of undefined",
)

TEMP_ID_PREFIX = "temp_"


def is_benign_send_error(error: BaseException) -> bool:
    """判断发送错误是否属于"消息可能已发出"的误报。"""
    message = str(error)
    return any(marker in message for marker in BENIGN_MARKERS)


def is_temp_id(message_id: str) -> bool:
    """是否为未经传输层确认的临时 ID。"""
    return message_id.startswith(TEMP_ID_PREFIX)


def _text_matches(body: str, text: str) -> bool:
    body, text = body.strip(), text.strip()
    if not body:
        return False
    return body == text or text in body or body in text


class SendVerifier:
    """
    带误报兜底的消息发送器。

    属性:
        config: 兜底的时间窗口配置
    """

    def __init__(self, config: SendConfig):
        self.config = config

    async def send(self, client: ChatClient, chat_id: str, text: str) -> str:
        """
        发送消息并返回消息 ID。

        参数:
            client: 已就绪的客户端
            chat_id: 会话 ID
            text: 消息文本

        返回:
            传输层消息 ID，或无法确认时的临时 ID

        异常:
            TransportError: 误报错误且无法确认，并且配置为不假定成功
            Exception: 非误报类的发送错误（原样抛出）
        """
        try:
            sent = await client.send_message(chat_id, text)
            return sent.id
        except Exception as e:
            if not is_benign_send_error(e):
                raise
            logger.warning(f"Benign send error for chat {chat_id}, verifying delivery: {e}")
            original = e

        message_id = await self._verify(client, chat_id, text)
        if message_id:
            return message_id

        if not self.config.assume_sent_on_unverified:
            raise TransportError(f"Message to {chat_id} could not be verified: {original}")

        temp_id = f"{TEMP_ID_PREFIX}{now_ms()}"
        logger.warning(
            f"Could not verify message to {chat_id}; assuming it was sent ({temp_id}). "
            f"This may be a false positive."
        )
        return temp_id

    async def _verify(self, client: ChatClient, chat_id: str, text: str) -> str | None:
        """回查最近消息，找到疑似本次发送的消息时返回其 ID。"""
        await settle(self.config.settle_s)
        try:
            recent = await client.fetch_messages(chat_id, self.config.verify_limit)
        except Exception as e:
            logger.error(f"Error verifying message send to {chat_id}: {e}")
            return None

        match = find_sent_message(
            recent,
            text,
            now=time.time(),
            match_window_s=self.config.match_window_s,
            recent_window_s=self.config.recent_window_s,
        )
        if match is not None:
            logger.info(f"Message to {chat_id} verified as sent ({match.id})")
            return match.id
        return None


def find_sent_message(
    messages: list[MessageInfo],
    text: str,
    *,
    now: float,
    match_window_s: float,
    recent_window_s: float,
) -> MessageInfo | None:
    """
    在最近消息中找出本次发送的消息，从新到旧扫描。

    文本匹配优先；没有文本匹配时取 recent_window_s 内最新的一条自己的消息。
    """
    own = [m for m in reversed(messages) if m.from_me]

    for m in own:
        if now - m.timestamp < match_window_s and _text_matches(m.body, text):
            return m
    for m in own:
        if now - m.timestamp < recent_window_s:
            return m
    return None
