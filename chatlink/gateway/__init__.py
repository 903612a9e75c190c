"""会话/消息网关模块：会话列表、消息历史、带校验兜底的发送。"""

from chatlink.gateway.conversations import ConversationGateway
from chatlink.gateway.formatting import ConversationSummary, MessageView
from chatlink.gateway.verify import SendVerifier, is_benign_send_error

__all__ = [
    "ConversationGateway",
    "ConversationSummary",
    "MessageView",
    "SendVerifier",
    "is_benign_send_error",
]
