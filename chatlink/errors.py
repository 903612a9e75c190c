"""
异常类型定义模块 - chatlink 的错误分类体系。

错误分为四类，调用方据此决定是否重试：
- ValidationError：输入缺失或格式错误，立即拒绝，不修改任何状态
- NotReadyError：会话尚未就绪（未到 connected），可稍后重试
- TransportError：底层传输错误（网络/认证），保留原始错误信息
- 误报类传输错误：由 gateway/verify.py 吞掉并转为尽力成功，不在此定义

协调器在边界处记录日志后重新抛出，由 service.py 统一转成结构化结果。
"""


class ChatlinkError(Exception):
    """chatlink 所有异常的基类。"""

    # 用于结构化结果中的 error 字段
    code: str = "error"
    # 调用方是否应在稍后重试
    retryable: bool = False


class ValidationError(ChatlinkError):
    """输入校验失败（如 user_id 为空、消息文本为空）。"""

    code = "validation_error"


class ClientNotInitializedError(ChatlinkError):
    """该用户没有活跃的客户端句柄。"""

    code = "not_initialized"

    def __init__(self, user_id: str):
        super().__init__(f"Client not initialized for user {user_id}")
        self.user_id = user_id


class NotReadyError(ChatlinkError):
    """客户端存在但在就绪等待上限内未能就绪。"""

    code = "not_ready"
    retryable = True

    def __init__(self, user_id: str, waited_s: float):
        super().__init__(
            f"Client not ready for user {user_id} after {waited_s:.1f}s. "
            f"Please wait a moment and try again."
        )
        self.user_id = user_id
        self.waited_s = waited_s


class ConversationNotFoundError(ChatlinkError):
    """指定的会话 ID 在传输层中不存在。"""

    code = "conversation_not_found"

    def __init__(self, conversation_id: str):
        super().__init__(f"Conversation {conversation_id} not found")
        self.conversation_id = conversation_id


class TransportError(ChatlinkError):
    """底层传输报告的错误，message 保留传输层原文。"""

    code = "transport_error"


class OperationTimeout(ChatlinkError):
    """被竞速的操作超过了时限（见 utils/timeouts.race）。"""

    code = "timeout"

    def __init__(self, label: str, timeout: float):
        super().__init__(f"{label} timed out after {timeout}s")
        self.label = label
        self.timeout = timeout


class OperationCancelledError(ChatlinkError):
    """合并中的握手操作被取消（通常是因为同时调用了 disconnect）。"""

    code = "cancelled"

    def __init__(self, user_id: str):
        super().__init__(f"Pending operation for user {user_id} was cancelled")
        self.user_id = user_id
