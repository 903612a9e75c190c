"""
chatlink - 多用户聊天网络会话管理器

模块概述：
    本文件是 chatlink 包的入口文件（__init__.py），定义了包的元信息。
    chatlink 为每个用户独立维护一条到外部聊天网络的连接，
    负责握手扫码、凭据恢复、会话状态跟踪，以及连接后的会话/消息读写。

    整个框架的核心功能包括：
    - 会话注册表（按用户 ID 跟踪状态机与客户端句柄）
    - 初始化 / 恢复协调器（同一用户同一时刻只有一个握手在进行）
    - 会话与消息网关（就绪等待 + 分项超时 + 降级）
    - 发送校验兜底（传输层误报错误时回查最近消息确认发送）
"""

# 版本号，遵循语义化版本规范（主版本.次版本.修订号）
__version__ = "0.1.0"

# 项目 logo 表情符号，用于 CLI 输出等场景的品牌标识
__logo__ = "🔗"
