"""
配置数据模型定义 (config/schema.py)
=================================
本模块使用 Pydantic 定义 chatlink 的完整配置结构。
所有配置项都有默认值，用户只需在 config.json 中覆盖需要修改的部分。

整体配置结构（树形）：
Config (根配置)
├── sessions      - 会话目录与恢复等待
├── gateway       - 会话/消息网关的就绪轮询和分项超时
├── send          - 发送校验兜底的时间窗口
└── bridge        - 底层桥接服务的连接参数

时间单位统一为秒（浮点数），便于测试时调小。
"""

from pathlib import Path

from pydantic import BaseModel, Field, ConfigDict
from pydantic_settings import BaseSettings


class SessionsConfig(BaseModel):
    """会话协调器配置。"""
    data_dir: str = "~/.chatlink/sessions"  # 每个用户一个子目录，内含传输层凭据
    restore_wait_s: float = 2.0  # 恢复时等待 ready 事件的时长（也用于握手中的重查间隔）


class GatewayConfig(BaseModel):
    """
    会话/消息网关配置。

    就绪等待上限 = ready_poll_attempts * ready_poll_interval_s（默认 10 秒）。
    contact_timeout_s 为 None 表示联系人解析不限时，但仍包在异常降级里。
    """
    ready_poll_interval_s: float = 0.5  # 就绪轮询间隔
    ready_poll_attempts: int = 20  # 就绪轮询次数上限
    contact_timeout_s: float | None = None  # 联系人解析超时
    avatar_timeout_s: float = 3.0  # 头像获取超时
    last_message_timeout_s: float = 5.0  # 最后一条消息获取超时
    media_timeout_s: float = 3.0  # 图片缩略图下载超时
    thumbnail_max_bytes: int = 100 * 1024  # 内联缩略图的大小上限
    message_history_limit: int = 100  # 单次拉取历史消息条数
    sort_by_recency: bool = False  # 传输层不保证按最近排序时改为显式排序

    @property
    def ready_ceiling_s(self) -> float:
        """就绪等待的总上限（秒）。"""
        return self.ready_poll_attempts * self.ready_poll_interval_s


class SendConfig(BaseModel):
    """
    发送校验兜底配置。

    assume_sent_on_unverified 为 True 时，误报错误且回查无果也按成功处理
    （返回本地生成的临时 ID）；为 False 时改为抛出 TransportError。
    """
    settle_s: float = 2.0  # 误报错误后的静置时长
    verify_limit: int = 10  # 回查最近消息条数
    match_window_s: float = 15.0  # 文本匹配的时间窗口
    recent_window_s: float = 5.0  # 无文本匹配时"极近消息"的时间窗口
    assume_sent_on_unverified: bool = True


class BridgeConfig(BaseModel):
    """桥接服务配置。通过 WebSocket 连接到运行聊天网络客户端的 Bridge 服务。"""
    url: str = "ws://localhost:3001"  # Bridge 的 WebSocket 地址
    token: str = ""  # Bridge 认证令牌（可选但推荐设置）
    request_timeout_s: float = 60.0  # 单个请求等待响应的上限


class Config(BaseSettings):
    """
    chatlink 根配置类。

    继承自 Pydantic 的 BaseSettings，除了支持从 JSON 文件加载外，
    还支持从环境变量读取配置：
    - 环境变量前缀: CHATLINK_
    - 嵌套分隔符: __ (双下划线)
    - 示例: CHATLINK_BRIDGE__URL=ws://10.0.0.2:3001 可覆盖 bridge.url
    """
    sessions: SessionsConfig = Field(default_factory=SessionsConfig)
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    send: SendConfig = Field(default_factory=SendConfig)
    bridge: BridgeConfig = Field(default_factory=BridgeConfig)

    @property
    def data_path(self) -> Path:
        """获取展开后的会话根目录绝对路径（将 ~ 展开为用户主目录）。"""
        return Path(self.sessions.data_dir).expanduser()

    model_config = ConfigDict(
        env_prefix="CHATLINK_",
        env_nested_delimiter="__"
    )
