"""
传输层模块 - 聊天网络客户端的接口与实现。

- base.py：ChatClient 抽象基类与数据结构
- bridge.py：基于 Node.js 桥接服务的实现
- pairing.py：配对码（二维码）渲染
"""

from pathlib import Path

from chatlink.config.schema import BridgeConfig
from chatlink.transport.base import ChatClient, ClientEvent, ClientFactory, ClientInfo


def bridge_factory(config: BridgeConfig) -> ClientFactory:
    """
    创建绑定到桥接服务的客户端工厂。

    延迟导入 BridgeClient：只有真正创建客户端时才需要 websockets。
    """
    def _create(user_id: str, auth_dir: Path) -> ChatClient:
        from chatlink.transport.bridge import BridgeClient
        return BridgeClient(auth_dir, config, session_name=user_id)

    return _create


__all__ = ["ChatClient", "ClientEvent", "ClientFactory", "ClientInfo", "bridge_factory"]
