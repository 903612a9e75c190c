"""
桥接传输实现 - 基于 Node.js 桥接服务的聊天网络客户端。

本模块实现了 ChatClient 接口：
- 每个用户一条 WebSocket 连接，连接后发送 initialize 请求，
  由桥接服务用该用户的凭据目录启动一个聊天网络客户端
- 请求/响应：{"type": "request", "id": n, "method": ..., "params": {...}}
  → {"type": "response", "id": n, "result": ...} 或 {"type": "response", "id": n, "error": "..."}
- 生命周期事件：qr / authenticated / ready / auth_failure / disconnected

架构特点：
- 桥接模式：Python <-> WebSocket <-> Node.js Bridge <-> 聊天网络
- 后台读取任务负责分发响应和事件；连接断开时所有未完成请求立即失败
- 桥接服务返回的错误文本原样保留在 TransportError 中（发送校验依赖它）

依赖：
- websockets：Python WebSocket 客户端库
- 外部 Node.js 桥接服务：不随本项目提供，需独立部署运行；
  它必须实现的消息协议见 README 的 "Bridge protocol" 一节
"""

import asyncio
import json
from pathlib import Path
from typing import Any

from loguru import logger

from chatlink.config.schema import BridgeConfig
from chatlink.errors import TransportError
from chatlink.transport.base import (
    ChatClient,
    ChatInfo,
    ClientEvent,
    ClientInfo,
    ContactInfo,
    MediaPayload,
    MessageInfo,
)
from chatlink.utils.timeouts import race


class BridgeClient(ChatClient):
    """
    通过桥接服务通信的聊天网络客户端。

    消息协议（Python <-> Bridge）：
    - auth：发送认证令牌
    - request / response：方法调用
    - qr：握手阶段的配对字符串
    - authenticated / ready / auth_failure / disconnected：生命周期
    - error：桥接服务报告的错误
    """

    def __init__(self, auth_dir: Path, config: BridgeConfig, session_name: str):
        """
        参数:
            auth_dir: 该用户的凭据目录（桥接服务与本进程共享文件系统）
            config: 桥接服务配置
            session_name: 桥接侧的会话名（使用 user_id）
        """
        super().__init__(auth_dir)
        self.config = config
        self.session_name = session_name
        self._ws = None
        self._reader: asyncio.Task | None = None
        self._pending: dict[int, asyncio.Future] = {}
        self._next_id = 0
        self._info: ClientInfo | None = None
        self._closing = False

    @property
    def info(self) -> ClientInfo | None:
        return self._info

    async def connect(self) -> None:
        """
        连接桥接服务并启动握手。

        initialize 请求返回即表示桥接侧客户端已启动，
        扫码/恢复的结果随后通过事件送达。
        """
        import websockets

        logger.info(f"Connecting to bridge at {self.config.url} for session {self.session_name}...")
        try:
            self._ws = await websockets.connect(self.config.url)
        except OSError as e:
            raise TransportError(f"Bridge connection failed: {e}") from e

        if self.config.token:
            await self._ws.send(json.dumps({"type": "auth", "token": self.config.token}))

        self._reader = asyncio.create_task(self._read_loop())
        await self._request("initialize", {
            "session": self.session_name,
            "authDir": str(self.auth_dir),
        })

    async def _read_loop(self) -> None:
        """持续读取桥接服务消息，连接结束时让未完成请求失败。"""
        try:
            async for message in self._ws:
                try:
                    await self._handle_bridge_message(message)
                except Exception as e:
                    logger.error(f"Error handling bridge message: {e}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Bridge connection error for session {self.session_name}: {e}")
        finally:
            self._fail_pending(TransportError("Bridge connection closed"))

        # 非主动关闭时视为断线
        if not self._closing:
            self._info = None
            await self._emit(ClientEvent.DISCONNECTED, "bridge connection closed")

    def _fail_pending(self, error: Exception) -> None:
        for fut in self._pending.values():
            if not fut.done():
                fut.set_exception(error)
        self._pending.clear()

    async def _request(self, method: str, params: dict[str, Any] | None = None) -> Any:
        """
        发送一个请求并等待对应 id 的响应。

        异常:
            TransportError: 未连接、桥接侧报错或连接中断
            OperationTimeout: 超过 request_timeout_s 未收到响应
        """
        if self._ws is None:
            raise TransportError("Bridge not connected")

        self._next_id += 1
        request_id = self._next_id
        fut = asyncio.get_running_loop().create_future()
        self._pending[request_id] = fut
        try:
            await self._ws.send(json.dumps({
                "type": "request",
                "id": request_id,
                "method": method,
                "params": params or {},
            }))
            return await race(fut, self.config.request_timeout_s, label=f"bridge {method}")
        finally:
            self._pending.pop(request_id, None)

    async def _handle_bridge_message(self, raw: str) -> None:
        """
        处理从桥接服务收到的消息。

        根据消息类型（type 字段）分发处理：
        - response：完成对应 id 的请求
        - qr / authenticated / ready / auth_failure / disconnected：触发生命周期事件
        - error：桥接服务报告的错误

        参数:
            raw: 原始 JSON 字符串
        """
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Invalid JSON from bridge: {raw[:100]}")
            return

        msg_type = data.get("type")

        if msg_type == "response":
            fut = self._pending.get(data.get("id"))
            if fut is None or fut.done():
                return  # 已超时放弃的请求
            if data.get("error"):
                fut.set_exception(TransportError(str(data["error"])))
            else:
                fut.set_result(data.get("result"))

        elif msg_type == "qr":
            await self._emit(ClientEvent.QR, data.get("qr", ""))

        elif msg_type == "authenticated":
            await self._emit(ClientEvent.AUTHENTICATED)

        elif msg_type == "ready":
            info = data.get("info") or {}
            self._info = ClientInfo(
                id=str(info.get("wid", "")),
                display_name=info.get("pushname", ""),
                platform=info.get("platform", ""),
            )
            await self._emit(ClientEvent.READY)

        elif msg_type == "auth_failure":
            self._info = None
            await self._emit(ClientEvent.AUTH_FAILURE, data.get("message", ""))

        elif msg_type == "disconnected":
            self._info = None
            await self._emit(ClientEvent.DISCONNECTED, data.get("reason", ""))

        elif msg_type == "error":
            logger.error(f"Bridge error for session {self.session_name}: {data.get('error')}")

    # ------------------------------------------------------------------
    # 检索与发送
    # ------------------------------------------------------------------

    async def get_chats(self) -> list[ChatInfo]:
        result = await self._request("getChats")
        return [_chat_from(c) for c in result or []]

    async def get_chat(self, chat_id: str) -> ChatInfo | None:
        result = await self._request("getChatById", {"chatId": chat_id})
        return _chat_from(result) if result else None

    async def get_contact(self, chat_id: str) -> ContactInfo:
        result = await self._request("getContact", {"chatId": chat_id}) or {}
        return ContactInfo(
            id=str(result.get("id", chat_id)),
            number=result.get("number") or "",
            name=result.get("name") or "",
            pushname=result.get("pushname") or "",
        )

    async def get_profile_pic_url(self, contact_id: str) -> str | None:
        return await self._request("getProfilePicUrl", {"contactId": contact_id})

    async def fetch_messages(self, chat_id: str, limit: int) -> list[MessageInfo]:
        result = await self._request("fetchMessages", {"chatId": chat_id, "limit": limit})
        return [_message_from(m) for m in result or []]

    async def download_media(self, chat_id: str, message_id: str) -> MediaPayload | None:
        result = await self._request("downloadMedia", {"chatId": chat_id, "messageId": message_id})
        if not result or not result.get("data"):
            return None
        return MediaPayload(
            mimetype=result.get("mimetype", "application/octet-stream"),
            data=result["data"],
            filename=result.get("filename"),
        )

    async def send_message(self, chat_id: str, text: str) -> MessageInfo:
        result = await self._request("sendMessage", {"chatId": chat_id, "text": text})
        return _message_from(result or {})

    async def logout(self) -> None:
        await self._request("logout")
        self._info = None

    async def destroy(self) -> None:
        """
        关闭桥接侧客户端和 WebSocket 连接。

        桥接侧 destroy 失败只记录日志，本地连接总会被关闭。
        """
        self._closing = True
        self._info = None
        if self._ws is not None:
            try:
                await self._request("destroy")
            except Exception as e:
                logger.warning(f"Bridge destroy failed for session {self.session_name}: {e}")
            await self._ws.close()
            self._ws = None
        if self._reader:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
            self._reader = None


def _chat_from(data: dict[str, Any]) -> ChatInfo:
    return ChatInfo(
        id=str(data.get("id", "")),
        name=data.get("name") or "",
        user=data.get("user") or "",
        unread_count=data.get("unreadCount") or 0,
        is_group=bool(data.get("isGroup")),
        is_read_only=bool(data.get("isReadOnly")),
    )


def _message_from(data: dict[str, Any]) -> MessageInfo:
    return MessageInfo(
        id=str(data.get("id", "")),
        body=data.get("body") or "",
        type=data.get("type") or "chat",
        timestamp=int(data.get("timestamp") or 0),
        from_me=bool(data.get("fromMe")),
        ack=int(data.get("ack") or 0),
        has_media=bool(data.get("hasMedia")),
        caption=data.get("caption") or "",
    )
