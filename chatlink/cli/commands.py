"""
CLI 命令模块 - chatlink 的所有命令行命令定义。

本模块使用 Typer 框架定义 chatlink 的命令体系：
- onboard：初始化配置文件和会话目录
- status：查看配置与桥接服务状态
- login：为用户恢复会话，没有凭据时在终端显示二维码扫码登录
- chats / count / messages / send：已连接会话上的检索与发送
- logout：注销用户并清除凭据

技术栈：
- Typer：CLI 框架（基于 Click，支持类型注解自动生成帮助文档）
- Rich：终端美化输出（表格、颜色）

每条命令都在自己的事件循环里创建 SessionService，
结束时调用 shutdown() 关闭客户端（不注销，下次可以直接恢复）。
"""

import asyncio
import time
from typing import Any, Awaitable, Callable

import typer
from rich.console import Console
from rich.table import Table

from chatlink import __logo__, __version__

# 创建 Typer 应用实例（CLI 根命令）
app = typer.Typer(
    name="chatlink",
    help=f"{__logo__} chatlink - Per-user chat session manager",
    no_args_is_help=True,
)

console = Console()

LOGS_OPTION = typer.Option(False, "--logs/--no-logs", help="Show chatlink runtime logs")


def version_callback(value: bool):
    """版本号回调：当用户传入 --version/-v 参数时，打印版本号并退出。"""
    if value:
        console.print(f"{__logo__} chatlink v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """chatlink CLI 根命令回调。处理全局选项（如 --version）。"""
    pass


def _configure_logs(logs: bool) -> None:
    from loguru import logger

    if logs:
        logger.enable("chatlink")
    else:
        logger.disable("chatlink")


def _run(user_id: str, op: Callable[[Any], Awaitable[dict]], logs: bool, restore: bool = True) -> dict:
    """
    创建服务、（可选）恢复会话、执行操作并关闭服务。

    参数:
        user_id: 用户 ID
        op: 接收 SessionService 的协程函数
        logs: 是否显示运行时日志
        restore: 执行前是否先恢复会话

    返回:
        操作结果；恢复失败时直接返回恢复结果
    """
    from chatlink.service import SessionService

    _configure_logs(logs)

    async def run() -> dict:
        service = SessionService.from_config()
        try:
            if restore:
                restored = await service.restore_session(user_id)
                if not restored["success"]:
                    return restored
                if not restored.get("has_session", True):
                    return {
                        "success": False,
                        "message": f"No session for {user_id}. Run: chatlink login {user_id}",
                    }
            return await op(service)
        finally:
            await service.shutdown()

    return asyncio.run(run())


def _fail(result: dict) -> None:
    """打印失败结果并以非零状态退出。"""
    hint = " (retry later)" if result.get("retryable") else ""
    console.print(f"[red]Error: {result.get('message', 'unknown error')}{hint}[/red]")
    raise typer.Exit(1)


# ============================================================================
# Onboard / Status
# ============================================================================


@app.command()
def onboard():
    """
    初始化 chatlink 配置和会话目录。

    执行流程：
    1. 在 ~/.chatlink/ 下创建默认配置文件 config.json
    2. 创建会话根目录（每个用户一个子目录）
    3. 打印后续操作指引
    """
    from chatlink.config.loader import get_config_path, save_config
    from chatlink.config.schema import Config
    from chatlink.utils.helpers import get_sessions_path

    config_path = get_config_path()

    if config_path.exists():
        console.print(f"[yellow]Config already exists at {config_path}[/yellow]")
        if not typer.confirm("Overwrite?"):
            raise typer.Exit()

    config = Config()
    save_config(config)
    console.print(f"[green]✓[/green] Created config at {config_path}")

    sessions = get_sessions_path(config.sessions.data_dir)
    console.print(f"[green]✓[/green] Created sessions directory at {sessions}")

    console.print(f"\n{__logo__} chatlink is ready!")
    console.print("\nNext steps:")
    console.print(f"  1. Start the bridge service at [cyan]{config.bridge.url}[/cyan]")
    console.print("  2. Log in: [cyan]chatlink login <user>[/cyan]")


@app.command()
def status():
    """
    显示 chatlink 配置状态。

    展示内容：
    - 配置文件路径和状态
    - 会话根目录以及已有凭据的用户
    - 桥接服务地址
    """
    from chatlink.config.loader import get_config_path, load_config
    from chatlink.utils.helpers import AUTH_DIRNAME

    config_path = get_config_path()
    config = load_config()
    sessions = config.data_path

    console.print(f"{__logo__} chatlink Status\n")
    console.print(f"Config: {config_path} {'[green]✓[/green]' if config_path.exists() else '[red]✗[/red]'}")
    console.print(f"Sessions: {sessions} {'[green]✓[/green]' if sessions.exists() else '[red]✗[/red]'}")
    console.print(f"Bridge: {config.bridge.url}")
    console.print(f"Bridge token: {'[green]✓[/green]' if config.bridge.token else '[dim]not set[/dim]'}")

    if sessions.exists():
        users = sorted(
            p.name for p in sessions.iterdir()
            if (p / AUTH_DIRNAME).is_dir() and any((p / AUTH_DIRNAME).iterdir())
        )
        console.print(f"Users with saved credentials: {', '.join(users) if users else '[dim]none[/dim]'}")


# ============================================================================
# Session lifecycle
# ============================================================================


@app.command()
def login(
    user_id: str = typer.Argument(..., help="User ID"),
    timeout: float = typer.Option(120.0, "--timeout", "-t", help="Seconds to wait for the QR scan"),
    logs: bool = LOGS_OPTION,
):
    """
    为用户登录：有凭据时恢复会话，否则在终端显示二维码等待扫码。

    二维码刷新时会重新打印；连接成功、认证失败或超时后退出。
    """
    from chatlink.service import SessionService
    from chatlink.transport.pairing import qr_to_terminal

    _configure_logs(logs)

    async def run() -> dict:
        service = SessionService.from_config()
        try:
            restored = await service.restore_session(user_id)
            if not restored["success"]:
                return restored
            if restored["connected"]:
                return await service.get_status(user_id)

            # 没有凭据，或凭据已失效（恢复后落在终止状态）时改为扫码
            state = await service.get_status(user_id)
            if not restored.get("has_session", True) or state["status"] in ("auth_failure", "disconnected"):
                started = await service.initialize(user_id)
                if not started["success"]:
                    return started
                console.print(f"{__logo__} Scan the QR code to connect {user_id}.\n")

            shown = None
            deadline = time.monotonic() + timeout
            while time.monotonic() < deadline:
                state = await service.get_status(user_id)
                if state.get("connected"):
                    return state
                if state.get("status") in ("auth_failure", "disconnected", "not_initialized"):
                    return {"success": False, "message": f"Login failed: {state.get('status')}"}

                qr = await service.get_pairing_artifact(user_id)
                if qr.get("code") and qr["code"] != shown:
                    shown = qr["code"]
                    console.print(qr_to_terminal(shown))
                await asyncio.sleep(1)
            return {"success": False, "message": f"Timed out after {timeout:.0f}s", "retryable": True}
        finally:
            await service.shutdown()

    result = asyncio.run(run())
    if not result.get("success"):
        _fail(result)

    info = result.get("client_info") or {}
    name = info.get("display_name") or info.get("id") or user_id
    console.print(f"[green]✓[/green] Connected as {name}")


@app.command()
def logout(
    user_id: str = typer.Argument(..., help="User ID"),
    logs: bool = LOGS_OPTION,
):
    """注销用户（使凭据失效）并关闭连接。"""
    result = _run(user_id, lambda s: s.disconnect(user_id), logs)
    if not result["success"]:
        _fail(result)
    console.print(f"[green]✓[/green] Logged out {user_id}")


# ============================================================================
# Conversations / Messages
# ============================================================================


@app.command()
def chats(
    user_id: str = typer.Argument(..., help="User ID"),
    logs: bool = LOGS_OPTION,
):
    """以表格列出用户的会话。"""
    result = _run(user_id, lambda s: s.list_conversations(user_id), logs)
    if not result["success"]:
        _fail(result)

    table = Table(title=f"Chats for {user_id}")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Last message")
    table.add_column("Time", style="dim")
    table.add_column("Unread", justify="right", style="green")

    for c in result["conversations"]:
        table.add_row(
            c["id"],
            c["name"] + (" [dim](group)[/dim]" if c["is_group"] else ""),
            c["last_message"],
            c["display_time"],
            str(c["unread"]) if c["unread"] else "",
        )

    console.print(table)


@app.command()
def count(
    user_id: str = typer.Argument(..., help="User ID"),
    logs: bool = LOGS_OPTION,
):
    """显示用户的会话总数。"""
    result = _run(user_id, lambda s: s.count_conversations(user_id), logs)
    if not result["success"]:
        _fail(result)
    console.print(f"{user_id}: {result['count']} chats")


@app.command()
def messages(
    user_id: str = typer.Argument(..., help="User ID"),
    chat_id: str = typer.Argument(..., help="Chat ID"),
    logs: bool = LOGS_OPTION,
):
    """显示会话最近的消息。"""
    result = _run(user_id, lambda s: s.get_messages(user_id, chat_id), logs)
    if not result["success"]:
        _fail(result)

    if not result["messages"]:
        console.print("No messages.")
        return

    for m in result["messages"]:
        who = "[cyan]me[/cyan]" if m["sender"] == "me" else "[yellow]them[/yellow]"
        tail = f" [dim]({m['status']})[/dim]" if m["status"] else ""
        console.print(f"[dim]{m['display_time']}[/dim] {who}: {m['text']}{tail}")


@app.command()
def send(
    user_id: str = typer.Argument(..., help="User ID"),
    chat_id: str = typer.Argument(..., help="Chat ID"),
    text: str = typer.Argument(..., help="Message text"),
    logs: bool = LOGS_OPTION,
):
    """发送一条文本消息。"""
    from chatlink.gateway.verify import is_temp_id

    result = _run(user_id, lambda s: s.send_message(user_id, chat_id, text), logs)
    if not result["success"]:
        _fail(result)

    message_id = result["message_id"]
    if is_temp_id(message_id):
        console.print(f"[yellow]Sent, but delivery could not be verified ({message_id})[/yellow]")
    else:
        console.print(f"[green]✓[/green] Sent {message_id}")


if __name__ == "__main__":
    app()
