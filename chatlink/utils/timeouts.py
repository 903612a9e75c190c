"""
超时竞速工具 - 所有有界等待的统一实现。

就绪轮询、分项子请求超时、发送校验前的静置等待都经由本模块完成，
不在各调用点内联计时器逻辑：
- race：让一个可等待对象与计时器赛跑，超时后放弃该操作（结果丢弃），
  返回默认值或抛出 OperationTimeout
- poll_until：按固定间隔轮询一个条件，达到次数上限后返回 False
- settle：固定时长的静置等待

超时语义：asyncio.wait_for 会在超时时取消底层操作，
从调用方的角度看该操作已被放弃，其后续结果不会被观察到。
"""

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

from chatlink.errors import OperationTimeout

T = TypeVar("T")

# 哨兵值：区分"未提供默认值"和"默认值为 None"
_RAISE: Any = object()


async def race(
    aw: Awaitable[T],
    timeout: float | None,
    *,
    default: Any = _RAISE,
    label: str = "operation",
) -> T:
    """
    让 aw 与计时器竞速。

    参数:
        aw: 被等待的协程或 Future
        timeout: 时限（秒），None 表示不限时（仍然统一经过本函数）
        default: 超时时的返回值；未提供时抛出 OperationTimeout
        label: 用于错误信息的操作名称

    返回:
        aw 的结果，或超时时的 default

    异常:
        OperationTimeout: 超时且未提供 default
    """
    if timeout is None:
        return await aw
    try:
        return await asyncio.wait_for(aw, timeout=timeout)
    except asyncio.TimeoutError:
        if default is _RAISE:
            raise OperationTimeout(label, timeout) from None
        return default


async def poll_until(
    predicate: Callable[[], bool],
    attempts: int,
    interval: float,
) -> bool:
    """
    以固定间隔轮询条件，最多 attempts 次。

    条件一开始就成立时立即返回，不做任何等待。
    总等待上限为 attempts * interval。

    返回:
        条件在上限内成立返回 True，否则 False
    """
    if predicate():
        return True
    for _ in range(attempts):
        await asyncio.sleep(interval)
        if predicate():
            return True
    return False


async def settle(delay: float) -> None:
    """静置等待 delay 秒（delay <= 0 时只让出一次调度）。"""
    await asyncio.sleep(max(delay, 0))
