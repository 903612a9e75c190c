"""
单飞（single-flight）合并 - 同一个键同一时刻只有一个进行中的操作。

同一用户的并发初始化/恢复请求会合并到同一个 asyncio.Task 上，
所有调用方观察到同一个结果（或同一个异常）。

保证：
- 条目在任务的 finally 中清除，成功、失败都只清除一次
- 任务未开始就被取消时，finally 不会执行，因此 cancel() 自己负责移除条目
- 等待方通过 asyncio.shield 等待，单个等待方被取消不会取消共享任务
"""

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

from chatlink.errors import OperationCancelledError

T = TypeVar("T")


class SingleFlight:
    """按键合并并发操作。"""

    def __init__(self):
        self._tasks: dict[str, asyncio.Task] = {}

    def pending(self, key: str) -> bool:
        """该键是否有进行中的操作。"""
        return key in self._tasks

    async def run(self, key: str, factory: Callable[[], Awaitable[T]]) -> T:
        """
        执行或加入该键的操作。

        参数:
            key: 合并键（用户 ID）
            factory: 无进行中操作时用于创建操作的协程工厂

        返回:
            共享操作的结果
        """
        task = self._tasks.get(key)
        if task is None:
            task = asyncio.create_task(self._execute(key, factory), name=f"flight:{key}")
            self._tasks[key] = task
        else:
            logger.debug(f"Joining in-flight operation for {key}")
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            # 共享任务被 cancel() 取消，而不是调用方自己被取消
            current = asyncio.current_task()
            if task.cancelled() and current is not None and not current.cancelling():
                raise OperationCancelledError(key) from None
            raise

    async def _execute(self, key: str, factory: Callable[[], Awaitable[Any]]) -> Any:
        try:
            return await factory()
        finally:
            # 只清除自己的条目：cancel() 之后同键可能已经有新任务
            if self._tasks.get(key) is asyncio.current_task():
                del self._tasks[key]

    def cancel(self, key: str) -> bool:
        """
        取消该键的进行中操作并立即移除条目。

        返回:
            True 表示确实取消了一个操作
        """
        task = self._tasks.pop(key, None)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    def cancel_all(self) -> None:
        """取消所有进行中的操作。"""
        for key in list(self._tasks):
            self.cancel(key)
