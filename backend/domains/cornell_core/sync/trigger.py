"""
防抖调度器

自动同步采用前沿触发的防抖：
- 窗口外的第一次调用立即执行
- 窗口内的后续调用被丢弃（不回放），并重新计时窗口
- 任务失败只记录日志，不影响调用方
- cancel(key) 同时取消该 key 仍在运行的任务（用于带延迟的清理任务）
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

TaskFactory = Callable[[], Awaitable[Any]]


class DebounceScheduler:
    """
    按 key 防抖的任务调度器

    每个 key 维护一个静默窗口计时器；同一 key 重新调度时，
    先取消旧计时器再挂上新的。cancel_all() 用于关闭时清理。
    """

    def __init__(self):
        self._windows: dict[str, asyncio.TimerHandle] = {}
        self._tasks: dict[str, set[asyncio.Task]] = {}

    def pending(self, key: str) -> bool:
        """key 是否处于静默窗口内"""
        return key in self._windows

    def schedule(self, key: str, delay: float, task_factory: TaskFactory) -> bool:
        """
        调度任务

        Args:
            key: 防抖键（如同步方向）
            delay: 静默窗口长度（秒）
            task_factory: 返回协程的工厂函数

        Returns:
            是否立即触发了任务（窗口内被抑制时返回 False）
        """
        loop = asyncio.get_running_loop()

        window = self._windows.pop(key, None)
        if window is not None:
            window.cancel()
            self._windows[key] = loop.call_later(delay, self._close_window, key)
            logger.debug(f"debounce_suppressed: {key}")
            return False

        self._windows[key] = loop.call_later(delay, self._close_window, key)
        task = asyncio.create_task(self._run(key, task_factory))
        self._tasks.setdefault(key, set()).add(task)
        task.add_done_callback(lambda t: self._tasks.get(key, set()).discard(t))
        logger.debug(f"debounce_fired: {key}")
        return True

    def _close_window(self, key: str) -> None:
        self._windows.pop(key, None)

    async def _run(self, key: str, task_factory: TaskFactory) -> Any:
        try:
            return await task_factory()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"debounced_task_failed: {key}, {e}")
            return None

    def cancel(self, key: str) -> None:
        """关闭 key 的静默窗口，并取消该 key 仍在运行的任务"""
        window = self._windows.pop(key, None)
        if window is not None:
            window.cancel()
        for task in self._tasks.pop(key, set()):
            if not task.done():
                task.cancel()

    async def cancel_all(self) -> None:
        """取消所有窗口计时器和仍在运行的任务"""
        for window in self._windows.values():
            window.cancel()
        self._windows.clear()

        tasks = [task for group in self._tasks.values() for task in group if not task.done()]
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass

        if tasks:
            logger.info(f"debounced_tasks_cancelled: {len(tasks)}")
