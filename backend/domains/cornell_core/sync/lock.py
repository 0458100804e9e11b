"""
操作互斥协调器

同步引擎和布局状态机共享同一个互斥令牌：
- 任一时刻只有一个操作（同步 或 布局切换）处于临界区
- 被占用时新请求直接丢弃，不排队
- 释放前保留一个短暂的宽限期，避免紧随其后的文件事件重入
"""

import asyncio
import logging
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Optional

from domains.core.exceptions import OperationInProgressError

logger = logging.getLogger(__name__)


class OperationState(str, Enum):
    """协调器状态"""
    IDLE = "idle"
    SYNCING = "syncing"
    SWITCHING_MODE = "switching_mode"


@dataclass(frozen=True)
class OperationToken:
    """互斥令牌，持有者凭此释放或执行嵌套操作"""
    state: OperationState
    serial: int
    label: str = ""


class OperationCoordinator:
    """
    互斥协调器

    用单一状态寄存器替代分散的布尔标志，状态迁移记录在
    transitions 中，便于测试直接断言。
    """

    def __init__(self, grace_seconds: float = 0.1, history_size: int = 100):
        """
        初始化协调器

        Args:
            grace_seconds: 释放令牌前的默认宽限期（秒）
            history_size: 保留的状态迁移记录条数
        """
        self.grace_seconds = grace_seconds
        self._state = OperationState.IDLE
        self._holder: Optional[OperationToken] = None
        self._serial = 0
        self.transitions: deque[tuple[OperationState, OperationState]] = deque(maxlen=history_size)

    @property
    def state(self) -> OperationState:
        return self._state

    @property
    def busy(self) -> bool:
        """令牌是否被占用"""
        return self._holder is not None

    def holds(self, token: Optional[OperationToken]) -> bool:
        """token 是否为当前持有者"""
        return token is not None and token is self._holder

    def _set_state(self, state: OperationState) -> None:
        if state != self._state:
            self.transitions.append((self._state, state))
        self._state = state

    def try_acquire(self, state: OperationState, label: str = "") -> Optional[OperationToken]:
        """
        尝试获取令牌（非阻塞）

        Args:
            state: 目标状态（SYNCING 或 SWITCHING_MODE）
            label: 操作描述，仅用于日志

        Returns:
            OperationToken（成功）或 None（已被占用）
        """
        if state == OperationState.IDLE:
            raise ValueError("Cannot acquire coordinator in IDLE state")

        if self._holder is not None:
            logger.info(
                f"operation_skipped: {state.value} ({label}) requested while {self._state.value}"
            )
            return None

        self._serial += 1
        token = OperationToken(state=state, serial=self._serial, label=label)
        self._holder = token
        self._set_state(state)
        logger.debug(f"operation_acquired: {state.value} #{token.serial} {label}")
        return token

    def release(self, token: OperationToken) -> bool:
        """
        释放令牌

        Returns:
            是否释放成功（非持有者释放时返回 False）
        """
        if token is not self._holder:
            logger.warning(f"release_by_non_holder: #{token.serial} {token.label}")
            return False

        self._holder = None
        self._set_state(OperationState.IDLE)
        logger.debug(f"operation_released: #{token.serial} {token.label}")
        return True

    async def release_after_grace(self, token: OperationToken, grace: Optional[float] = None) -> None:
        """等待宽限期后释放令牌，等待被取消时也会释放"""
        delay = self.grace_seconds if grace is None else grace
        try:
            if delay > 0:
                await asyncio.sleep(delay)
        finally:
            self.release(token)

    @asynccontextmanager
    async def exclusive(
        self,
        state: OperationState,
        *,
        token: Optional[OperationToken] = None,
        label: str = "",
        grace: Optional[float] = None,
    ) -> AsyncIterator[OperationToken]:
        """
        互斥上下文管理器

        传入当前持有者的 token 时作为嵌套操作执行，不重复获取也不释放。

        Args:
            state: 目标状态
            token: 外层操作持有的令牌（可选）
            label: 操作描述
            grace: 释放前宽限期，None 使用默认值

        Raises:
            OperationInProgressError: 令牌已被其他操作占用

        Example:
            async with coordinator.exclusive(OperationState.SYNCING, label=source_id) as token:
                # 执行同步
                pass
        """
        if self.holds(token):
            yield token
            return

        acquired = self.try_acquire(state, label)
        if acquired is None:
            raise OperationInProgressError(state.value, self._state.value)

        try:
            yield acquired
        finally:
            await self.release_after_grace(acquired, grace)
