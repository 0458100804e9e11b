"""
并发协调模块

提供同步与布局切换共享的互斥令牌，以及自动同步的防抖调度。
"""

from .lock import OperationCoordinator, OperationState, OperationToken
from .trigger import DebounceScheduler

__all__ = [
    "OperationCoordinator",
    "OperationState",
    "OperationToken",
    "DebounceScheduler",
]
