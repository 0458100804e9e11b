"""
Cornell Core - 与宿主无关的基础设施

提供:
- 结构化日志 (logging)
- 运行时配置 (settings)
- 互斥协调与防抖调度 (sync)

注意: 通用异常体系在 domains.core 模块中。
"""

from .settings import CornellSettings, get_settings, get_sync_settings, reload_settings
from .sync import DebounceScheduler, OperationCoordinator, OperationState, OperationToken

__all__ = [
    # 配置
    "CornellSettings",
    "get_settings",
    "get_sync_settings",
    "reload_settings",
    # 并发
    "OperationCoordinator",
    "OperationState",
    "OperationToken",
    "DebounceScheduler",
]
