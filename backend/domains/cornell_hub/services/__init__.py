"""
Cornell Hub 服务层

- FootnoteSyncService: 脚注双向同步
- LayoutStateMachine: 模式布局状态机
"""

from .layout_service import LayoutStateMachine, find_section_line
from .sync_service import FootnoteSyncService

__all__ = [
    "FootnoteSyncService",
    "LayoutStateMachine",
    "find_section_line",
]
