"""
宿主实现

- CornellHost: 核心依赖的抽象接口
- MemoryHost: 内存宿主（测试）
- VaultHost: 本地目录宿主（命令行）
"""

from .base import CornellHost, DocumentHost, WorkspaceHost
from .memory import MemoryHost
from .vault import VaultHost
from .workspace import HeadlessSlot, HeadlessWorkspace

__all__ = [
    "CornellHost",
    "DocumentHost",
    "WorkspaceHost",
    "HeadlessSlot",
    "HeadlessWorkspace",
    "MemoryHost",
    "VaultHost",
]
