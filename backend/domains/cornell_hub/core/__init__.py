"""
Cornell Hub 核心层

- models: 数据模型
- footnotes: 脚注解析
- reconciler: 内容协调
- paths: 派生笔记路径约定
- config: 插件设置
- store: 笔记关联注册表与状态存储
"""

from .config import PaneWidthRatio, PluginSettings
from .models import (
    BatchSyncStats,
    DocumentRole,
    FootnoteDefinition,
    FootnoteReference,
    LayoutResult,
    LayoutStatus,
    Mode,
    NoteInfo,
    ParsedFootnotes,
    Position,
    RebuildStats,
    SlotInfo,
    SlotInventory,
    SlotRecord,
    SyncDirection,
    SyncResult,
    SyncStatus,
    ViewBehavior,
    ViewSlotAssignment,
)
from .store import NoteInfoRegistry, PluginStateStore

__all__ = [
    # 设置
    "PluginSettings",
    "PaneWidthRatio",
    # 模型
    "DocumentRole",
    "Mode",
    "Position",
    "ViewBehavior",
    "FootnoteDefinition",
    "FootnoteReference",
    "ParsedFootnotes",
    "NoteInfo",
    "SlotInfo",
    "SlotRecord",
    "SlotInventory",
    "ViewSlotAssignment",
    "SyncDirection",
    "SyncStatus",
    "SyncResult",
    "BatchSyncStats",
    "RebuildStats",
    "LayoutStatus",
    "LayoutResult",
    # 存储
    "NoteInfoRegistry",
    "PluginStateStore",
]
