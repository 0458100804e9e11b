"""
康奈尔笔记数据模型定义

一组笔记由三篇文档组成：
- Source: 用户直接书写的主笔记
- Cue: 从 Source 镜像脚注定义的提示笔记
- Summary: 自由书写的总结笔记，只与 Source/Cue 互相链接，不参与同步

脚注 `[^ref]: body` / `[^ref]` 是同步的基本单位。
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional


class DocumentRole(str, Enum):
    """文档角色（由路径后缀推导，不持久化）"""
    SOURCE = "source"
    CUE = "cue"
    SUMMARY = "summary"


class Mode(str, Enum):
    """
    学习模式

    - capture: 记录 - Cue + Source
    - recall: 回忆 - Cue + Summary，隐藏 Source
    - review: 复习 - Source + Summary
    - show-all: 全部显示
    """
    CAPTURE = "capture"
    RECALL = "recall"
    REVIEW = "review"
    SHOW_ALL = "show-all"


class Position(str, Enum):
    """视图位置，按从左到右排列"""
    LEFT = "left"
    CENTER = "center"
    RIGHT = "right"


class ViewBehavior(str, Enum):
    """视图行为"""
    EDIT = "edit"
    PREVIEW = "preview"


POSITION_ORDER: tuple[Position, ...] = (Position.LEFT, Position.CENTER, Position.RIGHT)

REQUIRED_POSITIONS: dict[Mode, tuple[Position, ...]] = {
    Mode.CAPTURE: (Position.LEFT, Position.CENTER),
    Mode.RECALL: (Position.LEFT, Position.RIGHT),
    Mode.REVIEW: (Position.CENTER, Position.RIGHT),
    Mode.SHOW_ALL: (Position.LEFT, Position.CENTER, Position.RIGHT),
}

FOCUS_POSITION: dict[Mode, Position] = {
    Mode.CAPTURE: Position.CENTER,
    Mode.RECALL: Position.RIGHT,
    Mode.REVIEW: Position.RIGHT,
    Mode.SHOW_ALL: Position.CENTER,
}

NOMINAL_BEHAVIOR: dict[Mode, dict[Position, ViewBehavior]] = {
    Mode.CAPTURE: {Position.LEFT: ViewBehavior.PREVIEW, Position.CENTER: ViewBehavior.EDIT},
    Mode.RECALL: {Position.LEFT: ViewBehavior.PREVIEW, Position.RIGHT: ViewBehavior.EDIT},
    Mode.REVIEW: {Position.CENTER: ViewBehavior.EDIT, Position.RIGHT: ViewBehavior.EDIT},
    Mode.SHOW_ALL: {
        Position.LEFT: ViewBehavior.PREVIEW,
        Position.CENTER: ViewBehavior.EDIT,
        Position.RIGHT: ViewBehavior.EDIT,
    },
}

# 滚动定位用的章节标题（## CUE / ## MAIN / ## SUMMARY）
SECTION_HEADERS: dict[Position, str] = {
    Position.LEFT: "CUE",
    Position.CENTER: "MAIN",
    Position.RIGHT: "SUMMARY",
}

SHOW_ALL_WIDTHS: dict[Position, float] = {
    Position.LEFT: 33.0,
    Position.CENTER: 34.0,
    Position.RIGHT: 33.0,
}


# ===== 脚注 =====

@dataclass(frozen=True)
class FootnoteDefinition:
    """
    脚注定义 `[^ref]: body`

    Attributes:
        ref: 脚注标识（已去除首尾空白）
        body: 定义正文，多行时已去掉续行缩进
        span: 定义在原文中的 [start, end) 偏移
    """
    ref: str
    body: str
    span: tuple[int, int]


@dataclass(frozen=True)
class FootnoteReference:
    """正文中的脚注引用 `[^ref]`"""
    ref: str
    span: tuple[int, int]


@dataclass
class ParsedFootnotes:
    """一次解析的结果，只在单次同步内使用，不跨调用缓存"""
    definitions: list[FootnoteDefinition] = field(default_factory=list)
    references: list[FootnoteReference] = field(default_factory=list)

    def definition_map(self) -> dict[str, str]:
        """ref -> body，重复定义时后出现的覆盖先出现的"""
        result: dict[str, str] = {}
        for definition in self.definitions:
            result[definition.ref] = definition.body
        return result

    def referenced_refs(self) -> set[str]:
        """正文中至少被引用一次的 ref 集合"""
        return {reference.ref for reference in self.references}

    @property
    def reference_refs(self) -> list[str]:
        """按出现顺序排列的引用 ref 列表"""
        return [reference.ref for reference in self.references]


# ===== 笔记关联 =====

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    """ISO 字符串或毫秒时间戳转 datetime，无法解析时返回 None"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace('Z', '+00:00'))
        except ValueError:
            return None
    return None


def _format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()


@dataclass
class NoteInfo:
    """
    Source 笔记与其派生笔记的关联记录

    每个 Source 一条，首次访问时惰性创建；发现派生笔记路径或同步完成时更新；
    只在全量重建时清理 Source 已不存在的记录。

    Attributes:
        source_id: Source 笔记路径（主键）
        cue_id: Cue 笔记路径（不存在时为 None）
        summary_id: Summary 笔记路径（不存在时为 None）
        last_sync_source_to_cue: 最近一次 Source -> Cue 内容变更时间
        last_sync_cue_to_source: 最近一次 Cue -> Source 内容变更时间
    """
    source_id: str
    cue_id: Optional[str] = None
    summary_id: Optional[str] = None
    last_sync_source_to_cue: Optional[datetime] = None
    last_sync_cue_to_source: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        """转换为持久化字典（camelCase 键）"""
        return {
            'sourceId': self.source_id,
            'cueId': self.cue_id,
            'summaryId': self.summary_id,
            'lastSyncSourceToCue': _format_timestamp(self.last_sync_source_to_cue),
            'lastSyncCueToSource': _format_timestamp(self.last_sync_cue_to_source),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> 'NoteInfo':
        """
        从持久化字典创建实例

        Raises:
            ValueError: sourceId 缺失或字段类型不正确
        """
        source_id = data.get('sourceId')
        if not isinstance(source_id, str) or not source_id:
            raise ValueError("NoteInfo.sourceId must be a non-empty string")

        cue_id = data.get('cueId')
        summary_id = data.get('summaryId')
        for key, value in (('cueId', cue_id), ('summaryId', summary_id)):
            if value is not None and not isinstance(value, str):
                raise ValueError(f"NoteInfo.{key} must be a string or null")

        return cls(
            source_id=source_id,
            cue_id=cue_id or None,
            summary_id=summary_id or None,
            last_sync_source_to_cue=_parse_timestamp(data.get('lastSyncSourceToCue')),
            last_sync_cue_to_source=_parse_timestamp(data.get('lastSyncCueToSource')),
        )

    def touch_source_to_cue(self, now: Optional[datetime] = None) -> None:
        self.last_sync_source_to_cue = now or _utcnow()

    def touch_cue_to_source(self, now: Optional[datetime] = None) -> None:
        self.last_sync_cue_to_source = now or _utcnow()


# ===== 视图槽位 =====

@dataclass
class SlotInfo:
    """宿主报告的一个打开的视图槽位"""
    handle: str
    doc_id: Optional[str]
    behavior: ViewBehavior = ViewBehavior.EDIT


@dataclass
class ViewSlotAssignment:
    """
    当前布局中各位置对应的视图槽位

    同一个槽位在任意时刻最多占据一个位置，assign() 会把它从其他位置移除。
    仅由布局状态机修改。
    """
    left: Optional[str] = None
    center: Optional[str] = None
    right: Optional[str] = None

    def get(self, position: Position) -> Optional[str]:
        return getattr(self, position.value)

    def assign(self, position: Position, handle: Optional[str]) -> None:
        if handle is not None:
            for other in POSITION_ORDER:
                if other != position and self.get(other) == handle:
                    setattr(self, other.value, None)
        setattr(self, position.value, handle)

    def clear(self, position: Optional[Position] = None) -> None:
        if position is None:
            self.left = self.center = self.right = None
        else:
            setattr(self, position.value, None)

    def position_of(self, handle: str) -> Optional[Position]:
        for position in POSITION_ORDER:
            if self.get(position) == handle:
                return position
        return None

    def handles(self) -> list[str]:
        """按 Left/Center/Right 顺序返回已分配的槽位"""
        return [h for h in (self.get(p) for p in POSITION_ORDER) if h is not None]

    def items(self) -> list[tuple[Position, str]]:
        return [(p, self.get(p)) for p in POSITION_ORDER if self.get(p) is not None]

    @property
    def is_empty(self) -> bool:
        return not self.handles()


@dataclass
class SlotRecord:
    """槽位清单中的一条记录"""
    position: Optional[Position]
    doc_id: Optional[str]
    handle: str


class SlotInventory:
    """
    视图槽位清单

    把宿主中所有打开的槽位和当前布局分配合并成显式列表，
    通过谓词查询，便于在没有真实宿主时测试查找/占用逻辑。
    """

    def __init__(self, records: list[SlotRecord]):
        self.records = records

    @classmethod
    def build(cls, slots: list[SlotInfo], assignment: ViewSlotAssignment) -> 'SlotInventory':
        return cls([
            SlotRecord(
                position=assignment.position_of(slot.handle),
                doc_id=slot.doc_id,
                handle=slot.handle,
            )
            for slot in slots
        ])

    def find(self, predicate: Callable[[SlotRecord], bool]) -> Optional[SlotRecord]:
        for record in self.records:
            if predicate(record):
                return record
        return None

    def find_unclaimed_hosting(
        self,
        doc_id: str,
        position: Position,
        claimed: set[str],
    ) -> Optional[SlotRecord]:
        """找一个正在显示 doc_id、且未被其他位置占用的槽位"""
        return self.find(
            lambda r: r.doc_id == doc_id
            and r.handle not in claimed
            and (r.position is None or r.position == position)
        )


# ===== 操作结果 =====

class SyncDirection(str, Enum):
    """同步方向"""
    SOURCE_TO_CUE = "source_to_cue"
    CUE_TO_SOURCE = "cue_to_source"


class SyncStatus(str, Enum):
    """同步结果状态"""
    UPDATED = "updated"      # 目标文档内容已改写
    UNCHANGED = "unchanged"  # 目标文档已是最新
    SKIPPED = "skipped"      # 互斥占用或文档角色不符
    FAILED = "failed"        # 解析/读写失败


@dataclass
class SyncResult:
    """单次同步的结果"""
    direction: SyncDirection
    status: SyncStatus
    source_id: Optional[str] = None
    cue_id: Optional[str] = None
    changed: bool = False
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status in (SyncStatus.UPDATED, SyncStatus.UNCHANGED)


@dataclass
class BatchSyncStats:
    """批量同步统计"""
    total: int = 0
    processed: int = 0
    skipped: int = 0
    errors: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "processed": self.processed,
            "skipped": self.skipped,
            "errors": self.errors,
        }


@dataclass
class RebuildStats:
    """注册表重建统计"""
    added: int = 0
    updated: int = 0
    removed: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.added or self.updated or self.removed)

    def to_dict(self) -> dict[str, int]:
        return {"added": self.added, "updated": self.updated, "removed": self.removed}


class LayoutStatus(str, Enum):
    """布局切换结果状态"""
    ACTIVE = "active"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class LayoutResult:
    """一次 activate_mode 的结果"""
    status: LayoutStatus
    mode: Optional[Mode] = None
    source_id: Optional[str] = None
    slots: dict[Position, str] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == LayoutStatus.ACTIVE
