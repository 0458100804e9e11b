"""
笔记关联注册表与插件状态存储

NoteInfoRegistry 是 NoteInfo 的唯一持有者：以 Source 路径为键的内存索引，
由 PluginStateStore 通过宿主提供的存储接口整体持久化。
"""

import copy
from typing import Any, Awaitable, Callable, Collection, Iterable, Iterator, Optional, Union

from domains.cornell_core.logging import get_logger

from .config import PluginSettings
from .models import DocumentRole, NoteInfo, RebuildStats
from .paths import (
    cue_path_for,
    document_role,
    is_source_note,
    normalize_path,
    source_path_for,
    summary_path_for,
)

logger = get_logger(__name__)

ExistsCheck = Union[Collection[str], Callable[[str], bool]]
AsyncExistsCheck = Callable[[str], Awaitable[bool]]


def _exists(existing: Optional[ExistsCheck], doc_id: str) -> bool:
    if existing is None:
        return True
    if callable(existing):
        return bool(existing(doc_id))
    return doc_id in existing


class NoteInfoRegistry:
    """
    笔记关联注册表

    Source 路径 -> NoteInfo。只在持有互斥令牌的同步引擎和布局状态机中修改。
    """

    def __init__(self, entries: Optional[dict[str, NoteInfo]] = None):
        self._entries: dict[str, NoteInfo] = dict(entries or {})

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, source_id: str) -> bool:
        return normalize_path(source_id) in self._entries

    def __iter__(self) -> Iterator[NoteInfo]:
        return iter(list(self._entries.values()))

    # ===== 基本访问 =====

    def get(self, source_id: str) -> Optional[NoteInfo]:
        return self._entries.get(normalize_path(source_id))

    def get_or_create(self, source_id: str, existing: Optional[ExistsCheck] = None) -> NoteInfo:
        """
        获取或按路径约定创建记录

        Args:
            source_id: Source 笔记路径
            existing: 已存在文档的集合或判断函数；给出时只记录真实存在的派生笔记，
                None 时直接记录约定路径

        Returns:
            已有或新插入的 NoteInfo（除插入该记录外无其他副作用）
        """
        source_id = normalize_path(source_id)
        info = self._entries.get(source_id)
        if info is not None:
            return info

        cue_id = cue_path_for(source_id)
        summary_id = summary_path_for(source_id)
        info = NoteInfo(
            source_id=source_id,
            cue_id=cue_id if _exists(existing, cue_id) else None,
            summary_id=summary_id if _exists(existing, summary_id) else None,
        )
        self._entries[source_id] = info
        logger.debug("note_info_created", source_id=source_id, cue_id=info.cue_id, summary_id=info.summary_id)
        return info

    def set(self, source_id: str, info: NoteInfo) -> None:
        source_id = normalize_path(source_id)
        if info.source_id != source_id:
            info = copy.copy(info)
            info.source_id = source_id
        self._entries[source_id] = info

    def remove(self, source_id: str) -> Optional[NoteInfo]:
        return self._entries.pop(normalize_path(source_id), None)

    def snapshot(self, source_id: str) -> Optional[NoteInfo]:
        """返回记录的副本，修改副本后通过 set() 提交"""
        info = self.get(source_id)
        return copy.copy(info) if info is not None else None

    # ===== 重建 =====

    def rebuild(self, all_document_ids: Iterable[str]) -> RebuildStats:
        """
        按当前文档集合重建注册表

        只为 Source 笔记建立记录；派生笔记是否存在以 all_document_ids 为准；
        Source 已不存在的记录会被清理，已有的同步时间戳保留。

        Args:
            all_document_ids: 当前所有文档路径

        Returns:
            RebuildStats {"added": N, "updated": M, "removed": K}
        """
        documents = {normalize_path(doc_id) for doc_id in all_document_ids}
        sources = {doc_id for doc_id in documents if is_source_note(doc_id)}
        stats = RebuildStats()

        for source_id in sorted(sources):
            cue_id = cue_path_for(source_id)
            summary_id = summary_path_for(source_id)
            expected_cue = cue_id if cue_id in documents else None
            expected_summary = summary_id if summary_id in documents else None

            info = self._entries.get(source_id)
            if info is None:
                self._entries[source_id] = NoteInfo(
                    source_id=source_id,
                    cue_id=expected_cue,
                    summary_id=expected_summary,
                )
                stats.added += 1
            elif info.cue_id != expected_cue or info.summary_id != expected_summary:
                info.cue_id = expected_cue
                info.summary_id = expected_summary
                stats.updated += 1

        for source_id in list(self._entries):
            if source_id not in sources:
                self.remove(source_id)
                stats.removed += 1

        logger.info("note_info_rebuilt", total=len(self._entries), **stats.to_dict())
        return stats

    # ===== Source 解析 =====

    def lookup_source(self, derived_id: str) -> Optional[str]:
        """直接查找：哪条记录的 cue_id/summary_id 指向 derived_id"""
        derived_id = normalize_path(derived_id)
        for info in self._entries.values():
            if info.cue_id == derived_id or info.summary_id == derived_id:
                return info.source_id
        return None

    async def resolve_source(self, doc_id: str, exists: AsyncExistsCheck) -> Optional[str]:
        """
        解析任意笔记对应的 Source 笔记

        1. Source 笔记本身：存在则直接返回
        2. 直接查找注册表
        3. 按命名约定推断（尽力而为，记录日志）

        只读：推断结果由调用方在操作成功后写回注册表。

        Args:
            doc_id: 任意笔记路径
            exists: 异步判断文档是否存在

        Returns:
            Source 路径，找不到时返回 None
        """
        doc_id = normalize_path(doc_id)
        role = document_role(doc_id)
        if role is None:
            return None

        if role == DocumentRole.SOURCE:
            return doc_id if await exists(doc_id) else None

        source_id = self.lookup_source(doc_id)
        if source_id is not None and await exists(source_id):
            return source_id

        inferred = source_path_for(doc_id)
        if inferred is None or not await exists(inferred):
            logger.info("source_not_resolved", document_id=doc_id, inferred=inferred)
            return None

        logger.info("source_inferred_from_path", document_id=doc_id, source_id=inferred)
        return inferred

    # ===== 序列化 =====

    def to_dict(self) -> dict[str, dict[str, Any]]:
        return {source_id: info.to_dict() for source_id, info in self._entries.items()}

    @classmethod
    def from_dict(cls, data: Any) -> "NoteInfoRegistry":
        """
        从持久化的 noteInfoMap 恢复，非法记录丢弃并记录警告
        """
        registry = cls()
        if not isinstance(data, dict):
            if data is not None:
                logger.warning("note_info_map_invalid", type=type(data).__name__)
            return registry

        for key, value in data.items():
            if not isinstance(value, dict):
                logger.warning("note_info_dropped", key=key, reason="not an object")
                continue
            try:
                info = NoteInfo.from_dict(value)
            except ValueError as e:
                logger.warning("note_info_dropped", key=key, reason=str(e))
                continue
            if normalize_path(key) != normalize_path(info.source_id):
                logger.warning("note_info_dropped", key=key, reason="key does not match sourceId")
                continue
            registry.set(info.source_id, info)
        return registry


class PluginStateStore:
    """
    插件状态存储

    负责整体读写持久化数据块 {settings, noteInfoMap}。
    """

    def __init__(self, host):
        """
        Args:
            host: 提供 load_data/save_data 的宿主
        """
        self.host = host
        self.settings = PluginSettings()
        self.registry = NoteInfoRegistry()

    async def load(self) -> None:
        data = await self.host.load_data()
        if data is not None and not isinstance(data, dict):
            logger.warning("persisted_data_invalid", type=type(data).__name__)
            data = None
        data = data or {}
        self.settings = PluginSettings.from_persisted(data.get("settings"))
        self.registry = NoteInfoRegistry.from_dict(data.get("noteInfoMap"))
        logger.info("plugin_state_loaded", note_count=len(self.registry))

    def to_dict(self) -> dict[str, Any]:
        return {
            "settings": self.settings.to_persisted(),
            "noteInfoMap": self.registry.to_dict(),
        }

    async def save(self) -> None:
        await self.host.save_data(self.to_dict())
        logger.debug("plugin_state_saved", note_count=len(self.registry))
