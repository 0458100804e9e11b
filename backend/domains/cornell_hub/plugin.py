"""
康奈尔笔记插件入口

把状态存储、互斥协调器、防抖调度器、同步服务和布局状态机组装在一起，
对宿主暴露命令和事件处理:
- load / on_layout_ready / unload: 生命周期
- on_document_modified: 自动同步（防抖）
- manual_sync / sync_all / generate_cue: 同步命令
- activate_mode / arrange_view / navigate_to_reference / highlight_reference: 布局命令
"""

from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError

from domains.core.exceptions import ValidationError
from domains.cornell_core.logging import get_logger
from domains.cornell_core.settings import SyncSettings, get_sync_settings
from domains.cornell_core.sync import DebounceScheduler, OperationCoordinator

from .core.config import PluginSettings
from .core.models import (
    BatchSyncStats,
    DocumentRole,
    LayoutResult,
    LayoutStatus,
    Mode,
    RebuildStats,
    SyncDirection,
    SyncResult,
    SyncStatus,
)
from .core.paths import basename, document_role, normalize_path
from .core.store import NoteInfoRegistry, PluginStateStore
from .hosts.base import CornellHost
from .services.layout_service import LayoutStateMachine
from .services.sync_service import FootnoteSyncService

logger = get_logger(__name__)


class CornellPlugin:
    """
    康奈尔笔记插件

    使用示例:
        plugin = CornellPlugin(host)
        await plugin.load()
        await plugin.on_layout_ready()
        await plugin.activate_mode(Mode.CAPTURE)
        ...
        await plugin.unload()
    """

    def __init__(self, host: CornellHost, sync_settings: Optional[SyncSettings] = None):
        """
        初始化插件

        Args:
            host: 宿主环境
            sync_settings: 运行时时间参数，默认从环境变量加载
        """
        self.host = host
        self.sync_settings = sync_settings or get_sync_settings()

        self.state = PluginStateStore(host)
        self.coordinator = OperationCoordinator(grace_seconds=self.sync_settings.release_grace_seconds)
        self.scheduler = DebounceScheduler()
        self.sync_service = FootnoteSyncService(host, self.state, self.coordinator, self.sync_settings)
        self.layout = LayoutStateMachine(
            host, self.state, self.coordinator, self.sync_service, self.sync_settings, self.scheduler
        )

    @property
    def settings(self) -> PluginSettings:
        return self.state.settings

    @property
    def registry(self) -> NoteInfoRegistry:
        return self.state.registry

    # ===== 生命周期 =====

    async def load(self) -> RebuildStats:
        """加载持久化状态并按当前文档重建注册表"""
        await self.state.load()
        stats = await self.rebuild_registry()
        logger.info("cornell_plugin_loaded", notes=len(self.registry), sync_on_save=self.settings.sync_on_save)
        return stats

    async def rebuild_registry(self) -> RebuildStats:
        documents = await self.host.list_documents()
        stats = self.registry.rebuild(documents)
        if stats.changed:
            await self.state.save()
        return stats

    async def on_layout_ready(self) -> Optional[LayoutResult]:
        """宿主布局就绪后恢复上次的模式"""
        return await self.layout.restore_last_layout()

    async def unload(self) -> None:
        """清除高亮，取消所有防抖任务，拆除布局并保存状态"""
        await self.layout.clear_active_highlight()
        await self.scheduler.cancel_all()
        await self.layout.teardown(detach=True)
        if not self.coordinator.busy:
            await self.state.save()
        logger.info("cornell_plugin_unloaded")

    # ===== 自动同步 =====

    def on_document_modified(self, doc_id: str) -> bool:
        """
        文档修改事件（需在 event loop 中调用）

        Source 触发 Source -> Cue，Cue 触发 Cue -> Source，Summary 忽略。
        同方向的连续修改在防抖窗口内只触发一次（前沿触发）。

        Returns:
            是否立即触发了同步
        """
        if not self.settings.sync_on_save:
            return False
        if self.coordinator.busy:
            logger.debug("auto_sync_ignored_busy", document_id=doc_id)
            return False

        doc_id = normalize_path(doc_id)
        role = document_role(doc_id)
        delay = self.sync_settings.debounce_seconds

        if role == DocumentRole.SOURCE:
            return self.scheduler.schedule(
                SyncDirection.SOURCE_TO_CUE.value,
                delay,
                lambda: self.sync_service.sync_source_to_cue(doc_id),
            )
        if role == DocumentRole.CUE:
            return self.scheduler.schedule(
                SyncDirection.CUE_TO_SOURCE.value,
                delay,
                lambda: self.sync_service.sync_cue_to_source(doc_id),
            )
        return False

    # ===== 命令 =====

    async def manual_sync(self, doc_id: Optional[str], direction: SyncDirection) -> SyncResult:
        """
        手动同步（不防抖，仍受互斥约束）

        Source -> Cue 只能从 Source 笔记发起，Cue -> Source 只能从 Cue 笔记发起。
        """
        direction = SyncDirection(direction)
        doc_id = doc_id or await self.host.active_document()
        if not doc_id:
            message = "请先打开一篇笔记"
            self.host.notify(message)
            return SyncResult(direction=direction, status=SyncStatus.SKIPPED, error=message)

        doc_id = normalize_path(doc_id)
        role = document_role(doc_id)
        expected = DocumentRole.SOURCE if direction == SyncDirection.SOURCE_TO_CUE else DocumentRole.CUE
        if role != expected:
            message = (
                "Source -> Cue 同步只能在 Source 笔记中执行"
                if direction == SyncDirection.SOURCE_TO_CUE
                else "Cue -> Source 同步只能在 Cue 笔记中执行"
            )
            self.host.notify(message)
            return SyncResult(direction=direction, status=SyncStatus.SKIPPED, source_id=doc_id, error=message)

        if direction == SyncDirection.SOURCE_TO_CUE:
            result = await self.sync_service.sync_source_to_cue(doc_id, user_initiated=True)
        else:
            result = await self.sync_service.sync_cue_to_source(doc_id, user_initiated=True)

        if result.ok:
            self.host.notify("同步完成" if result.changed else "内容已是最新")
        return result

    async def sync_all(self) -> BatchSyncStats:
        return await self.sync_service.sync_all_source_to_cue()

    async def generate_cue(self, source_id: str, start: int, end: int) -> Optional[str]:
        return await self.sync_service.generate_cue(source_id, start, end)

    async def activate_mode(self, mode: Mode, target: Optional[str] = None) -> LayoutResult:
        return await self.layout.activate_mode(Mode(mode), target)

    async def arrange_view(self, source_id: Optional[str] = None) -> LayoutResult:
        """
        排列康奈尔笔记视图（Cue + Source + Summary）

        只能从 Source 笔记发起；缺失的 Cue/Summary 会被创建。
        """
        source_id = source_id or await self.host.active_document()
        if not source_id or document_role(normalize_path(source_id)) != DocumentRole.SOURCE:
            message = "请在 Source 笔记中执行「排列康奈尔笔记视图」"
            self.host.notify(message)
            return LayoutResult(status=LayoutStatus.SKIPPED, mode=Mode.SHOW_ALL, error=message)

        source_id = normalize_path(source_id)
        result = await self.layout.activate_mode(Mode.SHOW_ALL, source_id)
        if result.ok:
            self.host.notify(f"已排列 {basename(source_id)} 的视图（Cue + Source + Summary）")
        return result

    async def navigate_to_reference(self, cue_id: str, ref: str) -> bool:
        """从 Cue 跳转到 Source 中的引用（聚焦 Source）"""
        if not self.settings.enable_navigation:
            return False
        return await self.layout.reveal_reference(cue_id, ref, focus=True)

    async def highlight_reference(self, cue_id: str, ref: str) -> bool:
        """在 Source 中高亮引用（不移动焦点）"""
        if not self.settings.enable_highlight:
            return False
        return await self.layout.reveal_reference(cue_id, ref, focus=False)

    async def handle_slot_focus(self, handle: str) -> None:
        await self.layout.handle_slot_focus(handle)

    async def update_settings(self, **changes: Any) -> PluginSettings:
        """
        修改并保存设置

        Args:
            **changes: 字段名（snake_case 或 camelCase）-> 新值

        Raises:
            ValidationError: 字段不存在或值不合法（设置保持不变）
        """
        aliases = {name: field.alias or name for name, field in PluginSettings.model_fields.items()}
        known = set(aliases.values())
        normalized: dict[str, Any] = {}
        for key, value in changes.items():
            alias = aliases.get(key, key)
            if alias not in known:
                raise ValidationError(f"未知设置项: {key}", field=key)
            normalized[alias] = value

        try:
            updated = PluginSettings.model_validate({**self.settings.to_persisted(), **normalized})
        except PydanticValidationError as e:
            raise ValidationError(
                "设置值不合法",
                errors=[{"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]} for err in e.errors()],
            ) from e

        self.state.settings = updated
        await self.state.save()
        logger.info("settings_updated", keys=sorted(changes))
        return updated
