"""
模式布局状态机

状态: Idle（无布局）/ Active(mode, source)。
activate_mode() 根据学习模式决定需要的位置（Left=Cue, Center=Source, Right=Summary），
复用或新建视图槽位，排成一行后设置只读/编辑、宽度、焦点和滚动位置。

布局切换与同步共用同一个互斥令牌；切换过程中触发的 Source -> Cue 同步
作为嵌套操作在同一个令牌下执行。
"""

import asyncio
import re
from typing import Optional

from domains.core.exceptions import (
    ApplicationError,
    DocumentCreateError,
    LayoutError,
    OperationInProgressError,
)
from domains.cornell_core.logging import bind_operation_context, get_logger
from domains.cornell_core.settings import SyncSettings, get_sync_settings
from domains.cornell_core.sync import DebounceScheduler, OperationCoordinator, OperationState, OperationToken

from ..core.config import PluginSettings
from ..core.footnotes import find_first_reference
from ..core.models import (
    FOCUS_POSITION,
    NOMINAL_BEHAVIOR,
    POSITION_ORDER,
    REQUIRED_POSITIONS,
    SECTION_HEADERS,
    SHOW_ALL_WIDTHS,
    LayoutResult,
    LayoutStatus,
    Mode,
    NoteInfo,
    Position,
    SlotInventory,
    ViewBehavior,
    ViewSlotAssignment,
)
from ..core.paths import (
    basename,
    cue_path_for,
    is_source_note,
    normalize_path,
    summary_path_for,
)
from ..core.reconciler import build_cue_content, build_summary_content
from ..core.store import NoteInfoRegistry, PluginStateStore
from ..hosts.base import CornellHost
from .sync_service import FootnoteSyncService

logger = get_logger(__name__)

HIGHLIGHT_KEY = "highlight"


def find_section_line(content: str, section: str) -> Optional[int]:
    """
    查找 `## <section>` 标题所在行（大小写不敏感）

    Returns:
        0 起始行号，没有该标题时返回 None
    """
    pattern = re.compile(r'^##\s*' + re.escape(section) + r'\b.*', re.IGNORECASE)
    for index, line in enumerate(content.split('\n')):
        if pattern.match(line.strip()):
            return index
    return None


class LayoutStateMachine:
    """
    模式布局状态机

    ViewSlotAssignment 只由本类修改。

    使用示例:
        layout = LayoutStateMachine(host, state, coordinator, sync_service)
        result = await layout.activate_mode(Mode.CAPTURE, "notes/lecture.md")
    """

    def __init__(
        self,
        host: CornellHost,
        state: PluginStateStore,
        coordinator: OperationCoordinator,
        sync_service: FootnoteSyncService,
        sync_settings: Optional[SyncSettings] = None,
        scheduler: Optional[DebounceScheduler] = None,
    ):
        self.host = host
        self.state = state
        self.coordinator = coordinator
        self.sync_service = sync_service
        self.sync_settings = sync_settings or get_sync_settings()
        self.scheduler = scheduler or DebounceScheduler()

        self.assignment = ViewSlotAssignment()
        self.active_source_id: Optional[str] = None
        self.active_mode: Optional[Mode] = None
        self._highlighted: Optional[str] = None

    @property
    def settings(self) -> PluginSettings:
        return self.state.settings

    @property
    def registry(self) -> NoteInfoRegistry:
        return self.state.registry

    @property
    def is_active(self) -> bool:
        return self.active_mode is not None

    # ===== 模式切换 =====

    async def activate_mode(
        self,
        mode: Mode,
        target_source: Optional[str] = None,
        *,
        is_restore: bool = False,
    ) -> LayoutResult:
        """
        切换到指定学习模式

        Args:
            mode: 目标模式
            target_source: 目标笔记（Source 或其派生笔记），None 使用当前焦点笔记
            is_restore: 是否为启动恢复（不记录上次布局）

        Returns:
            LayoutResult
        """
        mode = Mode(mode)
        try:
            async with self.coordinator.exclusive(
                OperationState.SWITCHING_MODE,
                label=f"activate_mode:{mode.value}",
                grace=0,
            ) as token:
                return await self._activate(mode, target_source, is_restore, token)
        except OperationInProgressError as e:
            logger.info("mode_switch_skipped_busy", mode=mode.value, current=e.current)
            if not is_restore:
                self.host.notify(e.message)
            return LayoutResult(status=LayoutStatus.SKIPPED, mode=mode, error=e.message)

    async def _activate(
        self,
        mode: Mode,
        target_source: Optional[str],
        is_restore: bool,
        token: OperationToken,
    ) -> LayoutResult:
        source_id: Optional[str] = None
        with bind_operation_context("activate_mode", target_source):
            try:
                source_id = await self._resolve_target(target_source)
                if source_id is None:
                    message = "无法确定 Source 笔记，请先打开一篇笔记"
                    logger.warning("mode_switch_no_source", mode=mode.value, target=target_source)
                    self.host.notify(message)
                    return LayoutResult(status=LayoutStatus.FAILED, mode=mode, error=message)

                positions = REQUIRED_POSITIONS[mode]

                if self.active_source_id is not None and self.active_source_id != source_id:
                    await self.teardown(detach=True)
                else:
                    await self._detach_unneeded(positions)

                documents = await self._ensure_documents(source_id, positions)

                if not is_restore:
                    if mode == Mode.SHOW_ALL:
                        self.settings.clear_last_state()
                    else:
                        self.settings.last_mode = mode
                        self.settings.last_source_id = source_id
                await self.state.save()

                await self.sync_service.sync_source_to_cue(source_id, token=token)

                self.active_source_id = source_id
                self.active_mode = mode

                await self._obtain_slots(positions, documents)
                await self._arrange(positions, documents)
                await self._apply_behaviors(mode)
                await self._apply_widths(mode)
                await self._apply_focus(mode)
                await self._apply_scroll(documents)

                logger.info(
                    "mode_activated",
                    mode=mode.value,
                    source_id=source_id,
                    restore=is_restore,
                    slots={p.value: h for p, h in self.assignment.items()},
                )
                return LayoutResult(
                    status=LayoutStatus.ACTIVE,
                    mode=mode,
                    source_id=source_id,
                    slots=dict(self.assignment.items()),
                )
            except Exception as e:
                message = await self._abort(mode, e)
                return LayoutResult(status=LayoutStatus.FAILED, mode=mode, source_id=source_id, error=message)

    async def _resolve_target(self, target_source: Optional[str]) -> Optional[str]:
        doc_id = target_source or await self.host.active_document()
        if not doc_id:
            return None
        return await self.registry.resolve_source(normalize_path(doc_id), self.host.document_exists)

    async def _detach_unneeded(self, positions: tuple[Position, ...]) -> None:
        for position in POSITION_ORDER:
            handle = self.assignment.get(position)
            if handle is not None and position not in positions:
                self.assignment.clear(position)
                await self.host.detach_slot(handle)

    async def _ensure_documents(self, source_id: str, positions: tuple[Position, ...]) -> dict[Position, str]:
        """确保 Cue（以及需要时的 Summary）存在，并更新注册表"""
        title = basename(source_id)
        info = self.registry.snapshot(source_id) or NoteInfo(source_id=source_id)

        cue_id = await self._create_if_missing(
            cue_path_for(source_id),
            build_cue_content(None, title, {}, self.settings.link_to_source_template),
        )
        info.cue_id = cue_id
        documents = {Position.LEFT: cue_id, Position.CENTER: source_id}

        if Position.RIGHT in positions:
            summary_id = await self._create_if_missing(
                summary_path_for(source_id),
                build_summary_content(title, basename(cue_id), self.settings),
            )
            info.summary_id = summary_id
            documents[Position.RIGHT] = summary_id

        self.registry.set(source_id, info)
        return documents

    async def _create_if_missing(self, path: str, initial_text: str) -> str:
        try:
            return await self.host.create_document_if_missing(path, initial_text)
        except ApplicationError:
            raise
        except Exception as e:
            raise DocumentCreateError(path, cause=e) from e

    # ===== 槽位 =====

    async def _obtain_slots(self, positions: tuple[Position, ...], documents: dict[Position, str]) -> None:
        """
        为每个位置取得槽位

        优先级: 已跟踪且显示正确文档的槽位 > 清单中显示正确文档且未被占用的槽位 > 新建槽位
        """
        inventory = SlotInventory.build(await self.host.list_slots(), self.assignment)
        claimed: set[str] = set()

        for position in positions:
            doc_id = documents[position]
            tracked = self.assignment.get(position)
            record = inventory.find(
                lambda r: r.handle == tracked and r.doc_id == doc_id and r.handle not in claimed
            ) if tracked else None
            if record is None:
                record = inventory.find_unclaimed_hosting(doc_id, position, claimed)

            if record is not None:
                handle = record.handle
            else:
                try:
                    handle = await self.host.allocate_view_slot(position, doc_id)
                except Exception as e:
                    raise LayoutError("allocate", f"无法为 {position.value} 创建视图", cause=e) from e

            if await self.host.slot_document(handle) != doc_id:
                await self.host.open_document(handle, doc_id)

            self.assignment.assign(position, handle)
            claimed.add(handle)
            logger.debug("slot_obtained", position=position.value, handle=handle, document_id=doc_id)

    async def _arrange(self, positions: tuple[Position, ...], documents: dict[Position, str]) -> None:
        """
        把槽位排成 Left/Center/Right 一行

        已经按顺序相邻时直接确认排列；否则以第一个槽位为锚点依次向右分屏，
        每次分屏后确认新槽位显示的是目标文档再继续。
        """
        handles = [self.assignment.get(p) for p in positions]
        order = [slot.handle for slot in await self.host.list_slots()]

        if handles[0] in order:
            start = order.index(handles[0])
            if order[start:start + len(handles)] == handles:
                await self.host.arrange_slots(handles)
                return

        previous = handles[0]
        for position in positions[1:]:
            doc_id = documents[position]
            old = self.assignment.get(position)
            self.assignment.clear(position)
            if old is not None and old != previous:
                await self.host.detach_slot(old)

            try:
                new = await self.host.split_slot(previous, doc_id)
            except Exception as e:
                raise LayoutError("split", f"无法为 {position.value} 分屏", cause=e) from e

            if await self.host.slot_document(new) != doc_id:
                await self.host.open_document(new, doc_id)
                if await self.host.slot_document(new) != doc_id:
                    raise LayoutError(
                        "split",
                        f"新分屏未显示目标文档 {doc_id}",
                        details={"step": "split", "position": position.value, "handle": new},
                    )

            self.assignment.assign(position, new)
            previous = new

        await self.host.arrange_slots(self.assignment.handles())

    async def _apply_behaviors(self, mode: Mode) -> None:
        nominal = NOMINAL_BEHAVIOR[mode]
        for position, handle in self.assignment.items():
            behavior = nominal.get(position, ViewBehavior.EDIT)
            if position == Position.LEFT and self.settings.enforce_cue_preview:
                behavior = ViewBehavior.PREVIEW
            await self.host.set_slot_mode(handle, behavior)

    async def _apply_widths(self, mode: Mode) -> None:
        present = self.assignment.items()
        if not present:
            return

        if mode == Mode.SHOW_ALL:
            for position, handle in present:
                width = SHOW_ALL_WIDTHS[position]
                await self.host.set_slot_width(handle, width, width)
            return

        ratios = {position: self.settings.pane_width_ratio.for_position(position) for position, _ in present}
        total = sum(ratios.values())
        for position, handle in present:
            if total > 0:
                await self.host.set_slot_width(handle, ratios[position] / total * 100, ratios[position])
            else:
                await self.host.set_slot_width(handle, 100 / len(present), 1)

    async def _apply_focus(self, mode: Mode) -> None:
        handle = self.assignment.get(FOCUS_POSITION[mode]) or self.assignment.get(Position.CENTER)
        if handle is None:
            handles = self.assignment.handles()
            handle = handles[0] if handles else None
        if handle is not None:
            await self.host.focus_slot(handle)

    async def _apply_scroll(self, documents: dict[Position, str]) -> None:
        for position, handle in self.assignment.items():
            content = await self.host.read_document(documents[position])
            line = find_section_line(content, SECTION_HEADERS[position])
            await self.host.scroll_slot_to_line(handle, line if line is not None else 0)

    async def _abort(self, mode: Mode, error: Exception) -> str:
        """布局失败：完全拆除、清除恢复记录并提示用户"""
        if isinstance(error, ApplicationError):
            message = error.message
            logger.error("mode_switch_failed", mode=mode.value, **error.to_dict())
        else:
            message = str(error) or type(error).__name__
            logger.error("mode_switch_failed", mode=mode.value, error=message, exc_info=True)

        await self.teardown(detach=True)
        self.settings.clear_last_state()
        try:
            await self.state.save()
        except Exception as e:
            logger.warning("clear_last_state_failed", error=str(e))

        notice = f"切换到 {mode.value} 模式失败: {message}"
        self.host.notify(notice)
        return notice

    async def teardown(self, detach: bool = True) -> None:
        """
        拆除当前布局

        Args:
            detach: 是否关闭所有已跟踪的槽位
        """
        handles = self.assignment.handles()
        self.assignment.clear()
        self.active_source_id = None
        self.active_mode = None

        if not detach:
            return
        for handle in handles:
            try:
                await self.host.detach_slot(handle)
            except Exception as e:
                logger.warning("slot_detach_failed", handle=handle, error=str(e))
        if handles:
            logger.info("layout_torn_down", slots=len(handles))

    # ===== 启动恢复 =====

    async def restore_last_layout(self) -> Optional[LayoutResult]:
        """
        恢复上次的布局

        先清除持久化的恢复记录（避免反复失败时循环触发），等待宿主稳定后
        以恢复模式调用 activate_mode。show-all 不参与恢复。
        """
        mode = self.settings.last_mode
        source_id = self.settings.last_source_id
        if mode is None or not source_id:
            return None

        self.settings.clear_last_state()
        await self.state.save()

        if mode == Mode.SHOW_ALL:
            logger.info("restore_skipped", reason="show_all", source_id=source_id)
            return None
        if not is_source_note(source_id) or not await self.host.document_exists(source_id):
            logger.info("restore_skipped", reason="source_missing", source_id=source_id)
            return None

        await asyncio.sleep(self.sync_settings.restore_delay_seconds)

        if self.coordinator.busy:
            logger.info("restore_skipped", reason="busy", source_id=source_id)
            return None

        logger.info("restoring_layout", mode=mode.value, source_id=source_id)
        return await self.activate_mode(mode, source_id, is_restore=True)

    # ===== 视图行为 =====

    async def handle_slot_focus(self, handle: str) -> None:
        """槽位获得焦点时，确保锁定的 Cue 槽位仍是只读预览"""
        if not self.settings.enforce_cue_preview or handle != self.assignment.left:
            return
        for slot in await self.host.list_slots():
            if slot.handle == handle and slot.behavior != ViewBehavior.PREVIEW:
                await self.host.set_slot_mode(handle, ViewBehavior.PREVIEW)
                logger.debug("cue_preview_enforced", handle=handle)
                return

    async def set_slot_behavior(self, handle: str, behavior: ViewBehavior) -> bool:
        """
        切换槽位的编辑/只读状态

        Returns:
            是否已切换（锁定的 Cue 槽位拒绝切换为编辑）
        """
        behavior = ViewBehavior(behavior)
        if (
            behavior == ViewBehavior.EDIT
            and self.settings.enforce_cue_preview
            and handle == self.assignment.left
        ):
            self.host.notify("Cue 视图已锁定为只读，可在设置中关闭")
            return False
        await self.host.set_slot_mode(handle, behavior)
        return True

    # ===== 引用定位 =====

    async def reveal_reference(self, cue_id: str, ref: str, *, focus: bool) -> bool:
        """
        在 Source 中定位脚注的第一次引用

        Args:
            cue_id: 发起定位的 Cue 笔记
            ref: 脚注标识
            focus: 是否把焦点移到 Source 槽位（导航为 True，高亮为 False）

        Returns:
            是否找到引用
        """
        source_id = await self.registry.resolve_source(cue_id, self.host.document_exists)
        if source_id is None:
            self.host.notify(f"找不到 {cue_id} 对应的 Source 笔记")
            return False

        text = await self.host.read_document(source_id)
        handle = await self._source_slot(source_id)

        location = find_first_reference(text, ref)
        if location is None:
            self.host.notify(f"未在 Source 中找到引用 [^{ref}]")
            await self.host.scroll_slot_to_line(handle, 0)
            return False

        start, end, line = location
        await self.host.scroll_slot_to_line(handle, line)
        await self._highlight(handle, start, end)
        if focus:
            await self.host.focus_slot(handle)
        logger.debug("reference_revealed", source_id=source_id, ref=ref, line=line, focus=focus)
        return True

    async def _highlight(self, handle: str, start: int, end: int) -> None:
        """高亮引用，并在 highlight_duration_seconds 后自动清除"""
        await self.clear_active_highlight()
        await self.host.highlight_range(handle, start, end)
        self._highlighted = handle
        duration = self.sync_settings.highlight_duration_seconds
        self.scheduler.schedule(HIGHLIGHT_KEY, duration, lambda: self._expire_highlight(handle, duration))

    async def _expire_highlight(self, handle: str, duration: float) -> None:
        await asyncio.sleep(duration)
        if self._highlighted == handle:
            self._highlighted = None
            await self._clear_slot_highlight(handle)

    async def clear_active_highlight(self) -> None:
        """取消待执行的自动清除，并立即清除当前高亮"""
        self.scheduler.cancel(HIGHLIGHT_KEY)
        handle, self._highlighted = self._highlighted, None
        if handle is not None:
            await self._clear_slot_highlight(handle)

    async def _clear_slot_highlight(self, handle: str) -> None:
        try:
            await self.host.clear_highlight(handle)
        except Exception as e:
            logger.warning("highlight_clear_failed", handle=handle, error=str(e))
        else:
            logger.debug("highlight_cleared", handle=handle)

    async def _source_slot(self, source_id: str) -> str:
        """优先使用布局中的 Center 槽位，其次任意显示该 Source 的槽位，最后新建"""
        slots = await self.host.list_slots()
        center = self.assignment.center
        if center is not None and any(s.handle == center and s.doc_id == source_id for s in slots):
            return center
        for slot in slots:
            if slot.doc_id == source_id:
                return slot.handle
        return await self.host.allocate_view_slot(Position.CENTER, source_id)
