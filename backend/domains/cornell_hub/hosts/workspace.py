"""
无界面工作区

在内存中维护一张槽位表，实现 WorkspaceHost 的全部原语，
供 MemoryHost（测试）和 VaultHost（命令行）复用。
所有调用按顺序记录在 calls 中。
"""

from dataclasses import dataclass
from typing import Optional

from ..core.models import Position, SlotInfo, ViewBehavior
from .base import WorkspaceHost


@dataclass
class HeadlessSlot:
    """槽位状态"""
    handle: str
    doc_id: Optional[str]
    behavior: ViewBehavior = ViewBehavior.EDIT
    width: Optional[float] = None
    grow: Optional[float] = None
    scroll_line: Optional[int] = None
    highlight: Optional[tuple[int, int]] = None
    refresh_count: int = 0


class HeadlessWorkspace(WorkspaceHost):
    """
    内存槽位表

    order 记录从左到右的排列；fail_on 中的操作名会抛出 RuntimeError，
    用于模拟宿主失败。
    """

    def __init__(self):
        self.slots: dict[str, HeadlessSlot] = {}
        self.order: list[str] = []
        self.focused: Optional[str] = None
        self.calls: list[tuple] = []
        self.fail_on: set[str] = set()
        self._slot_counter = 0

    def _record(self, operation: str, *args) -> None:
        self.calls.append((operation, *args))
        if operation in self.fail_on:
            raise RuntimeError(f"host operation failed: {operation}")

    def _new_slot(self, doc_id: Optional[str]) -> HeadlessSlot:
        self._slot_counter += 1
        slot = HeadlessSlot(handle=f"slot-{self._slot_counter}", doc_id=doc_id)
        self.slots[slot.handle] = slot
        return slot

    def _slot(self, handle: str) -> HeadlessSlot:
        try:
            return self.slots[handle]
        except KeyError:
            raise LookupError(f"unknown view slot: {handle}") from None

    def calls_of(self, operation: str) -> list[tuple]:
        return [call for call in self.calls if call[0] == operation]

    # ===== 槽位原语 =====

    async def list_slots(self) -> list[SlotInfo]:
        return [
            SlotInfo(handle=h, doc_id=self.slots[h].doc_id, behavior=self.slots[h].behavior)
            for h in self.order
        ]

    async def allocate_view_slot(self, position: Position, doc_id: str) -> str:
        self._record("allocate_view_slot", position, doc_id)
        slot = self._new_slot(doc_id)
        self.order.append(slot.handle)
        return slot.handle

    async def open_document(self, handle: str, doc_id: str) -> None:
        self._record("open_document", handle, doc_id)
        slot = self._slot(handle)
        slot.doc_id = doc_id
        slot.scroll_line = None
        slot.highlight = None

    async def split_slot(self, anchor: str, doc_id: str) -> str:
        self._record("split_slot", anchor, doc_id)
        self._slot(anchor)
        slot = self._new_slot(doc_id)
        self.order.insert(self.order.index(anchor) + 1, slot.handle)
        return slot.handle

    async def arrange_slots(self, handles: list[str]) -> None:
        self._record("arrange_slots", list(handles))
        for handle in handles:
            self._slot(handle)
        rest = [h for h in self.order if h not in handles]
        self.order = list(handles) + rest

    async def detach_slot(self, handle: str) -> None:
        self._record("detach_slot", handle)
        if handle not in self.slots:
            return
        del self.slots[handle]
        self.order.remove(handle)
        if self.focused == handle:
            self.focused = None

    async def set_slot_mode(self, handle: str, behavior: ViewBehavior) -> None:
        self._record("set_slot_mode", handle, behavior)
        self._slot(handle).behavior = behavior

    async def set_slot_width(self, handle: str, percent: float, grow: float) -> None:
        self._record("set_slot_width", handle, percent, grow)
        slot = self._slot(handle)
        slot.width = percent
        slot.grow = grow

    async def focus_slot(self, handle: str) -> None:
        self._record("focus_slot", handle)
        self._slot(handle)
        self.focused = handle

    async def scroll_slot_to_line(self, handle: str, line: int) -> None:
        self._record("scroll_slot_to_line", handle, line)
        self._slot(handle).scroll_line = line

    async def highlight_range(self, handle: str, start: int, end: int) -> None:
        self._record("highlight_range", handle, start, end)
        self._slot(handle).highlight = (start, end)

    async def clear_highlight(self, handle: str) -> None:
        self._record("clear_highlight", handle)
        slot = self.slots.get(handle)
        if slot is not None:
            slot.highlight = None

    async def refresh_slot(self, handle: str) -> None:
        self._record("refresh_slot", handle)
        self._slot(handle).refresh_count += 1

    async def active_document(self) -> Optional[str]:
        if self.focused is None or self.focused not in self.slots:
            return None
        return self.slots[self.focused].doc_id

    # ===== 测试/命令行辅助 =====

    def open_standalone(self, doc_id: str, behavior: ViewBehavior = ViewBehavior.EDIT) -> str:
        """模拟用户手动打开一篇笔记并聚焦（不记录为宿主调用）"""
        slot = self._new_slot(doc_id)
        slot.behavior = behavior
        self.order.append(slot.handle)
        self.focused = slot.handle
        return slot.handle
