"""
宿主环境接口

核心逻辑通过这一组异步原语访问宿主的文档存储和工作区（视图槽位）。
具体实现见 memory.MemoryHost（无界面）和 vault.VaultHost（本地目录）。
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from ..core.models import Position, SlotInfo, ViewBehavior


class DocumentHost(ABC):
    """文档存储原语"""

    @abstractmethod
    async def read_document(self, doc_id: str) -> str:
        """读取文档全文，不存在时抛出 DocumentNotFoundError"""

    @abstractmethod
    async def write_document(self, doc_id: str, text: str) -> None:
        """覆盖写入已存在的文档"""

    @abstractmethod
    async def document_exists(self, doc_id: str) -> bool:
        pass

    @abstractmethod
    async def create_document_if_missing(self, path: str, initial_text: str) -> str:
        """
        文档不存在时以 initial_text 创建

        Returns:
            文档标识（已存在时直接返回，不修改内容）
        """

    @abstractmethod
    async def list_documents(self) -> list[str]:
        """列出所有 Markdown 文档"""

    @abstractmethod
    async def load_data(self) -> Optional[dict[str, Any]]:
        """读取插件持久化数据块"""

    @abstractmethod
    async def save_data(self, data: dict[str, Any]) -> None:
        """写入插件持久化数据块"""

    @abstractmethod
    def notify(self, message: str, timeout: Optional[float] = None) -> None:
        """向用户显示提示"""


class WorkspaceHost(ABC):
    """视图槽位原语"""

    @abstractmethod
    async def list_slots(self) -> list[SlotInfo]:
        """所有打开的槽位（含正在显示的文档）"""

    @abstractmethod
    async def allocate_view_slot(self, position: Position, doc_id: str) -> str:
        """新建一个槽位并打开 doc_id，返回槽位句柄"""

    @abstractmethod
    async def open_document(self, handle: str, doc_id: str) -> None:
        pass

    @abstractmethod
    async def split_slot(self, anchor: str, doc_id: str) -> str:
        """在 anchor 右侧分出新槽位并打开 doc_id，返回新句柄"""

    @abstractmethod
    async def arrange_slots(self, handles: list[str]) -> None:
        """把槽位排成一行（按给定顺序从左到右）"""

    @abstractmethod
    async def detach_slot(self, handle: str) -> None:
        pass

    @abstractmethod
    async def set_slot_mode(self, handle: str, behavior: ViewBehavior) -> None:
        pass

    @abstractmethod
    async def set_slot_width(self, handle: str, percent: float, grow: float) -> None:
        """设置槽位宽度（flex-basis 百分比 + flex-grow）"""

    @abstractmethod
    async def focus_slot(self, handle: str) -> None:
        pass

    @abstractmethod
    async def scroll_slot_to_line(self, handle: str, line: int) -> None:
        pass

    @abstractmethod
    async def highlight_range(self, handle: str, start: int, end: int) -> None:
        """选中/高亮文档中 [start, end) 的文本"""

    @abstractmethod
    async def clear_highlight(self, handle: str) -> None:
        """清除槽位中的高亮；槽位已关闭时忽略"""

    @abstractmethod
    async def refresh_slot(self, handle: str) -> None:
        """重新渲染槽位（只读预览在文档变更后需要刷新）"""

    @abstractmethod
    async def active_document(self) -> Optional[str]:
        """当前获得焦点的文档"""


class CornellHost(DocumentHost, WorkspaceHost):
    """核心使用的完整宿主接口"""

    async def slot_document(self, handle: str) -> Optional[str]:
        """槽位当前显示的文档，槽位不存在时返回 None"""
        for slot in await self.list_slots():
            if slot.handle == handle:
                return slot.doc_id
        return None
