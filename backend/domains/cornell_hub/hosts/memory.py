"""
内存宿主

文档、持久化数据和槽位全部保存在内存中，不依赖任何界面。
用于测试，也可作为嵌入其他程序时的参考实现。
"""

import copy
from typing import Any, Optional

from domains.core.exceptions import DocumentNotFoundError
from domains.cornell_core.logging import get_logger

from ..core.paths import is_markdown, normalize_path
from .base import CornellHost
from .workspace import HeadlessWorkspace

logger = get_logger(__name__)


class MemoryHost(HeadlessWorkspace, CornellHost):
    """
    内存宿主

    Attributes:
        documents: 路径 -> 内容
        data: 持久化数据块
        notices: 已显示的用户提示
        writes: 按顺序记录的 (路径, 内容) 写入
        fail_reads / fail_writes / fail_creates: 这些路径上的操作抛出 OSError
    """

    def __init__(self, documents: Optional[dict[str, str]] = None, data: Optional[dict[str, Any]] = None):
        super().__init__()
        self.documents: dict[str, str] = {
            normalize_path(k): v for k, v in (documents or {}).items()
        }
        self.data: Optional[dict[str, Any]] = copy.deepcopy(data)
        self.notices: list[str] = []
        self.writes: list[tuple[str, str]] = []
        self.save_count = 0
        self.fail_reads: set[str] = set()
        self.fail_writes: set[str] = set()
        self.fail_creates: set[str] = set()

    async def read_document(self, doc_id: str) -> str:
        doc_id = normalize_path(doc_id)
        if doc_id in self.fail_reads:
            raise OSError(f"read failed: {doc_id}")
        if doc_id not in self.documents:
            raise DocumentNotFoundError("笔记", doc_id)
        return self.documents[doc_id]

    async def write_document(self, doc_id: str, text: str) -> None:
        doc_id = normalize_path(doc_id)
        if doc_id in self.fail_writes:
            raise OSError(f"write failed: {doc_id}")
        if doc_id not in self.documents:
            raise DocumentNotFoundError("笔记", doc_id)
        self.documents[doc_id] = text
        self.writes.append((doc_id, text))

    async def document_exists(self, doc_id: str) -> bool:
        return normalize_path(doc_id) in self.documents

    async def create_document_if_missing(self, path: str, initial_text: str) -> str:
        path = normalize_path(path)
        if path in self.documents:
            return path
        if path in self.fail_creates:
            raise OSError(f"create failed: {path}")
        self.documents[path] = initial_text
        logger.debug("memory_document_created", path=path)
        return path

    async def list_documents(self) -> list[str]:
        return sorted(doc_id for doc_id in self.documents if is_markdown(doc_id))

    async def load_data(self) -> Optional[dict[str, Any]]:
        return copy.deepcopy(self.data)

    async def save_data(self, data: dict[str, Any]) -> None:
        self.data = copy.deepcopy(data)
        self.save_count += 1

    def notify(self, message: str, timeout: Optional[float] = None) -> None:
        self.notices.append(message)
        logger.info("user_notice", message=message)
