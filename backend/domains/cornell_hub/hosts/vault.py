"""
本地目录宿主

把一个目录当作笔记库：文档是目录下的 .md 文件（以相对 POSIX 路径为标识），
插件数据保存在 .cornell/data.json。槽位使用无界面工作区。

文件读写在线程池中执行，避免阻塞 event loop；写入使用临时文件 + 原子重命名。
"""

import asyncio
import json
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, Optional

from domains.core.exceptions import ConfigurationError, DocumentNotFoundError
from domains.cornell_core.logging import get_logger

from ..core.paths import NOTE_EXTENSION, normalize_path
from .base import CornellHost
from .workspace import HeadlessWorkspace

logger = get_logger(__name__)

DATA_DIR_NAME = ".cornell"
DATA_FILE_NAME = "data.json"


class VaultHost(HeadlessWorkspace, CornellHost):
    """本地目录笔记库"""

    def __init__(self, root: Path, data_file: Optional[Path] = None):
        """
        初始化笔记库

        Args:
            root: 笔记库根目录
            data_file: 插件数据文件，默认为 <root>/.cornell/data.json

        Raises:
            ConfigurationError: 根目录不存在
        """
        super().__init__()
        self.root = Path(root).expanduser().resolve()
        if not self.root.is_dir():
            raise ConfigurationError("vault_root", f"笔记目录不存在: {self.root}")
        self.data_file = data_file or self.root / DATA_DIR_NAME / DATA_FILE_NAME
        self.notices: list[str] = []

    # ===== 路径工具 =====

    def _resolve(self, doc_id: str) -> Path:
        """文档标识转绝对路径，不允许越出根目录"""
        path = (self.root / normalize_path(doc_id)).resolve()
        if path != self.root and self.root not in path.parents:
            raise ValueError(f"Path escapes vault root: {doc_id}")
        return path

    def _to_doc_id(self, path: Path) -> str:
        return path.relative_to(self.root).as_posix()

    @staticmethod
    def _write_text_atomic(filepath: Path, text: str) -> None:
        """
        原子写入文本文件

        使用临时文件 + 原子重命名，确保写入过程中断不会损坏文件。
        """
        filepath.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(
            suffix=filepath.suffix or '.tmp',
            prefix='.tmp_',
            dir=filepath.parent
        )
        try:
            with os.fdopen(fd, 'w', encoding='utf-8', newline='') as f:
                f.write(text)
            shutil.move(tmp_path, filepath)
        except Exception:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    # ===== 文档原语 =====

    async def read_document(self, doc_id: str) -> str:
        path = self._resolve(doc_id)
        if not path.is_file():
            raise DocumentNotFoundError("笔记", normalize_path(doc_id))
        return await asyncio.to_thread(path.read_text, encoding='utf-8')

    async def write_document(self, doc_id: str, text: str) -> None:
        path = self._resolve(doc_id)
        if not path.is_file():
            raise DocumentNotFoundError("笔记", normalize_path(doc_id))
        await asyncio.to_thread(self._write_text_atomic, path, text)

    async def document_exists(self, doc_id: str) -> bool:
        try:
            return self._resolve(doc_id).is_file()
        except ValueError:
            return False

    async def create_document_if_missing(self, path: str, initial_text: str) -> str:
        doc_id = normalize_path(path)
        filepath = self._resolve(doc_id)
        if filepath.is_file():
            return doc_id
        await asyncio.to_thread(self._write_text_atomic, filepath, initial_text)
        logger.info("vault_document_created", path=doc_id)
        return doc_id

    async def list_documents(self) -> list[str]:
        def scan() -> list[str]:
            documents = []
            for path in self.root.rglob(f"*{NOTE_EXTENSION}"):
                relative = path.relative_to(self.root)
                if any(part.startswith('.') for part in relative.parts):
                    continue
                if path.is_file():
                    documents.append(relative.as_posix())
            return sorted(documents)

        return await asyncio.to_thread(scan)

    async def load_data(self) -> Optional[dict[str, Any]]:
        if not self.data_file.exists():
            return None

        def read() -> Any:
            with open(self.data_file, 'r', encoding='utf-8') as f:
                return json.load(f)

        try:
            return await asyncio.to_thread(read)
        except json.JSONDecodeError as e:
            logger.warning("vault_data_corrupted", path=str(self.data_file), error=str(e))
            return None

    async def save_data(self, data: dict[str, Any]) -> None:
        text = json.dumps(data, ensure_ascii=False, indent=2)
        await asyncio.to_thread(self._write_text_atomic, self.data_file, text)

    def notify(self, message: str, timeout: Optional[float] = None) -> None:
        self.notices.append(message)
        logger.info("user_notice", message=message)
