"""
统一异常体系

为同步引擎和布局状态机提供统一的错误结构，包括:
- 应用异常基类 (ApplicationError)
- 文档解析/创建失败 (resolution)
- 文档读写失败 (io)
- 视图槽位布局失败 (layout)
- 互斥令牌被占用 (contention)

所有异常都只影响触发它的那一次操作，不会导致进程退出。
"""

from enum import Enum
from typing import Any, Dict, Optional, List
from dataclasses import dataclass


class ErrorCategory(str, Enum):
    """错误分类"""
    RESOLUTION = "resolution"        # 文档无法找到或创建
    IO = "io"                        # 文档读写失败
    LAYOUT = "layout"                # 视图槽位无法创建/排列/填充
    CONTENTION = "contention"        # 互斥令牌已被占用
    VALIDATION = "validation"        # 参数验证错误
    CONFIGURATION = "configuration"  # 配置错误
    INTERNAL = "internal"            # 内部错误


@dataclass
class ApplicationError(Exception):
    """
    应用层异常基类

    所有业务相关的异常都应继承此类。
    提供统一的错误结构，便于日志记录和用户提示。

    使用示例:
        raise DocumentNotFoundError("Cue 笔记", "notes/lecture-cue.md")
        raise DocumentIOError("write", "notes/lecture.md", cause=e)
        raise LayoutError("split", "新分屏未显示目标文档")
    """
    code: str                                    # 错误码 (如 "DOCUMENT_NOT_FOUND")
    message: str                                 # 用户可读的错误信息
    category: ErrorCategory = ErrorCategory.INTERNAL
    details: Optional[Dict[str, Any]] = None    # 附加详情
    cause: Optional[Exception] = None           # 原始异常

    def __post_init__(self):
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    @property
    def is_contention(self) -> bool:
        """是否为互斥冲突（自动触发时静默跳过）"""
        return self.category == ErrorCategory.CONTENTION

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典格式（用于日志和 CLI 输出）"""
        result = {
            "code": self.code,
            "message": self.message,
            "category": self.category.value,
        }
        if self.details:
            result["details"] = self.details
        if self.cause is not None:
            result["cause"] = repr(self.cause)
        return result


# ==================== 文档解析异常 ====================

class DocumentNotFoundError(ApplicationError):
    """文档不存在"""
    def __init__(
        self,
        document_type: str,
        document_id: Any,
        details: Optional[Dict] = None
    ):
        super().__init__(
            code="DOCUMENT_NOT_FOUND",
            message=f"{document_type}不存在: {document_id}",
            category=ErrorCategory.RESOLUTION,
            details=details or {"document_type": document_type, "document_id": str(document_id)}
        )
        self.document_type = document_type
        self.document_id = document_id


class SourceResolutionError(ApplicationError):
    """无法为派生笔记找到对应的 Source 笔记"""
    def __init__(self, document_id: str):
        super().__init__(
            code="SOURCE_NOT_RESOLVED",
            message=f"找不到 {document_id} 对应的 Source 笔记",
            category=ErrorCategory.RESOLUTION,
            details={"document_id": document_id}
        )
        self.document_id = document_id


class DocumentCreateError(ApplicationError):
    """派生笔记创建失败"""
    def __init__(self, path: str, cause: Optional[Exception] = None):
        super().__init__(
            code="DOCUMENT_CREATE_FAILED",
            message=f"无法创建笔记: {path}",
            category=ErrorCategory.RESOLUTION,
            details={"path": path},
            cause=cause
        )
        self.path = path


# ==================== 读写异常 ====================

class DocumentIOError(ApplicationError):
    """文档读写失败"""
    def __init__(
        self,
        operation: str,
        document_id: str,
        cause: Optional[Exception] = None
    ):
        super().__init__(
            code="DOCUMENT_IO_ERROR",
            message=f"笔记{'读取' if operation == 'read' else '写入'}失败: {document_id}",
            category=ErrorCategory.IO,
            details={"operation": operation, "document_id": document_id},
            cause=cause
        )
        self.operation = operation
        self.document_id = document_id


# ==================== 布局异常 ====================

class LayoutError(ApplicationError):
    """视图槽位无法创建、排列或填充"""
    def __init__(
        self,
        step: str,
        message: str,
        details: Optional[Dict] = None,
        cause: Optional[Exception] = None
    ):
        super().__init__(
            code="LAYOUT_ERROR",
            message=f"布局失败 [{step}]: {message}",
            category=ErrorCategory.LAYOUT,
            details=details or {"step": step},
            cause=cause
        )
        self.step = step


# ==================== 并发异常 ====================

class OperationInProgressError(ApplicationError):
    """互斥令牌已被占用"""
    def __init__(self, requested: str, current: str):
        super().__init__(
            code="OPERATION_IN_PROGRESS",
            message="同步或布局切换正在进行中，请稍候",
            category=ErrorCategory.CONTENTION,
            details={"requested": requested, "current": current}
        )
        self.requested = requested
        self.current = current


# ==================== 通用异常 ====================

class ValidationError(ApplicationError):
    """参数验证错误"""
    def __init__(
        self,
        message: str,
        errors: Optional[List[Dict[str, Any]]] = None,
        field: Optional[str] = None
    ):
        details = {}
        if errors:
            details["validation_errors"] = errors
        if field:
            details["field"] = field

        super().__init__(
            code="VALIDATION_ERROR",
            message=message,
            category=ErrorCategory.VALIDATION,
            details=details or None
        )
        self.errors = errors
        self.field = field


class ConfigurationError(ApplicationError):
    """配置错误"""
    def __init__(
        self,
        config_key: str,
        message: str,
        details: Optional[Dict] = None
    ):
        super().__init__(
            code="CONFIGURATION_ERROR",
            message=f"配置错误 [{config_key}]: {message}",
            category=ErrorCategory.CONFIGURATION,
            details=details or {"config_key": config_key}
        )


__all__ = [
    # 基础
    "ErrorCategory",
    "ApplicationError",
    # 文档解析
    "DocumentNotFoundError",
    "SourceResolutionError",
    "DocumentCreateError",
    # 读写
    "DocumentIOError",
    # 布局
    "LayoutError",
    # 并发
    "OperationInProgressError",
    # 通用
    "ValidationError",
    "ConfigurationError",
]
