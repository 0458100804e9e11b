"""
Core - 通用应用基础设施

提供与具体宿主无关的基础设施组件:
- 统一异常体系

注意: 日志、配置和并发协调组件在 cornell_core 模块中。
"""

from .exceptions import (
    ApplicationError,
    ConfigurationError,
    DocumentCreateError,
    DocumentIOError,
    DocumentNotFoundError,
    ErrorCategory,
    LayoutError,
    OperationInProgressError,
    SourceResolutionError,
    ValidationError,
)

__all__ = [
    # Exceptions
    "ErrorCategory",
    "ApplicationError",
    "DocumentNotFoundError",
    "SourceResolutionError",
    "DocumentCreateError",
    "DocumentIOError",
    "LayoutError",
    "OperationInProgressError",
    "ValidationError",
    "ConfigurationError",
]
