"""
结构化日志配置

提供统一的日志格式和配置，支持:
- 控制台输出（开发环境）
- JSON 格式输出（CLI 批处理/日志采集）
"""

import logging
import os
import sys
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import structlog


class LogFormat(str, Enum):
    """日志格式"""
    JSON = "json"
    CONSOLE = "console"


@dataclass
class LogConfig:
    """日志配置"""
    level: str = "INFO"
    format: LogFormat = LogFormat.CONSOLE
    add_timestamp: bool = True
    add_logger_name: bool = True
    service_name: str = "cornell-notes"
    extra_tags: dict = field(default_factory=dict)

    @classmethod
    def from_env(cls, service_name: str = "cornell-notes") -> "LogConfig":
        """从环境变量创建配置"""
        level = os.getenv("CORNELL_LOG_LEVEL", "INFO").upper()
        format_str = os.getenv("CORNELL_LOG_FORMAT", "console").lower()

        return cls(
            level=level,
            format=LogFormat.JSON if format_str == "json" else LogFormat.CONSOLE,
            service_name=service_name,
        )

    @classmethod
    def from_settings(cls, service_name: str = "cornell-notes") -> "LogConfig":
        """从 pydantic-settings 配置创建"""
        from ..settings import get_logging_settings

        settings = get_logging_settings()
        return cls(
            level=settings.level,
            format=LogFormat.JSON if settings.json_format else LogFormat.CONSOLE,
            add_timestamp=settings.include_timestamp,
            service_name=service_name,
        )


# 全局配置引用
_current_config: Optional[LogConfig] = None


def configure_logging(config: Optional[LogConfig] = None, service_name: str = "cornell-notes"):
    """
    配置结构化日志

    Args:
        config: 日志配置，None 则从环境变量读取
        service_name: 服务名称
    """
    global _current_config

    if config is None:
        config = LogConfig.from_env(service_name=service_name)

    _current_config = config

    log_level = getattr(logging, config.level, logging.INFO)

    # 构建处理器链
    processors = [
        structlog.stdlib.filter_by_level,
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if config.add_timestamp:
        processors.insert(0, structlog.processors.TimeStamper(fmt="iso"))

    if config.extra_tags:
        tags = dict(config.extra_tags)

        def add_extra_tags(_, __, event_dict):
            for key, value in tags.items():
                event_dict.setdefault(key, value)
            return event_dict

        processors.append(add_extra_tags)

    # 渲染工作由标准库 logging 的 ProcessorFormatter 完成
    processors.append(structlog.stdlib.ProcessorFormatter.wrap_for_formatter)

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # 标准库 logger（协调器、调度器）走同一条处理器链
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if config.add_timestamp:
        shared_processors.insert(0, structlog.processors.TimeStamper(fmt="iso"))

    if config.format == LogFormat.JSON:
        formatter = structlog.stdlib.ProcessorFormatter(
            processor=structlog.processors.JSONRenderer(ensure_ascii=False),
            foreign_pre_chain=shared_processors,
        )
    else:
        formatter = structlog.stdlib.ProcessorFormatter(
            processor=structlog.dev.ConsoleRenderer(
                colors=sys.stderr.isatty(),
                exception_formatter=structlog.dev.plain_traceback,
            ),
            foreign_pre_chain=shared_processors,
        )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(console_handler)
    root_logger.setLevel(log_level)

    logging.getLogger("asyncio").setLevel(logging.WARNING)


def get_current_config() -> Optional[LogConfig]:
    """获取当前生效的日志配置"""
    return _current_config


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    """
    获取结构化日志器

    Args:
        name: 日志器名称

    Returns:
        structlog BoundLogger

    使用示例:
        logger = get_logger(__name__)
        logger.info("source_to_cue_synced", source_id="notes/lecture.md", changed=True)
    """
    return structlog.get_logger(name)


def bind_operation_context(operation: str, document_id: Optional[str] = None):
    """
    绑定操作上下文到日志

    返回上下文管理器；退出时恢复进入前的上下文，
    嵌套操作（如布局切换中的同步）结束后外层上下文保持不变。

    Args:
        operation: 操作名称（如 sync_source_to_cue, activate_mode）
        document_id: 触发操作的文档（可选）

    使用示例:
        with bind_operation_context("sync_source_to_cue", "notes/lecture.md"):
            logger.info("source_to_cue_synced")
    """
    context = {"operation": operation}
    if document_id:
        context["document_id"] = document_id
    return structlog.contextvars.bound_contextvars(**context)


def clear_operation_context():
    """清除操作上下文"""
    structlog.contextvars.clear_contextvars()
