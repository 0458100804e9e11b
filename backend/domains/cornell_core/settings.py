"""
运行时配置管理（基于 pydantic-settings）

提供:
- 类型安全的配置
- 环境变量自动绑定
- 配置校验

这里只放与宿主无关的运行参数（日志、防抖窗口、释放宽限期等）。
用户可见的插件设置见 domains.cornell_hub.core.config。
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LoggingSettings(BaseSettings):
    """日志配置"""
    model_config = SettingsConfigDict(
        env_prefix="CORNELL_LOG_",
        extra="ignore",
    )

    level: str = Field(default="INFO", description="日志级别")
    json_format: bool = Field(default=False, description="是否使用 JSON 格式")
    include_timestamp: bool = Field(default=True, description="是否包含时间戳")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v):
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v_upper


class SyncSettings(BaseSettings):
    """同步与布局的时间参数"""
    model_config = SettingsConfigDict(
        env_prefix="CORNELL_SYNC_",
        extra="ignore",
    )

    debounce_seconds: float = Field(default=1.5, ge=0, description="自动同步防抖窗口（秒）")
    release_grace_seconds: float = Field(default=0.1, ge=0, description="互斥令牌释放前的宽限期（秒）")
    restore_delay_seconds: float = Field(default=1.5, ge=0, description="启动恢复布局前的等待时间（秒）")
    batch_retry_limit: int = Field(default=3, ge=0, description="批量同步遇到占用时的最大重试次数")
    batch_progress_interval: int = Field(default=50, ge=1, description="批量同步进度提示间隔（篇）")
    highlight_duration_seconds: float = Field(default=1.5, ge=0, description="Source 中引用高亮的保留时间（秒）")


class CornellSettings(BaseSettings):
    """
    运行时主配置

    统一管理所有子配置，支持从环境变量和 .env 文件加载。
    """
    model_config = SettingsConfigDict(
        env_prefix="CORNELL_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # 子配置
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)

    # 环境标识
    environment: str = Field(default="development", description="运行环境")
    debug: bool = Field(default=False, description="是否调试模式")

    @property
    def is_development(self) -> bool:
        """是否开发环境"""
        return self.environment.lower() in ("development", "dev")


@lru_cache
def get_settings() -> CornellSettings:
    """
    获取配置单例

    使用 lru_cache 确保只加载一次配置。
    """
    return CornellSettings()


def get_logging_settings() -> LoggingSettings:
    """获取日志配置"""
    return get_settings().logging


def get_sync_settings() -> SyncSettings:
    """获取同步配置"""
    return get_settings().sync


def reload_settings() -> CornellSettings:
    """
    重新加载配置

    清除缓存并重新加载配置。
    """
    get_settings.cache_clear()
    return get_settings()
