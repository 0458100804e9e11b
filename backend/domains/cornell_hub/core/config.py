"""
插件设置（持久化部分）

字段与持久化数据块 settings 节一一对应，键名使用 camelCase。
加载时逐项校验：类型不符的值回退为默认值并记录警告，
无法识别的 lastMode 置为 None。
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from domains.cornell_core.logging import get_logger

from .models import Mode, Position

logger = get_logger(__name__)

# 交互代码块的标识，出现在 Cue 笔记末尾
FOOTNOTE_LINKS_BLOCK_ID = "cornell-footnote-links"

SOURCE_NOTE_PLACEHOLDER = "{{sourceNote}}"
CUE_NOTE_PLACEHOLDER = "{{cueNote}}"


class PaneWidthRatio(BaseModel):
    """三栏宽度比例（非 show-all 模式使用）"""
    model_config = ConfigDict(extra="ignore")

    left: float = Field(default=25, ge=0, description="左栏 (Cue) 比例")
    center: float = Field(default=50, ge=0, description="中栏 (Source) 比例")
    right: float = Field(default=25, ge=0, description="右栏 (Summary) 比例")

    def for_position(self, position: Position) -> float:
        return getattr(self, position.value)


class PluginSettings(BaseModel):
    """
    插件设置

    使用示例:
        settings = PluginSettings.from_persisted(blob.get("settings"))
        settings.sync_on_save = True
        blob["settings"] = settings.to_persisted()
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=True,
        extra="ignore",
    )

    cue_prefix: StrictStr = Field(default="cue", min_length=1, description="生成 Cue 时的脚注前缀")
    last_mode: Optional[Mode] = Field(default=None, description="上次使用的模式（用于启动恢复）")
    last_source_id: Optional[StrictStr] = Field(default=None, description="上次布局的 Source 笔记")
    pane_width_ratio: PaneWidthRatio = Field(default_factory=PaneWidthRatio)
    enforce_cue_preview: StrictBool = Field(default=True, description="左栏 Cue 强制只读预览")
    sync_on_save: StrictBool = Field(default=False, description="文档修改时自动同步")
    delete_references_on_definition_delete: StrictBool = Field(
        default=False, description="Cue 中删除定义时同时删除 Source 中的引用"
    )
    delete_definitions_on_reference_delete: StrictBool = Field(
        default=False, description="Source 中引用全部删除时从 Cue 中移除定义"
    )
    link_to_source_template: StrictStr = Field(
        default=f"[[{SOURCE_NOTE_PLACEHOLDER}|⬅️ Back to Source]]", description="返回 Source 的链接模板"
    )
    link_to_cue_template: StrictStr = Field(
        default=f"[[{CUE_NOTE_PLACEHOLDER}|⬅️ Back to Cue]]", description="返回 Cue 的链接模板"
    )
    enable_navigation: StrictBool = Field(default=True, description="允许从 Cue 跳转到 Source 引用")
    enable_highlight: StrictBool = Field(default=True, description="允许在 Source 中高亮引用")
    move_footnotes_to_end: StrictBool = Field(
        default=True, description="脚注定义放到文末（关闭时仍追加到文末）"
    )

    @field_validator("last_mode", mode="before")
    @classmethod
    def validate_last_mode(cls, v):
        if v is None or isinstance(v, Mode):
            return v
        try:
            return Mode(v)
        except ValueError:
            logger.warning("invalid_last_mode_reset", value=repr(v))
            return None

    @classmethod
    def from_persisted(cls, data: Any) -> "PluginSettings":
        """
        从持久化数据创建设置

        逐项校验，任何一项不合法都只回退该项。

        Args:
            data: 持久化的 settings 字典（可能缺失或损坏）
        """
        if not isinstance(data, dict):
            if data is not None:
                logger.warning("persisted_settings_invalid", type=type(data).__name__)
            return cls()

        data = dict(data)
        # 旧版本使用 lastFile 记录上次的 Source 笔记
        if "lastSourceId" not in data and "lastFile" in data:
            data["lastSourceId"] = data.pop("lastFile")

        accepted: dict[str, Any] = {}
        for name, field_info in cls.model_fields.items():
            alias = field_info.alias or name
            if alias not in data:
                continue
            value = data[alias]
            try:
                cls.model_validate({alias: value})
            except PydanticValidationError:
                logger.warning("persisted_setting_reverted", key=alias, value=repr(value)[:80])
                continue
            accepted[alias] = value

        return cls.model_validate(accepted)

    def to_persisted(self) -> dict[str, Any]:
        """转换为持久化字典"""
        return self.model_dump(by_alias=True, mode="json")

    def clear_last_state(self) -> None:
        """清除启动恢复用的上次布局记录"""
        self.last_mode = None
        self.last_source_id = None
