"""
Cornell Hub - 康奈尔笔记

Source / Cue / Summary 三篇笔记通过脚注保持一致，并按学习模式排列成多栏视图。

模块:
- core: 数据模型、脚注解析、内容协调、注册表
- services: 同步服务、布局状态机
- hosts: 宿主接口与实现
- plugin: 插件入口
"""

from .core.models import Mode, Position, SyncDirection, ViewBehavior
from .plugin import CornellPlugin

__all__ = [
    "CornellPlugin",
    "Mode",
    "Position",
    "SyncDirection",
    "ViewBehavior",
]
