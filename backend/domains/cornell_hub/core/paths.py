"""
派生笔记路径约定

Cue/Summary 与 Source 位于同一目录:
    <folder>/<basename>.md          -> Source
    <folder>/<basename>-cue.md      -> Cue
    <folder>/<basename>-summary.md  -> Summary
"""

from pathlib import PurePosixPath
from typing import Optional

from .models import DocumentRole

NOTE_EXTENSION = ".md"
CUE_SUFFIX = "-cue"
SUMMARY_SUFFIX = "-summary"


def normalize_path(path: str) -> str:
    """统一为不带前导 ./ 或 / 的 POSIX 相对路径"""
    normalized = path.replace("\\", "/").strip()
    while normalized.startswith("./"):
        normalized = normalized[2:]
    normalized = normalized.lstrip("/")
    parts = [p for p in normalized.split("/") if p and p != "."]
    return "/".join(parts)


def basename(path: str) -> str:
    """不含扩展名的文件名"""
    return PurePosixPath(normalize_path(path)).stem


def is_markdown(path: str) -> bool:
    return normalize_path(path).lower().endswith(NOTE_EXTENSION)


def is_cue_note(path: str) -> bool:
    return is_markdown(path) and basename(path).endswith(CUE_SUFFIX)


def is_summary_note(path: str) -> bool:
    return is_markdown(path) and basename(path).endswith(SUMMARY_SUFFIX)


def is_source_note(path: str) -> bool:
    return is_markdown(path) and not is_cue_note(path) and not is_summary_note(path)


def document_role(path: str) -> Optional[DocumentRole]:
    """由路径推导文档角色，非 Markdown 文件返回 None"""
    if not is_markdown(path):
        return None
    if is_cue_note(path):
        return DocumentRole.CUE
    if is_summary_note(path):
        return DocumentRole.SUMMARY
    return DocumentRole.SOURCE


def _sibling(path: str, stem: str) -> str:
    parent = PurePosixPath(normalize_path(path)).parent
    name = f"{stem}{NOTE_EXTENSION}"
    if str(parent) in ("", "."):
        return name
    return f"{parent}/{name}"


def cue_path_for(source_path: str) -> str:
    return _sibling(source_path, basename(source_path) + CUE_SUFFIX)


def summary_path_for(source_path: str) -> str:
    return _sibling(source_path, basename(source_path) + SUMMARY_SUFFIX)


def source_path_for(derived_path: str) -> Optional[str]:
    """
    根据命名约定猜测派生笔记对应的 Source 路径

    只做字符串推导，不检查文件是否存在。Source 笔记本身返回 None。
    """
    stem = basename(derived_path)
    if is_cue_note(derived_path):
        source_stem = stem[:-len(CUE_SUFFIX)]
    elif is_summary_note(derived_path):
        source_stem = stem[:-len(SUMMARY_SUFFIX)]
    else:
        return None
    if not source_stem:
        return None
    return _sibling(derived_path, source_stem)
