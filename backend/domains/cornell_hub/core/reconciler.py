"""
内容协调

根据定义集合和策略开关生成目标文档的新内容，两个方向各一个纯函数:
- build_cue_content: 重建 Cue 笔记（保留头部，定义排序输出，末尾追加交互代码块）
- rebuild_source_content: 重建 Source 笔记（移除旧定义块，按权威定义在文末重新追加）

两个函数都是幂等的：对自身输出以相同参数再执行一次不会产生变化。
"""

import re
from typing import Mapping, Optional

from domains.cornell_core.logging import get_logger

from .config import CUE_NOTE_PLACEHOLDER, FOOTNOTE_LINKS_BLOCK_ID, SOURCE_NOTE_PLACEHOLDER, PluginSettings
from .footnotes import format_definition, parse, parse_definitions, reference_pattern, sort_refs

logger = get_logger(__name__)

FOOTNOTE_LINKS_BLOCK = f"```{FOOTNOTE_LINKS_BLOCK_ID}\n```"

_EXCESS_BLANK_LINES = re.compile(r'\n{3,}')
_FIRST_DEFINITION = re.compile(r'^[ \t]*\[\^[^\]]+?\]:', re.MULTILINE)
_LINKS_BLOCK_START = re.compile(r'^[ \t]*```' + re.escape(FOOTNOTE_LINKS_BLOCK_ID), re.MULTILINE)


def collapse_blank_lines(text: str) -> str:
    """连续 3 个以上换行压缩为一个空行"""
    return _EXCESS_BLANK_LINES.sub('\n\n', text)


def render_link(template: str, placeholder: str, title: str) -> str:
    return template.replace(placeholder, title)


def render_definitions(definitions: Mapping[str, str]) -> str:
    """按自然顺序渲染定义块，条目之间空一行"""
    return '\n\n'.join(format_definition(ref, definitions[ref]) for ref in sort_refs(definitions))


def extract_cue_header(cue_text: str) -> str:
    """取第一条定义或交互代码块之前的内容作为头部"""
    cut = len(cue_text)
    for pattern in (_FIRST_DEFINITION, _LINKS_BLOCK_START):
        match = pattern.search(cue_text)
        if match:
            cut = min(cut, match.start())
    return cue_text[:cut].rstrip()


def build_cue_content(
    existing_cue_text: Optional[str],
    source_title: str,
    definitions: Mapping[str, str],
    link_template: str = PluginSettings.model_fields["link_to_source_template"].default,
) -> str:
    """
    生成 Cue 笔记内容

    Args:
        existing_cue_text: 现有 Cue 内容（新建时为 None 或空串）
        source_title: Source 笔记标题（不含扩展名）
        definitions: ref -> body
        link_template: 返回 Source 的链接模板

    Returns:
        新的 Cue 内容，以单个换行结尾
    """
    header = extract_cue_header(existing_cue_text or "")
    link = render_link(link_template, SOURCE_NOTE_PLACEHOLDER, source_title)
    if link not in header:
        header = f"{link}\n\n{header}" if header else link

    content = header
    if definitions:
        content += '\n\n' + render_definitions(definitions)
        content += '\n\n' + FOOTNOTE_LINKS_BLOCK + '\n'

    return collapse_blank_lines(content.rstrip() + '\n')


def orphaned_refs(source_text: str, authoritative_definitions: Mapping[str, str]) -> list[str]:
    """Source 中存在、权威定义中已不存在的 ref"""
    seen: dict[str, None] = {}
    for definition in parse_definitions(source_text):
        if definition.ref not in authoritative_definitions:
            seen[definition.ref] = None
    return sort_refs(seen)


def rebuild_source_content(
    source_text: str,
    authoritative_definitions: Mapping[str, str],
    delete_orphan_references: bool = False,
    move_footnotes_to_end: bool = True,
) -> str:
    """
    以权威定义重建 Source 笔记

    1. 移除正文中所有定义块
    2. 权威定义中不存在的 ref 视为孤立；开启 delete_orphan_references 时删除其全部引用
    3. 所有权威定义排序后作为一个块追加到文末，与正文之间空一行

    Args:
        source_text: 现有 Source 内容
        authoritative_definitions: ref -> body（通常来自 Cue）
        delete_orphan_references: 是否删除孤立 ref 的引用
        move_footnotes_to_end: 目前只支持追加到文末，传 False 时记录警告

    Returns:
        新的 Source 内容，以单个换行结尾
    """
    if not move_footnotes_to_end:
        logger.warning("footnote_placement_unsupported", placement="in_place", fallback="append_at_end")

    parsed = parse(source_text)
    orphans = {d.ref for d in parsed.definitions if d.ref not in authoritative_definitions}

    body = source_text
    for definition in sorted(parsed.definitions, key=lambda d: d.span[0], reverse=True):
        start, end = definition.span
        body = body[:start] + body[end:]
    body = body.rstrip()

    if delete_orphan_references and orphans:
        pattern = reference_pattern(orphans)
        if pattern is not None:
            body = pattern.sub('', body).rstrip()

    content = body
    if authoritative_definitions:
        block = render_definitions(authoritative_definitions)
        content = f"{body}\n\n{block}" if body else block

    return collapse_blank_lines(content.rstrip() + '\n')


def build_summary_content(source_title: str, cue_title: str, settings: PluginSettings) -> str:
    """Summary 笔记的初始内容：两条返回链接 + ## SUMMARY 章节"""
    source_link = render_link(settings.link_to_source_template, SOURCE_NOTE_PLACEHOLDER, source_title)
    cue_link = render_link(settings.link_to_cue_template, CUE_NOTE_PLACEHOLDER, cue_title)
    return f"{source_link}\n{cue_link}\n\n## SUMMARY\n\n"
