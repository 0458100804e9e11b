"""
脚注解析

纯函数，无状态。解析 Markdown 文本中的脚注定义与引用:
- 定义: 行首（可有空白）`[^ref]: body`，续行需缩进 2 个以上空格或 1 个制表符
- 引用: 任意不紧跟 `:` 的 `[^ref]`
"""

import re
from typing import Iterable, Optional

from .models import FootnoteDefinition, FootnoteReference, ParsedFootnotes

DEFINITION_PATTERN = re.compile(
    r'^[ \t]*\[\^([^\]]+?)\]:[ \t]*(.*(?:\n(?:[ ]{2,}|\t).*)*)',
    re.MULTILINE,
)
REFERENCE_PATTERN = re.compile(r'\[\^([^\]]+?)\](?!:)')

_CONTINUATION_INDENT = re.compile(r'\n(?:[ ]{2,}|\t)')
_NUMBER_CHUNK = re.compile(r'(\d+)')

# 输出多行定义时使用的续行缩进
CONTINUATION_INDENT = "    "


def clean_body(raw: str) -> str:
    """去掉续行缩进并裁剪首尾空白"""
    return _CONTINUATION_INDENT.sub('\n', raw).strip()


def parse_definitions(text: str) -> list[FootnoteDefinition]:
    definitions = []
    for match in DEFINITION_PATTERN.finditer(text):
        ref = match.group(1).strip()
        if not ref:
            continue
        definitions.append(FootnoteDefinition(
            ref=ref,
            body=clean_body(match.group(2)),
            span=(match.start(), match.end()),
        ))
    return definitions


def parse_references(text: str) -> list[FootnoteReference]:
    references = []
    for match in REFERENCE_PATTERN.finditer(text):
        ref = match.group(1).strip()
        if ref:
            references.append(FootnoteReference(ref=ref, span=(match.start(), match.end())))
    return references


def parse(text: str) -> ParsedFootnotes:
    """
    解析文本中的脚注定义和引用

    Args:
        text: 文档全文

    Returns:
        ParsedFootnotes，没有匹配时两个列表都为空

    Example:
        >>> parsed = parse("See [^1].\\n\\n[^1]: alpha")
        >>> parsed.definition_map()
        {'1': 'alpha'}
    """
    if not text:
        return ParsedFootnotes()
    return ParsedFootnotes(
        definitions=parse_definitions(text),
        references=parse_references(text),
    )


def reference_pattern(refs: Iterable[str]) -> Optional[re.Pattern]:
    """
    构造匹配指定 ref 引用的正则（ref 按字面量转义）

    Returns:
        编译后的正则，refs 为空时返回 None
    """
    escaped = [re.escape(ref) for ref in sorted(set(refs), key=len, reverse=True)]
    if not escaped:
        return None
    return re.compile(r'\[\^[ \t]*(?:' + '|'.join(escaped) + r')[ \t]*\](?!:)')


def find_first_reference(text: str, ref: str) -> Optional[tuple[int, int, int]]:
    """
    查找 ref 在正文中的第一次引用

    Returns:
        (start, end, line) 偏移与 0 起始行号，找不到时返回 None
    """
    pattern = reference_pattern([ref])
    match = pattern.search(text) if pattern else None
    if match is None:
        return None
    line = text.count('\n', 0, match.start())
    return match.start(), match.end(), line


def format_definition(ref: str, body: str) -> str:
    """渲染单条定义，多行正文的续行加缩进以便重新解析"""
    lines = body.split('\n')
    rendered = f"[^{ref}]: {lines[0]}".rstrip()
    for line in lines[1:]:
        rendered += "\n" + CONTINUATION_INDENT + line
    return rendered


def natural_sort_key(ref: str) -> tuple:
    """数字感知、大小写不敏感的排序键（"2" < "10"，"cue2" < "cue10"）"""
    chunks = []
    for chunk in _NUMBER_CHUNK.split(ref):
        if not chunk:
            continue
        if _NUMBER_CHUNK.fullmatch(chunk):
            chunks.append((0, int(chunk), ""))
        else:
            chunks.append((1, 0, chunk.casefold()))
    return tuple(chunks), ref


def sort_refs(refs: Iterable[str]) -> list[str]:
    return sorted(refs, key=natural_sort_key)


def next_cue_ref(existing_refs: Iterable[str], prefix: str) -> str:
    """
    生成下一个可用的 Cue 脚注标识

    取 `prefix<数字>` 形式的已有标识中最大的数字加一。

    Example:
        >>> next_cue_ref(["cue1", "cue7", "note"], "cue")
        'cue8'
    """
    pattern = re.compile(r'^' + re.escape(prefix) + r'(\d+)$')
    highest = 0
    for ref in existing_refs:
        match = pattern.match(ref)
        if match:
            highest = max(highest, int(match.group(1)))
    return f"{prefix}{highest + 1}"
