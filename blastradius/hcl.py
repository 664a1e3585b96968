"""Resource mention scanning for HCL embedded in Go string literals."""

from __future__ import annotations

import re
from functools import lru_cache
from typing import List, NamedTuple, Pattern, Tuple

_ESCAPES = {"n": "\n", "t": "\t", '"': '"', "\\": "\\", "r": "\r"}
_ESCAPE_RE = re.compile(r"\\(.)")


class Mention(NamedTuple):
    resource: str
    style: str
    context: str
    line: int


def unquote_go_string(literal: str) -> Tuple[str, bool]:
    """Strip quotes from a Go string literal.

    Returns the content and whether the literal was a raw (backtick) string,
    whose newlines map one-to-one onto source lines.
    """
    if len(literal) >= 2 and literal[0] == "`" and literal[-1] == "`":
        return literal[1:-1], True
    if len(literal) >= 2 and literal[0] == '"' and literal[-1] == '"':
        body = literal[1:-1]
        return _ESCAPE_RE.sub(lambda m: _ESCAPES.get(m.group(1), m.group(0)), body), False
    return literal, False


@lru_cache(maxsize=8)
def _patterns(prefix: str) -> Tuple[Pattern[str], Pattern[str]]:
    p = re.escape(prefix)
    block = re.compile(rf'^(?:resource|data)\s+"({p}\w+)"')
    attribute = re.compile(rf"(?<![\w.])(?:data\.)?({p}\w+)\.[A-Za-z_]")
    return block, attribute


def scan_text(text: str, prefix: str, first_line: int = 1, raw: bool = True) -> List[Mention]:
    """Find resource blocks and attribute references in *text*.

    ``first_line`` is the source line where the text starts. For non-raw
    strings every mention is reported on that line.
    """
    block_re, attribute_re = _patterns(prefix)
    mentions: List[Mention] = []
    seen = set()

    for offset, line in enumerate(text.split("\n")):
        trimmed = line.strip()
        if not trimmed or prefix not in trimmed:
            continue
        source_line = first_line + offset if raw else first_line

        blocks = set()
        match = block_re.match(trimmed)
        if match:
            blocks.add(match.group(1))
            key = (match.group(1), "RESOURCE_BLOCK", source_line)
            if key not in seen:
                seen.add(key)
                mentions.append(Mention(match.group(1), "RESOURCE_BLOCK", trimmed, source_line))

        for attr in attribute_re.finditer(trimmed):
            resource = attr.group(1)
            if resource in blocks:
                continue
            key = (resource, "ATTRIBUTE_REFERENCE", source_line)
            if key not in seen:
                seen.add(key)
                mentions.append(Mention(resource, "ATTRIBUTE_REFERENCE", trimmed, source_line))

    return mentions


def scan_literal(literal: str, prefix: str, start_line: int) -> List[Mention]:
    """Scan one Go string literal (quotes included) starting at *start_line*."""
    text, raw = unquote_go_string(literal)
    return scan_text(text, prefix, first_line=start_line, raw=raw)
