"""Markdown の見出し行とフェンス付きコードブロックの検出。"""

from __future__ import annotations

import re

MAX_HEADING = 6
HEADING_RE = re.compile(r"^(#{1,6})\s+(.+)$")
FENCE_RE = re.compile(r"^\s*(```|~~~)")


def code_mask(lines: list[str]) -> list[bool]:
    """各行がフェンス付きコードブロック内かどうかを返します。"""

    mask: list[bool] = []
    fence: str | None = None
    for line in lines:
        match = FENCE_RE.match(line)
        if fence is None:
            if match:
                fence = match.group(1)
                mask.append(True)
                continue
            mask.append(False)
        else:
            mask.append(True)
            if match and match.group(1) == fence:
                fence = None
    return mask


def find_headings(markdown: str) -> list[tuple[int, int, str]]:
    """(行番号, 見出しレベル, 見出し文) の一覧を返します。コードブロック内は対象外です。"""

    lines = markdown.split("\n")
    headings: list[tuple[int, int, str]] = []
    for index, (line, in_code) in enumerate(zip(lines, code_mask(lines))):
        if in_code:
            continue
        match = HEADING_RE.match(line)
        if match:
            headings.append((index, len(match.group(1)), match.group(2)))
    return headings
