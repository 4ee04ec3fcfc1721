"""チャンク本文に適用する Markdown 変換 (見出しの再正規化と内部参照の書き換え)。"""

from __future__ import annotations

import base64
import re
from typing import Callable, Mapping

from .config import RenderMode
from .entity import EntityTable, MediaRef
from .headings import MAX_HEADING, code_mask, find_headings

UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)
LINK_RE = re.compile(
    r"(?P<image>!?)\[(?P<text>[^\]]*)\]\((?P<target>[^)\s]+)(?P<title>\s+\"[^\"]*\")?\)"
)

LinkFormatter = Callable[[str, str], str]


def strip_headings(markdown: str) -> str:
    lines = markdown.split("\n")
    skip = {index for index, _, _ in find_headings(markdown)}
    return "\n".join(line for index, line in enumerate(lines) if index not in skip)


def rewrite_headings(markdown: str, depth: int, label: str | None = None) -> str:
    """見出しレベルをツリー上の深さに合わせて書き換えます。

    最初の見出しを `depth` とした相対レベルに変換し、`[depth, 6]` に収めたうえで、
    直前の見出しより 2 段以上深くならないよう制限します。見出しが 1 つもない場合は
    `label` を使った見出しを先頭に追加します。
    """

    depth = max(1, min(depth, MAX_HEADING))
    headings = find_headings(markdown)
    if not headings:
        if label is None:
            return markdown
        if not markdown.strip():
            return f"{'#' * depth} {label}\n"
        return f"{'#' * depth} {label}\n\n{markdown}"

    first = headings[0][1]
    previous = depth
    lines = markdown.split("\n")
    for index, level, text in headings:
        new_level = min(max(level - first + depth, depth), MAX_HEADING)
        if new_level > previous + 1:
            new_level = previous + 1
        previous = new_level
        lines[index] = f"{'#' * new_level} {text}"
    return "\n".join(lines)


def reference_key(target: str) -> str | None:
    """リンク先が UUID 形式のトークンであればそのキーを返します。"""

    if target.startswith("./"):
        candidate = target[2:]
    elif target.startswith("/"):
        candidate = target[1:]
    else:
        candidate = target
    return candidate if UUID_RE.match(candidate) else None


class ReferenceRewriter:
    """UUID 形式のリンク・画像参照を出力形式に応じて書き換えます。"""

    def __init__(
        self,
        table: EntityTable,
        mode: RenderMode = RenderMode.SINGLE_DOCUMENT,
        *,
        inline_images: bool = False,
        wiki_lookup: Mapping[str, str] | None = None,
        link_formatter: LinkFormatter | None = None,
    ) -> None:
        self._table = table
        self._mode = mode
        self._inline_images = inline_images
        self._wiki_lookup = wiki_lookup or {}
        self._link_formatter = link_formatter

    def rewrite(self, markdown: str) -> tuple[str, dict[str, MediaRef]]:
        """書き換え後の本文と、参照された画像メディアの一覧を返します。"""

        refs: dict[str, MediaRef] = {}

        def substitute(match: re.Match[str]) -> str:
            key = reference_key(match.group("target"))
            if key is None or key not in self._table:
                return match.group(0)
            text = match.group("text")
            title = match.group("title") or ""
            if match.group("image"):
                media = self._table[key].media
                if media is None:
                    return match.group(0)
                refs[key] = media
                return f"![{text}]({self._image_url(key, media)}{title})"
            replacement = self._link(key, text, title)
            return match.group(0) if replacement is None else replacement

        lines = markdown.split("\n")
        for index, (line, in_code) in enumerate(zip(lines, code_mask(lines))):
            if not in_code:
                lines[index] = LINK_RE.sub(substitute, line)
        return "\n".join(lines), refs

    # Helpers ----------------------------------------------------------

    def _link(self, key: str, text: str, title: str) -> str | None:
        if self._link_formatter is not None:
            return self._link_formatter(key, text)
        if self._mode is RenderMode.SINGLE_DOCUMENT:
            return f"[{text}](#{key}{title})"
        if self._mode is RenderMode.MULTI_PAGE:
            if not text:
                return None
            return f'<Link to="/{key}">{text}</Link>'
        url = self._wiki_lookup.get(key)
        if url is None:
            return None
        return f"[{text}]({url}{title})"

    def _image_url(self, key: str, media: MediaRef) -> str:
        if not self._inline_images:
            return f"./{key}{media.suffix}"
        encoded = base64.b64encode(media.resolved_path.read_bytes()).decode("ascii")
        return f"data:{media.mime_type.split(';')[0]};base64,{encoded}"
