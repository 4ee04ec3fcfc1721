"""抽出結果を成果物ファイル (単一 Markdown・ページ一覧・コーパス) へ書き出すユーティリティ。"""

from __future__ import annotations

import json
import shutil
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import Mapping, Sequence

import yaml

from .chunks import RenderedChunk
from .entity import MediaRef
from .tree import ContentTree

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S%z"


def build_markdown(
    title: str,
    texts: Sequence[str],
    media: Mapping[str, MediaRef],
    created_at: datetime,
) -> str:
    """文書順のチャンク本文を 1 つの Markdown ドキュメントへまとめます。"""

    frontmatter = {
        "title": title,
        "created_at": created_at.strftime(ISO_FORMAT),
        "chunks": len(texts),
        "media": [f"{key}{ref.suffix}" for key, ref in sorted(media.items())],
    }
    header = yaml.safe_dump(frontmatter, allow_unicode=True, sort_keys=False)
    body = "\n\n".join(text.strip("\n") for text in texts if text.strip())
    return f"---\n{header}---\n\n{body}\n"


def write_markdown(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def copy_media(directory: Path, media: Mapping[str, MediaRef]) -> list[Path]:
    """参照されたメディアを `<key><拡張子>` の名前で出力先へ複製します。"""

    directory.mkdir(parents=True, exist_ok=True)
    copied: list[Path] = []
    for key, ref in sorted(media.items()):
        target = directory / f"{key}{ref.suffix}"
        shutil.copyfile(ref.resolved_path, target)
        copied.append(target)
    return copied


@dataclass(slots=True)
class PageEntry:
    key: str
    title: str
    label: str
    path: list[str]
    members: list[str]


@dataclass(slots=True)
class PageManifest:
    pages: list[PageEntry]
    created_at: str

    def to_json(self) -> str:
        return json.dumps(
            {"created_at": self.created_at, "pages": [asdict(page) for page in self.pages]},
            ensure_ascii=False,
            indent=2,
        )


def build_page_manifest(tree: ContentTree, created_at: datetime) -> PageManifest:
    entries: list[PageEntry] = []
    for node in tree.walk():
        if not node.title:
            continue
        entries.append(
            PageEntry(
                key=node.key,
                title=node.title,
                label=tree.entity(node).label,
                path=[ancestor.key for ancestor in tree.path(node)],
                members=list(node.chunk),
            )
        )
    return PageManifest(pages=entries, created_at=created_at.strftime(ISO_FORMAT))


def write_page_manifest(path: Path, manifest: PageManifest) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(manifest.to_json(), encoding="utf-8")


def write_corpus(path: Path, chunks: Sequence[RenderedChunk]) -> None:
    """チャンクを 1 行 1 件の JSON Lines として書き出します。"""

    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as stream:
        for chunk in chunks:
            stream.write(json.dumps(chunk.to_dict(), ensure_ascii=False))
            stream.write("\n")
