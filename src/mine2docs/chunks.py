"""コンテンツツリーを公開単位 (チャンク) にまとめるユーティリティ。"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterator

from .config import ChunkConfig
from .entity import EntityKind, EntityTable, MediaRef
from .markdown import ReferenceRewriter, rewrite_headings, strip_headings
from .tree import ContentTree, TreeNode


@dataclass(slots=True)
class RenderedChunk:
    """変換済みのチャンク 1 件。"""

    node: int
    key: str
    label: str
    depth: int
    members: tuple[str, ...]
    text: str
    title: str | None = None
    refs: dict[str, MediaRef] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        return {
            "key": self.key,
            "label": self.label,
            "title": self.title,
            "depth": self.depth,
            "members": list(self.members),
            "markdown": self.text,
            "media": sorted(self.refs),
        }


class ChunkAssembler:
    """グループの種まき、葉の集約、空ノードの刈り込みを行います。"""

    def __init__(self, table: EntityTable, config: ChunkConfig | None = None) -> None:
        self._table = table
        self._config = config or ChunkConfig()
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def assemble(self, tree: ContentTree) -> ContentTree:
        """チャンクを付与し、空の枝を刈り込んだツリーの複製を返します。"""

        tree = tree.copy()
        covered = self._seed_groups(tree)
        self._attach_bodies(tree, covered)
        self._bubble_up(tree)
        removed = self._prune(tree)
        self._logger.info(
            "チャンクを組み立てました (ノード %d 件、刈り込み %d 件)。", len(tree), removed
        )
        return tree

    def chunks(self, tree: ContentTree, rewriter: ReferenceRewriter) -> list[RenderedChunk]:
        """文書順にチャンクを変換し、メタデータ付きで返します。"""

        return list(self._render(tree, rewriter))

    def bodies(
        self, tree: ContentTree, rewriter: ReferenceRewriter
    ) -> tuple[list[str], dict[str, MediaRef]]:
        """文書順の変換済みチャンク本文と、参照されたメディアの和集合を返します。"""

        texts: list[str] = []
        media: dict[str, MediaRef] = {}
        for chunk in self._render(tree, rewriter):
            texts.append(chunk.text)
            media.update(chunk.refs)
        return texts, media

    # Helpers ----------------------------------------------------------

    def _seed_groups(self, tree: ContentTree) -> set[str]:
        covered: set[str] = set()
        for group in self._table.groups():
            covered.add(group.key)
            covered.update(self._table.members(group.key))
        for node in tree.walk():
            if tree.entity(node).is_group:
                keys = [node.key, *self._table.members(node.key)]
                node.chunk = list(dict.fromkeys(keys))
        return covered

    def _attach_bodies(self, tree: ContentTree, covered: set[str]) -> None:
        doomed: list[TreeNode] = []
        for node in tree.walk():
            entity = tree.entity(node)
            if entity.is_group:
                continue
            if node.key not in covered and entity.has_body:
                node.chunk = [node.key]
            if not node.children and not node.chunk and node.parent is not None:
                doomed.append(node)
        for node in doomed:
            tree.detach(node)

    def _bubble_up(self, tree: ContentTree) -> None:
        for node in list(tree.walk()):
            parent = tree.parent(node)
            if parent is None or node.children or not node.chunk:
                continue
            entity = tree.entity(node)
            if entity.kind is not EntityKind.ITEM or entity.is_group:
                continue
            parent_entity = tree.entity(parent)
            if parent_entity.kind is not EntityKind.CONTAINER or parent_entity.is_group:
                continue
            parent.chunk.extend(node.chunk)
            node.chunk = []

    def _prune(self, tree: ContentTree) -> int:
        total = 0
        while True:
            empty = [
                node
                for node in tree.walk()
                if node.parent is not None and not node.children and not node.chunk
            ]
            if not empty:
                return total
            for node in empty:
                tree.detach(node)
            total += len(empty)

    def _render(self, tree: ContentTree, rewriter: ReferenceRewriter) -> Iterator[RenderedChunk]:
        for node in tree.walk():
            entity = tree.entity(node)
            depth = tree.depth(node)
            if node.chunk:
                raw = self._table.concat_bodies(node.chunk)
                rewritten, refs = rewriter.rewrite(raw)
                text = rewrite_headings(rewritten, depth, entity.label)
                if not self._allow(text):
                    self._logger.debug("短すぎるチャンクを除外しました: %s", node.key)
                    continue
            elif node.children and self._config.container_headings and entity.kind is EntityKind.CONTAINER:
                text = rewrite_headings("", depth, entity.label)
                refs = {}
            else:
                continue
            node.refs = refs
            yield RenderedChunk(
                node=node.index,
                key=node.key,
                label=entity.label,
                depth=depth,
                members=tuple(node.chunk),
                text=text,
                title=node.title,
                refs=dict(refs),
            )

    def _allow(self, text: str) -> bool:
        if self._config.min_length <= 0:
            return bool(text.strip())
        return len(strip_headings(text).strip()) > self._config.min_length
