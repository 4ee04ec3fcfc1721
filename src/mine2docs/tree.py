"""経路集合からコンテンツツリーを組み立てるユーティリティ。

ツリーはノードの配列 (アリーナ) と親子のインデックスで表現します。
同じエンティティが複数の経路から到達される場合は、経路ごとに別ノードになります。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Iterable, Iterator, Sequence

from .entity import ContentEntity, EntityTable, MediaRef, compare_entities

logger = logging.getLogger(__name__)


class DanglingReferenceError(RuntimeError):
    """経路がエンティティ表に存在しないキーを参照している場合に送出される例外。"""

    def __init__(self, *, key: str, path: Sequence[str]) -> None:
        self.key = key
        self.path: tuple[str, ...] = tuple(path)
        super().__init__(f"エンティティ表に存在しないキーが参照されています: {key} (経路: {'|'.join(self.path)})")


@dataclass(slots=True)
class TreeNode:
    """1 つのエンティティを包むツリーノード。chunk/title/refs は抽出 1 回限りの状態です。"""

    index: int
    key: str
    parent: int | None = None
    children: list[int] = field(default_factory=list)
    chunk: list[str] = field(default_factory=list)
    title: str | None = None
    refs: dict[str, MediaRef] = field(default_factory=dict)


class ContentTree:
    def __init__(self, table: EntityTable) -> None:
        if table.root_key not in table:
            raise DanglingReferenceError(key=table.root_key, path=(table.root_key,))
        self.table = table
        self._nodes: list[TreeNode] = [TreeNode(index=0, key=table.root_key)]

    @property
    def root(self) -> TreeNode:
        return self._nodes[0]

    def __len__(self) -> int:
        return sum(1 for _ in self.walk())

    def entity(self, node: TreeNode) -> ContentEntity:
        return self.table[node.key]

    def children(self, node: TreeNode) -> list[TreeNode]:
        return [self._nodes[index] for index in node.children]

    def parent(self, node: TreeNode) -> TreeNode | None:
        return None if node.parent is None else self._nodes[node.parent]

    def path(self, node: TreeNode) -> list[TreeNode]:
        """ルートからノードまでのノード列を返します。"""

        lineage = [node]
        while lineage[-1].parent is not None:
            lineage.append(self._nodes[lineage[-1].parent])
        return lineage[::-1]

    def depth(self, node: TreeNode) -> int:
        return len(self.path(node))

    def walk(self, start: TreeNode | None = None) -> Iterator[TreeNode]:
        """前順 (親が先、兄弟は並び順) でノードを辿ります。"""

        stack = [start or self.root]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(self._nodes[index] for index in reversed(node.children))

    def find_child(self, node: TreeNode, key: str) -> TreeNode | None:
        for index in node.children:
            if self._nodes[index].key == key:
                return self._nodes[index]
        return None

    def add_child(self, parent: TreeNode, key: str) -> TreeNode:
        """比較関数の順序を保つ位置に子ノードを挿入します。"""

        child = TreeNode(index=len(self._nodes), key=key, parent=parent.index)
        self._nodes.append(child)
        entity = self.table[key]
        position = len(parent.children)
        for offset, index in enumerate(parent.children):
            if compare_entities(entity, self.table[self._nodes[index].key]) < 0:
                position = offset
                break
        parent.children.insert(position, child.index)
        return child

    def detach(self, node: TreeNode) -> None:
        if node.parent is None:
            raise ValueError("ルートノードは切り離せません。")
        self._nodes[node.parent].children.remove(node.index)
        node.parent = None

    def copy(self) -> "ContentTree":
        clone = ContentTree.__new__(ContentTree)
        clone.table = self.table
        clone._nodes = [
            replace(node, children=list(node.children), chunk=list(node.chunk), refs=dict(node.refs))
            for node in self._nodes
        ]
        return clone

    def outline(self, node: TreeNode | None = None) -> tuple[str, tuple[Any, ...]]:
        """構造比較用に (キー, 子のアウトライン) の入れ子タプルを返します。"""

        node = node or self.root
        outlines: dict[int, tuple[str, tuple[Any, ...]]] = {}
        for current in reversed(list(self.walk(node))):
            outlines[current.index] = (current.key, tuple(outlines[index] for index in current.children))
        return outlines[node.index]


def materialize(paths: Iterable[Sequence[str]], table: EntityTable) -> ContentTree:
    """ルートからの経路を順に畳み込み、コンテンツツリーを構築します。

    各階層では現在ノードの直接の子だけを探索し、一致するキーがあれば再利用、
    なければエンティティ表から新しいノードを作成します。表に存在しないキーは
    上流の走査とフィルタの不整合を意味するため、処理を中断します。
    """

    tree = ContentTree(table)
    count = 0
    for path in paths:
        count += 1
        if not path or path[0] != table.root_key:
            logger.error("経路がルート %s から始まっていません: %s", table.root_key, "|".join(path))
            raise DanglingReferenceError(key=path[0] if path else "", path=path)
        current = tree.root
        for key in path[1:]:
            child = tree.find_child(current, key)
            if child is None:
                if key not in table:
                    logger.error("存在しないエンティティ %s を参照する経路があります: %s", key, "|".join(path))
                    raise DanglingReferenceError(key=key, path=path)
                child = tree.add_child(current, key)
            current = child
    logger.info("経路 %d 件からツリーを構築しました (ノード %d 件)。", count, len(tree))
    return tree
