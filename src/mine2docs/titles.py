"""ページタイトルの重複解消ユーティリティ。"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Callable

from .entity import EntityTable
from .tree import ContentTree, TreeNode

logger = logging.getLogger(__name__)

PagePredicate = Callable[[ContentTree, TreeNode], bool]


def needs_page(tree: ContentTree, node: TreeNode) -> bool:
    """単独ページとして出力される (チャンクまたは本文を持つ) ノードかどうか。"""

    return bool(node.chunk) or tree.entity(node).has_body


def has_chunk(tree: ContentTree, node: TreeNode) -> bool:
    """組み立て済みツリー用の判定。チャンクを持つノードだけがページになります。"""

    return bool(node.chunk)


def resolve_titles(
    table: EntityTable,
    tree: ContentTree,
    *,
    separator: str = " / ",
    qualifies: PagePredicate | None = None,
) -> int:
    """ページを持つノードに一意で読みやすいタイトルを割り当てます。

    ルートを除いた経路ラベルの末尾 `slice_size` 個を候補とし、候補が 1 ノードに
    しか対応しなければ確定します。衝突したノードだけを対象に `slice_size` を
    広げて繰り返し、経路全体でも区別できないノード群 (ラベル列が完全に一致する
    もの) には同じタイトルを割り当てます。割り当てたノード数を返します。

    候補はラベル列そのもので比較します。ラベルが区切り文字を含むために異なる
    ラベル列が同じ文字列になる場合は、広げられる限り広げ、経路全体まで
    使い切ったときは ` (2)` のような番号を付けて区別します。
    """

    predicate = qualifies or needs_page
    pending = [
        node
        for node in tree.walk()
        if node.parent is not None and not node.title and predicate(tree, node)
    ]
    lineages = {
        node.index: tuple(table[ancestor.key].label for ancestor in tree.path(node)[1:])
        for node in pending
    }
    taken = {node.title for node in tree.walk() if node.title}
    titled = 0
    duplicates = 0
    slice_size = 1
    while pending:
        buckets: dict[tuple[str, ...], list[TreeNode]] = defaultdict(list)
        for node in pending:
            buckets[lineages[node.index][-slice_size:]].append(node)
        remaining: list[TreeNode] = []
        for labels, nodes in buckets.items():
            candidate = separator.join(labels)
            if len(nodes) > 1 or candidate in taken:
                if any(len(lineages[node.index]) > slice_size for node in nodes):
                    remaining.extend(nodes)
                    continue
                if candidate in taken:
                    candidate = _numbered(candidate, taken)
                    logger.info("区切り文字を含むラベルと衝突したため番号を付けました: %s", candidate)
            taken.add(candidate)
            for node in nodes:
                node.title = candidate
            titled += len(nodes)
            if len(nodes) > 1:
                duplicates += len(nodes)
                logger.info("同一経路のため重複タイトルを割り当てました: %s (%d 件)", candidate, len(nodes))
        pending = remaining
        slice_size += 1
    logger.info("タイトルを %d 件割り当てました (重複 %d 件)。", titled, duplicates)
    return titled


def _numbered(candidate: str, taken: set[str]) -> str:
    counter = 2
    while f"{candidate} ({counter})" in taken:
        counter += 1
    return f"{candidate} ({counter})"
