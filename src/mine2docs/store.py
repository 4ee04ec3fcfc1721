"""グラフストアと走査アダプタ。

実運用ではグラフデータベースが担う「頂点の保存」「辺の保存」「ルートからの
経路列挙」を、`networkx.DiGraph` 上のインメモリ実装として提供します。
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator, Iterable, Mapping, Protocol, Sequence

import networkx as nx

from .config import MISSING_ORDER, AttributeFilter
from .entity import GROUP_FIELD, derive_label

logger = logging.getLogger(__name__)

KeyPath = list[str]


class EdgeWriteError(RuntimeError):
    """辺の書き込みに失敗した際に送出される例外。"""

    def __init__(self, *, from_key: str, to_key: str, reason: str) -> None:
        self.from_key = from_key
        self.to_key = to_key
        self.reason = reason
        super().__init__(f"{from_key} から {to_key} へのリンクに失敗しました: {reason}")


class GraphTraversal(Protocol):
    """コンパイラが必要とする走査インターフェース。"""

    def traverse(
        self,
        root_key: str,
        max_depth: int,
        filters: Sequence[AttributeFilter] = (),
        *,
        prune_groups: bool = False,
    ) -> AsyncIterator[KeyPath]: ...

    def vertices(
        self, root_key: str, filters: Sequence[AttributeFilter] = ()
    ) -> AsyncIterator[dict[str, Any]]: ...


@dataclass(slots=True)
class DepositReport:
    vertices: int = 0
    edges: int = 0
    failed_edges: list[tuple[str, str, str]] = field(default_factory=list)


class NetworkxGraphStore:
    """`networkx` を用いたインメモリのグラフストア。"""

    def __init__(self, missing_order: int = MISSING_ORDER) -> None:
        self._graph = nx.DiGraph()
        self._missing_order = missing_order

    def add_vertex(self, document: Mapping[str, Any]) -> str:
        key = document.get("_key")
        if not key:
            raise ValueError("頂点文書に _key 属性がありません。")
        self._graph.add_node(str(key), document=dict(document))
        return str(key)

    def add_edge(self, from_key: str, to_key: str) -> None:
        for key in (from_key, to_key):
            if key not in self._graph:
                raise EdgeWriteError(from_key=from_key, to_key=to_key, reason=f"頂点 {key} が存在しません")
        if self._graph.has_edge(from_key, to_key):
            raise EdgeWriteError(from_key=from_key, to_key=to_key, reason="辺が既に存在します")
        self._graph.add_edge(from_key, to_key)

    def has_edge(self, from_key: str, to_key: str) -> bool:
        return self._graph.has_edge(from_key, to_key)

    def document(self, key: str) -> dict[str, Any]:
        return self._graph.nodes[key]["document"]

    async def traverse(
        self,
        root_key: str,
        max_depth: int = 10000,
        filters: Sequence[AttributeFilter] = (),
        *,
        prune_groups: bool = False,
    ) -> AsyncIterator[KeyPath]:
        """ルートから各頂点への経路を深さ優先 (兄弟は order → label 順) で列挙します。"""

        if root_key not in self._graph:
            raise LookupError(f"ルート頂点 {root_key} が存在しません。")
        stack: list[KeyPath] = [[root_key]]
        while stack:
            path = stack.pop()
            yield list(path)
            current = path[-1]
            if len(path) - 1 >= max_depth:
                continue
            if prune_groups and self.document(current).get(GROUP_FIELD):
                continue
            children = [
                child
                for child in self._ordered_successors(current)
                if child not in path and self._accepts(child, filters)
            ]
            stack.extend([*path, child] for child in reversed(children))

    async def vertices(
        self, root_key: str, filters: Sequence[AttributeFilter] = ()
    ) -> AsyncIterator[dict[str, Any]]:
        """ルートから到達可能な頂点を重複なしで返します。"""

        if root_key not in self._graph:
            raise LookupError(f"ルート頂点 {root_key} が存在しません。")
        seen: set[str] = {root_key}
        stack = [root_key]
        while stack:
            key = stack.pop()
            yield dict(self.document(key))
            children = [
                child
                for child in self._ordered_successors(key)
                if child not in seen and self._accepts(child, filters)
            ]
            seen.update(children)
            stack.extend(reversed(children))

    # Helpers ----------------------------------------------------------

    def _ordered_successors(self, key: str) -> list[str]:
        return sorted(self._graph.successors(key), key=self._sibling_key)

    def _sibling_key(self, key: str) -> tuple[Any, str]:
        document = self.document(key)
        order = document.get("order")
        label = derive_label(document.get("label"), document.get("body"), key)
        return (self._missing_order if order is None else order, label)

    def _accepts(self, key: str, filters: Sequence[AttributeFilter]) -> bool:
        document = self.document(key)
        return all(item.matches(document) for item in filters)


def deposit(
    store: NetworkxGraphStore,
    documents: Iterable[Mapping[str, Any]],
    edges: Iterable[tuple[str, str]],
) -> DepositReport:
    """頂点と辺をストアへ書き込みます。

    辺の書き込み失敗は 1 件ずつ記録し、残りの書き込みは継続します。
    グループのメンバーは グループ → m1 → m2 ... の鎖として連結されます。
    """

    report = DepositReport()
    stored: list[Mapping[str, Any]] = []
    for document in documents:
        store.add_vertex(document)
        stored.append(document)
        report.vertices += 1
    logger.info("頂点を %d 件登録しました。", report.vertices)

    for from_key, to_key in edges:
        _write_edge(store, report, from_key, to_key)

    for document in stored:
        members = document.get(GROUP_FIELD) or ()
        current = str(document["_key"])
        for member in members:
            if store.has_edge(current, member):
                current = member
                continue
            if _write_edge(store, report, current, member):
                current = member
    if report.failed_edges:
        logger.warning("リンクに失敗した辺が %d 件あります。", len(report.failed_edges))
    return report


def _write_edge(store: NetworkxGraphStore, report: DepositReport, from_key: str, to_key: str) -> bool:
    try:
        store.add_edge(from_key, to_key)
    except EdgeWriteError as exc:
        logger.error("%s", exc)
        report.failed_edges.append((from_key, to_key, exc.reason))
        return False
    report.edges += 1
    logger.info("%s から %s へリンクしました。", from_key, to_key)
    return True


def load_graph_dump(path: Path) -> tuple[list[dict[str, Any]], list[tuple[str, str]]]:
    """`{"vertices": [...], "edges": [[from, to], ...]}` 形式の JSON を読み込みます。"""

    payload = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError("グラフダンプは JSON オブジェクトである必要があります。")
    vertices = payload.get("vertices") or []
    raw_edges = payload.get("edges") or []
    if not isinstance(vertices, list) or not all(isinstance(item, dict) for item in vertices):
        raise ValueError("vertices は文書オブジェクトの配列である必要があります。")
    edges: list[tuple[str, str]] = []
    for item in raw_edges:
        if not isinstance(item, (list, tuple)) or len(item) != 2:
            raise ValueError(f"辺は [from, to] の形式で指定してください: {item!r}")
        edges.append((str(item[0]), str(item[1])))
    return vertices, edges
