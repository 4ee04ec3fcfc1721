"""サイドバー用ナビゲーションマップの生成ユーティリティ。"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Sequence

from .config import NavigationConfig
from .entity import ContentEntity, EntityTable
from .tree import DanglingReferenceError

SEPARATOR = "|"


@dataclass(slots=True)
class NavNode:
    """経路連結キーで識別されるナビゲーションノード。"""

    node_id: str
    entity_key: str
    label: str
    kind: str
    is_group: bool
    children: dict[str, "NavNode"] = field(default_factory=dict)
    is_open: bool = True


@dataclass(slots=True)
class NavigationMap:
    """ツリービューが読み込む成果物 (`initialData` と `initialOpenState`)。"""

    initial_data: list[dict[str, Any]]
    initial_open_state: dict[str, bool]

    def to_dict(self) -> dict[str, Any]:
        return {
            "initialData": self.initial_data,
            "initialOpenState": self.initial_open_state,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, indent=2)


def write_navigation(path: Path, navigation: NavigationMap) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(navigation.to_json(), encoding="utf-8")


class NavigationMapBuilder:
    """走査経路から重複を除いたナビゲーションツリーを組み立てます。

    同じエンティティでも経路が異なれば別ノードになるよう、経路上のキーを連結した
    文字列をノード ID とします。グループに属するアイテムは、グループの外側に
    現れる位置から取り除かれます。
    """

    def __init__(self, table: EntityTable, config: NavigationConfig | None = None) -> None:
        self._table = table
        self._config = config or NavigationConfig()
        self._roots: dict[str, NavNode] = {}
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def add_path(self, path: Sequence[str]) -> None:
        level = self._roots
        node_id = ""
        for key in path:
            node_id = f"{node_id}{SEPARATOR}{key}"
            node = level.get(node_id)
            if node is None:
                entity = self._entity(key, path)
                node = NavNode(
                    node_id=node_id,
                    entity_key=key,
                    label=entity.label,
                    kind=entity.kind.value,
                    is_group=entity.is_group,
                )
                level[node_id] = node
            level = node.children

    def build(self, paths: Iterable[Sequence[str]] = ()) -> NavigationMap:
        for path in paths:
            self.add_path(path)
        removed = self._dedup_group_members()
        self._assign_open_state()
        open_state: dict[str, bool] = {}
        data = self._to_array(open_state)
        self._logger.info(
            "ナビゲーションマップを生成しました (ノード %d 件、グループ重複の除去 %d 件)。",
            len(open_state),
            removed,
        )
        return NavigationMap(initial_data=data, initial_open_state=open_state)

    def collect_members(self, group_key: str) -> set[str]:
        """グループに属するアイテムのキーを入れ子のグループも含めて収集します。

        他のグループの先頭 (自身がグループであるアイテム) はその配下のみを辿り、
        先頭自体は含めません。
        """

        seen = {group_key}
        stack = [group_key]
        collected: set[str] = set()
        while stack:
            for member in self._table.declared_members(stack.pop()):
                entity = self._table.get(member)
                if entity is not None and entity.is_group:
                    if member not in seen:
                        seen.add(member)
                        stack.append(member)
                    continue
                collected.add(member)
        return collected

    # Helpers ----------------------------------------------------------

    def _entity(self, key: str, path: Sequence[str]) -> ContentEntity:
        entity = self._table.get(key)
        if entity is None:
            self._logger.error("存在しないエンティティ %s を参照する経路があります。", key)
            raise DanglingReferenceError(key=key, path=path)
        return entity

    def _iter_nodes(self) -> Iterable[NavNode]:
        stack = list(reversed(self._roots.values()))
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children.values()))

    def _dedup_group_members(self) -> int:
        owners: dict[str, set[str]] = {}
        visited: set[str] = set()
        for node in self._iter_nodes():
            if not node.is_group or node.entity_key in visited:
                continue
            visited.add(node.entity_key)
            for member in self.collect_members(node.entity_key):
                owners.setdefault(member, set()).add(node.entity_key)
        if not owners:
            return 0
        return self._prune_members(owners)

    def _prune_members(self, owners: dict[str, set[str]]) -> int:
        """所属グループの外側に現れるメンバーを部分木ごと取り除きます。"""

        removed = 0
        stack: list[tuple[dict[str, NavNode], frozenset[str]]] = [(self._roots, frozenset())]
        while stack:
            level, enclosing = stack.pop()
            for node_id, node in list(level.items()):
                groups = owners.get(node.entity_key)
                if groups and not groups & enclosing:
                    del level[node_id]
                    removed += 1
                    continue
                inner = enclosing | {node.entity_key} if node.is_group else enclosing
                stack.append((node.children, inner))
        return removed

    def _assign_open_state(self) -> None:
        open_depth = self._config.open_depth
        stack: list[tuple[dict[str, NavNode], bool, int]] = [(self._roots, True, 1)]
        while stack:
            level, is_open, depth = stack.pop()
            for node in level.values():
                if node.is_group:
                    is_open = False
                node.is_open = is_open and (open_depth is None or depth <= open_depth)
                stack.append((node.children, node.is_open, depth + 1))

    def _to_array(self, open_state: dict[str, bool]) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        stack = [(node, items) for node in reversed(self._roots.values())]
        while stack:
            node, target = stack.pop()
            item: dict[str, Any] = {
                "id": node.node_id,
                "entityKey": node.entity_key,
                "label": node.label,
                "kind": node.kind,
                "isGroup": node.is_group,
            }
            open_state[node.node_id] = node.is_open
            target.append(item)
            if node.children and not (self._config.groups_only and node.is_group):
                children: list[dict[str, Any]] = []
                item["children"] = children
                stack.extend((child, children) for child in reversed(node.children.values()))
        return items
