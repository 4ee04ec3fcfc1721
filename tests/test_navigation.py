from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest

from mine2docs.config import NavigationConfig
from mine2docs.entity import ContentEntity, EntityTable
from mine2docs.navigation import NavigationMapBuilder, write_navigation
from mine2docs.tree import DanglingReferenceError


def _table(*documents) -> EntityTable:
    entities = [ContentEntity.from_document({"_key": "root", "label": "Root"})]
    entities.extend(ContentEntity.from_document(document) for document in documents)
    return EntityTable(entities)


TABLE = _table(
    {"_key": "guide", "type": "passage", "label": "Guide"},
    {"_key": "faq", "type": "seam", "label": "FAQ", "nuggets": ["q1", "q2"]},
    {"_key": "q1", "label": "Q1", "body": "1"},
    {"_key": "q2", "label": "Q2", "body": "2"},
    {"_key": "tips", "label": "Tips", "body": "t"},
)

PATHS = [
    ["root"],
    ["root", "guide"],
    ["root", "guide", "q1"],
    ["root", "guide", "tips"],
    ["root", "faq"],
    ["root", "faq", "q1"],
    ["root", "faq", "q1", "q2"],
    ["root", "tips"],
]


def _ids(items: list[dict]) -> list[str]:
    collected: list[str] = []
    for item in items:
        collected.append(item["id"])
        collected.extend(_ids(item.get("children", [])))
    return collected


def test_fold_uses_composite_ids() -> None:
    navigation = NavigationMapBuilder(TABLE).build([["root"], ["root", "guide"], ["root", "guide", "tips"], ["root", "tips"]])
    assert _ids(navigation.initial_data) == ["|root", "|root|guide", "|root|guide|tips", "|root|tips"]
    root = navigation.initial_data[0]
    assert root["entityKey"] == "root"
    assert root["kind"] == "container"
    assert root["isGroup"] is False
    leaf = root["children"][0]["children"][0]
    assert leaf["label"] == "Tips"
    assert "children" not in leaf, "子を持たないノードには children を出力しないはずです"


def test_group_members_are_removed_outside_their_group() -> None:
    navigation = NavigationMapBuilder(TABLE).build(PATHS)
    assert _ids(navigation.initial_data) == [
        "|root",
        "|root|guide",
        "|root|guide|tips",
        "|root|faq",
        "|root|faq|q1",
        "|root|faq|q1|q2",
        "|root|tips",
    ]


def test_open_state_closes_from_first_group() -> None:
    navigation = NavigationMapBuilder(TABLE).build(PATHS)
    assert navigation.initial_open_state == {
        "|root": True,
        "|root|guide": True,
        "|root|guide|tips": True,
        "|root|faq": False,
        "|root|faq|q1": False,
        "|root|faq|q1|q2": False,
        "|root|tips": False,
    }


def test_open_depth_limits_expanded_levels() -> None:
    navigation = NavigationMapBuilder(TABLE, NavigationConfig(open_depth=1)).build(PATHS)
    assert navigation.initial_open_state["|root"] is True
    assert navigation.initial_open_state["|root|guide"] is False
    assert navigation.initial_open_state["|root|guide|tips"] is False


def test_open_depth_zero_collapses_everything() -> None:
    navigation = NavigationMapBuilder(TABLE, NavigationConfig(open_depth=0)).build(PATHS)
    assert not any(navigation.initial_open_state.values()), "深さ 0 ではすべて折りたたまれるはずです"
    assert len(navigation.initial_open_state) == 7


def test_groups_only_collapses_group_children() -> None:
    navigation = NavigationMapBuilder(TABLE, NavigationConfig(groups_only=True)).build(PATHS)
    root = navigation.initial_data[0]
    faq = next(item for item in root["children"] if item["entityKey"] == "faq")
    assert faq["isGroup"] is True
    assert "children" not in faq
    assert "|root|faq|q1" not in navigation.initial_open_state


def test_collect_members_recurses_through_nested_groups() -> None:
    table = _table(
        {"_key": "outer", "type": "seam", "nuggets": ["a", "inner"]},
        {"_key": "inner", "type": "seam", "nuggets": ["b", "c"]},
        {"_key": "a", "body": "a"},
        {"_key": "b", "body": "b"},
        {"_key": "c", "body": "c"},
    )
    builder = NavigationMapBuilder(table)
    assert builder.collect_members("outer") == {"a", "b", "c"}
    assert builder.collect_members("inner") == {"b", "c"}


def test_nested_group_members_survive_under_outer_group() -> None:
    table = _table(
        {"_key": "outer", "type": "seam", "label": "Outer", "nuggets": ["a", "inner"]},
        {"_key": "inner", "type": "seam", "label": "Inner", "nuggets": ["b"]},
        {"_key": "a", "body": "a"},
        {"_key": "b", "body": "b"},
    )
    navigation = NavigationMapBuilder(table).build(
        [
            ["root"],
            ["root", "a"],
            ["root", "b"],
            ["root", "outer"],
            ["root", "outer", "a"],
            ["root", "outer", "inner"],
            ["root", "outer", "inner", "b"],
        ]
    )
    assert _ids(navigation.initial_data) == [
        "|root",
        "|root|outer",
        "|root|outer|a",
        "|root|outer|inner",
        "|root|outer|inner|b",
    ], "外側のグループ配下にある入れ子グループのメンバーは残るはずです"


def test_build_raises_on_unknown_key() -> None:
    with pytest.raises(DanglingReferenceError):
        NavigationMapBuilder(TABLE).build([["root"], ["root", "ghost"]])


def test_navigation_serialises_with_camel_case_keys(tmp_path: Path) -> None:
    navigation = NavigationMapBuilder(TABLE).build(PATHS)
    path = tmp_path / "navigation.json"
    write_navigation(path, navigation)
    payload = json.loads(path.read_text(encoding="utf-8"))
    assert set(payload) == {"initialData", "initialOpenState"}
    assert payload == navigation.to_dict()


def test_build_handles_paths_deeper_than_recursion_limit() -> None:
    depth = sys.getrecursionlimit() + 200
    keys = [f"n{index}" for index in range(depth)]
    table = _table(*({"_key": key, "body": key} for key in keys))
    navigation = NavigationMapBuilder(table, NavigationConfig(open_depth=3)).build([["root", *keys]])
    assert len(navigation.initial_open_state) == depth + 1
    assert navigation.initial_open_state["|root|n0|n1"] is True
    assert navigation.initial_open_state["|root|n0|n1|n2"] is False
    levels = 0
    items = navigation.initial_data
    while items:
        levels += 1
        items = items[0].get("children", [])
    assert levels == depth + 1
