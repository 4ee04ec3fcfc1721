from __future__ import annotations

import logging
from pathlib import Path

import pytest

from mine2docs.entity import (
    ContentEntity,
    EntityError,
    EntityKind,
    EntityTable,
    MediaResolutionError,
    compare_entities,
    derive_label,
    entity_sort_key,
)


def _entity(key: str, **fields) -> ContentEntity:
    return ContentEntity.from_document({"_key": key, **fields})


@pytest.mark.parametrize(
    ("label", "body", "expected"),
    [
        ("明示ラベル", "# 見出し\n本文", "明示ラベル"),
        (None, "前置き\n## 最初の見出し\n本文", "最初の見出し"),
        (None, "a" * 25, "a" * 25),
        (None, "a" * 30, "a" * 24 + "…"),
        (None, "```python\n# コメント\n```\n## 実際の見出し", "実際の見出し"),
        (None, "####### 見出しではない\n本文", "####### 見出しではない\n本文"),
        (None, "   \n", "key-1"),
        (None, None, "key-1"),
    ],
)
def test_derive_label_fallback_chain(label, body, expected) -> None:
    assert derive_label(label, body, "key-1") == expected


def test_from_document_assigns_kind() -> None:
    assert _entity("root").kind is EntityKind.CONTAINER
    assert _entity("ch1", type="passage").kind is EntityKind.CONTAINER
    assert _entity("ch2", passage="ch2").kind is EntityKind.CONTAINER
    item = _entity("n1", type="nugget", body="本文")
    assert item.kind is EntityKind.ITEM
    assert item.has_body is True
    assert item.is_group is False


def test_from_document_keeps_unknown_fields_as_attributes() -> None:
    entity = _entity("n1", body="本文", draft=True, author="alice")
    assert entity.attributes == {"draft": True, "author": "alice"}
    assert entity.key == "n1"
    assert "body" not in entity.attributes, "予約フィールドは属性に含まれないはずです"


@pytest.mark.parametrize(
    "fields",
    [
        {"type": "vein"},
        {"order": "1"},
        {"order": True},
        {"nuggets": "a,b"},
        {"nuggets": ["a", 2]},
    ],
)
def test_from_document_rejects_malformed_fields(fields) -> None:
    with pytest.raises(EntityError):
        _entity("bad", **fields)


def test_from_document_requires_key() -> None:
    with pytest.raises(EntityError):
        ContentEntity.from_document({"body": "キーなし"})


def test_group_entity_exposes_members() -> None:
    seam = _entity("seam", type="seam", nuggets=["a", "b"])
    assert seam.is_group is True
    assert seam.group_members == ("a", "b")


def test_comparator_prefers_order_then_label() -> None:
    first = _entity("x", label="zeta", order=1)
    second = _entity("y", label="alpha", order=2)
    unordered = _entity("z", label="beta")
    ordered = sorted([unordered, second, first], key=entity_sort_key)
    assert [entity.key for entity in ordered] == ["x", "y", "z"]


def test_comparator_treats_zero_order_as_absent() -> None:
    zero = _entity("zero", label="b-zero", order=0)
    missing = _entity("missing", label="a-missing")
    one = _entity("one", label="c-one", order=1)

    assert compare_entities(zero, missing) > 0, "order=0 は未指定と同様にラベル比較になるはずです"
    assert compare_entities(one, zero) < 0, "order=1 は order=0 より前に並ぶはずです"
    ordered = sorted([zero, missing, one], key=entity_sort_key)
    assert [entity.key for entity in ordered] == ["one", "missing", "zero"]


def test_media_resolves_relative_to_source(tmp_path: Path) -> None:
    media_dir = tmp_path / "media"
    media_dir.mkdir()
    (media_dir / "diagram.png").write_bytes(b"\x89PNG")
    entity = ContentEntity.from_document(
        {"_key": "img", "media": {"path": "media/diagram.png", "type": "image/png"}},
        source_path=tmp_path / "diagram.md",
    )
    assert entity.media is not None
    assert entity.media.resolved_path == media_dir / "diagram.png"
    assert entity.media.suffix == ".png"


@pytest.mark.parametrize(
    "definition",
    [
        {"type": "image/png"},
        {"path": "diagram.png"},
        {"path": "diagram.bmp", "type": "image/bmp"},
        {"path": "missing.png", "type": "image/png"},
    ],
)
def test_media_errors_are_fatal(tmp_path: Path, definition) -> None:
    (tmp_path / "diagram.png").write_bytes(b"\x89PNG")
    with pytest.raises(MediaResolutionError):
        ContentEntity.from_document(
            {"_key": "img", "media": definition}, source_path=tmp_path / "diagram.md"
        )


def test_from_markdown_file_reads_front_matter(tmp_path: Path) -> None:
    path = tmp_path / "setup.md"
    path.write_text("---\nlabel: セットアップ\norder: 2\ntype: nugget\n---\n# 手順\n本文です。", encoding="utf-8")
    entity = ContentEntity.from_markdown_file(path)
    assert entity.key == "setup"
    assert entity.label == "セットアップ"
    assert entity.order == 2
    assert entity.body == "# 手順\n本文です。"
    assert entity.source_path == path


def test_from_markdown_file_rejects_invalid_front_matter(tmp_path: Path) -> None:
    path = tmp_path / "broken.md"
    path.write_text("---\n- a\n- b\n---\n本文", encoding="utf-8")
    with pytest.raises(EntityError):
        ContentEntity.from_markdown_file(path)


def test_entity_table_drops_conflicting_group_member(caplog) -> None:
    caplog.set_level(logging.WARNING)
    table = EntityTable(
        [
            _entity("root"),
            _entity("g1", type="seam", nuggets=["a", "g2"]),
            _entity("g2", type="seam", nuggets=["b"]),
            _entity("a", body="A"),
            _entity("b", body="B"),
        ]
    )
    assert table.members("g1") == ["a"]
    assert table.declared_members("g1") == ("a", "g2")
    assert table.members("g2") == ["b"]
    assert "g2" in caplog.text
    assert [group.key for group in table.groups()] == ["g1", "g2"]


def test_entity_table_keeps_first_duplicate(caplog) -> None:
    caplog.set_level(logging.WARNING)
    table = EntityTable([_entity("root"), _entity("a", body="first"), _entity("a", body="second")])
    assert len(table) == 2
    assert table["a"].body == "first"
    assert "重複" in caplog.text


def test_concat_bodies_skips_missing_and_empty() -> None:
    table = EntityTable([_entity("root"), _entity("a", body="A"), _entity("b"), _entity("c", body="C")])
    assert table.concat_bodies(["a", "b", "ghost", "c"]) == "A\nC"
