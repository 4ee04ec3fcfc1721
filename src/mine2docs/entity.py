"""コンテンツエンティティ (nugget / passage / seam) のモデルとエンティティ表。"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from enum import Enum
from functools import cmp_to_key
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping

import yaml

from .headings import find_headings

logger = logging.getLogger(__name__)

ROOT_KEY = "root"
LABEL_LIMIT = 25
FRONT_MATTER_RE = re.compile(r"\A---\s*\n(.*?)\n---\s*(?:\n|\Z)", re.DOTALL)

MARKDOWN = "text/markdown; charset=UTF-8"
PNG = "image/png"
GIF = "image/gif"
JPEG = "image/jpeg"
SVG = "image/svg+xml"
MEDIA_TYPES = (MARKDOWN, PNG, GIF, JPEG, SVG)

# グラフ文書のうちエンティティの専用フィールドとして扱うキー
PASSAGE = "passage"
SEAM = "seam"
NUGGET = "nugget"
ENTITY_TYPES = (PASSAGE, SEAM, NUGGET)
GROUP_FIELD = "nuggets"
MEDIA_FIELD = "media"
RESERVED_FIELDS = frozenset(
    {"_key", "_id", "key", "type", "label", "order", "body", GROUP_FIELD, MEDIA_FIELD, "fspath"}
)


class EntityError(ValueError):
    """エンティティ文書の内容が不正な場合に送出される例外。"""


class MediaResolutionError(EntityError):
    """メディア参照を解決できない場合に送出される例外。"""


class EntityKind(str, Enum):
    CONTAINER = "container"
    ITEM = "item"


@dataclass(frozen=True, slots=True)
class MediaRef:
    """エンティティに紐づくバイナリ資産への参照。"""

    path: str
    mime_type: str
    resolved_path: Path

    @property
    def suffix(self) -> str:
        return Path(self.path).suffix

    @classmethod
    def resolve(cls, definition: Mapping[str, Any], source_path: Path | None) -> "MediaRef":
        """元ファイルのディレクトリを基準にメディアを解決し、読み取り可能か検証します。"""

        path = definition.get("path")
        if not path:
            raise MediaResolutionError("メディア定義に path 属性がありません。")
        mime_type = definition.get("type")
        if not mime_type:
            raise MediaResolutionError("メディア定義に type 属性がありません。")
        if mime_type not in MEDIA_TYPES:
            raise MediaResolutionError(f"未対応のメディアタイプです: {mime_type}")
        base = Path(source_path).parent if source_path else Path(".")
        resolved = base / str(path)
        if not resolved.is_file():
            raise MediaResolutionError(f"メディアファイルを読み込めません: {resolved}")
        return cls(path=str(path), mime_type=str(mime_type), resolved_path=resolved)


def derive_label(label: Any, body: str | None, key: str) -> str:
    """明示ラベル、本文の最初の見出し、本文冒頭、キーの順にラベルを決定します。"""

    if label:
        return str(label)
    if body:
        headings = find_headings(body)
        if headings:
            return headings[0][2].strip()
        text = body.lstrip()
        if text:
            return text if len(text) <= LABEL_LIMIT else text[: LABEL_LIMIT - 1] + "…"
    return key


def split_front_matter(content: str) -> tuple[dict[str, Any], str]:
    match = FRONT_MATTER_RE.match(content)
    if not match:
        return {}, content
    try:
        attributes = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError as exc:
        raise EntityError(f"フロントマターの解析に失敗しました: {exc}") from exc
    if not isinstance(attributes, dict):
        raise EntityError("フロントマターはマッピングである必要があります。")
    return attributes, content[match.end() :]


@dataclass(frozen=True, slots=True)
class ContentEntity:
    """コンテンツの最小単位。`key` はプロセス内で不変です。"""

    key: str
    kind: EntityKind
    label: str
    order: int | float | None = None
    body: str | None = None
    group_members: tuple[str, ...] = ()
    media: MediaRef | None = None
    attributes: Mapping[str, Any] = field(default_factory=dict)
    source_path: Path | None = None
    is_group: bool = field(init=False, default=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "is_group", bool(self.group_members))

    @property
    def has_body(self) -> bool:
        return bool(self.body)

    @classmethod
    def from_document(cls, document: Mapping[str, Any], source_path: Path | None = None) -> "ContentEntity":
        key = document.get("_key") or document.get("key")
        if not key:
            raise EntityError("エンティティ文書に _key 属性がありません。")
        key = str(key)

        entity_type = document.get("type")
        if entity_type is not None and entity_type not in ENTITY_TYPES:
            raise EntityError(f"未知のエンティティ種別です: {entity_type} ({key})")
        is_container = key == ROOT_KEY or entity_type == PASSAGE or PASSAGE in document
        kind = EntityKind.CONTAINER if is_container else EntityKind.ITEM

        members = document.get(GROUP_FIELD) or ()
        if isinstance(members, str) or not all(isinstance(member, str) for member in members):
            raise EntityError(f"{GROUP_FIELD} はキー文字列のリストである必要があります ({key})")

        order = document.get("order")
        if order is not None and (isinstance(order, bool) or not isinstance(order, (int, float))):
            raise EntityError(f"order は数値である必要があります ({key}): {order!r}")

        body = document.get("body")
        if source_path is None and document.get("fspath"):
            source_path = Path(str(document["fspath"]))
        media_definition = document.get(MEDIA_FIELD)
        media = MediaRef.resolve(media_definition, source_path) if media_definition else None

        attributes = {name: value for name, value in document.items() if name not in RESERVED_FIELDS}
        return cls(
            key=key,
            kind=kind,
            label=derive_label(document.get("label"), body, key),
            order=order,
            body=body,
            group_members=tuple(members),
            media=media,
            attributes=attributes,
            source_path=source_path,
        )

    @classmethod
    def from_markdown_file(cls, path: Path) -> "ContentEntity":
        """YAML フロントマター付き Markdown ファイルからエンティティを生成します。"""

        content = path.read_text(encoding="utf-8")
        attributes, body = split_front_matter(content)
        attributes.setdefault("_key", path.stem)
        attributes["body"] = body
        return cls.from_document(attributes, source_path=path)


def compare_entities(left: ContentEntity, right: ContentEntity) -> int:
    """`order` を持つものを先に、次にラベルの辞書順で比較します。

    `order` が 0 の場合は未指定と同じ扱いになります。
    """

    if left.order and right.order:
        return (left.order > right.order) - (left.order < right.order)
    if left.order and not right.order:
        return -1
    if not left.order and right.order:
        return 1
    left_key = (left.label.casefold(), left.label)
    right_key = (right.label.casefold(), right.label)
    return (left_key > right_key) - (left_key < right_key)


entity_sort_key = cmp_to_key(compare_entities)


class EntityTable(Mapping[str, ContentEntity]):
    """抽出 1 回分のキー → エンティティ対応表 (読み取り専用)。"""

    def __init__(self, entities: Iterable[ContentEntity], root_key: str = ROOT_KEY) -> None:
        self.root_key = root_key
        self._entities: dict[str, ContentEntity] = {}
        for entity in entities:
            if entity.key in self._entities:
                logger.warning("エンティティ %s が重複しています。最初の定義を採用します。", entity.key)
                continue
            self._entities[entity.key] = entity
        self._declared: dict[str, tuple[str, ...]] = {
            entity.key: entity.group_members for entity in self._entities.values() if entity.is_group
        }
        self._resolve_group_conflicts()

    def __getitem__(self, key: str) -> ContentEntity:
        return self._entities[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entities)

    def __len__(self) -> int:
        return len(self._entities)

    @property
    def root(self) -> ContentEntity:
        return self._entities[self.root_key]

    def groups(self) -> list[ContentEntity]:
        return [entity for entity in self._entities.values() if entity.is_group]

    def members(self, key: str) -> list[str]:
        """グループのメンバーのうち表に存在するキーを順に返します。"""

        entity = self._entities.get(key)
        if entity is None:
            return []
        return [member for member in entity.group_members if member in self._entities]

    def declared_members(self, key: str) -> tuple[str, ...]:
        """競合による除外前の、グループが宣言したメンバーを返します。"""

        return self._declared.get(key, ())

    def concat_bodies(self, keys: Iterable[str]) -> str:
        bodies = [self._entities[key].body or "" for key in keys if key in self._entities]
        return "\n".join(body for body in bodies if body)

    def _resolve_group_conflicts(self) -> None:
        for group in [entity for entity in self._entities.values() if entity.is_group]:
            kept: list[str] = []
            for member in group.group_members:
                candidate = self._entities.get(member)
                if candidate is not None and candidate.is_group and member != group.key:
                    logger.warning(
                        "%s はグループ %s のメンバーですが独自のグループを持つため、メンバーから除外します。",
                        member,
                        group.key,
                    )
                    continue
                kept.append(member)
            if len(kept) != len(group.group_members):
                self._entities[group.key] = replace(group, group_members=tuple(kept))
