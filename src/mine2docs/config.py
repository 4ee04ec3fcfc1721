"""mine2docs パイプラインの設定モデル群。"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence

FILTER_PAIR_RE = re.compile(r"^(\w+):([\w\- ]+)$")
MISSING_ORDER = 10000


class RenderMode(str, Enum):
    """内部参照の書き換え方式 (出力形式ごとに異なる)。"""

    SINGLE_DOCUMENT = "single"
    MULTI_PAGE = "multi"
    WIKI = "wiki"


@dataclass(frozen=True, slots=True)
class AttributeFilter:
    """頂点属性に対する等値 (または不等値) 条件。"""

    key: str
    value: Any
    negate: bool = False

    def matches(self, document: Mapping[str, Any]) -> bool:
        equal = document.get(self.key) == self.value
        return not equal if self.negate else equal


def default_timestamp() -> datetime:
    """メタデータ用に現在時刻 (UTC) を返します。"""

    return datetime.now(timezone.utc)


def parse_filter_value(raw: str) -> Any:
    if raw in {"true", "false"}:
        return raw == "true"
    if "_" in raw:
        return raw
    try:
        return int(raw)
    except ValueError:
        pass
    try:
        number = float(raw)
    except ValueError:
        return raw
    return number if math.isfinite(number) else raw


def parse_filters(raw: str | None, *, negate: bool = False) -> tuple[AttributeFilter, ...]:
    """`key:value[,key:value]` 形式の文字列を属性フィルタへ変換します。

    `true`/`false` は真偽値、数値として解釈できる値は数値になります。
    書式に合わないペアがあれば `ValueError` を送出します。
    """

    if raw is None or not raw.strip():
        option = "--exclude" if negate else "--include"
        raise ValueError(f"{option} には key:value 形式のペアを指定してください。")
    filters: list[AttributeFilter] = []
    for pair in raw.split(","):
        match = FILTER_PAIR_RE.match(pair)
        if not match:
            raise ValueError(f"[{pair}] は key:value の書式ではありません。")
        filters.append(
            AttributeFilter(key=match.group(1), value=parse_filter_value(match.group(2)), negate=negate)
        )
    return tuple(filters)


@dataclass(slots=True)
class TraversalConfig:
    """グラフ走査の設定。"""

    root_key: str = "root"
    max_depth: int = 10000
    includes: Sequence[AttributeFilter] = ()
    excludes: Sequence[AttributeFilter] = ()
    missing_order: int = MISSING_ORDER

    @property
    def filters(self) -> tuple[AttributeFilter, ...]:
        return (*self.includes, *self.excludes)


@dataclass(slots=True)
class ChunkConfig:
    """チャンク組み立ての設定。"""

    min_length: int = 0
    container_headings: bool = True


@dataclass(slots=True)
class RenderConfig:
    """Markdown 変換 (参照の書き換え) の設定。"""

    mode: RenderMode = RenderMode.SINGLE_DOCUMENT
    inline_images: bool = False
    wiki_lookup: Mapping[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class TitleConfig:
    separator: str = " / "


@dataclass(slots=True)
class NavigationConfig:
    """ナビゲーションマップ (サイドバー) の設定。"""

    groups_only: bool = False
    open_depth: int | None = None


@dataclass(slots=True)
class OutputConfig:
    """出力ディレクトリの設定。"""

    root: Path
    docs_dir: Path = field(init=False)
    logs_dir: Path = field(init=False)

    def __post_init__(self) -> None:
        self.docs_dir = self.root / "docs"
        self.logs_dir = self.root / "logs"


@dataclass(slots=True)
class BuildConfig:
    """抽出処理全体を束ねる設定。"""

    input_path: Path
    output: OutputConfig
    traversal: TraversalConfig = field(default_factory=TraversalConfig)
    chunk: ChunkConfig = field(default_factory=ChunkConfig)
    render: RenderConfig = field(default_factory=RenderConfig)
    titles: TitleConfig = field(default_factory=TitleConfig)
    navigation: NavigationConfig = field(default_factory=NavigationConfig)
    created_at: datetime = field(default_factory=default_timestamp)

    @classmethod
    def from_args(
        cls,
        input_path: Path,
        output_dir: Path,
        mode: RenderMode | str | None = None,
        inline_images: bool = False,
        wiki_lookup: Mapping[str, str] | None = None,
        includes: Optional[Sequence[AttributeFilter]] = None,
        excludes: Optional[Sequence[AttributeFilter]] = None,
        chunk_overrides: Mapping[str, Any] | None = None,
        navigation_overrides: Mapping[str, Any] | None = None,
    ) -> "BuildConfig":
        render_kwargs: dict[str, Any] = {}
        if mode is not None:
            render_kwargs["mode"] = RenderMode(mode)
        if inline_images:
            render_kwargs["inline_images"] = True
        if wiki_lookup:
            render_kwargs["wiki_lookup"] = dict(wiki_lookup)
        traversal_config = TraversalConfig(
            includes=tuple(includes or ()),
            excludes=tuple(excludes or ()),
        )
        chunk_config = ChunkConfig(**(dict(chunk_overrides) if chunk_overrides else {}))
        navigation_config = NavigationConfig(
            **(dict(navigation_overrides) if navigation_overrides else {})
        )
        return cls(
            input_path=input_path,
            output=OutputConfig(output_dir),
            traversal=traversal_config,
            chunk=chunk_config,
            render=RenderConfig(**render_kwargs),
            navigation=navigation_config,
        )
