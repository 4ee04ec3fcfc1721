"""グラフダンプからツリー・チャンク・タイトル・ナビゲーションを生成する中核オーケストレーター。"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from slugify import slugify

from .chunks import ChunkAssembler, RenderedChunk
from .config import BuildConfig
from .document import (
    build_markdown,
    build_page_manifest,
    copy_media,
    write_corpus,
    write_markdown,
    write_page_manifest,
)
from .entity import ContentEntity, EntityTable, MediaRef
from .markdown import ReferenceRewriter
from .navigation import NavigationMap, NavigationMapBuilder, write_navigation
from .store import GraphTraversal, KeyPath, NetworkxGraphStore, deposit, load_graph_dump
from .titles import has_chunk, resolve_titles
from .tree import ContentTree, materialize


@dataclass(slots=True)
class BuildResult:
    entities: EntityTable
    chunks: list[RenderedChunk]
    titles: dict[str, str]
    media: dict[str, MediaRef]
    navigation: NavigationMap
    artifacts: dict[str, Any] = field(default_factory=dict)


class MineBuilder:
    """読み込み・ツリー化・チャンク化・タイトル解決・出力を統括する高レベルパイプライン。"""

    def __init__(
        self,
        config: BuildConfig,
        store: NetworkxGraphStore | None = None,
        traversal: GraphTraversal | None = None,
    ) -> None:
        self.config = config
        self.store = store or NetworkxGraphStore(config.traversal.missing_order)
        self.traversal: GraphTraversal = traversal or self.store
        self._logger = logging.getLogger(self.__class__.__module__ + "." + self.__class__.__name__)
        self._summary_base = {
            "input_path": str(config.input_path),
            "output_dir": str(config.output.root),
            "created_at": config.created_at.isoformat(),
            "mode": config.render.mode.value,
        }
        self._summary_path = config.output.logs_dir / "build_summary.json"

    async def build(self) -> BuildResult:
        self._prepare_logging_resources()
        documents, edges = load_graph_dump(self.config.input_path)
        report = deposit(self.store, documents, edges)
        self._update_summary(
            "deposited",
            vertices=report.vertices,
            edges=report.edges,
            failed_edges=len(report.failed_edges),
        )

        table = await self._load_entities()
        self._logger.info("エンティティを %d 件読み込みました。", len(table))
        self._update_summary("entities", entities=len(table), groups=len(table.groups()))

        tree = materialize(await self._collect_paths(prune_groups=True), table)
        assembler = ChunkAssembler(table, self.config.chunk)
        assembled = assembler.assemble(tree)
        self._update_summary("assembled", nodes=len(tree), chunked_nodes=len(assembled))

        titled = resolve_titles(
            table, assembled, separator=self.config.titles.separator, qualifies=has_chunk
        )
        self._update_summary("titled", titles=titled)

        rewriter = ReferenceRewriter(
            table,
            self.config.render.mode,
            inline_images=self.config.render.inline_images,
            wiki_lookup=self.config.render.wiki_lookup,
        )
        chunks = assembler.chunks(assembled, rewriter)
        media: dict[str, MediaRef] = {}
        for chunk in chunks:
            media.update(chunk.refs)
        self._logger.info("チャンクを %d 件変換しました (メディア %d 件)。", len(chunks), len(media))
        self._update_summary("rendered", chunks=len(chunks), media=len(media))

        navigation = NavigationMapBuilder(table, self.config.navigation).build(
            await self._collect_paths(prune_groups=False)
        )
        self._update_summary("navigation", nodes=len(navigation.initial_open_state))

        artifacts = self._write_outputs(table, assembled, chunks, media, navigation)
        self._update_summary(
            "completed",
            entities=len(table),
            chunks=len(chunks),
            titles=titled,
            media=len(media),
            document=str(artifacts["document"]),
        )
        return BuildResult(
            entities=table,
            chunks=chunks,
            titles={chunk.key: chunk.title for chunk in chunks if chunk.title},
            media=media,
            navigation=navigation,
            artifacts=artifacts,
        )

    async def _load_entities(self) -> EntityTable:
        traversal = self.config.traversal
        base = self.config.input_path.parent
        entities: list[ContentEntity] = []
        async for document in self.traversal.vertices(traversal.root_key, traversal.filters):
            fspath = document.get("fspath")
            source_path = base / str(fspath) if fspath else self.config.input_path
            entities.append(ContentEntity.from_document(document, source_path=source_path))
        return EntityTable(entities, root_key=traversal.root_key)

    async def _collect_paths(self, *, prune_groups: bool) -> list[KeyPath]:
        traversal = self.config.traversal
        paths = [
            path
            async for path in self.traversal.traverse(
                traversal.root_key,
                traversal.max_depth,
                traversal.filters,
                prune_groups=prune_groups,
            )
        ]
        self._logger.info("経路を %d 件取得しました (グループ刈り込み: %s)。", len(paths), prune_groups)
        return paths

    def _write_outputs(
        self,
        table: EntityTable,
        tree: ContentTree,
        chunks: list[RenderedChunk],
        media: Mapping[str, MediaRef],
        navigation: NavigationMap,
    ) -> dict[str, Any]:
        output = self.config.output
        output.root.mkdir(parents=True, exist_ok=True)
        output.docs_dir.mkdir(parents=True, exist_ok=True)

        title = table.root.label
        doc_path = output.docs_dir / f"{slugify(title) or table.root_key}.md"
        markdown = build_markdown(title, [chunk.text for chunk in chunks], media, self.config.created_at)
        write_markdown(doc_path, markdown)
        self._logger.info("Markdown を出力しました: %s", doc_path.name)

        copied: list[Path] = []
        if not self.config.render.inline_images:
            copied = copy_media(output.docs_dir, media)

        pages_path = output.root / "pages.json"
        write_page_manifest(pages_path, build_page_manifest(tree, self.config.created_at))
        corpus_path = output.root / "corpus.jsonl"
        write_corpus(corpus_path, chunks)
        navigation_path = output.root / "navigation.json"
        write_navigation(navigation_path, navigation)
        self._logger.info("pages.json / corpus.jsonl / navigation.json を出力しました。")
        return {
            "document": doc_path,
            "media": copied,
            "pages": pages_path,
            "corpus": corpus_path,
            "navigation": navigation_path,
        }

    def _prepare_logging_resources(self) -> None:
        self.config.output.root.mkdir(parents=True, exist_ok=True)
        self.config.output.logs_dir.mkdir(parents=True, exist_ok=True)
        self._summary_path.write_text("", encoding="utf-8")

    def _update_summary(self, stage: str, **extra: Any) -> None:
        payload = dict(self._summary_base)
        payload.update(extra)
        payload["stage"] = stage
        self._summary_path.parent.mkdir(parents=True, exist_ok=True)
        with self._summary_path.open("a", encoding="utf-8") as stream:
            stream.write(json.dumps(payload, ensure_ascii=False))
            stream.write("\n")


def build_documents(config: BuildConfig) -> BuildResult:
    builder = MineBuilder(config)
    return asyncio.run(builder.build())
