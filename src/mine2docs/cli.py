"""mine2docs のコマンドラインインターフェース。"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Iterable

from .builder import build_documents
from .config import AttributeFilter, BuildConfig, RenderMode, parse_filters


def parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="コンテンツグラフからドキュメントツリーとナビゲーションを生成します")
    parser.add_argument("--input", dest="input_path", type=Path, required=True, help="グラフダンプ (JSON) へのパス")
    parser.add_argument("--out", dest="output_dir", type=Path, required=True, help="生成成果物を書き出すディレクトリ")
    parser.add_argument(
        "--mode",
        dest="mode",
        choices=[mode.value for mode in RenderMode],
        default=None,
        help="内部リンクの書き換え方式 (single / multi / wiki)",
    )
    parser.add_argument("--verbose", dest="verbose", action="store_true", help="進捗ログを標準出力へ表示")

    traversal_group = parser.add_argument_group("走査設定")
    traversal_group.add_argument(
        "--include",
        dest="include",
        type=str,
        default=None,
        help="含める頂点の条件を key:value 形式 (カンマ区切り) で指定",
    )
    traversal_group.add_argument(
        "--exclude",
        dest="exclude",
        type=str,
        default=None,
        help="除外する頂点の条件を key:value 形式 (カンマ区切り) で指定",
    )

    chunk_group = parser.add_argument_group("チャンク設定")
    chunk_group.add_argument(
        "--min-length",
        dest="min_length",
        type=int,
        default=None,
        help="チャンクとして出力するために必要な本文の最小文字数 (見出しを除く)",
    )
    chunk_group.add_argument(
        "--no-container-headings",
        dest="no_container_headings",
        action="store_true",
        help="本文を持たないコンテナの見出しのみのチャンクを出力しない",
    )

    render_group = parser.add_argument_group("変換設定")
    render_group.add_argument(
        "--inline-images",
        dest="inline_images",
        action="store_true",
        help="画像を base64 の data URI として埋め込む",
    )
    render_group.add_argument(
        "--wiki-lookup",
        dest="wiki_lookup",
        type=str,
        default=None,
        help="wiki モードで使うキー → URL の対応を JSON オブジェクトで指定",
    )

    navigation_group = parser.add_argument_group("ナビゲーション設定")
    navigation_group.add_argument(
        "--groups-only",
        dest="groups_only",
        action="store_true",
        help="グループ配下を折りたたみ、グループ自体のみを表示する",
    )
    navigation_group.add_argument(
        "--open-depth",
        dest="open_depth",
        type=int,
        default=None,
        help="初期状態で展開する階層の深さ。ルートが 1、0 ですべて折りたたみ (省略時は制限なし)",
    )
    return parser.parse_args(list(argv) if argv is not None else None)


def main(argv: Iterable[str] | None = None) -> None:
    args = parse_args(argv)
    _validate_args(args)
    try:
        includes = _parse_filter_option(args.include)
        excludes = _parse_filter_option(args.exclude, negate=True)
        wiki_lookup = _parse_wiki_lookup(args.wiki_lookup)
    except ValueError as exc:
        print(f"[エラー] {exc}", file=sys.stderr)
        raise SystemExit(2)
    _configure_logging(args.verbose)
    config = BuildConfig.from_args(
        args.input_path,
        args.output_dir,
        mode=args.mode,
        inline_images=args.inline_images,
        wiki_lookup=wiki_lookup,
        includes=includes,
        excludes=excludes,
        chunk_overrides=_collect_chunk_overrides(args),
        navigation_overrides=_collect_navigation_overrides(args),
    )
    result = build_documents(config)
    summary = {
        "entities": len(result.entities),
        "chunks": len(result.chunks),
        "titles": len(result.titles),
        "media": len(result.media),
        "output": str(config.output.root),
        "document": str(result.artifacts["document"]),
    }
    print(json.dumps(summary, ensure_ascii=False))


def _validate_args(args: argparse.Namespace) -> None:
    errors: list[str] = []
    if not args.input_path.exists():
        errors.append(f"[エラー] グラフダンプが見つかりません: {args.input_path}")
    elif not args.input_path.is_file():
        errors.append(f"[エラー] 入力パスはファイルではありません: {args.input_path}")

    if args.output_dir.exists() and not args.output_dir.is_dir():
        errors.append(f"[エラー] 出力パスがディレクトリではありません: {args.output_dir}")

    if args.min_length is not None and args.min_length < 0:
        errors.append("[エラー] --min-length には 0 以上の整数を指定してください。")
    if args.open_depth is not None and args.open_depth < 0:
        errors.append("[エラー] --open-depth には 0 以上の整数を指定してください。")

    if errors:
        for message in errors:
            print(message, file=sys.stderr)
        print("入力ファイルと出力ディレクトリを確認してください。", file=sys.stderr)
        raise SystemExit(2)

    args.input_path = args.input_path.resolve()
    args.output_dir = args.output_dir.resolve()


def _parse_filter_option(raw: str | None, *, negate: bool = False) -> tuple[AttributeFilter, ...]:
    if raw is None:
        return ()
    return parse_filters(raw, negate=negate)


def _parse_wiki_lookup(raw: str | None) -> dict[str, str] | None:
    if raw is None or not raw.strip():
        return None
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"--wiki-lookup: JSON の解析に失敗しました ({exc.msg})") from exc
    if not isinstance(parsed, dict):
        raise ValueError("--wiki-lookup: JSON オブジェクトを指定してください。")
    return {str(key): str(value) for key, value in parsed.items()}


def _collect_chunk_overrides(args: argparse.Namespace) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    if args.min_length is not None:
        overrides["min_length"] = args.min_length
    if args.no_container_headings:
        overrides["container_headings"] = False
    return overrides


def _collect_navigation_overrides(args: argparse.Namespace) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    if args.groups_only:
        overrides["groups_only"] = True
    if args.open_depth is not None:
        overrides["open_depth"] = args.open_depth
    return overrides


def _configure_logging(verbose: bool) -> None:
    level = logging.INFO if verbose else logging.WARNING
    logging.basicConfig(level=level, format="%(asctime)s [%(levelname)s] %(message)s", datefmt="%Y-%m-%d %H:%M:%S")


if __name__ == "__main__":
    main()
