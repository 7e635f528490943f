"""楽天ブックス新着フィード — メインエントリーポイント.

処理フロー:
  1. 開始時刻を記録 (この時刻以降に DB に入ったアイテムが「新着」)
  2. 各キーワードで検索 API を呼ぶ
  3. 検索結果を DB に取り込む (既知のアイテムは無視される)
  4. 開始時刻以降に初めて保存されたアイテムを取り出す
  5. RSS を生成して書き出す (ファイルなら一時ファイル経由で置き換え)
"""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

from rakutenfeed import __version__
from rakutenfeed.config import (
    DEFAULT_LOCALE,
    DEFAULT_SEARCH_MODE,
    LOG_DIR,
    PROG_NAME,
    SEARCH_MODES,
    STDOUT,
    Config,
    env_defaults,
    read_first_line,
)
from rakutenfeed.db import open_store
from rakutenfeed.errors import OutputWriteError, RakutenFeedError
from rakutenfeed.feed import FeedBuilder, publish
from rakutenfeed.ingest import collect_new_items
from rakutenfeed.search import SearchClient, wait_interval

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """ロギングの初期設定. 標準出力はフィード用に空けておく."""
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        log_file = LOG_DIR / f"{PROG_NAME}_{datetime.now().strftime('%Y%m%d')}.log"
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    except OSError as e:
        print(f"ログファイルを開けません: {e}", file=sys.stderr)

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )


def build_parser() -> argparse.ArgumentParser:
    defaults = env_defaults()
    ap = argparse.ArgumentParser(
        prog=PROG_NAME,
        description="楽天ブックスをキーワード検索し、前回以降の新着だけを RSS で出力する。",
    )
    ap.add_argument("keywords", nargs="*", metavar="KEYWORD", help="検索キーワード")
    ap.add_argument("-t", "--token", default=defaults["token"], help="アプリ ID (既定: $RAKUTEN_APP_ID)")
    ap.add_argument("-s", "--secret", default=defaults["secret"], help="アクセスキー (既定: $RAKUTEN_ACCESS_KEY)")
    ap.add_argument("--token-file", help="アプリ ID を 1 行目に書いたファイル")
    ap.add_argument("--secret-file", help="アクセスキーを 1 行目に書いたファイル")
    ap.add_argument("-d", "--db", type=Path, default=defaults["store_path"], help="SQLite DB のパス")
    ap.add_argument("-m", "--mode", choices=sorted(SEARCH_MODES), default=DEFAULT_SEARCH_MODE, help="検索モード")
    ap.add_argument("-l", "--locale", default=DEFAULT_LOCALE, help="フィードの言語")
    ap.add_argument("--tag", default=defaults["affiliate_tag"], help="リンクに付けるアフィリエイトタグ")
    ap.add_argument("-o", "--output", default=STDOUT, help="出力先 ('-' は標準出力)")
    ap.add_argument("-v", "--verbose", action="store_true", help="詳細ログ")
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return ap


def make_config(args: argparse.Namespace) -> Config:
    """引数から Config を作る. ファイル指定の認証情報が優先."""
    token = read_first_line(args.token_file) if args.token_file else args.token
    secret = read_first_line(args.secret_file) if args.secret_file else args.secret
    return Config(
        token=token or None,
        secret=secret or None,
        store_path=args.db,
        search_mode=args.mode,
        locale=args.locale,
        affiliate_tag=args.tag or None,
        output_path=args.output,
        verbose=args.verbose,
    )


def run(config: Config, keywords: list[str], watermark: datetime, client: SearchClient | None = None) -> int:
    """検索・取り込み・フィード出力を行う. 終了コードを返す."""
    client = client or SearchClient(config)

    try:
        with open_store(config.store_path) as store:
            items = []
            searched = 0
            for i, keyword in enumerate(keywords):
                if i:
                    wait_interval()
                logger.info("検索中: keyword=%s, mode=%s", keyword, config.search_mode)
                results = client.search(keyword)
                if results is None:
                    logger.warning("スキップ: keyword=%s", keyword)
                    continue
                searched += 1
                logger.info("検索結果: %d 件", len(results))
                items.extend(collect_new_items(store, keyword, results, watermark))
    except RakutenFeedError as e:
        logger.error("%s", e)
        return 1

    if not searched:
        logger.warning("検索結果を取得できませんでした。終了します。")
        return 0

    logger.info("新着: %d 件", len(items))
    if not items and config.output_path != STDOUT:
        logger.info("新着が無いため %s は更新しません", config.output_path)
        return 0

    data = FeedBuilder(config).render(keywords, items)
    try:
        publish(data, config.output_path)
    except OutputWriteError as e:
        logger.error("%s", e)
        return 1
    return 0


def main(argv: list[str] | None = None) -> int:
    watermark = datetime.now(timezone.utc)

    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        config = make_config(args)
    except OSError as e:
        parser.error(f"認証情報ファイルを読めません: {e}")

    if not config.token or not args.keywords:
        parser.print_help(sys.stderr)
        return 2

    setup_logging(config.verbose)
    logger.info("=== %s 開始 (keywords=%s) ===", PROG_NAME, ", ".join(args.keywords))
    status = run(config, args.keywords, watermark)
    logger.info("=== %s 終了 (status=%d) ===", PROG_NAME, status)
    return status


if __name__ == "__main__":
    sys.exit(main())
