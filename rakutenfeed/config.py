"""設定モジュール — 環境変数・定数定義."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# .env はプロジェクトルートに配置
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

PROG_NAME = "rakutenfeed"

# --- 保存先 ---
APP_DIR = Path.home() / f".{PROG_NAME}"
DEFAULT_STORE_PATH = APP_DIR / f"{PROG_NAME}.db"

# --- 楽天ブックス総合検索 API ---
SEARCH_API_URL = "https://app.rakuten.co.jp/services/api/BooksTotal/Search/20170404"
SEARCH_PAGE_URL = "https://books.rakuten.co.jp/search"
SEARCH_HITS = 30

# 検索モード -> booksGenreId
SEARCH_MODES = {
    "all": "000",
    "books": "001",
    "cd": "002",
    "dvd": "003",
    "software": "004",
    "foreign": "005",
    "game": "006",
    "magazine": "007",
}
DEFAULT_SEARCH_MODE = "books"

# 画像サイズ (small / medium / large) -> API フィールド
IMAGE_FIELDS = {
    "s": "smallImageUrl",
    "m": "mediumImageUrl",
    "l": "largeImageUrl",
}
IMAGE_SIZES = tuple(IMAGE_FIELDS)
LARGE_IMAGE = "l"

# 役割 -> API フィールド
ROLE_FIELDS = {
    "author": "author",
    "artist": "artistName",
}
ROLES = tuple(ROLE_FIELDS)

# --- フィード ---
DEFAULT_LOCALE = "ja-JP"
AFFILIATE_PARAM = "tag"

# --- User-Agent ---
USER_AGENT = f"{PROG_NAME}/1.0 (+https://books.rakuten.co.jp/)"

# --- リクエスト設定 ---
REQUEST_INTERVAL_MIN = 1.0
REQUEST_INTERVAL_MAX = 3.0
REQUEST_TIMEOUT = 15  # 秒

# --- ログ ---
LOG_DIR = APP_DIR / "logs"

# --- 標準出力を表す出力先 ---
STDOUT = "-"


@dataclass(frozen=True)
class Config:
    """1 回の実行で使う設定値."""

    token: str | None = None
    secret: str | None = None
    store_path: Path = DEFAULT_STORE_PATH
    search_mode: str = DEFAULT_SEARCH_MODE
    locale: str = DEFAULT_LOCALE
    affiliate_tag: str | None = None
    output_path: str = STDOUT
    verbose: bool = False


def env_defaults() -> dict:
    """環境変数 (.env を含む) から既定値を集める."""
    return {
        "token": os.environ.get("RAKUTEN_APP_ID") or None,
        "secret": os.environ.get("RAKUTEN_ACCESS_KEY") or None,
        "affiliate_tag": os.environ.get("RAKUTEN_AFFILIATE_TAG") or None,
        "store_path": Path(os.environ.get("RAKUTENFEED_DB") or DEFAULT_STORE_PATH),
    }


def read_first_line(path: str | Path) -> str:
    """認証情報ファイルの 1 行目を前後の空白を除いて返す."""
    with open(path, encoding="utf-8") as fh:
        return fh.readline().strip()
