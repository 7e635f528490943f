"""SQLite データベース操作モジュール.

テーブル:
  item   — キーワード単位で見つかった商品 (keyword, id, title, url, type は一意)
  image  — 商品 ID ごとのサイズ別画像
  person — 商品 ID ごとの著者・アーティスト

行は追加のみで、更新・削除はしない。
"""

from __future__ import annotations

import logging
import os
import sqlite3
from collections import defaultdict
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from rakutenfeed.errors import IngestWriteError, SchemaInitError, StoreOpenError, StoreQueryError
from rakutenfeed.models import Item

logger = logging.getLogger(__name__)

TABLES = ("item", "image", "person")

SCHEMA = [
    """
    CREATE TABLE item (
        keyword TEXT NOT NULL,
        id TEXT NOT NULL,
        title TEXT NOT NULL DEFAULT '',
        url TEXT NOT NULL DEFAULT '',
        type TEXT NOT NULL DEFAULT '',
        price INTEGER,
        first_seen_at TEXT NOT NULL
    )
    """,
    "CREATE UNIQUE INDEX idx_item_unique ON item(keyword, id, title, url, type)",
    "CREATE INDEX idx_item_first_seen ON item(first_seen_at)",
    "CREATE INDEX idx_item_keyword ON item(keyword, first_seen_at)",
    """
    CREATE TABLE image (
        item_id TEXT NOT NULL,
        url TEXT NOT NULL,
        size TEXT NOT NULL
    )
    """,
    "CREATE UNIQUE INDEX idx_image_unique ON image(item_id, url, size)",
    """
    CREATE TABLE person (
        item_id TEXT NOT NULL,
        name TEXT NOT NULL,
        role TEXT NOT NULL
    )
    """,
    "CREATE UNIQUE INDEX idx_person_unique ON person(item_id, name, role)",
]

_INSERT_ITEM = (
    "INSERT OR IGNORE INTO item (keyword, id, title, url, type, price, first_seen_at) "
    "VALUES (?, ?, ?, ?, ?, ?, ?)"
)
_INSERT_IMAGE = "INSERT OR IGNORE INTO image (item_id, url, size) VALUES (?, ?, ?)"
_INSERT_PERSON = "INSERT OR IGNORE INTO person (item_id, name, role) VALUES (?, ?, ?)"


def to_db_time(dt: datetime) -> str:
    """UTC・マイクロ秒固定の ISO 8601 文字列にする (文字列比較 = 時刻比較)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_time(value: str) -> datetime:
    return datetime.fromisoformat(value)


def open_store(path: str | Path) -> Store:
    """DB を開く. ファイルが無ければ <path>.tmp にスキーマを作ってから置き換える.

    Raises:
        StoreOpenError: 接続できない、または既存ファイルにテーブルが無い
        SchemaInitError: スキーマ作成に失敗した (作りかけのファイルは残さない)
    """
    path = Path(path).expanduser()
    if not path.exists():
        logger.info("新規 DB を作成: %s", path)
        _create_store(path)

    conn = None
    try:
        conn = sqlite3.connect(str(path))
        tables = {
            row[0]
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        }
    except (OSError, sqlite3.Error) as e:
        if conn is not None:
            conn.close()
        raise StoreOpenError(f"DB を開けません: {path}: {e}") from e

    missing = sorted(set(TABLES) - tables)
    if missing:
        conn.close()
        raise StoreOpenError(f"DB にテーブルがありません: {path}: {', '.join(missing)}")

    return Store(conn, path)


def _create_store(path: Path) -> None:
    tmp = path.with_name(path.name + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        _discard(tmp)
        conn = sqlite3.connect(str(tmp))
    except (OSError, sqlite3.Error) as e:
        raise StoreOpenError(f"DB を作成できません: {tmp}: {e}") from e

    failures = []
    try:
        try:
            for statement in SCHEMA:
                try:
                    conn.execute(statement)
                except sqlite3.Error as e:
                    failures.append((statement, e))
            if not failures:
                conn.commit()
        finally:
            conn.close()
        if not failures:
            os.replace(tmp, path)
    except BaseException:
        # 中断時も作りかけのファイルを残さない
        _discard(tmp)
        raise

    if failures:
        _discard(tmp)
        for statement, error in failures:
            logger.error("スキーマ作成失敗: %s -> %s", " ".join(statement.split()), error)
        raise SchemaInitError(path, failures)


def _discard(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.error("ファイルを削除できません: %s: %s", path, e)


class Store:
    """item / image / person テーブルへのアクセス."""

    def __init__(self, conn: sqlite3.Connection, path: Path):
        self._conn = conn
        self.path = path

    def __enter__(self) -> Store:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def transaction(self):
        """成功時にコミット、例外時にロールバックする."""
        try:
            with self._conn:
                yield self
        except sqlite3.Error as e:
            raise IngestWriteError(f"コミット失敗: {e}") from e

    def _insert(self, sql: str, params: tuple) -> bool:
        try:
            cur = self._conn.execute(sql, params)
        except sqlite3.Error as e:
            raise IngestWriteError(f"書き込み失敗: {e} params={params!r}") from e
        return cur.rowcount == 1

    def upsert_item(
        self,
        keyword: str,
        id: str,
        title: str,
        url: str,
        type: str,
        price: int | None,
        observed_at: datetime,
    ) -> bool:
        """アイテムを挿入する. 同一タプルが既にあれば何もしない.

        Returns:
            新しい行を作成したら True
        """
        return self._insert(
            _INSERT_ITEM,
            (keyword, id, title, url, type, price, to_db_time(observed_at)),
        )

    def upsert_image(self, item_id: str, size: str, url: str) -> bool:
        return self._insert(_INSERT_IMAGE, (item_id, url, size))

    def upsert_person(self, item_id: str, role: str, name: str) -> bool:
        return self._insert(_INSERT_PERSON, (item_id, name, role))

    def items_since(self, watermark: datetime, keyword: str | None = None) -> list[Item]:
        """first_seen_at >= watermark のアイテムを画像・人物付きで返す.

        Raises:
            StoreQueryError: 読み出しに失敗した
        """
        try:
            items = self._select_since(watermark, keyword)
        except sqlite3.Error as e:
            raise StoreQueryError(f"読み出し失敗: {e}") from e
        logger.debug("items_since(%s, %s): %d 件", watermark, keyword, len(items))
        return items

    def _select_since(self, watermark: datetime, keyword: str | None) -> list[Item]:
        sql = (
            "SELECT keyword, id, title, url, type, price, first_seen_at "
            "FROM item WHERE first_seen_at >= ?"
        )
        params: list = [to_db_time(watermark)]
        if keyword is not None:
            sql += " AND keyword = ?"
            params.append(keyword)
        sql += " ORDER BY first_seen_at, rowid"

        rows = self._conn.execute(sql, params).fetchall()
        items = [
            Item(
                keyword=row[0],
                id=row[1],
                title=row[2],
                url=row[3],
                type=row[4],
                price=row[5],
                first_seen_at=from_db_time(row[6]),
            )
            for row in rows
        ]

        images = self._grouped("SELECT item_id, size, url FROM image WHERE item_id = ? ORDER BY rowid")
        people = self._grouped("SELECT item_id, role, name FROM person WHERE item_id = ? ORDER BY rowid")
        for item in items:
            item.images = images(item.id)
            item.people = people(item.id)
        return items

    def _grouped(self, sql: str):
        """item_id -> {key: [value, ...]} を引く関数を返す (同じ ID は 1 回だけ問い合わせる)."""
        cache: dict[str, dict[str, list[str]]] = {}

        def lookup(item_id: str) -> dict[str, list[str]]:
            if item_id not in cache:
                grouped: dict[str, list[str]] = defaultdict(list)
                for _, key, value in self._conn.execute(sql, (item_id,)):
                    grouped[key].append(value)
                cache[item_id] = dict(grouped)
            # アイテムごとに別のリストを返す
            return {k: list(v) for k, v in cache[item_id].items()}

        return lookup
