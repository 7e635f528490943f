"""検索結果を DB に取り込むモジュール.

同じ検索結果を何度取り込んでも行は増えない (DB 側の一意制約で重複を無視)。
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timezone

from rakutenfeed.config import IMAGE_SIZES, ROLES
from rakutenfeed.db import Store
from rakutenfeed.errors import IngestWriteError
from rakutenfeed.models import Item, SearchResult

logger = logging.getLogger(__name__)


def ingest(store: Store, keyword: str, record: SearchResult, observed_at: datetime) -> bool:
    """1 件の検索結果を item / image / person に書き込む.

    1 件分は 1 トランザクションで書き込み、途中で失敗したらロールバックする。

    Returns:
        item に新しい行を作成したら True

    Raises:
        IngestWriteError: 書き込みに失敗した
    """
    item_id = record.id
    with store.transaction():
        created = store.upsert_item(
            keyword,
            item_id,
            record.title or "",
            record.url or "",
            record.type or "",
            record.price,
            observed_at,
        )

        for size in IMAGE_SIZES:
            url = record.image(size)
            if url:
                store.upsert_image(item_id, size, url)

        for role in ROLES:
            for name in record.names(role):
                store.upsert_person(item_id, role, name)

    if created:
        logger.debug("新規: keyword=%s, id=%s, title=%s", keyword, item_id, record.title)
    return created


def ingest_all(
    store: Store,
    keyword: str,
    records: Iterable[SearchResult],
    observed_at: datetime,
) -> tuple[int, int]:
    """検索結果をまとめて取り込む. 1 件の失敗で全体は止めない.

    Returns:
        (新規作成件数, 失敗件数)
    """
    created_count = 0
    error_count = 0
    for record in records:
        if not record.id:
            logger.debug("ID の無い検索結果をスキップ: keyword=%s, title=%s", keyword, record.title)
            continue
        try:
            if ingest(store, keyword, record, observed_at):
                created_count += 1
        except IngestWriteError as e:
            error_count += 1
            logger.error("取り込み失敗: keyword=%s, id=%s, error=%s", keyword, record.id, e)

    logger.info("取り込み完了: keyword=%s, 新規=%d 件, 失敗=%d 件", keyword, created_count, error_count)
    return created_count, error_count


def collect_new_items(
    store: Store,
    keyword: str,
    records: Iterable[SearchResult],
    watermark: datetime,
    observed_at: datetime | None = None,
) -> list[Item]:
    """検索結果を取り込み、watermark 以降に初めて見つかったアイテムを返す.

    watermark は検索・取り込みより前 (プロセス開始時) に取っておくこと。
    """
    ingest_all(store, keyword, records, observed_at or datetime.now(timezone.utc))
    return store.items_since(watermark, keyword)
