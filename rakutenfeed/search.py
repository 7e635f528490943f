"""楽天ブックス総合検索 API クライアント.

API 仕様: BooksTotal/Search (version 20170404, formatVersion=2)
  - 商品 ID は isbn、無ければ jan を使う
  - author / artistName は "/" 区切りで複数名が入る
"""

from __future__ import annotations

import logging
import random
import time

import requests

from rakutenfeed.config import (
    IMAGE_FIELDS,
    REQUEST_INTERVAL_MAX,
    REQUEST_INTERVAL_MIN,
    REQUEST_TIMEOUT,
    ROLE_FIELDS,
    SEARCH_API_URL,
    SEARCH_HITS,
    SEARCH_MODES,
    USER_AGENT,
    Config,
)
from rakutenfeed.models import SearchResult

logger = logging.getLogger(__name__)


class SearchClient:
    """キーワード検索を行い SearchResult のリストを返す."""

    def __init__(self, config: Config):
        self.config = config

    def search(self, keyword: str, mode: str | None = None) -> list[SearchResult] | None:
        """キーワードで検索する.

        Args:
            keyword: 検索キーワード
            mode: 検索モード (省略時は設定値)

        Returns:
            検索結果のリスト。失敗時は None。
        """
        mode = mode or self.config.search_mode
        data = self._fetch(keyword, mode)
        if data is None:
            return None
        return parse_search_response(data, mode)

    def _fetch(self, keyword: str, mode: str) -> dict | None:
        params = {
            "applicationId": self.config.token,
            "keyword": keyword,
            "booksGenreId": SEARCH_MODES[mode],
            "hits": SEARCH_HITS,
            "format": "json",
            "formatVersion": 2,
        }
        if self.config.secret:
            params["accessKey"] = self.config.secret
        headers = {
            "User-Agent": USER_AGENT,
            "Accept-Language": self.config.locale,
            "Accept": "application/json",
        }

        try:
            resp = requests.get(SEARCH_API_URL, params=params, headers=headers, timeout=REQUEST_TIMEOUT)
            resp.raise_for_status()
            data = resp.json()
        except requests.RequestException as e:
            logger.error("検索 API 呼び出し失敗: keyword=%s, mode=%s, error=%s", keyword, mode, e)
            return None
        except ValueError as e:
            logger.error("検索 API の応答が JSON ではありません: keyword=%s, error=%s", keyword, e)
            return None

        if not isinstance(data, dict) or "error" in data:
            logger.error("検索 API エラー: keyword=%s, response=%s", keyword, data)
            return None
        return data


def wait_interval() -> None:
    """リクエスト間隔を 1〜3 秒ランダムで待機する."""
    interval = random.uniform(REQUEST_INTERVAL_MIN, REQUEST_INTERVAL_MAX)
    time.sleep(interval)


def parse_search_response(data: dict, mode: str) -> list[SearchResult]:
    """API 応答 (formatVersion=2) から SearchResult のリストを作る."""
    items = data.get("Items") or []
    results: list[SearchResult] = []
    for raw in items:
        # formatVersion=1 の {"Item": {...}} 形式も受け付ける
        if isinstance(raw, dict) and isinstance(raw.get("Item"), dict):
            raw = raw["Item"]
        if not isinstance(raw, dict):
            continue
        results.append(_to_result(raw, mode))
    return results


def _to_result(raw: dict, mode: str) -> SearchResult:
    images = {}
    for size, field_name in IMAGE_FIELDS.items():
        url = _text(raw.get(field_name))
        if url:
            images[size] = url

    people = {}
    for role, field_name in ROLE_FIELDS.items():
        names = split_names(raw.get(field_name))
        if names:
            people[role] = names

    return SearchResult(
        id=_text(raw.get("isbn")) or _text(raw.get("jan")),
        title=_text(raw.get("title")),
        url=_text(raw.get("itemUrl")),
        type=mode,
        price=_price(raw.get("itemPrice")),
        images=images,
        people=people,
    )


def split_names(value) -> list[str]:
    """「著者A/著者B」形式を名前のリストにする."""
    text = _text(value)
    if not text:
        return []
    return [name.strip() for name in text.split("/") if name.strip()]


def _text(value) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _price(value) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
