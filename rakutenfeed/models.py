"""データモデル定義."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class SearchResult:
    """検索 API が返す 1 商品を表す. 欠けているフィールドは None / 空."""

    id: str | None = None  # ISBN / JAN
    title: str | None = None
    url: str | None = None
    type: str | None = None  # 検索モード (books, cd, ...)
    price: int | None = None
    images: dict[str, str] = field(default_factory=dict)  # サイズ -> URL
    people: dict[str, list[str]] = field(default_factory=dict)  # 役割 -> 名前

    def image(self, size: str) -> str | None:
        return self.images.get(size) or None

    def names(self, role: str) -> list[str]:
        return [n for n in self.people.get(role, []) if n]


@dataclass
class Item:
    """DB に保存された 1 アイテム (画像・人物付き)."""

    keyword: str
    id: str
    title: str
    url: str
    type: str
    price: int | None
    first_seen_at: datetime  # UTC
    images: dict[str, list[str]] = field(default_factory=dict)
    people: dict[str, list[str]] = field(default_factory=dict)

    def image(self, size: str) -> str | None:
        urls = self.images.get(size)
        return urls[0] if urls else None
