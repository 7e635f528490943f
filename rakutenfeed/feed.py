"""RSS 2.0 フィード生成・書き出しモジュール."""

from __future__ import annotations

import logging
import os
import re
import sys
import xml.etree.ElementTree as ET
from collections.abc import Sequence
from datetime import datetime, timezone
from email.utils import format_datetime
from pathlib import Path
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from bs4 import BeautifulSoup

from rakutenfeed import __version__
from rakutenfeed.config import (
    AFFILIATE_PARAM,
    LARGE_IMAGE,
    PROG_NAME,
    SEARCH_MODES,
    SEARCH_PAGE_URL,
    STDOUT,
    Config,
)
from rakutenfeed.errors import OutputWriteError
from rakutenfeed.models import Item

logger = logging.getLogger(__name__)

# XML 1.0 で使えない制御文字 (タブ・改行・復帰以外の C0)
_XML_ILLEGAL = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")


def xml_text(value: str | None) -> str:
    return _XML_ILLEGAL.sub("", value or "")


def _sub(parent: ET.Element, tag: str, text: str | None = None, **attrib: str) -> ET.Element:
    element = ET.SubElement(parent, tag, {k: xml_text(v) for k, v in attrib.items()})
    if text is not None:
        element.text = xml_text(text)
    return element


def to_rfc822(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return format_datetime(dt.astimezone(timezone.utc), usegmt=True)


def add_query_param(url: str, name: str, value: str) -> str:
    """URL のクエリに name=value を追加する (既存のクエリは残す)."""
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != name]
    query.append((name, value))
    return urlunsplit(parts._replace(query=urlencode(query)))


def search_page_url(keyword: str, mode: str) -> str:
    """楽天ブックスの検索結果ページの URL."""
    return f"{SEARCH_PAGE_URL}?{urlencode({'sitem': keyword, 'g': SEARCH_MODES[mode]})}"


class FeedBuilder:
    """キーワードと新着アイテムから RSS ドキュメントを組み立てる."""

    def __init__(self, config: Config):
        self.config = config

    def channel_title(self, keywords: Sequence[str]) -> str:
        return "Rakuten Books: " + ", ".join(f"'{k}'" for k in keywords)

    def item_link(self, item: Item) -> str:
        if self.config.affiliate_tag:
            return add_query_param(item.url, AFFILIATE_PARAM, self.config.affiliate_tag)
        return item.url

    def item_title(self, item: Item) -> str:
        return f"{item.title} ({item.keyword})"

    def description(self, item: Item, link: str) -> str:
        """説明欄の HTML 断片 (大きい画像があれば先頭にリンク付きで入れる)."""
        soup = BeautifulSoup("", "html.parser")

        large = item.image(LARGE_IMAGE)
        if large:
            image_link = soup.new_tag("a", href=link)
            image_link.append(soup.new_tag("img", src=large, alt=item.title))
            soup.append(image_link)
            soup.append(soup.new_tag("br"))

        title_link = soup.new_tag("a", href=link)
        title_link.string = item.title
        soup.append(title_link)
        soup.append(soup.new_tag("br"))

        soup.append(item.url)
        soup.append(soup.new_tag("br"))
        soup.append(f"Keyword: {item.keyword}")
        soup.append(soup.new_tag("br"))
        found = item.first_seen_at.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
        soup.append(f"Found: {found}")

        return str(soup)

    def build(self, keywords: Sequence[str], items: Sequence[Item]) -> ET.ElementTree:
        rss = ET.Element("rss", version="2.0")
        channel = ET.SubElement(rss, "channel")
        _sub(channel, "title", self.channel_title(keywords))
        first = keywords[0] if keywords else ""
        _sub(channel, "link", search_page_url(first, self.config.search_mode))
        _sub(channel, "description", "New items found on Rakuten Books for " + ", ".join(keywords))
        _sub(channel, "language", self.config.locale)
        _sub(channel, "lastBuildDate", to_rfc822(datetime.now(timezone.utc)))
        _sub(channel, "generator", f"{PROG_NAME} {__version__}")

        count = 0
        for item in items:
            if not item.title:
                logger.debug("タイトルの無いアイテムをスキップ: id=%s", item.id)
                continue
            self._add_item(channel, item)
            count += 1

        logger.info("フィード生成: %d 件", count)
        return ET.ElementTree(rss)

    def _add_item(self, channel: ET.Element, item: Item) -> None:
        link = self.item_link(item)
        entry = ET.SubElement(channel, "item")
        _sub(entry, "title", self.item_title(item))
        _sub(entry, "link", link)
        _sub(entry, "guid", f"{item.keyword}:{item.id}", isPermaLink="false")
        _sub(entry, "pubDate", to_rfc822(item.first_seen_at))
        if item.type:
            _sub(entry, "category", item.type)
        _sub(entry, "description", self.description(item, link))

        large = item.image(LARGE_IMAGE)
        if large:
            _sub(entry, "enclosure", url=large, type="image/jpeg", length="0")

    def render(self, keywords: Sequence[str], items: Sequence[Item]) -> bytes:
        root = self.build(keywords, items).getroot()
        return ET.tostring(root, encoding="utf-8", xml_declaration=True)


def publish(data: bytes, destination: str | Path) -> None:
    """フィードを書き出す.

    "-" なら標準出力へ。それ以外は <path>.tmp に書いてから <path> に置き換える。

    Raises:
        OutputWriteError: 一時ファイルを書けない (既存のフィードはそのまま)
    """
    if str(destination) == STDOUT:
        sys.stdout.buffer.write(data)
        sys.stdout.flush()
        return

    path = Path(destination)
    tmp = path.with_name(path.name + ".tmp")
    try:
        fh = open(tmp, "wb")
    except OSError as e:
        raise OutputWriteError(f"一時ファイルを作成できません: {tmp}: {e}") from e

    try:
        with fh:
            fh.write(data)
        os.replace(tmp, path)
    except OSError as e:
        tmp.unlink(missing_ok=True)
        raise OutputWriteError(f"フィードを書き出せません: {path}: {e}") from e

    logger.info("フィードを書き出し: %s (%d bytes)", path, len(data))
