"""楽天ブックス検索の新着アイテムを RSS で配信するツール."""

__version__ = "0.3.0"
