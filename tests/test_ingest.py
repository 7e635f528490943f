"""ingest モジュールのテスト."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from rakutenfeed.db import open_store
from rakutenfeed.errors import IngestWriteError
from rakutenfeed.ingest import collect_new_items, ingest, ingest_all
from rakutenfeed.models import SearchResult

T0 = datetime(2026, 2, 27, 0, 0, 0, tzinfo=timezone.utc)


def _widget(**overrides) -> SearchResult:
    fields = {
        "id": "B001",
        "title": "Widget",
        "url": "http://x/B001",
        "type": "Books",
        "price": 999,
        "images": {"l": "http://img/l.jpg"},
        "people": {"author": ["A. Author"]},
    }
    fields.update(overrides)
    return SearchResult(**fields)


@pytest.fixture
def store(tmp_path):
    s = open_store(tmp_path / "feed.db")
    yield s
    s.close()


def _count(store, table):
    return store._conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]


class TestIngest:
    """ingest のテスト."""

    def test_widget_scenario(self, store):
        assert ingest(store, "widget", _widget(), T0) is True

        [item] = store.items_since(T0, "widget")
        assert item.id == "B001"
        assert item.title == "Widget"
        assert item.price == 999
        assert item.images == {"l": ["http://img/l.jpg"]}
        assert item.people == {"author": ["A. Author"]}
        assert _count(store, "image") == 1
        assert _count(store, "person") == 1

    def test_idempotent(self, store):
        """同じ結果を何度取り込んでも行が増えないこと."""
        assert ingest(store, "widget", _widget(), T0) is True
        for i in range(1, 5):
            assert ingest(store, "widget", _widget(), T0 + timedelta(minutes=i)) is False

        assert _count(store, "item") == 1
        assert _count(store, "image") == 1
        assert _count(store, "person") == 1

    def test_missing_fields_tolerated(self, store):
        ingest(store, "widget", SearchResult(id="B009"), T0)

        [item] = store.items_since(T0)
        assert (item.title, item.url, item.type, item.price) == ("", "", "", None)
        assert item.images == {}
        assert item.people == {}

    def test_missing_fields_still_idempotent(self, store):
        ingest(store, "widget", SearchResult(id="B009"), T0)
        ingest(store, "widget", SearchResult(id="B009"), T0 + timedelta(seconds=1))
        assert _count(store, "item") == 1

    def test_multiple_names_per_role(self, store):
        ingest(store, "widget", _widget(people={"author": ["A", "B"], "artist": ["C"]}), T0)

        [item] = store.items_since(T0)
        assert item.people == {"author": ["A", "B"], "artist": ["C"]}

    def test_unknown_sizes_and_roles_ignored(self, store):
        ingest(store, "widget", _widget(images={"xl": "http://img/xl.jpg"}, people={"editor": ["E"]}), T0)

        assert _count(store, "image") == 0
        assert _count(store, "person") == 0

    def test_rollback_on_failure(self, store):
        """画像の書き込みに失敗したら item も残らないこと."""
        store._conn.execute("DROP TABLE image")
        with pytest.raises(IngestWriteError):
            ingest(store, "widget", _widget(), T0)

        assert _count(store, "item") == 0


class TestIngestAll:
    """ingest_all のテスト."""

    def test_counts(self, store):
        records = [_widget(), _widget(id="B002", url="http://x/B002"), _widget()]
        assert ingest_all(store, "widget", records, T0) == (2, 0)

    def test_skips_records_without_id(self, store):
        assert ingest_all(store, "widget", [_widget(id=None), _widget(id="")], T0) == (0, 0)
        assert _count(store, "item") == 0

    def test_continues_after_failure(self):
        store = MagicMock()
        store.upsert_item.side_effect = [IngestWriteError("disk full"), True]

        created, failed = ingest_all(store, "widget", [_widget(), _widget(id="B002")], T0)

        assert (created, failed) == (1, 1)
        assert store.upsert_item.call_count == 2


class TestCollectNewItems:
    """collect_new_items のテスト."""

    def test_new_items_returned(self, store):
        items = collect_new_items(store, "widget", [_widget()], T0, observed_at=T0)
        assert [i.id for i in items] == ["B001"]

    def test_known_items_excluded(self, store):
        """前回の実行で見つかったアイテムは新着に含まれないこと."""
        collect_new_items(store, "widget", [_widget()], T0, observed_at=T0)

        t1 = T0 + timedelta(hours=1)
        items = collect_new_items(store, "widget", [_widget()], t1, observed_at=t1)
        assert items == []

    def test_keyword_isolation(self, store):
        """同じ ID でもキーワードごとに別アイテムとして扱うこと."""
        widget_items = collect_new_items(store, "widget", [_widget()], T0, observed_at=T0)
        gadget_items = collect_new_items(store, "gadget", [_widget()], T0, observed_at=T0)

        assert [(i.keyword, i.id) for i in widget_items] == [("widget", "B001")]
        assert [(i.keyword, i.id) for i in gadget_items] == [("gadget", "B001")]
        assert _count(store, "item") == 2
        assert _count(store, "image") == 1

    def test_default_observed_at_is_now(self, store):
        watermark = datetime.now(timezone.utc)
        items = collect_new_items(store, "widget", [_widget()], watermark)
        assert len(items) == 1
        assert items[0].first_seen_at >= watermark
