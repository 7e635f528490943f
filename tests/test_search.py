"""search モジュールのユニットテスト."""

import json
from pathlib import Path
from unittest.mock import MagicMock, patch

import requests

from rakutenfeed.config import Config
from rakutenfeed.search import SearchClient, parse_search_response, split_names

FIXTURES_DIR = Path(__file__).parent / "fixtures"


def _load_fixture(name: str) -> dict:
    return json.loads((FIXTURES_DIR / name).read_text(encoding="utf-8"))


class TestParseSearchResponse:
    """parse_search_response のテスト."""

    def test_parse(self):
        results = parse_search_response(_load_fixture("books_search.json"), "books")

        assert len(results) == 4
        first = results[0]
        assert first.id == "9784062748681"
        assert first.title == "ノルウェイの森（上）"
        assert first.url == "https://books.rakuten.co.jp/rb/1560426/"
        assert first.type == "books"
        assert first.price == 693
        assert first.image("l").endswith("_ex=200x200")
        assert set(first.images) == {"s", "m", "l"}
        assert first.names("author") == ["村上春樹"]
        assert first.names("artist") == []

    def test_multiple_authors(self):
        results = parse_search_response(_load_fixture("books_search.json"), "books")

        assert results[1].names("author") == ["村上春樹", "和田誠"]
        assert results[1].price == 1760
        assert results[1].images == {}

    def test_jan_fallback(self):
        results = parse_search_response(_load_fixture("books_search.json"), "cd")

        assert results[2].id == "4988001234567"
        assert results[2].names("artist") == ["柄本佑"]
        assert set(results[2].images) == {"s", "l"}

    def test_missing_id(self):
        results = parse_search_response(_load_fixture("books_search.json"), "books")

        assert results[3].id is None
        assert results[3].price is None

    def test_format_version_1(self):
        data = {"Items": [{"Item": {"isbn": "123", "title": "T"}}]}
        [result] = parse_search_response(data, "books")
        assert result.id == "123"
        assert result.title == "T"

    def test_empty(self):
        assert parse_search_response({}, "books") == []
        assert parse_search_response({"Items": None}, "books") == []


class TestSplitNames:
    """split_names のテスト."""

    def test_split(self):
        assert split_names(" A / B /") == ["A", "B"]

    def test_empty(self):
        assert split_names("") == []
        assert split_names(None) == []


class TestSearchClient:
    """SearchClient.search のテスト."""

    @patch("rakutenfeed.search.requests.get")
    def test_search(self, mock_get):
        mock_resp = MagicMock()
        mock_resp.json.return_value = _load_fixture("books_search.json")
        mock_get.return_value = mock_resp

        client = SearchClient(Config(token="app-id", secret="key", search_mode="books"))
        results = client.search("村上春樹")

        assert len(results) == 4
        params = mock_get.call_args.kwargs["params"]
        assert params["applicationId"] == "app-id"
        assert params["accessKey"] == "key"
        assert params["keyword"] == "村上春樹"
        assert params["booksGenreId"] == "001"
        assert params["formatVersion"] == 2

    @patch("rakutenfeed.search.requests.get")
    def test_mode_override(self, mock_get):
        mock_resp = MagicMock()
        mock_resp.json.return_value = {"Items": []}
        mock_get.return_value = mock_resp

        client = SearchClient(Config(token="app-id"))
        assert client.search("jazz", "cd") == []

        params = mock_get.call_args.kwargs["params"]
        assert params["booksGenreId"] == "002"
        assert "accessKey" not in params

    @patch("rakutenfeed.search.requests.get")
    def test_http_error_returns_none(self, mock_get):
        mock_get.side_effect = requests.ConnectionError("boom")

        assert SearchClient(Config(token="app-id")).search("x") is None

    @patch("rakutenfeed.search.requests.get")
    def test_api_error_returns_none(self, mock_get):
        mock_resp = MagicMock()
        mock_resp.json.return_value = {"error": "wrong_parameter", "error_description": "keyword is not valid"}
        mock_get.return_value = mock_resp

        assert SearchClient(Config(token="app-id")).search("x") is None

    @patch("rakutenfeed.search.requests.get")
    def test_invalid_json_returns_none(self, mock_get):
        mock_resp = MagicMock()
        mock_resp.json.side_effect = ValueError("not json")
        mock_get.return_value = mock_resp

        assert SearchClient(Config(token="app-id")).search("x") is None
