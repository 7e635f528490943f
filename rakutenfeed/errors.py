"""例外定義."""


class RakutenFeedError(Exception):
    """このパッケージの例外の基底クラス."""


class StoreOpenError(RakutenFeedError):
    """DB ファイルを開けない."""


class SchemaInitError(RakutenFeedError):
    """新規 DB のスキーマ作成に失敗した. ファイルは削除済み."""

    def __init__(self, path, failures):
        self.path = path
        self.failures = failures  # [(statement, error), ...]
        lines = [f"スキーマ作成に失敗しました: {path}"]
        for statement, error in failures:
            lines.append(f"  {' '.join(statement.split())} -> {error}")
        super().__init__("\n".join(lines))


class IngestWriteError(RakutenFeedError):
    """既存 DB への書き込みに失敗した."""


class StoreQueryError(RakutenFeedError):
    """DB からの読み出しに失敗した."""


class OutputWriteError(RakutenFeedError):
    """フィードの一時ファイルを書き出せない."""
