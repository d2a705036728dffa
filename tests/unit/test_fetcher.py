"""
Tests for the source fetcher.
"""

import threading
import pytest
import duckdb
import pandas as pd
from pathlib import Path
from unittest.mock import Mock
import sys

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from tablediff.config.models import FileSource, QuerySource, RecordsSource, Settings
from tablediff.core.errors import FetchCancelled, KeyColumnMissing, SourceNotFound
from tablediff.core.session import ConnectionRegistry, SessionManager
from tablediff.pipeline.fetcher import SourceFetcher


@pytest.fixture
def warehouse(tmp_path):
    """DuckDB file with an orders table."""
    path = tmp_path / "warehouse.duckdb"
    con = duckdb.connect(str(path))
    con.execute("CREATE TABLE orders (id INTEGER, amt INTEGER)")
    con.execute("INSERT INTO orders VALUES (1, 100), (2, 200)")
    con.close()
    return path


class TestSourceFetcher:

    def setup_method(self):
        self.registry = ConnectionRegistry()
        self.fetcher = SourceFetcher(sessions=SessionManager(registry=self.registry))

    def test_delimited_file(self, tmp_path):
        path = tmp_path / "orders_2024.csv"
        path.write_text("id;amt\n1;100\n", encoding="utf-8")

        result = self.fetcher.fetch(FileSource(str(path)), "id")

        assert result.kind == "csv"
        assert result.hint == "orders_2024"
        assert result.columns == ["id", "amt"]
        assert result.rows == [{"id": "1", "amt": "100"}]

    def test_header_default_from_settings(self, tmp_path):
        path = tmp_path / "raw.csv"
        path.write_text("1,a\n2,b\n", encoding="utf-8")
        fetcher = SourceFetcher(settings=Settings(has_header=False))

        result = fetcher.fetch(FileSource(str(path)), "COLUMN_1")

        assert result.row_count == 2
        assert result.columns == ["COLUMN_1", "COLUMN_2"]

    def test_spreadsheet(self, tmp_path):
        path = tmp_path / "book.xlsx"
        pd.DataFrame({"id": ["1", "2"], "name": ["Alice", "Bob"]}).to_excel(
            path, sheet_name="People", index=False)

        result = self.fetcher.fetch(FileSource(str(path), sheet="People"), "id")

        assert result.kind == "excel"
        assert result.hint == "book_People"
        assert result.rows[1] == {"id": "2", "name": "Bob"}

    def test_missing_sheet(self, tmp_path):
        path = tmp_path / "book.xlsx"
        pd.DataFrame({"id": ["1"]}).to_excel(path, index=False)

        with pytest.raises(SourceNotFound):
            self.fetcher.fetch(FileSource(str(path), sheet="Nope"), "id")

    def test_corrupt_workbook(self, tmp_path):
        path = tmp_path / "book.xlsx"
        path.write_bytes(b"PK\x03\x04" + b"truncated archive" * 4)

        with pytest.raises(SourceNotFound) as exc_info:
            self.fetcher.fetch(FileSource(str(path)), "id")

        assert "not a readable workbook" in exc_info.value.message

    def test_missing_spreadsheet_reader(self, tmp_path, monkeypatch):
        path = tmp_path / "legacy.xls"
        path.write_bytes(b"placeholder")

        def no_reader(*args, **kwargs):
            raise ImportError("Missing optional dependency 'xlrd'")

        monkeypatch.setattr(pd, "read_excel", no_reader)

        with pytest.raises(SourceNotFound):
            self.fetcher.fetch(FileSource(str(path)), "id")

    def test_records(self):
        descriptor = RecordsSource([{"code": 7, "v": None}], name="api feed")

        result = self.fetcher.fetch(descriptor, "code")

        assert result.kind == "table"
        assert result.hint == "api_feed"
        assert result.rows == [{"code": "7", "v": None}]

    def test_records_missing_key(self):
        with pytest.raises(KeyColumnMissing):
            self.fetcher.fetch(RecordsSource([{"code": 1}]), "id")

    def test_query(self, warehouse):
        descriptor = QuerySource(f"duckdb:///{warehouse}",
                                 "SELECT id, amt FROM orders ORDER BY id")

        result = self.fetcher.fetch(descriptor, "id")

        assert result.kind == "database"
        assert result.database == "warehouse"
        assert result.hint == "warehouse_orders"
        assert result.rows[0] == {"id": "1", "amt": "100"}
        assert self.registry.active_count() == 0

    def test_query_on_supplied_session_is_left_open(self, warehouse):
        sessions = SessionManager(registry=self.registry)
        descriptor = QuerySource(f"duckdb:///{warehouse}", "SELECT * FROM orders")

        with sessions.session(descriptor.target) as session:
            self.fetcher.fetch(descriptor, "id", session=session)
            assert not session.closed
            assert self.registry.active_count() == 1

        assert self.registry.active_count() == 0

    def test_cancelled_before_connect(self):
        sessions = Mock()
        fetcher = SourceFetcher(sessions=sessions)
        cancelled = threading.Event()
        cancelled.set()

        with pytest.raises(FetchCancelled) as exc_info:
            fetcher.fetch(QuerySource("duckdb:///x.duckdb", "SELECT * FROM t"),
                          "id", cancelled=cancelled, side="target")

        assert exc_info.value.side == "target"
        sessions.session.assert_not_called()
