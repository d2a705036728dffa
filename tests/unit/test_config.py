"""
Tests for settings, descriptors and YAML configuration.
"""

import pytest
from pathlib import Path
import sys

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from tablediff.config.manager import ConfigManager, create_sample_config, expand_env
from tablediff.config.models import (
    CompareRequest,
    FileSource,
    QuerySource,
    RecordsSource,
    Settings,
    descriptor_from_dict,
    parse_thresholds,
)
from tablediff.core.errors import InvalidRequest, MalformedThreshold


class TestSettings:

    def test_defaults(self):
        settings = Settings()

        assert settings.default_key == "ID"
        assert settings.join_column == "UNI_KEY"
        assert settings.has_header is True
        assert settings.fetch_mode == "sequential"

    def test_non_positive_timeout_means_no_limit(self):
        assert Settings(query_timeout=0).query_timeout is None

    def test_invalid_fetch_mode(self):
        with pytest.raises(InvalidRequest):
            Settings(fetch_mode="parallel")

    def test_from_dict_ignores_unknown_keys(self):
        settings = Settings.from_dict({"default_key": "code", "colour": "blue"})

        assert settings.default_key == "code"


class TestDescriptors:

    def test_path_string(self, tmp_path):
        descriptor = descriptor_from_dict("data/a.csv", base_dir=tmp_path)

        assert isinstance(descriptor, FileSource)
        assert descriptor.path == str(tmp_path / "data" / "a.csv")
        assert descriptor.kind == "delimited"

    def test_spreadsheet_describe_includes_sheet(self):
        descriptor = descriptor_from_dict({"path": "book.xlsx", "sheet": "Q1"})

        assert descriptor.kind == "spreadsheet"
        assert descriptor.describe() == "book.xlsx [Q1]"

    def test_query_descriptor(self):
        descriptor = descriptor_from_dict({
            "target": "duckdb:///w.duckdb",
            "sql": "SELECT * FROM t",
            "username": "u",
            "key": ["a", "b"],
        })

        assert isinstance(descriptor, QuerySource)
        assert descriptor.credentials.username == "u"
        assert descriptor.key == "a,b"

    def test_same_connection(self):
        a = QuerySource("duckdb:///w.duckdb", "SELECT * FROM a")
        b = QuerySource(" duckdb:///w.duckdb ", "SELECT * FROM b")
        c = QuerySource("duckdb:///other.duckdb", "SELECT * FROM a")

        assert a.same_connection(b)
        assert not a.same_connection(c)

    def test_records_descriptor(self):
        descriptor = descriptor_from_dict({"records": [{"id": 1}], "name": "api"})

        assert isinstance(descriptor, RecordsSource)
        assert descriptor.describe() == "api (1 records)"

    def test_unrecognized_mapping(self):
        with pytest.raises(InvalidRequest):
            descriptor_from_dict({"colour": "blue"})

    def test_query_without_target(self):
        with pytest.raises(InvalidRequest):
            descriptor_from_dict({"query": "SELECT 1 FROM t"})


class TestThresholds:

    @pytest.mark.parametrize("value", [
        {"amt": 2.5, "qty": "1"},
        "amt=2.5, qty=1",
        ["amt=2.5", "qty=1"],
    ])
    def test_accepted_shapes(self, value):
        assert parse_thresholds(value) == {"amt": 2.5, "qty": 1.0}

    @pytest.mark.parametrize("value", [
        {"amt": "lots"},
        {"amt": -1},
        "amt",
        {"amt": True},
    ])
    def test_malformed(self, value):
        with pytest.raises(MalformedThreshold):
            parse_thresholds(value)

    def test_none(self):
        assert parse_thresholds(None) == {}


class TestCompareRequest:

    def test_from_dict(self):
        request = CompareRequest.from_dict({
            "source": "a.csv",
            "target": "b.csv",
            "key": "id",
            "ignore": "ts, note",
            "thresholds": {"amt": 1},
        })

        assert request.ignore_columns == ("ts", "note")
        assert request.thresholds == {"amt": 1.0}

    def test_missing_target(self):
        with pytest.raises(InvalidRequest) as exc_info:
            CompareRequest.from_dict({"source": "a.csv"})

        assert exc_info.value.parameter == "target"


class TestConfigManager:

    def test_load_jobs_and_defaults(self, tmp_path, monkeypatch):
        monkeypatch.setenv("WAREHOUSE_USER", "analyst")
        config = tmp_path / "jobs.yaml"
        config.write_text(
            "defaults:\n"
            "  default_key: code\n"
            "  fetch_mode: concurrent\n"
            "comparisons:\n"
            "  - source: old.csv\n"
            "    target: new.csv\n"
            "  - name: db\n"
            "    source:\n"
            "      target: duckdb:///w.duckdb\n"
            "      username: ${WAREHOUSE_USER}\n"
            "      query: SELECT * FROM a\n"
            "    target:\n"
            "      target: duckdb:///w.duckdb\n"
            "      query: SELECT * FROM b\n",
            encoding="utf-8",
        )

        manager = ConfigManager(config)
        manager.load()

        assert manager.settings.default_key == "code"
        assert manager.settings.fetch_mode == "concurrent"
        assert [c.name for c in manager.comparisons] == ["comparison_1", "db"]
        assert manager.comparisons[0].source.path == str(tmp_path / "old.csv")
        assert manager.get_comparison("db").source.credentials.username == "analyst"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            ConfigManager(tmp_path / "missing.yaml").load()

    def test_unknown_comparison(self, tmp_path):
        config = tmp_path / "jobs.yaml"
        config.write_text("comparisons: []\n", encoding="utf-8")
        manager = ConfigManager(config)
        manager.load()

        with pytest.raises(KeyError):
            manager.get_comparison("nope")

    def test_unset_env_var_expands_to_empty(self, monkeypatch):
        monkeypatch.delenv("TABLEDIFF_NOT_SET", raising=False)

        assert expand_env("user=${TABLEDIFF_NOT_SET}") == "user="

    def test_sample_config_round_trips(self, tmp_path):
        path = create_sample_config(tmp_path / "sample.yaml")
        manager = ConfigManager(path)
        manager.load()

        assert len(manager.comparisons) == 2
        assert manager.comparisons[1].key == "order_id, line_no"

        with pytest.raises(FileExistsError):
            create_sample_config(path)
