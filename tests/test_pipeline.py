"""End-to-end tests for the source pipeline and the DuckDB importer."""

import gzip
import io
import os
from unittest.mock import MagicMock

import duckdb
import pytest

from dataql.cache import CacheManager
from dataql.config import Config
from dataql.engine import DuckDBImporter, table_name_for
from dataql.mqreader import ReaderRegistry
from dataql.mqreader.sqs import SQSReader
from dataql.pipeline import SourcePipeline
from dataql.resolvers.remote import URLResolver
from dataql.resolvers.stdin import StdinResolver
from dataql.utils.error_handling import (
    DataImportError,
    ReaderNotRegisteredError,
    SourceAccessError,
    UnsupportedFormatError,
)


@pytest.fixture
def cache(tmp_path):
    return CacheManager(cache_dir=str(tmp_path / "cache"))


def count_rows(database_path, table):
    conn = duckdb.connect(database_path, read_only=True)
    try:
        return conn.execute(f'SELECT COUNT(*) FROM "{table}"').fetchone()[0]
    finally:
        conn.close()


def bump_mtime(path):
    stat = os.stat(path)
    os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns + 10_000_000))


def csv_session(body=b"id,name\n1,alice\n2,bob\n"):
    """requests-like session returning ``body`` for every GET."""
    response = MagicMock()
    response.status_code = 200
    response.iter_content.return_value = [body]
    response.__enter__.return_value = response
    session = MagicMock()
    session.get.return_value = response
    return session


class TestTableNames:
    """Tests for table name derivation."""

    def test_table_name_for(self):
        assert table_name_for("/data/sales-2024.csv") == "sales_2024"
        assert table_name_for("/data/Orders.csv.gz") == "orders"
        assert table_name_for("/data/2024.json") == "t_2024"
        assert table_name_for("/data/---.csv") == "data"


class TestDuckDBImporter:
    """Tests for DuckDBImporter."""

    def test_import_csv_and_json(self, tmp_path, csv_file):
        events = tmp_path / "events.json"
        events.write_text('[{"id": 1}, {"id": 2}]')
        database = str(tmp_path / "out.duckdb")

        result = DuckDBImporter().import_files([str(csv_file), str(events)], database)

        assert result.tables == ["people", "events"]
        assert result.total_rows == 5
        assert count_rows(database, "events") == 2

    def test_duplicate_table_names(self, tmp_path):
        first = tmp_path / "one" / "data.csv"
        second = tmp_path / "two" / "data.csv"
        for path in (first, second):
            path.parent.mkdir()
            path.write_text("a\n1\n")

        result = DuckDBImporter().import_files(
            [str(first), str(second)], str(tmp_path / "out.duckdb")
        )

        assert result.tables == ["data", "data_2"]

    def test_unknown_format(self, tmp_path):
        source = tmp_path / "data.xyz"
        source.write_text("whatever")

        with pytest.raises(UnsupportedFormatError) as exc_info:
            DuckDBImporter().import_files([str(source)], str(tmp_path / "out.duckdb"))

        assert exc_info.value.source == str(source)
        assert ".xyz" in str(exc_info.value)

    def test_error_names_original_source(self, tmp_path):
        source = tmp_path / "data.xyz"
        source.write_text("whatever")

        with pytest.raises(UnsupportedFormatError) as exc_info:
            DuckDBImporter().import_files(
                [str(source)],
                str(tmp_path / "out.duckdb"),
                origins={str(source): "https://example.com/data.xyz"},
            )

        assert exc_info.value.source == "https://example.com/data.xyz"

    def test_corrupt_file_raises_import_error(self, tmp_path):
        source = tmp_path / "broken.parquet"
        source.write_bytes(b"this is not parquet")

        with pytest.raises(DataImportError) as exc_info:
            DuckDBImporter().import_files([str(source)], str(tmp_path / "out.duckdb"))

        assert exc_info.value.source == str(source)
        assert isinstance(exc_info.value.__cause__, duckdb.Error)


class TestSourcePipeline:
    """Tests for SourcePipeline.load."""

    def test_miss_hit_touch_miss(self, cache, csv_file):
        with SourcePipeline(cache=cache) as pipeline:
            first = pipeline.load([str(csv_file)])

        assert not first.cache_hit
        assert first.tables == ["people"]
        assert first.total_rows == 3
        assert first.database_path == cache.cache_path(first.key)
        assert count_rows(first.database_path, "people") == 3

        with SourcePipeline(cache=cache) as pipeline:
            second = pipeline.load([str(csv_file)])

        assert second.cache_hit
        assert second.key == first.key
        assert second.tables == ["people"]
        assert second.total_rows == 3

        bump_mtime(csv_file)

        with SourcePipeline(cache=cache) as pipeline:
            third = pipeline.load([str(csv_file)])

        assert not third.cache_hit
        assert third.key != first.key

    def test_compressed_source_keyed_by_original(self, cache, tmp_path):
        packed = tmp_path / "sales.csv.gz"
        with gzip.open(packed, "wb") as f:
            f.write(b"id,total\n1,10\n2,20\n")

        with SourcePipeline(cache=cache) as pipeline:
            first = pipeline.load([str(packed)])
            decompressed = pipeline._compression.temp_files

        assert first.key == cache.generate_key([str(packed)])
        assert first.tables == ["sales"]
        assert all(not os.path.exists(p) for p in decompressed)

        with SourcePipeline(cache=cache) as pipeline:
            second = pipeline.load([str(packed)])

        assert second.cache_hit
        assert second.key == first.key

    def test_failed_import_leaves_no_entry(self, cache, tmp_path):
        source = tmp_path / "notes.xyz"
        source.write_text("whatever")

        with SourcePipeline(cache=cache) as pipeline:
            with pytest.raises(UnsupportedFormatError) as exc_info:
                pipeline.load([str(source)])

        assert exc_info.value.source == str(source)
        assert cache.list_entries() == []
        assert cache.stats().count == 0

    def test_missing_source(self, cache, tmp_path):
        with SourcePipeline(cache=cache) as pipeline:
            with pytest.raises(SourceAccessError):
                pipeline.load([str(tmp_path / "missing.csv")])

    def test_cache_disabled(self, tmp_path, csv_file):
        config = Config()
        config.cache.enabled = False

        with SourcePipeline(config=config) as pipeline:
            result = pipeline.load([str(csv_file)])
            database_path = result.database_path

            assert not result.cache_hit
            assert result.key == ""
            assert count_rows(database_path, "people") == 3

        assert not os.path.exists(database_path)

    def test_queue_sources_become_readers(self, cache, csv_file):
        with SourcePipeline(cache=cache, registry=ReaderRegistry.with_defaults()) as pipeline:
            result = pipeline.load([str(csv_file), "sqs://orders?region=us-east-1"])

            assert len(result.readers) == 1
            assert isinstance(result.readers[0], SQSReader)
            assert result.tables == ["people"]

    def test_queue_only_sources(self, cache):
        with SourcePipeline(cache=cache) as pipeline:
            result = pipeline.load(["kafka://localhost:9092/events"])

        assert result.database_path == ""
        assert len(result.readers) == 1

    def test_unregistered_queue(self, cache):
        with SourcePipeline(cache=cache, registry=ReaderRegistry()) as pipeline:
            with pytest.raises(ReaderNotRegisteredError):
                pipeline.load(["sqs://orders?region=us-east-1"])

    def test_close_returns_no_warnings(self, cache, csv_file):
        pipeline = SourcePipeline(cache=cache)
        pipeline.load([str(csv_file)])

        assert pipeline.close() == []
        assert pipeline.close() == []

    def test_hit_uses_validated_metadata(self, cache, csv_file, monkeypatch):
        with SourcePipeline(cache=cache) as pipeline:
            pipeline.load([str(csv_file)])

        calls = []
        read_metadata = cache.read_metadata

        def counting_read(key):
            calls.append(key)
            return read_metadata(key)

        monkeypatch.setattr(cache, "read_metadata", counting_read)

        with SourcePipeline(cache=cache) as pipeline:
            result = pipeline.load([str(csv_file)])

        assert result.cache_hit
        assert result.tables == ["people"]
        assert result.total_rows == 3
        assert calls == [result.key]


class TestTransientSources:
    """Tests for sources copied from stdin or a remote store."""

    def test_url_source_bypasses_cache(self, cache):
        session = csv_session()
        results = []
        for _ in range(3):
            resolver = URLResolver(session=session)
            with SourcePipeline(cache=cache, url_resolver=resolver) as pipeline:
                result = pipeline.load(["https://example.com/data.csv"])
                results.append(result)
                assert count_rows(result.database_path, "data") == 2

        assert [r.cache_hit for r in results] == [False, False, False]
        assert all(r.key == "" for r in results)
        assert all(r.tables == ["data"] for r in results)
        assert cache.list_entries() == []
        assert cache.stats().count == 0

    def test_mixed_local_and_remote_sources(self, cache, csv_file):
        resolver = URLResolver(session=csv_session())
        with SourcePipeline(cache=cache, url_resolver=resolver) as pipeline:
            result = pipeline.load([str(csv_file), "https://example.com/data.csv"])

            assert result.tables == ["people", "data"]
            assert result.total_rows == 5

        assert cache.list_entries() == []

    def test_remote_error_names_url(self, cache):
        session = csv_session(body=b"irrelevant")
        resolver = URLResolver(session=session)

        with SourcePipeline(cache=cache, url_resolver=resolver) as pipeline:
            with pytest.raises(UnsupportedFormatError) as exc_info:
                pipeline.load(["https://example.com/export.xyz"])

        assert exc_info.value.source == "https://example.com/export.xyz"

    def test_stdin_source(self, cache):
        stdin = StdinResolver(input_format="json", stream=io.BytesIO(b'[{"id": 1}, {"id": 2}]'))

        with SourcePipeline(cache=cache, stdin_resolver=stdin) as pipeline:
            result = pipeline.load(["-"])
            temp_dir = stdin.temp_dir

            assert result.tables == ["stdin_data"]
            assert result.total_rows == 2
            assert not result.cache_hit

        assert not os.path.exists(temp_dir)
        assert cache.list_entries() == []

    def test_close_cleans_every_resolver(self, cache):
        resolver = URLResolver(session=csv_session())
        pipeline = SourcePipeline(cache=cache, url_resolver=resolver)
        pipeline.load(["https://example.com/data.csv"])
        temp_dir = resolver.temp_dir

        assert os.path.isdir(temp_dir)
        assert pipeline.close() == []
        assert not os.path.exists(temp_dir)
