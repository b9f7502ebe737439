"""Tests for the cache manager."""

import json
import os
import pathlib
import threading

import pytest

from dataql.cache import CACHE_FORMAT_VERSION, CacheManager, KeyLock, get_default_cache_dir
from dataql.utils.error_handling import (
    CacheDisabledError,
    CacheLockError,
    CacheMetadataError,
    SourceAccessError,
)
from dataql.utils.formatting import format_size


@pytest.fixture
def cache(tmp_path):
    return CacheManager(cache_dir=str(tmp_path / "cache"))


@pytest.fixture
def sources(tmp_path):
    first = tmp_path / "a.csv"
    second = tmp_path / "b.csv"
    first.write_text("x\n1\n")
    second.write_text("y\n2\n")
    return [str(first), str(second)]


def write_entry(cache, files, tables=("a",), total_rows=1):
    """Create an artifact and metadata the way the pipeline does."""
    key = cache.generate_key(files)
    with cache.artifact_writer(key) as temp_path:
        with open(temp_path, "wb") as f:
            f.write(b"duckdb")
    cache.save_metadata(key, files, list(tables), total_rows)
    return key


class TestGenerateKey:
    """Tests for cache key generation."""

    def test_key_shape(self, cache, sources):
        key = cache.generate_key(sources)

        assert len(key) == 32
        int(key, 16)

    def test_order_independent(self, cache, sources):
        assert cache.generate_key(sources) == cache.generate_key(list(reversed(sources)))

    def test_membership_changes_key(self, cache, sources):
        assert cache.generate_key(sources) != cache.generate_key(sources[:1])

    def test_mtime_changes_key(self, cache, sources):
        before = cache.generate_key(sources)
        stat = os.stat(sources[0])
        os.utime(sources[0], ns=(stat.st_atime_ns, stat.st_mtime_ns + 1_000_000))

        assert cache.generate_key(sources) != before

    def test_relative_and_absolute_paths_agree(self, cache, sources, monkeypatch):
        monkeypatch.chdir(os.path.dirname(sources[0]))
        relative = [os.path.basename(p) for p in sources]

        assert cache.generate_key(relative) == cache.generate_key(sources)

    def test_missing_file(self, cache, tmp_path):
        with pytest.raises(SourceAccessError):
            cache.generate_key([str(tmp_path / "missing.csv")])

    def test_disabled_returns_empty(self, sources):
        cache = CacheManager(enabled=False)

        assert cache.generate_key(sources) == ""
        assert cache.get_cache_dir() == ""
        assert cache.cache_path("abc") == ""


class TestLookup:
    """Tests for cache validity checks."""

    def test_miss_then_hit(self, cache, sources):
        assert not cache.lookup(sources).valid

        key = write_entry(cache, sources)
        result = cache.lookup(sources)

        assert result.valid
        assert result.key == key
        assert result.cache_path == cache.cache_path(key)
        assert cache.is_cache_valid(sources) == (True, cache.cache_path(key))

    def test_hit_carries_validated_metadata(self, cache, sources):
        assert cache.lookup(sources).metadata is None

        key = write_entry(cache, sources, tables=("a", "b"), total_rows=7)
        result = cache.lookup(sources)

        assert result.metadata is not None
        assert result.metadata.file_hash == key
        assert result.metadata.tables == ["a", "b"]
        assert result.metadata.total_rows == 7

    def test_touch_invalidates(self, cache, sources):
        write_entry(cache, sources)
        stat = os.stat(sources[1])
        os.utime(sources[1], ns=(stat.st_atime_ns, stat.st_mtime_ns + 5_000_000))

        assert cache.is_cache_valid(sources) == (False, "")

    def test_artifact_absent_is_miss(self, cache, sources):
        key = write_entry(cache, sources)
        os.remove(cache.cache_path(key))

        assert not cache.lookup(sources).valid

    def test_metadata_absent_is_miss(self, cache, sources):
        key = write_entry(cache, sources)
        os.remove(cache.metadata_path(key))

        assert not cache.lookup(sources).valid

    def test_corrupt_metadata_is_miss(self, cache, sources):
        key = write_entry(cache, sources)
        with open(cache.metadata_path(key), "w") as f:
            f.write("{not json")

        assert not cache.lookup(sources).valid

    def test_version_skew_is_miss(self, cache, sources):
        key = write_entry(cache, sources)
        path = cache.metadata_path(key)
        with open(path) as f:
            data = json.load(f)
        data["format_version"] = CACHE_FORMAT_VERSION + 1
        with open(path, "w") as f:
            json.dump(data, f)

        assert not cache.lookup(sources).valid

    def test_recorded_files_differ_is_miss(self, cache, sources, tmp_path):
        key = write_entry(cache, sources)
        path = cache.metadata_path(key)
        with open(path) as f:
            data = json.load(f)
        data["source_files"][0] = str(tmp_path / "other.csv")
        with open(path, "w") as f:
            json.dump(data, f)

        assert not cache.lookup(sources).valid

    def test_disabled_is_always_miss(self, sources):
        cache = CacheManager(enabled=False)
        assert cache.is_cache_valid(sources) == (False, "")


class TestWriteBack:
    """Tests for artifact and metadata writes."""

    def test_metadata_contents(self, cache, sources):
        key = write_entry(cache, sources, tables=("a", "b"), total_rows=2)

        with open(cache.metadata_path(key)) as f:
            data = json.load(f)

        assert data["file_hash"] == key
        assert data["source_files"] == [os.path.abspath(p) for p in sources]
        assert data["mod_times"] == [os.stat(p).st_mtime_ns for p in sources]
        assert data["tables"] == ["a", "b"]
        assert data["total_rows"] == 2
        assert data["format_version"] == CACHE_FORMAT_VERSION
        assert data["cache_file"] == cache.cache_path(key)
        assert "cached_at" in data

    def test_failed_write_leaves_no_artifact(self, cache, sources):
        key = cache.generate_key(sources)

        with pytest.raises(RuntimeError):
            with cache.artifact_writer(key) as temp_path:
                with open(temp_path, "wb") as f:
                    f.write(b"partial")
                raise RuntimeError("import failed")

        assert not os.path.exists(cache.cache_path(key))
        assert [p for p in os.listdir(cache.get_cache_dir()) if p.endswith(".tmp")] == []

    def test_rewrite_replaces_metadata(self, cache, sources):
        key = write_entry(cache, sources, total_rows=1)
        write_entry(cache, sources, total_rows=7)

        assert cache.read_metadata(key).total_rows == 7

    def test_disabled_save_is_noop(self, sources):
        assert CacheManager(enabled=False).save_metadata("k", sources, [], 0) is None

    def test_read_metadata_missing(self, cache):
        with pytest.raises(CacheMetadataError):
            cache.read_metadata("0" * 32)


class TestKeyLock:
    """Tests for the per-key lock."""

    def test_lock_times_out_while_held(self, tmp_path):
        path = tmp_path / "k.lock"
        held = threading.Event()
        release = threading.Event()

        def holder():
            with KeyLock(path):
                held.set()
                release.wait(5)

        thread = threading.Thread(target=holder)
        thread.start()
        try:
            assert held.wait(5)
            with pytest.raises(CacheLockError):
                KeyLock(path, timeout=0.2).acquire()
        finally:
            release.set()
            thread.join()

        with KeyLock(path, timeout=1.0):
            pass


class TestMaintenance:
    """Tests for list, clear and stats."""

    def test_list_entries_newest_first(self, cache, sources):
        older = write_entry(cache, sources[:1], tables=("a",))
        newer = write_entry(cache, sources, tables=("a", "b"))
        path = cache.metadata_path(older)
        with open(path) as f:
            data = json.load(f)
        data["cached_at"] = "2020-01-01T00:00:00+00:00"
        with open(path, "w") as f:
            json.dump(data, f)

        entries = cache.list_entries()

        assert [e.cache_key for e in entries] == [newer, older]
        assert entries[0].size_bytes == len(b"duckdb")
        assert entries[0].tables == ["a", "b"]

    def test_list_skips_unreadable_metadata(self, cache, sources):
        write_entry(cache, sources)
        with open(os.path.join(cache.get_cache_dir(), "broken.json"), "w") as f:
            f.write("nope")

        assert len(cache.list_entries()) == 1

    def test_clear_entry(self, cache, sources):
        key = write_entry(cache, sources)

        cache.clear_entry(key)

        assert not os.path.exists(cache.cache_path(key))
        assert not os.path.exists(cache.metadata_path(key))
        cache.clear_entry(key)

    def test_clear_all(self, cache, sources):
        write_entry(cache, sources[:1])
        write_entry(cache, sources)

        result = cache.clear_all()

        assert result.cleared >= 4
        assert result.warnings == []
        assert os.listdir(cache.get_cache_dir()) == []

    def test_clear_all_continues_past_failures(self, cache, sources, monkeypatch):
        first = write_entry(cache, sources[:1])
        write_entry(cache, sources)
        cache_dir = cache.get_cache_dir()
        before = len(os.listdir(cache_dir))
        blocked = os.path.basename(cache.metadata_path(first))
        real_unlink = pathlib.Path.unlink

        def unlink(self, *args, **kwargs):
            if self.name == blocked:
                raise PermissionError(13, "Permission denied")
            return real_unlink(self, *args, **kwargs)

        monkeypatch.setattr(pathlib.Path, "unlink", unlink)
        result = cache.clear_all()

        assert result.cleared == before - 1
        assert len(result.warnings) == 1
        assert blocked in result.warnings[0]
        assert "Permission denied" in result.warnings[0]
        assert os.listdir(cache_dir) == [blocked]

    def test_stats(self, cache, sources):
        write_entry(cache, sources[:1])
        write_entry(cache, sources)

        stats = cache.stats()

        assert stats.count == 2
        assert stats.total_bytes == 2 * len(b"duckdb")
        assert cache.summary() == "2 cached entries (12 B)"

    def test_disabled_operations_raise(self):
        cache = CacheManager(enabled=False)

        with pytest.raises(CacheDisabledError):
            cache.list_entries()
        with pytest.raises(CacheDisabledError):
            cache.clear_all()
        with pytest.raises(CacheDisabledError):
            cache.clear_entry("abc")
        with pytest.raises(CacheDisabledError):
            cache.stats()

    def test_default_cache_dir(self):
        assert str(get_default_cache_dir()).endswith(os.path.join(".dataql", "cache"))


class TestFormatSize:
    """Tests for size formatting."""

    def test_format_size(self):
        assert format_size(0) == "0 B"
        assert format_size(1023) == "1023 B"
        assert format_size(1024) == "1.0 KB"
        assert format_size(1536) == "1.5 KB"
        assert format_size(5 * 1024 * 1024) == "5.0 MB"
