"""Cache manager for DataQL.

Fingerprints a set of resolved source files, decides whether a previously
imported DuckDB artifact is still valid, and maintains the cache directory.
"""

import hashlib
import json
import logging
import os
import uuid
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

from pydantic import ValidationError

from ..utils.error_handling import (
    CacheDisabledError,
    CacheError,
    CacheMetadataError,
    SourceAccessError,
)
from ..utils.formatting import format_size
from .lock import KeyLock
from .schema import (
    ARTIFACT_SUFFIX,
    CACHE_FORMAT_VERSION,
    LOCK_SUFFIX,
    METADATA_SUFFIX,
    CacheEntry,
    CacheLookup,
    CacheMetadata,
    CacheStats,
    ClearResult,
)

logger = logging.getLogger(__name__)

KEY_SEPARATOR = "|"
KEY_BYTES = 16


def get_default_cache_dir() -> Path:
    """Get default cache directory.

    Returns:
        ``~/.dataql/cache``
    """
    return Path.home() / ".dataql" / "cache"


def _file_identity(file_path: str) -> Tuple[str, int]:
    """Absolute path and nanosecond mtime of a file.

    Raises:
        SourceAccessError: If the file cannot be stat'ed
    """
    abs_path = os.path.abspath(file_path)
    try:
        mtime_ns = os.stat(file_path).st_mtime_ns
    except OSError as e:
        raise SourceAccessError(f"failed to stat file: {e}", source=file_path) from e
    return abs_path, mtime_ns


class CacheManager:
    """Manages the on-disk import cache.

    Layout::

        <cache_dir>/<key>.duckdb   imported data
        <cache_dir>/<key>.json     CacheMetadata
        <cache_dir>/<key>.lock     advisory write lock
    """

    def __init__(
        self,
        cache_dir: Optional[str] = None,
        enabled: bool = True,
        lock_timeout: float = 30.0,
    ):
        """Initialize cache manager.

        Args:
            cache_dir: Cache directory (default: ~/.dataql/cache)
            enabled: When False every lookup is a miss and maintenance
                operations raise CacheDisabledError
            lock_timeout: Seconds to wait for a per-key write lock
        """
        self._enabled = enabled
        self.lock_timeout = lock_timeout
        self.cache_dir: Optional[Path] = None

        if not enabled:
            return

        if cache_dir:
            self.cache_dir = Path(cache_dir).expanduser()
        else:
            self.cache_dir = get_default_cache_dir()

        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CacheError(f"failed to create cache directory: {e}") from e

    @property
    def enabled(self) -> bool:
        return self._enabled

    def get_cache_dir(self) -> str:
        """Cache directory path, or "" when disabled."""
        return str(self.cache_dir) if self.cache_dir else ""

    def _require_enabled(self) -> Path:
        if not self._enabled or self.cache_dir is None:
            raise CacheDisabledError()
        return self.cache_dir

    # === Keys and paths ===

    def generate_key(self, files: List[str]) -> str:
        """Fingerprint a set of source files.

        Order of ``files`` does not matter. Any change in membership or in
        a file's mtime yields a different key.

        Args:
            files: Local source paths

        Returns:
            32-character hex key, or "" when the cache is disabled

        Raises:
            SourceAccessError: If a file cannot be stat'ed
        """
        if not self._enabled:
            return ""

        parts = []
        for file_path in sorted(files):
            abs_path, mtime_ns = _file_identity(file_path)
            parts.append(f"{abs_path}:{mtime_ns}")

        digest = hashlib.sha256(KEY_SEPARATOR.join(parts).encode("utf-8")).digest()
        return digest[:KEY_BYTES].hex()

    def cache_path(self, key: str) -> str:
        """Artifact path for a key ("" when disabled or key empty)."""
        if not self._enabled or not key:
            return ""
        return str(self.cache_dir / f"{key}{ARTIFACT_SUFFIX}")

    def metadata_path(self, key: str) -> str:
        """Metadata path for a key ("" when disabled or key empty)."""
        if not self._enabled or not key:
            return ""
        return str(self.cache_dir / f"{key}{METADATA_SUFFIX}")

    def _lock(self, key: str) -> KeyLock:
        return KeyLock(self.cache_dir / f"{key}{LOCK_SUFFIX}", timeout=self.lock_timeout)

    # === Lookup ===

    def lookup(self, files: List[str]) -> CacheLookup:
        """Check whether a valid artifact exists for ``files``.

        Missing artifact or metadata, unreadable metadata, format version
        skew and any path/mtime difference are all misses.

        Raises:
            SourceAccessError: If one of ``files`` cannot be stat'ed
        """
        if not self._enabled:
            return CacheLookup(valid=False)

        key = self.generate_key(files)
        cache_path = self.cache_path(key)

        if not os.path.isfile(cache_path) or not os.path.isfile(self.metadata_path(key)):
            logger.debug("Cache miss for %s: entry incomplete", key)
            return CacheLookup(valid=False, key=key)

        try:
            metadata = self.read_metadata(key)
        except CacheMetadataError as e:
            logger.debug("Cache miss for %s: %s", key, e)
            return CacheLookup(valid=False, key=key)

        if metadata.format_version != CACHE_FORMAT_VERSION:
            logger.debug(
                "Cache miss for %s: format version %s != %s",
                key,
                metadata.format_version,
                CACHE_FORMAT_VERSION,
            )
            return CacheLookup(valid=False, key=key)

        if not self._source_files_match(files, metadata):
            logger.debug("Cache miss for %s: source files changed", key)
            return CacheLookup(valid=False, key=key)

        logger.debug("Cache hit for %s", key)
        return CacheLookup(valid=True, key=key, cache_path=cache_path, metadata=metadata)

    def is_cache_valid(self, files: List[str]) -> Tuple[bool, str]:
        """Validity verdict and artifact path ("" on a miss)."""
        result = self.lookup(files)
        return result.valid, result.cache_path or ""

    @staticmethod
    def _source_files_match(files: List[str], metadata: CacheMetadata) -> bool:
        if len(files) != len(metadata.source_files):
            return False

        expected = metadata.recorded_mtimes()
        if len(expected) != len(files):
            return False

        for file_path in files:
            abs_path = os.path.abspath(file_path)
            if abs_path not in expected:
                return False
            try:
                mtime_ns = os.stat(file_path).st_mtime_ns
            except OSError:
                return False
            if mtime_ns != expected[abs_path]:
                return False

        return True

    # === Write-back ===

    @contextmanager
    def artifact_writer(self, key: str) -> Iterator[str]:
        """Write a new artifact atomically.

        Yields a temporary path in the cache directory; on normal exit it is
        renamed over ``<key>.duckdb``, on error it is removed. The per-key
        lock is held for the whole block.

        Example::

            with cache.artifact_writer(key) as tmp_path:
                importer.import_files(files, tmp_path)
        """
        cache_dir = self._require_enabled()
        temp_path = cache_dir / f".{key}.{uuid.uuid4().hex[:8]}{ARTIFACT_SUFFIX}.tmp"

        with self._lock(key):
            try:
                yield str(temp_path)
                os.replace(temp_path, self.cache_path(key))
            finally:
                for leftover in (temp_path, Path(f"{temp_path}.wal")):
                    try:
                        leftover.unlink()
                    except FileNotFoundError:
                        pass
                    except OSError as e:
                        logger.warning("Failed to remove %s: %s", leftover, e)

    def save_metadata(
        self,
        key: str,
        files: List[str],
        tables: List[str],
        total_rows: int,
    ) -> Optional[CacheMetadata]:
        """Persist metadata for a freshly imported artifact.

        Any previous metadata for ``key`` is replaced. The file is written to
        a temporary name and renamed into place under the per-key lock.

        Returns:
            The saved metadata, or None when the cache is disabled

        Raises:
            SourceAccessError: If a source file cannot be stat'ed
            CacheError: If the metadata cannot be written
        """
        if not self._enabled:
            return None

        source_files = []
        mod_times = []
        for file_path in files:
            abs_path, mtime_ns = _file_identity(file_path)
            source_files.append(abs_path)
            mod_times.append(mtime_ns)

        metadata = CacheMetadata(
            source_files=source_files,
            mod_times=mod_times,
            cached_at=datetime.now().astimezone(),
            cache_file=self.cache_path(key),
            total_rows=total_rows,
            tables=list(tables),
            file_hash=key,
            format_version=CACHE_FORMAT_VERSION,
        )

        metadata_path = Path(self.metadata_path(key))
        temp_path = metadata_path.with_name(f".{metadata_path.name}.{uuid.uuid4().hex[:8]}.tmp")

        with self._lock(key):
            try:
                temp_path.write_text(metadata.model_dump_json(indent=2), encoding="utf-8")
                os.replace(temp_path, metadata_path)
            except OSError as e:
                try:
                    temp_path.unlink()
                except OSError:
                    pass
                raise CacheError(f"failed to write metadata: {e}") from e

        return metadata

    def read_metadata(self, key: str) -> CacheMetadata:
        """Load metadata for a key.

        Raises:
            CacheDisabledError: If the cache is disabled
            CacheMetadataError: If the file is missing or malformed
        """
        self._require_enabled()
        path = self.metadata_path(key)
        try:
            with open(path, "r", encoding="utf-8") as f:
                return CacheMetadata.model_validate(json.load(f))
        except (OSError, UnicodeDecodeError) as e:
            raise CacheMetadataError(f"failed to read metadata: {e}", source=path) from e
        except (json.JSONDecodeError, ValidationError) as e:
            raise CacheMetadataError(f"failed to parse metadata: {e}", source=path) from e

    # === Cache management ===

    def list_entries(self) -> List[CacheEntry]:
        """List cache entries, newest first.

        Entries with unreadable metadata are skipped.
        """
        cache_dir = self._require_enabled()

        entries = []
        for metadata_file in cache_dir.glob(f"*{METADATA_SUFFIX}"):
            key = metadata_file.name[: -len(METADATA_SUFFIX)]
            try:
                metadata = self.read_metadata(key)
            except CacheMetadataError as e:
                logger.debug("Skipping cache entry %s: %s", key, e)
                continue

            try:
                size_bytes = os.path.getsize(self.cache_path(key))
            except OSError:
                size_bytes = 0

            entries.append(
                CacheEntry(
                    cache_key=key,
                    source_files=metadata.source_files,
                    cached_at=metadata.cached_at,
                    total_rows=metadata.total_rows,
                    tables=metadata.tables,
                    size_bytes=size_bytes,
                )
            )

        entries.sort(key=lambda e: e.cached_at.timestamp(), reverse=True)
        return entries

    def clear_all(self) -> ClearResult:
        """Remove every file in the cache directory.

        Individual removal failures are logged and collected; they do not
        stop the sweep.
        """
        cache_dir = self._require_enabled()

        result = ClearResult()
        for path in cache_dir.iterdir():
            if not path.is_file():
                continue
            try:
                path.unlink()
                result.cleared += 1
            except OSError as e:
                message = f"failed to remove {path}: {e}"
                logger.warning(message)
                result.warnings.append(message)

        logger.info("Cleared %d cache files", result.cleared)
        return result

    def clear_entry(self, key: str) -> None:
        """Remove one artifact and its metadata; absent files are fine.

        Raises:
            CacheError: If an existing file cannot be removed
        """
        self._require_enabled()

        for path, label in (
            (self.cache_path(key), "cache file"),
            (self.metadata_path(key), "metadata file"),
            (str(self.cache_dir / f"{key}{LOCK_SUFFIX}"), "lock file"),
        ):
            try:
                os.remove(path)
            except FileNotFoundError:
                continue
            except OSError as e:
                raise CacheError(f"failed to remove {label}: {e}", source=path) from e

    def stats(self) -> CacheStats:
        """Count artifacts and sum their sizes."""
        cache_dir = self._require_enabled()

        stats = CacheStats()
        for path in cache_dir.glob(f"*{ARTIFACT_SUFFIX}"):
            stats.count += 1
            try:
                stats.total_bytes += path.stat().st_size
            except OSError:
                continue
        return stats

    def summary(self) -> str:
        """Human-readable one-line stats summary."""
        stats = self.stats()
        return f"{stats.count} cached entries ({format_size(stats.total_bytes)})"
