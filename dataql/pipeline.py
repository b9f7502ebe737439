"""Source pipeline.

Turns user-supplied source references into a DuckDB database:
queue URLs become peek readers, stdin and remote objects are copied to temp
files, compressed files are decompressed, and local files are imported once
and reused from the cache until one of them changes.
"""

import logging
import os
import shutil
import tempfile
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .cache.manager import CacheManager
from .config import Config
from .engine import DuckDBImporter, table_name_for
from .mqreader.config import is_mq_url
from .mqreader.registry import ReaderRegistry
from .mqreader.types import MessageQueueReader
from .resolvers.compression import CompressionResolver
from .resolvers.cloud import AzureBlobResolver, GCSResolver
from .resolvers.remote import S3Resolver, URLResolver
from .resolvers.stdin import StdinResolver

logger = logging.getLogger(__name__)

SCRATCH_DATABASE = "dataql.duckdb"


@dataclass
class ResolvedSources:
    """Local files ready for import plus readers for queue sources.

    ``origins`` maps each local file to the reference the user gave for it.
    ``transient`` lists files copied from stdin or a remote store; they get a
    fresh mtime on every run and so can never produce a cache hit.
    """

    files: List[str] = field(default_factory=list)
    readers: List[MessageQueueReader] = field(default_factory=list)
    origins: Dict[str, str] = field(default_factory=dict)
    transient: List[str] = field(default_factory=list)


@dataclass
class LoadResult:
    """Outcome of SourcePipeline.load."""

    database_path: str
    cache_hit: bool
    key: str = ""
    tables: List[str] = field(default_factory=list)
    total_rows: int = 0
    readers: List[MessageQueueReader] = field(default_factory=list)


class SourcePipeline:
    """Resolves sources, consults the cache and imports on a miss.

    Use as a context manager; temporary downloads, decompressed files and
    readers are released on exit whether or not loading succeeded.
    """

    def __init__(
        self,
        cache: Optional[CacheManager] = None,
        registry: Optional[ReaderRegistry] = None,
        importer: Optional[DuckDBImporter] = None,
        config: Optional[Config] = None,
        url_resolver: Optional[URLResolver] = None,
        s3_resolver: Optional[S3Resolver] = None,
        gcs_resolver: Optional[GCSResolver] = None,
        azure_resolver: Optional[AzureBlobResolver] = None,
        stdin_resolver: Optional[StdinResolver] = None,
    ):
        """Initialize pipeline.

        Args:
            cache: Cache manager (built from config if None)
            registry: Reader registry (defaults registered if None)
            importer: DuckDB importer
            config: Settings used for anything not passed explicitly
            url_resolver: HTTP(S) resolver override
            s3_resolver: S3 resolver override
            gcs_resolver: Google Cloud Storage resolver override
            azure_resolver: Azure Blob Storage resolver override
            stdin_resolver: Standard input resolver override
        """
        config = config or Config()
        self.config = config

        if cache is None:
            cache = CacheManager(
                cache_dir=config.cache.cache_dir,
                enabled=config.cache.enabled,
                lock_timeout=config.cache.lock_timeout_seconds,
            )
        self.cache = cache
        self.registry = registry or ReaderRegistry.with_defaults()
        self.importer = importer or DuckDBImporter()

        self._stdin_resolver = stdin_resolver or StdinResolver(
            input_format=config.remote.stdin_format
        )
        self._url_resolver = url_resolver or URLResolver(
            timeout=config.remote.timeout_seconds,
            chunk_size=config.remote.chunk_size,
        )
        self._s3_resolver = s3_resolver or S3Resolver(region=config.remote.s3_region)
        self._gcs_resolver = gcs_resolver or GCSResolver()
        self._azure_resolver = azure_resolver or AzureBlobResolver()
        self._compression = CompressionResolver()
        self._readers: List[MessageQueueReader] = []
        self._scratch_dir: Optional[str] = None

    def __enter__(self) -> "SourcePipeline":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _fetchers(self) -> List[Any]:
        """Resolvers that copy a source into a temp file, in chain order."""
        return [
            self._stdin_resolver,
            self._url_resolver,
            self._s3_resolver,
            self._gcs_resolver,
            self._azure_resolver,
        ]

    # === Resolution ===

    def resolve(self, sources: List[str]) -> ResolvedSources:
        """Split queue sources from file sources and localize the files.

        File sources go through the stdin, URL, S3, GCS, Azure and
        compression resolvers in that order; caller order is kept.

        Raises:
            ResolutionError: If any file source cannot be made local
            RegistryError: If a queue source has no usable reader
        """
        resolved = ResolvedSources()

        file_sources = []
        for source in sources:
            if is_mq_url(source):
                reader = self.registry.new_reader_from_url(source)
                self._readers.append(reader)
                resolved.readers.append(reader)
            else:
                file_sources.append(source)

        files = list(file_sources)
        for resolver in self._fetchers():
            files = resolver.resolve(files)
        # Every resolver maps its input list one to one
        fetched = [local for local, source in zip(files, file_sources) if local != source]

        resolved.files = self._compression.resolve(files)
        resolved.origins = dict(zip(resolved.files, file_sources))
        resolved.transient = [
            p for p in resolved.files if self._compression.get_original_path(p) in fetched
        ]
        return resolved

    def fingerprint_paths(self, files: List[str]) -> List[str]:
        """Paths to key the cache on.

        Decompressed temp files are replaced by the compressed file they came
        from, so an unchanged ``.gz`` source keeps the same key across runs.
        """
        return [self._compression.get_original_path(p) for p in files]

    def table_aliases(self, files: List[str]) -> Dict[str, str]:
        """Table name per resolved file, taken from its original name."""
        return {p: table_name_for(self._compression.get_original_path(p)) for p in files}

    # === Loading ===

    def load(self, sources: List[str]) -> LoadResult:
        """Resolve ``sources`` and return a database holding their tables.

        On a cache hit the cached artifact is returned without importing. On
        a miss the files are imported straight into the cache and metadata is
        saved afterwards. With the cache disabled, or when any file came from
        stdin or a remote store, the import goes to a scratch database that
        lives until close() and the cache is neither read nor written.

        Raises:
            ResolutionError: If a source cannot be resolved
            DataImportError: If DuckDB cannot load a resolved file
            RegistryError: If a queue source has no usable reader
            CacheError: If the write-back fails
        """
        resolved = self.resolve(sources)
        result = LoadResult(database_path="", cache_hit=False, readers=resolved.readers)
        if not resolved.files:
            return result

        aliases = self.table_aliases(resolved.files)

        if not self.cache.enabled or resolved.transient:
            if resolved.transient:
                logger.debug(
                    "Skipping cache: %d source(s) copied to temp files", len(resolved.transient)
                )
            database_path = self._scratch_database()
            imported = self.importer.import_files(
                resolved.files, database_path, aliases, resolved.origins
            )
            result.database_path = database_path
            result.tables = imported.tables
            result.total_rows = imported.total_rows
            return result

        fingerprint = self.fingerprint_paths(resolved.files)
        lookup = self.cache.lookup(fingerprint)
        result.key = lookup.key
        if lookup.valid and lookup.metadata is not None:
            result.database_path = lookup.cache_path
            result.cache_hit = True
            result.tables = lookup.metadata.tables
            result.total_rows = lookup.metadata.total_rows
            logger.info("Using cached import %s", lookup.key)
            return result

        with self.cache.artifact_writer(lookup.key) as temp_path:
            imported = self.importer.import_files(
                resolved.files, temp_path, aliases, resolved.origins
            )

        # Metadata last: an entry without metadata is a miss
        self.cache.save_metadata(
            lookup.key, fingerprint, imported.tables, imported.total_rows
        )
        result.database_path = self.cache.cache_path(lookup.key)
        result.tables = imported.tables
        result.total_rows = imported.total_rows
        logger.info(
            "Imported %d rows into %d tables (cache key %s)",
            imported.total_rows,
            len(imported.tables),
            lookup.key,
        )
        return result

    def _scratch_database(self) -> str:
        if self._scratch_dir is None:
            self._scratch_dir = tempfile.mkdtemp(prefix="dataql_scratch_")
        path = os.path.join(self._scratch_dir, SCRATCH_DATABASE)
        if os.path.exists(path):
            os.remove(path)
        return path

    # === Cleanup ===

    def close(self) -> List[str]:
        """Release readers and temporary files.

        Never raises; problems are logged and returned.

        Returns:
            Warning messages collected during cleanup
        """
        warnings: List[str] = []

        for reader in self._readers:
            try:
                reader.close()
            except Exception as e:
                message = f"failed to close reader: {e}"
                logger.warning(message)
                warnings.append(message)
        self._readers = []

        warnings.extend(self._compression.cleanup())
        for resolver in reversed(self._fetchers()):
            warnings.extend(resolver.cleanup())

        if self._scratch_dir is not None:
            try:
                shutil.rmtree(self._scratch_dir)
            except OSError as e:
                message = f"failed to remove {self._scratch_dir}: {e}"
                logger.warning(message)
                warnings.append(message)
            self._scratch_dir = None

        return warnings
