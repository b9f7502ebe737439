"""Cache metadata schema.

Each cache entry is a DuckDB artifact ``<key>.duckdb`` plus a JSON metadata
file ``<key>.json`` described by CacheMetadata.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

CACHE_FORMAT_VERSION = 1

ARTIFACT_SUFFIX = ".duckdb"
METADATA_SUFFIX = ".json"
LOCK_SUFFIX = ".lock"


class CacheMetadata(BaseModel):
    """Persisted record describing one cache artifact.

    Always rewritten wholesale; never updated in place.
    """

    source_files: List[str] = Field(description="Absolute source paths")
    mod_times: List[int] = Field(description="Nanosecond mtimes, parallel to source_files")
    cached_at: datetime
    cache_file: str
    total_rows: int = Field(default=0, ge=0)
    tables: List[str] = Field(default_factory=list)
    file_hash: str = Field(description="Cache key")
    format_version: int = CACHE_FORMAT_VERSION

    @model_validator(mode="after")
    def check_parallel_lists(self) -> "CacheMetadata":
        """source_files and mod_times must line up."""
        if len(self.source_files) != len(self.mod_times):
            raise ValueError("source_files and mod_times must have the same length")
        return self

    def recorded_mtimes(self) -> dict:
        """Map of absolute path -> recorded nanosecond mtime."""
        return dict(zip(self.source_files, self.mod_times))


class CacheEntry(BaseModel):
    """Read-only listing view of a cache entry."""

    cache_key: str
    source_files: List[str] = Field(default_factory=list)
    cached_at: datetime
    total_rows: int = 0
    tables: List[str] = Field(default_factory=list)
    size_bytes: int = 0


class CacheStats(BaseModel):
    """Aggregate cache statistics."""

    count: int = 0
    total_bytes: int = 0


class CacheLookup(BaseModel):
    """Outcome of a cache validity check."""

    valid: bool
    key: str = ""
    cache_path: Optional[str] = None
    metadata: Optional[CacheMetadata] = Field(
        default=None, description="Validated metadata, set on a hit"
    )


class ClearResult(BaseModel):
    """Outcome of clearing the whole cache directory."""

    cleared: int = 0
    warnings: List[str] = Field(default_factory=list)
