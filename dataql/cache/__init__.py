"""File-based cache module for DataQL.

Provides a content-addressed cache of imported DuckDB databases with:
- Fingerprints over source paths and modification times
- Validity checks that treat any anomaly as a miss
- Atomic, per-key locked write-back
"""

from .lock import KeyLock
from .manager import CacheManager, get_default_cache_dir
from .schema import (
    CACHE_FORMAT_VERSION,
    CacheEntry,
    CacheLookup,
    CacheMetadata,
    CacheStats,
    ClearResult,
)

__all__ = [
    "CACHE_FORMAT_VERSION",
    "CacheEntry",
    "CacheLookup",
    "CacheManager",
    "CacheMetadata",
    "CacheStats",
    "ClearResult",
    "KeyLock",
    "get_default_cache_dir",
]
