"""Exception types for DataQL.

Resolution and registry errors abort the current invocation and carry the
source they relate to. Cache errors are raised only by explicit maintenance
operations; lookups absorb them into cache misses.
"""

from typing import Optional


class DataQLError(Exception):
    """Base class for all DataQL errors."""

    def __init__(self, message: str, source: Optional[str] = None):
        """Initialize error.

        Args:
            message: Human readable description
            source: Source reference the error relates to, if any
        """
        super().__init__(message)
        self.message = message
        self.source = source

    def __str__(self) -> str:
        if self.source and self.source not in self.message:
            return f"{self.source}: {self.message}"
        return self.message


# === Resolution errors ===


class ResolutionError(DataQLError):
    """A named source could not be turned into a local file."""


class InvalidSourceError(ResolutionError):
    """Source reference is malformed."""


class SourceAccessError(ResolutionError):
    """Local path is missing or unreadable."""


class DownloadError(ResolutionError):
    """HTTP or object-store transfer failed."""

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, source)
        self.status_code = status_code


class CredentialsError(ResolutionError):
    """Object-store client could not be constructed."""


class CompressionError(ResolutionError):
    """Compressed source could not be decompressed."""


class UnsupportedCompressionError(CompressionError):
    """Compression scheme is detected but cannot be decoded."""


class DecompressionError(CompressionError):
    """Compressed stream is corrupt or truncated."""


class UnsupportedFormatError(ResolutionError):
    """Local file has no reader for its format."""


# === Registry errors ===


class RegistryError(DataQLError):
    """No message-queue reader is available for a queue type."""

    def __init__(self, message: str, queue_type: Optional[str] = None):
        super().__init__(message)
        self.queue_type = queue_type


class ReaderNotRegisteredError(RegistryError):
    """Backend exists but its factory was never registered."""

    def __init__(self, message: str, queue_type: Optional[str] = None, module: Optional[str] = None):
        super().__init__(message, queue_type)
        self.module = module


class BackendNotImplementedError(RegistryError):
    """Queue type is recognized but no backend exists yet."""


class UnsupportedQueueTypeError(RegistryError):
    """Queue type is not recognized at all."""


# === Cache errors ===


class CacheError(DataQLError):
    """Cache maintenance failure."""


class CacheDisabledError(CacheError):
    """Operation requires an enabled cache."""

    def __init__(self, message: str = "cache not enabled"):
        super().__init__(message)


class CacheMetadataError(CacheError):
    """Metadata file is missing, unreadable or malformed."""


class CacheLockError(CacheError):
    """Per-key write lock could not be acquired."""


# === Engine errors ===


class DataImportError(DataQLError):
    """Engine could not load a resolved file."""


class EnhancedQueryError(DataQLError):
    """Engine error translated into an actionable hint."""

    def __init__(self, hint):
        super().__init__(str(hint))
        self.hint = hint

    @property
    def original(self) -> str:
        """Raw engine error text."""
        return self.hint.original
