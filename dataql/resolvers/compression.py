"""Compression resolver.

Detects compressed sources by extension and materializes them into temporary
files that keep the inner extension, so format detection downstream still
sees ``.csv``, ``.json`` and friends.
"""

import bz2
import gzip
import logging
import lzma
import os
import shutil
import tempfile
import zlib
from enum import Enum
from typing import Callable, Dict, IO, List, Optional

from ..utils.error_handling import (
    DecompressionError,
    SourceAccessError,
    UnsupportedCompressionError,
)

logger = logging.getLogger(__name__)

TEMP_PREFIX = "dataql_decompressed_"
COPY_CHUNK_SIZE = 1024 * 1024


class Compression(str, Enum):
    """Supported compression schemes."""

    NONE = ""
    GZIP = "gzip"
    BZIP2 = "bzip2"
    XZ = "xz"
    ZSTD = "zstd"


COMPRESSION_EXTENSIONS: Dict[str, Compression] = {
    ".gz": Compression.GZIP,
    ".gzip": Compression.GZIP,
    ".bz2": Compression.BZIP2,
    ".xz": Compression.XZ,
    ".zst": Compression.ZSTD,
    ".zstd": Compression.ZSTD,
}

# Each opener returns a readable binary stream of decompressed bytes
_OPENERS: Dict[Compression, Callable[[str], IO[bytes]]] = {
    Compression.GZIP: lambda path: gzip.open(path, "rb"),
    Compression.BZIP2: lambda path: bz2.open(path, "rb"),
    Compression.XZ: lambda path: lzma.open(path, "rb"),
}

_STREAM_ERRORS = (OSError, EOFError, zlib.error, lzma.LZMAError)


def detect_compression(file_path: str) -> Compression:
    """Detect compression scheme from the file extension.

    Args:
        file_path: Path to inspect

    Returns:
        Detected compression, or Compression.NONE
    """
    ext = os.path.splitext(file_path)[1].lower()
    return COMPRESSION_EXTENSIONS.get(ext, Compression.NONE)


def is_compressed(file_path: str) -> bool:
    """Check if a path has a compression extension."""
    return detect_compression(file_path) != Compression.NONE


def get_uncompressed_path(file_path: str) -> str:
    """Strip the compression extension ("data.csv.gz" -> "data.csv")."""
    if not is_compressed(file_path):
        return file_path
    return os.path.splitext(file_path)[0]


def get_inner_extension(file_path: str) -> str:
    """Extension of the file inside the archive ("data.csv.gz" -> ".csv")."""
    return os.path.splitext(get_uncompressed_path(file_path))[1]


def supported_compressions() -> List[str]:
    """List compression formats that can actually be decoded."""
    return ["gzip (.gz)", "bzip2 (.bz2)", "xz (.xz)"]


class CompressionResolver:
    """Decompresses compressed sources into temporary files.

    Remembers which temporary file came from which compressed source so the
    cache can fingerprint the original file instead of a temp file whose
    mtime changes on every run.
    """

    def __init__(self, temp_dir: Optional[str] = None):
        """Initialize resolver.

        Args:
            temp_dir: Directory for decompressed files (default: system temp)
        """
        self._temp_dir = temp_dir
        self._temp_files: List[str] = []
        self._original_paths: Dict[str, str] = {}

    def __enter__(self) -> "CompressionResolver":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.cleanup()

    @property
    def temp_files(self) -> List[str]:
        """Temporary files created so far."""
        return list(self._temp_files)

    def get_original_path(self, path: str) -> str:
        """Map a decompressed path back to its compressed source.

        Paths that were never decompressed are returned unchanged.
        """
        return self._original_paths.get(path, path)

    def path_mapping(self) -> Dict[str, str]:
        """Copy of the decompressed path -> original path mapping."""
        return dict(self._original_paths)

    def resolve(self, paths: List[str]) -> List[str]:
        """Decompress compressed paths; pass others through unchanged.

        Args:
            paths: Source paths in caller order

        Returns:
            Local paths in the same order

        Raises:
            CompressionError: If any compressed source cannot be decoded
        """
        resolved = []
        for path in paths:
            if is_compressed(path):
                resolved.append(self._decompress(path))
            else:
                resolved.append(path)
        return resolved

    def _decompress(self, file_path: str) -> str:
        compression = detect_compression(file_path)
        opener = _OPENERS.get(compression)
        if opener is None:
            if compression == Compression.ZSTD:
                raise UnsupportedCompressionError(
                    "zstd compression not yet supported "
                    f"(supported: {', '.join(supported_compressions())})",
                    source=file_path,
                )
            raise UnsupportedCompressionError(
                f"unsupported compression: {compression.value}", source=file_path
            )

        if not os.path.isfile(file_path):
            raise SourceAccessError(
                "failed to open compressed file: no such file", source=file_path
            )

        fd, temp_path = tempfile.mkstemp(
            prefix=TEMP_PREFIX,
            suffix=get_inner_extension(file_path),
            dir=self._temp_dir,
        )
        self._temp_files.append(temp_path)

        try:
            with os.fdopen(fd, "wb") as writer, opener(file_path) as reader:
                shutil.copyfileobj(reader, writer, COPY_CHUNK_SIZE)
        except _STREAM_ERRORS as e:
            self._discard(temp_path)
            raise DecompressionError(
                f"failed to decompress {compression.value} stream: {e}",
                source=file_path,
            ) from e

        self._original_paths[temp_path] = file_path
        logger.debug("Decompressed %s to %s", file_path, temp_path)
        return temp_path

    def _discard(self, temp_path: str) -> None:
        """Remove a partially written temp file."""
        try:
            os.remove(temp_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Failed to remove partial file %s: %s", temp_path, e)
            return
        self._temp_files.remove(temp_path)

    def cleanup(self) -> List[str]:
        """Remove every temporary file created by this resolver.

        Safe to call repeatedly; files already gone are not failures. Files
        that could not be removed stay tracked so a later call retries them.

        Returns:
            Warning messages for files that could not be removed
        """
        warnings = []
        remaining = []
        for path in self._temp_files:
            try:
                os.remove(path)
            except FileNotFoundError:
                pass
            except OSError as e:
                message = f"failed to remove {path}: {e}"
                logger.warning(message)
                warnings.append(message)
                remaining.append(path)
                continue
            self._original_paths.pop(path, None)

        self._temp_files = remaining
        return warnings
