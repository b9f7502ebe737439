"""Standard input resolver.

A source of ``-`` is read from stdin into a temporary file whose extension
comes from the declared input format.
"""

import logging
import os
import shutil
import sys
from typing import BinaryIO, Dict, List, Optional

from ..utils.error_handling import SourceAccessError
from .remote import _TempDirResolver

logger = logging.getLogger(__name__)

STDIN_SOURCE = "-"
STDIN_BASENAME = "stdin_data"
DEFAULT_FORMAT = "csv"

FORMAT_EXTENSIONS: Dict[str, str] = {
    "csv": ".csv",
    "json": ".json",
    "jsonl": ".jsonl",
    "ndjson": ".jsonl",
    "xml": ".xml",
    "yaml": ".yaml",
    "yml": ".yaml",
    "parquet": ".parquet",
    "avro": ".avro",
    "orc": ".orc",
}


def is_stdin_input(path: str) -> bool:
    """Check if a source reference means standard input."""
    return path.strip() == STDIN_SOURCE


def extension_for_format(input_format: Optional[str]) -> str:
    """File extension for an input format name; unknown formats read as CSV."""
    return FORMAT_EXTENSIONS.get((input_format or "").lower(), ".csv")


class StdinResolver(_TempDirResolver):
    """Copies standard input into a temporary file."""

    TEMP_PREFIX = "dataql_stdin_"

    def __init__(self, input_format: str = DEFAULT_FORMAT, stream: Optional[BinaryIO] = None):
        """Initialize stdin resolver.

        Args:
            input_format: Format of the piped data (csv, json, jsonl, parquet, ...)
            stream: Binary stream to read (default: ``sys.stdin.buffer``)
        """
        super().__init__()
        self.input_format = input_format
        self._stream = stream

    def resolve(self, paths: List[str]) -> List[str]:
        """Replace ``-`` with a temp file holding stdin; pass others through.

        Raises:
            SourceAccessError: If stdin cannot be read or the copy fails
        """
        return [self._read(p) if is_stdin_input(p) else p for p in paths]

    def _read(self, path: str) -> str:
        stream = self._stream if self._stream is not None else sys.stdin.buffer
        local_path = self._target_path(STDIN_BASENAME + extension_for_format(self.input_format))

        try:
            with open(local_path, "wb") as f:
                shutil.copyfileobj(stream, f)
        except (OSError, ValueError) as e:
            raise SourceAccessError(f"failed to read stdin: {e}", source=path) from e

        self._temp_files.append(local_path)
        logger.debug("Read stdin into %s (%d bytes)", local_path, os.path.getsize(local_path))
        return local_path
