"""DuckDB import step.

Loads resolved local files into a DuckDB database file, one table per file.
The pipeline writes the database straight into the cache.
"""

import os
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import duckdb

from .queryerror import enhance_error
from .resolvers.compression import get_inner_extension, get_uncompressed_path
from .utils.error_handling import DataImportError, UnsupportedFormatError

# Reader function per (lowercased) file extension
READERS: Dict[str, str] = {
    ".csv": "read_csv_auto",
    ".tsv": "read_csv_auto",
    ".txt": "read_csv_auto",
    ".json": "read_json_auto",
    ".jsonl": "read_json_auto",
    ".ndjson": "read_json_auto",
    ".parquet": "read_parquet",
}


@dataclass
class ImportResult:
    """Tables created by an import and their combined row count."""

    tables: List[str] = field(default_factory=list)
    total_rows: int = 0


def table_name_for(path: str) -> str:
    """Derive a SQL-safe table name from a file name.

    Compression and format extensions are dropped
    ("sales-2024.csv.gz" -> "sales_2024").
    """
    base = os.path.basename(get_uncompressed_path(path))
    stem = os.path.splitext(base)[0]
    name = re.sub(r"[^a-zA-Z0-9_]", "_", stem).strip("_").lower()

    if name and name[0].isdigit():
        name = "t_" + name
    return name or "data"


class DuckDBImporter:
    """Imports CSV, JSON and Parquet files into a DuckDB database."""

    def import_files(
        self,
        files: List[str],
        database_path: str,
        aliases: Optional[Dict[str, str]] = None,
        origins: Optional[Dict[str, str]] = None,
    ) -> ImportResult:
        """Create one table per file in ``database_path``.

        Args:
            files: Local file paths
            database_path: DuckDB file to create
            aliases: Optional file path -> table name overrides
            origins: Optional file path -> user-facing source, used in errors

        Returns:
            ImportResult with table names and total rows

        Raises:
            UnsupportedFormatError: If a file has no known reader
            DataImportError: If DuckDB cannot read a file
        """
        aliases = aliases or {}
        origins = origins or {}
        result = ImportResult()
        used = set()

        conn = duckdb.connect(database_path)
        try:
            for file_path in files:
                ext = get_inner_extension(file_path).lower()
                reader = READERS.get(ext)
                source = origins.get(file_path, file_path)
                if reader is None:
                    raise UnsupportedFormatError(
                        f"unsupported file format: {ext or 'no extension'}", source=source
                    )

                table = aliases.get(file_path) or table_name_for(file_path)
                base_table = table
                suffix = 2
                while table in used:
                    table = f"{base_table}_{suffix}"
                    suffix += 1
                used.add(table)

                literal = file_path.replace("'", "''")
                try:
                    conn.execute(
                        f"CREATE OR REPLACE TABLE \"{table}\" AS SELECT * FROM {reader}('{literal}')"
                    )
                    rows = conn.execute(f'SELECT COUNT(*) FROM "{table}"').fetchone()[0]
                except duckdb.Error as e:
                    raise DataImportError(
                        f"failed to import: {enhance_error(e)}", source=source
                    ) from e

                result.tables.append(table)
                result.total_rows += rows
        finally:
            conn.close()

        return result
