"""
Data Transfer Module

This module loads exported Salesforce artifacts into PostgreSQL. Each file
is read one record at a time and every record is inserted before the next
one is read, so memory use does not depend on file size.

Values are normalized on the way in:
- empty strings become NULL
- Salesforce timestamps (2023-07-04T10:15:30.000Z) become 2023-7-4 10:15:30
- everything else is passed through unchanged
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple
import csv
import logging
import os
import re
import time

import psycopg2
from psycopg2 import sql

from sf_pg_migration.artifact_store import ArtifactStore, ExportArtifact
from sf_pg_migration.exceptions import ImportParseError, ImportWriteError

logger = logging.getLogger(__name__)


SALESFORCE_TIMESTAMP = re.compile(r'^(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})\.\d{3}Z$')


def _get_import_workers() -> int:
    return max(1, int(os.environ.get('MAX_PARALLEL_IMPORTS', '1')))


def convert_timestamp(value: str) -> str:
    """
    Rewrite a Salesforce timestamp into PostgreSQL's accepted literal form.

    Components are taken as written (UTC) and are not zero padded.
    Values that are not exactly in the Salesforce format are returned as is.
    """
    match = SALESFORCE_TIMESTAMP.fullmatch(value)
    if not match:
        return value
    year, month, day, hour, minute, second = (int(part) for part in match.groups())
    return f"{year}-{month}-{day} {hour}:{minute}:{second}"


def normalize_value(value: str) -> Optional[str]:
    """Map an artifact field to the value bound in the INSERT."""
    if value == '':
        return None
    return convert_timestamp(value)


class DataTransfer:
    """Handle data import from export artifacts into PostgreSQL."""

    def __init__(
        self,
        connection,
        store: ArtifactStore,
        target_schema: str = 'public',
        max_workers: Optional[int] = None,
        remove_after_import: bool = True,
    ):
        """
        Initialize the data transfer handler.

        Args:
            connection: psycopg2 connection to the target database (autocommit)
            store: Artifact store holding the exported files
            target_schema: Target PostgreSQL schema name
            max_workers: Files imported concurrently (default MAX_PARALLEL_IMPORTS)
            remove_after_import: Delete each artifact once it is imported
        """
        self.connection = connection
        self.store = store
        self.target_schema = target_schema
        self.max_workers = max_workers or _get_import_workers()
        self.remove_after_import = remove_after_import

    def _build_insert(self, table_name: str, columns: List[str]) -> sql.Composed:
        return sql.SQL("INSERT INTO {}.{} ({}) VALUES ({})").format(
            sql.Identifier(self.target_schema),
            sql.Identifier(table_name),
            sql.SQL(', ').join([sql.Identifier(col) for col in columns]),
            sql.SQL(', ').join([sql.Placeholder()] * len(columns)),
        )

    def _read_rows(self, table_name: str, reader, width: int) -> Iterator[Tuple[int, List[str]]]:
        """Yield (row_index, row) pairs, 1-based, validating the field count."""
        row_index = 0
        while True:
            row_index += 1
            try:
                row = next(reader)
            except StopIteration:
                return
            except (csv.Error, UnicodeDecodeError) as e:
                raise ImportParseError(table_name, row_index, str(e)) from e

            if len(row) != width:
                raise ImportParseError(
                    table_name,
                    row_index,
                    f"expected {width} fields, found {len(row)}"
                )
            yield row_index, row

    def import_artifact(self, artifact: ExportArtifact) -> Dict[str, Any]:
        """
        Insert every record of one artifact into the table of the same name.

        Returns:
            Transfer result dictionary with statistics

        Raises:
            ImportParseError: On a malformed row (header is row 0)
            ImportWriteError: If an INSERT fails
        """
        table_name = artifact.table_name
        start_time = time.time()
        rows_transferred = 0
        logger.info(f"Importing data from {artifact.path}...")

        with artifact.open() as handle:
            reader = csv.reader(handle)
            try:
                header = next(reader)
            except StopIteration:
                raise ImportParseError(table_name, 0, "artifact has no header row")
            except (csv.Error, UnicodeDecodeError) as e:
                raise ImportParseError(table_name, 0, str(e)) from e

            insert_sql = self._build_insert(table_name, header)

            with self.connection.cursor() as cursor:
                for row_index, row in self._read_rows(table_name, reader, len(header)):
                    values = [normalize_value(value) for value in row]
                    try:
                        cursor.execute(insert_sql, values)
                    except psycopg2.Error as e:
                        logger.error(f"✗ Insert into {table_name} failed at row {row_index}: {e}")
                        raise ImportWriteError(table_name, row_index, str(e)) from e
                    rows_transferred += 1

        if self.remove_after_import:
            self.store.remove(artifact)

        elapsed = time.time() - start_time
        logger.info(
            f"✓ Data from {artifact.path.name} imported successfully: "
            f"{rows_transferred:,} rows in {elapsed:.2f}s"
        )
        return {
            'table_name': table_name,
            'rows_transferred': rows_transferred,
            'elapsed_time_seconds': elapsed,
            'avg_rows_per_second': rows_transferred / elapsed if elapsed > 0 else 0,
            'success': True,
        }

    def import_artifacts(self, artifacts: Iterable[ExportArtifact]) -> List[Dict[str, Any]]:
        """
        Import artifacts in enumeration order.

        With more than one worker several files load at once; each file still
        has at most one record in flight. The first failure is raised.

        Returns:
            Transfer results in artifact order
        """
        artifacts = list(artifacts)
        logger.info(f"Importing {len(artifacts)} files...")

        if self.max_workers == 1:
            return [self.import_artifact(artifact) for artifact in artifacts]

        results: Dict[str, Dict[str, Any]] = {}
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {executor.submit(self.import_artifact, a): a for a in artifacts}
            try:
                for future in as_completed(futures):
                    results[futures[future].table_name] = future.result()
            except Exception:
                for future in futures:
                    future.cancel()
                raise

        return [results[artifact.table_name] for artifact in artifacts]
