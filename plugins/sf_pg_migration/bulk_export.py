"""
Bulk Export Module

This module exports Salesforce objects with Bulk API 2.0 query jobs. Each
job is polled on its own timer until it completes or the poll timeout
expires, then its CSV result pages are streamed row by row into an artifact
named after the table.
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Dict, Iterable, List, Optional
import csv
import io
import logging
import os
import time

import requests
import urllib3

from sf_pg_migration.artifact_store import ArtifactStore
from sf_pg_migration.exceptions import ExportError, ExportTimeoutError
from sf_pg_migration.salesforce_client import (
    JOB_ABORTED,
    JOB_COMPLETE,
    JOB_FAILED,
    LAST_PAGE_LOCATOR,
    SalesforceClient,
)
from sf_pg_migration.type_mapping import TableSpec

logger = logging.getLogger(__name__)


DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_POLL_TIMEOUT = 600.0


def _get_export_workers() -> int:
    return max(1, int(os.environ.get('MAX_PARALLEL_EXPORTS', '4')))


def build_query(table_spec: TableSpec) -> str:
    """SOQL projection over exactly the table's columns, in column order."""
    return f"SELECT {', '.join(table_spec.column_names)} FROM {table_spec.name}"


class BulkExporter:
    """Export tables from Salesforce into the artifact store."""

    def __init__(
        self,
        client: SalesforceClient,
        store: ArtifactStore,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        poll_timeout: float = DEFAULT_POLL_TIMEOUT,
        page_size: Optional[int] = None,
        max_workers: Optional[int] = None,
    ):
        """
        Initialize the exporter.

        Args:
            client: Authenticated Salesforce client
            store: Destination for the exported artifacts
            poll_interval: Seconds between job status checks
            poll_timeout: Maximum seconds to wait for a job to complete
            page_size: Optional maxRecords per result page
            max_workers: Tables exported concurrently (default MAX_PARALLEL_EXPORTS)
        """
        self.client = client
        self.store = store
        self.poll_interval = poll_interval
        self.poll_timeout = poll_timeout
        self.page_size = page_size
        self.max_workers = max_workers or _get_export_workers()

    def export_table(self, table_spec: TableSpec) -> Dict[str, Any]:
        """
        Export one table into a fresh artifact.

        Returns:
            Export result dictionary with statistics

        Raises:
            ExportTimeoutError: If the job does not finish within poll_timeout
            ExportError: If the job fails or the result stream breaks
        """
        table_name = table_spec.name
        start_time = time.time()
        query = build_query(table_spec)
        logger.info(f"Querying {table_name}")
        logger.debug(query)

        try:
            job = self.client.create_query_job(query)
        except requests.RequestException as e:
            logger.error(f"✗ Could not submit bulk query for {table_name}: {e}")
            raise ExportError(table_name, str(e)) from e

        job_id = job["id"]
        self._wait_for_job(table_name, job_id)
        rows_exported = self._stream_results(table_spec, job_id)

        elapsed = time.time() - start_time
        logger.info(f"✓ Done querying {table_name}: {rows_exported:,} rows in {elapsed:.2f}s")
        return {
            'table_name': table_name,
            'job_id': job_id,
            'rows_exported': rows_exported,
            'elapsed_time_seconds': elapsed,
            'success': True,
        }

    def _wait_for_job(self, table_name: str, job_id: str) -> Dict[str, Any]:
        deadline = time.monotonic() + self.poll_timeout

        while True:
            try:
                status = self.client.get_query_job(job_id)
            except requests.RequestException as e:
                raise ExportError(table_name, f"polling job {job_id} failed: {e}") from e

            state = status.get('state')
            if state == JOB_COMPLETE:
                logger.info(f"Bulk job {job_id} for {table_name} complete "
                            f"({status.get('numberRecordsProcessed', 0)} records)")
                return status
            if state in (JOB_FAILED, JOB_ABORTED):
                raise ExportError(
                    table_name,
                    f"bulk job {job_id} ended in state {state}: {status.get('errorMessage', '')}"
                )

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                self._abort_job(table_name, job_id)
                raise ExportTimeoutError(table_name, self.poll_timeout)

            logger.debug(f"Bulk job {job_id} for {table_name} is {state}, waiting")
            time.sleep(min(self.poll_interval, remaining))

    def _abort_job(self, table_name: str, job_id: str) -> None:
        try:
            self.client.abort_query_job(job_id)
        except requests.RequestException as e:
            logger.warning(f"Could not abort bulk job {job_id} for {table_name}: {e}")

    def _stream_results(self, table_spec: TableSpec, job_id: str) -> int:
        """Copy every result page into the table's artifact, one row at a time."""
        table_name = table_spec.name
        rows_written = 0

        try:
            with self.store.open_writer(table_name) as handle:
                writer = csv.writer(handle, lineterminator="\n")
                header: Optional[List[str]] = None
                locator: Optional[str] = None

                while True:
                    response = self.client.get_query_results(job_id, locator, self.page_size)
                    try:
                        response.raw.decode_content = True
                        reader = csv.reader(io.TextIOWrapper(response.raw, encoding="utf-8", newline=""))
                        page_header = next(reader, None)
                        if page_header is not None and header is None:
                            header = page_header
                            writer.writerow(header)

                        for row in reader:
                            if len(row) != len(header):
                                raise ExportError(
                                    table_name,
                                    f"result row {rows_written + 1} has {len(row)} fields, "
                                    f"expected {len(header)}"
                                )
                            writer.writerow(row)
                            rows_written += 1

                        locator = response.headers.get("Sforce-Locator")
                    finally:
                        response.close()

                    if not locator or locator == LAST_PAGE_LOCATOR:
                        break

                if header is None:
                    writer.writerow(table_spec.column_names)
        except ExportError:
            logger.error(f"✗ Export of {table_name} aborted after {rows_written:,} rows")
            raise
        except (requests.RequestException, urllib3.exceptions.HTTPError, csv.Error,
                OSError, UnicodeDecodeError) as e:
            logger.error(f"✗ Export of {table_name} aborted after {rows_written:,} rows: {e}")
            raise ExportError(table_name, str(e)) from e

        return rows_written

    def export_tables(self, tables: Iterable[TableSpec]) -> List[Dict[str, Any]]:
        """
        Export tables in parallel.

        The first failure cancels exports that have not started and is raised.

        Returns:
            Export results in input order
        """
        tables = list(tables)
        logger.info(f"Exporting {len(tables)} tables")
        results: Dict[str, Dict[str, Any]] = {}

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {executor.submit(self.export_table, table): table for table in tables}
            try:
                for future in as_completed(futures):
                    result = future.result()
                    results[result['table_name']] = result
            except Exception:
                for future in futures:
                    future.cancel()
                raise

        return [results[table.name] for table in tables]
