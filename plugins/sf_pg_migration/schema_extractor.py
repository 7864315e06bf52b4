"""
Salesforce Schema Extraction Module

This module discovers Salesforce objects and fetches their field metadata,
then turns it into PostgreSQL table specifications.
"""

from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterable, List, Optional, Set, Tuple
import logging
import os

import requests

from sf_pg_migration.exceptions import MetadataFetchError
from sf_pg_migration.salesforce_client import SalesforceClient
from sf_pg_migration.type_mapping import FieldDescriptor, TableSpec, build_table_spec

logger = logging.getLogger(__name__)


def _get_metadata_workers() -> int:
    return max(1, int(os.environ.get('MAX_METADATA_WORKERS', '4')))


class SchemaExtractor:
    """Extract object and field metadata from a Salesforce org."""

    def __init__(self, client: SalesforceClient, include_tables: Iterable[str]):
        """
        Initialize the schema extractor.

        Args:
            client: Authenticated Salesforce client
            include_tables: Object names to migrate (the allow-list)
        """
        self.client = client
        self.include_tables = frozenset(include_tables)

    def list_objects(self) -> Set[str]:
        """
        Get the allow-listed objects that exist in the org.

        Returns:
            Set of object names
        """
        try:
            payload = self.client.describe_global()
        except requests.RequestException as e:
            logger.error(f"Error listing Salesforce objects: {e}")
            raise MetadataFetchError(None, str(e)) from e

        result = set()
        for sobject in payload.get("sobjects", []):
            name = sobject.get("name")
            if name in self.include_tables:
                result.add(name)

        missing = self.include_tables - result
        if missing:
            logger.warning(f"Allow-listed objects not found in org: {sorted(missing)}")

        logger.info(f"Found {len(result)} of {len(self.include_tables)} allow-listed objects")
        return result

    def describe_fields(self, object_name: str) -> Tuple[FieldDescriptor, ...]:
        """
        Get the field descriptors of one object, in describe order.

        Raises:
            MetadataFetchError: If the describe call fails or returns no fields
        """
        logger.info(f"Getting fields for {object_name}...")
        try:
            payload = self.client.describe_sobject(object_name)
        except requests.RequestException as e:
            logger.error(f"Error describing {object_name}: {e}")
            raise MetadataFetchError(object_name, str(e)) from e

        fields = payload.get("fields")
        if not isinstance(fields, list):
            raise MetadataFetchError(object_name, "describe response has no 'fields' list")

        descriptors = tuple(FieldDescriptor.from_describe(f) for f in fields)
        logger.info(f"Retrieved {len(descriptors)} fields for {object_name}")
        return descriptors

    def extract_schema(
        self,
        max_workers: Optional[int] = None,
        legacy_time_mapping: bool = True
    ) -> List[TableSpec]:
        """
        Describe every allow-listed object and build its table specification.

        Describe calls run in parallel; the result is ordered by object name.

        Args:
            max_workers: Concurrent describe calls (default MAX_METADATA_WORKERS)
            legacy_time_mapping: Passed through to the type mapping

        Returns:
            List of TableSpec
        """
        object_names = sorted(self.list_objects())
        workers = max_workers or _get_metadata_workers()

        with ThreadPoolExecutor(max_workers=workers) as executor:
            descriptors: Dict[str, Tuple[FieldDescriptor, ...]] = dict(
                zip(object_names, executor.map(self.describe_fields, object_names))
            )

        tables = [
            build_table_spec(name, descriptors[name], legacy_time_mapping)
            for name in object_names
        ]
        logger.info(f"Built table specifications for {len(tables)} objects")
        return tables


def extract_schema_info(
    client: SalesforceClient,
    include_tables: Iterable[str],
    max_workers: Optional[int] = None,
    legacy_time_mapping: bool = True
) -> List[TableSpec]:
    """
    Convenience function to extract table specifications.

    Args:
        client: Authenticated Salesforce client
        include_tables: Object names to migrate
        max_workers: Concurrent describe calls
        legacy_time_mapping: Passed through to the type mapping

    Returns:
        List of TableSpec ordered by object name
    """
    extractor = SchemaExtractor(client, include_tables)
    return extractor.extract_schema(max_workers, legacy_time_mapping)
