"""
Salesforce to PostgreSQL Migration Utilities

This package provides utilities for migrating schemas and data from a
Salesforce org to PostgreSQL databases using Apache Airflow.

Modules:
- salesforce_client: REST and Bulk API 2.0 client for Salesforce
- schema_extractor: Discover objects and fetch field metadata
- type_mapping: Map Salesforce field types to PostgreSQL columns
- ddl_generator: Generate and apply PostgreSQL DDL in two phases
- artifact_store: Per-table CSV files between export and import
- bulk_export: Export objects with Bulk API query jobs
- data_transfer: Import artifacts into PostgreSQL row by row
- orchestrator: Phase state machine for a complete migration
- connections: Sessions from Airflow connections or environment

Performance Options:
- MAX_METADATA_WORKERS=N: Concurrent describe calls
- MAX_DDL_WORKERS=N: Concurrent DDL workers
- MAX_PARALLEL_EXPORTS=N: Concurrent bulk query jobs
- MAX_PARALLEL_IMPORTS=N: Concurrent file imports
"""

__version__ = "1.0.0"

# Core modules
from sf_pg_migration import exceptions
from sf_pg_migration import salesforce_client
from sf_pg_migration import schema_extractor
from sf_pg_migration import type_mapping
from sf_pg_migration import ddl_generator
from sf_pg_migration import artifact_store
from sf_pg_migration import bulk_export
from sf_pg_migration import data_transfer
from sf_pg_migration import orchestrator

# Requires Airflow (loaded on demand by the DAG)
# from sf_pg_migration import connections

__all__ = [
    "exceptions",
    "salesforce_client",
    "schema_extractor",
    "type_mapping",
    "ddl_generator",
    "artifact_store",
    "bulk_export",
    "data_transfer",
    "orchestrator",
    "connections",
]
