"""
Salesforce to PostgreSQL Migration DAG

This DAG performs a complete schema and data migration from a Salesforce org
to PostgreSQL. It handles:
1. Field metadata extraction for the allow-listed objects
2. Field type mapping from Salesforce to PostgreSQL
3. Table creation, then foreign key columns and constraints
4. Bulk API export of every object into CSV artifacts
5. Row by row import with foreign key checks disabled

Every phase runs inside one task because the foreign key toggle is bound to
the PostgreSQL session used for the import.
"""

from airflow.sdk import Asset, dag, task
from airflow.models.param import Param
from pendulum import datetime
from typing import Any, Dict, List
import logging
import re

logger = logging.getLogger(__name__)


DEFAULT_INCLUDE_TABLES = ["Account", "Contact", "Opportunity", "RecordType", "User"]


def validate_sql_identifier(identifier: str, identifier_type: str = "identifier") -> str:
    """
    Validate SQL identifiers to prevent SQL injection.

    Salesforce API names (including custom ones such as Invoice__c) already
    satisfy these rules:
    - Start with a letter or underscore
    - Contain only alphanumeric characters and underscores
    - Be 63 characters or less (PostgreSQL limit)

    Raises:
        ValueError: If the identifier is invalid or potentially unsafe
    """
    if not identifier:
        raise ValueError(f"Invalid {identifier_type}: cannot be empty")

    if len(identifier) > 63:
        raise ValueError(f"Invalid {identifier_type}: exceeds maximum length of 63 characters")

    if not re.match(r'^[a-zA-Z_][a-zA-Z0-9_]*$', identifier):
        raise ValueError(
            f"Invalid {identifier_type} '{identifier}': must start with letter or underscore "
            "and contain only alphanumeric characters and underscores"
        )

    return identifier


@dag(
    start_date=datetime(2025, 1, 1),
    schedule=None,  # Run manually or trigger via API
    catchup=False,
    max_active_runs=1,
    is_paused_upon_creation=False,
    doc_md=__doc__,
    default_args={
        "owner": "data-team",
        # Drop-and-recreate makes a failed run safe to rerun by hand, not to retry blindly
        "retries": 0,
    },
    params={
        "source_conn_id": Param(
            default="salesforce_source",
            type="string",
            description="Salesforce connection ID"
        ),
        "target_conn_id": Param(
            default="postgres_target",
            type="string",
            description="PostgreSQL connection ID"
        ),
        "target_schema": Param(
            default="public",
            type="string",
            description="Target schema in PostgreSQL"
        ),
        "include_tables": Param(
            default=DEFAULT_INCLUDE_TABLES,
            type="array",
            description="Salesforce objects to migrate"
        ),
        "artifact_dir": Param(
            default="/tmp/sf_pg_migration",
            type="string",
            description="Directory for exported CSV files"
        ),
        "poll_interval_seconds": Param(
            default=5,
            type="integer",
            minimum=1,
            description="Seconds between bulk job status checks"
        ),
        "poll_timeout_seconds": Param(
            default=600,
            type="integer",
            minimum=10,
            description="Maximum seconds to wait for one bulk job"
        ),
        "legacy_time_mapping": Param(
            default=True,
            type="boolean",
            description="Store Salesforce 'time' fields as VARCHAR(5) like earlier runs; false maps them to TIME"
        ),
    },
    tags=["migration", "salesforce", "postgres", "etl", "full-refresh"],
)
def salesforce_to_postgres_migration():
    """
    Main DAG for Salesforce to PostgreSQL migration.
    """

    @task
    def validate_params(**context) -> List[str]:
        """
        Validate identifiers before anything touches the target.

        Returns:
            Validated list of objects to migrate
        """
        params = context["params"]
        validate_sql_identifier(params["target_schema"], "schema name")
        tables = [validate_sql_identifier(t, "object name") for t in params["include_tables"]]
        if not tables:
            raise ValueError("include_tables must name at least one Salesforce object")

        logger.info(f"Migrating {len(tables)} objects: {', '.join(tables)}")
        return tables

    @task
    def create_target_schema(include_tables: List[str], **context) -> str:
        """
        Create target schema in PostgreSQL if it doesn't exist.

        Returns:
            Schema creation status
        """
        params = context["params"]
        from airflow.providers.postgres.hooks.postgres import PostgresHook

        schema_name = params["target_schema"]
        postgres_hook = PostgresHook(postgres_conn_id=params["target_conn_id"])
        postgres_hook.run(f'CREATE SCHEMA IF NOT EXISTS "{schema_name}"')

        logger.info(f"Ensured schema {schema_name} exists in PostgreSQL")
        return f"Schema {schema_name} ready"

    @task(
        outlets=[Asset("salesforce_migration_loaded")]
    )
    def run_migration(include_tables: List[str], schema_status: str, **context) -> Dict[str, Any]:
        """
        Run every migration phase with one Salesforce and one PostgreSQL session.

        Returns:
            Migration summary
        """
        params = context["params"]
        from sf_pg_migration.connections import get_postgres_connection, get_salesforce_client
        from sf_pg_migration.orchestrator import run_migration as run_all_phases

        client = get_salesforce_client(params["source_conn_id"])
        connection = get_postgres_connection(params["target_conn_id"])
        try:
            summary = run_all_phases(
                client,
                connection,
                include_tables,
                params["artifact_dir"],
                target_schema=params["target_schema"],
                poll_interval=params["poll_interval_seconds"],
                poll_timeout=params["poll_timeout_seconds"],
                legacy_time_mapping=params["legacy_time_mapping"],
            )
        finally:
            connection.close()

        for result in summary["import_results"]:
            logger.info(f"✓ {result['table_name']}: {result['rows_transferred']:,} rows")

        context["ti"].xcom_push(key="migrated_tables", value=summary["tables"])
        context["ti"].xcom_push(
            key="total_row_count",
            value=sum(r["rows_transferred"] for r in summary["import_results"])
        )
        return summary

    @task
    def generate_migration_summary(summary: Dict[str, Any], **context) -> str:
        """Generate a summary of the migration."""
        total_rows = sum(r["rows_transferred"] for r in summary["import_results"])
        status = (
            f"Migration complete: {len(summary['tables'])} tables, "
            f"{total_rows:,} rows in {summary['elapsed_time_seconds']:.2f}s"
        )
        logger.info(status)
        return status

    # Define the task flow
    tables = validate_params()
    schema_status = create_target_schema(tables)
    summary = run_migration(tables, schema_status)
    generate_migration_summary(summary)


# Instantiate the DAG
salesforce_to_postgres_migration()
