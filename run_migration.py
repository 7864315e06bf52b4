#!/usr/bin/env python3
"""
Standalone Salesforce to PostgreSQL migration.

Runs the same phases as the Airflow DAG without a scheduler, reading
credentials from the environment (or a .env file):

    SF_USERNAME, SF_PASSWORD, SF_SECURITY_TOKEN, SF_CLIENT_ID, SF_CLIENT_SECRET,
    SF_LOGIN_URL, POSTGRES_HOST, POSTGRES_PORT, POSTGRES_DATABASE,
    POSTGRES_USERNAME, POSTGRES_PASSWORD, INCLUDE_TABLES

With --dry-run the schema is fetched and the DDL is printed; nothing is
written to PostgreSQL.
"""

import argparse
import logging
import os
import sys

# Setup path to include our modules
sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), 'plugins'))

# Load environment variables from .env
from dotenv import load_dotenv
load_dotenv()

from sf_pg_migration.connections import postgres_connection_from_env, salesforce_client_from_env
from sf_pg_migration.ddl_generator import create_tables_ddl
from sf_pg_migration.exceptions import MigrationError
from sf_pg_migration.orchestrator import run_migration
from sf_pg_migration.schema_extractor import extract_schema_info

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

DEFAULT_INCLUDE_TABLES = "Account,Contact,Opportunity,RecordType,User"


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Migrate Salesforce objects into PostgreSQL")
    parser.add_argument(
        "--tables",
        default=os.environ.get("INCLUDE_TABLES", DEFAULT_INCLUDE_TABLES),
        help="Comma separated Salesforce objects to migrate",
    )
    parser.add_argument("--schema", default=os.environ.get("POSTGRES_SCHEMA", "public"))
    parser.add_argument("--artifact-dir", default=os.environ.get("ARTIFACT_DIR", "data"))
    parser.add_argument("--poll-interval", type=float, default=5.0)
    parser.add_argument("--poll-timeout", type=float, default=600.0)
    parser.add_argument(
        "--time-as-time",
        action="store_true",
        help="Map Salesforce 'time' fields to TIME instead of VARCHAR(5)",
    )
    parser.add_argument("--keep-artifacts", action="store_true")
    parser.add_argument("--dry-run", action="store_true", help="Print DDL and exit")
    return parser.parse_args(argv)


def print_ddl(tables, target_schema):
    ddl = create_tables_ddl(tables, target_schema)
    for key in ('drops', 'creates', 'columns', 'foreign_keys'):
        for statement in ddl[key]:
            print(f"{statement};")
        print()


def main(argv=None):
    args = parse_args(argv)
    include_tables = [t.strip() for t in args.tables.split(",") if t.strip()]
    logger.info(f"Objects: {', '.join(include_tables)}")

    client = salesforce_client_from_env()

    if args.dry_run:
        tables = extract_schema_info(client, include_tables, legacy_time_mapping=not args.time_as_time)
        print_ddl(tables, args.schema)
        return 0

    connection = postgres_connection_from_env()
    try:
        summary = run_migration(
            client,
            connection,
            include_tables,
            args.artifact_dir,
            target_schema=args.schema,
            poll_interval=args.poll_interval,
            poll_timeout=args.poll_timeout,
            legacy_time_mapping=not args.time_as_time,
            remove_artifacts=not args.keep_artifacts,
        )
    except MigrationError as e:
        logger.error(f"✗ Migration failed: {e}")
        return 1
    finally:
        connection.close()

    logger.info("=" * 80)
    for result in summary['import_results']:
        logger.info(f"✓ {result['table_name']}: {result['rows_transferred']:,} rows")
    logger.info(f"Done in {summary['elapsed_time_seconds']:.2f}s")
    return 0


if __name__ == '__main__':
    sys.exit(main())
