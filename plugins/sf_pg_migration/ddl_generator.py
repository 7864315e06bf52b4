"""
PostgreSQL DDL Generation Module

This module generates and applies PostgreSQL DDL for the migrated objects.
Tables are created in two phases separated by a barrier: first every table
with its scalar columns, then the reference columns and their foreign key
constraints, which need the referenced tables to exist.
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, FrozenSet, Iterable, List, Optional
import contextlib
import logging
import os
import uuid

import psycopg2

from sf_pg_migration.exceptions import DDLError
from sf_pg_migration.type_mapping import ColumnSpec, TableSpec, ID_COLUMN

logger = logging.getLogger(__name__)


def _get_ddl_workers() -> int:
    return max(1, int(os.environ.get('MAX_DDL_WORKERS', '4')))


class DDLGenerator:
    """Generate PostgreSQL DDL statements from table specifications."""

    def __init__(self, target_schema: str = 'public'):
        """
        Initialize the DDL generator.

        Args:
            target_schema: Target PostgreSQL schema name
        """
        self.target_schema = target_schema

    def generate_drop_table(self, table_name: str, cascade: bool = True) -> str:
        """
        Generate DROP TABLE statement.

        Args:
            table_name: Table name to drop
            cascade: Whether to use CASCADE option

        Returns:
            DROP TABLE DDL statement
        """
        cascade_clause = " CASCADE" if cascade else ""
        return f"DROP TABLE IF EXISTS {self._qualified_name(table_name)}{cascade_clause}"

    def generate_create_table(self, table_spec: TableSpec) -> str:
        """
        Generate CREATE TABLE statement with the non-foreign-key columns.

        Args:
            table_spec: Table specification

        Returns:
            CREATE TABLE DDL statement
        """
        column_definitions = [
            self._generate_column_definition(column, primary_key=column.is_primary_key)
            for column in table_spec.scalar_columns
        ]
        return (
            f"CREATE TABLE {self._qualified_name(table_spec.name)} (\n    "
            + ',\n    '.join(column_definitions)
            + "\n)"
        )

    def generate_add_columns(self, table_spec: TableSpec) -> Optional[str]:
        """
        Generate one ALTER TABLE adding every foreign key column.

        Returns:
            ALTER TABLE statement, or None when the table has no foreign keys
        """
        columns = table_spec.foreign_key_columns
        if not columns:
            return None
        additions = ', '.join(
            f"ADD COLUMN {self._generate_column_definition(column)}" for column in columns
        )
        return f"ALTER TABLE {self._qualified_name(table_spec.name)} {additions}"

    def generate_foreign_key(
        self,
        table_name: str,
        column: ColumnSpec,
        constraint_name: Optional[str] = None
    ) -> str:
        """
        Generate ALTER TABLE ADD CONSTRAINT for a foreign key column.

        Args:
            table_name: Table owning the column
            column: Foreign key column (lookup_target must be set)
            constraint_name: Explicit name; a unique one is generated if omitted

        Returns:
            ALTER TABLE DDL statement
        """
        name = constraint_name or self.generate_constraint_name()
        return (
            f"ALTER TABLE {self._qualified_name(table_name)} "
            f"ADD CONSTRAINT {self._quote_identifier(name)} "
            f"FOREIGN KEY ({self._quote_identifier(column.name)}) "
            f"REFERENCES {self._qualified_name(column.lookup_target)} "
            f"({self._quote_identifier(ID_COLUMN)})"
        )

    @staticmethod
    def generate_constraint_name() -> str:
        """Random constraint name, unique across tables and runs."""
        return f"{uuid.uuid4().hex}_fk"

    @staticmethod
    def generate_set_referential_checks(enabled: bool) -> str:
        """
        Generate the statement toggling foreign key enforcement for the session.

        With the replica role PostgreSQL skips the internal triggers that
        enforce foreign keys. Requires superuser (or an equivalent grant).
        """
        role = "DEFAULT" if enabled else "replica"
        return f"SET session_replication_role = {role}"

    def _qualified_name(self, table_name: str) -> str:
        return f"{self._quote_identifier(self.target_schema)}.{self._quote_identifier(table_name)}"

    def _generate_column_definition(self, column: ColumnSpec, primary_key: bool = False) -> str:
        parts = [
            self._quote_identifier(column.name),
            column.sql_type,
            'NULL' if column.nullable else 'NOT NULL',
        ]
        if primary_key:
            parts.append('PRIMARY KEY')
        return ' '.join(parts)

    def _quote_identifier(self, identifier: str) -> str:
        """
        Quote a PostgreSQL identifier safely.

        Always quotes so Salesforce's mixed-case names are preserved.
        """
        escaped = identifier.replace('"', '""')
        return f'"{escaped}"'


class DDLExecutor:
    """
    Apply generated DDL to the target database.

    The connection is expected in autocommit mode; each worker thread uses
    its own cursor on it.
    """

    def __init__(
        self,
        connection,
        target_schema: str = 'public',
        max_workers: Optional[int] = None
    ):
        """
        Initialize the executor.

        Args:
            connection: psycopg2 connection to the target database
            target_schema: Target PostgreSQL schema name
            max_workers: Parallel DDL workers (default MAX_DDL_WORKERS)
        """
        self.connection = connection
        self.generator = DDLGenerator(target_schema)
        self.max_workers = max_workers or _get_ddl_workers()

    def execute_ddl(self, table_name: Optional[str], statement: str) -> None:
        """
        Execute one DDL statement.

        Args:
            table_name: Table the statement belongs to, None for session settings
            statement: DDL statement

        Raises:
            DDLError: If PostgreSQL rejects the statement
        """
        logger.info(f"Executing DDL: {statement[:100]}...")
        try:
            with self.connection.cursor() as cursor:
                cursor.execute(statement)
        except psycopg2.Error as e:
            logger.error(f"✗ DDL failed for {table_name or 'session settings'}: {e}")
            raise DDLError(table_name, statement, str(e)) from e

    def create_tables(self, tables: Iterable[TableSpec]) -> FrozenSet[str]:
        """
        Phase 1: drop and recreate every table with its scalar columns.

        Returns only after all tables are done, so the result can be used
        as the barrier for phase 2.

        Returns:
            Names of the tables that were created
        """
        tables = list(tables)
        logger.info(f"Creating {len(tables)} tables")
        created = set()

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {executor.submit(self._create_table, table): table for table in tables}
            try:
                for future in as_completed(futures):
                    created.add(future.result())
            except Exception:
                for future in futures:
                    future.cancel()
                raise

        logger.info(f"Successfully created {len(created)} tables")
        return frozenset(created)

    def _create_table(self, table_spec: TableSpec) -> str:
        self.execute_ddl(table_spec.name, self.generator.generate_drop_table(table_spec.name))
        self.execute_ddl(table_spec.name, self.generator.generate_create_table(table_spec))
        logger.info(f"✓ Created table {table_spec.name}")
        return table_spec.name

    def apply_foreign_keys(
        self,
        tables: Iterable[TableSpec],
        created_tables: FrozenSet[str]
    ) -> Dict[str, int]:
        """
        Phase 2: add reference columns and their foreign key constraints.

        Tables are processed in parallel; statements of one table run in
        order. A column whose lookup target was not created is added without
        a constraint.

        Args:
            tables: Table specifications
            created_tables: Result of create_tables

        Returns:
            Number of constraints created per table
        """
        pending = [t for t in tables if t.foreign_key_columns]
        logger.info(f"Creating foreign keys for {len(pending)} tables")
        constraint_counts: Dict[str, int] = {}

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {
                executor.submit(self._apply_table_foreign_keys, table, created_tables): table
                for table in pending
            }
            try:
                for future in as_completed(futures):
                    constraint_counts[futures[future].name] = future.result()
            except Exception:
                for future in futures:
                    future.cancel()
                raise

        logger.info(f"Created {sum(constraint_counts.values())} foreign key constraints")
        return constraint_counts

    def _apply_table_foreign_keys(self, table_spec: TableSpec, created_tables: FrozenSet[str]) -> int:
        self.execute_ddl(table_spec.name, self.generator.generate_add_columns(table_spec))
        logger.info(f"✓ Created foreign key columns for {table_spec.name}")

        count = 0
        for column in table_spec.foreign_key_columns:
            if column.lookup_target not in created_tables:
                logger.info(
                    f"Skipping constraint on {table_spec.name}.{column.name}: "
                    f"{column.lookup_target} is not migrated"
                )
                continue
            self.execute_ddl(
                table_spec.name,
                self.generator.generate_foreign_key(table_spec.name, column)
            )
            count += 1

        logger.info(f"✓ Created {count} foreign key constraints for {table_spec.name}")
        return count

    def set_referential_checks(self, enabled: bool) -> None:
        """Enable or disable foreign key enforcement on the session."""
        logger.info(f"Setting foreign key checks to {'on' if enabled else 'off'}...")
        self.execute_ddl(None, self.generator.generate_set_referential_checks(enabled))

    @contextlib.contextmanager
    def referential_checks_disabled(self):
        """
        Disable foreign key enforcement for the duration of the block.

        Checks are restored on every exit path. If restoring fails while an
        error is already propagating, the restore failure is logged and the
        original error is raised.
        """
        self.set_referential_checks(False)
        try:
            yield
        except BaseException:
            try:
                self.set_referential_checks(True)
            except Exception as restore_error:
                logger.error(f"Could not re-enable foreign key checks: {restore_error}")
            raise
        self.set_referential_checks(True)


def create_tables_ddl(
    tables: List[TableSpec],
    target_schema: str = 'public'
) -> Dict[str, List[str]]:
    """
    Generate the DDL of both phases without executing it.

    Constraint names are random, so each call yields new names.

    Returns:
        Dictionary with 'drops', 'creates', 'columns', 'foreign_keys' lists
    """
    generator = DDLGenerator(target_schema)
    created = {t.name for t in tables}
    result = {'drops': [], 'creates': [], 'columns': [], 'foreign_keys': []}

    for table in tables:
        result['drops'].append(generator.generate_drop_table(table.name))
        result['creates'].append(generator.generate_create_table(table))
        add_columns = generator.generate_add_columns(table)
        if add_columns:
            result['columns'].append(add_columns)
        for column in table.foreign_key_columns:
            if column.lookup_target in created:
                result['foreign_keys'].append(generator.generate_foreign_key(table.name, column))

    return result
