"""
Migration Orchestrator

Runs a complete Salesforce to PostgreSQL migration as a strictly ordered
sequence of phases:

    INIT -> SCHEMA_BUILT -> TABLES_CREATED -> CONSTRAINTS_APPLIED
         -> EXPORTED -> IMPORTED -> DONE

Any fatal error moves the run to FAILED. Foreign key checks are disabled
for the import phase only and are restored before the run ends, whether it
succeeds or fails. Artifacts are imported in file order rather than
dependency order, which only works because checks stay off until the last
file is loaded.
"""

from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Optional
import logging
import time

from sf_pg_migration.artifact_store import ArtifactStore
from sf_pg_migration.bulk_export import BulkExporter, DEFAULT_POLL_INTERVAL, DEFAULT_POLL_TIMEOUT
from sf_pg_migration.data_transfer import DataTransfer
from sf_pg_migration.ddl_generator import DDLExecutor
from sf_pg_migration.exceptions import PhaseTransitionError
from sf_pg_migration.salesforce_client import SalesforceClient
from sf_pg_migration.schema_extractor import SchemaExtractor

logger = logging.getLogger(__name__)


class MigrationPhase(str, Enum):
    INIT = "init"
    SCHEMA_BUILT = "schema_built"
    TABLES_CREATED = "tables_created"
    CONSTRAINTS_APPLIED = "constraints_applied"
    EXPORTED = "exported"
    IMPORTED = "imported"
    DONE = "done"
    FAILED = "failed"


PHASE_ORDER = [
    MigrationPhase.INIT,
    MigrationPhase.SCHEMA_BUILT,
    MigrationPhase.TABLES_CREATED,
    MigrationPhase.CONSTRAINTS_APPLIED,
    MigrationPhase.EXPORTED,
    MigrationPhase.IMPORTED,
    MigrationPhase.DONE,
]

TERMINAL_PHASES = frozenset({MigrationPhase.DONE, MigrationPhase.FAILED})


class MigrationState:
    """Current phase of a run and the tables created so far."""

    def __init__(self):
        self.phase = MigrationPhase.INIT
        self.created_tables: FrozenSet[str] = frozenset()
        self.error: Optional[BaseException] = None

    @property
    def is_terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES

    def advance(self, target: MigrationPhase) -> None:
        """
        Move to the next phase.

        Raises:
            PhaseTransitionError: If target is not the immediate successor
        """
        if self.is_terminal:
            raise PhaseTransitionError(f"Cannot leave terminal phase {self.phase.name}")

        expected = PHASE_ORDER[PHASE_ORDER.index(self.phase) + 1]
        if target != expected:
            raise PhaseTransitionError(
                f"Illegal transition {self.phase.name} -> {target.name} "
                f"(expected {expected.name})"
            )
        logger.info(f"Migration phase: {self.phase.name} -> {target.name}")
        self.phase = target

    def fail(self, error: BaseException) -> None:
        if self.is_terminal:
            raise PhaseTransitionError(f"Cannot fail from terminal phase {self.phase.name}")
        logger.error(f"Migration phase: {self.phase.name} -> FAILED ({error})")
        self.phase = MigrationPhase.FAILED
        self.error = error


class MigrationOrchestrator:
    """
    Sequence the catalog, DDL, export and import components.

    Both sessions are passed in; nothing here opens connections.
    """

    def __init__(
        self,
        client: SalesforceClient,
        connection,
        include_tables: Iterable[str],
        artifact_dir: str,
        target_schema: str = 'public',
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        poll_timeout: float = DEFAULT_POLL_TIMEOUT,
        legacy_time_mapping: bool = True,
        max_metadata_workers: Optional[int] = None,
        max_ddl_workers: Optional[int] = None,
        max_export_workers: Optional[int] = None,
        max_import_workers: Optional[int] = None,
        remove_artifacts: bool = True,
    ):
        """
        Initialize the orchestrator.

        Args:
            client: Authenticated Salesforce client
            connection: psycopg2 connection to the target database (autocommit)
            include_tables: Salesforce objects to migrate
            artifact_dir: Directory for the exported CSV artifacts
            target_schema: Target PostgreSQL schema name
            poll_interval: Seconds between bulk job status checks
            poll_timeout: Maximum seconds to wait for one bulk job
            legacy_time_mapping: Map 'time' fields to VARCHAR(5)
            max_metadata_workers: Concurrent describe calls
            max_ddl_workers: Concurrent DDL workers
            max_export_workers: Concurrent bulk exports
            max_import_workers: Concurrent file imports
            remove_artifacts: Delete artifacts once imported
        """
        self.state = MigrationState()
        self.legacy_time_mapping = legacy_time_mapping
        self.max_metadata_workers = max_metadata_workers

        self.store = ArtifactStore(artifact_dir)
        self.extractor = SchemaExtractor(client, include_tables)
        self.ddl = DDLExecutor(connection, target_schema, max_ddl_workers)
        self.exporter = BulkExporter(
            client,
            self.store,
            poll_interval=poll_interval,
            poll_timeout=poll_timeout,
            max_workers=max_export_workers,
        )
        self.importer = DataTransfer(
            connection,
            self.store,
            target_schema=target_schema,
            max_workers=max_import_workers,
            remove_after_import=remove_artifacts,
        )

    def run(self) -> Dict[str, Any]:
        """
        Run every phase of the migration.

        Returns:
            Summary dictionary of the run

        Raises:
            MigrationError: The first fatal error; the state is FAILED
        """
        start_time = time.time()
        state = self.state
        try:
            logger.info("Getting metadata")
            tables = self.extractor.extract_schema(self.max_metadata_workers, self.legacy_time_mapping)
            state.advance(MigrationPhase.SCHEMA_BUILT)

            logger.info("Creating tables")
            state.created_tables = self.ddl.create_tables(tables)
            state.advance(MigrationPhase.TABLES_CREATED)

            logger.info("Creating foreign keys")
            self.ddl.apply_foreign_keys(tables, state.created_tables)
            state.advance(MigrationPhase.CONSTRAINTS_APPLIED)

            logger.info("Getting data")
            self.store.purge()
            export_results = self.exporter.export_tables(tables)
            state.advance(MigrationPhase.EXPORTED)

            logger.info("Importing data")
            with self.ddl.referential_checks_disabled():
                import_results = self.importer.import_artifacts(self.store.list_artifacts())
                state.advance(MigrationPhase.IMPORTED)

            state.advance(MigrationPhase.DONE)
        except Exception as e:
            state.fail(e)
            raise

        elapsed = time.time() - start_time
        logger.info(f"Migration completed: {len(tables)} tables in {elapsed:.2f}s")
        return {
            'phase': state.phase.value,
            'tables': [t.name for t in tables],
            'created_tables': sorted(state.created_tables),
            'export_results': export_results,
            'import_results': import_results,
            'elapsed_time_seconds': elapsed,
        }


def run_migration(
    client: SalesforceClient,
    connection,
    include_tables: Iterable[str],
    artifact_dir: str,
    **options: Any
) -> Dict[str, Any]:
    """
    Convenience function to run a complete migration.

    Args:
        client: Authenticated Salesforce client
        connection: psycopg2 connection to the target database (autocommit)
        include_tables: Salesforce objects to migrate
        artifact_dir: Directory for the exported CSV artifacts
        **options: Any MigrationOrchestrator keyword argument

    Returns:
        Summary dictionary of the run
    """
    orchestrator = MigrationOrchestrator(client, connection, include_tables, artifact_dir, **options)
    return orchestrator.run()
