"""
Migration Error Types

Every failure raised by the pipeline is attributable to an object/table and,
for the import phase, to a 1-based data row index.
"""

from typing import Optional


class MigrationError(Exception):
    """Base class for all fatal migration errors."""


class MetadataFetchError(MigrationError):
    """Salesforce catalog or describe call failed."""

    def __init__(self, object_name: Optional[str], message: str = ""):
        self.object_name = object_name
        target = object_name or "<catalog>"
        super().__init__(f"Failed to fetch metadata for {target}: {message}" if message
                         else f"Failed to fetch metadata for {target}")


class SchemaSynthesisWarning(UserWarning):
    """Field type with no known mapping; the field is skipped."""


class DDLError(MigrationError):
    """A DDL statement failed against the target store.

    ``table`` is None for session-level statements such as the foreign key
    check toggle.
    """

    def __init__(self, table: Optional[str], statement: str, message: str = ""):
        self.table = table
        self.statement = statement
        target = f"table {table}" if table else "session settings"
        detail = f": {message}" if message else ""
        super().__init__(f"DDL failed for {target}{detail}\nStatement: {statement}")


class ExportError(MigrationError):
    """Bulk export of a table failed or produced an incomplete artifact."""

    def __init__(self, table: str, message: str = ""):
        self.table = table
        detail = f": {message}" if message else ""
        super().__init__(f"Export failed for table {table}{detail}")


class ExportTimeoutError(ExportError):
    """Bulk query job did not reach a terminal state within the poll timeout."""

    def __init__(self, table: str, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(table, f"bulk job still running after {timeout_seconds}s")


class ImportParseError(MigrationError):
    """An artifact row could not be parsed."""

    def __init__(self, table: str, row_index: int, message: str = ""):
        self.table = table
        self.row_index = row_index
        detail = f": {message}" if message else ""
        super().__init__(f"Malformed row {row_index} in artifact for {table}{detail}")


class ImportWriteError(MigrationError):
    """Inserting an artifact row into the target table failed."""

    def __init__(self, table: str, row_index: int, message: str = ""):
        self.table = table
        self.row_index = row_index
        detail = f": {message}" if message else ""
        super().__init__(f"Insert of row {row_index} into {table} failed{detail}")


class PhaseTransitionError(MigrationError):
    """Illegal move of the migration state machine."""
