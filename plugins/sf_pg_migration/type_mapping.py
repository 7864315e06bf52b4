"""
Salesforce to PostgreSQL Type Mapping Module

This module maps Salesforce field descriptors to PostgreSQL column
specifications. The mapping is a pure function over the enumerated set of
Salesforce field types: calling it twice on the same descriptors gives equal
results.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple
import logging
import warnings

from sf_pg_migration.exceptions import SchemaSynthesisWarning

logger = logging.getLogger(__name__)


ID_COLUMN = "Id"
ID_SQL_TYPE = "VARCHAR(18)"

# Text columns longer than this become TEXT
MAX_VARCHAR_LENGTH = 200
PICKLIST_SQL_TYPE = "VARCHAR(60)"
BOOLEAN_SQL_TYPE = "VARCHAR(5)"


class SourceFieldType(str, Enum):
    """Salesforce field type tags returned by the describe call."""
    ID = "id"
    STRING = "string"
    URL = "url"
    TEXTAREA = "textarea"
    EMAIL = "email"
    PHONE = "phone"
    COMBOBOX = "combobox"
    PICKLIST = "picklist"
    MULTIPICKLIST = "multipicklist"
    REFERENCE = "reference"
    INT = "int"
    DATETIME = "datetime"
    DATE = "date"
    TIME = "time"
    BOOLEAN = "boolean"
    DOUBLE = "double"
    CURRENCY = "currency"
    PERCENT = "percent"
    BASE64 = "base64"
    ADDRESS = "address"
    LOCATION = "location"
    ENCRYPTEDSTRING = "encryptedstring"


# Field types that never produce a column, whatever the tentative mapping says
EXCLUDED_TYPES = frozenset({
    SourceFieldType.ADDRESS,
    SourceFieldType.LOCATION,
    SourceFieldType.ENCRYPTEDSTRING,
})


@dataclass(frozen=True)
class FieldDescriptor:
    """One field of a Salesforce object, as reported by describe."""
    name: Optional[str]
    source_type: str
    length: int = 0
    precision: int = 0
    scale: int = 0
    nullable: bool = True
    reference_targets: Tuple[str, ...] = ()
    relationship_name: Optional[str] = None
    is_polymorphic: bool = False

    @classmethod
    def from_describe(cls, payload: Dict[str, Any]) -> "FieldDescriptor":
        """Build a descriptor from one entry of the describe ``fields`` list."""
        targets = tuple(payload.get("referenceTo") or ())
        return cls(
            name=payload.get("name"),
            source_type=str(payload.get("type") or ""),
            length=int(payload.get("length") or 0),
            precision=int(payload.get("precision") or 0),
            scale=int(payload.get("scale") or 0),
            nullable=bool(payload.get("nillable", True)),
            reference_targets=targets,
            relationship_name=payload.get("relationshipName"),
            is_polymorphic=bool(payload.get("polymorphicForeignKey")) or len(targets) > 1,
        )


@dataclass(frozen=True)
class ColumnSpec:
    """PostgreSQL column derived from one field descriptor."""
    name: str
    sql_type: str
    nullable: bool = True
    is_foreign_key: bool = False
    lookup_target: Optional[str] = None
    relationship_name: Optional[str] = None
    reference_targets: Tuple[str, ...] = ()

    @property
    def is_primary_key(self) -> bool:
        return self.name == ID_COLUMN


@dataclass(frozen=True)
class TableSpec:
    """Target table for one Salesforce object.

    Exactly one ``Id`` column is required: ``VARCHAR(18)``, not nullable,
    primary key.
    """
    name: str
    columns: Tuple[ColumnSpec, ...] = field(default_factory=tuple)

    def __post_init__(self):
        id_columns = [c for c in self.columns if c.name == ID_COLUMN]
        if len(id_columns) != 1:
            raise ValueError(
                f"Table {self.name} must have exactly one '{ID_COLUMN}' column "
                f"(found {len(id_columns)})"
            )
        id_column = id_columns[0]
        if id_column.sql_type != ID_SQL_TYPE or id_column.nullable:
            raise ValueError(
                f"Table {self.name}: '{ID_COLUMN}' must be {ID_SQL_TYPE} NOT NULL "
                f"(got {id_column.sql_type}, nullable={id_column.nullable})"
            )

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]

    @property
    def scalar_columns(self) -> List[ColumnSpec]:
        """Columns created in the first DDL phase."""
        return [c for c in self.columns if not c.is_foreign_key]

    @property
    def foreign_key_columns(self) -> List[ColumnSpec]:
        """Columns added after every table exists."""
        return [c for c in self.columns if c.is_foreign_key]


def _text_type(length: int) -> str:
    if 0 < length <= MAX_VARCHAR_LENGTH:
        return f"VARCHAR({length})"
    return "TEXT"


def _map_id(f: FieldDescriptor, legacy_time_mapping: bool) -> ColumnSpec:
    return ColumnSpec(name=f.name, sql_type=ID_SQL_TYPE, nullable=False)


def _map_text(f: FieldDescriptor, legacy_time_mapping: bool) -> ColumnSpec:
    return ColumnSpec(name=f.name, sql_type=_text_type(f.length), nullable=True)


def _map_picklist(f: FieldDescriptor, legacy_time_mapping: bool) -> ColumnSpec:
    # Declared length is ignored for picklists
    return ColumnSpec(name=f.name, sql_type=PICKLIST_SQL_TYPE, nullable=True)


def _map_reference(f: FieldDescriptor, legacy_time_mapping: bool) -> ColumnSpec:
    sql_type = f"VARCHAR({f.length or 18})"
    single_target = f.reference_targets[0] if len(f.reference_targets) == 1 else None

    if f.is_polymorphic or single_target is None:
        # Resolved per row in Salesforce, cannot be a single-table foreign key
        return ColumnSpec(
            name=f.name,
            sql_type=sql_type,
            nullable=True,
            is_foreign_key=False,
            lookup_target=single_target,
            reference_targets=f.reference_targets,
        )

    return ColumnSpec(
        name=f.name,
        sql_type=sql_type,
        nullable=True,
        is_foreign_key=True,
        lookup_target=single_target,
        relationship_name=f.relationship_name,
        reference_targets=f.reference_targets,
    )


def _scalar(sql_type: str) -> Callable[[FieldDescriptor, bool], ColumnSpec]:
    def mapper(f: FieldDescriptor, legacy_time_mapping: bool) -> ColumnSpec:
        return ColumnSpec(name=f.name, sql_type=sql_type, nullable=f.nullable)
    return mapper


def _map_time(f: FieldDescriptor, legacy_time_mapping: bool) -> ColumnSpec:
    if not legacy_time_mapping:
        return ColumnSpec(name=f.name, sql_type="TIME", nullable=f.nullable)
    logger.warning(
        f"Field '{f.name}' of type 'time' mapped to {BOOLEAN_SQL_TYPE} "
        "(legacy_time_mapping enabled)"
    )
    return ColumnSpec(name=f.name, sql_type=BOOLEAN_SQL_TYPE, nullable=f.nullable)


def _map_decimal(f: FieldDescriptor, legacy_time_mapping: bool) -> ColumnSpec:
    if not f.precision:
        return ColumnSpec(name=f.name, sql_type="NUMERIC", nullable=f.nullable)
    return ColumnSpec(
        name=f.name,
        sql_type=f"DECIMAL({f.precision},{f.scale})",
        nullable=f.nullable,
    )


def _map_nothing(f: FieldDescriptor, legacy_time_mapping: bool) -> None:
    return None


# Every SourceFieldType has exactly one rule
TYPE_MAPPING: Dict[SourceFieldType, Callable[[FieldDescriptor, bool], Optional[ColumnSpec]]] = {
    SourceFieldType.ID: _map_id,
    SourceFieldType.STRING: _map_text,
    SourceFieldType.URL: _map_text,
    SourceFieldType.TEXTAREA: _map_text,
    SourceFieldType.EMAIL: _map_text,
    SourceFieldType.PHONE: _map_text,
    SourceFieldType.COMBOBOX: _map_text,
    SourceFieldType.PICKLIST: _map_picklist,
    SourceFieldType.MULTIPICKLIST: _map_text,
    SourceFieldType.REFERENCE: _map_reference,
    SourceFieldType.INT: _scalar("INTEGER"),
    SourceFieldType.DATETIME: _scalar("TIMESTAMP"),
    SourceFieldType.DATE: _scalar("DATE"),
    SourceFieldType.TIME: _map_time,
    SourceFieldType.BOOLEAN: _scalar(BOOLEAN_SQL_TYPE),
    SourceFieldType.DOUBLE: _map_decimal,
    SourceFieldType.CURRENCY: _map_decimal,
    SourceFieldType.PERCENT: _map_decimal,
    SourceFieldType.BASE64: _scalar("TEXT"),
    SourceFieldType.ADDRESS: _scalar("TEXT"),
    SourceFieldType.LOCATION: _map_nothing,
    SourceFieldType.ENCRYPTEDSTRING: _map_nothing,
}


def map_field(
    descriptor: FieldDescriptor,
    legacy_time_mapping: bool = True
) -> Optional[ColumnSpec]:
    """
    Map a Salesforce field descriptor to a PostgreSQL column.

    Args:
        descriptor: Field descriptor from the describe call
        legacy_time_mapping: Encode 'time' fields like booleans (VARCHAR(5))
            for compatibility with earlier migrations; False maps them to TIME

    Returns:
        ColumnSpec, or None when the field produces no column
    """
    try:
        type_tag = SourceFieldType(descriptor.source_type.lower().strip())
    except ValueError:
        message = (
            f"Unknown Salesforce field type '{descriptor.source_type}' "
            f"for field '{descriptor.name}', skipping"
        )
        logger.warning(message)
        warnings.warn(message, SchemaSynthesisWarning, stacklevel=2)
        return None

    column = TYPE_MAPPING[type_tag](descriptor, legacy_time_mapping)

    if type_tag in EXCLUDED_TYPES or not descriptor.name:
        return None
    return column


def map_fields(
    descriptors: Iterable[FieldDescriptor],
    legacy_time_mapping: bool = True
) -> Tuple[ColumnSpec, ...]:
    """Map descriptors in order, dropping the ones that yield no column."""
    columns = []
    for descriptor in descriptors:
        column = map_field(descriptor, legacy_time_mapping)
        if column is not None:
            columns.append(column)
    return tuple(columns)


def build_table_spec(
    object_name: str,
    descriptors: Iterable[FieldDescriptor],
    legacy_time_mapping: bool = True
) -> TableSpec:
    """
    Build the table specification for one Salesforce object.

    Raises:
        ValueError: If the object does not yield exactly one valid Id column
    """
    return TableSpec(name=object_name, columns=map_fields(descriptors, legacy_time_mapping))


def validate_type_mapping(source_type: str) -> bool:
    """
    Check if a Salesforce field type has a known mapping.

    Types that are known but never produce a column still count as mapped.
    """
    try:
        SourceFieldType(source_type.lower().strip())
    except ValueError:
        return False
    return True


def get_supported_types() -> list:
    """
    Get a list of all supported Salesforce field types.

    Returns:
        List of Salesforce field type names
    """
    return [t.value for t in SourceFieldType]
