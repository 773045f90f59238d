"""
Schema builder for tenant-scoped materialized tables.

All physical identifiers pass through ``sanitize_identifier`` before they reach
SQLAlchemy; DDL is produced from ``Table`` objects, never from string
concatenation of user input.
"""
import re
from dataclasses import dataclass
from typing import Dict, List, Optional

from sqlalchemy import (
    BigInteger, Boolean, Column, DDL, DateTime, ForeignKey, Integer, MetaData,
    Numeric, Table, Text, event, inspect,
)
from sqlalchemy.exc import NoSuchTableError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import func, sqltypes

from app.core.exceptions import NotFoundError, ValidationError
from app.core.logging import get_logger
from app.models.database.organizations import Organization

logger = get_logger(__name__)

IDENTIFIER_MAX_LENGTH = 63
SYSTEM_COLUMNS = ("id", "organization_id", "created_at", "updated_at")
TENANT_COLUMN = "organization_id"

DATA_TYPES = ("text", "integer", "numeric", "boolean", "timestamp")
DATA_TYPE_ALIASES = {
    "date": "timestamp",
    "datetime": "timestamp",
    "timestamptz": "timestamp",
    "string": "text",
    "varchar": "text",
    "int": "integer",
    "bigint": "integer",
    "float": "numeric",
    "double precision": "numeric",
    "decimal": "numeric",
    "bool": "boolean",
}

_INVALID_IDENTIFIER_CHARS = re.compile(r"[^a-z0-9_]")


def sanitize_identifier(name: str) -> str:
    """
    Restrict a table or column name to lowercase alphanumerics and underscore.

    Every other character becomes ``_``; the result is truncated to the
    PostgreSQL identifier limit.

    Raises:
        ValidationError: If the name is empty
    """
    if name is None or not str(name).strip():
        raise ValidationError("Identifier must not be empty")
    sanitized = _INVALID_IDENTIFIER_CHARS.sub("_", str(name).strip().lower())
    return sanitized[:IDENTIFIER_MAX_LENGTH]


def physical_column_name(name: str) -> str:
    """Sanitized column name that never collides with a system column."""
    sanitized = sanitize_identifier(name)
    if sanitized in SYSTEM_COLUMNS:
        sanitized = f"source_{sanitized}"[:IDENTIFIER_MAX_LENGTH]
    return sanitized


def normalize_data_type(data_type: Optional[str]) -> str:
    """Map a declared type (or a known alias) onto one of ``DATA_TYPES``."""
    key = (data_type or "text").strip().lower()
    key = DATA_TYPE_ALIASES.get(key, key)
    if key not in DATA_TYPES:
        raise ValidationError(
            f"Unsupported column type: {data_type}",
            details={"data_type": data_type, "supported": list(DATA_TYPES)},
        )
    return key


def _sql_type(data_type: str):
    if data_type == "integer":
        return BigInteger()
    if data_type == "numeric":
        return Numeric(asdecimal=False)
    if data_type == "boolean":
        return Boolean()
    if data_type == "timestamp":
        return DateTime(timezone=True)
    return Text()


@dataclass
class ColumnSpec:
    """One user column of a materialized table."""
    name: str  # physical, already sanitized
    data_type: str
    description: Optional[str] = None


def _postgres_ddl(table: Table) -> None:
    """Row-level isolation and updated_at trigger, installed right after CREATE."""
    statements = [
        "ALTER TABLE %(fullname)s ENABLE ROW LEVEL SECURITY",
        "ALTER TABLE %(fullname)s FORCE ROW LEVEL SECURITY",
        "DROP POLICY IF EXISTS tenant_isolation ON %(fullname)s",
        "CREATE POLICY tenant_isolation ON %(fullname)s "
        "USING (organization_id = NULLIF(current_setting('app.current_organization_id', true), '')::integer) "
        "WITH CHECK (organization_id = NULLIF(current_setting('app.current_organization_id', true), '')::integer)",
        "CREATE OR REPLACE FUNCTION touch_updated_at() RETURNS trigger AS $$ "
        "BEGIN NEW.updated_at = now(); RETURN NEW; END; $$ LANGUAGE plpgsql",
        "DROP TRIGGER IF EXISTS %(table)s_touch_updated_at ON %(fullname)s",
        "CREATE TRIGGER %(table)s_touch_updated_at BEFORE UPDATE ON %(fullname)s "
        "FOR EACH ROW EXECUTE FUNCTION touch_updated_at()",
    ]
    for statement in statements:
        event.listen(table, "after_create", DDL(statement).execute_if(dialect="postgresql"))


def build_table(table_name: str, columns: List[ColumnSpec]) -> Table:
    """
    Build the ``Table`` for a materialized import.

    Args:
        table_name: Sanitized physical table name
        columns: User columns with sanitized names

    Returns:
        SQLAlchemy Table bound to a private MetaData
    """
    if table_name != sanitize_identifier(table_name):
        raise ValidationError(f"Table name '{table_name}' is not sanitized")

    seen = set()
    user_columns = []
    for spec in columns:
        if spec.name != physical_column_name(spec.name):
            raise ValidationError(f"Column name '{spec.name}' is not sanitized")
        if spec.name in seen:
            raise ValidationError(
                f"Duplicate column '{spec.name}' after sanitizing names",
                details={"column": spec.name},
            )
        seen.add(spec.name)
        user_columns.append(
            Column(spec.name, _sql_type(spec.data_type), nullable=True, comment=spec.description or None)
        )

    metadata = MetaData()
    table = Table(
        table_name,
        metadata,
        Column("id", BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True),
        Column(
            TENANT_COLUMN,
            Integer,
            ForeignKey(Organization.__table__.c.id, ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        *user_columns,
        Column("created_at", DateTime(timezone=True), server_default=func.now(), nullable=False),
        Column("updated_at", DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    )
    _postgres_ddl(table)
    return table


async def table_exists(db: AsyncSession, table_name: str) -> bool:
    return await db.run_sync(lambda session: inspect(session.connection()).has_table(table_name))


async def create_table_if_not_exists(db: AsyncSession, table: Table) -> bool:
    """
    Create the table unless it already exists.

    Returns:
        True when the table was created by this call
    """
    if await table_exists(db, table.name):
        logger.info(f"Table {table.name} already exists, reusing it")
        return False
    await db.run_sync(lambda session: table.create(session.connection(), checkfirst=True))
    logger.info(f"Created table {table.name} with {len(table.columns)} columns")
    return True


async def reflect_table(db: AsyncSession, table_name: str) -> Table:
    """
    Load an existing materialized table from the database catalog.

    Raises:
        NotFoundError: If the table does not exist
    """
    name = sanitize_identifier(table_name)
    try:
        return await db.run_sync(
            lambda session: Table(name, MetaData(), autoload_with=session.connection())
        )
    except NoSuchTableError:
        raise NotFoundError("Table", name)


def column_kind(column: Column) -> str:
    """Classify a physical column into one of ``DATA_TYPES``."""
    sa_type = column.type
    if isinstance(sa_type, sqltypes.Boolean):
        return "boolean"
    if isinstance(sa_type, sqltypes.Integer):
        return "integer"
    if isinstance(sa_type, sqltypes.Numeric):
        return "numeric"
    if isinstance(sa_type, (sqltypes.DateTime, sqltypes.Date)):
        return "timestamp"
    return "text"


def data_columns(table: Table) -> Dict[str, Column]:
    """User columns of a materialized table, keyed by name."""
    return {c.name: c for c in table.columns if c.name not in SYSTEM_COLUMNS}


def get_data_column(table: Table, name: str) -> Column:
    """
    Look up a user column by its source or physical name.

    Raises:
        NotFoundError: If the table has no such column
    """
    columns = data_columns(table)
    if name in columns:
        return columns[name]
    physical = physical_column_name(name)
    if physical in columns:
        return columns[physical]
    raise NotFoundError("Column", name, message=f"Column '{name}' not found in table {table.name}")
