"""
Schema materializer: create a tenant table for an import and load its rows.
"""
import math
import re
import time
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select, func, insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import set_tenant_scope
from app.core.exceptions import CoercionError, PipelineError, ValidationError
from app.core.logging import get_logger
from app.core.metrics import tables_materialized_total, rows_materialized_total
from app.models.database.data_imports import ImportStatus
from app.services.import_lifecycle import ImportLifecycleService
from app.services.ingestion import IngestionService
from app.storage.dynamic_tables import (
    ColumnSpec, TENANT_COLUMN, build_table, create_table_if_not_exists, data_columns,
    normalize_data_type, physical_column_name, reflect_table, sanitize_identifier, table_exists,
)

logger = get_logger(__name__)

TRUTHY_TOKENS = {"true", "t", "yes", "sim", "1"}

_INTEGER_RE = re.compile(r"^[+-]?\d+$")
TIMESTAMP_FORMATS = (
    "%d/%m/%Y %H:%M:%S",
    "%d/%m/%Y %H:%M",
    "%d/%m/%Y",
    "%d-%m-%Y %H:%M:%S",
    "%d-%m-%Y %H:%M",
    "%d-%m-%Y",
    "%Y/%m/%d %H:%M:%S",
    "%Y/%m/%d %H:%M",
    "%Y/%m/%d",
)


def parse_timestamp(text: str) -> Optional[datetime]:
    """Parse ISO-8601 or one of ``TIMESTAMP_FORMATS``; naive values are taken as UTC."""
    candidate = text.strip()
    parsed = None
    try:
        parsed = datetime.fromisoformat(candidate.replace("Z", "+00:00"))
    except ValueError:
        for fmt in TIMESTAMP_FORMATS:
            try:
                parsed = datetime.strptime(candidate, fmt)
                break
            except ValueError:
                continue
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def coerce_value(value: Any, data_type: str, column: str, row_number: Optional[int] = None) -> Any:
    """
    Convert one cell to the Python value stored for ``data_type``.

    Raises:
        CoercionError: If the value cannot be represented in the column type
    """
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return None

    if data_type == "text":
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)

    if isinstance(value, str):
        value = value.strip()
        if value == "":
            return None

    if data_type == "boolean":
        if isinstance(value, bool):
            return value
        return str(value).lower() in TRUTHY_TOKENS

    if data_type == "integer":
        if isinstance(value, bool):
            raise CoercionError(column, data_type, value, row_number)
        if isinstance(value, int):
            return value
        if isinstance(value, str) and _INTEGER_RE.match(value):
            return int(value)
        number = _parse_number(value, column, data_type, row_number)
        if not number.is_integer():
            raise CoercionError(column, data_type, value, row_number)
        return int(number)

    if data_type == "numeric":
        if isinstance(value, bool):
            raise CoercionError(column, data_type, value, row_number)
        return _parse_number(value, column, data_type, row_number)

    if data_type == "timestamp":
        if isinstance(value, datetime):
            return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        if isinstance(value, date):
            return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
        parsed = parse_timestamp(str(value))
        if parsed is None:
            raise CoercionError(column, data_type, value, row_number)
        return parsed

    raise ValidationError(f"Unsupported column type: {data_type}")


def _parse_number(value: Any, column: str, data_type: str, row_number: Optional[int]) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise CoercionError(column, data_type, value, row_number)
    if not math.isfinite(number):
        raise CoercionError(column, data_type, value, row_number)
    return number


def convert_rows(
    rows: List[Dict[str, Any]],
    specs: List[ColumnSpec],
    organization_id: int
) -> List[Dict[str, Any]]:
    """
    Convert source rows to insert parameters.

    Row keys are matched to columns by their sanitized form; keys with no
    column are ignored and columns with no key are null.
    """
    converted = []
    for row_number, row in enumerate(rows, start=1):
        cells = {}
        for key, value in row.items():
            try:
                cells.setdefault(physical_column_name(key), value)
            except ValidationError:
                continue
        record = {TENANT_COLUMN: organization_id}
        for spec in specs:
            record[spec.name] = coerce_value(cells.get(spec.name), spec.data_type, spec.name, row_number)
        converted.append(record)
    return converted


class SchemaMaterializerService:
    """Service for materializing imports into tenant tables."""

    @staticmethod
    def build_column_specs(columns: Dict[str, Dict[str, Any]]) -> List[ColumnSpec]:
        """Sanitize names and validate types of a ``name -> {type, description}`` map."""
        specs = []
        for name, definition in columns.items():
            definition = definition or {}
            specs.append(ColumnSpec(
                name=physical_column_name(name),
                data_type=normalize_data_type(definition.get("type")),
                description=definition.get("description"),
            ))
        return specs

    @staticmethod
    async def materialize(
        db: AsyncSession,
        table_name: str,
        columns: Dict[str, Dict[str, Any]],
        organization_id: int,
        preview_data: Optional[List[Dict[str, Any]]] = None,
        file_id: Optional[int] = None
    ) -> Dict[str, Any]:
        """
        Create (or reuse) the physical table of an import and load its rows.

        Repeating the call for an import already completed into the same
        table with these columns succeeds without inserting anything. A
        rejected call leaves the import in the status it started in.

        Args:
            db: Database session
            table_name: Requested table name, sanitized before use
            columns: Column map ``name -> {type, description}``
            organization_id: Owning organization
            preview_data: Rows to load; the staged rows are used when empty
            file_id: Import to complete; otherwise found by table name

        Returns:
            ``{message, table_name, rows_inserted, created}``

        Raises:
            NotFoundError: If the organization or import does not exist
            ValidationError: For unknown types or clashing column names
            StateConflictError: If the import is not awaiting materialization
                and is not already materialized into this table
            CoercionError: If any row cannot be converted; nothing is inserted
        """
        physical_name = sanitize_identifier(table_name)
        specs = SchemaMaterializerService.build_column_specs(columns)
        table = build_table(physical_name, specs)

        await ImportLifecycleService.get_organization(db, organization_id)
        if file_id is not None:
            data_import = await ImportLifecycleService.get_import(db, file_id, organization_id)
        else:
            data_import = await ImportLifecycleService.find_by_table_name(db, organization_id, physical_name)
        import_id = data_import.id
        previous_status = data_import.status

        if previous_status == ImportStatus.COMPLETED and data_import.table_name == physical_name:
            if await SchemaMaterializerService._has_columns(db, physical_name, specs):
                logger.info(
                    f"Import {import_id} is already materialized into {physical_name}",
                    extra={"import_id": import_id, "organization_id": organization_id},
                )
                return {
                    "message": f"Table {physical_name} already materialized",
                    "table_name": physical_name,
                    "rows_inserted": 0,
                    "created": False,
                }

        await ImportLifecycleService.transition_status(
            db, import_id, [ImportStatus.ANALYZING, ImportStatus.ERROR], ImportStatus.PROCESSING
        )
        logger.info(
            f"Materializing import {import_id} into {physical_name}",
            extra={"import_id": import_id, "organization_id": organization_id, "columns": len(specs)},
        )
        start_time = time.time()

        try:
            rows = preview_data
            if not rows:
                rows = []
                async for page in IngestionService.iter_staged_rows(db, import_id):
                    rows.extend(page)

            records = convert_rows(rows, specs, organization_id)

            await set_tenant_scope(db, organization_id)
            created = await create_table_if_not_exists(db, table)
            if not created:
                table = await SchemaMaterializerService._compatible_table(db, physical_name, specs)

            if records:
                await db.execute(insert(table), records)

            row_count = (await db.execute(
                select(func.count()).select_from(table).where(table.c[TENANT_COLUMN] == organization_id)
            )).scalar_one()

            await SchemaMaterializerService._sync_column_metadata(db, import_id, columns, specs)
            await ImportLifecycleService.transition_status(
                db, import_id, [ImportStatus.PROCESSING], ImportStatus.COMPLETED,
                table_name=physical_name, row_count=row_count, error_message=None,
            )
        except (CoercionError, ValidationError) as e:
            tables_materialized_total.labels(status="rejected").inc()
            logger.warning(f"Materialization of import {import_id} rejected: {e.message}")
            await db.rollback()
            await ImportLifecycleService.transition_status(
                db, import_id, [ImportStatus.PROCESSING], previous_status, error_message=e.message
            )
            raise
        except Exception as e:
            tables_materialized_total.labels(status="error").inc()
            logger.error(f"Error materializing import {import_id}: {e}", exc_info=True)
            message = e.message if isinstance(e, PipelineError) else str(e)
            await ImportLifecycleService.mark_failed(db, import_id, message)
            raise

        tables_materialized_total.labels(status="success").inc()
        rows_materialized_total.inc(len(records))
        logger.info(
            f"Materialized import {import_id}: {len(records)} rows inserted into {physical_name} "
            f"in {time.time() - start_time:.2f}s"
        )
        return {
            "message": f"Table {physical_name} {'created' if created else 'updated'} with {len(records)} rows",
            "table_name": physical_name,
            "rows_inserted": len(records),
            "created": created,
        }

    @staticmethod
    async def _has_columns(db: AsyncSession, table_name: str, specs: List[ColumnSpec]) -> bool:
        if not await table_exists(db, table_name):
            return False
        available = data_columns(await reflect_table(db, table_name))
        return all(spec.name in available for spec in specs)

    @staticmethod
    async def _compatible_table(db: AsyncSession, table_name: str, specs: List[ColumnSpec]):
        """Reflect an existing table and check it has every requested column."""
        table = await reflect_table(db, table_name)
        missing = [spec.name for spec in specs if spec.name not in data_columns(table)]
        if missing:
            raise ValidationError(
                f"Table {table_name} already exists without columns: {', '.join(missing)}",
                details={"table_name": table_name, "missing_columns": missing},
            )
        return table

    @staticmethod
    async def _sync_column_metadata(
        db: AsyncSession,
        import_id: int,
        columns: Dict[str, Dict[str, Any]],
        specs: List[ColumnSpec]
    ) -> None:
        """Record materialized types, and display names where none is set yet."""
        by_physical = {spec.name: (name, spec) for name, spec in zip(columns, specs)}
        for column in await ImportLifecycleService.get_columns(db, import_id):
            match = by_physical.get(physical_column_name(column.original_name))
            if match is None:
                continue
            name, spec = match
            column.data_type = spec.data_type
            if not column.display_name:
                column.display_name = name
        await db.flush()
