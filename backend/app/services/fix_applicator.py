"""
Fix applicator: corrective transformations on materialized tables.

Every applied fix writes one DataTransformation audit record in the same
transaction as the row changes.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import Column, Table, select, update, delete, func, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import set_tenant_scope
from app.core.exceptions import NotFoundError, UnsupportedTypeError, ValidationError
from app.core.logging import get_logger
from app.core.metrics import fixes_applied_total
from app.models.database.data_analyses import DataAnalysis, DataTransformation
from app.models.database.data_imports import DataImport, ImportStatus
from app.services.import_lifecycle import ImportLifecycleService
from app.storage.dynamic_tables import TENANT_COLUMN, column_kind, data_columns, get_data_column, reflect_table

logger = get_logger(__name__)

FIX_TYPES = ("fill_nulls", "handle_duplicates", "standardize_format", "trim", "uppercase", "lowercase")
FIX_TYPE_ALIASES = {
    "fill_missing_values": "fill_nulls",
    "remove_duplicates": "handle_duplicates",
    "format_standardization": "standardize_format",
}
TEXT_FALLBACK = "(não informado)"
ALL_COLUMNS = "all"


def normalize_fix_type(fix_type: str) -> str:
    key = (fix_type or "").strip().lower()
    key = FIX_TYPE_ALIASES.get(key, key)
    if key not in FIX_TYPES:
        raise ValidationError(
            f"Unknown fix type: {fix_type}",
            details={"fix_type": fix_type, "supported": list(FIX_TYPES) + list(FIX_TYPE_ALIASES)},
        )
    return key


class FixApplicatorService:
    """Service for applying fixes to materialized tables."""

    @staticmethod
    async def apply_fix(
        db: AsyncSession,
        import_id: int,
        fix_type: str,
        organization_id: int,
        column: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Apply one fix and record it.

        Args:
            db: Database session
            import_id: Import whose table is fixed
            fix_type: One of ``FIX_TYPES`` or an alias
            organization_id: Owning organization
            column: Target column; optional only for ``handle_duplicates``

        Returns:
            ``{success, rows_updated | rows_removed, message, transformation_id, quality_stale}``

        Raises:
            ValidationError: For unknown fix types or a missing column
            NotFoundError: If the import, its table or the column is missing
            UnsupportedTypeError: If the fix does not apply to the column type
        """
        fix_type = normalize_fix_type(fix_type)
        if column is None and fix_type != "handle_duplicates":
            raise ValidationError(f"Fix {fix_type} requires a column", details={"fix_type": fix_type})

        data_import = await ImportLifecycleService.get_import(db, import_id, organization_id)
        if data_import.status != ImportStatus.COMPLETED or not data_import.table_name:
            raise NotFoundError("Table", message=f"Import {import_id} has no materialized table")

        await set_tenant_scope(db, organization_id)
        table = await reflect_table(db, data_import.table_name)
        target = get_data_column(table, column) if column is not None else None
        tenant_filter = table.c[TENANT_COLUMN] == organization_id

        logger.info(
            f"Applying {fix_type} to import {import_id}",
            extra={"import_id": import_id, "organization_id": organization_id, "column": column},
        )

        try:
            parameters: Dict[str, Any] = {}
            if fix_type == "fill_nulls":
                affected, parameters = await FixApplicatorService._fill_nulls(db, table, target, tenant_filter)
            elif fix_type == "handle_duplicates":
                affected, parameters = await FixApplicatorService._handle_duplicates(db, table, target, tenant_filter)
            elif fix_type == "standardize_format":
                affected = await FixApplicatorService._standardize_format(db, table, target, tenant_filter)
            else:
                affected = await FixApplicatorService._apply_text_function(db, fix_type, target, tenant_filter, table)

            transformation = DataTransformation(
                import_id=import_id,
                organization_id=organization_id,
                column_name=target.name if target is not None else ALL_COLUMNS,
                transformation_type=fix_type,
                parameters=parameters,
                rows_affected=affected,
            )
            db.add(transformation)
            await db.flush()

            quality_stale = await FixApplicatorService._mark_quality_stale(db, data_import)
            await db.commit()
        except Exception as e:
            fixes_applied_total.labels(fix_type=fix_type, status="error").inc()
            logger.error(f"Error applying {fix_type} to import {import_id}: {e}", exc_info=True)
            await db.rollback()
            raise

        fixes_applied_total.labels(fix_type=fix_type, status="success").inc()
        column_label = target.name if target is not None else "all columns"
        if fix_type == "handle_duplicates":
            message = f"Removed {affected} duplicate rows based on {column_label}"
            counts = {"rows_removed": affected}
        else:
            message = f"Applied {fix_type} to {affected} rows in column {column_label}"
            counts = {"rows_updated": affected}

        logger.info(message, extra={"import_id": import_id, "transformation_id": transformation.id})
        return {
            "success": True,
            **counts,
            "message": message,
            "transformation_id": transformation.id,
            "quality_stale": quality_stale,
        }

    @staticmethod
    async def _fill_nulls(db: AsyncSession, table: Table, target: Column, tenant_filter):
        """Replace nulls (and empty strings in text columns) with a type default."""
        kind = column_kind(target)
        if kind == "text":
            null_condition = or_(target.is_(None), target == "")
            most_frequent = (await db.execute(
                select(target)
                .where(tenant_filter, target.is_not(None), target != "")
                .group_by(target)
                .order_by(func.count().desc(), target)
                .limit(1)
            )).scalar_one_or_none()
            default = most_frequent if most_frequent is not None else TEXT_FALLBACK
        else:
            null_condition = target.is_(None)
            if kind in ("integer", "numeric"):
                default = 0
            elif kind == "boolean":
                default = False
            else:
                default = datetime.now(timezone.utc)

        result = await db.execute(
            update(table).where(tenant_filter, null_condition).values({target.name: default})
        )
        parameters = {"default": default.isoformat() if isinstance(default, datetime) else default}
        return result.rowcount, parameters

    @staticmethod
    async def _handle_duplicates(db: AsyncSession, table: Table, target: Optional[Column], tenant_filter):
        """
        Delete all but the lowest-id row of every duplicate group.

        Rows with a null key value are never considered duplicates.
        """
        key_columns: List[Column] = [target] if target is not None else list(data_columns(table).values())

        result = await db.execute(
            select(table.c.id, *key_columns).where(tenant_filter).order_by(table.c.id)
        )
        seen = set()
        duplicate_ids = []
        for row in result.all():
            key = tuple(row[1:])
            if any(value is None for value in key):
                continue
            if key in seen:
                duplicate_ids.append(row[0])
            else:
                seen.add(key)

        removed = 0
        for start in range(0, len(duplicate_ids), 500):
            batch = duplicate_ids[start:start + 500]
            deleted = await db.execute(delete(table).where(tenant_filter, table.c.id.in_(batch)))
            removed += deleted.rowcount

        parameters = {
            "columns": [c.name for c in key_columns],
            "keep": "lowest_id",
        }
        return removed, parameters

    @staticmethod
    async def _standardize_format(db: AsyncSession, table: Table, target: Column, tenant_filter) -> int:
        """Trim and lowercase text; normalize timestamps to UTC."""
        kind = column_kind(target)
        if kind == "text":
            standardized = func.lower(func.trim(target))
            result = await db.execute(
                update(table)
                .where(tenant_filter, target.is_not(None), target != standardized)
                .values({target.name: standardized})
            )
            return result.rowcount

        if kind == "timestamp":
            rows = (await db.execute(
                select(table.c.id, target).where(tenant_filter, target.is_not(None))
            )).all()
            changed = 0
            for row_id, value in rows:
                normalized = _to_utc(value)
                if normalized == value and getattr(value, "tzinfo", None) is not None:
                    continue
                await db.execute(
                    update(table).where(tenant_filter, table.c.id == row_id).values({target.name: normalized})
                )
                changed += 1
            return changed

        raise UnsupportedTypeError("standardize_format", target.name, kind)

    @staticmethod
    async def _apply_text_function(db: AsyncSession, fix_type: str, target: Column, tenant_filter, table: Table) -> int:
        kind = column_kind(target)
        if kind != "text":
            raise UnsupportedTypeError(fix_type, target.name, kind)

        functions = {"trim": func.trim, "uppercase": func.upper, "lowercase": func.lower}
        transformed = functions[fix_type](target)
        result = await db.execute(
            update(table)
            .where(tenant_filter, target.is_not(None), target != transformed)
            .values({target.name: transformed})
        )
        return result.rowcount

    @staticmethod
    async def _mark_quality_stale(db: AsyncSession, data_import: DataImport) -> bool:
        """Flag the import's quality summary as outdated when an analysis exists."""
        has_analysis = (await db.execute(
            select(func.count(DataAnalysis.id)).where(
                and_(DataAnalysis.import_id == data_import.id, DataAnalysis.analysis_type == "quality")
            )
        )).scalar_one() > 0
        if has_analysis:
            data_import.data_quality = {**(data_import.data_quality or {}), "stale": True}
        return has_analysis

    @staticmethod
    async def list_transformations(
        db: AsyncSession,
        import_id: int,
        organization_id: Optional[int] = None
    ) -> List[DataTransformation]:
        """List transformations of an import in the order they were applied."""
        await ImportLifecycleService.get_import(db, import_id, organization_id)
        result = await db.execute(
            select(DataTransformation)
            .where(DataTransformation.import_id == import_id)
            .order_by(DataTransformation.applied_at, DataTransformation.id)
        )
        return list(result.scalars().all())


def _to_utc(value: Any) -> Any:
    if not isinstance(value, datetime):
        return value
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
