"""
Import lifecycle service: lookups, tenant scoping and status transitions.
"""
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.exceptions import NotFoundError, StateConflictError
from app.core.logging import get_logger
from app.models.database.column_metadata import ColumnMetadata
from app.models.database.data_imports import DataImport, ImportStatus
from app.models.database.organizations import Organization

logger = get_logger(__name__)

ERROR_MESSAGE_MAX_LENGTH = 2000


class ImportLifecycleService:
    """Service for reading imports and moving them through their lifecycle."""

    @staticmethod
    async def get_organization(db: AsyncSession, organization_id: int) -> Organization:
        organization = await db.get(Organization, organization_id)
        if organization is None:
            raise NotFoundError("Organization", organization_id)
        return organization

    @staticmethod
    async def get_import(
        db: AsyncSession,
        import_id: int,
        organization_id: Optional[int] = None,
        with_columns: bool = False
    ) -> DataImport:
        """
        Get an import by ID.

        An import owned by a different organization is reported as missing.

        Raises:
            NotFoundError: If the import does not exist for this organization
        """
        query = select(DataImport).where(DataImport.id == import_id)
        if organization_id is not None:
            query = query.where(DataImport.organization_id == organization_id)
        if with_columns:
            query = query.options(selectinload(DataImport.columns))

        result = await db.execute(query.execution_options(populate_existing=True))
        data_import = result.scalar_one_or_none()
        if data_import is None:
            raise NotFoundError("Import", import_id)
        return data_import

    @staticmethod
    async def find_by_table_name(db: AsyncSession, organization_id: int, table_name: str) -> DataImport:
        """Most recent import of an organization targeting ``table_name``."""
        result = await db.execute(
            select(DataImport)
            .where(
                DataImport.organization_id == organization_id,
                DataImport.table_name == table_name,
            )
            .order_by(DataImport.id.desc())
            .limit(1)
        )
        data_import = result.scalar_one_or_none()
        if data_import is None:
            raise NotFoundError("Import", message=f"No import found for table {table_name}")
        return data_import

    @staticmethod
    async def list_imports(
        db: AsyncSession,
        organization_id: int,
        status: Optional[ImportStatus] = None,
        limit: int = 50,
        offset: int = 0
    ) -> Tuple[List[DataImport], int]:
        """List an organization's imports, newest first."""
        query = select(DataImport).where(DataImport.organization_id == organization_id)
        count_query = select(func.count(DataImport.id)).where(DataImport.organization_id == organization_id)
        if status is not None:
            query = query.where(DataImport.status == status)
            count_query = count_query.where(DataImport.status == status)

        total = (await db.execute(count_query)).scalar_one()
        result = await db.execute(
            query.options(selectinload(DataImport.columns))
            .order_by(DataImport.created_at.desc(), DataImport.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    @staticmethod
    async def get_columns(db: AsyncSession, import_id: int) -> List[ColumnMetadata]:
        result = await db.execute(
            select(ColumnMetadata)
            .where(ColumnMetadata.import_id == import_id)
            .order_by(ColumnMetadata.position, ColumnMetadata.id)
        )
        return list(result.scalars().all())

    @staticmethod
    async def transition_status(
        db: AsyncSession,
        import_id: int,
        expected: Iterable[ImportStatus],
        new_status: ImportStatus,
        commit: bool = True,
        **values: Any
    ) -> None:
        """
        Move an import to ``new_status`` if its current status is one of ``expected``.

        The check and the write are a single UPDATE, so two concurrent stages
        cannot both pass the same gate.

        Raises:
            NotFoundError: If the import does not exist
            StateConflictError: If the import is in any other status
        """
        expected = list(expected)
        result = await db.execute(
            update(DataImport)
            .where(DataImport.id == import_id, DataImport.status.in_(expected))
            .values(status=new_status, **values)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            current = (await db.execute(
                select(DataImport.status).where(DataImport.id == import_id)
            )).scalar_one_or_none()
            if current is None:
                raise NotFoundError("Import", import_id)
            raise StateConflictError(
                f"Import {import_id} is '{current.value}', expected one of: "
                f"{', '.join(s.value for s in expected)}",
                details={
                    "import_id": import_id,
                    "status": current.value,
                    "expected": [s.value for s in expected],
                },
            )

        if commit:
            await db.commit()
        logger.info(f"Import {import_id} moved to {new_status.value}")

    @staticmethod
    async def mark_failed(db: AsyncSession, import_id: int, message: str) -> None:
        """
        Record a terminal failure on an import.

        Runs in its own transaction: whatever the failing stage left pending is
        rolled back first.
        """
        await db.rollback()
        await db.execute(
            update(DataImport)
            .where(DataImport.id == import_id)
            .values(status=ImportStatus.ERROR, error_message=(message or "Unknown error")[:ERROR_MESSAGE_MAX_LENGTH])
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        logger.warning(f"Import {import_id} marked as error: {message}")

    @staticmethod
    async def update_column(
        db: AsyncSession,
        import_id: int,
        column_id: int,
        organization_id: int,
        display_name: Optional[str] = None,
        description: Optional[str] = None
    ) -> ColumnMetadata:
        """Manually edit a column's display name or description."""
        await ImportLifecycleService.get_import(db, import_id, organization_id)
        column = (await db.execute(
            select(ColumnMetadata).where(
                ColumnMetadata.id == column_id,
                ColumnMetadata.import_id == import_id,
            )
        )).scalar_one_or_none()
        if column is None:
            raise NotFoundError("Column", column_id)

        if display_name is not None:
            column.display_name = display_name.strip() or None
        if description is not None:
            column.description = description.strip() or None
        await db.commit()
        await db.refresh(column)
        return column

    @staticmethod
    async def apply_column_suggestions(
        db: AsyncSession,
        import_id: int,
        suggestions: List[Dict[str, Any]],
        organization_id: Optional[int] = None,
        overwrite: bool = True
    ) -> Tuple[int, List[str]]:
        """
        Copy suggested display names and descriptions onto matching columns.

        Args:
            suggestions: Dicts with ``original_name``, ``suggested_name`` and
                optional ``description``
            overwrite: When False, values already set are kept

        Returns:
            Tuple of (columns updated, original names with no matching column)
        """
        if organization_id is not None:
            await ImportLifecycleService.get_import(db, import_id, organization_id)
        columns = {c.original_name: c for c in await ImportLifecycleService.get_columns(db, import_id)}

        updated = 0
        skipped = []
        for suggestion in suggestions:
            column = columns.get(suggestion.get("original_name"))
            if column is None:
                skipped.append(suggestion.get("original_name"))
                continue
            changed = False
            if suggestion.get("suggested_name") and (overwrite or not column.display_name):
                column.display_name = suggestion["suggested_name"]
                changed = True
            if suggestion.get("description") and (overwrite or not column.description):
                column.description = suggestion["description"]
                changed = True
            updated += int(changed)

        await db.commit()
        logger.info(f"Applied {updated} column suggestions to import {import_id}")
        return updated, skipped
