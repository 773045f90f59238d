"""
File ingestion service: parse an upload, record its columns and stage its rows.
"""
import asyncio
import math
import time
from typing import Any, AsyncIterator, Dict, List, Optional

from sqlalchemy import select, func, insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import PipelineError, SuggestionError
from app.core.logging import get_logger
from app.core.metrics import imports_ingested_total, import_ingestion_duration_seconds, rows_staged_total
from app.models.database.column_metadata import ColumnMetadata
from app.models.database.data_imports import DataImport, ImportStatus
from app.models.database.import_rows import ImportRow
from app.processors.file_processor import FileProcessor, ParsedFile
from app.services.column_suggester import ColumnSuggester
from app.services.import_lifecycle import ImportLifecycleService
from app.storage.dynamic_tables import sanitize_identifier, IDENTIFIER_MAX_LENGTH
from app.storage.file_storage import FileStorage

logger = get_logger(__name__)


def provisional_table_name(name: str, import_id: int) -> str:
    """``import_<name>_<id>``, sanitized and kept within the identifier limit."""
    suffix = f"_{import_id}"
    base = sanitize_identifier(f"import_{name}")
    return base[:IDENTIFIER_MAX_LENGTH - len(suffix)] + suffix


class IngestionService:
    """Service for turning uploaded files into staged imports."""

    @staticmethod
    async def ingest_file(
        db: AsyncSession,
        file_content: bytes,
        filename: str,
        organization_id: int,
        storage: FileStorage,
        name: Optional[str] = None,
        context: Optional[str] = None,
        created_by: Optional[str] = None,
        suggest: bool = False,
        suggester: Optional[ColumnSuggester] = None,
        processor: Optional[FileProcessor] = None
    ) -> Dict[str, Any]:
        """
        Ingest an uploaded file.

        Args:
            db: Database session
            file_content: Raw file bytes
            filename: Original filename (its extension selects the parser)
            organization_id: Owning organization
            storage: Store for the raw file
            name: Display name of the import (defaults to the filename)
            context: Free-text description of the dataset
            created_by: Identifier of the uploader
            suggest: Ask the suggester for display names after staging
            suggester: Suggester used when ``suggest`` is set

        Returns:
            ``{file_id, total_rows, preview_data, columns}``
        """
        processor = processor or FileProcessor()
        file_type = processor.validate_file(file_content, filename)
        await ImportLifecycleService.get_organization(db, organization_id)

        data_import = DataImport(
            organization_id=organization_id,
            name=(name or filename)[:255],
            original_filename=filename,
            file_type=file_type,
            status=ImportStatus.PENDING,
            context=context,
            created_by=created_by,
        )
        db.add(data_import)
        await db.flush()
        data_import.table_name = provisional_table_name(data_import.name, data_import.id)
        await db.commit()
        import_id = data_import.id

        logger.info(
            f"Ingesting {filename} as import {import_id}",
            extra={"import_id": import_id, "organization_id": organization_id, "file_type": file_type},
        )
        start_time = time.time()

        try:
            storage_path = await storage.upload_file(
                file_content,
                f"{organization_id}/{import_id}/{filename}",
            )
            await ImportLifecycleService.transition_status(
                db, import_id, [ImportStatus.PENDING], ImportStatus.UPLOADED, storage_path=storage_path
            )

            parsed = await asyncio.to_thread(processor.parse, file_content, file_type)

            await IngestionService.create_column_metadata(db, import_id, parsed)
            await IngestionService.stage_rows(db, import_id, parsed.rows)

            await ImportLifecycleService.transition_status(
                db, import_id, [ImportStatus.UPLOADED], ImportStatus.ANALYZING
            )
        except PipelineError as e:
            imports_ingested_total.labels(file_type=file_type, status="error").inc()
            logger.warning(f"Ingestion of import {import_id} failed: {e.message}")
            await ImportLifecycleService.mark_failed(db, import_id, e.message)
            raise
        except Exception as e:
            imports_ingested_total.labels(file_type=file_type, status="error").inc()
            logger.error(f"Unexpected error ingesting import {import_id}: {e}", exc_info=True)
            await ImportLifecycleService.mark_failed(db, import_id, str(e))
            raise

        import_ingestion_duration_seconds.labels(file_type=file_type).observe(time.time() - start_time)
        imports_ingested_total.labels(file_type=file_type, status="success").inc()

        columns = [
            {
                "name": header,
                "type": parsed.column_types[header],
                "sample": parsed.sample_values(header),
            }
            for header in parsed.headers
        ]

        if suggest and suggester is not None:
            await IngestionService.prefill_display_names(db, import_id, columns, context, parsed, suggester)

        logger.info(f"Import {import_id} staged: {parsed.total_rows} rows, {len(columns)} columns")
        return {
            "file_id": import_id,
            "total_rows": parsed.total_rows,
            "preview_data": parsed.preview(),
            "columns": columns,
        }

    @staticmethod
    async def create_column_metadata(db: AsyncSession, import_id: int, parsed: ParsedFile) -> List[ColumnMetadata]:
        """Create one ColumnMetadata row per header, skipping those that already exist."""
        existing = set((await db.execute(
            select(ColumnMetadata.original_name).where(ColumnMetadata.import_id == import_id)
        )).scalars().all())

        created = []
        for position, header in enumerate(parsed.headers):
            if header in existing:
                continue
            column = ColumnMetadata(
                import_id=import_id,
                position=position,
                original_name=header,
                data_type=parsed.column_types[header],
                sample_values=parsed.sample_values(header),
            )
            db.add(column)
            created.append(column)
        await db.commit()
        return created

    @staticmethod
    async def stage_rows(
        db: AsyncSession,
        import_id: int,
        rows: List[Dict[str, Any]],
        batch_size: Optional[int] = None
    ) -> int:
        """
        Bulk insert parsed rows into the staging store.

        Row numbers are 1-based file positions. Row numbers already staged for
        this import are skipped, so a retried ingestion resumes where the last
        one stopped. Each batch commits on its own.

        Returns:
            Number of rows inserted by this call
        """
        batch_size = batch_size or settings.STAGING_BATCH_SIZE
        staged = set((await db.execute(
            select(ImportRow.row_number).where(ImportRow.import_id == import_id)
        )).scalars().all())

        pending = [
            {"import_id": import_id, "row_number": row_number, "data": row}
            for row_number, row in enumerate(rows, start=1)
            if row_number not in staged
        ]

        for start in range(0, len(pending), batch_size):
            batch = pending[start:start + batch_size]
            await db.execute(insert(ImportRow), batch)
            await db.commit()
            rows_staged_total.inc(len(batch))

        if staged:
            logger.info(f"Import {import_id}: {len(staged)} rows already staged, inserted {len(pending)}")
        return len(pending)

    @staticmethod
    async def count_staged_rows(db: AsyncSession, import_id: int) -> int:
        return (await db.execute(
            select(func.count(ImportRow.id)).where(ImportRow.import_id == import_id)
        )).scalar_one()

    @staticmethod
    async def read_staged_rows(
        db: AsyncSession,
        import_id: int,
        page: int = 1,
        page_size: int = 100,
        organization_id: Optional[int] = None
    ) -> Dict[str, Any]:
        """
        Read one page of staged rows in file order.

        Returns:
            ``{data, total_rows, page, page_size, total_pages}``
        """
        await ImportLifecycleService.get_import(db, import_id, organization_id)
        total_rows = await IngestionService.count_staged_rows(db, import_id)

        result = await db.execute(
            select(ImportRow.data)
            .where(ImportRow.import_id == import_id)
            .order_by(ImportRow.row_number)
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return {
            "data": list(result.scalars().all()),
            "total_rows": total_rows,
            "page": page,
            "page_size": page_size,
            "total_pages": math.ceil(total_rows / page_size) if total_rows else 0,
        }

    @staticmethod
    async def iter_staged_rows(
        db: AsyncSession,
        import_id: int,
        page_size: Optional[int] = None
    ) -> AsyncIterator[List[Dict[str, Any]]]:
        """Yield staged rows page by page, keyed on ``row_number`` rather than offset."""
        page_size = page_size or settings.STATISTICS_PAGE_SIZE
        last_row_number = 0
        while True:
            result = await db.execute(
                select(ImportRow.row_number, ImportRow.data)
                .where(ImportRow.import_id == import_id, ImportRow.row_number > last_row_number)
                .order_by(ImportRow.row_number)
                .limit(page_size)
            )
            page = result.all()
            if not page:
                return
            last_row_number = page[-1].row_number
            yield [record.data for record in page]

    @staticmethod
    async def prefill_display_names(
        db: AsyncSession,
        import_id: int,
        columns: List[Dict[str, Any]],
        context: Optional[str],
        parsed: ParsedFile,
        suggester: ColumnSuggester
    ) -> None:
        """Fill empty display names and descriptions from the suggester. Failures are ignored."""
        try:
            suggestions = await suggester.suggest(columns, description=context, sample_data=parsed.preview(3))
        except SuggestionError as e:
            logger.warning(f"Column suggestions unavailable for import {import_id}: {e.message}")
            return

        # The import is already staged; a bad suggestion must not fail it
        try:
            await ImportLifecycleService.apply_column_suggestions(db, import_id, suggestions, overwrite=False)
        except Exception as e:
            logger.error(f"Could not apply column suggestions to import {import_id}: {e}", exc_info=True)
            await db.rollback()
