"""
Import API endpoints: upload, staged rows, statistics and column metadata.
"""
from typing import Optional

from fastapi import APIRouter, Depends, UploadFile, File, Form, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import get_db
from app.core.exceptions import SuggestionError, ValidationError
from app.core.logging import get_logger
from app.models.database.data_imports import ImportStatus
from app.models.schemas.imports import (
    ImportUploadResponse,
    ImportResponse,
    ImportListResponse,
    ColumnMetadataResponse,
    StagedRowsRequest,
    StagedRowsResponse,
    ColumnStatisticsRequest,
    ColumnStatisticsResponse,
    ColumnUpdateRequest,
)
from app.models.schemas.quality import AnalysisResponse, AnalysisListResponse
from app.models.schemas.fixes import TransformationResponse, TransformationListResponse
from app.models.schemas.suggestions import (
    SuggestionRequest,
    SuggestionResponse,
    AcceptSuggestionsRequest,
    AcceptSuggestionsResponse,
)
from app.services.column_profiler import ColumnProfilerService
from app.services.column_suggester import ColumnSuggester, get_column_suggester
from app.services.data_quality import DataQualityService
from app.services.fix_applicator import FixApplicatorService
from app.services.import_lifecycle import ImportLifecycleService
from app.services.ingestion import IngestionService
from app.storage.file_storage import FileStorage, get_file_storage

logger = get_logger(__name__)

router = APIRouter(prefix="/imports", tags=["Imports"])


@router.post("/upload", response_model=ImportUploadResponse, status_code=status.HTTP_201_CREATED)
async def upload_file(
    file: UploadFile = File(...),
    organization_id: int = Form(...),
    name: Optional[str] = Form(None),
    context: Optional[str] = Form(None),
    created_by: Optional[str] = Form(None),
    suggest: bool = Form(False),
    db: AsyncSession = Depends(get_db),
    storage: FileStorage = Depends(get_file_storage),
    suggester: ColumnSuggester = Depends(get_column_suggester)
):
    """
    Upload a CSV or spreadsheet and stage its rows.
    """
    file_content = await file.read()
    if len(file_content) > settings.max_upload_size_bytes:
        raise ValidationError(
            f"File exceeds the maximum upload size of {settings.MAX_UPLOAD_SIZE_MB} MB",
            details={"file_size": len(file_content)},
        )

    result = await IngestionService.ingest_file(
        db,
        file_content=file_content,
        filename=file.filename or "upload",
        organization_id=organization_id,
        storage=storage,
        name=name.strip() if name and name.strip() else None,
        context=context.strip() if context else None,
        created_by=created_by,
        suggest=suggest,
        suggester=suggester,
    )
    return ImportUploadResponse(**result)


@router.get("", response_model=ImportListResponse)
async def list_imports(
    organization_id: int = Query(...),
    status_filter: Optional[ImportStatus] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db)
):
    """
    List imports of an organization, newest first.
    """
    imports, total = await ImportLifecycleService.list_imports(
        db, organization_id, status=status_filter, limit=limit, offset=offset
    )
    return ImportListResponse(
        imports=[ImportResponse.model_validate(i) for i in imports],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/{file_id}", response_model=ImportResponse)
async def get_import(
    file_id: int,
    organization_id: int = Query(...),
    db: AsyncSession = Depends(get_db)
):
    """
    Get one import with its columns.
    """
    data_import = await ImportLifecycleService.get_import(db, file_id, organization_id, with_columns=True)
    return ImportResponse.model_validate(data_import)


@router.post("/rows", response_model=StagedRowsResponse)
async def read_staged_rows(
    request: StagedRowsRequest,
    db: AsyncSession = Depends(get_db)
):
    """
    Read a page of staged rows.
    """
    result = await IngestionService.read_staged_rows(
        db, request.file_id, request.page, request.page_size, organization_id=request.organization_id
    )
    return StagedRowsResponse(**result)


@router.post("/statistics", response_model=ColumnStatisticsResponse)
async def compute_column_statistics(
    request: ColumnStatisticsRequest,
    db: AsyncSession = Depends(get_db)
):
    """
    Compute statistics for one staged column.
    """
    stats = await ColumnProfilerService.compute_column_statistics(
        db, request.file_id, request.column_name, organization_id=request.organization_id
    )
    return ColumnStatisticsResponse(**stats)


@router.patch("/{file_id}/columns/{column_id}", response_model=ColumnMetadataResponse)
async def update_column(
    file_id: int,
    column_id: int,
    request: ColumnUpdateRequest,
    organization_id: int = Query(...),
    db: AsyncSession = Depends(get_db)
):
    """
    Edit a column's display name or description.
    """
    column = await ImportLifecycleService.update_column(
        db, file_id, column_id, organization_id,
        display_name=request.display_name,
        description=request.description,
    )
    return ColumnMetadataResponse.model_validate(column)


@router.post("/suggestions", response_model=SuggestionResponse)
async def suggest_column_names(
    request: SuggestionRequest,
    suggester: ColumnSuggester = Depends(get_column_suggester)
):
    """
    Suggest column names. Advisory: failures return an empty list with an error.
    """
    try:
        suggestions = await suggester.suggest(
            [column.model_dump() for column in request.columns],
            description=request.description,
            sample_data=request.sample_data,
        )
    except SuggestionError as e:
        logger.warning(f"Column suggestions unavailable: {e.message}")
        return SuggestionResponse(suggestions=[], error=e.message)
    return SuggestionResponse(suggestions=suggestions)


@router.post("/{file_id}/columns/suggestions/accept", response_model=AcceptSuggestionsResponse)
async def accept_suggestions(
    file_id: int,
    request: AcceptSuggestionsRequest,
    db: AsyncSession = Depends(get_db)
):
    """
    Copy accepted suggestions onto the import's columns.
    """
    updated, skipped = await ImportLifecycleService.apply_column_suggestions(
        db, file_id,
        [suggestion.model_dump() for suggestion in request.suggestions],
        organization_id=request.organization_id,
    )
    return AcceptSuggestionsResponse(updated=updated, skipped=skipped)


@router.get("/{file_id}/analyses", response_model=AnalysisListResponse)
async def list_analyses(
    file_id: int,
    organization_id: int = Query(...),
    analysis_type: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db)
):
    """
    List analyses of an import, newest first.
    """
    analyses = await DataQualityService.list_analyses(db, file_id, organization_id, analysis_type)
    return AnalysisListResponse(
        analyses=[AnalysisResponse.model_validate(a) for a in analyses],
        total=len(analyses),
    )


@router.get("/{file_id}/transformations", response_model=TransformationListResponse)
async def list_transformations(
    file_id: int,
    organization_id: int = Query(...),
    db: AsyncSession = Depends(get_db)
):
    """
    List transformations applied to an import.
    """
    transformations = await FixApplicatorService.list_transformations(db, file_id, organization_id)
    return TransformationListResponse(
        transformations=[TransformationResponse.model_validate(t) for t in transformations],
        total=len(transformations),
    )
