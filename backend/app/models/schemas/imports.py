"""
Pydantic schemas for file ingestion and import queries.
"""
from typing import Optional, Dict, Any, List
from datetime import datetime
from pydantic import Field

from app.models.database.data_imports import ImportStatus
from app.models.schemas.base import APIModel, ORMModel


# Upload
class ColumnPreview(APIModel):
    """Inferred column as returned by the upload endpoint."""
    name: str
    type: str
    sample: List[Any] = Field(default_factory=list)


class ImportUploadResponse(APIModel):
    """Schema for file upload response."""
    file_id: int
    total_rows: int
    preview_data: List[Dict[str, Any]]
    columns: List[ColumnPreview]


# Import queries
class ColumnMetadataResponse(ORMModel):
    """Schema for one column of an import."""
    id: int
    position: int
    original_name: str
    display_name: Optional[str] = None
    description: Optional[str] = None
    data_type: str
    sample_values: Optional[List[Any]] = None
    statistics: Optional[Dict[str, Any]] = None


class ImportResponse(ORMModel):
    """Schema for import response."""
    id: int
    organization_id: int
    name: str
    original_filename: str
    file_type: Optional[str] = None
    table_name: Optional[str] = None
    status: ImportStatus
    error_message: Optional[str] = None
    row_count: Optional[int] = None
    context: Optional[str] = None
    data_quality: Optional[Dict[str, Any]] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    columns: List[ColumnMetadataResponse] = Field(default_factory=list)


class ImportListResponse(APIModel):
    """Schema for import list response."""
    imports: List[ImportResponse]
    total: int
    limit: int
    offset: int


# Staged rows
class StagedRowsRequest(APIModel):
    """Schema for a page of staged rows."""
    file_id: int = Field(..., alias="fileId")
    page: int = Field(1, ge=1)
    page_size: int = Field(100, alias="pageSize", ge=1, le=1000)
    organization_id: Optional[int] = Field(None, alias="organizationId")


class StagedRowsResponse(APIModel):
    """Schema for staged rows response."""
    data: List[Dict[str, Any]]
    total_rows: int = Field(..., alias="totalRows")
    page: int
    page_size: int = Field(..., alias="pageSize")
    total_pages: int = Field(..., alias="totalPages")


# Column statistics
class ColumnStatisticsRequest(APIModel):
    """Schema for column statistics request."""
    file_id: int = Field(..., alias="fileId")
    column_name: str = Field(..., alias="columnName", min_length=1)
    organization_id: Optional[int] = Field(None, alias="organizationId")


class ColumnStatisticsResponse(APIModel):
    """Per-column statistics computed from the staging store."""
    count: int
    distinct_count: int
    null_count: int
    completeness: Optional[float] = None
    uniqueness: Optional[float] = None
    min: Optional[float] = None
    max: Optional[float] = None
    mean: Optional[float] = None
    median: Optional[float] = None
    quartiles: Optional[List[float]] = None
    standard_deviation: Optional[float] = None
    mode: List[Any] = Field(default_factory=list)
    distribution: Dict[str, int] = Field(default_factory=dict)


# Manual column edit
class ColumnUpdateRequest(APIModel):
    """Schema for editing a column's display name or description."""
    display_name: Optional[str] = Field(None, alias="displayName", max_length=255)
    description: Optional[str] = Field(None, max_length=2000)
