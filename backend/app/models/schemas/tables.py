"""
Pydantic schemas for table materialization.
"""
from typing import Optional, Dict, Any, List
from pydantic import Field

from app.models.schemas.base import APIModel


class ColumnDefinition(APIModel):
    """Declared type and description of one materialized column."""
    type: str = "text"
    description: Optional[str] = None


class MaterializeRequest(APIModel):
    """Schema for materialize table request."""
    table_name: str = Field(..., alias="tableName", min_length=1)
    columns: Dict[str, ColumnDefinition] = Field(..., min_length=1)
    organization_id: int = Field(..., alias="organizationId")
    preview_data: List[Dict[str, Any]] = Field(default_factory=list, alias="previewData")
    file_id: Optional[int] = Field(None, alias="fileId")


class MaterializeResponse(APIModel):
    """Schema for materialize table response."""
    message: str
    table_name: str = Field(..., alias="tableName")
    rows_inserted: int = Field(..., alias="rowsInserted")
    created: bool
