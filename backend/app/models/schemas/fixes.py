"""
Pydantic schemas for corrective fixes.
"""
from typing import Optional, Dict, Any, List
from datetime import datetime
from pydantic import Field

from app.models.schemas.base import APIModel, ORMModel


class FixRequest(APIModel):
    """Schema for apply fix request."""
    file_id: int = Field(..., alias="fileId")
    fix_type: str = Field(..., alias="fixType", min_length=1)
    column: Optional[str] = None
    organization_id: int = Field(..., alias="organizationId")


class FixResponse(APIModel):
    """Schema for apply fix response. Exactly one of the row counts is set."""
    success: bool
    rows_updated: Optional[int] = Field(None, alias="rowsUpdated")
    rows_removed: Optional[int] = Field(None, alias="rowsRemoved")
    message: str
    transformation_id: int = Field(..., alias="transformationId")
    quality_stale: bool = Field(False, alias="qualityStale")


class TransformationResponse(ORMModel):
    """Schema for a transformation audit record."""
    id: int
    import_id: int
    organization_id: int
    column_name: str
    transformation_type: str
    parameters: Optional[Dict[str, Any]] = None
    rows_affected: int
    applied_at: Optional[datetime] = None


class TransformationListResponse(APIModel):
    transformations: List[TransformationResponse]
    total: int
