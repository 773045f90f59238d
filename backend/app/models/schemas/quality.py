"""
Pydantic schemas for quality analysis.
"""
from typing import Optional, Dict, Any, List
from datetime import datetime
from pydantic import Field

from app.models.schemas.base import APIModel, ORMModel


class QualityAnalysisRequest(APIModel):
    """Schema for quality analysis request."""
    file_id: int = Field(..., alias="fileId")
    table_name: str = Field(..., alias="tableName", min_length=1)
    organization_id: int = Field(..., alias="organizationId")


class AnalysisResponse(ORMModel):
    """Schema for an analysis record."""
    id: int
    import_id: int
    analysis_type: str
    configuration: Optional[Dict[str, Any]] = None
    results: Dict[str, Any]
    created_at: Optional[datetime] = None


class QualityAnalysisResponse(APIModel):
    """Schema for quality analysis response."""
    success: bool
    analysis: AnalysisResponse


class AnalysisListResponse(APIModel):
    analyses: List[AnalysisResponse]
    total: int
