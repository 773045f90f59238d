"""
Quality analysis API endpoints.
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.models.schemas.quality import QualityAnalysisRequest, QualityAnalysisResponse, AnalysisResponse
from app.services.data_quality import DataQualityService

router = APIRouter(prefix="/quality", tags=["Data Quality"])


@router.post("/analyze", response_model=QualityAnalysisResponse, status_code=status.HTTP_201_CREATED)
async def analyze_quality(
    request: QualityAnalysisRequest,
    db: AsyncSession = Depends(get_db)
):
    """
    Run a quality analysis over an import's materialized table.
    """
    analysis = await DataQualityService().analyze(
        db, request.file_id, request.table_name, request.organization_id
    )
    return QualityAnalysisResponse(success=True, analysis=AnalysisResponse.model_validate(analysis))
